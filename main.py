import logging
import logging.config
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database
from pymongo.errors import PyMongoError
import uvicorn

import admin
import auth
import config
import pdfs
import profiles
import ratings
import users
from database import ensure_indexes, get_db
from errors import install_error_handlers

logging.config.dictConfig(config.LOGGING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    resolve_db = app.dependency_overrides.get(get_db, get_db)
    try:
        ensure_indexes(resolve_db())
    except PyMongoError as e:
        logger.error("Could not create indexes: %s", e)
    yield


# App and CORS
app = FastAPI(title="CatchUp Notes API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(profiles.router)
app.include_router(pdfs.router)
app.include_router(ratings.router)
app.include_router(admin.router)


# Utility endpoints
@app.get("/")
def root():
    return {"success": True, "message": "CatchUp API running"}


@app.get("/test")
def health_check(db: Database = Depends(get_db)):
    try:
        collections = db.list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except PyMongoError as e:
        logger.warning("Database health check failed: %s", e)
        return {"backend": "ok", "database": "error"}


def run():
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_config=config.LOGGING)


if __name__ == "__main__":
    run()
