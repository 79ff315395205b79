import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "catchup")

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(30 * 24 * 60)))
RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", "60"))
# Development aid: echo password reset tokens back to the caller
EXPOSE_RESET_TOKEN = os.getenv("EXPOSE_RESET_TOKEN", "false").lower() in ("1", "true", "yes")

# HTTP
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Blob storage (any S3-compatible endpoint)
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "catchup-notes")
STORAGE_REGION = os.getenv("STORAGE_REGION", "us-east-1")
STORAGE_ENDPOINT_URL = os.getenv("STORAGE_ENDPOINT_URL") or None
STORAGE_ACCESS_KEY = os.getenv("STORAGE_ACCESS_KEY") or None
STORAGE_SECRET_KEY = os.getenv("STORAGE_SECRET_KEY") or None
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL") or None

MAX_PDF_BYTES = int(os.getenv("MAX_PDF_BYTES", str(10 * 1024 * 1024)))
MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "pymongo": {"level": "WARNING"},
        "botocore": {"level": "WARNING"},
    },
}
