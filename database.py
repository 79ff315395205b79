"""
MongoDB access for the CatchUp API.

Collections are named after the lower-cased schema classes in `schemas.py`
(User -> "user", Pdf -> "pdf", Rating -> "rating"). Routes receive the
database through the `get_db` dependency so tests can swap in another one.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config
from errors import DependencyFailure, ValidationError

_client: Optional[MongoClient] = None


def get_db() -> Database:
    global _client
    if _client is None:
        if not config.DATABASE_URL:
            raise DependencyFailure("Database is not configured")
        _client = MongoClient(config.DATABASE_URL)
    return _client[config.DATABASE_NAME]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["pdf"].create_index([("semester", ASCENDING), ("branch", ASCENDING), ("year", ASCENDING)])
    db["pdf"].create_index("uploaded_by")
    db["pdf"].create_index([("average_rating", DESCENDING)])
    db["rating"].create_index([("pdf_id", ASCENDING), ("user_id", ASCENDING)], unique=True)


def utcnow() -> datetime:
    # naive UTC, matching what pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def to_obj_ids(id_strs: Iterable[Any]) -> List[ObjectId]:
    """Parse the well-formed ids out of `id_strs`, silently skipping the rest."""
    ids = []
    for value in id_strs:
        if isinstance(value, str) and ObjectId.is_valid(value):
            ids.append(ObjectId(value))
    return ids


def sanitize(doc: Dict) -> Dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    return d


def public_user(user: Optional[Dict]) -> Optional[Dict]:
    if not user:
        return None
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
    }


def attach_users(db: Database, docs: List[Dict], *fields: str) -> List[Dict]:
    """Replace user-id references in `fields` with the user's public identity."""
    ids = {to_obj_id(d[f]) for d in docs for f in fields if d.get(f) and ObjectId.is_valid(d[f])}
    user_map = {str(u["_id"]): public_user(u) for u in db["user"].find({"_id": {"$in": list(ids)}})} if ids else {}
    for d in docs:
        for f in fields:
            if d.get(f):
                d[f] = user_map.get(d[f], {"id": d[f], "name": None, "email": None, "role": None})
    return docs
