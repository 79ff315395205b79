"""
Moderation endpoints for the admin tier: filtered listing with statistics,
curation toggles, bulk update/delete and analytics.

Every route here is gated on role admin or superadmin.
"""

import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import get_db, public_user, to_obj_ids, utcnow
from errors import NotFound, ValidationError
from pdfs import build_pdf_filter, load_pdf, present, sort_spec
from schemas import ADMIN_ROLES, Branch, Semester, Year
from security import require_role
from storage import BlobStorage, destroy_quietly, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

admin_only = require_role(*ADMIN_ROLES)

BULK_UPDATE_FIELDS = ("semester", "branch", "year", "is_featured", "is_verified")
TOP_N = 10
TOP_RATED_MIN_RATINGS = 5
RECENT_WINDOW_DAYS = 30
ANALYTICS_FIELDS = {
    "title": 1, "downloads": 1, "views": 1, "average_rating": 1, "total_ratings": 1,
    "semester": 1, "branch": 1, "uploaded_by": 1,
}

EMPTY_STATS = {
    "total_pdfs": 0,
    "total_downloads": 0,
    "total_views": 0,
    "avg_rating": 0,
    "featured_count": 0,
    "verified_count": 0,
}


class BulkIdsRequest(BaseModel):
    pdf_ids: List[Any] = Field(default_factory=list)


class BulkUpdateRequest(BulkIdsRequest):
    updates: Dict[str, Any] = Field(default_factory=dict)


class BulkPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    semester: Optional[Semester] = None
    branch: Optional[Branch] = None
    year: Optional[Year] = None
    is_featured: Optional[bool] = None
    is_verified: Optional[bool] = None


def filter_patch(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only allow-listed keys and check their values."""
    allowed = {k: v for k, v in updates.items() if k in BULK_UPDATE_FIELDS}
    if not allowed:
        return {}
    try:
        patch = BulkPatch.model_validate(allowed)
    except SchemaError as e:
        field = ".".join(str(p) for p in e.errors()[0]["loc"])
        raise ValidationError(f"Invalid value for {field}")
    return patch.model_dump(exclude_none=True)


def day_bound(value: Optional[date], end: bool = False) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.combine(value, time.max if end else time.min)


def stats_for(db: Database, q: Dict[str, Any]) -> Dict[str, Any]:
    stats = list(db["pdf"].aggregate([
        {"$match": q},
        {"$group": {
            "_id": None,
            "total_pdfs": {"$sum": 1},
            "total_downloads": {"$sum": "$downloads"},
            "total_views": {"$sum": "$views"},
            "avg_rating": {"$avg": "$average_rating"},
            "featured_count": {"$sum": {"$cond": ["$is_featured", 1, 0]}},
            "verified_count": {"$sum": {"$cond": ["$is_verified", 1, 0]}},
        }},
    ]))
    if not stats:
        return dict(EMPTY_STATS)
    s = stats[0]
    s.pop("_id", None)
    s["avg_rating"] = round(s.get("avg_rating") or 0, 2)
    return s


def require_ids(pdf_ids: List[Any]) -> None:
    if not pdf_ids:
        raise ValidationError("Please provide an array of PDF IDs")


@router.get("/pdfs")
def admin_list_pdfs(
    semester: Optional[str] = None,
    branch: Optional[str] = None,
    year: Optional[str] = None,
    search: Optional[str] = None,
    uploader: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    is_featured: Optional[bool] = None,
    is_verified: Optional[bool] = None,
    sort_by: Optional[str] = Query("recent"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin=Depends(admin_only),
    db: Database = Depends(get_db),
):
    q = build_pdf_filter(semester, branch, year, search, search_fields=("title", "description", "file_name"))
    if uploader:
        q["uploaded_by"] = uploader
    if is_featured is not None:
        q["is_featured"] = is_featured
    if is_verified is not None:
        q["is_verified"] = is_verified
    if start_date or end_date:
        q["created_at"] = {}
        if start_date:
            q["created_at"]["$gte"] = day_bound(start_date)
        if end_date:
            q["created_at"]["$lte"] = day_bound(end_date, end=True)

    cursor = db["pdf"].find(q).sort(sort_spec(sort_by)).skip((page - 1) * limit).limit(limit)
    pdfs = present(db, list(cursor))
    total_count = db["pdf"].count_documents(q)
    return {
        "success": True,
        "count": len(pdfs),
        "total_count": total_count,
        "total_pages": math.ceil(total_count / limit),
        "current_page": page,
        "stats": stats_for(db, q),
        "data": pdfs,
    }


@router.put("/pdfs/{pdf_id}/toggle-featured")
def toggle_featured(pdf_id: str, admin=Depends(admin_only), db: Database = Depends(get_db)):
    pdf = load_pdf(db, pdf_id, active_only=False)
    is_featured = not pdf.get("is_featured", False)
    db["pdf"].update_one({"_id": pdf["_id"]}, {"$set": {"is_featured": is_featured}})
    return {
        "success": True,
        "message": f"PDF {'marked as featured' if is_featured else 'unmarked as featured'}",
        "data": {"is_featured": is_featured},
    }


@router.put("/pdfs/{pdf_id}/toggle-verified")
def toggle_verified(pdf_id: str, admin=Depends(admin_only), db: Database = Depends(get_db)):
    pdf = load_pdf(db, pdf_id, active_only=False)
    if pdf.get("is_verified"):
        changes = {"is_verified": False, "verified_by": None, "verified_at": None}
    else:
        changes = {"is_verified": True, "verified_by": admin["id"], "verified_at": utcnow()}
    db["pdf"].update_one({"_id": pdf["_id"]}, {"$set": changes})
    data = dict(changes)
    if changes["verified_by"]:
        data["verified_by"] = {k: admin.get(k) for k in ("id", "name", "email")}
    return {
        "success": True,
        "message": f"PDF {'verified' if changes['is_verified'] else 'unverified'}",
        "data": data,
    }


@router.put("/pdfs/{pdf_id}/toggle-active")
def toggle_active(pdf_id: str, admin=Depends(admin_only), db: Database = Depends(get_db)):
    pdf = load_pdf(db, pdf_id, active_only=False)
    updated = db["pdf"].find_one_and_update(
        {"_id": pdf["_id"]},
        {"$set": {"is_active": not pdf.get("is_active", True)}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("User %s set pdf %s active=%s", admin["id"], pdf_id, updated["is_active"])
    return {
        "success": True,
        "message": f"PDF {'restored' if updated['is_active'] else 'hidden'}",
        "data": {"is_active": updated["is_active"]},
    }


@router.post("/pdfs/bulk-delete")
def bulk_delete(
    payload: BulkIdsRequest,
    admin=Depends(admin_only),
    db: Database = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    require_ids(payload.pdf_ids)
    ids = to_obj_ids(payload.pdf_ids)
    pdfs = list(db["pdf"].find({"_id": {"$in": ids}}, {"storage_id": 1})) if ids else []
    if not pdfs:
        raise NotFound("No PDFs found with provided IDs")

    for pdf in pdfs:
        destroy_quietly(storage, pdf.get("storage_id"))
    found = [p["_id"] for p in pdfs]
    res = db["pdf"].delete_many({"_id": {"$in": found}})
    db["rating"].delete_many({"pdf_id": {"$in": [str(i) for i in found]}})
    logger.info("User %s bulk deleted %d pdf(s)", admin["id"], res.deleted_count)
    return {
        "success": True,
        "message": f"Successfully deleted {res.deleted_count} PDF(s)",
        "deleted_count": res.deleted_count,
    }


@router.post("/pdfs/bulk-update")
def bulk_update(payload: BulkUpdateRequest, admin=Depends(admin_only), db: Database = Depends(get_db)):
    require_ids(payload.pdf_ids)
    if not payload.updates:
        raise ValidationError("Please provide updates")
    patch = filter_patch(payload.updates)
    if not patch:
        raise ValidationError("No valid update fields provided")
    if "is_verified" in patch and not patch["is_verified"]:
        patch.update({"verified_by": None, "verified_at": None})

    ids = to_obj_ids(payload.pdf_ids)
    if ids and patch.get("is_verified"):
        # already-verified notes keep their original verifier
        db["pdf"].update_many(
            {"_id": {"$in": ids}, "is_verified": False},
            {"$set": {"verified_by": admin["id"], "verified_at": utcnow()}},
        )
    modified = db["pdf"].update_many({"_id": {"$in": ids}}, {"$set": patch}).modified_count if ids else 0
    logger.info("User %s bulk updated %d pdf(s) with %s", admin["id"], modified, sorted(patch))
    return {
        "success": True,
        "message": f"Successfully updated {modified} PDF(s)",
        "modified_count": modified,
    }


def top_pdfs(db: Database, q: Dict[str, Any], sort) -> List[Dict]:
    return present(db, list(db["pdf"].find(q, ANALYTICS_FIELDS).sort(sort).limit(TOP_N)))


def grouped_by(db: Database, field: str, sort) -> List[Dict]:
    rows = db["pdf"].aggregate([
        {"$match": {"is_active": True}},
        {"$group": {
            "_id": f"${field}",
            "count": {"$sum": 1},
            "downloads": {"$sum": "$downloads"},
            "views": {"$sum": "$views"},
        }},
        {"$sort": sort},
    ])
    return [{field: r["_id"], "count": r["count"], "downloads": r["downloads"], "views": r["views"]} for r in rows]


@router.get("/pdfs/analytics")
def analytics(admin=Depends(admin_only), db: Database = Depends(get_db)):
    active = {"is_active": True}
    top_downloaded = top_pdfs(db, active, [("downloads", DESCENDING)])
    top_rated = top_pdfs(
        db,
        {"is_active": True, "total_ratings": {"$gte": TOP_RATED_MIN_RATINGS}},
        [("average_rating", DESCENDING), ("total_ratings", DESCENDING)],
    )
    most_viewed = top_pdfs(db, active, [("views", DESCENDING)])
    by_semester = grouped_by(db, "semester", {"_id": ASCENDING})
    by_branch = grouped_by(db, "branch", {"count": DESCENDING})

    uploader_rows = list(db["pdf"].aggregate([
        {"$match": {"is_active": True}},
        {"$group": {
            "_id": "$uploaded_by",
            "upload_count": {"$sum": 1},
            "total_downloads": {"$sum": "$downloads"},
            "total_views": {"$sum": "$views"},
        }},
        {"$sort": {"upload_count": DESCENDING}},
        {"$limit": TOP_N},
    ]))
    users = {
        str(u["_id"]): public_user(u)
        for u in db["user"].find({"_id": {"$in": to_obj_ids(r["_id"] for r in uploader_rows)}})
    }
    top_uploaders = [
        {
            "user": users.get(r["_id"], {"id": r["_id"], "name": None, "email": None, "role": None}),
            "upload_count": r["upload_count"],
            "total_downloads": r["total_downloads"],
            "total_views": r["total_views"],
        }
        for r in uploader_rows
    ]

    since = utcnow() - timedelta(days=RECENT_WINDOW_DAYS)
    recent_upload_count = db["pdf"].count_documents({"is_active": True, "created_at": {"$gte": since}})

    return {
        "success": True,
        "data": {
            "top_downloaded": top_downloaded,
            "top_rated": top_rated,
            "most_viewed": most_viewed,
            "by_semester": by_semester,
            "by_branch": by_branch,
            "top_uploaders": top_uploaders,
            "recent_upload_count": recent_upload_count,
        },
    }


@router.get("/uploaders")
def uploaders(admin=Depends(admin_only), db: Database = Depends(get_db)):
    users = [public_user(u) for u in db["user"].find({"role": {"$in": list(ADMIN_ROLES)}})]
    return {"success": True, "data": users}
