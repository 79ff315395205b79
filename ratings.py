"""
Ratings and the per-document aggregate.

Each (pdf, user) pair holds at most one rating row; resubmitting overwrites it.
After every insert, update or delete the pdf's `average_rating` and
`total_ratings` are rebuilt from the full set of rows for that pdf with an
aggregation query. They are never incremented in place, so concurrent or
corrected submissions cannot leave the aggregate drifting from the rows.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import attach_users, get_db, sanitize, to_obj_id, utcnow
from errors import NotFound
from pdfs import load_pdf
from schemas import MAX_REVIEW_LENGTH, Rating as RatingSchema
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ratings", tags=["ratings"])


class RateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=MAX_REVIEW_LENGTH)

    @field_validator("review", mode="before")
    @classmethod
    def strip_review(cls, v):
        return v.strip() if isinstance(v, str) else v


def round_rating(value: float) -> float:
    """One decimal place, halves rounded up (4.25 -> 4.3)."""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def recalculate_average_rating(db: Database, pdf_id: str) -> Dict:
    result = list(db["rating"].aggregate([
        {"$match": {"pdf_id": pdf_id}},
        {"$group": {"_id": "$pdf_id", "average_rating": {"$avg": "$rating"}, "total_ratings": {"$sum": 1}}},
    ]))
    if result:
        summary = {
            "average_rating": round_rating(result[0]["average_rating"]),
            "total_ratings": result[0]["total_ratings"],
        }
    else:
        summary = {"average_rating": 0, "total_ratings": 0}
    db["pdf"].update_one({"_id": to_obj_id(pdf_id)}, {"$set": summary})
    return summary


def save_rating(db: Database, pdf_id: str, user_id: str, rating: int, review: Optional[str]) -> Tuple[Dict, bool]:
    """Insert or overwrite the caller's rating. Returns (row, created)."""
    key = {"pdf_id": pdf_id, "user_id": user_id}
    changes = {"rating": rating, "updated_at": utcnow()}
    if review is not None:
        changes["review"] = review
    if db["rating"].find_one(key):
        db["rating"].update_one(key, {"$set": changes})
        return db["rating"].find_one(key), False
    doc = RatingSchema(pdf_id=pdf_id, user_id=user_id, rating=rating, review=review or "").model_dump()
    try:
        db["rating"].insert_one(doc)
    except DuplicateKeyError:
        # lost a race with another submission from the same user
        db["rating"].update_one(key, {"$set": changes})
        return db["rating"].find_one(key), False
    return doc, True


@router.post("/{pdf_id}")
def rate_pdf(pdf_id: str, payload: RateRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    pdf = load_pdf(db, pdf_id)
    pdf_id = str(pdf["_id"])
    row, created = save_rating(db, pdf_id, current_user["id"], payload.rating, payload.review)
    summary = recalculate_average_rating(db, pdf_id)
    data = attach_users(db, [sanitize(row)], "user_id")[0]
    data["pdf"] = summary
    return {
        "success": True,
        "message": "Rating added successfully" if created else "Rating updated successfully",
        "data": data,
    }


@router.get("/user/{pdf_id}")
def my_rating(pdf_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    pdf_id = str(to_obj_id(pdf_id))
    row = db["rating"].find_one({"pdf_id": pdf_id, "user_id": current_user["id"]})
    if not row:
        raise NotFound("You have not rated this PDF yet")
    return {"success": True, "data": attach_users(db, [sanitize(row)], "user_id")[0]}


@router.get("/{pdf_id}")
def list_ratings(pdf_id: str, db: Database = Depends(get_db)):
    pdf_id = str(to_obj_id(pdf_id))
    rows = [sanitize(r) for r in db["rating"].find({"pdf_id": pdf_id}).sort([("created_at", DESCENDING)])]
    rows = attach_users(db, rows, "user_id")
    return {"success": True, "count": len(rows), "data": rows}


@router.delete("/{pdf_id}")
def delete_rating(pdf_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    pdf_id = str(to_obj_id(pdf_id))
    res = db["rating"].delete_one({"pdf_id": pdf_id, "user_id": current_user["id"]})
    if res.deleted_count == 0:
        raise NotFound("Rating not found")
    summary = recalculate_average_rating(db, pdf_id)
    logger.info("User %s removed rating on pdf %s", current_user["id"], pdf_id)
    return {"success": True, "message": "Rating deleted successfully", "data": {"pdf": summary}}
