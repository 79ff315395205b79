import logging
import re
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

import config
from database import attach_users, get_db, sanitize, to_obj_id
from errors import Forbidden, NotFound, ValidationError
from schemas import ADMIN_ROLES, Branch, Pdf as PdfSchema, Semester, Year
from security import can_administer, get_current_user, require_role
from storage import BlobStorage, destroy_quietly, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pdfs", tags=["pdfs"])

PDF_FOLDER = "catchup-pdfs"
PDF_CONTENT_TYPES = ("application/pdf",)

SORT_OPTIONS = {
    "downloads": [("downloads", DESCENDING)],
    "views": [("views", DESCENDING)],
    "rating": [("average_rating", DESCENDING), ("total_ratings", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "recent": [("created_at", DESCENDING)],
}


class UpdatePdfRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    semester: Optional[Semester] = None
    branch: Optional[Branch] = None
    year: Optional[Year] = None


def build_pdf_filter(
    semester: Optional[str] = None,
    branch: Optional[str] = None,
    year: Optional[str] = None,
    search: Optional[str] = None,
    search_fields: tuple = ("title", "description"),
) -> Dict[str, Any]:
    q: Dict[str, Any] = {}
    if semester:
        q["semester"] = semester
    if branch:
        q["branch"] = branch
    if year:
        q["year"] = year
    if search:
        pattern = re.escape(search)
        q["$or"] = [{f: {"$regex": pattern, "$options": "i"}} for f in search_fields]
    return q


def sort_spec(sort_by: Optional[str]):
    return SORT_OPTIONS.get(sort_by or "recent", SORT_OPTIONS["recent"])


def load_pdf(db: Database, pdf_id: str, active_only: bool = True) -> Dict:
    q: Dict[str, Any] = {"_id": to_obj_id(pdf_id)}
    if active_only:
        q["is_active"] = True
    pdf = db["pdf"].find_one(q)
    if not pdf:
        raise NotFound("PDF not found")
    return pdf


def present(db: Database, docs: List[Dict]) -> List[Dict]:
    return attach_users(db, [sanitize(d) for d in docs], "uploaded_by", "verified_by")


def record_counter(db: Database, pdf_id: str, field: str) -> Dict:
    pdf = db["pdf"].find_one_and_update(
        {"_id": to_obj_id(pdf_id), "is_active": True},
        {"$inc": {field: 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not pdf:
        raise NotFound("PDF not found")
    return pdf


@router.get("")
def list_pdfs(
    semester: Optional[str] = None,
    branch: Optional[str] = None,
    year: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: Optional[str] = Query("recent"),
    db: Database = Depends(get_db),
):
    q = build_pdf_filter(semester, branch, year, search)
    q["is_active"] = True
    pdfs = present(db, list(db["pdf"].find(q).sort(sort_spec(sort_by))))
    return {"success": True, "count": len(pdfs), "data": pdfs}


@router.get("/stats/overview")
def stats_overview(admin=Depends(require_role(*ADMIN_ROLES)), db: Database = Depends(get_db)):
    totals = list(db["pdf"].aggregate([
        {"$match": {"is_active": True}},
        {"$group": {"_id": None, "count": {"$sum": 1}, "downloads": {"$sum": "$downloads"}, "views": {"$sum": "$views"}}},
    ]))
    t = totals[0] if totals else {}
    return {
        "success": True,
        "data": {
            "total_pdfs": t.get("count", 0),
            "total_downloads": t.get("downloads", 0),
            "total_views": t.get("views", 0),
        },
    }


@router.get("/download/{pdf_id}")
def download_pdf(pdf_id: str, db: Database = Depends(get_db)):
    pdf = record_counter(db, pdf_id, "downloads")
    return RedirectResponse(
        pdf["file_url"],
        status_code=302,
        headers={"Content-Disposition": f'attachment; filename="{pdf["file_name"]}"'},
    )


@router.put("/{pdf_id}/download")
def count_download(pdf_id: str, db: Database = Depends(get_db)):
    pdf = record_counter(db, pdf_id, "downloads")
    return {"success": True, "message": "Download count updated", "downloads": pdf["downloads"]}


@router.get("/{pdf_id}")
def get_pdf(pdf_id: str, db: Database = Depends(get_db)):
    pdf = record_counter(db, pdf_id, "views")
    return {"success": True, "data": present(db, [pdf])[0]}


@router.post("/upload", status_code=201)
def upload_pdf(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    semester: Optional[str] = Form(None),
    branch: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    pdf: UploadFile = File(None),
    uploader=Depends(require_role(*ADMIN_ROLES)),
    db: Database = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    if not (title and title.strip()) or not semester or not branch or not year:
        raise ValidationError("Please provide all required fields: title, semester, branch, year")
    if pdf is None:
        raise ValidationError("Please upload a PDF file")
    if pdf.content_type not in PDF_CONTENT_TYPES:
        raise ValidationError("Only PDF files are allowed")
    payload = pdf.file.read()
    if not payload:
        raise ValidationError("Please upload a PDF file")
    if len(payload) > config.MAX_PDF_BYTES:
        raise ValidationError("PDF is too large")

    file_name = pdf.filename or "notes.pdf"
    stored = storage.upload(payload, PDF_FOLDER, file_name, pdf.content_type)
    # from here on every failure must take the stored file with it
    try:
        doc = PdfSchema(
            title=title.strip(),
            description=(description or "").strip(),
            semester=semester,
            branch=branch,
            year=year,
            file_url=stored.url,
            storage_id=stored.storage_id,
            file_name=file_name,
            file_size=len(payload),
            uploaded_by=uploader["id"],
        ).model_dump()
        res = db["pdf"].insert_one(doc)
    except SchemaError as e:
        destroy_quietly(storage, stored.storage_id)
        field = ".".join(str(p) for p in e.errors()[0]["loc"])
        raise ValidationError(f"Invalid value for {field}")
    except Exception:
        destroy_quietly(storage, stored.storage_id)
        raise

    doc["_id"] = res.inserted_id
    logger.info("User %s uploaded pdf %s (%d bytes)", uploader["id"], res.inserted_id, len(payload))
    return {"success": True, "message": "PDF uploaded successfully", "data": present(db, [doc])[0]}


@router.put("/{pdf_id}")
def update_pdf(
    pdf_id: str,
    payload: UpdatePdfRequest,
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    pdf = load_pdf(db, pdf_id)
    if not can_administer(current_user, pdf):
        raise Forbidden("Not authorized to update this PDF")
    changes = payload.model_dump(exclude_none=True)
    if "title" in changes:
        changes["title"] = changes["title"].strip()
        if not changes["title"]:
            raise ValidationError("Title cannot be empty")
    if "description" in changes:
        changes["description"] = changes["description"].strip()
    if changes:
        pdf = db["pdf"].find_one_and_update(
            {"_id": pdf["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
    return {"success": True, "message": "PDF updated successfully", "data": present(db, [pdf])[0]}


@router.delete("/{pdf_id}")
def delete_pdf(
    pdf_id: str,
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    pdf = load_pdf(db, pdf_id, active_only=False)
    if not can_administer(current_user, pdf):
        raise Forbidden("Not authorized to delete this PDF")
    destroy_quietly(storage, pdf.get("storage_id"))
    db["pdf"].delete_one({"_id": pdf["_id"]})
    db["rating"].delete_many({"pdf_id": str(pdf["_id"])})
    logger.info("User %s deleted pdf %s", current_user["id"], pdf_id)
    return {"success": True, "message": "PDF deleted successfully"}
