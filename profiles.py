import logging

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from pymongo.database import Database

import config
from database import get_db, to_obj_id
from errors import NotFound, ValidationError
from security import get_current_user
from storage import BlobStorage, destroy_quietly, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])

IMAGE_FOLDER = "catchup-profile-images"


class UpdateNameRequest(BaseModel):
    name: str


def load_self(db: Database, current_user: dict) -> dict:
    user = db["user"].find_one({"_id": to_obj_id(current_user["id"])})
    if not user:
        raise NotFound("User not found")
    return user


@router.post("/upload-image")
def upload_image(
    profile_image: UploadFile = File(None),
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    if profile_image is None:
        raise ValidationError("Please upload an image file")
    if not (profile_image.content_type or "").startswith("image/"):
        raise ValidationError("Only image files are allowed!")
    payload = profile_image.file.read()
    if not payload:
        raise ValidationError("Please upload an image file")
    if len(payload) > config.MAX_IMAGE_BYTES:
        raise ValidationError("Image is too large")
    user = load_self(db, current_user)

    stored = storage.upload(payload, IMAGE_FOLDER, profile_image.filename or "image", profile_image.content_type)
    try:
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"profile_image": stored.url, "profile_image_id": stored.storage_id}},
        )
    except Exception:
        destroy_quietly(storage, stored.storage_id)
        raise

    destroy_quietly(storage, user.get("profile_image_id"))
    return {
        "success": True,
        "message": "Profile image uploaded successfully",
        "data": {"profile_image": stored.url},
    }


@router.delete("/delete-image")
def delete_image(
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    user = load_self(db, current_user)
    if not user.get("profile_image_id"):
        raise ValidationError("No profile image to delete")
    destroy_quietly(storage, user["profile_image_id"])
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"profile_image": None, "profile_image_id": None}})
    return {"success": True, "message": "Profile image deleted successfully"}


@router.put("/update-name")
def update_name(payload: UpdateNameRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    name = payload.name.strip()
    if not name:
        raise ValidationError("Please provide a name")
    user = load_self(db, current_user)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"name": name}})
    return {"success": True, "message": "Name updated successfully", "data": {"name": name}}
