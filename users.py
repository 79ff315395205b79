import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database

from database import get_db, public_user, sanitize, to_obj_id
from errors import NotFound, SelfModification
from schemas import Role
from security import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class ChangeRoleRequest(BaseModel):
    role: Role


def load_other_user(db: Database, acting_user: dict, target_id: str, action: str) -> dict:
    if target_id == acting_user["id"]:
        raise SelfModification(f"You cannot {action}")
    user = db["user"].find_one({"_id": to_obj_id(target_id)})
    if not user:
        raise NotFound("User not found")
    return user


@router.get("")
def list_users(superadmin=Depends(require_role("superadmin")), db: Database = Depends(get_db)):
    users = [sanitize(u) for u in db["user"].find().sort([("created_at", DESCENDING)])]
    return {"success": True, "count": len(users), "data": users}


@router.put("/{user_id}/role")
def change_role(
    user_id: str,
    payload: ChangeRoleRequest,
    superadmin=Depends(require_role("superadmin")),
    db: Database = Depends(get_db),
):
    user = load_other_user(db, superadmin, user_id, "change your own role")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": payload.role}})
    user["role"] = payload.role
    logger.info("User %s changed role of %s to %s", superadmin["id"], user_id, payload.role)
    return {"success": True, "message": f"User role updated to {payload.role}", "data": public_user(user)}


@router.delete("/{user_id}")
def delete_user(user_id: str, superadmin=Depends(require_role("superadmin")), db: Database = Depends(get_db)):
    user = load_other_user(db, superadmin, user_id, "delete your own account")
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("User %s deleted user %s", superadmin["id"], user_id)
    return {"success": True, "message": "User deleted successfully"}
