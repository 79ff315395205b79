import logging
from datetime import timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import get_db, public_user, to_obj_id
from errors import Conflict, InvalidCredentials, NotFound, Unauthenticated, ValidationError
from schemas import User as UserSchema
from security import (
    create_access_token,
    decode_token,
    get_current_user,
    hash_password,
    verify_password,
    verify_password_policy,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_MESSAGE = "If an account exists with this email, you will receive password reset instructions."


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str
    confirm_password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str
    confirm_password: str


def token_payload(user: Dict[str, Any]) -> Dict[str, Any]:
    data = public_user(user)
    data["token"] = create_access_token({"sub": str(user["_id"])})
    return data


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    name = payload.name.strip()
    if not name:
        raise ValidationError("Please provide all fields")
    verify_password_policy(payload.password, payload.confirm_password)
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise Conflict("User already exists with this email")
    # role is never taken from the request
    user_doc = UserSchema(
        name=name,
        email=email,
        password_hash=hash_password(payload.password),
        role="student",
    ).model_dump()
    try:
        res = db["user"].insert_one(user_doc)
    except DuplicateKeyError:
        raise Conflict("User already exists with this email")
    user_doc["_id"] = res.inserted_id
    logger.info("Registered user %s", res.inserted_id)
    return {"success": True, "message": "User registered successfully", "data": token_payload(user_doc)}


@router.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise InvalidCredentials()
    return {"success": True, "message": "Login successful", "data": token_payload(user)}


@router.get("/me")
def me(current_user=Depends(get_current_user)):
    data = {k: current_user.get(k) for k in ("id", "name", "email", "role", "profile_image", "created_at")}
    return {"success": True, "data": data}


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    body: Dict[str, Any] = {"success": True, "message": RESET_MESSAGE}
    if not user:
        return body
    reset_token = create_access_token(
        {"sub": str(user["_id"]), "purpose": "reset"},
        expires_delta=timedelta(minutes=config.RESET_TOKEN_EXPIRE_MINUTES),
    )
    # TODO: mail the reset link once a mail transport is configured
    logger.info("Password reset requested for user %s", user["_id"])
    if config.EXPOSE_RESET_TOKEN:
        body["dev_token"] = reset_token
    return body


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Database = Depends(get_db)):
    verify_password_policy(payload.new_password, payload.confirm_password)
    try:
        user_id = decode_token(payload.token, purpose="reset")
    except Unauthenticated:
        raise ValidationError("Invalid or expired reset token")
    res = db["user"].update_one(
        {"_id": to_obj_id(user_id)},
        {"$set": {"password_hash": hash_password(payload.new_password)}},
    )
    if res.matched_count == 0:
        raise NotFound("User not found")
    logger.info("Password reset for user %s", user_id)
    return {"success": True, "message": "Password reset successful! You can now login with your new password."}
