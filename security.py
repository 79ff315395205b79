from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import get_db, sanitize, to_obj_id
from errors import Forbidden, Unauthenticated, ValidationError
from schemas import ADMIN_ROLES

MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def verify_password_policy(password: str, confirm_password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if password != confirm_password:
        raise ValidationError("Passwords do not match")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_token(token: str, purpose: str = "access") -> str:
    """Return the user id encoded in `token`, or raise Unauthenticated."""
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise Unauthenticated()
    user_id = payload.get("sub")
    if user_id is None or payload.get("purpose", "access") != purpose:
        raise Unauthenticated()
    return user_id


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Dict:
    if not token:
        raise Unauthenticated("Not authorized, no token")
    user_id = decode_token(token)
    try:
        user = db["user"].find_one({"_id": to_obj_id(user_id)})
    except ValidationError:
        raise Unauthenticated()
    if not user:
        raise Unauthenticated()
    return sanitize(user)


def authorize(user: Optional[Dict], roles: Iterable[str]) -> Dict:
    """The single role gate consulted by every restricted operation."""
    if not user:
        raise Unauthenticated("Not authorized, no token")
    if user.get("role") not in roles:
        raise Forbidden(f"Access denied. Requires role: {', '.join(roles)}")
    return user


def require_role(*roles: str):
    async def role_dep(current_user=Depends(get_current_user)):
        return authorize(current_user, roles)
    return role_dep


def can_administer(user: Dict, doc: Dict) -> bool:
    """Uploader or anyone in the admin tier may edit/delete a document."""
    return doc.get("uploaded_by") == user.get("id") or user.get("role") in ADMIN_ROLES
