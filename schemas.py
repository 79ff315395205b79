"""
Database Schemas for the CatchUp notes platform

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: students, admins and superadmins
- pdf: uploaded lecture notes with engagement counters and curation flags
- rating: one rating per (pdf, user) pair
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from database import utcnow

Role = Literal["student", "admin", "superadmin"]
Semester = Literal["1", "2", "3", "4", "5", "6", "7", "8"]
Branch = Literal["CSE", "ECE", "EEE", "MECH", "CIVIL", "IT", "OTHER"]
Year = Literal["1", "2", "3", "4"]

ROLES = ("student", "admin", "superadmin")
ADMIN_ROLES = ("admin", "superadmin")
SEMESTERS = ("1", "2", "3", "4", "5", "6", "7", "8")
BRANCHES = ("CSE", "ECE", "EEE", "MECH", "CIVIL", "IT", "OTHER")
YEARS = ("1", "2", "3", "4")

MAX_REVIEW_LENGTH = 500


class User(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field("student")
    profile_image: Optional[str] = None
    profile_image_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Pdf(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    semester: Semester
    branch: Branch
    year: Year
    file_url: str
    storage_id: str
    file_name: str
    file_size: int = Field(..., ge=0)
    uploaded_by: str = Field(..., description="Reference to user _id")
    views: int = 0
    downloads: int = 0
    average_rating: float = Field(0, ge=0, le=5)
    total_ratings: int = 0
    is_featured: bool = False
    is_verified: bool = False
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class Rating(BaseModel):
    pdf_id: str = Field(...)
    user_id: str = Field(...)
    rating: int = Field(..., ge=1, le=5)
    review: str = Field("", max_length=MAX_REVIEW_LENGTH)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
