from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from app.core.enums import TeacherRequestStatus, UpsertOutcome, UserRole, UserStatus


class UserUpsert(BaseModel):
    """Login payload from the client. role/status are only honoured as described in upsert_login."""

    email: EmailStr
    name: Optional[str] = None
    photo: Optional[str] = None  # Profile photo URL
    role: UserRole = UserRole.STUDENT
    status: UserStatus = UserStatus.NONE


class UserResponse(BaseModel):
    email: str
    name: Optional[str] = None
    photo: Optional[str] = None
    role: UserRole
    status: UserStatus
    timestamp: Optional[datetime] = None
    pending_request_id: Optional[str] = None  # Teacher request awaiting a decision


class UpsertLoginResponse(BaseModel):
    outcome: UpsertOutcome
    user: UserResponse


class UpdateAck(BaseModel):
    """Store acknowledgement for writes that have no precondition."""

    matched: bool


class TeacherRequestCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    category: Optional[str] = None
    experience: Optional[str] = None  # beginner | mid-level | experienced


class TeacherRequestResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    title: str
    category: Optional[str] = None
    experience: Optional[str] = None
    status: TeacherRequestStatus
    submitted_at: datetime
    resolved_at: Optional[datetime] = None
