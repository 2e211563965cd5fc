from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from app.core.enums import ClassStatus


class TeacherInfo(BaseModel):
    """Denormalized teacher reference stored on the class for per-teacher listing."""

    name: Optional[str] = None
    email: EmailStr
    image: Optional[str] = None


class ClassCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Decimal = Field(Decimal("0"), ge=0)
    image: Optional[str] = None
    teacher: TeacherInfo


class ClassUpdate(BaseModel):
    """Descriptive fields only; status, counters and lists are owned by their own operations."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    image: Optional[str] = None


class AssignmentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    deadline: datetime


class AssignmentResponse(BaseModel):
    id: str
    class_id: str
    title: str
    description: Optional[str] = None
    deadline: datetime
    submission_count: int
    created_at: datetime


class ClassResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    price: Decimal
    image: Optional[str] = None
    teacher: TeacherInfo
    status: ClassStatus
    total_enrollment: int
    students: List[str]
    total_assignments: int
    assignments: List[AssignmentResponse]
    ratings: List[float]
    created_at: datetime


class EnrollmentResult(BaseModel):
    class_id: str
    email: str
    newly_enrolled: bool  # False when the email was already in the student set
    total_enrollment: int
