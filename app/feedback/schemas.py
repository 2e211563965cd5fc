from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class FeedbackCreate(BaseModel):
    class_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    rating: float = Field(..., ge=1, le=5)
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    image: Optional[str] = None


class FeedbackResponse(BaseModel):
    id: str
    class_id: str
    description: str
    rating: float
    name: Optional[str] = None
    email: Optional[str] = None
    image: Optional[str] = None
    created_at: datetime
