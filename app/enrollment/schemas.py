from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class PaymentCreate(BaseModel):
    email: EmailStr
    class_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)
    transaction_id: Optional[str] = None  # Provider reference; opaque here
    # Idempotency key: a retry with the same payment_id never records a second payment
    payment_id: Optional[str] = Field(None, min_length=1, max_length=255)


class PaymentResponse(BaseModel):
    id: str
    email: str
    class_id: str
    amount: Decimal
    transaction_id: Optional[str] = None
    created_at: datetime
    replayed: bool = False  # True when the payment_id was already on record
