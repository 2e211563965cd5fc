from typing import List

from pydantic import BaseModel

from app.users.schemas import TeacherRequestResponse, UserResponse


class TeacherRequestDecision(BaseModel):
    """Resolved request together with the user state it produced."""

    request: TeacherRequestResponse
    user: UserResponse


class ReconciliationReport(BaseModel):
    payments_checked: int
    enrollments_applied: int  # Payments whose enrollment was missing and has now been applied
    already_consistent: int
    orphaned_payment_ids: List[str]  # Payments whose class no longer exists
