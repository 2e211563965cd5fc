"""
Multi-document operations without cross-document transactions.

Each operation writes its documents in a fixed order: the record that is the
source of truth first (payment, request decision, feedback), the derived
state second (class counters and sets, user role, rating projection). The
derived step is idempotent, so a failure between the two leaves a state that
replay_enrollment / reconcile_enrollments can repair. Partial completion is
raised as InconsistencyError and logged, never swallowed.

Submitting a teacher request is the exception: the user is claimed before the
request is inserted, because that claim is what keeps one pending request per
email when submissions race.
"""

import logging
from typing import Any, Optional

from app.classes import services as classes_service
from app.classes.schemas import EnrollmentResult
from app.core.enums import TeacherRequestStatus
from app.core.exceptions import InconsistencyError, NotFoundError, ServiceError
from app.core.identifiers import normalize_email, require_id
from app.db.store import DocumentStore, new_key
from app.enrollment import services as enrollment_service
from app.enrollment.schemas import PaymentCreate, PaymentResponse
from app.feedback import services as feedback_service
from app.feedback.schemas import FeedbackCreate, FeedbackResponse
from app.users import services as users_service
from app.users.schemas import TeacherRequestCreate, TeacherRequestResponse

from .schemas import ReconciliationReport, TeacherRequestDecision

logger = logging.getLogger(__name__)


def _inconsistency(message: str, **details: Any) -> InconsistencyError:
    logger.error("Inconsistent state: %s %s", message, details)
    return InconsistencyError(message, details)


# ----- Enrollment -----
async def process_payment(store: DocumentStore, payload: PaymentCreate) -> PaymentResponse:
    """
    Record a payment and enroll the payer.

    1. The class must exist; otherwise nothing is written.
    2. The payment is inserted (the source of truth for the enrollment).
    3. The payer is added to the student set and counted, in one update.
    Returns the payment, not the class; callers re-read the class for counts.
    """
    class_id = require_id(payload.class_id, "class_id")
    normalize_email(payload.email)
    await classes_service.get_class(store, class_id)

    payment, created = await enrollment_service.record_payment(store, payload)
    try:
        enrollment = await classes_service.enroll_student(store, payment.class_id, payment.email)
    except NotFoundError:
        raise _inconsistency(
            "Payment recorded but its class no longer exists",
            payment_id=payment.id,
            class_id=payment.class_id,
            email=payment.email,
        )
    if created and not enrollment.newly_enrolled:
        logger.info("Payer %s was already enrolled in class %s", payment.email, payment.class_id)
    return payment


async def replay_enrollment(store: DocumentStore, payment_id: str) -> EnrollmentResult:
    """Re-apply a payment's enrollment step. Safe to repeat any number of times."""
    payment = await enrollment_service.get_payment(store, payment_id)
    return await classes_service.enroll_student(store, payment.class_id, payment.email)


async def reconcile_enrollments(store: DocumentStore, class_id: Optional[str] = None) -> ReconciliationReport:
    """Replay every payment (optionally for one class) and report what had to be repaired."""
    payments = await enrollment_service.list_payments(store, class_id=class_id)
    applied = 0
    consistent = 0
    orphaned = []
    for payment in payments:
        try:
            result = await classes_service.enroll_student(store, payment.class_id, payment.email)
        except NotFoundError:
            logger.warning("Payment %s references missing class %s", payment.id, payment.class_id)
            orphaned.append(payment.id)
            continue
        if result.newly_enrolled:
            logger.info("Repaired enrollment of %s in class %s from payment %s", payment.email, payment.class_id, payment.id)
            applied += 1
        else:
            consistent += 1
    return ReconciliationReport(
        payments_checked=len(payments),
        enrollments_applied=applied,
        already_consistent=consistent,
        orphaned_payment_ids=orphaned,
    )


# ----- Teacher requests -----
async def submit_teacher_request(store: DocumentStore, payload: TeacherRequestCreate) -> TeacherRequestResponse:
    """
    Open a pending request for an existing user and mark the user Requested.

    The user is claimed first (one conditional update), so concurrent
    submissions for one email yield a single pending request and conflicts
    for the rest. If the request insert then fails the claim is dropped.
    """
    email = normalize_email(payload.email)
    request_id = new_key()
    await users_service.claim_teacher_request(store, email, request_id)
    try:
        request = await users_service.create_teacher_request(store, payload, request_id=request_id)
    except ServiceError:
        await users_service.release_teacher_request(store, email, request_id)
        raise
    logger.info("Teacher request %s submitted by %s", request.id, email)
    return request


async def approve_teacher_request(store: DocumentStore, request_id: str) -> TeacherRequestDecision:
    """
    pending -> accepted, then grant the teacher role.

    A request that is not pending raises ConflictError and the user is not
    touched again. If the user is missing after the request was accepted the
    acceptance stays recorded and InconsistencyError is raised.
    """
    request = await users_service.transition_teacher_request(store, request_id, TeacherRequestStatus.ACCEPTED)
    user = await users_service.grant_teacher_role(store, request.email)
    if user is None:
        raise _inconsistency(
            "Teacher request accepted but no user exists for its email",
            request_id=request.id,
            email=request.email,
        )
    logger.info("Teacher request %s accepted; %s is now %s", request.id, user.email, user.role.value)
    return TeacherRequestDecision(request=request, user=user)


async def reject_teacher_request(store: DocumentStore, request_id: str) -> TeacherRequestDecision:
    """pending -> rejected, then mark the user Rejected. Role is left as is."""
    request = await users_service.transition_teacher_request(store, request_id, TeacherRequestStatus.REJECTED)
    user = await users_service.decline_teacher_role(store, request.email)
    if user is None:
        raise _inconsistency(
            "Teacher request rejected but no user exists for its email",
            request_id=request.id,
            email=request.email,
        )
    logger.info("Teacher request %s rejected", request.id)
    return TeacherRequestDecision(request=request, user=user)


# ----- Feedback -----
async def submit_feedback(store: DocumentStore, payload: FeedbackCreate) -> FeedbackResponse:
    """Store feedback, then push its rating onto the class projection."""
    class_id = require_id(payload.class_id, "class_id")
    await classes_service.get_class(store, class_id)

    feedback = await feedback_service.insert_feedback(store, payload)
    if not await classes_service.push_rating(store, class_id, feedback.rating):
        raise _inconsistency("Feedback recorded but its class no longer exists", feedback_id=feedback.id, class_id=class_id)
    return feedback
