"""
Class catalog: lifecycle, embedded assignments and aggregate counters.

Counters are stored next to the lists they count (total_enrollment/students,
total_assignments/assignments) and every change to a pair is one
update_if_match call, so the two never diverge under concurrent writers.
"""

import logging
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.enums import ClassStatus, Collection
from app.core.exceptions import InvalidInputError, NotFoundError
from app.core.identifiers import normalize_email, now_iso, require_id
from app.db.store import DocumentStore, new_key

from .schemas import (
    AssignmentCreate,
    AssignmentResponse,
    ClassCreate,
    ClassResponse,
    ClassUpdate,
    EnrollmentResult,
    TeacherInfo,
)

logger = logging.getLogger(__name__)


def _assignment_to_response(class_id: str, a: Dict[str, Any]) -> AssignmentResponse:
    return AssignmentResponse(
        id=a["_id"],
        class_id=class_id,
        title=a["title"],
        description=a.get("description"),
        deadline=a["deadline"],
        submission_count=a.get("submission_count", 0),
        created_at=a["created_at"],
    )


def _class_to_response(doc: Dict[str, Any]) -> ClassResponse:
    class_id = doc["_id"]
    return ClassResponse(
        id=class_id,
        title=doc["title"],
        description=doc.get("description"),
        price=doc.get("price", "0"),
        image=doc.get("image"),
        teacher=TeacherInfo(**doc["teacher"]),
        status=doc["status"],
        total_enrollment=doc.get("total_enrollment", 0),
        students=list(doc.get("students", [])),
        total_assignments=doc.get("total_assignments", 0),
        assignments=[_assignment_to_response(class_id, a) for a in doc.get("assignments", [])],
        ratings=list(doc.get("ratings", [])),
        created_at=doc["created_at"],
    )


async def _get_class_doc_or_404(store: DocumentStore, class_id: str) -> Dict[str, Any]:
    doc = await store.get(Collection.CLASSES, class_id)
    if doc is None:
        raise NotFoundError("Class not found")
    return doc


# ----- Lifecycle -----
async def create_class(store: DocumentStore, payload: ClassCreate) -> ClassResponse:
    """New classes start pending, with zero counters and empty lists."""
    doc = {
        "title": payload.title.strip(),
        "description": payload.description,
        "price": str(payload.price),
        "image": payload.image,
        "teacher": {
            "name": payload.teacher.name,
            "email": normalize_email(payload.teacher.email),
            "image": payload.teacher.image,
        },
        "status": ClassStatus.PENDING.value,
        "total_enrollment": 0,
        "students": [],
        "total_assignments": 0,
        "assignments": [],
        "ratings": [],
        "created_at": now_iso(),
    }
    key = await store.insert(Collection.CLASSES, doc, key=new_key())
    logger.info("Class %s submitted by %s", key, doc["teacher"]["email"])
    return _class_to_response({**doc, "_id": key})


async def get_class(store: DocumentStore, class_id: str) -> ClassResponse:
    return _class_to_response(await _get_class_doc_or_404(store, require_id(class_id, "class_id")))


async def list_classes(store: DocumentStore, status: Optional[ClassStatus] = None) -> List[ClassResponse]:
    filter = {"status": status.value} if status is not None else None
    return [_class_to_response(d) for d in await store.find_many(Collection.CLASSES, filter)]


async def list_teacher_classes(store: DocumentStore, teacher_email: str) -> List[ClassResponse]:
    docs = await store.find_many(Collection.CLASSES, {"teacher.email": normalize_email(teacher_email)})
    return [_class_to_response(d) for d in docs]


async def list_student_classes(store: DocumentStore, email: str) -> List[ClassResponse]:
    """Classes whose student set holds the email."""
    docs = await store.find_many(Collection.CLASSES, {"students": normalize_email(email)})
    return [_class_to_response(d) for d in docs]


async def update_class(store: DocumentStore, class_id: str, payload: ClassUpdate) -> ClassResponse:
    class_id = require_id(class_id, "class_id")
    changes: Dict[str, Any] = {}
    if payload.title is not None:
        changes["title"] = payload.title.strip()
    if payload.description is not None:
        changes["description"] = payload.description
    if payload.price is not None:
        changes["price"] = str(payload.price)
    if payload.image is not None:
        changes["image"] = payload.image
    if not changes:
        return await get_class(store, class_id)
    result = await store.update_if_match(Collection.CLASSES, class_id, None, {"$set": changes})
    if not result.matched:
        raise NotFoundError("Class not found")
    return _class_to_response(result.document)


async def _set_status(store: DocumentStore, class_id: str, status: ClassStatus) -> ClassResponse:
    class_id = require_id(class_id, "class_id")
    result = await store.update_if_match(Collection.CLASSES, class_id, None, {"$set": {"status": status.value}})
    if not result.matched:
        raise NotFoundError("Class not found")
    logger.info("Class %s marked %s", class_id, status.value)
    return _class_to_response(result.document)


async def approve_class(store: DocumentStore, class_id: str) -> ClassResponse:
    """Unconditional; approving an approved class returns the same state."""
    return await _set_status(store, class_id, ClassStatus.APPROVED)


async def reject_class(store: DocumentStore, class_id: str) -> ClassResponse:
    return await _set_status(store, class_id, ClassStatus.REJECTED)


async def delete_class(store: DocumentStore, class_id: str) -> None:
    class_id = require_id(class_id, "class_id")
    if not await store.delete(Collection.CLASSES, class_id):
        raise NotFoundError("Class not found")
    logger.info("Class %s deleted", class_id)


async def popular_classes(store: DocumentStore, limit: Optional[int] = None) -> List[ClassResponse]:
    """Approved classes by enrollment, highest first. Ties keep insertion order."""
    limit = settings.popular_classes_limit if limit is None else limit
    if limit < 1:
        raise InvalidInputError("limit must be at least 1")
    docs = await store.find_many(
        Collection.CLASSES,
        {"status": ClassStatus.APPROVED.value},
        sort=[("total_enrollment", -1)],
        limit=limit,
    )
    return [_class_to_response(d) for d in docs]


# ----- Assignments -----
async def add_assignment(store: DocumentStore, class_id: str, payload: AssignmentCreate) -> AssignmentResponse:
    """Append an assignment and bump total_assignments in the same document write."""
    class_id = require_id(class_id, "class_id")
    assignment = {
        "_id": new_key(),
        "title": payload.title.strip(),
        "description": payload.description,
        "deadline": payload.deadline.isoformat(),
        "submission_count": 0,
        "created_at": now_iso(),
    }
    result = await store.update_if_match(
        Collection.CLASSES,
        class_id,
        None,
        {"$push": {"assignments": assignment}, "$inc": {"total_assignments": 1}},
    )
    if not result.matched:
        raise NotFoundError("Class not found")
    logger.info("Assignment %s added to class %s", assignment["_id"], class_id)
    return _assignment_to_response(class_id, assignment)


async def list_assignments(store: DocumentStore, class_id: str) -> List[AssignmentResponse]:
    class_id = require_id(class_id, "class_id")
    doc = await _get_class_doc_or_404(store, class_id)
    return [_assignment_to_response(class_id, a) for a in doc.get("assignments", [])]


async def record_submission(store: DocumentStore, class_id: str, assignment_id: str) -> AssignmentResponse:
    """Increment submission_count of the one assignment matching both ids."""
    class_id = require_id(class_id, "class_id")
    assignment_id = require_id(assignment_id, "assignment_id")
    result = await store.update_if_match(
        Collection.CLASSES,
        class_id,
        {"assignments._id": assignment_id},
        {"$inc": {"assignments.$.submission_count": 1}},
    )
    if not result.matched:
        await _get_class_doc_or_404(store, class_id)
        raise NotFoundError("Assignment not found")
    assignment = next(a for a in result.document["assignments"] if a["_id"] == assignment_id)
    return _assignment_to_response(class_id, assignment)


# ----- Enrollment and ratings -----
async def enroll_student(store: DocumentStore, class_id: str, email: str) -> EnrollmentResult:
    """
    Add the email to the student set and count it, once.

    The filter excludes classes that already hold the email, so replaying the
    same enrollment leaves total_enrollment and students untouched.
    """
    class_id = require_id(class_id, "class_id")
    email = normalize_email(email)
    result = await store.update_if_match(
        Collection.CLASSES,
        class_id,
        {"students": {"$ne": email}},
        {"$addToSet": {"students": email}, "$inc": {"total_enrollment": 1}},
    )
    if result.matched:
        doc = result.document
        newly_enrolled = True
    else:
        doc = await _get_class_doc_or_404(store, class_id)
        newly_enrolled = False
    return EnrollmentResult(
        class_id=class_id,
        email=email,
        newly_enrolled=newly_enrolled,
        total_enrollment=doc.get("total_enrollment", 0),
    )


async def push_rating(store: DocumentStore, class_id: str, rating: float) -> bool:
    """Append a feedback rating to the class projection. False if the class is gone."""
    result = await store.update_if_match(
        Collection.CLASSES,
        require_id(class_id, "class_id"),
        None,
        {"$push": {"ratings": rating}},
    )
    return result.matched
