"""User accounts, role changes and the teacher-request state machine."""

import logging
from typing import Any, Dict, List, Optional

from app.core.enums import Collection, TeacherRequestStatus, UpsertOutcome, UserRole, UserStatus
from app.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from app.core.identifiers import normalize_email, now_iso, require_id
from app.db.store import DocumentStore, new_key

from .schemas import (
    TeacherRequestCreate,
    TeacherRequestResponse,
    UpdateAck,
    UpsertLoginResponse,
    UserResponse,
    UserUpsert,
)

logger = logging.getLogger(__name__)


def _user_to_response(doc: Dict[str, Any]) -> UserResponse:
    return UserResponse(
        email=doc["_id"],
        name=doc.get("name"),
        photo=doc.get("photo"),
        role=doc.get("role", UserRole.STUDENT.value),
        status=doc.get("status", UserStatus.NONE.value),
        timestamp=doc.get("timestamp"),
        pending_request_id=doc.get("pending_request_id"),
    )


def _request_to_response(doc: Dict[str, Any]) -> TeacherRequestResponse:
    return TeacherRequestResponse(
        id=doc["_id"],
        email=doc["email"],
        name=doc.get("name"),
        title=doc["title"],
        category=doc.get("category"),
        experience=doc.get("experience"),
        status=doc["status"],
        submitted_at=doc["submitted_at"],
        resolved_at=doc.get("resolved_at"),
    )


# ----- Users -----
async def upsert_login(store: DocumentStore, payload: UserUpsert) -> UpsertLoginResponse:
    """
    Save a user on login.

    Preconditions, checked in order:
    1. No user for the email: create it from the payload with a timestamp.
    2. User exists and the payload carries status Requested: overwrite only
       the status (role-request submission). Role is never touched.
    3. Otherwise: return the stored user unchanged. A repeated login never
       overwrites an established role.
    """
    email = normalize_email(payload.email)
    existing = await store.get(Collection.USERS, email)

    if existing is None:
        doc = {
            "email": email,
            "name": payload.name,
            "photo": payload.photo,
            "role": payload.role.value,
            "status": payload.status.value,
            "timestamp": now_iso(),
        }
        try:
            await store.insert(Collection.USERS, doc, key=email)
        except ConflictError:
            # Concurrent first login won the insert; treat this one as a repeat login
            existing = await store.get(Collection.USERS, email)
            if existing is None:
                raise
        else:
            logger.info("Created user %s with role %s", email, doc["role"])
            return UpsertLoginResponse(outcome=UpsertOutcome.CREATED, user=_user_to_response({**doc, "_id": email}))

    if payload.status == UserStatus.REQUESTED:
        result = await store.update_if_match(
            Collection.USERS,
            email,
            None,
            {"$set": {"status": UserStatus.REQUESTED.value}},
        )
        if not result.matched:
            # Deleted between the read and the update
            raise NotFoundError("User not found")
        return UpsertLoginResponse(outcome=UpsertOutcome.STATUS_UPDATED, user=_user_to_response(result.document))

    return UpsertLoginResponse(outcome=UpsertOutcome.UNCHANGED, user=_user_to_response(existing))


async def get_user(store: DocumentStore, email: str) -> UserResponse:
    doc = await store.get(Collection.USERS, normalize_email(email))
    if doc is None:
        raise NotFoundError("User not found")
    return _user_to_response(doc)


async def list_users(store: DocumentStore) -> List[UserResponse]:
    return [_user_to_response(d) for d in await store.find_many(Collection.USERS)]


async def make_admin(store: DocumentStore, email: str) -> UpdateAck:
    """Set role to admin. No precondition: any stored email can be promoted."""
    email = normalize_email(email)
    result = await store.update_if_match(
        Collection.USERS,
        email,
        None,
        {"$set": {"role": UserRole.ADMIN.value, "timestamp": now_iso()}},
    )
    if result.matched:
        logger.info("Promoted %s to admin", email)
    return UpdateAck(matched=result.matched)


async def grant_teacher_role(store: DocumentStore, email: str) -> Optional[UserResponse]:
    """
    Make the user a teacher with status Accepted. Returns None if the user does not exist.

    Admins keep their role; only their status moves to Accepted. Either way
    the user's pending teacher request is cleared.
    """
    email = normalize_email(email)
    release = {"$unset": {"pending_request_id": ""}}
    result = await store.update_if_match(
        Collection.USERS,
        email,
        {"role": {"$ne": UserRole.ADMIN.value}},
        {"$set": {"role": UserRole.TEACHER.value, "status": UserStatus.ACCEPTED.value}, **release},
    )
    if not result.matched:
        result = await store.update_if_match(
            Collection.USERS,
            email,
            None,
            {"$set": {"status": UserStatus.ACCEPTED.value}, **release},
        )
    if not result.matched:
        return None
    return _user_to_response(result.document)


async def decline_teacher_role(store: DocumentStore, email: str) -> Optional[UserResponse]:
    """Status Rejected and the pending request cleared; role untouched. None if the user does not exist."""
    result = await store.update_if_match(
        Collection.USERS,
        normalize_email(email),
        None,
        {"$set": {"status": UserStatus.REJECTED.value}, "$unset": {"pending_request_id": ""}},
    )
    return _user_to_response(result.document) if result.matched else None


async def set_user_status(store: DocumentStore, email: str, status: UserStatus) -> Optional[UserResponse]:
    """Overwrite the request status of a user. Returns None if the user does not exist."""
    result = await store.update_if_match(
        Collection.USERS,
        normalize_email(email),
        None,
        {"$set": {"status": status.value}},
    )
    return _user_to_response(result.document) if result.matched else None


async def claim_teacher_request(store: DocumentStore, email: str, request_id: str) -> UserResponse:
    """
    Reserve the user's single pending teacher request and mark them Requested.

    One compare-and-mutate on the user, so of several concurrent submissions
    exactly one claims. Raises NotFoundError for an unknown user and
    ConflictError when a request is already pending.
    """
    email = normalize_email(email)
    result = await store.update_if_match(
        Collection.USERS,
        email,
        {"pending_request_id": {"$exists": False}},
        {"$set": {"status": UserStatus.REQUESTED.value, "pending_request_id": request_id}},
    )
    if result.matched:
        return _user_to_response(result.document)
    if await store.get(Collection.USERS, email) is None:
        raise NotFoundError("User not found")
    raise ConflictError("A teacher request is already pending for this user")


async def release_teacher_request(store: DocumentStore, email: str, request_id: str) -> bool:
    """Drop a claim made by claim_teacher_request, only if it is still `request_id`."""
    result = await store.update_if_match(
        Collection.USERS,
        normalize_email(email),
        {"pending_request_id": request_id},
        {"$unset": {"pending_request_id": ""}},
    )
    return result.matched


# ----- Teacher requests -----
async def create_teacher_request(
    store: DocumentStore,
    payload: TeacherRequestCreate,
    request_id: Optional[str] = None,
) -> TeacherRequestResponse:
    """Insert a new request in state pending. Does not touch the user."""
    doc = {
        "email": normalize_email(payload.email),
        "name": payload.name,
        "title": payload.title.strip(),
        "category": payload.category,
        "experience": payload.experience,
        "status": TeacherRequestStatus.PENDING.value,
        "submitted_at": now_iso(),
        "resolved_at": None,
    }
    key = await store.insert(Collection.TEACHER_REQUESTS, doc, key=request_id or new_key())
    return _request_to_response({**doc, "_id": key})


async def get_teacher_request(store: DocumentStore, request_id: str) -> TeacherRequestResponse:
    doc = await store.get(Collection.TEACHER_REQUESTS, require_id(request_id, "request_id"))
    if doc is None:
        raise NotFoundError("Teacher request not found")
    return _request_to_response(doc)


async def list_teacher_requests(
    store: DocumentStore,
    status: Optional[TeacherRequestStatus] = None,
    email: Optional[str] = None,
) -> List[TeacherRequestResponse]:
    filter: Dict[str, Any] = {}
    if status is not None:
        filter["status"] = status.value
    if email is not None:
        filter["email"] = normalize_email(email)
    docs = await store.find_many(Collection.TEACHER_REQUESTS, filter)
    return [_request_to_response(d) for d in docs]


async def transition_teacher_request(
    store: DocumentStore,
    request_id: str,
    target: TeacherRequestStatus,
) -> TeacherRequestResponse:
    """
    Move a pending request to accepted or rejected. Both states are terminal.

    Raises NotFoundError for an unknown id and ConflictError when the request
    was already resolved, so a second approval is never re-applied.
    """
    request_id = require_id(request_id, "request_id")
    if target == TeacherRequestStatus.PENDING:
        raise InvalidInputError("A teacher request cannot be moved back to pending")

    result = await store.update_if_match(
        Collection.TEACHER_REQUESTS,
        request_id,
        {"status": TeacherRequestStatus.PENDING.value},
        {"$set": {"status": target.value, "resolved_at": now_iso()}},
    )
    if result.matched:
        return _request_to_response(result.document)

    existing = await store.get(Collection.TEACHER_REQUESTS, request_id)
    if existing is None:
        raise NotFoundError("Teacher request not found")
    raise ConflictError(f"Teacher request is already {existing['status']}")
