import asyncio
import logging

import pytest

from app.coordinator import services as coordinator
from app.core.enums import Collection, TeacherRequestStatus, UserRole, UserStatus
from app.core.exceptions import (
    ConflictError,
    InconsistencyError,
    InvalidInputError,
    NotFoundError,
    StoreUnavailableError,
)
from app.db.store import DocumentStore
from app.users import services as users_service
from app.users.schemas import TeacherRequestCreate


def _request(email: str = "t@x.com") -> TeacherRequestCreate:
    return TeacherRequestCreate(email=email, name="Tee", title="Python mentor", category="Programming", experience="experienced")


@pytest.mark.asyncio
async def test_submit_approve_and_approve_again(store: DocumentStore, make_user) -> None:
    await make_user("t@x.com")

    request = await coordinator.submit_teacher_request(store, _request())
    assert request.status == TeacherRequestStatus.PENDING
    assert (await users_service.get_user(store, "t@x.com")).status == UserStatus.REQUESTED

    decision = await coordinator.approve_teacher_request(store, request.id)
    assert decision.request.status == TeacherRequestStatus.ACCEPTED
    assert decision.request.resolved_at is not None
    assert decision.user.role == UserRole.TEACHER
    assert decision.user.status == UserStatus.ACCEPTED

    user_doc_before = await store.get(Collection.USERS, "t@x.com")
    with pytest.raises(ConflictError):
        await coordinator.approve_teacher_request(store, request.id)

    assert await store.get(Collection.USERS, "t@x.com") == user_doc_before
    assert (await users_service.get_teacher_request(store, request.id)).status == TeacherRequestStatus.ACCEPTED


@pytest.mark.asyncio
async def test_concurrent_approvals_apply_once(store: DocumentStore, make_user) -> None:
    await make_user("t@x.com")
    request = await coordinator.submit_teacher_request(store, _request())

    results = await asyncio.gather(
        coordinator.approve_teacher_request(store, request.id),
        coordinator.approve_teacher_request(store, request.id),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    decisions = [r for r in results if not isinstance(r, Exception)]
    assert len(conflicts) == 1
    assert len(decisions) == 1
    assert decisions[0].user.role == UserRole.TEACHER


@pytest.mark.asyncio
async def test_reject_then_approve_is_conflict(store: DocumentStore, make_user) -> None:
    await make_user("t@x.com")
    request = await coordinator.submit_teacher_request(store, _request())

    decision = await coordinator.reject_teacher_request(store, request.id)
    assert decision.request.status == TeacherRequestStatus.REJECTED
    assert decision.user.status == UserStatus.REJECTED
    assert decision.user.role == UserRole.STUDENT

    with pytest.raises(ConflictError):
        await coordinator.approve_teacher_request(store, request.id)
    assert (await users_service.get_user(store, "t@x.com")).role == UserRole.STUDENT


@pytest.mark.asyncio
async def test_unknown_request_is_not_found(store: DocumentStore) -> None:
    with pytest.raises(NotFoundError):
        await coordinator.approve_teacher_request(store, "does-not-exist")
    with pytest.raises(NotFoundError):
        await coordinator.reject_teacher_request(store, "does-not-exist")
    with pytest.raises(InvalidInputError):
        await coordinator.approve_teacher_request(store, "")


@pytest.mark.asyncio
async def test_request_cannot_return_to_pending(store: DocumentStore) -> None:
    request = await users_service.create_teacher_request(store, _request())
    with pytest.raises(InvalidInputError):
        await users_service.transition_teacher_request(store, request.id, TeacherRequestStatus.PENDING)


@pytest.mark.asyncio
async def test_submit_requires_existing_user(store: DocumentStore) -> None:
    with pytest.raises(NotFoundError):
        await coordinator.submit_teacher_request(store, _request("ghost@x.com"))
    assert await users_service.list_teacher_requests(store) == []


@pytest.mark.asyncio
async def test_second_pending_request_is_conflict(store: DocumentStore, make_user) -> None:
    await make_user("t@x.com")
    await coordinator.submit_teacher_request(store, _request())

    with pytest.raises(ConflictError):
        await coordinator.submit_teacher_request(store, _request())
    assert len(await users_service.list_teacher_requests(store, status=TeacherRequestStatus.PENDING)) == 1


@pytest.mark.asyncio
async def test_approval_without_user_is_reported_inconsistency(store: DocumentStore, caplog) -> None:
    # Request exists but the user it references does not
    request = await users_service.create_teacher_request(store, _request("orphan@x.com"))

    with caplog.at_level(logging.ERROR, logger="app.coordinator.services"):
        with pytest.raises(InconsistencyError) as exc_info:
            await coordinator.approve_teacher_request(store, request.id)

    assert exc_info.value.details == {"request_id": request.id, "email": "orphan@x.com"}
    assert exc_info.value.status_code == 500
    assert any("Inconsistent state" in r.getMessage() for r in caplog.records)
    # The acceptance stays recorded for the repair path to find
    assert (await users_service.get_teacher_request(store, request.id)).status == TeacherRequestStatus.ACCEPTED
    assert await store.get(Collection.USERS, "orphan@x.com") is None


@pytest.mark.asyncio
async def test_concurrent_submissions_leave_one_pending(store: DocumentStore, make_user) -> None:
    await make_user("t@x.com")

    results = await asyncio.gather(
        *[coordinator.submit_teacher_request(store, _request()) for _ in range(5)],
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, Exception)]
    assert len(created) == 1
    assert all(isinstance(r, ConflictError) for r in results if isinstance(r, Exception))
    pending = await users_service.list_teacher_requests(store, status=TeacherRequestStatus.PENDING, email="t@x.com")
    assert [r.id for r in pending] == [created[0].id]
    assert (await users_service.get_user(store, "t@x.com")).pending_request_id == created[0].id


@pytest.mark.asyncio
async def test_reject_updates_stored_user(store: DocumentStore, make_user) -> None:
    await make_user("t@x.com")
    request = await coordinator.submit_teacher_request(store, _request())

    await coordinator.reject_teacher_request(store, request.id)

    user = await users_service.get_user(store, "t@x.com")
    assert user.status == UserStatus.REJECTED
    assert user.role == UserRole.STUDENT
    assert user.pending_request_id is None


@pytest.mark.asyncio
async def test_resolved_request_allows_a_new_submission(store: DocumentStore, make_user) -> None:
    await make_user("t@x.com")
    first = await coordinator.submit_teacher_request(store, _request())
    await coordinator.reject_teacher_request(store, first.id)

    second = await coordinator.submit_teacher_request(store, _request())

    assert second.id != first.id
    assert (await users_service.get_user(store, "t@x.com")).status == UserStatus.REQUESTED
    decision = await coordinator.approve_teacher_request(store, second.id)
    assert decision.user.pending_request_id is None


@pytest.mark.asyncio
async def test_failed_request_insert_releases_claim(store: DocumentStore, make_user, monkeypatch) -> None:
    await make_user("t@x.com")

    async def _insert_fails(store, payload, request_id=None):
        raise StoreUnavailableError()

    create_teacher_request = users_service.create_teacher_request
    monkeypatch.setattr(users_service, "create_teacher_request", _insert_fails)
    with pytest.raises(StoreUnavailableError):
        await coordinator.submit_teacher_request(store, _request())
    assert (await users_service.get_user(store, "t@x.com")).pending_request_id is None

    monkeypatch.setattr(users_service, "create_teacher_request", create_teacher_request)
    request = await coordinator.submit_teacher_request(store, _request())
    assert request.status == TeacherRequestStatus.PENDING
