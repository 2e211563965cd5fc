import pytest

from app.core.enums import Collection, UpsertOutcome, UserRole, UserStatus
from app.core.exceptions import InvalidInputError, NotFoundError
from app.db.store import DocumentStore
from app.users import services as users_service
from app.users.schemas import UserUpsert


@pytest.mark.asyncio
async def test_first_login_creates_user(store: DocumentStore) -> None:
    response = await users_service.upsert_login(store, UserUpsert(email="a@x.com", name="Ana"))

    assert response.outcome == UpsertOutcome.CREATED
    assert response.user.email == "a@x.com"
    assert response.user.role == UserRole.STUDENT
    assert response.user.status == UserStatus.NONE
    assert response.user.timestamp is not None

    stored = await store.get(Collection.USERS, "a@x.com")
    assert stored["name"] == "Ana"


@pytest.mark.asyncio
async def test_repeat_login_returns_existing_unchanged(store: DocumentStore) -> None:
    await users_service.upsert_login(store, UserUpsert(email="a@x.com", name="Ana"))
    response = await users_service.upsert_login(
        store, UserUpsert(email="a@x.com", name="Someone Else", role=UserRole.ADMIN)
    )

    assert response.outcome == UpsertOutcome.UNCHANGED
    assert response.user.role == UserRole.STUDENT
    assert response.user.name == "Ana"


@pytest.mark.asyncio
async def test_login_never_overwrites_accepted_role(store: DocumentStore) -> None:
    await store.insert(
        Collection.USERS,
        {"email": "t@x.com", "role": "teacher", "status": "Accepted", "timestamp": "2026-01-01T00:00:00+00:00"},
        key="t@x.com",
    )

    for role in (UserRole.STUDENT, UserRole.ADMIN):
        for status in (UserStatus.NONE, UserStatus.REJECTED, UserStatus.REQUESTED):
            await users_service.upsert_login(store, UserUpsert(email="t@x.com", role=role, status=status))
            assert (await store.get(Collection.USERS, "t@x.com"))["role"] == "teacher"


@pytest.mark.asyncio
async def test_requested_status_updates_only_status(store: DocumentStore) -> None:
    await users_service.upsert_login(store, UserUpsert(email="a@x.com"))
    response = await users_service.upsert_login(
        store, UserUpsert(email="a@x.com", role=UserRole.TEACHER, status=UserStatus.REQUESTED)
    )

    assert response.outcome == UpsertOutcome.STATUS_UPDATED
    assert response.user.status == UserStatus.REQUESTED
    assert response.user.role == UserRole.STUDENT


@pytest.mark.asyncio
async def test_email_is_case_insensitive(store: DocumentStore) -> None:
    await users_service.upsert_login(store, UserUpsert(email="Ana@X.com"))
    response = await users_service.upsert_login(store, UserUpsert(email="ana@x.com"))

    assert response.outcome == UpsertOutcome.UNCHANGED
    assert len(await users_service.list_users(store)) == 1
    assert (await users_service.get_user(store, "ANA@x.com")).email == "ana@x.com"


@pytest.mark.asyncio
async def test_get_user_not_found(store: DocumentStore) -> None:
    with pytest.raises(NotFoundError):
        await users_service.get_user(store, "ghost@x.com")
    with pytest.raises(InvalidInputError):
        await users_service.get_user(store, "   ")


@pytest.mark.asyncio
async def test_make_admin(store: DocumentStore, make_user) -> None:
    await make_user("a@x.com")

    ack = await users_service.make_admin(store, "a@x.com")
    assert ack.matched
    assert (await users_service.get_user(store, "a@x.com")).role == UserRole.ADMIN

    missing = await users_service.make_admin(store, "ghost@x.com")
    assert not missing.matched
    assert await store.get(Collection.USERS, "ghost@x.com") is None


@pytest.mark.asyncio
async def test_grant_teacher_role_does_not_downgrade_admin(store: DocumentStore, make_user) -> None:
    await make_user("boss@x.com", role="admin")

    user = await users_service.grant_teacher_role(store, "boss@x.com")

    assert user.role == UserRole.ADMIN
    assert user.status == UserStatus.ACCEPTED
    assert await users_service.grant_teacher_role(store, "ghost@x.com") is None


@pytest.mark.asyncio
async def test_list_users_in_signup_order(store: DocumentStore, make_user) -> None:
    for email in ("c@x.com", "a@x.com", "b@x.com"):
        await make_user(email)
    assert [u.email for u in await users_service.list_users(store)] == ["c@x.com", "a@x.com", "b@x.com"]


@pytest.mark.asyncio
async def test_requested_status_for_user_deleted_meanwhile(store: DocumentStore, make_user, monkeypatch) -> None:
    await make_user("a@x.com")
    get = store.get

    async def _get_then_delete(collection, key):
        doc = await get(collection, key)
        await store.delete(collection, key)
        return doc

    monkeypatch.setattr(store, "get", _get_then_delete)

    with pytest.raises(NotFoundError):
        await users_service.upsert_login(store, UserUpsert(email="a@x.com", status=UserStatus.REQUESTED))


@pytest.mark.asyncio
async def test_set_user_status(store: DocumentStore, make_user) -> None:
    await make_user("a@x.com")

    user = await users_service.set_user_status(store, "a@x.com", UserStatus.REJECTED)

    assert user.status == UserStatus.REJECTED
    assert user.role == UserRole.STUDENT
    assert await users_service.set_user_status(store, "ghost@x.com", UserStatus.REJECTED) is None
