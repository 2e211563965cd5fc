import os

# Settings are read at import time; tests build their own engines below
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import AsyncGenerator

import pytest

from app.classes import services as classes_service
from app.classes.schemas import ClassCreate, TeacherInfo
from app.core.models import Document  # noqa: F401
from app.db.session import Base, build_engine, build_sessionmaker
from app.db.store import DocumentStore
from app.users import services as users_service
from app.users.schemas import UserUpsert


@pytest.fixture()
async def store(tmp_path) -> AsyncGenerator[DocumentStore, None]:
    """Document store over a fresh SQLite file per test (file-backed so concurrent sessions share it)."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'edumanage-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield DocumentStore(build_sessionmaker(engine))

    await engine.dispose()


@pytest.fixture()
def make_class(store: DocumentStore):
    """Factory creating a class and returning its id."""

    async def _make(
        title: str = "Intro to Python",
        teacher_email: str = "teacher@x.com",
        approved: bool = False,
    ) -> str:
        created = await classes_service.create_class(
            store,
            ClassCreate(title=title, description="Basics", price="25.00", teacher=TeacherInfo(name="Tee", email=teacher_email)),
        )
        if approved:
            await classes_service.approve_class(store, created.id)
        return created.id

    return _make


@pytest.fixture()
def make_user(store: DocumentStore):
    """Factory logging a user in for the first time."""

    async def _make(email: str, role: str = "student", name: str = "Test User"):
        response = await users_service.upsert_login(store, UserUpsert(email=email, name=name, role=role))
        return response.user

    return _make
