"""
Document store adapter: keyed JSON documents in logical collections.

Only single-document writes are atomic. `update_if_match` is the
compare-and-mutate primitive: the row is locked (SELECT ... FOR UPDATE on
PostgreSQL, BEGIN IMMEDIATE on SQLite), the filter is evaluated and the update
applied against it, and the new body is written in the same transaction.
Concurrent writers to one document queue on the lock instead of racing, so
increments and set additions are never lost and a precondition that stopped
holding is reported as unmatched.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Union

from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.enums import Collection
from app.core.exceptions import ConflictError, StoreUnavailableError
from app.core.models import Document

from .query import Filter, Update, apply_update, matches
from .sql_filters import SortSpec, filter_clauses, sort_clauses

logger = logging.getLogger(__name__)

KEY_FIELD = "_id"

CollectionName = Union[Collection, str]


@dataclass
class MatchResult:
    """Outcome of a conditional update. `document` is the post-update state when matched."""

    matched: bool
    document: Optional[Dict[str, Any]] = None


def new_key() -> str:
    return uuid.uuid4().hex


def _name(collection: CollectionName) -> str:
    return collection.value if isinstance(collection, Collection) else collection


def _to_document(row: Document) -> Dict[str, Any]:
    body = dict(row.body or {})
    body[KEY_FIELD] = row.key
    return body


def _to_body(document: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in document.items() if k != KEY_FIELD}


class DocumentStore:
    """Keyed document access over SQLAlchemy async sessions. Each call runs in its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _store_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.exception("Document store failure during %s", action)
            raise StoreUnavailableError(f"Document store unavailable during {action}") from e

    async def _load(
        self, session: AsyncSession, collection: str, key: str, for_update: bool = False
    ) -> Optional[Document]:
        stmt = select(Document).where(Document.collection == collection, Document.key == key)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, collection: CollectionName, key: str) -> Optional[Dict[str, Any]]:
        with self._store_errors("get"):
            async with self._session_factory() as session:
                row = await self._load(session, _name(collection), key)
        return _to_document(row) if row else None

    async def find_many(
        self,
        collection: CollectionName,
        filter: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Documents matching `filter`, in insertion order unless `sort` is given (ties keep insertion order)."""
        stmt = (
            select(Document)
            .where(Document.collection == _name(collection), *filter_clauses(Document.body, filter))
            .order_by(*sort_clauses(Document.body, sort), Document.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._store_errors("find"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        return [_to_document(r) for r in rows]

    async def insert(self, collection: CollectionName, document: Dict[str, Any], key: Optional[str] = None) -> str:
        """Insert a new document and return its key. An existing key is a conflict."""
        key = key or document.get(KEY_FIELD) or new_key()
        name = _name(collection)
        with self._store_errors("insert"):
            try:
                async with self._session_factory.begin() as session:
                    session.add(Document(collection=name, key=key, body=_to_body(document), version=1))
            except IntegrityError as e:
                raise ConflictError(f"Document '{key}' already exists in {name}") from e
        return key

    async def update_if_match(
        self,
        collection: CollectionName,
        key: str,
        filter: Optional[Filter],
        update: Update,
    ) -> MatchResult:
        """
        Apply `update` to the document at `key` only if it matches `filter`.

        Returns matched=False when the document is missing or the filter does
        not hold against its current state.
        """
        name = _name(collection)
        with self._store_errors("update"):
            async with self._session_factory.begin() as session:
                row = await self._load(session, name, key, for_update=True)
                if row is None:
                    return MatchResult(matched=False)
                current = _to_document(row)
                if not matches(current, filter):
                    return MatchResult(matched=False)
                updated = apply_update(current, update, filter)
                row.body = _to_body(updated)
                row.version = row.version + 1
                row.updated_at = datetime.utcnow()
        return MatchResult(matched=True, document=updated)

    async def delete(self, collection: CollectionName, key: str) -> bool:
        with self._store_errors("delete"):
            async with self._session_factory.begin() as session:
                result = await session.execute(
                    sa_delete(Document)
                    .where(Document.collection == _name(collection), Document.key == key)
                    .execution_options(synchronize_session=False)
                )
                deleted = result.rowcount
        return deleted > 0
