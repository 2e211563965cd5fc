"""Generic document row: one JSON body per (collection, key), with a revision counter."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB

from app.db.session import Base


class Document(Base):
    """Document in a logical collection. `id` preserves insertion order; `key` is the public identity."""

    __tablename__ = "documents"
    __table_args__ = (
        # One document per key within a collection (users are keyed by email)
        UniqueConstraint("collection", "key", name="uq_document_collection_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(50), nullable=False, index=True)
    key = Column(String(255), nullable=False)
    body = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    # Bumped on every successful update_if_match
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
