"""Feedback records. Immutable once written; the class keeps a ratings projection."""

from typing import Any, Dict, List, Optional

from app.core.enums import Collection
from app.core.identifiers import normalize_email, now_iso, require_id
from app.db.store import DocumentStore, new_key

from .schemas import FeedbackCreate, FeedbackResponse


def _feedback_to_response(doc: Dict[str, Any]) -> FeedbackResponse:
    return FeedbackResponse(
        id=doc["_id"],
        class_id=doc["class_id"],
        description=doc["description"],
        rating=doc["rating"],
        name=doc.get("name"),
        email=doc.get("email"),
        image=doc.get("image"),
        created_at=doc["created_at"],
    )


async def insert_feedback(store: DocumentStore, payload: FeedbackCreate) -> FeedbackResponse:
    doc = {
        "class_id": require_id(payload.class_id, "class_id"),
        "description": payload.description.strip(),
        "rating": payload.rating,
        "name": payload.name,
        "email": normalize_email(payload.email) if payload.email else None,
        "image": payload.image,
        "created_at": now_iso(),
    }
    key = await store.insert(Collection.FEEDBACK, doc, key=new_key())
    return _feedback_to_response({**doc, "_id": key})


async def list_feedback(store: DocumentStore, class_id: Optional[str] = None) -> List[FeedbackResponse]:
    filter = {"class_id": require_id(class_id, "class_id")} if class_id is not None else None
    return [_feedback_to_response(d) for d in await store.find_many(Collection.FEEDBACK, filter)]
