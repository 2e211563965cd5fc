"""
Payment ledger. A payment is the durable record that an enrollment should exist.

Payments are immutable: they carry the class id and payer email needed to
replay the enrollment step, and are never updated or deleted here.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from app.core.enums import Collection
from app.core.exceptions import ConflictError, NotFoundError
from app.core.identifiers import normalize_email, now_iso, require_id
from app.db.store import DocumentStore, new_key

from .schemas import PaymentCreate, PaymentResponse

logger = logging.getLogger(__name__)


def _payment_to_response(doc: Dict[str, Any], replayed: bool = False) -> PaymentResponse:
    return PaymentResponse(
        id=doc["_id"],
        email=doc["email"],
        class_id=doc["class_id"],
        amount=doc["amount"],
        transaction_id=doc.get("transaction_id"),
        created_at=doc["created_at"],
        replayed=replayed,
    )


async def record_payment(store: DocumentStore, payload: PaymentCreate) -> Tuple[PaymentResponse, bool]:
    """
    Insert the payment. Returns (payment, created).

    With a payment_id already on record for the same email and class the
    stored payment is returned with created=False; the same id for a
    different enrollment is a conflict.
    """
    email = normalize_email(payload.email)
    class_id = require_id(payload.class_id, "class_id")
    key = require_id(payload.payment_id, "payment_id") if payload.payment_id is not None else new_key()
    doc = {
        "email": email,
        "class_id": class_id,
        "amount": str(payload.amount),
        "transaction_id": payload.transaction_id,
        "created_at": now_iso(),
    }
    try:
        await store.insert(Collection.PAYMENTS, doc, key=key)
    except ConflictError:
        existing = await store.get(Collection.PAYMENTS, key)
        if existing is None or existing["email"] != email or existing["class_id"] != class_id:
            raise ConflictError("payment_id is already used by a different payment")
        logger.warning("Payment %s already recorded; returning stored record", key)
        return _payment_to_response(existing, replayed=True), False

    logger.info("Payment %s recorded: %s for class %s", key, email, class_id)
    return _payment_to_response({**doc, "_id": key}), True


async def get_payment(store: DocumentStore, payment_id: str) -> PaymentResponse:
    doc = await store.get(Collection.PAYMENTS, require_id(payment_id, "payment_id"))
    if doc is None:
        raise NotFoundError("Payment not found")
    return _payment_to_response(doc)


async def list_payments(
    store: DocumentStore,
    email: Optional[str] = None,
    class_id: Optional[str] = None,
) -> List[PaymentResponse]:
    """Payments in the order they were recorded."""
    filter: Dict[str, Any] = {}
    if email is not None:
        filter["email"] = normalize_email(email)
    if class_id is not None:
        filter["class_id"] = require_id(class_id, "class_id")
    return [_payment_to_response(d) for d in await store.find_many(Collection.PAYMENTS, filter)]
