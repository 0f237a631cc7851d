# Overview: Per-store atomic number sequences for human-facing document numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from .concurrency import run_with_retry


DOCUMENT_TYPE_ORDER = "ORDER"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(store_id: int, document_type: str) -> int:
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(store_id=store_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def allocate_sequence_number(*, store_id: int, document_type: str) -> int:
    """
    Claim the next integer in the (store_id, document_type) sequence.

    Runs inside the caller's transaction and does not commit, so it must be
    the first write of that transaction: the first claim for a pair inserts
    the row and, if a concurrent writer inserted it first, rolls back and
    falls back to the conditional UPDATE.
    """
    if not store_id:
        raise DocumentSequenceError("store_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current_number(store_id, document_type)

    db.session.add(DocumentSequence(store_id=store_id, document_type=document_type, next_number=2))
    try:
        db.session.flush()
        return 1
    except IntegrityError:
        db.session.rollback()

    result = db.session.execute(stmt)
    if not result.rowcount:
        raise DocumentSequenceError(f"Could not allocate {document_type} number for store {store_id}")
    return _current_number(store_id, document_type)


def next_document_number(
    *,
    store_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate and commit the next formatted number, e.g. ORD-001-000042.

    The store id is part of the number, so numbers are unique across stores.
    """
    def _op() -> str:
        number = allocate_sequence_number(store_id=store_id, document_type=document_type)
        db.session.commit()
        return format_document_number(prefix, store_id, number, pad=pad)

    return run_with_retry(_op)


def format_document_number(prefix: str, store_id: int, number: int, *, pad: int = 6) -> str:
    return f"{prefix}-{store_id:03d}-{number:0{pad}d}"
