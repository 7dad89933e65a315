# Overview: Per-location document numbering for sales, purchase orders, transfers and inventories.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from .concurrency import run_with_retry

DOCUMENT_TYPE_SALE = "SALE"
DOCUMENT_TYPE_PURCHASE_ORDER = "PURCHASE_ORDER"
DOCUMENT_TYPE_TRANSFER = "TRANSFER"
DOCUMENT_TYPE_INVENTORY = "INVENTORY"

DOCUMENT_PREFIXES = {
    DOCUMENT_TYPE_SALE: "S",
    DOCUMENT_TYPE_PURCHASE_ORDER: "PO",
    DOCUMENT_TYPE_TRANSFER: "T",
    DOCUMENT_TYPE_INVENTORY: "INV",
}


def _current_number(location_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(location_id=location_id, document_type=document_type)
        .scalar()
    )


def next_document_number(
    *,
    location_id: int,
    document_type: str,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for a location/type.

    The counter is bumped with a single UPDATE; the first number for a
    location is inserted in a savepoint so a concurrent first insert only
    falls back to the UPDATE path.
    """
    def _op() -> str:
        if not location_id:
            raise ValidationError("location_id is required")
        prefix = DOCUMENT_PREFIXES.get(document_type)
        if prefix is None:
            raise ValidationError(f"Unknown document type {document_type!r}")

        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.location_id == location_id,
                DocumentSequence.document_type == document_type,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            next_num = _current_number(location_id, document_type) - 1
        else:
            try:
                with db.session.begin_nested():
                    db.session.add(
                        DocumentSequence(
                            location_id=location_id,
                            document_type=document_type,
                            next_number=2,
                        )
                    )
                next_num = 1
            except IntegrityError:
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                next_num = _current_number(location_id, document_type) - 1

        return f"{prefix}-{location_id:03d}-{next_num:0{pad}d}"

    return run_with_retry(_op)
