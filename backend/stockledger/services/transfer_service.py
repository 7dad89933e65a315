# backend/stockledger/services/transfer_service.py
"""
Inter-location transfer service.

WHY: Move stock between two locations of the same tenant without it ever
existing in both places or in neither. Validation posts, per item, one
TRANSFER_OUT at the source and one TRANSFER_IN at the destination inside a
single transaction; lots consumed at the source reappear at the destination
with the same expiration dates.

LIFECYCLE:
1. DRAFT: transfer created, items added / merged / edited / removed
2. VALIDATED: stock moved (two movements per item)
3. CANCELLED: draft abandoned before validation
"""
from __future__ import annotations

import logging

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import StockTransfer, StockTransferItem
from ..repositories import documents, stock_levels
from ..time_utils import utcnow
from ..validation import optional_id, require_id, require_positive_int
from ..values import MovementIntent, MovementType, StockKey, TransferRef
from . import batch_service, catalog_service, ledger_service
from .concurrency import run_with_retry, transaction_scope
from .document_service import DOCUMENT_TYPE_TRANSFER, next_document_number

logger = logging.getLogger(__name__)

# Transfer status constants
TRANSFER_STATUS_DRAFT = "DRAFT"
TRANSFER_STATUS_VALIDATED = "VALIDATED"
TRANSFER_STATUS_CANCELLED = "CANCELLED"


def get_transfer(transfer_id: int) -> StockTransfer:
    return documents.get(StockTransfer, transfer_id)


def _lock_draft(transfer_id: int, action: str) -> StockTransfer:
    transfer = documents.lock_transfer(transfer_id)
    if transfer.status != TRANSFER_STATUS_DRAFT:
        raise InvalidStateTransitionError(
            f"Cannot {action} transfer in {transfer.status} status",
            transfer_id=transfer_id,
            status=transfer.status,
        )
    return transfer


def _find_item(transfer: StockTransfer, item_id: int) -> StockTransferItem:
    for item in transfer.items:
        if item.id == item_id:
            return item
    raise NotFoundError(
        f"Item {item_id} is not part of transfer {transfer.id}",
        transfer_id=transfer.id,
        item_id=item_id,
    )


def create_transfer(
    *,
    from_location_id: int,
    to_location_id: int,
    actor_id: int,
    tenant_id: int | None = None,
    notes: str | None = None,
) -> StockTransfer:
    """
    Create a DRAFT transfer.

    Raises:
        ValidationError: same location on both sides, or locations of
            different tenants
        NotFoundError: a location does not exist (or is not tenant_id's)
    """
    require_id(actor_id, "actor_id")
    require_id(from_location_id, "from_location_id")
    require_id(to_location_id, "to_location_id")
    if from_location_id == to_location_id:
        raise ValidationError(
            "Cannot transfer to the same location",
            location_id=from_location_id,
        )

    def _op():
        with transaction_scope():
            source = catalog_service.get_location(from_location_id, tenant_id=tenant_id)
            destination = catalog_service.get_location(to_location_id, tenant_id=tenant_id)
            if source.tenant_id != destination.tenant_id:
                raise ValidationError(
                    "Locations belong to different tenants",
                    from_location_id=from_location_id,
                    to_location_id=to_location_id,
                )
            transfer = StockTransfer(
                tenant_id=source.tenant_id,
                from_location_id=source.id,
                to_location_id=destination.id,
                document_number=next_document_number(
                    location_id=source.id,
                    document_type=DOCUMENT_TYPE_TRANSFER,
                ),
                status=TRANSFER_STATUS_DRAFT,
                notes=notes,
                created_by=actor_id,
            )
            db.session.add(transfer)
            db.session.flush()
        logger.info(
            "transfer.created",
            extra={"transfer_id": transfer.id, "from_location_id": from_location_id, "to_location_id": to_location_id},
        )
        return transfer

    return run_with_retry(_op)


def add_transfer_item(
    *,
    transfer_id: int,
    product_id: int,
    quantity: int,
    variant_id: int | None = None,
) -> StockTransferItem:
    """Add a product to a draft transfer; adding it again merges the quantities."""
    quantity = require_positive_int(quantity, "quantity")
    optional_id(variant_id, "variant_id")

    def _op():
        with transaction_scope():
            transfer = _lock_draft(transfer_id, "add items to")
            source = catalog_service.get_location(transfer.from_location_id)
            destination = catalog_service.get_location(transfer.to_location_id)
            catalog_service.require_product_at_location(product_id, source)
            catalog_service.require_product_at_location(product_id, destination)

            for item in transfer.items:
                if item.product_id == product_id and item.variant_id == variant_id:
                    item.quantity += quantity
                    db.session.flush()
                    return item

            item = StockTransferItem(product_id=product_id, variant_id=variant_id, quantity=quantity)
            transfer.items.append(item)
            db.session.flush()
        return item

    return run_with_retry(_op)


def update_transfer_item(*, transfer_id: int, item_id: int, quantity: int) -> StockTransferItem:
    quantity = require_positive_int(quantity, "quantity")

    def _op():
        with transaction_scope():
            transfer = _lock_draft(transfer_id, "edit items of")
            item = _find_item(transfer, item_id)
            item.quantity = quantity
            db.session.flush()
        return item

    return run_with_retry(_op)


def remove_transfer_item(*, transfer_id: int, item_id: int) -> None:
    def _op():
        with transaction_scope():
            transfer = _lock_draft(transfer_id, "remove items from")
            item = _find_item(transfer, item_id)
            transfer.items.remove(item)
            db.session.flush()

    return run_with_retry(_op)


def validate_transfer(*, transfer_id: int, actor_id: int) -> StockTransfer:
    """
    Post the transfer: per item, TRANSFER_OUT at the source (FEFO) and
    TRANSFER_IN at the destination with matching lots.

    Every involved stock level (both locations) is locked up front in key
    order; any shortfall aborts the whole transfer.

    Raises:
        InvalidStateTransitionError: transfer is not DRAFT
        ValidationError: no items, or source equals destination
        InsufficientStockError / InsufficientBatchStockError: source cannot
            cover an item
    """
    require_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            transfer = _lock_draft(transfer_id, "validate")
            if transfer.from_location_id == transfer.to_location_id:
                raise ValidationError(
                    "Cannot transfer to the same location",
                    transfer_id=transfer_id,
                )
            if not transfer.items:
                raise ValidationError("Cannot validate a transfer with no items", transfer_id=transfer_id)

            pairs = []
            for item in transfer.items:
                source_key = StockKey(transfer.tenant_id, transfer.from_location_id, item.product_id, item.variant_id)
                target_key = StockKey(transfer.tenant_id, transfer.to_location_id, item.product_id, item.variant_id)
                pairs.append((item, source_key, target_key))
            stock_levels.lock_many(
                [key for _, source_key, target_key in pairs for key in (source_key, target_key)]
            )

            reference = TransferRef(transfer.id)
            for item, source_key, target_key in pairs:
                out = ledger_service.apply(
                    MovementIntent(
                        key=source_key,
                        movement_type=MovementType.TRANSFER_OUT,
                        delta=-item.quantity,
                        actor_id=actor_id,
                        reference=reference,
                        reason=f"Transfer {transfer.document_number}",
                    )
                )
                into = ledger_service.apply(
                    MovementIntent(
                        key=target_key,
                        movement_type=MovementType.TRANSFER_IN,
                        delta=item.quantity,
                        actor_id=actor_id,
                        reference=reference,
                        lots=batch_service.lots_from_allocations(out.allocations),
                        reason=f"Transfer {transfer.document_number}",
                    )
                )
                item.out_movement_id = out.movement_id
                item.in_movement_id = into.movement_id

            transfer.status = TRANSFER_STATUS_VALIDATED
            transfer.validated_by = actor_id
            transfer.validated_at = utcnow()
            db.session.flush()
            item_count = len(pairs)
        logger.info("transfer.validated", extra={"transfer_id": transfer_id, "item_count": item_count})
        return transfer

    return run_with_retry(_op)


def cancel_transfer(*, transfer_id: int, actor_id: int | None = None) -> StockTransfer:
    optional_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            transfer = _lock_draft(transfer_id, "cancel")
            transfer.status = TRANSFER_STATUS_CANCELLED
            transfer.cancelled_by = actor_id
            transfer.cancelled_at = utcnow()
            db.session.flush()
        logger.info("transfer.cancelled", extra={"transfer_id": transfer_id})
        return transfer

    return run_with_retry(_op)
