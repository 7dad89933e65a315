# backend/stockledger/services/inventory_service.py
"""
Physical inventory (stock count) service.

WHY: Counts reconcile the system quantity with what is on the shelf. The
system quantity is snapshotted when the count starts; validation posts one
ADJUSTMENT per counted item whose difference is non-zero. Items nobody
counted are left alone.

LIFECYCLE:
1. DRAFT: create_inventory
2. STARTED: start_inventory snapshots system quantities; set_counted_quantity
3. VALIDATED: validate_inventory posts the adjustments
4. CANCELLED: cancel_inventory (DRAFT or STARTED)
"""
from __future__ import annotations

import logging

from ..errors import InvalidStateTransitionError, ValidationError
from ..extensions import db
from ..models import Inventory, InventoryItem
from ..repositories import documents, stock_levels
from ..time_utils import utcnow
from ..validation import optional_id, require_id, require_non_negative_int
from ..values import InventoryRef, MovementIntent, MovementType, StockKey
from . import catalog_service, ledger_service
from .concurrency import run_with_retry, transaction_scope
from .document_service import DOCUMENT_TYPE_INVENTORY, next_document_number

logger = logging.getLogger(__name__)

# Inventory status constants
INVENTORY_STATUS_DRAFT = "DRAFT"
INVENTORY_STATUS_STARTED = "STARTED"
INVENTORY_STATUS_VALIDATED = "VALIDATED"
INVENTORY_STATUS_CANCELLED = "CANCELLED"


def get_inventory(inventory_id: int) -> Inventory:
    return documents.get(Inventory, inventory_id)


def _lock_in_status(inventory_id: int, expected: set[str], action: str) -> Inventory:
    inventory = documents.lock_inventory(inventory_id)
    if inventory.status not in expected:
        raise InvalidStateTransitionError(
            f"Cannot {action} inventory in {inventory.status} status",
            inventory_id=inventory_id,
            status=inventory.status,
        )
    return inventory


def create_inventory(*, location_id: int, actor_id: int, notes: str | None = None) -> Inventory:
    require_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            location = catalog_service.get_location(location_id)
            inventory = Inventory(
                tenant_id=location.tenant_id,
                location_id=location.id,
                document_number=next_document_number(
                    location_id=location.id,
                    document_type=DOCUMENT_TYPE_INVENTORY,
                ),
                status=INVENTORY_STATUS_DRAFT,
                notes=notes,
                created_by=actor_id,
            )
            db.session.add(inventory)
            db.session.flush()
        logger.info("inventory.created", extra={"inventory_id": inventory.id, "location_id": location_id})
        return inventory

    return run_with_retry(_op)


def start_inventory(
    *,
    inventory_id: int,
    actor_id: int | None = None,
    product_ids: list[int] | None = None,
) -> Inventory:
    """
    Snapshot system quantities and open the count.

    product_ids limits the count to those products (cycle count); None counts
    every active product stocked at the location. Snapshot reads do not lock:
    movements posted after the snapshot are the counter's responsibility.
    """
    optional_id(actor_id, "actor_id")
    if product_ids is not None:
        product_ids = [require_id(pid, "product_id") for pid in product_ids]
        if not product_ids:
            raise ValidationError("product_ids cannot be empty", inventory_id=inventory_id)

    def _op():
        with transaction_scope():
            inventory = _lock_in_status(inventory_id, {INVENTORY_STATUS_DRAFT}, "start")
            location = catalog_service.get_location(inventory.location_id)
            if product_ids is not None:
                products = [
                    catalog_service.require_product_at_location(pid, location)
                    for pid in dict.fromkeys(product_ids)
                ]
            else:
                products = catalog_service.list_location_products(location)

            for product in products:
                level = stock_levels.get(StockKey(inventory.tenant_id, inventory.location_id, product.id))
                inventory.items.append(
                    InventoryItem(
                        product_id=product.id,
                        system_quantity=level.quantity if level is not None else 0,
                    )
                )
            inventory.status = INVENTORY_STATUS_STARTED
            inventory.started_by = actor_id
            inventory.started_at = utcnow()
            db.session.flush()
            item_count = len(products)
        logger.info("inventory.started", extra={"inventory_id": inventory_id, "item_count": item_count})
        return inventory

    return run_with_retry(_op)


def set_counted_quantity(*, inventory_id: int, product_id: int, counted_quantity: int) -> InventoryItem:
    counted_quantity = require_non_negative_int(counted_quantity, "counted_quantity")

    def _op():
        with transaction_scope():
            inventory = _lock_in_status(inventory_id, {INVENTORY_STATUS_STARTED}, "count")
            item = next((i for i in inventory.items if i.product_id == product_id), None)
            if item is None:
                raise ValidationError(
                    f"Product {product_id} is not part of inventory {inventory_id}",
                    inventory_id=inventory_id,
                    product_id=product_id,
                )
            item.counted_quantity = counted_quantity
            item.difference = counted_quantity - item.system_quantity
            db.session.flush()
        return item

    return run_with_retry(_op)


def validate_inventory(*, inventory_id: int, actor_id: int) -> Inventory:
    """
    Post one ADJUSTMENT per counted item with a non-zero difference.

    Raises:
        InvalidStateTransitionError: inventory is not STARTED (a validated
            inventory cannot be validated again)
        InsufficientStockError: a negative difference exceeds the current
            stock (stock moved since the snapshot)
    """
    require_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            inventory = _lock_in_status(inventory_id, {INVENTORY_STATUS_STARTED}, "validate")
            to_adjust = [
                item for item in inventory.items
                if item.counted_quantity is not None and item.difference
            ]
            keys = {
                item.id: StockKey(inventory.tenant_id, inventory.location_id, item.product_id)
                for item in to_adjust
            }
            stock_levels.lock_many(keys.values())

            reference = InventoryRef(inventory.id)
            for item in to_adjust:
                result = ledger_service.apply(
                    MovementIntent(
                        key=keys[item.id],
                        movement_type=MovementType.ADJUSTMENT,
                        delta=item.difference,
                        actor_id=actor_id,
                        reference=reference,
                        reason=f"Inventory {inventory.document_number}",
                    )
                )
                item.adjustment_movement_id = result.movement_id

            inventory.status = INVENTORY_STATUS_VALIDATED
            inventory.validated_by = actor_id
            inventory.validated_at = utcnow()
            db.session.flush()
            adjusted = len(to_adjust)
        logger.info("inventory.validated", extra={"inventory_id": inventory_id, "adjusted": adjusted})
        return inventory

    return run_with_retry(_op)


def cancel_inventory(*, inventory_id: int, actor_id: int | None = None) -> Inventory:
    optional_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            inventory = _lock_in_status(
                inventory_id,
                {INVENTORY_STATUS_DRAFT, INVENTORY_STATUS_STARTED},
                "cancel",
            )
            inventory.status = INVENTORY_STATUS_CANCELLED
            inventory.cancelled_by = actor_id
            inventory.cancelled_at = utcnow()
            db.session.flush()
        logger.info("inventory.cancelled", extra={"inventory_id": inventory_id})
        return inventory

    return run_with_retry(_op)
