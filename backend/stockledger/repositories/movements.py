# Overview: Append-only access to the stock movement ledger.

from __future__ import annotations

from sqlalchemy import select

from ..extensions import db
from ..models import ProductBatch, StockMovement, StockMovementBatch
from ..values import MovementFilters, MovementReference, MovementType, StockKey


def append(
    *,
    key: StockKey,
    movement_type: MovementType,
    delta: int,
    quantity_before: int,
    quantity_after: int,
    actor_id: int,
    reference: MovementReference | None = None,
    note: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        tenant_id=key.tenant_id,
        location_id=key.location_id,
        product_id=key.product_id,
        variant_id=key.variant_id,
        variant_key=key.variant_key,
        movement_type=movement_type.value,
        quantity=delta,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        reference_type=reference.kind.value if reference is not None else None,
        reference_id=reference.reference_id if reference is not None else None,
        reference=note,
        created_by=actor_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def add_batch_line(movement: StockMovement, batch: ProductBatch, quantity: int) -> StockMovementBatch:
    line = StockMovementBatch(movement_id=movement.id, batch_id=batch.id, quantity=quantity)
    db.session.add(line)
    return line


def get(movement_id: int) -> StockMovement | None:
    return db.session.get(StockMovement, movement_id)


def for_key(key: StockKey) -> list[StockMovement]:
    """Full history of one key in append order (used for replay)."""
    return (
        db.session.query(StockMovement)
        .filter_by(
            tenant_id=key.tenant_id,
            location_id=key.location_id,
            product_id=key.product_id,
            variant_key=key.variant_key,
        )
        .order_by(StockMovement.id.asc())
        .all()
    )


def select_for_location(tenant_id: int, location_id: int, filters: MovementFilters | None = None):
    """Newest first: created_at descending, id descending as tie-breaker."""
    stmt = select(StockMovement).where(
        StockMovement.tenant_id == tenant_id,
        StockMovement.location_id == location_id,
    )
    if filters is not None:
        if filters.product_id is not None:
            stmt = stmt.where(StockMovement.product_id == filters.product_id)
        if filters.variant_id is not None:
            stmt = stmt.where(StockMovement.variant_key == filters.variant_id)
        if filters.movement_types:
            stmt = stmt.where(
                StockMovement.movement_type.in_([t.value for t in filters.movement_types])
            )
        if filters.reference is not None:
            stmt = stmt.where(
                StockMovement.reference_type == filters.reference.kind.value,
                StockMovement.reference_id == filters.reference.reference_id,
            )
        if filters.created_from is not None:
            stmt = stmt.where(StockMovement.created_at >= filters.created_from)
        if filters.created_to is not None:
            stmt = stmt.where(StockMovement.created_at <= filters.created_to)
    return stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
