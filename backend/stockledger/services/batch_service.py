# Overview: Lot registry; receipt, FEFO allocation, derived lots and expiration handling.

"""
Batch (lot) registry.

WHY: Perishable stock must leave in first-expired-first-out order and an
expired lot must never be sold. The registry owns every mutation of
ProductBatch rows, and only the stock ledger calls the mutating functions,
inside its transaction and after the StockLevel row is locked.

RULES:
- A lot is expired when expiration_date < today; a lot expiring today sells.
- FEFO: earliest expiration first, lots without expiration last, then the
  oldest lot. Ties never depend on database row order.
- (product, location, batch_number) is unique; derived lots (transfer-in,
  return, adjustment) get a generated number that is unique at the target.
- available_quantity only goes down; reaching 0 marks the lot DEPLETED.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from flask import current_app

from ..errors import (
    BatchNumberConflictError,
    InsufficientBatchStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import ProductBatch, StockMovement
from ..models.stock import (
    BATCH_STATUS_ACTIVE,
    BATCH_STATUS_DEPLETED,
    BATCH_STATUS_EXPIRED,
    BATCH_STATUS_RECALLED,
    BATCH_NUMBER_MAX_LENGTH,
    BATCH_STATUSES,
)
from ..repositories import batches, movements
from ..time_utils import today
from ..values import BatchAllocation, LotSpec, MovementType, StockKey
from . import catalog_service
from .concurrency import run_with_retry, transaction_scope

logger = logging.getLogger(__name__)

EXPIRY_STATUS_EXPIRED = "expired"
EXPIRY_STATUS_CRITICAL = "critical"
EXPIRY_STATUS_WARNING = "warning"
EXPIRY_STATUS_GOOD = "good"
EXPIRY_STATUS_NONE = "none"

# Generated batch-number prefixes for lots not named by a supplier
_GENERATED_PREFIXES = {
    MovementType.IN: "LOT",
    MovementType.TRANSFER_IN: "TRF",
    MovementType.RETURN: "RET",
    MovementType.ADJUSTMENT: "ADJ",
}


@dataclass(frozen=True)
class AllocationPlan:
    """Lots (locked) and the quantity to take from each, in FEFO order."""

    key: StockKey
    picks: tuple[tuple[ProductBatch, int], ...]

    @property
    def quantity(self) -> int:
        return sum(qty for _, qty in self.picks)


# ---------------------------------------------------------------------------
# Receipt and derived lots
# ---------------------------------------------------------------------------

def receive(*, key: StockKey, lot: LotSpec, movement: StockMovement, as_of: date | None = None) -> ProductBatch:
    """
    Register a supplier lot named by lot.batch_number.

    Raises BatchNumberConflictError when the number already exists for the
    product at the location, ValidationError when it is already expired.
    """
    as_of = as_of or today()
    if not lot.batch_number:
        raise ValidationError("batch_number is required", product_id=key.product_id)
    if lot.expiration_date is not None and lot.expiration_date < as_of:
        raise ValidationError(
            f"Batch {lot.batch_number} is already expired",
            product_id=key.product_id,
            batch_number=lot.batch_number,
            expiration_date=lot.expiration_date.isoformat(),
        )
    number = lot.batch_number.strip()
    if len(number) > BATCH_NUMBER_MAX_LENGTH:
        raise ValidationError(
            f"batch_number is longer than {BATCH_NUMBER_MAX_LENGTH} characters",
            product_id=key.product_id,
            batch_number=number,
        )
    if batches.number_exists(product_id=key.product_id, location_id=key.location_id, batch_number=number):
        raise BatchNumberConflictError(
            f"Batch {number} already exists for product {key.product_id} at location {key.location_id}",
            product_id=key.product_id,
            location_id=key.location_id,
            batch_number=number,
        )
    return _create(key=key, lot=lot, number=number, movement=movement, as_of=as_of)


def create_derived(
    *,
    key: StockKey,
    lot: LotSpec,
    movement: StockMovement,
    movement_type: MovementType,
    as_of: date | None = None,
) -> ProductBatch:
    """Lot created by a transfer-in, return or adjustment; number made unique at the target."""
    as_of = as_of or today()
    base = (lot.batch_number or "").strip() or f"{_GENERATED_PREFIXES[movement_type]}-{movement.id}"
    number = _unique_number(key, base, movement.id)
    return _create(key=key, lot=lot, number=number, movement=movement, as_of=as_of)


def _unique_number(key: StockKey, base: str, movement_id: int) -> str:
    candidate = base[:BATCH_NUMBER_MAX_LENGTH]
    attempt = 1
    while batches.number_exists(product_id=key.product_id, location_id=key.location_id, batch_number=candidate):
        suffix = f"-{movement_id}" if attempt == 1 else f"-{movement_id}-{attempt}"
        # The suffix survives truncation so the candidates stay distinct
        candidate = base[: BATCH_NUMBER_MAX_LENGTH - len(suffix)] + suffix
        attempt += 1
    return candidate


def _create(*, key: StockKey, lot: LotSpec, number: str, movement: StockMovement, as_of: date) -> ProductBatch:
    status = BATCH_STATUS_ACTIVE
    if lot.recalled:
        status = BATCH_STATUS_RECALLED
    elif lot.expiration_date is not None and lot.expiration_date < as_of:
        status = BATCH_STATUS_EXPIRED
    batch = ProductBatch(
        tenant_id=key.tenant_id,
        location_id=key.location_id,
        product_id=key.product_id,
        variant_id=key.variant_id,
        variant_key=key.variant_key,
        batch_number=number,
        expiration_date=lot.expiration_date,
        manufactured_on=lot.manufactured_on,
        quantity=lot.quantity,
        available_quantity=lot.quantity,
        status=status,
        source_batch_id=lot.source_batch_id,
        stock_movement_id=movement.id,
    )
    db.session.add(batch)
    db.session.flush()
    movements.add_batch_line(movement, batch, lot.quantity)
    logger.info(
        "batch.created",
        extra={
            "batch_id": batch.id,
            "batch_number": number,
            "product_id": key.product_id,
            "location_id": key.location_id,
            "quantity": lot.quantity,
        },
    )
    return batch


def inherited_expiration(key: StockKey) -> date | None:
    """
    Expiration for an adjustment lot: earliest among lots still holding
    stock, else that of the most recent lot, else none.
    """
    earliest = batches.earliest_expiration_with_stock(key)
    if earliest is not None:
        return earliest
    latest = batches.latest_for_key(key)
    return latest.expiration_date if latest is not None else None


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------

def plan_allocation(
    *,
    key: StockKey,
    quantity: int,
    as_of: date | None = None,
    include_expired: bool = False,
    batch_id: int | None = None,
) -> AllocationPlan:
    """
    Lock eligible lots and split quantity across them in FEFO order.

    Nothing is mutated; raises InsufficientBatchStockError when the eligible
    lots cannot cover quantity.
    """
    as_of = as_of or today()
    eligible = batches.lock_allocatable(
        key,
        as_of=as_of,
        include_expired=include_expired,
        batch_id=batch_id,
    )
    remaining = quantity
    picks: list[tuple[ProductBatch, int]] = []
    for batch in eligible:
        if remaining <= 0:
            break
        take = min(batch.available_quantity, remaining)
        picks.append((batch, take))
        remaining -= take

    if remaining > 0:
        available = quantity - remaining
        raise InsufficientBatchStockError(
            f"Insufficient unexpired batch stock for product {key.product_id}: "
            f"requested {quantity}, available {available}",
            product_id=key.product_id,
            location_id=key.location_id,
            requested=quantity,
            available=available,
        )
    return AllocationPlan(key=key, picks=tuple(picks))


def consume(plan: AllocationPlan, movement: StockMovement) -> tuple[BatchAllocation, ...]:
    allocations = []
    for batch, take in plan.picks:
        batch.available_quantity -= take
        if batch.available_quantity == 0 and batch.status == BATCH_STATUS_ACTIVE:
            batch.status = BATCH_STATUS_DEPLETED
        movements.add_batch_line(movement, batch, take)
        allocations.append(
            BatchAllocation(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                expiration_date=batch.expiration_date,
                quantity=take,
            )
        )
    return tuple(allocations)


def lots_from_allocations(allocations) -> tuple[LotSpec, ...]:
    """
    Destination lots for stock that left through allocations: one lot per
    distinct expiration date, keeping the first consumed lot as lineage.
    """
    grouped: dict[date | None, list[BatchAllocation]] = {}
    for allocation in allocations:
        grouped.setdefault(allocation.expiration_date, []).append(allocation)
    lots = []
    for expiration, group in grouped.items():
        first = group[0]
        lots.append(
            LotSpec(
                quantity=sum(a.quantity for a in group),
                expiration_date=expiration,
                batch_number=first.batch_number,
                source_batch_id=first.batch_id,
            )
        )
    return tuple(lots)


# ---------------------------------------------------------------------------
# Reads and expiry
# ---------------------------------------------------------------------------

def get_batch(batch_id: int, *, tenant_id: int | None = None) -> ProductBatch:
    batch = batches.get(batch_id)
    if batch is None or (tenant_id is not None and batch.tenant_id != tenant_id):
        raise NotFoundError(f"Batch {batch_id} not found", batch_id=batch_id)
    return batch


def list_batches(
    *,
    tenant_id: int,
    location_id: int,
    product_id: int | None = None,
    statuses: list[str] | None = None,
) -> list[ProductBatch]:
    """Lots of a location in FEFO order, optionally narrowed to a product and statuses."""
    location = catalog_service.get_location(location_id, tenant_id=tenant_id)
    unknown = set(statuses or ()) - BATCH_STATUSES
    if unknown:
        raise ValidationError(f"Unknown batch status {sorted(unknown)[0]!r}", statuses=sorted(unknown))
    return batches.list_for_location(
        tenant_id=location.tenant_id,
        location_id=location.id,
        product_id=product_id,
        statuses=statuses,
    )


def expiration_status(batch: ProductBatch, as_of: date | None = None) -> str:
    if batch.expiration_date is None:
        return EXPIRY_STATUS_NONE
    as_of = as_of or today()
    if batch.expiration_date < as_of:
        return EXPIRY_STATUS_EXPIRED
    days_left = (batch.expiration_date - as_of).days
    if days_left <= int(current_app.config.get("EXPIRY_CRITICAL_DAYS", 7)):
        return EXPIRY_STATUS_CRITICAL
    if days_left <= int(current_app.config.get("EXPIRY_WARNING_DAYS", 30)):
        return EXPIRY_STATUS_WARNING
    return EXPIRY_STATUS_GOOD


def list_expiring_batches(
    *,
    tenant_id: int,
    location_id: int | None = None,
    within_days: int | None = None,
    as_of: date | None = None,
) -> list[ProductBatch]:
    """Active lots with stock expiring between as_of and as_of + within_days (inclusive)."""
    as_of = as_of or today()
    if within_days is None:
        within_days = int(current_app.config.get("EXPIRY_WARNING_DAYS", 30))
    if within_days < 0:
        raise ValidationError("within_days cannot be negative", within_days=within_days)
    return batches.expiring_between(
        tenant_id=tenant_id,
        location_id=location_id,
        start=as_of,
        end=as_of + timedelta(days=within_days),
    )


def expire_batches(*, as_of: date | None = None, tenant_id: int | None = None) -> int:
    """
    Persist EXPIRED on active lots past their expiration date.

    Allocation already skips such lots lazily; the sweep keeps the stored
    status honest for reporting.
    """
    as_of = as_of or today()

    def _op() -> int:
        with transaction_scope():
            count = batches.mark_expired(as_of=as_of, tenant_id=tenant_id)
        logger.info("batch.expired_sweep", extra={"as_of": as_of.isoformat(), "count": count})
        return count

    return run_with_retry(_op)


def mark_recalled(batch: ProductBatch) -> None:
    batch.status = BATCH_STATUS_RECALLED
