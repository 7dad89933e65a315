# Overview: Stock ledger; the single writer of stock levels, movements and lot quantities.

"""
Stock ledger.

WHY: Every stock change in the system goes through apply(): the level row is
locked, the new quantity is checked, lot side effects are applied and one
immutable movement is appended, all in the caller's transaction. Workflows
(sales, purchases, transfers, inventories) never touch StockLevel or
ProductBatch directly.

ORDER OF WORK inside apply():
1. lock (or create) the StockLevel row for the key
2. reject if the quantity would go negative (or below reserved)
3. plan FEFO allocation for outbound stock of lot-tracked products
4. update the projection and check its invariants
5. append the movement, then consume / create lots against it
6. check that the lots add up to the projection

Replay: summing a key's movement deltas in append order reproduces the
stored quantity; verify_stock_level() reports any drift without fixing it.
"""
from __future__ import annotations

import logging

from flask import current_app

from ..errors import (
    ConsistencyViolationError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..models import StockLevel
from ..models.stock import BATCH_STATUS_RECALLED
from ..repositories import batches, movements, stock_levels
from ..validation import require_positive_int
from ..values import (
    ConsistencyReport,
    LotSpec,
    MovementIntent,
    MovementResult,
    MovementType,
    StockKey,
)
from . import batch_service, catalog_service
from .concurrency import run_with_retry, transaction_scope

logger = logging.getLogger(__name__)


def apply(intent: MovementIntent) -> MovementResult:
    """
    Apply one stock movement atomically.

    Joins the caller's transaction_scope() when one is open (workflows lock
    all their keys first, then call apply per line); otherwise runs as its
    own unit of work with retry.
    """
    if not isinstance(intent, MovementIntent):
        raise ValidationError("apply() expects a MovementIntent")

    def _op() -> MovementResult:
        with transaction_scope():
            return _apply_locked(intent)

    return run_with_retry(_op)


def _negative_allowed(intent: MovementIntent, product) -> bool:
    # Lots cannot go below zero, so only untracked products may be over-adjusted
    return (
        intent.movement_type == MovementType.ADJUSTMENT
        and not product.track_batches
        and bool(current_app.config.get("ALLOW_NEGATIVE_ADJUSTMENTS", False))
    )


def _apply_locked(intent: MovementIntent) -> MovementResult:
    key = intent.key
    catalog_service.get_location(key.location_id, tenant_id=key.tenant_id)
    product = catalog_service.get_product(key.product_id, tenant_id=key.tenant_id)

    level = stock_levels.lock_for_update(key)
    before = level.quantity
    after = before + intent.delta

    if intent.delta < 0 and after < level.reserved_quantity and not _negative_allowed(intent, product):
        available = before - level.reserved_quantity
        logger.info(
            "stock.insufficient",
            extra={**key.as_dict(), "requested": -intent.delta, "available": available},
        )
        raise InsufficientStockError(
            f"Insufficient stock for product {key.product_id}: "
            f"requested {-intent.delta}, available {available}",
            product_id=key.product_id,
            location_id=key.location_id,
            requested=-intent.delta,
            available=available,
        )

    plan = None
    if product.track_batches and intent.delta < 0:
        plan = batch_service.plan_allocation(
            key=key,
            quantity=-intent.delta,
            include_expired=intent.movement_type == MovementType.ADJUSTMENT,
            batch_id=intent.batch_id,
        )

    lots = intent.lots
    if product.track_batches and intent.delta > 0 and not lots:
        expiration = None
        if intent.movement_type == MovementType.ADJUSTMENT:
            expiration = batch_service.inherited_expiration(key)
        lots = (LotSpec(quantity=intent.delta, expiration_date=expiration),)

    level.quantity = after
    level.available_quantity = after - level.reserved_quantity
    _check_level(level, key, allow_negative=_negative_allowed(intent, product))

    movement = movements.append(
        key=key,
        movement_type=intent.movement_type,
        delta=intent.delta,
        quantity_before=before,
        quantity_after=after,
        actor_id=intent.actor_id,
        reference=intent.reference,
        note=intent.reason,
    )

    allocations = ()
    created_ids: list[int] = []
    if plan is not None:
        allocations = batch_service.consume(plan, movement)
    elif product.track_batches:
        for lot in lots:
            if intent.movement_type == MovementType.IN and lot.batch_number:
                batch = batch_service.receive(key=key, lot=lot, movement=movement)
            else:
                batch = batch_service.create_derived(
                    key=key,
                    lot=lot,
                    movement=movement,
                    movement_type=intent.movement_type,
                )
            created_ids.append(batch.id)

    if product.track_batches:
        lot_total = batches.sum_available(key)
        if lot_total != after:
            _violation(
                "Batch quantities do not match the stock level",
                key,
                stock_quantity=after,
                batch_quantity=lot_total,
            )

    logger.info(
        "stock.apply",
        extra={
            **key.as_dict(),
            "movement_id": movement.id,
            "movement_type": intent.movement_type.value,
            "delta": intent.delta,
            "quantity_after": after,
        },
    )
    return MovementResult(
        movement_id=movement.id,
        key=key,
        movement_type=intent.movement_type,
        delta=intent.delta,
        quantity_before=before,
        quantity_after=after,
        allocations=tuple(allocations),
        created_batch_ids=tuple(created_ids),
    )


def _check_level(level: StockLevel, key: StockKey, *, allow_negative: bool) -> None:
    if level.reserved_quantity < 0:
        _violation("Reserved quantity is negative", key, reserved=level.reserved_quantity)
    if level.available_quantity != level.quantity - level.reserved_quantity:
        _violation(
            "Available quantity out of sync",
            key,
            quantity=level.quantity,
            reserved=level.reserved_quantity,
            available=level.available_quantity,
        )
    if not allow_negative and level.quantity < level.reserved_quantity:
        _violation(
            "Stock level below reserved quantity",
            key,
            quantity=level.quantity,
            reserved=level.reserved_quantity,
        )


def _violation(message: str, key: StockKey, **details) -> None:
    logger.error("stock.consistency_violation", extra={**key.as_dict(), **details, "reason": message})
    raise ConsistencyViolationError(message, **key.as_dict(), **details)


# ---------------------------------------------------------------------------
# Manual stock entry
# ---------------------------------------------------------------------------

def receive_stock(
    *,
    location_id: int,
    product_id: int,
    quantity: int,
    actor_id: int,
    variant_id: int | None = None,
    batch_number: str | None = None,
    expiration_date=None,
    manufactured_on=None,
    reason: str | None = None,
) -> MovementResult:
    """Initial load or ad-hoc receipt (IN) outside a purchase order."""
    quantity = require_positive_int(quantity, "quantity")
    location = catalog_service.get_location(location_id)
    product = catalog_service.require_product_at_location(product_id, location)
    key = StockKey(location.tenant_id, location.id, product_id, variant_id)
    lots = ()
    if (batch_number or expiration_date) and not product.track_batches:
        raise ValidationError(
            f"Product {product_id} does not track batches; batch_number and expiration_date are not accepted",
            product_id=product_id,
        )
    if batch_number or expiration_date:
        lots = (
            LotSpec(
                quantity=quantity,
                expiration_date=expiration_date,
                batch_number=batch_number,
                manufactured_on=manufactured_on,
            ),
        )
    return apply(
        MovementIntent(
            key=key,
            movement_type=MovementType.IN,
            delta=quantity,
            actor_id=actor_id,
            lots=lots,
            reason=reason,
        )
    )


def issue_stock(
    *,
    location_id: int,
    product_id: int,
    quantity: int,
    actor_id: int,
    variant_id: int | None = None,
    reason: str | None = None,
) -> MovementResult:
    """Ad-hoc removal (OUT), e.g. internal consumption; FEFO like a sale."""
    quantity = require_positive_int(quantity, "quantity")
    location = catalog_service.get_location(location_id)
    catalog_service.get_product(product_id, tenant_id=location.tenant_id)
    key = StockKey(location.tenant_id, location.id, product_id, variant_id)
    return apply(
        MovementIntent(
            key=key,
            movement_type=MovementType.OUT,
            delta=-quantity,
            actor_id=actor_id,
            reason=reason,
        )
    )


def recall_batch(*, batch_id: int, actor_id: int, reason: str | None = None) -> MovementResult | None:
    """
    Write off whatever is left of a lot and mark it RECALLED.

    The write-off is an ADJUSTMENT restricted to this lot, so the projection,
    ledger and registry stay in step. Returns None when nothing was left.
    """
    def _op():
        with transaction_scope():
            batch = batches.get(batch_id)
            if batch is None:
                raise NotFoundError(f"Batch {batch_id} not found", batch_id=batch_id)
            # Level row first, then the lot: same order as apply()
            key = StockKey(batch.tenant_id, batch.location_id, batch.product_id, batch.variant_id)
            stock_levels.lock_for_update(key)
            batch = batches.get_for_update(batch_id)
            # A recalled lot holding stock is a restocked return still to be written off
            if batch.status == BATCH_STATUS_RECALLED and batch.available_quantity == 0:
                raise ValidationError(f"Batch {batch_id} is already recalled", batch_id=batch_id)

            result = None
            if batch.available_quantity > 0:
                result = _apply_locked(
                    MovementIntent(
                        key=key,
                        movement_type=MovementType.ADJUSTMENT,
                        delta=-batch.available_quantity,
                        actor_id=actor_id,
                        batch_id=batch.id,
                        reason=reason or f"Recall of batch {batch.batch_number}",
                    )
                )
            batch_service.mark_recalled(batch)
        logger.warning("batch.recalled", extra={"batch_id": batch_id, "actor_id": actor_id})
        return result

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Replay and verification
# ---------------------------------------------------------------------------

def replay_quantity(key: StockKey) -> tuple[int, bool]:
    """
    Rebuild the quantity of key from its movements in append order.

    Returns (quantity, chain_ok); chain_ok is False when some movement's
    quantity_before / quantity_after does not continue the running total.
    """
    running = 0
    chain_ok = True
    for movement in movements.for_key(key):
        if movement.quantity_before != running:
            chain_ok = False
        running += movement.quantity
        if movement.quantity_after != running:
            chain_ok = False
    return running, chain_ok


def verify_stock_level(key: StockKey) -> ConsistencyReport:
    level = stock_levels.get(key)
    projected = level.quantity if level is not None else 0
    replayed, chain_ok = replay_quantity(key)
    product = catalog_service.get_product(key.product_id, tenant_id=key.tenant_id)
    lot_total = batches.sum_available(key) if product.track_batches else None
    report = ConsistencyReport(
        key=key,
        projected_quantity=projected,
        replayed_quantity=replayed,
        batch_quantity=lot_total,
        chain_ok=chain_ok,
    )
    if not report.ok:
        logger.error(
            "stock.verify_mismatch",
            extra={**key.as_dict(), "projected": projected, "replayed": replayed, "batch_quantity": lot_total},
        )
    return report


def verify_all(tenant_id: int | None = None) -> list[ConsistencyReport]:
    return [verify_stock_level(stock_levels.key_of(row)) for row in stock_levels.iter_all(tenant_id)]
