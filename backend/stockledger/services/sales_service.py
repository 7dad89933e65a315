# backend/stockledger/services/sales_service.py
"""
Sale workflow.

WHY: A sale only touches stock when it is finalized; until then lines can be
replaced at will. Finalization is one transaction: every line's stock level
is locked up front (sorted), each line is posted as a SALE movement with FEFO
lot allocation, and the sale flips to COMPLETED. If any line cannot be
covered, nothing is written and the error names the product.

LIFECYCLE:
1. DRAFT: create_draft_sale / set_sale_lines
2. COMPLETED: finalize_sale (one SALE movement per line)
3. CANCELLED: cancel_sale (drafts only; no stock effect)

A completed sale can later be returned: return_sale restocks every line with
compensating RETURN movements, lots carrying the consumed expiration dates.
"""
from __future__ import annotations

import logging
from typing import Iterable

from ..errors import InvalidStateTransitionError, ValidationError
from ..extensions import db
from ..models import Sale, SaleLine
from ..models.stock import BATCH_STATUS_RECALLED
from ..repositories import documents, movements, stock_levels
from ..time_utils import utcnow
from ..validation import optional_id, require_id
from ..values import (
    LotSpec,
    MovementIntent,
    MovementResult,
    MovementType,
    Receipt,
    ReceiptLine,
    SaleLineInput,
    SaleRef,
    StockKey,
)
from . import catalog_service, ledger_service
from .concurrency import run_with_retry, transaction_scope
from .document_service import DOCUMENT_TYPE_SALE, next_document_number

logger = logging.getLogger(__name__)

# Sale status constants
SALE_STATUS_DRAFT = "DRAFT"
SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_CANCELLED = "CANCELLED"


def _line_key(sale: Sale, line: SaleLine) -> StockKey:
    return StockKey(sale.tenant_id, sale.location_id, line.product_id, line.variant_id)


def get_sale(sale_id: int) -> Sale:
    return documents.get(Sale, sale_id)


def create_draft_sale(
    *,
    location_id: int,
    actor_id: int,
    tenant_id: int | None = None,
    customer_id: int | None = None,
) -> Sale:
    """Open a DRAFT sale; tenant_id, when given, must own the location."""
    require_id(actor_id, "actor_id")
    optional_id(customer_id, "customer_id")

    def _op():
        with transaction_scope():
            location = catalog_service.get_location(location_id, tenant_id=tenant_id)
            sale = Sale(
                tenant_id=location.tenant_id,
                location_id=location.id,
                customer_id=customer_id,
                document_number=next_document_number(
                    location_id=location.id,
                    document_type=DOCUMENT_TYPE_SALE,
                ),
                status=SALE_STATUS_DRAFT,
                total_cents=0,
                created_by=actor_id,
            )
            db.session.add(sale)
            db.session.flush()
        logger.info("sale.created", extra={"sale_id": sale.id, "location_id": location_id})
        return sale

    return run_with_retry(_op)


def set_sale_lines(*, sale_id: int, lines: Iterable[SaleLineInput]) -> Sale:
    """Replace all lines of a draft sale."""
    lines = list(lines)
    for line in lines:
        if not isinstance(line, SaleLineInput):
            raise ValidationError("lines must be SaleLineInput values")

    def _op():
        with transaction_scope():
            sale = documents.lock_sale(sale_id)
            if sale.status != SALE_STATUS_DRAFT:
                raise InvalidStateTransitionError(
                    f"Cannot edit lines of sale in {sale.status} status",
                    sale_id=sale_id,
                    status=sale.status,
                )
            location = catalog_service.get_location(sale.location_id)
            for line in lines:
                catalog_service.require_product_at_location(line.product_id, location)

            sale.lines.clear()
            db.session.flush()
            total = 0
            for line in lines:
                line_total = line.quantity * line.unit_price_cents
                sale.lines.append(
                    SaleLine(
                        product_id=line.product_id,
                        variant_id=line.variant_id,
                        quantity=line.quantity,
                        unit_price_cents=line.unit_price_cents,
                        line_total_cents=line_total,
                    )
                )
                total += line_total
            sale.total_cents = total
            db.session.flush()
        return sale

    return run_with_retry(_op)


def finalize_sale(*, sale_id: int, actor_id: int) -> Receipt:
    """
    Complete a draft sale: one SALE movement per line, FEFO lot allocation.

    Raises:
        InvalidStateTransitionError: sale is not DRAFT
        ValidationError: sale has no lines
        InsufficientStockError / InsufficientBatchStockError: a line cannot be
            covered; details name the product and nothing is written
    """
    require_id(actor_id, "actor_id")

    def _op() -> Receipt:
        with transaction_scope():
            sale = documents.lock_sale(sale_id)
            if sale.status != SALE_STATUS_DRAFT:
                raise InvalidStateTransitionError(
                    f"Cannot complete sale in {sale.status} status",
                    sale_id=sale_id,
                    status=sale.status,
                )
            if not sale.lines:
                raise ValidationError("Cannot complete a sale with no lines", sale_id=sale_id)

            keys = [_line_key(sale, line) for line in sale.lines]
            stock_levels.lock_many(keys)

            receipt_lines = []
            for line, key in zip(sale.lines, keys):
                result = ledger_service.apply(
                    MovementIntent(
                        key=key,
                        movement_type=MovementType.SALE,
                        delta=-line.quantity,
                        actor_id=actor_id,
                        reference=SaleRef(sale.id),
                        reason=f"Sale {sale.document_number}",
                    )
                )
                line.movement_id = result.movement_id
                receipt_lines.append(
                    ReceiptLine(
                        product_id=line.product_id,
                        variant_id=line.variant_id,
                        quantity=line.quantity,
                        unit_price_cents=line.unit_price_cents,
                        line_total_cents=line.line_total_cents,
                        movement_id=result.movement_id,
                        allocations=result.allocations,
                    )
                )

            sale.status = SALE_STATUS_COMPLETED
            sale.completed_by = actor_id
            sale.completed_at = utcnow()
            sale.total_cents = sum(line.line_total_cents for line in sale.lines)
            db.session.flush()

            receipt = Receipt(
                sale_id=sale.id,
                document_number=sale.document_number,
                location_id=sale.location_id,
                completed_at=sale.completed_at,
                total_cents=sale.total_cents,
                lines=tuple(receipt_lines),
            )
        logger.info(
            "sale.finalized",
            extra={"sale_id": sale_id, "line_count": len(receipt.lines), "total_cents": receipt.total_cents},
        )
        return receipt

    return run_with_retry(_op)


def cancel_sale(*, sale_id: int, actor_id: int | None = None) -> Sale:
    """Cancel a draft sale. Completed sales are reversed with return_sale instead."""
    optional_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            sale = documents.lock_sale(sale_id)
            if sale.status != SALE_STATUS_DRAFT:
                raise InvalidStateTransitionError(
                    f"Cannot cancel sale in {sale.status} status",
                    sale_id=sale_id,
                    status=sale.status,
                )
            sale.status = SALE_STATUS_CANCELLED
            sale.cancelled_by = actor_id
            sale.cancelled_at = utcnow()
            db.session.flush()
        logger.info("sale.cancelled", extra={"sale_id": sale_id})
        return sale

    return run_with_retry(_op)


def _return_lots(line: SaleLine) -> tuple[LotSpec, ...]:
    """
    Lots to restock for a sale line: one per consumed lot, same expiration.

    Units of a lot recalled since the sale come back RECALLED.
    """
    if line.movement_id is None:
        return ()
    movement = movements.get(line.movement_id)
    return tuple(
        LotSpec(
            quantity=batch_line.quantity,
            expiration_date=batch_line.batch.expiration_date,
            batch_number=batch_line.batch.batch_number,
            source_batch_id=batch_line.batch_id,
            recalled=batch_line.batch.status == BATCH_STATUS_RECALLED,
        )
        for batch_line in movement.batch_lines
    )


def return_sale(*, sale_id: int, actor_id: int, reason: str | None = None) -> list[MovementResult]:
    """
    Restock a completed sale with compensating RETURN movements.

    The sale itself stays COMPLETED; returned_at marks it so the return
    cannot be posted twice.
    """
    require_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            sale = documents.lock_sale(sale_id)
            if sale.status != SALE_STATUS_COMPLETED:
                raise InvalidStateTransitionError(
                    f"Cannot return sale in {sale.status} status",
                    sale_id=sale_id,
                    status=sale.status,
                )
            if sale.returned_at is not None:
                raise InvalidStateTransitionError(
                    "Sale has already been returned",
                    sale_id=sale_id,
                    status=sale.status,
                )

            keys = [_line_key(sale, line) for line in sale.lines]
            stock_levels.lock_many(keys)

            results = []
            for line, key in zip(sale.lines, keys):
                result = ledger_service.apply(
                    MovementIntent(
                        key=key,
                        movement_type=MovementType.RETURN,
                        delta=line.quantity,
                        actor_id=actor_id,
                        reference=SaleRef(sale.id),
                        lots=_return_lots(line),
                        reason=reason or f"Return of sale {sale.document_number}",
                    )
                )
                line.return_movement_id = result.movement_id
                results.append(result)

            sale.returned_at = utcnow()
            sale.returned_by = actor_id
            sale.return_reason = reason
            db.session.flush()
        logger.info("sale.returned", extra={"sale_id": sale_id, "line_count": len(results)})
        return results

    return run_with_retry(_op)
