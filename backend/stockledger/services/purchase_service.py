# backend/stockledger/services/purchase_service.py
"""
Purchase order workflow.

WHY: Supplier stock enters the system only through receipts against a
confirmed order. Each received line becomes one IN movement that registers
the supplier lot (batch number + expiration) in the lot registry.

LIFECYCLE:
1. DRAFT: create_purchase_order / add_purchase_order_line
2. CONFIRMED: confirm_purchase_order; receipts allowed, partial receipts
   keep the order here (is_partially_received)
3. RECEIVED: every line fully received
4. CANCELLED: from DRAFT or CONFIRMED; stock already received stays
"""
from __future__ import annotations

import logging
from typing import Iterable

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderLine
from ..repositories import documents, stock_levels
from ..time_utils import today, utcnow
from ..validation import optional_id, require_id
from ..values import (
    LotSpec,
    MovementIntent,
    MovementResult,
    MovementType,
    PurchaseLineInput,
    PurchaseOrderRef,
    ReceiveLineInput,
    StockKey,
)
from . import catalog_service, ledger_service
from .concurrency import run_with_retry, transaction_scope
from .document_service import DOCUMENT_TYPE_PURCHASE_ORDER, next_document_number

logger = logging.getLogger(__name__)

# Purchase order status constants
PO_STATUS_DRAFT = "DRAFT"
PO_STATUS_CONFIRMED = "CONFIRMED"
PO_STATUS_RECEIVED = "RECEIVED"
PO_STATUS_CANCELLED = "CANCELLED"


def get_purchase_order(purchase_order_id: int) -> PurchaseOrder:
    return documents.get(PurchaseOrder, purchase_order_id)


def _add_line(order: PurchaseOrder, location, line: PurchaseLineInput) -> PurchaseOrderLine:
    if not isinstance(line, PurchaseLineInput):
        raise ValidationError("lines must be PurchaseLineInput values")
    catalog_service.require_product_at_location(line.product_id, location)
    po_line = PurchaseOrderLine(
        product_id=line.product_id,
        variant_id=line.variant_id,
        ordered_quantity=line.quantity,
        received_quantity=0,
        unit_cost_cents=line.unit_cost_cents,
    )
    order.lines.append(po_line)
    return po_line


def create_purchase_order(
    *,
    location_id: int,
    actor_id: int,
    lines: Iterable[PurchaseLineInput] = (),
    supplier_reference: str | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    require_id(actor_id, "actor_id")
    lines = list(lines)

    def _op():
        with transaction_scope():
            location = catalog_service.get_location(location_id)
            order = PurchaseOrder(
                tenant_id=location.tenant_id,
                location_id=location.id,
                document_number=next_document_number(
                    location_id=location.id,
                    document_type=DOCUMENT_TYPE_PURCHASE_ORDER,
                ),
                supplier_reference=supplier_reference,
                status=PO_STATUS_DRAFT,
                notes=notes,
                created_by=actor_id,
            )
            db.session.add(order)
            for line in lines:
                _add_line(order, location, line)
            db.session.flush()
        logger.info("purchase_order.created", extra={"purchase_order_id": order.id, "location_id": location_id})
        return order

    return run_with_retry(_op)


def add_purchase_order_line(*, purchase_order_id: int, line: PurchaseLineInput) -> PurchaseOrderLine:
    def _op():
        with transaction_scope():
            order = documents.lock_purchase_order(purchase_order_id)
            if order.status != PO_STATUS_DRAFT:
                raise InvalidStateTransitionError(
                    f"Cannot add lines to purchase order in {order.status} status",
                    purchase_order_id=purchase_order_id,
                    status=order.status,
                )
            location = catalog_service.get_location(order.location_id)
            po_line = _add_line(order, location, line)
            db.session.flush()
        return po_line

    return run_with_retry(_op)


def confirm_purchase_order(*, purchase_order_id: int, actor_id: int | None = None) -> PurchaseOrder:
    optional_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            order = documents.lock_purchase_order(purchase_order_id)
            if order.status != PO_STATUS_DRAFT:
                raise InvalidStateTransitionError(
                    f"Cannot confirm purchase order in {order.status} status",
                    purchase_order_id=purchase_order_id,
                    status=order.status,
                )
            if not order.lines:
                raise ValidationError(
                    "Cannot confirm a purchase order with no lines",
                    purchase_order_id=purchase_order_id,
                )
            order.status = PO_STATUS_CONFIRMED
            order.confirmed_by = actor_id
            order.confirmed_at = utcnow()
            db.session.flush()
        logger.info("purchase_order.confirmed", extra={"purchase_order_id": purchase_order_id})
        return order

    return run_with_retry(_op)


def _validate_receipt_lines(lines: list[ReceiveLineInput]) -> None:
    if not lines:
        raise ValidationError("At least one receipt line is required")
    as_of = today()
    for line in lines:
        if not isinstance(line, ReceiveLineInput):
            raise ValidationError("lines must be ReceiveLineInput values")
        if line.expiration_date is not None and line.expiration_date < as_of:
            raise ValidationError(
                f"Batch {line.batch_number} is already expired",
                line_id=line.line_id,
                expiration_date=line.expiration_date.isoformat(),
            )


def receive_purchase_order(
    *,
    purchase_order_id: int,
    lines: Iterable[ReceiveLineInput],
    actor_id: int,
) -> list[MovementResult]:
    """
    Receive (part of) a confirmed order: one IN movement per receipt line.

    Lot-tracked products need a batch number; the lot is registered with its
    expiration date. Received quantity may not exceed what is still open on
    the order line.

    Raises:
        ValidationError: bad quantities, missing batch number, expired lot
        BatchNumberConflictError: batch number already registered
        InvalidStateTransitionError: order is not CONFIRMED
    """
    require_id(actor_id, "actor_id")
    lines = list(lines)
    _validate_receipt_lines(lines)

    def _op():
        with transaction_scope():
            order = documents.lock_purchase_order(purchase_order_id)
            if order.status != PO_STATUS_CONFIRMED:
                raise InvalidStateTransitionError(
                    f"Cannot receive purchase order in {order.status} status",
                    purchase_order_id=purchase_order_id,
                    status=order.status,
                )

            order_lines = {line.id: line for line in order.lines}
            pending: dict[int, int] = {}
            plan = []
            for receipt in lines:
                po_line = order_lines.get(receipt.line_id)
                if po_line is None:
                    raise NotFoundError(
                        f"Line {receipt.line_id} is not part of purchase order {purchase_order_id}",
                        line_id=receipt.line_id,
                    )
                pending[po_line.id] = pending.get(po_line.id, 0) + receipt.quantity
                if pending[po_line.id] > po_line.remaining_quantity:
                    raise ValidationError(
                        f"Received quantity exceeds remaining quantity on line {po_line.id}",
                        line_id=po_line.id,
                        remaining=po_line.remaining_quantity,
                        requested=pending[po_line.id],
                    )
                product = catalog_service.get_product(po_line.product_id, tenant_id=order.tenant_id)
                if product.track_batches and not receipt.batch_number:
                    raise ValidationError(
                        f"Batch number is required for product {product.id}",
                        product_id=product.id,
                        line_id=po_line.id,
                    )
                key = StockKey(order.tenant_id, order.location_id, po_line.product_id, po_line.variant_id)
                plan.append((receipt, po_line, product, key))

            stock_levels.lock_many(key for _, _, _, key in plan)

            results = []
            for receipt, po_line, product, key in plan:
                lots = ()
                if product.track_batches:
                    lots = (
                        LotSpec(
                            quantity=receipt.quantity,
                            expiration_date=receipt.expiration_date,
                            batch_number=receipt.batch_number,
                            manufactured_on=receipt.manufactured_on,
                        ),
                    )
                result = ledger_service.apply(
                    MovementIntent(
                        key=key,
                        movement_type=MovementType.IN,
                        delta=receipt.quantity,
                        actor_id=actor_id,
                        reference=PurchaseOrderRef(order.id),
                        lots=lots,
                        reason=f"Purchase order {order.document_number}",
                    )
                )
                po_line.received_quantity += receipt.quantity
                results.append(result)

            if order.is_fully_received:
                order.status = PO_STATUS_RECEIVED
                order.received_at = utcnow()
            db.session.flush()
            status = order.status
        logger.info(
            "purchase_order.received",
            extra={"purchase_order_id": purchase_order_id, "line_count": len(results), "status": status},
        )
        return results

    return run_with_retry(_op)


def cancel_purchase_order(*, purchase_order_id: int, actor_id: int | None = None) -> PurchaseOrder:
    optional_id(actor_id, "actor_id")

    def _op():
        with transaction_scope():
            order = documents.lock_purchase_order(purchase_order_id)
            if order.status not in {PO_STATUS_DRAFT, PO_STATUS_CONFIRMED}:
                raise InvalidStateTransitionError(
                    f"Cannot cancel purchase order in {order.status} status",
                    purchase_order_id=purchase_order_id,
                    status=order.status,
                )
            order.status = PO_STATUS_CANCELLED
            order.cancelled_by = actor_id
            order.cancelled_at = utcnow()
            db.session.flush()
        logger.info("purchase_order.cancelled", extra={"purchase_order_id": purchase_order_id})
        return order

    return run_with_retry(_op)
