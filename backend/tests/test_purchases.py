# Overview: Pytest coverage for purchase order receiving.

import pytest

from stockledger.errors import (
    BatchNumberConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from stockledger.models import ProductBatch, StockMovement
from stockledger.services import purchase_service, stock_service
from stockledger.values import MovementType, PurchaseLineInput, ReceiveLineInput

from conftest import days_from_today


def _confirmed_order(shop, actor_id, *lines):
    order = purchase_service.create_purchase_order(
        location_id=shop.id,
        actor_id=actor_id,
        lines=list(lines),
        supplier_reference="SUP-778",
    )
    return purchase_service.confirm_purchase_order(purchase_order_id=order.id, actor_id=actor_id)


class TestPurchaseOrderLifecycle:
    def test_create_and_confirm(self, db_session, shop, tracked_product, actor_id):
        order = purchase_service.create_purchase_order(location_id=shop.id, actor_id=actor_id)
        purchase_service.add_purchase_order_line(
            purchase_order_id=order.id,
            line=PurchaseLineInput(tracked_product.id, 12, unit_cost_cents=80),
        )

        confirmed = purchase_service.confirm_purchase_order(purchase_order_id=order.id)

        assert confirmed.status == purchase_service.PO_STATUS_CONFIRMED
        assert confirmed.document_number == f"PO-{shop.id:03d}-0001"
        assert [line.ordered_quantity for line in confirmed.lines] == [12]

    def test_confirm_requires_lines(self, db_session, shop, actor_id):
        order = purchase_service.create_purchase_order(location_id=shop.id, actor_id=actor_id)

        with pytest.raises(ValidationError):
            purchase_service.confirm_purchase_order(purchase_order_id=order.id, actor_id=actor_id)

    def test_lines_frozen_after_confirm(self, db_session, shop, tracked_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 5))

        with pytest.raises(InvalidStateTransitionError):
            purchase_service.add_purchase_order_line(
                purchase_order_id=order.id, line=PurchaseLineInput(tracked_product.id, 1)
            )

    def test_cancel_draft_and_confirmed(self, db_session, shop, tracked_product, actor_id):
        draft = purchase_service.create_purchase_order(location_id=shop.id, actor_id=actor_id)
        confirmed = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 5))

        purchase_service.cancel_purchase_order(purchase_order_id=draft.id)
        purchase_service.cancel_purchase_order(purchase_order_id=confirmed.id, actor_id=actor_id)

        assert purchase_service.get_purchase_order(draft.id).status == purchase_service.PO_STATUS_CANCELLED
        assert purchase_service.get_purchase_order(confirmed.id).status == purchase_service.PO_STATUS_CANCELLED
        with pytest.raises(InvalidStateTransitionError):
            purchase_service.cancel_purchase_order(purchase_order_id=draft.id)


class TestReceivePurchaseOrder:
    def test_full_receipt(self, db_session, shop, tracked_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 100))
        line = order.lines[0]

        results = purchase_service.receive_purchase_order(
            purchase_order_id=order.id,
            lines=[ReceiveLineInput(line.id, 100, batch_number="L1", expiration_date=days_from_today(120))],
            actor_id=actor_id,
        )

        assert len(results) == 1
        assert results[0].movement_type == MovementType.IN
        assert results[0].quantity_after == 100
        assert stock_service.get_stock_level(shop.id, tracked_product.id).quantity == 100

        batch = db_session.query(ProductBatch).one()
        assert (batch.batch_number, batch.quantity, batch.expiration_date) == ("L1", 100, days_from_today(120))
        movement = db_session.query(StockMovement).one()
        assert (movement.reference_type, movement.reference_id) == ("purchase_order", order.id)

        order = purchase_service.get_purchase_order(order.id)
        assert order.status == purchase_service.PO_STATUS_RECEIVED
        assert order.received_at is not None

    def test_partial_receipt_stays_confirmed(self, db_session, shop, tracked_product, second_product, actor_id):
        order = _confirmed_order(
            shop,
            actor_id,
            PurchaseLineInput(tracked_product.id, 10),
            PurchaseLineInput(second_product.id, 4),
        )
        first, second = order.lines

        purchase_service.receive_purchase_order(
            purchase_order_id=order.id,
            lines=[ReceiveLineInput(first.id, 6, batch_number="P1", expiration_date=days_from_today(60))],
            actor_id=actor_id,
        )

        order = purchase_service.get_purchase_order(order.id)
        assert order.status == purchase_service.PO_STATUS_CONFIRMED
        assert order.is_partially_received
        assert order.lines[0].remaining_quantity == 4

        purchase_service.receive_purchase_order(
            purchase_order_id=order.id,
            lines=[
                ReceiveLineInput(first.id, 4, batch_number="P2", expiration_date=days_from_today(70)),
                ReceiveLineInput(second.id, 4, batch_number="Q1", expiration_date=days_from_today(70)),
            ],
            actor_id=actor_id,
        )

        order = purchase_service.get_purchase_order(order.id)
        assert order.status == purchase_service.PO_STATUS_RECEIVED
        assert stock_service.get_stock_level(shop.id, tracked_product.id).quantity == 10
        assert db_session.query(ProductBatch).filter_by(product_id=tracked_product.id).count() == 2

    def test_over_receipt_rejected(self, db_session, shop, tracked_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 5))
        line = order.lines[0]

        with pytest.raises(ValidationError) as exc:
            purchase_service.receive_purchase_order(
                purchase_order_id=order.id,
                lines=[
                    ReceiveLineInput(line.id, 3, batch_number="A", expiration_date=days_from_today(30)),
                    ReceiveLineInput(line.id, 3, batch_number="B", expiration_date=days_from_today(30)),
                ],
                actor_id=actor_id,
            )

        assert exc.value.details["remaining"] == 5
        assert db_session.query(StockMovement).count() == 0

    def test_tracked_product_requires_batch_number(self, db_session, shop, tracked_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 5))

        with pytest.raises(ValidationError):
            purchase_service.receive_purchase_order(
                purchase_order_id=order.id,
                lines=[ReceiveLineInput(order.lines[0].id, 5)],
                actor_id=actor_id,
            )

    def test_untracked_product_needs_no_batch(self, db_session, shop, plain_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(plain_product.id, 5))

        purchase_service.receive_purchase_order(
            purchase_order_id=order.id,
            lines=[ReceiveLineInput(order.lines[0].id, 5)],
            actor_id=actor_id,
        )

        assert stock_service.get_stock_level(shop.id, plain_product.id).quantity == 5
        assert db_session.query(ProductBatch).count() == 0

    def test_expired_lot_rejected_before_transaction(self, db_session, shop, tracked_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 5))

        with pytest.raises(ValidationError):
            purchase_service.receive_purchase_order(
                purchase_order_id=order.id,
                lines=[ReceiveLineInput(order.lines[0].id, 5, batch_number="X", expiration_date=days_from_today(-3))],
                actor_id=actor_id,
            )

        assert purchase_service.get_purchase_order(order.id).lines[0].received_quantity == 0

    def test_duplicate_batch_rolls_back_whole_receipt(self, db_session, shop, tracked_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 10))
        line_id = order.lines[0].id

        with pytest.raises(BatchNumberConflictError):
            purchase_service.receive_purchase_order(
                purchase_order_id=order.id,
                lines=[
                    ReceiveLineInput(line_id, 4, batch_number="DUP", expiration_date=days_from_today(30)),
                    ReceiveLineInput(line_id, 4, batch_number="DUP", expiration_date=days_from_today(40)),
                ],
                actor_id=actor_id,
            )

        assert stock_service.get_stock_level(shop.id, tracked_product.id).quantity == 0
        assert purchase_service.get_purchase_order(order.id).lines[0].received_quantity == 0

    def test_unknown_line_rejected(self, db_session, shop, tracked_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 5))

        with pytest.raises(NotFoundError):
            purchase_service.receive_purchase_order(
                purchase_order_id=order.id,
                lines=[ReceiveLineInput(9999, 1, batch_number="A", expiration_date=days_from_today(30))],
                actor_id=actor_id,
            )

    def test_draft_cannot_be_received(self, db_session, shop, tracked_product, actor_id):
        order = purchase_service.create_purchase_order(
            location_id=shop.id,
            actor_id=actor_id,
            lines=[PurchaseLineInput(tracked_product.id, 5)],
        )

        with pytest.raises(InvalidStateTransitionError):
            purchase_service.receive_purchase_order(
                purchase_order_id=order.id,
                lines=[ReceiveLineInput(order.lines[0].id, 5, batch_number="A", expiration_date=days_from_today(30))],
                actor_id=actor_id,
            )

    def test_empty_receipt_rejected(self, db_session, shop, tracked_product, actor_id):
        order = _confirmed_order(shop, actor_id, PurchaseLineInput(tracked_product.id, 5))

        with pytest.raises(ValidationError):
            purchase_service.receive_purchase_order(purchase_order_id=order.id, lines=[], actor_id=actor_id)
