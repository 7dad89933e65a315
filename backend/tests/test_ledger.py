# Overview: Pytest coverage for the stock ledger (apply, replay, verification, recall).

"""
Stock Ledger Tests

Every stock change goes through ledger_service.apply(). These tests verify:
1. The projection, the append-only movement log and the lot registry agree
   after every committed operation
2. Shortfalls and invariant breaks roll back without writing anything
3. Movements cannot be edited or deleted through the ORM
4. Replaying a key's movements reproduces its stored quantity
"""

import pytest
from sqlalchemy import update

from stockledger.errors import (
    ConsistencyViolationError,
    InsufficientBatchStockError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from stockledger.models import ProductBatch, StockLevel, StockMovement, StockMovementBatch
from stockledger.models.stock import (
    BATCH_STATUS_ACTIVE,
    BATCH_STATUS_DEPLETED,
    BATCH_STATUS_RECALLED,
)
from stockledger.services import ledger_service, stock_service
from stockledger.values import InventoryRef, MovementIntent, MovementType, StockKey

from conftest import days_from_today, receive


def _key(location, product, variant_id=None):
    return StockKey(location.tenant_id, location.id, product.id, variant_id)


def _movement_count(db_session, product):
    return db_session.query(StockMovement).filter_by(product_id=product.id).count()


def _assert_consistent(location, product, variant_id=None):
    report = ledger_service.verify_stock_level(_key(location, product, variant_id))
    assert report.ok, report
    return report


class TestApply:
    """Core apply() behaviour."""

    def test_receive_creates_level_lot_and_movement(self, db_session, shop, tracked_product, actor_id):
        result = receive(shop, tracked_product, 100, batch_number="L1", expires_in=90)

        assert result.movement_type == MovementType.IN
        assert (result.quantity_before, result.quantity_after) == (0, 100)
        assert len(result.created_batch_ids) == 1

        level = db_session.query(StockLevel).filter_by(product_id=tracked_product.id).one()
        assert level.quantity == 100
        assert level.available_quantity == 100
        assert level.reserved_quantity == 0

        batch = db_session.get(ProductBatch, result.created_batch_ids[0])
        assert batch.batch_number == "L1"
        assert batch.quantity == batch.available_quantity == 100
        assert batch.stock_movement_id == result.movement_id

        movement = db_session.get(StockMovement, result.movement_id)
        assert movement.created_by == actor_id
        assert movement.quantity_after == 100
        assert [line.batch_id for line in movement.batch_lines] == [batch.id]
        _assert_consistent(shop, tracked_product)

    def test_receive_without_batch_number_generates_one(self, db_session, shop, tracked_product):
        result = receive(shop, tracked_product, 5)

        batch = db_session.get(ProductBatch, result.created_batch_ids[0])
        assert batch.batch_number == f"LOT-{result.movement_id}"
        assert batch.expiration_date is None

    def test_untracked_product_has_no_lots(self, db_session, shop, plain_product):
        receive(shop, plain_product, 12)
        ledger_service.issue_stock(location_id=shop.id, product_id=plain_product.id, quantity=5, actor_id=1)

        assert db_session.query(ProductBatch).count() == 0
        report = _assert_consistent(shop, plain_product)
        assert report.projected_quantity == 7
        assert report.batch_quantity is None

    def test_outbound_allocates_fefo(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 10, batch_number="LATE", expires_in=60)
        receive(shop, tracked_product, 5, batch_number="EARLY", expires_in=20)

        result = ledger_service.issue_stock(
            location_id=shop.id, product_id=tracked_product.id, quantity=7, actor_id=1
        )

        assert [(a.batch_number, a.quantity) for a in result.allocations] == [("EARLY", 5), ("LATE", 2)]
        early = db_session.query(ProductBatch).filter_by(batch_number="EARLY").one()
        late = db_session.query(ProductBatch).filter_by(batch_number="LATE").one()
        assert (early.available_quantity, early.status) == (0, BATCH_STATUS_DEPLETED)
        assert (late.available_quantity, late.status) == (8, BATCH_STATUS_ACTIVE)
        _assert_consistent(shop, tracked_product)

    def test_insufficient_stock_writes_nothing(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 70, batch_number="L1", expires_in=90)
        before = _movement_count(db_session, tracked_product)

        with pytest.raises(InsufficientStockError) as exc:
            ledger_service.issue_stock(
                location_id=shop.id, product_id=tracked_product.id, quantity=1000, actor_id=1
            )

        assert exc.value.product_id == tracked_product.id
        assert exc.value.details["requested"] == 1000
        assert exc.value.details["available"] == 70
        assert stock_service.get_stock_level(shop.id, tracked_product.id).quantity == 70
        assert _movement_count(db_session, tracked_product) == before

    def test_expired_lot_is_never_sold(self, db_session, shop, tracked_product):
        result = receive(shop, tracked_product, 10, batch_number="OLD", expires_in=5)
        batch = db_session.get(ProductBatch, result.created_batch_ids[0])
        batch.expiration_date = days_from_today(-1)
        db_session.commit()

        with pytest.raises(InsufficientBatchStockError) as exc:
            ledger_service.issue_stock(
                location_id=shop.id, product_id=tracked_product.id, quantity=3, actor_id=1
            )

        assert exc.value.details["available"] == 0
        assert stock_service.get_stock_level(shop.id, tracked_product.id).quantity == 10
        assert db_session.get(ProductBatch, batch.id).available_quantity == 10

    def test_lot_expiring_today_still_sells(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 4, batch_number="TODAY", expires_in=0)

        result = ledger_service.issue_stock(
            location_id=shop.id, product_id=tracked_product.id, quantity=4, actor_id=1
        )

        assert [a.batch_number for a in result.allocations] == ["TODAY"]

    def test_variants_are_separate_levels(self, db_session, shop, plain_product):
        ledger_service.receive_stock(
            location_id=shop.id, product_id=plain_product.id, quantity=3, actor_id=1, variant_id=11
        )
        receive(shop, plain_product, 8)

        assert stock_service.get_stock_level(shop.id, plain_product.id, 11).quantity == 3
        assert stock_service.get_stock_level(shop.id, plain_product.id).quantity == 8
        assert db_session.query(StockLevel).count() == 2

    def test_cross_tenant_key_rejected(self, db_session, shop, foreign_location, tracked_product):
        key = StockKey(shop.tenant_id, foreign_location.id, tracked_product.id)

        with pytest.raises(NotFoundError):
            ledger_service.apply(MovementIntent(key, MovementType.IN, 5, actor_id=1))

        assert db_session.query(StockLevel).count() == 0

    def test_apply_rejects_loose_arguments(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.apply({"delta": 5})

    def test_receive_rejects_fractional_quantity(self, db_session, shop, tracked_product):
        with pytest.raises(ValidationError):
            ledger_service.receive_stock(
                location_id=shop.id, product_id=tracked_product.id, quantity="2.5", actor_id=1
            )
        assert db_session.query(StockMovement).count() == 0

    def test_batch_drift_is_a_consistency_violation(self, db_session, shop, tracked_product):
        result = receive(shop, tracked_product, 10, batch_number="L1", expires_in=30)
        db_session.execute(
            update(ProductBatch)
            .where(ProductBatch.id == result.created_batch_ids[0])
            .values(available_quantity=9)
        )
        db_session.commit()

        with pytest.raises(ConsistencyViolationError):
            receive(shop, tracked_product, 1, batch_number="L2", expires_in=30)

        assert stock_service.get_stock_level(shop.id, tracked_product.id).quantity == 10
        assert _movement_count(db_session, tracked_product) == 1

    def test_lot_details_rejected_for_untracked_product(self, db_session, shop, plain_product):
        with pytest.raises(ValidationError):
            receive(shop, plain_product, 4, batch_number="L1")
        with pytest.raises(ValidationError):
            receive(shop, plain_product, 4, expires_in=30)

        assert _movement_count(db_session, plain_product) == 0
        assert db_session.query(ProductBatch).count() == 0


class TestAdjustments:
    def test_positive_adjustment_inherits_earliest_expiration(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 5, batch_number="A", expires_in=40)
        receive(shop, tracked_product, 5, batch_number="B", expires_in=15)

        result = ledger_service.apply(
            MovementIntent(_key(shop, tracked_product), MovementType.ADJUSTMENT, 3, actor_id=1)
        )

        batch = db_session.get(ProductBatch, result.created_batch_ids[0])
        assert batch.batch_number == f"ADJ-{result.movement_id}"
        assert batch.expiration_date == days_from_today(15)
        _assert_consistent(shop, tracked_product)

    def test_negative_adjustment_writes_off_expired_lot_first(self, db_session, shop, tracked_product):
        expired = receive(shop, tracked_product, 4, batch_number="EXP", expires_in=3)
        receive(shop, tracked_product, 6, batch_number="GOOD", expires_in=30)
        batch = db_session.get(ProductBatch, expired.created_batch_ids[0])
        batch.expiration_date = days_from_today(-2)
        db_session.commit()

        result = ledger_service.apply(
            MovementIntent(
                _key(shop, tracked_product),
                MovementType.ADJUSTMENT,
                -5,
                actor_id=1,
                reference=InventoryRef(1),
            )
        )

        assert [(a.batch_number, a.quantity) for a in result.allocations] == [("EXP", 4), ("GOOD", 1)]
        assert result.quantity_after == 5
        _assert_consistent(shop, tracked_product)

    def test_negative_adjustment_below_zero_rejected_by_default(self, db_session, shop, plain_product):
        receive(shop, plain_product, 2)

        with pytest.raises(InsufficientStockError):
            ledger_service.apply(
                MovementIntent(_key(shop, plain_product), MovementType.ADJUSTMENT, -5, actor_id=1)
            )

    def test_negative_adjustment_allowed_when_enabled(self, app, db_session, shop, plain_product, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_NEGATIVE_ADJUSTMENTS", True)
        receive(shop, plain_product, 2)

        result = ledger_service.apply(
            MovementIntent(_key(shop, plain_product), MovementType.ADJUSTMENT, -5, actor_id=1)
        )

        assert result.quantity_after == -3
        report = _assert_consistent(shop, plain_product)
        assert report.replayed_quantity == -3

    def test_negative_flag_never_applies_to_sales(self, app, db_session, shop, plain_product, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_NEGATIVE_ADJUSTMENTS", True)
        receive(shop, plain_product, 2)

        with pytest.raises(InsufficientStockError):
            ledger_service.issue_stock(location_id=shop.id, product_id=plain_product.id, quantity=3, actor_id=1)

    def test_negative_flag_never_applies_to_tracked_products(
        self, app, db_session, shop, tracked_product, monkeypatch
    ):
        monkeypatch.setitem(app.config, "ALLOW_NEGATIVE_ADJUSTMENTS", True)
        receive(shop, tracked_product, 2, batch_number="L1", expires_in=30)

        with pytest.raises(InsufficientStockError):
            ledger_service.apply(
                MovementIntent(_key(shop, tracked_product), MovementType.ADJUSTMENT, -5, actor_id=1)
            )


class TestImmutability:
    """StockMovement rows are append-only."""

    def test_update_rejected(self, db_session, shop, plain_product):
        result = receive(shop, plain_product, 3)
        movement = db_session.get(StockMovement, result.movement_id)
        movement.reference = "edited"

        with pytest.raises(ConsistencyViolationError):
            db_session.flush()
        db_session.rollback()

        assert db_session.get(StockMovement, result.movement_id).reference is None

    def test_delete_rejected(self, db_session, shop, tracked_product):
        result = receive(shop, tracked_product, 3, batch_number="L1", expires_in=30)
        line = db_session.query(StockMovementBatch).filter_by(movement_id=result.movement_id).one()
        db_session.delete(line)

        with pytest.raises(ConsistencyViolationError):
            db_session.flush()
        db_session.rollback()

        assert db_session.query(StockMovementBatch).count() == 1


class TestReplay:
    def test_replay_reproduces_quantity(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 20, batch_number="L1", expires_in=30)
        ledger_service.issue_stock(location_id=shop.id, product_id=tracked_product.id, quantity=8, actor_id=1)
        receive(shop, tracked_product, 5, batch_number="L2", expires_in=50)

        quantity, chain_ok = ledger_service.replay_quantity(_key(shop, tracked_product))

        assert (quantity, chain_ok) == (17, True)
        assert stock_service.get_stock_level(shop.id, tracked_product.id).quantity == 17

    def test_verify_reports_drifted_projection(self, db_session, shop, plain_product):
        receive(shop, plain_product, 10)
        db_session.execute(
            update(StockLevel)
            .where(StockLevel.product_id == plain_product.id)
            .values(quantity=12, available_quantity=12)
        )
        db_session.commit()

        report = ledger_service.verify_stock_level(_key(shop, plain_product))

        assert not report.ok
        assert report.projected_quantity == 12
        assert report.replayed_quantity == 10
        # Reporting never corrects the row
        assert stock_service.get_stock_level(shop.id, plain_product.id).quantity == 12

    def test_verify_all_scoped_to_tenant(
        self, db_session, shop, foreign_location, plain_product, foreign_product
    ):
        receive(shop, plain_product, 4)
        receive(foreign_location, foreign_product, 6)

        reports = ledger_service.verify_all(shop.tenant_id)

        assert [r.key.product_id for r in reports] == [plain_product.id]
        assert all(r.ok for r in reports)


class TestRecall:
    def test_recall_writes_off_only_that_lot(self, db_session, shop, tracked_product, actor_id):
        receive(shop, tracked_product, 10, batch_number="KEEP", expires_in=10)
        bad = receive(shop, tracked_product, 5, batch_number="BAD", expires_in=60)
        batch_id = bad.created_batch_ids[0]

        result = ledger_service.recall_batch(batch_id=batch_id, actor_id=actor_id, reason="Supplier recall")

        assert result.movement_type == MovementType.ADJUSTMENT
        assert result.delta == -5
        assert [(a.batch_id, a.quantity) for a in result.allocations] == [(batch_id, 5)]
        batch = db_session.get(ProductBatch, batch_id)
        assert (batch.status, batch.available_quantity) == (BATCH_STATUS_RECALLED, 0)
        assert db_session.get(StockMovement, result.movement_id).reference == "Supplier recall"
        assert stock_service.get_stock_level(shop.id, tracked_product.id).quantity == 10
        _assert_consistent(shop, tracked_product)

    def test_recall_twice_rejected(self, db_session, shop, tracked_product):
        bad = receive(shop, tracked_product, 5, batch_number="BAD", expires_in=60)
        ledger_service.recall_batch(batch_id=bad.created_batch_ids[0], actor_id=1)

        with pytest.raises(ValidationError):
            ledger_service.recall_batch(batch_id=bad.created_batch_ids[0], actor_id=1)

    def test_recall_of_depleted_lot_posts_nothing(self, db_session, shop, tracked_product):
        lot = receive(shop, tracked_product, 2, batch_number="GONE", expires_in=60)
        ledger_service.issue_stock(location_id=shop.id, product_id=tracked_product.id, quantity=2, actor_id=1)
        before = _movement_count(db_session, tracked_product)

        assert ledger_service.recall_batch(batch_id=lot.created_batch_ids[0], actor_id=1) is None

        assert _movement_count(db_session, tracked_product) == before
        assert db_session.get(ProductBatch, lot.created_batch_ids[0]).status == BATCH_STATUS_RECALLED

    def test_recalled_lot_not_sold(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 3, batch_number="OK", expires_in=90)
        bad = receive(shop, tracked_product, 3, batch_number="BAD", expires_in=5)
        ledger_service.recall_batch(batch_id=bad.created_batch_ids[0], actor_id=1)

        result = ledger_service.issue_stock(
            location_id=shop.id, product_id=tracked_product.id, quantity=3, actor_id=1
        )

        assert [a.batch_number for a in result.allocations] == ["OK"]

    def test_recall_unknown_batch(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.recall_batch(batch_id=999, actor_id=1)
