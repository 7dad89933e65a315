# Overview: Pytest coverage for the lot registry (receipt, FEFO, expiry).

import pytest

from stockledger.errors import (
    BatchNumberConflictError,
    InsufficientBatchStockError,
    NotFoundError,
    ValidationError,
)
from stockledger.models import ProductBatch, StockMovement
from stockledger.models.stock import BATCH_STATUS_ACTIVE, BATCH_STATUS_EXPIRED
from stockledger.services import batch_service, ledger_service, sales_service
from stockledger.services.concurrency import transaction_scope
from stockledger.values import BatchAllocation, SaleLineInput, StockKey

from conftest import days_from_today, receive


class TestReceive:
    def test_duplicate_batch_number_rejected(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 10, batch_number="L1", expires_in=30)

        with pytest.raises(BatchNumberConflictError) as exc:
            receive(shop, tracked_product, 5, batch_number="L1", expires_in=60)

        assert exc.value.details["batch_number"] == "L1"
        assert db_session.query(ProductBatch).count() == 1
        assert db_session.query(StockMovement).count() == 1

    def test_same_number_allowed_at_another_location(self, db_session, shop, depot, tracked_product):
        receive(shop, tracked_product, 10, batch_number="L1", expires_in=30)
        receive(depot, tracked_product, 10, batch_number="L1", expires_in=30)

        assert db_session.query(ProductBatch).filter_by(batch_number="L1").count() == 2

    def test_already_expired_lot_rejected(self, db_session, shop, tracked_product):
        with pytest.raises(ValidationError):
            receive(shop, tracked_product, 10, batch_number="OLD", expires_in=-1)

        assert db_session.query(ProductBatch).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_batch_number_is_trimmed(self, db_session, shop, tracked_product):
        result = receive(shop, tracked_product, 1, batch_number="  L9 ", expires_in=30)

        assert db_session.get(ProductBatch, result.created_batch_ids[0]).batch_number == "L9"

    def test_overlong_batch_number_rejected(self, db_session, shop, tracked_product):
        with pytest.raises(ValidationError):
            receive(shop, tracked_product, 1, batch_number="X" * 65, expires_in=30)

        assert db_session.query(StockMovement).count() == 0

    def test_derived_number_fits_column(self, db_session, shop, tracked_product, actor_id):
        long_number = "L" * 64
        receive(shop, tracked_product, 5, batch_number=long_number, expires_in=30)
        sale = sales_service.create_draft_sale(location_id=shop.id, actor_id=actor_id)
        sales_service.set_sale_lines(sale_id=sale.id, lines=[SaleLineInput(tracked_product.id, 2)])
        sales_service.finalize_sale(sale_id=sale.id, actor_id=actor_id)

        result = sales_service.return_sale(sale_id=sale.id, actor_id=actor_id)[0]

        derived = db_session.get(ProductBatch, result.created_batch_ids[0]).batch_number
        assert len(derived) == 64
        assert derived.endswith(f"-{result.movement_id}")
        assert derived != long_number


class TestPlanAllocation:
    """FEFO ordering and eligibility."""

    def _plan(self, location, product, quantity, **kwargs):
        key = StockKey(location.tenant_id, location.id, product.id)
        with transaction_scope():
            plan = batch_service.plan_allocation(key=key, quantity=quantity, **kwargs)
            return [(batch.batch_number, take) for batch, take in plan.picks]

    def test_fefo_example(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 10, batch_number="B2", expires_in=45)
        receive(shop, tracked_product, 5, batch_number="B1", expires_in=22)

        assert self._plan(shop, tracked_product, 7) == [("B1", 5), ("B2", 2)]

    def test_lots_without_expiration_go_last(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 5, batch_number="NOEXP")
        receive(shop, tracked_product, 5, batch_number="EXP", expires_in=100)

        assert self._plan(shop, tracked_product, 6) == [("EXP", 5), ("NOEXP", 1)]

    def test_same_expiration_takes_oldest_first(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 3, batch_number="FIRST", expires_in=30)
        receive(shop, tracked_product, 3, batch_number="SECOND", expires_in=30)

        assert self._plan(shop, tracked_product, 4) == [("FIRST", 3), ("SECOND", 1)]

    def test_plan_does_not_mutate(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 5, batch_number="L1", expires_in=30)

        self._plan(shop, tracked_product, 5)

        assert db_session.query(ProductBatch).one().available_quantity == 5

    def test_shortfall_reports_requested_and_available(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 5, batch_number="L1", expires_in=30)

        with pytest.raises(InsufficientBatchStockError) as exc:
            self._plan(shop, tracked_product, 8)

        assert exc.value.details["requested"] == 8
        assert exc.value.details["available"] == 5

    def test_restricted_to_one_batch(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 5, batch_number="A", expires_in=10)
        target = receive(shop, tracked_product, 5, batch_number="B", expires_in=20)

        picks = self._plan(shop, tracked_product, 2, batch_id=target.created_batch_ids[0])

        assert picks == [("B", 2)]


class TestLotsFromAllocations:
    def test_groups_by_expiration(self):
        first = days_from_today(10)
        second = days_from_today(20)
        allocations = [
            BatchAllocation(batch_id=1, batch_number="A", expiration_date=first, quantity=3),
            BatchAllocation(batch_id=2, batch_number="B", expiration_date=first, quantity=2),
            BatchAllocation(batch_id=3, batch_number="C", expiration_date=second, quantity=4),
        ]

        lots = batch_service.lots_from_allocations(allocations)

        assert [(lot.quantity, lot.expiration_date, lot.source_batch_id) for lot in lots] == [
            (5, first, 1),
            (4, second, 3),
        ]


class TestExpiry:
    def test_sweep_marks_past_lots_expired(self, db_session, shop, tracked_product):
        stale = receive(shop, tracked_product, 4, batch_number="STALE", expires_in=2)
        receive(shop, tracked_product, 4, batch_number="FRESH", expires_in=40)

        count = batch_service.expire_batches(as_of=days_from_today(3))

        assert count == 1
        assert db_session.get(ProductBatch, stale.created_batch_ids[0]).status == BATCH_STATUS_EXPIRED
        fresh = db_session.query(ProductBatch).filter_by(batch_number="FRESH").one()
        assert fresh.status == BATCH_STATUS_ACTIVE

    def test_sweep_is_idempotent(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 4, batch_number="STALE", expires_in=2)

        assert batch_service.expire_batches(as_of=days_from_today(5)) == 1
        assert batch_service.expire_batches(as_of=days_from_today(5)) == 0

    def test_sweep_scoped_to_tenant(self, db_session, shop, foreign_location, tracked_product, foreign_product):
        receive(shop, tracked_product, 4, batch_number="A", expires_in=1)
        receive(foreign_location, foreign_product, 4, batch_number="B", expires_in=1)

        assert batch_service.expire_batches(as_of=days_from_today(2), tenant_id=shop.tenant_id) == 1

    def test_sweep_keeps_quantities_consistent(self, db_session, shop, tracked_product):
        receive(shop, tracked_product, 4, batch_number="STALE", expires_in=1)
        batch_service.expire_batches(as_of=days_from_today(2))

        report = ledger_service.verify_stock_level(StockKey(shop.tenant_id, shop.id, tracked_product.id))

        assert report.ok

    def test_expiration_status(self, app, db_session, shop, tracked_product):
        result = receive(shop, tracked_product, 1, batch_number="L1", expires_in=10)
        batch = db_session.get(ProductBatch, result.created_batch_ids[0])

        assert batch_service.expiration_status(batch, as_of=days_from_today(0)) == batch_service.EXPIRY_STATUS_WARNING
        assert batch_service.expiration_status(batch, as_of=days_from_today(5)) == batch_service.EXPIRY_STATUS_CRITICAL
        assert batch_service.expiration_status(batch, as_of=days_from_today(11)) == batch_service.EXPIRY_STATUS_EXPIRED
        assert batch_service.expiration_status(batch, as_of=days_from_today(-30)) == batch_service.EXPIRY_STATUS_GOOD

    def test_list_expiring_window(self, db_session, shop, depot, tracked_product):
        receive(shop, tracked_product, 2, batch_number="SOON", expires_in=5)
        receive(shop, tracked_product, 2, batch_number="LATER", expires_in=90)
        receive(depot, tracked_product, 2, batch_number="DEPOT", expires_in=3)

        rows = batch_service.list_expiring_batches(tenant_id=shop.tenant_id, within_days=30)
        shop_rows = batch_service.list_expiring_batches(
            tenant_id=shop.tenant_id, location_id=shop.id, within_days=30
        )

        assert [b.batch_number for b in rows] == ["DEPOT", "SOON"]
        assert [b.batch_number for b in shop_rows] == ["SOON"]

    def test_list_expiring_rejects_negative_window(self, db_session, shop):
        with pytest.raises(ValidationError):
            batch_service.list_expiring_batches(tenant_id=shop.tenant_id, within_days=-1)


class TestGetBatch:
    def test_scoped_to_tenant(self, db_session, shop, tenant_b, tracked_product):
        lot = receive(shop, tracked_product, 2, batch_number="L1", expires_in=30)
        batch_id = lot.created_batch_ids[0]

        assert batch_service.get_batch(batch_id, tenant_id=shop.tenant_id).batch_number == "L1"
        with pytest.raises(NotFoundError):
            batch_service.get_batch(batch_id, tenant_id=tenant_b.id)
        with pytest.raises(NotFoundError):
            batch_service.get_batch(9999)


class TestListBatches:
    def test_fefo_order_and_filters(self, db_session, shop, depot, tracked_product, second_product, actor_id):
        receive(shop, tracked_product, 3, batch_number="LATE", expires_in=90)
        receive(shop, tracked_product, 3, batch_number="SOON", expires_in=10)
        receive(shop, second_product, 2, batch_number="OTHER", expires_in=50)
        receive(depot, tracked_product, 1, batch_number="ELSEWHERE", expires_in=5)
        ledger_service.issue_stock(location_id=shop.id, product_id=tracked_product.id, quantity=3, actor_id=actor_id)

        everything = batch_service.list_batches(tenant_id=shop.tenant_id, location_id=shop.id)
        for_product = batch_service.list_batches(
            tenant_id=shop.tenant_id, location_id=shop.id, product_id=tracked_product.id
        )
        active = batch_service.list_batches(
            tenant_id=shop.tenant_id, location_id=shop.id, statuses=[BATCH_STATUS_ACTIVE]
        )

        assert [b.batch_number for b in everything] == ["SOON", "OTHER", "LATE"]
        assert [b.batch_number for b in for_product] == ["SOON", "LATE"]
        assert [b.batch_number for b in active] == ["OTHER", "LATE"]

    def test_location_of_other_tenant_not_found(self, db_session, shop, tenant_b):
        with pytest.raises(NotFoundError):
            batch_service.list_batches(tenant_id=tenant_b.id, location_id=shop.id)

    def test_unknown_status_rejected(self, db_session, shop):
        with pytest.raises(ValidationError):
            batch_service.list_batches(tenant_id=shop.tenant_id, location_id=shop.id, statuses=["LOST"])
