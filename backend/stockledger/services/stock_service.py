# Overview: Read side of the stock projection; levels, low-stock report and movement history.

from __future__ import annotations

from ..extensions import db
from ..models import StockLevel
from ..repositories import movements, stock_levels
from ..validation import require_positive_int
from ..values import MovementFilters, StockKey, StockLevelView
from . import catalog_service

MAX_PER_PAGE = 500


def _view(key: StockKey, row: StockLevel | None) -> StockLevelView:
    if row is None:
        return StockLevelView(key=key, quantity=0, reserved_quantity=0, available_quantity=0)
    return StockLevelView(
        key=key,
        quantity=row.quantity,
        reserved_quantity=row.reserved_quantity,
        available_quantity=row.available_quantity,
        updated_at=row.updated_at,
    )


def get_stock_level(location_id: int, product_id: int, variant_id: int | None = None) -> StockLevelView:
    """
    Current level for a product at a location (zero when never stocked).

    Non-locking read: the value may be stale by the time the caller acts on
    it. Decisions that depend on it must go through the ledger.
    """
    location = catalog_service.get_location(location_id)
    catalog_service.get_product(product_id, tenant_id=location.tenant_id)
    key = StockKey(location.tenant_id, location.id, product_id, variant_id)
    return _view(key, stock_levels.get(key))


def list_stock_levels(location_id: int) -> list[StockLevelView]:
    location = catalog_service.get_location(location_id)
    return [
        _view(stock_levels.key_of(row), row)
        for row in stock_levels.list_for_location(location.tenant_id, location.id)
    ]


def list_low_stock(location_id: int) -> list[dict]:
    """Products at or below their minimum_stock (products with minimum 0 are ignored)."""
    location = catalog_service.get_location(location_id)
    totals: dict[int, int] = {}
    for row in stock_levels.list_for_location(location.tenant_id, location.id):
        totals[row.product_id] = totals.get(row.product_id, 0) + row.quantity

    report = []
    for product in catalog_service.list_location_products(location):
        if product.minimum_stock <= 0:
            continue
        quantity = totals.get(product.id, 0)
        if quantity <= product.minimum_stock:
            report.append(
                {
                    "product_id": product.id,
                    "code": product.code,
                    "name": product.name,
                    "quantity": quantity,
                    "minimum_stock": product.minimum_stock,
                    "shortfall": product.minimum_stock - quantity,
                }
            )
    return report


def list_movements(
    location_id: int,
    filters: MovementFilters | None = None,
    *,
    page: int = 1,
    per_page: int = 50,
):
    """
    Paginated movement history for a location, newest first.

    Returns a Flask-SQLAlchemy Pagination (items, total, pages, has_next).
    """
    location = catalog_service.get_location(location_id)
    page = require_positive_int(page, "page")
    per_page = min(require_positive_int(per_page, "per_page"), MAX_PER_PAGE)
    stmt = movements.select_for_location(location.tenant_id, location.id, filters)
    return db.paginate(stmt, page=page, per_page=per_page, error_out=False, count=True)
