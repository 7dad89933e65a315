# Overview: ProductBatch lookup, FEFO-ordered locking and bulk status updates.

from __future__ import annotations

from datetime import date

from sqlalchemy import func, or_, update

from ..extensions import db
from ..models import ProductBatch
from ..models.stock import (
    BATCH_STATUS_ACTIVE,
    BATCH_STATUS_EXPIRED,
    BATCH_STATUS_RECALLED,
)
from ..services import concurrency
from ..time_utils import utcnow
from ..values import StockKey


def _for_key(key: StockKey):
    return db.session.query(ProductBatch).filter_by(
        tenant_id=key.tenant_id,
        location_id=key.location_id,
        product_id=key.product_id,
        variant_key=key.variant_key,
    )


def _fefo(query):
    # Earliest expiration first, lots without expiration last, then oldest lot
    return query.order_by(
        ProductBatch.expiration_date.is_(None).asc(),
        ProductBatch.expiration_date.asc(),
        ProductBatch.created_at.asc(),
        ProductBatch.id.asc(),
    )


def get(batch_id: int) -> ProductBatch | None:
    return db.session.get(ProductBatch, batch_id)


def get_for_update(batch_id: int) -> ProductBatch | None:
    return concurrency.lock_for_update(
        db.session.query(ProductBatch).filter_by(id=batch_id)
    ).first()


def find_by_number(*, product_id: int, location_id: int, batch_number: str) -> ProductBatch | None:
    return (
        db.session.query(ProductBatch)
        .filter_by(product_id=product_id, location_id=location_id, batch_number=batch_number)
        .first()
    )


def number_exists(*, product_id: int, location_id: int, batch_number: str) -> bool:
    return find_by_number(
        product_id=product_id, location_id=location_id, batch_number=batch_number
    ) is not None


def lock_allocatable(
    key: StockKey,
    *,
    as_of: date,
    include_expired: bool = False,
    batch_id: int | None = None,
) -> list[ProductBatch]:
    """
    Lots that may be drawn from, locked, in FEFO order.

    Sellable lots are ACTIVE with available > 0 and expiration_date >= as_of
    (or no expiration). include_expired also admits lots past expiration or
    already swept to EXPIRED (write-offs and negative adjustments); with
    batch_id it also admits that lot when RECALLED, so a recall can drain it.
    """
    query = _for_key(key).filter(ProductBatch.available_quantity > 0)
    if batch_id is not None:
        query = query.filter(ProductBatch.id == batch_id)
    if include_expired:
        statuses = [BATCH_STATUS_ACTIVE, BATCH_STATUS_EXPIRED]
        if batch_id is not None:
            statuses.append(BATCH_STATUS_RECALLED)
        query = query.filter(ProductBatch.status.in_(statuses))
    else:
        query = query.filter(
            ProductBatch.status == BATCH_STATUS_ACTIVE,
            or_(
                ProductBatch.expiration_date.is_(None),
                ProductBatch.expiration_date >= as_of,
            ),
        )
    return concurrency.lock_for_update(_fefo(query)).all()


def sum_available(key: StockKey) -> int:
    total = (
        _for_key(key)
        .with_entities(func.coalesce(func.sum(ProductBatch.available_quantity), 0))
        .scalar()
    )
    return int(total or 0)


def earliest_expiration_with_stock(key: StockKey) -> date | None:
    return (
        _for_key(key)
        .filter(
            ProductBatch.available_quantity > 0,
            ProductBatch.expiration_date.isnot(None),
        )
        .with_entities(func.min(ProductBatch.expiration_date))
        .scalar()
    )


def latest_for_key(key: StockKey) -> ProductBatch | None:
    return _for_key(key).order_by(ProductBatch.created_at.desc(), ProductBatch.id.desc()).first()


def list_for_location(
    *,
    tenant_id: int,
    location_id: int,
    product_id: int | None = None,
    statuses: list[str] | None = None,
) -> list[ProductBatch]:
    query = db.session.query(ProductBatch).filter_by(tenant_id=tenant_id, location_id=location_id)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    if statuses:
        query = query.filter(ProductBatch.status.in_(statuses))
    return _fefo(query).all()


def expiring_between(
    *,
    tenant_id: int,
    location_id: int | None,
    start: date,
    end: date,
) -> list[ProductBatch]:
    query = db.session.query(ProductBatch).filter(
        ProductBatch.tenant_id == tenant_id,
        ProductBatch.status == BATCH_STATUS_ACTIVE,
        ProductBatch.available_quantity > 0,
        ProductBatch.expiration_date.isnot(None),
        ProductBatch.expiration_date >= start,
        ProductBatch.expiration_date <= end,
    )
    if location_id is not None:
        query = query.filter(ProductBatch.location_id == location_id)
    return _fefo(query).all()


def mark_expired(*, as_of: date, tenant_id: int | None = None) -> int:
    """Persist EXPIRED on active lots whose expiration_date is before as_of."""
    stmt = (
        update(ProductBatch)
        .where(
            ProductBatch.status == BATCH_STATUS_ACTIVE,
            ProductBatch.expiration_date.isnot(None),
            ProductBatch.expiration_date < as_of,
        )
        .values(status=BATCH_STATUS_EXPIRED, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    if tenant_id is not None:
        stmt = stmt.where(ProductBatch.tenant_id == tenant_id)
    result = db.session.execute(stmt)
    return result.rowcount or 0
