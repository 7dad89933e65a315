# Overview: StockLevel lookup and locking by StockKey.

from __future__ import annotations

from typing import Iterable

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import StockLevel
from ..services import concurrency
from ..values import StockKey


def _query(key: StockKey):
    return db.session.query(StockLevel).filter_by(
        tenant_id=key.tenant_id,
        location_id=key.location_id,
        product_id=key.product_id,
        variant_key=key.variant_key,
    )


def get(key: StockKey) -> StockLevel | None:
    """Non-locking read; may be stale by the time the caller acts on it."""
    return _query(key).first()


def lock_for_update(key: StockKey) -> StockLevel:
    """
    Return the locked row for key, creating a zero row on first use.

    The insert runs in a savepoint so a concurrent creator only costs a
    re-select instead of aborting the surrounding transaction.
    """
    row = concurrency.lock_for_update(_query(key)).first()
    if row is not None:
        return row

    try:
        with db.session.begin_nested():
            row = StockLevel(
                tenant_id=key.tenant_id,
                location_id=key.location_id,
                product_id=key.product_id,
                variant_id=key.variant_id,
                variant_key=key.variant_key,
                quantity=0,
                reserved_quantity=0,
                available_quantity=0,
            )
            db.session.add(row)
    except IntegrityError:
        row = concurrency.lock_for_update(_query(key)).one()
    return row


def lock_many(keys: Iterable[StockKey]) -> dict[StockKey, StockLevel]:
    """Lock every key in (location, product, variant) order so writers never deadlock."""
    locked: dict[StockKey, StockLevel] = {}
    for key in sorted(set(keys), key=lambda k: k.lock_order):
        locked[key] = lock_for_update(key)
    return locked


def list_for_location(tenant_id: int, location_id: int):
    return (
        db.session.query(StockLevel)
        .filter_by(tenant_id=tenant_id, location_id=location_id)
        .order_by(StockLevel.product_id.asc(), StockLevel.variant_key.asc())
        .all()
    )


def iter_all(tenant_id: int | None = None):
    query = db.session.query(StockLevel)
    if tenant_id is not None:
        query = query.filter_by(tenant_id=tenant_id)
    return query.order_by(StockLevel.id.asc()).all()


def key_of(row: StockLevel) -> StockKey:
    return StockKey(
        tenant_id=row.tenant_id,
        location_id=row.location_id,
        product_id=row.product_id,
        variant_id=row.variant_id,
    )
