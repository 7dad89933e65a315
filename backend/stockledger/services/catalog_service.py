# Overview: Tenant, location and product lookups consumed by the stock workflows.

"""
Catalog and tenancy boundary.

WHY: Every workflow resolves its location and products through here so that
cross-tenant ids are rejected in one place. A row owned by another tenant is
reported as not found rather than forbidden; callers never learn it exists.
"""
from __future__ import annotations

import logging

from sqlalchemy import or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Location, Product, Tenant
from ..models.tenancy import LOCATION_KINDS, LOCATION_KIND_SHOP
from ..validation import require_non_negative_int, require_text

logger = logging.getLogger(__name__)


def get_tenant(tenant_id: int) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)
    return tenant


def get_location(location_id: int, *, tenant_id: int | None = None) -> Location:
    location = db.session.get(Location, location_id)
    if location is None or (tenant_id is not None and location.tenant_id != tenant_id):
        raise NotFoundError(f"Location {location_id} not found", location_id=location_id)
    return location


def get_product(product_id: int, *, tenant_id: int | None = None) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or (tenant_id is not None and product.tenant_id != tenant_id):
        raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
    return product


def require_product_at_location(product_id: int, location: Location) -> Product:
    """Product must be active, in the location's tenant and stocked at the location."""
    product = get_product(product_id, tenant_id=location.tenant_id)
    if not product.is_active:
        raise ValidationError(f"Product {product_id} is inactive", product_id=product_id)
    if not product.is_stocked_at(location.id):
        raise ValidationError(
            f"Product {product_id} is not stocked at location {location.id}",
            product_id=product_id,
            location_id=location.id,
        )
    return product


def list_location_products(location: Location, product_ids: list[int] | None = None) -> list[Product]:
    """Active products of the tenant that are stocked at location."""
    query = db.session.query(Product).filter(
        Product.tenant_id == location.tenant_id,
        Product.is_active.is_(True),
        or_(Product.location_id.is_(None), Product.location_id == location.id),
    )
    if product_ids is not None:
        query = query.filter(Product.id.in_(product_ids))
    return query.order_by(Product.id.asc()).all()


def create_tenant(*, name: str, code: str | None = None) -> Tenant:
    tenant = Tenant(name=require_text(name, "name"), code=code)
    db.session.add(tenant)
    db.session.commit()
    logger.info("tenant.created", extra={"tenant_id": tenant.id})
    return tenant


def create_location(
    *,
    tenant_id: int,
    name: str,
    code: str | None = None,
    kind: str = LOCATION_KIND_SHOP,
) -> Location:
    get_tenant(tenant_id)
    if kind not in LOCATION_KINDS:
        raise ValidationError(f"Unknown location kind {kind!r}", kind=kind)
    location = Location(tenant_id=tenant_id, name=require_text(name, "name"), code=code, kind=kind)
    db.session.add(location)
    db.session.commit()
    logger.info("location.created", extra={"tenant_id": tenant_id, "location_id": location.id})
    return location


def create_product(
    *,
    tenant_id: int,
    code: str,
    name: str,
    location_id: int | None = None,
    unit: str = "unit",
    minimum_stock: int = 0,
    track_batches: bool = True,
) -> Product:
    get_tenant(tenant_id)
    if location_id is not None:
        get_location(location_id, tenant_id=tenant_id)
    product = Product(
        tenant_id=tenant_id,
        location_id=location_id,
        code=require_text(code, "code", max_length=64),
        name=require_text(name, "name"),
        unit=unit,
        minimum_stock=require_non_negative_int(minimum_stock, "minimum_stock"),
        track_batches=bool(track_batches),
    )
    db.session.add(product)
    db.session.commit()
    logger.info("product.created", extra={"tenant_id": tenant_id, "product_id": product.id})
    return product
