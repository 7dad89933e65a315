from __future__ import annotations

from ..extensions import db


class Product(db.Model):
    """
    Product master data, as far as stock tracking needs it.

    MULTI-TENANT: Products belong to a tenant. location_id NULL means the
    product is stocked at every location of the tenant; otherwise it is
    local to one location.

    BATCH TRACKING: track_batches=True (default) routes every movement of
    the product through the lot registry (FEFO allocation, expiration).
    Products without lots keep only the aggregate stock level.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_products_tenant_code"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="unit")

    # Low-stock threshold used by list_low_stock; 0 disables the alert
    minimum_stock = db.Column(db.Integer, nullable=False, default=0)

    track_batches = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} tenant_id={self.tenant_id}>"

    def is_stocked_at(self, location_id: int) -> bool:
        return self.location_id is None or self.location_id == location_id
