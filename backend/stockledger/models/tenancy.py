from __future__ import annotations

from ..extensions import db


class Tenant(db.Model):
    """
    Tenant root. Every stock row, movement, lot and document is scoped to
    exactly one tenant; queries never cross tenants.
    """
    __tablename__ = "tenants"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} code={self.code!r}>"


LOCATION_KIND_SHOP = "SHOP"
LOCATION_KIND_DEPOT = "DEPOT"
LOCATION_KIND_WAREHOUSE = "WAREHOUSE"

LOCATION_KINDS = {LOCATION_KIND_SHOP, LOCATION_KIND_DEPOT, LOCATION_KIND_WAREHOUSE}


class Location(db.Model):
    """
    Physical site holding stock (shop, depot or warehouse).

    MULTI-TENANT: A location belongs to exactly one tenant; stock levels,
    lots and documents inherit the tenant from their location.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_locations_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    kind = db.Column(db.String(16), nullable=False, default=LOCATION_KIND_SHOP)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} tenant_id={self.tenant_id} name={self.name!r}>"
