from __future__ import annotations

from ..extensions import db


class Sale(db.Model):
    """
    Sale document.

    LIFECYCLE:
    1. DRAFT: lines may be replaced freely; no stock effect
    2. COMPLETED: one SALE movement per line, FEFO lots consumed
    3. CANCELLED: draft abandoned; no stock effect

    A completed sale is never edited. A later return is recorded with
    compensating RETURN movements and returned_at.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("location_id", "document_number", name="uq_sales_location_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    document_number = db.Column(db.String(64), nullable=False)

    # Opaque reference to the customer record owned by the POS front end
    customer_id = db.Column(db.Integer, nullable=True, index=True)

    # DRAFT, COMPLETED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.Integer, nullable=False)
    completed_by = db.Column(db.Integer, nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)
    returned_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="SaleLine.id",
    )

    __mapper_args__ = {"version_id_col": version_id}


class SaleLine(db.Model):
    __tablename__ = "sale_lines"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Ledger links, filled on completion / return
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)
    return_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
