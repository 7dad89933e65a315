from __future__ import annotations

from ..extensions import db


class PurchaseOrder(db.Model):
    """
    Supplier purchase order for one location.

    LIFECYCLE:
    1. DRAFT: lines being entered
    2. CONFIRMED: sent to supplier; receipts allowed (partial receipts keep it here)
    3. RECEIVED: every line fully received
    4. CANCELLED: closed from DRAFT or CONFIRMED; stock already received stays
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("location_id", "document_number", name="uq_purchase_orders_location_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    document_number = db.Column(db.String(64), nullable=False)
    supplier_reference = db.Column(db.String(128), nullable=True)

    # DRAFT, CONFIRMED, RECEIVED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, nullable=False)
    confirmed_by = db.Column(db.Integer, nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "PurchaseOrderLine",
        backref="purchase_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_fully_received(self) -> bool:
        return bool(self.lines) and all(line.remaining_quantity == 0 for line in self.lines)

    @property
    def is_partially_received(self) -> bool:
        received = any((line.received_quantity or 0) > 0 for line in self.lines)
        return received and not self.is_fully_received


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        db.CheckConstraint("received_quantity >= 0", name="ck_po_lines_received_non_negative"),
        db.CheckConstraint("received_quantity <= ordered_quantity", name="ck_po_lines_received_le_ordered"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)

    ordered_quantity = db.Column(db.Integer, nullable=False)
    received_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    @property
    def remaining_quantity(self) -> int:
        return self.ordered_quantity - (self.received_quantity or 0)
