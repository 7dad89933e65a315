from __future__ import annotations

from ..extensions import db


class StockTransfer(db.Model):
    """
    Transfer of stock between two locations of the same tenant.

    LIFECYCLE:
    1. DRAFT: items added, merged, edited or removed; no stock effect
    2. VALIDATED: each item produced one TRANSFER_OUT at the source and one
       TRANSFER_IN at the destination, atomically
    3. CANCELLED: abandoned draft

    Lots consumed at the source are recreated at the destination with the
    same expiration dates (source_batch_id keeps the lineage).
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("from_location_id", "document_number", name="uq_stock_transfers_location_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    document_number = db.Column(db.String(64), nullable=False)

    # DRAFT, VALIDATED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, nullable=False)
    validated_by = db.Column(db.Integer, nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "StockTransferItem",
        backref="transfer",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="StockTransferItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}


class StockTransferItem(db.Model):
    __tablename__ = "stock_transfer_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_transfer_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False)

    out_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)
    in_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)


class Inventory(db.Model):
    """
    Physical inventory (stock count) at one location.

    LIFECYCLE:
    1. DRAFT: created, nothing snapshotted yet
    2. STARTED: system quantities snapshotted; counts entered
    3. VALIDATED: one ADJUSTMENT movement per counted item with a non-zero difference
    4. CANCELLED: abandoned before validation

    Items whose counted_quantity was never entered are skipped at validation.
    """
    __tablename__ = "inventories"
    __table_args__ = (
        db.UniqueConstraint("location_id", "document_number", name="uq_inventories_location_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    document_number = db.Column(db.String(64), nullable=False)

    # DRAFT, STARTED, VALIDATED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, nullable=False)
    started_by = db.Column(db.Integer, nullable=True)
    validated_by = db.Column(db.Integer, nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "InventoryItem",
        backref="inventory",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InventoryItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}


class InventoryItem(db.Model):
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("inventory_id", "product_id", name="uq_inventory_items_inventory_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventories.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Snapshot taken at start; negative when over-adjusted stock was allowed
    system_quantity = db.Column(db.Integer, nullable=False, default=0)
    # NULL until counted; uncounted items produce no adjustment
    counted_quantity = db.Column(db.Integer, nullable=True)
    difference = db.Column(db.Integer, nullable=True)

    adjustment_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)


class DocumentSequence(db.Model):
    """
    Per-location counter for document numbers (sales, POs, transfers, inventories).

    next_number is bumped with an atomic UPDATE so concurrent workflows never
    hand out the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("location_id", "document_type", name="uq_document_sequences_location_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
