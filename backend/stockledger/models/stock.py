from __future__ import annotations

from sqlalchemy import event

from ..errors import ConsistencyViolationError
from ..extensions import db
from ..time_utils import utcnow


class StockLevel(db.Model):
    """
    Current-quantity projection per (tenant, location, product, variant).

    INVARIANTS (checked by the ledger on every write):
    - available_quantity == quantity - reserved_quantity
    - 0 <= reserved_quantity <= quantity
    - quantity >= 0 unless a negative adjustment was explicitly allowed

    The row is only mutated by the stock ledger while holding its row lock.
    version_id catches lost updates on backends that ignore FOR UPDATE.

    variant_key mirrors variant_id with 0 for "no variant" so the unique
    constraint also holds for variant-less rows (NULLs never collide).
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "location_id", "product_id", "variant_key",
            name="uq_stock_levels_key",
        ),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_stock_levels_reserved_non_negative"),
        db.CheckConstraint(
            "available_quantity = quantity - reserved_quantity",
            name="ck_stock_levels_available",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    available_quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockLevel location_id={self.location_id} product_id={self.product_id} "
            f"variant_id={self.variant_id} quantity={self.quantity}>"
        )


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    quantity is the signed delta. quantity_before / quantity_after chain the
    entry to the projection so the level can be rebuilt by replay.
    (reference_type, reference_id) point at the originating document.

    IMMUTABLE: ORM updates and deletes raise (see listeners below).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index(
            "ix_stock_movements_key_created",
            "tenant_id", "location_id", "product_id", "created_at",
        ),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)

    # IN, OUT, ADJUSTMENT, TRANSFER_OUT, TRANSFER_IN, SALE, RETURN
    movement_type = db.Column(db.String(16), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # sale, purchase_order, transfer, inventory (NULL for manual entries)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    # Free-text reference shown in history ("Sale S-001-0004", recall reason, ...)
    reference = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    batch_lines = db.relationship(
        "StockMovementBatch",
        backref="movement",
        lazy=True,
        order_by="StockMovementBatch.id",
    )

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} type={self.movement_type} "
            f"product_id={self.product_id} quantity={self.quantity}>"
        )


BATCH_STATUS_ACTIVE = "ACTIVE"
BATCH_STATUS_DEPLETED = "DEPLETED"
BATCH_STATUS_EXPIRED = "EXPIRED"
BATCH_STATUS_RECALLED = "RECALLED"
BATCH_STATUSES = {BATCH_STATUS_ACTIVE, BATCH_STATUS_DEPLETED, BATCH_STATUS_EXPIRED, BATCH_STATUS_RECALLED}

BATCH_NUMBER_MAX_LENGTH = 64


class ProductBatch(db.Model):
    """
    Lot of a product at a location.

    LIFECYCLE:
    1. ACTIVE: created by an inbound movement with available == quantity
    2. DEPLETED: available reached 0 through FEFO consumption
    3. EXPIRED: expiration_date passed (persisted by the expiry sweep)
    4. RECALLED: remaining quantity written off, never allocated to a sale,
       transfer or count again. Units sold before the recall and later
       returned come back as a RECALLED lot; only a recall write-off drains it.

    quantity is the received quantity and never changes after creation.
    available_quantity only decreases, and only through the stock ledger.
    A lot whose expiration_date equals today is still sellable.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "location_id", "product_id", "batch_number",
            name="uq_product_batches_key_number",
        ),
        db.CheckConstraint("available_quantity >= 0", name="ck_product_batches_available_non_negative"),
        db.CheckConstraint(
            "available_quantity <= quantity",
            name="ck_product_batches_available_le_quantity",
        ),
        db.Index(
            "ix_product_batches_fefo",
            "tenant_id", "location_id", "product_id", "variant_key", "status", "expiration_date",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)

    batch_number = db.Column(db.String(BATCH_NUMBER_MAX_LENGTH), nullable=False)
    expiration_date = db.Column(db.Date, nullable=True, index=True)
    manufactured_on = db.Column(db.Date, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    available_quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=BATCH_STATUS_ACTIVE, index=True)

    # Lineage: lot this one was split from (transfer-in, return)
    source_batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True)
    # Movement that created the lot
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    source_batch = db.relationship("ProductBatch", remote_side=[id])

    def __repr__(self) -> str:
        return (
            f"<ProductBatch id={self.id} number={self.batch_number!r} "
            f"available={self.available_quantity}/{self.quantity} status={self.status}>"
        )


class StockMovementBatch(db.Model):
    """
    Lot-level breakdown of a movement: which lots it consumed (outbound and
    negative adjustments) or created (inbound). quantity is always positive;
    the direction comes from the parent movement's sign.
    """
    __tablename__ = "stock_movement_batches"
    __table_args__ = (
        db.UniqueConstraint("movement_id", "batch_id", name="uq_stock_movement_batches_pair"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movement_batches_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    batch = db.relationship("ProductBatch")


def _reject_mutation(mapper, connection, target):
    raise ConsistencyViolationError(
        f"{type(target).__name__} rows are append-only",
        row_id=getattr(target, "id", None),
    )


for _model in (StockMovement, StockMovementBatch):
    event.listen(_model, "before_update", _reject_mutation)
    event.listen(_model, "before_delete", _reject_mutation)
