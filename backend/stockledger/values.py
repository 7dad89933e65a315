# Overview: Immutable value objects passed between workflows and the stock ledger.

"""
Typed values exchanged across service boundaries.

WHY: Workflows talk to the ledger through MovementIntent instead of loose
kwargs, so sign rules and reference kinds are checked once, at construction,
before any row is locked. Every value is a frozen dataclass; ORM rows never
leave the ledger for write purposes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import ClassVar, Optional, Union

from .errors import ValidationError
from .validation import coerce_int, optional_id, require_id, require_positive_int


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    SALE = "SALE"
    RETURN = "RETURN"

    @property
    def is_outbound(self) -> bool:
        return self in _OUTBOUND

    @property
    def is_inbound(self) -> bool:
        return self in _INBOUND


_OUTBOUND = frozenset({MovementType.SALE, MovementType.OUT, MovementType.TRANSFER_OUT})
_INBOUND = frozenset({MovementType.IN, MovementType.TRANSFER_IN, MovementType.RETURN})


class ReferenceKind(str, Enum):
    SALE = "sale"
    PURCHASE_ORDER = "purchase_order"
    TRANSFER = "transfer"
    INVENTORY = "inventory"


@dataclass(frozen=True)
class StockKey:
    """(tenant, location, product, variant) identity of a stock level."""

    tenant_id: int
    location_id: int
    product_id: int
    variant_id: Optional[int] = None

    def __post_init__(self):
        require_id(self.tenant_id, "tenant_id")
        require_id(self.location_id, "location_id")
        require_id(self.product_id, "product_id")
        optional_id(self.variant_id, "variant_id")

    @property
    def variant_key(self) -> int:
        # 0 stands in for "no variant" so the unique index treats it as a value
        return self.variant_id or 0

    @property
    def lock_order(self) -> tuple[int, int, int]:
        return (self.location_id, self.product_id, self.variant_key)

    def as_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "location_id": self.location_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
        }


# ---------------------------------------------------------------------------
# Movement references (tagged union)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SaleRef:
    sale_id: int
    kind: ClassVar[ReferenceKind] = ReferenceKind.SALE

    @property
    def reference_id(self) -> int:
        return self.sale_id


@dataclass(frozen=True)
class PurchaseOrderRef:
    purchase_order_id: int
    kind: ClassVar[ReferenceKind] = ReferenceKind.PURCHASE_ORDER

    @property
    def reference_id(self) -> int:
        return self.purchase_order_id


@dataclass(frozen=True)
class TransferRef:
    transfer_id: int
    kind: ClassVar[ReferenceKind] = ReferenceKind.TRANSFER

    @property
    def reference_id(self) -> int:
        return self.transfer_id


@dataclass(frozen=True)
class InventoryRef:
    inventory_id: int
    kind: ClassVar[ReferenceKind] = ReferenceKind.INVENTORY

    @property
    def reference_id(self) -> int:
        return self.inventory_id


MovementReference = Union[SaleRef, PurchaseOrderRef, TransferRef, InventoryRef]

_REFERENCE_TYPES = {
    ReferenceKind.SALE: SaleRef,
    ReferenceKind.PURCHASE_ORDER: PurchaseOrderRef,
    ReferenceKind.TRANSFER: TransferRef,
    ReferenceKind.INVENTORY: InventoryRef,
}

# Which reference each movement type may carry; None means "no reference"
_ALLOWED_REFERENCES = {
    MovementType.SALE: (SaleRef,),
    MovementType.RETURN: (SaleRef,),
    MovementType.TRANSFER_OUT: (TransferRef,),
    MovementType.TRANSFER_IN: (TransferRef,),
    MovementType.IN: (PurchaseOrderRef, None),
    MovementType.ADJUSTMENT: (InventoryRef, None),
    MovementType.OUT: (None,),
}


def reference_from(kind: str | None, reference_id: int | None) -> MovementReference | None:
    """Rebuild a typed reference from its stored (kind, id) columns."""
    if kind is None:
        return None
    return _REFERENCE_TYPES[ReferenceKind(kind)](reference_id)


# ---------------------------------------------------------------------------
# Ledger input / output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LotSpec:
    """A lot to create on an inbound movement."""

    quantity: int
    expiration_date: Optional[date] = None
    batch_number: Optional[str] = None
    manufactured_on: Optional[date] = None
    source_batch_id: Optional[int] = None
    # Restocked units of a recalled lot: kept on the books, never sold
    recalled: bool = False

    def __post_init__(self):
        require_positive_int(self.quantity, "quantity")
        if self.batch_number is not None and not str(self.batch_number).strip():
            raise ValidationError("batch_number cannot be blank")
        if (
            self.manufactured_on is not None
            and self.expiration_date is not None
            and self.manufactured_on > self.expiration_date
        ):
            raise ValidationError("manufactured_on is after expiration_date")


@dataclass(frozen=True)
class MovementIntent:
    key: StockKey
    movement_type: MovementType
    delta: int
    actor_id: int
    reference: Optional[MovementReference] = None
    lots: tuple[LotSpec, ...] = ()
    # Restricts an outbound/negative movement to a single lot (recall, write-off)
    batch_id: Optional[int] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.movement_type, MovementType):
            raise ValidationError("movement_type must be a MovementType")
        delta = coerce_int(self.delta, "delta")
        require_id(self.actor_id, "actor_id")
        if delta == 0:
            raise ValidationError("delta cannot be zero")
        object.__setattr__(self, "delta", delta)

        kind = self.movement_type
        if kind.is_outbound and delta > 0:
            raise ValidationError(f"{kind.value} movements must have a negative delta", delta=delta)
        if kind.is_inbound and delta < 0:
            raise ValidationError(f"{kind.value} movements must have a positive delta", delta=delta)

        allowed = _ALLOWED_REFERENCES[kind]
        ref_type = type(self.reference) if self.reference is not None else None
        if ref_type not in allowed:
            raise ValidationError(
                f"{kind.value} movement cannot reference {ref_type.__name__ if ref_type else 'nothing'}",
                movement_type=kind.value,
            )

        object.__setattr__(self, "lots", tuple(self.lots))
        if self.lots:
            if delta < 0:
                raise ValidationError("lots can only be supplied on inbound movements")
            total = sum(lot.quantity for lot in self.lots)
            if total != delta:
                raise ValidationError(
                    "lot quantities must add up to the movement delta",
                    delta=delta,
                    lot_total=total,
                )
        if self.batch_id is not None and delta > 0:
            raise ValidationError("batch_id only applies to outbound movements")


@dataclass(frozen=True)
class BatchAllocation:
    batch_id: int
    batch_number: str
    expiration_date: Optional[date]
    quantity: int

    def as_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "batch_number": self.batch_number,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class MovementResult:
    movement_id: int
    key: StockKey
    movement_type: MovementType
    delta: int
    quantity_before: int
    quantity_after: int
    allocations: tuple[BatchAllocation, ...] = ()
    created_batch_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class StockLevelView:
    key: StockKey
    quantity: int
    reserved_quantity: int
    available_quantity: int
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Workflow inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: int
    unit_price_cents: int = 0
    variant_id: Optional[int] = None

    def __post_init__(self):
        require_id(self.product_id, "product_id")
        require_positive_int(self.quantity, "quantity")
        if coerce_int(self.unit_price_cents, "unit_price_cents") < 0:
            raise ValidationError("unit_price_cents cannot be negative")
        optional_id(self.variant_id, "variant_id")


@dataclass(frozen=True)
class PurchaseLineInput:
    product_id: int
    quantity: int
    unit_cost_cents: Optional[int] = None
    variant_id: Optional[int] = None

    def __post_init__(self):
        require_id(self.product_id, "product_id")
        require_positive_int(self.quantity, "quantity")
        if self.unit_cost_cents is not None and coerce_int(self.unit_cost_cents, "unit_cost_cents") < 0:
            raise ValidationError("unit_cost_cents cannot be negative")
        optional_id(self.variant_id, "variant_id")


@dataclass(frozen=True)
class ReceiveLineInput:
    line_id: int
    quantity: int
    batch_number: Optional[str] = None
    expiration_date: Optional[date] = None
    manufactured_on: Optional[date] = None

    def __post_init__(self):
        require_id(self.line_id, "line_id")
        require_positive_int(self.quantity, "quantity")


@dataclass(frozen=True)
class MovementFilters:
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    movement_types: tuple[MovementType, ...] = ()
    reference: Optional[MovementReference] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(
            self, "movement_types", tuple(MovementType(t) for t in self.movement_types)
        )
        if self.created_from and self.created_to and self.created_from > self.created_to:
            raise ValidationError("created_from is after created_to")


# ---------------------------------------------------------------------------
# Workflow outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReceiptLine:
    product_id: int
    variant_id: Optional[int]
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    movement_id: int
    allocations: tuple[BatchAllocation, ...] = ()


@dataclass(frozen=True)
class Receipt:
    sale_id: int
    document_number: str
    location_id: int
    completed_at: datetime
    total_cents: int
    lines: tuple[ReceiptLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ConsistencyReport:
    key: StockKey
    projected_quantity: int
    replayed_quantity: int
    batch_quantity: Optional[int]
    chain_ok: bool

    @property
    def ok(self) -> bool:
        if not self.chain_ok or self.projected_quantity != self.replayed_quantity:
            return False
        return self.batch_quantity is None or self.batch_quantity == self.projected_quantity
