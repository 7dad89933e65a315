# Overview: Locked loads of workflow documents (sales, purchase orders, transfers, inventories).

from __future__ import annotations

from ..errors import NotFoundError
from ..extensions import db
from ..models import Inventory, PurchaseOrder, Sale, StockTransfer
from ..services import concurrency

_LABELS = {
    Sale: "Sale",
    PurchaseOrder: "Purchase order",
    StockTransfer: "Transfer",
    Inventory: "Inventory",
}


def get(model, document_id: int):
    document = db.session.get(model, document_id)
    if document is None:
        raise NotFoundError(f"{_LABELS[model]} {document_id} not found", id=document_id)
    return document


def get_for_update(model, document_id: int):
    document = concurrency.lock_for_update(
        db.session.query(model).filter_by(id=document_id)
    ).first()
    if document is None:
        raise NotFoundError(f"{_LABELS[model]} {document_id} not found", id=document_id)
    return document


def lock_sale(sale_id: int) -> Sale:
    return get_for_update(Sale, sale_id)


def lock_purchase_order(purchase_order_id: int) -> PurchaseOrder:
    return get_for_update(PurchaseOrder, purchase_order_id)


def lock_transfer(transfer_id: int) -> StockTransfer:
    return get_for_update(StockTransfer, transfer_id)


def lock_inventory(inventory_id: int) -> Inventory:
    return get_for_update(Inventory, inventory_id)
