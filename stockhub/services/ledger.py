"""Inventory ledger: per-(SKU, warehouse) stock records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Union

from flask import current_app

from stockhub.exceptions import ResourceNotFound
from stockhub.extensions import db
from stockhub.models import InventoryItem, Warehouse


@dataclass(frozen=True)
class Found:
    item: InventoryItem


@dataclass(frozen=True)
class NotFound:
    sku: str
    warehouse_id: int


RecordLookup = Union[Found, NotFound]


def get_item(item_id: int) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise ResourceNotFound("InventoryItem", "id", item_id)
    return item


def lookup_item(sku: str, warehouse_id: int) -> RecordLookup:
    item = InventoryItem.query.filter_by(sku=sku, warehouse_id=warehouse_id).one_or_none()
    if item is None:
        return NotFound(sku=sku, warehouse_id=warehouse_id)
    return Found(item)


def sku_exists_in_warehouse(
    sku: str, warehouse_id: int, *, exclude_item_id: int | None = None
) -> bool:
    query = InventoryItem.query.filter_by(sku=sku, warehouse_id=warehouse_id)
    if exclude_item_id is not None:
        query = query.filter(InventoryItem.id != exclude_item_id)
    return db.session.query(query.exists()).scalar()


def new_record_like(template: InventoryItem, warehouse: Warehouse) -> InventoryItem:
    """Return an empty record in ``warehouse`` carrying ``template``'s metadata."""

    item = InventoryItem(**template.descriptive_metadata())
    item.quantity = 0
    item.warehouse = warehouse
    return item


def persist(*items: InventoryItem) -> None:
    for item in items:
        db.session.add(item)


def list_items() -> list[InventoryItem]:
    return InventoryItem.query.order_by(InventoryItem.sku, InventoryItem.warehouse_id).all()


def items_by_sku(sku: str) -> list[InventoryItem]:
    items = (
        InventoryItem.query.filter_by(sku=sku).order_by(InventoryItem.warehouse_id).all()
    )
    if not items:
        raise ResourceNotFound("InventoryItem", "sku", sku)
    return items


def items_by_warehouse(warehouse_id: int) -> list[InventoryItem]:
    return (
        InventoryItem.query.filter_by(warehouse_id=warehouse_id)
        .order_by(InventoryItem.sku)
        .all()
    )


def items_by_category(category: str) -> list[InventoryItem]:
    return InventoryItem.query.filter_by(category=category).order_by(InventoryItem.sku).all()


def low_stock_items() -> list[InventoryItem]:
    return (
        InventoryItem.query.filter(
            InventoryItem.reorder_level.isnot(None),
            InventoryItem.quantity <= InventoryItem.reorder_level,
        )
        .order_by(InventoryItem.sku)
        .all()
    )


def expired_items(today: date | None = None) -> list[InventoryItem]:
    today = today or date.today()
    return (
        InventoryItem.query.filter(
            InventoryItem.expiration_date.isnot(None),
            InventoryItem.expiration_date < today,
        )
        .order_by(InventoryItem.expiration_date)
        .all()
    )


def items_expiring_soon(days: int | None = None, today: date | None = None) -> list[InventoryItem]:
    if days is None:
        days = int(current_app.config.get("EXPIRING_SOON_DAYS", 30))
    today = today or date.today()
    return (
        InventoryItem.query.filter(
            InventoryItem.expiration_date.isnot(None),
            InventoryItem.expiration_date >= today,
            InventoryItem.expiration_date <= today + timedelta(days=days),
        )
        .order_by(InventoryItem.expiration_date)
        .all()
    )
