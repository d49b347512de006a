"""Append-only stock activity trail and its history queries."""

from __future__ import annotations

from datetime import datetime

from stockhub.exceptions import InvalidOperation, ResourceNotFound
from stockhub.extensions import db
from stockhub.models import ActivityType, InventoryItem, StockActivity, User, Warehouse


def format_adjustment_note(quantity_change: int) -> str:
    # Negative numbers already carry their sign.
    sign = "+" if quantity_change > 0 else ""
    return f"Manual quantity adjustment: {sign}{quantity_change}"


def log_activity(
    *,
    item: InventoryItem | None,
    sku: str,
    activity_type: str,
    quantity_change: int,
    previous_quantity: int | None,
    new_quantity: int | None,
    performer: User,
    notes: str | None = None,
    source_warehouse: Warehouse | None = None,
    destination_warehouse: Warehouse | None = None,
) -> StockActivity:
    """Stage one activity row in the current transaction.

    The caller's unit of work commits it together with the quantity and
    capacity changes it describes.
    """

    if activity_type not in ActivityType.ALL:
        raise InvalidOperation(f"Unknown activity type: {activity_type}")

    activity = StockActivity(
        item=item,
        item_sku=sku,
        activity_type=activity_type,
        quantity_change=quantity_change,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        performed_by=performer,
        performed_by_username=performer.username,
        notes=notes,
        source_warehouse=source_warehouse,
        destination_warehouse=destination_warehouse,
    )
    db.session.add(activity)
    return activity


def log_adjustment(
    item: InventoryItem,
    quantity_change: int,
    previous_quantity: int,
    new_quantity: int,
    performer: User,
) -> StockActivity:
    return log_activity(
        item=item,
        sku=item.sku,
        activity_type=ActivityType.ADJUSTMENT,
        quantity_change=quantity_change,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        performer=performer,
        notes=format_adjustment_note(quantity_change),
    )


def log_receive(
    item: InventoryItem,
    quantity: int,
    previous_quantity: int,
    performer: User,
    notes: str | None,
) -> StockActivity:
    return log_activity(
        item=item,
        sku=item.sku,
        activity_type=ActivityType.RECEIVE,
        quantity_change=quantity,
        previous_quantity=previous_quantity,
        new_quantity=previous_quantity + quantity,
        performer=performer,
        notes=notes,
    )


def log_update(
    item: InventoryItem,
    previous_quantity: int,
    performer: User,
    notes: str | None,
    *,
    source_warehouse: Warehouse | None = None,
    destination_warehouse: Warehouse | None = None,
) -> StockActivity:
    return log_activity(
        item=item,
        sku=item.sku,
        activity_type=ActivityType.UPDATE,
        quantity_change=item.quantity - previous_quantity,
        previous_quantity=previous_quantity,
        new_quantity=item.quantity,
        performer=performer,
        notes=notes,
        source_warehouse=source_warehouse,
        destination_warehouse=destination_warehouse,
    )


def log_transfer(
    item: InventoryItem,
    quantity: int,
    previous_quantity: int,
    new_quantity: int,
    performer: User,
    notes: str | None,
    *,
    source_warehouse: Warehouse,
    destination_warehouse: Warehouse,
) -> StockActivity:
    return log_activity(
        item=item,
        sku=item.sku,
        activity_type=ActivityType.TRANSFER,
        quantity_change=quantity,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        performer=performer,
        notes=notes,
        source_warehouse=source_warehouse,
        destination_warehouse=destination_warehouse,
    )


def log_delete(
    sku: str,
    previous_quantity: int,
    performer: User,
    notes: str | None,
    *,
    warehouse: Warehouse,
) -> StockActivity:
    # The record is about to disappear, so only the SKU snapshot is kept.
    return log_activity(
        item=None,
        sku=sku,
        activity_type=ActivityType.DELETE,
        quantity_change=-previous_quantity,
        previous_quantity=previous_quantity,
        new_quantity=0,
        performer=performer,
        notes=notes,
        source_warehouse=warehouse,
    )


def _newest_first(query):
    return query.order_by(StockActivity.timestamp.desc(), StockActivity.id.desc())


def all_activities() -> list[StockActivity]:
    return _newest_first(StockActivity.query).all()


def get_activity(activity_id: int) -> StockActivity:
    activity = db.session.get(StockActivity, activity_id)
    if activity is None:
        raise ResourceNotFound("StockActivity", "id", activity_id)
    return activity


def activities_for_item(item_id: int) -> list[StockActivity]:
    if db.session.get(InventoryItem, item_id) is None:
        raise ResourceNotFound("InventoryItem", "id", item_id)
    return _newest_first(StockActivity.query.filter_by(item_id=item_id)).all()


def activities_for_sku(sku: str) -> list[StockActivity]:
    return _newest_first(StockActivity.query.filter_by(item_sku=sku)).all()


def activities_by_type(activity_type: str) -> list[StockActivity]:
    if activity_type not in ActivityType.ALL:
        raise InvalidOperation(f"Unknown activity type: {activity_type}")
    return _newest_first(StockActivity.query.filter_by(activity_type=activity_type)).all()


def activities_by_performer(username: str) -> list[StockActivity]:
    user = User.query.filter_by(username=username).one_or_none()
    if user is None:
        raise ResourceNotFound("User", "username", username)
    return _newest_first(StockActivity.query.filter_by(performed_by_id=user.id)).all()


def activities_for_warehouse(warehouse_id: int) -> list[StockActivity]:
    if db.session.get(Warehouse, warehouse_id) is None:
        raise ResourceNotFound("Warehouse", "id", warehouse_id)
    return _newest_first(
        StockActivity.query.filter(
            (StockActivity.source_warehouse_id == warehouse_id)
            | (StockActivity.destination_warehouse_id == warehouse_id)
            | StockActivity.item.has(InventoryItem.warehouse_id == warehouse_id)
        )
    ).all()


def activities_between(start: datetime, end: datetime) -> list[StockActivity]:
    if start > end:
        raise InvalidOperation("Start of the date range must not be after its end")
    return _newest_first(
        StockActivity.query.filter(
            StockActivity.timestamp >= start,
            StockActivity.timestamp <= end,
        )
    ).all()
