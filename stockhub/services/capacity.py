"""Warehouse capacity tracking and warehouse maintenance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import func

from stockhub.exceptions import DuplicateResource, InvalidOperation, ResourceNotFound
from stockhub.extensions import db
from stockhub.models import InventoryItem, Warehouse
from stockhub.services.transactions import retry_on_conflict, unit_of_work
from stockhub.utils.quantities import to_decimal


logger = logging.getLogger(__name__)

ZERO = Decimal("0")
VOLUME_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class CapacityDrift:
    warehouse_id: int
    warehouse_name: str
    recorded: Decimal
    actual: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded - self.actual


def get_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise ResourceNotFound("Warehouse", "id", warehouse_id)
    return warehouse


def list_warehouses() -> list[Warehouse]:
    return Warehouse.query.order_by(Warehouse.name).all()


def active_warehouses() -> list[Warehouse]:
    return Warehouse.query.filter_by(is_active=True).order_by(Warehouse.name).all()


def warehouses_with_alerts() -> list[Warehouse]:
    return [warehouse for warehouse in list_warehouses() if warehouse.is_alert_triggered]


def adjust_capacity(warehouse: Warehouse, volume_delta) -> Decimal:
    """Shift ``warehouse.current_capacity`` by ``volume_delta`` and return it."""

    current = Decimal(warehouse.current_capacity or 0)
    warehouse.current_capacity = current + Decimal(volume_delta)
    db.session.add(warehouse)
    return warehouse.current_capacity


def _alert_threshold(value) -> Decimal:
    if value is None:
        value = current_app.config.get("DEFAULT_CAPACITY_ALERT_THRESHOLD", "80.00")
    threshold = to_decimal(value, "Capacity alert threshold", positive=True)
    if threshold > 100:
        raise InvalidOperation("Capacity alert threshold cannot exceed 100 percent")
    return threshold


def _name_taken(name: str, *, exclude_id: int | None = None) -> bool:
    query = Warehouse.query.filter(func.lower(Warehouse.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Warehouse.id != exclude_id)
    return db.session.query(query.exists()).scalar()


def create_warehouse(
    name: str,
    max_capacity,
    *,
    location: str | None = None,
    capacity_alert_threshold=None,
) -> Warehouse:
    name = (name or "").strip()
    if not name:
        raise InvalidOperation("Warehouse name is required")
    max_capacity = to_decimal(max_capacity, "Maximum capacity", positive=True)
    threshold = _alert_threshold(capacity_alert_threshold)

    with unit_of_work("create_warehouse"):
        if _name_taken(name):
            raise DuplicateResource("Warehouse", "name", name)
        warehouse = Warehouse(
            name=name,
            location=(location or "").strip() or None,
            max_capacity=max_capacity,
            current_capacity=ZERO,
            capacity_alert_threshold=threshold,
            is_active=True,
        )
        db.session.add(warehouse)

    logger.info("Created warehouse %s (max capacity %s)", name, max_capacity)
    return warehouse


@retry_on_conflict
def update_warehouse(
    warehouse_id: int,
    *,
    name: str | None = None,
    location: str | None = None,
    max_capacity=None,
    capacity_alert_threshold=None,
) -> Warehouse:
    with unit_of_work("update_warehouse"):
        warehouse = get_warehouse(warehouse_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidOperation("Warehouse name is required")
            if name != warehouse.name and _name_taken(name, exclude_id=warehouse.id):
                raise DuplicateResource("Warehouse", "name", name)
            warehouse.name = name
        if location is not None:
            warehouse.location = location.strip() or None
        if max_capacity is not None:
            warehouse.max_capacity = to_decimal(max_capacity, "Maximum capacity", positive=True)
        if capacity_alert_threshold is not None:
            warehouse.capacity_alert_threshold = _alert_threshold(capacity_alert_threshold)

    logger.info("Updated warehouse %s", warehouse.name)
    return warehouse


def _holds_stock(warehouse: Warehouse) -> bool:
    query = InventoryItem.query.filter(
        InventoryItem.warehouse_id == warehouse.id, InventoryItem.quantity > 0
    )
    return db.session.query(query.exists()).scalar()


def _ensure_empty(warehouse: Warehouse) -> None:
    # Records are checked too; the counter alone may have drifted.
    if Decimal(warehouse.current_capacity or 0) > 0 or _holds_stock(warehouse):
        raise InvalidOperation(
            "Cannot delete warehouse with existing inventory. "
            "Please move or remove all items first."
        )


@retry_on_conflict
def delete_warehouse(warehouse_id: int) -> Warehouse:
    """Deactivate an empty warehouse; it keeps its history and records."""

    with unit_of_work("delete_warehouse"):
        warehouse = get_warehouse(warehouse_id)
        _ensure_empty(warehouse)
        warehouse.is_active = False

    logger.info("Deactivated warehouse %s", warehouse.name)
    return warehouse


@retry_on_conflict
def hard_delete_warehouse(warehouse_id: int) -> None:
    """Remove an empty warehouse together with its zero-quantity records."""

    with unit_of_work("hard_delete_warehouse"):
        warehouse = get_warehouse(warehouse_id)
        _ensure_empty(warehouse)
        name = warehouse.name
        db.session.delete(warehouse)

    logger.info("Deleted warehouse %s", name)


def find_capacity_drift() -> list[CapacityDrift]:
    """Compare each running total with the sum of its records' volumes."""

    totals = dict(
        db.session.query(
            InventoryItem.warehouse_id,
            func.coalesce(
                func.sum(InventoryItem.quantity * InventoryItem.volume_per_unit), 0
            ),
        )
        .group_by(InventoryItem.warehouse_id)
        .all()
    )

    drift: list[CapacityDrift] = []
    for warehouse in list_warehouses():
        recorded = Decimal(warehouse.current_capacity or 0)
        actual = Decimal(str(totals.get(warehouse.id, 0) or 0))
        if recorded.quantize(VOLUME_QUANTUM, rounding=ROUND_HALF_UP) != actual.quantize(
            VOLUME_QUANTUM, rounding=ROUND_HALF_UP
        ):
            drift.append(
                CapacityDrift(
                    warehouse_id=warehouse.id,
                    warehouse_name=warehouse.name,
                    recorded=recorded,
                    actual=actual,
                )
            )
    return drift


@retry_on_conflict
def realign_capacity(drift: list[CapacityDrift]) -> int:
    if not drift:
        return 0
    with unit_of_work("realign_capacity"):
        for entry in drift:
            warehouse = get_warehouse(entry.warehouse_id)
            warehouse.current_capacity = entry.actual
            logger.warning(
                "Realigned capacity of %s from %s to %s",
                entry.warehouse_name,
                entry.recorded,
                entry.actual,
            )
    return len(drift)
