"""In-place quantity changes to a single inventory record.

Every public function here is one unit of work: the record, its warehouse's
running capacity and exactly one activity row are committed together or not
at all.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from stockhub.exceptions import (
    DuplicateResource,
    InsufficientStock,
    InvalidOperation,
)
from stockhub.models import InventoryItem, User
from stockhub.services import activity_log, capacity, ledger
from stockhub.services.performers import require_performer
from stockhub.services.transactions import retry_on_conflict, unit_of_work
from stockhub.utils.quantities import to_decimal, to_quantity


logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "description",
    "category",
    "brand",
    "unit_price",
    "reorder_level",
    "warranty_end_date",
    "expiration_date",
    "barcode",
)
UPDATABLE_FIELDS = EDITABLE_FIELDS + ("sku", "warehouse_id", "quantity", "volume_per_unit")


def _check_fields(fields: dict, allowed: tuple[str, ...]) -> None:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise InvalidOperation(f"Unknown item fields: {', '.join(unknown)}")


def _clean_sku(sku: str | None) -> str:
    sku = (sku or "").strip()
    if not sku:
        raise InvalidOperation("SKU is required")
    return sku


def _volume_change(item: InventoryItem, quantity_change: int) -> Decimal:
    return Decimal(item.volume_per_unit) * quantity_change


@retry_on_conflict
def create_item(
    performer: User,
    *,
    sku: str,
    name: str,
    warehouse_id: int,
    volume_per_unit,
    quantity=0,
    notes: str | None = None,
    **details,
) -> InventoryItem:
    """Create the record for ``sku`` in a warehouse and receive its opening stock."""

    require_performer(performer)
    _check_fields(details, EDITABLE_FIELDS)
    sku = _clean_sku(sku)
    name = (name or "").strip()
    if not name:
        raise InvalidOperation("Item name is required")
    quantity = to_quantity(quantity, minimum=0)
    volume_per_unit = to_decimal(volume_per_unit, "Volume per unit", positive=True)

    with unit_of_work("create_item"):
        warehouse = capacity.get_warehouse(warehouse_id)
        if not warehouse.is_active:
            raise InvalidOperation(f"Warehouse '{warehouse.name}' is not active")
        if ledger.sku_exists_in_warehouse(sku, warehouse.id):
            raise DuplicateResource("InventoryItem", "sku", sku)

        item = InventoryItem(
            sku=sku,
            name=name,
            quantity=quantity,
            volume_per_unit=volume_per_unit,
            warehouse=warehouse,
            **details,
        )
        ledger.persist(item)
        capacity.adjust_capacity(warehouse, item.total_volume)
        activity_log.log_receive(item, quantity, 0, performer, notes)

    logger.info(
        "Created %s in warehouse %s with %d units", sku, warehouse_id, quantity
    )
    return item


@retry_on_conflict
def adjust_quantity(item_id: int, delta, performer: User) -> InventoryItem:
    """Apply a signed manual correction to one record."""

    require_performer(performer)
    delta = to_quantity(delta, "Quantity change")

    with unit_of_work("adjust_quantity"):
        item = ledger.get_item(item_id)
        previous_quantity = item.quantity
        new_quantity = previous_quantity + delta
        if new_quantity < 0:
            raise InsufficientStock(item.sku, previous_quantity, -delta)

        item.quantity = new_quantity
        capacity.adjust_capacity(item.warehouse, _volume_change(item, delta))
        activity_log.log_adjustment(item, delta, previous_quantity, new_quantity, performer)

    logger.info(
        "Adjusted %s in warehouse %s: %d -> %d",
        item.sku,
        item.warehouse_id,
        previous_quantity,
        new_quantity,
    )
    return item


@retry_on_conflict
def receive_stock(
    item_id: int, quantity, performer: User, notes: str | None = None
) -> InventoryItem:
    require_performer(performer)
    quantity = to_quantity(quantity, minimum=1)

    with unit_of_work("receive_stock"):
        item = ledger.get_item(item_id)
        previous_quantity = item.quantity
        item.quantity = previous_quantity + quantity
        capacity.adjust_capacity(item.warehouse, _volume_change(item, quantity))
        activity_log.log_receive(item, quantity, previous_quantity, performer, notes)

    logger.info("Received %d units of %s", quantity, item.sku)
    return item


@retry_on_conflict
def update_item(
    item_id: int, performer: User, notes: str | None = None, **changes
) -> InventoryItem:
    """Edit a record, keeping warehouse capacity in step with its volume."""

    require_performer(performer)
    _check_fields(changes, UPDATABLE_FIELDS)
    if "sku" in changes:
        changes["sku"] = _clean_sku(changes["sku"])
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            raise InvalidOperation("Item name is required")
    if "quantity" in changes:
        changes["quantity"] = to_quantity(changes["quantity"], minimum=0)
    if "volume_per_unit" in changes:
        changes["volume_per_unit"] = to_decimal(
            changes["volume_per_unit"], "Volume per unit", positive=True
        )

    with unit_of_work("update_item"):
        item = ledger.get_item(item_id)
        old_warehouse = item.warehouse
        old_volume = item.total_volume
        previous_quantity = item.quantity

        new_sku = changes.pop("sku", item.sku)
        new_warehouse_id = changes.pop("warehouse_id", item.warehouse_id)
        new_warehouse = old_warehouse
        if new_warehouse_id != old_warehouse.id:
            new_warehouse = capacity.get_warehouse(new_warehouse_id)
            if not new_warehouse.is_active:
                raise InvalidOperation(f"Warehouse '{new_warehouse.name}' is not active")
        if (new_sku, new_warehouse.id) != (item.sku, old_warehouse.id) and (
            ledger.sku_exists_in_warehouse(new_sku, new_warehouse.id, exclude_item_id=item.id)
        ):
            raise DuplicateResource("InventoryItem", "sku", new_sku)

        item.sku = new_sku
        for field, value in changes.items():
            setattr(item, field, value)
        new_volume = item.total_volume

        summary: list[str] = []
        if new_warehouse is not old_warehouse:
            capacity.adjust_capacity(old_warehouse, -old_volume)
            capacity.adjust_capacity(new_warehouse, new_volume)
            item.warehouse = new_warehouse
            summary.append(f"warehouse {old_warehouse.name} -> {new_warehouse.name}")
        elif new_volume != old_volume:
            capacity.adjust_capacity(old_warehouse, new_volume - old_volume)
        if new_volume != old_volume:
            summary.append(f"volume {old_volume} -> {new_volume}")

        moved = new_warehouse is not old_warehouse
        activity_log.log_update(
            item,
            previous_quantity,
            performer,
            notes,
            source_warehouse=old_warehouse if moved else None,
            destination_warehouse=new_warehouse if moved else None,
        )

    logger.info(
        "Updated %s (%s)", item.sku, "; ".join(summary) if summary else "details only"
    )
    return item


@retry_on_conflict
def delete_item(item_id: int, performer: User, notes: str | None = None) -> None:
    """Remove a record and release its whole volume from the warehouse."""

    require_performer(performer)

    with unit_of_work("delete_item"):
        item = ledger.get_item(item_id)
        warehouse = item.warehouse
        sku = item.sku
        capacity.adjust_capacity(warehouse, -item.total_volume)
        activity_log.log_delete(sku, item.quantity, performer, notes, warehouse=warehouse)
        warehouse.items.remove(item)

    logger.info("Deleted %s from warehouse %s", sku, warehouse.id)
