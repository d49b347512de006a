"""Stock transfers between warehouses, one at a time or in bulk."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Union

from sqlalchemy.exc import SQLAlchemyError

from stockhub.exceptions import (
    InsufficientStock,
    InvalidOperation,
    ResourceNotFound,
    StockError,
)
from stockhub.extensions import db
from stockhub.models import InventoryItem, StockActivity, User, Warehouse
from stockhub.services import activity_log, capacity, ledger
from stockhub.services.performers import require_performer
from stockhub.services.transactions import retry_on_conflict, unit_of_work
from stockhub.utils.quantities import to_quantity


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferRequest:
    sku: str
    source_warehouse_id: int
    destination_warehouse_id: int
    quantity: int
    notes: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping) -> "TransferRequest":
        if not isinstance(payload, Mapping):
            raise InvalidOperation(
                "Each transfer must be an object with sku, warehouses and quantity"
            )
        return cls(
            sku=payload.get("sku") or payload.get("item_sku") or "",
            source_warehouse_id=payload.get("source_warehouse_id"),
            destination_warehouse_id=payload.get("destination_warehouse_id"),
            quantity=payload.get("quantity"),
            notes=payload.get("notes"),
        )


@dataclass(frozen=True)
class RecordState:
    item_id: int
    sku: str
    warehouse_id: int
    quantity: int

    @classmethod
    def of(cls, item: InventoryItem) -> "RecordState":
        return cls(
            item_id=item.id,
            sku=item.sku,
            warehouse_id=item.warehouse_id,
            quantity=item.quantity,
        )


@dataclass(frozen=True)
class TransferResult:
    source: RecordState
    destination: RecordState
    activity_id: int
    destination_created: bool


@dataclass(frozen=True)
class TransferSucceeded:
    index: int
    result: TransferResult


@dataclass(frozen=True)
class TransferFailed:
    index: int
    sku: str
    message: str
    error_code: str


TransferOutcome = Union[TransferSucceeded, TransferFailed]


@dataclass
class BulkTransferResult:
    outcomes: list[TransferOutcome] = field(default_factory=list)

    @property
    def total_transfers(self) -> int:
        return len(self.outcomes)

    @property
    def results(self) -> list[TransferResult]:
        return [o.result for o in self.outcomes if isinstance(o, TransferSucceeded)]

    @property
    def errors(self) -> list[TransferFailed]:
        return [o for o in self.outcomes if isinstance(o, TransferFailed)]

    @property
    def successful_transfers(self) -> int:
        return len(self.results)

    @property
    def failed_transfers(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict:
        return {
            "total_transfers": self.total_transfers,
            "successful_transfers": self.successful_transfers,
            "failed_transfers": self.failed_transfers,
            "errors": [
                {"index": error.index, "sku": error.sku, "message": error.message}
                for error in self.errors
            ],
        }


def _load_active_warehouse(warehouse_id: int, role: str) -> Warehouse:
    warehouse = capacity.get_warehouse(warehouse_id)
    if not warehouse.is_active:
        raise InvalidOperation(f"{role} warehouse '{warehouse.name}' is not active")
    return warehouse


def _validate(request: TransferRequest) -> tuple[Warehouse, Warehouse, InventoryItem, int]:
    sku = str(request.sku or "").strip()
    if not sku:
        raise InvalidOperation("SKU is required")
    quantity = to_quantity(request.quantity, minimum=1)

    source_id = to_quantity(request.source_warehouse_id, "Source warehouse id", minimum=1)
    destination_id = to_quantity(
        request.destination_warehouse_id, "Destination warehouse id", minimum=1
    )
    if source_id == destination_id:
        raise InvalidOperation("Source and destination warehouses must be different")

    source_warehouse = _load_active_warehouse(source_id, "Source")
    destination_warehouse = _load_active_warehouse(destination_id, "Destination")

    lookup = ledger.lookup_item(sku, source_warehouse.id)
    if isinstance(lookup, ledger.NotFound):
        raise ResourceNotFound(
            "InventoryItem",
            message=f"InventoryItem with SKU '{sku}' not found in source warehouse",
        )
    source_item = lookup.item

    if source_item.quantity < quantity:
        raise InsufficientStock(sku, source_item.quantity, quantity)

    return source_warehouse, destination_warehouse, source_item, quantity


@retry_on_conflict
def transfer_stock(request: TransferRequest, performer: User) -> TransferResult:
    """Move ``request.quantity`` units of a SKU between two warehouses.

    All checks run before anything is written. The quantity, capacity and
    audit changes then commit as one transaction.
    """

    require_performer(performer)

    with unit_of_work("transfer_stock"):
        source_warehouse, destination_warehouse, source_item, quantity = _validate(request)

        previous_source_quantity = source_item.quantity
        source_item.quantity = previous_source_quantity - quantity

        lookup = ledger.lookup_item(source_item.sku, destination_warehouse.id)
        if isinstance(lookup, ledger.Found):
            destination_item = lookup.item
            created = False
        else:
            destination_item = ledger.new_record_like(source_item, destination_warehouse)
            created = True
        destination_item.quantity += quantity

        volume = source_item.volume_per_unit * quantity
        capacity.adjust_capacity(source_warehouse, -volume)
        capacity.adjust_capacity(destination_warehouse, volume)

        ledger.persist(source_item, destination_item)
        notes = request.notes
        if notes is None:
            notes = (
                f"Transfer: {quantity} units from {source_warehouse.name} "
                f"to {destination_warehouse.name}"
            )
        activity: StockActivity = activity_log.log_transfer(
            source_item,
            quantity,
            previous_source_quantity,
            source_item.quantity,
            performer,
            notes,
            source_warehouse=source_warehouse,
            destination_warehouse=destination_warehouse,
        )
        db.session.flush()

        result = TransferResult(
            source=RecordState.of(source_item),
            destination=RecordState.of(destination_item),
            activity_id=activity.id,
            destination_created=created,
        )

    logger.info(
        "Transferred %d x %s from %s to %s%s",
        quantity,
        result.source.sku,
        result.source.warehouse_id,
        result.destination.warehouse_id,
        " (new destination record)" if created else "",
    )
    return result


def _as_request(row) -> TransferRequest:
    if isinstance(row, TransferRequest):
        return row
    return TransferRequest.from_dict(row)


def bulk_transfer_stock(
    rows: Iterable[TransferRequest | Mapping], performer: User
) -> BulkTransferResult:
    """Run each transfer in order as its own transaction.

    Rows may be :class:`TransferRequest` objects or raw mappings such as
    parsed JSON. A failing or unreadable row is reported and skipped; rows
    before it stay committed and rows after it still run.
    """

    report = BulkTransferResult()
    for index, row in enumerate(rows):
        sku = ""
        try:
            request = _as_request(row)
            sku = str(request.sku or "")
            result = transfer_stock(request, performer)
        except StockError as exc:
            outcome: TransferOutcome = TransferFailed(
                index=index,
                sku=sku,
                message=str(exc),
                error_code=exc.code,
            )
            logger.warning("Bulk transfer row %d failed: %s", index, exc)
        except SQLAlchemyError as exc:
            outcome = TransferFailed(
                index=index,
                sku=sku,
                message="The transfer could not be saved; no changes were made.",
                error_code="database_error",
            )
            logger.exception("Bulk transfer row %d hit a database error", index)
        else:
            outcome = TransferSucceeded(index=index, result=result)
        report.outcomes.append(outcome)

    logger.info(
        "Bulk transfer finished: %d of %d succeeded",
        report.successful_transfers,
        report.total_transfers,
    )
    return report
