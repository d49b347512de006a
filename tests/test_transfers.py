import os
import sys
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockhub import create_app
from stockhub.exceptions import InsufficientStock, InvalidOperation, ResourceNotFound
from stockhub.extensions import db
from stockhub.models import ActivityType, StockActivity
from stockhub.services import adjustments, capacity, ledger, transfers
from stockhub.services.performers import ensure_user
from stockhub.services.transfers import TransferRequest


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "STOCK_LOG_DIR": str(tmp_path),
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def _seed(quantity=100):
    clerk = ensure_user("clerk", full_name="Warehouse Clerk")
    main = capacity.create_warehouse("Main", "1000")
    overflow = capacity.create_warehouse("Overflow", "500")
    item = adjustments.create_item(
        clerk,
        sku="A-100",
        name="Widget",
        warehouse_id=main.id,
        volume_per_unit="0.5",
        quantity=quantity,
        category="hardware",
        unit_price=Decimal("2.50"),
    )
    return clerk, main, overflow, item


def _transfers():
    return StockActivity.query.filter_by(activity_type=ActivityType.TRANSFER).all()


def test_transfer_creates_destination_record(app):
    clerk, main, overflow, item = _seed()

    result = transfers.transfer_stock(
        TransferRequest("A-100", main.id, overflow.id, 30), clerk
    )

    assert result.destination_created is True
    assert result.source.quantity == 70
    assert result.destination.quantity == 30
    assert ledger.get_item(item.id).quantity == 70

    lookup = ledger.lookup_item("A-100", overflow.id)
    assert isinstance(lookup, ledger.Found)
    assert lookup.item.quantity == 30
    assert lookup.item.name == "Widget"
    assert lookup.item.category == "hardware"
    assert lookup.item.volume_per_unit == Decimal("0.5")

    activities = _transfers()
    assert len(activities) == 1
    activity = activities[0]
    assert activity.id == result.activity_id
    assert activity.quantity_change == 30
    assert activity.previous_quantity == 100
    assert activity.new_quantity == 70
    assert activity.source_warehouse_id == main.id
    assert activity.destination_warehouse_id == overflow.id
    assert activity.performed_by_username == "clerk"
    assert activity.notes == "Transfer: 30 units from Main to Overflow"
    assert activity.is_valid_transfer


def test_transfer_credits_existing_destination_record(app):
    clerk, main, overflow, item = _seed()
    existing = adjustments.create_item(
        clerk,
        sku="A-100",
        name="Widget",
        warehouse_id=overflow.id,
        volume_per_unit="0.5",
        quantity=10,
    )

    result = transfers.transfer_stock(
        TransferRequest("A-100", main.id, overflow.id, 25, notes="rebalance"), clerk
    )

    assert result.destination_created is False
    assert result.destination.item_id == existing.id
    assert ledger.get_item(existing.id).quantity == 35
    assert len(ledger.items_by_sku("A-100")) == 2
    assert _transfers()[0].notes == "rebalance"


def test_transfer_conserves_quantity_and_mirrors_capacity(app):
    clerk, main, overflow, item = _seed()
    before_main = capacity.get_warehouse(main.id).current_capacity
    before_overflow = capacity.get_warehouse(overflow.id).current_capacity

    transfers.transfer_stock(TransferRequest("A-100", main.id, overflow.id, 40), clerk)

    total = sum(record.quantity for record in ledger.items_by_sku("A-100"))
    assert total == 100

    main = capacity.get_warehouse(main.id)
    overflow = capacity.get_warehouse(overflow.id)
    assert before_main - main.current_capacity == Decimal("20")
    assert overflow.current_capacity - before_overflow == Decimal("20")
    assert main.current_capacity == Decimal("30")
    assert overflow.current_capacity == Decimal("20")


def test_transfer_rejects_same_warehouse(app):
    clerk, main, _overflow, item = _seed()

    with pytest.raises(InvalidOperation) as excinfo:
        transfers.transfer_stock(TransferRequest("A-100", main.id, main.id, 5), clerk)

    assert "must be different" in str(excinfo.value)
    assert ledger.get_item(item.id).quantity == 100
    assert _transfers() == []


def test_transfer_rejects_inactive_destination(app):
    clerk, main, _overflow, _item = _seed()
    closed = capacity.create_warehouse("Closed", "100")
    capacity.delete_warehouse(closed.id)

    with pytest.raises(InvalidOperation) as excinfo:
        transfers.transfer_stock(TransferRequest("A-100", main.id, closed.id, 5), clerk)

    assert "is not active" in str(excinfo.value)
    assert ledger.lookup_item("A-100", closed.id) == ledger.NotFound("A-100", closed.id)


def test_transfer_rejects_missing_warehouse_and_sku(app):
    clerk, main, overflow, _item = _seed()

    with pytest.raises(ResourceNotFound):
        transfers.transfer_stock(TransferRequest("A-100", main.id, 999, 5), clerk)

    with pytest.raises(ResourceNotFound) as excinfo:
        transfers.transfer_stock(TransferRequest("NOPE", main.id, overflow.id, 5), clerk)
    assert "not found in source warehouse" in str(excinfo.value)


def test_transfer_insufficient_stock_leaves_everything_unchanged(app):
    clerk, main, overflow, item = _seed(quantity=10)

    with pytest.raises(InsufficientStock) as excinfo:
        transfers.transfer_stock(TransferRequest("A-100", main.id, overflow.id, 11), clerk)

    assert str(excinfo.value) == (
        "Insufficient stock for SKU 'A-100'. Available: 10, Requested: 11"
    )
    assert ledger.get_item(item.id).quantity == 10
    assert capacity.get_warehouse(main.id).current_capacity == Decimal("5")
    assert capacity.get_warehouse(overflow.id).current_capacity == Decimal("0")
    assert isinstance(ledger.lookup_item("A-100", overflow.id), ledger.NotFound)


@pytest.mark.parametrize("quantity", [0, -5, "abc"])
def test_transfer_rejects_non_positive_quantity(app, quantity):
    clerk, main, overflow, _item = _seed()

    with pytest.raises(InvalidOperation):
        transfers.transfer_stock(
            TransferRequest("A-100", main.id, overflow.id, quantity), clerk
        )


def test_transfer_retries_after_version_conflict(app, monkeypatch):
    clerk, main, overflow, item = _seed()
    original_persist = ledger.persist
    calls = []

    def conflicting_persist(*items):
        calls.append(items)
        if len(calls) == 1:
            raise StaleDataError("inventory_item row changed underneath us")
        return original_persist(*items)

    monkeypatch.setattr(ledger, "persist", conflicting_persist)

    result = transfers.transfer_stock(
        TransferRequest("A-100", main.id, overflow.id, 30), clerk
    )

    assert len(calls) == 2
    assert result.source.quantity == 70
    assert ledger.get_item(item.id).quantity == 70
    assert capacity.get_warehouse(main.id).current_capacity == Decimal("35")
    assert len(_transfers()) == 1


def test_bulk_transfer_isolates_failing_rows(app):
    clerk, main, overflow, item = _seed()

    report = transfers.bulk_transfer_stock(
        [
            TransferRequest("A-100", main.id, overflow.id, 30),
            TransferRequest("UNKNOWN", main.id, overflow.id, 5),
        ],
        clerk,
    )

    assert report.to_dict()["total_transfers"] == 2
    assert report.successful_transfers == 1
    assert report.failed_transfers == 1
    error = report.errors[0]
    assert error.index == 1
    assert error.sku == "UNKNOWN"
    assert "not found" in error.message
    assert error.error_code == "resource_not_found"
    assert ledger.get_item(item.id).quantity == 70


def test_bulk_transfer_keeps_going_after_a_failure(app):
    clerk, main, overflow, item = _seed(quantity=50)

    report = transfers.bulk_transfer_stock(
        [
            TransferRequest("A-100", main.id, overflow.id, 20),
            TransferRequest("A-100", main.id, overflow.id, 100),
            TransferRequest("A-100", main.id, main.id, 1),
            TransferRequest("A-100", main.id, overflow.id, 10),
        ],
        clerk,
    )

    assert report.total_transfers == 4
    assert report.successful_transfers + report.failed_transfers == 4
    assert [error.index for error in report.errors] == [1, 2]
    assert isinstance(report.outcomes[3], transfers.TransferSucceeded)
    assert ledger.get_item(item.id).quantity == 20
    assert ledger.lookup_item("A-100", overflow.id).item.quantity == 30
    assert len(_transfers()) == 2


def test_bulk_transfer_reports_database_errors(app, monkeypatch):
    clerk, main, overflow, _item = _seed()

    def broken_transfer(request, performer):
        raise OperationalError("UPDATE inventory_item", {}, Exception("disk I/O error"))

    monkeypatch.setattr(transfers, "transfer_stock", broken_transfer)

    report = transfers.bulk_transfer_stock(
        [TransferRequest("A-100", main.id, overflow.id, 1)], clerk
    )

    assert report.failed_transfers == 1
    assert report.errors[0].error_code == "database_error"
    assert "no changes were made" in report.errors[0].message


def test_transfer_request_from_dict_accepts_item_sku():
    request = TransferRequest.from_dict(
        {
            "item_sku": "A-100",
            "source_warehouse_id": 1,
            "destination_warehouse_id": 2,
            "quantity": 3,
        }
    )

    assert request == TransferRequest("A-100", 1, 2, 3)


def test_transfer_rejects_inactive_source(app):
    clerk, main, overflow, item = _seed(quantity=0)
    capacity.delete_warehouse(main.id)

    with pytest.raises(InvalidOperation) as excinfo:
        transfers.transfer_stock(TransferRequest("A-100", main.id, overflow.id, 1), clerk)

    assert str(excinfo.value) == "Source warehouse 'Main' is not active"
    assert ledger.get_item(item.id).quantity == 0
    assert isinstance(ledger.lookup_item("A-100", overflow.id), ledger.NotFound)
    assert _transfers() == []


def test_transfer_accepts_numeric_string_warehouse_ids(app):
    clerk, main, overflow, item = _seed()

    result = transfers.transfer_stock(
        TransferRequest("A-100", str(main.id), str(overflow.id), 5), clerk
    )

    assert result.destination.warehouse_id == overflow.id
    assert ledger.get_item(item.id).quantity == 95


def test_bulk_transfer_rejects_same_warehouse_given_as_string_and_int(app):
    clerk, main, _overflow, item = _seed()

    report = transfers.bulk_transfer_stock(
        [
            {
                "sku": "A-100",
                "source_warehouse_id": str(main.id),
                "destination_warehouse_id": main.id,
                "quantity": 5,
            }
        ],
        clerk,
    )

    assert report.successful_transfers == 0
    assert report.errors[0].error_code == "invalid_operation"
    assert "must be different" in report.errors[0].message
    assert ledger.get_item(item.id).quantity == 100
    assert _transfers() == []


def test_bulk_transfer_reports_unreadable_rows(app):
    clerk, main, overflow, item = _seed()

    report = transfers.bulk_transfer_stock(
        [
            "abc",
            None,
            {"sku": "A-100", "source_warehouse_id": main.id, "quantity": 5},
            {
                "sku": "A-100",
                "source_warehouse_id": main.id,
                "destination_warehouse_id": overflow.id,
                "quantity": 5,
            },
        ],
        clerk,
    )

    assert report.total_transfers == 4
    assert [error.index for error in report.errors] == [0, 1, 2]
    assert {error.error_code for error in report.errors} == {"invalid_operation"}
    assert report.errors[0].sku == ""
    assert report.errors[2].sku == "A-100"
    assert isinstance(report.outcomes[3], transfers.TransferSucceeded)
    assert ledger.get_item(item.id).quantity == 95
