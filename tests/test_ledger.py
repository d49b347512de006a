import os
import sys
from datetime import date, timedelta
from decimal import Decimal

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockhub import create_app
from stockhub.exceptions import ResourceNotFound
from stockhub.extensions import db
from stockhub.models import InventoryItem
from stockhub.services import adjustments, capacity, ledger
from stockhub.services.performers import ensure_user


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "STOCK_LOG_DIR": str(tmp_path),
            "EXPIRING_SOON_DAYS": 10,
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def stocked(app):
    clerk = ensure_user("clerk")
    pantry = capacity.create_warehouse("Pantry", "1000")
    cellar = capacity.create_warehouse("Cellar", "1000")
    today = date.today()

    def add(sku, warehouse, quantity, **details):
        return adjustments.create_item(
            clerk,
            sku=sku,
            name=sku.title(),
            warehouse_id=warehouse.id,
            volume_per_unit="0.1",
            quantity=quantity,
            **details,
        )

    add("milk", pantry, 4, category="dairy", reorder_level=5, expiration_date=today - timedelta(days=1))
    add("cheese", pantry, 20, category="dairy", reorder_level=5, expiration_date=today + timedelta(days=7))
    add("wine", cellar, 12, category="drinks", expiration_date=today + timedelta(days=365))
    add("milk", cellar, 30, category="dairy", unit_price=Decimal("1.20"))
    return {"pantry": pantry, "cellar": cellar, "today": today}


def test_lookup_item_returns_explicit_outcome(stocked):
    pantry = stocked["pantry"]

    found = ledger.lookup_item("milk", pantry.id)
    missing = ledger.lookup_item("wine", pantry.id)

    assert isinstance(found, ledger.Found)
    assert found.item.quantity == 4
    assert missing == ledger.NotFound(sku="wine", warehouse_id=pantry.id)


def test_new_record_like_copies_metadata_with_zero_quantity(stocked):
    source = ledger.lookup_item("cheese", stocked["pantry"].id).item

    clone = ledger.new_record_like(source, stocked["cellar"])

    assert clone.quantity == 0
    assert clone.sku == "cheese"
    assert clone.category == "dairy"
    assert clone.expiration_date == source.expiration_date
    assert clone.warehouse is stocked["cellar"]
    db.session.rollback()


def test_items_by_sku_and_warehouse(stocked):
    assert [item.quantity for item in ledger.items_by_sku("milk")] == [4, 30]
    assert [item.sku for item in ledger.items_by_warehouse(stocked["pantry"].id)] == [
        "cheese",
        "milk",
    ]
    assert len(ledger.items_by_category("dairy")) == 3
    assert len(ledger.list_items()) == 4

    with pytest.raises(ResourceNotFound):
        ledger.items_by_sku("butter")


def test_low_stock_and_expiry_queries(stocked):
    today = stocked["today"]

    assert [item.sku for item in ledger.low_stock_items()] == ["milk"]
    assert [item.sku for item in ledger.expired_items(today)] == ["milk"]
    assert [item.sku for item in ledger.items_expiring_soon(today=today)] == ["cheese"]
    assert {item.sku for item in ledger.items_expiring_soon(days=400, today=today)} == {
        "cheese",
        "wine",
    }


def test_item_derived_values(stocked):
    milk = ledger.lookup_item("milk", stocked["cellar"].id).item
    cheese = ledger.lookup_item("cheese", stocked["pantry"].id).item

    assert milk.total_value == Decimal("36.00")
    assert milk.total_volume == Decimal("3.0")
    assert milk.is_low_stock is False
    assert milk.is_warranty_valid is False
    assert cheese.is_expiring_soon(7) is True
    assert cheese.is_expiring_soon(6) is False
    assert cheese.is_expired is False


def test_get_item_missing(app):
    with pytest.raises(ResourceNotFound):
        ledger.get_item(1)
    assert InventoryItem.query.count() == 0
