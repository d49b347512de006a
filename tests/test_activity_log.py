import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockhub import create_app
from stockhub.exceptions import ImmutableActivity, InvalidOperation, ResourceNotFound
from stockhub.extensions import db
from stockhub.models import ActivityType, StockActivity
from stockhub.services import activity_log, adjustments, capacity, transfers
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


@pytest.fixture
def history(app):
    alice = ensure_user("alice")
    bob = ensure_user("bob")
    east = capacity.create_warehouse("East", "1000")
    west = capacity.create_warehouse("West", "1000")
    item = adjustments.create_item(
        alice, sku="D-400", name="Drum", warehouse_id=east.id, volume_per_unit="1", quantity=50
    )
    adjustments.adjust_quantity(item.id, -5, bob)
    transfers.transfer_stock(TransferRequest("D-400", east.id, west.id, 10), bob)
    return {"alice": alice, "bob": bob, "east": east, "west": west, "item": item}


def test_format_adjustment_note_renders_sign_once():
    assert activity_log.format_adjustment_note(10) == "Manual quantity adjustment: +10"
    assert activity_log.format_adjustment_note(-20) == "Manual quantity adjustment: -20"


def test_one_activity_per_operation(history):
    kinds = [a.activity_type for a in activity_log.all_activities()]

    assert kinds == [ActivityType.TRANSFER, ActivityType.ADJUSTMENT, ActivityType.RECEIVE]


def test_activity_rows_cannot_be_modified(history):
    activity = activity_log.activities_by_type(ActivityType.ADJUSTMENT)[0]

    activity.notes = "rewritten"
    with pytest.raises(ImmutableActivity):
        db.session.commit()
    db.session.rollback()

    assert activity_log.get_activity(activity.id).notes == "Manual quantity adjustment: -5"


def test_activity_rows_cannot_be_deleted(history):
    activity = activity_log.all_activities()[0]

    db.session.delete(activity)
    with pytest.raises(ImmutableActivity):
        db.session.commit()
    db.session.rollback()

    assert StockActivity.query.count() == 3


def test_history_queries(history):
    item = history["item"]
    east = history["east"]
    west = history["west"]

    assert len(activity_log.activities_for_item(item.id)) == 3
    assert len(activity_log.activities_for_sku("D-400")) == 3
    assert [a.performed_by_username for a in activity_log.activities_by_performer("bob")] == [
        "bob",
        "bob",
    ]
    assert len(activity_log.activities_for_warehouse(east.id)) == 3
    west_history = activity_log.activities_for_warehouse(west.id)
    assert [a.activity_type for a in west_history] == [ActivityType.TRANSFER]


def test_history_query_errors(history):
    with pytest.raises(ResourceNotFound):
        activity_log.get_activity(999)
    with pytest.raises(ResourceNotFound):
        activity_log.activities_for_item(999)
    with pytest.raises(ResourceNotFound):
        activity_log.activities_by_performer("mallory")
    with pytest.raises(InvalidOperation):
        activity_log.activities_by_type("THEFT")


def test_activities_between(history):
    now = datetime.utcnow()

    assert len(activity_log.activities_between(now - timedelta(hours=1), now)) == 3
    assert activity_log.activities_between(now - timedelta(days=2), now - timedelta(days=1)) == []
    with pytest.raises(InvalidOperation):
        activity_log.activities_between(now, now - timedelta(days=1))


def test_log_activity_rejects_unknown_type(history):
    with pytest.raises(InvalidOperation):
        activity_log.log_activity(
            item=None,
            sku="D-400",
            activity_type="LOST",
            quantity_change=1,
            previous_quantity=None,
            new_quantity=None,
            performer=history["alice"],
        )
