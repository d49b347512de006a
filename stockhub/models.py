from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import event

from stockhub.exceptions import ImmutableActivity
from stockhub.extensions import db


CAPACITY_QUANTUM = Decimal("0.01")


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.username}>"


class Warehouse(db.Model):
    __tablename__ = "warehouse"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    location = db.Column(db.String(255), nullable=True)
    max_capacity = db.Column(db.Numeric(18, 4), nullable=False)
    # Running total of record volumes at the same scale as volume_per_unit.
    current_capacity = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    capacity_alert_threshold = db.Column(
        db.Numeric(5, 2), nullable=False, default=Decimal("80.00")
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    items = db.relationship(
        "InventoryItem",
        back_populates="warehouse",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def utilization_percentage(self) -> Decimal:
        max_capacity = Decimal(self.max_capacity or 0)
        if max_capacity == 0:
            return Decimal("0.00")
        current = Decimal(self.current_capacity or 0)
        return (current * 100 / max_capacity).quantize(
            CAPACITY_QUANTUM, rounding=ROUND_HALF_UP
        )

    @property
    def is_alert_triggered(self) -> bool:
        threshold = Decimal(self.capacity_alert_threshold or 0)
        return self.utilization_percentage >= threshold

    @property
    def available_capacity(self) -> Decimal:
        return Decimal(self.max_capacity or 0) - Decimal(self.current_capacity or 0)

    def would_exceed_capacity(self, volume) -> bool:
        return Decimal(self.current_capacity or 0) + Decimal(volume) > Decimal(
            self.max_capacity or 0
        )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<Warehouse {self.name} {self.current_capacity}/{self.max_capacity}"
            f" active={self.is_active}>"
        )


class InventoryItem(db.Model):
    """Quantity of one SKU held in one warehouse."""

    __tablename__ = "inventory_item"
    __table_args__ = (
        db.UniqueConstraint("sku", "warehouse_id", name="uq_inventory_item_sku_warehouse"),
    )

    # Descriptive fields copied onto a new record when stock is transferred
    # into a warehouse that has never held the SKU.
    DESCRIPTIVE_FIELDS = (
        "sku",
        "name",
        "description",
        "category",
        "brand",
        "unit_price",
        "volume_per_unit",
        "reorder_level",
        "warranty_end_date",
        "expiration_date",
        "barcode",
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(50), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(100))
    brand = db.Column(db.String(100))
    quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price = db.Column(db.Numeric(10, 2))
    volume_per_unit = db.Column(db.Numeric(12, 4), nullable=False)
    reorder_level = db.Column(db.Integer)
    warehouse_id = db.Column(
        db.Integer, db.ForeignKey("warehouse.id", ondelete="CASCADE"), nullable=False
    )
    warranty_end_date = db.Column(db.Date)
    expiration_date = db.Column(db.Date)
    barcode = db.Column(db.String(100))
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    warehouse = db.relationship("Warehouse", back_populates="items")

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_volume(self) -> Decimal:
        return Decimal(self.volume_per_unit or 0) * int(self.quantity or 0)

    @property
    def total_value(self) -> Decimal:
        if self.unit_price is None:
            return Decimal("0")
        return Decimal(self.unit_price) * int(self.quantity or 0)

    @property
    def is_low_stock(self) -> bool:
        return self.reorder_level is not None and (self.quantity or 0) <= self.reorder_level

    @property
    def is_expired(self) -> bool:
        return self.expiration_date is not None and self.expiration_date < date.today()

    def is_expiring_soon(self, days: int) -> bool:
        if self.expiration_date is None:
            return False
        return self.expiration_date <= date.today() + timedelta(days=days)

    @property
    def is_warranty_valid(self) -> bool:
        return self.warranty_end_date is not None and self.warranty_end_date > date.today()

    def descriptive_metadata(self) -> dict:
        return {field: getattr(self, field) for field in self.DESCRIPTIVE_FIELDS}

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<InventoryItem {self.sku}@{self.warehouse_id} qty={self.quantity}>"


class ActivityType:
    RECEIVE = "RECEIVE"
    TRANSFER = "TRANSFER"
    SALE = "SALE"
    ADJUSTMENT = "ADJUSTMENT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    ALL = (RECEIVE, TRANSFER, SALE, ADJUSTMENT, UPDATE, DELETE)


class StockActivity(db.Model):
    """Append-only audit entry for one quantity-changing event."""

    __tablename__ = "stock_activity"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer,
        db.ForeignKey("inventory_item.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    item_sku = db.Column(db.String(50), nullable=False, index=True)
    activity_type = db.Column(db.String(20), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=True)
    new_quantity = db.Column(db.Integer, nullable=True)
    source_warehouse_id = db.Column(
        db.Integer, db.ForeignKey("warehouse.id", ondelete="SET NULL"), nullable=True
    )
    destination_warehouse_id = db.Column(
        db.Integer, db.ForeignKey("warehouse.id", ondelete="SET NULL"), nullable=True
    )
    performed_by_id = db.Column(
        db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True
    )
    performed_by_username = db.Column(db.String(255), nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    # Many-to-one only: removing an item or warehouse never touches audit rows
    # through the ORM.
    item = db.relationship("InventoryItem")
    source_warehouse = db.relationship("Warehouse", foreign_keys=[source_warehouse_id])
    destination_warehouse = db.relationship(
        "Warehouse", foreign_keys=[destination_warehouse_id]
    )
    performed_by = db.relationship("User")

    @property
    def is_transfer(self) -> bool:
        return self.activity_type == ActivityType.TRANSFER

    @property
    def is_valid_transfer(self) -> bool:
        return (
            self.is_transfer
            and self.source_warehouse_id is not None
            and self.destination_warehouse_id is not None
            and self.source_warehouse_id != self.destination_warehouse_id
        )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<StockActivity {self.activity_type} {self.item_sku} "
            f"{self.previous_quantity}->{self.new_quantity}>"
        )


@event.listens_for(StockActivity, "before_update")
def _reject_activity_update(mapper, connection, target):
    raise ImmutableActivity(f"Stock activity {target.id} is immutable and cannot be modified")


@event.listens_for(StockActivity, "before_delete")
def _reject_activity_delete(mapper, connection, target):
    raise ImmutableActivity(f"Stock activity {target.id} is immutable and cannot be deleted")
