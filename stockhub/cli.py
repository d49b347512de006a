import json

import click
from flask import current_app
from flask.cli import AppGroup

from .exceptions import StockError
from .services import activity_log, adjustments, capacity, transfers
from .services.performers import ensure_user, resolve_performer


stock_cli = AppGroup("stock", help="Move and audit warehouse stock.")

performer_option = click.option(
    "--performer",
    default=None,
    help="Username recorded on the activity (defaults to SYSTEM_USERNAME).",
)


def _performer(username: str | None):
    system_username = current_app.config.get("SYSTEM_USERNAME", "system")
    if not username or username == system_username:
        return ensure_user(system_username, full_name="System")
    return resolve_performer(username)


def _fail(exc: StockError):
    raise click.ClickException(str(exc))


@stock_cli.command("create-warehouse")
@click.argument("name")
@click.argument("max_capacity")
@click.option("--location", default=None)
@click.option("--threshold", default=None, help="Capacity alert threshold in percent.")
def create_warehouse_command(name, max_capacity, location, threshold) -> None:
    """Create a warehouse with the given volumetric capacity."""
    try:
        warehouse = capacity.create_warehouse(
            name, max_capacity, location=location, capacity_alert_threshold=threshold
        )
    except StockError as exc:
        _fail(exc)
    click.echo(f"Created warehouse {warehouse.id}: {warehouse.name}")


@stock_cli.command("add-item")
@click.option("--sku", required=True)
@click.option("--name", required=True)
@click.option("--warehouse-id", required=True, type=int)
@click.option("--volume-per-unit", required=True)
@click.option("--quantity", default=0, type=int)
@click.option("--notes", default=None)
@performer_option
def add_item_command(sku, name, warehouse_id, volume_per_unit, quantity, notes, performer):
    """Create an inventory record and receive its opening quantity."""
    try:
        item = adjustments.create_item(
            _performer(performer),
            sku=sku,
            name=name,
            warehouse_id=warehouse_id,
            volume_per_unit=volume_per_unit,
            quantity=quantity,
            notes=notes,
        )
    except StockError as exc:
        _fail(exc)
    click.echo(f"Created item {item.id}: {item.sku} x {item.quantity}")


@stock_cli.command("adjust")
@click.argument("item_id", type=int)
@click.argument("delta", type=int)
@performer_option
def adjust_command(item_id, delta, performer) -> None:
    """Apply a signed quantity correction, e.g. ``adjust 4 -- -3``."""
    try:
        item = adjustments.adjust_quantity(item_id, delta, _performer(performer))
    except StockError as exc:
        _fail(exc)
    click.echo(f"{item.sku} now at {item.quantity}")


@stock_cli.command("receive")
@click.argument("item_id", type=int)
@click.argument("quantity", type=int)
@click.option("--notes", default=None)
@performer_option
def receive_command(item_id, quantity, notes, performer) -> None:
    """Receive new stock into an existing record."""
    try:
        item = adjustments.receive_stock(item_id, quantity, _performer(performer), notes)
    except StockError as exc:
        _fail(exc)
    click.echo(f"{item.sku} now at {item.quantity}")


@stock_cli.command("transfer")
@click.argument("sku")
@click.argument("source_warehouse_id", type=int)
@click.argument("destination_warehouse_id", type=int)
@click.argument("quantity", type=int)
@click.option("--notes", default=None)
@performer_option
def transfer_command(
    sku, source_warehouse_id, destination_warehouse_id, quantity, notes, performer
) -> None:
    """Move stock of one SKU between two warehouses."""
    request = transfers.TransferRequest(
        sku=sku,
        source_warehouse_id=source_warehouse_id,
        destination_warehouse_id=destination_warehouse_id,
        quantity=quantity,
        notes=notes,
    )
    try:
        result = transfers.transfer_stock(request, _performer(performer))
    except StockError as exc:
        _fail(exc)
    click.echo(
        f"Moved {quantity} x {sku}: source now {result.source.quantity}, "
        f"destination now {result.destination.quantity}"
    )


@stock_cli.command("bulk-transfer")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@performer_option
def bulk_transfer_command(path, performer) -> None:
    """Run the transfers listed in a JSON file (a list of request objects)."""
    with open(path, encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"Invalid JSON in {path}: {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("transfers", [])
    if not isinstance(payload, list):
        raise click.ClickException("Expected a list of transfers")

    try:
        user = _performer(performer)
    except StockError as exc:
        _fail(exc)
    report = transfers.bulk_transfer_stock(payload, user)
    click.echo(json.dumps(report.to_dict(), indent=2))
    if report.failed_transfers:
        raise SystemExit(1)


@stock_cli.command("delete-warehouse")
@click.argument("warehouse_id", type=int)
@click.option("--hard", is_flag=True, help="Remove the warehouse instead of deactivating it.")
def delete_warehouse_command(warehouse_id, hard) -> None:
    """Deactivate (or remove) an empty warehouse."""
    try:
        if hard:
            capacity.hard_delete_warehouse(warehouse_id)
        else:
            capacity.delete_warehouse(warehouse_id)
    except StockError as exc:
        _fail(exc)
    click.echo(f"Warehouse {warehouse_id} {'deleted' if hard else 'deactivated'}")


@stock_cli.command("history")
@click.argument("sku")
def history_command(sku) -> None:
    """Print the activity trail of a SKU, newest first."""
    for activity in activity_log.activities_for_sku(sku):
        click.echo(
            f"{activity.timestamp:%Y-%m-%d %H:%M:%S} {activity.activity_type:<10} "
            f"{activity.quantity_change:+d} ({activity.previous_quantity} -> "
            f"{activity.new_quantity}) by {activity.performed_by_username}"
            + (f": {activity.notes}" if activity.notes else "")
        )


@stock_cli.command("check-capacity")
@click.option("--fix", is_flag=True, help="Reset drifting counters to the recomputed total.")
def check_capacity_command(fix) -> None:
    """Compare running capacity counters with the volumes actually on hand."""
    drift = capacity.find_capacity_drift()
    if not drift:
        click.echo("Capacity OK: every counter matches its records.")
        return
    for entry in drift:
        click.echo(
            f"{entry.warehouse_name}: recorded {entry.recorded} but records hold {entry.actual}"
        )
    if fix:
        fixed = capacity.realign_capacity(drift)
        click.echo(f"Realigned {fixed} warehouse(s).")
        return
    raise SystemExit(1)


def register_cli(app):
    app.cli.add_command(stock_cli)
