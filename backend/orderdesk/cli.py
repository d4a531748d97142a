# Overview: Flask CLI command groups for bootstrap and till operations.

# backend/orderdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent; use `flask db upgrade` for migrations).
#
# Store setup:
# - python -m flask stores create --name "Padaria Central" --courier-phone 5511999990000
#   Create a store and seed its default order statuses.
# - python -m flask stores seed-statuses --store-id 1
#   Add missing default statuses (pending, preparing, ready, delivered, cancelled).
# - python -m flask stores set-hours --store-id 1 --day 1 --open 08:00 --close 18:00
#   Set the weekly schedule of one weekday (0 = Sunday). Use --closed for a day off.
# - python -m flask stores special-day --store-id 1 --date 2026-12-25 --closed
#   Override the schedule for one date.
# - python -m flask stores set-redeem-cost --store-id 1 --points 9
#   Points charged per loyalty payment.
#
# Cash register:
# - python -m flask registers open --store-id 1 --initial 100.00
# - python -m flask registers current --store-id 1
# - python -m flask registers close --store-id 1 [--yes]

from decimal import Decimal, InvalidOperation

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Store
from .time_utils import parse_iso_date, parse_clock_time


def _parse_money(value: str) -> int:
    """'100.00' / '100,00' -> 10000 cents; negatives and fractions of a cent are rejected."""
    try:
        amount = Decimal(value.strip().replace(",", "."))
    except InvalidOperation:
        raise click.BadParameter(f"Invalid amount: {value}")
    if not amount.is_finite() or amount < 0:
        raise click.BadParameter(f"Invalid amount: {value}")
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise click.BadParameter(f"Amount has more than two decimals: {value}")
    return int(cents)


def _cents(value: int | None) -> str:
    return f"{(value or 0) / 100:.2f}"


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("PASS Database tables created")


@click.group('stores')
def stores_group():
    """Store setup commands."""


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--slug', help='URL slug for the storefront')
@click.option('--phone', help='Store phone')
@click.option('--courier-phone', help='Delivery partner phone for the courier hand-off')
@with_appcontext
def create_store_cli(name, slug, phone, courier_phone):
    """
    Create a store with the default status board.

    Example:
        flask stores create --name "Padaria Central" --slug padaria-central
    """
    from .services import status_service

    store = Store(name=name, display_name=name, slug=slug, phone=phone, courier_phone=courier_phone)
    db.session.add(store)
    db.session.commit()
    status_service.seed_default_statuses(store.id)

    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")


@stores_group.command('seed-statuses')
@click.option('--store-id', type=int, required=True, help='Store ID')
@with_appcontext
def seed_statuses_cli(store_id):
    """Add the missing default order statuses to a store."""
    from .services import status_service

    if not db.session.query(Store).filter_by(id=store_id).first():
        click.echo(f"FAIL Store {store_id} not found")
        raise SystemExit(1)

    created = status_service.seed_default_statuses(store_id)
    if created:
        click.echo(f"PASS Seeded statuses: {', '.join(s.status_key for s in created)}")
    else:
        click.echo("PASS All default statuses already present")


@stores_group.command('set-hours')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--day', type=click.IntRange(0, 6), required=True, help='0 = Sunday .. 6 = Saturday')
@click.option('--open', 'open_at', help='Opening time HH:MM')
@click.option('--close', 'close_at', help='Closing time HH:MM')
@click.option('--closed', is_flag=True, help='Store does not open on this weekday')
@with_appcontext
def set_hours_cli(store_id, day, open_at, close_at, closed):
    """Set the weekly schedule for one weekday."""
    from .services import availability_service

    try:
        entry = availability_service.set_weekly_hours(
            store_id,
            day,
            is_open=not closed,
            open_time=parse_clock_time(open_at),
            close_time=parse_clock_time(close_at),
        )
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    status = "closed" if not entry.is_open else f"{open_at} - {close_at}"
    click.echo(f"PASS Day {day}: {status}")


@stores_group.command('special-day')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--date', 'on_date', required=True, help='Date YYYY-MM-DD')
@click.option('--open', 'open_at', help='Opening time HH:MM')
@click.option('--close', 'close_at', help='Closing time HH:MM')
@click.option('--closed', is_flag=True, help='Store is closed on this date')
@with_appcontext
def special_day_cli(store_id, on_date, open_at, close_at, closed):
    """Override the weekly schedule for one date."""
    from .services import availability_service

    try:
        entry = availability_service.set_special_day(
            store_id,
            parse_iso_date(on_date),
            is_open=not closed,
            open_time=parse_clock_time(open_at),
            close_time=parse_clock_time(close_at),
        )
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS {entry.date.isoformat()}: {'open' if entry.is_open else 'closed'}")


@stores_group.command('set-redeem-cost')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--points', type=int, required=True, help='Points charged per loyalty payment')
@with_appcontext
def set_redeem_cost_cli(store_id, points):
    from .services import loyalty_service

    try:
        loyalty_service.set_redeem_cost(store_id, points)
    except loyalty_service.LoyaltyError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)
    click.echo(f"PASS Redeem cost set to {points} points")


@click.group('registers')
def registers_group():
    """Cash register session commands."""


@registers_group.command('open')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--initial', default='0', help='Initial drawer amount, e.g. 100.00')
@click.option('--user-id', type=int, help='Operator ID')
@with_appcontext
def open_register_cli(store_id, initial, user_id):
    """
    Open the store's cash register.

    Example:
        flask registers open --store-id 1 --initial 100.00
    """
    from .services import register_service

    try:
        session = register_service.open_register(store_id, user_id, _parse_money(initial))
    except register_service.RegisterError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    attached = register_service.get_session_orders(session.id)
    click.echo(f"PASS Opened session {session.id} with R$ {_cents(session.initial_amount_cents)}")
    if attached:
        click.echo(f"   Reservations attached: {len(attached)}")


@registers_group.command('current')
@click.option('--store-id', type=int, required=True, help='Store ID')
@with_appcontext
def current_register_cli(store_id):
    """Show the open session and its running totals."""
    from .services import register_service

    session = register_service.get_open_session(store_id)
    if not session:
        click.echo("No open cash register")
        return

    summary = register_service.prepare_close(session.id)
    click.echo(f"Session {session.id} opened at {session.opened_at}")
    click.echo(f"   Orders: {summary.order_count}")
    for method, cents in summary.totals_by_payment_method.items():
        click.echo(f"   {method:<12} R$ {_cents(cents)}")
    click.echo(f"   Total sales  R$ {_cents(summary.total_sales_cents)}")
    click.echo(f"   Drawer       R$ {_cents(summary.final_amount_cents)}")


@registers_group.command('close')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--user-id', type=int, help='Operator ID')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def close_register_cli(store_id, user_id, yes):
    """Reconcile and close the open session."""
    from .services import register_service

    session = register_service.get_open_session(store_id)
    if not session:
        click.echo("FAIL No open cash register")
        raise SystemExit(1)

    summary = register_service.prepare_close(session.id)
    click.echo(f"Total sales: R$ {_cents(summary.total_sales_cents)} ({summary.order_count} orders)")
    for product in summary.products_sold:
        click.echo(f"   {product['quantity']}x {product['name']}")
    if not yes and not click.confirm("Close the register?"):
        click.echo("Aborted")
        return

    try:
        session = register_service.confirm_close(
            session.id,
            closed_by=user_id,
            expected_total_sales_cents=summary.total_sales_cents,
        )
    except register_service.RegisterError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Closed session {session.id}: drawer R$ {_cents(session.final_amount_cents)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(registers_group)
