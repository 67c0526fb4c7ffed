# Overview: Flask CLI command groups for bootstrap and ledger maintenance.

# backend/fleetledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger maintenance:
# - python -m flask ledger regenerate-snapshots [--today 2024-06-01]
#   Rebuild every month-end fuel-card balance snapshot.
# - python -m flask ledger lock-period 2024-05 [--actor admin] [--notes "..."]
#   Seal a month; posted documents dated inside it can no longer change.
# - python -m flask ledger verify-period 2024-05
#   Recompute the seal and report whether the month was altered.
# - python -m flask ledger recalc-drafts --vehicle-id 1 --from-date 2024-05-01
#   Recalculate a vehicle's draft waybills from a date.
# - python -m flask ledger recalc-balances
#   Rebuild stock item balances and cached fuel-card balances from posted history.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import PeriodLock
from .services import balance_service, chain_service, integrity_service, posting_service
from .time_utils import parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('ledger')
def ledger_group():
    """Fuel-card, period lock and chain maintenance commands."""


@ledger_group.command('regenerate-snapshots')
@click.option('--today', 'today_value', default=None, help='Treat this ISO date as today')
@with_appcontext
def regenerate_snapshots_cli(today_value):
    count = balance_service.regenerate_snapshots(parse_iso_date(today_value) if today_value else None)
    click.echo(f"Regenerated {count} balance snapshots.")


@ledger_group.command('lock-period')
@click.argument('period')
@click.option('--actor', default=None, help='Recorded as locked_by')
@click.option('--notes', default=None)
@with_appcontext
def lock_period_cli(period, actor, notes):
    """Seal PERIOD (YYYY-MM)."""
    try:
        lock = integrity_service.lock_period(period, actor_id=actor, notes=notes)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"LOCKED {lock.period}: {lock.record_count} records, hash {lock.data_hash}")


@ledger_group.command('verify-period')
@click.argument('period')
@with_appcontext
def verify_period_cli(period):
    """Verify the seal of PERIOD (YYYY-MM). Exits with 1 on mismatch."""
    lock = db.session.query(PeriodLock).filter_by(period=period).first()
    if lock is None:
        raise click.ClickException(f"Period {period} is not locked")

    result = integrity_service.verify_period(lock.id)
    if result["isValid"]:
        click.echo(f"PASS {period} matches its seal ({result['storedHash']})")
        return
    click.echo(f"FAIL {period}: stored {result['storedHash']}, current {result['currentHash']}")
    if result.get("details"):
        click.echo(result["details"])
    raise SystemExit(1)


@ledger_group.command('recalc-drafts')
@click.option('--vehicle-id', type=int, required=True)
@click.option('--from-date', required=True)
@with_appcontext
def recalc_drafts_cli(vehicle_id, from_date):
    try:
        result = chain_service.recalculate_drafts_from(vehicle_id, parse_iso_date(from_date))
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(f"Recalculated drafts, {result['count']} changed.")
    for entry in result["logs"]:
        click.echo(f"  {entry['number']} ({entry['date']})")
        for change in entry["changes"]:
            click.echo(f"    {change['field']}: {change['old']} -> {change['new']}")
        for warning in entry["warnings"]:
            click.echo(f"    WARN {warning}")


@ledger_group.command('recalc-balances')
@with_appcontext
def recalc_balances_cli():
    items = posting_service.recalculate_stock_balances()
    drivers = balance_service.recalculate_driver_balances()
    click.echo(f"Recalculated {len(items)} stock item balances and {len(drivers)} fuel-card balances.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
