# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/sahacrm/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Cash registers:
# - python -m flask registers create --name "Merkez Kasa" --opening-balance 0
#   Create a new cash register.
# - python -m flask registers list [--all]
#   List cash registers with balances (use --all to include inactive).
#
# Customer accounts:
# - python -m flask accounts summary 12 [--as-of 2026-10-31]
#   Total debit, total credit and balance for a customer.
# - python -m flask accounts statement 12 --start-date 2026-10-01 --end-date 2026-10-31 [--opening-balance]
#   Account statement with running balance.

import click
from flask.cli import with_appcontext

from .extensions import db
from .money import format_cents
from .validation import ConflictError, ValidationError, parse_amount_cents, parse_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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


@click.group('registers')
def registers_group():
    """Cash register inspection and bootstrap commands."""


@registers_group.command('create')
@click.option('--name', required=True, help='Cash register name')
@click.option('--opening-balance', default='0', help='Cash already in the register (e.g. "250.00")')
@with_appcontext
def create_register_cli(name, opening_balance):
    """
    Create a new cash register.

    Example:
        flask registers create --name "Merkez Kasa" --opening-balance 250.00
    """
    from .services import register_service

    try:
        register = register_service.create_cash_register(
            name,
            opening_balance_cents=parse_amount_cents(opening_balance, "opening_balance", allow_zero=True),
        )
        click.echo(f"PASS Created cash register: {register.name}")
        click.echo(f"   Register ID: {register.id}")
        click.echo(f"   Balance: {format_cents(register.balance_cents)}")

    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))


@registers_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive registers too')
@with_appcontext
def list_registers_cli(show_all):
    """
    List cash registers.

    Example:
        flask registers list
        flask registers list --all
    """
    from .services import register_service

    registers = register_service.list_cash_registers(include_inactive=show_all)

    if not registers:
        click.echo("No cash registers found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Balance':>16} {'Active':>8}")
    click.echo("="*70)

    for register in registers:
        active_str = "Yes" if register.is_active else "No"
        click.echo(f"{register.id:<5} {register.name:<30} {format_cents(register.balance_cents):>16} {active_str:>8}")

    click.echo("="*70 + "\n")


@click.group('accounts')
def accounts_group():
    """Customer account (cari) inspection commands."""


@accounts_group.command('summary')
@click.argument('customer_id', type=int)
@click.option('--as-of', help='Inclusive cutoff date (YYYY-MM-DD)')
@with_appcontext
def account_summary_cli(customer_id, as_of):
    """Show total debit, total credit and balance for a customer."""
    from .services import ledger_service

    try:
        summary = ledger_service.get_account_summary(customer_id, as_of=parse_date(as_of, "as_of"))
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))

    click.echo(f"Customer {customer_id}" + (f" as of {summary['as_of']}" if summary["as_of"] else ""))
    click.echo(f"   Total debit:  {format_cents(summary['total_debit_cents']):>16}")
    click.echo(f"   Total credit: {format_cents(summary['total_credit_cents']):>16}")
    click.echo(f"   Balance:      {format_cents(summary['balance_cents']):>16}")


@accounts_group.command('statement')
@click.argument('customer_id', type=int)
@click.option('--start-date', help='First day of the window (YYYY-MM-DD)')
@click.option('--end-date', help='Last day of the window (YYYY-MM-DD)')
@click.option('--opening-balance', is_flag=True, help='Start from the balance before --start-date')
@with_appcontext
def account_statement_cli(customer_id, start_date, end_date, opening_balance):
    """Print an account statement with running balance."""
    from .services import ledger_service

    try:
        statement = ledger_service.build_statement(
            customer_id,
            start_date=parse_date(start_date, "start_date"),
            end_date=parse_date(end_date, "end_date"),
            include_opening_balance=opening_balance,
        )
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))

    click.echo("\n" + "="*100)
    click.echo(f"{'Date':<12} {'Type':<9} {'Reference':<22} {'Debit':>14} {'Credit':>14} {'Balance':>16}")
    click.echo("="*100)
    click.echo(f"{'':<12} {'':<9} {'Opening balance':<22} {'':>14} {'':>14} {format_cents(statement.opening_balance_cents):>16}")

    for line in statement.lines:
        m = line.movement
        click.echo(
            f"{m.movement_date.isoformat():<12} {m.movement_type:<9} {(m.reference_number or '-'):<22} "
            f"{format_cents(m.debit_amount_cents):>14} {format_cents(m.credit_amount_cents):>14} "
            f"{format_cents(line.balance_cents):>16}"
        )

    click.echo("="*100)
    click.echo(
        f"{'':<12} {'':<9} {'Totals':<22} {format_cents(statement.total_debit_cents):>14} "
        f"{format_cents(statement.total_credit_cents):>14} {format_cents(statement.closing_balance_cents):>16}\n"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(accounts_group)
