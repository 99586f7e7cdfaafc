# Overview: Flask CLI command groups for bootstrap, inspection, and reconciliation.

# backend/chaintrace/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app wsgi.py <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent). Use "flask db upgrade" for migrated databases.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --name "Acme" --email a@acme.test --wallet 0x... --role manufacturer
# - python -m flask users list [--role retailer]
#
# Registry contract:
# - python -m flask chain status
#   Contract address, signer and next product id.
# - python -m flask chain authorize 0xWALLET
#   Authorize a wallet as manufacturer (backend signer must own the contract).
#
# Reconciliation:
# - python -m flask reconcile list [--all]
#   Chain-confirmed operations whose off-chain mirror write failed.
# - python -m flask reconcile resolve 12 --note "replayed by hand"

import click
from flask.cli import with_appcontext

from .errors import ChainTraceError
from .extensions import db
from .models import User, USER_ROLES
from .services import reconciliation_service
from .services.auth_service import register_user
from .services.chain_registry import get_chain_registry


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


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
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--wallet', prompt=True, help='Wallet address (0x...)')
@click.option('--role', type=click.Choice(list(USER_ROLES)), prompt=True, help='Role')
@click.option('--company', default=None, help='Company name')
@with_appcontext
def create_user_cli(name, email, password, wallet, role, company):
    """Create a user. Password: 8+ chars with at least one letter and one digit."""
    try:
        user = register_user(
            name=name,
            email=email,
            password=password,
            wallet_address=wallet,
            role=role,
            company_name=company,
        )
    except ChainTraceError as e:
        db.session.rollback()
        raise click.ClickException(f"Failed to create user: {e}")

    click.echo(f"PASS Created user {user.id}: {user.email} ({user.role}) wallet {user.wallet_address}")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(USER_ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 110)
    click.echo(f"{'ID':<5} {'Role':<13} {'Email':<30} {'Wallet':<44} {'Active':<8} {'Batches'}")
    click.echo("=" * 110)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(
            f"{user.id:<5} {user.role:<13} {user.email:<30} {user.wallet_address:<44} "
            f"{active_str:<8} {user.batch_counter}"
        )
    click.echo("=" * 110 + "\n")


@click.group('chain')
def chain_group():
    """Registry contract commands."""


@chain_group.command('status')
@with_appcontext
def chain_status():
    """Show registry connection status."""
    try:
        status = get_chain_registry().status()
    except ChainTraceError as e:
        raise click.ClickException(str(e))

    for key, value in status.items():
        click.echo(f"{key:<16} {value}")
    if not status.get("connected"):
        raise click.ClickException("Registry not reachable")


@chain_group.command('authorize')
@click.argument('address')
@with_appcontext
def chain_authorize(address):
    """Authorize ADDRESS as a manufacturer on the registry."""
    try:
        receipt = get_chain_registry().set_manufacturer(address, True)
    except ChainTraceError as e:
        raise click.ClickException(f"Authorization failed: {e}")
    click.echo(f"PASS Authorized {address} (tx {receipt.tx_hash})")


@click.group('reconcile')
def reconcile_group():
    """Reconciliation defect commands."""


@reconcile_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include resolved defects')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def reconcile_list(show_all, limit):
    """List reconciliation defects (unresolved by default)."""
    defects = reconciliation_service.list_defects(resolved=None if show_all else False, limit=limit)
    if not defects:
        click.echo("No reconciliation defects.")
        return

    for defect in defects:
        state = "resolved" if defect.resolved else "OPEN"
        click.echo(
            f"#{defect.id:<5} {state:<9} {defect.operation:<18} {defect.chain_ref or '-':<40} "
            f"user={defect.actor_user_id} {defect.created_at}"
        )
        click.echo(f"       {defect.detail}")


@reconcile_group.command('resolve')
@click.argument('defect_id', type=int)
@click.option('--note', default=None, help='How the divergence was repaired')
@with_appcontext
def reconcile_resolve(defect_id, note):
    """Mark a reconciliation defect as resolved."""
    try:
        defect = reconciliation_service.resolve_defect(defect_id, note)
    except ChainTraceError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Defect {defect.id} resolved")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(chain_group)
    app.cli.add_command(reconcile_group)
