# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stallpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use "flask db upgrade" in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username owner --email owner@stall.local --password "Password123!" --role Admin
# - python -m flask users create --username mgr --email mgr@stall.local --password "Password123!" --role StallManager --admin-id 1
# - python -m flask users link --admin-id 1 --user-id 3
#   Make user 3 follow admin 1's tax rate.
# - python -m flask users deactivate --user-id 3
#   Disable the login and revoke its sessions.
#
# Stalls:
# - python -m flask stalls create --admin-id 1 --number A01 --name "Noodle Bar" --manager-id 2
# - python -m flask stalls list [--admin-id 1]
#
# Products:
# - python -m flask products seed
#   Insert a small demo catalog (skipped if products exist).
#
# Orders:
# - python -m flask orders sweep-stale [--admin-id 1]
#   Check stale Pending card/checkout orders against the provider and finalize them.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, User
from .models.auth import VALID_ROLES
from .services.auth_service import create_user, deactivate_user, PasswordValidationError, UserCreationError
from .services import configuration_service, payment_service, stall_service
from .validation import ConflictError, NotFoundError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


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


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@click.option('--admin-id', type=int, help='Owning Admin (required for StallManager and Cashier)')
@with_appcontext
def create_user_cli(username, email, password, role, admin_id):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            admin_id=admin_id,
        )
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}' (ID: {user.id})")
        if user.admin_id:
            click.echo(f"     Admin: {user.admin_id}")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except UserCreationError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('link')
@click.option('--admin-id', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@with_appcontext
def link_user_cli(admin_id, user_id):
    """Make a user follow an Admin's tax rate."""
    try:
        config = configuration_service.link_user(admin_id, user_id)
    except NotFoundError as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS User {user_id} linked to admin {admin_id} ({len(config.linked_users)} linked)")


@users_group.command('deactivate')
@click.option('--user-id', type=int, required=True)
@with_appcontext
def deactivate_user_cli(user_id):
    """Disable a login and revoke its open sessions."""
    try:
        user, revoked = deactivate_user(user_id)
    except NotFoundError as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS Deactivated {user.username}; {revoked} session(s) revoked")


@click.group('stalls')
def stalls_group():
    """Stall management commands."""


@stalls_group.command('create')
@click.option('--admin-id', type=int, required=True)
@click.option('--number', 'stall_number', required=True, help='Stall number, e.g. A01')
@click.option('--name', required=True)
@click.option('--location', default=None)
@click.option('--manager-id', type=int, default=None)
@with_appcontext
def create_stall_cli(admin_id, stall_number, name, location, manager_id):
    admin = db.session.get(User, admin_id)
    if not admin or not admin.is_admin:
        click.echo(f"FAIL Admin ID {admin_id} not found")
        return
    try:
        stall = stall_service.create_stall(admin_id, stall_number, name, location, manager_id)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS Created stall {stall.stall_number} '{stall.name}' (ID: {stall.id})")


@stalls_group.command('list')
@click.option('--admin-id', type=int, help='Filter by admin ID')
@with_appcontext
def list_stalls_cli(admin_id):
    stalls = stall_service.list_stalls(admin_id)

    if not stalls:
        click.echo("No stalls found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Number':<10} {'Name':<30} {'Manager':<10} {'Terminal':<20} {'Active'}")
    click.echo("="*90)

    for stall in stalls:
        terminal = stall.terminal.provider_terminal_id if stall.terminal else "none"
        manager = str(stall.manager_id) if stall.manager_id else "-"
        active_str = "Yes" if stall.is_active else "No"
        click.echo(f"{stall.id:<5} {stall.stall_number:<10} {stall.name:<30} {manager:<10} {terminal:<20} {active_str}")

    click.echo("="*90 + "\n")


@click.group('products')
def products_group():
    """Catalog commands."""


DEMO_PRODUCTS = [
    {"name": "Chicken Rice", "category": "Mains", "price_cents": 450, "quantity": 50},
    {"name": "Laksa", "category": "Mains", "price_cents": 600, "quantity": 30},
    {"name": "Kopi", "category": "Drinks", "price_cents": 150, "unlimited": True},
    {"name": "Kaya Toast", "category": "Snacks", "price_cents": 250, "quantity": 40},
]


@products_group.command('seed')
@with_appcontext
def seed_products_cli():
    """Insert a small demo catalog if the catalog is empty."""
    if db.session.query(Product).count():
        click.echo("SKIP Products already exist.")
        return

    for spec in DEMO_PRODUCTS:
        db.session.add(Product(
            name=spec["name"],
            category=spec["category"],
            price_cents=spec["price_cents"],
            unlimited=spec.get("unlimited", False),
            quantity=spec.get("quantity", 0),
            sold=0,
            is_available=True,
        ))
    db.session.commit()
    click.echo(f"PASS Seeded {len(DEMO_PRODUCTS)} products.")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('sweep-stale')
@click.option('--admin-id', type=int, help='Only sweep this admin\'s orders')
@with_appcontext
def sweep_stale_cli(admin_id):
    """
    Resolve card and checkout orders stuck in Pending.

    Each stale order is checked against the provider first, so a paid order
    is completed rather than failed.
    """
    gateway = current_app.extensions["payment_gateway"]
    counts = payment_service.sweep_stale_orders(gateway, admin_id=admin_id)
    click.echo(
        f"Checked {counts['checked']} stale orders: "
        f"{counts['completed']} completed, {counts['failed']} failed, "
        f"{counts['unchanged']} unchanged, {counts['errors']} errors."
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stalls_group)
    app.cli.add_command(products_group)
    app.cli.add_command(orders_group)
