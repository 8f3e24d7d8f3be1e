# Overview: Flask CLI command groups for bootstrap, user management, and maintenance.

# backend/commerce/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system seed-demo
#   Idempotently create an admin, an outlet with two products, and a customer.
#
# Users:
# - python -m flask users create --username alice --email alice@example.com --password "Password1" --role customer
#
# Maintenance:
# - python -m flask maintenance sweep-reservations [--older-than-minutes 15]
#   Release stock held by checkouts that never saved their order.
# - python -m flask maintenance credit-report
#   Outstanding credit per user, recomputed from the ledger.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .errors import CommerceError
from .extensions import db
from .models import User
from .models.users import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_OUTLET, VALID_ROLES
from .services import credit_service, inventory_service
from .services.auth_service import create_user
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db_cmd():
    """Create all tables."""
    db.create_all()
    click.echo("OK Database tables created")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo_cmd():
    """Create demo admin, outlet, products and customer (idempotent)."""
    db.create_all()

    def _ensure(username, role, **kwargs):
        user = db.session.query(User).filter_by(username=username).first()
        if user:
            click.echo(f"SKIP {username} already exists")
            return user
        user = create_user(username=username, password="Password123", role=role, **kwargs)
        click.echo(f"OK Created {role} {username}")
        return user

    _ensure("admin", ROLE_ADMIN, email="admin@commerce.local")
    outlet = _ensure("outlet", ROLE_OUTLET, email="outlet@commerce.local", store_name="Demo Outlet")
    _ensure(
        "customer",
        ROLE_CUSTOMER,
        email="customer@commerce.local",
        name="Demo Customer",
        phone_number="0800000000",
        credit_limit_cents=50000,
    )

    if not outlet.products:
        inventory_service.create_product(
            name="Rice 5kg", price_cents=2500, outlet_id=outlet.id, available_quantity=40, reorder_point=5
        )
        inventory_service.create_product(
            name="Cooking Oil 1L", price_cents=1200, outlet_id=outlet.id, available_quantity=4, reorder_point=5
        )
        click.echo("OK Created demo products")
    click.echo("Demo password for all users: Password123")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', default=None, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@click.option('--store-name', default=None, help='Store name (outlets)')
@click.option('--credit-limit-cents', type=int, default=None, help='Credit limit in cents')
@with_appcontext
def create_user_cli(username, email, password, role, store_name, credit_limit_cents):
    """
    Create a new user.

    Password must be at least 8 characters with a letter and a digit.
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            store_name=store_name,
            credit_limit_cents=credit_limit_cents,
        )
    except CommerceError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"OK Created user {user.username} (id={user.id}, role={user.role})")


@click.group('maintenance')
def maintenance_group():
    """Maintenance and reconciliation commands."""


@maintenance_group.command('sweep-reservations')
@click.option('--older-than-minutes', type=int, default=None, help='Override RESERVATION_HOLD_MINUTES')
@with_appcontext
def sweep_reservations_cmd(older_than_minutes):
    """Release stale stock holds left by checkouts that never saved their order."""
    older_than = None
    if older_than_minutes is not None:
        older_than = utcnow() - timedelta(minutes=older_than_minutes)
    released = inventory_service.sweep_stale_reservations(older_than=older_than)
    click.echo(f"OK Released {released} stale reservation(s)")


@maintenance_group.command('credit-report')
@with_appcontext
def credit_report_cmd():
    """Outstanding credit per user, recomputed from the ledger."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    rows = 0
    for user in users:
        used = credit_service.credit_used(user.id)
        if not used and not user.credit_limit_cents:
            continue
        rows += 1
        click.echo(
            f"{user.id:>5}  {user.username:<24} used={used:>12}  limit={user.credit_limit_cents:>12}"
            f"  available={max(user.credit_limit_cents - used, 0):>12}"
        )
    if not rows:
        click.echo("No outstanding credit")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
