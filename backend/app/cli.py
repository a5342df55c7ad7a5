# Overview: Flask CLI command groups for bootstrap, users, and stock inspection.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create tables (if missing) and the default super admin (if none exists).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --name "Sam" --email sam@restaurant.com --password "secret123" --role staff
#
# Stock:
# - python -m flask stock low
#   Print raw materials below their low-stock threshold.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --older-than-days 30

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import ROLES, ROLE_STAFF
from .services import auth_service, session_service, stock_service
from .validation import ValidationError, ConflictError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create the schema and the default super admin.

    Idempotent: existing tables and an existing super admin are left alone.
    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing RestaurantOS...")
    db.create_all()
    click.echo("PASS Schema ready")

    cfg = current_app.config
    try:
        admin = auth_service.ensure_default_admin(
            db.session,
            name=cfg["DEFAULT_ADMIN_NAME"],
            email=cfg["DEFAULT_ADMIN_EMAIL"],
            password=cfg["DEFAULT_ADMIN_PASSWORD"],
        )
    except ValidationError as e:
        raise click.ClickException(f"Default admin password rejected: {e}")

    if admin is None:
        click.echo("PASS Super admin already exists, skipping...")
    else:
        click.echo(f"PASS Created super admin: {admin.email}")
        click.echo("\nSECURITY WARNING: change the default password immediately!")


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
    click.echo("BUILD Creating tables...")
    db.create_all()
    click.echo("PASS Database reset complete. Run 'flask system init' to create the super admin.")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = auth_service.list_users(db.session)
    if not users:
        click.echo("No users.")
        return
    for u in users:
        click.echo(f"{u['id']:>4}  {u['role']:<12} {u['email']:<32} {u['name']}")


@users_group.command('create')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES), default=ROLE_STAFF, show_default=True)
@with_appcontext
def create_user(name, email, password, role):
    try:
        user = auth_service.create_user(db.session, name=name, email=email, password=password, role=role)
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.email} (ID: {user.id}) with role '{user.role}'")


@click.group('stock')
def stock_group():
    """Raw material stock inspection."""


@stock_group.command('low')
@with_appcontext
def low_stock():
    """List raw materials below their low-stock threshold, lowest first."""
    report = stock_service.low_stock(db.session)
    if not report["count"]:
        click.echo("PASS No raw materials below threshold.")
        return
    click.echo(f"WARN {report['count']} raw material(s) below threshold:")
    for item in report["items"]:
        click.echo(
            f"  {item['name']:<24} {item['quantity_available']:>10g} {item['unit']:<6}"
            f" (threshold {item['low_stock_threshold']:g})"
        )


@click.group('maintenance')
def maintenance_group():
    """Housekeeping commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--older-than-days', default=30, show_default=True, type=int)
@with_appcontext
def cleanup_sessions(older_than_days):
    deleted = session_service.cleanup_expired_sessions(db.session, older_than_days=older_than_days)
    click.echo(f"PASS Deleted {deleted} expired or revoked session(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(maintenance_group)
