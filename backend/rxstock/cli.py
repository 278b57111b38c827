# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/rxstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--tenant "Pharmacy Name"] [--branch "Main Branch"]
#   Idempotent bootstrap: creates default tenant, branch and user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock audits:
# - python -m flask audits list --tenant-id 1 --branch-id 1 [--status draft] [--limit 20]
#   List recent audits for a branch.
# - python -m flask audits drain-outbox [--limit 100]
#   Create stock corrections still owed by completed audits.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Tenant, User
from .services.reconciliation_service import build_engine


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--tenant', 'tenant_name', default='Default Pharmacy', help='Tenant name')
@click.option('--tenant-code', default='DEFAULT', help='Tenant code')
@click.option('--branch', 'branch_name', default='Main Branch', help='Branch name')
@click.option('--username', default='admin', help='Default user name')
@with_appcontext
def init_system(tenant_name, tenant_code, branch_name, username):
    """Create the default tenant, branch and user if they do not exist."""
    click.echo("START Initializing rxstock...")

    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant:
        tenant = Tenant(name=tenant_name, code=tenant_code, is_active=True)
        db.session.add(tenant)
        db.session.commit()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    branch = db.session.query(Branch).filter_by(tenant_id=tenant.id, name=branch_name).first()
    if not branch:
        branch = Branch(tenant_id=tenant.id, name=branch_name)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    user = db.session.query(User).filter_by(tenant_id=tenant.id, username=username).first()
    if not user:
        user = User(tenant_id=tenant.id, branch_id=branch.id, username=username, is_active=True)
        db.session.add(user)
        db.session.commit()
        click.echo(f"PASS Created user: {user.username} (ID: {user.id})")
    else:
        click.echo(f"PASS Using existing user: {user.username} (ID: {user.id})")

    click.echo("\nDONE Use these ids as X-Tenant-Id / X-Branch-Id / X-User-Id headers.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('audits')
def audits_group():
    """Stock audit inspection and maintenance commands."""


@audits_group.command('list')
@click.option('--tenant-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@click.option('--status', 'statuses', multiple=True, help='Filter by status (repeatable)')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_audits_cli(tenant_id, branch_id, statuses, limit):
    """List recent stock audits for a branch."""
    audits = build_engine().list_audits(
        tenant_id, branch_id, statuses=list(statuses) or None, limit=limit
    )
    if not audits:
        click.echo("No stock audits found.")
        return

    click.echo(f"{'ID':<6} {'Date':<12} {'Status':<12} {'Audited':>8} {'Variance':>9} {'Impact':>12}")
    click.echo("-" * 64)
    for audit in audits:
        click.echo(
            f"{audit.id:<6} {audit.audit_date.isoformat():<12} {audit.status:<12} "
            f"{audit.total_items_audited:>8} {audit.total_variance:>9} "
            f"{audit.estimated_value_impact_cents / 100:>12.2f}"
        )


@audits_group.command('drain-outbox')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def drain_outbox_cli(limit):
    """Create stock corrections still owed by completed audits."""
    result = build_engine().drain_correction_outbox(limit=limit)
    click.echo(
        f"Delivered {result['delivered']} corrections, {result['failed']} failed, "
        f"{result['abandoned']} abandoned."
    )
    if result["failed"]:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(audits_group)
