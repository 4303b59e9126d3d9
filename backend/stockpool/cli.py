# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/stockpool/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app stockpool <group> <command> [options]
#
# System:
# - python -m flask --app stockpool system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Company (tenant) management:
# - python -m flask --app stockpool companies list
# - python -m flask --app stockpool companies create --name "Tienda Centro" --code "CENTRO" [--invoice-prefix FV]
#
# Branch management:
# - python -m flask --app stockpool branches list --company-id 1
# - python -m flask --app stockpool branches add --company-id 1 --name "Sede Norte" [--address "Cra 1 # 2-3"]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Company
from .services.branch_service import create_branch


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

    click.echo("PASS Database reset complete. Run 'companies create' to add a tenant.")


@click.group('companies')
def companies_group():
    """Company (tenant) management commands."""


@companies_group.command('list')
@with_appcontext
def list_companies():
    """List all companies."""
    companies = db.session.query(Company).order_by(Company.id.asc()).all()

    if not companies:
        click.echo("No companies found.")
        return

    click.echo("\n" + "="*72)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Branches'}")
    click.echo("="*72)

    for company in companies:
        branch_count = db.session.query(Branch).filter_by(company_id=company.id).count()
        active_str = "Yes" if company.is_active else "No"

        click.echo(f"{company.id:<5} {company.name:<30} {company.code or '-':<15} {active_str:<8} {branch_count}")

    click.echo("="*72 + "\n")


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--invoice-prefix', default=None, help='Invoice prefix (defaults to INVOICE_PREFIX)')
@with_appcontext
def create_company_cli(name, code, invoice_prefix):
    """Create a new company (tenant)."""
    existing = db.session.query(Company).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Company with code '{code}' already exists")
        return

    company = Company(name=name, code=code, invoice_prefix=invoice_prefix, is_active=True)
    db.session.add(company)
    db.session.commit()

    click.echo(f"PASS Created company: {company.name} (ID: {company.id}, Code: {company.code})")


@click.group('branches')
def branches_group():
    """Branch management commands."""


@branches_group.command('list')
@click.option('--company-id', type=int, required=True, help='Company ID')
@with_appcontext
def list_branches_cli(company_id):
    """List branches of a company, including inactive ones."""
    branches = (
        db.session.query(Branch)
        .filter_by(company_id=company_id)
        .order_by(Branch.name.asc())
        .all()
    )
    if not branches:
        click.echo("No branches found.")
        return

    for branch in branches:
        active_str = "Yes" if branch.is_active else "No"
        click.echo(f"{branch.id:<5} {branch.name:<30} {active_str:<8} {branch.address or '-'}")


@branches_group.command('add')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--name', required=True, help='Branch name')
@click.option('--address', default=None, help='Street address')
@with_appcontext
def add_branch_cli(company_id, name, address):
    """Add a branch to a company."""
    company = db.session.query(Company).filter_by(id=company_id).first()
    if not company:
        click.echo(f"FAIL Company ID {company_id} not found")
        return

    # Check name uniqueness within company
    existing = db.session.query(Branch).filter_by(company_id=company_id, name=name).first()
    if existing:
        click.echo(f"FAIL Branch '{name}' already exists in this company")
        return

    branch = create_branch(company_id, name, address)
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}) in company '{company.name}'")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(companies_group)
    app.cli.add_command(branches_group)
