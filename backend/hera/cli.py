# Overview: Flask CLI command groups for bootstrap and inspection of the universal stores.

# backend/hera/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organizations:
# - python -m flask orgs create --name "Hera Cafe" --code "HER"
# - python -m flask orgs list
#
# Entities:
# - python -m flask entities create --org-id 1 --type product --name "Tea" [--code SKU-1] [--field price=4.50:number]
# - python -m flask entities list --org-id 1 --type product [--all] [--filter color=red]
# - python -m flask entities deactivate --org-id 1 --entity-id 5 [--cascade]
#
# Attributes:
# - python -m flask attrs set --entity-id 5 --name price --value 4.50 --type number
# - python -m flask attrs get --entity-id 5
#
# Transactions:
# - python -m flask transactions show --org-id 1 --transaction-id 3

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import FIELD_TYPES
from .services import attribute_service, entity_service, tenant_service, transaction_service
from .validation import ConflictError, NotFoundError, ValidationError


def _parse_field(raw: str):
    """name=value[:type] -> (name, (value, type))."""
    if "=" not in raw:
        raise click.BadParameter(f"expected name=value[:type], got '{raw}'")
    name, rest = raw.split("=", 1)
    field_type = "text"
    if ":" in rest:
        value, maybe_type = rest.rsplit(":", 1)
        if maybe_type in FIELD_TYPES:
            rest, field_type = value, maybe_type
    return name.strip(), (rest, field_type)


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


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', default=None, help='Short code used in transaction numbers')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    try:
        org = tenant_service.create_organization(name=name, code=code)
    except ValidationError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code or '-'})")


@orgs_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive organizations')
@with_appcontext
def list_orgs(show_all):
    """List organizations."""
    orgs = tenant_service.list_organizations(include_inactive=show_all)
    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active'}")
    click.echo("="*60)
    for org in orgs:
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {'Yes' if org.is_active else 'No'}")
    click.echo("="*60 + "\n")


@click.group('entities')
def entities_group():
    """Universal entity commands."""


@entities_group.command('create')
@click.option('--org-id', type=int, required=True)
@click.option('--type', 'entity_type', required=True, help='Entity type (product, customer, ...)')
@click.option('--name', required=True)
@click.option('--code', default=None, help='Entity code (generated when omitted)')
@click.option('--field', 'fields', multiple=True, help='name=value[:type], repeatable')
@click.option('--skip-duplicate-check', is_flag=True)
@with_appcontext
def create_entity_cli(org_id, entity_type, name, code, fields, skip_duplicate_check):
    """Create an entity with optional attributes."""
    parsed = dict(_parse_field(f) for f in fields)
    try:
        entity = entity_service.create_entity(
            org_id,
            entity_type,
            name,
            code or entity_service.generate_entity_code(name, entity_type),
            fields=parsed or None,
            check_duplicates=not skip_duplicate_check,
        )
    except (ValidationError, NotFoundError, ConflictError) as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Created {entity.entity_type} {entity.entity_code} (ID: {entity.id})")


@entities_group.command('list')
@click.option('--org-id', type=int, required=True)
@click.option('--type', 'entity_type', required=True)
@click.option('--filter', 'filters', multiple=True, help='name=value, repeatable')
@click.option('--sort', default=None)
@click.option('--desc', is_flag=True)
@click.option('--all', 'show_all', is_flag=True, help='Include inactive entities')
@with_appcontext
def list_entities_cli(org_id, entity_type, filters, sort, desc, show_all):
    """List entities of one type with their attributes."""
    parsed = {name: value for name, (value, _) in (_parse_field(f) for f in filters)}
    try:
        entities = entity_service.list_entities(
            org_id, entity_type, filters=parsed, sort=sort, descending=desc, include_inactive=show_all
        )
    except ValidationError as exc:
        raise click.ClickException(str(exc))

    if not entities:
        click.echo("No entities found.")
        return

    attrs = attribute_service.get_attributes_bulk(e.id for e in entities)
    for e in entities:
        status = "" if e.is_active else " (inactive)"
        click.echo(f"{e.id:<6} {e.entity_code:<24} {e.entity_name}{status}")
        for field_name, attr in attrs[e.id].items():
            click.echo(f"         {field_name} = {attr.value} [{attr.field_type}]")


@entities_group.command('deactivate')
@click.option('--org-id', type=int, required=True)
@click.option('--entity-id', type=int, required=True)
@click.option('--cascade', is_flag=True, help='Also retire metadata and relationships')
@with_appcontext
def deactivate_entity_cli(org_id, entity_id, cascade):
    """Soft delete an entity."""
    try:
        entity = entity_service.deactivate_entity(org_id, entity_id, cascade=cascade)
    except NotFoundError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Deactivated {entity.entity_type} {entity.entity_code}")


@click.group('attrs')
def attrs_group():
    """Dynamic attribute commands."""


@attrs_group.command('set')
@click.option('--entity-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--value', required=True)
@click.option('--type', 'field_type', type=click.Choice(FIELD_TYPES), default='text', show_default=True)
@with_appcontext
def set_attr_cli(entity_id, name, value, field_type):
    """Insert or overwrite one attribute."""
    try:
        attr = attribute_service.set_attribute(entity_id, name, value, field_type)
    except (ValidationError, NotFoundError) as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS {attr.field_name} = {attr.field_value} [{attr.field_type}]")


@attrs_group.command('get')
@click.option('--entity-id', type=int, required=True)
@with_appcontext
def get_attrs_cli(entity_id):
    """Show the attributes of an entity."""
    attrs = attribute_service.get_attributes(entity_id)
    if not attrs:
        click.echo("No attributes.")
        return
    for field_name, attr in attrs.items():
        click.echo(f"{field_name} = {attr.value} [{attr.field_type}]")


@click.group('transactions')
def transactions_group():
    """Universal transaction commands."""


@transactions_group.command('show')
@click.option('--org-id', type=int, required=True)
@click.option('--transaction-id', type=int, required=True)
@with_appcontext
def show_transaction_cli(org_id, transaction_id):
    """Show a transaction, its lines and its status history."""
    try:
        tx, lines = transaction_service.get_transaction_with_lines(org_id, transaction_id)
        history = transaction_service.get_status_history(org_id, transaction_id)
    except NotFoundError as exc:
        raise click.ClickException(str(exc))

    click.echo(f"{tx.transaction_number} [{tx.transaction_type}] {tx.transaction_date.isoformat()} {tx.transaction_status}")
    for line in lines:
        click.echo(f"  {line.line_order:>3}. {line.line_description or '-':<30} {line.quantity} x {line.unit_price} = {line.line_amount}")
    click.echo(f"  Total: {tx.total_amount} {tx.currency}")
    for event in history:
        click.echo(f"  {event.occurred_at:%Y-%m-%d %H:%M} {event.from_status} -> {event.to_status} {event.note or ''}".rstrip())


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(entities_group)
    app.cli.add_command(attrs_group)
    app.cli.add_command(transactions_group)
