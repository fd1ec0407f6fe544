"""
Multi-Tenant Service: organization validation and scoping helpers.

SECURITY INVARIANTS:
1. Every store operation receives an explicit org_id; there is no implicit tenant
2. Entity ids from caller input are resolved within that org only
3. A record in another org is reported exactly like a missing one

USAGE:
    from hera.services.tenant_service import require_org, require_entity_in_org

    org = require_org(org_id)
    entity = require_entity_in_org(entity_id, org_id)
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Organization, CoreEntity
from ..validation import NotFoundError, ValidationError, require_org_id


def create_organization(*, name: str, code: str | None = None) -> Organization:
    if not name or not name.strip():
        raise ValidationError("name is required")
    org = Organization(name=name.strip(), code=code.strip().upper() if code else None, is_active=True)
    db.session.add(org)
    db.session.commit()
    current_app.logger.info("Created organization id=%s code=%s", org.id, org.code)
    return org


def require_org(org_id: int) -> Organization:
    """
    Resolve an active organization.

    Raises:
        ValidationError: org_id omitted
        NotFoundError: organization missing or inactive
    """
    require_org_id(org_id)
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if org is None or not org.is_active:
        raise NotFoundError(f"Organization {org_id} not found")
    return org


def require_entity_in_org(entity_id: int, org_id: int, *, include_inactive: bool = False) -> CoreEntity:
    """
    Validate that an entity belongs to the specified organization.

    Call this before any operation that uses an entity id from caller input.
    A cross-tenant id is logged and reported as not found, so its existence
    in another org is not revealed.
    """
    require_org_id(org_id)
    entity = db.session.query(CoreEntity).filter_by(id=entity_id).first()

    if entity is None:
        raise NotFoundError(f"Entity {entity_id} not found")

    if entity.org_id != org_id:
        current_app.logger.warning(
            "Cross-tenant entity access denied: entity %s belongs to org %s, not %s",
            entity_id, entity.org_id, org_id,
        )
        raise NotFoundError(f"Entity {entity_id} not found")

    if not entity.is_active and not include_inactive:
        raise NotFoundError(f"Entity {entity_id} not found")

    return entity


def require_entities_in_org(entity_ids: list[int], org_id: int) -> list[CoreEntity]:
    """
    Batch variant of require_entity_in_org (active entities only).

    Raises NotFoundError naming the ids that are missing, inactive or foreign.
    """
    require_org_id(org_id)
    if not entity_ids:
        return []

    wanted = set(entity_ids)
    entities = (
        db.session.query(CoreEntity)
        .filter(
            CoreEntity.id.in_(wanted),
            CoreEntity.org_id == org_id,
            CoreEntity.is_active.is_(True),
        )
        .all()
    )
    missing = wanted - {e.id for e in entities}
    if missing:
        raise NotFoundError(f"Entities not found: {', '.join(str(i) for i in sorted(missing))}")
    return entities


def list_organizations(*, include_inactive: bool = False) -> list[Organization]:
    q = db.session.query(Organization)
    if not include_inactive:
        q = q.filter(Organization.is_active.is_(True))
    return q.order_by(Organization.id.asc()).all()
