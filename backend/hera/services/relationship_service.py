# Overview: Relationship store; typed directed edges between entities of one organization.

from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import CoreEntity, CoreRelationship
from ..validation import NotFoundError, ValidationError, require_org_id, require_text
from .concurrency import lock_for_update, write_boundary
from .tenant_service import require_entity_in_org


def create_relationship(
    org_id: int,
    relationship_type: str,
    parent_id: int,
    child_id: int,
    payload: dict | None = None,
    *,
    commit: bool = True,
) -> CoreRelationship:
    """
    Insert an edge parent -> child.

    The store enforces no uniqueness; callers with a per-type rule use
    find_active_relationship / ensure_relationship.

    Raises:
        ValidationError: blank type, self-edge, or non-dict payload
        NotFoundError: either endpoint missing, inactive or in another org
    """
    require_org_id(org_id)
    relationship_type = require_text(relationship_type, "relationship_type")
    if parent_id == child_id:
        raise ValidationError("A relationship needs two different entities")
    if payload is not None and not isinstance(payload, dict):
        raise ValidationError("payload must be a JSON object")

    with write_boundary(commit=commit):
        require_entity_in_org(parent_id, org_id)
        require_entity_in_org(child_id, org_id)

        rel = CoreRelationship(
            org_id=org_id,
            relationship_type=relationship_type,
            parent_entity_id=parent_id,
            child_entity_id=child_id,
            relationship_data=payload,
            is_active=True,
        )
        db.session.add(rel)
        db.session.flush()
    return rel


def find_active_relationship(
    org_id: int,
    relationship_type: str,
    parent_id: int,
    child_id: int | None = None,
    *,
    for_update: bool = False,
) -> CoreRelationship | None:
    """Existing active edge of a type from parent (optionally to a specific child)."""
    require_org_id(org_id)
    q = db.session.query(CoreRelationship).filter(
        CoreRelationship.org_id == org_id,
        CoreRelationship.relationship_type == relationship_type,
        CoreRelationship.parent_entity_id == parent_id,
        CoreRelationship.is_active.is_(True),
    )
    if child_id is not None:
        q = q.filter(CoreRelationship.child_entity_id == child_id)
    if for_update:
        q = lock_for_update(q)
    return q.order_by(CoreRelationship.id.asc()).first()


def ensure_relationship(
    org_id: int,
    relationship_type: str,
    parent_id: int,
    child_id: int,
    payload: dict | None = None,
    *,
    one_per_parent: bool = False,
) -> tuple[CoreRelationship, bool]:
    """
    Get-or-create for relationship types with a business uniqueness rule.

    one_per_parent=True: at most one active edge of this type per parent;
    an existing edge to a different child is returned unchanged.

    Returns:
        (relationship, created)
    """
    existing = find_active_relationship(
        org_id,
        relationship_type,
        parent_id,
        None if one_per_parent else child_id,
        for_update=True,
    )
    if existing is not None:
        return existing, False
    return create_relationship(org_id, relationship_type, parent_id, child_id, payload), True


def get_relationship(org_id: int, relationship_id: int) -> CoreRelationship:
    require_org_id(org_id)
    rel = db.session.query(CoreRelationship).filter_by(id=relationship_id, org_id=org_id).first()
    if rel is None or not rel.is_active:
        raise NotFoundError(f"Relationship {relationship_id} not found")
    return rel


def _related_ids(org_id, anchor_col, far_col, anchor_id, relationship_type, include_inactive_entities):
    require_org_id(org_id)
    q = db.session.query(far_col).filter(
        CoreRelationship.org_id == org_id,
        anchor_col == anchor_id,
        CoreRelationship.is_active.is_(True),
    )
    if relationship_type is not None:
        q = q.filter(CoreRelationship.relationship_type == relationship_type)
    if not include_inactive_entities:
        # Edges left behind by a deactivated endpoint stay hidden.
        far = aliased(CoreEntity)
        q = q.join(far, far.id == far_col).filter(far.is_active.is_(True))
    return [row[0] for row in q.order_by(CoreRelationship.id.asc()).all()]


def get_children(
    org_id: int,
    parent_id: int,
    relationship_type: str | None = None,
    *,
    include_inactive_entities: bool = False,
) -> list[int]:
    """Child entity ids of active edges from parent_id."""
    return _related_ids(
        org_id,
        CoreRelationship.parent_entity_id,
        CoreRelationship.child_entity_id,
        parent_id,
        relationship_type,
        include_inactive_entities,
    )


def get_parents(
    org_id: int,
    child_id: int,
    relationship_type: str | None = None,
    *,
    include_inactive_entities: bool = False,
) -> list[int]:
    """Parent entity ids of active edges into child_id."""
    return _related_ids(
        org_id,
        CoreRelationship.child_entity_id,
        CoreRelationship.parent_entity_id,
        child_id,
        relationship_type,
        include_inactive_entities,
    )


def deactivate_relationship(org_id: int, relationship_id: int, *, commit: bool = True) -> CoreRelationship:
    """Soft delete an edge. Deactivating an inactive edge is a NotFoundError."""
    with write_boundary(commit=commit):
        rel = get_relationship(org_id, relationship_id)
        rel.is_active = False
        db.session.flush()
    current_app.logger.info("Deactivated relationship %s (%s)", rel.id, rel.relationship_type)
    return rel


def update_relationship_payload(
    org_id: int, relationship_id: int, payload: dict[str, Any] | None, *, commit: bool = True
) -> CoreRelationship:
    if payload is not None and not isinstance(payload, dict):
        raise ValidationError("payload must be a JSON object")
    with write_boundary(commit=commit):
        rel = get_relationship(org_id, relationship_id)
        rel.relationship_data = payload
        db.session.flush()
    return rel


def deactivate_entity_relationships(org_id: int, entity_id: int) -> int:
    """Deactivate every active edge touching an entity. Caller owns the transaction."""
    result = db.session.execute(
        update(CoreRelationship)
        .where(
            CoreRelationship.org_id == org_id,
            CoreRelationship.is_active.is_(True),
            (CoreRelationship.parent_entity_id == entity_id) | (CoreRelationship.child_entity_id == entity_id),
        )
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0
