# Overview: Entity store; create, read, list, update and soft-delete generic business objects.

"""
Entity Service

MULTI-TENANT: every call names its organization; an entity of another org is
reported as not found.

WRITE PATH for create_entity (one DB transaction):
    duplicate check -> insert entity -> upsert initial attributes -> put initial metadata

A duplicate result of reject / merge_or_reject blocks the write; manual_review
is logged and the write proceeds. The partial unique index on
(org_id, entity_type, entity_code) among active rows is the final word on code
uniqueness, so a racing writer that slips past the check still gets
DuplicateCodeError.
"""

from __future__ import annotations

import random
import string
from typing import Any

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import CoreDynamicData, CoreEntity
from ..validation import (
    ENTITY_POLICY,
    DuplicateCodeError,
    DuplicateRejectedError,
    NotFoundError,
    ValidationError,
    require_org_id,
    require_text,
    validate_payload,
)
from hera.time_utils import utcnow
from .attribute_service import infer_field_type, serialize_attribute, set_attributes
from .concurrency import lock_for_update, write_boundary
from .duplicate_service import MANUAL_REVIEW, check_duplicates as run_duplicate_checks
from .metadata_service import deactivate_entity_metadata, put_metadata
from .relationship_service import deactivate_entity_relationships
from .tenant_service import require_org

# Columns list_entities may sort or filter on directly
ENTITY_COLUMNS = {"id", "entity_type", "entity_name", "entity_code", "is_active", "created_at", "updated_at"}

METADATA_KEYS = ("metadata_type", "metadata_category", "metadata_key")


def generate_entity_code(entity_name: str, entity_type: str) -> str:
    """
    Readable code for callers without one: NAME8-RAND4-TYP.

    e.g. ("Green Tea Leaves", "product") -> "GREENTEA-7QX2-PRO"
    """
    name = "".join(ch for ch in (entity_name or "").upper() if ch.isalnum())[:8] or "ENTITY"
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    type_code = "".join(ch for ch in (entity_type or "").upper() if ch.isalnum())[:3] or "ENT"
    return f"{name}-{suffix}-{type_code}"


def _active_code_holder(org_id: int, entity_type: str, entity_code: str, exclude_id: int | None = None):
    q = db.session.query(CoreEntity).filter(
        CoreEntity.org_id == org_id,
        CoreEntity.entity_type == entity_type,
        CoreEntity.entity_code == entity_code,
        CoreEntity.is_active.is_(True),
    )
    if exclude_id is not None:
        q = q.filter(CoreEntity.id != exclude_id)
    return q.first()


def _validate_metadata_docs(metadata) -> list[dict]:
    if metadata is None:
        return []
    if not isinstance(metadata, list):
        raise ValidationError("metadata must be a list of documents")
    docs = []
    for doc in metadata:
        if not isinstance(doc, dict):
            raise ValidationError("metadata document must be an object")
        missing = [k for k in METADATA_KEYS if not doc.get(k)]
        if missing:
            raise ValidationError(f"metadata document missing: {', '.join(missing)}")
        docs.append(doc)
    return docs


def create_entity(
    org_id: int,
    entity_type: str,
    entity_name: str,
    entity_code: str,
    *,
    fields: dict | None = None,
    metadata: list[dict] | None = None,
    check_duplicates: bool = True,
) -> CoreEntity:
    """
    Create an entity with optional initial attributes and metadata documents.

    fields: {field_name: value or (value, field_type)}
    metadata: [{"metadata_type", "metadata_category", "metadata_key", "value"}]

    Raises:
        ValidationError: blank type/name/code or malformed fields/metadata
        NotFoundError: organization missing or inactive
        DuplicateCodeError: an active entity of this type already has the code
        DuplicateRejectedError: a business rule rejected the candidate
    """
    require_org_id(org_id)
    entity_type = require_text(entity_type, "entity_type")
    patch = validate_payload(
        model=CoreEntity,
        payload={"entity_name": entity_name, "entity_code": entity_code},
        policy=ENTITY_POLICY,
        partial=False,
    )
    if fields is not None and not isinstance(fields, dict):
        raise ValidationError("fields must be an object")
    docs = _validate_metadata_docs(metadata)

    require_org(org_id)

    if check_duplicates:
        candidate = {**(fields or {}), **patch}
        result = run_duplicate_checks(org_id, entity_type, candidate)
        if result.blocks_write:
            current_app.logger.warning(
                "Rejected %s %r in org %s: %s", entity_type, patch["entity_code"], org_id, result.message
            )
            if result.duplicate_type == "entity_code":
                raise DuplicateCodeError(result.message)
            raise DuplicateRejectedError(result.message, result)
        if result.action == MANUAL_REVIEW:
            current_app.logger.warning(
                "Creating %s %r in org %s despite possible duplicate %s: %s",
                entity_type, patch["entity_code"], org_id, result.duplicate_ids, result.message,
            )

    with write_boundary():
        entity = CoreEntity(org_id=org_id, entity_type=entity_type, is_active=True, **patch)
        db.session.add(entity)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise DuplicateCodeError(
                f'Entity code "{patch["entity_code"]}" is already in use'
            ) from exc

        if fields:
            set_attributes(entity.id, fields, commit=False)
        for doc in docs:
            put_metadata(
                org_id,
                entity_type,
                entity.id,
                doc["metadata_type"],
                doc["metadata_category"],
                doc["metadata_key"],
                doc.get("value"),
                commit=False,
            )

    current_app.logger.info("Created %s %s (%s) in org %s", entity_type, entity.id, entity.entity_code, org_id)
    return entity


def get_entity(org_id: int, entity_id: int, *, include_inactive: bool = False) -> CoreEntity:
    require_org_id(org_id)
    entity = db.session.query(CoreEntity).filter_by(id=entity_id, org_id=org_id).first()
    if entity is None or (not entity.is_active and not include_inactive):
        raise NotFoundError(f"Entity {entity_id} not found")
    return entity


def list_entities(
    org_id: int,
    entity_type: str,
    *,
    filters: dict[str, Any] | None = None,
    sort: str | None = None,
    descending: bool = False,
    include_inactive: bool = False,
) -> list[CoreEntity]:
    """
    Entities of one type in an org.

    filters: keys naming entity columns compare against the column; any
    other key matches a dynamic attribute of that name by its stored text.
    sort: an entity column; defaults to id.
    """
    require_org_id(org_id)
    entity_type = require_text(entity_type, "entity_type")

    sort = sort or "id"
    if sort not in ENTITY_COLUMNS:
        raise ValidationError(f"Cannot sort by '{sort}'")

    q = db.session.query(CoreEntity).filter(
        CoreEntity.org_id == org_id,
        CoreEntity.entity_type == entity_type,
    )
    if not include_inactive:
        q = q.filter(CoreEntity.is_active.is_(True))

    for key, value in (filters or {}).items():
        if key in ENTITY_COLUMNS:
            q = q.filter(getattr(CoreEntity, key) == value)
            continue
        attr = aliased(CoreDynamicData)
        q = q.join(
            attr,
            (attr.entity_id == CoreEntity.id) & (attr.field_name == key),
        ).filter(attr.field_value == serialize_attribute(value, infer_field_type(value)))

    column = getattr(CoreEntity, sort)
    order = column.desc() if descending else column.asc()
    return q.order_by(order, CoreEntity.id.asc()).all()


def update_entity(org_id: int, entity_id: int, patch: dict) -> CoreEntity:
    """
    Partial update of entity_name, entity_code and is_active.

    Code uniqueness is re-checked when the code changes or an inactive
    entity is reactivated.
    """
    require_org_id(org_id)
    clean = validate_payload(model=CoreEntity, payload=patch, policy=ENTITY_POLICY, partial=True)
    if not clean:
        return get_entity(org_id, entity_id, include_inactive=True)

    with write_boundary():
        entity = lock_for_update(
            db.session.query(CoreEntity).filter_by(id=entity_id, org_id=org_id)
        ).first()
        if entity is None:
            raise NotFoundError(f"Entity {entity_id} not found")

        new_code = clean.get("entity_code", entity.entity_code)
        will_be_active = clean.get("is_active", entity.is_active)
        if will_be_active and (new_code != entity.entity_code or not entity.is_active):
            holder = _active_code_holder(org_id, entity.entity_type, new_code, exclude_id=entity.id)
            if holder is not None:
                raise DuplicateCodeError(f'Entity code "{new_code}" is already in use')

        for key, value in clean.items():
            setattr(entity, key, value)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise DuplicateCodeError(f'Entity code "{new_code}" is already in use') from exc

    return entity


def deactivate_entity(org_id: int, entity_id: int, *, cascade: bool = False) -> CoreEntity:
    """
    Soft delete an entity. Attributes, metadata and relationships are kept.

    cascade=True also retires the entity's active metadata documents and
    deactivates every relationship touching it, in the same commit.
    Deactivating an inactive entity changes nothing.
    """
    require_org_id(org_id)
    with write_boundary():
        entity = lock_for_update(
            db.session.query(CoreEntity).filter_by(id=entity_id, org_id=org_id)
        ).first()
        if entity is None:
            raise NotFoundError(f"Entity {entity_id} not found")

        was_active = entity.is_active
        entity.is_active = False
        retired_docs = retired_edges = 0
        if cascade:
            retired_docs = deactivate_entity_metadata(org_id, entity.id, now=utcnow())
            retired_edges = deactivate_entity_relationships(org_id, entity.id)
        db.session.flush()

    if was_active or retired_docs or retired_edges:
        current_app.logger.info(
            "Deactivated %s %s in org %s (metadata=%d, relationships=%d)",
            entity.entity_type, entity.id, org_id, retired_docs, retired_edges,
        )
    return entity
