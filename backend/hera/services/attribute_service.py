# Overview: Attribute store (dynamic data): typed key/value fields per entity without schema migrations.

"""
Attribute Store

Each attribute is one row of core_dynamic_data: (entity_id, field_name) ->
(field_value as text, field_type). Writes are upserts; reads return the raw
text plus its type tag, and coerce_attribute turns that into a Python value.

RULES:
1. (entity_id, field_name) is unique; set_attribute overwrites in place
2. Reads never fail because the entity is gone: a missing entity has no attributes
3. Bulk reads issue one query per chunk of ids, never one per entity
4. A number that does not parse raises AttributeParseError instead of becoming 0
5. Malformed json parses to an empty collection
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, NamedTuple

from flask import current_app
from sqlalchemy.dialects import postgresql, sqlite

from ..extensions import db
from ..models import CoreDynamicData, CoreEntity, FIELD_TYPES
from ..validation import NotFoundError, ValidationError, require_org_id, require_text
from .concurrency import dialect_name, lock_for_update, write_boundary


class AttributeValue(NamedTuple):
    value: str | None
    field_type: str


class AttributeParseError(ValidationError):
    """Stored text does not parse as its declared field_type."""


def validate_field_type(field_type: str) -> str:
    if field_type not in FIELD_TYPES:
        raise ValidationError(
            f"Invalid field_type '{field_type}'. Must be one of: {', '.join(FIELD_TYPES)}"
        )
    return field_type


def infer_field_type(value: Any) -> str:
    """Type tag for a raw Python value."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, (date, datetime)):
        return "date"
    if isinstance(value, (dict, list, tuple)):
        return "json"
    return "text"


def serialize_attribute(value: Any, field_type: str) -> str | None:
    """
    Text form stored in field_value.

    Strings are stored as given; the field_type tag only affects how readers
    interpret them.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if field_type == "json" or isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def coerce_attribute(value: str | None, field_type: str) -> Any:
    """
    Interpret stored text according to its type tag.

    - number: float; unparseable text raises AttributeParseError
    - boolean: True only for the literal "true"
    - date: datetime.date (ISO-8601)
    - json: parsed value; malformed text gives [] if it looks like an array, else {}
    - text: unchanged
    """
    if value is None:
        return None

    if field_type == "number":
        try:
            return float(value)
        except (TypeError, ValueError):
            raise AttributeParseError(f"'{value}' is not a valid number")

    if field_type == "boolean":
        return value == "true"

    if field_type == "date":
        try:
            if "T" in value:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
            return date.fromisoformat(value)
        except ValueError:
            raise AttributeParseError(f"'{value}' is not a valid ISO-8601 date")

    if field_type == "json":
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return [] if value.lstrip().startswith("[") else {}

    return value


def _upsert_statement(rows: list[dict]):
    dialect = dialect_name()
    if dialect == "postgresql":
        stmt = postgresql.insert(CoreDynamicData).values(rows)
    elif dialect == "sqlite":
        stmt = sqlite.insert(CoreDynamicData).values(rows)
    else:
        return None
    return stmt.on_conflict_do_update(
        index_elements=["entity_id", "field_name"],
        set_={
            "field_value": stmt.excluded.field_value,
            "field_type": stmt.excluded.field_type,
            "updated_at": db.func.now(),
        },
    )


def _upsert_rows_locked(rows: list[dict]) -> None:
    # Dialects without ON CONFLICT: update-or-insert under a row lock.
    for row in rows:
        existing = lock_for_update(
            db.session.query(CoreDynamicData).filter_by(
                entity_id=row["entity_id"], field_name=row["field_name"]
            )
        ).first()
        if existing:
            existing.field_value = row["field_value"]
            existing.field_type = row["field_type"]
        else:
            db.session.add(CoreDynamicData(**row))
    db.session.flush()


def _normalize_fields(entity_id: int, fields: dict) -> list[dict]:
    rows = []
    for name, raw in fields.items():
        field_name = require_text(name, "field_name")
        if isinstance(raw, tuple) and len(raw) == 2 and isinstance(raw[1], str):
            value, field_type = raw
        else:
            value, field_type = raw, infer_field_type(raw)
        validate_field_type(field_type)
        rows.append({
            "entity_id": entity_id,
            "field_name": field_name,
            "field_value": serialize_attribute(value, field_type),
            "field_type": field_type,
        })
    return rows


def _require_entity_exists(entity_id: int) -> None:
    if db.session.get(CoreEntity, entity_id) is None:
        raise NotFoundError(f"Entity {entity_id} not found")


def set_attributes(entity_id: int, fields: dict, *, commit: bool = True) -> list[CoreDynamicData]:
    """
    Upsert several attributes of one entity in a single statement.

    fields maps field_name to either a raw Python value (type inferred) or a
    (value, field_type) pair.
    """
    if not fields:
        return []

    with write_boundary(commit=commit):
        _require_entity_exists(entity_id)
        rows = _normalize_fields(entity_id, fields)

        stmt = _upsert_statement(rows)
        if stmt is None:
            _upsert_rows_locked(rows)
        else:
            db.session.execute(stmt)

        names = [r["field_name"] for r in rows]
        result = (
            db.session.query(CoreDynamicData)
            .filter(CoreDynamicData.entity_id == entity_id, CoreDynamicData.field_name.in_(names))
            .populate_existing()
            .order_by(CoreDynamicData.field_name.asc())
            .all()
        )
    return result


def set_attribute(
    entity_id: int,
    field_name: str,
    value: Any,
    field_type: str = "text",
    *,
    commit: bool = True,
) -> CoreDynamicData:
    """
    Insert or overwrite one attribute. Idempotent.

    Raises:
        ValidationError: blank field_name or unknown field_type
        NotFoundError: entity id does not exist
    """
    validate_field_type(field_type)
    rows = set_attributes(entity_id, {field_name: (value, field_type)}, commit=commit)
    return rows[0]


def get_attributes(entity_id: int) -> dict[str, AttributeValue]:
    """All current attributes of an entity. A missing entity yields {}."""
    rows = (
        db.session.query(CoreDynamicData)
        .filter(CoreDynamicData.entity_id == entity_id)
        .order_by(CoreDynamicData.field_name.asc())
        .all()
    )
    return {r.field_name: AttributeValue(r.field_value, r.field_type) for r in rows}


def get_typed_attributes(entity_id: int) -> dict[str, Any]:
    return {
        name: coerce_attribute(attr.value, attr.field_type)
        for name, attr in get_attributes(entity_id).items()
    }


def _chunks(ids: list[int], size: int) -> Iterable[list[int]]:
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


def get_attributes_bulk(entity_ids: Iterable[int]) -> dict[int, dict[str, AttributeValue]]:
    """
    Attributes of many entities, grouped by entity id in one pass.

    One query per ATTRIBUTE_BULK_CHUNK_SIZE ids. Every requested id appears
    in the result, with {} when it has no attributes.
    """
    ids = list(dict.fromkeys(entity_ids))
    result: dict[int, dict[str, AttributeValue]] = {entity_id: {} for entity_id in ids}
    if not ids:
        return result

    chunk_size = current_app.config.get("ATTRIBUTE_BULK_CHUNK_SIZE", 500)
    for chunk in _chunks(ids, chunk_size):
        rows = (
            db.session.query(
                CoreDynamicData.entity_id,
                CoreDynamicData.field_name,
                CoreDynamicData.field_value,
                CoreDynamicData.field_type,
            )
            .filter(CoreDynamicData.entity_id.in_(chunk))
            .all()
        )
        for entity_id, field_name, field_value, field_type in rows:
            result[entity_id][field_name] = AttributeValue(field_value, field_type)
    return result


def delete_attribute(entity_id: int, field_name: str, *, commit: bool = True) -> bool:
    """Remove one attribute. Returns False if it did not exist."""
    with write_boundary(commit=commit):
        deleted = (
            db.session.query(CoreDynamicData)
            .filter_by(entity_id=entity_id, field_name=field_name)
            .delete(synchronize_session="fetch")
        )
    return bool(deleted)


def find_entity_ids_by_attribute(
    org_id: int,
    entity_type: str,
    field_name: str,
    value: Any,
    *,
    exclude_entity_id: int | None = None,
) -> list[int]:
    """
    Active entities of a type whose attribute equals value (text comparison).

    Used by business-rule duplicate checks (email, phone, tax id...).
    """
    require_org_id(org_id)
    text_value = serialize_attribute(value, infer_field_type(value))
    q = (
        db.session.query(CoreDynamicData.entity_id)
        .join(CoreEntity, CoreEntity.id == CoreDynamicData.entity_id)
        .filter(
            CoreEntity.org_id == org_id,
            CoreEntity.entity_type == entity_type,
            CoreEntity.is_active.is_(True),
            CoreDynamicData.field_name == field_name,
            CoreDynamicData.field_value == text_value,
        )
    )
    if exclude_entity_id is not None:
        q = q.filter(CoreDynamicData.entity_id != exclude_entity_id)
    return sorted({row.entity_id for row in q.all()})
