from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import DeclarativeMeta


class ValidationError(ValueError):
    """Malformed input (empty required field, wrong type). Never retried."""


class ConflictError(ValueError):
    """Business rule conflict (e.g., duplicate code)."""


class DuplicateCodeError(ConflictError):
    """An active record with the same business key already exists."""


class DuplicateRejectedError(ConflictError):
    """The duplicate prevention layer refused the write."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class NotFoundError(ValueError, LookupError):
    """Referenced record does not exist, is inactive, or belongs to another org."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what callers are allowed to set
    - required_on_create: fields required when creating
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


ENTITY_POLICY = ModelValidationPolicy(
    writable_fields={"entity_name", "entity_code", "is_active"},
    required_on_create={"entity_name", "entity_code"},
)


def require_text(value: Any, field: str) -> str:
    """Strip a required string argument; blank or non-string is a ValidationError."""
    if value is None or not isinstance(value, str):
        raise ValidationError(f"{field} is required")
    stripped = value.strip()
    if not stripped:
        raise ValidationError(f"{field} cannot be blank")
    return stripped


def require_org_id(org_id: Any) -> int:
    # Omitting the tenant is a caller bug, not an empty result.
    if org_id is None:
        raise ValidationError("org_id is required")
    if isinstance(org_id, bool) or not isinstance(org_id, int):
        raise ValidationError("org_id must be an integer")
    return org_id


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Booleans are strict: "true"/"false" strings are accepted, nothing else
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list, bool)):
            raise ValidationError(f"{col.key} must be text")
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes a write payload against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = [f for f in sorted(required) if f not in payload]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch
