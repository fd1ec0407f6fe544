# Overview: Metadata store; versioned structured documents keyed by (type, category, key) per entity.

"""
Metadata Store

A metadata key is the tuple
    (org_id, entity_type, entity_id, metadata_type, metadata_category, metadata_key)

STATE MACHINE per row:
    active (effective_to NULL) -> inactive (effective_to set)

put_metadata never edits a document; it retires the active version and
inserts a new one inside one DB transaction. Two writers racing on an empty
key both try to insert an active row; the partial unique index rejects the
second, which is rolled back and retried (and then supersedes the first).
"""

from __future__ import annotations

from typing import Any, Iterable

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import CoreMetadata
from ..validation import NotFoundError, require_org_id, require_text
from hera.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry, to_storage_error, write_boundary
from .tenant_service import require_entity_in_org


def _key_filter(org_id, entity_type, entity_id, metadata_type, metadata_category, metadata_key):
    return (
        CoreMetadata.org_id == org_id,
        CoreMetadata.entity_type == entity_type,
        CoreMetadata.entity_id == entity_id,
        CoreMetadata.metadata_type == metadata_type,
        CoreMetadata.metadata_category == metadata_category,
        CoreMetadata.metadata_key == metadata_key,
    )


def _validate_key(org_id, entity_type, metadata_type, metadata_category, metadata_key):
    require_org_id(org_id)
    return (
        require_text(entity_type, "entity_type"),
        require_text(metadata_type, "metadata_type"),
        require_text(metadata_category, "metadata_category"),
        require_text(metadata_key, "metadata_key"),
    )


ACTIVE_KEY_INDEX = "uq_core_metadata_active_key"


def is_active_key_conflict(exc: IntegrityError) -> bool:
    """True when exc is a second active row for one key (a lost supersede race)."""
    message = str(exc.orig if exc.orig is not None else exc)
    # PostgreSQL names the index; SQLite lists the indexed columns.
    return ACTIVE_KEY_INDEX in message or "UNIQUE constraint failed: core_metadata." in message


def _retire_active(key_filter, now) -> list[int]:
    """Lock and deactivate the active version(s) of a key. Returns retired ids."""
    current_ids = [
        row.id
        for row in lock_for_update(
            db.session.query(CoreMetadata.id).filter(*key_filter, CoreMetadata.is_active.is_(True))
        ).all()
    ]
    if current_ids:
        db.session.execute(
            update(CoreMetadata)
            .where(CoreMetadata.id.in_(current_ids))
            .values(is_active=False, effective_to=now)
            .execution_options(synchronize_session="fetch")
        )
    return current_ids


def put_metadata(
    org_id: int,
    entity_type: str,
    entity_id: int,
    metadata_type: str,
    metadata_category: str,
    metadata_key: str,
    value: Any,
    *,
    commit: bool = True,
) -> CoreMetadata:
    """
    Supersede the active document for a key with a new value.

    Steps (one DB transaction):
    1. lock + deactivate the active row (effective_to = now)
    2. insert the new row (is_active=True, effective_from = now)

    With commit=False the caller owns the transaction (e.g. entity creation)
    and no retry is attempted; a lost race surfaces as StorageError.

    Raises:
        ValidationError: blank key component or missing org_id
        NotFoundError: entity missing, inactive or in another org
    """
    entity_type, metadata_type, metadata_category, metadata_key = _validate_key(
        org_id, entity_type, metadata_type, metadata_category, metadata_key
    )
    key_filter = _key_filter(org_id, entity_type, entity_id, metadata_type, metadata_category, metadata_key)

    def _op() -> CoreMetadata:
        require_entity_in_org(entity_id, org_id)
        now = utcnow()
        retired = _retire_active(key_filter, now)

        doc = CoreMetadata(
            org_id=org_id,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata_type=metadata_type,
            metadata_category=metadata_category,
            metadata_key=metadata_key,
            metadata_value=value,
            is_active=True,
            effective_from=now,
        )
        db.session.add(doc)
        try:
            db.session.flush()
        except IntegrityError as exc:
            if is_active_key_conflict(exc):
                raise
            db.session.rollback()
            raise to_storage_error(exc) from exc

        if retired:
            current_app.logger.debug(
                "Superseded metadata %s with %s for entity %s", retired, doc.id, entity_id
            )
        return doc

    if not commit:
        with write_boundary(commit=False):
            return _op()

    def _op_and_commit() -> CoreMetadata:
        doc = _op()
        db.session.commit()
        return doc

    return run_with_retry(_op_and_commit, retry_on=(IntegrityError, OperationalError, StaleDataError))


def get_metadata_record(
    org_id: int,
    entity_type: str,
    entity_id: int,
    metadata_type: str,
    metadata_category: str,
    metadata_key: str,
) -> CoreMetadata:
    entity_type, metadata_type, metadata_category, metadata_key = _validate_key(
        org_id, entity_type, metadata_type, metadata_category, metadata_key
    )
    doc = (
        db.session.query(CoreMetadata)
        .filter(
            *_key_filter(org_id, entity_type, entity_id, metadata_type, metadata_category, metadata_key),
            CoreMetadata.is_active.is_(True),
        )
        .first()
    )
    if doc is None:
        raise NotFoundError(
            f"No active metadata {metadata_type}/{metadata_category}/{metadata_key} for entity {entity_id}"
        )
    return doc


def get_metadata(
    org_id: int,
    entity_type: str,
    entity_id: int,
    metadata_type: str,
    metadata_category: str,
    metadata_key: str,
) -> Any:
    """Value of the active document for a key; NotFoundError if none."""
    return get_metadata_record(
        org_id, entity_type, entity_id, metadata_type, metadata_category, metadata_key
    ).metadata_value


def list_metadata(
    org_id: int,
    entity_ids: Iterable[int],
    entity_type: str,
    *,
    metadata_type: str | None = None,
) -> list[CoreMetadata]:
    """
    Active documents of many entities, one query per chunk of ids.

    Ordered by entity id, then key, so callers can group in one pass.
    """
    require_org_id(org_id)
    ids = list(dict.fromkeys(entity_ids))
    if not ids:
        return []

    chunk_size = current_app.config.get("ATTRIBUTE_BULK_CHUNK_SIZE", 500)
    docs: list[CoreMetadata] = []
    for start in range(0, len(ids), chunk_size):
        q = db.session.query(CoreMetadata).filter(
            CoreMetadata.org_id == org_id,
            CoreMetadata.entity_type == entity_type,
            CoreMetadata.entity_id.in_(ids[start:start + chunk_size]),
            CoreMetadata.is_active.is_(True),
        )
        if metadata_type is not None:
            q = q.filter(CoreMetadata.metadata_type == metadata_type)
        docs.extend(q.all())

    docs.sort(key=lambda d: (d.entity_id, d.metadata_type, d.metadata_category, d.metadata_key))
    return docs


def metadata_history(
    org_id: int,
    entity_type: str,
    entity_id: int,
    metadata_type: str,
    metadata_category: str,
    metadata_key: str,
) -> list[CoreMetadata]:
    """Every version of a key, oldest first."""
    entity_type, metadata_type, metadata_category, metadata_key = _validate_key(
        org_id, entity_type, metadata_type, metadata_category, metadata_key
    )
    return (
        db.session.query(CoreMetadata)
        .filter(*_key_filter(org_id, entity_type, entity_id, metadata_type, metadata_category, metadata_key))
        .order_by(CoreMetadata.effective_from.asc(), CoreMetadata.id.asc())
        .all()
    )


def deactivate_metadata(
    org_id: int,
    entity_type: str,
    entity_id: int,
    metadata_type: str,
    metadata_category: str,
    metadata_key: str,
    *,
    commit: bool = True,
) -> int:
    """Retire the active version of a key without replacing it. Returns rows retired."""
    entity_type, metadata_type, metadata_category, metadata_key = _validate_key(
        org_id, entity_type, metadata_type, metadata_category, metadata_key
    )
    with write_boundary(commit=commit):
        retired = _retire_active(
            _key_filter(org_id, entity_type, entity_id, metadata_type, metadata_category, metadata_key),
            utcnow(),
        )
    return len(retired)


def deactivate_entity_metadata(org_id: int, entity_id: int, *, now=None) -> int:
    """Retire every active document of an entity. Caller owns the transaction."""
    result = db.session.execute(
        update(CoreMetadata)
        .where(
            CoreMetadata.org_id == org_id,
            CoreMetadata.entity_id == entity_id,
            CoreMetadata.is_active.is_(True),
        )
        .values(is_active=False, effective_to=now or utcnow())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0
