from __future__ import annotations

from ..extensions import db
from hera.time_utils import to_utc_z


class CoreMetadata(db.Model):
    """
    Structured, versioned document attached to an entity.

    VERSIONING: rows are never edited in place. A new value deactivates the
    current row (is_active=False, effective_to=now) and inserts a new active
    row in the same DB transaction.

    INVARIANT: at most one active row per
    (org_id, entity_type, entity_id, metadata_type, metadata_category, metadata_key).
    The partial unique index makes a racing second insert fail instead of
    leaving two active versions.
    """
    __tablename__ = "core_metadata"
    __table_args__ = (
        db.Index(
            "uq_core_metadata_active_key",
            "org_id",
            "entity_type",
            "entity_id",
            "metadata_type",
            "metadata_category",
            "metadata_key",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
        db.Index("ix_core_metadata_org_entity", "org_id", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, db.ForeignKey("core_entities.id"), nullable=False, index=True)

    metadata_type = db.Column(db.String(64), nullable=False)
    metadata_category = db.Column(db.String(64), nullable=False)
    metadata_key = db.Column(db.String(128), nullable=False)
    metadata_value = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    effective_from = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    effective_to = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    entity = db.relationship("CoreEntity", backref=db.backref("metadata_documents", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<CoreMetadata id={self.id} entity_id={self.entity_id} "
            f"key={self.metadata_type}/{self.metadata_category}/{self.metadata_key} active={self.is_active}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "metadata_type": self.metadata_type,
            "metadata_category": self.metadata_category,
            "metadata_key": self.metadata_key,
            "metadata_value": self.metadata_value,
            "is_active": self.is_active,
            "effective_from": to_utc_z(self.effective_from),
            "effective_to": to_utc_z(self.effective_to) if self.effective_to else None,
            "created_at": to_utc_z(self.created_at),
        }
