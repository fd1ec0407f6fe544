from __future__ import annotations

from ..extensions import db
from hera.time_utils import to_utc_z


class CoreRelationship(db.Model):
    """
    Directed, typed edge between two entities of the same organization.

    Uniqueness is business-defined per relationship_type (e.g. at most one
    active "transaction_has_gl_intelligence" edge per parent); the table
    itself enforces none.
    """
    __tablename__ = "core_relationships"
    __table_args__ = (
        db.Index("ix_core_relationships_parent", "org_id", "parent_entity_id", "relationship_type", "is_active"),
        db.Index("ix_core_relationships_child", "org_id", "child_entity_id", "relationship_type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    relationship_type = db.Column(db.String(64), nullable=False)
    parent_entity_id = db.Column(db.Integer, db.ForeignKey("core_entities.id"), nullable=False)
    child_entity_id = db.Column(db.Integer, db.ForeignKey("core_entities.id"), nullable=False)
    relationship_data = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    parent = db.relationship("CoreEntity", foreign_keys=[parent_entity_id])
    child = db.relationship("CoreEntity", foreign_keys=[child_entity_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "relationship_type": self.relationship_type,
            "parent_entity_id": self.parent_entity_id,
            "child_entity_id": self.child_entity_id,
            "relationship_data": self.relationship_data,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
