from __future__ import annotations

from ..extensions import db
from hera.time_utils import to_utc_z


FIELD_TYPES = ("text", "number", "boolean", "date", "json")


class CoreEntity(db.Model):
    """
    Generic business object (product, customer, staff member, GL account...).

    One physical table for every domain type; entity_type is the
    discriminator. Deletion is a soft flag flip so attributes, metadata and
    relationships keep a valid owner.

    INVARIANT: (org_id, entity_type, entity_code) is unique among ACTIVE rows.
    Enforced by a partial unique index so inactive rows may reuse a code.
    """
    __tablename__ = "core_entities"
    __table_args__ = (
        db.Index(
            "uq_core_entities_org_type_code_active",
            "org_id",
            "entity_type",
            "entity_code",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
        db.Index("ix_core_entities_org_type_active", "org_id", "entity_type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    entity_type = db.Column(db.String(64), nullable=False)
    entity_name = db.Column(db.String(255), nullable=False)
    entity_code = db.Column(db.String(128), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("entities", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CoreEntity id={self.id} type={self.entity_type!r} code={self.entity_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "entity_type": self.entity_type,
            "entity_name": self.entity_name,
            "entity_code": self.entity_code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CoreDynamicData(db.Model):
    """
    One named scalar attribute of an entity, stored as text.

    field_type tells readers how to interpret field_value; parsing is the
    reader's job (see attribute_service.coerce_attribute).
    Attributes are not removed when the owning entity is deactivated.
    """
    __tablename__ = "core_dynamic_data"
    __table_args__ = (
        db.UniqueConstraint("entity_id", "field_name", name="uq_core_dynamic_data_entity_field"),
        db.Index("ix_core_dynamic_data_field_value", "field_name", "field_value"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(db.Integer, db.ForeignKey("core_entities.id"), nullable=False, index=True)

    field_name = db.Column(db.String(128), nullable=False)
    field_value = db.Column(db.Text, nullable=True)
    field_type = db.Column(db.String(16), nullable=False, default="text")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    entity = db.relationship("CoreEntity", backref=db.backref("dynamic_data", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "field_name": self.field_name,
            "field_value": self.field_value,
            "field_type": self.field_type,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
