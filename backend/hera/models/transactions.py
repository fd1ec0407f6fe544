from __future__ import annotations

from ..extensions import db
from hera.time_utils import to_utc_z


def _money(value):
    return str(value) if value is not None else None


class UniversalTransaction(db.Model):
    """
    Business event (order, payment, invoice) with line items.

    WHY: Transactions are facts, not mutable records. After creation only
    transaction_status moves forward through the configured workflow;
    corrections are new transactions (refunds, reversals).

    total_amount is always computed from the lines at creation time,
    never taken from the caller.
    """
    __tablename__ = "universal_transactions"
    __table_args__ = (
        db.UniqueConstraint("org_id", "transaction_type", "transaction_number", name="uq_universal_transactions_org_type_number"),
        db.Index("ix_universal_transactions_org_status_date", "org_id", "transaction_status", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(64), nullable=False, index=True)
    # Human-readable number (e.g., "HER-SAL-2026-0001")
    transaction_number = db.Column(db.String(64), nullable=False)
    transaction_date = db.Column(db.Date, nullable=False)

    total_amount = db.Column(db.Numeric(24, 8), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    transaction_status = db.Column(db.String(32), nullable=False, index=True)
    transaction_data = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("transactions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<UniversalTransaction id={self.id} number={self.transaction_number!r} status={self.transaction_status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "transaction_type": self.transaction_type,
            "transaction_number": self.transaction_number,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "total_amount": _money(self.total_amount),
            "currency": self.currency,
            "transaction_status": self.transaction_status,
            "transaction_data": self.transaction_data,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class UniversalTransactionLine(db.Model):
    """Line item of a transaction; line_amount = quantity * unit_price."""
    __tablename__ = "universal_transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_order", name="uq_transaction_lines_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("universal_transactions.id"), nullable=False, index=True)
    entity_id = db.Column(db.Integer, db.ForeignKey("core_entities.id"), nullable=True, index=True)

    line_description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_price = db.Column(db.Numeric(18, 4), nullable=False)
    line_amount = db.Column(db.Numeric(24, 8), nullable=False)
    line_order = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("UniversalTransaction", backref=db.backref("lines", lazy=True))
    entity = db.relationship("CoreEntity")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "entity_id": self.entity_id,
            "line_description": self.line_description,
            "quantity": _money(self.quantity),
            "unit_price": _money(self.unit_price),
            "line_amount": _money(self.line_amount),
            "line_order": self.line_order,
            "created_at": to_utc_z(self.created_at),
        }


class TransactionStatusEvent(db.Model):
    """
    Append-only audit of transaction status changes.

    Written in the same DB transaction as the status update it records.
    """
    __tablename__ = "transaction_status_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("universal_transactions.id"), nullable=False, index=True)

    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("UniversalTransaction", backref=db.backref("status_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "transaction_id": self.transaction_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class TransactionSequence(db.Model):
    """
    Atomic per-organization transaction number sequences.

    WHY: Prevent two writers from allocating the same transaction number
    for an (org, transaction_type, year).
    """
    __tablename__ = "transaction_sequences"
    __table_args__ = (
        db.UniqueConstraint("org_id", "transaction_type", "year", name="uq_transaction_sequences_org_type_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(64), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "transaction_type": self.transaction_type,
            "year": self.year,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
