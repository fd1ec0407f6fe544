# Overview: Transaction number allocation; per-org, per-type, per-year sequences.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Organization, TransactionSequence
from ..validation import ValidationError, require_org_id, require_text
from hera.time_utils import today


TYPE_PREFIXES = {
    "journal_entry": "JE",
    "sales": "SAL",
    "purchase": "PUR",
    "payment": "PAY",
    "master_data": "MDT",
    "inventory": "INV",
    "payroll": "PAY",
    "reconciliation": "REC",
}


def prefix_for(transaction_type: str) -> str:
    """Short code used in transaction numbers ("sales" -> "SAL")."""
    known = TYPE_PREFIXES.get(transaction_type.lower())
    if known:
        return known
    letters = "".join(ch for ch in transaction_type if ch.isalnum())
    return letters[:3].upper() or "TXN"


def org_code_for(org: Organization | None) -> str:
    if org is None:
        return "ORG"
    if org.code:
        return org.code.upper()
    letters = "".join(ch for ch in org.name if ch.isalnum())
    return letters[:3].upper() or "ORG"


def next_transaction_number(
    *,
    org_id: int,
    transaction_type: str,
    prefix: str | None = None,
    year: int | None = None,
    pad: int = 4,
) -> str:
    """
    Allocate the next transaction number for an org/type/year.

    Format: {ORG}-{PREFIX}-{YEAR}-{NNNN}, e.g. "HER-SAL-2026-0001".

    Runs inside the caller's DB transaction: the counter row is bumped with
    an UPDATE (which takes the row lock) and created on first use. Two first
    allocations racing on the same key collide on the unique constraint;
    the IntegrityError propagates so the caller can retry the whole write.
    """
    require_org_id(org_id)
    transaction_type = require_text(transaction_type, "transaction_type")
    if pad < 1:
        raise ValidationError("pad must be positive")
    year = year or today().year

    stmt = (
        update(TransactionSequence)
        .where(
            TransactionSequence.org_id == org_id,
            TransactionSequence.transaction_type == transaction_type,
            TransactionSequence.year == year,
        )
        .values(next_number=TransactionSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(TransactionSequence.next_number)
            .filter_by(org_id=org_id, transaction_type=transaction_type, year=year)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = TransactionSequence(org_id=org_id, transaction_type=transaction_type, year=year, next_number=2)
        db.session.add(seq)
        db.session.flush()
        next_num = 1

    org_code = org_code_for(db.session.get(Organization, org_id))
    return f"{org_code}-{prefix or prefix_for(transaction_type)}-{year}-{next_num:0{pad}d}"
