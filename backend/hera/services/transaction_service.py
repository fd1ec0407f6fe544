# Overview: Transaction store; immutable business events with line items and a configurable status workflow.

"""
Universal Transaction Service

================================================================================
PURPOSE: Record business events (orders, payments, invoices) with their lines
================================================================================

A transaction is a fact. Once created, the only thing that changes is
transaction_status, and only forward along the workflow configured for its
type in TRANSACTION_WORKFLOWS (falling back to the "default" table).

RULES:
1. transaction_number is unique per (org, transaction_type)
2. total_amount = sum(quantity * unit_price) over the lines, computed here in
   Decimal inside the insert transaction; a caller-supplied total is ignored
3. Status changes lock the row, check the workflow, and append a
   TransactionStatusEvent in the same commit
4. Setting the current status again is a no-op (no event)
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import TransactionStatusEvent, UniversalTransaction, UniversalTransactionLine
from ..validation import DuplicateCodeError, NotFoundError, ValidationError, require_org_id, require_text
from hera.time_utils import parse_iso_date, today
from .concurrency import TRANSIENT_ERRORS, lock_for_update, run_with_retry
from .document_service import next_transaction_number
from .duplicate_service import check_transaction_duplicates
from .tenant_service import require_entities_in_org, require_org


class InvalidTransitionError(ValueError):
    """Status change not allowed by the workflow for this transaction type."""


# Scale of the Numeric(18, 4) quantity and unit_price columns. A product of
# two such values fits the 8-place amount columns exactly.
AMOUNT_QUANTUM = Decimal("0.0001")


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def _decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return _quantize(result)


def _normalize_lines(lines: list[dict]) -> list[dict]:
    if not isinstance(lines, list):
        raise ValidationError("lines must be a list")

    normalized = []
    orders = set()
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError(f"line {index} must be an object")
        quantity = _decimal(line.get("quantity"), f"lines[{index}].quantity")
        unit_price = _decimal(line.get("unit_price"), f"lines[{index}].unit_price")
        line_order = line.get("line_order", index + 1)
        if isinstance(line_order, bool) or not isinstance(line_order, int):
            raise ValidationError(f"lines[{index}].line_order must be an integer")
        if line_order in orders:
            raise ValidationError(f"Duplicate line_order {line_order}")
        orders.add(line_order)

        normalized.append({
            "entity_id": line.get("entity_id"),
            "line_description": line.get("line_description"),
            "quantity": quantity,
            "unit_price": unit_price,
            "line_amount": quantity * unit_price,
            "line_order": line_order,
        })
    return normalized


def workflow_for(transaction_type: str) -> dict[str, list[str]]:
    workflows = current_app.config.get("TRANSACTION_WORKFLOWS", {})
    workflow = workflows.get(transaction_type) or workflows.get("default")
    if not workflow:
        raise InvalidTransitionError(f"No status workflow configured for '{transaction_type}'")
    return workflow


def can_transition(transaction_type: str, from_status: str, to_status: str) -> bool:
    workflow = workflow_for(transaction_type)
    if to_status not in workflow:
        return False
    return to_status in workflow.get(from_status, [])


def create_transaction(
    org_id: int,
    transaction_type: str,
    transaction_number: str | None,
    transaction_date: date | str | None,
    lines: list[dict],
    *,
    currency: str | None = None,
    status: str | None = None,
    transaction_data: dict | None = None,
) -> UniversalTransaction:
    """
    Create a transaction with its lines in one commit.

    lines: [{"quantity", "unit_price", "entity_id"?, "line_description"?, "line_order"?}]
    A None transaction_number is allocated from the org's sequence.

    Raises:
        ValidationError: bad type, date, status or line values
        NotFoundError: a line references an entity outside the org
        DuplicateCodeError: number already used for this (org, type)
    """
    require_org_id(org_id)
    transaction_type = require_text(transaction_type, "transaction_type")
    explicit_number = transaction_number is not None
    if explicit_number:
        transaction_number = require_text(transaction_number, "transaction_number")

    try:
        tx_date = parse_iso_date(transaction_date) or today()
    except ValueError:
        raise ValidationError("transaction_date must be an ISO-8601 date")

    status = status or current_app.config.get("DEFAULT_TRANSACTION_STATUS", "pending")
    if status not in workflow_for(transaction_type):
        raise ValidationError(f"Unknown status '{status}' for {transaction_type}")

    currency = (currency or current_app.config.get("DEFAULT_CURRENCY", "USD")).strip().upper()
    if len(currency) != 3:
        raise ValidationError("currency must be a 3-letter code")
    if transaction_data is not None and not isinstance(transaction_data, dict):
        raise ValidationError("transaction_data must be a JSON object")

    normalized = _normalize_lines(lines)

    def _op() -> UniversalTransaction:
        require_org(org_id)
        entity_ids = {l["entity_id"] for l in normalized if l["entity_id"] is not None}
        require_entities_in_org(sorted(entity_ids), org_id)

        number = transaction_number
        if explicit_number:
            existing = check_transaction_duplicates(org_id, transaction_type, number)
            if existing.has_duplicates:
                raise DuplicateCodeError(existing.message)
        else:
            number = next_transaction_number(org_id=org_id, transaction_type=transaction_type, year=tx_date.year)
            # Skip numbers a caller already claimed explicitly.
            while check_transaction_duplicates(org_id, transaction_type, number).has_duplicates:
                current_app.logger.debug("Transaction number %s already taken; allocating next", number)
                number = next_transaction_number(
                    org_id=org_id, transaction_type=transaction_type, year=tx_date.year
                )

        tx = UniversalTransaction(
            org_id=org_id,
            transaction_type=transaction_type,
            transaction_number=number,
            transaction_date=tx_date,
            total_amount=sum((l["line_amount"] for l in normalized), Decimal("0")),
            currency=currency,
            transaction_status=status,
            transaction_data=transaction_data,
        )
        db.session.add(tx)
        try:
            db.session.flush()
        except IntegrityError:
            if not explicit_number:
                raise
            db.session.rollback()
            raise DuplicateCodeError(f"Transaction {number} already exists")

        db.session.add_all(UniversalTransactionLine(transaction_id=tx.id, **l) for l in normalized)
        db.session.flush()
        db.session.commit()
        return tx

    # An auto-numbered insert can only collide on a racing sequence row; retry it.
    retry_on = TRANSIENT_ERRORS if explicit_number else TRANSIENT_ERRORS + (IntegrityError,)
    try:
        tx = run_with_retry(_op, retry_on=retry_on)
    except (ValidationError, NotFoundError, DuplicateCodeError):
        db.session.rollback()
        raise

    current_app.logger.info(
        "Created transaction %s (%s) org=%s total=%s %s",
        tx.transaction_number, transaction_type, org_id, tx.total_amount, tx.currency,
    )
    return tx


def _get_transaction(org_id: int, transaction_id: int, *, for_update: bool = False) -> UniversalTransaction:
    require_org_id(org_id)
    q = db.session.query(UniversalTransaction).filter_by(id=transaction_id, org_id=org_id)
    if for_update:
        q = lock_for_update(q)
    tx = q.first()
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return tx


def update_status(org_id: int, transaction_id: int, new_status: str, *, note: str | None = None) -> UniversalTransaction:
    """
    Move a transaction to new_status along its workflow.

    Raises:
        NotFoundError: no such transaction in this org
        InvalidTransitionError: backward, skipping, or unknown status
    """
    new_status = require_text(new_status, "new_status")

    def _op() -> UniversalTransaction:
        tx = _get_transaction(org_id, transaction_id, for_update=True)
        old_status = tx.transaction_status
        if old_status == new_status:
            return tx

        if not can_transition(tx.transaction_type, old_status, new_status):
            raise InvalidTransitionError(
                f"Cannot move transaction {tx.transaction_number} from '{old_status}' to '{new_status}'"
            )

        tx.transaction_status = new_status
        db.session.add(TransactionStatusEvent(
            org_id=org_id,
            transaction_id=tx.id,
            from_status=old_status,
            to_status=new_status,
            note=note,
        ))
        db.session.commit()

        current_app.logger.info(
            "Transaction %s status %s -> %s", tx.transaction_number, old_status, new_status
        )
        return tx

    try:
        return run_with_retry(_op)
    except (InvalidTransitionError, NotFoundError):
        db.session.rollback()
        raise


def get_transaction_with_lines(org_id: int, transaction_id: int) -> tuple[UniversalTransaction, list[UniversalTransactionLine]]:
    tx = _get_transaction(org_id, transaction_id)
    lines = (
        db.session.query(UniversalTransactionLine)
        .filter_by(transaction_id=tx.id)
        .order_by(UniversalTransactionLine.line_order.asc())
        .all()
    )
    return tx, lines


def list_transactions(
    org_id: int,
    *,
    transaction_type: str | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[UniversalTransaction]:
    """Newest first."""
    require_org_id(org_id)
    q = db.session.query(UniversalTransaction).filter(UniversalTransaction.org_id == org_id)
    if transaction_type is not None:
        q = q.filter(UniversalTransaction.transaction_type == transaction_type)
    if status is not None:
        q = q.filter(UniversalTransaction.transaction_status == status)
    return (
        q.order_by(UniversalTransaction.transaction_date.desc(), UniversalTransaction.id.desc())
        .limit(limit)
        .all()
    )


def get_status_history(org_id: int, transaction_id: int) -> list[TransactionStatusEvent]:
    tx = _get_transaction(org_id, transaction_id)
    return (
        db.session.query(TransactionStatusEvent)
        .filter_by(transaction_id=tx.id)
        .order_by(TransactionStatusEvent.occurred_at.asc(), TransactionStatusEvent.id.asc())
        .all()
    )
