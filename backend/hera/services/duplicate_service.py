# Overview: Duplicate prevention layer consulted by write paths before they commit.

"""
Duplicate Prevention Service

check_duplicates runs three independent read-only checks and combines them:

    (a) entity code      - same (org, type, code) among active entities -> reject
    (b) business rule    - per entity type, from a registry (customer email/phone/
                           tax id, employee id, product code, invoice number)
    (c) attribute-level  - pluggable per-type strategies (none registered by default)

PRECEDENCE (highest wins, regardless of which check produced it):
    reject > merge_or_reject > manual_review > allow

Entity types with no business rule, and with no attribute-level strategy,
are allowed; the fallback is logged so a missing rule is visible.

This module never writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CoreEntity, UniversalTransaction
from ..validation import ValidationError, require_org_id
from .attribute_service import find_entity_ids_by_attribute


ALLOW = "allow"
MANUAL_REVIEW = "manual_review"
MERGE_OR_REJECT = "merge_or_reject"
REJECT = "reject"

ACTION_PRECEDENCE = [REJECT, MERGE_OR_REJECT, MANUAL_REVIEW, ALLOW]
BLOCKING_ACTIONS = {REJECT, MERGE_OR_REJECT}


@dataclass
class DuplicateCheckResult:
    has_duplicates: bool = False
    action: str = ALLOW
    duplicate_type: str | None = None
    duplicate_ids: list[int] = field(default_factory=list)
    message: str | None = None
    suggestions: list[str] = field(default_factory=list)

    @property
    def blocks_write(self) -> bool:
        return self.action in BLOCKING_ACTIONS

    def to_dict(self) -> dict:
        return {
            "has_duplicates": self.has_duplicates,
            "action": self.action,
            "duplicate_type": self.duplicate_type,
            "duplicate_ids": list(self.duplicate_ids),
            "message": self.message,
            "suggestions": list(self.suggestions),
        }


DuplicateCheck = Callable[[int, str, dict], DuplicateCheckResult]

_business_rules: dict[str, DuplicateCheck] = {}
_attribute_checks: dict[str, list[DuplicateCheck]] = {}


def register_business_rule(entity_type: str):
    """Decorator: install the business-rule check for an entity type (replaces any existing one)."""
    def decorator(check: DuplicateCheck) -> DuplicateCheck:
        _business_rules[entity_type] = check
        return check
    return decorator


def register_attribute_check(entity_type: str, check: DuplicateCheck) -> None:
    _attribute_checks.setdefault(entity_type, []).append(check)


def clear_attribute_checks(entity_type: str | None = None) -> None:
    if entity_type is None:
        _attribute_checks.clear()
    else:
        _attribute_checks.pop(entity_type, None)


def resolve_action(actions: Iterable[str]) -> str:
    """Highest-precedence action among actions; allow when empty."""
    seen = set()
    for action in actions:
        if action not in ACTION_PRECEDENCE:
            raise ValidationError(f"Unknown duplicate action '{action}'")
        seen.add(action)
    for action in ACTION_PRECEDENCE:
        if action in seen:
            return action
    return ALLOW


def combine_results(results: Iterable[DuplicateCheckResult]) -> DuplicateCheckResult:
    """
    Merge sub-check results into one.

    The winning action follows ACTION_PRECEDENCE; the first result carrying
    it supplies type, ids and message. Suggestions from every duplicate
    result are merged in order without repeats.
    """
    results = list(results)
    action = resolve_action(r.action for r in results)
    duplicates = [r for r in results if r.has_duplicates or r.action != ALLOW]
    if not duplicates:
        return DuplicateCheckResult()

    lead = next((r for r in duplicates if r.action == action), duplicates[0])
    suggestions = list(dict.fromkeys(s for r in duplicates for s in r.suggestions))
    return DuplicateCheckResult(
        has_duplicates=True,
        action=action,
        duplicate_type=lead.duplicate_type,
        duplicate_ids=list(lead.duplicate_ids),
        message=lead.message,
        suggestions=suggestions,
    )


def _plain(value: Any) -> Any:
    # Candidate fields may arrive as (value, field_type) pairs.
    if isinstance(value, tuple) and len(value) == 2 and isinstance(value[1], str):
        return value[0]
    return value


def _active_entities(org_id: int, entity_type: str, exclude_entity_id: int | None):
    q = db.session.query(CoreEntity.id, CoreEntity.entity_name).filter(
        CoreEntity.org_id == org_id,
        CoreEntity.entity_type == entity_type,
        CoreEntity.is_active.is_(True),
    )
    if exclude_entity_id is not None:
        q = q.filter(CoreEntity.id != exclude_entity_id)
    return q


# =============================================================================
# (a) Entity code
# =============================================================================

def check_entity_code(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    code = _plain(candidate.get("entity_code"))
    if not code:
        return DuplicateCheckResult()

    existing = (
        _active_entities(org_id, entity_type, candidate.get("exclude_entity_id"))
        .filter(CoreEntity.entity_code == code)
        .order_by(CoreEntity.id.asc())
        .all()
    )
    if not existing:
        return DuplicateCheckResult()

    return DuplicateCheckResult(
        has_duplicates=True,
        action=REJECT,
        duplicate_type="entity_code",
        duplicate_ids=[row.id for row in existing],
        message=f'Entity code "{code}" is already in use',
        suggestions=[
            "Use next available code",
            f"Add suffix (e.g., {code}-2)",
            f"Update existing entity: {existing[0].entity_name}",
        ],
    )


# =============================================================================
# (b) Business rules per entity type
# =============================================================================

def check_business_rules(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    rule = _business_rules.get(entity_type)
    if rule is None:
        current_app.logger.info(
            "No business-rule duplicate check registered for entity type %r; defaulting to allow",
            entity_type,
        )
        return DuplicateCheckResult()
    return rule(org_id, entity_type, candidate)


def _attribute_matches(org_id, entity_type, candidate, field_names) -> dict[str, list[int]]:
    matches = {}
    for field_name in field_names:
        value = _plain(candidate.get(field_name))
        if value in (None, ""):
            continue
        ids = find_entity_ids_by_attribute(
            org_id, entity_type, field_name, value,
            exclude_entity_id=candidate.get("exclude_entity_id"),
        )
        if ids:
            matches[field_name] = ids
    return matches


@register_business_rule("customer")
def check_customer_duplicates(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    """Customers collide on email, phone or tax id."""
    matches = _attribute_matches(org_id, entity_type, candidate, ("email", "phone", "tax_id"))
    if not matches:
        return DuplicateCheckResult()

    ids = sorted({i for found in matches.values() for i in found})
    return DuplicateCheckResult(
        has_duplicates=True,
        action=MERGE_OR_REJECT,
        duplicate_type="customer_business_rule",
        duplicate_ids=ids,
        message=f"Customer with same {'/'.join(matches)} already exists",
        suggestions=[
            "Merge with existing customer",
            "Update existing customer record",
            "Create as new customer with different identifier",
        ],
    )


@register_business_rule("employee")
def check_employee_duplicates(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    matches = _attribute_matches(org_id, entity_type, candidate, ("employee_id", "national_id"))
    if "employee_id" in matches:
        return DuplicateCheckResult(
            has_duplicates=True,
            action=REJECT,
            duplicate_type="employee_id",
            duplicate_ids=matches["employee_id"],
            message=f"Employee ID {_plain(candidate['employee_id'])} already exists",
            suggestions=["Use next available employee ID", "Check if updating existing employee"],
        )
    if "national_id" in matches:
        return DuplicateCheckResult(
            has_duplicates=True,
            action=REJECT,
            duplicate_type="national_id",
            duplicate_ids=matches["national_id"],
            message="Employee with same national ID already exists",
            suggestions=["This appears to be an existing employee", "Update existing record instead"],
        )
    return DuplicateCheckResult()


@register_business_rule("product")
def check_product_duplicates(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    """A product_code field may not reuse another active product's entity code."""
    product_code = _plain(candidate.get("product_code"))
    if not product_code:
        return DuplicateCheckResult()

    existing = (
        _active_entities(org_id, entity_type, candidate.get("exclude_entity_id"))
        .filter(CoreEntity.entity_code == product_code)
        .all()
    )
    if not existing:
        return DuplicateCheckResult()
    return DuplicateCheckResult(
        has_duplicates=True,
        action=REJECT,
        duplicate_type="product_code",
        duplicate_ids=[row.id for row in existing],
        message=f"Product code {product_code} already exists",
        suggestions=[
            "Use a different product code",
            "Add variant suffix (e.g., -V2)",
            "Update existing product instead",
        ],
    )


@register_business_rule("invoice")
def check_invoice_duplicates(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    invoice_number = _plain(candidate.get("invoice_number"))
    if not invoice_number:
        return DuplicateCheckResult()
    return check_transaction_duplicates(org_id, "INVOICE", invoice_number)


# =============================================================================
# (c) Attribute-level strategies
# =============================================================================

def check_attribute_level(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    checks = _attribute_checks.get(entity_type, [])
    if not checks:
        current_app.logger.debug(
            "No attribute-level duplicate checks for entity type %r; defaulting to allow", entity_type
        )
        return DuplicateCheckResult()
    return combine_results(check(org_id, entity_type, candidate) for check in checks)


def similar_name_check(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    """
    Opt-in strategy: an active entity with the same name (case-insensitive)
    sends the write to manual review.

        register_attribute_check("customer", similar_name_check)
    """
    name = _plain(candidate.get("entity_name"))
    if not name:
        return DuplicateCheckResult()

    match = (
        _active_entities(org_id, entity_type, candidate.get("exclude_entity_id"))
        .filter(func.lower(CoreEntity.entity_name) == name.strip().lower())
        .order_by(CoreEntity.id.asc())
        .first()
    )
    if match is None:
        return DuplicateCheckResult()
    return DuplicateCheckResult(
        has_duplicates=True,
        action=MANUAL_REVIEW,
        duplicate_type="entity_name",
        duplicate_ids=[match.id],
        message=f'Entity with same name "{name}" already exists',
        suggestions=[
            "Add distinguishing information (e.g., location, department)",
            "Use existing entity",
            "Create with different name",
        ],
    )


# =============================================================================
# Entry points
# =============================================================================

def check_duplicates(org_id: int, entity_type: str, candidate: dict) -> DuplicateCheckResult:
    """
    Screen a candidate entity before it is written.

    candidate holds entity_code / entity_name plus any attribute fields the
    rules look at (email, phone, tax_id, employee_id, ...). Pass
    exclude_entity_id when re-checking an existing entity on update.

    The three sub-checks are independent reads and are deliberately run one
    after another rather than in parallel: they share the caller's
    request-scoped session, which is not safe to use from several threads,
    and combine_results picks the strongest action whatever the order.
    """
    require_org_id(org_id)
    candidate = candidate or {}

    combined = combine_results([
        check_entity_code(org_id, entity_type, candidate),
        check_business_rules(org_id, entity_type, candidate),
        check_attribute_level(org_id, entity_type, candidate),
    ])
    if combined.has_duplicates:
        current_app.logger.info(
            "Duplicate check for %s in org %s: %s (%s) ids=%s",
            entity_type, org_id, combined.action, combined.duplicate_type, combined.duplicate_ids,
        )
    return combined


def check_transaction_duplicates(org_id: int, transaction_type: str, transaction_number: str) -> DuplicateCheckResult:
    require_org_id(org_id)
    existing = (
        db.session.query(UniversalTransaction.id)
        .filter(
            UniversalTransaction.org_id == org_id,
            UniversalTransaction.transaction_type == transaction_type,
            UniversalTransaction.transaction_number == transaction_number,
        )
        .all()
    )
    if not existing:
        return DuplicateCheckResult()
    return DuplicateCheckResult(
        has_duplicates=True,
        action=REJECT,
        duplicate_type="transaction",
        duplicate_ids=[row.id for row in existing],
        message=f"Transaction {transaction_number} already exists",
        suggestions=[
            "Use next sequence number",
            f"Add suffix to make unique (e.g., {transaction_number}-R1)",
        ],
    )
