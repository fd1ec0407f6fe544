# Overview: Pytest coverage for universal transactions, numbering and status workflow.

from datetime import date
from decimal import Decimal

import pytest

from hera.models import TransactionStatusEvent, UniversalTransaction, UniversalTransactionLine
from hera.services.document_service import next_transaction_number, prefix_for
from hera.services.transaction_service import (
    InvalidTransitionError,
    can_transition,
    create_transaction,
    get_status_history,
    get_transaction_with_lines,
    list_transactions,
    update_status,
)
from hera.time_utils import today
from hera.validation import DuplicateCodeError, NotFoundError, ValidationError


ORDER_LINES = [{"quantity": 2, "unit_price": 5}, {"quantity": 1, "unit_price": 3}]


class TestCreateTransaction:
    def test_total_computed_from_lines(self, db_session, org_a):
        """ORD-1: 2 x 5 + 1 x 3 = 13."""
        tx = create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)

        assert tx.total_amount == Decimal("13")
        assert tx.transaction_status == "pending"
        assert tx.currency == "USD"

        _, lines = get_transaction_with_lines(org_a.id, tx.id)
        assert [l.line_amount for l in lines] == [Decimal("10"), Decimal("3")]
        assert sum(l.quantity * l.unit_price for l in lines) == tx.total_amount

    def test_decimal_prices(self, db_session, org_a):
        tx = create_transaction(org_a.id, "sales", "S-1", "2026-02-01", [
            {"quantity": "3", "unit_price": "0.10"},
            {"quantity": 1, "unit_price": 4.5},
        ])
        assert tx.total_amount == Decimal("4.80")
        assert tx.transaction_date == date(2026, 2, 1)

    def test_fractional_total_matches_stored_lines(self, db_session, org_a):
        tx = create_transaction(org_a.id, "sales", "S-1", today(), [
            {"quantity": "2.5", "unit_price": "1.2345"},
            {"quantity": "0.333", "unit_price": "0.333"},
        ])
        db_session.expire_all()

        stored, lines = get_transaction_with_lines(org_a.id, tx.id)
        assert [l.line_amount for l in lines] == [Decimal("3.08625"), Decimal("0.110889")]
        assert abs(stored.total_amount - sum(l.quantity * l.unit_price for l in lines)) <= Decimal("0.000001")
        assert stored.total_amount == Decimal("3.197139")

    def test_inputs_rounded_to_four_places(self, db_session, org_a):
        tx = create_transaction(org_a.id, "sales", "S-1", today(), [{"quantity": 1, "unit_price": "0.12345"}])
        _, lines = get_transaction_with_lines(org_a.id, tx.id)
        assert lines[0].unit_price == Decimal("0.1235")
        assert tx.total_amount == Decimal("0.1235")

    def test_caller_total_ignored(self, db_session, org_a):
        tx = create_transaction(
            org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES,
            transaction_data={"total_amount": 999, "channel": "pos"},
        )
        assert tx.total_amount == Decimal("13")
        assert tx.transaction_data == {"total_amount": 999, "channel": "pos"}

    def test_no_lines_total_zero(self, db_session, org_a):
        tx = create_transaction(org_a.id, "payment", "PAY-1", None, [])
        assert tx.total_amount == Decimal("0")
        assert tx.transaction_date == today()

    def test_duplicate_number_per_org_and_type(self, db_session, org_a, org_b):
        create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)

        with pytest.raises(DuplicateCodeError):
            create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)

        create_transaction(org_a.id, "REFUND", "ORD-1", today(), ORDER_LINES)
        create_transaction(org_b.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)
        assert db_session.query(UniversalTransaction).count() == 3

    def test_lines_reference_entities_of_same_org(self, db_session, org_a, product_a, product_b):
        tx = create_transaction(org_a.id, "sales", "S-1", today(), [
            {"entity_id": product_a.id, "quantity": 1, "unit_price": 2, "line_description": "Tea"},
        ])
        _, lines = get_transaction_with_lines(org_a.id, tx.id)
        assert lines[0].entity_id == product_a.id

        with pytest.raises(NotFoundError):
            create_transaction(org_a.id, "sales", "S-2", today(), [
                {"entity_id": product_b.id, "quantity": 1, "unit_price": 2},
            ])
        assert db_session.query(UniversalTransaction).count() == 1

    @pytest.mark.parametrize("line", [
        {"quantity": "two", "unit_price": 1},
        {"quantity": 1},
        {"quantity": True, "unit_price": 1},
        {"quantity": 1, "unit_price": "NaN"},
    ])
    def test_invalid_line_values(self, db_session, org_a, line):
        with pytest.raises(ValidationError):
            create_transaction(org_a.id, "sales", "S-1", today(), [line])
        assert db_session.query(UniversalTransactionLine).count() == 0

    def test_invalid_status_and_currency(self, db_session, org_a):
        with pytest.raises(ValidationError):
            create_transaction(org_a.id, "sales", "S-1", today(), [], status="shipped")
        with pytest.raises(ValidationError):
            create_transaction(org_a.id, "sales", "S-1", today(), [], currency="EURO")

    def test_bad_date(self, db_session, org_a):
        with pytest.raises(ValidationError):
            create_transaction(org_a.id, "sales", "S-1", "01/02/2026", [])

    def test_lines_ordered(self, db_session, org_a):
        tx = create_transaction(org_a.id, "sales", "S-1", today(), [
            {"quantity": 1, "unit_price": 1, "line_order": 3, "line_description": "c"},
            {"quantity": 1, "unit_price": 1, "line_order": 1, "line_description": "a"},
            {"quantity": 1, "unit_price": 1, "line_order": 2, "line_description": "b"},
        ])
        _, lines = get_transaction_with_lines(org_a.id, tx.id)
        assert [l.line_description for l in lines] == ["a", "b", "c"]

    def test_duplicate_line_order(self, db_session, org_a):
        with pytest.raises(ValidationError):
            create_transaction(org_a.id, "sales", "S-1", today(), [
                {"quantity": 1, "unit_price": 1, "line_order": 1},
                {"quantity": 1, "unit_price": 1, "line_order": 1},
            ])


class TestTransactionNumbers:
    def test_allocated_when_number_missing(self, db_session, org_a):
        first = create_transaction(org_a.id, "sales", None, "2026-02-01", ORDER_LINES)
        second = create_transaction(org_a.id, "sales", None, "2026-02-01", ORDER_LINES)

        assert first.transaction_number == "HER-SAL-2026-0001"
        assert second.transaction_number == "HER-SAL-2026-0002"

    def test_allocation_skips_explicitly_used_number(self, db_session, org_a):
        create_transaction(org_a.id, "sales", "HER-SAL-2026-0001", "2026-01-15", ORDER_LINES)

        tx = create_transaction(org_a.id, "sales", None, "2026-02-01", [])

        assert tx.transaction_number == "HER-SAL-2026-0002"
        assert db_session.query(UniversalTransaction).count() == 2

    def test_sequences_per_org_and_type(self, db_session, org_a, org_b):
        assert next_transaction_number(org_id=org_a.id, transaction_type="sales", year=2026) == "HER-SAL-2026-0001"
        assert next_transaction_number(org_id=org_a.id, transaction_type="payment", year=2026) == "HER-PAY-2026-0001"
        assert next_transaction_number(org_id=org_b.id, transaction_type="sales", year=2026) == "BETA-SAL-2026-0001"
        assert next_transaction_number(org_id=org_a.id, transaction_type="sales", year=2026) == "HER-SAL-2026-0002"

    def test_prefix_for(self):
        assert prefix_for("journal_entry") == "JE"
        assert prefix_for("SALES_ORDER") == "SAL"
        assert prefix_for("x") == "X"
        assert prefix_for("__") == "TXN"


class TestUpdateStatus:
    def test_forward_transitions_recorded(self, db_session, org_a):
        tx = create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)

        update_status(org_a.id, tx.id, "preparing")
        update_status(org_a.id, tx.id, "completed", note="picked up")

        history = get_status_history(org_a.id, tx.id)
        assert [(e.from_status, e.to_status) for e in history] == [
            ("pending", "preparing"),
            ("preparing", "completed"),
        ]
        assert history[-1].note == "picked up"
        assert get_transaction_with_lines(org_a.id, tx.id)[0].transaction_status == "completed"

    def test_backward_transition_rejected(self, db_session, org_a):
        tx = create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)
        update_status(org_a.id, tx.id, "processing")
        update_status(org_a.id, tx.id, "completed")

        with pytest.raises(InvalidTransitionError):
            update_status(org_a.id, tx.id, "pending")
        with pytest.raises(InvalidTransitionError):
            update_status(org_a.id, tx.id, "cancelled")

        assert db_session.query(TransactionStatusEvent).count() == 2

    def test_skip_transition_rejected(self, db_session, org_a):
        tx = create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)
        with pytest.raises(InvalidTransitionError):
            update_status(org_a.id, tx.id, "completed")

    def test_unknown_status_rejected(self, db_session, org_a):
        tx = create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)
        with pytest.raises(InvalidTransitionError):
            update_status(org_a.id, tx.id, "shipped")

    def test_same_status_is_noop(self, db_session, org_a):
        tx = create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)
        update_status(org_a.id, tx.id, "pending")
        assert get_status_history(org_a.id, tx.id) == []

    def test_workflow_per_type_from_config(self, app, db_session, org_a):
        workflows = dict(app.config["TRANSACTION_WORKFLOWS"])
        workflows["invoice"] = {"draft": ["posted"], "posted": ["paid"], "paid": []}
        original = app.config["TRANSACTION_WORKFLOWS"]
        app.config["TRANSACTION_WORKFLOWS"] = workflows
        try:
            tx = create_transaction(org_a.id, "invoice", "INV-1", today(), ORDER_LINES, status="draft")
            assert can_transition("invoice", "draft", "posted")
            assert not can_transition("invoice", "draft", "paid")

            update_status(org_a.id, tx.id, "posted")
            with pytest.raises(InvalidTransitionError):
                update_status(org_a.id, tx.id, "cancelled")
        finally:
            app.config["TRANSACTION_WORKFLOWS"] = original

    def test_other_org(self, db_session, org_a, org_b):
        tx = create_transaction(org_a.id, "SALES_ORDER", "ORD-1", today(), ORDER_LINES)
        with pytest.raises(NotFoundError):
            update_status(org_b.id, tx.id, "preparing")


class TestListTransactions:
    def test_filters(self, db_session, org_a, org_b):
        a1 = create_transaction(org_a.id, "sales", "S-1", "2026-01-01", ORDER_LINES)
        a2 = create_transaction(org_a.id, "sales", "S-2", "2026-01-02", ORDER_LINES)
        p1 = create_transaction(org_a.id, "payment", "P-1", "2026-01-03", [])
        create_transaction(org_b.id, "sales", "S-1", "2026-01-01", ORDER_LINES)
        update_status(org_a.id, a1.id, "cancelled")

        assert [t.id for t in list_transactions(org_a.id)] == [p1.id, a2.id, a1.id]
        assert [t.id for t in list_transactions(org_a.id, transaction_type="sales")] == [a2.id, a1.id]
        assert [t.id for t in list_transactions(org_a.id, status="cancelled")] == [a1.id]
        assert len(list_transactions(org_a.id, limit=1)) == 1
