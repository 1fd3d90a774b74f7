"""Target-state rules evaluated by the workflow guards."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.lifecycle import (
    ALL_GUARDS,
    AMENDMENT_READY_TO_SEND,
    CREDIT_NOTE_READY_TO_ISSUE,
    INVOICE_CANCELLABLE,
    INVOICE_READY_TO_ISSUE,
    QUOTE_READY_TO_ISSUE,
    QUOTE_SIGN_OFF,
)
from billing_kernel.domain.validation import (
    CREDIT_WITHIN_INVOICE_TOTAL,
    GUARD_RULES,
    HAS_CLIENT,
    HAS_DUE_DATE,
    HAS_LINES,
    HAS_SIGNATURE,
    INVOICE_CREDITABLE,
    LINE_PRICE_NON_NEGATIVE,
    LINE_QUANTITY_POSITIVE,
    LINE_TAX_RATE_NON_NEGATIVE,
    NO_PAYMENTS_RECORDED,
    PARENT_QUOTE_SIGNED,
    PAYMENT_WITHIN_BALANCE,
    POSITIVE_TOTAL,
    ValidationContext,
    evaluate_guard,
    validate_line,
    validate_payment,
)


def _rules(violations):
    return [v.rule for v in violations]


def test_every_guard_has_rules():
    assert {g.name for g in ALL_GUARDS} == set(GUARD_RULES)


def test_no_guard_means_no_rules():
    assert evaluate_guard(None, ValidationContext()) == ()


class TestQuoteRules:
    def test_empty_quote_reports_every_violation(self):
        violations = evaluate_guard(QUOTE_READY_TO_ISSUE, ValidationContext())
        assert _rules(violations) == [HAS_LINES, HAS_CLIENT, POSITIVE_TOTAL]

    def test_complete_quote_passes(self):
        ctx = ValidationContext(
            line_count=1, client_id=uuid4(), amount_incl_tax=Decimal("120.00")
        )
        assert evaluate_guard(QUOTE_READY_TO_ISSUE, ctx) == ()

    @pytest.mark.parametrize("signature", [None, "", "   "])
    def test_sign_off_requires_a_signature(self, signature):
        ctx = ValidationContext(
            line_count=1,
            client_id=uuid4(),
            amount_incl_tax=Decimal("120.00"),
            signature=signature,
        )
        assert _rules(evaluate_guard(QUOTE_SIGN_OFF, ctx)) == [HAS_SIGNATURE]


class TestInvoiceRules:
    def test_missing_due_date(self):
        ctx = ValidationContext(
            line_count=1, client_id=uuid4(), amount_incl_tax=Decimal("10.00")
        )
        assert _rules(evaluate_guard(INVOICE_READY_TO_ISSUE, ctx)) == [HAS_DUE_DATE]

    def test_zero_total_rejected(self):
        ctx = ValidationContext(
            line_count=1,
            client_id=uuid4(),
            amount_incl_tax=Decimal("0.00"),
            due_date=date(2025, 2, 14),
        )
        assert _rules(evaluate_guard(INVOICE_READY_TO_ISSUE, ctx)) == [POSITIVE_TOTAL]

    def test_cancel_blocked_by_recorded_payment(self):
        assert evaluate_guard(INVOICE_CANCELLABLE, ValidationContext()) == ()
        ctx = ValidationContext(amount_paid=Decimal("0.01"))
        assert _rules(evaluate_guard(INVOICE_CANCELLABLE, ctx)) == [NO_PAYMENTS_RECORDED]


class TestAmendmentRules:
    def test_parent_quote_must_be_signed(self):
        ctx = ValidationContext(line_count=1, parent_status="cancelled")
        assert _rules(evaluate_guard(AMENDMENT_READY_TO_SEND, ctx)) == [PARENT_QUOTE_SIGNED]

    def test_negative_total_is_allowed(self):
        ctx = ValidationContext(
            line_count=1, parent_status="signed", amount_incl_tax=Decimal("-50.00")
        )
        assert evaluate_guard(AMENDMENT_READY_TO_SEND, ctx) == ()


class TestCreditNoteRules:
    def _ctx(self, **overrides):
        values = dict(
            line_count=1,
            amount_incl_tax=Decimal("50.00"),
            parent_status="issued",
            invoice_total=Decimal("120.00"),
            credited_total=Decimal("0.00"),
        )
        values.update(overrides)
        return ValidationContext(**values)

    def test_within_total_passes(self):
        assert evaluate_guard(CREDIT_NOTE_READY_TO_ISSUE, self._ctx()) == ()

    def test_credit_up_to_exact_total_passes(self):
        ctx = self._ctx(amount_incl_tax=Decimal("70.00"), credited_total=Decimal("50.00"))
        assert evaluate_guard(CREDIT_NOTE_READY_TO_ISSUE, ctx) == ()

    def test_cumulative_credit_over_total_rejected(self):
        ctx = self._ctx(amount_incl_tax=Decimal("70.01"), credited_total=Decimal("50.00"))
        assert _rules(evaluate_guard(CREDIT_NOTE_READY_TO_ISSUE, ctx)) == [
            CREDIT_WITHIN_INVOICE_TOTAL
        ]

    @pytest.mark.parametrize("status", ["draft", "cancelled"])
    def test_invoice_must_be_creditable(self, status):
        violations = evaluate_guard(CREDIT_NOTE_READY_TO_ISSUE, self._ctx(parent_status=status))
        assert _rules(violations) == [INVOICE_CREDITABLE]

    def test_paid_invoice_is_creditable(self):
        assert evaluate_guard(CREDIT_NOTE_READY_TO_ISSUE, self._ctx(parent_status="paid")) == ()


class TestLineRules:
    def test_valid_line(self):
        assert validate_line(Decimal("1"), Decimal("0"), Decimal("20")) == ()

    def test_zero_quantity_only_when_allowed(self):
        assert _rules(validate_line(Decimal("0"), Decimal("10"))) == [LINE_QUANTITY_POSITIVE]
        assert validate_line(Decimal("0"), Decimal("10"), allow_zero_quantity=True) == ()

    def test_negative_quantity_never_allowed(self):
        violations = validate_line(Decimal("-1"), Decimal("10"), allow_zero_quantity=True)
        assert _rules(violations) == [LINE_QUANTITY_POSITIVE]

    def test_all_line_violations_reported(self):
        violations = validate_line(Decimal("0"), Decimal("-1"), Decimal("-5"))
        assert _rules(violations) == [
            LINE_QUANTITY_POSITIVE,
            LINE_PRICE_NON_NEGATIVE,
            LINE_TAX_RATE_NON_NEGATIVE,
        ]


class TestPaymentRules:
    def test_partial_and_full_payments(self):
        assert validate_payment(Decimal("10.00"), Decimal("120.00")) == ()
        assert validate_payment(Decimal("120.00"), Decimal("120.00")) == ()

    @pytest.mark.parametrize("amount", ["0", "-5", "120.01"])
    def test_out_of_range_rejected(self, amount):
        assert _rules(validate_payment(Decimal(amount), Decimal("120.00"))) == [
            PAYMENT_WITHIN_BALANCE
        ]
