"""
Target-state business rules (``billing_kernel.domain.validation``).

Each workflow guard names a set of rules.  The lifecycle service builds a
``ValidationContext`` snapshot from the locked document and calls
``evaluate_guard``; every violated rule is returned, in declaration order,
so the caller can report all of them at once.

Pure: no database access, no entity instances.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable
from uuid import UUID

from billing_kernel.db.types import ZERO
from billing_kernel.domain.lifecycle import (
    AMENDMENT_READY_TO_SEND,
    AMENDMENT_SIGN_OFF,
    CREDIT_NOTE_READY_TO_ISSUE,
    CREDITABLE_INVOICE_STATUSES,
    INVOICE_CANCELLABLE,
    INVOICE_READY_TO_ISSUE,
    QUOTE_READY_TO_ISSUE,
    QUOTE_SIGN_OFF,
    QuoteStatus,
)
from billing_kernel.domain.workflow import Guard


# Rule codes
HAS_LINES = "has_lines"
HAS_CLIENT = "has_client"
POSITIVE_TOTAL = "positive_total"
HAS_DUE_DATE = "has_due_date"
HAS_SIGNATURE = "has_signature"
PARENT_QUOTE_SIGNED = "parent_quote_signed"
INVOICE_CREDITABLE = "invoice_creditable"
CREDIT_WITHIN_INVOICE_TOTAL = "credit_within_invoice_total"
LINE_QUANTITY_POSITIVE = "line_quantity_positive"
LINE_PRICE_NON_NEGATIVE = "line_price_non_negative"
LINE_TAX_RATE_NON_NEGATIVE = "line_tax_rate_non_negative"
PAYMENT_WITHIN_BALANCE = "payment_within_balance"
NO_PAYMENTS_RECORDED = "no_payments_recorded"


@dataclass(frozen=True)
class ValidationContext:
    """Snapshot of everything the rules look at."""

    line_count: int = 0
    client_id: UUID | None = None
    amount_incl_tax: Decimal = ZERO
    due_date: date | None = None
    signature: str | None = None
    parent_status: str | None = None
    invoice_total: Decimal | None = None
    credited_total: Decimal = ZERO
    amount_paid: Decimal = ZERO


@dataclass(frozen=True)
class RuleViolation:
    rule: str
    message: str


_Rule = Callable[[ValidationContext], RuleViolation | None]


def _has_lines(ctx: ValidationContext) -> RuleViolation | None:
    if ctx.line_count < 1:
        return RuleViolation(HAS_LINES, "Document must contain at least one line")
    return None


def _has_client(ctx: ValidationContext) -> RuleViolation | None:
    if ctx.client_id is None:
        return RuleViolation(HAS_CLIENT, "Document must be addressed to a client")
    return None


def _positive_total(ctx: ValidationContext) -> RuleViolation | None:
    if ctx.amount_incl_tax <= 0:
        return RuleViolation(
            POSITIVE_TOTAL, f"Total incl. tax must be positive, got {ctx.amount_incl_tax}"
        )
    return None


def _has_due_date(ctx: ValidationContext) -> RuleViolation | None:
    if ctx.due_date is None:
        return RuleViolation(HAS_DUE_DATE, "Invoice must have a due date")
    return None


def _has_signature(ctx: ValidationContext) -> RuleViolation | None:
    if not ctx.signature or not ctx.signature.strip():
        return RuleViolation(HAS_SIGNATURE, "An explicit sign-off is required")
    return None


def _parent_quote_signed(ctx: ValidationContext) -> RuleViolation | None:
    if ctx.parent_status != QuoteStatus.SIGNED.value:
        return RuleViolation(
            PARENT_QUOTE_SIGNED,
            f"Parent quote must be signed, is '{ctx.parent_status}'",
        )
    return None


def _invoice_creditable(ctx: ValidationContext) -> RuleViolation | None:
    if ctx.parent_status not in CREDITABLE_INVOICE_STATUSES:
        return RuleViolation(
            INVOICE_CREDITABLE,
            f"Invoice in status '{ctx.parent_status}' cannot be credited",
        )
    return None


def _credit_within_invoice_total(ctx: ValidationContext) -> RuleViolation | None:
    if ctx.invoice_total is None:
        return None
    cumulative = ctx.credited_total + ctx.amount_incl_tax
    if cumulative > ctx.invoice_total:
        return RuleViolation(
            CREDIT_WITHIN_INVOICE_TOTAL,
            f"Cumulative credit {cumulative} exceeds invoice total {ctx.invoice_total}",
        )
    return None


def _no_payments_recorded(ctx: ValidationContext) -> RuleViolation | None:
    if ctx.amount_paid > 0:
        return RuleViolation(
            NO_PAYMENTS_RECORDED,
            f"Payments of {ctx.amount_paid} are recorded; credit the invoice instead",
        )
    return None


GUARD_RULES: dict[str, tuple[_Rule, ...]] = {
    QUOTE_READY_TO_ISSUE.name: (_has_lines, _has_client, _positive_total),
    QUOTE_SIGN_OFF.name: (_has_lines, _has_client, _positive_total, _has_signature),
    INVOICE_READY_TO_ISSUE.name: (_has_lines, _has_client, _has_due_date, _positive_total),
    INVOICE_CANCELLABLE.name: (_no_payments_recorded,),
    AMENDMENT_READY_TO_SEND.name: (_has_lines, _parent_quote_signed),
    AMENDMENT_SIGN_OFF.name: (_has_signature,),
    CREDIT_NOTE_READY_TO_ISSUE.name: (
        _has_lines,
        _positive_total,
        _invoice_creditable,
        _credit_within_invoice_total,
    ),
}


def evaluate_guard(guard: Guard | None, ctx: ValidationContext) -> tuple[RuleViolation, ...]:
    """Return every rule of ``guard`` that ``ctx`` violates (empty when valid)."""
    if guard is None:
        return ()
    rules = GUARD_RULES.get(guard.name)
    if rules is None:
        raise KeyError(f"No rules registered for guard '{guard.name}'")
    violations = []
    for rule in rules:
        violation = rule(ctx)
        if violation is not None:
            violations.append(violation)
    return tuple(violations)


def validate_line(
    quantity: Decimal,
    unit_price: Decimal,
    tax_rate: Decimal | None = None,
    allow_zero_quantity: bool = False,
) -> tuple[RuleViolation, ...]:
    """Checks applied to every line a caller submits.

    An amendment line may bring a quantity down to zero (service removed).
    """
    violations = []
    if quantity < 0 or (quantity == 0 and not allow_zero_quantity):
        violations.append(
            RuleViolation(LINE_QUANTITY_POSITIVE, f"Quantity must be positive, got {quantity}")
        )
    if unit_price < 0:
        violations.append(
            RuleViolation(LINE_PRICE_NON_NEGATIVE, f"Unit price must be >= 0, got {unit_price}")
        )
    if tax_rate is not None and tax_rate < 0:
        violations.append(
            RuleViolation(LINE_TAX_RATE_NON_NEGATIVE, f"Tax rate must be >= 0, got {tax_rate}")
        )
    return tuple(violations)


def validate_payment(amount: Decimal, balance_due: Decimal) -> tuple[RuleViolation, ...]:
    if amount <= 0 or amount > balance_due:
        return (
            RuleViolation(
                PAYMENT_WITHIN_BALANCE,
                f"Payment {amount} must be positive and at most the balance due {balance_due}",
            ),
        )
    return ()
