"""
InvoiceService -- lifecycle of demands for payment.

    draft --issue--> issued --send--> sent (resend)
    issued / sent --mark_paid--> paid;  draft / issued / sent --cancel--> cancelled

Issuing allocates the ``FACT-YYYY-NNN`` number and requires lines, a
client, a due date and a positive total.  A paid invoice can never be
cancelled; it is reversed with a credit note.  An invoice with recorded
payments cannot be cancelled either.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from billing_kernel.db.types import round_money, to_decimal
from billing_kernel.domain.authorization import Actor
from billing_kernel.domain.dtos import LineInput
from billing_kernel.domain.lifecycle import Action, DocumentKind, InvoiceStatus, QuoteStatus
from billing_kernel.domain.validation import validate_payment
from billing_kernel.domain.workflow import resolve_transition
from billing_kernel.exceptions import IllegalTransitionError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.document import Invoice, InvoiceLine, Quote
from billing_kernel.services.lifecycle import DocumentLifecycleService

logger = get_logger("services.invoice")


class InvoiceService(DocumentLifecycleService):
    kind = DocumentKind.INVOICE
    model = Invoice
    line_model = InvoiceLine

    def create(
        self,
        actor: Actor,
        company_id: UUID,
        client_id: UUID | None = None,
        tax_rate: Decimal | None = None,
        due_date: date | None = None,
        lines: Iterable[LineInput] = (),
        notes: str | None = None,
    ) -> Invoice:
        """Create a standalone draft invoice."""
        invoice = Invoice(
            company_id=company_id,
            client_id=client_id,
            tax_rate=to_decimal(tax_rate) if tax_rate is not None else self._settings.default_tax_rate,
            due_date=due_date,
            notes=notes,
            created_by_id=actor.actor_id,
        )
        return self._create(invoice, lines, actor)

    def default_due_date(self) -> date:
        return self._clock.today() + timedelta(days=self._settings.payment_terms_days)

    def create_from_quote(self, quote_id: UUID, actor: Actor) -> Invoice:
        """
        Draft the main invoice of a signed quote, copying its lines.

        Raises:
            IllegalTransitionError: The quote is not signed or already has
                its main invoice.
        """
        quote: Quote = self._lock_document(Quote, quote_id)
        if quote.status != QuoteStatus.SIGNED.value:
            raise IllegalTransitionError(
                DocumentKind.QUOTE.value,
                str(quote.id),
                quote.status,
                "invoice",
                "an invoice can only be created from a signed quote",
            )
        if quote.invoice is not None:
            raise IllegalTransitionError(
                DocumentKind.QUOTE.value,
                str(quote.id),
                quote.status,
                "invoice",
                f"quote already invoiced by {quote.invoice.number or quote.invoice.id}",
            )

        today = self._clock.today()
        if quote.validity_date is not None and quote.validity_date >= today:
            due_date = quote.validity_date
        else:
            due_date = self.default_due_date()

        invoice = Invoice(
            company_id=quote.company_id,
            client_id=quote.client_id,
            parent_quote=quote,
            tax_rate=quote.tax_rate,
            due_date=due_date,
            notes=quote.notes,
            created_by_id=actor.actor_id,
        )
        copied = [
            InvoiceLine(
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_rate=line.tax_rate if line.tax_rate is not None else quote.tax_rate,
                tax_inclusive=bool(line.tax_inclusive),
                created_by_id=actor.actor_id,
            )
            for line in quote.lines
        ]
        return self._create(
            invoice,
            (),
            actor,
            origin={"parent_quote_id": quote.id, "parent_quote_number": quote.number},
            built_lines=copied,
        )

    def _on_transition(self, document: Invoice, transition, now, **details: Any) -> None:
        if transition.to_state == InvoiceStatus.PAID.value:
            document.amount_paid = (document.amount_paid or Decimal("0")) + details["amount"]
            document.paid_at = now
        super()._on_transition(document, transition, now, **details)

    # Transitions

    def issue(self, invoice_id: UUID, actor: Actor) -> Invoice:
        return self._transition(invoice_id, Action.ISSUE, actor)

    def send(self, invoice_id: UUID, actor: Actor) -> Invoice:
        return self._transition(invoice_id, Action.SEND, actor)

    def cancel(self, invoice_id: UUID, actor: Actor, reason: str | None = None) -> Invoice:
        return self._transition(
            invoice_id, Action.CANCEL, actor, reason=reason, metadata={"reason": reason}
        )

    def mark_paid(
        self, invoice_id: UUID, actor: Actor, amount: Decimal | None = None
    ) -> Invoice:
        """
        Record a payment.  ``amount=None`` pays the remaining balance.

        A partial payment is recorded without a status change; the payment
        that settles the balance moves the invoice to PAID.  Calling this on
        a PAID invoice does nothing.

        Raises:
            IllegalTransitionError: Invoice is draft or cancelled.
            ValidationFailedError: Amount is not positive or exceeds the balance due.
        """
        invoice: Invoice = self._lock(invoice_id)
        if invoice.status == InvoiceStatus.PAID.value:
            logger.info(
                "invoice_already_paid",
                extra={"document_id": str(invoice.id), "number": invoice.number},
            )
            return invoice

        result = resolve_transition(self.workflow, invoice.status, Action.MARK_PAID.value)
        if not result.success:
            raise IllegalTransitionError(
                self.kind.value,
                str(invoice.id),
                invoice.status,
                Action.MARK_PAID.value,
                result.reason,
            )

        balance_due = invoice.balance_due
        paid = round_money(to_decimal(amount)) if amount is not None else balance_due
        violations = validate_payment(paid, balance_due)
        if violations:
            raise self._validation_error(invoice, violations)

        self._authorize(actor, Action.MARK_PAID, invoice)

        if paid < balance_due:
            invoice.amount_paid = invoice.amount_paid + paid
            self._touch(invoice, actor)
            self.session.flush()
            self._auditor.record_payment(invoice, paid, actor.actor_id)
            logger.info(
                "partial_payment_recorded",
                extra={
                    "document_id": str(invoice.id),
                    "number": invoice.number,
                    "amount": paid,
                    "balance_due": invoice.balance_due,
                },
            )
            return invoice

        return self._transition(
            invoice_id,
            Action.MARK_PAID,
            actor,
            amount=paid,
            metadata={"amount": paid},
        )
