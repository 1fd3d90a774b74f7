"""
CreditNoteService -- partial or total reversal of an emitted invoice.

    draft --issue--> issued --send--> sent (resend) --apply--> applied
    draft / issued --cancel--> cancelled

Amounts are stored positive; the reversal is carried by the kind.  Issuing
allocates the ``AV-YYYY-NNN`` number and checks, under a lock on the
parent invoice, that the invoice is still creditable and that the credit
issued against it stays within its total.  The credit note that brings the
credited amount up to the invoice total cancels the invoice.
"""

from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from billing_kernel.db.types import to_decimal
from billing_kernel.domain.authorization import Actor
from billing_kernel.domain.dtos import LineInput
from billing_kernel.domain.lifecycle import (
    CREDITABLE_INVOICE_STATUSES,
    Action,
    CreditNoteStatus,
    DocumentKind,
    InvoiceStatus,
)
from billing_kernel.domain.validation import ValidationContext
from billing_kernel.exceptions import IllegalTransitionError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.document import CreditNote, CreditNoteLine, Invoice
from billing_kernel.selectors.document_selector import DocumentSelector
from billing_kernel.services.invoice_service import InvoiceService
from billing_kernel.services.lifecycle import DocumentLifecycleService

logger = get_logger("services.credit_note")

# A fully credited invoice in one of these states is cancelled
CANCELLABLE_INVOICE_STATUSES = frozenset({InvoiceStatus.ISSUED.value, InvoiceStatus.SENT.value})


class CreditNoteService(DocumentLifecycleService):
    kind = DocumentKind.CREDIT_NOTE
    model = CreditNote
    line_model = CreditNoteLine

    def create_from_invoice(
        self,
        invoice_id: UUID,
        actor: Actor,
        reason: str | None = None,
        lines: Iterable[LineInput] = (),
        tax_rate: Decimal | None = None,
    ) -> CreditNote:
        """
        Draft a credit note against an emitted invoice.

        Raises:
            IllegalTransitionError: The invoice is draft or cancelled.
        """
        invoice: Invoice = self._lock_document(Invoice, invoice_id)
        if invoice.status not in CREDITABLE_INVOICE_STATUSES:
            raise IllegalTransitionError(
                DocumentKind.INVOICE.value,
                str(invoice.id),
                invoice.status,
                "credit",
                "only an issued, sent or paid invoice can be credited",
            )

        credit_note = CreditNote(
            company_id=invoice.company_id,
            client_id=invoice.client_id,
            parent_invoice=invoice,
            tax_rate=to_decimal(tax_rate) if tax_rate is not None else invoice.tax_rate,
            reason=reason,
            created_by_id=actor.actor_id,
        )
        return self._create(
            credit_note,
            lines,
            actor,
            origin={"parent_invoice_id": invoice.id, "parent_invoice_number": invoice.number},
        )

    def _validation_context(self, document: CreditNote) -> ValidationContext:
        invoice = document.parent_invoice
        return ValidationContext(
            line_count=len(document.lines),
            client_id=document.client_id,
            amount_incl_tax=document.amount_incl_tax,
            parent_status=invoice.status,
            invoice_total=invoice.amount_incl_tax,
            credited_total=DocumentSelector(self.session).credited_total(
                invoice.id, exclude_id=document.id
            ),
        )

    def _on_transition(self, document: CreditNote, transition, now, **details: Any) -> None:
        if transition.to_state == CreditNoteStatus.APPLIED.value:
            document.applied_at = now
        super()._on_transition(document, transition, now, **details)

    # Transitions

    def issue(self, credit_note_id: UUID, actor: Actor) -> CreditNote:
        """
        DRAFT -> ISSUED.  When the credit issued against the invoice now
        equals its total, the invoice is cancelled in the same transaction
        (unless it is paid or carries payments).
        """
        # Parent invoice first: concurrent credit notes of one invoice serialize here
        credit_note = self.get(credit_note_id)
        invoice: Invoice = self._lock_document(Invoice, credit_note.parent_invoice_id)
        credit_note = self._transition(credit_note_id, Action.ISSUE, actor)
        self._cancel_if_fully_credited(invoice, credit_note, actor)
        return credit_note

    def _cancel_if_fully_credited(
        self, invoice: Invoice, credit_note: CreditNote, actor: Actor
    ) -> None:
        credited = DocumentSelector(self.session).credited_total(invoice.id)
        if credited < invoice.amount_incl_tax:
            return
        if invoice.status not in CANCELLABLE_INVOICE_STATUSES or invoice.amount_paid > 0:
            logger.info(
                "fully_credited_invoice_kept",
                extra={
                    "document_id": str(invoice.id),
                    "number": invoice.number,
                    "status": invoice.status,
                    "amount_paid": invoice.amount_paid,
                },
            )
            return

        # System path: issuing the credit note was the authorized act
        invoices = InvoiceService(
            self.session, clock=self._clock, settings=self._settings, auditor=self._auditor
        )
        invoices.cancel(
            invoice.id,
            actor,
            reason=f"Fully credited by {credit_note.number}",
        )
        logger.info(
            "invoice_cancelled_by_credit_note",
            extra={
                "document_id": str(invoice.id),
                "number": invoice.number,
                "credit_note_number": credit_note.number,
                "credited_total": credited,
            },
        )

    def send(self, credit_note_id: UUID, actor: Actor) -> CreditNote:
        return self._transition(credit_note_id, Action.SEND, actor)

    def apply(self, credit_note_id: UUID, actor: Actor) -> CreditNote:
        return self._transition(credit_note_id, Action.APPLY, actor)

    def cancel(
        self, credit_note_id: UUID, actor: Actor, reason: str | None = None
    ) -> CreditNote:
        return self._transition(
            credit_note_id, Action.CANCEL, actor, reason=reason, metadata={"reason": reason}
        )
