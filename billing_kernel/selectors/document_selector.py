"""
DocumentSelector -- read-only queries over quotes, invoices, amendments and
credit notes.

Every method returns ``DocumentSummary`` DTOs or plain values.  Number
ordering is always by the parsed integer sequence.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_kernel.db.types import ZERO
from billing_kernel.domain.dtos import DocumentSummary
from billing_kernel.domain.lifecycle import (
    COUNTED_CREDIT_NOTE_STATUSES,
    WORKFLOWS,
    DocumentKind,
)
from billing_kernel.domain.numbering import DocumentNumber, scope_like_pattern
from billing_kernel.models.document import (
    DOCUMENT_MODELS,
    Amendment,
    CreditNote,
    DocumentBase,
    Invoice,
    Quote,
)
from billing_kernel.selectors.base import BaseSelector


class DocumentSelector(BaseSelector[DocumentBase]):
    """Read-side access to documents of every kind."""

    def get(self, kind: DocumentKind, document_id: UUID) -> DocumentSummary | None:
        document = self.session.get(DOCUMENT_MODELS[DocumentKind(kind)], document_id)
        return document.to_summary() if document is not None else None

    def get_by_number(self, kind: DocumentKind, number: str) -> DocumentSummary | None:
        model = DOCUMENT_MODELS[DocumentKind(kind)]
        document = self.session.execute(
            select(model).where(model.number == number)
        ).scalar_one_or_none()
        return document.to_summary() if document is not None else None

    def list_by_status(
        self,
        kind: DocumentKind,
        status: str | None = None,
        company_id: UUID | None = None,
    ) -> list[DocumentSummary]:
        model = DOCUMENT_MODELS[DocumentKind(kind)]
        query = select(model)
        if status is not None:
            query = query.where(model.status == getattr(status, "value", status))
        if company_id is not None:
            query = query.where(model.company_id == company_id)
        documents = self.session.execute(query.order_by(model.created_at, model.id)).scalars()
        return [d.to_summary() for d in documents]

    def numbers_in_scope(self, kind: DocumentKind, prefix: str, period_key: str) -> list[str]:
        """Every number of one ``PREFIX-PERIOD`` scope, in sequence order."""
        model = DOCUMENT_MODELS[DocumentKind(kind)]
        values = self.session.execute(
            select(model.number).where(model.number.like(scope_like_pattern(prefix, period_key)))
        ).scalars().all()
        parsed = [DocumentNumber.try_parse(v) for v in values]
        return [n.format() for n in sorted(p for p in parsed if p is not None)]

    def credited_total(self, invoice_id: UUID, exclude_id: UUID | None = None) -> Decimal:
        """Sum of the emitted, non-cancelled credit notes raised against an invoice."""
        query = select(CreditNote.id, CreditNote.amount_incl_tax).where(
            CreditNote.parent_invoice_id == invoice_id,
            CreditNote.status.in_(sorted(COUNTED_CREDIT_NOTE_STATUSES)),
        )
        total = ZERO
        for credit_note_id, amount in self.session.execute(query):
            if credit_note_id != exclude_id:
                total += amount
        return total

    def overdue_quote_ids(self, today: date) -> list[UUID]:
        """Non-terminal quotes whose validity date is before ``today``."""
        workflow = WORKFLOWS[DocumentKind.QUOTE]
        open_states = [s for s in workflow.states if not workflow.is_terminal(s)]
        return list(
            self.session.execute(
                select(Quote.id)
                .where(
                    Quote.status.in_(open_states),
                    Quote.validity_date.is_not(None),
                    Quote.validity_date < today,
                )
                .order_by(Quote.validity_date, Quote.id)
            ).scalars()
        )

    def main_invoice(self, quote_id: UUID) -> DocumentSummary | None:
        invoice = self.session.execute(
            select(Invoice).where(Invoice.parent_quote_id == quote_id)
        ).scalar_one_or_none()
        return invoice.to_summary() if invoice is not None else None

    def derived_document(self, amendment_id: UUID) -> DocumentSummary | None:
        """The supplement invoice or credit note an amendment produced, if any."""
        amendment = self.session.get(Amendment, amendment_id)
        if amendment is None:
            return None
        if amendment.derived_invoice is not None:
            return amendment.derived_invoice.to_summary()
        if amendment.derived_credit_note is not None:
            return amendment.derived_credit_note.to_summary()
        return None
