"""
Document ORM Models (``billing_kernel.models.document``).

Responsibility
--------------
SQLAlchemy persistence for the four document kinds and their lines:
``quotes``, ``invoices``, ``amendments``, ``credit_notes`` and one line
table per kind.

Architecture position
---------------------
**Kernel > Models**.  Imports from ``db/`` and the pure ``domain/``
enumerations only.

Invariants enforced
-------------------
* ``number`` is unique per kind (``uq_<table>_number``) and nullable until
  the first emitted state.
* ``status`` is stored as the lowercase enum value of the kind's status.
* Totals are persisted but always derived from the lines by the services.
* An amendment derives at most one invoice and at most one credit note
  (unique foreign keys); the resolver only ever sets one of them.
* A quote has at most one main invoice (``uq_invoices_parent_quote_id``).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar, Optional
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.db.types import ZERO
from billing_kernel.domain.dtos import DocumentSummary, LineSummary
from billing_kernel.domain.lifecycle import (
    AmendmentStatus,
    CreditNoteStatus,
    DocumentKind,
    InvoiceStatus,
    QuoteStatus,
)


# ---------------------------------------------------------------------------
# Shared columns
# ---------------------------------------------------------------------------


class DocumentBase(TrackedBase):
    """
    Columns shared by every document kind.

    Guarantees:
        - amount_incl_tax == amount_excl_tax + amount_tax once totals are
          recomputed.
        - sent_count / last_sent_at are the only fields a resend touches.
    """

    __abstract__ = True

    kind: ClassVar[DocumentKind]

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=ZERO)
    amount_excl_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    amount_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    amount_incl_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    sent_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_summary(self) -> DocumentSummary:
        return DocumentSummary(
            kind=self.kind.value,
            id=self.id,
            number=self.number,
            status=self.status,
            company_id=self.company_id,
            tax_rate=self.tax_rate,
            amount_excl_tax=self.amount_excl_tax,
            amount_tax=self.amount_tax,
            amount_incl_tax=self.amount_incl_tax,
            sent_count=self.sent_count,
            last_sent_at=self.last_sent_at,
            issued_at=self.issued_at,
            due_date=getattr(self, "due_date", None),
            lines=tuple(line.to_summary() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.number or self.id} [{self.status}]>"


class DocumentLineBase(TrackedBase):
    """
    Columns shared by every line table.

    ``tax_rate`` is NULL when the parent document's rate applies.
    ``tax_inclusive`` lines carry a tax-inclusive unit price (synthesized
    supplements and credits).
    """

    __abstract__ = True

    position: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    tax_inclusive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total_excl_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    total_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    total_incl_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)

    def to_summary(self) -> LineSummary:
        return LineSummary(
            position=self.position,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            total_excl_tax=self.total_excl_tax,
            total_tax=self.total_tax,
            total_incl_tax=self.total_incl_tax,
        )


# ---------------------------------------------------------------------------
# 1. Quote
# ---------------------------------------------------------------------------


class Quote(DocumentBase):
    """Price proposal; binding once SIGNED."""

    __tablename__ = "quotes"

    __table_args__ = (
        UniqueConstraint("number", name="uq_quotes_number"),
        Index("idx_quotes_company_id", "company_id"),
        Index("idx_quotes_status", "status"),
    )

    kind: ClassVar[DocumentKind] = DocumentKind.QUOTE

    client_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    validity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refusal_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lines: Mapped[list["QuoteLine"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="QuoteLine.position",
        lazy="selectin",
    )
    invoice: Mapped[Optional["Invoice"]] = relationship(
        back_populates="parent_quote",
        uselist=False,
    )
    amendments: Mapped[list["Amendment"]] = relationship(back_populates="parent_quote")

    def __init__(self, **kwargs):
        kwargs.setdefault("status", QuoteStatus.DRAFT.value)
        super().__init__(**kwargs)


class QuoteLine(DocumentLineBase):
    __tablename__ = "quote_lines"

    __table_args__ = (Index("idx_quote_lines_quote_id", "quote_id"),)

    document_id: Mapped[UUID] = mapped_column(
        "quote_id", UUIDString(), ForeignKey("quotes.id"), nullable=False
    )
    subscription_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    document: Mapped[Quote] = relationship(back_populates="lines")


# ---------------------------------------------------------------------------
# 2. Invoice
# ---------------------------------------------------------------------------


class Invoice(DocumentBase):
    """Demand for payment.  ``parent_quote`` is set only for a quote's main invoice."""

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("number", name="uq_invoices_number"),
        UniqueConstraint("parent_quote_id", name="uq_invoices_parent_quote_id"),
        Index("idx_invoices_company_id", "company_id"),
        Index("idx_invoices_status", "status"),
    )

    kind: ClassVar[DocumentKind] = DocumentKind.INVOICE

    client_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    parent_quote_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("quotes.id"), nullable=True
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lines: Mapped[list["InvoiceLine"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.position",
        lazy="selectin",
    )
    parent_quote: Mapped[Quote | None] = relationship(back_populates="invoice")
    credit_notes: Mapped[list["CreditNote"]] = relationship(back_populates="parent_invoice")

    def __init__(self, **kwargs):
        kwargs.setdefault("status", InvoiceStatus.DRAFT.value)
        super().__init__(**kwargs)

    @property
    def balance_due(self) -> Decimal:
        return self.amount_incl_tax - (self.amount_paid or ZERO)


class InvoiceLine(DocumentLineBase):
    __tablename__ = "invoice_lines"

    __table_args__ = (Index("idx_invoice_lines_invoice_id", "invoice_id"),)

    document_id: Mapped[UUID] = mapped_column(
        "invoice_id", UUIDString(), ForeignKey("invoices.id"), nullable=False
    )

    document: Mapped[Invoice] = relationship(back_populates="lines")


# ---------------------------------------------------------------------------
# 3. Credit note
# ---------------------------------------------------------------------------


class CreditNote(DocumentBase):
    """Reversal of part or all of an issued invoice.  Amounts are stored positive."""

    __tablename__ = "credit_notes"

    __table_args__ = (
        UniqueConstraint("number", name="uq_credit_notes_number"),
        Index("idx_credit_notes_company_id", "company_id"),
        Index("idx_credit_notes_parent_invoice_id", "parent_invoice_id"),
    )

    kind: ClassVar[DocumentKind] = DocumentKind.CREDIT_NOTE

    client_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    parent_invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=False
    )
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lines: Mapped[list["CreditNoteLine"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="CreditNoteLine.position",
        lazy="selectin",
    )
    parent_invoice: Mapped[Invoice] = relationship(back_populates="credit_notes")

    def __init__(self, **kwargs):
        kwargs.setdefault("status", CreditNoteStatus.DRAFT.value)
        super().__init__(**kwargs)


class CreditNoteLine(DocumentLineBase):
    __tablename__ = "credit_note_lines"

    __table_args__ = (Index("idx_credit_note_lines_credit_note_id", "credit_note_id"),)

    document_id: Mapped[UUID] = mapped_column(
        "credit_note_id", UUIDString(), ForeignKey("credit_notes.id"), nullable=False
    )

    document: Mapped[CreditNote] = relationship(back_populates="lines")


# ---------------------------------------------------------------------------
# 4. Amendment
# ---------------------------------------------------------------------------


class Amendment(DocumentBase):
    """
    Signed modification of a signed quote.

    ``net_delta_incl_tax`` mirrors ``amount_incl_tax`` and may be negative.
    """

    __tablename__ = "amendments"

    __table_args__ = (
        UniqueConstraint("number", name="uq_amendments_number"),
        UniqueConstraint("derived_invoice_id", name="uq_amendments_derived_invoice_id"),
        UniqueConstraint("derived_credit_note_id", name="uq_amendments_derived_credit_note_id"),
        Index("idx_amendments_company_id", "company_id"),
        Index("idx_amendments_parent_quote_id", "parent_quote_id"),
    )

    kind: ClassVar[DocumentKind] = DocumentKind.AMENDMENT

    parent_quote_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("quotes.id"), nullable=False
    )
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    net_delta_incl_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    derived_invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=True
    )
    derived_credit_note_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("credit_notes.id"), nullable=True
    )

    lines: Mapped[list["AmendmentLine"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="AmendmentLine.position",
        lazy="selectin",
    )
    parent_quote: Mapped[Quote] = relationship(back_populates="amendments")
    derived_invoice: Mapped[Invoice | None] = relationship(foreign_keys=[derived_invoice_id])
    derived_credit_note: Mapped[CreditNote | None] = relationship(
        foreign_keys=[derived_credit_note_id]
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", AmendmentStatus.DRAFT.value)
        super().__init__(**kwargs)

    @property
    def is_resolved(self) -> bool:
        return self.derived_invoice_id is not None or self.derived_credit_note_id is not None


class AmendmentLine(DocumentLineBase):
    """
    One modification.  ``old_value`` / ``new_value`` are excl-tax amounts;
    the line's totals carry ``delta = new_value - old_value``.
    """

    __tablename__ = "amendment_lines"

    __table_args__ = (Index("idx_amendment_lines_amendment_id", "amendment_id"),)

    document_id: Mapped[UUID] = mapped_column(
        "amendment_id", UUIDString(), ForeignKey("amendments.id"), nullable=False
    )
    source_quote_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("quote_lines.id"), nullable=True
    )
    old_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    new_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    delta: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    subscription_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    document: Mapped[Amendment] = relationship(back_populates="lines")
    source_quote_line: Mapped[QuoteLine | None] = relationship()


DOCUMENT_MODELS: dict[DocumentKind, type[DocumentBase]] = {
    DocumentKind.QUOTE: Quote,
    DocumentKind.INVOICE: Invoice,
    DocumentKind.AMENDMENT: Amendment,
    DocumentKind.CREDIT_NOTE: CreditNote,
}

LINE_MODELS: dict[DocumentKind, type[DocumentLineBase]] = {
    DocumentKind.QUOTE: QuoteLine,
    DocumentKind.INVOICE: InvoiceLine,
    DocumentKind.AMENDMENT: AmendmentLine,
    DocumentKind.CREDIT_NOTE: CreditNoteLine,
}
