"""ORM models for the billing kernel."""

from billing_kernel.models.audit_event import AuditAction, AuditEvent
from billing_kernel.models.document import (
    DOCUMENT_MODELS,
    LINE_MODELS,
    Amendment,
    AmendmentLine,
    CreditNote,
    CreditNoteLine,
    DocumentBase,
    DocumentLineBase,
    Invoice,
    InvoiceLine,
    Quote,
    QuoteLine,
)
from billing_kernel.models.sequence import SequenceCounter

__all__ = [
    "AuditAction",
    "AuditEvent",
    "SequenceCounter",
    "DocumentBase",
    "DocumentLineBase",
    "Quote",
    "QuoteLine",
    "Invoice",
    "InvoiceLine",
    "Amendment",
    "AmendmentLine",
    "CreditNote",
    "CreditNoteLine",
    "DOCUMENT_MODELS",
    "LINE_MODELS",
]
