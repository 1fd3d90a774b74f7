"""Services for the billing kernel (write side)."""

from billing_kernel.services.sequence_service import SequenceNumberGenerator, SequenceService
from billing_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from billing_kernel.services.dispatch import pending_dispatches, schedule_dispatch
from billing_kernel.services.lifecycle import DocumentLifecycleService
from billing_kernel.services.quote_service import QuoteService
from billing_kernel.services.invoice_service import InvoiceService
from billing_kernel.services.credit_note_service import CreditNoteService
from billing_kernel.services.amendment_billing import (
    AmendmentBillingResolver,
    BillingOutcome,
    BillingResolution,
)
from billing_kernel.services.amendment_service import AmendmentService
from billing_kernel.services.unit_of_work import TransitionOutcome, execute_in_transaction

__all__ = [
    "AmendmentBillingResolver",
    "AmendmentService",
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "BillingOutcome",
    "BillingResolution",
    "CreditNoteService",
    "DocumentLifecycleService",
    "InvoiceService",
    "QuoteService",
    "SequenceNumberGenerator",
    "SequenceService",
    "TransitionOutcome",
    "execute_in_transaction",
    "pending_dispatches",
    "schedule_dispatch",
]
