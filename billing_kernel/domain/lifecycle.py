"""
Document lifecycles (``billing_kernel.domain.lifecycle``).

Per-kind status enumerations and the workflow table for each document
kind.  Transition legality is data: the services look up
``WORKFLOWS[kind]`` and call ``resolve_transition``; nothing here
touches an entity.

    Quote       draft -> issued -> sent -> accepted -> signed*
                also -> refused*, cancelled*, expired*
    Invoice     draft -> issued -> sent (resend) -> paid*
                also -> cancelled* (never once paid)
    Amendment   draft -> sent (resend) -> signed*
                also -> cancelled* from draft / sent
    CreditNote  draft -> issued -> sent (resend) -> applied*
                also -> cancelled* from draft / issued
"""

from enum import Enum

from billing_kernel.domain.workflow import Guard, Transition, Workflow
from billing_kernel.logging_config import get_logger

logger = get_logger("domain.lifecycle")


class DocumentKind(str, Enum):
    QUOTE = "quote"
    INVOICE = "invoice"
    AMENDMENT = "amendment"
    CREDIT_NOTE = "credit_note"


class Action(str, Enum):
    """Every action the authorizer may be asked about."""

    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    ISSUE = "issue"
    SEND = "send"
    ACCEPT = "accept"
    SIGN = "sign"
    REFUSE = "refuse"
    CANCEL = "cancel"
    EXPIRE = "expire"
    MARK_PAID = "mark_paid"
    APPLY = "apply"


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    SENT = "sent"
    ACCEPTED = "accepted"
    SIGNED = "signed"
    REFUSED = "refused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


class AmendmentStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    SIGNED = "signed"
    CANCELLED = "cancelled"


class CreditNoteStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    SENT = "sent"
    APPLIED = "applied"
    CANCELLED = "cancelled"


STATUS_ENUMS: dict[DocumentKind, type[Enum]] = {
    DocumentKind.QUOTE: QuoteStatus,
    DocumentKind.INVOICE: InvoiceStatus,
    DocumentKind.AMENDMENT: AmendmentStatus,
    DocumentKind.CREDIT_NOTE: CreditNoteStatus,
}

# Invoice statuses a credit note (or a negative amendment) can be raised against
CREDITABLE_INVOICE_STATUSES: frozenset[str] = frozenset({
    InvoiceStatus.ISSUED.value,
    InvoiceStatus.SENT.value,
    InvoiceStatus.PAID.value,
})

# Credit notes that count against an invoice's creditable total
COUNTED_CREDIT_NOTE_STATUSES: frozenset[str] = frozenset({
    CreditNoteStatus.ISSUED.value,
    CreditNoteStatus.SENT.value,
    CreditNoteStatus.APPLIED.value,
})


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

QUOTE_READY_TO_ISSUE = Guard(
    name="quote_ready_to_issue",
    description="Quote has at least one line, a client and a positive total",
)

QUOTE_SIGN_OFF = Guard(
    name="quote_sign_off",
    description="Quote passes the issue checks and carries an explicit signature",
)

INVOICE_READY_TO_ISSUE = Guard(
    name="invoice_ready_to_issue",
    description="Invoice has lines, a client, a due date and a positive total",
)

INVOICE_CANCELLABLE = Guard(
    name="invoice_cancellable",
    description="No payment has been recorded against the invoice",
)

AMENDMENT_READY_TO_SEND = Guard(
    name="amendment_ready_to_send",
    description="Amendment has at least one line and its parent quote is signed",
)

AMENDMENT_SIGN_OFF = Guard(
    name="amendment_sign_off",
    description="Amendment carries an explicit signature",
)

CREDIT_NOTE_READY_TO_ISSUE = Guard(
    name="credit_note_ready_to_issue",
    description=(
        "Credit note has lines and a positive total, its invoice is still "
        "creditable and cumulative credit stays within the invoice total"
    ),
)

ALL_GUARDS: tuple[Guard, ...] = (
    QUOTE_READY_TO_ISSUE,
    QUOTE_SIGN_OFF,
    INVOICE_READY_TO_ISSUE,
    INVOICE_CANCELLABLE,
    AMENDMENT_READY_TO_SEND,
    AMENDMENT_SIGN_OFF,
    CREDIT_NOTE_READY_TO_ISSUE,
)


# -----------------------------------------------------------------------------
# Quote Workflow
# -----------------------------------------------------------------------------

_Q = QuoteStatus

QUOTE_WORKFLOW = Workflow(
    name="quote",
    description="Price proposal lifecycle, binding once signed",
    initial_state=_Q.DRAFT.value,
    states=tuple(s.value for s in QuoteStatus),
    transitions=(
        Transition(_Q.DRAFT.value, _Q.ISSUED.value, Action.ISSUE.value,
                   guard=QUOTE_READY_TO_ISSUE, allocates_number=True),
        Transition(_Q.ISSUED.value, _Q.SENT.value, Action.SEND.value),
        Transition(_Q.SENT.value, _Q.SENT.value, Action.SEND.value, is_resend=True),
        Transition(_Q.SENT.value, _Q.ACCEPTED.value, Action.ACCEPT.value),
        Transition(_Q.SENT.value, _Q.SIGNED.value, Action.SIGN.value, guard=QUOTE_SIGN_OFF),
        Transition(_Q.ACCEPTED.value, _Q.SIGNED.value, Action.SIGN.value, guard=QUOTE_SIGN_OFF),
        Transition(_Q.SENT.value, _Q.REFUSED.value, Action.REFUSE.value),
        Transition(_Q.ACCEPTED.value, _Q.REFUSED.value, Action.REFUSE.value),
        Transition(_Q.DRAFT.value, _Q.CANCELLED.value, Action.CANCEL.value),
        Transition(_Q.ISSUED.value, _Q.CANCELLED.value, Action.CANCEL.value),
        Transition(_Q.SENT.value, _Q.CANCELLED.value, Action.CANCEL.value),
        Transition(_Q.ACCEPTED.value, _Q.CANCELLED.value, Action.CANCEL.value),
        Transition(_Q.DRAFT.value, _Q.EXPIRED.value, Action.EXPIRE.value),
        Transition(_Q.ISSUED.value, _Q.EXPIRED.value, Action.EXPIRE.value),
        Transition(_Q.SENT.value, _Q.EXPIRED.value, Action.EXPIRE.value),
        Transition(_Q.ACCEPTED.value, _Q.EXPIRED.value, Action.EXPIRE.value),
    ),
    terminal_states=(
        _Q.SIGNED.value,
        _Q.REFUSED.value,
        _Q.CANCELLED.value,
        _Q.EXPIRED.value,
    ),
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

_I = InvoiceStatus

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    description="Demand for payment, sequentially numbered once issued",
    initial_state=_I.DRAFT.value,
    states=tuple(s.value for s in InvoiceStatus),
    transitions=(
        Transition(_I.DRAFT.value, _I.ISSUED.value, Action.ISSUE.value,
                   guard=INVOICE_READY_TO_ISSUE, allocates_number=True),
        Transition(_I.ISSUED.value, _I.SENT.value, Action.SEND.value),
        Transition(_I.SENT.value, _I.SENT.value, Action.SEND.value, is_resend=True),
        Transition(_I.ISSUED.value, _I.PAID.value, Action.MARK_PAID.value),
        Transition(_I.SENT.value, _I.PAID.value, Action.MARK_PAID.value),
        Transition(_I.DRAFT.value, _I.CANCELLED.value, Action.CANCEL.value),
        Transition(_I.ISSUED.value, _I.CANCELLED.value, Action.CANCEL.value,
                   guard=INVOICE_CANCELLABLE),
        Transition(_I.SENT.value, _I.CANCELLED.value, Action.CANCEL.value,
                   guard=INVOICE_CANCELLABLE),
    ),
    terminal_states=(_I.PAID.value, _I.CANCELLED.value),
)


# -----------------------------------------------------------------------------
# Amendment Workflow
# -----------------------------------------------------------------------------

_A = AmendmentStatus

AMENDMENT_WORKFLOW = Workflow(
    name="amendment",
    description="Signed modification of a signed quote, expressed as a delta",
    initial_state=_A.DRAFT.value,
    states=tuple(s.value for s in AmendmentStatus),
    transitions=(
        Transition(_A.DRAFT.value, _A.SENT.value, Action.SEND.value,
                   guard=AMENDMENT_READY_TO_SEND, allocates_number=True),
        Transition(_A.SENT.value, _A.SENT.value, Action.SEND.value, is_resend=True),
        Transition(_A.SENT.value, _A.SIGNED.value, Action.SIGN.value, guard=AMENDMENT_SIGN_OFF),
        Transition(_A.DRAFT.value, _A.CANCELLED.value, Action.CANCEL.value),
        Transition(_A.SENT.value, _A.CANCELLED.value, Action.CANCEL.value),
    ),
    terminal_states=(_A.SIGNED.value, _A.CANCELLED.value),
)


# -----------------------------------------------------------------------------
# Credit Note Workflow
# -----------------------------------------------------------------------------

_C = CreditNoteStatus

CREDIT_NOTE_WORKFLOW = Workflow(
    name="credit_note",
    description="Partial or total reversal of an issued invoice",
    initial_state=_C.DRAFT.value,
    states=tuple(s.value for s in CreditNoteStatus),
    transitions=(
        Transition(_C.DRAFT.value, _C.ISSUED.value, Action.ISSUE.value,
                   guard=CREDIT_NOTE_READY_TO_ISSUE, allocates_number=True),
        Transition(_C.ISSUED.value, _C.SENT.value, Action.SEND.value),
        Transition(_C.SENT.value, _C.SENT.value, Action.SEND.value, is_resend=True),
        Transition(_C.SENT.value, _C.APPLIED.value, Action.APPLY.value),
        Transition(_C.DRAFT.value, _C.CANCELLED.value, Action.CANCEL.value),
        Transition(_C.ISSUED.value, _C.CANCELLED.value, Action.CANCEL.value),
    ),
    terminal_states=(_C.APPLIED.value, _C.CANCELLED.value),
)


WORKFLOWS: dict[DocumentKind, Workflow] = {
    DocumentKind.QUOTE: QUOTE_WORKFLOW,
    DocumentKind.INVOICE: INVOICE_WORKFLOW,
    DocumentKind.AMENDMENT: AMENDMENT_WORKFLOW,
    DocumentKind.CREDIT_NOTE: CREDIT_NOTE_WORKFLOW,
}

logger.debug(
    "document_workflows_registered",
    extra={"workflows": [w.name for w in WORKFLOWS.values()]},
)


def is_draft(kind: DocumentKind, status: str) -> bool:
    """True while the document is still in its initial, editable state."""
    return getattr(status, "value", status) == WORKFLOWS[DocumentKind(kind)].initial_state


def is_terminal(kind: DocumentKind, status: str) -> bool:
    return WORKFLOWS[DocumentKind(kind)].is_terminal(getattr(status, "value", status))
