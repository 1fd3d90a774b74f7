"""
AmendmentBillingResolver -- turns a signed amendment into its billing effect.

Responsibility:
    Given a SIGNED amendment, produce exactly one of:

    ======================  ==============================================
    net delta incl. tax     effect
    ======================  ==============================================
    > 0                     draft supplement Invoice for the delta
    < 0, invoice emitted    draft CreditNote against the quote's invoice
    < 0, no invoice         nothing; NO_INVOICE_TO_CREDIT (operator fixes)
    == 0                    recurring line changes forwarded to the
                            SubscriptionBillingGateway
    ======================  ==============================================

Architecture position:
    Kernel > Services.  Runs inside the transaction of the amendment's
    signature (AmendmentService.sign) and can be re-run on its own
    (AmendmentService.resolve_billing) once the missing invoice exists.

Invariants enforced:
    - At most one derived document per amendment; a resolved amendment
      returns ALREADY_RESOLVED.
    - The derived document's amount_incl_tax equals |net delta| exactly:
      its single line is tax-inclusive and split with the TaxSplitter.
    - A supplement invoice is linked through ``Amendment.derived_invoice``;
      ``Invoice.parent_quote`` stays reserved for the quote's main invoice.
    - Derived documents are drafts: their numbers are allocated when an
      operator issues them.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.db.types import ZERO
from billing_kernel.domain.authorization import Actor
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.collaborators import (
    NullSubscriptionGateway,
    SubscriptionBillingGateway,
)
from billing_kernel.domain.dtos import RECURRING_MODES, LineInput
from billing_kernel.domain.lifecycle import (
    CREDITABLE_INVOICE_STATUSES,
    AmendmentStatus,
    DocumentKind,
)
from billing_kernel.domain.settings import KernelSettings
from billing_kernel.exceptions import IllegalTransitionError, NoInvoiceToCreditError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.document import Amendment
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.credit_note_service import CreditNoteService
from billing_kernel.services.invoice_service import InvoiceService

logger = get_logger("services.amendment_billing")


class BillingOutcome(str, Enum):
    NEW_INVOICE = "new_invoice"
    NEW_CREDIT_NOTE = "new_credit_note"
    NO_OP = "no_op"
    ALREADY_RESOLVED = "already_resolved"
    NO_INVOICE_TO_CREDIT = "no_invoice_to_credit"


@dataclass(frozen=True)
class BillingResolution:
    """What signing an amendment produced."""

    outcome: BillingOutcome
    amendment_id: UUID
    net_delta_incl_tax: Decimal
    document_kind: str | None = None
    document_id: UUID | None = None
    subscription_updates: tuple[str, ...] = ()
    error: NoInvoiceToCreditError | None = None

    @property
    def created_document(self) -> bool:
        return self.outcome in (BillingOutcome.NEW_INVOICE, BillingOutcome.NEW_CREDIT_NOTE)


class AmendmentBillingResolver:
    """
    Derives the supplement invoice or credit note of a signed amendment.

    Non-goals:
        - Does NOT issue the derived document.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        auditor: AuditorService | None = None,
        subscription_gateway: SubscriptionBillingGateway | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or KernelSettings()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._gateway = subscription_gateway or NullSubscriptionGateway()
        # System path: the signing actor was authorized for the signature
        self._invoices = InvoiceService(
            session, clock=self._clock, settings=self._settings, auditor=self._auditor
        )
        self._credit_notes = CreditNoteService(
            session, clock=self._clock, settings=self._settings, auditor=self._auditor
        )

    def resolve(self, amendment: Amendment, actor: Actor) -> BillingResolution:
        """
        Resolve the billing effect of ``amendment``.

        Raises:
            IllegalTransitionError: The amendment is not SIGNED.
        """
        if amendment.status != AmendmentStatus.SIGNED.value:
            raise IllegalTransitionError(
                DocumentKind.AMENDMENT.value,
                str(amendment.id),
                amendment.status,
                "resolve_billing",
                "only a signed amendment has a billing effect",
            )

        delta = amendment.net_delta_incl_tax
        if amendment.is_resolved:
            resolution = self._already_resolved(amendment)
        elif delta > ZERO:
            resolution = self._bill_supplement(amendment, actor)
        elif delta < ZERO:
            resolution = self._credit_reduction(amendment, actor)
        else:
            resolution = self._forward_subscriptions(amendment)

        logger.info(
            "amendment_billing_resolved",
            extra={
                "amendment_id": str(amendment.id),
                "amendment_number": amendment.number,
                "net_delta_incl_tax": delta,
                "outcome": resolution.outcome.value,
                "derived_document_id": (
                    str(resolution.document_id) if resolution.document_id else None
                ),
            },
        )
        return resolution

    def _tax_rate(self, amendment: Amendment) -> Decimal:
        if amendment.tax_rate is not None and amendment.tax_rate > ZERO:
            return amendment.tax_rate
        return amendment.parent_quote.tax_rate

    def _already_resolved(self, amendment: Amendment) -> BillingResolution:
        if amendment.derived_invoice_id is not None:
            kind, document_id = DocumentKind.INVOICE.value, amendment.derived_invoice_id
        else:
            kind, document_id = DocumentKind.CREDIT_NOTE.value, amendment.derived_credit_note_id
        return BillingResolution(
            outcome=BillingOutcome.ALREADY_RESOLVED,
            amendment_id=amendment.id,
            net_delta_incl_tax=amendment.net_delta_incl_tax,
            document_kind=kind,
            document_id=document_id,
        )

    def _bill_supplement(self, amendment: Amendment, actor: Actor) -> BillingResolution:
        quote = amendment.parent_quote
        delta = amendment.net_delta_incl_tax
        rate = self._tax_rate(amendment)

        invoice = self._invoices.create(
            actor,
            company_id=quote.company_id,
            client_id=quote.client_id,
            tax_rate=rate,
            due_date=self._invoices.default_due_date(),
            lines=[
                LineInput(
                    description=f"Supplement following amendment {amendment.number}",
                    quantity=Decimal("1"),
                    unit_price=delta,
                    tax_rate=rate,
                    tax_inclusive=True,
                )
            ],
            notes=_amendment_note(amendment),
        )
        amendment.derived_invoice = invoice
        self._session.flush()
        self._auditor.record_derived_document(amendment, invoice, actor.actor_id, delta)

        return BillingResolution(
            outcome=BillingOutcome.NEW_INVOICE,
            amendment_id=amendment.id,
            net_delta_incl_tax=delta,
            document_kind=DocumentKind.INVOICE.value,
            document_id=invoice.id,
        )

    def _credit_reduction(self, amendment: Amendment, actor: Actor) -> BillingResolution:
        quote = amendment.parent_quote
        delta = amendment.net_delta_incl_tax
        invoice = quote.invoice

        if invoice is None or invoice.status not in CREDITABLE_INVOICE_STATUSES:
            error = NoInvoiceToCreditError(str(amendment.id), str(quote.id), -delta)
            logger.warning(
                "no_invoice_to_credit",
                extra={
                    "amendment_id": str(amendment.id),
                    "amendment_number": amendment.number,
                    "quote_id": str(quote.id),
                    "invoice_status": invoice.status if invoice is not None else None,
                    "amount_incl_tax": -delta,
                },
            )
            return BillingResolution(
                outcome=BillingOutcome.NO_INVOICE_TO_CREDIT,
                amendment_id=amendment.id,
                net_delta_incl_tax=delta,
                error=error,
            )

        rate = self._tax_rate(amendment)
        credit_note = self._credit_notes.create_from_invoice(
            invoice.id,
            actor,
            reason=_amendment_note(amendment),
            tax_rate=rate,
            lines=[
                LineInput(
                    description=f"Credit following amendment {amendment.number}",
                    quantity=Decimal("1"),
                    unit_price=-delta,
                    tax_rate=rate,
                    tax_inclusive=True,
                )
            ],
        )
        amendment.derived_credit_note = credit_note
        self._session.flush()
        self._auditor.record_derived_document(amendment, credit_note, actor.actor_id, delta)

        return BillingResolution(
            outcome=BillingOutcome.NEW_CREDIT_NOTE,
            amendment_id=amendment.id,
            net_delta_incl_tax=delta,
            document_kind=DocumentKind.CREDIT_NOTE.value,
            document_id=credit_note.id,
        )

    def _forward_subscriptions(self, amendment: Amendment) -> BillingResolution:
        updated: list[str] = []
        for line in amendment.lines:
            if line.subscription_mode not in RECURRING_MODES or not line.subscription_id:
                continue
            source = line.source_quote_line
            if (
                source is not None
                and source.quantity == line.quantity
                and source.unit_price == line.unit_price
            ):
                continue
            try:
                self._gateway.update_subscription(
                    line.subscription_id, line.quantity, line.unit_price
                )
            except Exception:
                logger.exception(
                    "subscription_update_failed",
                    extra={
                        "amendment_id": str(amendment.id),
                        "subscription_id": line.subscription_id,
                    },
                )
                continue
            updated.append(line.subscription_id)

        return BillingResolution(
            outcome=BillingOutcome.NO_OP,
            amendment_id=amendment.id,
            net_delta_incl_tax=amendment.net_delta_incl_tax,
            subscription_updates=tuple(updated),
        )


def _amendment_note(amendment: Amendment) -> str:
    note = f"Amendment {amendment.number}"
    if amendment.reason:
        note = f"{note}: {amendment.reason}"
    return note
