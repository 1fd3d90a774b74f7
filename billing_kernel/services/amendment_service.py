"""
AmendmentService -- signed modifications of a signed quote.

    draft --send--> sent (resend) --sign--> signed
    draft / sent --cancel--> cancelled

An amendment has no ISSUED state: sending it allocates the
``AMD-YYYYMM-NNN`` number.  Each line records the quote line it modifies
(if any) and the excl-tax values before and after; the amendment totals
are the sum of the deltas and may be negative.  Signing runs the
AmendmentBillingResolver in the same transaction.
"""

from typing import Any, Iterable
from uuid import UUID

from billing_kernel.db.types import ZERO, round_money, to_decimal
from billing_kernel.domain.authorization import Actor
from billing_kernel.domain.collaborators import SubscriptionBillingGateway
from billing_kernel.domain.dtos import LineInput, SubscriptionMode
from billing_kernel.domain.lifecycle import Action, AmendmentStatus, DocumentKind, QuoteStatus
from billing_kernel.domain.tax import HUNDRED, TaxSplit, split_tax
from billing_kernel.domain.validation import RuleViolation, ValidationContext
from billing_kernel.exceptions import IllegalTransitionError
from billing_kernel.models.document import Amendment, AmendmentLine, Quote, QuoteLine
from billing_kernel.services.amendment_billing import AmendmentBillingResolver, BillingResolution
from billing_kernel.services.lifecycle import DocumentLifecycleService

SOURCE_LINE_ON_PARENT_QUOTE = "source_line_on_parent_quote"


class AmendmentService(DocumentLifecycleService):
    kind = DocumentKind.AMENDMENT
    model = Amendment
    line_model = AmendmentLine
    allow_zero_quantity = True

    def __init__(
        self,
        session,
        clock=None,
        authorizer=None,
        dispatcher=None,
        settings=None,
        auditor=None,
        subscription_gateway: SubscriptionBillingGateway | None = None,
    ):
        super().__init__(
            session,
            clock=clock,
            authorizer=authorizer,
            dispatcher=dispatcher,
            settings=settings,
            auditor=auditor,
        )
        self._resolver = AmendmentBillingResolver(
            session,
            clock=self._clock,
            settings=self._settings,
            auditor=self._auditor,
            subscription_gateway=subscription_gateway,
        )

    def create_from_quote(
        self,
        quote_id: UUID,
        actor: Actor,
        reason: str | None = None,
        lines: Iterable[LineInput] = (),
    ) -> Amendment:
        """
        Draft an amendment of a signed quote.  Tax rate and company are inherited.

        Raises:
            IllegalTransitionError: The quote is not signed.
        """
        quote: Quote = self._lock_document(Quote, quote_id)
        if quote.status != QuoteStatus.SIGNED.value:
            raise IllegalTransitionError(
                DocumentKind.QUOTE.value,
                str(quote.id),
                quote.status,
                "amend",
                "only a signed quote can be amended",
            )

        amendment = Amendment(
            company_id=quote.company_id,
            parent_quote=quote,
            tax_rate=quote.tax_rate,
            reason=reason,
            created_by_id=actor.actor_id,
        )
        return self._create(
            amendment,
            lines,
            actor,
            origin={"parent_quote_id": quote.id, "parent_quote_number": quote.number},
        )

    # Lines

    def _source_line(self, document: Amendment, line: LineInput) -> QuoteLine | None:
        if line.source_line_id is None:
            return None
        for quote_line in document.parent_quote.lines:
            if quote_line.id == line.source_line_id:
                return quote_line
        raise self._validation_error(
            document,
            (
                RuleViolation(
                    SOURCE_LINE_ON_PARENT_QUOTE,
                    f"Quote line {line.source_line_id} does not belong to the amended quote",
                ),
            ),
        )

    def _line_values(self, document: Amendment, line: LineInput) -> dict[str, Any]:
        values = super()._line_values(document, line)
        source = self._source_line(document, line)
        mode = line.subscription_mode or (source.subscription_mode if source else None)
        values["source_quote_line"] = source
        if values["tax_rate"] is None and source is not None:
            values["tax_rate"] = source.tax_rate
        values["subscription_mode"] = SubscriptionMode(mode).value if mode else None
        values["subscription_id"] = line.subscription_id or (
            source.subscription_id if source else None
        )
        return values

    def _compute_line(self, line: AmendmentLine, document: Amendment) -> TaxSplit:
        """
        old value = excl-tax total of the source quote line (0 for a new line)
        new value = excl-tax value of quantity x unit price; a tax-inclusive
                    price is split first, as on any other line
        line totals carry delta = new - old, taxed at the line rate
        """
        rate = self._line_tax_rate(line, document)
        source = line.source_quote_line
        old_value = source.total_excl_tax if source is not None else ZERO
        new_value = round_money(to_decimal(line.quantity) * to_decimal(line.unit_price))
        if line.tax_inclusive:
            new_value = split_tax(new_value, rate).amount_excl_tax
        delta = new_value - old_value
        tax = round_money(delta * rate / HUNDRED)

        line.old_value = old_value
        line.new_value = new_value
        line.delta = delta
        line.total_excl_tax = delta
        line.total_tax = tax
        line.total_incl_tax = delta + tax
        return TaxSplit(amount_excl_tax=delta, amount_tax=tax, amount_incl_tax=delta + tax)

    def _recompute_totals(self, document: Amendment) -> TaxSplit:
        totals = super()._recompute_totals(document)
        document.net_delta_incl_tax = totals.amount_incl_tax
        return totals

    def _validation_context(self, document: Amendment) -> ValidationContext:
        return ValidationContext(
            line_count=len(document.lines),
            amount_incl_tax=document.amount_incl_tax,
            signature=document.signature,
            parent_status=document.parent_quote.status,
        )

    def _on_transition(self, document: Amendment, transition, now, **details: Any) -> None:
        if transition.to_state == AmendmentStatus.SIGNED.value:
            document.signed_at = now
            document.signature = details.get("signature")
        super()._on_transition(document, transition, now, **details)

    # Transitions

    def send(self, amendment_id: UUID, actor: Actor) -> Amendment:
        """DRAFT -> SENT allocates the number; on SENT, records a resend."""
        return self._transition(amendment_id, Action.SEND, actor)

    def sign(self, amendment_id: UUID, actor: Actor, signature: str | None) -> BillingResolution:
        """SENT -> SIGNED, then derive the billing effect in the same transaction."""
        amendment = self._transition(amendment_id, Action.SIGN, actor, signature=signature)
        return self._resolver.resolve(amendment, actor)

    def resolve_billing(self, amendment_id: UUID, actor: Actor) -> BillingResolution:
        """Re-run the billing resolution of a signed amendment (e.g. once its invoice exists)."""
        amendment: Amendment = self._lock(amendment_id)
        return self._resolver.resolve(amendment, actor)

    def cancel(self, amendment_id: UUID, actor: Actor, reason: str | None = None) -> Amendment:
        return self._transition(
            amendment_id, Action.CANCEL, actor, reason=reason, metadata={"reason": reason}
        )
