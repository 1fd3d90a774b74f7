"""
QuoteService -- lifecycle of price proposals.

    draft --issue--> issued --send--> sent --accept--> accepted
                                       |                  |
                                       +------sign--------+--> signed
    refuse from sent / accepted; cancel and expire from any open state.

Issuing allocates the ``DEV-YYYY-NNN`` number.  Signing requires an
explicit signature on top of every issue rule.  Expiry is driven by the
scheduler through ``expire_if_needed`` / ``expire_overdue``.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from billing_kernel.db.types import to_decimal
from billing_kernel.domain.authorization import SYSTEM_ACTOR, Actor
from billing_kernel.domain.dtos import LineInput, SubscriptionMode
from billing_kernel.domain.lifecycle import Action, DocumentKind, QuoteStatus
from billing_kernel.logging_config import get_logger
from billing_kernel.models.document import Quote, QuoteLine
from billing_kernel.selectors.document_selector import DocumentSelector
from billing_kernel.services.lifecycle import DocumentLifecycleService

logger = get_logger("services.quote")


class QuoteService(DocumentLifecycleService):
    kind = DocumentKind.QUOTE
    model = Quote
    line_model = QuoteLine

    def create(
        self,
        actor: Actor,
        company_id: UUID,
        client_id: UUID | None = None,
        tax_rate: Decimal | None = None,
        validity_date: date | None = None,
        lines: Iterable[LineInput] = (),
        notes: str | None = None,
    ) -> Quote:
        """Create a draft quote.  Validity defaults to today + the configured validity days."""
        quote = Quote(
            company_id=company_id,
            client_id=client_id,
            tax_rate=to_decimal(tax_rate) if tax_rate is not None else self._settings.default_tax_rate,
            validity_date=validity_date
            or self._clock.today() + timedelta(days=self._settings.quote_validity_days),
            notes=notes,
            created_by_id=actor.actor_id,
        )
        return self._create(quote, lines, actor)

    def _line_values(self, document: Quote, line: LineInput) -> dict[str, Any]:
        values = super()._line_values(document, line)
        values["subscription_mode"] = (
            SubscriptionMode(line.subscription_mode).value if line.subscription_mode else None
        )
        values["subscription_id"] = line.subscription_id
        return values

    def _on_transition(self, document: Quote, transition, now, **details: Any) -> None:
        status = transition.to_state
        if status == QuoteStatus.ACCEPTED.value:
            document.accepted_at = now
        elif status == QuoteStatus.SIGNED.value:
            document.signed_at = now
            document.signature = details.get("signature")
        elif status == QuoteStatus.REFUSED.value:
            document.refused_at = now
            document.refusal_reason = details.get("reason")
        elif status == QuoteStatus.EXPIRED.value:
            document.expired_at = now
        super()._on_transition(document, transition, now, **details)

    # Transitions

    def issue(self, quote_id: UUID, actor: Actor) -> Quote:
        return self._transition(quote_id, Action.ISSUE, actor)

    def send(self, quote_id: UUID, actor: Actor) -> Quote:
        """ISSUED -> SENT; on a SENT quote, records a resend."""
        return self._transition(quote_id, Action.SEND, actor)

    def accept(self, quote_id: UUID, actor: Actor) -> Quote:
        return self._transition(quote_id, Action.ACCEPT, actor)

    def sign(self, quote_id: UUID, actor: Actor, signature: str | None) -> Quote:
        return self._transition(quote_id, Action.SIGN, actor, signature=signature)

    def refuse(self, quote_id: UUID, actor: Actor, reason: str | None = None) -> Quote:
        return self._transition(
            quote_id, Action.REFUSE, actor, reason=reason, metadata={"reason": reason}
        )

    def cancel(self, quote_id: UUID, actor: Actor, reason: str | None = None) -> Quote:
        return self._transition(
            quote_id, Action.CANCEL, actor, reason=reason, metadata={"reason": reason}
        )

    # Scheduled expiry

    def expire_if_needed(self, quote_id: UUID, actor: Actor | None = None) -> bool:
        """
        Expire the quote when today is past its validity date.

        Returns:
            True if the quote was expired by this call.
        """
        quote = self._lock(quote_id)
        if self.workflow.is_terminal(quote.status) or quote.validity_date is None:
            return False
        if not self._clock.today() > quote.validity_date:
            return False

        self._transition(
            quote_id,
            Action.EXPIRE,
            actor or SYSTEM_ACTOR,
            metadata={"validity_date": quote.validity_date},
        )
        return True

    def expire_overdue(self, actor: Actor | None = None) -> list[UUID]:
        """Expire every open quote past its validity date.  Returns the expired ids."""
        candidates = DocumentSelector(self.session).overdue_quote_ids(self._clock.today())
        expired = [qid for qid in candidates if self.expire_if_needed(qid, actor)]
        logger.info(
            "quotes_expired",
            extra={"candidates": len(candidates), "expired": len(expired)},
        )
        return expired
