"""
QuoteService: draft editing, issue / send / accept / sign, refusal,
cancellation, scheduled expiry.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.authorization import Actor
from billing_kernel.domain.lifecycle import DocumentKind, QuoteStatus
from billing_kernel.domain.validation import HAS_CLIENT, HAS_LINES, HAS_SIGNATURE, POSITIVE_TOTAL
from billing_kernel.exceptions import (
    DocumentNotFoundError,
    IllegalTransitionError,
    NotAuthorizedError,
    ValidationFailedError,
)
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.document import Quote
from billing_kernel.services.dispatch import pending_dispatches
from tests.factories import consulting_line


class TestDraft:
    def test_create_computes_totals(self, draft_quote):
        assert draft_quote.status == QuoteStatus.DRAFT.value
        assert draft_quote.number is None
        assert draft_quote.amount_excl_tax == Decimal("100.00")
        assert draft_quote.amount_tax == Decimal("20.00")
        assert draft_quote.amount_incl_tax == Decimal("120.00")
        assert draft_quote.lines[0].total_incl_tax == Decimal("120.00")

    def test_validity_defaults_to_thirty_days(self, draft_quote):
        # Clock is 2025-01-15
        assert draft_quote.validity_date == date(2025, 2, 14)

    def test_explicit_tax_rate(self, create_quote):
        quote = create_quote(tax_rate=Decimal("5.5"))
        assert quote.amount_tax == Decimal("5.50")

    def test_line_rate_overrides_document_rate(self, create_quote):
        quote = create_quote(lines=[consulting_line(tax_rate=Decimal("10"))])
        assert quote.amount_incl_tax == Decimal("110.00")

    def test_add_update_remove_line(self, quote_service, draft_quote, admin_actor):
        line = quote_service.add_line(
            draft_quote.id, consulting_line(quantity="1", unit_price="30.00"), admin_actor
        )
        assert line.position == 2
        assert draft_quote.amount_incl_tax == Decimal("156.00")

        quote_service.update_line(
            draft_quote.id, line.id, consulting_line(quantity="2", unit_price="30.00"), admin_actor
        )
        assert draft_quote.amount_excl_tax == Decimal("160.00")

        quote_service.remove_line(draft_quote.id, line.id, admin_actor)
        assert len(draft_quote.lines) == 1
        assert draft_quote.amount_incl_tax == Decimal("120.00")

    def test_invalid_line_rejected(self, quote_service, draft_quote, admin_actor):
        with pytest.raises(ValidationFailedError) as exc_info:
            quote_service.add_line(
                draft_quote.id, consulting_line(quantity="0"), admin_actor
            )
        assert exc_info.value.rule == "line_quantity_positive"

    def test_float_price_rejected(self, quote_service, draft_quote, admin_actor):
        from billing_kernel.domain.dtos import LineInput

        with pytest.raises(TypeError):
            quote_service.add_line(
                draft_quote.id, LineInput("Bad", Decimal("1"), 9.99), admin_actor
            )

    def test_unknown_line(self, quote_service, draft_quote, admin_actor):
        with pytest.raises(DocumentNotFoundError):
            quote_service.remove_line(draft_quote.id, uuid4(), admin_actor)

    def test_delete_draft(self, session, quote_service, draft_quote, admin_actor, auditor_service):
        quote_id = draft_quote.id
        quote_service.delete_draft(quote_id, admin_actor)
        assert session.get(Quote, quote_id) is None
        trace = auditor_service.get_trace(DocumentKind.QUOTE, quote_id)
        assert trace.last_action == AuditAction.DOCUMENT_DELETED.value

    def test_unknown_quote(self, quote_service, admin_actor):
        with pytest.raises(DocumentNotFoundError) as exc_info:
            quote_service.issue(uuid4(), admin_actor)
        assert exc_info.value.code == "DOCUMENT_NOT_FOUND"


class TestIssue:
    def test_issue_allocates_number(self, quote_service, draft_quote, admin_actor):
        quote = quote_service.issue(draft_quote.id, admin_actor)
        assert quote.status == QuoteStatus.ISSUED.value
        assert quote.number == "DEV-2025-001"
        assert quote.issued_at is not None

    def test_empty_quote_cannot_be_issued(self, quote_service, create_quote, admin_actor):
        quote = create_quote(lines=[])

        with pytest.raises(ValidationFailedError) as exc_info:
            quote_service.issue(quote.id, admin_actor)

        assert exc_info.value.code == "VALIDATION_FAILED"
        assert HAS_LINES in exc_info.value.rules
        assert POSITIVE_TOTAL in exc_info.value.rules
        assert quote.status == QuoteStatus.DRAFT.value
        assert quote.number is None

    def test_rejected_issue_consumes_no_number(self, quote_service, create_quote, admin_actor):
        empty = create_quote(lines=[])
        with pytest.raises(ValidationFailedError):
            quote_service.issue(empty.id, admin_actor)

        valid = quote_service.issue(create_quote().id, admin_actor)
        assert valid.number == "DEV-2025-001"

    def test_quote_needs_a_client(self, quote_service, create_quote, admin_actor):
        quote = create_quote(with_client=False)
        with pytest.raises(ValidationFailedError) as exc_info:
            quote_service.issue(quote.id, admin_actor)
        assert exc_info.value.rules == (HAS_CLIENT,)

    def test_issued_quote_lines_are_locked(self, quote_service, issued_quote, admin_actor):
        with pytest.raises(IllegalTransitionError):
            quote_service.add_line(issued_quote.id, consulting_line(), admin_actor)
        with pytest.raises(IllegalTransitionError):
            quote_service.delete_draft(issued_quote.id, admin_actor)

    def test_issue_twice_is_illegal(self, quote_service, issued_quote, admin_actor):
        with pytest.raises(IllegalTransitionError) as exc_info:
            quote_service.issue(issued_quote.id, admin_actor)
        assert exc_info.value.current_state == "issued"
        assert issued_quote.number == "DEV-2025-001"


class TestSend:
    def test_send_then_resend(
        self, session, quote_service, issued_quote, admin_actor, auditor_service
    ):
        quote = quote_service.send(issued_quote.id, admin_actor)
        assert quote.status == QuoteStatus.SENT.value
        assert quote.sent_count == 1

        quote = quote_service.send(issued_quote.id, admin_actor)
        assert quote.status == QuoteStatus.SENT.value
        assert quote.sent_count == 2
        assert quote.number == "DEV-2025-001"

        trace = auditor_service.get_trace(DocumentKind.QUOTE, quote.id)
        assert trace.last_action == AuditAction.DOCUMENT_RESENT.value
        assert trace.entries[-1].payload["sent_count"] == 2
        assert len(pending_dispatches(session)) == 2

    def test_dispatch_runs_after_commit(
        self, session, quote_service, issued_quote, admin_actor, recording_dispatcher
    ):
        quote_service.send(issued_quote.id, admin_actor)
        assert recording_dispatcher.dispatched == []

        session.commit()
        assert recording_dispatcher.dispatched == [("quote", issued_quote.id)]


class TestSignature:
    def test_full_path_to_signed(self, quote_service, issued_quote, admin_actor, auditor_service):
        quote_service.send(issued_quote.id, admin_actor)
        quote_service.accept(issued_quote.id, admin_actor)
        quote = quote_service.sign(issued_quote.id, admin_actor, signature="Jane Client")

        assert quote.status == QuoteStatus.SIGNED.value
        assert quote.signature == "Jane Client"
        assert quote.accepted_at is not None
        assert quote.signed_at is not None

        trace = auditor_service.get_trace(DocumentKind.QUOTE, quote.id)
        assert trace.status_history == (
            ("draft", "issued"),
            ("issued", "sent"),
            ("sent", "accepted"),
            ("accepted", "signed"),
        )

    @pytest.mark.parametrize("signature", [None, "  "])
    def test_sign_requires_signature(self, quote_service, issued_quote, admin_actor, signature):
        quote_service.send(issued_quote.id, admin_actor)
        with pytest.raises(ValidationFailedError) as exc_info:
            quote_service.sign(issued_quote.id, admin_actor, signature=signature)
        assert exc_info.value.rules == (HAS_SIGNATURE,)

    def test_signed_quote_is_terminal(self, quote_service, signed_quote, admin_actor):
        with pytest.raises(IllegalTransitionError):
            quote_service.cancel(signed_quote.id, admin_actor)

    def test_refuse(self, quote_service, issued_quote, admin_actor):
        quote_service.send(issued_quote.id, admin_actor)
        quote = quote_service.refuse(issued_quote.id, admin_actor, reason="Too expensive")
        assert quote.status == QuoteStatus.REFUSED.value
        assert quote.refusal_reason == "Too expensive"

    def test_cancel_draft(self, quote_service, draft_quote, admin_actor):
        quote = quote_service.cancel(draft_quote.id, admin_actor, reason="Client left")
        assert quote.status == QuoteStatus.CANCELLED.value
        assert quote.cancel_reason == "Client left"
        assert quote.number is None


class TestAuthorization:
    def test_accountant_cannot_issue_quotes(self, quote_service, draft_quote, accountant_actor):
        with pytest.raises(NotAuthorizedError) as exc_info:
            quote_service.issue(draft_quote.id, accountant_actor)
        assert exc_info.value.code == "NOT_AUTHORIZED"
        assert draft_quote.status == QuoteStatus.DRAFT.value

    def test_sales_can_run_the_quote(self, quote_service, draft_quote, sales_actor):
        quote_service.issue(draft_quote.id, sales_actor)
        quote_service.send(draft_quote.id, sales_actor)
        quote = quote_service.sign(draft_quote.id, sales_actor, signature="J. Client")
        assert quote.status == QuoteStatus.SIGNED.value

    def test_viewer_cannot_create(self, quote_service, viewer_actor, company_id, client_id):
        with pytest.raises(NotAuthorizedError):
            quote_service.create(viewer_actor, company_id, client_id=client_id)

    def test_other_tenant_refused(self, quote_service, draft_quote):
        outsider = Actor(actor_id=uuid4(), roles=("admin",), company_id=uuid4())
        with pytest.raises(NotAuthorizedError):
            quote_service.issue(draft_quote.id, outsider)


class TestExpiry:
    def test_not_expired_before_validity_date(
        self, quote_service, issued_quote, deterministic_clock
    ):
        deterministic_clock.advance(days=30)  # 2025-02-14, the validity date itself
        assert quote_service.expire_if_needed(issued_quote.id) is False
        assert issued_quote.status == QuoteStatus.ISSUED.value

    def test_expired_after_validity_date(
        self, quote_service, issued_quote, deterministic_clock, auditor_service
    ):
        deterministic_clock.advance(days=31)
        assert quote_service.expire_if_needed(issued_quote.id) is True

        quote = quote_service.get(issued_quote.id)
        assert quote.status == QuoteStatus.EXPIRED.value
        assert quote.expired_at is not None
        trace = auditor_service.get_trace(DocumentKind.QUOTE, quote.id)
        assert trace.status_history[-1] == ("issued", "expired")

    def test_expire_overdue_skips_terminal_quotes(
        self, quote_service, create_quote, signed_quote, deterministic_clock
    ):
        open_quote = create_quote()
        deterministic_clock.advance(days=45)

        expired = quote_service.expire_overdue()

        assert expired == [open_quote.id]
        assert signed_quote.status == QuoteStatus.SIGNED.value
