"""
Amendments and their billing effect.

Signing an amendment of a signed quote derives exactly one of:
a supplement invoice (positive delta), a credit note against the quote's
invoice (negative delta), or subscription updates (zero delta).
"""

from decimal import Decimal

import pytest

from billing_kernel.domain.lifecycle import AmendmentStatus, DocumentKind, InvoiceStatus
from billing_kernel.domain.validation import HAS_SIGNATURE
from billing_kernel.exceptions import IllegalTransitionError, ValidationFailedError
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.document import CreditNote, Invoice
from billing_kernel.services.amendment_billing import BillingOutcome
from billing_kernel.services.amendment_service import (
    SOURCE_LINE_ON_PARENT_QUOTE,
    AmendmentService,
)
from tests.fakes import RecordingGateway
from tests.factories import amended_line, consulting_line, new_line


class TestAmendmentLines:
    def test_new_line_delta(self, amendment_service, signed_quote, admin_actor):
        amendment = amendment_service.create_from_quote(
            signed_quote.id, admin_actor, lines=[new_line("1", "100.00")]
        )
        line = amendment.lines[0]
        assert line.old_value == Decimal("0")
        assert line.new_value == Decimal("100.00")
        assert line.delta == Decimal("100.00")
        assert amendment.net_delta_incl_tax == Decimal("120.00")
        assert amendment.tax_rate == signed_quote.tax_rate

    def test_modified_line_delta(self, amendment_service, signed_quote, admin_actor):
        source = signed_quote.lines[0]
        amendment = amendment_service.create_from_quote(
            signed_quote.id, admin_actor, lines=[amended_line(source, "1", "58.33")]
        )
        line = amendment.lines[0]
        assert line.source_quote_line_id == source.id
        assert line.old_value == Decimal("100.00")
        assert line.new_value == Decimal("58.33")
        assert line.delta == Decimal("-41.67")
        assert amendment.amount_tax == Decimal("-8.33")
        assert amendment.net_delta_incl_tax == Decimal("-50.00")

    def test_quantity_may_drop_to_zero(self, amendment_service, signed_quote, admin_actor):
        source = signed_quote.lines[0]
        amendment = amendment_service.create_from_quote(
            signed_quote.id, admin_actor, lines=[amended_line(source, "0", "50.00")]
        )
        assert amendment.net_delta_incl_tax == Decimal("-120.00")

    def test_unchanged_tax_inclusive_line_has_no_delta(
        self, quote_service, amendment_service, create_quote, admin_actor
    ):
        quote = create_quote(lines=[consulting_line("1", "120.00", tax_inclusive=True)])
        quote_service.issue(quote.id, admin_actor)
        quote_service.send(quote.id, admin_actor)
        quote_service.sign(quote.id, admin_actor, signature="Jane Client")
        source = quote.lines[0]
        assert source.total_excl_tax == Decimal("100.00")

        amendment = amendment_service.create_from_quote(
            quote.id,
            admin_actor,
            lines=[amended_line(source, "1", "120.00", tax_inclusive=True)],
        )

        line = amendment.lines[0]
        assert line.old_value == Decimal("100.00")
        assert line.new_value == Decimal("100.00")
        assert amendment.net_delta_incl_tax == Decimal("0.00")

    def test_tax_inclusive_price_change(
        self, quote_service, amendment_service, create_quote, admin_actor
    ):
        quote = create_quote(lines=[consulting_line("1", "120.00", tax_inclusive=True)])
        quote_service.issue(quote.id, admin_actor)
        quote_service.send(quote.id, admin_actor)
        quote_service.sign(quote.id, admin_actor, signature="Jane Client")

        amendment = amendment_service.create_from_quote(
            quote.id,
            admin_actor,
            lines=[amended_line(quote.lines[0], "1", "180.00", tax_inclusive=True)],
        )

        assert amendment.lines[0].delta == Decimal("50.00")
        assert amendment.net_delta_incl_tax == Decimal("60.00")

    def test_source_line_must_belong_to_quote(
        self, amendment_service, signed_quote, create_quote, admin_actor
    ):
        other_line = create_quote().lines[0]
        with pytest.raises(ValidationFailedError) as exc_info:
            amendment_service.create_from_quote(
                signed_quote.id, admin_actor, lines=[amended_line(other_line, "1", "10.00")]
            )
        assert exc_info.value.rule == SOURCE_LINE_ON_PARENT_QUOTE

    def test_unsigned_quote_cannot_be_amended(self, amendment_service, issued_quote, admin_actor):
        with pytest.raises(IllegalTransitionError):
            amendment_service.create_from_quote(
                issued_quote.id, admin_actor, lines=[new_line("1", "10.00")]
            )


class TestAmendmentLifecycle:
    def test_send_allocates_monthly_number(self, sent_amendment, signed_quote):
        amendment = sent_amendment(signed_quote, [new_line("1", "100.00")])
        assert amendment.status == AmendmentStatus.SENT.value
        assert amendment.number == "AMD-202501-001"

    def test_sign_requires_signature(self, amendment_service, sent_amendment, signed_quote, admin_actor):
        amendment = sent_amendment(signed_quote, [new_line("1", "100.00")])
        with pytest.raises(ValidationFailedError) as exc_info:
            amendment_service.sign(amendment.id, admin_actor, signature="")
        assert exc_info.value.rules == (HAS_SIGNATURE,)

    def test_cancel_sent_amendment(self, amendment_service, sent_amendment, signed_quote, admin_actor):
        amendment = sent_amendment(signed_quote, [new_line("1", "100.00")])
        amendment = amendment_service.cancel(amendment.id, admin_actor, reason="Withdrawn")
        assert amendment.status == AmendmentStatus.CANCELLED.value
        assert amendment.number == "AMD-202501-001"

    def test_unsigned_amendment_has_no_billing_effect(
        self, amendment_service, sent_amendment, signed_quote, admin_actor
    ):
        amendment = sent_amendment(signed_quote, [new_line("1", "100.00")])
        with pytest.raises(IllegalTransitionError):
            amendment_service.resolve_billing(amendment.id, admin_actor)


class TestSupplementInvoice:
    def test_positive_delta_drafts_supplement_invoice(
        self, session, amendment_service, sent_amendment, signed_quote, admin_actor, auditor_service
    ):
        amendment = sent_amendment(signed_quote, [new_line("1", "100.00")])

        resolution = amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")

        assert resolution.outcome is BillingOutcome.NEW_INVOICE
        assert resolution.created_document
        assert resolution.net_delta_incl_tax == Decimal("120.00")

        invoice = session.get(Invoice, resolution.document_id)
        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.number is None
        assert invoice.parent_quote_id is None
        assert invoice.client_id == signed_quote.client_id
        assert invoice.amount_excl_tax == Decimal("100.00")
        assert invoice.amount_tax == Decimal("20.00")
        assert invoice.amount_incl_tax == Decimal("120.00")
        assert invoice.lines[0].description == "Supplement following amendment AMD-202501-001"
        assert amendment.derived_invoice_id == invoice.id

        trace = auditor_service.get_trace(DocumentKind.INVOICE, invoice.id)
        assert AuditAction.DERIVED_DOCUMENT_CREATED.value in [e.action for e in trace.entries]

    def test_supplement_is_issued_like_any_invoice(
        self, invoice_service, amendment_service, sent_amendment, signed_quote, admin_actor
    ):
        amendment = sent_amendment(signed_quote, [new_line("1", "100.00")])
        resolution = amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")

        invoice = invoice_service.issue(resolution.document_id, admin_actor)
        assert invoice.number == "FACT-2025-001"

    def test_resolution_is_idempotent(
        self, session, amendment_service, sent_amendment, signed_quote, admin_actor
    ):
        amendment = sent_amendment(signed_quote, [new_line("1", "100.00")])
        first = amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")

        again = amendment_service.resolve_billing(amendment.id, admin_actor)

        assert again.outcome is BillingOutcome.ALREADY_RESOLVED
        assert again.document_id == first.document_id
        assert not again.created_document
        assert session.query(Invoice).filter(Invoice.client_id == signed_quote.client_id).count() == 1


class TestCreditForReduction:
    def test_no_invoice_to_credit(
        self, amendment_service, sent_amendment, signed_quote, admin_actor, captured_logs
    ):
        source = signed_quote.lines[0]
        amendment = sent_amendment(signed_quote, [amended_line(source, "1", "58.33")])

        resolution = amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")

        assert resolution.outcome is BillingOutcome.NO_INVOICE_TO_CREDIT
        assert resolution.error.code == "NO_INVOICE_TO_CREDIT"
        assert resolution.error.amount_incl_tax == Decimal("50.00")
        assert resolution.document_id is None
        assert amendment.status == AmendmentStatus.SIGNED.value
        assert not amendment.is_resolved
        assert any(r["message"] == "no_invoice_to_credit" for r in captured_logs())

    def test_credit_note_once_invoice_is_issued(
        self,
        session,
        amendment_service,
        invoice_service,
        sent_amendment,
        signed_quote,
        admin_actor,
    ):
        source = signed_quote.lines[0]
        amendment = sent_amendment(signed_quote, [amended_line(source, "1", "58.33")])
        amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")

        invoice = invoice_service.create_from_quote(signed_quote.id, admin_actor)
        invoice_service.issue(invoice.id, admin_actor)

        resolution = amendment_service.resolve_billing(amendment.id, admin_actor)

        assert resolution.outcome is BillingOutcome.NEW_CREDIT_NOTE
        credit_note = session.get(CreditNote, resolution.document_id)
        assert credit_note.parent_invoice_id == invoice.id
        assert credit_note.amount_incl_tax == Decimal("50.00")
        assert credit_note.amount_excl_tax == Decimal("41.67")
        assert credit_note.amount_tax == Decimal("8.33")
        assert credit_note.reason == "Amendment AMD-202501-001: Scope change"

        again = amendment_service.resolve_billing(amendment.id, admin_actor)
        assert again.outcome is BillingOutcome.ALREADY_RESOLVED
        assert again.document_kind == DocumentKind.CREDIT_NOTE.value

    def test_draft_invoice_is_not_creditable(
        self, amendment_service, invoice_service, sent_amendment, signed_quote, admin_actor
    ):
        invoice_service.create_from_quote(signed_quote.id, admin_actor)
        source = signed_quote.lines[0]
        amendment = sent_amendment(signed_quote, [amended_line(source, "1", "58.33")])

        resolution = amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")
        assert resolution.outcome is BillingOutcome.NO_INVOICE_TO_CREDIT


class TestSubscriptionForwarding:
    @pytest.fixture
    def subscribed_quote(self, quote_service, create_quote, admin_actor):
        quote = create_quote(
            lines=[consulting_line(subscription_mode="monthly", subscription_id="sub-1")]
        )
        quote_service.issue(quote.id, admin_actor)
        quote_service.send(quote.id, admin_actor)
        return quote_service.sign(quote.id, admin_actor, signature="Jane Client")

    def test_zero_delta_forwards_changed_recurring_line(
        self, amendment_service, sent_amendment, subscribed_quote, admin_actor, recording_gateway
    ):
        source = subscribed_quote.lines[0]
        amendment = sent_amendment(subscribed_quote, [amended_line(source, "4", "25.00")])
        assert amendment.net_delta_incl_tax == Decimal("0")

        resolution = amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")

        assert resolution.outcome is BillingOutcome.NO_OP
        assert resolution.subscription_updates == ("sub-1",)
        assert recording_gateway.updates == [("sub-1", Decimal("4"), Decimal("25.00"))]
        assert not amendment.is_resolved

    def test_unchanged_line_not_forwarded(
        self, amendment_service, sent_amendment, subscribed_quote, admin_actor, recording_gateway
    ):
        source = subscribed_quote.lines[0]
        amendment = sent_amendment(subscribed_quote, [amended_line(source, "2", "50.00")])

        resolution = amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")

        assert resolution.outcome is BillingOutcome.NO_OP
        assert resolution.subscription_updates == ()
        assert recording_gateway.updates == []

    def test_gateway_failure_does_not_fail_the_signature(
        self,
        session,
        deterministic_clock,
        authorizer,
        recording_dispatcher,
        kernel_settings,
        auditor_service,
        subscribed_quote,
        admin_actor,
        captured_logs,
    ):
        service = AmendmentService(
            session,
            clock=deterministic_clock,
            authorizer=authorizer,
            dispatcher=recording_dispatcher,
            settings=kernel_settings,
            auditor=auditor_service,
            subscription_gateway=RecordingGateway(fail_for=frozenset({"sub-1"})),
        )
        source = subscribed_quote.lines[0]
        amendment = service.create_from_quote(
            subscribed_quote.id, admin_actor, lines=[amended_line(source, "4", "25.00")]
        )
        service.send(amendment.id, admin_actor)

        resolution = service.sign(amendment.id, admin_actor, signature="Jane Client")

        assert resolution.outcome is BillingOutcome.NO_OP
        assert resolution.subscription_updates == ()
        assert amendment.status == AmendmentStatus.SIGNED.value
        assert any(r["message"] == "subscription_update_failed" for r in captured_logs())


class TestDerivedAmountMatchesDelta:
    """The derived document carries |net delta| to the cent, whatever the rounding."""

    @pytest.mark.parametrize("unit_price", ["0.01", "33.33", "58.33", "99.99", "100.01", "187.77"])
    def test_derived_amount(
        self,
        session,
        amendment_service,
        issued_invoice,
        sent_amendment,
        signed_quote,
        admin_actor,
        unit_price,
    ):
        source = signed_quote.lines[0]
        amendment = sent_amendment(signed_quote, [amended_line(source, "1", unit_price)])

        resolution = amendment_service.sign(amendment.id, admin_actor, signature="Jane Client")

        model = Invoice if resolution.net_delta_incl_tax > 0 else CreditNote
        derived = session.get(model, resolution.document_id)
        assert derived.amount_incl_tax == abs(amendment.net_delta_incl_tax)
        assert derived.amount_excl_tax + derived.amount_tax == derived.amount_incl_tax
