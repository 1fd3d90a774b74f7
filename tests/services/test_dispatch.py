"""
Post-commit dispatch: documents are rendered and sent only once the
transition that produced them is durable.
"""

from billing_kernel.services.dispatch import pending_dispatches
from billing_kernel.services.quote_service import QuoteService
from tests.fakes import FailingDispatcher


class TestDispatchTiming:
    def test_nothing_sent_before_commit(
        self, session, quote_service, issued_quote, admin_actor, recording_dispatcher
    ):
        quote_service.send(issued_quote.id, admin_actor)

        assert recording_dispatcher.dispatched == []
        assert pending_dispatches(session) == [("quote", issued_quote.id)]

    def test_sent_after_commit(
        self, session, quote_service, issued_quote, admin_actor, recording_dispatcher
    ):
        quote_service.send(issued_quote.id, admin_actor)
        session.commit()

        assert recording_dispatcher.dispatched == [("quote", issued_quote.id)]
        assert pending_dispatches(session) == []

    def test_rollback_discards(
        self, session, quote_service, issued_quote, admin_actor, recording_dispatcher, captured_logs
    ):
        quote_service.send(issued_quote.id, admin_actor)
        session.rollback()

        assert pending_dispatches(session) == []
        assert recording_dispatcher.dispatched == []
        assert any(r["message"] == "dispatches_discarded" for r in captured_logs())

    def test_only_send_dispatches(
        self, session, quote_service, draft_quote, admin_actor, recording_dispatcher
    ):
        quote_service.issue(draft_quote.id, admin_actor)
        session.commit()
        assert recording_dispatcher.dispatched == []

    def test_resend_dispatches_again(
        self, session, quote_service, issued_quote, admin_actor, recording_dispatcher
    ):
        quote_service.send(issued_quote.id, admin_actor)
        quote_service.send(issued_quote.id, admin_actor)
        session.commit()
        assert len(recording_dispatcher.dispatched) == 2


class TestDispatchFailure:
    def test_failure_is_logged_not_raised(
        self,
        session,
        deterministic_clock,
        authorizer,
        kernel_settings,
        auditor_service,
        issued_quote,
        admin_actor,
        captured_logs,
    ):
        dispatcher = FailingDispatcher()
        service = QuoteService(
            session,
            clock=deterministic_clock,
            authorizer=authorizer,
            dispatcher=dispatcher,
            settings=kernel_settings,
            auditor=auditor_service,
        )
        service.send(issued_quote.id, admin_actor)

        session.commit()

        assert dispatcher.attempts == 1
        assert issued_quote.status == "sent"
        failures = [r for r in captured_logs() if r["message"] == "dispatch_failed"]
        assert len(failures) == 1
        assert failures[0]["exc_type"] == "RuntimeError"
