"""
execute_in_transaction: one committed unit of work per call.

Uses real commits (committing_session_factory); never mixed with the
rollback-isolated ``session`` fixture.
"""

import pytest
from sqlalchemy.exc import OperationalError

from billing_kernel.domain.lifecycle import DocumentKind
from billing_kernel.exceptions import RetryableError
from billing_kernel.selectors.document_selector import DocumentSelector
from billing_kernel.services.quote_service import QuoteService
from billing_kernel.services.sequence_service import SequenceService
from billing_kernel.services.unit_of_work import execute_in_transaction
from tests.factories import consulting_line
from tests.fakes import RecordingDispatcher


@pytest.fixture
def quotes_for(deterministic_clock, authorizer, kernel_settings):
    """Build a QuoteService bound to the session of one unit of work."""
    dispatcher = RecordingDispatcher()

    def _build(session):
        return QuoteService(
            session,
            clock=deterministic_clock,
            authorizer=authorizer,
            dispatcher=dispatcher,
            settings=kernel_settings,
        )

    _build.dispatcher = dispatcher
    return _build


def _read(session_factory, fn):
    session = session_factory()
    try:
        return fn(DocumentSelector(session))
    finally:
        session.close()


class TestCommit:
    def test_success_commits(
        self, committing_session_factory, quotes_for, admin_actor, company_id, client_id
    ):
        def operation(session):
            service = quotes_for(session)
            quote = service.create(admin_actor, company_id, client_id, lines=[consulting_line()])
            return service.issue(quote.id, admin_actor).number

        outcome = execute_in_transaction(committing_session_factory, operation)

        assert outcome.success
        assert outcome.value == "DEV-2025-001"
        assert outcome.attempts == 1
        summary = _read(
            committing_session_factory,
            lambda sel: sel.get_by_number(DocumentKind.QUOTE, "DEV-2025-001"),
        )
        assert summary.status == "issued"
        assert summary.amount_incl_tax == 120

    def test_dispatch_follows_commit(
        self, committing_session_factory, quotes_for, admin_actor, company_id, client_id
    ):
        def operation(session):
            service = quotes_for(session)
            quote = service.create(admin_actor, company_id, client_id, lines=[consulting_line()])
            service.issue(quote.id, admin_actor)
            service.send(quote.id, admin_actor)
            return quote.id

        outcome = execute_in_transaction(committing_session_factory, operation)

        assert quotes_for.dispatcher.dispatched == [("quote", outcome.value)]


class TestRejection:
    def test_kernel_error_rolls_back(
        self, committing_session_factory, quotes_for, admin_actor, company_id, client_id
    ):
        def operation(session):
            service = quotes_for(session)
            quote = service.create(admin_actor, company_id, client_id, lines=[])
            service.issue(quote.id, admin_actor)

        outcome = execute_in_transaction(committing_session_factory, operation)

        assert not outcome.success
        assert outcome.error_code == "VALIDATION_FAILED"
        assert outcome.error.rules == ("has_lines", "positive_total")
        quotes = _read(committing_session_factory, lambda sel: sel.list_by_status(DocumentKind.QUOTE))
        assert quotes == []

    def test_other_exceptions_propagate(self, committing_session_factory, captured_logs):
        def operation(session):
            raise KeyError("bug")

        with pytest.raises(KeyError):
            execute_in_transaction(committing_session_factory, operation)
        assert any(r["message"] == "transaction_failed" for r in captured_logs())

    def test_negative_retries(self, committing_session_factory):
        with pytest.raises(ValueError):
            execute_in_transaction(committing_session_factory, lambda s: None, retries=-1)


class TestRetry:
    def test_retryable_error_retried(self, committing_session_factory, captured_logs):
        calls = []

        def operation(session):
            calls.append(1)
            if len(calls) == 1:
                raise RetryableError("lock quote", "database is locked")
            return "done"

        outcome = execute_in_transaction(committing_session_factory, operation, retries=2)

        assert outcome.success
        assert outcome.value == "done"
        assert outcome.attempts == 2
        assert any(r["message"] == "transaction_retry" for r in captured_logs())

    def test_retries_exhausted(self, committing_session_factory):
        def operation(session):
            raise RetryableError("lock quote", "database is locked")

        outcome = execute_in_transaction(committing_session_factory, operation, retries=2)

        assert not outcome.success
        assert outcome.error_code == "RETRYABLE"
        assert outcome.attempts == 3


class TestAuditCounterContention:
    """The audit chain counter is locked by every transition."""

    @pytest.fixture
    def draft_id(self, committing_session_factory, quotes_for, admin_actor, company_id, client_id):
        outcome = execute_in_transaction(
            committing_session_factory,
            lambda session: quotes_for(session)
            .create(admin_actor, company_id, client_id, lines=[consulting_line()])
            .id,
        )
        return outcome.value

    @pytest.fixture
    def audit_lock_failures(self, monkeypatch):
        """Make the next ``remaining[0]`` locks of the audit counter time out."""
        remaining = [0]
        original = SequenceService._locked_counter

        def _locked_counter(self, sequence_name):
            if sequence_name == SequenceService.AUDIT_EVENT and remaining[0] > 0:
                remaining[0] -= 1
                raise OperationalError(
                    "SELECT ... FOR UPDATE", {}, Exception("lock timeout")
                )
            return original(self, sequence_name)

        monkeypatch.setattr(SequenceService, "_locked_counter", _locked_counter)
        return remaining

    def test_lock_timeout_is_retried(
        self, committing_session_factory, quotes_for, draft_id, admin_actor, audit_lock_failures
    ):
        audit_lock_failures[0] = 1

        outcome = execute_in_transaction(
            committing_session_factory,
            lambda session: quotes_for(session).issue(draft_id, admin_actor).number,
            retries=1,
        )

        assert outcome.success
        assert outcome.attempts == 2
        assert outcome.value == "DEV-2025-001"

    def test_persistent_lock_timeout_is_retryable_outcome(
        self, committing_session_factory, quotes_for, draft_id, admin_actor, audit_lock_failures
    ):
        audit_lock_failures[0] = 10

        outcome = execute_in_transaction(
            committing_session_factory,
            lambda session: quotes_for(session).issue(draft_id, admin_actor),
            retries=1,
        )

        assert not outcome.success
        assert outcome.error_code == "RETRYABLE"
        assert outcome.attempts == 2
        summary = _read(
            committing_session_factory,
            lambda sel: sel.get(DocumentKind.QUOTE, draft_id),
        )
        assert summary.status == "draft"
        assert summary.number is None
