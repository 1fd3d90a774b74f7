"""
Post-commit document dispatch (``billing_kernel.services.dispatch``).

Rendering and e-mailing a document must only happen once the transition
that produced it is durable.  Services call ``schedule_dispatch`` inside
the transaction; the request is parked in ``session.info`` and handed to
the ``DocumentDispatcher`` from the session's ``after_commit`` hook.  A
rollback discards every pending request.

Dispatcher failures are logged and never propagated: the commit already
happened and cannot be undone by a failed e-mail.
"""

from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

from billing_kernel.domain.collaborators import DocumentDispatcher
from billing_kernel.logging_config import get_logger

logger = get_logger("services.dispatch")

_PENDING_KEY = "billing_kernel.pending_dispatches"


def schedule_dispatch(
    session: Session,
    dispatcher: DocumentDispatcher,
    kind: str,
    document_id: UUID,
) -> None:
    """Queue a dispatch to run after the session's transaction commits."""
    pending = session.info.setdefault(_PENDING_KEY, [])
    pending.append((dispatcher, getattr(kind, "value", kind), document_id))
    logger.debug(
        "dispatch_scheduled",
        extra={"document_kind": getattr(kind, "value", kind), "document_id": str(document_id)},
    )


def pending_dispatches(session: Session) -> list[tuple[str, UUID]]:
    return [(kind, document_id) for _, kind, document_id in session.info.get(_PENDING_KEY, [])]


@event.listens_for(Session, "after_commit")
def _run_pending_dispatches(session: Session) -> None:
    if session.in_nested_transaction():
        return
    pending = session.info.pop(_PENDING_KEY, [])
    for dispatcher, kind, document_id in pending:
        try:
            dispatcher.dispatch(kind, document_id)
        except Exception:
            logger.exception(
                "dispatch_failed",
                extra={"document_kind": kind, "document_id": str(document_id)},
            )
        else:
            logger.info(
                "document_dispatched",
                extra={"document_kind": kind, "document_id": str(document_id)},
            )


@event.listens_for(Session, "after_soft_rollback")
def _discard_pending_dispatches(session: Session, previous_transaction) -> None:
    # Savepoint rollbacks (counter creation races) keep the outer work alive
    if previous_transaction.parent is not None:
        return
    discarded = session.info.pop(_PENDING_KEY, [])
    if discarded:
        logger.info("dispatches_discarded", extra={"count": len(discarded)})
