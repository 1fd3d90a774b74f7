"""
Unit-of-work boundary (``billing_kernel.services.unit_of_work``).

``execute_in_transaction`` runs one operation in a fresh session and owns
its commit.  Kernel errors never escape: they are rolled back and returned
inside a ``TransitionOutcome``.  Only ``RetryableError`` is retried, from
scratch and in a new session, up to ``retries`` times.  Anything that is
not a ``BillingKernelError`` is a bug and propagates after the rollback.

Usage:
    outcome = execute_in_transaction(
        get_session_factory(),
        lambda session: InvoiceService(session, clock=clock).issue(invoice_id, actor).number,
        retries=3,
    )
    if not outcome.success:
        report(outcome.error_code, outcome.error)
"""

from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.orm import Session, sessionmaker

from billing_kernel.exceptions import BillingKernelError, RetryableError
from billing_kernel.logging_config import get_logger

logger = get_logger("services.unit_of_work")


@dataclass(frozen=True)
class TransitionOutcome:
    """Typed result of one unit of work."""

    success: bool
    value: Any = None
    error: BillingKernelError | None = None
    error_code: str | None = None
    attempts: int = 1


def execute_in_transaction(
    session_factory: sessionmaker[Session] | Callable[[], Session],
    operation: Callable[[Session], Any],
    retries: int = 0,
) -> TransitionOutcome:
    """
    Run ``operation(session)`` and commit it.

    Args:
        session_factory: Produces a new session per attempt.
        operation: The work; must not commit itself.
        retries: Extra attempts granted to RetryableError.

    Returns:
        TransitionOutcome with the operation's return value on success,
        or the kernel error and its code on failure.
    """
    if retries < 0:
        raise ValueError(f"retries must be >= 0, got {retries}")

    attempt = 0
    while True:
        attempt += 1
        session = session_factory()
        try:
            value = operation(session)
            session.commit()
        except RetryableError as exc:
            session.rollback()
            if attempt <= retries:
                logger.warning(
                    "transaction_retry",
                    extra={"attempt": attempt, "max_retries": retries, "error": str(exc)},
                )
                continue
            logger.warning(
                "transaction_retries_exhausted",
                extra={"attempts": attempt, "error_code": exc.code},
            )
            return TransitionOutcome(
                success=False, error=exc, error_code=exc.code, attempts=attempt
            )
        except BillingKernelError as exc:
            session.rollback()
            logger.info(
                "transaction_rejected",
                extra={"attempts": attempt, "error_code": exc.code, "error": str(exc)},
            )
            return TransitionOutcome(
                success=False, error=exc, error_code=exc.code, attempts=attempt
            )
        except Exception:
            session.rollback()
            logger.error("transaction_failed", exc_info=True, extra={"attempts": attempt})
            raise
        finally:
            session.close()

        logger.debug("transaction_committed", extra={"attempts": attempt})
        return TransitionOutcome(success=True, value=value, attempts=attempt)
