"""
SequenceService -- monotonic sequence allocation via locked counter rows,
and SequenceNumberGenerator -- gap-free ``PREFIX-PERIOD-SEQ`` document numbers.

Responsibility:
    ``SequenceService`` hands out strictly increasing integers per named
    counter (audit chain ``seq``, document numbering scopes).
    ``SequenceNumberGenerator`` turns one counter per
    ``(kind, prefix, period)`` scope into document numbers and re-checks
    their uniqueness in the kind's table.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by the
    lifecycle services (numbers) and AuditorService (seq).

Invariants enforced:
    - Serialization: ``SELECT ... FOR UPDATE`` on the counter row (or
      BEGIN IMMEDIATE on SQLite) serializes concurrent allocations for the
      same scope.  Different numbering scopes never contend; the single
      ``audit_event`` counter is taken by every transition, so audited
      writes serialize on it.
    - Gap-free: the increment is only visible when the caller's transaction
      commits; a rollback returns the value.  Nothing here commits.
    - Seeding: on first use of a scope the counter starts from the highest
      existing sequence in that scope, compared as integers
      (``FACT-2025-1000`` > ``FACT-2025-999``).
    - A detected duplicate is fatal for the unit of work
      (NumberConflictError); the counter is never bumped again to skip it.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
    - RetryableError: lock timeout or deadlock while waiting for the
      counter row.
    - NumberConflictError: the allocated number already exists.

Audit relevance:
    Allocations are logged (``number_allocated``) with kind, scope and
    number.  The number itself becomes part of the transition's audit
    payload.
"""

from datetime import date, datetime
from typing import Callable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.lifecycle import DocumentKind
from billing_kernel.domain.numbering import (
    DEFAULT_NUMBERING_POLICIES,
    DEFAULT_PADDING,
    DocumentNumber,
    NumberingPolicy,
    counter_name,
    period_key_for,
    scope_like_pattern,
)
from billing_kernel.exceptions import NumberConflictError, RetryableError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.document import DOCUMENT_MODELS
from billing_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional named counters.

    Guarantees:
        - Strictly monotonic values per counter name via a locked row.
          The SQL aggregate-max-plus-one pattern is never used for
          allocation; a scan may only seed a brand-new counter.
        - Does NOT call ``session.commit()``.

    Usage:
        with session_scope() as session:
            seq = SequenceService(session).next_value("audit_event")
    """

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str, seed: Callable[[], int] | None = None) -> int:
        """
        Get the next value for a named sequence.

        Raises:
            RetryableError: Lock timeout or deadlock on the counter row.
        """
        try:
            return self._increment(sequence_name, seed)
        except OperationalError as exc:
            logger.warning(
                "sequence_lock_failed",
                extra={"sequence_name": sequence_name, "error": str(exc.orig)},
            )
            raise RetryableError(f"lock sequence {sequence_name}", str(exc.orig)) from exc

    def _increment(self, sequence_name: str, seed: Callable[[], int] | None) -> int:
        """
        1. Lock the counter row (or create it, starting from ``seed()``)
        2. Increment
        3. Return the new value

        Args:
            sequence_name: Name of the sequence.
            seed: Called once when the counter does not exist yet; returns
                the highest value already in use (0 when none).

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            start = seed() if seed is not None else 0
            # Savepoint so a creation race does not roll back the caller's work
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=start + 1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": counter.current_value},
                )
                return counter.current_value
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None


class SequenceNumberGenerator:
    """
    Allocates gap-free, period-scoped document numbers.

    Contract:
        ``allocate(kind, prefix, period_key)`` -> the next ``DocumentNumber``
        of that scope.  Must run inside the transaction that also commits
        the status change the number belongs to.

    Non-goals:
        - Does not change the document's status or assign the number to it.
        - Numbers are global per kind, not partitioned by tenant.
    """

    def __init__(
        self,
        session: Session,
        policies: Mapping[DocumentKind, NumberingPolicy] | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._sequences = SequenceService(session)
        self._policies = dict(policies or DEFAULT_NUMBERING_POLICIES)
        self._clock = clock or SystemClock()

    def policy_for(self, kind: DocumentKind) -> NumberingPolicy:
        kind = DocumentKind(kind)
        try:
            return self._policies[kind]
        except KeyError:
            raise KeyError(f"No numbering policy configured for {kind.value}") from None

    def _highest_sequence_in_scope(
        self, kind: DocumentKind, prefix: str, period_key: str, padding: int
    ) -> int:
        # Parsed and compared as integers: a string MAX() would rank 999 above 1000
        model = DOCUMENT_MODELS[kind]
        numbers = self._session.execute(
            select(model.number).where(model.number.like(scope_like_pattern(prefix, period_key)))
        ).scalars().all()
        highest = 0
        for value in numbers:
            parsed = DocumentNumber.try_parse(value, padding)
            if parsed is not None and parsed.prefix == prefix and parsed.period_key == period_key:
                highest = max(highest, parsed.sequence)
        return highest

    def _number_exists(self, kind: DocumentKind, number: str) -> bool:
        model = DOCUMENT_MODELS[kind]
        return self._session.execute(
            select(model.id).where(model.number == number).limit(1)
        ).first() is not None

    def allocate(self, kind: DocumentKind, prefix: str, period_key: str) -> DocumentNumber:
        """
        Allocate the next number of the ``prefix-period_key`` scope for ``kind``.

        Raises:
            NumberConflictError: The allocated number already exists.
            RetryableError: Lock timeout or deadlock; retry the whole operation.
        """
        kind = DocumentKind(kind)
        policy = self._policies.get(kind)
        padding = policy.padding if policy is not None else DEFAULT_PADDING
        name = counter_name(kind, prefix, period_key)

        try:
            value = self._sequences.next_value(
                name,
                seed=lambda: self._highest_sequence_in_scope(kind, prefix, period_key, padding),
            )
            number = DocumentNumber(prefix, period_key, value, padding)
            formatted = number.format()
            conflict = self._number_exists(kind, formatted)
        except OperationalError as exc:
            logger.warning(
                "number_allocation_lock_failed",
                extra={"document_kind": kind.value, "scope": name, "error": str(exc.orig)},
            )
            raise RetryableError("number_allocation", str(exc.orig)) from exc

        if conflict:
            logger.error(
                "number_conflict",
                extra={"document_kind": kind.value, "number": formatted},
            )
            raise NumberConflictError(kind.value, formatted)

        logger.info(
            "number_allocated",
            extra={"document_kind": kind.value, "scope": name, "number": formatted},
        )
        return number

    def allocate_for(
        self, kind: DocumentKind, moment: date | datetime | None = None
    ) -> DocumentNumber:
        """Allocate under the kind's configured policy, period taken from the clock."""
        policy = self.policy_for(kind)
        period_key = period_key_for(policy, moment or self._clock.now_utc())
        return self.allocate(kind, policy.prefix, period_key)
