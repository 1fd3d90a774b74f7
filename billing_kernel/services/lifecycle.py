"""
DocumentLifecycleService -- shared state machine mechanics for every document kind.

Responsibility:
    Executes one lifecycle action on one document: lock, resolve the
    transition, check the target-state rules, authorize, allocate the
    number on first emission, apply the status, record the audit event and
    schedule the post-commit dispatch.  Also owns draft editing (lines,
    totals) and draft deletion.

Architecture position:
    Kernel > Services -- imperative shell.  Per-kind services
    (QuoteService, InvoiceService, AmendmentService, CreditNoteService)
    subclass it and expose the named operations; the transition tables
    live in ``billing_kernel.domain.lifecycle``.

Invariants enforced:
    - Lost-update guard: the document is re-read ``FOR UPDATE`` with
      ``populate_existing`` before any decision is taken.
    - A number is allocated exactly once, inside the transaction of the
      transition into the kind's first emitted state, after the totals
      have been recomputed from the lines.
    - Totals are always the sum of the lines; they are never set directly.
    - One audit event per status change; a resend records
      ``document_resent`` and changes no status.
    - Lines of a non-draft document cannot be added, changed or removed
      (IllegalTransitionError here, ImmutabilityViolationError in the ORM).

Failure modes:
    - DocumentNotFoundError: unknown id.
    - NotAuthorizedError: the Authorizer refused the action.
    - IllegalTransitionError: action not legal from the current status.
    - ValidationFailedError: target-state rules violated (all of them listed).
    - NumberConflictError / RetryableError: from number allocation or locking.
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, ClassVar, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from billing_kernel.db.types import ZERO, round_money, to_decimal
from billing_kernel.domain.authorization import Actor
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.collaborators import (
    AllowAllAuthorizer,
    Authorizer,
    DocumentDispatcher,
    NullDispatcher,
)
from billing_kernel.domain.dtos import LineInput
from billing_kernel.domain.lifecycle import WORKFLOWS, Action, DocumentKind, is_draft
from billing_kernel.domain.settings import KernelSettings
from billing_kernel.domain.tax import TaxSplit, line_totals, split_tax, sum_totals
from billing_kernel.domain.validation import (
    RuleViolation,
    ValidationContext,
    evaluate_guard,
    validate_line,
)
from billing_kernel.domain.workflow import Transition, Workflow, resolve_transition
from billing_kernel.exceptions import (
    DocumentNotFoundError,
    IllegalTransitionError,
    NotAuthorizedError,
    RetryableError,
    ValidationFailedError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.document import DocumentBase, DocumentLineBase
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.base import BaseService
from billing_kernel.services.dispatch import schedule_dispatch
from billing_kernel.services.sequence_service import SequenceNumberGenerator

logger = get_logger("services.lifecycle")


class DocumentLifecycleService(BaseService[DocumentBase]):
    """
    Base class of the per-kind lifecycle services.

    Contract:
        Every public operation takes an ``Actor`` and works inside the
        caller's transaction.  Nothing here commits.

    Non-goals:
        - Does NOT render or send documents; it only schedules the
          ``DocumentDispatcher`` for after commit.
        - Does NOT decide which actions exist for a kind; that is the
          kind's ``Workflow``.
    """

    kind: ClassVar[DocumentKind]
    model: ClassVar[type[DocumentBase]]
    line_model: ClassVar[type[DocumentLineBase]]
    allow_zero_quantity: ClassVar[bool] = False

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        authorizer: Authorizer | None = None,
        dispatcher: DocumentDispatcher | None = None,
        settings: KernelSettings | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._authorizer = authorizer or AllowAllAuthorizer()
        self._dispatcher = dispatcher or NullDispatcher()
        self._settings = settings or KernelSettings()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._numbers = SequenceNumberGenerator(session, self._settings.policies, self._clock)

    @property
    def workflow(self) -> Workflow:
        return WORKFLOWS[self.kind]

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def get(self, document_id: UUID) -> DocumentBase:
        """Load a document without locking it."""
        document = self.session.get(self.model, document_id)
        if document is None:
            raise DocumentNotFoundError(self.kind.value, str(document_id))
        return document

    def _lock(self, document_id: UUID) -> DocumentBase:
        return self._lock_document(self.model, document_id)

    def _lock_document(self, model: type[DocumentBase], document_id: UUID) -> DocumentBase:
        """Re-read any document kind FOR UPDATE (parents of derived documents included)."""
        try:
            document = self.session.execute(
                select(model)
                .where(model.id == document_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        except OperationalError as exc:
            logger.warning(
                "document_lock_failed",
                extra={
                    "document_kind": model.kind.value,
                    "document_id": str(document_id),
                    "error": str(exc.orig),
                },
            )
            raise RetryableError(f"lock {model.kind.value}", str(exc.orig)) from exc

        if document is None:
            raise DocumentNotFoundError(model.kind.value, str(document_id))
        return document

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _authorize(self, actor: Actor, action: Action, document: DocumentBase) -> None:
        if self._authorizer.is_allowed(actor, action.value, document):
            return
        logger.warning(
            "action_not_authorized",
            extra={
                "action": action.value,
                "document_kind": self.kind.value,
                "document_id": str(document.id),
                "actor_id": str(actor.actor_id),
            },
        )
        raise NotAuthorizedError(
            str(actor.actor_id), action.value, self.kind.value, str(document.id)
        )

    def _require_draft(self, document: DocumentBase, action: Action) -> None:
        if not is_draft(self.kind, document.status):
            raise IllegalTransitionError(
                self.kind.value,
                str(document.id),
                document.status,
                action.value,
                "only a draft can be modified",
            )

    def _validation_error(
        self, document: DocumentBase, violations: Iterable[RuleViolation]
    ) -> ValidationFailedError:
        violations = tuple(violations)
        logger.warning(
            "validation_failed",
            extra={
                "document_kind": self.kind.value,
                "document_id": str(document.id),
                "rules": [v.rule for v in violations],
            },
        )
        return ValidationFailedError(
            self.kind.value,
            str(document.id),
            tuple(v.rule for v in violations),
            tuple(v.message for v in violations),
        )

    def _validation_context(self, document: DocumentBase) -> ValidationContext:
        """Snapshot the guard rules look at.  Kinds with parents extend it."""
        return ValidationContext(
            line_count=len(document.lines),
            client_id=getattr(document, "client_id", None),
            amount_incl_tax=document.amount_incl_tax,
            due_date=getattr(document, "due_date", None),
            signature=getattr(document, "signature", None),
            amount_paid=getattr(document, "amount_paid", None) or ZERO,
        )

    # -------------------------------------------------------------------------
    # Lines and totals
    # -------------------------------------------------------------------------

    def _line_values(self, document: DocumentBase, line: LineInput) -> dict[str, Any]:
        quantity = to_decimal(line.quantity)
        unit_price = to_decimal(line.unit_price)
        tax_rate = to_decimal(line.tax_rate) if line.tax_rate is not None else None

        violations = validate_line(
            quantity, unit_price, tax_rate, allow_zero_quantity=self.allow_zero_quantity
        )
        if violations:
            raise self._validation_error(document, violations)

        return {
            "description": line.description,
            "quantity": quantity,
            "unit_price": unit_price,
            "tax_rate": tax_rate,
            "tax_inclusive": bool(line.tax_inclusive),
        }

    def _build_line(
        self, document: DocumentBase, line: LineInput, position: int, actor: Actor
    ) -> DocumentLineBase:
        return self.line_model(
            position=position,
            created_by_id=actor.actor_id,
            **self._line_values(document, line),
        )

    def _apply_line(
        self, document: DocumentBase, target: DocumentLineBase, line: LineInput
    ) -> None:
        for key, value in self._line_values(document, line).items():
            setattr(target, key, value)

    def _line_tax_rate(self, line: DocumentLineBase, document: DocumentBase):
        return line.tax_rate if line.tax_rate is not None else document.tax_rate

    def _compute_line(self, line: DocumentLineBase, document: DocumentBase) -> TaxSplit:
        rate = self._line_tax_rate(line, document)
        if line.tax_inclusive:
            split = split_tax(round_money(line.quantity * line.unit_price), rate)
        else:
            split = line_totals(line.quantity, line.unit_price, rate)
        line.total_excl_tax = split.amount_excl_tax
        line.total_tax = split.amount_tax
        line.total_incl_tax = split.amount_incl_tax
        return split

    def _recompute_totals(self, document: DocumentBase) -> TaxSplit:
        totals = sum_totals(self._compute_line(line, document) for line in document.lines)
        document.amount_excl_tax = totals.amount_excl_tax
        document.amount_tax = totals.amount_tax
        document.amount_incl_tax = totals.amount_incl_tax
        return totals

    def _find_line(self, document: DocumentBase, line_id: UUID) -> DocumentLineBase:
        for line in document.lines:
            if line.id == line_id:
                return line
        raise DocumentNotFoundError(f"{self.kind.value}_line", str(line_id))

    def add_line(self, document_id: UUID, line: LineInput, actor: Actor) -> DocumentLineBase:
        """Append a line to a draft and recompute its totals."""
        document = self._lock(document_id)
        self._require_draft(document, Action.EDIT)
        self._authorize(actor, Action.EDIT, document)

        position = max((ln.position for ln in document.lines), default=0) + 1
        new_line = self._build_line(document, line, position, actor)
        document.lines.append(new_line)
        self._recompute_totals(document)
        self._touch(document, actor)
        self.session.flush()

        logger.info(
            "line_added",
            extra={
                "document_kind": self.kind.value,
                "document_id": str(document.id),
                "position": position,
                "amount_incl_tax": document.amount_incl_tax,
            },
        )
        return new_line

    def update_line(
        self, document_id: UUID, line_id: UUID, line: LineInput, actor: Actor
    ) -> DocumentLineBase:
        document = self._lock(document_id)
        self._require_draft(document, Action.EDIT)
        self._authorize(actor, Action.EDIT, document)

        target = self._find_line(document, line_id)
        self._apply_line(document, target, line)
        target.updated_by_id = actor.actor_id
        self._recompute_totals(document)
        self._touch(document, actor)
        self.session.flush()

        logger.info(
            "line_updated",
            extra={
                "document_kind": self.kind.value,
                "document_id": str(document.id),
                "line_id": str(line_id),
                "amount_incl_tax": document.amount_incl_tax,
            },
        )
        return target

    def remove_line(self, document_id: UUID, line_id: UUID, actor: Actor) -> DocumentBase:
        document = self._lock(document_id)
        self._require_draft(document, Action.EDIT)
        self._authorize(actor, Action.EDIT, document)

        target = self._find_line(document, line_id)
        document.lines.remove(target)
        self._recompute_totals(document)
        self._touch(document, actor)
        self.session.flush()

        logger.info(
            "line_removed",
            extra={
                "document_kind": self.kind.value,
                "document_id": str(document.id),
                "line_id": str(line_id),
            },
        )
        return document

    # -------------------------------------------------------------------------
    # Creation and deletion
    # -------------------------------------------------------------------------

    def _create(
        self,
        document: DocumentBase,
        lines: Iterable[LineInput],
        actor: Actor,
        origin: dict[str, Any] | None = None,
        built_lines: Iterable[DocumentLineBase] = (),
    ) -> DocumentBase:
        """Persist a new draft with its lines, totals and creation audit event."""
        self._authorize(actor, Action.CREATE, document)

        position = 0
        for line in built_lines:
            position += 1
            line.position = position
            document.lines.append(line)
        for line in lines:
            position += 1
            document.lines.append(self._build_line(document, line, position, actor))

        self._recompute_totals(document)
        self.session.add(document)
        self.session.flush()

        self._auditor.record_document_created(document, actor.actor_id, origin)
        logger.info(
            "document_created",
            extra={
                "document_kind": self.kind.value,
                "document_id": str(document.id),
                "company_id": str(document.company_id),
                "line_count": len(document.lines),
                "amount_incl_tax": document.amount_incl_tax,
            },
        )
        return document

    def delete_draft(self, document_id: UUID, actor: Actor) -> None:
        """Delete a draft that never received a number."""
        document = self._lock(document_id)
        if document.number is not None or not is_draft(self.kind, document.status):
            raise IllegalTransitionError(
                self.kind.value,
                str(document.id),
                document.status,
                Action.DELETE.value,
                "a numbered document can never be deleted",
            )
        self._authorize(actor, Action.DELETE, document)

        self._auditor.record_document_deleted(document, actor.actor_id)
        self.session.delete(document)
        self.session.flush()

        logger.info(
            "document_deleted",
            extra={"document_kind": self.kind.value, "document_id": str(document_id)},
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _touch(self, document: DocumentBase, actor: Actor) -> None:
        document.updated_by_id = actor.actor_id

    def _on_transition(
        self,
        document: DocumentBase,
        transition: Transition,
        now: datetime,
        **details: Any,
    ) -> None:
        """Kind-specific timestamps and fields.  Subclasses extend, then call super."""
        if transition.allocates_number:
            document.issued_at = now
        if transition.action == Action.SEND.value:
            document.sent_count = (document.sent_count or 0) + 1
            document.last_sent_at = now
        if transition.action == Action.CANCEL.value:
            document.cancelled_at = now
            document.cancel_reason = details.get("reason")

    def _transition(
        self,
        document_id: UUID,
        action: Action,
        actor: Actor,
        *,
        signature: str | None = None,
        metadata: dict[str, Any] | None = None,
        **details: Any,
    ) -> DocumentBase:
        """
        Apply ``action`` to the document.

        Order of operations:
            1. Lock and re-read
            2. Resolve the transition against the workflow
            3. Recompute totals (first emission), then check the guard rules
            4. Authorize
            5. Allocate the number (first emission)
            6. Apply status and timestamps, or count the resend
            7. Audit
            8. Schedule the post-commit dispatch
        """
        action = Action(action)
        document = self._lock(document_id)
        old_status = document.status

        with LogContext.bind(
            actor_id=actor.actor_id,
            document_kind=self.kind.value,
            document_id=document.id,
            company_id=document.company_id,
        ):
            result = resolve_transition(self.workflow, old_status, action.value)
            if not result.success:
                logger.warning(
                    "transition_rejected",
                    extra={
                        "action": action.value,
                        "current_state": old_status,
                        "reason": result.reason,
                    },
                )
                raise IllegalTransitionError(
                    self.kind.value, str(document.id), old_status, action.value, result.reason
                )

            transition = result.transition
            now = self._clock.now()

            if result.allocates_number:
                self._recompute_totals(document)

            ctx = self._validation_context(document)
            if signature is not None:
                ctx = replace(ctx, signature=signature)
            violations = evaluate_guard(transition.guard, ctx)
            if violations:
                raise self._validation_error(document, violations)

            self._authorize(actor, action, document)

            if result.is_resend:
                document.sent_count = (document.sent_count or 0) + 1
                document.last_sent_at = now
                self._touch(document, actor)
                self.session.flush()
                self._auditor.record_resend(document, actor.actor_id)
                logger.info(
                    "document_resent",
                    extra={"number": document.number, "sent_count": document.sent_count},
                )
            else:
                if result.allocates_number and document.number is None:
                    number = self._numbers.allocate_for(self.kind, now)
                    document.number = number.format()

                document.status = result.new_state
                self._on_transition(document, transition, now, signature=signature, **details)
                self._touch(document, actor)
                self.session.flush()

                self._auditor.record_transition(
                    document,
                    old_status,
                    result.new_state,
                    action.value,
                    actor.actor_id,
                    metadata,
                )
                logger.info(
                    "document_transitioned",
                    extra={
                        "action": action.value,
                        "from_state": old_status,
                        "to_state": result.new_state,
                        "number": document.number,
                    },
                )

            if action is Action.SEND:
                schedule_dispatch(self.session, self._dispatcher, self.kind, document.id)

        return document
