"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every document
    status change, resend, creation, derivation and payment.  Provides
    chain validation for tamper detection and trace queries for review.

Architecture position:
    Kernel > Services -- imperative shell, called by the lifecycle
    services and the amendment billing resolver.  It consumes transition
    facts; it never mutates business state.

Invariants enforced:
    - seq allocated via SequenceService (locked counter row).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash);
      every event links to its predecessor.
    - Append-only: AuditEvent rows are protected by ORM listeners.

Failure modes:
    - AuditChainBrokenError: a recomputed hash does not match the stored
      hash, or prev_hash does not match the predecessor's hash.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import AuditChainBrokenError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction, AuditEvent
from billing_kernel.services.sequence_service import SequenceService
from billing_kernel.utils.hashing import canonicalize_json, hash_audit_event, hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for one document, in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def first_action(self) -> str | None:
        return self.entries[0].action if self.entries else None

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None

    @property
    def status_history(self) -> tuple[tuple[str, str], ...]:
        """(old_status, new_status) pairs of every recorded transition."""
        return tuple(
            (e.payload.get("old_status"), e.payload.get("new_status"))
            for e in self.entries
            if e.action == AuditAction.DOCUMENT_TRANSITIONED.value
        )


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT interpret or act on audit events.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Public callers use the ``record_*`` methods.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = payload or {}
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=_jsonable(payload_data),
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Domain-specific recording methods

    def record_document_created(
        self,
        document,
        actor_id: UUID,
        origin: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=document.kind.value,
            entity_id=document.id,
            action=AuditAction.DOCUMENT_CREATED,
            actor_id=actor_id,
            payload={
                "status": document.status,
                "company_id": document.company_id,
                **(origin or {}),
            },
        )

    def record_transition(
        self,
        document,
        old_status: str,
        new_status: str,
        action: str,
        actor_id: UUID,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Record one status change: exactly one event per transition."""
        return self._create_audit_event(
            entity_type=document.kind.value,
            entity_id=document.id,
            action=AuditAction.DOCUMENT_TRANSITIONED,
            actor_id=actor_id,
            payload={
                "transition": action,
                "old_status": old_status,
                "new_status": new_status,
                "number": document.number,
                **(metadata or {}),
            },
        )

    def record_resend(self, document, actor_id: UUID) -> AuditEvent:
        return self._create_audit_event(
            entity_type=document.kind.value,
            entity_id=document.id,
            action=AuditAction.DOCUMENT_RESENT,
            actor_id=actor_id,
            payload={
                "status": document.status,
                "number": document.number,
                "sent_count": document.sent_count,
            },
        )

    def record_derived_document(
        self,
        amendment,
        derived,
        actor_id: UUID,
        net_delta_incl_tax: Decimal,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=derived.kind.value,
            entity_id=derived.id,
            action=AuditAction.DERIVED_DOCUMENT_CREATED,
            actor_id=actor_id,
            payload={
                "amendment_id": amendment.id,
                "amendment_number": amendment.number,
                "net_delta_incl_tax": net_delta_incl_tax,
                "amount_incl_tax": derived.amount_incl_tax,
            },
        )

    def record_payment(self, invoice, amount: Decimal, actor_id: UUID) -> AuditEvent:
        return self._create_audit_event(
            entity_type=invoice.kind.value,
            entity_id=invoice.id,
            action=AuditAction.PAYMENT_RECORDED,
            actor_id=actor_id,
            payload={
                "number": invoice.number,
                "amount": amount,
                "amount_paid": invoice.amount_paid,
                "status": invoice.status,
            },
        )

    def record_document_deleted(self, document, actor_id: UUID) -> AuditEvent:
        return self._create_audit_event(
            entity_type=document.kind.value,
            entity_id=document.id,
            action=AuditAction.DOCUMENT_DELETED,
            actor_id=actor_id,
            payload={"status": document.status},
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(str(events[0].id), "None", events[0].prev_hash)

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        str(event.id), expected_prev, event.prev_hash or "None"
                    )

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    # Trace and query methods

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        entity_type = getattr(entity_type, "value", entity_type)
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=event.action,
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )

        return AuditTrace(entity_type=entity_type, entity_id=entity_id, entries=entries)

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        result = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(limit)
        )
        return list(result.scalars().all())


def _jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    """Payload as stored in the JSON column (Decimal, UUID and dates as strings)."""
    return json.loads(canonicalize_json(payload))
