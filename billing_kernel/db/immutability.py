"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Emitted billing documents are legal records: no renumbering, no silent edit
of an issued amount, no deletion of a numbered document (ten-year gap-free
archive).  Only a new Amendment or Credit Note may change the financial
relationship.

The lifecycle services already refuse line edits on non-draft documents
(IllegalTransitionError).  This module is the second layer: it catches any
modification made through SQLAlchemy that bypassed the services.

    session.flush()
         |
         v
    [before_insert / before_update / before_delete]
         |
         +--> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                      | What
--------------------|-------------------------------------|-----------------------------
Quote / Invoice /   | Once persisted status is not draft  | Totals, tax rate, company,
Amendment /         |                                     | client, parent references
CreditNote          | Once a number is persisted          | The number itself; DELETE
Document lines      | Once the parent left draft          | INSERT, UPDATE, DELETE
AuditEvent          | ALWAYS (from creation)              | Everything

===============================================================================
DESIGN DECISIONS
===============================================================================

1. STATUS IS NOT PROTECTED HERE.
   Status changes are owned by the state machine; a terminal state is
   enforced by the workflow tables, not by this module.

2. "WAS EMITTED" NOT "IS EMITTED".
   The emission itself changes status away from draft in the same flush
   that recomputes totals and sets the number.  Attribute history tells
   us the persisted status before this flush began.

3. updated_at / updated_by_id, sent_count, timestamps and payment fields
   stay mutable: they record what happened to the document, not what
   the document says.

===============================================================================
USAGE
===============================================================================

    from billing_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from billing_kernel.domain.lifecycle import is_draft
from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields frozen once a document has left its draft state
FROZEN_DOCUMENT_FIELDS: frozenset[str] = frozenset({
    "company_id",
    "client_id",
    "tax_rate",
    "amount_excl_tax",
    "amount_tax",
    "amount_incl_tax",
    "net_delta_incl_tax",
    "parent_quote_id",
    "parent_invoice_id",
})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _persisted_status(document) -> str:
    """Status as it was before the pending flush."""
    hist = get_history(document, "status")
    if hist.deleted:
        return hist.deleted[0]
    return document.status


def _persisted_number(document) -> str | None:
    hist = get_history(document, "number")
    if hist.deleted:
        return hist.deleted[0]
    if hist.added:
        # Assigned in this flush, not yet persisted
        return None
    return document.number


def _check_document_update(mapper, connection, target):
    entity_type = type(target).__name__

    number_hist = get_history(target, "number")
    if number_hist.deleted and number_hist.deleted[0] is not None and number_hist.has_changes():
        raise _blocked(
            entity_type, target.id, "UPDATE",
            f"Number {number_hist.deleted[0]} can never change",
            field="number",
        )

    if is_draft(target.kind, _persisted_status(target)):
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key not in FROZEN_DOCUMENT_FIELDS:
            continue
        if attr.history.has_changes():
            raise _blocked(
                entity_type, target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on an emitted {target.kind.value}",
                field=attr.key,
            )


def _check_document_delete(mapper, connection, target):
    number = _persisted_number(target) or target.number
    if number is not None:
        raise _blocked(
            type(target).__name__, target.id, "DELETE",
            f"Numbered document {number} can never be deleted",
        )


def _check_line_change(operation: str):
    def _check(mapper, connection, target):
        parent = target.document
        if parent is None:
            # Removed from its parent collection in this flush
            hist = get_history(target, "document")
            parent = hist.deleted[0] if hist.deleted else None
        if parent is None:
            return
        if not is_draft(parent.kind, _persisted_status(parent)):
            raise _blocked(
                type(target).__name__, target.id, operation,
                f"Lines cannot change once the {parent.kind.value} has left draft",
            )
    return _check


_check_line_insert = _check_line_change("INSERT")
_check_line_update = _check_line_change("UPDATE")
_check_line_delete = _check_line_change("DELETE")


def _check_audit_event_immutability(mapper, connection, target):
    raise _blocked("AuditEvent", target.id, "UPDATE", "Audit events are append-only")


def _check_audit_event_delete(mapper, connection, target):
    raise _blocked("AuditEvent", target.id, "DELETE", "Audit events can never be deleted")


def _listeners():
    from billing_kernel.models.audit_event import AuditEvent
    from billing_kernel.models.document import DOCUMENT_MODELS, LINE_MODELS

    pairs = []
    for model in DOCUMENT_MODELS.values():
        pairs.append((model, "before_update", _check_document_update))
        pairs.append((model, "before_delete", _check_document_delete))
    for model in LINE_MODELS.values():
        pairs.append((model, "before_insert", _check_line_insert))
        pairs.append((model, "before_update", _check_line_update))
        pairs.append((model, "before_delete", _check_line_delete))
    pairs.append((AuditEvent, "before_update", _check_audit_event_immutability))
    pairs.append((AuditEvent, "before_delete", _check_audit_event_delete))
    return pairs


def register_immutability_listeners():
    """Register all immutability listeners (idempotent)."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """Remove immutability listeners. FOR TESTING ONLY."""
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)
