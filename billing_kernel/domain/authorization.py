"""
billing_kernel.domain.authorization -- capability checks at the transition guard.

Responsibility:
    Decide whether an actor may perform an action on a document of a given
    kind in a given state.  One pure function replaces the per-entity
    voters: tenant isolation, then a role -> permission grant lookup, then
    state-dependent restrictions on editing.

Invariants:
    - The kernel does not resolve actor identity; the caller supplies the
      Actor with its roles and tenant.
    - Permissions are ``<kind>.<action>`` strings (``quote.issue``,
      ``invoice.mark_paid``).  A grant may use ``<kind>.*`` or ``*``.
    - Lines of an emitted document are never editable and a numbered
      document is never deletable, whatever the grants.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import UUID

from billing_kernel.domain.lifecycle import Action, DocumentKind, is_draft

WILDCARD = "*"


@dataclass(frozen=True)
class Actor:
    """Who is acting.  ``company_id=None`` means not bound to a tenant."""

    actor_id: UUID
    roles: tuple[str, ...] = ()
    company_id: UUID | None = None
    is_system: bool = False


@dataclass(frozen=True)
class RoleGrants:
    """Role name -> granted permissions."""

    grants: Mapping[str, frozenset[str]] = field(default_factory=dict)

    def permissions_for(self, roles: tuple[str, ...]) -> frozenset[str]:
        perms: set[str] = set()
        for role in roles:
            perms |= self.grants.get(role, frozenset())
        return frozenset(perms)


def permission_for(kind: DocumentKind | str, action: Action | str) -> str:
    kind = getattr(kind, "value", kind)
    action = getattr(action, "value", action)
    return f"{kind}.{action}"


def _is_granted(permission: str, granted: frozenset[str]) -> bool:
    if WILDCARD in granted or permission in granted:
        return True
    kind = permission.split(".", 1)[0]
    return f"{kind}.{WILDCARD}" in granted


def check_capability(
    actor: Actor,
    action: Action | str,
    kind: DocumentKind | str,
    state: str | None,
    grants: RoleGrants,
    document_company_id: UUID | None = None,
    has_number: bool = False,
) -> tuple[bool, str]:
    """Check whether ``actor`` may perform ``action`` on a ``kind`` in ``state``.

    Returns:
        (allowed, reason). reason is empty when allowed.
    """
    action = Action(getattr(action, "value", action))
    kind = DocumentKind(getattr(kind, "value", kind))

    if (
        actor.company_id is not None
        and document_company_id is not None
        and actor.company_id != document_company_id
    ):
        return (False, "tenant mismatch: document belongs to another company")

    if action is Action.EDIT and state is not None and not is_draft(kind, state):
        return (False, f"{kind.value} in status '{state}' is no longer editable")

    if action is Action.DELETE and (has_number or (state is not None and not is_draft(kind, state))):
        return (False, f"a numbered {kind.value} can never be deleted")

    if actor.is_system:
        return (True, "")

    permission = permission_for(kind, action)
    if not _is_granted(permission, grants.permissions_for(actor.roles)):
        return (False, f"permission '{permission}' not granted to actor")

    return (True, "")


class CapabilityAuthorizer:
    """Authorizer backed by ``check_capability`` and a role grant table."""

    def __init__(self, grants: RoleGrants):
        self._grants = grants

    def is_allowed(self, actor: Actor, action: Action | str, document: Any) -> bool:
        allowed, _ = self.explain(actor, action, document)
        return allowed

    def explain(self, actor: Actor, action: Action | str, document: Any) -> tuple[bool, str]:
        return check_capability(
            actor,
            action,
            document.kind,
            document.status,
            self._grants,
            document_company_id=document.company_id,
            has_number=document.number is not None,
        )


SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")

# Scheduler and billing resolver; bypasses role grants, never tenant or state checks
SYSTEM_ACTOR = Actor(actor_id=SYSTEM_ACTOR_ID, roles=("system",), is_system=True)
