"""
Canonical workflow types (``billing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the document state machines and the pure
``resolve_transition`` function that decides whether an action is legal
from a given status.  Guard, Transition and Workflow are defined once and
instantiated per document kind in ``domain.lifecycle``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* A resend transition never changes the state (``from_state == to_state``).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A business-rule set that must hold before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the rules -- ``domain.validation`` does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``allocates_number=True`` marks the transition into the kind's first
    emitted state: totals are recomputed and the number is allocated in
    the same transaction.  ``is_resend=True`` marks the idempotent
    SENT -> SENT notification retry.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    allocates_number: bool = False
    is_resend: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for one document kind.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state '{self.initial_state}' "
                f"is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.from_state} -> "
                    f"{t.to_state} ({t.action}) references an undeclared state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state '{t.from_state}' "
                    f"has an outgoing transition ({t.action})"
                )
            if t.is_resend and t.from_state != t.to_state:
                raise ValueError(
                    f"Workflow {self.name}: resend transition must not change state"
                )

    def find_transition(self, state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == state and t.action == action:
                return t
        return None

    def actions_from(self, state: str) -> tuple[str, ...]:
        """Actions legal from ``state``, in declaration order."""
        seen: list[str] = []
        for t in self.transitions:
            if t.from_state == state and t.action not in seen:
                seen.append(t.action)
        return tuple(seen)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


@dataclass(frozen=True)
class TransitionResult:
    """Result of resolving an action against a workflow."""

    success: bool
    new_state: str | None = None
    transition: Transition | None = None
    is_resend: bool = False
    allocates_number: bool = False
    reason: str = ""


def resolve_transition(workflow: Workflow, state: str, action: str) -> TransitionResult:
    """Decide whether ``action`` is legal from ``state``.

    Pure: never touches an entity, never raises for an illegal action.
    The caller converts a failed result into ``IllegalTransitionError``.
    """
    state = getattr(state, "value", state)
    action = getattr(action, "value", action)

    if state not in workflow.states:
        return TransitionResult(
            success=False,
            reason=f"Unknown state '{state}' in workflow '{workflow.name}'",
        )

    if workflow.is_terminal(state):
        return TransitionResult(
            success=False,
            reason=f"'{state}' is a terminal state in workflow '{workflow.name}'",
        )

    transition = workflow.find_transition(state, action)
    if transition is None:
        return TransitionResult(
            success=False,
            reason=f"No transition from '{state}' via action '{action}' "
                   f"in workflow '{workflow.name}'",
        )

    return TransitionResult(
        success=True,
        new_state=transition.to_state,
        transition=transition,
        is_resend=transition.is_resend,
        allocates_number=transition.allocates_number,
    )
