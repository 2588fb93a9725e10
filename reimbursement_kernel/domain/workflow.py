"""
Canonical workflow types (``reimbursement_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for workflow state machines.  A transition names the
permission the permission gate must grant and any scoping the gate must
layer on top (department match, ownership).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* At most one transition per ``(from_state, action)`` pair.
"""

from __future__ import annotations

from dataclasses import dataclass

from reimbursement_kernel.domain.audit import AuditAction
from reimbursement_kernel.domain.permissions import Action


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only -- the claim service evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    permission: Action
    audit_action: AuditAction
    guard: Guard | None = None
    department_scoped: bool = False
    owner_only: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references unknown state"
                )
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition for {key}"
                )
            seen.add(key)

    def find_transition(self, from_state: str, action: str) -> Transition | None:
        """Return the transition for ``action`` from ``from_state``, if legal."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def transitions_for(self, action: str) -> tuple[Transition, ...]:
        return tuple(t for t in self.transitions if t.action == action)

    def actions_from(self, from_state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == from_state)
