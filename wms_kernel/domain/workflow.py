"""
Canonical workflow types (``wms_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for lifecycle state machines.  The purchase order and
inbound shipment lifecycles both declare their states and transitions
with these types, so Guard, Transition and Workflow are defined once and
the state machine engine evaluates either.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/`` or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states`` (checked by
  the engine on construction).
* ``initial_state`` is a member of ``states``.
* At most one transition per ``(from_state, action)`` pair, so an action
  requested from a state resolves to exactly one target.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from wms_kernel.exceptions import ConcurrentModificationError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the GuardExecutor does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``side_effects`` names the work the caller must perform after the
    transition is accepted (e.g. ``create_receiving_record``).
    ``system_only`` transitions are driven by collaborator callbacks and
    are never offered as user actions.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    side_effects: tuple[str, ...] = ()
    system_only: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()


@dataclass(frozen=True)
class SideEffect:
    """Work for the caller to perform once a transition is accepted."""
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of an accepted transition."""
    workflow: str
    action: str
    from_state: str
    to_state: str
    side_effects: tuple[str, ...] = ()

    @property
    def changed_state(self) -> bool:
        return self.from_state != self.to_state


@dataclass(frozen=True)
class LifecycleResult:
    """What a lifecycle hands back to its caller after an accepted change.

    ``entity`` is the new snapshot to persist; ``side_effects`` are for the
    caller to execute; ``warnings`` are soft problems (e.g. over-shipment)
    that did not block the change.
    """
    entity: Any
    transition: TransitionResult | None = None
    side_effects: tuple[SideEffect, ...] = ()
    warnings: tuple[str, ...] = ()


def check_version(
    entity_type: str,
    entity_id: Any,
    current_version: int,
    expected_version: int | None,
) -> None:
    """Raise ConcurrentModificationError when the caller's stamp is stale.

    ``expected_version=None`` means the caller vouches for the snapshot.
    """
    if expected_version is not None and expected_version != current_version:
        raise ConcurrentModificationError(
            entity_type, str(entity_id), expected_version, current_version
        )
