"""
Module: wms_engines.state_machine
Responsibility:
    Generic guard/transition evaluator shared by the purchase order and
    inbound shipment lifecycles.  Given a Workflow definition, answers which
    actions are legal from a state and applies an action after evaluating
    its guard.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Imports only wms_kernel (domain workflow types, exceptions, logging).

Invariants enforced:
    - A workflow is validated once, on construction: the initial state and
      every transition endpoint are declared states, terminal states have no
      outgoing transitions, and each ``(from_state, action)`` pair appears at
      most once.
    - An illegal action or failed guard always raises InvalidTransitionError;
      nothing is silently ignored.

Failure modes:
    - ValueError on an inconsistent workflow definition.
    - InvalidTransitionError(from_state, attempted, reason) on rejection.
    - A guard with no registered evaluator, or one that raises, evaluates to
      False (logged as a warning) so the transition is refused.

Usage:
    machine = StateMachine(PURCHASE_ORDER_WORKFLOW, purchasing_guards())
    machine.legal_actions("draft")          # ("cancel", "submit")
    result = machine.apply("draft", "submit", {"lines": ...})
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from wms_kernel.domain.workflow import Guard, Transition, TransitionResult, Workflow
from wms_kernel.exceptions import InvalidTransitionError
from wms_kernel.logging_config import get_logger

logger = get_logger("engines.state_machine")


def get_attr(context: Any, key: str, default: Any = None) -> Any:
    """Get a value from guard context (mapping or object)."""
    if context is None:
        return default
    if isinstance(context, Mapping):
        return context.get(key, default)
    return getattr(context, key, default)


class GuardExecutor:
    """Evaluates workflow guards against context.

    Guards are declared on transitions (name + description).  This executor
    holds the evaluation logic per guard name and is consulted by the
    StateMachine before allowing a transition.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Any], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[Any], bool]) -> None:
        """Register an evaluator for a guard by name."""
        self._evaluators[guard_name] = evaluator

    def has(self, guard_name: str) -> bool:
        return guard_name in self._evaluators

    def evaluate(self, guard: Guard, context: Any = None) -> bool:
        """Evaluate a guard against context. Returns True if guard passes."""
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning(
                "guard_no_evaluator",
                extra={"guard_name": guard.name},
            )
            return False
        try:
            return bool(fn(context))
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_name": guard.name, "error": str(e)},
            )
            return False


class StateMachine:
    """
    Evaluates one Workflow.

    Contract:
        Stateless apart from the workflow and guard registry it is built
        with; the current state is always passed in.

    Guarantees:
        - ``apply`` either returns a TransitionResult or raises
          InvalidTransitionError.
        - ``legal_actions`` is derived from the same table ``apply`` uses,
          so a renderer never offers an action the engine would reject on
          state alone.
    """

    def __init__(self, workflow: Workflow, guards: GuardExecutor | None = None):
        self._workflow = workflow
        self._guards = guards or GuardExecutor()
        self._by_state: dict[str, dict[str, Transition]] = {
            s: {} for s in workflow.states
        }
        self._validate()

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    def _validate(self) -> None:
        wf = self._workflow
        states = set(wf.states)
        if wf.initial_state not in states:
            raise ValueError(
                f"{wf.name}: initial state '{wf.initial_state}' is not declared"
            )
        for terminal in wf.terminal_states:
            if terminal not in states:
                raise ValueError(f"{wf.name}: terminal state '{terminal}' is not declared")
        for t in wf.transitions:
            for endpoint in (t.from_state, t.to_state):
                if endpoint not in states:
                    raise ValueError(
                        f"{wf.name}: transition '{t.action}' references "
                        f"undeclared state '{endpoint}'"
                    )
            if t.from_state in wf.terminal_states:
                raise ValueError(
                    f"{wf.name}: terminal state '{t.from_state}' has outgoing "
                    f"transition '{t.action}'"
                )
            actions = self._by_state[t.from_state]
            if t.action in actions:
                raise ValueError(
                    f"{wf.name}: duplicate action '{t.action}' from '{t.from_state}'"
                )
            actions[t.action] = t

    def is_terminal(self, state: str) -> bool:
        return state in self._workflow.terminal_states

    def transitions_from(self, state: str) -> tuple[Transition, ...]:
        return tuple(self._by_state.get(state, {}).values())

    def legal_actions(self, state: str, *, include_system: bool = False) -> tuple[str, ...]:
        """Actions that can be requested from ``state``, sorted by name."""
        return tuple(sorted(
            t.action
            for t in self.transitions_from(state)
            if include_system or not t.system_only
        ))

    def resolve(self, state: str, action: str) -> Transition:
        """Find the transition for ``action`` from ``state`` without evaluating guards."""
        if state not in self._by_state:
            raise InvalidTransitionError(state, action, f"unknown state '{state}'")
        transition = self._by_state[state].get(action)
        if transition is None:
            if self.is_terminal(state):
                reason = f"'{state}' is a terminal state"
            else:
                legal = ", ".join(self.legal_actions(state, include_system=True)) or "none"
                reason = f"not allowed from '{state}' (legal: {legal})"
            raise InvalidTransitionError(state, action, reason)
        return transition

    def can_apply(self, state: str, action: str, context: Any = None) -> bool:
        try:
            self.apply(state, action, context, log=False)
        except InvalidTransitionError:
            return False
        return True

    def apply(
        self,
        state: str,
        action: str,
        context: Any = None,
        *,
        log: bool = True,
    ) -> TransitionResult:
        """
        Apply ``action`` from ``state``.

        Raises:
            InvalidTransitionError: If no transition exists or its guard fails.
        """
        try:
            transition = self.resolve(state, action)
            if transition.guard is not None and not self._guards.evaluate(
                transition.guard, context
            ):
                raise InvalidTransitionError(
                    state, action, f"guard failed: {transition.guard.description}"
                )
        except InvalidTransitionError as exc:
            if log:
                logger.info(
                    "transition_rejected",
                    extra={
                        "workflow": self._workflow.name,
                        "from_state": state,
                        "attempted": action,
                        "reason": exc.reason,
                    },
                )
            raise

        result = TransitionResult(
            workflow=self._workflow.name,
            action=action,
            from_state=state,
            to_state=transition.to_state,
            side_effects=transition.side_effects,
        )
        if log:
            logger.info(
                "transition_applied",
                extra={
                    "workflow": self._workflow.name,
                    "action": action,
                    "from_state": state,
                    "to_state": transition.to_state,
                    "side_effects": list(transition.side_effects),
                },
            )
        return result
