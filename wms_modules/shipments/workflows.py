"""
Shipment Workflows.

State machine for the inbound shipment lifecycle:

    draft -> booked -> in_transit -> at_port -> customs_clearance
          -> delivered -> costing -> closed

``deliver`` is also accepted straight from ``in_transit`` or ``at_port``.
``run_allocation`` and ``finalize`` are self-loops that change costing data,
not status.  ``cancel`` is accepted from every state before ``closed``.
"""

from typing import Any

from wms_engines.state_machine import GuardExecutor, get_attr
from wms_kernel.domain.workflow import Guard, Transition, Workflow
from wms_kernel.logging_config import get_logger

logger = get_logger("modules.shipments.workflows")


# -----------------------------------------------------------------------------
# Side effects
# -----------------------------------------------------------------------------

SNAPSHOT_LANDED_COSTS = "snapshot_landed_costs"
PUSH_LANDED_COSTS_TO_LOTS = "push_landed_costs_to_lots"


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINES = Guard(
    name="has_lines",
    description="Shipment has at least one line",
)

COSTS_FINALIZED = Guard(
    name="costs_finalized",
    description="Landed costs were finalized after the last line or cost change",
)

REASON_PROVIDED = Guard(
    name="reason_provided",
    description="A non-empty cancellation reason is provided",
)


def _has_lines(context: Any) -> bool:
    return bool(get_attr(context, "lines", ()))


def _costs_finalized(context: Any) -> bool:
    finalized = get_attr(context, "finalized_revision")
    return finalized is not None and finalized == get_attr(context, "cost_revision")


def _reason_provided(context: Any) -> bool:
    reason = get_attr(context, "reason")
    return isinstance(reason, str) and bool(reason.strip())


def shipment_guard_executor() -> GuardExecutor:
    """GuardExecutor with the shipment guards registered."""
    ex = GuardExecutor()
    ex.register(HAS_LINES.name, _has_lines)
    ex.register(COSTS_FINALIZED.name, _costs_finalized)
    ex.register(REASON_PROVIDED.name, _reason_provided)
    return ex


# -----------------------------------------------------------------------------
# Inbound Shipment Workflow
# -----------------------------------------------------------------------------

_CANCELLABLE = (
    "draft",
    "booked",
    "in_transit",
    "at_port",
    "customs_clearance",
    "delivered",
    "costing",
)

SHIPMENT_WORKFLOW = Workflow(
    name="inbound_shipment",
    description="Inbound shipment lifecycle",
    initial_state="draft",
    states=_CANCELLABLE + ("closed", "cancelled"),
    transitions=(
        Transition("draft", "booked", action="book", guard=HAS_LINES),
        Transition("booked", "in_transit", action="depart"),
        Transition("in_transit", "at_port", action="arrive_at_port"),
        Transition("at_port", "customs_clearance", action="enter_customs"),
        *(
            Transition(state, "delivered", action="deliver")
            for state in ("in_transit", "at_port", "customs_clearance")
        ),
        Transition("delivered", "costing", action="start_costing"),
        Transition("delivered", "delivered", action="run_allocation"),
        Transition("costing", "costing", action="run_allocation"),
        Transition(
            "costing", "costing", action="finalize",
            side_effects=(SNAPSHOT_LANDED_COSTS,),
        ),
        Transition(
            "costing", "closed", action="close", guard=COSTS_FINALIZED,
            side_effects=(PUSH_LANDED_COSTS_TO_LOTS,),
        ),
        *(
            Transition(state, "cancelled", action="cancel", guard=REASON_PROVIDED)
            for state in _CANCELLABLE
        ),
    ),
    terminal_states=("closed", "cancelled"),
)

logger.info(
    "shipments_workflow_registered",
    extra={
        "workflow_name": SHIPMENT_WORKFLOW.name,
        "state_count": len(SHIPMENT_WORKFLOW.states),
        "transition_count": len(SHIPMENT_WORKFLOW.transitions),
        "initial_state": SHIPMENT_WORKFLOW.initial_state,
    },
)
