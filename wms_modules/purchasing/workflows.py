"""
Purchasing Workflows.

State machine for the purchase order lifecycle, plus the evaluators for
its guards.

    draft -> pending_approval -> approved -> sent -> acknowledged
          -> partially_received -> received -> closed

``cancel`` ends in ``cancelled`` before the vendor has been notified and
in ``voided`` afterwards (sent/acknowledged).  Receipt transitions are
system-only: Receiving reports quantities back and the lifecycle moves
the PO, never a user action.
"""

from typing import Any

from wms_engines.state_machine import GuardExecutor, get_attr
from wms_kernel.domain.workflow import Guard, Transition, Workflow
from wms_kernel.logging_config import get_logger

logger = get_logger("modules.purchasing.workflows")


# -----------------------------------------------------------------------------
# Side effects
# -----------------------------------------------------------------------------

DISPATCH_VENDOR_NOTIFICATION = "dispatch_vendor_notification"
CREATE_RECEIVING_RECORD = "create_receiving_record"
CANCEL_OPEN_LINES = "cancel_open_lines"


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_VALID_LINES = Guard(
    name="has_valid_lines",
    description="PO has at least one line and every line has qty > 0 and a unit cost",
)

NOT_FULLY_RECEIVED = Guard(
    name="not_fully_received",
    description="PO is not fully received",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Every active PO line is fully received",
)

NO_OPEN_LINES = Guard(
    name="no_open_lines",
    description="No open (undelivered) lines remain",
)

REASON_PROVIDED = Guard(
    name="reason_provided",
    description="A non-empty cancellation reason is provided",
)


def _active_lines(context: Any) -> list:
    return [line for line in get_attr(context, "lines", ()) if not line.is_cancelled]


def _has_valid_lines(context: Any) -> bool:
    lines = _active_lines(context)
    return bool(lines) and all(
        line.order_qty > 0 and line.unit_cost is not None for line in lines
    )


def _has_open_lines(context: Any) -> bool:
    return any(line.open_qty > 0 for line in _active_lines(context))


def _all_lines_received(context: Any) -> bool:
    return bool(_active_lines(context)) and not _has_open_lines(context)


def _reason_provided(context: Any) -> bool:
    reason = get_attr(context, "reason")
    return isinstance(reason, str) and bool(reason.strip())


def purchasing_guard_executor() -> GuardExecutor:
    """GuardExecutor with the purchase order guards registered."""
    ex = GuardExecutor()
    ex.register(HAS_VALID_LINES.name, _has_valid_lines)
    ex.register(NOT_FULLY_RECEIVED.name, _has_open_lines)
    ex.register(ALL_LINES_RECEIVED.name, _all_lines_received)
    ex.register(NO_OPEN_LINES.name, lambda ctx: not _has_open_lines(ctx))
    ex.register(REASON_PROVIDED.name, _reason_provided)
    return ex


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

_RECEIVABLE = ("sent", "acknowledged", "partially_received")

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "pending_approval",
        "approved",
        "sent",
        "acknowledged",
        "partially_received",
        "received",
        "closed",
        "cancelled",
        "voided",
    ),
    transitions=(
        Transition("draft", "pending_approval", action="submit", guard=HAS_VALID_LINES),
        Transition("pending_approval", "draft", action="return_to_draft"),
        Transition("pending_approval", "approved", action="approve"),
        Transition(
            "approved", "sent", action="send",
            side_effects=(DISPATCH_VENDOR_NOTIFICATION,),
        ),
        Transition("sent", "acknowledged", action="acknowledge"),
        *(
            Transition(
                state, state, action="create_receipt", guard=NOT_FULLY_RECEIVED,
                side_effects=(CREATE_RECEIVING_RECORD,),
            )
            for state in _RECEIVABLE
        ),
        *(
            Transition(state, "partially_received", action="record_partial_receipt", system_only=True)
            for state in _RECEIVABLE
        ),
        *(
            Transition(
                state, "received", action="record_full_receipt",
                guard=ALL_LINES_RECEIVED, system_only=True,
            )
            for state in _RECEIVABLE
        ),
        Transition("received", "closed", action="close", guard=NO_OPEN_LINES),
        *(
            Transition(
                state, "cancelled", action="cancel", guard=REASON_PROVIDED,
                side_effects=(CANCEL_OPEN_LINES,),
            )
            for state in ("draft", "pending_approval", "approved")
        ),
        *(
            Transition(
                state, "voided", action="cancel", guard=REASON_PROVIDED,
                side_effects=(CANCEL_OPEN_LINES,),
            )
            for state in ("sent", "acknowledged")
        ),
    ),
    terminal_states=("closed", "cancelled", "voided"),
)

logger.info(
    "purchasing_po_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
        "initial_state": PURCHASE_ORDER_WORKFLOW.initial_state,
    },
)
