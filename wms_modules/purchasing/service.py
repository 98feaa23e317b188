"""
Purchase Order Lifecycle (``wms_modules.purchasing.service``).

Responsibility
--------------
Applies lifecycle transitions, line edits, charge edits and receipt
push-backs to purchase order snapshots.  Every operation takes a frozen
``PurchaseOrder`` and returns a new one; nothing is persisted here.

Architecture position
---------------------
**Modules layer** -- ``PurchaseOrderLifecycle`` is the sole public entry
point for PO state changes.  Legality is delegated to the
``StateMachine`` engine over ``PURCHASE_ORDER_WORKFLOW``; charge rules to
the kernel Incoterms table.

Invariants enforced
-------------------
* ``total == subtotal - discount + tax + shipping_cost`` after every change.
* ``tax``/``shipping_cost`` are non-zero only where the Incoterm allows.
* A PO reaches ``sent`` only from ``approved`` and ``closed`` only from
  ``received`` (workflow table; receipt transitions are system-only).
* Every accepted change appends one ``StatusChange`` and bumps ``version``.

Failure modes
-------------
* ``InvalidTransitionError`` -- illegal action, failed guard, or a line /
  charge edit in a locked status.
* ``ChargeNotApplicableError`` -- Incoterm forbids a tax/shipping edit.
* ``ConcurrentModificationError`` -- ``expected_version`` is stale.
* ``ValueError`` -- negative charges, unknown line ids, bad quantities.

Audit relevance
---------------
The history tuple is append-only; each entry records from/to status,
timestamp (from the injected Clock), actor and notes.  Structured log
events are emitted for every accepted and rejected change.

Usage::

    lifecycle = PurchaseOrderLifecycle(clock=clock)
    po = lifecycle.create_purchase_order(po_number="PO-1001", vendor_id=vendor_id)
    po = lifecycle.add_line(po, sku="WIDGET", order_qty=100,
                            unit_cost=UnitCost.of("0.05", "USD"))
    result = lifecycle.apply_transition(po, "submit", actor="buyer-7")
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any
from uuid import UUID, uuid4

from wms_engines.state_machine import StateMachine
from wms_kernel.domain.clock import Clock, SystemClock
from wms_kernel.domain.incoterms import ChargeApplicability, Incoterm, applicability
from wms_kernel.domain.values import Currency, Money, UnitCost, round_half_up
from wms_kernel.domain.workflow import (
    LifecycleResult,
    SideEffect,
    TransitionResult,
    check_version,
)
from wms_kernel.exceptions import (
    ChargeNotApplicableError,
    CurrencyMismatchError,
    InvalidTransitionError,
)
from wms_kernel.logging_config import LogContext, get_logger
from wms_modules.purchasing.config import PurchasingConfig
from wms_modules.purchasing.models import (
    ChargePatch,
    POLineStatus,
    POPriority,
    POStatus,
    POType,
    PurchaseOrder,
    PurchaseOrderLine,
    ReceiptLineReport,
    StatusChange,
)
from wms_modules.purchasing.workflows import (
    CANCEL_OPEN_LINES,
    CREATE_RECEIVING_RECORD,
    DISPATCH_VENDOR_NOTIFICATION,
    PURCHASE_ORDER_WORKFLOW,
    purchasing_guard_executor,
)

logger = get_logger("modules.purchasing.service")

ENTITY_TYPE = "purchase_order"

_LINE_FIELDS = frozenset({
    "order_qty", "unit_cost", "product_id", "variant_id", "sku",
    "vendor_sku", "description", "units_per_uom",
})


def compute_totals(po: PurchaseOrder) -> PurchaseOrder:
    """Recompute subtotal and total; cancelled lines are excluded.

    Line totals stay exact (sub-cent) until summed; the subtotal is rounded
    half-up to whole minor units once.
    """
    exact = sum((line.line_total for line in po.active_lines), start=0)
    subtotal = Money.from_cents(round_half_up(exact), po.currency)
    total = subtotal - po.discount + po.tax + po.shipping_cost
    return replace(po, subtotal=subtotal, total=total)


class PurchaseOrderLifecycle:
    """
    Purchase order state changes over frozen snapshots.

    Contract:
        Pure apart from the injected Clock and uuid4 line ids.  Callers
        persist the returned snapshot and execute the returned side effects.
    """

    def __init__(
        self,
        config: PurchasingConfig | None = None,
        clock: Clock | None = None,
    ):
        self._config = config or PurchasingConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._machine = StateMachine(PURCHASE_ORDER_WORKFLOW, purchasing_guard_executor())

    @property
    def state_machine(self) -> StateMachine:
        return self._machine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def legal_actions(self, po: PurchaseOrder) -> tuple[str, ...]:
        """User-facing actions legal from the PO's current status."""
        return self._machine.legal_actions(po.status.value)

    def charge_applicability(self, po: PurchaseOrder) -> ChargeApplicability:
        return applicability(po.incoterm)

    def can_edit_lines(self, po: PurchaseOrder) -> bool:
        return po.status.value in self._config.editable_statuses

    def can_edit_charges(self, po: PurchaseOrder) -> bool:
        return not po.is_terminal

    # ------------------------------------------------------------------
    # Creation and line edits
    # ------------------------------------------------------------------

    def create_purchase_order(
        self,
        *,
        po_number: str,
        vendor_id: UUID,
        currency: Currency | str | None = None,
        incoterm: Incoterm | str | None = None,
        po_type: POType = POType.STANDARD,
        priority: POPriority = POPriority.NORMAL,
        po_id: UUID | None = None,
        **fields: Any,
    ) -> PurchaseOrder:
        po = PurchaseOrder(
            id=po_id or uuid4(),
            po_number=po_number,
            vendor_id=vendor_id,
            currency=currency or self._config.default_currency,
            incoterm=incoterm,
            po_type=po_type,
            priority=priority,
            order_date=self._clock.today(),
            **fields,
        )
        logger.info(
            "purchase_order_created",
            extra={"po_id": str(po.id), "po_number": po_number, "currency": po.currency.code},
        )
        return po

    def _require_line_edit(self, po: PurchaseOrder) -> None:
        if not self.can_edit_lines(po):
            raise InvalidTransitionError(
                po.status.value,
                "edit_lines",
                f"lines can only be edited while the PO is {', '.join(self._config.editable_statuses)}",
            )

    def _check_unit_cost(self, po: PurchaseOrder, unit_cost: UnitCost | None) -> None:
        if unit_cost is not None and unit_cost.currency != po.currency:
            raise CurrencyMismatchError(po.currency.code, unit_cost.currency.code)

    def add_line(
        self,
        po: PurchaseOrder,
        *,
        order_qty: int,
        unit_cost: UnitCost | None = None,
        line_id: UUID | None = None,
        actor: str | None = None,
        expected_version: int | None = None,
        **fields: Any,
    ) -> PurchaseOrder:
        check_version(ENTITY_TYPE, po.id, po.version, expected_version)
        self._require_line_edit(po)
        self._check_unit_cost(po, unit_cost)
        next_number = max((line.line_number for line in po.lines), default=0) + 1
        line = PurchaseOrderLine(
            id=line_id or uuid4(),
            purchase_order_id=po.id,
            line_number=next_number,
            order_qty=order_qty,
            unit_cost=unit_cost,
            **fields,
        )
        updated = compute_totals(replace(po, lines=po.lines + (line,), version=po.version + 1))
        logger.info(
            "po_line_added",
            extra={
                "po_id": str(po.id),
                "line_id": str(line.id),
                "order_qty": order_qty,
                "actor": actor,
            },
        )
        return updated

    def update_line(
        self,
        po: PurchaseOrder,
        line_id: UUID,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
        **changes: Any,
    ) -> PurchaseOrder:
        check_version(ENTITY_TYPE, po.id, po.version, expected_version)
        self._require_line_edit(po)
        unknown = set(changes) - _LINE_FIELDS
        if unknown:
            raise ValueError(f"Unknown or read-only line fields: {sorted(unknown)}")
        self._check_unit_cost(po, changes.get("unit_cost"))
        target = po.line(line_id)
        lines = tuple(
            replace(line, **changes) if line.id == target.id else line
            for line in po.lines
        )
        updated = compute_totals(replace(po, lines=lines, version=po.version + 1))
        logger.info(
            "po_line_updated",
            extra={"po_id": str(po.id), "line_id": str(line_id), "fields": sorted(changes), "actor": actor},
        )
        return updated

    def remove_line(
        self,
        po: PurchaseOrder,
        line_id: UUID,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> PurchaseOrder:
        check_version(ENTITY_TYPE, po.id, po.version, expected_version)
        self._require_line_edit(po)
        po.line(line_id)
        lines = tuple(line for line in po.lines if line.id != line_id)
        updated = compute_totals(replace(po, lines=lines, version=po.version + 1))
        logger.info(
            "po_line_removed",
            extra={"po_id": str(po.id), "line_id": str(line_id), "actor": actor},
        )
        return updated

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    def edit_charges(
        self,
        po: PurchaseOrder,
        patch: ChargePatch,
        *,
        actor: str | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> PurchaseOrder:
        """
        Apply a charge patch (discount, tax, shipping, Incoterm).

        An empty patch changes nothing: ``po`` is returned as is, with no
        history entry and no version bump.

        Raises:
            InvalidTransitionError: PO is cancelled, voided or closed.
            ChargeNotApplicableError: The effective Incoterm forbids a
                tax or shipping charge in the patch, or a new Incoterm
                forbids a charge the PO still carries.
            ValueError: Negative charge.
            CurrencyMismatchError: Charge not in the PO currency.
        """
        check_version(ENTITY_TYPE, po.id, po.version, expected_version)
        if not self.can_edit_charges(po):
            raise InvalidTransitionError(
                po.status.value,
                "edit_charges",
                f"charges are locked once a PO is {po.status.value}",
            )
        if patch.is_empty:
            logger.debug("po_charge_edit_empty", extra={"po_id": str(po.id), "actor": actor})
            return po

        incoterm = patch.incoterm if patch.changes_incoterm else po.incoterm
        incoterm_changed = patch.changes_incoterm and incoterm != po.incoterm
        rules = applicability(incoterm)
        incoterm_code = incoterm.value if incoterm is not None else None

        changes: dict[str, Any] = {}
        for charge in ("discount", "tax", "shipping_cost"):
            value = getattr(patch, charge)
            if value is None:
                continue
            if value.is_negative:
                raise ValueError(f"{charge} cannot be negative: {value}")
            # Zeroing a charge the new Incoterm forbids is part of switching to it
            if not rules.allows(charge) and not (incoterm_changed and value.is_zero):
                logger.info(
                    "po_charge_edit_rejected",
                    extra={"po_id": str(po.id), "charge": charge, "incoterm": incoterm_code},
                )
                raise ChargeNotApplicableError(incoterm_code, charge)
            if value.currency != po.currency:
                raise CurrencyMismatchError(po.currency.code, value.currency.code)
            changes[charge] = value

        for charge in ("tax", "shipping_cost"):
            effective = changes.get(charge, getattr(po, charge))
            if not rules.allows(charge) and not effective.is_zero:
                raise ChargeNotApplicableError(incoterm_code, charge)

        if patch.changes_incoterm:
            changes["incoterm"] = incoterm

        updated = compute_totals(replace(po, **changes))
        entry = StatusChange(
            from_status=po.status.value,
            to_status=po.status.value,
            timestamp=self._clock.now(),
            actor=actor,
            notes=notes or "charges edited: " + ", ".join(sorted(changes)),
        )
        updated = replace(updated, history=po.history + (entry,), version=po.version + 1)

        logger.info(
            "po_charges_edited",
            extra={
                "po_id": str(po.id),
                "fields": sorted(changes),
                "incoterm": incoterm_code,
                "total_cents": updated.total.cents,
                "actor": actor,
            },
        )
        return updated

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        po: PurchaseOrder,
        action: str,
        guard_data: Mapping[str, Any] | None = None,
        *,
        actor: str | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> LifecycleResult:
        """
        Apply a user-requested lifecycle action.

        ``guard_data`` carries caller-supplied inputs: ``reason`` for
        ``cancel``; ``vendor_ref_number`` and ``confirmed_delivery_date``
        for ``acknowledge``.

        Raises:
            InvalidTransitionError: Illegal from the current status, guard
                failed, or a system-only receipt transition was requested.
            ConcurrentModificationError: ``expected_version`` is stale.
        """
        check_version(ENTITY_TYPE, po.id, po.version, expected_version)
        guard_data = dict(guard_data or {})

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=str(po.id), actor_id=actor):
            transition = self._machine.resolve(po.status.value, action)
            if transition.system_only:
                raise InvalidTransitionError(
                    po.status.value,
                    action,
                    "receipt transitions are driven by the receiving workflow",
                )
            result = self._machine.apply(
                po.status.value, action, self._guard_context(po, guard_data)
            )
            updated, effects = self._apply_effects(po, result, guard_data)
            updated = self._record(updated, po, result, actor, notes or guard_data.get("reason"))

        return LifecycleResult(entity=updated, transition=result, side_effects=effects)

    def apply_receipt(
        self,
        po: PurchaseOrder,
        reports: Sequence[ReceiptLineReport],
        *,
        actor: str | None = None,
        receiving_record_id: str | None = None,
        expected_version: int | None = None,
    ) -> LifecycleResult:
        """
        Fold quantities reported by Receiving into the PO.

        Received and damaged quantities are increments.  The PO then moves
        to ``received`` when no active line is open, else to
        ``partially_received``.  A receipt that receives nothing (zero or
        damaged-only quantities) updates the line counters and history but
        leaves the status alone, and ``transition`` is then ``None``.

        Raises:
            InvalidTransitionError: PO is not awaiting receipts.
            ValueError: Unknown line, cancelled line, or over-receipt while
                ``allow_over_receipt`` is off.
        """
        check_version(ENTITY_TYPE, po.id, po.version, expected_version)
        status = po.status.value
        self._machine.resolve(status, "record_partial_receipt")
        if not reports:
            raise ValueError("A receipt must report at least one line")

        by_line: dict[UUID, list[ReceiptLineReport]] = {}
        for report in reports:
            po.line(report.po_line_id)
            by_line.setdefault(report.po_line_id, []).append(report)

        warnings: list[str] = []
        lines = []
        for line in po.lines:
            line_reports = by_line.get(line.id)
            if not line_reports:
                lines.append(line)
                continue
            if line.is_cancelled:
                raise ValueError(f"Cannot receive against cancelled line {line.id}")
            received = sum(r.received_qty for r in line_reports)
            damaged = sum(r.damaged_qty for r in line_reports)
            if received > line.open_qty:
                message = (
                    f"line {line.line_number}: received {received} exceeds open qty {line.open_qty}"
                )
                if not self._config.allow_over_receipt:
                    raise ValueError(message)
                warnings.append(message)
            updated_line = replace(
                line,
                received_qty=line.received_qty + received,
                damaged_qty=line.damaged_qty + damaged,
            )
            line_status = (
                POLineStatus.RECEIVED if updated_line.open_qty == 0
                else POLineStatus.PARTIALLY_RECEIVED if updated_line.received_qty > 0
                else POLineStatus.OPEN
            )
            lines.append(replace(updated_line, status=line_status))

        received_po = replace(po, lines=tuple(lines))
        notes = f"receipt {receiving_record_id}" if receiving_record_id else "receipt recorded"
        if not any(r.received_qty for r in reports):
            # Zero or damaged-only: counters move, status does not.
            entry = StatusChange(
                from_status=status,
                to_status=status,
                timestamp=self._clock.now(),
                actor=actor,
                notes=f"{notes} (no quantity received)",
            )
            updated = replace(received_po, history=po.history + (entry,), version=po.version + 1)
            logger.info(
                "po_receipt_without_quantity",
                extra={
                    "po_id": str(po.id),
                    "status": status,
                    "damaged_qty": sum(r.damaged_qty for r in reports),
                    "actor": actor,
                },
            )
            return LifecycleResult(entity=updated)

        action = (
            "record_full_receipt" if received_po.is_fully_received
            else "record_partial_receipt"
        )
        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=str(po.id), actor_id=actor):
            result = self._machine.apply(status, action, self._guard_context(received_po, {}))
            updated = self._record(
                replace(received_po, status=POStatus(result.to_state)),
                po,
                result,
                actor,
                notes,
            )

        for message in warnings:
            logger.warning("po_over_receipt", extra={"po_id": str(po.id), "detail": message})

        return LifecycleResult(entity=updated, transition=result, warnings=tuple(warnings))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _guard_context(self, po: PurchaseOrder, guard_data: Mapping[str, Any]) -> dict[str, Any]:
        context = dict(guard_data)
        context["lines"] = po.lines
        context["status"] = po.status.value
        return context

    def _apply_effects(
        self,
        po: PurchaseOrder,
        result: TransitionResult,
        guard_data: Mapping[str, Any],
    ) -> tuple[PurchaseOrder, tuple[SideEffect, ...]]:
        updated = replace(po, status=POStatus(result.to_state))
        effects: list[SideEffect] = []

        if result.action == "acknowledge":
            updated = replace(
                updated,
                vendor_ref_number=guard_data.get("vendor_ref_number", po.vendor_ref_number),
                confirmed_delivery_date=guard_data.get(
                    "confirmed_delivery_date", po.confirmed_delivery_date
                ),
            )

        for kind in result.side_effects:
            if kind == DISPATCH_VENDOR_NOTIFICATION:
                effects.append(SideEffect(kind, {
                    "po_id": po.id,
                    "po_number": po.po_number,
                    "vendor_id": po.vendor_id,
                }))
            elif kind == CREATE_RECEIVING_RECORD:
                effects.append(SideEffect(kind, {
                    "po_id": po.id,
                    "po_number": po.po_number,
                    "lines": [
                        {
                            "po_line_id": line.id,
                            "sku": line.sku,
                            "variant_id": line.variant_id,
                            "expected_qty": line.open_qty,
                        }
                        for line in po.open_lines
                    ],
                }))
            elif kind == CANCEL_OPEN_LINES:
                cancelled_ids = [line.id for line in po.lines if line.is_open]
                lines = tuple(
                    replace(
                        line,
                        cancelled_qty=line.cancelled_qty + line.open_qty,
                        status=POLineStatus.CANCELLED,
                    ) if line.is_open else line
                    for line in po.lines
                )
                updated = compute_totals(replace(
                    updated, lines=lines, cancel_reason=guard_data.get("reason", "").strip(),
                ))
                effects.append(SideEffect(kind, {
                    "po_id": po.id,
                    "terminal_status": result.to_state,
                    "cancelled_line_ids": cancelled_ids,
                }))
            else:
                raise ValueError(f"Unhandled purchase order side effect: {kind}")

        return updated, tuple(effects)

    def _record(
        self,
        updated: PurchaseOrder,
        original: PurchaseOrder,
        result: TransitionResult,
        actor: str | None,
        notes: str | None,
    ) -> PurchaseOrder:
        entry = StatusChange(
            from_status=result.from_state,
            to_status=result.to_state,
            timestamp=self._clock.now(),
            actor=actor,
            notes=notes,
        )
        logger.info(
            "po_status_changed" if result.changed_state else "po_action_recorded",
            extra={
                "po_id": str(original.id),
                "po_number": original.po_number,
                "action": result.action,
                "from_status": result.from_state,
                "to_status": result.to_state,
            },
        )
        return replace(updated, history=original.history + (entry,), version=original.version + 1)
