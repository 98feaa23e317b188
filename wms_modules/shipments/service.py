"""
Inbound Shipment Lifecycle (``wms_modules.shipments.service``).

Responsibility
--------------
Applies lifecycle transitions, line and cost edits, allocation runs and
landed-cost finalization to inbound shipment snapshots.  Every operation
takes a frozen ``InboundShipment`` and returns a new one.

Architecture position
---------------------
**Modules layer** -- ``ShipmentLifecycle`` is the sole public entry point
for shipment state changes.  Legality comes from the ``StateMachine``
engine over ``SHIPMENT_WORKFLOW``; measures from ``wms_engines.measures``;
cost splitting from ``LandedCostAllocator``.

Invariants enforced
-------------------
* Every line or cost edit recomputes the aggregates, bumps
  ``cost_revision`` and clears the line allocation outputs.
* ``finalize`` succeeds only when every line carries allocation outputs
  computed at the current ``cost_revision``.
* ``close`` requires a finalize at the current ``cost_revision``.
* Allocation runs are deterministic: two runs with no intervening change
  produce identical line outputs.

Failure modes
-------------
* ``InvalidTransitionError`` -- illegal action, failed guard, or an edit
  on a closed/cancelled shipment.
* ``NotReadyToFinalizeError`` -- missing or stale allocation outputs.
* ``NoAllocationBasisError`` -- a non-zero cost has nothing to split by.
* ``ConcurrentModificationError`` -- ``expected_version`` is stale.

Audit relevance
---------------
Landed-cost snapshots are immutable once produced and carry the cost
revision they were taken at.  History is append-only.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from wms_engines.allocation import (
    AllocatableCost,
    AllocationBasis,
    AllocationMethod,
    LandedCostAllocator,
    LineAllocation,
)
from wms_engines.measures import compute_line_measures, sum_measures, utilization_percent
from wms_engines.state_machine import StateMachine
from wms_kernel.domain.clock import Clock, SystemClock
from wms_kernel.domain.values import Currency, Money
from wms_kernel.domain.workflow import (
    LifecycleResult,
    SideEffect,
    TransitionResult,
    check_version,
)
from wms_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidTransitionError,
    NotReadyToFinalizeError,
)
from wms_kernel.logging_config import LogContext, get_logger
from wms_modules.purchasing.models import PurchaseOrder, PurchaseOrderLine, StatusChange
from wms_modules.shipments.config import ShipmentConfig
from wms_modules.shipments.models import (
    MEASURE_INPUT_FIELDS,
    AllocationRun,
    CostStatus,
    CostType,
    InboundShipment,
    LandedCostSnapshot,
    PackingListImport,
    PackingListRow,
    PooledLandedCost,
    ReceivingSummary,
    RowError,
    ShipmentCost,
    ShipmentLine,
    ShipmentMode,
    ShipmentStatus,
)
from wms_modules.shipments.workflows import (
    PUSH_LANDED_COSTS_TO_LOTS,
    SHIPMENT_WORKFLOW,
    SNAPSHOT_LANDED_COSTS,
    shipment_guard_executor,
)

logger = get_logger("modules.shipments.service")

ENTITY_TYPE = "inbound_shipment"

_LINE_FIELDS = frozenset({
    "qty_shipped", "sku", "description", "variant_id", "carton_count",
    "pallet_count", "po_unit_cost", *MEASURE_INPUT_FIELDS,
})

_COST_FIELDS = frozenset({
    "cost_type", "allocation_method", "estimated_amount", "actual_amount",
    "status", "description", "invoice_number", "vendor_name",
})

_DETAIL_FIELDS = frozenset({
    "mode", "carrier_name", "container_number", "bol_number", "tracking_number",
    "origin_port", "destination_port", "etd", "eta", "container_capacity_cbm",
    "allocation_method_default", "notes",
})

# Detail fields that feed default allocation-method resolution
_COSTING_DETAIL_FIELDS = frozenset({"mode", "allocation_method_default"})

_CLEARED_ALLOCATION = {
    "freight_allocated": None,
    "duty_allocated": None,
    "insurance_allocated": None,
    "other_allocated": None,
    "allocated_cost": None,
    "landed_unit_cost": None,
    "landed_unit_remainder": None,
}


class ShipmentLifecycle:
    """
    Inbound shipment state changes over frozen snapshots.

    Contract:
        Pure apart from the injected Clock and uuid4 ids.  Callers persist
        the returned snapshot and execute the returned side effects.

    Non-goals:
        Resolving dimensions from catalog or vendor data; callers pass
        per-unit dimensions in.
    """

    def __init__(
        self,
        config: ShipmentConfig | None = None,
        clock: Clock | None = None,
        allocator: LandedCostAllocator | None = None,
    ):
        self._config = config or ShipmentConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._allocator = allocator or LandedCostAllocator(self._config.volumetric_divisor)
        self._machine = StateMachine(SHIPMENT_WORKFLOW, shipment_guard_executor())

    @property
    def state_machine(self) -> StateMachine:
        return self._machine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def legal_actions(self, shipment: InboundShipment) -> tuple[str, ...]:
        return self._machine.legal_actions(shipment.status.value)

    def container_utilization(self, shipment: InboundShipment) -> Decimal | None:
        """Percent of container capacity used; ``None`` without a capacity."""
        volume = shipment.total_gross_volume_cbm or shipment.total_net_volume_cbm
        return utilization_percent(volume, shipment.container_capacity_cbm)

    def landed_cost_for_po_line(
        self, shipment: InboundShipment, po_line_id: UUID
    ) -> PooledLandedCost | None:
        """
        Finalized landed cost for a PO line, or ``None``.

        When several shipment lines carry the same PO line their landed
        totals are pooled before dividing by the combined quantity.  The
        unit cost is floored; the cents it drops come back as ``remainder``.
        """
        matches = [s for s in shipment.snapshots if s.purchase_order_line_id == po_line_id]
        if not matches:
            return None
        total = sum(s.landed_total.cents for s in matches)
        qty = sum(s.qty for s in matches)
        unit, remainder = divmod(total, qty)
        return PooledLandedCost(
            unit_cost=Money.from_cents(unit, shipment.currency),
            remainder=remainder,
            qty=qty,
        )

    def receiving_summary(self, shipment: InboundShipment) -> ReceivingSummary:
        return ReceivingSummary(
            shipment_id=shipment.id,
            shipment_number=shipment.shipment_number,
            status=shipment.status,
            line_count=len(shipment.lines),
            total_qty=sum(line.qty_shipped for line in shipment.lines),
            cost_finalized=shipment.is_finalized,
        )

    # ------------------------------------------------------------------
    # Creation and header edits
    # ------------------------------------------------------------------

    def create_shipment(
        self,
        *,
        shipment_number: str,
        mode: ShipmentMode | str | None = None,
        currency: Currency | str | None = None,
        shipment_id: UUID | None = None,
        **fields: Any,
    ) -> InboundShipment:
        shipment = InboundShipment(
            id=shipment_id or uuid4(),
            shipment_number=shipment_number,
            mode=mode,
            currency=currency or self._config.default_currency,
            **fields,
        )
        logger.info(
            "inbound_shipment_created",
            extra={
                "shipment_id": str(shipment.id),
                "shipment_number": shipment_number,
                "mode": shipment.mode.value if shipment.mode else None,
            },
        )
        return shipment

    def update_details(
        self,
        shipment: InboundShipment,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
        **changes: Any,
    ) -> InboundShipment:
        """Edit carrier, routing and scheduling details.

        Changing ``mode`` or ``allocation_method_default`` can change how
        default-method costs are split, so it invalidates allocations like
        a cost edit does.
        """
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._require_editable(shipment, "edit_details")
        unknown = set(changes) - _DETAIL_FIELDS
        if unknown:
            raise ValueError(f"Unknown or read-only shipment fields: {sorted(unknown)}")

        candidate = replace(shipment, **changes)
        costing_changed = any(
            getattr(candidate, name) != getattr(shipment, name) for name in _COSTING_DETAIL_FIELDS
        )
        if costing_changed:
            updated = self._revise(candidate)
        else:
            updated = replace(candidate, version=shipment.version + 1)

        logger.info(
            "shipment_details_updated",
            extra={
                "shipment_id": str(shipment.id),
                "fields": sorted(changes),
                "costing_changed": costing_changed,
                "actor": actor,
            },
        )
        return updated

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def add_lines_from_po(
        self,
        shipment: InboundShipment,
        po: PurchaseOrder,
        line_ids: Iterable[UUID] | None = None,
        dimensions: Mapping[UUID, Mapping[str, Any]] | None = None,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> LifecycleResult:
        """
        Add one shipment line per selected PO line that still has open qty.

        The line ships the full open quantity and copies the PO unit cost.
        ``dimensions`` maps PO line id to per-unit measure inputs
        (``weight_kg``, ``length_cm``, ...).  Shipping more than a PO line
        has open is reported as a warning.
        """
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._require_editable(shipment, "add_lines")
        if po.currency != shipment.currency:
            raise CurrencyMismatchError(shipment.currency.code, po.currency.code)

        selected = po.lines if line_ids is None else tuple(po.line(i) for i in line_ids)
        candidates = [line for line in selected if line.is_open]
        if not candidates:
            raise ValueError(f"No open lines to add from purchase order {po.po_number}")

        dimensions = dimensions or {}
        shipped = self._qty_by_po_line(shipment.lines)
        next_number = self._next_line_number(shipment)
        new_lines: list[ShipmentLine] = []
        warnings: list[str] = []

        for offset, po_line in enumerate(candidates):
            dims = dict(dimensions.get(po_line.id, {}))
            unknown = set(dims) - set(MEASURE_INPUT_FIELDS) - {"carton_count", "pallet_count"}
            if unknown:
                raise ValueError(f"Unknown dimension fields for PO line {po_line.id}: {sorted(unknown)}")
            line = self._measured(ShipmentLine(
                id=uuid4(),
                shipment_id=shipment.id,
                qty_shipped=po_line.open_qty,
                line_number=next_number + offset,
                purchase_order_id=po.id,
                purchase_order_line_id=po_line.id,
                variant_id=po_line.variant_id,
                sku=po_line.sku,
                description=po_line.description,
                po_unit_cost=po_line.unit_cost,
                **dims,
            ))
            shipped[po_line.id] = shipped.get(po_line.id, 0) + line.qty_shipped
            warning = self._check_over_ship(po_line, shipped[po_line.id])
            if warning:
                warnings.append(warning)
            new_lines.append(line)

        updated = self._revise(shipment, lines=shipment.lines + tuple(new_lines))
        logger.info(
            "shipment_lines_added_from_po",
            extra={
                "shipment_id": str(shipment.id),
                "po_id": str(po.id),
                "line_count": len(new_lines),
                "warning_count": len(warnings),
                "actor": actor,
            },
        )
        return LifecycleResult(entity=updated, warnings=tuple(warnings))

    def import_packing_list(
        self,
        shipment: InboundShipment,
        rows: Sequence[PackingListRow | Mapping[str, Any]],
        *,
        po_lines: Mapping[UUID, PurchaseOrderLine] | None = None,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> PackingListImport:
        """
        Import packing-list rows as shipment lines.

        Rows whose quantity is not a positive integer, whose measures are
        invalid, or whose mapping has unknown or missing columns are
        reported in ``errors`` and skipped; the remaining
        rows are imported.  When ``po_lines`` is supplied, rows linked to a
        PO line pick up its unit cost and are checked against its open qty.
        """
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._require_editable(shipment, "import_packing_list")
        po_lines = po_lines or {}

        shipped = self._qty_by_po_line(shipment.lines)
        next_number = self._next_line_number(shipment)
        new_lines: list[ShipmentLine] = []
        errors: list[RowError] = []
        warnings: list[str] = []

        for index, raw in enumerate(rows, start=1):
            try:
                row = raw if isinstance(raw, PackingListRow) else PackingListRow(**raw)
            except TypeError as exc:
                errors.append(RowError(index, f"Unreadable row: {exc}"))
                continue
            qty = row.qty_shipped
            if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
                errors.append(RowError(index, "Quantity must be > 0"))
                continue

            po_line = po_lines.get(row.purchase_order_line_id) if row.purchase_order_line_id else None
            try:
                line = self._measured(ShipmentLine(
                    id=uuid4(),
                    shipment_id=shipment.id,
                    qty_shipped=qty,
                    line_number=next_number + len(new_lines),
                    purchase_order_id=row.purchase_order_id or (
                        po_line.purchase_order_id if po_line else None
                    ),
                    purchase_order_line_id=row.purchase_order_line_id,
                    variant_id=row.variant_id or (po_line.variant_id if po_line else None),
                    sku=row.sku or (po_line.sku if po_line else None),
                    description=row.description,
                    weight_kg=row.weight_kg,
                    length_cm=row.length_cm,
                    width_cm=row.width_cm,
                    height_cm=row.height_cm,
                    gross_volume_cbm=row.gross_volume_cbm,
                    carton_count=row.carton_count,
                    pallet_count=row.pallet_count,
                    po_unit_cost=po_line.unit_cost if po_line else None,
                ))
            except (TypeError, ValueError, InvalidOperation) as exc:
                errors.append(RowError(index, str(exc)))
                continue

            if po_line is not None:
                shipped[po_line.id] = shipped.get(po_line.id, 0) + qty
                warning = self._check_over_ship(po_line, shipped[po_line.id])
                if warning:
                    warnings.append(f"row {index}: {warning}")
            new_lines.append(line)

        updated = shipment
        if new_lines:
            updated = self._revise(shipment, lines=shipment.lines + tuple(new_lines))

        logger.info(
            "packing_list_imported",
            extra={
                "shipment_id": str(shipment.id),
                "row_count": len(rows),
                "imported": len(new_lines),
                "error_count": len(errors),
                "actor": actor,
            },
        )
        return PackingListImport(
            entity=updated,
            imported_line_ids=tuple(line.id for line in new_lines),
            errors=tuple(errors),
            warnings=tuple(warnings),
        )

    def update_line(
        self,
        shipment: InboundShipment,
        line_id: UUID,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
        **changes: Any,
    ) -> InboundShipment:
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._require_editable(shipment, "edit_lines")
        unknown = set(changes) - _LINE_FIELDS
        if unknown:
            raise ValueError(f"Unknown or read-only line fields: {sorted(unknown)}")
        target = shipment.line(line_id)
        updated_line = self._measured(replace(target, **changes))
        lines = tuple(updated_line if line.id == line_id else line for line in shipment.lines)
        updated = self._revise(shipment, lines=lines)
        logger.info(
            "shipment_line_updated",
            extra={
                "shipment_id": str(shipment.id),
                "line_id": str(line_id),
                "fields": sorted(changes),
                "actor": actor,
            },
        )
        return updated

    def remove_line(
        self,
        shipment: InboundShipment,
        line_id: UUID,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> InboundShipment:
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._require_editable(shipment, "edit_lines")
        shipment.line(line_id)
        lines = tuple(line for line in shipment.lines if line.id != line_id)
        updated = self._revise(shipment, lines=lines)
        logger.info(
            "shipment_line_removed",
            extra={"shipment_id": str(shipment.id), "line_id": str(line_id), "actor": actor},
        )
        return updated

    # ------------------------------------------------------------------
    # Costs
    # ------------------------------------------------------------------

    def add_cost(
        self,
        shipment: InboundShipment,
        *,
        cost_type: CostType | str,
        estimated_amount: Money | None = None,
        actual_amount: Money | None = None,
        allocation_method: AllocationMethod | str = AllocationMethod.DEFAULT,
        status: CostStatus | str = CostStatus.ESTIMATED,
        cost_id: UUID | None = None,
        actor: str | None = None,
        expected_version: int | None = None,
        **fields: Any,
    ) -> InboundShipment:
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._require_editable(shipment, "add_cost")
        cost = ShipmentCost(
            id=cost_id or uuid4(),
            shipment_id=shipment.id,
            cost_type=cost_type,
            allocation_method=allocation_method,
            estimated_amount=estimated_amount,
            actual_amount=actual_amount,
            status=status,
            **fields,
        )
        self._check_cost_currency(shipment, cost)
        updated = self._revise(shipment, costs=shipment.costs + (cost,))
        logger.info(
            "shipment_cost_added",
            extra={
                "shipment_id": str(shipment.id),
                "cost_id": str(cost.id),
                "cost_type": cost.cost_type.value,
                "method": cost.allocation_method.value,
                "actor": actor,
            },
        )
        return updated

    def update_cost(
        self,
        shipment: InboundShipment,
        cost_id: UUID,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
        **changes: Any,
    ) -> InboundShipment:
        """Edit a cost; allowed on cancelled shipments, never on closed ones."""
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._require_editable(shipment, "edit_costs", allow_cancelled=True)
        unknown = set(changes) - _COST_FIELDS
        if unknown:
            raise ValueError(f"Unknown or read-only cost fields: {sorted(unknown)}")
        updated_cost = replace(shipment.cost(cost_id), **changes)
        self._check_cost_currency(shipment, updated_cost)
        costs = tuple(updated_cost if cost.id == cost_id else cost for cost in shipment.costs)
        updated = self._revise(shipment, costs=costs)
        logger.info(
            "shipment_cost_updated",
            extra={
                "shipment_id": str(shipment.id),
                "cost_id": str(cost_id),
                "fields": sorted(changes),
                "actor": actor,
            },
        )
        return updated

    def remove_cost(
        self,
        shipment: InboundShipment,
        cost_id: UUID,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> InboundShipment:
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._require_editable(shipment, "edit_costs", allow_cancelled=True)
        shipment.cost(cost_id)
        costs = tuple(cost for cost in shipment.costs if cost.id != cost_id)
        updated = self._revise(shipment, costs=costs)
        logger.info(
            "shipment_cost_removed",
            extra={"shipment_id": str(shipment.id), "cost_id": str(cost_id), "actor": actor},
        )
        return updated

    # ------------------------------------------------------------------
    # Allocation and finalize
    # ------------------------------------------------------------------

    def run_allocation(
        self,
        shipment: InboundShipment,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> AllocationRun:
        """
        Split every cost across the lines and store the outputs on them.

        Legal in ``delivered`` and ``costing``.  Status is unchanged.

        Raises:
            InvalidTransitionError: Shipment is in any other status.
            NoAllocationBasisError: A non-zero cost has no basis; no line
                is updated.
        """
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        self._machine.resolve(shipment.status.value, "run_allocation")

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=str(shipment.id), actor_id=actor):
            outcome = self._allocator.allocate(
                costs=[
                    AllocatableCost(
                        cost_id=cost.id,
                        cost_type=cost.cost_type.value,
                        method=cost.allocation_method,
                        amount=cost.effective_amount,
                    )
                    for cost in shipment.costs
                ],
                lines=[
                    AllocationBasis(
                        line_id=line.id,
                        qty=line.qty_shipped,
                        total_weight_kg=line.total_weight_kg,
                        gross_volume_cbm=line.gross_volume_cbm,
                        net_volume_cbm=line.net_volume_cbm,
                        chargeable_weight_kg=line.chargeable_weight_kg,
                        po_unit_cost=line.po_unit_cost,
                    )
                    for line in shipment.lines
                ],
                currency=shipment.currency,
                cost_type_defaults=self._config.cost_type_default_methods,
                shipment_default=shipment.allocation_method_default,
                mode_default=self._config.mode_default(shipment.mode),
            )

        lines = tuple(
            self._with_allocation(line, outcome.for_line(line.id)) for line in shipment.lines
        )
        updated = replace(
            shipment,
            lines=lines,
            allocation_revision=shipment.cost_revision,
            version=shipment.version + 1,
        )
        logger.info(
            "shipment_allocation_run",
            extra={
                "shipment_id": str(shipment.id),
                "cost_revision": shipment.cost_revision,
                "total_allocated_cents": outcome.total_allocated.cents,
                "actor": actor,
            },
        )
        return AllocationRun(entity=updated, outcome=outcome)

    def finalize(
        self,
        shipment: InboundShipment,
        *,
        actor: str | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> LifecycleResult:
        """
        Freeze the current allocation into landed-cost snapshots.

        Snapshots from an earlier finalize are replaced.

        Raises:
            InvalidTransitionError: Shipment is not in ``costing``.
            NotReadyToFinalizeError: No lines, a line without allocation
                outputs, or outputs older than the last line/cost change.
        """
        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        status = shipment.status.value
        self._machine.resolve(status, "finalize")

        reason = None
        if not shipment.lines:
            reason = "shipment has no lines"
        elif not all(line.is_allocated for line in shipment.lines):
            missing = [line.line_number for line in shipment.lines if not line.is_allocated]
            reason = f"lines without allocation outputs: {missing}"
        elif shipment.allocation_revision != shipment.cost_revision:
            reason = "lines or costs changed since the last allocation run"
        if reason is not None:
            logger.warning(
                "shipment_finalize_rejected",
                extra={"shipment_id": str(shipment.id), "reason": reason},
            )
            raise NotReadyToFinalizeError(str(shipment.id), reason)

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=str(shipment.id), actor_id=actor):
            result = self._machine.apply(status, "finalize", self._guard_context(shipment, {}))
            finalized_at = self._clock.now()
            snapshots = tuple(
                self._snapshot(line, shipment.cost_revision, finalized_at)
                for line in shipment.lines
            )
            updated = replace(
                shipment, snapshots=snapshots, finalized_revision=shipment.cost_revision,
            )
            effect = SideEffect(SNAPSHOT_LANDED_COSTS, {
                "shipment_id": shipment.id,
                "cost_revision": shipment.cost_revision,
                "snapshot_count": len(snapshots),
            })
            updated = self._record(
                updated, shipment, result, actor,
                notes or f"landed costs finalized at revision {shipment.cost_revision}",
            )

        return LifecycleResult(entity=updated, transition=result, side_effects=(effect,))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        shipment: InboundShipment,
        action: str,
        guard_data: Mapping[str, Any] | None = None,
        *,
        actor: str | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> LifecycleResult:
        """
        Apply a lifecycle action.

        ``guard_data`` carries caller inputs: ``reason`` for ``cancel``;
        optional ``ship_date``, ``actual_arrival``, ``delivered_date`` and
        ``customs_cleared_date`` overriding the clock's date.
        """
        if action == "finalize":
            return self.finalize(
                shipment, actor=actor, notes=notes, expected_version=expected_version,
            )
        if action == "run_allocation":
            run = self.run_allocation(shipment, actor=actor, expected_version=expected_version)
            status = shipment.status.value
            return LifecycleResult(
                entity=run.entity,
                transition=TransitionResult(SHIPMENT_WORKFLOW.name, action, status, status),
            )

        check_version(ENTITY_TYPE, shipment.id, shipment.version, expected_version)
        guard_data = dict(guard_data or {})

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=str(shipment.id), actor_id=actor):
            result = self._machine.apply(
                shipment.status.value, action, self._guard_context(shipment, guard_data)
            )
            updated, effects = self._apply_effects(shipment, result, guard_data)
            updated = self._record(updated, shipment, result, actor, notes or guard_data.get("reason"))

        return LifecycleResult(entity=updated, transition=result, side_effects=effects)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_editable(
        self, shipment: InboundShipment, attempted: str, *, allow_cancelled: bool = False
    ) -> None:
        locked = {ShipmentStatus.CLOSED}
        if not allow_cancelled:
            locked.add(ShipmentStatus.CANCELLED)
        if shipment.status in locked:
            raise InvalidTransitionError(
                shipment.status.value,
                attempted,
                f"shipment is {shipment.status.value}",
            )

    def _check_cost_currency(self, shipment: InboundShipment, cost: ShipmentCost) -> None:
        for amount in (cost.estimated_amount, cost.actual_amount):
            if amount is not None and amount.currency != shipment.currency:
                raise CurrencyMismatchError(shipment.currency.code, amount.currency.code)

    def _check_over_ship(self, po_line: PurchaseOrderLine, shipped_qty: int) -> str | None:
        if shipped_qty <= po_line.open_qty:
            return None
        message = (
            f"PO line {po_line.line_number}: shipping {shipped_qty} exceeds open qty {po_line.open_qty}"
        )
        if not self._config.allow_over_ship:
            raise ValueError(message)
        logger.warning("shipment_over_ship", extra={"po_line_id": str(po_line.id), "detail": message})
        return message

    @staticmethod
    def _qty_by_po_line(lines: Iterable[ShipmentLine]) -> dict[UUID, int]:
        shipped: dict[UUID, int] = {}
        for line in lines:
            if line.purchase_order_line_id is not None:
                key = line.purchase_order_line_id
                shipped[key] = shipped.get(key, 0) + line.qty_shipped
        return shipped

    @staticmethod
    def _next_line_number(shipment: InboundShipment) -> int:
        return max((line.line_number for line in shipment.lines), default=0) + 1

    def _measured(self, line: ShipmentLine) -> ShipmentLine:
        measures = compute_line_measures(
            line.qty_shipped,
            unit_weight_kg=line.weight_kg,
            length_cm=line.length_cm,
            width_cm=line.width_cm,
            height_cm=line.height_cm,
            gross_volume_cbm=line.gross_volume_cbm,
            volumetric_divisor=self._config.volumetric_divisor,
        )
        return replace(
            line,
            total_weight_kg=measures.total_weight_kg,
            net_volume_cbm=measures.net_volume_cbm,
            chargeable_weight_kg=measures.chargeable_weight_kg,
        )

    def _revise(
        self,
        shipment: InboundShipment,
        *,
        lines: tuple[ShipmentLine, ...] | None = None,
        costs: tuple[ShipmentCost, ...] | None = None,
    ) -> InboundShipment:
        """New cost revision: aggregates recomputed, allocation outputs cleared."""
        lines = tuple(
            replace(line, **_CLEARED_ALLOCATION)
            for line in (shipment.lines if lines is None else lines)
        )
        costs = shipment.costs if costs is None else costs
        totals = sum_measures(lines)
        zero = Money.zero(shipment.currency)
        return replace(
            shipment,
            lines=lines,
            costs=costs,
            total_weight_kg=totals.total_weight_kg,
            total_gross_volume_cbm=totals.total_gross_volume_cbm,
            total_net_volume_cbm=totals.total_net_volume_cbm,
            total_pieces=totals.total_pieces,
            total_cartons=totals.total_cartons,
            total_pallets=totals.total_pallets,
            estimated_total_cost=sum(
                (c.estimated_amount for c in costs if c.estimated_amount is not None), zero
            ),
            actual_total_cost=sum(
                (c.actual_amount for c in costs if c.actual_amount is not None), zero
            ),
            cost_revision=shipment.cost_revision + 1,
            allocation_revision=None,
            version=shipment.version + 1,
        )

    @staticmethod
    def _with_allocation(line: ShipmentLine, allocation: LineAllocation) -> ShipmentLine:
        return replace(
            line,
            freight_allocated=allocation.freight,
            duty_allocated=allocation.duty,
            insurance_allocated=allocation.insurance,
            other_allocated=allocation.other,
            allocated_cost=allocation.allocated_cost,
            landed_unit_cost=allocation.landed_unit_cost,
            landed_unit_remainder=allocation.landed_unit_remainder,
        )

    @staticmethod
    def _snapshot(line: ShipmentLine, cost_revision: int, finalized_at) -> LandedCostSnapshot:
        return LandedCostSnapshot(
            shipment_line_id=line.id,
            qty=line.qty_shipped,
            freight=line.freight_allocated,
            duty=line.duty_allocated,
            insurance=line.insurance_allocated,
            other=line.other_allocated,
            allocated_cost=line.allocated_cost,
            landed_total=line.landed_total,
            landed_unit_cost=line.landed_unit_cost,
            landed_unit_remainder=line.landed_unit_remainder,
            cost_revision=cost_revision,
            finalized_at=finalized_at,
            purchase_order_line_id=line.purchase_order_line_id,
            variant_id=line.variant_id,
            po_unit_cost=line.po_unit_cost,
        )

    def _guard_context(
        self, shipment: InboundShipment, guard_data: Mapping[str, Any]
    ) -> dict[str, Any]:
        context = dict(guard_data)
        context["lines"] = shipment.lines
        context["status"] = shipment.status.value
        context["cost_revision"] = shipment.cost_revision
        context["finalized_revision"] = shipment.finalized_revision
        return context

    def _apply_effects(
        self,
        shipment: InboundShipment,
        result: TransitionResult,
        guard_data: Mapping[str, Any],
    ) -> tuple[InboundShipment, tuple[SideEffect, ...]]:
        updated = replace(shipment, status=ShipmentStatus(result.to_state))
        today = self._clock.today()
        effects: list[SideEffect] = []

        if result.action == "depart":
            updated = replace(updated, ship_date=guard_data.get("ship_date") or today)
        elif result.action == "arrive_at_port":
            updated = replace(updated, actual_arrival=guard_data.get("actual_arrival") or today)
        elif result.action == "deliver":
            updated = replace(updated, delivered_date=guard_data.get("delivered_date") or today)
            if result.from_state == ShipmentStatus.CUSTOMS_CLEARANCE.value:
                updated = replace(
                    updated,
                    customs_cleared_date=guard_data.get("customs_cleared_date") or today,
                )
        elif result.action == "close":
            updated = replace(updated, closed_at=self._clock.now())
        elif result.action == "cancel":
            updated = replace(updated, cancel_reason=guard_data["reason"].strip())

        for kind in result.side_effects:
            if kind == PUSH_LANDED_COSTS_TO_LOTS:
                effects.append(SideEffect(kind, {
                    "shipment_id": shipment.id,
                    "lines": [
                        {
                            "shipment_line_id": snap.shipment_line_id,
                            "purchase_order_line_id": snap.purchase_order_line_id,
                            "variant_id": snap.variant_id,
                            "qty": snap.qty,
                            "landed_unit_cost": snap.landed_unit_cost,
                            "landed_unit_remainder": snap.landed_unit_remainder,
                        }
                        for snap in shipment.snapshots
                    ],
                }))
            else:
                raise ValueError(f"Unhandled shipment side effect: {kind}")

        return updated, tuple(effects)

    def _record(
        self,
        updated: InboundShipment,
        original: InboundShipment,
        result: TransitionResult,
        actor: str | None,
        notes: str | None,
    ) -> InboundShipment:
        entry = StatusChange(
            from_status=result.from_state,
            to_status=result.to_state,
            timestamp=self._clock.now(),
            actor=actor,
            notes=notes,
        )
        logger.info(
            "shipment_status_changed" if result.changed_state else "shipment_action_recorded",
            extra={
                "shipment_id": str(original.id),
                "shipment_number": original.shipment_number,
                "action": result.action,
                "from_status": result.from_state,
                "to_status": result.to_state,
            },
        )
        return replace(updated, history=original.history + (entry,), version=original.version + 1)
