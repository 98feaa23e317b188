"""
LifecycleService -- persistence shell around the PO and shipment lifecycles.

Architecture: wms_services -- imperative shell.
    Each call opens one transaction: load the snapshot, run the pure
    lifecycle operation (which checks ``expected_version``), save the
    returned snapshot, commit.  Side effects are handed back to the caller
    untouched.

Failure modes:
    Everything the lifecycles raise propagates unchanged after rollback;
    ``EntityNotFoundError`` for unknown ids; ``ConcurrentModificationError``
    when another writer saved between load and save.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from contextlib import AbstractContextManager
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from wms_config import Settings
from wms_kernel.db.engine import session_scope
from wms_kernel.domain.clock import Clock, SystemClock
from wms_kernel.domain.workflow import LifecycleResult
from wms_kernel.exceptions import EntityNotFoundError
from wms_kernel.logging_config import LogContext, get_logger
from wms_modules.purchasing.models import ChargePatch, PurchaseOrder, ReceiptLineReport
from wms_modules.purchasing.service import PurchaseOrderLifecycle
from wms_modules.shipments.models import (
    AllocationRun,
    InboundShipment,
    PackingListImport,
    PackingListRow,
    PooledLandedCost,
)
from wms_modules.shipments.service import ShipmentLifecycle
from wms_services.repository import PurchaseOrderRepository, ShipmentRepository

logger = get_logger("services.lifecycle")


def _row_po_id(row: PackingListRow | Mapping[str, Any]) -> Any:
    # Malformed rows are reported by the import itself.
    if isinstance(row, PackingListRow):
        return row.purchase_order_id
    return row.get("purchase_order_id") if isinstance(row, Mapping) else None


class LifecycleService:
    """Load -> lifecycle -> save, one transaction per call.

    Contract:
        - Every mutating method takes the caller's ``expected_version``
          and returns what the lifecycle returned, after it is committed.

    Non-goals:
        - Does NOT execute side effects (vendor dispatch, receiving records,
          lot cost updates); callers do.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Clock | None = None,
        scope: Callable[[], AbstractContextManager[Session]] = session_scope,
    ) -> None:
        self._clock = clock or SystemClock()
        self._scope = scope
        self.purchasing = PurchaseOrderLifecycle(
            config=settings.purchasing if settings else None, clock=self._clock,
        )
        self.shipments = ShipmentLifecycle(
            config=settings.shipments if settings else None, clock=self._clock,
        )

    # -----------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------

    def _mutate(
        self,
        repo_cls: type,
        entity_id: UUID,
        actor: str | None,
        operation: Callable[[Any, Session], Any],
    ) -> Any:
        with LogContext.bind(actor_id=actor, entity_id=str(entity_id)):
            with self._scope() as session:
                repo = repo_cls(session)
                current = repo.get(entity_id)
                outcome = operation(current, session)
                entity = outcome if isinstance(outcome, (PurchaseOrder, InboundShipment)) else outcome.entity
                if entity is not current:
                    repo.save(entity, based_on_version=current.version, actor=actor)
                return outcome

    # -----------------------------------------------------------------
    # Purchase orders
    # -----------------------------------------------------------------

    def create_purchase_order(self, *, actor: str | None = None, **fields: Any) -> PurchaseOrder:
        po = self.purchasing.create_purchase_order(**fields)
        with self._scope() as session:
            PurchaseOrderRepository(session).add(po, actor)
        return po

    def get_purchase_order(self, po_id: UUID) -> PurchaseOrder:
        with self._scope() as session:
            return PurchaseOrderRepository(session).get(po_id)

    def add_po_line(
        self,
        po_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        **fields: Any,
    ) -> PurchaseOrder:
        return self._mutate(
            PurchaseOrderRepository, po_id, actor,
            lambda po, _: self.purchasing.add_line(
                po, actor=actor, expected_version=expected_version, **fields
            ),
        )

    def update_po_line(
        self,
        po_id: UUID,
        line_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        **changes: Any,
    ) -> PurchaseOrder:
        return self._mutate(
            PurchaseOrderRepository, po_id, actor,
            lambda po, _: self.purchasing.update_line(
                po, line_id, actor=actor, expected_version=expected_version, **changes
            ),
        )

    def remove_po_line(
        self,
        po_id: UUID,
        line_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> PurchaseOrder:
        return self._mutate(
            PurchaseOrderRepository, po_id, actor,
            lambda po, _: self.purchasing.remove_line(
                po, line_id, actor=actor, expected_version=expected_version
            ),
        )

    def edit_po_charges(
        self,
        po_id: UUID,
        patch: ChargePatch,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        return self._mutate(
            PurchaseOrderRepository, po_id, actor,
            lambda po, _: self.purchasing.edit_charges(
                po, patch, actor=actor, notes=notes, expected_version=expected_version
            ),
        )

    def transition_purchase_order(
        self,
        po_id: UUID,
        action: str,
        guard_data: Mapping[str, Any] | None = None,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        notes: str | None = None,
    ) -> LifecycleResult:
        return self._mutate(
            PurchaseOrderRepository, po_id, actor,
            lambda po, _: self.purchasing.apply_transition(
                po, action, guard_data,
                actor=actor, notes=notes, expected_version=expected_version,
            ),
        )

    def record_receipt(
        self,
        po_id: UUID,
        reports: Sequence[ReceiptLineReport],
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        receiving_record_id: str | None = None,
    ) -> LifecycleResult:
        return self._mutate(
            PurchaseOrderRepository, po_id, actor,
            lambda po, _: self.purchasing.apply_receipt(
                po, reports,
                actor=actor,
                receiving_record_id=receiving_record_id,
                expected_version=expected_version,
            ),
        )

    # -----------------------------------------------------------------
    # Shipments
    # -----------------------------------------------------------------

    def create_shipment(self, *, actor: str | None = None, **fields: Any) -> InboundShipment:
        shipment = self.shipments.create_shipment(**fields)
        with self._scope() as session:
            ShipmentRepository(session).add(shipment, actor)
        return shipment

    def get_shipment(self, shipment_id: UUID) -> InboundShipment:
        with self._scope() as session:
            return ShipmentRepository(session).get(shipment_id)

    def add_shipment_lines_from_po(
        self,
        shipment_id: UUID,
        po_id: UUID,
        line_ids: Iterable[UUID] | None = None,
        dimensions: Mapping[UUID, Mapping[str, Any]] | None = None,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> LifecycleResult:
        def operation(shipment, session):
            po = PurchaseOrderRepository(session).get(po_id)
            return self.shipments.add_lines_from_po(
                shipment, po, line_ids, dimensions,
                actor=actor, expected_version=expected_version,
            )

        return self._mutate(ShipmentRepository, shipment_id, actor, operation)

    def import_packing_list(
        self,
        shipment_id: UUID,
        rows: Sequence[PackingListRow | Mapping[str, Any]],
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> PackingListImport:
        """Import rows; rows naming a stored PO are checked against its lines."""
        rows = list(rows)
        po_ids = {po_id for po_id in map(_row_po_id, rows) if po_id}

        def operation(shipment, session):
            po_repo = PurchaseOrderRepository(session)
            po_lines = {}
            for po_id in po_ids:
                try:
                    po = po_repo.get(po_id)
                except EntityNotFoundError:
                    logger.warning("packing_list_unknown_po", extra={"po_id": str(po_id)})
                    continue
                po_lines.update({line.id: line for line in po.lines})
            return self.shipments.import_packing_list(
                shipment, rows, po_lines=po_lines,
                actor=actor, expected_version=expected_version,
            )

        return self._mutate(ShipmentRepository, shipment_id, actor, operation)

    def update_shipment_details(
        self,
        shipment_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        **changes: Any,
    ) -> InboundShipment:
        return self._mutate(
            ShipmentRepository, shipment_id, actor,
            lambda shipment, _: self.shipments.update_details(
                shipment, actor=actor, expected_version=expected_version, **changes
            ),
        )

    def update_shipment_line(
        self,
        shipment_id: UUID,
        line_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        **changes: Any,
    ) -> InboundShipment:
        return self._mutate(
            ShipmentRepository, shipment_id, actor,
            lambda shipment, _: self.shipments.update_line(
                shipment, line_id, actor=actor, expected_version=expected_version, **changes
            ),
        )

    def remove_shipment_line(
        self,
        shipment_id: UUID,
        line_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> InboundShipment:
        return self._mutate(
            ShipmentRepository, shipment_id, actor,
            lambda shipment, _: self.shipments.remove_line(
                shipment, line_id, actor=actor, expected_version=expected_version
            ),
        )

    def add_shipment_cost(
        self,
        shipment_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        **fields: Any,
    ) -> InboundShipment:
        return self._mutate(
            ShipmentRepository, shipment_id, actor,
            lambda shipment, _: self.shipments.add_cost(
                shipment, actor=actor, expected_version=expected_version, **fields
            ),
        )

    def update_shipment_cost(
        self,
        shipment_id: UUID,
        cost_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        **changes: Any,
    ) -> InboundShipment:
        return self._mutate(
            ShipmentRepository, shipment_id, actor,
            lambda shipment, _: self.shipments.update_cost(
                shipment, cost_id, actor=actor, expected_version=expected_version, **changes
            ),
        )

    def remove_shipment_cost(
        self,
        shipment_id: UUID,
        cost_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> InboundShipment:
        return self._mutate(
            ShipmentRepository, shipment_id, actor,
            lambda shipment, _: self.shipments.remove_cost(
                shipment, cost_id, actor=actor, expected_version=expected_version
            ),
        )

    def run_allocation(
        self,
        shipment_id: UUID,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> AllocationRun:
        return self._mutate(
            ShipmentRepository, shipment_id, actor,
            lambda shipment, _: self.shipments.run_allocation(
                shipment, actor=actor, expected_version=expected_version
            ),
        )

    def transition_shipment(
        self,
        shipment_id: UUID,
        action: str,
        guard_data: Mapping[str, Any] | None = None,
        *,
        expected_version: int | None = None,
        actor: str | None = None,
        notes: str | None = None,
    ) -> LifecycleResult:
        return self._mutate(
            ShipmentRepository, shipment_id, actor,
            lambda shipment, _: self.shipments.apply_transition(
                shipment, action, guard_data,
                actor=actor, notes=notes, expected_version=expected_version,
            ),
        )

    def landed_cost_for_po_line(self, po_line_id: UUID) -> PooledLandedCost | None:
        """Pooled landed cost from the most recently finalized shipment carrying the line."""
        with self._scope() as session:
            repo = ShipmentRepository(session)
            for shipment_id in repo.shipment_ids_for_po_line(po_line_id):
                cost = self.shipments.landed_cost_for_po_line(repo.get(shipment_id), po_line_id)
                if cost is not None:
                    return cost
        return None
