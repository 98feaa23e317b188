"""
Snapshot repositories (``wms_services.repository``).

Responsibility
--------------
Load lifecycle snapshots from the database as frozen DTOs and save the
snapshots the lifecycles return.  Child rows (lines, costs) are synced in
place; history rows are appended.

Architecture position
---------------------
**Services layer** -- imperative shell over SQLAlchemy sessions.  The
lifecycles never see a session; the repositories never decide legality.

Invariants enforced
-------------------
* A save is rejected when the stored version differs from the version the
  snapshot was derived from (explicit check, then ``version_id_col``).
* ``StaleDataError`` from the flush surfaces as
  ``ConcurrentModificationError``; nothing is retried.

Failure modes
-------------
* ``EntityNotFoundError`` -- no row with the requested id or number.
* ``ConcurrentModificationError`` -- another writer saved first.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from wms_kernel.exceptions import ConcurrentModificationError, EntityNotFoundError
from wms_kernel.logging_config import get_logger
from wms_modules.purchasing.orm import PurchaseOrderModel
from wms_modules.shipments.orm import InboundShipmentModel, LandedCostSnapshotModel

logger = get_logger("services.repository")


class _SnapshotRepository:
    """Shared load/add/save for one aggregate root model."""

    model_cls: Any = None
    entity_type: str = ""
    number_field: str = ""

    def __init__(self, session: Session) -> None:
        self._session = session

    def _load_model(self, entity_id: UUID):
        model = self._session.get(self.model_cls, entity_id)
        if model is None:
            raise EntityNotFoundError(self.entity_type, str(entity_id))
        return model

    def get(self, entity_id: UUID):
        return self._load_model(entity_id).to_dto()

    def get_by_number(self, number: str):
        column = getattr(self.model_cls, self.number_field)
        model = self._session.scalars(select(self.model_cls).where(column == number)).first()
        if model is None:
            raise EntityNotFoundError(self.entity_type, number)
        return model.to_dto()

    def exists(self, entity_id: UUID) -> bool:
        return self._session.get(self.model_cls, entity_id) is not None

    def add(self, entity, actor: str | None = None) -> None:
        """Insert a new aggregate."""
        self._session.add(self.model_cls.from_dto(entity, actor))
        self._session.flush()
        logger.info(
            "snapshot_inserted",
            extra={"entity_type": self.entity_type, "entity_id": str(entity.id), "version": entity.version},
        )

    def save(self, entity, *, based_on_version: int, actor: str | None = None) -> None:
        """
        Persist ``entity``, derived from the stored snapshot at ``based_on_version``.

        Raises:
            ConcurrentModificationError: the stored row has moved on.
        """
        model = self._load_model(entity.id)
        if model.version != based_on_version:
            raise ConcurrentModificationError(
                self.entity_type, str(entity.id), based_on_version, model.version
            )
        model.apply_dto(entity, actor)
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning(
                "snapshot_save_stale",
                extra={"entity_type": self.entity_type, "entity_id": str(entity.id)},
            )
            raise ConcurrentModificationError(
                self.entity_type, str(entity.id), based_on_version
            ) from exc
        logger.info(
            "snapshot_saved",
            extra={
                "entity_type": self.entity_type,
                "entity_id": str(entity.id),
                "from_version": based_on_version,
                "to_version": entity.version,
            },
        )


class PurchaseOrderRepository(_SnapshotRepository):
    model_cls = PurchaseOrderModel
    entity_type = "purchase_order"
    number_field = "po_number"


class ShipmentRepository(_SnapshotRepository):
    model_cls = InboundShipmentModel
    entity_type = "inbound_shipment"
    number_field = "shipment_number"

    def shipment_ids_for_po_line(self, po_line_id: UUID) -> list[UUID]:
        """Shipments holding finalized snapshots for a PO line, latest first."""
        rows = self._session.execute(
            select(LandedCostSnapshotModel.shipment_id, LandedCostSnapshotModel.finalized_at)
            .where(LandedCostSnapshotModel.purchase_order_line_id == po_line_id)
            .order_by(LandedCostSnapshotModel.finalized_at.desc())
        ).all()
        seen: list[UUID] = []
        for shipment_id, _ in rows:
            if shipment_id not in seen:
                seen.append(shipment_id)
        return seen
