"""
SQLAlchemy ORM persistence models for the Shipments module.

Responsibility
--------------
Database-backed persistence for inbound shipments, their lines, costs,
status history and landed-cost snapshots.  ``wms_services`` converts
between these rows and the frozen DTOs in ``wms_modules.shipments.models``.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``wms_services.repository``.
Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* Money is stored as BigInteger minor units; the currency lives on the
  shipment header.
* ``version`` is the mapper's ``version_id_col`` with a caller-managed value.
* History rows are append-only; snapshot rows are replaced as a set when
  a new finalize supersedes them, never edited.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wms_kernel.db.base import TrackedBase


def _cents(money) -> int | None:
    return money.cents if money is not None else None


def _money(cents: int | None, currency):
    from wms_kernel.domain.values import Money

    return Money(cents, currency) if cents is not None else None


def _unit_cost(cents: Decimal | None, currency):
    from wms_kernel.domain.values import UnitCost

    return UnitCost(Decimal(cents).normalize(), currency) if cents is not None else None


def _norm(value: Decimal | None) -> Decimal | None:
    return value.normalize() if value is not None else None


# ---------------------------------------------------------------------------
# InboundShipmentModel
# ---------------------------------------------------------------------------


class InboundShipmentModel(TrackedBase):
    """
    An inbound shipment header.

    Maps to the ``InboundShipment`` DTO in ``wms_modules.shipments.models``.
    """

    __tablename__ = "shipments_inbound_shipments"

    __table_args__ = (
        UniqueConstraint("shipment_number", name="uq_inbound_shipment_number"),
        Index("idx_shipment_status", "status"),
        Index("idx_shipment_container", "container_number"),
    )

    shipment_number: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    carrier_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    container_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bol_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(200), nullable=True)
    origin_port: Mapped[str | None] = mapped_column(String(100), nullable=True)
    destination_port: Mapped[str | None] = mapped_column(String(100), nullable=True)
    etd: Mapped[date | None] = mapped_column(Date, nullable=True)
    eta: Mapped[date | None] = mapped_column(Date, nullable=True)
    ship_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_arrival: Mapped[date | None] = mapped_column(Date, nullable=True)
    customs_cleared_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    delivered_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    container_capacity_cbm: Mapped[Decimal | None] = mapped_column(nullable=True)
    allocation_method_default: Mapped[str | None] = mapped_column(String(30), nullable=True)
    total_weight_kg: Mapped[Decimal] = mapped_column(default=Decimal(0))
    total_gross_volume_cbm: Mapped[Decimal] = mapped_column(default=Decimal(0))
    total_net_volume_cbm: Mapped[Decimal] = mapped_column(default=Decimal(0))
    total_pieces: Mapped[int] = mapped_column(default=0)
    total_cartons: Mapped[int] = mapped_column(default=0)
    total_pallets: Mapped[int] = mapped_column(default=0)
    estimated_total_cost_cents: Mapped[int] = mapped_column(default=0)
    actual_total_cost_cents: Mapped[int] = mapped_column(default=0)
    cost_revision: Mapped[int] = mapped_column(default=0)
    allocation_revision: Mapped[int | None] = mapped_column(nullable=True)
    finalized_revision: Mapped[int | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    lines: Mapped[list["ShipmentLineModel"]] = relationship(
        "ShipmentLineModel",
        back_populates="shipment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ShipmentLineModel.line_number",
    )

    costs: Mapped[list["ShipmentCostModel"]] = relationship(
        "ShipmentCostModel",
        back_populates="shipment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ShipmentCostModel.sequence",
    )

    history: Mapped[list["ShipmentHistoryModel"]] = relationship(
        "ShipmentHistoryModel",
        back_populates="shipment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ShipmentHistoryModel.sequence",
    )

    snapshots: Mapped[list["LandedCostSnapshotModel"]] = relationship(
        "LandedCostSnapshotModel",
        back_populates="shipment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LandedCostSnapshotModel.sequence",
    )

    def to_dto(self):
        from wms_modules.shipments.models import InboundShipment, ShipmentStatus
        from wms_kernel.domain.values import Currency

        currency = Currency(self.currency)
        return InboundShipment(
            id=self.id,
            shipment_number=self.shipment_number,
            currency=currency,
            status=ShipmentStatus(self.status),
            mode=self.mode,
            carrier_name=self.carrier_name,
            container_number=self.container_number,
            bol_number=self.bol_number,
            tracking_number=self.tracking_number,
            origin_port=self.origin_port,
            destination_port=self.destination_port,
            etd=self.etd,
            eta=self.eta,
            ship_date=self.ship_date,
            actual_arrival=self.actual_arrival,
            customs_cleared_date=self.customs_cleared_date,
            delivered_date=self.delivered_date,
            closed_at=self.closed_at,
            container_capacity_cbm=_norm(self.container_capacity_cbm),
            allocation_method_default=self.allocation_method_default,
            total_weight_kg=_norm(self.total_weight_kg),
            total_gross_volume_cbm=_norm(self.total_gross_volume_cbm),
            total_net_volume_cbm=_norm(self.total_net_volume_cbm),
            total_pieces=self.total_pieces,
            total_cartons=self.total_cartons,
            total_pallets=self.total_pallets,
            estimated_total_cost=_money(self.estimated_total_cost_cents, currency),
            actual_total_cost=_money(self.actual_total_cost_cents, currency),
            lines=tuple(line.to_dto(currency) for line in self.lines),
            costs=tuple(cost.to_dto(currency) for cost in self.costs),
            history=tuple(entry.to_dto() for entry in self.history),
            snapshots=tuple(snap.to_dto(currency) for snap in self.snapshots),
            cost_revision=self.cost_revision,
            allocation_revision=self.allocation_revision,
            finalized_revision=self.finalized_revision,
            cancel_reason=self.cancel_reason,
            notes=self.notes,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto, created_by: str | None = None) -> "InboundShipmentModel":
        model = cls(id=dto.id, created_by=created_by)
        model.apply_dto(dto, created_by)
        return model

    def apply_dto(self, dto, actor: str | None = None) -> None:
        """Copy a snapshot onto this row; children synced by id, history appended."""
        self.shipment_number = dto.shipment_number
        self.status = dto.status.value
        self.mode = dto.mode.value if dto.mode is not None else None
        self.currency = dto.currency.code
        self.carrier_name = dto.carrier_name
        self.container_number = dto.container_number
        self.bol_number = dto.bol_number
        self.tracking_number = dto.tracking_number
        self.origin_port = dto.origin_port
        self.destination_port = dto.destination_port
        self.etd = dto.etd
        self.eta = dto.eta
        self.ship_date = dto.ship_date
        self.actual_arrival = dto.actual_arrival
        self.customs_cleared_date = dto.customs_cleared_date
        self.delivered_date = dto.delivered_date
        self.closed_at = dto.closed_at
        self.container_capacity_cbm = dto.container_capacity_cbm
        self.allocation_method_default = (
            dto.allocation_method_default.value if dto.allocation_method_default is not None else None
        )
        self.total_weight_kg = dto.total_weight_kg
        self.total_gross_volume_cbm = dto.total_gross_volume_cbm
        self.total_net_volume_cbm = dto.total_net_volume_cbm
        self.total_pieces = dto.total_pieces
        self.total_cartons = dto.total_cartons
        self.total_pallets = dto.total_pallets
        self.estimated_total_cost_cents = dto.estimated_total_cost.cents
        self.actual_total_cost_cents = dto.actual_total_cost.cents
        self.cost_revision = dto.cost_revision
        self.allocation_revision = dto.allocation_revision
        self.finalized_revision = dto.finalized_revision
        self.cancel_reason = dto.cancel_reason
        self.notes = dto.notes
        self.version = dto.version
        self.updated_by = actor

        existing_lines = {line.id: line for line in self.lines}
        synced_lines = []
        for line_dto in dto.lines:
            row = existing_lines.get(line_dto.id)
            if row is None:
                row = ShipmentLineModel(id=line_dto.id, created_by=actor)
            row.apply_dto(line_dto)
            synced_lines.append(row)
        self.lines = synced_lines

        existing_costs = {cost.id: cost for cost in self.costs}
        synced_costs = []
        for sequence, cost_dto in enumerate(dto.costs):
            row = existing_costs.get(cost_dto.id)
            if row is None:
                row = ShipmentCostModel(id=cost_dto.id, created_by=actor)
            row.apply_dto(cost_dto, sequence)
            synced_costs.append(row)
        self.costs = synced_costs

        for sequence, entry in enumerate(dto.history[len(self.history):], start=len(self.history)):
            self.history.append(ShipmentHistoryModel.from_dto(entry, sequence, actor))

        # A finalize at the same revision reproduces the same snapshot set
        stored = [(s.shipment_line_id, s.cost_revision) for s in self.snapshots]
        incoming = [(s.shipment_line_id, s.cost_revision) for s in dto.snapshots]
        if stored != incoming:
            self.snapshots = [
                LandedCostSnapshotModel.from_dto(snap, sequence, actor)
                for sequence, snap in enumerate(dto.snapshots)
            ]

    def __repr__(self) -> str:
        return f"<InboundShipmentModel {self.shipment_number} [{self.status}] v{self.version}>"


# ---------------------------------------------------------------------------
# ShipmentLineModel
# ---------------------------------------------------------------------------


class ShipmentLineModel(TrackedBase):
    """Goods on an inbound shipment, with their latest allocation outputs."""

    __tablename__ = "shipments_shipment_lines"

    __table_args__ = (
        Index("idx_shipment_line_shipment", "shipment_id"),
        Index("idx_shipment_line_po_line", "purchase_order_line_id"),
    )

    shipment_id: Mapped[UUID] = mapped_column(
        ForeignKey("shipments_inbound_shipments.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(default=0)
    purchase_order_id: Mapped[UUID | None]
    purchase_order_line_id: Mapped[UUID | None]
    variant_id: Mapped[UUID | None]
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    qty_shipped: Mapped[int]
    weight_kg: Mapped[Decimal | None] = mapped_column(nullable=True)
    length_cm: Mapped[Decimal | None] = mapped_column(nullable=True)
    width_cm: Mapped[Decimal | None] = mapped_column(nullable=True)
    height_cm: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_weight_kg: Mapped[Decimal | None] = mapped_column(nullable=True)
    gross_volume_cbm: Mapped[Decimal | None] = mapped_column(nullable=True)
    net_volume_cbm: Mapped[Decimal | None] = mapped_column(nullable=True)
    chargeable_weight_kg: Mapped[Decimal | None] = mapped_column(nullable=True)
    carton_count: Mapped[int | None] = mapped_column(nullable=True)
    pallet_count: Mapped[int | None] = mapped_column(nullable=True)
    po_unit_cost_cents: Mapped[Decimal | None] = mapped_column(nullable=True)
    freight_allocated_cents: Mapped[int | None] = mapped_column(nullable=True)
    duty_allocated_cents: Mapped[int | None] = mapped_column(nullable=True)
    insurance_allocated_cents: Mapped[int | None] = mapped_column(nullable=True)
    other_allocated_cents: Mapped[int | None] = mapped_column(nullable=True)
    allocated_cost_cents: Mapped[int | None] = mapped_column(nullable=True)
    landed_unit_cost_cents: Mapped[int | None] = mapped_column(nullable=True)
    landed_unit_remainder: Mapped[int | None] = mapped_column(nullable=True)

    shipment: Mapped["InboundShipmentModel"] = relationship(
        "InboundShipmentModel",
        back_populates="lines",
    )

    def to_dto(self, currency):
        from wms_modules.shipments.models import ShipmentLine

        return ShipmentLine(
            id=self.id,
            shipment_id=self.shipment_id,
            qty_shipped=self.qty_shipped,
            line_number=self.line_number,
            purchase_order_id=self.purchase_order_id,
            purchase_order_line_id=self.purchase_order_line_id,
            variant_id=self.variant_id,
            sku=self.sku,
            description=self.description,
            weight_kg=_norm(self.weight_kg),
            length_cm=_norm(self.length_cm),
            width_cm=_norm(self.width_cm),
            height_cm=_norm(self.height_cm),
            total_weight_kg=_norm(self.total_weight_kg),
            gross_volume_cbm=_norm(self.gross_volume_cbm),
            net_volume_cbm=_norm(self.net_volume_cbm),
            chargeable_weight_kg=_norm(self.chargeable_weight_kg),
            carton_count=self.carton_count,
            pallet_count=self.pallet_count,
            po_unit_cost=_unit_cost(self.po_unit_cost_cents, currency),
            freight_allocated=_money(self.freight_allocated_cents, currency),
            duty_allocated=_money(self.duty_allocated_cents, currency),
            insurance_allocated=_money(self.insurance_allocated_cents, currency),
            other_allocated=_money(self.other_allocated_cents, currency),
            allocated_cost=_money(self.allocated_cost_cents, currency),
            landed_unit_cost=_money(self.landed_unit_cost_cents, currency),
            landed_unit_remainder=self.landed_unit_remainder,
        )

    def apply_dto(self, dto) -> None:
        self.shipment_id = dto.shipment_id
        self.line_number = dto.line_number
        self.purchase_order_id = dto.purchase_order_id
        self.purchase_order_line_id = dto.purchase_order_line_id
        self.variant_id = dto.variant_id
        self.sku = dto.sku
        self.description = dto.description
        self.qty_shipped = dto.qty_shipped
        self.weight_kg = dto.weight_kg
        self.length_cm = dto.length_cm
        self.width_cm = dto.width_cm
        self.height_cm = dto.height_cm
        self.total_weight_kg = dto.total_weight_kg
        self.gross_volume_cbm = dto.gross_volume_cbm
        self.net_volume_cbm = dto.net_volume_cbm
        self.chargeable_weight_kg = dto.chargeable_weight_kg
        self.carton_count = dto.carton_count
        self.pallet_count = dto.pallet_count
        self.po_unit_cost_cents = dto.po_unit_cost.cents if dto.po_unit_cost is not None else None
        self.freight_allocated_cents = _cents(dto.freight_allocated)
        self.duty_allocated_cents = _cents(dto.duty_allocated)
        self.insurance_allocated_cents = _cents(dto.insurance_allocated)
        self.other_allocated_cents = _cents(dto.other_allocated)
        self.allocated_cost_cents = _cents(dto.allocated_cost)
        self.landed_unit_cost_cents = _cents(dto.landed_unit_cost)
        self.landed_unit_remainder = dto.landed_unit_remainder

    def __repr__(self) -> str:
        return f"<ShipmentLineModel #{self.line_number} qty={self.qty_shipped}>"


# ---------------------------------------------------------------------------
# ShipmentCostModel
# ---------------------------------------------------------------------------


class ShipmentCostModel(TrackedBase):
    """A cost charged against a whole shipment."""

    __tablename__ = "shipments_shipment_costs"

    __table_args__ = (
        Index("idx_shipment_cost_shipment", "shipment_id"),
        Index("idx_shipment_cost_type", "cost_type"),
    )

    shipment_id: Mapped[UUID] = mapped_column(
        ForeignKey("shipments_inbound_shipments.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(default=0)
    cost_type: Mapped[str] = mapped_column(String(30), nullable=False)
    allocation_method: Mapped[str] = mapped_column(String(30), nullable=False, default="default")
    estimated_amount_cents: Mapped[int | None] = mapped_column(nullable=True)
    actual_amount_cents: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="estimated")
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    shipment: Mapped["InboundShipmentModel"] = relationship(
        "InboundShipmentModel",
        back_populates="costs",
    )

    def to_dto(self, currency):
        from wms_modules.shipments.models import ShipmentCost

        return ShipmentCost(
            id=self.id,
            shipment_id=self.shipment_id,
            cost_type=self.cost_type,
            allocation_method=self.allocation_method,
            estimated_amount=_money(self.estimated_amount_cents, currency),
            actual_amount=_money(self.actual_amount_cents, currency),
            status=self.status,
            description=self.description,
            invoice_number=self.invoice_number,
            vendor_name=self.vendor_name,
        )

    def apply_dto(self, dto, sequence: int) -> None:
        self.shipment_id = dto.shipment_id
        self.sequence = sequence
        self.cost_type = dto.cost_type.value
        self.allocation_method = dto.allocation_method.value
        self.estimated_amount_cents = _cents(dto.estimated_amount)
        self.actual_amount_cents = _cents(dto.actual_amount)
        self.status = dto.status.value
        self.description = dto.description
        self.invoice_number = dto.invoice_number
        self.vendor_name = dto.vendor_name

    def __repr__(self) -> str:
        return f"<ShipmentCostModel {self.cost_type} [{self.status}]>"


# ---------------------------------------------------------------------------
# ShipmentHistoryModel
# ---------------------------------------------------------------------------


class ShipmentHistoryModel(TrackedBase):
    """One append-only status history entry."""

    __tablename__ = "shipments_shipment_history"

    __table_args__ = (
        UniqueConstraint("shipment_id", "sequence", name="uq_shipment_history_sequence"),
        Index("idx_shipment_history_shipment", "shipment_id"),
    )

    shipment_id: Mapped[UUID] = mapped_column(
        ForeignKey("shipments_inbound_shipments.id"), nullable=False,
    )
    sequence: Mapped[int]
    from_status: Mapped[str] = mapped_column(String(50), nullable=False)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    shipment: Mapped["InboundShipmentModel"] = relationship(
        "InboundShipmentModel",
        back_populates="history",
    )

    def to_dto(self):
        from wms_modules.purchasing.models import StatusChange

        return StatusChange(
            from_status=self.from_status,
            to_status=self.to_status,
            timestamp=self.changed_at,
            actor=self.actor,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto, sequence: int, created_by: str | None = None) -> "ShipmentHistoryModel":
        return cls(
            sequence=sequence,
            from_status=dto.from_status,
            to_status=dto.to_status,
            changed_at=dto.timestamp,
            actor=dto.actor,
            notes=dto.notes,
            created_by=created_by,
        )


# ---------------------------------------------------------------------------
# LandedCostSnapshotModel
# ---------------------------------------------------------------------------


class LandedCostSnapshotModel(TrackedBase):
    """Immutable landed cost of one shipment line at finalize."""

    __tablename__ = "shipments_landed_cost_snapshots"

    __table_args__ = (
        Index("idx_snapshot_shipment", "shipment_id"),
        Index("idx_snapshot_po_line", "purchase_order_line_id"),
    )

    shipment_id: Mapped[UUID] = mapped_column(
        ForeignKey("shipments_inbound_shipments.id"), nullable=False,
    )
    sequence: Mapped[int]
    shipment_line_id: Mapped[UUID]
    purchase_order_line_id: Mapped[UUID | None]
    variant_id: Mapped[UUID | None]
    qty: Mapped[int]
    po_unit_cost_cents: Mapped[Decimal | None] = mapped_column(nullable=True)
    freight_cents: Mapped[int]
    duty_cents: Mapped[int]
    insurance_cents: Mapped[int]
    other_cents: Mapped[int]
    allocated_cost_cents: Mapped[int]
    landed_total_cents: Mapped[int]
    landed_unit_cost_cents: Mapped[int]
    landed_unit_remainder: Mapped[int]
    cost_revision: Mapped[int]
    finalized_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    shipment: Mapped["InboundShipmentModel"] = relationship(
        "InboundShipmentModel",
        back_populates="snapshots",
    )

    def to_dto(self, currency):
        from wms_modules.shipments.models import LandedCostSnapshot

        return LandedCostSnapshot(
            shipment_line_id=self.shipment_line_id,
            qty=self.qty,
            freight=_money(self.freight_cents, currency),
            duty=_money(self.duty_cents, currency),
            insurance=_money(self.insurance_cents, currency),
            other=_money(self.other_cents, currency),
            allocated_cost=_money(self.allocated_cost_cents, currency),
            landed_total=_money(self.landed_total_cents, currency),
            landed_unit_cost=_money(self.landed_unit_cost_cents, currency),
            landed_unit_remainder=self.landed_unit_remainder,
            cost_revision=self.cost_revision,
            finalized_at=self.finalized_at,
            purchase_order_line_id=self.purchase_order_line_id,
            variant_id=self.variant_id,
            po_unit_cost=_unit_cost(self.po_unit_cost_cents, currency),
        )

    @classmethod
    def from_dto(cls, dto, sequence: int, created_by: str | None = None) -> "LandedCostSnapshotModel":
        return cls(
            sequence=sequence,
            shipment_line_id=dto.shipment_line_id,
            purchase_order_line_id=dto.purchase_order_line_id,
            variant_id=dto.variant_id,
            qty=dto.qty,
            po_unit_cost_cents=dto.po_unit_cost.cents if dto.po_unit_cost is not None else None,
            freight_cents=dto.freight.cents,
            duty_cents=dto.duty.cents,
            insurance_cents=dto.insurance.cents,
            other_cents=dto.other.cents,
            allocated_cost_cents=dto.allocated_cost.cents,
            landed_total_cents=dto.landed_total.cents,
            landed_unit_cost_cents=dto.landed_unit_cost.cents,
            landed_unit_remainder=dto.landed_unit_remainder,
            cost_revision=dto.cost_revision,
            finalized_at=dto.finalized_at,
            created_by=created_by,
        )
