"""
SQLAlchemy ORM persistence models for the Purchasing module.

Responsibility
--------------
Database-backed persistence for purchase orders, their lines and their
append-only status history.  The lifecycle never touches these classes;
``wms_services`` converts between them and the frozen DTOs in
``wms_modules.purchasing.models``.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``wms_services.repository``.
Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* Money is stored as BigInteger minor units plus a 3-letter currency.
* Unit cost is Numeric(38, 9) minor units so sub-cent prices survive.
* ``version`` is the mapper's ``version_id_col`` with a caller-managed
  value: an UPDATE whose stored version moved on raises StaleDataError.
* History rows are inserted, never updated or deleted.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wms_kernel.db.base import TrackedBase

# ---------------------------------------------------------------------------
# PurchaseOrderModel
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order header.

    Maps to the ``PurchaseOrder`` DTO in ``wms_modules.purchasing.models``.
    """

    __tablename__ = "purchasing_purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_purchase_order_number"),
        Index("idx_po_vendor", "vendor_id"),
        Index("idx_po_status", "status"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    vendor_id: Mapped[UUID]
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    incoterm: Mapped[str | None] = mapped_column(String(3), nullable=True)
    po_type: Mapped[str] = mapped_column(String(50), nullable=False, default="standard")
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    subtotal_cents: Mapped[int] = mapped_column(default=0)
    discount_cents: Mapped[int] = mapped_column(default=0)
    tax_cents: Mapped[int] = mapped_column(default=0)
    shipping_cost_cents: Mapped[int] = mapped_column(default=0)
    total_cents: Mapped[int] = mapped_column(default=0)
    order_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    confirmed_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    vendor_ref_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    history: Mapped[list["PurchaseOrderHistoryModel"]] = relationship(
        "PurchaseOrderHistoryModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderHistoryModel.sequence",
    )

    def to_dto(self):
        from wms_modules.purchasing.models import (
            POPriority,
            POStatus,
            POType,
            PurchaseOrder,
        )
        from wms_kernel.domain.values import Currency, Money

        currency = Currency(self.currency)
        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            vendor_id=self.vendor_id,
            currency=currency,
            status=POStatus(self.status),
            incoterm=self.incoterm,
            po_type=POType(self.po_type),
            priority=POPriority(self.priority),
            subtotal=Money(self.subtotal_cents, currency),
            discount=Money(self.discount_cents, currency),
            tax=Money(self.tax_cents, currency),
            shipping_cost=Money(self.shipping_cost_cents, currency),
            total=Money(self.total_cents, currency),
            lines=tuple(line.to_dto(currency) for line in self.lines),
            history=tuple(entry.to_dto() for entry in self.history),
            order_date=self.order_date,
            expected_delivery_date=self.expected_delivery_date,
            confirmed_delivery_date=self.confirmed_delivery_date,
            vendor_ref_number=self.vendor_ref_number,
            cancel_reason=self.cancel_reason,
            notes=self.notes,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto, created_by: str | None = None) -> "PurchaseOrderModel":
        model = cls(id=dto.id, created_by=created_by)
        model.apply_dto(dto, created_by)
        return model

    def apply_dto(self, dto, actor: str | None = None) -> None:
        """Copy a snapshot onto this row; lines are synced by id, history appended."""
        self.po_number = dto.po_number
        self.vendor_id = dto.vendor_id
        self.status = dto.status.value
        self.incoterm = dto.incoterm.value if dto.incoterm is not None else None
        self.po_type = dto.po_type.value
        self.priority = dto.priority.value
        self.currency = dto.currency.code
        self.subtotal_cents = dto.subtotal.cents
        self.discount_cents = dto.discount.cents
        self.tax_cents = dto.tax.cents
        self.shipping_cost_cents = dto.shipping_cost.cents
        self.total_cents = dto.total.cents
        self.order_date = dto.order_date
        self.expected_delivery_date = dto.expected_delivery_date
        self.confirmed_delivery_date = dto.confirmed_delivery_date
        self.vendor_ref_number = dto.vendor_ref_number
        self.cancel_reason = dto.cancel_reason
        self.notes = dto.notes
        self.version = dto.version
        self.updated_by = actor

        existing = {line.id: line for line in self.lines}
        synced = []
        for line_dto in dto.lines:
            row = existing.get(line_dto.id)
            if row is None:
                row = PurchaseOrderLineModel(id=line_dto.id, created_by=actor)
            row.apply_dto(line_dto)
            synced.append(row)
        self.lines = synced

        for sequence, entry in enumerate(dto.history[len(self.history):], start=len(self.history)):
            self.history.append(PurchaseOrderHistoryModel.from_dto(entry, sequence, actor))

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}] v{self.version}>"


# ---------------------------------------------------------------------------
# PurchaseOrderLineModel
# ---------------------------------------------------------------------------


class PurchaseOrderLineModel(TrackedBase):
    """A line item on a purchase order."""

    __tablename__ = "purchasing_purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        Index("idx_po_line_po", "purchase_order_id"),
        Index("idx_po_line_variant", "variant_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchasing_purchase_orders.id"), nullable=False,
    )
    line_number: Mapped[int]
    product_id: Mapped[UUID | None]
    variant_id: Mapped[UUID | None]
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vendor_sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    order_qty: Mapped[int] = mapped_column(default=0)
    units_per_uom: Mapped[int] = mapped_column(default=1)
    unit_cost_cents: Mapped[Decimal | None] = mapped_column(nullable=True)
    received_qty: Mapped[int] = mapped_column(default=0)
    damaged_qty: Mapped[int] = mapped_column(default=0)
    cancelled_qty: Mapped[int] = mapped_column(default=0)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="open")

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    def to_dto(self, currency):
        from wms_modules.purchasing.models import POLineStatus, PurchaseOrderLine
        from wms_kernel.domain.values import UnitCost

        unit_cost = None
        if self.unit_cost_cents is not None:
            unit_cost = UnitCost(Decimal(self.unit_cost_cents).normalize(), currency)
        return PurchaseOrderLine(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            line_number=self.line_number,
            order_qty=self.order_qty,
            unit_cost=unit_cost,
            product_id=self.product_id,
            variant_id=self.variant_id,
            sku=self.sku,
            vendor_sku=self.vendor_sku,
            description=self.description,
            units_per_uom=self.units_per_uom,
            received_qty=self.received_qty,
            damaged_qty=self.damaged_qty,
            cancelled_qty=self.cancelled_qty,
            status=POLineStatus(self.status),
        )

    def apply_dto(self, dto) -> None:
        self.purchase_order_id = dto.purchase_order_id
        self.line_number = dto.line_number
        self.product_id = dto.product_id
        self.variant_id = dto.variant_id
        self.sku = dto.sku
        self.vendor_sku = dto.vendor_sku
        self.description = dto.description
        self.order_qty = dto.order_qty
        self.units_per_uom = dto.units_per_uom
        self.unit_cost_cents = dto.unit_cost.cents if dto.unit_cost is not None else None
        self.received_qty = dto.received_qty
        self.damaged_qty = dto.damaged_qty
        self.cancelled_qty = dto.cancelled_qty
        self.status = dto.status.value

    def __repr__(self) -> str:
        return f"<PurchaseOrderLineModel #{self.line_number} qty={self.order_qty} [{self.status}]>"


# ---------------------------------------------------------------------------
# PurchaseOrderHistoryModel
# ---------------------------------------------------------------------------


class PurchaseOrderHistoryModel(TrackedBase):
    """One append-only status history entry."""

    __tablename__ = "purchasing_purchase_order_history"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "sequence", name="uq_po_history_sequence"),
        Index("idx_po_history_po", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchasing_purchase_orders.id"), nullable=False,
    )
    sequence: Mapped[int]
    from_status: Mapped[str] = mapped_column(String(50), nullable=False)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
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
    def from_dto(cls, dto, sequence: int, created_by: str | None = None) -> "PurchaseOrderHistoryModel":
        return cls(
            sequence=sequence,
            from_status=dto.from_status,
            to_status=dto.to_status,
            changed_at=dto.timestamp,
            actor=dto.actor,
            notes=dto.notes,
            created_by=created_by,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderHistoryModel {self.from_status}->{self.to_status}>"
