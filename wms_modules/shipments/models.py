"""
Shipment Domain Models.

The nouns of inbound logistics: shipments, their lines (goods, linked to
PO lines), costs (freight, duty, ...), landed-cost snapshots, and the
results handed back by allocation runs and packing-list imports.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from wms_engines.allocation import AllocationMethod, AllocationOutcome
from wms_kernel.domain.values import Currency, Money, UnitCost
from wms_kernel.logging_config import get_logger
from wms_modules.purchasing.models import StatusChange

logger = get_logger("modules.shipments.models")


class ShipmentStatus(Enum):
    """Inbound shipment lifecycle states."""
    DRAFT = "draft"
    BOOKED = "booked"
    IN_TRANSIT = "in_transit"
    AT_PORT = "at_port"
    CUSTOMS_CLEARANCE = "customs_clearance"
    DELIVERED = "delivered"
    COSTING = "costing"
    CLOSED = "closed"
    CANCELLED = "cancelled"


TERMINAL_SHIPMENT_STATUSES = frozenset({ShipmentStatus.CLOSED, ShipmentStatus.CANCELLED})


class ShipmentMode(Enum):
    OCEAN = "ocean"
    AIR = "air"
    TRUCK = "truck"
    RAIL = "rail"
    COURIER = "courier"


class CostType(Enum):
    FREIGHT = "freight"
    DUTY = "duty"
    INSURANCE = "insurance"
    BROKERAGE = "brokerage"
    PORT_HANDLING = "port_handling"
    DRAYAGE = "drayage"
    WAREHOUSING = "warehousing"
    INSPECTION = "inspection"
    OTHER = "other"


class CostStatus(Enum):
    ESTIMATED = "estimated"
    QUOTED = "quoted"
    INVOICED = "invoiced"
    PAID = "paid"


# Per-line inputs the measures are derived from
MEASURE_INPUT_FIELDS = ("weight_kg", "length_cm", "width_cm", "height_cm", "gross_volume_cbm")


@dataclass(frozen=True)
class ShipmentLine:
    """
    Goods on an inbound shipment.

    Per-unit weight and dimensions are inputs; ``total_weight_kg``,
    ``net_volume_cbm`` and ``chargeable_weight_kg`` are derived by the
    lifecycle.  ``gross_volume_cbm`` is the packed volume from the packing
    list.  The allocation fields stay ``None`` until an allocation run and
    are cleared again by any line or cost edit.
    """
    id: UUID
    shipment_id: UUID
    qty_shipped: int
    line_number: int = 0
    purchase_order_id: UUID | None = None
    purchase_order_line_id: UUID | None = None
    variant_id: UUID | None = None
    sku: str | None = None
    description: str = ""
    weight_kg: Decimal | None = None
    length_cm: Decimal | None = None
    width_cm: Decimal | None = None
    height_cm: Decimal | None = None
    total_weight_kg: Decimal | None = None
    gross_volume_cbm: Decimal | None = None
    net_volume_cbm: Decimal | None = None
    chargeable_weight_kg: Decimal | None = None
    carton_count: int | None = None
    pallet_count: int | None = None
    po_unit_cost: UnitCost | None = None
    freight_allocated: Money | None = None
    duty_allocated: Money | None = None
    insurance_allocated: Money | None = None
    other_allocated: Money | None = None
    allocated_cost: Money | None = None
    landed_unit_cost: Money | None = None
    landed_unit_remainder: int | None = None

    def __post_init__(self):
        if isinstance(self.qty_shipped, bool) or not isinstance(self.qty_shipped, int):
            raise TypeError(f"qty_shipped must be int, got {type(self.qty_shipped).__name__}")
        if self.qty_shipped <= 0:
            raise ValueError(f"qty_shipped must be positive: {self.qty_shipped}")
        for name in MEASURE_INPUT_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, (bool, float)):
                raise TypeError(f"{name} must be Decimal, int or str, got {type(value).__name__}")
            if not isinstance(value, Decimal):
                value = Decimal(str(value))
                object.__setattr__(self, name, value)
            if value < 0:
                raise ValueError(f"{name} cannot be negative: {value}")
        for name in ("carton_count", "pallet_count"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative: {value}")

    @property
    def is_allocated(self) -> bool:
        return self.allocated_cost is not None

    @property
    def landed_total(self) -> Money | None:
        """Landed cost of the whole line: unit cost times qty plus remainder."""
        if self.landed_unit_cost is None:
            return None
        return Money.from_cents(
            self.landed_unit_cost.cents * self.qty_shipped + (self.landed_unit_remainder or 0),
            self.landed_unit_cost.currency,
        )


@dataclass(frozen=True)
class ShipmentCost:
    """A cost charged against a whole shipment."""
    id: UUID
    shipment_id: UUID
    cost_type: CostType
    allocation_method: AllocationMethod = AllocationMethod.DEFAULT
    estimated_amount: Money | None = None
    actual_amount: Money | None = None
    status: CostStatus = CostStatus.ESTIMATED
    description: str | None = None
    invoice_number: str | None = None
    vendor_name: str | None = None

    def __post_init__(self):
        if isinstance(self.cost_type, str):
            object.__setattr__(self, "cost_type", CostType(self.cost_type))
        if isinstance(self.allocation_method, str):
            object.__setattr__(self, "allocation_method", AllocationMethod(self.allocation_method))
        if isinstance(self.status, str):
            object.__setattr__(self, "status", CostStatus(self.status))
        for name in ("estimated_amount", "actual_amount"):
            value = getattr(self, name)
            if value is not None and value.is_negative:
                raise ValueError(f"{name} cannot be negative: {value}")

    @property
    def effective_amount(self) -> Money | None:
        """Actual amount once invoiced, else the estimate."""
        return self.actual_amount if self.actual_amount is not None else self.estimated_amount


@dataclass(frozen=True)
class LandedCostSnapshot:
    """Immutable landed cost of one shipment line, taken at finalize."""
    shipment_line_id: UUID
    qty: int
    freight: Money
    duty: Money
    insurance: Money
    other: Money
    allocated_cost: Money
    landed_total: Money
    landed_unit_cost: Money
    landed_unit_remainder: int
    cost_revision: int
    finalized_at: datetime
    purchase_order_line_id: UUID | None = None
    variant_id: UUID | None = None
    po_unit_cost: UnitCost | None = None


@dataclass(frozen=True)
class PooledLandedCost:
    """
    Landed cost of one PO line pooled across the shipment lines carrying it.

    ``unit_cost * qty + remainder`` is exactly the pooled landed total;
    ``remainder`` is the cents left over by the floor division.
    """
    unit_cost: Money
    remainder: int
    qty: int

    @property
    def landed_total(self) -> Money:
        return Money.from_cents(
            self.unit_cost.cents * self.qty + self.remainder, self.unit_cost.currency,
        )


@dataclass(frozen=True)
class InboundShipment:
    """
    An inbound shipment snapshot.

    ``cost_revision`` counts line and cost edits.  ``allocation_revision``
    is the revision the line allocation outputs were computed at and
    ``finalized_revision`` the revision last finalized; a shipment closes
    only when the latter equals ``cost_revision``.
    """
    id: UUID
    shipment_number: str
    currency: Currency = Currency("USD")
    status: ShipmentStatus = ShipmentStatus.DRAFT
    mode: ShipmentMode | None = None
    carrier_name: str | None = None
    container_number: str | None = None
    bol_number: str | None = None
    tracking_number: str | None = None
    origin_port: str | None = None
    destination_port: str | None = None
    etd: date | None = None
    eta: date | None = None
    ship_date: date | None = None
    actual_arrival: date | None = None
    customs_cleared_date: date | None = None
    delivered_date: date | None = None
    closed_at: datetime | None = None
    container_capacity_cbm: Decimal | None = None
    allocation_method_default: AllocationMethod | None = None
    total_weight_kg: Decimal = Decimal(0)
    total_gross_volume_cbm: Decimal = Decimal(0)
    total_net_volume_cbm: Decimal = Decimal(0)
    total_pieces: int = 0
    total_cartons: int = 0
    total_pallets: int = 0
    estimated_total_cost: Money | None = None
    actual_total_cost: Money | None = None
    lines: tuple[ShipmentLine, ...] = field(default_factory=tuple)
    costs: tuple[ShipmentCost, ...] = field(default_factory=tuple)
    history: tuple[StatusChange, ...] = field(default_factory=tuple)
    snapshots: tuple[LandedCostSnapshot, ...] = field(default_factory=tuple)
    cost_revision: int = 0
    allocation_revision: int | None = None
    finalized_revision: int | None = None
    cancel_reason: str | None = None
    notes: str | None = None
    version: int = 1

    def __post_init__(self):
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        if isinstance(self.mode, str):
            object.__setattr__(self, "mode", ShipmentMode(self.mode))
        if isinstance(self.allocation_method_default, str):
            object.__setattr__(
                self, "allocation_method_default", AllocationMethod(self.allocation_method_default)
            )
        for name in ("estimated_total_cost", "actual_total_cost"):
            if getattr(self, name) is None:
                object.__setattr__(self, name, Money.zero(self.currency))

    def line(self, line_id: UUID) -> ShipmentLine:
        for line in self.lines:
            if line.id == line_id:
                return line
        raise KeyError(f"Line {line_id} not on shipment {self.shipment_number}")

    def cost(self, cost_id: UUID) -> ShipmentCost:
        for cost in self.costs:
            if cost.id == cost_id:
                return cost
        raise KeyError(f"Cost {cost_id} not on shipment {self.shipment_number}")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SHIPMENT_STATUSES

    @property
    def is_allocation_current(self) -> bool:
        """Every line carries outputs computed at the current cost revision."""
        return (
            bool(self.lines)
            and self.allocation_revision == self.cost_revision
            and all(line.is_allocated for line in self.lines)
        )

    @property
    def is_finalized(self) -> bool:
        return self.finalized_revision is not None and self.finalized_revision == self.cost_revision


@dataclass(frozen=True)
class PackingListRow:
    """
    One row of a vendor packing list.

    Quantities are not validated here; the import reports bad rows back
    instead of failing the whole list.
    """
    qty_shipped: Any
    sku: str | None = None
    purchase_order_id: UUID | None = None
    purchase_order_line_id: UUID | None = None
    variant_id: UUID | None = None
    description: str = ""
    weight_kg: Decimal | None = None
    length_cm: Decimal | None = None
    width_cm: Decimal | None = None
    height_cm: Decimal | None = None
    gross_volume_cbm: Decimal | None = None
    carton_count: int | None = None
    pallet_count: int | None = None


@dataclass(frozen=True)
class RowError:
    row: int  # 1-based position in the submitted list
    error: str


@dataclass(frozen=True)
class PackingListImport:
    entity: InboundShipment
    imported_line_ids: tuple[UUID, ...] = ()
    errors: tuple[RowError, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class AllocationRun:
    """The shipment with fresh allocation outputs, plus the engine's detail rows."""
    entity: InboundShipment
    outcome: AllocationOutcome

    @property
    def details(self):
        return self.outcome.details


@dataclass(frozen=True)
class ReceivingSummary:
    shipment_id: UUID
    shipment_number: str
    status: ShipmentStatus
    line_count: int
    total_qty: int
    cost_finalized: bool
