"""
Purchasing Domain Models.

The nouns of purchasing: purchase orders, their lines, status history,
charge patches and receipt reports coming back from Receiving.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from wms_kernel.domain.incoterms import Incoterm
from wms_kernel.domain.values import Currency, Money, UnitCost
from wms_kernel.logging_config import get_logger

logger = get_logger("modules.purchasing.models")


class POStatus(Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    VOIDED = "voided"  # cancelled after the vendor was notified


TERMINAL_PO_STATUSES = frozenset({POStatus.CLOSED, POStatus.CANCELLED, POStatus.VOIDED})


class POType(Enum):
    STANDARD = "standard"
    DROPSHIP = "dropship"
    BLANKET = "blanket"
    REPLENISHMENT = "replenishment"


class POPriority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    RUSH = "rush"


class POLineStatus(Enum):
    OPEN = "open"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A line item on a purchase order.

    ``unit_cost`` is in minor units and may carry sub-cent precision.
    """
    id: UUID
    purchase_order_id: UUID
    line_number: int
    order_qty: int
    unit_cost: UnitCost | None = None
    product_id: UUID | None = None
    variant_id: UUID | None = None
    sku: str | None = None
    vendor_sku: str | None = None
    description: str = ""
    units_per_uom: int = 1
    received_qty: int = 0
    damaged_qty: int = 0
    cancelled_qty: int = 0
    status: POLineStatus = POLineStatus.OPEN

    def __post_init__(self):
        for name in ("order_qty", "received_qty", "damaged_qty", "cancelled_qty"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"{name} must be int, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"{name} cannot be negative: {value}")
        if self.units_per_uom < 1:
            raise ValueError(f"units_per_uom must be at least 1: {self.units_per_uom}")

    @property
    def line_total(self) -> Decimal:
        """Exact extended cost in minor units; zero while no unit cost is set."""
        if self.unit_cost is None:
            return Decimal(0)
        return self.unit_cost.extend(self.order_qty)

    @property
    def open_qty(self) -> int:
        return max(self.order_qty - self.received_qty - self.cancelled_qty, 0)

    @property
    def is_cancelled(self) -> bool:
        return self.status == POLineStatus.CANCELLED

    @property
    def is_open(self) -> bool:
        return not self.is_cancelled and self.open_qty > 0


@dataclass(frozen=True)
class StatusChange:
    """One append-only audit entry."""
    from_status: str
    to_status: str
    timestamp: datetime
    actor: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PurchaseOrder:
    """
    A purchase order snapshot.

    ``total`` always equals ``subtotal - discount + tax + shipping_cost``;
    the lifecycle recomputes it on every line or charge change.
    """
    id: UUID
    po_number: str
    vendor_id: UUID
    currency: Currency = Currency("USD")
    status: POStatus = POStatus.DRAFT
    incoterm: Incoterm | None = None
    po_type: POType = POType.STANDARD
    priority: POPriority = POPriority.NORMAL
    subtotal: Money | None = None
    discount: Money | None = None
    tax: Money | None = None
    shipping_cost: Money | None = None
    total: Money | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)
    history: tuple[StatusChange, ...] = field(default_factory=tuple)
    order_date: date | None = None
    expected_delivery_date: date | None = None
    confirmed_delivery_date: date | None = None
    vendor_ref_number: str | None = None
    cancel_reason: str | None = None
    notes: str | None = None
    version: int = 1

    def __post_init__(self):
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        if isinstance(self.incoterm, str):
            object.__setattr__(self, "incoterm", Incoterm(self.incoterm))
        for name in ("subtotal", "discount", "tax", "shipping_cost", "total"):
            if getattr(self, name) is None:
                object.__setattr__(self, name, Money.zero(self.currency))

    def line(self, line_id: UUID) -> PurchaseOrderLine:
        for line in self.lines:
            if line.id == line_id:
                return line
        raise KeyError(f"Line {line_id} not on purchase order {self.po_number}")

    @property
    def active_lines(self) -> tuple[PurchaseOrderLine, ...]:
        return tuple(line for line in self.lines if not line.is_cancelled)

    @property
    def open_lines(self) -> tuple[PurchaseOrderLine, ...]:
        return tuple(line for line in self.lines if line.is_open)

    @property
    def is_fully_received(self) -> bool:
        return bool(self.active_lines) and not self.open_lines

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PO_STATUSES


@dataclass(frozen=True)
class ChargePatch:
    """
    Requested change to PO header charges.

    A ``None`` charge is left unchanged.  Set ``clear_incoterm`` to remove
    the Incoterm; ``incoterm`` replaces it.
    """
    discount: Money | None = None
    tax: Money | None = None
    shipping_cost: Money | None = None
    incoterm: Incoterm | None = None
    clear_incoterm: bool = False

    def __post_init__(self):
        if self.incoterm is not None and self.clear_incoterm:
            raise ValueError("ChargePatch cannot both set and clear the incoterm")
        if isinstance(self.incoterm, str):
            object.__setattr__(self, "incoterm", Incoterm(self.incoterm))

    @property
    def changes_incoterm(self) -> bool:
        return self.incoterm is not None or self.clear_incoterm

    @property
    def is_empty(self) -> bool:
        return (
            self.discount is None
            and self.tax is None
            and self.shipping_cost is None
            and not self.changes_incoterm
        )


@dataclass(frozen=True)
class ReceiptLineReport:
    """Quantities the Receiving subsystem reports back for one PO line."""
    po_line_id: UUID
    received_qty: int
    damaged_qty: int = 0

    def __post_init__(self):
        if self.received_qty < 0 or self.damaged_qty < 0:
            raise ValueError(
                f"Receipt quantities cannot be negative for line {self.po_line_id}"
            )
