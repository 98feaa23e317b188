"""
Module: wms_engines.allocation
Responsibility:
    Distribute shipment-level costs (freight, duty, insurance, brokerage,
    ...) across shipment lines by a selectable weighting method, and derive
    each line's allocated cost and landed unit cost.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import wms_kernel (values, exceptions, logging) and sibling
    engine modules.

Invariants enforced:
    - Conservation: for every cost, the cents allocated across lines sum to
      the cost's effective amount exactly (largest-remainder split).
    - Determinism: identical costs and lines produce identical output, so a
      repeated "run allocation" is idempotent.
    - No silent zeroing: a non-zero cost whose weights are all zero raises
      NoAllocationBasisError naming the cost, and no line is updated.
    - The per-unit division remainder is returned, never discarded.

Failure modes:
    - NoAllocationBasisError when a cost has no basis across the lines.
    - CurrencyMismatchError when a cost or PO unit cost is in a different
      currency from the shipment.

Audit relevance:
    Landed unit cost feeds inventory valuation.  Every run emits
    CostAllocationDetail rows (basis value, basis total, cents) so each
    line's share can be re-derived by hand.

Usage:
    allocator = LandedCostAllocator()
    outcome = allocator.allocate(
        costs=[AllocatableCost(cost_id, "freight", AllocationMethod.BY_VOLUME,
                               Money.of("300.00", "USD"))],
        lines=[AllocationBasis(line_a, qty=10, gross_volume_cbm=Decimal("2.0")),
               AllocationBasis(line_b, qty=10, gross_volume_cbm=Decimal("1.0"))],
        currency="USD",
    )
    # line_a receives 200.00, line_b 100.00
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from wms_engines.measures import DEFAULT_VOLUMETRIC_DIVISOR, chargeable_weight
from wms_engines.tracer import traced_engine
from wms_kernel.domain.values import Currency, Money, UnitCost, allocate_proportionally
from wms_kernel.exceptions import CurrencyMismatchError, NoAllocationBasisError
from wms_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


class AllocationMethod(str, Enum):
    """Weighting basis used to split one cost across lines."""

    DEFAULT = "default"
    BY_VOLUME = "by_volume"
    BY_WEIGHT = "by_weight"
    BY_CHARGEABLE_WEIGHT = "by_chargeable_weight"
    BY_VALUE = "by_value"
    BY_LINE_COUNT = "by_line_count"


class CostCategory(str, Enum):
    """Landed-cost bucket a cost type accumulates into."""

    FREIGHT = "freight"
    DUTY = "duty"
    INSURANCE = "insurance"
    OTHER = "other"


_CATEGORY_BY_COST_TYPE: dict[str, CostCategory] = {
    "freight": CostCategory.FREIGHT,
    "drayage": CostCategory.FREIGHT,
    "port_handling": CostCategory.FREIGHT,
    "duty": CostCategory.DUTY,
    "insurance": CostCategory.INSURANCE,
}


def cost_category(cost_type: str) -> CostCategory:
    """Bucket for a cost type; anything unlisted is OTHER."""
    key = cost_type.value if isinstance(cost_type, Enum) else str(cost_type)
    return _CATEGORY_BY_COST_TYPE.get(key, CostCategory.OTHER)


@dataclass(frozen=True)
class AllocationBasis:
    """One shipment line as seen by the allocator."""

    line_id: UUID
    qty: int
    total_weight_kg: Decimal | None = None
    gross_volume_cbm: Decimal | None = None
    net_volume_cbm: Decimal | None = None
    chargeable_weight_kg: Decimal | None = None
    po_unit_cost: UnitCost | None = None

    def __post_init__(self) -> None:
        if self.qty <= 0:
            raise ValueError(f"Line {self.line_id} qty must be positive: {self.qty}")

    @property
    def volume_cbm(self) -> Decimal | None:
        """Gross volume when known, else net volume."""
        if self.gross_volume_cbm:
            return self.gross_volume_cbm
        return self.net_volume_cbm

    @property
    def has_known_volume(self) -> bool:
        return bool(self.volume_cbm)


@dataclass(frozen=True)
class AllocatableCost:
    """One shipment cost; ``amount`` is actual if invoiced, else estimated."""

    cost_id: UUID
    cost_type: str
    method: AllocationMethod
    amount: Money | None


@dataclass(frozen=True)
class CostAllocationDetail:
    cost_id: UUID
    line_id: UUID
    method: AllocationMethod
    category: CostCategory
    basis_value: Decimal
    basis_total: Decimal
    allocated: Money


@dataclass(frozen=True)
class LineAllocation:
    """
    Allocation outputs for one line.

    ``landed_unit_cost * qty + landed_unit_remainder == landed_total``.
    """

    line_id: UUID
    freight: Money
    duty: Money
    insurance: Money
    other: Money
    allocated_cost: Money
    landed_total: Money
    landed_unit_cost: Money
    landed_unit_remainder: int


@dataclass(frozen=True)
class AllocationOutcome:
    lines: tuple[LineAllocation, ...]
    details: tuple[CostAllocationDetail, ...]
    total_allocated: Money
    skipped_cost_ids: tuple[UUID, ...] = ()

    def for_line(self, line_id: UUID) -> LineAllocation:
        for line in self.lines:
            if line.line_id == line_id:
                return line
        raise KeyError(line_id)


class LandedCostAllocator:
    """
    Pure landed-cost allocation engine.

    Contract:
        ``allocate`` takes every cost and line of one shipment and returns
        per-line outputs; it has no side effects beyond logging.

    Guarantees:
        - Each cost is split with ``allocate_proportionally``.
        - ``DEFAULT`` resolves, in order, to the configured default for the
          cost type, the shipment's own default, the configured default for
          the shipment mode, then BY_VOLUME when every line has a known
          volume and BY_LINE_COUNT otherwise.

    Non-goals:
        - Does not decide whether allocation is allowed in the current
          lifecycle state (the shipment lifecycle does).
    """

    def __init__(self, volumetric_divisor: Decimal = DEFAULT_VOLUMETRIC_DIVISOR):
        self._volumetric_divisor = Decimal(volumetric_divisor)

    def resolve_method(
        self,
        method: AllocationMethod,
        lines: Sequence[AllocationBasis],
        fallbacks: Sequence[AllocationMethod | None] = (),
    ) -> AllocationMethod:
        if method != AllocationMethod.DEFAULT:
            return method
        for candidate in fallbacks:
            if candidate is not None and candidate != AllocationMethod.DEFAULT:
                return candidate
        if lines and all(line.has_known_volume for line in lines):
            return AllocationMethod.BY_VOLUME
        return AllocationMethod.BY_LINE_COUNT

    def basis_for(self, method: AllocationMethod, line: AllocationBasis) -> Decimal:
        """Weight of ``line`` under ``method``; unknown measures weigh zero."""
        if method == AllocationMethod.BY_VOLUME:
            return line.volume_cbm or Decimal(0)
        if method == AllocationMethod.BY_WEIGHT:
            return line.total_weight_kg or Decimal(0)
        if method == AllocationMethod.BY_CHARGEABLE_WEIGHT:
            if line.chargeable_weight_kg is not None:
                return line.chargeable_weight_kg
            return chargeable_weight(
                line.total_weight_kg, line.volume_cbm, self._volumetric_divisor
            ) or Decimal(0)
        if method == AllocationMethod.BY_VALUE:
            if line.po_unit_cost is None:
                return Decimal(0)
            return line.po_unit_cost.extend(line.qty)
        if method == AllocationMethod.BY_LINE_COUNT:
            return Decimal(1)
        raise ValueError(f"Unresolved allocation method: {method}")

    @traced_engine("landed_cost", "1.0", fingerprint_fields=("costs", "lines", "currency"))
    def allocate(
        self,
        *,
        costs: Sequence[AllocatableCost],
        lines: Sequence[AllocationBasis],
        currency: Currency | str,
        cost_type_defaults: Mapping[str, AllocationMethod] | None = None,
        shipment_default: AllocationMethod | None = None,
        mode_default: AllocationMethod | None = None,
    ) -> AllocationOutcome:
        """
        Allocate every cost across ``lines``.

        Raises:
            NoAllocationBasisError: A cost with a non-zero amount has no basis.
            CurrencyMismatchError: A cost or unit cost is not in ``currency``.
        """
        currency = currency if isinstance(currency, Currency) else Currency(currency)
        cost_type_defaults = cost_type_defaults or {}
        zero = Money.zero(currency)

        logger.info(
            "landed_cost_allocation_started",
            extra={"cost_count": len(costs), "line_count": len(lines)},
        )

        buckets: dict[UUID, dict[CostCategory, Money]] = {
            line.line_id: {c: zero for c in CostCategory} for line in lines
        }
        details: list[CostAllocationDetail] = []
        skipped: list[UUID] = []

        for cost in costs:
            if cost.amount is None or cost.amount.is_zero:
                skipped.append(cost.cost_id)
                continue
            if cost.amount.currency != currency:
                raise CurrencyMismatchError(currency.code, cost.amount.currency.code)

            cost_type_key = cost.cost_type.value if isinstance(cost.cost_type, Enum) else cost.cost_type
            method = self.resolve_method(
                cost.method,
                lines,
                (cost_type_defaults.get(cost_type_key), shipment_default, mode_default),
            )
            weights = [self.basis_for(method, line) for line in lines]
            try:
                shares = allocate_proportionally(cost.amount, weights)
            except NoAllocationBasisError as exc:
                logger.warning(
                    "cost_has_no_allocation_basis",
                    extra={"cost_id": str(cost.cost_id), "method": method.value},
                )
                raise NoAllocationBasisError(
                    amount=str(cost.amount),
                    method=method.value,
                    cost_id=str(cost.cost_id),
                ) from exc

            category = cost_category(cost_type_key)
            basis_total = sum(weights, Decimal(0))
            for line, weight, share in zip(lines, weights, shares):
                bucket = buckets[line.line_id]
                bucket[category] = bucket[category] + share
                details.append(
                    CostAllocationDetail(
                        cost_id=cost.cost_id,
                        line_id=line.line_id,
                        method=method,
                        category=category,
                        basis_value=weight,
                        basis_total=basis_total,
                        allocated=share,
                    )
                )

            logger.debug(
                "cost_allocated",
                extra={
                    "cost_id": str(cost.cost_id),
                    "cost_type": cost_type_key,
                    "method": method.value,
                    "amount_cents": cost.amount.cents,
                },
            )

        results = tuple(self._line_result(line, buckets[line.line_id], currency) for line in lines)
        total_allocated = sum((r.allocated_cost for r in results), zero)

        logger.info(
            "landed_cost_allocation_completed",
            extra={
                "line_count": len(results),
                "detail_count": len(details),
                "skipped_cost_count": len(skipped),
                "total_allocated_cents": total_allocated.cents,
            },
        )

        return AllocationOutcome(
            lines=results,
            details=tuple(details),
            total_allocated=total_allocated,
            skipped_cost_ids=tuple(skipped),
        )

    def _line_result(
        self,
        line: AllocationBasis,
        bucket: dict[CostCategory, Money],
        currency: Currency,
    ) -> LineAllocation:
        allocated = (
            bucket[CostCategory.FREIGHT]
            + bucket[CostCategory.DUTY]
            + bucket[CostCategory.INSURANCE]
            + bucket[CostCategory.OTHER]
        )
        purchase = Money.zero(currency)
        if line.po_unit_cost is not None:
            if line.po_unit_cost.currency != currency:
                raise CurrencyMismatchError(currency.code, line.po_unit_cost.currency.code)
            purchase = line.po_unit_cost.extend_rounded(line.qty)

        landed_total = purchase + allocated
        unit_cents, remainder = divmod(landed_total.cents, line.qty)

        return LineAllocation(
            line_id=line.line_id,
            freight=bucket[CostCategory.FREIGHT],
            duty=bucket[CostCategory.DUTY],
            insurance=bucket[CostCategory.INSURANCE],
            other=bucket[CostCategory.OTHER],
            allocated_cost=allocated,
            landed_total=landed_total,
            landed_unit_cost=Money.from_cents(unit_cents, currency),
            landed_unit_remainder=remainder,
        )
