"""
Tests for the landed-cost allocation engine.

Covers method resolution, per-method weighting, cent conservation,
category buckets, the landed unit cost remainder, and refusal to zero a
cost that has no basis.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from wms_engines.allocation import (
    AllocatableCost,
    AllocationBasis,
    AllocationMethod,
    CostCategory,
    LandedCostAllocator,
    cost_category,
)
from wms_kernel.domain.values import Money, UnitCost
from wms_kernel.exceptions import CurrencyMismatchError, NoAllocationBasisError


def _cost(amount, cost_type="freight", method=AllocationMethod.DEFAULT, currency="USD"):
    return AllocatableCost(
        cost_id=uuid4(),
        cost_type=cost_type,
        method=method,
        amount=Money.of(amount, currency) if amount is not None else None,
    )


def _line(qty=10, **measures):
    return AllocationBasis(line_id=uuid4(), qty=qty, **measures)


class TestMethodResolution:

    def setup_method(self):
        self.allocator = LandedCostAllocator()

    def test_explicit_method_wins(self):
        lines = [_line(gross_volume_cbm=Decimal(1))]
        assert self.allocator.resolve_method(
            AllocationMethod.BY_WEIGHT, lines, (AllocationMethod.BY_VALUE,)
        ) == AllocationMethod.BY_WEIGHT

    def test_first_configured_fallback_wins(self):
        lines = [_line(gross_volume_cbm=Decimal(1))]
        fallbacks = (None, AllocationMethod.BY_VALUE, AllocationMethod.BY_WEIGHT)
        assert self.allocator.resolve_method(
            AllocationMethod.DEFAULT, lines, fallbacks
        ) == AllocationMethod.BY_VALUE

    def test_volume_when_every_line_has_volume(self):
        lines = [_line(gross_volume_cbm=Decimal(1)), _line(net_volume_cbm=Decimal("0.2"))]
        assert self.allocator.resolve_method(
            AllocationMethod.DEFAULT, lines
        ) == AllocationMethod.BY_VOLUME

    def test_line_count_when_any_volume_unknown(self):
        lines = [_line(gross_volume_cbm=Decimal(1)), _line()]
        assert self.allocator.resolve_method(
            AllocationMethod.DEFAULT, lines
        ) == AllocationMethod.BY_LINE_COUNT

    def test_zero_volume_counts_as_unknown(self):
        lines = [_line(gross_volume_cbm=Decimal(1)), _line(gross_volume_cbm=Decimal(0))]
        assert self.allocator.resolve_method(
            AllocationMethod.DEFAULT, lines
        ) == AllocationMethod.BY_LINE_COUNT


class TestAllocate:

    def setup_method(self):
        self.allocator = LandedCostAllocator()

    def test_volume_split(self):
        a = _line(gross_volume_cbm=Decimal("2.0"))
        b = _line(gross_volume_cbm=Decimal("1.0"))
        outcome = self.allocator.allocate(
            costs=[_cost("300.00", method=AllocationMethod.BY_VOLUME)],
            lines=[a, b],
            currency="USD",
        )
        assert outcome.for_line(a.line_id).freight.cents == 20000
        assert outcome.for_line(b.line_id).freight.cents == 10000
        assert outcome.total_allocated.cents == 30000

    def test_weight_split(self):
        a = _line(total_weight_kg=Decimal(30))
        b = _line(total_weight_kg=Decimal(10))
        outcome = self.allocator.allocate(
            costs=[_cost("100.00", method=AllocationMethod.BY_WEIGHT)],
            lines=[a, b],
            currency="USD",
        )
        assert outcome.for_line(a.line_id).allocated_cost.cents == 7500
        assert outcome.for_line(b.line_id).allocated_cost.cents == 2500

    def test_chargeable_weight_split_uses_volumetric_weight(self):
        # 1 CBM at divisor 5000 weighs 200 kg volumetric, beating 10 kg actual
        a = _line(total_weight_kg=Decimal(10), gross_volume_cbm=Decimal(1))
        b = _line(total_weight_kg=Decimal(200))
        outcome = self.allocator.allocate(
            costs=[_cost("10.00", method=AllocationMethod.BY_CHARGEABLE_WEIGHT)],
            lines=[a, b],
            currency="USD",
        )
        assert outcome.for_line(a.line_id).freight.cents == 500
        assert outcome.for_line(b.line_id).freight.cents == 500

    def test_value_split(self):
        a = _line(qty=100, po_unit_cost=UnitCost.of("0.05", "USD"))   # 500 cents
        b = _line(qty=10, po_unit_cost=UnitCost.of("1.50", "USD"))    # 1500 cents
        outcome = self.allocator.allocate(
            costs=[_cost("40.00", cost_type="duty", method=AllocationMethod.BY_VALUE)],
            lines=[a, b],
            currency="USD",
        )
        assert outcome.for_line(a.line_id).duty.cents == 1000
        assert outcome.for_line(b.line_id).duty.cents == 3000

    def test_value_split_without_po_costs_has_no_basis(self):
        with pytest.raises(NoAllocationBasisError) as exc_info:
            self.allocator.allocate(
                costs=[_cost("40.00", method=AllocationMethod.BY_VALUE)],
                lines=[_line(), _line()],
                currency="USD",
            )
        assert exc_info.value.method == "by_value"
        assert exc_info.value.cost_id is not None

    def test_line_count_split_conserves_cents(self):
        lines = [_line(), _line(), _line()]
        outcome = self.allocator.allocate(
            costs=[_cost("1.00", cost_type="brokerage")],
            lines=lines,
            currency="USD",
        )
        shares = [outcome.for_line(line.line_id).other.cents for line in lines]
        assert shares == [34, 33, 33]

    def test_unknown_weight_has_no_basis(self):
        with pytest.raises(NoAllocationBasisError):
            self.allocator.allocate(
                costs=[_cost("5.00", method=AllocationMethod.BY_WEIGHT)],
                lines=[_line(), _line()],
                currency="USD",
            )

    def test_zero_and_missing_amounts_are_skipped(self):
        zero = _cost("0")
        missing = _cost(None)
        outcome = self.allocator.allocate(
            costs=[zero, missing], lines=[_line()], currency="USD",
        )
        assert set(outcome.skipped_cost_ids) == {zero.cost_id, missing.cost_id}
        assert outcome.total_allocated.is_zero
        assert outcome.details == ()

    def test_no_lines_with_cost_has_no_basis(self):
        with pytest.raises(NoAllocationBasisError):
            self.allocator.allocate(costs=[_cost("1.00")], lines=[], currency="USD")

    def test_categories_accumulate(self):
        line = _line(qty=4)
        outcome = self.allocator.allocate(
            costs=[
                _cost("1.00", cost_type="freight"),
                _cost("2.00", cost_type="drayage"),
                _cost("3.00", cost_type="duty"),
                _cost("4.00", cost_type="insurance"),
                _cost("5.00", cost_type="inspection"),
            ],
            lines=[line],
            currency="USD",
        )
        result = outcome.for_line(line.line_id)
        assert result.freight.cents == 300
        assert result.duty.cents == 300
        assert result.insurance.cents == 400
        assert result.other.cents == 500
        assert result.allocated_cost.cents == 1500

    def test_landed_unit_cost_keeps_remainder(self):
        line = _line(qty=3, po_unit_cost=UnitCost.of("1.00", "USD"))
        outcome = self.allocator.allocate(
            costs=[_cost("1.00")], lines=[line], currency="USD",
        )
        result = outcome.for_line(line.line_id)
        assert result.landed_total.cents == 400
        assert result.landed_unit_cost.cents == 133
        assert result.landed_unit_remainder == 1
        assert result.landed_unit_cost.cents * 3 + result.landed_unit_remainder == 400

    def test_cost_type_default_beats_shipment_and_mode_defaults(self):
        a = _line(qty=1, po_unit_cost=UnitCost.of("3.00", "USD"), total_weight_kg=Decimal(1))
        b = _line(qty=1, po_unit_cost=UnitCost.of("1.00", "USD"), total_weight_kg=Decimal(3))
        outcome = self.allocator.allocate(
            costs=[_cost("4.00", cost_type="duty")],
            lines=[a, b],
            currency="USD",
            cost_type_defaults={"duty": AllocationMethod.BY_VALUE},
            shipment_default=AllocationMethod.BY_WEIGHT,
            mode_default=AllocationMethod.BY_LINE_COUNT,
        )
        assert outcome.for_line(a.line_id).duty.cents == 300

    def test_shipment_default_beats_mode_default(self):
        a = _line(qty=1, total_weight_kg=Decimal(1))
        b = _line(qty=1, total_weight_kg=Decimal(3))
        outcome = self.allocator.allocate(
            costs=[_cost("4.00")],
            lines=[a, b],
            currency="USD",
            shipment_default=AllocationMethod.BY_WEIGHT,
            mode_default=AllocationMethod.BY_LINE_COUNT,
        )
        assert outcome.for_line(b.line_id).freight.cents == 300

    def test_details_explain_each_share(self):
        a = _line(gross_volume_cbm=Decimal("2.0"))
        b = _line(gross_volume_cbm=Decimal("1.0"))
        cost = _cost("3.00")
        outcome = self.allocator.allocate(costs=[cost], lines=[a, b], currency="USD")
        detail = next(d for d in outcome.details if d.line_id == a.line_id)
        assert detail.cost_id == cost.cost_id
        assert detail.method == AllocationMethod.BY_VOLUME
        assert detail.category == CostCategory.FREIGHT
        assert detail.basis_value == Decimal("2.0")
        assert detail.basis_total == Decimal("3.0")
        assert detail.allocated.cents == 200

    def test_currency_mismatch(self):
        with pytest.raises(CurrencyMismatchError):
            self.allocator.allocate(
                costs=[_cost("1.00", currency="EUR")], lines=[_line()], currency="USD",
            )

    def test_unit_cost_currency_mismatch(self):
        with pytest.raises(CurrencyMismatchError):
            self.allocator.allocate(
                costs=[],
                lines=[_line(po_unit_cost=UnitCost.of("1", "EUR"))],
                currency="USD",
            )

    def test_repeat_runs_are_identical(self):
        lines = [_line(qty=7, gross_volume_cbm=Decimal("0.7")), _line(qty=3, gross_volume_cbm=Decimal("0.4"))]
        costs = [_cost("123.45"), _cost("67.89", cost_type="duty")]
        first = self.allocator.allocate(costs=costs, lines=lines, currency="USD")
        second = self.allocator.allocate(costs=costs, lines=lines, currency="USD")
        assert first == second

    def test_emits_engine_trace(self, captured_logs):
        self.allocator.allocate(costs=[_cost("1.00")], lines=[_line()], currency="USD")
        traces = [r for r in captured_logs() if r["message"] == "WMS_ENGINE_TRACE"]
        assert traces[0]["engine_name"] == "landed_cost"
        assert len(traces[0]["input_fingerprint"]) == 16
        assert traces[0]["outcome"] == "ok"

    def test_failed_run_is_traced_with_exception_name(self, captured_logs):
        with pytest.raises(NoAllocationBasisError):
            self.allocator.allocate(
                costs=[_cost("1.00", method=AllocationMethod.BY_VALUE)],
                lines=[_line()],
                currency="USD",
            )
        traces = [r for r in captured_logs() if r["message"] == "WMS_ENGINE_TRACE"]
        assert traces[-1]["outcome"] == "NoAllocationBasisError"


class TestAllocationBasis:

    def test_qty_must_be_positive(self):
        with pytest.raises(ValueError):
            AllocationBasis(line_id=uuid4(), qty=0)

    def test_volume_prefers_gross(self):
        line = _line(gross_volume_cbm=Decimal(2), net_volume_cbm=Decimal(1))
        assert line.volume_cbm == Decimal(2)

    def test_cost_category_for_unlisted_type(self):
        assert cost_category("warehousing") == CostCategory.OTHER
        assert cost_category("port_handling") == CostCategory.FREIGHT
