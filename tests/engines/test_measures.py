"""
Tests for line measures, chargeable weight and shipment roll-ups.
"""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from wms_engines.measures import (
    chargeable_weight,
    compute_line_measures,
    sum_measures,
    utilization_percent,
)


@dataclass
class _Line:
    qty_shipped: int
    total_weight_kg: Decimal | None = None
    gross_volume_cbm: Decimal | None = None
    net_volume_cbm: Decimal | None = None
    carton_count: int | None = None
    pallet_count: int | None = None


class TestChargeableWeight:

    def test_volumetric_beats_actual(self):
        assert chargeable_weight(Decimal(10), Decimal(1)) == Decimal(200)

    def test_actual_beats_volumetric(self):
        assert chargeable_weight(Decimal(500), Decimal(1)) == Decimal(500)

    def test_custom_divisor(self):
        assert chargeable_weight(None, Decimal(1), Decimal(6000)) == Decimal(1_000_000) / Decimal(6000)

    def test_unknown_when_nothing_known(self):
        assert chargeable_weight(None, None) is None

    def test_divisor_must_be_positive(self):
        with pytest.raises(ValueError):
            chargeable_weight(Decimal(1), None, Decimal(0))


class TestComputeLineMeasures:

    def test_derives_weight_and_net_volume(self):
        measures = compute_line_measures(
            10, unit_weight_kg="2.5", length_cm=50, width_cm=40, height_cm=30,
        )
        assert measures.total_weight_kg == Decimal("25.0")
        # 50 * 40 * 30 = 60000 cm3 per unit, 10 units = 0.6 CBM
        assert measures.net_volume_cbm == Decimal("0.6")
        assert measures.chargeable_weight_kg == Decimal(120)

    def test_gross_volume_drives_chargeable_weight(self):
        measures = compute_line_measures(
            10, unit_weight_kg=1, length_cm=10, width_cm=10, height_cm=10,
            gross_volume_cbm=Decimal(2),
        )
        assert measures.chargeable_weight_kg == Decimal(400)

    def test_partial_dimensions_leave_volume_unknown(self):
        measures = compute_line_measures(5, length_cm=10, width_cm=10)
        assert measures.net_volume_cbm is None
        assert measures.total_weight_kg is None
        assert measures.chargeable_weight_kg is None

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            compute_line_measures(1, unit_weight_kg=1.5)

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            compute_line_measures(1, length_cm=-1)

    def test_qty_must_be_positive(self):
        with pytest.raises(ValueError):
            compute_line_measures(0)


class TestRollUps:

    def test_sum_measures_treats_unknown_as_zero(self):
        totals = sum_measures([
            _Line(10, total_weight_kg=Decimal(5), gross_volume_cbm=Decimal("1.5"), carton_count=2),
            _Line(4, net_volume_cbm=Decimal("0.25"), pallet_count=1),
        ])
        assert totals.total_pieces == 14
        assert totals.total_weight_kg == Decimal(5)
        assert totals.total_gross_volume_cbm == Decimal("1.5")
        assert totals.total_net_volume_cbm == Decimal("0.25")
        assert totals.total_cartons == 2
        assert totals.total_pallets == 1

    def test_sum_of_nothing(self):
        assert sum_measures([]).total_pieces == 0

    def test_utilization(self):
        assert utilization_percent(Decimal("22.1"), Decimal("67.7")) == Decimal("32.6")

    def test_utilization_without_capacity(self):
        assert utilization_percent(Decimal(1), None) is None
        assert utilization_percent(Decimal(1), Decimal(0)) is None
