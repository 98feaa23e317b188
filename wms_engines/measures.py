"""
Module: wms_engines.measures
Responsibility:
    Derive shipment line measures (total weight, net volume, chargeable
    weight) from per-unit dimensions, and roll line measures up to
    shipment aggregates.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Decimal-only arithmetic; float inputs are rejected.
    - Chargeable weight is ``max(actual weight, volume_cbm * 1e6 / divisor)``,
      the dimensional-weight convention (divisor 5000 cm3/kg for air).
    - A measure that cannot be derived is ``None``, never zero.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

CM3_PER_CBM = Decimal(1_000_000)
DEFAULT_VOLUMETRIC_DIVISOR = Decimal(5000)


def _dec(value: Decimal | int | str | None, name: str) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, (bool, float)):
        raise TypeError(f"{name} must be Decimal, int or str, got {type(value).__name__}")
    result = value if isinstance(value, Decimal) else Decimal(str(value))
    if result < 0:
        raise ValueError(f"{name} must be non-negative: {value}")
    return result


@dataclass(frozen=True)
class LineMeasures:
    total_weight_kg: Decimal | None
    net_volume_cbm: Decimal | None
    chargeable_weight_kg: Decimal | None


def chargeable_weight(
    total_weight_kg: Decimal | None,
    volume_cbm: Decimal | None,
    volumetric_divisor: Decimal = DEFAULT_VOLUMETRIC_DIVISOR,
) -> Decimal | None:
    """Greater of actual and volumetric weight; ``None`` if neither is known."""
    if volumetric_divisor <= 0:
        raise ValueError(f"volumetric_divisor must be positive: {volumetric_divisor}")
    volumetric = None
    if volume_cbm is not None:
        volumetric = volume_cbm * CM3_PER_CBM / Decimal(volumetric_divisor)
    candidates = [v for v in (total_weight_kg, volumetric) if v is not None]
    return max(candidates) if candidates else None


def compute_line_measures(
    qty: int,
    unit_weight_kg: Decimal | int | str | None = None,
    length_cm: Decimal | int | str | None = None,
    width_cm: Decimal | int | str | None = None,
    height_cm: Decimal | int | str | None = None,
    gross_volume_cbm: Decimal | None = None,
    volumetric_divisor: Decimal = DEFAULT_VOLUMETRIC_DIVISOR,
) -> LineMeasures:
    """
    Derive a line's measures from per-unit weight and dimensions.

    Net volume needs all three dimensions.  Chargeable weight uses the gross
    (packed) volume when known, else the net volume.
    """
    if qty <= 0:
        raise ValueError(f"qty must be positive: {qty}")
    weight = _dec(unit_weight_kg, "unit_weight_kg")
    dims = [_dec(d, n) for d, n in ((length_cm, "length_cm"), (width_cm, "width_cm"), (height_cm, "height_cm"))]

    total_weight = weight * qty if weight is not None else None
    net_volume = None
    if all(d is not None for d in dims):
        net_volume = dims[0] * dims[1] * dims[2] * qty / CM3_PER_CBM

    volume = gross_volume_cbm if gross_volume_cbm is not None else net_volume
    return LineMeasures(
        total_weight_kg=total_weight,
        net_volume_cbm=net_volume,
        chargeable_weight_kg=chargeable_weight(total_weight, volume, volumetric_divisor),
    )


@dataclass(frozen=True)
class ShipmentTotals:
    total_weight_kg: Decimal
    total_gross_volume_cbm: Decimal
    total_net_volume_cbm: Decimal
    total_pieces: int
    total_cartons: int
    total_pallets: int


def sum_measures(lines: Iterable) -> ShipmentTotals:
    """Roll up line measures; unknown values count as zero."""
    weight = gross = net = Decimal(0)
    pieces = cartons = pallets = 0
    for line in lines:
        weight += line.total_weight_kg or 0
        gross += line.gross_volume_cbm or 0
        net += line.net_volume_cbm or 0
        pieces += line.qty_shipped
        cartons += line.carton_count or 0
        pallets += line.pallet_count or 0
    return ShipmentTotals(weight, gross, net, pieces, cartons, pallets)


def utilization_percent(volume_cbm: Decimal, capacity_cbm: Decimal | None) -> Decimal | None:
    """Share of container capacity used, as a percentage rounded to 0.1."""
    if not capacity_cbm:
        return None
    return (volume_cbm / capacity_cbm * 100).quantize(Decimal("0.1"))
