"""
Module: wms_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for higher
    layers (wms_modules, wms_services).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import wms_kernel.  MUST NOT import wms_modules or wms_services.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Determinism: identical inputs always produce identical outputs.
"""

from wms_engines.allocation import (
    AllocatableCost,
    AllocationBasis,
    AllocationMethod,
    AllocationOutcome,
    CostAllocationDetail,
    CostCategory,
    LandedCostAllocator,
    LineAllocation,
    cost_category,
)
from wms_engines.measures import (
    DEFAULT_VOLUMETRIC_DIVISOR,
    LineMeasures,
    ShipmentTotals,
    chargeable_weight,
    compute_line_measures,
    sum_measures,
    utilization_percent,
)
from wms_engines.state_machine import GuardExecutor, StateMachine, get_attr
from wms_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AllocatableCost",
    "AllocationBasis",
    "AllocationMethod",
    "AllocationOutcome",
    "CostAllocationDetail",
    "CostCategory",
    "LandedCostAllocator",
    "LineAllocation",
    "cost_category",
    "DEFAULT_VOLUMETRIC_DIVISOR",
    "LineMeasures",
    "ShipmentTotals",
    "chargeable_weight",
    "compute_line_measures",
    "sum_measures",
    "utilization_percent",
    "GuardExecutor",
    "StateMachine",
    "get_attr",
    "compute_input_fingerprint",
    "traced_engine",
]
