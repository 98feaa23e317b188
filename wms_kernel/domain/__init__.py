"""
Pure domain layer.

Value objects and lookup tables with NO dependencies on the ORM, the
database, the system clock or any other I/O.  All domain objects are
immutable and deterministic.
"""

from wms_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from wms_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from wms_kernel.domain.incoterms import ChargeApplicability, Incoterm, applicability
from wms_kernel.domain.values import (
    Currency,
    Money,
    UnitCost,
    allocate_proportionally,
    round_half_up,
)
from wms_kernel.domain.workflow import (
    Guard,
    LifecycleResult,
    SideEffect,
    Transition,
    TransitionResult,
    Workflow,
    check_version,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "ChargeApplicability",
    "Incoterm",
    "applicability",
    "Currency",
    "Money",
    "UnitCost",
    "allocate_proportionally",
    "round_half_up",
    "Guard",
    "LifecycleResult",
    "SideEffect",
    "Transition",
    "TransitionResult",
    "Workflow",
    "check_version",
]
