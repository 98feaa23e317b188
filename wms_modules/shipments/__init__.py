"""
Shipments Module (``wms_modules.shipments``).

Responsibility
--------------
Inbound shipment lifecycle: booking through delivery, line and cost
capture (from POs or packing lists), landed-cost allocation runs,
finalization into immutable snapshots, and close.

Architecture position
---------------------
**Modules layer** -- declarative workflow, config schema, frozen models and
the ``ShipmentLifecycle`` service.  Measures and cost splitting are
computed by ``wms_engines.measures`` and ``wms_engines.allocation``.

Invariants enforced
-------------------
* Any line or cost change invalidates allocation outputs.
* No finalize on stale allocations; no close without a current finalize.
* Allocated cents conserve every cost exactly.

Failure modes
-------------
* ``InvalidTransitionError``, ``NotReadyToFinalizeError``,
  ``NoAllocationBasisError``, ``ConcurrentModificationError``.
"""

from wms_engines.allocation import AllocationMethod
from wms_modules.shipments.config import ShipmentConfig
from wms_modules.shipments.models import (
    AllocationRun,
    CostStatus,
    CostType,
    InboundShipment,
    LandedCostSnapshot,
    PackingListImport,
    PackingListRow,
    PooledLandedCost,
    ReceivingSummary,
    RowError,
    ShipmentCost,
    ShipmentLine,
    ShipmentMode,
    ShipmentStatus,
)
from wms_modules.shipments.service import ShipmentLifecycle
from wms_modules.shipments.workflows import SHIPMENT_WORKFLOW

__all__ = [
    "AllocationMethod",
    "AllocationRun",
    "CostStatus",
    "CostType",
    "InboundShipment",
    "LandedCostSnapshot",
    "PackingListImport",
    "PackingListRow",
    "PooledLandedCost",
    "ReceivingSummary",
    "RowError",
    "ShipmentCost",
    "ShipmentLine",
    "ShipmentMode",
    "ShipmentStatus",
    "ShipmentLifecycle",
    "SHIPMENT_WORKFLOW",
    "ShipmentConfig",
]
