"""
WMS Modules.

Lifecycle orchestration over the kernel and engines.  Each module contains:
- Domain models (the nouns, as frozen dataclasses)
- Workflows (state machines and guard evaluators)
- Configuration schemas
- A lifecycle service applying changes to snapshots
- ORM models for the persistence adapter

Modules:
- Purchasing: purchase orders, lines, charges, receipt push-back
- Shipments: inbound shipments, lines, costs, landed-cost allocation
"""

from wms_modules import purchasing, shipments

__all__ = ["purchasing", "shipments"]
