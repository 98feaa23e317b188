"""
wms_services -- imperative shell over the lifecycles.

Responsibility:
    Database sessions, snapshot repositories and the ``LifecycleService``
    that wraps each lifecycle operation in one transaction.

Architecture position:
    Outermost layer.  May import every other ``wms_*`` package; nothing
    imports ``wms_services``.
"""

from wms_services.lifecycle_service import LifecycleService
from wms_services.repository import PurchaseOrderRepository, ShipmentRepository

__all__ = ["LifecycleService", "PurchaseOrderRepository", "ShipmentRepository"]
