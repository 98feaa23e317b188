"""
Purchasing Module (``wms_modules.purchasing``).

Responsibility
--------------
Purchase order lifecycle: line and charge editing, submission and
approval, vendor dispatch and acknowledgement, receipt push-back from
Receiving, close, and cancel/void.

Architecture position
---------------------
**Modules layer** -- declarative workflow, config schema, frozen models and
the ``PurchaseOrderLifecycle`` service.  Transition legality is evaluated by
``wms_engines.state_machine``; charge applicability by
``wms_kernel.domain.incoterms``.

Invariants enforced
-------------------
* ``total = subtotal - discount + tax + shipping_cost``, always current.
* Tax and shipping only where the Incoterm allows.
* No PO is sent without approval or closed without full receipt.

Failure modes
-------------
* ``InvalidTransitionError``, ``ChargeNotApplicableError``,
  ``ConcurrentModificationError`` (see ``wms_kernel.exceptions``).
"""

from wms_modules.purchasing.config import PurchasingConfig
from wms_modules.purchasing.models import (
    ChargePatch,
    POLineStatus,
    POPriority,
    POStatus,
    POType,
    PurchaseOrder,
    PurchaseOrderLine,
    ReceiptLineReport,
    StatusChange,
)
from wms_modules.purchasing.service import PurchaseOrderLifecycle, compute_totals
from wms_modules.purchasing.workflows import PURCHASE_ORDER_WORKFLOW

__all__ = [
    "ChargePatch",
    "POLineStatus",
    "POPriority",
    "POStatus",
    "POType",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "ReceiptLineReport",
    "StatusChange",
    "PurchaseOrderLifecycle",
    "compute_totals",
    "PURCHASE_ORDER_WORKFLOW",
    "PurchasingConfig",
]
