"""
Shared fixtures for the purchasing/shipment core test suite.

Pure lifecycle and engine tests need only the clock and lifecycle
fixtures.  Tests marked ``service`` go through ``LifecycleService`` and
get an in-memory SQLite database created fresh for each test.
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from wms_kernel.db.engine import drop_tables, init_engine_from_url, reset_engine
from wms_kernel.domain.clock import DeterministicClock
from wms_kernel.domain.values import Money, UnitCost
from wms_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from wms_modules._orm_registry import create_all_tables
from wms_modules.purchasing.service import PurchaseOrderLifecycle
from wms_modules.shipments.service import ShipmentLifecycle

# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture wms_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, po_lifecycle):
            po_lifecycle.apply_transition(...)
            logs = captured_logs()
            assert any(r["message"] == "po_status_changed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("wms_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock and lifecycles
# =============================================================================


@pytest.fixture
def clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def po_lifecycle(clock):
    return PurchaseOrderLifecycle(clock=clock)


@pytest.fixture
def shipment_lifecycle(clock):
    return ShipmentLifecycle(clock=clock)


@pytest.fixture
def usd():
    """Shorthand: ``usd("12.50")`` -> Money of 1250 cents."""

    def _make(amount) -> Money:
        return Money.of(amount, "USD")

    return _make


@pytest.fixture
def approved_po(po_lifecycle):
    """A two-line USD purchase order moved to ``approved``."""
    po = po_lifecycle.create_purchase_order(po_number="PO-1001", vendor_id=uuid4())
    po = po_lifecycle.add_line(po, sku="WIDGET-A", order_qty=100, unit_cost=UnitCost.of("0.05", "USD"))
    po = po_lifecycle.add_line(po, sku="WIDGET-B", order_qty=10, unit_cost=UnitCost.of("2.00", "USD"))
    po = po_lifecycle.apply_transition(po, "submit").entity
    return po_lifecycle.apply_transition(po, "approve").entity


@pytest.fixture
def sent_po(po_lifecycle, approved_po):
    return po_lifecycle.apply_transition(approved_po, "send").entity


@pytest.fixture
def delivered_shipment(shipment_lifecycle, sent_po):
    """
    A shipment carrying both lines of ``sent_po``, walked to ``delivered``.

    Line volumes are 2.0 and 1.0 CBM so volume splits are easy to check.
    """
    lifecycle = shipment_lifecycle
    first, second = sent_po.lines
    shipment = lifecycle.create_shipment(shipment_number="SHP-2001", mode="ocean")
    shipment = lifecycle.add_lines_from_po(
        shipment,
        sent_po,
        dimensions={
            first.id: {"weight_kg": Decimal("0.5"), "gross_volume_cbm": Decimal("2.0")},
            second.id: {"weight_kg": Decimal("3"), "gross_volume_cbm": Decimal("1.0")},
        },
    ).entity
    for action in ("book", "depart", "deliver"):
        shipment = lifecycle.apply_transition(shipment, action).entity
    return shipment


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database():
    """Fresh in-memory SQLite schema for one test."""
    engine = init_engine_from_url("sqlite://")
    create_all_tables()
    yield engine
    drop_tables()
    reset_engine()
