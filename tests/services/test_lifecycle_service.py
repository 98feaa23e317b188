"""
LifecycleService tests against an in-memory SQLite database.

Every call round-trips the snapshot through the ORM, so these tests also
cover DTO <-> row conversion for purchase orders and shipments.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from wms_kernel.db.engine import session_scope
from wms_kernel.domain.clock import DeterministicClock
from wms_kernel.domain.values import Money, UnitCost
from wms_kernel.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    InvalidTransitionError,
)
from wms_modules.purchasing.models import ChargePatch, POStatus, ReceiptLineReport
from wms_modules.shipments.models import PackingListRow, ShipmentStatus
from wms_services import LifecycleService, PurchaseOrderRepository, ShipmentRepository

pytestmark = pytest.mark.service


def _usd(amount) -> Money:
    return Money.of(amount, "USD")


@pytest.fixture
def service(database):
    return LifecycleService(clock=DeterministicClock())


@pytest.fixture
def sent_po_id(service):
    po = service.create_purchase_order(po_number="PO-7001", vendor_id=uuid4(), actor="buyer")
    po = service.add_po_line(po.id, sku="A", order_qty=100, unit_cost=UnitCost.of("0.05", "USD"))
    po = service.add_po_line(po.id, sku="B", order_qty=10, unit_cost=UnitCost.of("2.00", "USD"))
    for action in ("submit", "approve", "send"):
        service.transition_purchase_order(po.id, action, actor="buyer")
    return po.id


class TestPurchaseOrders:

    def test_round_trip(self, service, sent_po_id):
        po = service.get_purchase_order(sent_po_id)
        assert po.status == POStatus.SENT
        assert po.subtotal.cents == 2500
        assert [line.line_number for line in po.lines] == [1, 2]
        assert po.lines[0].unit_cost.cents == Decimal(5)
        assert [h.to_status for h in po.history] == ["pending_approval", "approved", "sent"]
        assert po.history[0].actor == "buyer"

    def test_version_survives_round_trip(self, service, sent_po_id):
        # create (1), two lines (2, 3), three transitions (4, 5, 6)
        assert service.get_purchase_order(sent_po_id).version == 6

    def test_stale_expected_version(self, service, sent_po_id):
        with pytest.raises(ConcurrentModificationError):
            service.transition_purchase_order(sent_po_id, "acknowledge", expected_version=2)
        assert service.get_purchase_order(sent_po_id).status == POStatus.SENT

    def test_rejected_transition_rolls_back(self, service, sent_po_id):
        with pytest.raises(InvalidTransitionError):
            service.transition_purchase_order(sent_po_id, "close")
        assert service.get_purchase_order(sent_po_id).version == 6

    def test_unknown_id(self, service):
        with pytest.raises(EntityNotFoundError) as exc_info:
            service.get_purchase_order(uuid4())
        assert exc_info.value.entity_type == "purchase_order"

    def test_charges_persist(self, service):
        po = service.create_purchase_order(po_number="PO-7002", vendor_id=uuid4(), incoterm="DDP")
        po = service.add_po_line(po.id, order_qty=1, unit_cost=UnitCost.of("10", "USD"))
        service.edit_po_charges(po.id, ChargePatch(tax=_usd("1.00"), shipping_cost=_usd("2.00")))
        stored = service.get_purchase_order(po.id)
        assert stored.total.cents == 1300
        assert stored.incoterm.value == "DDP"

    def test_update_and_remove_line(self, service):
        po = service.create_purchase_order(po_number="PO-7003", vendor_id=uuid4())
        po = service.add_po_line(po.id, order_qty=1, unit_cost=UnitCost.of("1", "USD"))
        po = service.add_po_line(po.id, order_qty=2, unit_cost=UnitCost.of("1", "USD"))
        po = service.update_po_line(po.id, po.lines[0].id, order_qty=5)
        po = service.remove_po_line(po.id, po.lines[1].id)
        stored = service.get_purchase_order(po.id)
        assert [line.order_qty for line in stored.lines] == [5]
        assert stored.subtotal.cents == 500

    def test_receipt(self, service, sent_po_id):
        po = service.get_purchase_order(sent_po_id)
        result = service.record_receipt(
            sent_po_id, [ReceiptLineReport(po.lines[1].id, 10)], receiving_record_id="RR-9",
        )
        stored = service.get_purchase_order(sent_po_id)
        assert stored.status == POStatus.PARTIALLY_RECEIVED
        assert stored.line(po.lines[1].id).received_qty == 10
        assert result.entity.version == stored.version

    def test_repository_lookup_by_number(self, service, sent_po_id):
        with session_scope() as session:
            repo = PurchaseOrderRepository(session)
            assert repo.get_by_number("PO-7001").id == sent_po_id
            assert repo.exists(sent_po_id)
            with pytest.raises(EntityNotFoundError):
                repo.get_by_number("PO-0000")


class TestConcurrentSaves:

    def test_second_writer_loses(self, service, sent_po_id):
        with session_scope() as session:
            first_read = PurchaseOrderRepository(session).get(sent_po_id)
        service.transition_purchase_order(sent_po_id, "acknowledge")

        acknowledged = service.purchasing.apply_transition(first_read, "acknowledge").entity
        with pytest.raises(ConcurrentModificationError):
            with session_scope() as session:
                PurchaseOrderRepository(session).save(
                    acknowledged, based_on_version=first_read.version,
                )


class TestShipments:

    def _delivered(self, service, po_id):
        shipment = service.create_shipment(shipment_number="SHP-9001", mode="ocean")
        po = service.get_purchase_order(po_id)
        service.add_shipment_lines_from_po(
            shipment.id,
            po_id,
            dimensions={
                po.lines[0].id: {"weight_kg": Decimal("0.5"), "gross_volume_cbm": Decimal("2")},
                po.lines[1].id: {"weight_kg": Decimal("3"), "gross_volume_cbm": Decimal("1")},
            },
        )
        for action in ("book", "depart", "deliver"):
            service.transition_shipment(shipment.id, action)
        return shipment.id

    def test_full_costing_flow(self, service, sent_po_id):
        shipment_id = self._delivered(service, sent_po_id)
        service.add_shipment_cost(
            shipment_id, cost_type="freight", estimated_amount=_usd("300.00"),
        )
        service.transition_shipment(shipment_id, "start_costing")
        run = service.run_allocation(shipment_id)
        assert run.outcome.total_allocated.cents == 30000

        stored = service.get_shipment(shipment_id)
        assert stored.is_allocation_current
        assert [line.freight_allocated.cents for line in stored.lines] == [20000, 10000]
        assert stored.lines[0].total_weight_kg == Decimal(50)

        service.transition_shipment(shipment_id, "finalize")
        result = service.transition_shipment(shipment_id, "close")
        assert result.side_effects[0].kind == "push_landed_costs_to_lots"

        closed = service.get_shipment(shipment_id)
        assert closed.status == ShipmentStatus.CLOSED
        assert len(closed.snapshots) == 2
        assert closed.is_finalized

        po = service.get_purchase_order(sent_po_id)
        cost = service.landed_cost_for_po_line(po.lines[0].id)
        assert cost.unit_cost == Money.from_cents(205, "USD")
        assert cost.remainder == 0
        assert service.landed_cost_for_po_line(uuid4()) is None

    def test_cost_edit_invalidates_stored_allocation(self, service, sent_po_id):
        shipment_id = self._delivered(service, sent_po_id)
        service.add_shipment_cost(shipment_id, cost_type="duty", estimated_amount=_usd("10"))
        service.run_allocation(shipment_id)
        stored = service.get_shipment(shipment_id)
        service.update_shipment_cost(
            shipment_id, stored.costs[0].id, actual_amount=_usd("12"),
        )
        after = service.get_shipment(shipment_id)
        assert after.cost_revision == stored.cost_revision + 1
        assert not after.is_allocation_current
        assert all(line.allocated_cost is None for line in after.lines)

    def test_packing_list_links_stored_po(self, service, sent_po_id):
        po = service.get_purchase_order(sent_po_id)
        shipment = service.create_shipment(shipment_number="SHP-9002")
        result = service.import_packing_list(
            shipment.id,
            [
                {"qty_shipped": 4, "purchase_order_id": sent_po_id,
                 "purchase_order_line_id": po.lines[1].id},
                PackingListRow(qty_shipped=0, sku="BAD"),
                {"qty_shipped": 1, "purchase_order_id": uuid4(), "sku": "ORPHAN"},
            ],
        )
        assert [e.row for e in result.errors] == [2]
        stored = service.get_shipment(shipment.id)
        assert len(stored.lines) == 2
        assert stored.lines[0].po_unit_cost == UnitCost.of("2.00", "USD")
        assert stored.lines[1].po_unit_cost is None

    def test_packing_list_unknown_column_is_a_row_error(self, service):
        shipment = service.create_shipment(shipment_number="SHP-9003")
        result = service.import_packing_list(
            shipment.id,
            [{"qty_shipped": 1, "colour": "red"}, {"qty_shipped": 3, "sku": "OK"}],
        )
        assert [e.row for e in result.errors] == [1]
        stored = service.get_shipment(shipment.id)
        assert [line.sku for line in stored.lines] == ["OK"]

    def test_detail_line_and_cost_edits(self, service, sent_po_id):
        shipment_id = self._delivered(service, sent_po_id)
        service.update_shipment_details(shipment_id, carrier_name="CMA", container_number="MSKU1")
        stored = service.get_shipment(shipment_id)
        service.update_shipment_line(shipment_id, stored.lines[0].id, carton_count=12)
        service.add_shipment_cost(shipment_id, cost_type="brokerage", estimated_amount=_usd("5"))
        stored = service.get_shipment(shipment_id)
        service.remove_shipment_cost(shipment_id, stored.costs[0].id)
        service.remove_shipment_line(shipment_id, stored.lines[1].id)

        final = service.get_shipment(shipment_id)
        assert final.carrier_name == "CMA"
        assert final.total_cartons == 12
        assert final.costs == ()
        assert len(final.lines) == 1

    def test_history_survives_round_trip(self, service, sent_po_id):
        shipment_id = self._delivered(service, sent_po_id)
        stored = service.get_shipment(shipment_id)
        assert [h.to_status for h in stored.history] == ["booked", "in_transit", "delivered"]

    def test_repository_lookup(self, service, sent_po_id):
        shipment_id = self._delivered(service, sent_po_id)
        with session_scope() as session:
            repo = ShipmentRepository(session)
            assert repo.get_by_number("SHP-9001").id == shipment_id
            with pytest.raises(EntityNotFoundError):
                repo.get(uuid4())
