"""
Tests for PurchaseOrderLifecycle: creation, line edits, totals, charge
rules under Incoterms, transitions and receipt push-back.
"""

from datetime import date
from uuid import uuid4

import pytest

from wms_kernel.domain.incoterms import Incoterm
from wms_kernel.domain.values import Money, UnitCost
from wms_kernel.exceptions import (
    ChargeNotApplicableError,
    ConcurrentModificationError,
    CurrencyMismatchError,
    InvalidTransitionError,
)
from wms_modules.purchasing.config import PurchasingConfig
from wms_modules.purchasing.models import (
    ChargePatch,
    POLineStatus,
    POStatus,
    ReceiptLineReport,
)
from wms_modules.purchasing.service import PurchaseOrderLifecycle


def _usd(amount) -> Money:
    return Money.of(amount, "USD")


@pytest.fixture
def draft_po(po_lifecycle):
    po = po_lifecycle.create_purchase_order(po_number="PO-1", vendor_id=uuid4())
    return po_lifecycle.add_line(po, sku="SKU-1", order_qty=100, unit_cost=UnitCost.of("0.05", "USD"))


class TestCreate:

    def test_defaults(self, po_lifecycle, clock):
        po = po_lifecycle.create_purchase_order(po_number="PO-9", vendor_id=uuid4())
        assert po.status == POStatus.DRAFT
        assert po.currency.code == "USD"
        assert po.version == 1
        assert po.order_date == clock.today()
        assert po.total == Money.zero("USD")

    def test_currency_and_incoterm(self, po_lifecycle):
        po = po_lifecycle.create_purchase_order(
            po_number="PO-9", vendor_id=uuid4(), currency="eur", incoterm="FOB",
        )
        assert po.currency.code == "EUR"
        assert po.incoterm == Incoterm.FOB

    def test_config_default_currency(self, clock):
        lifecycle = PurchaseOrderLifecycle(PurchasingConfig(default_currency="GBP"), clock)
        po = lifecycle.create_purchase_order(po_number="PO-9", vendor_id=uuid4())
        assert po.currency.code == "GBP"


class TestLinesAndTotals:

    def test_sub_cent_unit_cost_extends_exactly(self, draft_po):
        assert draft_po.subtotal.cents == 500
        assert draft_po.total.cents == 500
        assert draft_po.version == 2

    def test_subtotal_rounds_once(self, po_lifecycle):
        po = po_lifecycle.create_purchase_order(po_number="PO-2", vendor_id=uuid4())
        po = po_lifecycle.add_line(po, order_qty=1, unit_cost=UnitCost.from_cents("0.5", "USD"))
        po = po_lifecycle.add_line(po, order_qty=1, unit_cost=UnitCost.from_cents("0.5", "USD"))
        # Two half cents: 1 cent, not 2 rounded halves
        assert po.subtotal.cents == 1

    def test_line_numbers_increment(self, po_lifecycle, draft_po):
        po = po_lifecycle.add_line(draft_po, order_qty=1)
        assert [line.line_number for line in po.lines] == [1, 2]

    def test_update_line(self, po_lifecycle, draft_po):
        line = draft_po.lines[0]
        po = po_lifecycle.update_line(draft_po, line.id, order_qty=200)
        assert po.line(line.id).order_qty == 200
        assert po.subtotal.cents == 1000
        assert po.version == draft_po.version + 1

    def test_update_rejects_unknown_fields(self, po_lifecycle, draft_po):
        with pytest.raises(ValueError, match="received_qty"):
            po_lifecycle.update_line(draft_po, draft_po.lines[0].id, received_qty=5)

    def test_remove_line(self, po_lifecycle, draft_po):
        po = po_lifecycle.remove_line(draft_po, draft_po.lines[0].id)
        assert po.lines == ()
        assert po.total.is_zero

    def test_unknown_line(self, po_lifecycle, draft_po):
        with pytest.raises(KeyError):
            po_lifecycle.remove_line(draft_po, uuid4())

    def test_negative_qty_rejected(self, po_lifecycle, draft_po):
        with pytest.raises(ValueError):
            po_lifecycle.add_line(draft_po, order_qty=-1)

    def test_unit_cost_currency_must_match(self, po_lifecycle, draft_po):
        with pytest.raises(CurrencyMismatchError):
            po_lifecycle.add_line(draft_po, order_qty=1, unit_cost=UnitCost.of("1", "EUR"))

    def test_lines_locked_after_submit(self, po_lifecycle, draft_po):
        submitted = po_lifecycle.apply_transition(draft_po, "submit").entity
        with pytest.raises(InvalidTransitionError) as exc_info:
            po_lifecycle.add_line(submitted, order_qty=1)
        assert exc_info.value.attempted == "edit_lines"
        assert exc_info.value.from_state == "pending_approval"

    def test_stale_version_rejected(self, po_lifecycle, draft_po):
        with pytest.raises(ConcurrentModificationError):
            po_lifecycle.add_line(draft_po, order_qty=1, expected_version=draft_po.version - 1)


class TestCharges:

    def test_ddp_accepts_tax_and_shipping(self, po_lifecycle, draft_po):
        po = po_lifecycle.edit_charges(draft_po, ChargePatch(incoterm=Incoterm.DDP))
        po = po_lifecycle.edit_charges(
            po, ChargePatch(tax=_usd("1.00"), shipping_cost=_usd("2.00"), discount=_usd("0.50")),
        )
        assert po.total.cents == 500 - 50 + 100 + 200

    def test_fob_rejects_tax(self, po_lifecycle, draft_po):
        po = po_lifecycle.edit_charges(draft_po, ChargePatch(incoterm="FOB"))
        with pytest.raises(ChargeNotApplicableError) as exc_info:
            po_lifecycle.edit_charges(po, ChargePatch(tax=_usd("1.00")))
        assert exc_info.value.incoterm == "FOB"
        assert exc_info.value.charge == "tax"

    def test_cif_allows_shipping_not_tax(self, po_lifecycle, draft_po):
        po = po_lifecycle.edit_charges(draft_po, ChargePatch(incoterm="CIF", shipping_cost=_usd("3.00")))
        assert po.shipping_cost.cents == 300
        with pytest.raises(ChargeNotApplicableError):
            po_lifecycle.edit_charges(po, ChargePatch(tax=_usd("0.01")))

    def test_switching_incoterm_must_clear_forbidden_charges(self, po_lifecycle, draft_po):
        po = po_lifecycle.edit_charges(draft_po, ChargePatch(tax=_usd("1.00")))
        with pytest.raises(ChargeNotApplicableError):
            po_lifecycle.edit_charges(po, ChargePatch(incoterm="EXW"))
        po = po_lifecycle.edit_charges(po, ChargePatch(incoterm="EXW", tax=_usd("0")))
        assert po.tax.is_zero
        assert po.total.cents == 500

    def test_clear_incoterm(self, po_lifecycle, draft_po):
        po = po_lifecycle.edit_charges(draft_po, ChargePatch(incoterm="FOB"))
        po = po_lifecycle.edit_charges(po, ChargePatch(clear_incoterm=True, tax=_usd("1.00")))
        assert po.incoterm is None
        assert po.tax.cents == 100

    def test_negative_charge_rejected(self, po_lifecycle, draft_po):
        with pytest.raises(ValueError, match="negative"):
            po_lifecycle.edit_charges(draft_po, ChargePatch(discount=_usd("-1.00")))

    def test_charge_currency_must_match(self, po_lifecycle, draft_po):
        with pytest.raises(CurrencyMismatchError):
            po_lifecycle.edit_charges(draft_po, ChargePatch(discount=Money.of("1", "EUR")))

    def test_charge_edit_recorded_in_history(self, po_lifecycle, draft_po):
        po = po_lifecycle.edit_charges(draft_po, ChargePatch(discount=_usd("1.00")), actor="buyer")
        entry = po.history[-1]
        assert entry.from_status == entry.to_status == "draft"
        assert entry.actor == "buyer"
        assert "discount" in entry.notes
        assert po.version == draft_po.version + 1

    def test_charges_locked_once_terminal(self, po_lifecycle, draft_po):
        cancelled = po_lifecycle.apply_transition(draft_po, "cancel", {"reason": "dup"}).entity
        with pytest.raises(InvalidTransitionError) as exc_info:
            po_lifecycle.edit_charges(cancelled, ChargePatch(discount=_usd("1.00")))
        assert exc_info.value.attempted == "edit_charges"

    def test_patch_cannot_set_and_clear(self):
        with pytest.raises(ValueError):
            ChargePatch(incoterm="FOB", clear_incoterm=True)

    def test_empty_patch_changes_nothing(self, po_lifecycle, draft_po):
        po = po_lifecycle.edit_charges(draft_po, ChargePatch(), expected_version=draft_po.version)
        assert po is draft_po
        assert po.version == draft_po.version
        assert po.history == draft_po.history

    def test_empty_patch_still_checks_version(self, po_lifecycle, draft_po):
        with pytest.raises(ConcurrentModificationError):
            po_lifecycle.edit_charges(draft_po, ChargePatch(), expected_version=draft_po.version - 1)


class TestTransitions:

    def test_close_from_draft_rejected(self, po_lifecycle, draft_po):
        with pytest.raises(InvalidTransitionError) as exc_info:
            po_lifecycle.apply_transition(draft_po, "close")
        assert exc_info.value.from_state == "draft"
        assert exc_info.value.attempted == "close"

    def test_submit_requires_lines(self, po_lifecycle):
        po = po_lifecycle.create_purchase_order(po_number="PO-E", vendor_id=uuid4())
        with pytest.raises(InvalidTransitionError, match="guard failed"):
            po_lifecycle.apply_transition(po, "submit")

    def test_submit_requires_unit_costs(self, po_lifecycle):
        po = po_lifecycle.create_purchase_order(po_number="PO-E", vendor_id=uuid4())
        po = po_lifecycle.add_line(po, order_qty=5)
        with pytest.raises(InvalidTransitionError):
            po_lifecycle.apply_transition(po, "submit")

    def test_send_requires_approve(self, po_lifecycle, draft_po):
        submitted = po_lifecycle.apply_transition(draft_po, "submit").entity
        with pytest.raises(InvalidTransitionError):
            po_lifecycle.apply_transition(submitted, "send")

    def test_send_dispatches_vendor_notification(self, po_lifecycle, approved_po):
        result = po_lifecycle.apply_transition(approved_po, "send", actor="buyer-7")
        assert result.entity.status == POStatus.SENT
        assert [e.kind for e in result.side_effects] == ["dispatch_vendor_notification"]
        assert result.side_effects[0].payload["po_number"] == "PO-1001"

    def test_history_and_version(self, po_lifecycle, draft_po, clock):
        clock.advance(30)
        result = po_lifecycle.apply_transition(draft_po, "submit", actor="buyer", notes="ready")
        entry = result.entity.history[-1]
        assert (entry.from_status, entry.to_status) == ("draft", "pending_approval")
        assert entry.timestamp == clock.now()
        assert entry.notes == "ready"
        assert result.entity.version == draft_po.version + 1

    def test_return_to_draft_reopens_editing(self, po_lifecycle, draft_po):
        po = po_lifecycle.apply_transition(draft_po, "submit").entity
        po = po_lifecycle.apply_transition(po, "return_to_draft").entity
        po = po_lifecycle.add_line(po, order_qty=1, unit_cost=UnitCost.of("1", "USD"))
        assert len(po.lines) == 2

    def test_acknowledge_records_vendor_reference(self, po_lifecycle, sent_po):
        result = po_lifecycle.apply_transition(
            sent_po, "acknowledge",
            {"vendor_ref_number": "SO-55", "confirmed_delivery_date": date(2024, 2, 1)},
        )
        assert result.entity.vendor_ref_number == "SO-55"
        assert result.entity.confirmed_delivery_date == date(2024, 2, 1)

    def test_system_only_transition_refused(self, po_lifecycle, sent_po):
        with pytest.raises(InvalidTransitionError, match="receiving workflow"):
            po_lifecycle.apply_transition(sent_po, "record_full_receipt")

    def test_legal_actions(self, po_lifecycle, draft_po, sent_po):
        assert po_lifecycle.legal_actions(draft_po) == ("cancel", "submit")
        assert po_lifecycle.legal_actions(sent_po) == ("acknowledge", "cancel", "create_receipt")

    def test_create_receipt_lists_open_lines(self, po_lifecycle, sent_po):
        result = po_lifecycle.apply_transition(sent_po, "create_receipt")
        assert result.entity.status == POStatus.SENT
        effect = result.side_effects[0]
        assert effect.kind == "create_receiving_record"
        assert [line["expected_qty"] for line in effect.payload["lines"]] == [100, 10]


class TestCancel:

    def test_cancel_requires_reason(self, po_lifecycle, draft_po):
        with pytest.raises(InvalidTransitionError):
            po_lifecycle.apply_transition(draft_po, "cancel", {"reason": "  "})

    def test_cancel_before_send(self, po_lifecycle, approved_po):
        result = po_lifecycle.apply_transition(approved_po, "cancel", {"reason": "vendor closed"})
        po = result.entity
        assert po.status == POStatus.CANCELLED
        assert po.cancel_reason == "vendor closed"
        assert all(line.status == POLineStatus.CANCELLED for line in po.lines)
        assert po.subtotal.is_zero
        assert result.side_effects[0].payload["terminal_status"] == "cancelled"

    def test_cancel_after_send_voids(self, po_lifecycle, sent_po):
        result = po_lifecycle.apply_transition(sent_po, "cancel", {"reason": "late"})
        assert result.entity.status == POStatus.VOIDED

    def test_cannot_cancel_once_receiving(self, po_lifecycle, sent_po):
        po = po_lifecycle.apply_receipt(sent_po, [ReceiptLineReport(sent_po.lines[0].id, 10)]).entity
        with pytest.raises(InvalidTransitionError):
            po_lifecycle.apply_transition(po, "cancel", {"reason": "late"})

    def test_terminal_states_reject_everything(self, po_lifecycle, draft_po):
        po = po_lifecycle.apply_transition(draft_po, "cancel", {"reason": "dup"}).entity
        assert po_lifecycle.legal_actions(po) == ()
        with pytest.raises(InvalidTransitionError, match="terminal state"):
            po_lifecycle.apply_transition(po, "submit")


class TestReceipts:

    def test_partial_then_full(self, po_lifecycle, sent_po):
        first, second = sent_po.lines
        partial = po_lifecycle.apply_receipt(
            sent_po, [ReceiptLineReport(first.id, 40, damaged_qty=2)], receiving_record_id="RR-1",
        )
        po = partial.entity
        assert po.status == POStatus.PARTIALLY_RECEIVED
        assert po.line(first.id).received_qty == 40
        assert po.line(first.id).damaged_qty == 2
        assert po.line(first.id).status == POLineStatus.PARTIALLY_RECEIVED
        assert po.history[-1].notes == "receipt RR-1"

        full = po_lifecycle.apply_receipt(
            po, [ReceiptLineReport(first.id, 60), ReceiptLineReport(second.id, 10)],
        )
        assert full.entity.status == POStatus.RECEIVED
        assert full.transition.action == "record_full_receipt"

        closed = po_lifecycle.apply_transition(full.entity, "close")
        assert closed.entity.status == POStatus.CLOSED

    def test_zero_quantity_receipt_keeps_status(self, po_lifecycle, sent_po):
        first = sent_po.lines[0]
        result = po_lifecycle.apply_receipt(
            sent_po, [ReceiptLineReport(first.id, 0)], receiving_record_id="RR-0",
        )
        po = result.entity
        assert po.status == POStatus.SENT
        assert result.transition is None
        assert po.line(first.id).status == POLineStatus.OPEN
        assert po.version == sent_po.version + 1
        assert po.history[-1].from_status == po.history[-1].to_status == "sent"
        assert po.history[-1].notes == "receipt RR-0 (no quantity received)"

        cancelled = po_lifecycle.apply_transition(po, "cancel", {"reason": "late"})
        assert cancelled.entity.status == POStatus.VOIDED

    def test_damaged_only_receipt_counts_damage(self, po_lifecycle, sent_po):
        first = sent_po.lines[0]
        po = po_lifecycle.apply_receipt(
            sent_po, [ReceiptLineReport(first.id, 0, damaged_qty=3)],
        ).entity
        assert po.status == POStatus.SENT
        assert po.line(first.id).damaged_qty == 3
        assert po.line(first.id).received_qty == 0
        assert po.line(first.id).open_qty == first.order_qty

        po = po_lifecycle.apply_receipt(po, [ReceiptLineReport(first.id, 5)]).entity
        assert po.status == POStatus.PARTIALLY_RECEIVED
        assert po.line(first.id).damaged_qty == 3

    def test_over_receipt_warns(self, po_lifecycle, sent_po):
        second = sent_po.lines[1]
        result = po_lifecycle.apply_receipt(sent_po, [ReceiptLineReport(second.id, 12)])
        assert result.warnings
        assert "exceeds open qty 10" in result.warnings[0]

    def test_over_receipt_rejected_when_disallowed(self, clock, sent_po):
        lifecycle = PurchaseOrderLifecycle(PurchasingConfig(allow_over_receipt=False), clock)
        with pytest.raises(ValueError, match="exceeds open qty"):
            lifecycle.apply_receipt(sent_po, [ReceiptLineReport(sent_po.lines[1].id, 12)])

    def test_receipt_requires_receivable_status(self, po_lifecycle, approved_po):
        with pytest.raises(InvalidTransitionError):
            po_lifecycle.apply_receipt(approved_po, [ReceiptLineReport(approved_po.lines[0].id, 1)])

    def test_empty_receipt_rejected(self, po_lifecycle, sent_po):
        with pytest.raises(ValueError):
            po_lifecycle.apply_receipt(sent_po, [])

    def test_unknown_line_rejected(self, po_lifecycle, sent_po):
        with pytest.raises(KeyError):
            po_lifecycle.apply_receipt(sent_po, [ReceiptLineReport(uuid4(), 1)])

    def test_negative_report_rejected(self):
        with pytest.raises(ValueError):
            ReceiptLineReport(uuid4(), -1)


class TestConfig:

    def test_unknown_editable_status(self):
        with pytest.raises(ValueError, match="editable_statuses"):
            PurchasingConfig(editable_statuses=("drafty",))

    def test_invalid_currency(self):
        from wms_kernel.exceptions import InvalidCurrencyError

        with pytest.raises(InvalidCurrencyError):
            PurchasingConfig(default_currency="XXQ")

    def test_wider_editable_statuses(self, clock, draft_po):
        lifecycle = PurchaseOrderLifecycle(
            PurchasingConfig(editable_statuses=("draft", "pending_approval")), clock,
        )
        po = lifecycle.apply_transition(draft_po, "submit").entity
        po = lifecycle.add_line(po, order_qty=1, unit_cost=UnitCost.of("1", "USD"))
        assert len(po.lines) == 2
