from decimal import Decimal

from django.contrib.auth.models import User

from .exceptions import InvalidAdjustment, InvalidTransition, ShipmentLocked
from .models import InventoryAdjustment, Shipment, ShipmentItem
from .services.inventory_adjustments import (
    approve_adjustment, minimum_cartons, pending_adjustments, product_history, reject_adjustment,
    request_adjustment,
)
from .services.shipments import settle_shipment
from .testing import LedgerTestCase


class InventoryAdjustmentTestCase(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.manager = User.objects.create_user(username="manager", password="password")
        self.shipment = self.make_shipment(cartons=10)  # 10 × 50.00
        self.item = self.shipment.items.get()


class RequestAdjustmentTest(InventoryAdjustmentTestCase):
    def test_request_waits_for_approval(self):
        adjustment = request_adjustment(
            self.item, 8, "Two cartons crushed", InventoryAdjustment.Type.DAMAGE, user=self.user
        )

        self.assertTrue(adjustment.is_pending)
        self.assertTrue(adjustment.number.startswith("ADJ-"))
        self.assertEqual((adjustment.cartons_before, adjustment.cartons_after), (10, 8))
        self.assertEqual(adjustment.cartons_change, -2)
        self.assertEqual(adjustment.cost_impact, Decimal("-100.00"))
        self.assertEqual(adjustment.product, self.product)
        self.assertEqual(self.reload(self.item).cartons, 10)
        self.assertEqual(list(pending_adjustments()), [adjustment])

    def test_cannot_go_below_sold_cartons(self):
        self.sell(6)

        with self.assertRaises(InvalidAdjustment) as ctx:
            request_adjustment(self.item, 5, "Recount")

        self.assertEqual(ctx.exception.context["minimum"], 6)
        self.assertFalse(InventoryAdjustment.objects.exists())

    def test_carried_out_cartons_count_as_gone(self):
        ShipmentItem.objects.filter(pk=self.item.pk).update(carryover_out_cartons=3)
        self.assertEqual(minimum_cartons(self.reload(self.item)), 3)

        with self.assertRaises(InvalidAdjustment):
            request_adjustment(self.item, 2, "Recount")

    def test_cartons_must_change_and_stay_whole(self):
        for cartons in (10, -1, Decimal("9.5")):
            with self.assertRaises(InvalidAdjustment):
                request_adjustment(self.item, cartons, "Recount")

    def test_settled_shipment_cannot_be_adjusted(self):
        self.sell(10)
        settle_shipment(self.shipment)

        with self.assertRaises(ShipmentLocked):
            request_adjustment(self.item, 11, "Found a pallet")


class ApproveAdjustmentTest(InventoryAdjustmentTestCase):
    def test_approval_applies_count_and_cost(self):
        adjustment = request_adjustment(self.item, 8, "Recount", user=self.user)

        adjustment = approve_adjustment(adjustment, self.manager)

        self.assertEqual(adjustment.status, InventoryAdjustment.Status.APPROVED)
        self.assertEqual(adjustment.decided_by, self.manager)
        self.assertIsNotNone(adjustment.decided_at)
        self.assertEqual(self.reload(self.item).cartons, 8)
        self.assertEqual(self.reload(self.shipment).total_cost, Decimal("400.00"))
        self.assertEqual(list(product_history(self.product)), [adjustment])
        self.assertFalse(pending_adjustments().exists())

    def test_requester_cannot_approve_own_request(self):
        adjustment = request_adjustment(self.item, 8, "Recount", user=self.user)
        with self.assertRaises(InvalidTransition):
            approve_adjustment(adjustment, self.user)
        self.assertEqual(self.reload(self.item).cartons, 10)

    def test_sales_after_request_are_respected(self):
        adjustment = request_adjustment(self.item, 7, "Recount", user=self.user)
        self.sell(8)

        with self.assertRaises(InvalidAdjustment):
            approve_adjustment(adjustment, self.manager)

        self.assertEqual(self.reload(self.item).cartons, 10)
        self.assertTrue(self.reload(adjustment).is_pending)

    def test_settled_after_request(self):
        self.sell(8)
        adjustment = request_adjustment(self.item, 9, "Recount", user=self.user)
        self.sell(2)
        settle_shipment(self.shipment)

        with self.assertRaises(ShipmentLocked):
            approve_adjustment(adjustment, self.manager)

    def test_reduction_to_sold_closes_shipment(self):
        self.sell(6)
        adjustment = request_adjustment(self.item, 6, "Recount", user=self.user)

        approve_adjustment(adjustment, self.manager)

        self.assertEqual(self.reload(self.shipment).status, Shipment.Status.CLOSED)
        self.assertEqual(self.reload(self.item).remaining_cartons, 0)

    def test_increase_on_closed_shipment_can_be_sold(self):
        self.sell(10)
        self.assertEqual(self.reload(self.shipment).status, Shipment.Status.CLOSED)
        adjustment = request_adjustment(self.item, 12, "Found a pallet", user=self.user)
        approve_adjustment(adjustment, self.manager)

        self.sell(2)

        self.assertEqual(self.reload(self.item).sold_cartons, 12)


class RejectAdjustmentTest(InventoryAdjustmentTestCase):
    def test_reject_leaves_stock_alone(self):
        adjustment = request_adjustment(self.item, 4, "Recount", user=self.user)

        adjustment = reject_adjustment(adjustment, self.manager, "Count again")

        self.assertEqual(adjustment.status, InventoryAdjustment.Status.REJECTED)
        self.assertEqual(adjustment.rejection_reason, "Count again")
        self.assertEqual(self.reload(self.item).cartons, 10)
        with self.assertRaises(InvalidTransition):
            approve_adjustment(adjustment, self.manager)
        with self.assertRaises(InvalidTransition):
            reject_adjustment(adjustment, self.manager)
