from datetime import timedelta
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import F

from .exceptions import InsufficientStock, InvalidAmount
from .models import Invoice, InvoiceItem, Shipment, ShipmentItem
from .services import fifo_allocator
from .testing import LedgerTestCase


class FifoAllocationTest(LedgerTestCase):
    def test_allocation_crosses_shipment_boundary_oldest_first(self):
        s1 = self.make_shipment(cartons=100)
        s2 = self.make_shipment(cartons=50)
        self.assertLess(s1.fifo_sequence, s2.fifo_sequence)

        slices = fifo_allocator.allocate(self.product.pk, 120)

        self.assertEqual([(s.batch.shipment_id, s.cartons) for s in slices], [(s1.pk, 100), (s2.pk, 20)])
        b1 = s1.items.get()
        b2 = s2.items.get()
        self.assertEqual((b1.sold_cartons, b1.remaining_cartons), (100, 0))
        self.assertEqual((b2.sold_cartons, b2.remaining_cartons), (20, 30))

    def test_order_follows_sequence_not_shipment_date(self):
        older = self.make_shipment(cartons=10)
        # received later but backdated before the first one
        newer = self.make_shipment(cartons=10, date=self.today - timedelta(days=30))

        slices = fifo_allocator.allocate(self.product.pk, 5)

        self.assertEqual(len(slices), 1)
        self.assertEqual(slices[0].batch.shipment_id, older.pk)
        self.assertEqual(newer.items.get().sold_cartons, 0)

    def test_settled_shipments_are_not_eligible(self):
        s1 = self.make_shipment(cartons=10)
        s2 = self.make_shipment(cartons=10)
        Shipment.objects.filter(pk=s1.pk).update(status=Shipment.Status.SETTLED)

        self.assertEqual(fifo_allocator.available_stock(self.product.pk), 10)
        slices = fifo_allocator.allocate(self.product.pk, 4)
        self.assertEqual(slices[0].batch.shipment_id, s2.pk)

    def test_insufficient_stock_changes_nothing(self):
        s1 = self.make_shipment(cartons=10)
        self.make_shipment(cartons=5)

        with self.assertRaises(InsufficientStock) as ctx:
            fifo_allocator.allocate(self.product.pk, 16)

        self.assertEqual(ctx.exception.context["requested"], 16)
        self.assertEqual(ctx.exception.context["available"], 15)
        self.assertFalse(ShipmentItem.objects.filter(sold_cartons__gt=0).exists())
        self.assertEqual(self.reload(s1).status, Shipment.Status.OPEN)

    def test_rejects_non_positive_cartons(self):
        self.make_shipment(cartons=10)
        with self.assertRaises(InvalidAmount):
            fifo_allocator.allocate(self.product.pk, 0)

    def test_sold_out_shipment_closes_itself(self):
        s1 = self.make_shipment(cartons=10)
        s2 = self.make_shipment(cartons=10)

        fifo_allocator.allocate(self.product.pk, 12)

        self.assertEqual(self.reload(s1).status, Shipment.Status.CLOSED)
        self.assertEqual(self.reload(s2).status, Shipment.Status.OPEN)
        self.assertEqual(fifo_allocator.available_stock(self.product.pk), 8)

    def test_breakdown_lists_batches_in_sale_order(self):
        s1 = self.make_shipment(cartons=3)
        s2 = self.make_shipment(cartons=7)

        rows = fifo_allocator.fifo_breakdown(self.product.pk)

        self.assertEqual([r["shipment_id"] for r in rows], [s1.pk, s2.pk])
        self.assertEqual([r["available_cartons"] for r in rows], [3, 7])


class InvoiceLineSplitTest(LedgerTestCase):
    def test_weight_is_split_by_cartons_and_adds_up(self):
        self.make_shipment(cartons=2)
        self.make_shipment(cartons=5)

        invoice = self.sell(3, price=Decimal("2.50"), weight_per_carton=Decimal("3.333"))

        items = list(invoice.items.order_by("id"))
        self.assertEqual([i.cartons for i in items], [2, 1])
        self.assertEqual(sum(i.quantity for i in items), Decimal("9.999"))
        self.assertEqual(items[0].quantity, Decimal("6.666"))
        self.assertEqual(items[1].quantity, Decimal("3.333"))
        self.assertEqual(invoice.subtotal, sum(i.subtotal for i in items))

    def test_unit_cost_is_carried_from_batch(self):
        self.make_shipment(cartons=1, unit_cost=Decimal("40.00"))
        self.make_shipment(cartons=5, unit_cost=Decimal("44.00"))

        invoice = self.sell(2)

        self.assertEqual(
            list(invoice.items.order_by("id").values_list("unit_cost", flat=True)),
            [Decimal("40.00"), Decimal("44.00")],
        )


class ReverseAllocationTest(LedgerTestCase):
    def test_reverse_restores_batch_once(self):
        shipment = self.make_shipment(cartons=10)
        invoice = self.sell(4)
        item = invoice.items.get()

        self.assertTrue(fifo_allocator.reverse_allocation(item))
        self.assertFalse(fifo_allocator.reverse_allocation(item))

        self.assertEqual(shipment.items.get().sold_cartons, 0)
        self.assertIsNotNone(InvoiceItem.objects.get(pk=item.pk).reversed_at)


class OversellConstraintTest(LedgerTestCase):
    def test_database_rejects_overselling(self):
        shipment = self.make_shipment(cartons=5)
        batch = shipment.items.get()

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                ShipmentItem.objects.filter(pk=batch.pk).update(sold_cartons=F("cartons") + 1)

        self.assertEqual(Invoice.objects.count(), 0)
