from datetime import timedelta
from decimal import Decimal

from django.test import override_settings

from .exceptions import (
    AlreadyCancelled, AlreadyClosed, DeletionForbidden, DiscountExceedsSubtotal,
    EditWindowExpired, InsufficientStock, NoOpenDay,
)
from .models import Customer, Invoice, InvoiceItem, Product, ShipmentItem
from .services import daily_report
from .services.collections import record_collection
from .services.invoices import InvoiceLineRequest, cancel_invoice, create_invoice
from .testing import LedgerTestCase


class CreateInvoiceTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.shipment = self.make_shipment(cartons=100)

    def test_invoice_totals_and_customer_balance(self):
        # 10 cartons × 10 kg × 10.00 = 1000.00
        invoice = self.sell(10, discount=Decimal("200.00"))

        self.assertEqual(invoice.subtotal, Decimal("1000.00"))
        self.assertEqual(invoice.total, Decimal("800.00"))
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(invoice.balance, Decimal("800.00"))
        self.assertEqual(invoice.date, self.today)
        self.assertTrue(invoice.number.startswith("INV-"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("800.00"))

    def test_discount_over_subtotal_is_rejected_before_allocation(self):
        with self.assertRaises(DiscountExceedsSubtotal):
            self.sell(10, discount=Decimal("1000.01"))

        self.assertEqual(Invoice.objects.count(), 0)
        self.assertEqual(self.shipment.items.get().sold_cartons, 0)

    def test_failed_line_rolls_back_whole_invoice(self):
        other = Product.objects.create(name="Onions")
        lines = [
            InvoiceLineRequest(self.product.pk, 5, Decimal("50"), Decimal("1.00")),
            InvoiceLineRequest(other.pk, 1, Decimal("10"), Decimal("1.00")),
        ]

        with self.assertRaises(InsufficientStock):
            create_invoice(self.customer, lines, user=self.user)

        self.assertEqual(Invoice.objects.count(), 0)
        self.assertEqual(InvoiceItem.objects.count(), 0)
        self.assertEqual(self.shipment.items.get().sold_cartons, 0)
        self.assertEqual(self.reload(self.customer).balance, Decimal("0.00"))

    def test_wastage_invoice_creates_no_receivable(self):
        invoice = self.sell(3, invoice_type=Invoice.Type.WASTAGE)

        self.assertEqual(invoice.total, Decimal("300.00"))
        self.assertEqual(invoice.balance, Decimal("0.00"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("0.00"))
        self.assertEqual(self.shipment.items.get().sold_cartons, 3)

    def test_requires_open_day(self):
        daily_report.close_day(self.report)
        with self.assertRaises(NoOpenDay):
            self.sell(1)


class CancelInvoiceTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.s1 = self.make_shipment(cartons=5)
        self.s2 = self.make_shipment(cartons=20)

    def test_round_trip_restores_stock_and_balance(self):
        before_batches = dict(ShipmentItem.objects.values_list("pk", "sold_cartons"))
        before_balance = self.reload(self.customer).balance

        invoice = self.sell(8)
        cancel_invoice(invoice, user=self.user)

        after_batches = dict(ShipmentItem.objects.values_list("pk", "sold_cartons"))
        self.assertEqual(before_batches, after_batches)
        self.assertEqual(self.reload(self.customer).balance, before_balance)

        invoice = self.reload(invoice)
        self.assertEqual(invoice.status, Invoice.Status.CANCELLED)
        self.assertEqual(invoice.cancelled_by, self.user)
        self.assertEqual((invoice.paid_amount, invoice.balance), (Decimal("0.00"), Decimal("0.00")))

    def test_cancel_releases_payments_back_to_collection(self):
        invoice = self.sell(8)  # 800.00
        collection = record_collection(self.customer, Decimal("500.00"))
        self.assertEqual(self.reload(invoice).paid_amount, Decimal("500.00"))

        cancel_invoice(invoice)

        collection = self.reload(collection)
        self.assertEqual(collection.allocated_amount, Decimal("0.00"))
        self.assertEqual(collection.unallocated_amount, Decimal("500.00"))
        self.assertFalse(collection.allocations.exists())
        invoice = self.reload(invoice)
        self.assertEqual((invoice.paid_amount, invoice.balance), (Decimal("0.00"), Decimal("0.00")))
        # the 500 paid is now customer credit
        self.assertEqual(self.reload(self.customer).balance, Decimal("-500.00"))

    def test_cannot_cancel_twice(self):
        invoice = self.sell(1)
        cancel_invoice(invoice)
        with self.assertRaises(AlreadyCancelled):
            cancel_invoice(invoice)

    def test_cancel_wastage_leaves_customer_balance(self):
        invoice = self.sell(2, invoice_type=Invoice.Type.WASTAGE)
        cancel_invoice(invoice)
        self.assertEqual(self.reload(self.customer).balance, Decimal("0.00"))
        self.assertEqual(self.s1.items.get().sold_cartons, 0)

    def test_edit_window(self):
        invoice = self.sell(1)
        Invoice.objects.filter(pk=invoice.pk).update(date=self.today - timedelta(days=3))

        with self.assertRaises(EditWindowExpired):
            cancel_invoice(invoice)

        with override_settings(SOUQ={"INVOICE_EDIT_WINDOW_DAYS": 5}):
            cancel_invoice(invoice)
        self.assertEqual(self.reload(invoice).status, Invoice.Status.CANCELLED)

    def test_invoice_on_closed_day_cannot_be_cancelled(self):
        invoice = self.sell(1)
        daily_report.close_day(self.report)
        daily_report.open_day(self.today - timedelta(days=1))

        with self.assertRaises(AlreadyClosed):
            cancel_invoice(invoice)


class InvoiceDeletionTest(LedgerTestCase):
    def test_invoices_can_never_be_deleted(self):
        self.make_shipment(cartons=5)
        active = self.sell(1)
        cancelled = self.sell(1)
        cancel_invoice(cancelled)

        for invoice in (active, cancelled):
            with self.assertRaises(DeletionForbidden):
                invoice.delete()
        with self.assertRaises(DeletionForbidden):
            Invoice.objects.all().delete()
        with self.assertRaises(DeletionForbidden):
            Customer.objects.get(pk=self.customer.pk).invoices.all().delete()

        self.assertEqual(Invoice.objects.count(), 2)
