from datetime import timedelta
from decimal import Decimal

from .exceptions import (
    AlreadyCancelled, CarryoverAlreadySold, InvalidReturn, InvalidTransition, ReturnDayMismatch,
    SuccessorNotOpen,
)
from .models import Carryover, Customer, ReturnNote, ShipmentItem
from .services.invoices import cancel_invoice
from .services.returns import ReturnLineRequest, cancel_return, create_return, returned_cartons
from .services.shipments import settle_shipment
from .testing import LedgerTestCase


class ReturnTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.shipment = self.make_shipment(cartons=10)
        self.invoice = self.sell(5)  # 500.00
        self.line = self.invoice.items.get()

    def test_return_restocks_batch_and_credits_customer(self):
        note = create_return(self.customer, [ReturnLineRequest(self.line.pk, 2)], user=self.user)

        self.assertEqual(note.total, Decimal("200.00"))
        self.assertEqual(note.date, self.today)
        line = note.lines.get()
        self.assertFalse(line.is_late)
        self.assertEqual(line.quantity, Decimal("20.000"))
        self.assertEqual(line.shipment_item_id, self.line.shipment_item_id)
        self.assertEqual(self.shipment.items.get().sold_cartons, 3)
        self.assertEqual(self.reload(self.customer).balance, Decimal("300.00"))
        self.assertEqual(returned_cartons(self.line), 2)

    def test_price_and_weight_can_be_overridden(self):
        note = create_return(
            self.customer,
            [ReturnLineRequest(self.line.pk, 1, quantity=Decimal("8.500"), unit_price=Decimal("6.00"))],
        )
        self.assertEqual(note.total, Decimal("51.00"))

    def test_cannot_return_more_than_sold(self):
        create_return(self.customer, [ReturnLineRequest(self.line.pk, 4)])

        with self.assertRaises(InvalidReturn) as ctx:
            create_return(self.customer, [ReturnLineRequest(self.line.pk, 2)])
        self.assertEqual(ctx.exception.context["available"], 1)

    def test_only_own_active_invoices(self):
        other = Customer.objects.create(name="Corner Shop")
        with self.assertRaises(InvalidReturn):
            create_return(other, [ReturnLineRequest(self.line.pk, 1)])
        self.assertFalse(ReturnNote.objects.exists())

    def test_return_must_be_dated_on_open_day(self):
        with self.assertRaises(ReturnDayMismatch):
            create_return(
                self.customer, [ReturnLineRequest(self.line.pk, 1)], date=self.today - timedelta(days=1)
            )

    def test_cancel_return_reverses_it(self):
        note = create_return(self.customer, [ReturnLineRequest(self.line.pk, 2)])

        note = cancel_return(note, user=self.user)

        self.assertEqual(note.status, ReturnNote.Status.CANCELLED)
        self.assertEqual(self.shipment.items.get().sold_cartons, 5)
        self.assertEqual(self.reload(self.customer).balance, Decimal("500.00"))
        self.assertEqual(returned_cartons(self.line), 0)
        with self.assertRaises(AlreadyCancelled):
            cancel_return(note)

    def test_cancel_fails_when_goods_sold_again(self):
        self.sell(5)  # batch now sold out
        note = create_return(self.customer, [ReturnLineRequest(self.line.pk, 2)])
        self.sell(2)

        with self.assertRaises(CarryoverAlreadySold):
            cancel_return(note)
        self.assertEqual(self.reload(note).status, ReturnNote.Status.ACTIVE)

    def test_invoice_with_active_return_cannot_be_cancelled(self):
        note = create_return(self.customer, [ReturnLineRequest(self.line.pk, 1)])
        with self.assertRaises(InvalidTransition):
            cancel_invoice(self.invoice)

        cancel_return(note)
        cancel_invoice(self.invoice)

    def test_batch_without_sold_cartons_refuses_restock(self):
        ShipmentItem.objects.filter(pk=self.line.shipment_item_id).update(sold_cartons=1)

        with self.assertRaises(InvalidReturn) as ctx:
            create_return(self.customer, [ReturnLineRequest(self.line.pk, 2)])

        self.assertEqual(ctx.exception.context["shipment_item_id"], self.line.shipment_item_id)
        self.assertFalse(ReturnNote.objects.exists())
        self.assertEqual(self.shipment.items.get().sold_cartons, 1)
        self.assertEqual(self.reload(self.customer).balance, Decimal("500.00"))


class LateReturnTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.make_shipment(cartons=10)
        self.invoice = self.sell(10)
        self.line = self.invoice.items.get()
        settle_shipment(self.first)

    def test_late_return_goes_to_open_shipment(self):
        successor = self.make_shipment(cartons=4)

        note = create_return(self.customer, [ReturnLineRequest(self.line.pk, 3)])

        line = note.lines.get()
        self.assertTrue(line.is_late)
        target = successor.items.get()
        self.assertEqual(line.shipment_item_id, target.pk)
        self.assertEqual(target.carryover_in_cartons, 3)
        self.assertEqual(target.remaining_cartons, 7)
        self.assertEqual(line.carryover.reason, Carryover.Reason.LATE_RETURN)
        self.assertEqual(line.carryover.from_shipment_id, self.first.pk)
        # settled batch itself is untouched
        self.assertEqual(self.first.items.get().sold_cartons, 10)

    def test_late_return_needs_open_shipment(self):
        with self.assertRaises(SuccessorNotOpen):
            create_return(self.customer, [ReturnLineRequest(self.line.pk, 1)])
        self.assertFalse(ReturnNote.objects.exists())

    def test_cancel_late_return(self):
        successor = self.make_shipment(cartons=4)
        note = create_return(self.customer, [ReturnLineRequest(self.line.pk, 3)])

        cancel_return(note)

        self.assertEqual(successor.items.get().carryover_in_cartons, 0)
        self.assertFalse(Carryover.objects.exists())
        self.assertEqual(self.reload(self.customer).balance, Decimal("1000.00"))
