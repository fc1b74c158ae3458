from decimal import Decimal

from django.test import override_settings

from .exceptions import (
    AlreadySettled, CarryoverAlreadySold, DeletionForbidden, InvalidTransition, NoOpenDay,
    ShipmentLocked, SuccessorNotOpen,
)
from .models import Carryover, Expense, Invoice, Product, Shipment, ShipmentItem
from .services import daily_report
from .services.expenses import record_expense
from .services.invoices import InvoiceLineRequest, cancel_invoice, create_invoice
from .services.shipments import (
    delete_shipment, settle_shipment, settlement_report, unsettle_shipment, update_shipment,
)
from .testing import LedgerTestCase


class SettleShipmentTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.make_shipment(cartons=100)
        self.successor = self.make_shipment(cartons=10)

    def test_remaining_stock_is_carried_to_successor(self):
        self.sell(70)

        settle_shipment(self.first, successor=self.successor, user=self.user)

        first = self.reload(self.first)
        self.assertEqual(first.status, Shipment.Status.SETTLED)
        self.assertEqual(first.settled_by, self.user)
        self.assertEqual(first.total_carryover_out, 30)
        source = first.items.get()
        self.assertEqual((source.carryover_out_cartons, source.remaining_cartons), (30, 0))
        target = self.successor.items.get()
        self.assertEqual(target.carryover_in_cartons, 30)
        self.assertEqual(target.remaining_cartons, 40)

        carryover = Carryover.objects.get()
        self.assertEqual(
            (carryover.from_item_id, carryover.to_item_id, carryover.cartons, carryover.reason),
            (source.pk, target.pk, 30, Carryover.Reason.END_OF_SHIPMENT),
        )

    def test_carried_stock_keeps_selling_in_successor(self):
        self.sell(70)
        settle_shipment(self.first, successor=self.successor)

        invoice = self.sell(35)

        item = invoice.items.get()
        self.assertEqual(item.shipment_item.shipment_id, self.successor.pk)
        self.assertEqual(item.shipment_item.remaining_cartons, 5)

    def test_settlement_totals(self):
        # 70 cartons x 10 kg x 10.00
        self.sell(70)
        record_expense(
            Decimal("100.00"), expense_type=Expense.Type.SUPPLIER, supplier=self.supplier, shipment=self.first
        )

        first = settle_shipment(self.first, successor=self.successor)

        self.assertEqual(first.total_sales, Decimal("7000.00"))
        self.assertEqual(first.company_commission, Decimal("420.00"))
        self.assertEqual(first.total_supplier_expenses, Decimal("100.00"))
        self.assertEqual(first.previous_supplier_balance, Decimal("0.00"))
        self.assertEqual(first.final_supplier_balance, Decimal("6480.00"))
        self.assertEqual(first.total_wastage, Decimal("0.000"))

    @override_settings(SOUQ={"COMPANY_COMMISSION_RATE": Decimal("2.5")})
    def test_commission_rate_is_configurable(self):
        self.sell(70)
        first = settle_shipment(self.first, successor=self.successor)
        self.assertEqual(first.company_commission, Decimal("175.00"))

    def test_wastage_is_missing_weight(self):
        create_invoice(
            self.customer, [InvoiceLineRequest(self.product.pk, 70, Decimal("690.000"), Decimal("10.00"))]
        )

        first = settle_shipment(self.first, successor=self.successor)

        self.assertEqual(first.total_wastage, Decimal("10.000"))
        self.assertEqual(first.items.get().wastage_quantity, Decimal("10.000"))

    def test_previous_balance_chains_between_settlements(self):
        self.sell(100)
        first = settle_shipment(self.first)
        self.sell(10)
        second = settle_shipment(self.successor)

        self.assertEqual(second.previous_supplier_balance, first.final_supplier_balance)
        self.assertEqual(
            second.final_supplier_balance,
            second.total_sales - second.company_commission + first.final_supplier_balance,
        )

    def test_wastage_invoices_are_not_sales(self):
        self.sell(100, invoice_type=Invoice.Type.WASTAGE)
        first = settle_shipment(self.first)
        self.assertEqual(first.total_sales, Decimal("0.00"))

    def test_sold_out_shipment_needs_no_successor(self):
        self.sell(100)
        self.assertEqual(self.reload(self.first).status, Shipment.Status.CLOSED)

        first = settle_shipment(self.first)

        self.assertEqual(first.status, Shipment.Status.SETTLED)
        self.assertFalse(Carryover.objects.exists())

    def test_remaining_stock_needs_open_successor(self):
        self.sell(70)
        with self.assertRaises(SuccessorNotOpen) as ctx:
            settle_shipment(self.first)
        self.assertEqual(ctx.exception.context["remaining_cartons"], 30)

        Shipment.objects.filter(pk=self.successor.pk).update(status=Shipment.Status.CLOSED)
        with self.assertRaises(SuccessorNotOpen):
            settle_shipment(self.first, successor=self.successor)

        with self.assertRaises(SuccessorNotOpen):
            settle_shipment(self.first, successor=self.first)
        self.assertEqual(self.reload(self.first).status, Shipment.Status.OPEN)

    def test_settle_twice(self):
        self.sell(100)
        settle_shipment(self.first)
        with self.assertRaises(AlreadySettled):
            settle_shipment(self.first)

    def test_settle_needs_open_day(self):
        daily_report.close_day(self.report)
        with self.assertRaises(NoOpenDay):
            settle_shipment(self.first, successor=self.successor)

    def test_new_batch_is_made_when_successor_lacks_product(self):
        onions = Product.objects.create(name="Onions", code="ONI")
        other = self.make_shipment(cartons=5, product=onions)

        settle_shipment(self.first, successor=other)

        target = other.items.get(product=self.product)
        self.assertEqual((target.cartons, target.carryover_in_cartons), (0, 100))

    def test_cancelling_invoice_from_settled_shipment_is_blocked(self):
        invoice = self.sell(100)
        settle_shipment(self.first)

        with self.assertRaises(ShipmentLocked):
            cancel_invoice(invoice)


class UnsettleShipmentTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.make_shipment(cartons=100)
        self.successor = self.make_shipment(cartons=10)
        self.sell(70)
        settle_shipment(self.first, successor=self.successor)

    def test_unsettle_restores_pre_settlement_state(self):
        first = unsettle_shipment(self.first, user=self.user)

        self.assertEqual(first.status, Shipment.Status.CLOSED)
        self.assertIsNone(first.settled_at)
        self.assertEqual(first.total_sales, Decimal("0.00"))
        self.assertEqual(first.final_supplier_balance, Decimal("0.00"))
        source = first.items.get()
        self.assertEqual((source.carryover_out_cartons, source.remaining_cartons), (0, 30))
        self.assertEqual(self.successor.items.get().carryover_in_cartons, 0)
        self.assertFalse(Carryover.objects.exists())

    def test_closed_shipment_sells_again_after_unsettle(self):
        unsettle_shipment(self.first)
        invoice = self.sell(5)
        self.assertEqual(invoice.items.get().shipment_item.shipment_id, self.first.pk)

    def test_unsettle_fails_once_carryover_is_sold(self):
        # successor has 10 own + 30 carried; 15 sold leaves 25 < 30
        self.sell(15)

        with self.assertRaises(CarryoverAlreadySold):
            unsettle_shipment(self.first)

        self.assertEqual(self.reload(self.first).status, Shipment.Status.SETTLED)
        self.assertEqual(self.successor.items.get().carryover_in_cartons, 30)

    def test_unsettle_closes_successor_left_without_stock(self):
        self.sell(10)
        self.assertEqual(self.reload(self.successor).status, Shipment.Status.OPEN)

        unsettle_shipment(self.first)

        self.assertEqual(self.reload(self.successor).status, Shipment.Status.CLOSED)

    def test_unsettle_drops_batch_made_for_carryover(self):
        onions = Product.objects.create(name="Onions", code="ONI")
        s3 = self.make_shipment(cartons=4, product=onions)
        settle_shipment(s3, successor=self.successor)
        self.assertEqual(self.successor.items.count(), 2)

        unsettle_shipment(s3)

        self.assertEqual(self.successor.items.count(), 1)

    def test_only_settled_shipments_unsettle(self):
        with self.assertRaises(InvalidTransition):
            unsettle_shipment(self.successor)

    def test_settle_unsettle_settle(self):
        unsettle_shipment(self.first)
        first = settle_shipment(self.first, successor=self.successor)
        self.assertEqual(first.total_carryover_out, 30)
        self.assertEqual(Carryover.objects.count(), 1)


class ShipmentLockTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.shipment = self.make_shipment(cartons=10)

    def test_fifo_sequence_never_changes(self):
        self.shipment.fifo_sequence += 100
        with self.assertRaises(ShipmentLocked):
            self.shipment.save()
        with self.assertRaises(ShipmentLocked):
            update_shipment(self.shipment, fifo_sequence=1)

    def test_open_shipment_is_editable(self):
        shipment = update_shipment(self.shipment, notes="Bruised on arrival", user=self.user)
        self.assertEqual(self.reload(shipment).notes, "Bruised on arrival")

    def test_settled_shipment_is_frozen(self):
        self.sell(10)
        settle_shipment(self.shipment)

        with self.assertRaises(ShipmentLocked):
            update_shipment(self.shipment, notes="late edit")

        shipment = self.reload(self.shipment)
        shipment.total_sales = Decimal("1.00")
        with self.assertRaises(ShipmentLocked):
            shipment.save()

    def test_status_cannot_skip_back_to_open(self):
        self.sell(10)
        shipment = self.reload(self.shipment)
        shipment.status = Shipment.Status.OPEN
        with self.assertRaises(InvalidTransition):
            shipment.save()

    def test_settled_shipment_takes_no_expenses(self):
        self.sell(10)
        settle_shipment(self.shipment)
        with self.assertRaises(ShipmentLocked):
            record_expense(
                Decimal("5.00"), expense_type=Expense.Type.SUPPLIER, supplier=self.supplier, shipment=self.shipment
            )
        self.assertFalse(Expense.objects.exists())
        self.assertEqual(self.reload(self.cashbox).balance, Decimal("1000.00"))


class DeleteShipmentTest(LedgerTestCase):
    def test_unused_shipment_can_be_deleted(self):
        shipment = self.make_shipment(cartons=10)
        delete_shipment(shipment)
        self.assertFalse(Shipment.objects.filter(pk=shipment.pk).exists())
        self.assertFalse(ShipmentItem.objects.exists())

    def test_shipment_with_sales_cannot_be_deleted(self):
        shipment = self.make_shipment(cartons=10)
        self.sell(1)
        with self.assertRaises(DeletionForbidden):
            delete_shipment(shipment)

    def test_settled_shipment_cannot_be_deleted(self):
        shipment = self.make_shipment(cartons=10)
        self.sell(10)
        settle_shipment(shipment)
        with self.assertRaises(DeletionForbidden):
            delete_shipment(shipment)


class SettlementReportTest(LedgerTestCase):
    def test_report_rows_and_totals(self):
        first = self.make_shipment(cartons=100)
        successor = self.make_shipment(cartons=10)
        self.sell(70)
        settle_shipment(first, successor=successor)

        report = settlement_report(first)

        self.assertEqual(report["shipment"]["status"], Shipment.Status.SETTLED)
        self.assertEqual(len(report["items"]), 1)
        row = report["items"][0]
        self.assertEqual((row["cartons"], row["sold_cartons"], row["carryover_out"]), (100, 70, 30))
        self.assertEqual(row["sold_weight"], Decimal("700.000"))
        self.assertEqual(report["totals"]["remaining_cartons"], 0)
        self.assertEqual(report["totals"]["total_cost"], Decimal("5000.00"))
        self.assertEqual(report["financials"]["total_sales"], Decimal("7000.00"))
