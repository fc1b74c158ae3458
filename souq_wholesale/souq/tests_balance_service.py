from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError

from .models import Collection, Customer, Expense, Invoice, Supplier
from .services.balance_service import (
    find_inconsistencies, get_customer_balances, get_supplier_balances, repair_derived_fields,
)
from .services.collections import record_collection
from .services.expenses import record_expense
from .services.invoices import cancel_invoice
from .services.returns import ReturnLineRequest, create_return
from .testing import LedgerTestCase


class BalanceServiceTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.make_shipment(cartons=50)
        self.invoice = self.sell(10)  # 1000
        self.collection = record_collection(self.customer, Decimal("400.00"))

    def test_clean_ledger_has_no_problems(self):
        cancel_invoice(self.sell(1))
        create_return(self.customer, [ReturnLineRequest(self.invoice.items.get().pk, 1)])
        record_expense(Decimal("25.00"), expense_type=Expense.Type.SUPPLIER, supplier=self.supplier)

        self.assertEqual(find_inconsistencies(), [])

    def test_customer_balance_rebuilt_from_history(self):
        customer = get_customer_balances().get(pk=self.customer.pk)
        self.assertEqual(customer.invoiced, Decimal("1000.00"))
        self.assertEqual(customer.collected, Decimal("400.00"))
        self.assertEqual(customer.expected_balance, Decimal("600.00"))

    def test_supplier_balance_rebuilt_from_history(self):
        Supplier.objects.filter(pk=self.supplier.pk).update(opening_balance=Decimal("100.00"), balance=Decimal("100.00"))
        record_expense(Decimal("30.00"), expense_type=Expense.Type.SUPPLIER, supplier=self.supplier)

        supplier = get_supplier_balances().get(pk=self.supplier.pk)
        self.assertEqual(supplier.expected_balance, Decimal("70.00"))
        self.assertEqual(self.reload(self.supplier).balance, Decimal("70.00"))

    def test_drift_is_reported_and_repaired(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(paid_amount=Decimal("0.00"), balance=Decimal("1000.00"))
        Collection.objects.filter(pk=self.collection.pk).update(allocated_amount=Decimal("0.00"))

        fields = {(p["entity"], p["field"]) for p in find_inconsistencies()}
        self.assertIn(("invoice", "paid_amount"), fields)
        self.assertIn(("invoice", "balance"), fields)
        self.assertIn(("collection", "allocated_amount"), fields)

        counts = repair_derived_fields()

        self.assertEqual(counts["collection"], 1)
        self.assertEqual(counts["invoice"], 1)
        invoice = self.reload(self.invoice)
        self.assertEqual((invoice.paid_amount, invoice.balance), (Decimal("400.00"), Decimal("600.00")))
        self.assertEqual(find_inconsistencies(), [])

    def test_party_balances_only_repaired_on_request(self):
        Customer.objects.filter(pk=self.customer.pk).update(balance=Decimal("1.00"))

        repair_derived_fields()
        self.assertEqual(self.reload(self.customer).balance, Decimal("1.00"))

        counts = repair_derived_fields(include_parties=True)
        self.assertEqual(counts["customer"], 1)
        self.assertEqual(self.reload(self.customer).balance, Decimal("600.00"))


class LedgerCommandTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.make_shipment(cartons=5)
        self.invoice = self.sell(2)

    def test_check_ledger(self):
        out = StringIO()
        call_command("check_ledger", stdout=out)
        self.assertIn("Ledger is consistent", out.getvalue())

        Invoice.objects.filter(pk=self.invoice.pk).update(balance=Decimal("5.00"))
        out = StringIO()
        with self.assertRaises(CommandError):
            call_command("check_ledger", stdout=out)
        self.assertIn(f"invoice #{self.invoice.pk} balance", out.getvalue())

    def test_recalculate_balances(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(balance=Decimal("5.00"))
        Customer.objects.filter(pk=self.customer.pk).update(balance=Decimal("0.00"))

        out = StringIO()
        call_command("recalculate_balances", "--parties", stdout=out)

        self.assertIn("Repaired 1 invoice row(s)", out.getvalue())
        self.assertEqual(self.reload(self.invoice).balance, Decimal("200.00"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("200.00"))
