from datetime import timedelta
from decimal import Decimal

from .models import Collection, Customer, Invoice
from .services.collections import cancel_collection, record_collection
from .services.credit_notes import create_credit_note, create_debit_note
from .services.invoices import cancel_invoice
from .services.returns import ReturnLineRequest, create_return
from .services.statements import customer_statement, opening_balance
from .testing import LedgerTestCase


class CustomerStatementTest(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.make_shipment(cartons=50)

    def test_every_document_with_running_balance(self):
        invoice = self.sell(5)  # 500
        collection = record_collection(self.customer, Decimal("300.00"))
        create_return(self.customer, [ReturnLineRequest(invoice.items.get().pk, 1)])  # 100
        create_credit_note(self.customer, Decimal("20.00"), "Bruised")
        create_debit_note(self.customer, Decimal("5.00"), "Crates")

        statement = customer_statement(self.reload(self.customer))

        rows = statement["transactions"]
        self.assertEqual(
            [r.kind for r in rows],
            ["opening_balance", "invoice", "collection", "return", "credit_note", "debit_note"],
        )
        self.assertEqual(
            [r.balance for r in rows],
            [Decimal("0.00"), Decimal("500.00"), Decimal("200.00"), Decimal("100.00"),
             Decimal("80.00"), Decimal("85.00")],
        )
        self.assertEqual(rows[2].reference, collection.number)
        self.assertEqual(rows[2].description, "Collection (Cash)")

        summary = statement["summary"]
        self.assertEqual(summary["total_invoices"], Decimal("500.00"))
        self.assertEqual(summary["total_collections"], Decimal("300.00"))
        self.assertEqual(summary["total_returns"], Decimal("100.00"))
        self.assertEqual(summary["total_credit_notes"], Decimal("20.00"))
        self.assertEqual(summary["total_debit_notes"], Decimal("5.00"))
        self.assertEqual(summary["closing_balance"], Decimal("85.00"))
        self.assertEqual(summary["closing_balance"], statement["customer"]["current_balance"])

    def test_cancelled_documents_and_wastage_are_left_out(self):
        kept = self.sell(2)
        cancel_invoice(self.sell(1))
        self.sell(1, invoice_type=Invoice.Type.WASTAGE)
        cancel_collection(record_collection(self.customer, Decimal("50.00")))

        statement = customer_statement(self.reload(self.customer))

        self.assertEqual([r.reference for r in statement["transactions"][1:]], [kept.number])
        self.assertEqual(statement["summary"]["closing_balance"], Decimal("200.00"))

    def test_period_starts_from_earlier_history(self):
        customer = Customer.objects.create(name="Corner Shop", opening_balance=Decimal("100.00"))
        old = self.sell(3, customer=customer)  # 300
        paid = record_collection(customer, Decimal("50.00"))
        Invoice.objects.filter(pk=old.pk).update(date=self.today - timedelta(days=2))
        Collection.objects.filter(pk=paid.pk).update(date=self.today - timedelta(days=1))
        recent = self.sell(2, customer=customer)  # 200

        statement = customer_statement(self.reload(customer), date_from=self.today)

        self.assertEqual(opening_balance(customer, self.today), Decimal("350.00"))
        opening, *rows = statement["transactions"]
        self.assertEqual((opening.debit, opening.credit, opening.balance), (Decimal("350.00"), 0, Decimal("350.00")))
        self.assertEqual([r.reference for r in rows], [recent.number])
        self.assertEqual(statement["summary"]["closing_balance"], Decimal("550.00"))
        self.assertEqual(statement["summary"]["closing_balance"], self.reload(customer).balance)

        earlier = customer_statement(customer, date_to=self.today - timedelta(days=1))
        self.assertEqual(earlier["summary"]["opening_balance"], Decimal("100.00"))
        self.assertEqual([r.kind for r in earlier["transactions"]], ["opening_balance", "invoice", "collection"])
        self.assertEqual(earlier["summary"]["closing_balance"], Decimal("350.00"))

    def test_customer_in_credit_opens_on_credit_side(self):
        customer = Customer.objects.create(name="Prepaid Stall", opening_balance=Decimal("-40.00"))

        opening = customer_statement(customer)["transactions"][0]

        self.assertEqual((opening.debit, opening.credit), (0, Decimal("40.00")))
        self.assertEqual(opening.balance, Decimal("-40.00"))
