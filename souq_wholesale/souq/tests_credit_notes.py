from decimal import Decimal

from .exceptions import (
    AlreadyCancelled, DeletionForbidden, InvalidAmount, InvalidTransition, InvoiceNotPayable,
    NoOpenDay, NoteExceedsBalance,
)
from .models import CreditNote, Customer, Invoice
from .services import daily_report
from .services.balance_service import find_inconsistencies
from .services.collections import record_collection
from .services.credit_notes import (
    PriceAdjustment, cancel_note, create_credit_note, create_debit_note, price_adjustment,
)
from .services.invoices import cancel_invoice
from .testing import LedgerTestCase


class CreditNoteTestCase(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.make_shipment(cartons=50)
        self.invoice = self.sell(10)  # 1000.00


class CreateNoteTest(CreditNoteTestCase):
    def test_credit_note_lowers_customer_balance(self):
        note = create_credit_note(self.customer, Decimal("100.00"), "Goodwill", user=self.user)

        self.assertEqual(note.type, CreditNote.Type.CREDIT)
        self.assertTrue(note.number.startswith("CN-"))
        self.assertEqual(note.date, self.today)
        self.assertEqual(note.created_by, self.user)
        self.assertEqual(self.reload(self.customer).balance, Decimal("900.00"))
        self.assertEqual(self.reload(self.invoice).balance, Decimal("1000.00"))

    def test_debit_note_raises_customer_balance(self):
        note = create_debit_note(self.customer, Decimal("50.00"), "Crates not returned")

        self.assertTrue(note.number.startswith("DN-"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("1050.00"))

    def test_linked_note_moves_invoice_balance(self):
        create_credit_note(self.customer, Decimal("200.00"), "Bruised", invoice=self.invoice)

        invoice = self.reload(self.invoice)
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(invoice.balance, Decimal("800.00"))

        create_debit_note(self.customer, Decimal("30.00"), "Delivery", invoice=self.invoice.pk)
        self.assertEqual(self.reload(self.invoice).balance, Decimal("830.00"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("830.00"))

    def test_payment_after_credit_note_clears_invoice(self):
        create_credit_note(self.customer, Decimal("200.00"), "Bruised", invoice=self.invoice)

        collection = record_collection(self.customer, Decimal("800.00"))

        invoice = self.reload(self.invoice)
        self.assertEqual((invoice.paid_amount, invoice.balance), (Decimal("800.00"), Decimal("0.00")))
        self.assertEqual(collection.unallocated_amount, Decimal("0.00"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("0.00"))

    def test_credit_note_cannot_exceed_invoice_balance(self):
        record_collection(self.customer, Decimal("900.00"))

        with self.assertRaises(NoteExceedsBalance) as ctx:
            create_credit_note(self.customer, Decimal("100.01"), "Too much", invoice=self.invoice)

        self.assertEqual(ctx.exception.context["available"], Decimal("100.00"))
        self.assertFalse(CreditNote.objects.exists())
        self.assertEqual(self.reload(self.customer).balance, Decimal("100.00"))

    def test_only_own_active_sale_invoices(self):
        other = Customer.objects.create(name="Corner Shop")
        with self.assertRaises(InvoiceNotPayable):
            create_credit_note(other, Decimal("10.00"), "Wrong customer", invoice=self.invoice)

        wastage = self.sell(1, invoice_type=Invoice.Type.WASTAGE)
        with self.assertRaises(InvoiceNotPayable):
            create_debit_note(self.customer, Decimal("10.00"), "Wastage", invoice=wastage)

        self.assertFalse(CreditNote.objects.exists())

    def test_amount_must_be_positive(self):
        with self.assertRaises(InvalidAmount):
            create_credit_note(self.customer, Decimal("0"), "Nothing")

    def test_requires_open_day(self):
        daily_report.close_day(self.report)
        with self.assertRaises(NoOpenDay):
            create_debit_note(self.customer, Decimal("5.00"), "Late fee")


class PriceAdjustmentTest(CreditNoteTestCase):
    def test_lower_price_becomes_credit_note(self):
        note = price_adjustment(
            self.invoice, [PriceAdjustment("Tomatoes", Decimal("10.00"), Decimal("9.50"), Decimal("100"))]
        )

        self.assertEqual(note.type, CreditNote.Type.CREDIT)
        self.assertEqual(note.amount, Decimal("50.00"))
        self.assertEqual(note.invoice, self.invoice)
        self.assertIn("Tomatoes: 10.00 → 9.50", note.notes)
        self.assertEqual(self.reload(self.invoice).balance, Decimal("950.00"))

    def test_higher_price_becomes_debit_note(self):
        note = price_adjustment(
            self.invoice, [PriceAdjustment("Tomatoes", Decimal("10.00"), Decimal("10.20"), Decimal("100"))]
        )
        self.assertEqual(note.type, CreditNote.Type.DEBIT)
        self.assertEqual(note.amount, Decimal("20.00"))

    def test_no_difference(self):
        with self.assertRaises(InvalidAmount):
            price_adjustment(
                self.invoice, [PriceAdjustment("Tomatoes", Decimal("10.00"), Decimal("10.00"), Decimal("100"))]
            )


class CancelNoteTest(CreditNoteTestCase):
    def test_cancel_reverses_customer_and_invoice(self):
        note = create_credit_note(self.customer, Decimal("200.00"), "Bruised", invoice=self.invoice)

        note = cancel_note(note, user=self.user)

        self.assertEqual(note.status, CreditNote.Status.CANCELLED)
        self.assertEqual(note.cancelled_by, self.user)
        self.assertEqual(self.reload(self.invoice).balance, Decimal("1000.00"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("1000.00"))
        with self.assertRaises(AlreadyCancelled):
            cancel_note(note)

    def test_paid_debit_note_cannot_be_cancelled(self):
        note = create_debit_note(self.customer, Decimal("100.00"), "Crates", invoice=self.invoice)
        record_collection(self.customer, Decimal("1100.00"))

        with self.assertRaises(NoteExceedsBalance):
            cancel_note(note)
        self.assertEqual(self.reload(note).status, CreditNote.Status.ACTIVE)

    def test_invoice_with_active_note_cannot_be_cancelled(self):
        note = create_credit_note(self.customer, Decimal("10.00"), "Bruised", invoice=self.invoice)
        with self.assertRaises(InvalidTransition):
            cancel_invoice(self.invoice)

        cancel_note(note)
        cancel_invoice(self.invoice)
        self.assertEqual(self.reload(self.customer).balance, Decimal("0.00"))

    def test_notes_can_never_be_deleted(self):
        note = create_debit_note(self.customer, Decimal("10.00"), "Crates")
        with self.assertRaises(DeletionForbidden):
            note.delete()
        with self.assertRaises(DeletionForbidden):
            CreditNote.objects.all().delete()

    def test_ledger_stays_consistent(self):
        create_credit_note(self.customer, Decimal("200.00"), "Bruised", invoice=self.invoice)
        kept = create_debit_note(self.customer, Decimal("40.00"), "Delivery", invoice=self.invoice)
        cancel_note(create_credit_note(self.customer, Decimal("15.00"), "Goodwill"))
        record_collection(self.customer, Decimal("500.00"))

        self.assertEqual(find_inconsistencies(), [])
        self.assertEqual(self.reload(self.invoice).balance, Decimal("340.00"))
        self.assertTrue(self.reload(kept).is_active)
