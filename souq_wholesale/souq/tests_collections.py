from datetime import timedelta
from decimal import Decimal

from django.test import override_settings

from .exceptions import (
    AllocationExceedsBalance, AllocationExceedsCollection, AlreadyCancelled, DeletionForbidden,
    EditWindowExpired, InvalidAmount, InvoiceNotPayable, NoOpenDay,
)
from .models import Account, AccountTransaction, Collection, CollectionAllocation, Customer
from .services import accounts, daily_report
from .services.collections import cancel_collection, distribute_auto, distribute_manual, record_collection
from .services.references import CollectionRef
from .testing import LedgerTestCase


class CollectionTestCase(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.make_shipment(cartons=200)


class AutoDistributionTest(CollectionTestCase):
    def test_partial_payment_of_discounted_invoice(self):
        invoice = self.sell(10, discount=Decimal("200.00"))  # 1000 - 200

        collection = record_collection(self.customer, Decimal("500.00"), user=self.user)

        invoice = self.reload(invoice)
        self.assertEqual(invoice.total, Decimal("800.00"))
        self.assertEqual(invoice.paid_amount, Decimal("500.00"))
        self.assertEqual(invoice.balance, Decimal("300.00"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("300.00"))
        self.assertEqual(collection.allocated_amount, Decimal("500.00"))
        self.assertEqual(collection.unallocated_amount, Decimal("0.00"))
        self.assertEqual(collection.date, self.today)

    def test_oldest_invoice_is_paid_first(self):
        first = self.sell(3)   # 300
        second = self.sell(4)  # 400

        record_collection(self.customer, Decimal("500.00"))

        self.assertEqual(self.reload(first).balance, Decimal("0.00"))
        self.assertEqual(self.reload(second).balance, Decimal("200.00"))

    def test_newest_first(self):
        first = self.sell(3)
        second = self.sell(4)

        record_collection(
            self.customer, Decimal("500.00"), distribution_method=Collection.Distribution.NEWEST_FIRST
        )

        self.assertEqual(self.reload(second).balance, Decimal("0.00"))
        self.assertEqual(self.reload(first).balance, Decimal("200.00"))

    def test_overpayment_stays_as_credit(self):
        invoice = self.sell(2)  # 200

        collection = record_collection(self.customer, Decimal("350.00"))

        self.assertEqual(self.reload(invoice).balance, Decimal("0.00"))
        self.assertEqual(collection.allocated_amount, Decimal("200.00"))
        self.assertEqual(collection.unallocated_amount, Decimal("150.00"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("-150.00"))

    def test_unallocated_credit_can_be_spread_later(self):
        collection = record_collection(self.customer, Decimal("150.00"))
        self.assertEqual(collection.unallocated_amount, Decimal("150.00"))

        invoice = self.sell(1)  # 100
        collection = distribute_auto(collection)

        self.assertEqual(collection.allocated_amount, Decimal("100.00"))
        self.assertEqual(collection.unallocated_amount, Decimal("50.00"))
        self.assertEqual(self.reload(invoice).paid_amount, Decimal("100.00"))

    def test_other_customers_invoices_are_untouched(self):
        other = Customer.objects.create(name="Corner Shop")
        theirs = self.sell(2, customer=other)

        record_collection(self.customer, Decimal("100.00"))

        self.assertEqual(self.reload(theirs).paid_amount, Decimal("0.00"))

    def test_money_lands_in_matching_account(self):
        record_collection(self.customer, Decimal("100.00"))
        collection = record_collection(
            self.customer, Decimal("250.00"), payment_method=Collection.PaymentMethod.BANK
        )

        self.assertEqual(self.reload(self.cashbox).balance, Decimal("1100.00"))
        self.assertEqual(self.reload(self.bank).balance, Decimal("5250.00"))
        txn = AccountTransaction.objects.get(account=self.bank)
        self.assertEqual(txn.reference, CollectionRef(collection.pk))
        self.assertEqual(txn.balance_after, Decimal("5250.00"))

    def test_amount_must_be_positive(self):
        with self.assertRaises(InvalidAmount):
            record_collection(self.customer, Decimal("0"))
        self.assertEqual(Collection.objects.count(), 0)


class ManualDistributionTest(CollectionTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.sell(3)   # 300
        self.second = self.sell(4)  # 400

    def manual(self, amount, allocations=None):
        return record_collection(
            self.customer, amount, distribution_method=Collection.Distribution.MANUAL, allocations=allocations
        )

    def test_chosen_amounts_are_applied(self):
        collection = self.manual(Decimal("500.00"), {self.second.pk: Decimal("400.00"), self.first.pk: Decimal("50")})

        self.assertEqual(self.reload(self.second).balance, Decimal("0.00"))
        self.assertEqual(self.reload(self.first).balance, Decimal("250.00"))
        self.assertEqual(collection.unallocated_amount, Decimal("50.00"))

    def test_manual_without_allocations_leaves_credit(self):
        collection = self.manual(Decimal("100.00"))
        self.assertEqual(collection.unallocated_amount, Decimal("100.00"))
        self.assertFalse(CollectionAllocation.objects.exists())

    def test_amount_over_invoice_balance(self):
        collection = self.manual(Decimal("500.00"))
        with self.assertRaises(AllocationExceedsBalance):
            distribute_manual(collection, {self.first.pk: Decimal("300.01")})
        self.assertFalse(CollectionAllocation.objects.exists())

    def test_total_over_collection(self):
        collection = self.manual(Decimal("500.00"))
        with self.assertRaises(AllocationExceedsCollection):
            distribute_manual(collection, {self.first.pk: Decimal("300"), self.second.pk: Decimal("300")})
        self.assertFalse(CollectionAllocation.objects.exists())

    @override_settings(SOUQ={"ENFORCE_MANUAL_SUM": False})
    def test_total_over_collection_when_not_enforced(self):
        collection = self.manual(Decimal("500.00"))
        collection = distribute_manual(collection, {self.first.pk: Decimal("300"), self.second.pk: Decimal("300")})
        self.assertEqual(collection.allocated_amount, Decimal("600.00"))

    def test_foreign_invoice_is_not_payable(self):
        other = Customer.objects.create(name="Corner Shop")
        theirs = self.sell(1, customer=other)
        collection = self.manual(Decimal("100.00"))

        with self.assertRaises(InvoiceNotPayable):
            distribute_manual(collection, {theirs.pk: Decimal("50")})

    def test_cancelled_collection_cannot_be_distributed(self):
        collection = self.manual(Decimal("100.00"))
        cancel_collection(collection)
        with self.assertRaises(AlreadyCancelled):
            distribute_manual(collection, {self.first.pk: Decimal("50")})

    def test_distribution_needs_open_day(self):
        collection = self.manual(Decimal("100.00"))
        daily_report.close_day(self.report)

        with self.assertRaises(NoOpenDay):
            distribute_manual(collection, {self.first.pk: Decimal("50")})
        with self.assertRaises(NoOpenDay):
            distribute_auto(collection)

        self.assertFalse(CollectionAllocation.objects.exists())
        self.assertEqual(self.reload(self.first).paid_amount, Decimal("0.00"))


class CancelCollectionTest(CollectionTestCase):
    def test_cancel_restores_invoices_and_customer(self):
        invoice = self.sell(8)  # 800
        collection = record_collection(self.customer, Decimal("500.00"))

        collection = cancel_collection(collection, user=self.user)

        self.assertEqual(collection.status, Collection.Status.CANCELLED)
        self.assertEqual(collection.cancelled_by, self.user)
        self.assertEqual(collection.allocated_amount, Decimal("0.00"))
        invoice = self.reload(invoice)
        self.assertEqual((invoice.paid_amount, invoice.balance), (Decimal("0.00"), Decimal("800.00")))
        self.assertEqual(self.reload(self.customer).balance, Decimal("800.00"))
        self.assertEqual(self.reload(self.cashbox).balance, Decimal("1500.00"))
        directions = list(
            AccountTransaction.objects.filter(reference_type="collection", reference_id=collection.pk)
            .order_by("id")
            .values_list("type", flat=True)
        )
        self.assertEqual(directions, [AccountTransaction.Direction.IN])

    def test_cancel_twice(self):
        collection = record_collection(self.customer, Decimal("10.00"))
        cancel_collection(collection)
        with self.assertRaises(AlreadyCancelled):
            cancel_collection(collection)

    def test_cancel_does_not_depend_on_account_balance(self):
        collection = record_collection(self.customer, Decimal("500.00"))
        accounts.withdraw(Account.Type.CASHBOX, Decimal("1500.00"))

        collection = cancel_collection(collection)

        self.assertEqual(collection.status, Collection.Status.CANCELLED)
        self.assertEqual(self.reload(self.cashbox).balance, Decimal("0.00"))
        self.assertEqual(self.reload(self.customer).balance, Decimal("0.00"))

    def test_edit_window(self):
        collection = record_collection(self.customer, Decimal("10.00"))
        Collection.objects.filter(pk=collection.pk).update(date=self.today - timedelta(days=3))

        with self.assertRaises(EditWindowExpired):
            cancel_collection(collection)

    def test_collections_can_never_be_deleted(self):
        collection = record_collection(self.customer, Decimal("10.00"))
        with self.assertRaises(DeletionForbidden):
            collection.delete()
        with self.assertRaises(DeletionForbidden):
            Collection.objects.filter(pk=collection.pk).delete()


class PaymentInvariantTest(CollectionTestCase):
    def test_paid_matches_allocations_after_mixed_activity(self):
        invoices = [self.sell(n) for n in (1, 2, 3)]
        c1 = record_collection(self.customer, Decimal("250.00"))
        c2 = record_collection(self.customer, Decimal("200.00"))
        cancel_collection(c1)
        distribute_auto(c2)

        for invoice in invoices:
            invoice = self.reload(invoice)
            allocated = sum((a.amount for a in invoice.allocations.all()), Decimal("0.00"))
            self.assertEqual(invoice.paid_amount, allocated)
            self.assertEqual(invoice.balance, invoice.total - invoice.paid_amount)
            self.assertGreaterEqual(invoice.balance, 0)
        for collection in Collection.objects.all():
            self.assertEqual(collection.allocated_amount + collection.unallocated_amount, collection.amount)
