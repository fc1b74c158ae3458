from decimal import Decimal

from django.core.exceptions import ValidationError

from .exceptions import (
    AccountNotFound, InsufficientBalance, InvalidAmount, InvalidTransition, NoOpenDay,
)
from .models import Account, AccountTransaction, Collection, Expense, Supplier, Transfer
from .services import accounts, daily_report
from .services.expenses import record_expense, record_transfer
from .services.references import ExpenseRef, ManualRef, TransferRef, reference_columns
from .testing import LedgerTestCase

CASHBOX = Account.Type.CASHBOX
BANK = Account.Type.BANK


class AccountOperationTest(LedgerTestCase):
    def test_deposit_and_withdraw_record_balance_after(self):
        accounts.deposit(CASHBOX, Decimal("250.00"), "Float top-up", user=self.user)
        txn = accounts.withdraw(CASHBOX, Decimal("50.00"), "Petty cash")

        self.assertEqual(self.reload(self.cashbox).balance, Decimal("1200.00"))
        self.assertEqual(txn.balance_after, Decimal("1200.00"))
        self.assertEqual(txn.type, AccountTransaction.Direction.OUT)
        self.assertEqual(txn.reference, ManualRef())
        self.assertEqual(
            list(AccountTransaction.objects.order_by("id").values_list("balance_after", flat=True)),
            [Decimal("1250.00"), Decimal("1200.00")],
        )

    def test_withdraw_more_than_balance(self):
        with self.assertRaises(InsufficientBalance) as ctx:
            accounts.withdraw(CASHBOX, Decimal("1000.01"))

        self.assertEqual(ctx.exception.context["available"], Decimal("1000.00"))
        self.assertEqual(self.reload(self.cashbox).balance, Decimal("1000.00"))
        self.assertFalse(AccountTransaction.objects.exists())

    def test_withdraw_whole_balance(self):
        accounts.withdraw(CASHBOX, Decimal("1000.00"))
        self.assertEqual(self.reload(self.cashbox).balance, Decimal("0.00"))

    def test_amount_must_be_positive(self):
        for amount in (Decimal("0"), Decimal("-5"), "abc"):
            with self.assertRaises(InvalidAmount):
                accounts.deposit(CASHBOX, amount)

    def test_inactive_account_is_not_found(self):
        Account.objects.filter(pk=self.bank.pk).update(is_active=False)
        with self.assertRaises(AccountNotFound):
            accounts.deposit(BANK, Decimal("1.00"))

    def test_transfer_moves_money_both_ways(self):
        out_txn, in_txn = accounts.transfer(CASHBOX, BANK, Decimal("400.00"))

        self.assertEqual(self.reload(self.cashbox).balance, Decimal("600.00"))
        self.assertEqual(self.reload(self.bank).balance, Decimal("5400.00"))
        self.assertEqual((out_txn.account_id, out_txn.balance_after), (self.cashbox.pk, Decimal("600.00")))
        self.assertEqual((in_txn.account_id, in_txn.balance_after), (self.bank.pk, Decimal("5400.00")))

    def test_transfer_checks_source_balance(self):
        with self.assertRaises(InsufficientBalance):
            accounts.transfer(CASHBOX, BANK, Decimal("2000.00"))
        self.assertEqual(self.reload(self.bank).balance, Decimal("5000.00"))

    def test_transfer_to_same_account(self):
        with self.assertRaises(InvalidTransition):
            accounts.transfer(BANK, BANK, Decimal("1.00"))

    def test_writes_need_open_day(self):
        daily_report.close_day(self.report)
        with self.assertRaises(NoOpenDay):
            accounts.deposit(CASHBOX, Decimal("1.00"))


class ReferenceColumnsTest(LedgerTestCase):
    open_today = False

    def test_each_reference_maps_to_columns(self):
        self.assertEqual(reference_columns(ExpenseRef(7)), ("expense", 7))
        self.assertEqual(reference_columns(TransferRef(3)), ("transfer", 3))
        self.assertEqual(reference_columns(ManualRef()), ("manual", None))


class ExpenseTest(LedgerTestCase):
    def test_company_expense_leaves_cashbox(self):
        expense = record_expense(Decimal("120.00"), category="Ice", user=self.user)

        self.assertEqual(expense.date, self.today)
        self.assertTrue(expense.number.startswith("EXP-"))
        self.assertEqual(self.reload(self.cashbox).balance, Decimal("880.00"))
        txn = AccountTransaction.objects.get()
        self.assertEqual(txn.reference, ExpenseRef(expense.pk))

    def test_bank_expense(self):
        record_expense(Decimal("80.00"), payment_method=Collection.PaymentMethod.BANK)
        self.assertEqual(self.reload(self.bank).balance, Decimal("4920.00"))

    def test_supplier_expense_charges_supplier_and_oldest_shipment(self):
        older = self.make_shipment(cartons=5)
        self.make_shipment(cartons=5)

        expense = record_expense(
            Decimal("75.00"), expense_type=Expense.Type.SUPPLIER, supplier=self.supplier, category="Freight"
        )

        self.assertEqual(expense.shipment_id, older.pk)
        self.assertEqual(Supplier.objects.get(pk=self.supplier.pk).balance, Decimal("-75.00"))

    def test_supplier_expense_needs_supplier(self):
        with self.assertRaises(ValidationError):
            record_expense(Decimal("10.00"), expense_type=Expense.Type.SUPPLIER)

    def test_expense_cannot_overdraw(self):
        with self.assertRaises(InsufficientBalance):
            record_expense(Decimal("1500.00"))
        self.assertFalse(Expense.objects.exists())


class TransferRecordTest(LedgerTestCase):
    def test_record_transfer(self):
        transfer = record_transfer(BANK, CASHBOX, Decimal("300.00"), notes="Change for the day")

        self.assertEqual((transfer.from_account, transfer.to_account), (self.bank, self.cashbox))
        self.assertEqual(self.reload(self.cashbox).balance, Decimal("1300.00"))
        refs = {t.reference for t in AccountTransaction.objects.all()}
        self.assertEqual(refs, {TransferRef(transfer.pk)})

    def test_failed_transfer_leaves_no_record(self):
        with self.assertRaises(InsufficientBalance):
            record_transfer(CASHBOX, BANK, Decimal("5000.00"))
        self.assertFalse(Transfer.objects.exists())
