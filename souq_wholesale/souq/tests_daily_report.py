from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import IntegrityError, transaction

from .exceptions import (
    AlreadyClosed, DayAlreadyOpen, DayNotAvailable, InvalidTransition, NoOpenDay,
)
from .models import Account, Collection, DailyReport, Shipment
from .services import daily_report
from .services.collections import cancel_collection, record_collection
from .services.expenses import record_expense, record_transfer
from .testing import LedgerTestCase


class OpenDayTest(LedgerTestCase):
    open_today = False

    def test_nothing_open_blocks_writes(self):
        self.assertFalse(daily_report.is_day_open())
        with self.assertRaises(NoOpenDay):
            daily_report.ensure_open_day()
        with self.assertRaises(NoOpenDay):
            record_expense(Decimal("1.00"))

    def test_open_today(self):
        report = daily_report.open_day(user=self.user)

        self.assertEqual(report.date, self.today)
        self.assertTrue(report.is_open)
        self.assertEqual(report.created_by, self.user)
        self.assertEqual(daily_report.current_open_date(), self.today)
        self.assertEqual((report.cashbox_opening, report.bank_opening), (Decimal("1000.00"), Decimal("5000.00")))

    def test_opening_open_day_again_returns_it(self):
        first = daily_report.open_day(self.today)
        second = daily_report.open_day(self.today)
        self.assertEqual(first.pk, second.pk)

    def test_only_one_day_open(self):
        daily_report.open_day(self.today)
        with self.assertRaises(DayAlreadyOpen):
            daily_report.open_day(self.today - timedelta(days=1))

    def test_dates_outside_window(self):
        for day in (self.today + timedelta(days=1), self.today - timedelta(days=3)):
            with self.assertRaises(DayNotAvailable):
                daily_report.open_day(day)

    def test_available_dates(self):
        self.assertEqual(
            daily_report.available_dates(self.today),
            [self.today - timedelta(days=2), self.today - timedelta(days=1), self.today],
        )

    def test_backdated_day_stamps_documents(self):
        yesterday = self.today - timedelta(days=1)
        daily_report.open_day(yesterday)

        expense = record_expense(Decimal("5.00"))

        self.assertEqual(expense.date, yesterday)

    def test_opening_balance_follows_last_closed_day(self):
        yesterday = self.today - timedelta(days=1)
        report = daily_report.open_day(yesterday)
        record_collection(self.customer, Decimal("40.00"))
        daily_report.close_day(report)

        today = daily_report.open_day(self.today)

        self.assertEqual(today.cashbox_opening, Decimal("1040.00"))
        self.assertEqual(today.bank_opening, Decimal("5000.00"))

    def test_closed_day_cannot_be_opened(self):
        report = daily_report.open_day(self.today)
        daily_report.close_day(report)
        with self.assertRaises(AlreadyClosed):
            daily_report.open_day(self.today)

    def test_database_allows_one_open_report(self):
        DailyReport.objects.create(date=self.today, status=DailyReport.Status.OPEN)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                DailyReport.objects.create(date=self.today - timedelta(days=1), status=DailyReport.Status.OPEN)


class CloseDayTest(LedgerTestCase):
    def test_close_totals_and_balances(self):
        self.make_shipment(cartons=20)
        self.sell(2)  # 200
        record_collection(self.customer, Decimal("200.00"))
        record_collection(self.customer, Decimal("100.00"), payment_method=Collection.PaymentMethod.BANK)
        record_expense(Decimal("50.00"))
        record_transfer(Account.Type.CASHBOX, Account.Type.BANK, Decimal("300.00"))

        report = daily_report.close_day(user=self.user)

        self.assertEqual(report.status, DailyReport.Status.CLOSED)
        self.assertEqual(report.closed_by, self.user)
        self.assertEqual(report.total_sales, Decimal("200.00"))
        self.assertEqual(report.invoices_count, 1)
        self.assertEqual(report.total_collections, Decimal("300.00"))
        self.assertEqual(report.total_collections_cash, Decimal("200.00"))
        self.assertEqual(report.total_expenses, Decimal("50.00"))
        self.assertEqual(report.total_transfers, Decimal("300.00"))
        self.assertEqual(report.cashbox_closing, Decimal("850.00"))
        self.assertEqual(report.bank_closing, Decimal("5400.00"))
        self.assertEqual(report.cashbox_closing, self.reload(self.cashbox).balance)
        self.assertEqual(report.bank_closing, self.reload(self.bank).balance)

    def test_cancelled_documents_are_left_out(self):
        cancel_collection(record_collection(self.customer, Decimal("60.00")))
        report = daily_report.close_day(self.report)
        self.assertEqual(report.total_collections, Decimal("0.00"))
        self.assertEqual(report.cashbox_closing, Decimal("1000.00"))

    def test_close_twice(self):
        daily_report.close_day(self.report)
        with self.assertRaises(AlreadyClosed):
            daily_report.close_day(self.report)
        with self.assertRaises(NoOpenDay):
            daily_report.close_day()

    def test_reopen(self):
        daily_report.close_day(self.report)

        report = daily_report.reopen_day(self.report, user=self.user)

        self.assertTrue(report.is_open)
        self.assertEqual(report.reopened_by, self.user)
        with self.assertRaises(InvalidTransition):
            daily_report.reopen_day(report)

    def test_reopen_while_another_day_is_open(self):
        daily_report.close_day(self.report)
        daily_report.open_day(self.today - timedelta(days=1))
        with self.assertRaises(DayAlreadyOpen):
            daily_report.reopen_day(self.report)


class DailyGateCommandTest(LedgerTestCase):
    open_today = False

    def run_command(self, *args):
        out = StringIO()
        call_command("daily_gate", *args, stdout=out)
        return out.getvalue()

    def test_open_status_close(self):
        self.assertIn("No business day is open", self.run_command("status"))

        self.assertIn("open", self.run_command("open", "--user", "clerk"))
        self.assertIn(f"Open day: {self.today}", self.run_command("status"))

        self.assertIn("closed", self.run_command("close"))
        self.assertFalse(daily_report.is_day_open())

    def test_business_errors_become_command_errors(self):
        with self.assertRaises(CommandError):
            self.run_command("close")
        with self.assertRaises(CommandError):
            self.run_command("open", "--date", "not-a-date")
        with self.assertRaises(CommandError):
            self.run_command("reopen")

    def test_dummy_data_leaves_a_working_open_day(self):
        call_command("setup_dummy_data", stdout=StringIO())

        self.assertTrue(daily_report.is_day_open())
        self.assertTrue(Shipment.objects.filter(supplier__name="Farm Supplier").exists())
        call_command("check_ledger", stdout=StringIO())
