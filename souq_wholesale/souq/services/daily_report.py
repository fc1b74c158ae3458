"""
The daily gate: exactly one business date may be open at a time and every
financial write is stamped with that date.
"""
import logging
from datetime import timedelta
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from ..conf import get_setting
from ..exceptions import (
    AlreadyClosed, DayAlreadyOpen, DayNotAvailable, InvalidTransition, NoOpenDay,
)
from ..models import Account, Collection, DailyReport, Expense, Invoice, Transfer
from ..signals import emit_ledger_event

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ---------------------------------------------------------
# Gate queries
# ---------------------------------------------------------
def current_report():
    return DailyReport.objects.filter(status=DailyReport.Status.OPEN).first()


def is_day_open():
    return DailyReport.objects.filter(status=DailyReport.Status.OPEN).exists()


def current_open_date():
    report = current_report()
    return report.date if report else None


def ensure_open_day():
    """Return the open business date or raise NoOpenDay."""
    open_date = current_open_date()
    if open_date is None:
        logger.warning("Rejected write: no business day is open")
        raise NoOpenDay("Open a business day before recording transactions.")
    return open_date


def ensure_day_not_closed(date, **context):
    if DailyReport.objects.filter(date=date, status=DailyReport.Status.CLOSED).exists():
        logger.warning("Rejected change on closed day %s %s", date, context)
        raise AlreadyClosed(f"The business day {date} is closed.", date=date, **context)


def edit_window_open(document_date, setting_name):
    """True while the open day is within the configured window of `document_date`."""
    open_date = ensure_open_day()
    return (open_date - document_date).days <= get_setting(setting_name)


# ---------------------------------------------------------
# Transitions
# ---------------------------------------------------------
def available_dates(today=None):
    today = today or timezone.localdate()
    backdated = get_setting("BACKDATED_DAYS")
    return [today - timedelta(days=n) for n in range(backdated, -1, -1)]


def _opening_balances(date):
    last_closed = (
        DailyReport.objects.filter(status=DailyReport.Status.CLOSED, date__lt=date)
        .order_by("-date")
        .first()
    )
    if last_closed:
        return last_closed.cashbox_closing, last_closed.bank_closing

    balances = dict(
        Account.objects.filter(is_active=True).values_list("type", "balance")
    )
    return balances.get(Account.Type.CASHBOX, ZERO), balances.get(Account.Type.BANK, ZERO)


def open_day(date=None, user=None):
    """
    Open `date` (default today). Only today and the last BACKDATED_DAYS
    days can be opened; opening the day that is already open returns it.
    """
    date = date or timezone.localdate()
    allowed = available_dates()
    if date not in allowed:
        raise DayNotAvailable(
            f"{date} is outside the days that can be opened.",
            date=date, earliest=allowed[0], latest=allowed[-1],
        )

    with transaction.atomic():
        existing = DailyReport.objects.select_for_update().filter(date=date).first()
        if existing is not None:
            if existing.is_open:
                return existing
            raise AlreadyClosed(f"The business day {date} is already closed.", date=date)

        other = current_report()
        if other is not None:
            raise DayAlreadyOpen(
                f"Close {other.date} before opening another day.", open_date=other.date, date=date
            )

        cashbox_opening, bank_opening = _opening_balances(date)
        try:
            with transaction.atomic():
                report = DailyReport.objects.create(
                    date=date,
                    status=DailyReport.Status.OPEN,
                    cashbox_opening=cashbox_opening,
                    bank_opening=bank_opening,
                    created_by=user,
                )
        except IntegrityError:
            raise DayAlreadyOpen("Another business day was opened at the same time.", date=date)

        emit_ledger_event("daily_report", report.pk, "opened", user)

    logger.info("Opened business day %s (cashbox=%s bank=%s)", date, cashbox_opening, bank_opening)
    return report


def day_totals(date):
    """Aggregate the day's committed activity; cancelled documents are excluded."""
    invoices = Invoice.objects.filter(date=date, status=Invoice.Status.ACTIVE).aggregate(
        sales=Sum("total", filter=Q(type=Invoice.Type.SALE)),
        wastage=Sum("total", filter=Q(type=Invoice.Type.WASTAGE)),
        count=Count("id", filter=Q(type=Invoice.Type.SALE)),
    )
    collections = Collection.objects.filter(date=date, status=Collection.Status.CONFIRMED).aggregate(
        total=Sum("amount"),
        cash=Sum("amount", filter=Q(payment_method=Collection.PaymentMethod.CASH)),
        bank=Sum("amount", filter=Q(payment_method=Collection.PaymentMethod.BANK)),
        count=Count("id"),
    )
    expenses = Expense.objects.filter(date=date).aggregate(
        total=Sum("amount"),
        cash=Sum("amount", filter=Q(payment_method=Collection.PaymentMethod.CASH)),
        bank=Sum("amount", filter=Q(payment_method=Collection.PaymentMethod.BANK)),
        count=Count("id"),
    )
    transfers = Transfer.objects.filter(date=date).aggregate(
        total=Sum("amount"),
        to_cashbox=Sum("amount", filter=Q(to_account__type=Account.Type.CASHBOX)),
        to_bank=Sum("amount", filter=Q(to_account__type=Account.Type.BANK)),
    )
    return {
        "total_sales": invoices["sales"] or ZERO,
        "total_wastage": invoices["wastage"] or ZERO,
        "invoices_count": invoices["count"] or 0,
        "total_collections": collections["total"] or ZERO,
        "total_collections_cash": collections["cash"] or ZERO,
        "total_collections_bank": collections["bank"] or ZERO,
        "collections_count": collections["count"] or 0,
        "total_expenses": expenses["total"] or ZERO,
        "total_expenses_cash": expenses["cash"] or ZERO,
        "total_expenses_bank": expenses["bank"] or ZERO,
        "expenses_count": expenses["count"] or 0,
        "total_transfers": transfers["total"] or ZERO,
        "transfers_to_cashbox": transfers["to_cashbox"] or ZERO,
        "transfers_to_bank": transfers["to_bank"] or ZERO,
    }


def close_day(report=None, user=None, notes=""):
    with transaction.atomic():
        if report is None:
            report = current_report()
            if report is None:
                raise NoOpenDay("There is no open business day to close.")
        report = DailyReport.objects.select_for_update().get(pk=report.pk)
        if not report.is_open:
            raise AlreadyClosed(f"The business day {report.date} is already closed.", date=report.date)

        totals = day_totals(report.date)
        to_cashbox = totals.pop("transfers_to_cashbox")
        to_bank = totals.pop("transfers_to_bank")
        for field, value in totals.items():
            setattr(report, field, value)

        # transfers move money between the two accounts only
        report.cashbox_closing = (
            report.cashbox_opening
            + report.total_collections_cash
            - report.total_expenses_cash
            + to_cashbox
            - to_bank
        )
        report.bank_closing = (
            report.bank_opening
            + report.total_collections_bank
            - report.total_expenses_bank
            + to_bank
            - to_cashbox
        )
        report.status = DailyReport.Status.CLOSED
        report.closed_at = timezone.now()
        report.closed_by = user
        if notes:
            report.notes = notes
        report.save()
        emit_ledger_event("daily_report", report.pk, "closed", user)

    logger.info(
        "Closed business day %s: sales=%s collections=%s expenses=%s",
        report.date, report.total_sales, report.total_collections, report.total_expenses,
    )
    return report


def reopen_day(report, user=None):
    with transaction.atomic():
        report = DailyReport.objects.select_for_update().get(pk=report.pk)
        if report.is_open:
            raise InvalidTransition(f"The business day {report.date} is already open.", date=report.date)

        other = current_report()
        if other is not None:
            raise DayAlreadyOpen(
                f"Close {other.date} before reopening {report.date}.", open_date=other.date, date=report.date
            )

        report.status = DailyReport.Status.OPEN
        report.reopened_at = timezone.now()
        report.reopened_by = user
        try:
            with transaction.atomic():
                report.save(update_fields=["status", "reopened_at", "reopened_by", "updated_at"])
        except IntegrityError:
            raise DayAlreadyOpen("Another business day was opened at the same time.", date=report.date)
        emit_ledger_event("daily_report", report.pk, "reopened", user)

    logger.info("Reopened business day %s", report.date)
    return report
