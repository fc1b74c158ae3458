"""
Customer account statement: every document that moved what a customer
owes over a period, in date order, with a running balance.
"""
from dataclasses import dataclass
from datetime import date as Date
from decimal import Decimal

from django.db.models import Q, Sum

from ..models import Collection, CreditNote, Invoice, ReturnNote

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class StatementRow:
    kind: str
    date: Date | None
    reference: str
    description: str
    debit: Decimal
    credit: Decimal
    balance: Decimal = ZERO


def _sale_invoices(customer):
    return Invoice.objects.filter(customer=customer, status=Invoice.Status.ACTIVE, type=Invoice.Type.SALE)


def _collections(customer):
    return Collection.objects.filter(customer=customer, status=Collection.Status.CONFIRMED)


def _returns(customer):
    return ReturnNote.objects.filter(customer=customer, status=ReturnNote.Status.ACTIVE)


def _notes(customer):
    return CreditNote.objects.filter(customer=customer, status=CreditNote.Status.ACTIVE)


def _in_period(qs, date_from, date_to):
    if date_from is not None:
        qs = qs.filter(date__gte=date_from)
    if date_to is not None:
        qs = qs.filter(date__lte=date_to)
    return qs


def _total(qs, field="total", condition=None):
    return qs.aggregate(s=Sum(field, filter=condition))["s"] or ZERO


def opening_balance(customer, date_from=None):
    """The customer's balance at the start of `date_from`."""
    balance = customer.opening_balance
    if date_from is None:
        return balance
    before = {"date__lt": date_from}
    notes = _notes(customer).filter(**before)
    return (
        balance
        + _total(_sale_invoices(customer).filter(**before))
        - _total(_collections(customer).filter(**before), "amount")
        - _total(_returns(customer).filter(**before))
        - _total(notes, "amount", Q(type=CreditNote.Type.CREDIT))
        + _total(notes, "amount", Q(type=CreditNote.Type.DEBIT))
    )


def _rows(customer, date_from, date_to):
    for inv in _in_period(_sale_invoices(customer), date_from, date_to):
        yield inv.date, inv.created_at, StatementRow("invoice", inv.date, inv.number, "Invoice", inv.total, ZERO)
    for col in _in_period(_collections(customer), date_from, date_to):
        yield col.date, col.created_at, StatementRow(
            "collection", col.date, col.number, f"Collection ({col.get_payment_method_display()})", ZERO, col.amount
        )
    for ret in _in_period(_returns(customer), date_from, date_to):
        yield ret.date, ret.created_at, StatementRow("return", ret.date, ret.number, "Return", ZERO, ret.total)
    for note in _in_period(_notes(customer), date_from, date_to):
        if note.type == CreditNote.Type.CREDIT:
            row = StatementRow("credit_note", note.date, note.number, f"Credit note: {note.reason}", ZERO, note.amount)
        else:
            row = StatementRow("debit_note", note.date, note.number, f"Debit note: {note.reason}", note.amount, ZERO)
        yield note.date, note.created_at, row


def customer_statement(customer, date_from=None, date_to=None):
    """
    Statement for `customer` between two dates (both inclusive, either may
    be open). Debits raise what the customer owes (invoices, debit notes);
    credits lower it (collections, returns, credit notes). Cancelled
    documents and wastage invoices are left out.
    """
    opening = opening_balance(customer, date_from)
    running = opening
    transactions = [
        StatementRow(
            "opening_balance", date_from, "-", "Opening balance",
            opening if opening > 0 else ZERO, -opening if opening < 0 else ZERO, opening,
        )
    ]
    for _, _, row in sorted(_rows(customer, date_from, date_to), key=lambda r: (r[0], r[1])):
        running += row.debit - row.credit
        transactions.append(
            StatementRow(row.kind, row.date, row.reference, row.description, row.debit, row.credit, running)
        )

    def summed(kind, column):
        return sum((getattr(r, column) for r in transactions if r.kind == kind), ZERO)

    return {
        "customer": {
            "id": customer.pk,
            "name": customer.name,
            "phone": customer.phone,
            "opening_balance": customer.opening_balance,
            "current_balance": customer.balance,
        },
        "period": {"from": date_from, "to": date_to},
        "summary": {
            "opening_balance": opening,
            "total_invoices": summed("invoice", "debit"),
            "total_collections": summed("collection", "credit"),
            "total_returns": summed("return", "credit"),
            "total_credit_notes": summed("credit_note", "credit"),
            "total_debit_notes": summed("debit_note", "debit"),
            "closing_balance": running,
            "invoices_count": sum(1 for r in transactions if r.kind == "invoice"),
            "collections_count": sum(1 for r in transactions if r.kind == "collection"),
            "returns_count": sum(1 for r in transactions if r.kind == "return"),
        },
        "transactions": transactions,
    }
