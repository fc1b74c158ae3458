"""
Customer payments and their distribution over open invoices.

Paid amounts and allocated amounts are always re-derived from the live
allocation rows after a change; they are never incremented in place.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Q, Sum
from django.utils import timezone

from ..conf import get_setting
from ..exceptions import (
    AllocationExceedsBalance, AllocationExceedsCollection, AlreadyCancelled,
    EditWindowExpired, InvoiceNotPayable,
)
from ..models import Collection, CollectionAllocation, CreditNote, Customer, Invoice
from ..signals import emit_ledger_event
from ..utils.money import positive_amount, q2
from . import accounts
from .daily_report import edit_window_open, ensure_day_not_closed, ensure_open_day
from .numbering import next_number
from .references import CollectionRef

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ---------------------------------------------------------
# Derived fields
# ---------------------------------------------------------
def notes_effect(invoice):
    """Active debit notes minus active credit notes linked to the invoice."""
    sums = invoice.credit_notes.filter(status=CreditNote.Status.ACTIVE).aggregate(
        credit=Sum("amount", filter=Q(type=CreditNote.Type.CREDIT)),
        debit=Sum("amount", filter=Q(type=CreditNote.Type.DEBIT)),
    )
    return (sums["debit"] or ZERO) - (sums["credit"] or ZERO)


def recalculate_invoice(invoice_id):
    """
    paid_amount from the invoice's allocations; balance is the total less
    payments, moved by any linked credit or debit notes. Cancelled invoices
    stay zeroed.
    """
    invoice = Invoice.objects.get(pk=invoice_id)
    if not invoice.is_active:
        return invoice
    paid = invoice.allocations.aggregate(s=Sum("amount"))["s"] or ZERO
    invoice.paid_amount = paid
    invoice.balance = ZERO if invoice.is_wastage else invoice.total - paid + notes_effect(invoice)
    invoice.save(update_fields=["paid_amount", "balance", "updated_at"])
    return invoice


def recalculate_collection(collection_id):
    collection = Collection.objects.get(pk=collection_id)
    allocated = collection.allocations.aggregate(s=Sum("amount"))["s"] or ZERO
    collection.allocated_amount = allocated
    collection.unallocated_amount = collection.amount - allocated
    collection.save(update_fields=["allocated_amount", "unallocated_amount", "updated_at"])
    return collection


def _allocate(collection, invoice, amount):
    allocation, created = CollectionAllocation.objects.get_or_create(
        collection=collection, invoice=invoice, defaults={"amount": amount}
    )
    if not created:
        CollectionAllocation.objects.filter(pk=allocation.pk).update(amount=F("amount") + amount)
    recalculate_invoice(invoice.pk)
    return allocation


def remove_allocations(queryset):
    """
    Delete allocation rows and re-derive every invoice and collection they
    touched, inside the caller's transaction.
    """
    rows = list(queryset.values_list("pk", "invoice_id", "collection_id"))
    if not rows:
        return 0
    CollectionAllocation.objects.filter(pk__in=[pk for pk, _, _ in rows]).delete()
    for invoice_id in sorted({inv for _, inv, _ in rows}):
        recalculate_invoice(invoice_id)
    for collection_id in sorted({col for _, _, col in rows}):
        recalculate_collection(collection_id)
    return len(rows)


# ---------------------------------------------------------
# Queries
# ---------------------------------------------------------
def unpaid_invoices(customer, newest_first=False):
    ordering = ("-date", "-id") if newest_first else ("date", "id")
    return (
        Invoice.objects.filter(customer=customer, status=Invoice.Status.ACTIVE, balance__gt=0)
        .order_by(*ordering)
    )


# ---------------------------------------------------------
# Operations
# ---------------------------------------------------------
def record_collection(
    customer,
    amount,
    payment_method=Collection.PaymentMethod.CASH,
    distribution_method=Collection.Distribution.OLDEST_FIRST,
    allocations=None,
    notes="",
    user=None,
):
    """
    Take a payment from a customer. The money lands in the cashbox or bank
    and, unless distribution is manual, is spread over unpaid invoices.
    `allocations` ({invoice_id: amount}) is only used for manual distribution.
    """
    collection_date = ensure_open_day()
    amount = positive_amount(amount)

    with transaction.atomic():
        collection = Collection.objects.create(
            number=next_number("collection"),
            customer=customer,
            date=collection_date,
            amount=amount,
            payment_method=payment_method,
            distribution_method=distribution_method,
            allocated_amount=ZERO,
            unallocated_amount=amount,
            notes=notes,
            created_by=user,
        )
        Customer.objects.filter(pk=customer.pk).update(balance=F("balance") - amount)
        accounts.deposit(
            accounts.account_type_for(payment_method),
            amount,
            f"Collection {collection.number} from {customer.name}",
            CollectionRef(collection.pk),
            user=user,
        )

        if distribution_method != Collection.Distribution.MANUAL:
            collection = distribute_auto(collection)
        elif allocations:
            collection = distribute_manual(collection, allocations)
        emit_ledger_event("collection", collection.pk, "created", user)

    logger.info(
        "Recorded collection %s: %s from customer %s (%s), allocated %s",
        collection.number, amount, customer.pk, distribution_method, collection.allocated_amount,
    )
    return collection


def _lock_confirmed(collection):
    collection = Collection.objects.select_for_update().get(pk=collection.pk)
    if not collection.is_confirmed:
        raise AlreadyCancelled(f"Collection {collection.number} is cancelled.", collection_id=collection.pk)
    return collection


def distribute_auto(collection):
    """
    Spread the collection's unallocated amount over the customer's unpaid
    invoices by date. Anything left over stays as customer credit.
    """
    ensure_open_day()
    with transaction.atomic():
        collection = _lock_confirmed(collection)
        newest_first = collection.distribution_method == Collection.Distribution.NEWEST_FIRST
        allocated = collection.allocations.aggregate(s=Sum("amount"))["s"] or ZERO
        remaining = collection.amount - allocated

        for invoice in unpaid_invoices(collection.customer_id, newest_first=newest_first):
            if remaining <= 0:
                break
            amount = min(invoice.balance, remaining)
            _allocate(collection, invoice, amount)
            remaining -= amount

        return recalculate_collection(collection.pk)


def distribute_manual(collection, allocations):
    """
    Apply caller-chosen amounts, {invoice_id: amount}. Each amount must fit
    the invoice balance; with ENFORCE_MANUAL_SUM the total must fit the
    collection's unallocated amount. A partial total is fine.
    """
    ensure_open_day()
    with transaction.atomic():
        collection = _lock_confirmed(collection)
        wanted = {int(invoice_id): q2(amount) for invoice_id, amount in allocations.items() if q2(amount) > 0}
        requested = sum(wanted.values(), ZERO)
        allocated = collection.allocations.aggregate(s=Sum("amount"))["s"] or ZERO
        available = collection.amount - allocated

        if get_setting("ENFORCE_MANUAL_SUM") and requested > available:
            logger.warning("Manual distribution of %s refused: %s requested, %s free",
                           collection.number, requested, available)
            raise AllocationExceedsCollection(
                f"Allocations total {requested} but only {available} is unallocated.",
                collection_id=collection.pk, requested=requested, available=available,
            )

        invoices = Invoice.objects.select_for_update().in_bulk(list(wanted))
        for invoice_id, amount in wanted.items():
            invoice = invoices.get(invoice_id)
            if invoice is None or invoice.customer_id != collection.customer_id or not invoice.is_active:
                raise InvoiceNotPayable(
                    "The invoice is not an active invoice of this customer.",
                    invoice_id=invoice_id, collection_id=collection.pk,
                )
            if amount > invoice.balance:
                logger.warning("Manual allocation of %s to invoice %s refused, balance %s",
                               amount, invoice.number, invoice.balance)
                raise AllocationExceedsBalance(
                    f"Invoice {invoice.number} only has {invoice.balance} outstanding.",
                    invoice_id=invoice_id, requested=amount, available=invoice.balance,
                )
            _allocate(collection, invoice, amount)

        return recalculate_collection(collection.pk)


def cancel_collection(collection, user=None):
    """
    Cancel a confirmed collection: release its allocations and put the debt
    back on the customer. The cashbox or bank entry is left as it is.
    """
    ensure_open_day()
    with transaction.atomic():
        collection = Collection.objects.select_for_update().select_related("customer").get(pk=collection.pk)
        if not collection.is_confirmed:
            raise AlreadyCancelled(f"Collection {collection.number} is already cancelled.", collection_id=collection.pk)
        ensure_day_not_closed(collection.date, collection_id=collection.pk)
        if not edit_window_open(collection.date, "COLLECTION_EDIT_WINDOW_DAYS"):
            raise EditWindowExpired(
                f"Collection {collection.number} is too old to cancel.",
                collection_id=collection.pk, date=collection.date,
            )

        collection.status = Collection.Status.CANCELLED
        collection.cancelled_at = timezone.now()
        collection.cancelled_by = user
        collection.save(update_fields=["status", "cancelled_at", "cancelled_by", "updated_at"])

        remove_allocations(collection.allocations.all())
        Customer.objects.filter(pk=collection.customer_id).update(balance=F("balance") + collection.amount)
        emit_ledger_event("collection", collection.pk, "cancelled", user)

    logger.info("Cancelled collection %s (%s)", collection.number, collection.amount)
    return Collection.objects.get(pk=collection.pk)
