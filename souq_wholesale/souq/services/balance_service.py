from decimal import Decimal

from django.db import transaction
from django.db.models import DecimalField, ExpressionWrapper, F, OuterRef, Q, Subquery, Sum
from django.db.models.functions import Coalesce

from ..models import (
    DECIMAL_14_2, Collection, CollectionAllocation, CreditNote, Customer, Expense, Invoice, ReturnNote,
    ShipmentItem, Supplier,
)
from ..utils.money import q2
from .collections import recalculate_collection, recalculate_invoice

ZERO = Decimal("0.00")


def _sub_sum(model, link_field, amount_field, extra_filter=None):
    """Correlated SUM(amount_field) for the outer row, 0 when there are no rows."""
    sub_qs = model.objects.filter(**{link_field: OuterRef("pk")})
    if extra_filter is not None:
        sub_qs = sub_qs.filter(extra_filter)
    return Coalesce(
        Subquery(
            sub_qs.order_by()
            .values(link_field)
            .annotate(total=Sum(amount_field))
            .values("total")
        ),
        ZERO,
        output_field=DecimalField(**DECIMAL_14_2),
    )


def get_customer_balances(qs=None):
    """
    Annotates customers with the balance rebuilt from history:
    opening + active sale invoices − confirmed collections − active returns
    − active credit notes + active debit notes. Subqueries keep the sums
    from multiplying each other.
    """
    qs = Customer.objects.all() if qs is None else qs
    return qs.annotate(
        invoiced=_sub_sum(
            Invoice, "customer", "total",
            Q(status=Invoice.Status.ACTIVE, type=Invoice.Type.SALE),
        ),
        collected=_sub_sum(Collection, "customer", "amount", Q(status=Collection.Status.CONFIRMED)),
        returned=_sub_sum(ReturnNote, "customer", "total", Q(status=ReturnNote.Status.ACTIVE)),
        credited=_sub_sum(
            CreditNote, "customer", "amount",
            Q(status=CreditNote.Status.ACTIVE, type=CreditNote.Type.CREDIT),
        ),
        debited=_sub_sum(
            CreditNote, "customer", "amount",
            Q(status=CreditNote.Status.ACTIVE, type=CreditNote.Type.DEBIT),
        ),
    ).annotate(
        expected_balance=ExpressionWrapper(
            F("opening_balance") + F("invoiced") - F("collected") - F("returned")
            - F("credited") + F("debited"),
            output_field=DecimalField(**DECIMAL_14_2),
        ),
    )


def get_supplier_balances(qs=None):
    """opening − supplier expenses charged to them."""
    qs = Supplier.objects.all() if qs is None else qs
    return qs.annotate(
        charged=_sub_sum(Expense, "supplier", "amount", Q(type=Expense.Type.SUPPLIER)),
    ).annotate(
        expected_balance=ExpressionWrapper(
            F("opening_balance") - F("charged"), output_field=DecimalField(**DECIMAL_14_2)
        ),
    )


def get_invoice_payments(qs=None):
    qs = Invoice.objects.all() if qs is None else qs
    return qs.annotate(
        allocated=_sub_sum(CollectionAllocation, "invoice", "amount"),
        credited=_sub_sum(
            CreditNote, "invoice", "amount", Q(status=CreditNote.Status.ACTIVE, type=CreditNote.Type.CREDIT)
        ),
        debited=_sub_sum(
            CreditNote, "invoice", "amount", Q(status=CreditNote.Status.ACTIVE, type=CreditNote.Type.DEBIT)
        ),
    )


def get_collection_allocations(qs=None):
    qs = Collection.objects.all() if qs is None else qs
    return qs.annotate(allocated=_sub_sum(CollectionAllocation, "collection", "amount"))


def find_inconsistencies():
    """
    Every stored derived figure that disagrees with its source rows.
    Returns a list of dicts: entity, id, field, stored, expected.
    """
    problems = []

    def report(entity, pk, field, stored, expected):
        problems.append({"entity": entity, "id": pk, "field": field, "stored": stored, "expected": expected})

    # compared in Python: SQLite sums decimals as floats
    for c in get_customer_balances():
        if q2(c.balance) != q2(c.expected_balance):
            report("customer", c.pk, "balance", c.balance, c.expected_balance)

    for s in get_supplier_balances():
        if q2(s.balance) != q2(s.expected_balance):
            report("supplier", s.pk, "balance", s.balance, s.expected_balance)

    active = get_invoice_payments(Invoice.objects.filter(status=Invoice.Status.ACTIVE))
    for inv in active:
        allocated = q2(inv.allocated)
        if inv.paid_amount != allocated:
            report("invoice", inv.pk, "paid_amount", inv.paid_amount, allocated)
        expected_balance = ZERO if inv.is_wastage else inv.total - allocated - q2(inv.credited) + q2(inv.debited)
        if inv.balance != expected_balance:
            report("invoice", inv.pk, "balance", inv.balance, expected_balance)
        if inv.total != inv.subtotal - inv.discount:
            report("invoice", inv.pk, "total", inv.total, inv.subtotal - inv.discount)

    cancelled = Invoice.objects.filter(status=Invoice.Status.CANCELLED).filter(
        Q(paid_amount__gt=0) | Q(balance__gt=0) | Q(allocations__isnull=False)
    ).distinct()
    for inv in cancelled:
        report("invoice", inv.pk, "paid_amount", inv.paid_amount, ZERO)

    for col in get_collection_allocations():
        allocated = q2(col.allocated)
        if col.allocated_amount != allocated:
            report("collection", col.pk, "allocated_amount", col.allocated_amount, allocated)
        if col.allocated_amount + col.unallocated_amount != col.amount:
            report("collection", col.pk, "unallocated_amount", col.unallocated_amount, col.amount - allocated)

    for item in ShipmentItem.objects.with_available().filter(available__lt=0):
        report("shipment_item", item.pk, "sold_cartons", item.sold_cartons, item.sold_cartons + item.available)

    return problems


def repair_derived_fields(include_parties=False):
    """
    Rewrite invoice paid/balance and collection allocated/unallocated from
    live allocation rows. Party balances are only rewritten on request.
    Returns counts of rows changed per entity.
    """
    counts = {"invoice": 0, "collection": 0, "customer": 0, "supplier": 0}
    seen = set()
    with transaction.atomic():
        for problem in find_inconsistencies():
            entity = problem["entity"]
            if (entity, problem["id"]) in seen:
                continue
            seen.add((entity, problem["id"]))
            if entity == "invoice":
                inv = Invoice.objects.get(pk=problem["id"])
                if inv.is_active:
                    recalculate_invoice(inv.pk)
                else:
                    Invoice.objects.filter(pk=inv.pk).update(paid_amount=ZERO, balance=ZERO)
                counts["invoice"] += 1
            elif entity == "collection":
                recalculate_collection(problem["id"])
                counts["collection"] += 1
            elif entity == "customer" and include_parties:
                Customer.objects.filter(pk=problem["id"]).update(balance=q2(problem["expected"]))
                counts["customer"] += 1
            elif entity == "supplier" and include_parties:
                Supplier.objects.filter(pk=problem["id"]).update(balance=q2(problem["expected"]))
                counts["supplier"] += 1
    return counts
