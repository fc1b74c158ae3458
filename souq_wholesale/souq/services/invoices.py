import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from ..exceptions import (
    AlreadyCancelled, DiscountExceedsSubtotal, EditWindowExpired, InvalidAmount,
    InvalidTransition, ShipmentLocked,
)
from ..models import CreditNote, Customer, Invoice, ReturnLine, ReturnNote, Shipment
from ..signals import emit_ledger_event
from ..utils.money import q2, q3
from .collections import remove_allocations
from .daily_report import edit_window_open, ensure_day_not_closed, ensure_open_day
from .fifo_allocator import allocate_and_create, reverse_allocation
from .numbering import next_number

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass
class InvoiceLineRequest:
    product_id: int
    cartons: int
    quantity: Decimal  # total weight for the line
    unit_price: Decimal  # per unit of weight


def _requested_subtotal(lines):
    subtotal = ZERO
    for line in lines:
        if not isinstance(line.cartons, int) or line.cartons <= 0:
            raise InvalidAmount("Cartons must be a positive whole number.", product_id=line.product_id)
        if q3(line.quantity) <= 0:
            raise InvalidAmount("Quantity must be greater than zero.", product_id=line.product_id)
        if q2(line.unit_price) < 0:
            raise InvalidAmount("Unit price cannot be negative.", product_id=line.product_id)
        subtotal += q2(q3(line.quantity) * q2(line.unit_price))
    return subtotal


def create_invoice(customer, lines, discount=ZERO, invoice_type=Invoice.Type.SALE, notes="", user=None):
    """
    Sell goods to a customer from FIFO stock, dated on the open business day.

    Each requested line may be split over several batches; each split is
    its own InvoiceItem. The customer owes the total, except for wastage
    invoices, which record a loss and create no receivable.
    """
    invoice_date = ensure_open_day()
    if not lines:
        raise InvalidAmount("An invoice needs at least one line.")
    discount = q2(discount)
    if discount < 0:
        raise InvalidAmount("Discount cannot be negative.", discount=discount)

    # reject before any stock is touched
    requested = _requested_subtotal(lines)
    if discount > requested:
        raise DiscountExceedsSubtotal(
            f"Discount {discount} exceeds subtotal {requested}.", subtotal=requested, discount=discount
        )

    is_wastage = invoice_type == Invoice.Type.WASTAGE
    with transaction.atomic():
        invoice = Invoice.objects.create(
            number=next_number("invoice"),
            customer=customer,
            date=invoice_date,
            type=invoice_type,
            discount=discount,
            notes=notes,
            created_by=user,
        )

        items = []
        for line in lines:
            items.extend(
                allocate_and_create(invoice, line.product_id, line.cartons, line.quantity, q2(line.unit_price))
            )

        subtotal = sum((item.subtotal for item in items), ZERO)
        if discount > subtotal:
            raise DiscountExceedsSubtotal(
                f"Discount {discount} exceeds subtotal {subtotal}.", subtotal=subtotal, discount=discount
            )
        invoice.subtotal = subtotal
        invoice.total = subtotal - discount
        invoice.paid_amount = ZERO
        invoice.balance = ZERO if is_wastage else invoice.total
        invoice.save(update_fields=["subtotal", "total", "paid_amount", "balance", "updated_at"])

        if not is_wastage:
            Customer.objects.filter(pk=customer.pk).update(balance=F("balance") + invoice.total)
        emit_ledger_event("invoice", invoice.pk, "created", user)

    logger.info(
        "Created %s invoice %s for customer %s: total %s over %s batch lines",
        invoice_type, invoice.number, customer.pk, invoice.total, len(items),
    )
    return invoice


def cancel_invoice(invoice, user=None):
    """
    Cancel an active invoice: stock goes back to its batches, payments
    applied to it are released back to their collections, and the debt
    comes off the customer.
    """
    ensure_open_day()
    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if not invoice.is_active:
            raise AlreadyCancelled(f"Invoice {invoice.number} is already cancelled.", invoice_id=invoice.pk)
        ensure_day_not_closed(invoice.date, invoice_id=invoice.pk)
        if not edit_window_open(invoice.date, "INVOICE_EDIT_WINDOW_DAYS"):
            raise EditWindowExpired(
                f"Invoice {invoice.number} is too old to cancel.", invoice_id=invoice.pk, date=invoice.date
            )
        if invoice.items.filter(shipment_item__shipment__status=Shipment.Status.SETTLED).exists():
            raise ShipmentLocked(
                "Part of this invoice was sold from a settled shipment; unsettle it first.",
                invoice_id=invoice.pk,
            )
        if ReturnLine.objects.filter(
            invoice_item__invoice=invoice, return_note__status=ReturnNote.Status.ACTIVE
        ).exists():
            raise InvalidTransition(
                "Cancel the returns against this invoice first.", invoice_id=invoice.pk
            )
        if invoice.credit_notes.filter(status=CreditNote.Status.ACTIVE).exists():
            raise InvalidTransition(
                "Cancel the credit and debit notes against this invoice first.", invoice_id=invoice.pk
            )

        for item in invoice.items.all():
            reverse_allocation(item)

        invoice.status = Invoice.Status.CANCELLED
        invoice.cancelled_at = timezone.now()
        invoice.cancelled_by = user
        invoice.save(update_fields=["status", "cancelled_at", "cancelled_by", "updated_at"])

        remove_allocations(invoice.allocations.all())
        # the generic reversal leaves cancelled invoices alone; zero them here
        invoice.paid_amount = ZERO
        invoice.balance = ZERO
        invoice.save(update_fields=["paid_amount", "balance", "updated_at"])

        if not invoice.is_wastage:
            Customer.objects.filter(pk=invoice.customer_id).update(balance=F("balance") - invoice.total)
        emit_ledger_event("invoice", invoice.pk, "cancelled", user)

    logger.info("Cancelled invoice %s (total %s)", invoice.number, invoice.total)
    return invoice
