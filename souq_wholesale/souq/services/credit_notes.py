"""
Credit and debit notes: corrections to what a customer owes that are not
a sale, a payment or a return (price adjustments, goodwill, missed charges).
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from ..exceptions import AlreadyCancelled, InvalidAmount, InvoiceNotPayable, NoteExceedsBalance
from ..models import CreditNote, Customer, Invoice
from ..signals import emit_ledger_event
from ..utils.money import positive_amount, q2, q3
from .collections import recalculate_invoice
from .daily_report import ensure_day_not_closed, ensure_open_day
from .numbering import next_number

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
NUMBER_KEYS = {
    CreditNote.Type.CREDIT: "credit_note",
    CreditNote.Type.DEBIT: "debit_note",
}


@dataclass
class PriceAdjustment:
    product_name: str
    old_price: Decimal
    new_price: Decimal
    quantity: Decimal

    @property
    def difference(self):
        return q2((q2(self.old_price) - q2(self.new_price)) * q3(self.quantity))


def _linked_invoice(customer, invoice_id):
    invoice = Invoice.objects.select_for_update().filter(pk=invoice_id).first()
    if invoice is None or invoice.customer_id != customer.pk or not invoice.is_active or invoice.is_wastage:
        raise InvoiceNotPayable(
            "Notes can only be linked to an active sale invoice of this customer.",
            invoice_id=invoice_id, customer_id=customer.pk,
        )
    return invoice


def create_note(customer, note_type, amount, reason, invoice=None, notes="", user=None):
    """
    Record a credit or debit note dated on the open business day and move
    the customer balance by it. A linked invoice's balance moves as well;
    a credit note may not take it below zero.
    """
    note_date = ensure_open_day()
    note_type = CreditNote.Type(note_type)
    amount = positive_amount(amount)

    with transaction.atomic():
        linked = None
        if invoice is not None:
            linked = _linked_invoice(customer, getattr(invoice, "pk", invoice))
            if note_type == CreditNote.Type.CREDIT and amount > linked.balance:
                logger.warning("Credit note of %s refused, invoice %s balance %s", amount, linked.number, linked.balance)
                raise NoteExceedsBalance(
                    f"Invoice {linked.number} only has {linked.balance} outstanding.",
                    invoice_id=linked.pk, requested=amount, available=linked.balance,
                )

        note = CreditNote.objects.create(
            number=next_number(NUMBER_KEYS[note_type]),
            type=note_type,
            customer=customer,
            invoice=linked,
            date=note_date,
            amount=amount,
            reason=reason,
            notes=notes,
            created_by=user,
        )
        Customer.objects.filter(pk=customer.pk).update(balance=F("balance") + note.signed_amount)
        if linked is not None:
            recalculate_invoice(linked.pk)
        emit_ledger_event("credit_note", note.pk, "created", user)

    logger.info("Recorded %s note %s for customer %s: %s", note_type, note.number, customer.pk, amount)
    return note


def create_credit_note(customer, amount, reason, **kwargs):
    return create_note(customer, CreditNote.Type.CREDIT, amount, reason, **kwargs)


def create_debit_note(customer, amount, reason, **kwargs):
    return create_note(customer, CreditNote.Type.DEBIT, amount, reason, **kwargs)


def price_adjustment(invoice, adjustments, user=None):
    """
    Note for re-priced invoice lines. A net price drop becomes a credit
    note and a net rise a debit note, both linked to the invoice.
    """
    difference = sum((adj.difference for adj in adjustments), ZERO)
    if difference == 0:
        raise InvalidAmount("The new prices do not change the invoice.", invoice_id=invoice.pk)

    details = "\n".join(
        f"{adj.product_name}: {q2(adj.old_price)} → {q2(adj.new_price)} (qty {q3(adj.quantity)})"
        for adj in adjustments
    )
    return create_note(
        invoice.customer,
        CreditNote.Type.CREDIT if difference > 0 else CreditNote.Type.DEBIT,
        abs(difference),
        f"Price adjustment on invoice {invoice.number}",
        invoice=invoice,
        notes=details,
        user=user,
    )


def cancel_note(note, user=None):
    """
    Undo a note's effect on the customer and any linked invoice. A debit
    note that payments have already covered cannot be cancelled until
    those payments are released.
    """
    ensure_open_day()
    with transaction.atomic():
        note = CreditNote.objects.select_for_update().get(pk=note.pk)
        if not note.is_active:
            raise AlreadyCancelled(f"Note {note.number} is already cancelled.", note_id=note.pk)
        ensure_day_not_closed(note.date, note_id=note.pk)
        if note.invoice_id and note.type == CreditNote.Type.DEBIT:
            invoice = Invoice.objects.select_for_update().get(pk=note.invoice_id)
            if note.amount > invoice.balance:
                raise NoteExceedsBalance(
                    f"Payments on invoice {invoice.number} already cover this debit note.",
                    note_id=note.pk, invoice_id=invoice.pk, requested=note.amount, available=invoice.balance,
                )

        note.status = CreditNote.Status.CANCELLED
        note.cancelled_at = timezone.now()
        note.cancelled_by = user
        note.save(update_fields=["status", "cancelled_at", "cancelled_by", "updated_at"])
        Customer.objects.filter(pk=note.customer_id).update(balance=F("balance") - note.signed_amount)
        if note.invoice_id:
            recalculate_invoice(note.invoice_id)
        emit_ledger_event("credit_note", note.pk, "cancelled", user)

    logger.info("Cancelled %s note %s", note.type, note.number)
    return note
