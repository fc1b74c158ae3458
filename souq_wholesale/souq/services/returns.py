"""
Customer returns against invoiced lines.

Returned cartons go back into the batch they were sold from. When that
batch's shipment is already settled the goods are received into an open
shipment instead and the move is recorded as a late-return carryover.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from ..exceptions import (
    AlreadyCancelled, CarryoverAlreadySold, InvalidAmount, InvalidReturn, NoOpenDay,
    ReturnDayMismatch, SuccessorNotOpen,
)
from ..models import (
    Carryover, Customer, Invoice, InvoiceItem, ReturnLine, ReturnNote, Shipment, ShipmentItem,
)
from ..signals import emit_ledger_event
from ..utils.money import q2, q3
from .daily_report import current_open_date, ensure_day_not_closed
from .numbering import next_number

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass
class ReturnLineRequest:
    invoice_item_id: int
    cartons: int
    quantity: Decimal | None = None  # defaults to the invoiced weight per carton
    unit_price: Decimal | None = None  # defaults to the invoiced price


def _ensure_return_day(date):
    open_date = current_open_date()
    if open_date is None:
        raise NoOpenDay("Open a business day before recording returns.")
    if date is not None and date != open_date:
        raise ReturnDayMismatch(
            f"Returns dated {date} need that day to be open; {open_date} is open.",
            date=date, open_date=open_date,
        )
    return open_date


def returned_cartons(invoice_item):
    return ReturnLine.objects.filter(
        invoice_item=invoice_item, return_note__status=ReturnNote.Status.ACTIVE
    ).aggregate(c=Sum("cartons"))["c"] or 0


def _late_return_target(source, user):
    """Batch in the oldest open shipment that can take back `source`'s product."""
    target = (
        ShipmentItem.objects.filter(
            shipment__status=Shipment.Status.OPEN,
            product_id=source.product_id,
            weight_per_unit=source.weight_per_unit,
        )
        .order_by("shipment__fifo_sequence", "id")
        .first()
    )
    if target is not None:
        return target

    shipment = Shipment.objects.filter(status=Shipment.Status.OPEN).order_by("fifo_sequence").first()
    if shipment is None:
        raise SuccessorNotOpen(
            "There is no open shipment to receive a late return.", shipment_item_id=source.pk
        )
    return ShipmentItem.objects.create(
        shipment=shipment,
        product_id=source.product_id,
        weight_label=source.weight_label,
        weight_per_unit=source.weight_per_unit,
        unit_cost=source.unit_cost,
        cartons=0,
        created_by=user,
    )


def _restock(item, cartons, user):
    """Put cartons back into stock. Returns (target batch, late-return carryover or None)."""
    source = ShipmentItem.objects.select_related("shipment").get(pk=item.shipment_item_id)
    if source.shipment.status != Shipment.Status.SETTLED:
        restocked = ShipmentItem.objects.filter(pk=source.pk, sold_cartons__gte=cartons).update(
            sold_cartons=F("sold_cartons") - cartons
        )
        if not restocked:
            raise InvalidReturn(
                f"Batch {source.pk} has fewer than {cartons} sold cartons to take back.",
                shipment_item_id=source.pk, cartons=cartons,
            )
        return source, None

    target = _late_return_target(source, user)
    ShipmentItem.objects.filter(pk=target.pk).update(carryover_in_cartons=F("carryover_in_cartons") + cartons)
    carryover = Carryover.objects.create(
        from_shipment=source.shipment,
        from_item=source,
        to_shipment_id=target.shipment_id,
        to_item=target,
        product_id=source.product_id,
        cartons=cartons,
        reason=Carryover.Reason.LATE_RETURN,
        notes=f"Late return against invoice line {item.pk}",
        created_by=user,
    )
    return target, carryover


def create_return(customer, lines, date=None, notes="", user=None):
    return_date = _ensure_return_day(date)
    if not lines:
        raise InvalidAmount("A return needs at least one line.")

    with transaction.atomic():
        note = ReturnNote.objects.create(
            number=next_number("return"),
            customer=customer,
            date=return_date,
            notes=notes,
            created_by=user,
        )

        total = ZERO
        for req in lines:
            item = InvoiceItem.objects.select_related("invoice").get(pk=req.invoice_item_id)
            if item.invoice.customer_id != customer.pk or item.invoice.status != Invoice.Status.ACTIVE:
                raise InvalidReturn(
                    "Only lines of this customer's active invoices can be returned.",
                    invoice_item_id=item.pk,
                )
            if not isinstance(req.cartons, int) or req.cartons <= 0:
                raise InvalidAmount("Cartons must be a positive whole number.", invoice_item_id=item.pk)
            left = item.cartons - returned_cartons(item)
            if req.cartons > left:
                raise InvalidReturn(
                    f"Only {left} cartons of this line can still be returned.",
                    invoice_item_id=item.pk, requested=req.cartons, available=left,
                )

            quantity = q3(req.quantity) if req.quantity is not None else q3(item.quantity * req.cartons / item.cartons)
            unit_price = q2(req.unit_price) if req.unit_price is not None else item.unit_price
            target, carryover = _restock(item, req.cartons, user)
            line = ReturnLine.objects.create(
                return_note=note,
                invoice_item=item,
                product_id=item.product_id,
                shipment_item=target,
                carryover=carryover,
                is_late=carryover is not None,
                cartons=req.cartons,
                quantity=quantity,
                unit_price=unit_price,
                subtotal=q2(quantity * unit_price),
            )
            total += line.subtotal

        note.total = total
        note.save(update_fields=["total", "updated_at"])
        Customer.objects.filter(pk=customer.pk).update(balance=F("balance") - total)
        emit_ledger_event("return", note.pk, "created", user)

    logger.info("Recorded return %s for customer %s: %s", note.number, customer.pk, total)
    return note


def cancel_return(note, user=None):
    """
    Undo a return. Fails if the restocked goods were sold again and the
    batch can no longer give them back.
    """
    if current_open_date() is None:
        raise NoOpenDay("Open a business day before cancelling returns.")

    with transaction.atomic():
        note = ReturnNote.objects.select_for_update().get(pk=note.pk)
        if note.status != ReturnNote.Status.ACTIVE:
            raise AlreadyCancelled(f"Return {note.number} is already cancelled.", return_id=note.pk)
        ensure_day_not_closed(note.date, return_id=note.pk)

        for line in note.lines.all():
            batches = ShipmentItem.objects.filter(pk=line.shipment_item_id).with_room_for(line.cartons)
            if line.is_late:
                taken = batches.update(carryover_in_cartons=F("carryover_in_cartons") - line.cartons)
            else:
                taken = batches.update(sold_cartons=F("sold_cartons") + line.cartons)
            if not taken:
                raise CarryoverAlreadySold(
                    "The returned goods have been sold again.",
                    return_id=note.pk, shipment_item_id=line.shipment_item_id, cartons=line.cartons,
                )
            if line.carryover_id:
                Carryover.objects.filter(pk=line.carryover_id).delete()

        note.status = ReturnNote.Status.CANCELLED
        note.cancelled_at = timezone.now()
        note.cancelled_by = user
        note.save(update_fields=["status", "cancelled_at", "cancelled_by", "updated_at"])
        Customer.objects.filter(pk=note.customer_id).update(balance=F("balance") + note.total)
        emit_ledger_event("return", note.pk, "cancelled", user)

    logger.info("Cancelled return %s", note.number)
    return note
