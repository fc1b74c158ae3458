"""
FIFO stock allocation.

Batches are consumed strictly by the shipment's fifo_sequence and then by
batch id. The shipment date is never used for ordering because it can be
backdated.
"""
import logging
from dataclasses import dataclass

from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from ..exceptions import InsufficientStock, InvalidAmount
from ..models import InvoiceItem, ShipmentItem
from ..utils.money import q2, q3
from .shipments import close_if_sold_out

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationSlice:
    batch: ShipmentItem
    cartons: int


def available_stock(product_id):
    total = (
        ShipmentItem.objects.eligible_for_sale()
        .filter(product_id=product_id)
        .aggregate(total=Sum("available"))["total"]
    )
    return total or 0


def fifo_breakdown(product_id):
    """Eligible batches for a product in the order they will be sold from."""
    batches = (
        ShipmentItem.objects.eligible_for_sale()
        .filter(product_id=product_id)
        .select_related("shipment")
    )
    return [
        {
            "shipment_item_id": b.pk,
            "shipment_id": b.shipment_id,
            "shipment_number": b.shipment.number,
            "fifo_sequence": b.shipment.fifo_sequence,
            "available_cartons": b.available,
            "weight_per_unit": b.weight_per_unit,
            "unit_cost": b.unit_cost,
        }
        for b in batches
    ]


def _take(batch, cartons):
    """
    Add `cartons` to the batch's sold count only if the batch still has
    that much left at write time.
    """
    updated = (
        ShipmentItem.objects.filter(pk=batch.pk)
        .with_room_for(cartons)
        .update(sold_cartons=F("sold_cartons") + cartons)
    )
    if not updated:
        raise InsufficientStock(
            "Stock changed while allocating; try again.",
            shipment_item_id=batch.pk, requested=cartons,
        )


def allocate(product_id, cartons):
    """
    Reserve `cartons` of a product across eligible batches, oldest first.
    Returns the ordered slices taken. All or nothing.
    """
    if not isinstance(cartons, int) or cartons <= 0:
        raise InvalidAmount("Cartons must be a positive whole number.", cartons=cartons)

    with transaction.atomic():
        batches = list(ShipmentItem.objects.eligible_for_sale().filter(product_id=product_id))
        available = sum(b.available for b in batches)
        if available < cartons:
            logger.warning("Insufficient stock for product %s: requested %s, available %s",
                           product_id, cartons, available)
            raise InsufficientStock(
                f"Only {available} cartons available, {cartons} requested.",
                product_id=product_id, requested=cartons, available=available,
            )

        slices = []
        needed = cartons
        for batch in batches:
            if needed == 0:
                break
            take = min(batch.available, needed)
            _take(batch, take)
            slices.append(AllocationSlice(batch=batch, cartons=take))
            needed -= take

        for shipment_id in {s.batch.shipment_id for s in slices}:
            close_if_sold_out(shipment_id)

    return slices


def allocate_and_create(invoice, product_id, cartons, quantity, unit_price):
    """
    Allocate one requested sale line and write one InvoiceItem per batch
    touched. The weight is split in proportion to cartons; the last slice
    takes the rounding remainder so the weights add up exactly.
    """
    quantity = q3(quantity)
    slices = allocate(product_id, cartons)

    items = []
    assigned = q3(0)
    for index, piece in enumerate(slices):
        if index == len(slices) - 1:
            weight = quantity - assigned
        else:
            weight = q3(quantity * piece.cartons / cartons)
            assigned += weight
        items.append(
            InvoiceItem.objects.create(
                invoice=invoice,
                product_id=product_id,
                shipment_item=piece.batch,
                cartons=piece.cartons,
                quantity=weight,
                unit_price=unit_price,
                unit_cost=piece.batch.unit_cost,
                subtotal=q2(weight * unit_price),
            )
        )
    return items


def reverse_allocation(item):
    """
    Give an invoice line's cartons back to its batch. A line is only ever
    reversed once; a second call is a no-op and returns False.
    """
    with transaction.atomic():
        marked = InvoiceItem.objects.filter(pk=item.pk, reversed_at__isnull=True).update(
            reversed_at=timezone.now()
        )
        if not marked:
            logger.warning("Invoice line %s already reversed", item.pk)
            return False
        ShipmentItem.objects.filter(pk=item.shipment_item_id).update(
            sold_cartons=F("sold_cartons") - item.cartons
        )
    return True
