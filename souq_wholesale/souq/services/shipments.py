"""
Shipment lifecycle: receiving, auto-close, settlement with carryover to a
successor shipment, and unsettlement.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Q, Sum
from django.utils import timezone

from ..conf import get_setting
from ..exceptions import (
    AlreadySettled, CarryoverAlreadySold, InvalidAmount, InvalidTransition,
    ShipmentLocked, SuccessorNotOpen,
)
from ..models import (
    Carryover, Expense, Invoice, InvoiceItem, ReturnLine, ReturnNote, Shipment, ShipmentItem,
)
from ..signals import emit_ledger_event
from ..utils.money import q2, q3
from .daily_report import ensure_open_day
from .numbering import FIFO_KEY, next_number, next_value

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
ZERO_WEIGHT = Decimal("0.000")
EDITABLE_FIELDS = ("date", "notes", "supplier")


@dataclass
class ShipmentItemRequest:
    product_id: int
    cartons: int
    weight_per_unit: Decimal
    unit_cost: Decimal = ZERO
    weight_label: str = field(default="")


# ---------------------------------------------------------
# Receiving and editing
# ---------------------------------------------------------
def create_shipment(supplier, items, date=None, notes="", user=None):
    if not items:
        raise InvalidAmount("A shipment needs at least one item.")
    for req in items:
        if req.cartons <= 0:
            raise InvalidAmount("Cartons must be greater than zero.", product_id=req.product_id, cartons=req.cartons)
        if Decimal(req.weight_per_unit) <= 0:
            raise InvalidAmount("Weight per unit must be greater than zero.", product_id=req.product_id)

    with transaction.atomic():
        shipment = Shipment.objects.create(
            number=next_number("shipment"),
            supplier=supplier,
            fifo_sequence=next_value(FIFO_KEY),
            date=date or timezone.localdate(),
            notes=notes,
            created_by=user,
        )
        ShipmentItem.objects.bulk_create([
            ShipmentItem(
                shipment=shipment,
                product_id=req.product_id,
                cartons=req.cartons,
                weight_per_unit=q3(req.weight_per_unit),
                unit_cost=q2(req.unit_cost),
                weight_label=req.weight_label,
                created_by=user,
            )
            for req in items
        ])
        shipment.total_cost = q2(sum(q2(req.unit_cost) * req.cartons for req in items))
        shipment.save(update_fields=["total_cost", "updated_at"])
        emit_ledger_event("shipment", shipment.pk, "created", user)

    logger.info("Created shipment %s (fifo=%s) with %s items", shipment.number, shipment.fifo_sequence, len(items))
    return shipment


def update_shipment(shipment, user=None, **changes):
    if "fifo_sequence" in changes:
        raise ShipmentLocked("The FIFO sequence of a shipment can never change.", shipment_id=shipment.pk)
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ShipmentLocked("These shipment fields cannot be edited.", fields=",".join(sorted(unknown)))

    with transaction.atomic():
        shipment = Shipment.objects.select_for_update().get(pk=shipment.pk)
        if shipment.is_settled:
            raise ShipmentLocked("A settled shipment cannot be edited.", shipment_id=shipment.pk)
        for name, value in changes.items():
            setattr(shipment, name, value)
        shipment.updated_by = user
        shipment.save()
        emit_ledger_event("shipment", shipment.pk, "updated", user)
    return shipment


def delete_shipment(shipment, user=None):
    """Only a shipment that never sold or carried anything can go."""
    with transaction.atomic():
        shipment = Shipment.objects.select_for_update().get(pk=shipment.pk)
        pk, number = shipment.pk, shipment.number
        shipment.delete()
        emit_ledger_event("shipment", pk, "deleted", user)
    logger.info("Deleted shipment %s", number)


def close_if_sold_out(shipment_id):
    """Flip an open shipment to closed once none of its batches has stock left."""
    shipment = Shipment.objects.filter(pk=shipment_id, status=Shipment.Status.OPEN).first()
    if shipment is None or not shipment.items.exists():
        return False
    if shipment.items.with_available().filter(available__gt=0).exists():
        return False
    shipment.status = Shipment.Status.CLOSED
    shipment.save(update_fields=["status", "updated_at"])
    logger.info("Shipment %s sold out, closed", shipment.number)
    return True


# ---------------------------------------------------------
# Settlement
# ---------------------------------------------------------
def _carry_forward(item, successor, cartons, user):
    target = (
        successor.items.filter(product_id=item.product_id, weight_per_unit=item.weight_per_unit)
        .order_by("id")
        .first()
    )
    if target is None:
        target = ShipmentItem.objects.create(
            shipment=successor,
            product_id=item.product_id,
            weight_label=item.weight_label,
            weight_per_unit=item.weight_per_unit,
            unit_cost=item.unit_cost,
            cartons=0,
            created_by=user,
        )

    moved = (
        ShipmentItem.objects.filter(pk=item.pk)
        .with_room_for(cartons)
        .update(carryover_out_cartons=F("carryover_out_cartons") + cartons)
    )
    if not moved:
        raise CarryoverAlreadySold("Stock changed while settling; try again.", shipment_item_id=item.pk)
    ShipmentItem.objects.filter(pk=target.pk).update(carryover_in_cartons=F("carryover_in_cartons") + cartons)

    return Carryover.objects.create(
        from_shipment_id=item.shipment_id,
        from_item=item,
        to_shipment=successor,
        to_item=target,
        product_id=item.product_id,
        cartons=cartons,
        reason=Carryover.Reason.END_OF_SHIPMENT,
        notes=f"Carried from {item.shipment.number}",
        created_by=user,
    )


def _sold_weight(item):
    sold = InvoiceItem.objects.filter(
        shipment_item=item, invoice__status=Invoice.Status.ACTIVE, reversed_at__isnull=True
    ).aggregate(w=Sum("quantity"))["w"] or ZERO_WEIGHT
    returned = ReturnLine.objects.filter(
        shipment_item=item, is_late=False, return_note__status=ReturnNote.Status.ACTIVE
    ).aggregate(w=Sum("quantity"))["w"] or ZERO_WEIGHT
    return sold - returned


def _wastage(item):
    """Weight the sold cartons should have had minus the weight actually invoiced."""
    expected = (item.cartons + item.carryover_in_cartons - item.carryover_out_cartons) * item.weight_per_unit
    return max(q3(expected - _sold_weight(item)), ZERO_WEIGHT)


def _previous_supplier_balance(shipment):
    previous = (
        Shipment.objects.filter(
            supplier_id=shipment.supplier_id,
            status=Shipment.Status.SETTLED,
            fifo_sequence__lt=shipment.fifo_sequence,
        )
        .order_by("-fifo_sequence")
        .first()
    )
    if previous is not None:
        return previous.final_supplier_balance
    return shipment.supplier.opening_balance


def settle_shipment(shipment, successor=None, user=None):
    """
    Finalise a shipment. Unsold stock moves to `successor` (which must be
    open); settlement totals are stored on the shipment for reporting.
    """
    ensure_open_day()
    with transaction.atomic():
        shipment = Shipment.objects.select_for_update().select_related("supplier").get(pk=shipment.pk)
        if shipment.is_settled:
            raise AlreadySettled(f"Shipment {shipment.number} is already settled.", shipment_id=shipment.pk)

        items = list(shipment.items.with_available().select_related("shipment"))
        carrying = [i for i in items if i.available > 0]
        if carrying:
            if successor is not None:
                successor = Shipment.objects.select_for_update().get(pk=successor.pk)
            if successor is None or successor.pk == shipment.pk or successor.status != Shipment.Status.OPEN:
                logger.warning("Settlement of %s refused: no open successor", shipment.number)
                raise SuccessorNotOpen(
                    f"Shipment {shipment.number} has unsold stock and needs an open successor.",
                    shipment_id=shipment.pk,
                    successor_id=getattr(successor, "pk", None),
                    remaining_cartons=sum(i.available for i in carrying),
                )
            for item in carrying:
                _carry_forward(item, successor, item.available, user)

        total_wastage = ZERO_WEIGHT
        for item in ShipmentItem.objects.filter(shipment=shipment):
            wastage = _wastage(item)
            if wastage != item.wastage_quantity:
                ShipmentItem.objects.filter(pk=item.pk).update(wastage_quantity=wastage)
            total_wastage += wastage

        total_sales = InvoiceItem.objects.filter(
            shipment_item__shipment=shipment,
            invoice__status=Invoice.Status.ACTIVE,
            invoice__type=Invoice.Type.SALE,
        ).aggregate(s=Sum("subtotal"))["s"] or ZERO
        total_carryover_out = shipment.items.aggregate(c=Sum("carryover_out_cartons"))["c"] or 0
        total_supplier_expenses = Expense.objects.filter(
            shipment=shipment, type=Expense.Type.SUPPLIER
        ).aggregate(s=Sum("amount"))["s"] or ZERO

        commission = q2(total_sales * get_setting("COMPANY_COMMISSION_RATE") / Decimal("100"))
        previous_balance = _previous_supplier_balance(shipment)

        shipment.total_sales = total_sales
        shipment.total_wastage = total_wastage
        shipment.total_carryover_out = total_carryover_out
        shipment.total_supplier_expenses = total_supplier_expenses
        shipment.company_commission = commission
        shipment.previous_supplier_balance = previous_balance
        shipment.final_supplier_balance = total_sales - commission - total_supplier_expenses + previous_balance
        shipment.status = Shipment.Status.SETTLED
        shipment.settled_at = timezone.now()
        shipment.settled_by = user
        shipment.save()
        emit_ledger_event("shipment", shipment.pk, "settled", user)

    logger.info(
        "Settled shipment %s: sales=%s commission=%s carried=%s",
        shipment.number, total_sales, commission, total_carryover_out,
    )
    return shipment


def unsettle_shipment(shipment, user=None):
    """
    Undo a settlement. Carried stock is pulled back from each destination
    batch; fails if any of it has been sold there since.
    """
    ensure_open_day()
    with transaction.atomic():
        shipment = Shipment.objects.select_for_update().get(pk=shipment.pk)
        if not shipment.is_settled:
            raise InvalidTransition(
                f"Shipment {shipment.number} is not settled.", shipment_id=shipment.pk, status=shipment.status
            )

        touched_shipments = set()
        carryovers = shipment.carryovers_out.filter(reason=Carryover.Reason.END_OF_SHIPMENT).order_by("id")
        for carryover in carryovers:
            pulled = (
                ShipmentItem.objects.filter(pk=carryover.to_item_id)
                .with_room_for(carryover.cartons)
                .update(carryover_in_cartons=F("carryover_in_cartons") - carryover.cartons)
            )
            if not pulled:
                dest = ShipmentItem.objects.get(pk=carryover.to_item_id)
                logger.warning("Unsettle of %s refused: carryover %s already sold", shipment.number, carryover.pk)
                raise CarryoverAlreadySold(
                    "Carried-over stock has been sold from the successor shipment.",
                    carryover_id=carryover.pk,
                    shipment_item_id=dest.pk,
                    carried=carryover.cartons,
                    available=dest.remaining_cartons,
                )
            ShipmentItem.objects.filter(pk=carryover.from_item_id).update(
                carryover_out_cartons=F("carryover_out_cartons") - carryover.cartons
            )
            dest_id = carryover.to_item_id
            touched_shipments.add(carryover.to_shipment_id)
            carryover.delete()
            _drop_if_empty(dest_id)

        shipment.items.update(wastage_quantity=ZERO_WEIGHT)
        for name in Shipment.SETTLEMENT_FIELDS:
            setattr(shipment, name, 0)
        shipment.status = Shipment.Status.CLOSED
        shipment.settled_at = None
        shipment.settled_by = None
        shipment.updated_by = user
        shipment.save()

        for shipment_id in touched_shipments:
            close_if_sold_out(shipment_id)
        emit_ledger_event("shipment", shipment.pk, "unsettled", user)

    logger.info("Unsettled shipment %s", shipment.number)
    return shipment


def _drop_if_empty(item_id):
    """Remove a batch that only existed to receive carried stock."""
    item = ShipmentItem.objects.filter(pk=item_id).first()
    if item is None or item.cartons or item.carryover_in_cartons or item.sold_cartons:
        return
    in_use = (
        item.invoice_items.exists()
        or item.return_lines.exists()
        or Carryover.objects.filter(Q(from_item=item) | Q(to_item=item)).exists()
    )
    if not in_use:
        item.delete()


def settlement_report(shipment):
    """Per-batch and total settlement figures (no rendering)."""
    shipment = Shipment.objects.select_related("supplier").get(pk=shipment.pk)
    report = {
        "shipment": {
            "id": shipment.pk,
            "number": shipment.number,
            "supplier": shipment.supplier.name,
            "date": shipment.date,
            "status": shipment.status,
            "settled_at": shipment.settled_at,
        },
        "items": [],
        "totals": {
            "cartons": 0,
            "sold_cartons": 0,
            "carryover_in": 0,
            "carryover_out": 0,
            "remaining_cartons": 0,
            "expected_weight": ZERO_WEIGHT,
            "sold_weight": ZERO_WEIGHT,
            "wastage": ZERO_WEIGHT,
            "total_cost": ZERO,
        },
        "financials": {
            "total_sales": shipment.total_sales,
            "company_commission": shipment.company_commission,
            "total_supplier_expenses": shipment.total_supplier_expenses,
            "previous_supplier_balance": shipment.previous_supplier_balance,
            "final_supplier_balance": shipment.final_supplier_balance,
        },
    }

    totals = report["totals"]
    for item in shipment.items.select_related("product").order_by("id"):
        sold_weight = _sold_weight(item)
        row = {
            "product": item.product.name,
            "weight_label": item.weight_label,
            "weight_per_unit": item.weight_per_unit,
            "cartons": item.cartons,
            "sold_cartons": item.sold_cartons,
            "carryover_in": item.carryover_in_cartons,
            "carryover_out": item.carryover_out_cartons,
            "remaining_cartons": item.remaining_cartons,
            "expected_weight": item.expected_weight,
            "sold_weight": sold_weight,
            "wastage": item.wastage_quantity,
            "unit_cost": item.unit_cost,
            "total_cost": q2(item.cartons * item.unit_cost),
        }
        report["items"].append(row)

        totals["cartons"] += item.cartons
        totals["sold_cartons"] += item.sold_cartons
        totals["carryover_in"] += item.carryover_in_cartons
        totals["carryover_out"] += item.carryover_out_cartons
        totals["remaining_cartons"] += item.remaining_cartons
        totals["expected_weight"] += item.expected_weight
        totals["sold_weight"] += sold_weight
        totals["wastage"] += item.wastage_quantity
        totals["total_cost"] += row["total_cost"]

    return report
