"""
Corrections to received cartons on unsettled shipments.

A correction is requested by one user and applied only when a different
user approves it. The batch can never drop below the cartons it has
already sold or carried out.
"""
import logging

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from ..exceptions import InvalidAdjustment, InvalidTransition, ShipmentLocked
from ..models import InventoryAdjustment, Shipment, ShipmentItem
from ..signals import emit_ledger_event
from ..utils.money import q2
from .numbering import next_number
from .shipments import close_if_sold_out

logger = logging.getLogger(__name__)


def minimum_cartons(item):
    """Fewest received cartons the batch can hold and still cover what left it."""
    return max(item.sold_cartons + item.carryover_out_cartons - item.carryover_in_cartons, 0)


def _check_batch(item, new_cartons):
    if item.shipment.is_settled:
        raise ShipmentLocked(
            f"Shipment {item.shipment.number} is settled; its stock cannot be adjusted.",
            shipment_id=item.shipment_id, shipment_item_id=item.pk,
        )
    floor = minimum_cartons(item)
    if new_cartons < floor:
        raise InvalidAdjustment(
            f"Batch {item.pk} cannot go below {floor} cartons; they are already sold or carried out.",
            shipment_item_id=item.pk, requested=new_cartons, minimum=floor,
        )


def request_adjustment(
    item, new_cartons, reason, adjustment_type=InventoryAdjustment.Type.PHYSICAL_COUNT, user=None
):
    if not isinstance(new_cartons, int) or new_cartons < 0:
        raise InvalidAdjustment("Cartons must be a whole number, zero or more.", cartons=new_cartons)

    with transaction.atomic():
        item = ShipmentItem.objects.select_related("shipment").get(pk=item.pk)
        _check_batch(item, new_cartons)
        if new_cartons == item.cartons:
            raise InvalidAdjustment("The batch already holds this many cartons.", shipment_item_id=item.pk)

        adjustment = InventoryAdjustment.objects.create(
            number=next_number("adjustment"),
            shipment_item=item,
            product_id=item.product_id,
            type=adjustment_type,
            cartons_before=item.cartons,
            cartons_after=new_cartons,
            unit_cost=item.unit_cost,
            reason=reason,
            created_by=user,
        )
        emit_ledger_event("inventory_adjustment", adjustment.pk, "requested", user)

    logger.info(
        "Requested adjustment %s on batch %s: %s -> %s cartons",
        adjustment.number, item.pk, adjustment.cartons_before, adjustment.cartons_after,
    )
    return adjustment


def _lock_pending(adjustment):
    adjustment = InventoryAdjustment.objects.select_for_update().get(pk=adjustment.pk)
    if not adjustment.is_pending:
        raise InvalidTransition(
            f"Adjustment {adjustment.number} is already {adjustment.status}.", adjustment_id=adjustment.pk
        )
    return adjustment


def approve_adjustment(adjustment, approver):
    """
    Apply the requested carton count. The shipment is re-checked here
    since it may have been settled or sold from after the request.
    """
    with transaction.atomic():
        adjustment = _lock_pending(adjustment)
        if adjustment.created_by_id is not None and adjustment.created_by_id == approver.pk:
            raise InvalidTransition(
                "An adjustment must be approved by someone other than its requester.",
                adjustment_id=adjustment.pk,
            )

        item = ShipmentItem.objects.select_related("shipment").get(pk=adjustment.shipment_item_id)
        shipment = Shipment.objects.select_for_update().get(pk=item.shipment_id)
        item.shipment = shipment
        _check_batch(item, adjustment.cartons_after)

        updated = (
            ShipmentItem.objects.filter(
                pk=item.pk,
                sold_cartons__lte=adjustment.cartons_after + F("carryover_in_cartons") - F("carryover_out_cartons"),
            )
            .update(cartons=adjustment.cartons_after)
        )
        if not updated:
            raise InvalidAdjustment(
                f"Batch {item.pk} sold more cartons in the meantime.",
                shipment_item_id=item.pk, requested=adjustment.cartons_after,
            )

        total = sum((i.unit_cost * i.cartons for i in shipment.items.all()), q2(0))
        Shipment.objects.filter(pk=shipment.pk).update(total_cost=q2(total), updated_at=timezone.now())

        adjustment.status = InventoryAdjustment.Status.APPROVED
        adjustment.decided_at = timezone.now()
        adjustment.decided_by = approver
        adjustment.save(update_fields=["status", "decided_at", "decided_by", "updated_at"])
        close_if_sold_out(shipment.pk)
        emit_ledger_event("inventory_adjustment", adjustment.pk, "approved", approver)

    logger.info(
        "Approved adjustment %s: batch %s now %s cartons", adjustment.number, item.pk, adjustment.cartons_after
    )
    return adjustment


def reject_adjustment(adjustment, rejector, reason=""):
    with transaction.atomic():
        adjustment = _lock_pending(adjustment)
        adjustment.status = InventoryAdjustment.Status.REJECTED
        adjustment.decided_at = timezone.now()
        adjustment.decided_by = rejector
        adjustment.rejection_reason = reason
        adjustment.save(update_fields=["status", "decided_at", "decided_by", "rejection_reason", "updated_at"])
        emit_ledger_event("inventory_adjustment", adjustment.pk, "rejected", rejector)

    logger.info("Rejected adjustment %s", adjustment.number)
    return adjustment


def pending_adjustments():
    return (
        InventoryAdjustment.objects.filter(status=InventoryAdjustment.Status.PENDING)
        .select_related("shipment_item__shipment", "product", "created_by")
    )


def product_history(product):
    """Applied corrections for a product, most recent first."""
    return (
        InventoryAdjustment.objects.filter(product=product, status=InventoryAdjustment.Status.APPROVED)
        .select_related("shipment_item__shipment", "created_by", "decided_by")
        .order_by("-decided_at", "-id")
    )

