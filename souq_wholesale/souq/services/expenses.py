import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F

from ..exceptions import ShipmentLocked
from ..models import Collection, Expense, Shipment, Supplier, Transfer
from ..signals import emit_ledger_event
from ..utils.money import positive_amount
from . import accounts
from .daily_report import ensure_open_day
from .numbering import next_number
from .references import ExpenseRef, TransferRef

logger = logging.getLogger(__name__)


def _default_shipment(supplier):
    """Oldest unsettled shipment of the supplier, in FIFO order."""
    return (
        Shipment.objects.filter(
            supplier=supplier, status__in=[Shipment.Status.OPEN, Shipment.Status.CLOSED]
        )
        .order_by("fifo_sequence")
        .first()
    )


def record_expense(
    amount,
    expense_type=Expense.Type.COMPANY,
    supplier=None,
    shipment=None,
    category="",
    payment_method=Collection.PaymentMethod.CASH,
    description="",
    user=None,
):
    """
    Pay an expense out of the cashbox or bank. Supplier expenses are charged
    to the supplier's balance and to one of their shipments, so they show up
    in that shipment's settlement.
    """
    expense_date = ensure_open_day()
    amount = positive_amount(amount)
    if expense_type == Expense.Type.SUPPLIER and supplier is None:
        raise ValidationError({"supplier": "Supplier expenses need a supplier."})

    with transaction.atomic():
        if expense_type == Expense.Type.SUPPLIER and shipment is None:
            shipment = _default_shipment(supplier)
        if shipment is not None:
            shipment = Shipment.objects.select_for_update().get(pk=shipment.pk)
        if shipment is not None and shipment.is_settled:
            raise ShipmentLocked(
                f"Shipment {shipment.number} is settled; expenses can no longer be added.",
                shipment_id=shipment.pk,
            )

        expense = Expense.objects.create(
            number=next_number("expense"),
            type=expense_type,
            supplier=supplier,
            shipment=shipment,
            category=category,
            date=expense_date,
            amount=amount,
            payment_method=payment_method,
            description=description,
            created_by=user,
        )
        if expense_type == Expense.Type.SUPPLIER:
            Supplier.objects.filter(pk=supplier.pk).update(balance=F("balance") - amount)

        accounts.withdraw(
            accounts.account_type_for(payment_method),
            amount,
            description or f"Expense {expense.number}",
            ExpenseRef(expense.pk),
            user=user,
        )
        emit_ledger_event("expense", expense.pk, "created", user)

    logger.info("Recorded %s expense %s: %s (%s)", expense_type, expense.number, amount, payment_method)
    return expense


def record_transfer(from_type, to_type, amount, notes="", user=None):
    """Move money between the cashbox and the bank."""
    transfer_date = ensure_open_day()
    amount = positive_amount(amount)

    with transaction.atomic():
        source = accounts.get_active_account(from_type)
        target = accounts.get_active_account(to_type)
        transfer = Transfer.objects.create(
            number=next_number("transfer"),
            from_account=source,
            to_account=target,
            amount=amount,
            date=transfer_date,
            notes=notes,
            created_by=user,
        )
        accounts.transfer(
            from_type,
            to_type,
            amount,
            notes or f"Transfer {transfer.number}",
            TransferRef(transfer.pk),
            user=user,
        )
        emit_ledger_event("transfer", transfer.pk, "created", user)

    logger.info("Recorded transfer %s: %s %s -> %s", transfer.number, amount, from_type, to_type)
    return transfer

