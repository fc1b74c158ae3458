"""
Cashbox and bank balances.

Every balance change locks the account row, writes the new balance and a
transaction row with the resulting `balance_after`, all in one transaction.
"""
import logging

from django.db import transaction

from ..exceptions import AccountNotFound, InsufficientBalance, InvalidTransition
from ..models import Account, AccountTransaction, Collection
from ..utils.money import positive_amount
from .daily_report import ensure_open_day
from .references import LedgerReference, ManualRef, reference_columns

logger = logging.getLogger(__name__)

ACCOUNT_FOR_METHOD = {
    Collection.PaymentMethod.CASH: Account.Type.CASHBOX,
    Collection.PaymentMethod.BANK: Account.Type.BANK,
}


def account_type_for(payment_method):
    return ACCOUNT_FOR_METHOD[payment_method]


def get_active_account(account_type, lock=False):
    qs = Account.objects.filter(type=account_type, is_active=True)
    if lock:
        qs = qs.select_for_update()
    account = qs.first()
    if account is None:
        logger.warning("No active %s account", account_type)
        raise AccountNotFound(f"No active {account_type} account.", account_type=account_type)
    return account


def _write(account, direction, amount, description, reference, user):
    ref_type, ref_id = reference_columns(reference)
    account.save(update_fields=["balance", "updated_at"])
    return AccountTransaction.objects.create(
        account=account,
        type=direction,
        amount=amount,
        balance_after=account.balance,
        description=description[:255],
        reference_type=ref_type,
        reference_id=ref_id,
        created_by=user,
    )


def deposit(account_type, amount, description="", reference: LedgerReference = ManualRef(), user=None):
    ensure_open_day()
    amount = positive_amount(amount)
    with transaction.atomic():
        account = get_active_account(account_type, lock=True)
        account.balance += amount
        txn = _write(account, AccountTransaction.Direction.IN, amount, description, reference, user)

    logger.info("Deposit %s into %s, balance %s", amount, account_type, txn.balance_after)
    return txn


def withdraw(account_type, amount, description="", reference: LedgerReference = ManualRef(), user=None):
    ensure_open_day()
    amount = positive_amount(amount)
    with transaction.atomic():
        account = get_active_account(account_type, lock=True)
        if amount > account.balance:
            logger.warning("Withdrawal of %s from %s refused, balance %s", amount, account_type, account.balance)
            raise InsufficientBalance(
                f"The {account_type} balance is not enough.",
                account_type=account_type, requested=amount, available=account.balance,
            )
        account.balance -= amount
        txn = _write(account, AccountTransaction.Direction.OUT, amount, description, reference, user)

    logger.info("Withdrawal %s from %s, balance %s", amount, account_type, txn.balance_after)
    return txn


def transfer(from_type, to_type, amount, description="", reference: LedgerReference = ManualRef(), user=None):
    """Move money between the active cashbox and bank. Returns (out_txn, in_txn)."""
    ensure_open_day()
    amount = positive_amount(amount)
    if from_type == to_type:
        raise InvalidTransition("Cannot transfer an account to itself.", account_type=from_type)

    with transaction.atomic():
        # lock in a fixed order so two opposite transfers cannot deadlock
        locked = {}
        for account_type in sorted((from_type, to_type)):
            locked[account_type] = get_active_account(account_type, lock=True)
        source, target = locked[from_type], locked[to_type]

        if amount > source.balance:
            logger.warning("Transfer of %s from %s refused, balance %s", amount, from_type, source.balance)
            raise InsufficientBalance(
                f"The {from_type} balance is not enough.",
                account_type=from_type, requested=amount, available=source.balance,
            )

        source.balance -= amount
        out_txn = _write(source, AccountTransaction.Direction.OUT, amount, description, reference, user)
        target.balance += amount
        in_txn = _write(target, AccountTransaction.Direction.IN, amount, description, reference, user)

    logger.info("Transferred %s from %s to %s", amount, from_type, to_type)
    return out_txn, in_txn
