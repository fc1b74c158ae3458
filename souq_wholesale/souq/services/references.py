"""
Typed causes for account transactions.

A transaction row stores (reference_type, reference_id); in code the cause
is one of the dataclasses below. Adding a new cause means adding a class,
a ReferenceKind member and a branch in both converters.
"""
from dataclasses import dataclass
from typing import Union, assert_never

from django.db import models


class ReferenceKind(models.TextChoices):
    COLLECTION = "collection", "Collection"
    EXPENSE = "expense", "Expense"
    TRANSFER = "transfer", "Transfer"
    INVOICE = "invoice", "Invoice"
    MANUAL = "manual", "Manual entry"


@dataclass(frozen=True)
class CollectionRef:
    collection_id: int


@dataclass(frozen=True)
class ExpenseRef:
    expense_id: int


@dataclass(frozen=True)
class TransferRef:
    transfer_id: int


@dataclass(frozen=True)
class InvoiceRef:
    invoice_id: int


@dataclass(frozen=True)
class ManualRef:
    """Direct deposit or withdrawal keyed in by staff."""


LedgerReference = Union[CollectionRef, ExpenseRef, TransferRef, InvoiceRef, ManualRef]


def reference_columns(ref: LedgerReference) -> tuple[str, int | None]:
    if isinstance(ref, CollectionRef):
        return ReferenceKind.COLLECTION, ref.collection_id
    if isinstance(ref, ExpenseRef):
        return ReferenceKind.EXPENSE, ref.expense_id
    if isinstance(ref, TransferRef):
        return ReferenceKind.TRANSFER, ref.transfer_id
    if isinstance(ref, InvoiceRef):
        return ReferenceKind.INVOICE, ref.invoice_id
    if isinstance(ref, ManualRef):
        return ReferenceKind.MANUAL, None
    assert_never(ref)


def reference_from_columns(kind: str, ref_id: int | None) -> LedgerReference:
    if kind == ReferenceKind.COLLECTION:
        return CollectionRef(ref_id)
    if kind == ReferenceKind.EXPENSE:
        return ExpenseRef(ref_id)
    if kind == ReferenceKind.TRANSFER:
        return TransferRef(ref_id)
    if kind == ReferenceKind.INVOICE:
        return InvoiceRef(ref_id)
    if kind == ReferenceKind.MANUAL:
        return ManualRef()
    raise ValueError(f"Unknown reference type: {kind!r}")
