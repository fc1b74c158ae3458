# souq/models.py
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q, UniqueConstraint
from django.utils import timezone

from .exceptions import DeletionForbidden, InvalidTransition, ShipmentLocked
from .services.references import ReferenceKind, reference_from_columns

# --------------------------------
# Common field presets
# --------------------------------
DECIMAL_14_2 = {"max_digits": 14, "decimal_places": 2}  # money
DECIMAL_12_3 = {"max_digits": 12, "decimal_places": 3}  # weights (kg)
ZERO = Decimal("0.00")


# --------------------------------
# Core mixins
# --------------------------------
class TimeStampedBy(models.Model):
    created_at = models.DateTimeField(default=timezone.now, db_index=True, editable=False)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="%(class)s_created"
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="%(class)s_updated"
    )

    class Meta:
        abstract = True


class UndeletableQuerySet(models.QuerySet):
    """Bulk deletes are refused as well as instance deletes."""

    def delete(self):
        raise DeletionForbidden(
            f"{self.model._meta.verbose_name_plural.capitalize()} can never be deleted; cancel instead.",
            model=self.model.__name__,
        )


class NumberSequence(models.Model):
    """
    One row per counter (document numbers, shipment FIFO order).
    Values only move forward, so a number is never handed out twice.
    """
    key = models.CharField(max_length=30, unique=True)
    last_value = models.PositiveBigIntegerField(default=0)

    def __str__(self):
        return f"{self.key}={self.last_value}"


# --------------------------------
# Catalog and parties
# --------------------------------
class Product(TimeStampedBy):
    name = models.CharField(max_length=255, db_index=True)
    code = models.CharField(max_length=50, blank=True, default="", db_index=True)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.code} — {self.name}" if self.code else self.name


class Party(TimeStampedBy):
    """
    Shared shape of customers and suppliers.
    `balance` is a running figure adjusted in the same transaction as
    each event that moves it; `opening_balance` seeds it on creation.
    """
    name = models.CharField(max_length=255, db_index=True)
    phone = models.CharField(max_length=50, blank=True, default="")
    address = models.TextField(blank=True, default="")
    opening_balance = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    balance = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        abstract = True
        ordering = ["name"]

    def save(self, *args, **kwargs):
        if self._state.adding and not self.balance:
            self.balance = self.opening_balance
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class Supplier(Party):
    """Positive balance = we owe the supplier."""


class Customer(Party):
    """Positive balance = the customer owes us."""


# --------------------------------
# Shipments and batches
# --------------------------------
class Shipment(TimeStampedBy):
    class Status(models.TextChoices):
        OPEN = "open", "Open"
        CLOSED = "closed", "Closed"
        SETTLED = "settled", "Settled"

    ALLOWED_TRANSITIONS = {
        Status.OPEN: {Status.CLOSED, Status.SETTLED},
        Status.CLOSED: {Status.SETTLED},
        Status.SETTLED: {Status.CLOSED},
    }
    # Writable while settled (status flips back to closed on unsettle)
    SETTLED_WRITABLE = {"status", "settled_at", "settled_by_id", "updated_at", "updated_by_id"}
    SETTLEMENT_FIELDS = {
        "total_sales", "total_wastage", "total_carryover_out", "total_supplier_expenses",
        "company_commission", "previous_supplier_balance", "final_supplier_balance",
    }

    number = models.CharField(max_length=30, unique=True)
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="shipments")
    fifo_sequence = models.PositiveBigIntegerField(unique=True, editable=False)
    date = models.DateField(default=timezone.localdate, db_index=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.OPEN, db_index=True)
    total_cost = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    notes = models.TextField(blank=True, default="")

    # settlement snapshot
    settled_at = models.DateTimeField(null=True, blank=True)
    settled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="settled_shipments"
    )
    total_sales = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_wastage = models.DecimalField(**DECIMAL_12_3, default=Decimal("0.000"))
    total_carryover_out = models.PositiveIntegerField(default=0)
    total_supplier_expenses = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    company_commission = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    previous_supplier_balance = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    final_supplier_balance = models.DecimalField(**DECIMAL_14_2, default=ZERO)

    class Meta:
        ordering = ["fifo_sequence"]

    def __str__(self):
        return f"{self.number} ({self.supplier})"

    @property
    def is_settled(self):
        return self.status == self.Status.SETTLED

    def save(self, *args, **kwargs):
        if not self._state.adding and self.pk:
            self._check_locked_fields()
        super().save(*args, **kwargs)

    def _check_locked_fields(self):
        original = type(self).objects.filter(pk=self.pk).first()
        if original is None:
            return

        if original.fifo_sequence != self.fifo_sequence:
            raise ShipmentLocked(
                "The FIFO sequence of a shipment can never change.",
                shipment_id=self.pk, fifo_sequence=original.fifo_sequence,
            )

        if original.status != self.status and self.status not in self.ALLOWED_TRANSITIONS[original.status]:
            raise InvalidTransition(
                f"Shipment cannot move from {original.status} to {self.status}.",
                shipment_id=self.pk,
            )

        if original.status == self.Status.SETTLED:
            writable = set(self.SETTLED_WRITABLE)
            if self.status == self.Status.CLOSED:
                writable |= self.SETTLEMENT_FIELDS
            changed = [
                f.attname for f in self._meta.concrete_fields
                if f.attname not in writable and getattr(original, f.attname) != getattr(self, f.attname)
            ]
            if changed:
                raise ShipmentLocked(
                    "A settled shipment cannot be edited.",
                    shipment_id=self.pk, fields=",".join(sorted(changed)),
                )

    def delete(self, *args, **kwargs):
        if self.is_settled:
            raise DeletionForbidden("A settled shipment cannot be deleted.", shipment_id=self.pk)
        if self.items.filter(Q(sold_cartons__gt=0) | Q(carryover_out_cartons__gt=0) | Q(carryover_in_cartons__gt=0)).exists():
            raise DeletionForbidden("A shipment with sales or carryovers cannot be deleted.", shipment_id=self.pk)
        return super().delete(*args, **kwargs)


class ShipmentItemQuerySet(models.QuerySet):
    def with_available(self):
        return self.annotate(
            available=F("cartons") + F("carryover_in_cartons") - F("sold_cartons") - F("carryover_out_cartons")
        )

    def with_room_for(self, cartons):
        """
        Batches that can lose `cartons` of remaining stock (more sold, more
        carried out, or less carried in) and still satisfy the check constraint.
        """
        return self.filter(
            sold_cartons__lte=F("cartons") + F("carryover_in_cartons") - F("carryover_out_cartons") - cartons
        )

    def eligible_for_sale(self):
        """Batches FIFO may draw from: unsettled shipment, stock left."""
        return (
            self.with_available()
            .filter(
                shipment__status__in=[Shipment.Status.OPEN, Shipment.Status.CLOSED],
                available__gt=0,
            )
            .order_by("shipment__fifo_sequence", "id")
        )


class ShipmentItem(TimeStampedBy):
    """
    One product's cartons within one shipment: the unit FIFO allocates from.
    Remaining stock is always derived, never stored.
    """
    shipment = models.ForeignKey(Shipment, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="shipment_items")
    weight_label = models.CharField(max_length=50, blank=True, default="")
    weight_per_unit = models.DecimalField(**DECIMAL_12_3, validators=[MinValueValidator(Decimal("0.001"))])
    unit_cost = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    cartons = models.PositiveIntegerField(default=0)
    sold_cartons = models.PositiveIntegerField(default=0)
    carryover_in_cartons = models.PositiveIntegerField(default=0)
    carryover_out_cartons = models.PositiveIntegerField(default=0)
    wastage_quantity = models.DecimalField(**DECIMAL_12_3, default=Decimal("0.000"))

    objects = ShipmentItemQuerySet.as_manager()

    class Meta:
        ordering = ["shipment__fifo_sequence", "id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(sold_cartons__lte=F("cartons") + F("carryover_in_cartons") - F("carryover_out_cartons")),
                name="chk_sold_cartons_not_exceed_available",
            ),
        ]

    def __str__(self):
        return f"{self.shipment.number} / {self.product.name}"

    @property
    def remaining_cartons(self):
        return self.cartons + self.carryover_in_cartons - self.sold_cartons - self.carryover_out_cartons

    @property
    def expected_weight(self):
        return (self.cartons + self.carryover_in_cartons) * self.weight_per_unit


class Carryover(TimeStampedBy):
    class Reason(models.TextChoices):
        END_OF_SHIPMENT = "end_of_shipment", "End of shipment"
        LATE_RETURN = "late_return", "Late return"

    from_shipment = models.ForeignKey(Shipment, on_delete=models.PROTECT, related_name="carryovers_out")
    from_item = models.ForeignKey(ShipmentItem, on_delete=models.PROTECT, related_name="carryovers_out")
    to_shipment = models.ForeignKey(Shipment, on_delete=models.PROTECT, related_name="carryovers_in")
    to_item = models.ForeignKey(ShipmentItem, on_delete=models.PROTECT, related_name="carryovers_in")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="carryovers")
    cartons = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    reason = models.CharField(max_length=20, choices=Reason.choices, default=Reason.END_OF_SHIPMENT, db_index=True)
    notes = models.TextField(blank=True, default="")

    def __str__(self):
        return f"{self.cartons} × {self.product} {self.from_shipment.number} → {self.to_shipment.number}"


class InventoryAdjustment(TimeStampedBy):
    """
    A requested correction to a batch's received cartons (recount, damage,
    loss). Nothing changes until a second user approves it.
    """
    class Type(models.TextChoices):
        PHYSICAL_COUNT = "physical_count", "Physical count"
        DAMAGE = "damage", "Damage"
        THEFT = "theft", "Loss / theft"
        ERROR = "error", "Entry error"
        EXPIRY = "expiry", "Expiry"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    number = models.CharField(max_length=30, unique=True)
    shipment_item = models.ForeignKey(ShipmentItem, on_delete=models.PROTECT, related_name="adjustments")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="adjustments")
    type = models.CharField(max_length=20, choices=Type.choices, default=Type.PHYSICAL_COUNT)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING, db_index=True)
    cartons_before = models.PositiveIntegerField()
    cartons_after = models.PositiveIntegerField()
    unit_cost = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    reason = models.TextField()
    decided_at = models.DateTimeField(null=True, blank=True)
    decided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="decided_adjustments"
    )
    rejection_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.number}: {self.cartons_before} → {self.cartons_after}"

    @property
    def is_pending(self):
        return self.status == self.Status.PENDING

    @property
    def cartons_change(self):
        return self.cartons_after - self.cartons_before

    @property
    def cost_impact(self):
        return self.cartons_change * self.unit_cost


# --------------------------------
# Sales
# --------------------------------
class Invoice(TimeStampedBy):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        CANCELLED = "cancelled", "Cancelled"

    class Type(models.TextChoices):
        SALE = "sale", "Sale"
        WASTAGE = "wastage", "Wastage"

    number = models.CharField(max_length=30, unique=True)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="invoices")
    date = models.DateField(db_index=True)
    type = models.CharField(max_length=10, choices=Type.choices, default=Type.SALE, db_index=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.ACTIVE, db_index=True)
    subtotal = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    discount = models.DecimalField(**DECIMAL_14_2, default=ZERO, validators=[MinValueValidator(ZERO)])
    total = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    paid_amount = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    balance = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    notes = models.TextField(blank=True, default="")
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="cancelled_invoices"
    )

    objects = UndeletableQuerySet.as_manager()

    class Meta:
        ordering = ["-date", "-id"]
        indexes = [models.Index(fields=["customer", "status", "date"], name="invoice_customer_status_date")]

    def __str__(self):
        return self.number

    @property
    def is_active(self):
        return self.status == self.Status.ACTIVE

    @property
    def is_wastage(self):
        return self.type == self.Type.WASTAGE

    def clean(self):
        if self.discount and self.subtotal is not None and self.discount > self.subtotal:
            raise ValidationError({"discount": "Discount cannot exceed subtotal."})

    def delete(self, *args, **kwargs):
        raise DeletionForbidden("Invoices can never be deleted; cancel instead.", invoice_id=self.pk)


class InvoiceItem(models.Model):
    """One FIFO slice of a requested sale line; always tied to a single batch."""
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="invoice_items")
    shipment_item = models.ForeignKey(ShipmentItem, on_delete=models.PROTECT, related_name="invoice_items")
    cartons = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    quantity = models.DecimalField(**DECIMAL_12_3)  # weight sold
    unit_price = models.DecimalField(**DECIMAL_14_2)
    unit_cost = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    subtotal = models.DecimalField(**DECIMAL_14_2)
    reversed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.invoice.number}: {self.cartons} × {self.product.name}"


class Collection(TimeStampedBy):
    class Status(models.TextChoices):
        CONFIRMED = "confirmed", "Confirmed"
        CANCELLED = "cancelled", "Cancelled"

    class PaymentMethod(models.TextChoices):
        CASH = "cash", "Cash"
        BANK = "bank", "Bank"

    class Distribution(models.TextChoices):
        OLDEST_FIRST = "oldest_first", "Oldest first"
        NEWEST_FIRST = "newest_first", "Newest first"
        MANUAL = "manual", "Manual"

    number = models.CharField(max_length=30, unique=True)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="collections")
    date = models.DateField(db_index=True)
    amount = models.DecimalField(**DECIMAL_14_2, validators=[MinValueValidator(Decimal("0.01"))])
    payment_method = models.CharField(max_length=10, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    distribution_method = models.CharField(
        max_length=20, choices=Distribution.choices, default=Distribution.OLDEST_FIRST
    )
    allocated_amount = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    unallocated_amount = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.CONFIRMED, db_index=True)
    notes = models.TextField(blank=True, default="")
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="cancelled_collections"
    )

    objects = UndeletableQuerySet.as_manager()

    class Meta:
        ordering = ["-date", "-id"]

    def __str__(self):
        return self.number

    @property
    def is_confirmed(self):
        return self.status == self.Status.CONFIRMED

    def delete(self, *args, **kwargs):
        raise DeletionForbidden("Collections can never be deleted; cancel instead.", collection_id=self.pk)


class CollectionAllocation(models.Model):
    collection = models.ForeignKey(Collection, on_delete=models.PROTECT, related_name="allocations")
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="allocations")
    amount = models.DecimalField(**DECIMAL_14_2, validators=[MinValueValidator(Decimal("0.01"))])
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            UniqueConstraint(fields=["collection", "invoice"], name="uniq_allocation_per_collection_invoice"),
        ]

    def __str__(self):
        return f"{self.collection.number} → {self.invoice.number}: {self.amount}"


# --------------------------------
# Cash and bank
# --------------------------------
class Account(TimeStampedBy):
    class Type(models.TextChoices):
        CASHBOX = "cashbox", "Cashbox"
        BANK = "bank", "Bank"

    name = models.CharField(max_length=100)
    type = models.CharField(max_length=10, choices=Type.choices, db_index=True)
    balance = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    is_active = models.BooleanField(default=True, db_index=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        constraints = [
            UniqueConstraint(fields=["type"], condition=Q(is_active=True), name="uniq_active_account_per_type"),
        ]

    def __str__(self):
        return f"{self.name} ({self.get_type_display()})"


class AccountTransaction(TimeStampedBy):
    class Direction(models.TextChoices):
        IN = "in", "In"
        OUT = "out", "Out"

    account = models.ForeignKey(Account, on_delete=models.PROTECT, related_name="transactions")
    type = models.CharField(max_length=3, choices=Direction.choices)
    amount = models.DecimalField(**DECIMAL_14_2)
    balance_after = models.DecimalField(**DECIMAL_14_2)
    description = models.CharField(max_length=255, blank=True, default="")
    reference_type = models.CharField(max_length=20, choices=ReferenceKind.choices, default=ReferenceKind.MANUAL)
    reference_id = models.PositiveBigIntegerField(null=True, blank=True)

    class Meta:
        ordering = ["-id"]
        indexes = [models.Index(fields=["reference_type", "reference_id"], name="acctxn_reference")]

    def __str__(self):
        return f"{self.account.name} {self.type} {self.amount}"

    @property
    def reference(self):
        return reference_from_columns(self.reference_type, self.reference_id)


class Expense(TimeStampedBy):
    class Type(models.TextChoices):
        COMPANY = "company", "Company"
        SUPPLIER = "supplier", "Supplier"

    number = models.CharField(max_length=30, unique=True)
    type = models.CharField(max_length=10, choices=Type.choices, default=Type.COMPANY, db_index=True)
    supplier = models.ForeignKey(Supplier, null=True, blank=True, on_delete=models.PROTECT, related_name="expenses")
    shipment = models.ForeignKey(Shipment, null=True, blank=True, on_delete=models.PROTECT, related_name="expenses")
    category = models.CharField(max_length=50, blank=True, default="")
    date = models.DateField(db_index=True)
    amount = models.DecimalField(**DECIMAL_14_2, validators=[MinValueValidator(Decimal("0.01"))])
    payment_method = models.CharField(
        max_length=10, choices=Collection.PaymentMethod.choices, default=Collection.PaymentMethod.CASH
    )
    description = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-date", "-id"]

    def __str__(self):
        return f"{self.number} {self.amount}"

    def clean(self):
        if self.type == self.Type.SUPPLIER and not self.supplier_id:
            raise ValidationError({"supplier": "Supplier expenses need a supplier."})


class Transfer(TimeStampedBy):
    number = models.CharField(max_length=30, unique=True)
    from_account = models.ForeignKey(Account, on_delete=models.PROTECT, related_name="transfers_out")
    to_account = models.ForeignKey(Account, on_delete=models.PROTECT, related_name="transfers_in")
    amount = models.DecimalField(**DECIMAL_14_2, validators=[MinValueValidator(Decimal("0.01"))])
    date = models.DateField(db_index=True)
    notes = models.TextField(blank=True, default="")

    def __str__(self):
        return f"{self.number} {self.from_account} → {self.to_account}: {self.amount}"


# --------------------------------
# Returns
# --------------------------------
class ReturnNote(TimeStampedBy):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        CANCELLED = "cancelled", "Cancelled"

    number = models.CharField(max_length=30, unique=True)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="returns")
    date = models.DateField(db_index=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.ACTIVE, db_index=True)
    total = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    notes = models.TextField(blank=True, default="")
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="cancelled_returns"
    )

    class Meta:
        ordering = ["-date", "-id"]

    def __str__(self):
        return self.number


class ReturnLine(models.Model):
    return_note = models.ForeignKey(ReturnNote, on_delete=models.CASCADE, related_name="lines")
    invoice_item = models.ForeignKey(InvoiceItem, on_delete=models.PROTECT, related_name="return_lines")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="return_lines")
    # batch that received the stock back (the source batch, or an open one for late returns)
    shipment_item = models.ForeignKey(ShipmentItem, on_delete=models.PROTECT, related_name="return_lines")
    carryover = models.ForeignKey(
        Carryover, null=True, blank=True, on_delete=models.SET_NULL, related_name="return_lines"
    )
    cartons = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    quantity = models.DecimalField(**DECIMAL_12_3)
    unit_price = models.DecimalField(**DECIMAL_14_2)
    subtotal = models.DecimalField(**DECIMAL_14_2)
    is_late = models.BooleanField(default=False)

    def __str__(self):
        return f"{self.return_note.number}: {self.cartons} × {self.product.name}"


# --------------------------------
# Credit and debit notes
# --------------------------------
class CreditNote(TimeStampedBy):
    """
    A correction to what a customer owes. Credit notes lower the balance,
    debit notes raise it; a note linked to an invoice moves that invoice's
    balance too.
    """
    class Type(models.TextChoices):
        CREDIT = "credit", "Credit note"
        DEBIT = "debit", "Debit note"

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        CANCELLED = "cancelled", "Cancelled"

    number = models.CharField(max_length=30, unique=True)
    type = models.CharField(max_length=10, choices=Type.choices, db_index=True)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="credit_notes")
    invoice = models.ForeignKey(
        Invoice, null=True, blank=True, on_delete=models.PROTECT, related_name="credit_notes"
    )
    date = models.DateField(db_index=True)
    amount = models.DecimalField(**DECIMAL_14_2, validators=[MinValueValidator(Decimal("0.01"))])
    reason = models.CharField(max_length=255)
    notes = models.TextField(blank=True, default="")
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.ACTIVE, db_index=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="cancelled_credit_notes"
    )

    objects = UndeletableQuerySet.as_manager()

    class Meta:
        ordering = ["-date", "-id"]

    def __str__(self):
        return f"{self.number} {self.get_type_display()} {self.amount}"

    @property
    def is_active(self):
        return self.status == self.Status.ACTIVE

    @property
    def signed_amount(self):
        """Effect on the customer balance: negative for credit notes."""
        return -self.amount if self.type == self.Type.CREDIT else self.amount

    def delete(self, *args, **kwargs):
        raise DeletionForbidden("Credit and debit notes can never be deleted; cancel instead.", note_id=self.pk)


# --------------------------------
# Daily gate
# --------------------------------
class DailyReport(TimeStampedBy):
    """
    One row per business day. At most one row may be open at a time;
    financial writes are only accepted while a day is open.
    """
    class Status(models.TextChoices):
        OPEN = "open", "Open"
        CLOSED = "closed", "Closed"

    date = models.DateField(unique=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.OPEN, db_index=True)

    cashbox_opening = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    bank_opening = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    cashbox_closing = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    bank_closing = models.DecimalField(**DECIMAL_14_2, default=ZERO)

    total_sales = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_wastage = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_collections = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_collections_cash = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_collections_bank = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_expenses = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_expenses_cash = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_expenses_bank = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    total_transfers = models.DecimalField(**DECIMAL_14_2, default=ZERO)
    invoices_count = models.PositiveIntegerField(default=0)
    collections_count = models.PositiveIntegerField(default=0)
    expenses_count = models.PositiveIntegerField(default=0)

    closed_at = models.DateTimeField(null=True, blank=True)
    closed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="closed_daily_reports"
    )
    reopened_at = models.DateTimeField(null=True, blank=True)
    reopened_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="reopened_daily_reports"
    )
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-date"]
        constraints = [
            UniqueConstraint(fields=["status"], condition=Q(status="open"), name="uniq_single_open_daily_report"),
        ]

    def __str__(self):
        return f"{self.date} ({self.status})"

    @property
    def is_open(self):
        return self.status == self.Status.OPEN
