from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

MONEY = {"decimal_places": 2, "max_digits": 14}


def user_fk(related_name):
    return models.ForeignKey(
        blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
        related_name=related_name, to=settings.AUTH_USER_MODEL,
    )


def stamped(prefix):
    return [
        ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False)),
        ("updated_at", models.DateTimeField(auto_now=True, db_index=True)),
        ("created_by", user_fk(f"{prefix}_created")),
        ("updated_by", user_fk(f"{prefix}_updated")),
    ]


class Migration(migrations.Migration):

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("souq", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="InventoryAdjustment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *stamped("inventoryadjustment"),
                ("number", models.CharField(max_length=30, unique=True)),
                ("type", models.CharField(
                    choices=[
                        ("physical_count", "Physical count"), ("damage", "Damage"), ("theft", "Loss / theft"),
                        ("error", "Entry error"), ("expiry", "Expiry"),
                    ],
                    default="physical_count", max_length=20,
                )),
                ("status", models.CharField(
                    choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")],
                    db_index=True, default="pending", max_length=10,
                )),
                ("cartons_before", models.PositiveIntegerField()),
                ("cartons_after", models.PositiveIntegerField()),
                ("unit_cost", models.DecimalField(default=Decimal("0.00"), **MONEY)),
                ("reason", models.TextField()),
                ("decided_at", models.DateTimeField(blank=True, null=True)),
                ("decided_by", user_fk("decided_adjustments")),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("shipment_item", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="adjustments", to="souq.shipmentitem",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="adjustments", to="souq.product",
                )),
            ],
            options={"ordering": ["-created_at", "-id"]},
        ),
        migrations.CreateModel(
            name="CreditNote",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *stamped("creditnote"),
                ("number", models.CharField(max_length=30, unique=True)),
                ("type", models.CharField(
                    choices=[("credit", "Credit note"), ("debit", "Debit note")], db_index=True, max_length=10,
                )),
                ("date", models.DateField(db_index=True)),
                ("amount", models.DecimalField(
                    validators=[django.core.validators.MinValueValidator(Decimal("0.01"))], **MONEY,
                )),
                ("reason", models.CharField(max_length=255)),
                ("notes", models.TextField(blank=True, default="")),
                ("status", models.CharField(
                    choices=[("active", "Active"), ("cancelled", "Cancelled")],
                    db_index=True, default="active", max_length=10,
                )),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_by", user_fk("cancelled_credit_notes")),
                ("customer", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="credit_notes", to="souq.customer",
                )),
                ("invoice", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="credit_notes", to="souq.invoice",
                )),
            ],
            options={"ordering": ["-date", "-id"]},
        ),
    ]
