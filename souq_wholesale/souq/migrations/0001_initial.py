from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

MONEY = {"decimal_places": 2, "max_digits": 14}
WEIGHT = {"decimal_places": 3, "max_digits": 12}


def money(**kwargs):
    return models.DecimalField(default=Decimal("0.00"), **MONEY, **kwargs)


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


def pk():
    return ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID"))


PARTY_FIELDS = [
    ("name", models.CharField(db_index=True, max_length=255)),
    ("phone", models.CharField(blank=True, default="", max_length=50)),
    ("address", models.TextField(blank=True, default="")),
    ("opening_balance", money()),
    ("balance", money()),
    ("is_active", models.BooleanField(db_index=True, default=True)),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="NumberSequence",
            fields=[
                pk(),
                ("key", models.CharField(max_length=30, unique=True)),
                ("last_value", models.PositiveBigIntegerField(default=0)),
            ],
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                pk(),
                *stamped("product"),
                ("name", models.CharField(db_index=True, max_length=255)),
                ("code", models.CharField(blank=True, db_index=True, default="", max_length=50)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Supplier",
            fields=[pk(), *stamped("supplier"), *PARTY_FIELDS],
            options={"ordering": ["name"], "abstract": False},
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[pk(), *stamped("customer"), *[(n, f.clone()) for n, f in PARTY_FIELDS]],
            options={"ordering": ["name"], "abstract": False},
        ),
        migrations.CreateModel(
            name="Shipment",
            fields=[
                pk(),
                *stamped("shipment"),
                ("number", models.CharField(max_length=30, unique=True)),
                ("fifo_sequence", models.PositiveBigIntegerField(editable=False, unique=True)),
                ("date", models.DateField(db_index=True, default=django.utils.timezone.localdate)),
                ("status", models.CharField(
                    choices=[("open", "Open"), ("closed", "Closed"), ("settled", "Settled")],
                    db_index=True, default="open", max_length=10,
                )),
                ("total_cost", money()),
                ("notes", models.TextField(blank=True, default="")),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("settled_by", user_fk("settled_shipments")),
                ("total_sales", money()),
                ("total_wastage", models.DecimalField(default=Decimal("0.000"), **WEIGHT)),
                ("total_carryover_out", models.PositiveIntegerField(default=0)),
                ("total_supplier_expenses", money()),
                ("company_commission", money()),
                ("previous_supplier_balance", money()),
                ("final_supplier_balance", money()),
                ("supplier", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="shipments", to="souq.supplier",
                )),
            ],
            options={"ordering": ["fifo_sequence"]},
        ),
        migrations.CreateModel(
            name="ShipmentItem",
            fields=[
                pk(),
                *stamped("shipmentitem"),
                ("weight_label", models.CharField(blank=True, default="", max_length=50)),
                ("weight_per_unit", models.DecimalField(
                    validators=[django.core.validators.MinValueValidator(Decimal("0.001"))], **WEIGHT,
                )),
                ("unit_cost", money()),
                ("cartons", models.PositiveIntegerField(default=0)),
                ("sold_cartons", models.PositiveIntegerField(default=0)),
                ("carryover_in_cartons", models.PositiveIntegerField(default=0)),
                ("carryover_out_cartons", models.PositiveIntegerField(default=0)),
                ("wastage_quantity", models.DecimalField(default=Decimal("0.000"), **WEIGHT)),
                ("shipment", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="items", to="souq.shipment",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="shipment_items", to="souq.product",
                )),
            ],
            options={
                "ordering": ["shipment__fifo_sequence", "id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            sold_cartons__lte=models.F("cartons")
                            + models.F("carryover_in_cartons")
                            - models.F("carryover_out_cartons")
                        ),
                        name="chk_sold_cartons_not_exceed_available",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Carryover",
            fields=[
                pk(),
                *stamped("carryover"),
                ("cartons", models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ("reason", models.CharField(
                    choices=[("end_of_shipment", "End of shipment"), ("late_return", "Late return")],
                    db_index=True, default="end_of_shipment", max_length=20,
                )),
                ("notes", models.TextField(blank=True, default="")),
                ("from_shipment", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="carryovers_out", to="souq.shipment",
                )),
                ("from_item", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="carryovers_out", to="souq.shipmentitem",
                )),
                ("to_shipment", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="carryovers_in", to="souq.shipment",
                )),
                ("to_item", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="carryovers_in", to="souq.shipmentitem",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="carryovers", to="souq.product",
                )),
            ],
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                pk(),
                *stamped("invoice"),
                ("number", models.CharField(max_length=30, unique=True)),
                ("date", models.DateField(db_index=True)),
                ("type", models.CharField(
                    choices=[("sale", "Sale"), ("wastage", "Wastage")], db_index=True, default="sale", max_length=10,
                )),
                ("status", models.CharField(
                    choices=[("active", "Active"), ("cancelled", "Cancelled")],
                    db_index=True, default="active", max_length=10,
                )),
                ("subtotal", money()),
                ("discount", money(validators=[django.core.validators.MinValueValidator(Decimal("0.00"))])),
                ("total", money()),
                ("paid_amount", money()),
                ("balance", money()),
                ("notes", models.TextField(blank=True, default="")),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_by", user_fk("cancelled_invoices")),
                ("customer", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="invoices", to="souq.customer",
                )),
            ],
            options={
                "ordering": ["-date", "-id"],
                "indexes": [models.Index(fields=["customer", "status", "date"], name="invoice_customer_status_date")],
            },
        ),
        migrations.CreateModel(
            name="InvoiceItem",
            fields=[
                pk(),
                ("cartons", models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ("quantity", models.DecimalField(**WEIGHT)),
                ("unit_price", models.DecimalField(**MONEY)),
                ("unit_cost", money()),
                ("subtotal", models.DecimalField(**MONEY)),
                ("reversed_at", models.DateTimeField(blank=True, null=True)),
                ("invoice", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="items", to="souq.invoice",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="invoice_items", to="souq.product",
                )),
                ("shipment_item", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="invoice_items", to="souq.shipmentitem",
                )),
            ],
            options={"ordering": ["id"]},
        ),
        migrations.CreateModel(
            name="Collection",
            fields=[
                pk(),
                *stamped("collection"),
                ("number", models.CharField(max_length=30, unique=True)),
                ("date", models.DateField(db_index=True)),
                ("amount", models.DecimalField(
                    validators=[django.core.validators.MinValueValidator(Decimal("0.01"))], **MONEY,
                )),
                ("payment_method", models.CharField(
                    choices=[("cash", "Cash"), ("bank", "Bank")], default="cash", max_length=10,
                )),
                ("distribution_method", models.CharField(
                    choices=[("oldest_first", "Oldest first"), ("newest_first", "Newest first"), ("manual", "Manual")],
                    default="oldest_first", max_length=20,
                )),
                ("allocated_amount", money()),
                ("unallocated_amount", money()),
                ("status", models.CharField(
                    choices=[("confirmed", "Confirmed"), ("cancelled", "Cancelled")],
                    db_index=True, default="confirmed", max_length=10,
                )),
                ("notes", models.TextField(blank=True, default="")),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_by", user_fk("cancelled_collections")),
                ("customer", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="collections", to="souq.customer",
                )),
            ],
            options={"ordering": ["-date", "-id"]},
        ),
        migrations.CreateModel(
            name="CollectionAllocation",
            fields=[
                pk(),
                ("amount", models.DecimalField(
                    validators=[django.core.validators.MinValueValidator(Decimal("0.01"))], **MONEY,
                )),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("collection", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="allocations", to="souq.collection",
                )),
                ("invoice", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="allocations", to="souq.invoice",
                )),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("collection", "invoice"), name="uniq_allocation_per_collection_invoice",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Account",
            fields=[
                pk(),
                *stamped("account"),
                ("name", models.CharField(max_length=100)),
                ("type", models.CharField(
                    choices=[("cashbox", "Cashbox"), ("bank", "Bank")], db_index=True, max_length=10,
                )),
                ("balance", money()),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("notes", models.TextField(blank=True, default="")),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(is_active=True), fields=("type",), name="uniq_active_account_per_type",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="AccountTransaction",
            fields=[
                pk(),
                *stamped("accounttransaction"),
                ("type", models.CharField(choices=[("in", "In"), ("out", "Out")], max_length=3)),
                ("amount", models.DecimalField(**MONEY)),
                ("balance_after", models.DecimalField(**MONEY)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("reference_type", models.CharField(
                    choices=[
                        ("collection", "Collection"), ("expense", "Expense"), ("transfer", "Transfer"),
                        ("invoice", "Invoice"), ("manual", "Manual entry"),
                    ],
                    default="manual", max_length=20,
                )),
                ("reference_id", models.PositiveBigIntegerField(blank=True, null=True)),
                ("account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="souq.account",
                )),
            ],
            options={
                "ordering": ["-id"],
                "indexes": [
                    models.Index(fields=["reference_type", "reference_id"], name="acctxn_reference"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Expense",
            fields=[
                pk(),
                *stamped("expense"),
                ("number", models.CharField(max_length=30, unique=True)),
                ("type", models.CharField(
                    choices=[("company", "Company"), ("supplier", "Supplier")],
                    db_index=True, default="company", max_length=10,
                )),
                ("category", models.CharField(blank=True, default="", max_length=50)),
                ("date", models.DateField(db_index=True)),
                ("amount", models.DecimalField(
                    validators=[django.core.validators.MinValueValidator(Decimal("0.01"))], **MONEY,
                )),
                ("payment_method", models.CharField(
                    choices=[("cash", "Cash"), ("bank", "Bank")], default="cash", max_length=10,
                )),
                ("description", models.TextField(blank=True, default="")),
                ("supplier", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="expenses", to="souq.supplier",
                )),
                ("shipment", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="expenses", to="souq.shipment",
                )),
            ],
            options={"ordering": ["-date", "-id"]},
        ),
        migrations.CreateModel(
            name="Transfer",
            fields=[
                pk(),
                *stamped("transfer"),
                ("number", models.CharField(max_length=30, unique=True)),
                ("amount", models.DecimalField(
                    validators=[django.core.validators.MinValueValidator(Decimal("0.01"))], **MONEY,
                )),
                ("date", models.DateField(db_index=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("from_account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="transfers_out", to="souq.account",
                )),
                ("to_account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="transfers_in", to="souq.account",
                )),
            ],
        ),
        migrations.CreateModel(
            name="ReturnNote",
            fields=[
                pk(),
                *stamped("returnnote"),
                ("number", models.CharField(max_length=30, unique=True)),
                ("date", models.DateField(db_index=True)),
                ("status", models.CharField(
                    choices=[("active", "Active"), ("cancelled", "Cancelled")],
                    db_index=True, default="active", max_length=10,
                )),
                ("total", money()),
                ("notes", models.TextField(blank=True, default="")),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_by", user_fk("cancelled_returns")),
                ("customer", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="returns", to="souq.customer",
                )),
            ],
            options={"ordering": ["-date", "-id"]},
        ),
        migrations.CreateModel(
            name="ReturnLine",
            fields=[
                pk(),
                ("cartons", models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ("quantity", models.DecimalField(**WEIGHT)),
                ("unit_price", models.DecimalField(**MONEY)),
                ("subtotal", models.DecimalField(**MONEY)),
                ("is_late", models.BooleanField(default=False)),
                ("return_note", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="lines", to="souq.returnnote",
                )),
                ("invoice_item", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="return_lines", to="souq.invoiceitem",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="return_lines", to="souq.product",
                )),
                ("shipment_item", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="return_lines", to="souq.shipmentitem",
                )),
                ("carryover", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="return_lines", to="souq.carryover",
                )),
            ],
        ),
        migrations.CreateModel(
            name="DailyReport",
            fields=[
                pk(),
                *stamped("dailyreport"),
                ("date", models.DateField(unique=True)),
                ("status", models.CharField(
                    choices=[("open", "Open"), ("closed", "Closed")], db_index=True, default="open", max_length=10,
                )),
                ("cashbox_opening", money()),
                ("bank_opening", money()),
                ("cashbox_closing", money()),
                ("bank_closing", money()),
                ("total_sales", money()),
                ("total_wastage", money()),
                ("total_collections", money()),
                ("total_collections_cash", money()),
                ("total_collections_bank", money()),
                ("total_expenses", money()),
                ("total_expenses_cash", money()),
                ("total_expenses_bank", money()),
                ("total_transfers", money()),
                ("invoices_count", models.PositiveIntegerField(default=0)),
                ("collections_count", models.PositiveIntegerField(default=0)),
                ("expenses_count", models.PositiveIntegerField(default=0)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                ("closed_by", user_fk("closed_daily_reports")),
                ("reopened_at", models.DateTimeField(blank=True, null=True)),
                ("reopened_by", user_fk("reopened_daily_reports")),
                ("notes", models.TextField(blank=True, default="")),
            ],
            options={
                "ordering": ["-date"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(status="open"), fields=("status",), name="uniq_single_open_daily_report",
                    ),
                ],
            },
        ),
    ]
