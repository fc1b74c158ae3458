from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from souq.models import Account, Customer, Product, Supplier
from souq.services import daily_report
from souq.services.shipments import ShipmentItemRequest, create_shipment

User = get_user_model()


class Command(BaseCommand):
    help = 'Generates dummy suppliers, customers, accounts and one open shipment for trying the system'

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write("Starting dummy data generation...")

        admin_user, created = User.objects.get_or_create(username="admin_staff")
        if created:
            admin_user.set_password("admin123")
            admin_user.save()

        # 1. Accounts (one active of each type)
        Account.objects.get_or_create(
            type=Account.Type.CASHBOX, is_active=True,
            defaults={"name": "Main Cashbox", "balance": Decimal("5000.00")},
        )
        Account.objects.get_or_create(
            type=Account.Type.BANK, is_active=True,
            defaults={"name": "Main Bank", "balance": Decimal("20000.00")},
        )

        # 2. Parties
        supplier, _ = Supplier.objects.get_or_create(name="Farm Supplier")
        Customer.objects.get_or_create(name="Corner Grocery", defaults={"opening_balance": Decimal("250.00")})
        Customer.objects.get_or_create(name="Hotel Kitchen")

        # 3. Products
        tomato, _ = Product.objects.get_or_create(name="Tomatoes", defaults={"code": "TOM"})
        mango, _ = Product.objects.get_or_create(name="Mangoes", defaults={"code": "MNG"})

        # 4. Shipment
        if not supplier.shipments.exists():
            shipment = create_shipment(
                supplier,
                [
                    ShipmentItemRequest(tomato.pk, 100, Decimal("10.000"), Decimal("45.00"), "10 kg"),
                    ShipmentItemRequest(mango.pk, 60, Decimal("5.000"), Decimal("80.00"), "5 kg"),
                ],
                user=admin_user,
            )
            self.stdout.write(f"Created shipment {shipment.number}")

        # 5. Business day
        if not daily_report.is_day_open():
            report = daily_report.open_day(user=admin_user)
            self.stdout.write(f"Opened business day {report.date}")

        self.stdout.write(self.style.SUCCESS("Dummy data generated successfully."))
