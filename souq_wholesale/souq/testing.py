"""Shared fixtures for the souq test modules."""
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from django.utils import timezone

from .models import Account, Customer, Product, Supplier
from .services import daily_report
from .services.invoices import InvoiceLineRequest, create_invoice
from .services.shipments import ShipmentItemRequest, create_shipment


class LedgerTestCase(TestCase):
    """Two accounts, one supplier, one customer, one product and an open day."""

    open_today = True

    def setUp(self):
        self.user = User.objects.create_user(username="clerk", password="password")
        self.today = timezone.localdate()
        self.cashbox = Account.objects.create(name="Cashbox", type=Account.Type.CASHBOX, balance=Decimal("1000.00"))
        self.bank = Account.objects.create(name="Bank", type=Account.Type.BANK, balance=Decimal("5000.00"))
        self.supplier = Supplier.objects.create(name="Valley Farms", opening_balance=Decimal("0.00"))
        self.customer = Customer.objects.create(name="Green Grocer")
        self.product = Product.objects.create(name="Tomatoes", code="TOM")
        if self.open_today:
            self.report = daily_report.open_day(self.today, user=self.user)

    # ---------- helpers ----------
    def make_shipment(self, cartons=100, product=None, weight=Decimal("10.000"), unit_cost=Decimal("50.00"), **kwargs):
        product = product or self.product
        return create_shipment(
            self.supplier,
            [ShipmentItemRequest(product.pk, cartons, weight, unit_cost)],
            user=self.user,
            **kwargs,
        )

    def sell(self, cartons, price=Decimal("10.00"), weight_per_carton=Decimal("10.000"), customer=None,
             discount=Decimal("0.00"), **kwargs):
        return create_invoice(
            customer or self.customer,
            [InvoiceLineRequest(self.product.pk, cartons, weight_per_carton * cartons, price)],
            discount=discount,
            user=self.user,
            **kwargs,
        )

    def reload(self, *objs):
        for obj in objs:
            obj.refresh_from_db()
        return objs[0] if len(objs) == 1 else objs
