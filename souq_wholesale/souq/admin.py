# souq/admin.py
from django.contrib import admin, messages

from .exceptions import BusinessError
from .models import (
    Account, AccountTransaction, Carryover, Collection, CollectionAllocation, CreditNote, Customer,
    DailyReport, Expense, InventoryAdjustment, Invoice, InvoiceItem, Product, ReturnLine, ReturnNote,
    Shipment, ShipmentItem, Supplier, Transfer,
)
from .services.collections import cancel_collection
from .services.credit_notes import cancel_note
from .services.inventory_adjustments import approve_adjustment, reject_adjustment
from .services.invoices import cancel_invoice

STAMP_FIELDS = ("created_at", "updated_at", "created_by", "updated_by")


class ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class LedgerDocumentAdmin(admin.ModelAdmin):
    """Money documents are created and cancelled through the services only."""
    actions = ("action_cancel",)
    cancel_function = None

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    @admin.action(description="Cancel selected")
    def action_cancel(self, request, queryset):
        done = 0
        for obj in queryset:
            try:
                type(self).cancel_function(obj, user=request.user)
                done += 1
            except BusinessError as exc:
                self.message_user(request, f"{obj}: {exc}", level=messages.ERROR)
        if done:
            self.message_user(request, f"Cancelled {done} record(s).", level=messages.SUCCESS)


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "is_active")
    search_fields = ("name", "code")
    list_filter = ("is_active",)


@admin.register(Supplier, Customer)
class PartyAdmin(admin.ModelAdmin):
    list_display = ("name", "phone", "opening_balance", "balance", "is_active")
    search_fields = ("name", "phone")
    list_filter = ("is_active",)
    readonly_fields = ("balance",) + STAMP_FIELDS


class ShipmentItemInline(admin.TabularInline):
    model = ShipmentItem
    extra = 0
    fields = (
        "product", "weight_label", "weight_per_unit", "unit_cost", "cartons",
        "sold_cartons", "carryover_in_cartons", "carryover_out_cartons", "wastage_quantity",
    )
    readonly_fields = ("sold_cartons", "carryover_in_cartons", "carryover_out_cartons", "wastage_quantity")


@admin.register(Shipment)
class ShipmentAdmin(admin.ModelAdmin):
    list_display = ("number", "fifo_sequence", "supplier", "date", "status", "total_cost", "final_supplier_balance")
    list_filter = ("status", ("date", admin.DateFieldListFilter))
    search_fields = ("number", "supplier__name")
    list_select_related = ("supplier",)
    inlines = (ShipmentItemInline,)
    readonly_fields = (
        "fifo_sequence", "status", "settled_at", "settled_by", "total_sales", "total_wastage",
        "total_carryover_out", "total_supplier_expenses", "company_commission",
        "previous_supplier_balance", "final_supplier_balance",
    ) + STAMP_FIELDS

    def has_add_permission(self, request):
        # needs a FIFO sequence from services.shipments.create_shipment
        return False


@admin.register(InventoryAdjustment)
class InventoryAdjustmentAdmin(admin.ModelAdmin):
    list_display = (
        "number", "shipment_item", "product", "type", "cartons_before", "cartons_after",
        "cost_impact", "status", "created_by", "decided_by",
    )
    list_filter = ("status", "type")
    search_fields = ("number", "reason", "shipment_item__shipment__number")
    actions = ("action_approve", "action_reject")

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def _decide(self, request, queryset, decide, verb):
        done = 0
        for adjustment in queryset:
            try:
                decide(adjustment, request.user)
                done += 1
            except BusinessError as exc:
                self.message_user(request, f"{adjustment}: {exc}", level=messages.ERROR)
        if done:
            self.message_user(request, f"{verb} {done} adjustment(s).", level=messages.SUCCESS)

    @admin.action(description="Approve selected")
    def action_approve(self, request, queryset):
        self._decide(request, queryset, approve_adjustment, "Approved")

    @admin.action(description="Reject selected")
    def action_reject(self, request, queryset):
        self._decide(request, queryset, reject_adjustment, "Rejected")


@admin.register(Carryover)
class CarryoverAdmin(admin.ModelAdmin):
    list_display = ("from_shipment", "to_shipment", "product", "cartons", "reason", "created_at")
    list_filter = ("reason",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class InvoiceItemInline(ReadOnlyInline):
    model = InvoiceItem
    fields = ("product", "shipment_item", "cartons", "quantity", "unit_price", "subtotal", "reversed_at")


class AllocationInline(ReadOnlyInline):
    model = CollectionAllocation
    fields = ("collection", "invoice", "amount", "created_at")


@admin.register(Invoice)
class InvoiceAdmin(LedgerDocumentAdmin):
    list_display = ("number", "customer", "date", "type", "status", "total", "paid_amount", "balance")
    list_filter = ("status", "type", ("date", admin.DateFieldListFilter))
    search_fields = ("number", "customer__name")
    list_select_related = ("customer",)
    inlines = (InvoiceItemInline, AllocationInline)
    cancel_function = cancel_invoice


class CollectionAllocationInline(AllocationInline):
    fk_name = "collection"


@admin.register(Collection)
class CollectionAdmin(LedgerDocumentAdmin):
    list_display = (
        "number", "customer", "date", "amount", "payment_method",
        "distribution_method", "allocated_amount", "unallocated_amount", "status",
    )
    list_filter = ("status", "payment_method", "distribution_method")
    search_fields = ("number", "customer__name")
    list_select_related = ("customer",)
    inlines = (CollectionAllocationInline,)
    cancel_function = cancel_collection


@admin.register(CreditNote)
class CreditNoteAdmin(LedgerDocumentAdmin):
    list_display = ("number", "type", "customer", "invoice", "date", "amount", "reason", "status")
    list_filter = ("type", "status", ("date", admin.DateFieldListFilter))
    search_fields = ("number", "customer__name", "reason")
    list_select_related = ("customer", "invoice")
    cancel_function = cancel_note


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ("name", "type", "balance", "is_active")
    list_filter = ("type", "is_active")
    readonly_fields = ("balance",) + STAMP_FIELDS


@admin.register(AccountTransaction)
class AccountTransactionAdmin(admin.ModelAdmin):
    list_display = ("account", "type", "amount", "balance_after", "reference_type", "reference_id", "created_at")
    list_filter = ("account", "type", "reference_type")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ("number", "date", "type", "supplier", "shipment", "category", "amount", "payment_method")
    list_filter = ("type", "payment_method", ("date", admin.DateFieldListFilter))
    search_fields = ("number", "description", "supplier__name")

    def has_add_permission(self, request):
        return False


@admin.register(Transfer)
class TransferAdmin(admin.ModelAdmin):
    list_display = ("number", "date", "from_account", "to_account", "amount")

    def has_add_permission(self, request):
        return False


class ReturnLineInline(ReadOnlyInline):
    model = ReturnLine
    fields = ("invoice_item", "product", "shipment_item", "cartons", "quantity", "unit_price", "subtotal", "is_late")


@admin.register(ReturnNote)
class ReturnNoteAdmin(admin.ModelAdmin):
    list_display = ("number", "customer", "date", "status", "total")
    list_filter = ("status",)
    inlines = (ReturnLineInline,)

    def has_add_permission(self, request):
        return False


@admin.register(DailyReport)
class DailyReportAdmin(admin.ModelAdmin):
    list_display = (
        "date", "status", "cashbox_opening", "cashbox_closing", "bank_opening", "bank_closing",
        "total_sales", "total_collections", "total_expenses",
    )
    list_filter = ("status",)
    ordering = ("-date",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
