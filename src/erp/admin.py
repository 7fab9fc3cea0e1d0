from django.contrib import admin

from .models import (
    BankAccount,
    BillOfMaterial,
    Branch,
    CodeSequence,
    Customer,
    DebtPayment,
    DebtRecord,
    InventoryBalance,
    InventoryTransaction,
    InventoryTransactionDetail,
    Material,
    Order,
    OrderDetail,
    Product,
    ProductionMaterialRequest,
    ProductionMaterialRequestDetail,
    ProductionOrder,
    PurchaseOrder,
    PurchaseOrderDetail,
    Supplier,
    Warehouse,
)

admin.site.register(Branch)
admin.site.register(CodeSequence)
admin.site.register(BankAccount)
admin.site.register(Material)
admin.site.register(BillOfMaterial)
admin.site.register(Warehouse)
admin.site.register(ProductionMaterialRequest)
admin.site.register(ProductionMaterialRequestDetail)


@admin.register(Customer, Supplier)
class PartnerAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "phone", "debt_amount", "is_active")
    search_fields = ("code", "name", "phone")
    readonly_fields = ("debt_amount",)


class BillOfMaterialInline(admin.TabularInline):
    model = BillOfMaterial
    extra = 0


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "unit", "is_active")
    search_fields = ("code", "name")
    inlines = [BillOfMaterialInline]


class OrderDetailInline(admin.TabularInline):
    model = OrderDetail
    extra = 0


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_code", "customer", "final_amount", "paid_amount", "payment_status", "status", "created_at")
    list_filter = ("status", "payment_status")
    search_fields = ("order_code", "customer__name")
    readonly_fields = ("paid_amount", "payment_status")
    inlines = [OrderDetailInline]


class PurchaseOrderDetailInline(admin.TabularInline):
    model = PurchaseOrderDetail
    extra = 0


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(admin.ModelAdmin):
    list_display = ("po_code", "supplier", "total_amount", "paid_amount", "payment_status", "status", "created_at")
    list_filter = ("status", "payment_status")
    search_fields = ("po_code", "supplier__name")
    readonly_fields = ("paid_amount", "payment_status")
    inlines = [PurchaseOrderDetailInline]


@admin.register(DebtRecord)
class DebtRecordAdmin(admin.ModelAdmin):
    list_display = ("debt_code", "debt_type", "reference_type", "reference_id", "original_amount", "remaining_amount", "status")
    list_filter = ("debt_type", "status")
    search_fields = ("debt_code",)
    readonly_fields = ("debt_code", "original_amount", "remaining_amount", "status")

    # Debt records are opened and paid down by settlements only.
    def has_add_permission(self, request):
        return False


@admin.register(DebtPayment)
class DebtPaymentAdmin(admin.ModelAdmin):
    list_display = ("debt", "payment_amount", "payment_date", "payment_method", "bank_account")
    list_filter = ("payment_method",)

    # Payments are append-only; corrections go through a new settlement.
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(InventoryBalance)
class InventoryBalanceAdmin(admin.ModelAdmin):
    list_display = ("warehouse", "material", "product", "quantity", "updated_at")
    list_filter = ("warehouse",)

    # Quantities change only through approved inventory transactions.
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class InventoryTransactionDetailInline(admin.TabularInline):
    model = InventoryTransactionDetail
    extra = 0

    def _editable(self, obj):
        return obj is None or obj.status == InventoryTransaction.PENDING

    def has_add_permission(self, request, obj=None):
        return self._editable(obj) and super().has_add_permission(request, obj)

    def has_change_permission(self, request, obj=None):
        return self._editable(obj) and super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        return self._editable(obj) and super().has_delete_permission(request, obj)


@admin.register(InventoryTransaction)
class InventoryTransactionAdmin(admin.ModelAdmin):
    list_display = ("transaction_code", "transaction_type", "status", "from_warehouse", "to_warehouse", "created_at")
    list_filter = ("transaction_type", "status")
    search_fields = ("transaction_code",)
    readonly_fields = ("status", "approved_by", "approved_at")
    inlines = [InventoryTransactionDetailInline]

    def get_readonly_fields(self, request, obj=None):
        if obj is not None and obj.status != InventoryTransaction.PENDING:
            return [f.name for f in obj._meta.fields]
        return self.readonly_fields


@admin.register(ProductionOrder)
class ProductionOrderAdmin(admin.ModelAdmin):
    list_display = ("production_code", "order", "current_step", "status", "start_date", "end_date")
    list_filter = ("status", "current_step")
    search_fields = ("production_code",)
    # Steps move forward through the production endpoints only.
    readonly_fields = ("current_step", "status", "start_date", "end_date")
