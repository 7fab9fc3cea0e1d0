import django_filters
from django.db.models import Q

from .models import DebtRecord, InventoryTransaction


class InventoryTransactionFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(choices=InventoryTransaction.STATUS_CHOICES)
    transactionType = django_filters.ChoiceFilter(field_name="transaction_type", choices=InventoryTransaction.TYPE_CHOICES)
    warehouseId = django_filters.NumberFilter(method="filter_warehouse")
    productionOrderId = django_filters.NumberFilter(field_name="production_order_id")
    code = django_filters.CharFilter(field_name="transaction_code", lookup_expr="icontains")
    fromDate = django_filters.DateFilter(field_name="created_at", lookup_expr="date__gte")
    toDate = django_filters.DateFilter(field_name="created_at", lookup_expr="date__lte")

    class Meta:
        model = InventoryTransaction
        fields = []

    def filter_warehouse(self, queryset, name, value):
        return queryset.filter(Q(from_warehouse_id=value) | Q(to_warehouse_id=value))


class DebtRecordFilter(django_filters.FilterSet):
    debtType = django_filters.ChoiceFilter(field_name="debt_type", choices=DebtRecord.DEBT_TYPE_CHOICES)
    status = django_filters.ChoiceFilter(choices=DebtRecord.STATUS_CHOICES)
    customerId = django_filters.NumberFilter(field_name="customer_id")
    supplierId = django_filters.NumberFilter(field_name="supplier_id")
    code = django_filters.CharFilter(field_name="debt_code", lookup_expr="icontains")
    openOnly = django_filters.BooleanFilter(method="filter_open_only")

    class Meta:
        model = DebtRecord
        fields = []

    def filter_open_only(self, queryset, name, value):
        if value:
            return queryset.filter(remaining_amount__gt=0)
        return queryset
