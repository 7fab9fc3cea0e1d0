from decimal import Decimal

from django import forms
from django.utils.translation import gettext_lazy as _

from .exceptions import ValidationError
from .models import DebtPayment, InventoryTransaction, ProductionOrder

PARTNER_TYPE_CHOICES = [
    ("customer", _("Customer")),
    ("supplier", _("Supplier")),
]


def cleaned(form_class, data):
    form = form_class(data)
    if not form.is_valid():
        raise ValidationError("Invalid input.", fields=form.errors.get_json_data())
    return form.cleaned_data


def cleaned_lines(form_class, items):
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item line is required.", field="items")
    lines = []
    for index, item in enumerate(items):
        form = form_class(item if isinstance(item, dict) else {})
        if not form.is_valid():
            raise ValidationError("Invalid item line.", line=index, fields=form.errors.get_json_data())
        lines.append(form.as_item())
    return lines


class SettlePaymentForm(forms.Form):
    partnerType = forms.ChoiceField(choices=PARTNER_TYPE_CHOICES, label=_("Partner type"))
    paymentAmount = forms.DecimalField(max_digits=18, decimal_places=2, min_value=Decimal("0.01"), label=_("Amount"))
    paymentDate = forms.DateField(label=_("Payment date"))
    paymentMethod = forms.ChoiceField(choices=DebtPayment.PAYMENT_METHOD_CHOICES, label=_("Payment method"))
    bankAccountId = forms.IntegerField(required=False, min_value=1)
    orderId = forms.IntegerField(required=False, min_value=1)
    notes = forms.CharField(required=False, max_length=255)


class TransactionLineForm(forms.Form):
    materialId = forms.IntegerField(required=False, min_value=1)
    productId = forms.IntegerField(required=False, min_value=1)
    quantity = forms.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal("0.001"))
    unitPrice = forms.DecimalField(required=False, max_digits=18, decimal_places=2, min_value=Decimal("0"))
    notes = forms.CharField(required=False, max_length=255)

    def clean(self):
        cleaned = super().clean()
        if bool(cleaned.get("materialId")) == bool(cleaned.get("productId")):
            raise forms.ValidationError(_("Choose either a material or a product for each line."))
        return cleaned

    def as_item(self):
        data = self.cleaned_data
        return {
            "material_id": data.get("materialId"),
            "product_id": data.get("productId"),
            "quantity": data["quantity"],
            "unit_price": data.get("unitPrice"),
            "notes": data.get("notes") or "",
        }


class InventoryTransactionForm(forms.Form):
    transactionType = forms.ChoiceField(choices=InventoryTransaction.TYPE_CHOICES)
    fromWarehouseId = forms.IntegerField(required=False, min_value=1)
    toWarehouseId = forms.IntegerField(required=False, min_value=1)
    notes = forms.CharField(required=False)

    def clean(self):
        cleaned = super().clean()
        transaction_type = cleaned.get("transactionType")
        from_id = cleaned.get("fromWarehouseId")
        to_id = cleaned.get("toWarehouseId")
        if transaction_type in (InventoryTransaction.XUAT, InventoryTransaction.CHUYEN) and not from_id:
            self.add_error("fromWarehouseId", _("Select a source warehouse."))
        if transaction_type in (InventoryTransaction.NHAP, InventoryTransaction.CHUYEN) and not to_id:
            self.add_error("toWarehouseId", _("Select a destination warehouse."))
        if transaction_type == InventoryTransaction.CHUYEN and from_id and from_id == to_id:
            self.add_error("toWarehouseId", _("From and To warehouses must be different."))
        return cleaned


class MaterialImportLineForm(forms.Form):
    materialId = forms.IntegerField(min_value=1)
    quantityPlanned = forms.DecimalField(required=False, max_digits=14, decimal_places=3, min_value=Decimal("0"))
    quantityActual = forms.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal("0"))

    def as_item(self):
        data = self.cleaned_data
        return {
            "material_id": data["materialId"],
            "quantity_planned": data.get("quantityPlanned") or Decimal("0"),
            "quantity_actual": data["quantityActual"],
        }


class FinishedGoodsLineForm(forms.Form):
    productId = forms.IntegerField(min_value=1)
    quantity = forms.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal("0"))

    def as_item(self):
        return {"product_id": self.cleaned_data["productId"], "quantity": self.cleaned_data["quantity"]}


class WarehouseForm(forms.Form):
    warehouseId = forms.IntegerField(min_value=1)


class AdvanceStepForm(forms.Form):
    nextStep = forms.ChoiceField(choices=ProductionOrder.STEP_CHOICES)
    warehouseId = forms.IntegerField(required=False, min_value=1)


class OrderLineForm(forms.Form):
    productId = forms.IntegerField(required=False, min_value=1)
    materialId = forms.IntegerField(required=False, min_value=1)
    quantity = forms.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal("0.001"))
    unitPrice = forms.DecimalField(max_digits=18, decimal_places=2, min_value=Decimal("0"))

    def as_item(self):
        data = self.cleaned_data
        return {
            "product_id": data.get("productId"),
            "material_id": data.get("materialId"),
            "quantity": data["quantity"],
            "unit_price": data["unitPrice"],
        }


class SalesOrderForm(forms.Form):
    customerId = forms.IntegerField(min_value=1)
    orderDate = forms.DateField(required=False)
    discountAmount = forms.DecimalField(required=False, max_digits=18, decimal_places=2, min_value=Decimal("0"))
    notes = forms.CharField(required=False)


class PurchaseOrderForm(forms.Form):
    supplierId = forms.IntegerField(min_value=1)
    orderDate = forms.DateField(required=False)
    notes = forms.CharField(required=False)
