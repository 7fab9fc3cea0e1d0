from decimal import Decimal

from django.contrib.auth.models import User
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

ZERO = Decimal("0.00")


class Branch(models.Model):
    name = models.CharField(max_length=150)
    code = models.CharField(max_length=50, unique=True)
    address = models.CharField(max_length=200, blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "branches"

    def __str__(self):
        return self.name


class CodeSequence(models.Model):
    """Monotonic counter per (prefix, scope); scope is the YYMMDD day for daily codes."""

    prefix = models.CharField(max_length=10)
    scope = models.CharField(max_length=10, blank=True, default="")
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "code_sequences"
        constraints = [
            models.UniqueConstraint(fields=["prefix", "scope"], name="uniq_code_sequence_prefix_scope"),
        ]

    def __str__(self):
        return f"{self.prefix}{self.scope}: {self.last_value}"

    @classmethod
    def next_value(cls, prefix, scope=""):
        with transaction.atomic():
            cls.objects.bulk_create([cls(prefix=prefix, scope=scope)], ignore_conflicts=True)
            counter = cls.objects.select_for_update().get(prefix=prefix, scope=scope)
            counter.last_value += 1
            counter.save(update_fields=["last_value"])
        return counter.last_value

    @classmethod
    def next_daily_code(cls, prefix, on_date=None, width=4):
        day = (on_date or timezone.localdate()).strftime("%y%m%d")
        return f"{prefix}{day}{cls.next_value(prefix, day):0{width}d}"

    @classmethod
    def next_code(cls, prefix, width=3):
        return f"{prefix}{cls.next_value(prefix):0{width}d}"


class Partner(models.Model):
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, null=True, blank=True, related_name="+")
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    phone = models.CharField(max_length=30, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    address = models.CharField(max_length=255, blank=True, default="")
    debt_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        abstract = True

    def __str__(self):
        return f"{self.code} - {self.name}"


class Customer(Partner):
    class Meta:
        db_table = "customers"


class Supplier(Partner):
    class Meta:
        db_table = "suppliers"


class BankAccount(models.Model):
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="bank_accounts")
    account_number = models.CharField(max_length=50, unique=True)
    account_holder = models.CharField(max_length=150)
    bank_name = models.CharField(max_length=150)
    branch_name = models.CharField(max_length=150, blank=True, default="")
    balance = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "bank_accounts"

    def __str__(self):
        return f"{self.bank_name} - {self.account_number}"


class Material(models.Model):
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="materials")
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    unit = models.CharField(max_length=20, blank=True, default="")
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "materials"
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} - {self.name}"


class Product(models.Model):
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="products")
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    unit = models.CharField(max_length=20, blank=True, default="")
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "products"
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} - {self.name}"


class BillOfMaterial(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="bill_of_materials")
    material = models.ForeignKey(Material, on_delete=models.PROTECT, related_name="used_in")
    quantity = models.DecimalField(max_digits=14, decimal_places=3)

    class Meta:
        db_table = "product_materials"
        constraints = [
            models.UniqueConstraint(fields=["product", "material"], name="uniq_bom_product_material"),
            models.CheckConstraint(condition=Q(quantity__gt=0), name="bom_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.product.code}: {self.quantity} x {self.material.code}"


PAYMENT_STATUS_CHOICES = [
    ("UNPAID", _("Unpaid")),
    ("PARTIAL", _("Partially paid")),
    ("PAID", _("Paid")),
]


class Order(models.Model):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PRODUCTION = "IN_PRODUCTION"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    STATUS_CHOICES = [
        (PENDING, _("Pending")),
        (CONFIRMED, _("Confirmed")),
        (IN_PRODUCTION, _("In production")),
        (COMPLETED, _("Completed")),
        (CANCELLED, _("Cancelled")),
    ]

    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, null=True, blank=True, related_name="orders")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="orders")
    order_code = models.CharField(max_length=30, unique=True)
    order_date = models.DateField(default=timezone.localdate)
    total_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    discount_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    final_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    paid_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUS_CHOICES, default="UNPAID")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "orders"
        constraints = [
            models.CheckConstraint(condition=Q(paid_amount__lte=models.F("final_amount")), name="order_paid_within_final"),
        ]

    @property
    def finance_amount(self):
        return self.final_amount

    @property
    def code(self):
        return self.order_code

    @property
    def remaining_amount(self):
        return self.final_amount - self.paid_amount

    def __str__(self):
        return self.order_code


class OrderDetail(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="order_lines")
    quantity = models.DecimalField(max_digits=14, decimal_places=3)
    unit_price = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    total_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    notes = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "order_details"

    def __str__(self):
        return f"{self.order.order_code}: {self.quantity} x {self.product.code}"


class PurchaseOrder(models.Model):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"
    STATUS_CHOICES = [
        (PENDING, _("Pending")),
        (CONFIRMED, _("Confirmed")),
        (RECEIVED, _("Received")),
        (CANCELLED, _("Cancelled")),
    ]

    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, null=True, blank=True, related_name="purchase_orders")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, related_name="purchase_orders")
    po_code = models.CharField(max_length=30, unique=True)
    order_date = models.DateField(default=timezone.localdate)
    total_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    paid_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUS_CHOICES, default="UNPAID")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "purchase_orders"
        constraints = [
            models.CheckConstraint(condition=Q(paid_amount__lte=models.F("total_amount")), name="po_paid_within_total"),
        ]

    # Purchase orders carry no discount; the payable baseline is the total.
    @property
    def finance_amount(self):
        return self.total_amount

    @property
    def code(self):
        return self.po_code

    @property
    def remaining_amount(self):
        return self.total_amount - self.paid_amount

    def __str__(self):
        return self.po_code


class PurchaseOrderDetail(models.Model):
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="lines")
    material = models.ForeignKey(Material, on_delete=models.PROTECT, related_name="purchase_lines")
    quantity = models.DecimalField(max_digits=14, decimal_places=3)
    unit_price = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)
    total_amount = models.DecimalField(max_digits=18, decimal_places=2, default=ZERO)

    class Meta:
        db_table = "purchase_order_details"

    def __str__(self):
        return f"{self.purchase_order.po_code}: {self.quantity} x {self.material.code}"


class DebtRecord(models.Model):
    RECEIVABLE = "RECEIVABLE"
    PAYABLE = "PAYABLE"
    DEBT_TYPE_CHOICES = [
        (RECEIVABLE, _("Receivable")),
        (PAYABLE, _("Payable")),
    ]
    ORDER = "ORDER"
    PURCHASE = "PURCHASE"
    REFERENCE_TYPE_CHOICES = [
        (ORDER, _("Sales order")),
        (PURCHASE, _("Purchase order")),
    ]
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    STATUS_CHOICES = [
        (PARTIAL, _("Partially paid")),
        (PAID, _("Paid")),
    ]

    debt_code = models.CharField(max_length=30, unique=True)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, null=True, blank=True, related_name="debts")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, null=True, blank=True, related_name="debts")
    debt_type = models.CharField(max_length=20, choices=DEBT_TYPE_CHOICES)
    reference_type = models.CharField(max_length=20, choices=REFERENCE_TYPE_CHOICES)
    reference_id = models.BigIntegerField()
    original_amount = models.DecimalField(max_digits=18, decimal_places=2)
    remaining_amount = models.DecimalField(max_digits=18, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=PARTIAL)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "debt_management"
        constraints = [
            models.UniqueConstraint(
                fields=["reference_id", "reference_type", "debt_type"],
                name="uniq_debt_per_reference",
            ),
            models.CheckConstraint(condition=Q(remaining_amount__gte=0), name="debt_remaining_non_negative"),
            models.CheckConstraint(
                condition=(Q(customer__isnull=False) & Q(supplier__isnull=True))
                | (Q(customer__isnull=True) & Q(supplier__isnull=False)),
                name="debt_single_partner",
            ),
        ]

    def __str__(self):
        return f"{self.debt_code} ({self.remaining_amount})"


class DebtPayment(models.Model):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    OTHER = "OTHER"
    PAYMENT_METHOD_CHOICES = [
        (CASH, _("Cash")),
        (BANK_TRANSFER, _("Bank transfer")),
        (CARD, _("Card")),
        (OTHER, _("Other")),
    ]

    debt = models.ForeignKey(DebtRecord, on_delete=models.PROTECT, related_name="payments")
    payment_amount = models.DecimalField(max_digits=18, decimal_places=2)
    payment_date = models.DateField()
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES)
    bank_account = models.ForeignKey(BankAccount, on_delete=models.PROTECT, null=True, blank=True, related_name="debt_payments")
    notes = models.CharField(max_length=255, blank=True, default="")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "debt_payments"
        ordering = ["payment_date", "id"]
        constraints = [
            models.CheckConstraint(condition=Q(payment_amount__gt=0), name="debt_payment_positive"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError(_("Debt payments are immutable once recorded."))
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(_("Debt payments cannot be deleted."))

    def __str__(self):
        return f"{self.debt.debt_code}: {self.payment_amount}"


class Warehouse(models.Model):
    NVL = "NVL"
    THANH_PHAM = "THANH_PHAM"
    HON_HOP = "HON_HOP"
    TYPE_CHOICES = [
        (NVL, _("Materials")),
        (THANH_PHAM, _("Finished goods")),
        (HON_HOP, _("Mixed")),
    ]

    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="warehouses")
    warehouse_code = models.CharField(max_length=30, unique=True)
    warehouse_name = models.CharField(max_length=150)
    warehouse_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    address = models.CharField(max_length=255, blank=True, default="")
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "warehouses"

    def accepts_materials(self):
        return self.warehouse_type in (self.NVL, self.HON_HOP)

    def accepts_products(self):
        return self.warehouse_type in (self.THANH_PHAM, self.HON_HOP)

    def save(self, *args, **kwargs):
        if not self.warehouse_code:
            self.warehouse_code = CodeSequence.next_code("KHO")
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.warehouse_code} - {self.warehouse_name}"


class InventoryBalance(models.Model):
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="balances")
    material = models.ForeignKey(Material, on_delete=models.PROTECT, null=True, blank=True, related_name="balances")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, null=True, blank=True, related_name="balances")
    quantity = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0.000"))
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "inventory_balances"
        constraints = [
            models.UniqueConstraint(
                fields=["warehouse", "material"],
                condition=Q(material__isnull=False),
                name="uniq_balance_warehouse_material",
            ),
            models.UniqueConstraint(
                fields=["warehouse", "product"],
                condition=Q(product__isnull=False),
                name="uniq_balance_warehouse_product",
            ),
            models.CheckConstraint(
                condition=(Q(material__isnull=False) & Q(product__isnull=True))
                | (Q(material__isnull=True) & Q(product__isnull=False)),
                name="balance_single_item",
            ),
            models.CheckConstraint(condition=Q(quantity__gte=0), name="balance_quantity_non_negative"),
        ]

    @property
    def item(self):
        return self.material or self.product

    def __str__(self):
        return f"{self.warehouse.warehouse_code} / {self.item}: {self.quantity}"


class ProductionOrder(models.Model):
    MATERIAL_IMPORT = "MATERIAL_IMPORT"
    CUTTING = "CUTTING"
    SEWING = "SEWING"
    FINISHING = "FINISHING"
    QC = "QC"
    WAREHOUSE_IMPORT = "WAREHOUSE_IMPORT"
    COMPLETED_STEP = "COMPLETED"
    STEPS = [MATERIAL_IMPORT, CUTTING, SEWING, FINISHING, QC, WAREHOUSE_IMPORT, COMPLETED_STEP]
    STEP_CHOICES = [
        (MATERIAL_IMPORT, _("Material import")),
        (CUTTING, _("Cutting")),
        (SEWING, _("Sewing")),
        (FINISHING, _("Finishing")),
        (QC, _("Quality control")),
        (WAREHOUSE_IMPORT, _("Warehouse import")),
        (COMPLETED_STEP, _("Completed")),
    ]
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    STATUS_CHOICES = [
        (PENDING, _("Pending")),
        (IN_PROGRESS, _("In progress")),
        (COMPLETED, _("Completed")),
    ]

    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="production_orders")
    production_code = models.CharField(max_length=30, unique=True)
    current_step = models.CharField(max_length=20, choices=STEP_CHOICES, default=MATERIAL_IMPORT)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "production_orders"

    @classmethod
    def step_index(cls, step):
        return cls.STEPS.index(step)

    def __str__(self):
        return self.production_code


class InventoryTransaction(models.Model):
    NHAP = "NHAP"
    XUAT = "XUAT"
    CHUYEN = "CHUYEN"
    TYPE_CHOICES = [
        (NHAP, _("Receipt")),
        (XUAT, _("Issue")),
        (CHUYEN, _("Transfer")),
    ]
    CODE_PREFIXES = {NHAP: "PN", XUAT: "PX", CHUYEN: "PC"}

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    STATUS_CHOICES = [
        (PENDING, _("Pending")),
        (APPROVED, _("Approved")),
        (REJECTED, _("Rejected")),
    ]
    TRANSITIONS = {
        PENDING: {APPROVED, REJECTED},
        APPROVED: set(),
        REJECTED: set(),
    }

    transaction_code = models.CharField(max_length=30, unique=True)
    transaction_type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=PENDING)
    from_warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, null=True, blank=True, related_name="outgoing_transactions"
    )
    to_warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, null=True, blank=True, related_name="incoming_transactions"
    )
    production_order = models.ForeignKey(
        ProductionOrder, on_delete=models.PROTECT, null=True, blank=True, related_name="inventory_transactions"
    )
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "inventory_transactions"
        ordering = ["-created_at", "-id"]

    def can_transition_to(self, status):
        return status in self.TRANSITIONS.get(self.status, set())

    def __str__(self):
        return self.transaction_code


class InventoryTransactionDetail(models.Model):
    transaction = models.ForeignKey(InventoryTransaction, on_delete=models.CASCADE, related_name="details")
    material = models.ForeignKey(Material, on_delete=models.PROTECT, null=True, blank=True, related_name="+")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, null=True, blank=True, related_name="+")
    quantity = models.DecimalField(max_digits=14, decimal_places=3)
    unit_price = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)
    total_amount = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)
    notes = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "inventory_transaction_details"
        constraints = [
            models.CheckConstraint(
                condition=(Q(material__isnull=False) & Q(product__isnull=True))
                | (Q(material__isnull=True) & Q(product__isnull=False)),
                name="transaction_detail_single_item",
            ),
            models.CheckConstraint(condition=Q(quantity__gt=0), name="transaction_detail_quantity_positive"),
        ]

    @property
    def item(self):
        return self.material or self.product

    def __str__(self):
        return f"{self.transaction.transaction_code}: {self.quantity} x {self.item}"


class ProductionMaterialRequest(models.Model):
    production_order = models.ForeignKey(ProductionOrder, on_delete=models.CASCADE, related_name="material_requests")
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="+")
    inventory_transaction = models.OneToOneField(
        InventoryTransaction, on_delete=models.PROTECT, null=True, blank=True, related_name="material_request"
    )
    status = models.CharField(max_length=20, default="CONFIRMED")
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "production_material_requests"

    def __str__(self):
        return f"{self.production_order.production_code} @ {self.warehouse.warehouse_code}"


class ProductionMaterialRequestDetail(models.Model):
    request = models.ForeignKey(ProductionMaterialRequest, on_delete=models.CASCADE, related_name="details")
    material = models.ForeignKey(Material, on_delete=models.PROTECT, related_name="+")
    quantity_planned = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0.000"))
    quantity_actual = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0.000"))

    class Meta:
        db_table = "production_material_request_details"

    def __str__(self):
        return f"{self.material.code}: {self.quantity_actual}/{self.quantity_planned}"
