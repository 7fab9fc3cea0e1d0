import json
import re
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib import admin
from django.contrib.auth.models import User
from django.core.exceptions import ValidationError as ModelValidationError
from django.core.management import call_command
from django.db import connection
from django.test import Client, RequestFactory, TestCase
from django.test.utils import CaptureQueriesContext
from django.urls import reverse
from django.utils import timezone

from . import inventory
from .admin import InventoryTransactionDetailInline
from .amounts import money, quantity
from .debts import partner_debt_summary, payment_status_for, post_order_debt, settle_payment
from .exceptions import ConflictError, NotFoundError, ValidationError
from .inventory import approve_transaction, create_transaction, reject_transaction, warehouse_balance
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
    Material,
    Order,
    Product,
    ProductionOrder,
    PurchaseOrder,
    Supplier,
    Warehouse,
)
from .orders import cancel_order, create_purchase_order, create_sales_order
from .production import (
    advance_step,
    create_production_order,
    material_requirements,
    record_finished_goods_receipt,
    record_material_import,
)


def make_order(customer, final_amount, code, created_at=None):
    order = Order.objects.create(
        customer=customer,
        order_code=code,
        total_amount=Decimal(final_amount),
        final_amount=Decimal(final_amount),
        created_at=created_at or timezone.now(),
    )
    post_order_debt(order)
    return order


def balance_of(warehouse, material=None, product=None):
    row = InventoryBalance.objects.filter(warehouse=warehouse, material=material, product=product).first()
    return row.quantity if row else Decimal("0")


class AmountHelperTests(TestCase):
    def test_money_and_quantity_round_half_up(self):
        self.assertEqual(money("10.005"), Decimal("10.01"))
        self.assertEqual(quantity("1.0005"), Decimal("1.001"))
        self.assertEqual(money(None), Decimal("0.00"))

    def test_invalid_amount_raises(self):
        with self.assertRaises(ValueError):
            money("abc")

    def test_payment_status(self):
        self.assertEqual(payment_status_for(Decimal("0"), Decimal("100")), "UNPAID")
        self.assertEqual(payment_status_for(Decimal("40"), Decimal("100")), "PARTIAL")
        self.assertEqual(payment_status_for(Decimal("100"), Decimal("100")), "PAID")


class CodeSequenceTests(TestCase):
    def test_daily_code_format_and_increment(self):
        day = date(2024, 3, 5)
        self.assertEqual(CodeSequence.next_daily_code("PN", day), "PN2403050001")
        self.assertEqual(CodeSequence.next_daily_code("PN", day), "PN2403050002")
        self.assertEqual(CodeSequence.next_daily_code("PX", day), "PX2403050001")

    def test_counter_restarts_each_day(self):
        CodeSequence.next_daily_code("DH", date(2024, 3, 5))
        self.assertEqual(CodeSequence.next_daily_code("DH", date(2024, 3, 6)), "DH2403060001")

    def test_warehouse_code_generated(self):
        branch = Branch.objects.create(name="HQ", code="HQ")
        first = Warehouse.objects.create(branch=branch, warehouse_name="A", warehouse_type=Warehouse.NVL)
        second = Warehouse.objects.create(branch=branch, warehouse_name="B", warehouse_type=Warehouse.NVL)
        self.assertEqual(first.warehouse_code, "KHO001")
        self.assertEqual(second.warehouse_code, "KHO002")


class DebtSettlementTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cashier", password="pass123")
        self.branch = Branch.objects.create(name="HQ", code="HQ")
        self.customer = Customer.objects.create(code="KH001", name="Cong ty A", branch=self.branch)
        self.bank = BankAccount.objects.create(
            branch=self.branch,
            account_number="0011001",
            account_holder="Xuong May",
            bank_name="VCB",
            balance=Decimal("1000000.00"),
        )

    def settle(self, amount, **kwargs):
        params = {
            "partner_id": self.customer.pk,
            "partner_type": "customer",
            "amount": Decimal(amount),
            "payment_date": date(2024, 5, 1),
            "payment_method": DebtPayment.CASH,
            "user": self.user,
        }
        params.update(kwargs)
        return settle_payment(**params)

    def test_single_order_partial_payment(self):
        order = make_order(self.customer, "1000000", "DH2405010001")
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.debt_amount, Decimal("1000000.00"))

        result = self.settle("400000")

        order.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(order.paid_amount, Decimal("400000.00"))
        self.assertEqual(order.payment_status, "PARTIAL")
        self.assertEqual(self.customer.debt_amount, Decimal("600000.00"))
        self.assertEqual(DebtPayment.objects.count(), 1)
        self.assertEqual(DebtPayment.objects.get().payment_amount, Decimal("400000.00"))
        self.assertEqual(result.orders_updated, 1)
        self.assertEqual(result.total_applied, Decimal("400000.00"))

    def test_fifo_pays_oldest_order_first(self):
        now = timezone.now()
        # Newer order gets the lower id so ordering must come from created_at.
        newer = make_order(self.customer, "50", "DH-NEW", created_at=now)
        older = make_order(self.customer, "100", "DH-OLD", created_at=now - timedelta(days=3))

        result = self.settle("120")

        older.refresh_from_db()
        newer.refresh_from_db()
        self.assertEqual(older.remaining_amount, Decimal("0.00"))
        self.assertEqual(older.payment_status, "PAID")
        self.assertEqual(newer.remaining_amount, Decimal("30.00"))
        self.assertEqual(newer.payment_status, "PARTIAL")
        self.assertEqual([line.order_id for line in result.details], [older.pk, newer.pk])

    def test_paid_never_exceeds_final_and_debt_never_negative(self):
        first = make_order(self.customer, "100", "DH1")
        second = make_order(self.customer, "80", "DH2")

        self.settle("100")
        self.settle("80")

        for order in (first, second):
            order.refresh_from_db()
            self.assertLessEqual(order.paid_amount, order.final_amount)
        for debt in DebtRecord.objects.all():
            self.assertGreaterEqual(debt.remaining_amount, Decimal("0"))
            self.assertEqual(debt.status, DebtRecord.PAID)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.debt_amount, Decimal("0.00"))

    def test_overpayment_is_rejected_without_writes(self):
        order = make_order(self.customer, "150", "DH1")

        with self.assertRaises(ValidationError) as ctx:
            self.settle("200")

        self.assertEqual(ctx.exception.details["open_debt"], "150.00")
        order.refresh_from_db()
        self.assertEqual(order.paid_amount, Decimal("0.00"))
        self.assertFalse(DebtPayment.objects.exists())
        self.assertFalse(DebtRecord.objects.exists())

    def test_target_order_only(self):
        now = timezone.now()
        older = make_order(self.customer, "100", "DH1", created_at=now - timedelta(days=1))
        newer = make_order(self.customer, "100", "DH2", created_at=now)

        self.settle("60", order_id=newer.pk)

        older.refresh_from_db()
        newer.refresh_from_db()
        self.assertEqual(older.paid_amount, Decimal("0.00"))
        self.assertEqual(newer.paid_amount, Decimal("60.00"))

    def test_target_order_of_other_partner_not_found(self):
        other = Customer.objects.create(code="KH002", name="Cong ty B")
        foreign = make_order(other, "100", "DH9")
        make_order(self.customer, "100", "DH1")

        with self.assertRaises(NotFoundError):
            self.settle("10", order_id=foreign.pk)

    def test_cancelled_orders_are_skipped(self):
        cancelled = make_order(self.customer, "100", "DH1", created_at=timezone.now() - timedelta(days=2))
        cancel_order(cancelled)
        open_order = make_order(self.customer, "100", "DH2")

        result = self.settle("50")

        self.assertEqual([line.order_id for line in result.details], [open_order.pk])

    def test_no_open_orders(self):
        with self.assertRaises(NotFoundError):
            self.settle("10")

    def test_invalid_input(self):
        make_order(self.customer, "100", "DH1")
        with self.assertRaises(ValidationError):
            self.settle("0")
        with self.assertRaises(ValidationError):
            self.settle("10", partner_type="employee")
        with self.assertRaises(NotFoundError):
            self.settle("10", partner_id=999999)
        with self.assertRaises(NotFoundError):
            self.settle("10", bank_account_id=999999)

    def test_debt_record_reused_across_settlements(self):
        order = make_order(self.customer, "100", "DH1")

        self.settle("30")
        self.settle("20")

        self.assertEqual(DebtRecord.objects.count(), 1)
        debt = DebtRecord.objects.get()
        self.assertEqual(debt.reference_id, order.pk)
        self.assertEqual(debt.debt_type, DebtRecord.RECEIVABLE)
        self.assertEqual(debt.original_amount, Decimal("100.00"))
        self.assertEqual(debt.remaining_amount, Decimal("50.00"))
        self.assertEqual(debt.payments.count(), 2)

    def test_customer_payment_increases_bank_balance(self):
        make_order(self.customer, "500", "DH1")

        self.settle("200", payment_method=DebtPayment.BANK_TRANSFER, bank_account_id=self.bank.pk)

        self.bank.refresh_from_db()
        self.assertEqual(self.bank.balance, Decimal("1000200.00"))
        self.assertEqual(DebtPayment.objects.get().bank_account, self.bank)

    def test_supplier_payment_decreases_bank_balance(self):
        material = Material.objects.create(branch=self.branch, code="V01", name="Vai cotton", unit="m")
        supplier = Supplier.objects.create(code="NCC01", name="Det May B")
        purchase_order = create_purchase_order(
            supplier=supplier,
            items=[{"material_id": material.pk, "quantity": "100", "unit_price": "5"}],
        )
        supplier.refresh_from_db()
        self.assertEqual(supplier.debt_amount, Decimal("500.00"))

        settle_payment(
            partner_id=supplier.pk,
            partner_type="supplier",
            amount=Decimal("200"),
            payment_date=date(2024, 5, 1),
            payment_method=DebtPayment.BANK_TRANSFER,
            bank_account_id=self.bank.pk,
        )

        purchase_order.refresh_from_db()
        supplier.refresh_from_db()
        self.bank.refresh_from_db()
        self.assertEqual(purchase_order.paid_amount, Decimal("200.00"))
        self.assertEqual(purchase_order.payment_status, "PARTIAL")
        self.assertEqual(supplier.debt_amount, Decimal("300.00"))
        self.assertEqual(self.bank.balance, Decimal("999800.00"))
        self.assertEqual(DebtRecord.objects.get().debt_type, DebtRecord.PAYABLE)

    def test_payments_are_immutable(self):
        make_order(self.customer, "100", "DH1")
        other_customer = Customer.objects.create(code="KH002", name="Cong ty B")
        make_order(other_customer, "100", "DH2")
        self.settle("40")
        payment = DebtPayment.objects.get()
        snapshot = (payment.payment_amount, payment.payment_date, payment.payment_method, payment.debt_id)

        self.settle("50", partner_id=other_customer.pk)
        self.settle("10")

        payment.refresh_from_db()
        self.assertEqual(
            (payment.payment_amount, payment.payment_date, payment.payment_method, payment.debt_id),
            snapshot,
        )
        payment.notes = "edited"
        with self.assertRaises(ModelValidationError):
            payment.save()
        with self.assertRaises(ModelValidationError):
            payment.delete()
        self.assertEqual(DebtPayment.objects.count(), 3)

    def test_partner_debt_summary(self):
        make_order(self.customer, "100", "DH1")
        make_order(self.customer, "50", "DH2")
        self.settle("100")

        summary = partner_debt_summary("customer", self.customer.pk)

        self.assertEqual(summary["totalAmount"], Decimal("150.00"))
        self.assertEqual(summary["totalPaid"], Decimal("100.00"))
        self.assertEqual(summary["totalRemaining"], Decimal("50.00"))
        self.assertEqual([o["orderCode"] for o in summary["openOrders"]], ["DH2"])
        self.assertEqual(len(summary["payments"]), 1)


class OrderTests(TestCase):
    def setUp(self):
        self.branch = Branch.objects.create(name="HQ", code="HQ")
        self.customer = Customer.objects.create(code="KH001", name="Cong ty A", branch=self.branch)
        self.product = Product.objects.create(branch=self.branch, code="SP01", name="Ao so mi", unit="cai")

    def test_create_sales_order_posts_debt(self):
        order = create_sales_order(
            customer=self.customer,
            items=[{"product_id": self.product.pk, "quantity": "10", "unit_price": "120000"}],
            discount_amount=Decimal("200000"),
        )

        self.assertTrue(re.match(r"^DH\d{6}0001$", order.order_code))
        self.assertEqual(order.total_amount, Decimal("1200000.00"))
        self.assertEqual(order.final_amount, Decimal("1000000.00"))
        self.assertEqual(order.lines.count(), 1)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.debt_amount, Decimal("1000000.00"))

    def test_discount_larger_than_total_rejected(self):
        with self.assertRaises(ValidationError):
            create_sales_order(
                customer=self.customer,
                items=[{"product_id": self.product.pk, "quantity": "1", "unit_price": "100"}],
                discount_amount=Decimal("200"),
            )

    def test_cancel_locks_partner_before_order(self):
        order = create_sales_order(
            customer=self.customer,
            items=[{"product_id": self.product.pk, "quantity": "1", "unit_price": "100"}],
        )

        with CaptureQueriesContext(connection) as ctx:
            cancel_order(order)

        sql = [q["sql"] for q in ctx.captured_queries]
        first_customer = next(i for i, s in enumerate(sql) if 'FROM "customers"' in s)
        first_order = next(i for i, s in enumerate(sql) if 'FROM "orders"' in s)
        self.assertLess(first_customer, first_order)

    def test_string_ids_are_accepted(self):
        order = create_sales_order(
            customer=self.customer,
            items=[{"product_id": str(self.product.pk), "quantity": "2", "unit_price": "50"}],
        )
        self.assertEqual(order.lines.get().product, self.product)

        with self.assertRaises(ValidationError):
            create_sales_order(
                customer=self.customer,
                items=[{"product_id": "abc", "quantity": "1", "unit_price": "50"}],
            )

    def test_cancel_releases_debt(self):
        order = create_sales_order(
            customer=self.customer,
            items=[{"product_id": self.product.pk, "quantity": "1", "unit_price": "100"}],
        )
        cancel_order(order)

        order.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(order.status, Order.CANCELLED)
        self.assertEqual(self.customer.debt_amount, Decimal("0.00"))
        with self.assertRaises(ConflictError):
            cancel_order(order)

    def test_cannot_cancel_paid_order(self):
        order = create_sales_order(
            customer=self.customer,
            items=[{"product_id": self.product.pk, "quantity": "1", "unit_price": "100"}],
        )
        settle_payment(
            partner_id=self.customer.pk,
            partner_type="customer",
            amount=Decimal("10"),
            payment_date=date(2024, 5, 1),
            payment_method=DebtPayment.CASH,
        )
        with self.assertRaises(ConflictError):
            cancel_order(order)


class InventoryTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="thukho", password="pass123")
        self.branch = Branch.objects.create(name="HQ", code="HQ")
        self.m1 = Material.objects.create(branch=self.branch, code="M1", name="Vai kaki", unit="m")
        self.product = Product.objects.create(branch=self.branch, code="SP01", name="Quan kaki", unit="cai")
        self.nvl = Warehouse.objects.create(branch=self.branch, warehouse_name="Kho NVL", warehouse_type=Warehouse.NVL)
        self.mixed = Warehouse.objects.create(
            branch=self.branch, warehouse_name="Kho tong", warehouse_type=Warehouse.HON_HOP
        )
        self.finished = Warehouse.objects.create(
            branch=self.branch, warehouse_name="Kho TP", warehouse_type=Warehouse.THANH_PHAM
        )
        InventoryBalance.objects.create(warehouse=self.nvl, material=self.m1, quantity=Decimal("50"))

    def issue(self, qty, warehouse=None, material_id=None):
        return create_transaction(
            transaction_type=InventoryTransaction.XUAT,
            items=[{"material_id": material_id or self.m1.pk, "quantity": qty}],
            from_warehouse_id=(warehouse or self.nvl).pk,
            user=self.user,
        )

    def test_issue_above_balance_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.issue("60")

        self.assertEqual(ctx.exception.details["available"], "50.000")
        self.assertFalse(InventoryTransaction.objects.exists())
        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("50"))

    def test_duplicate_lines_are_summed_for_feasibility(self):
        with self.assertRaises(ValidationError):
            create_transaction(
                transaction_type=InventoryTransaction.XUAT,
                items=[
                    {"material_id": self.m1.pk, "quantity": "30"},
                    {"material_id": self.m1.pk, "quantity": "30"},
                ],
                from_warehouse_id=self.nvl.pk,
            )

    def test_issue_pending_then_approved(self):
        txn = self.issue("30")

        self.assertEqual(txn.status, InventoryTransaction.PENDING)
        self.assertTrue(re.match(r"^PX\d{6}\d{4}$", txn.transaction_code))
        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("50"))

        approved = approve_transaction(txn.pk, user=self.user)

        self.assertEqual(approved.status, InventoryTransaction.APPROVED)
        self.assertEqual(approved.approved_by, self.user)
        self.assertIsNotNone(approved.approved_at)
        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("20"))

    def test_receipt_creates_balance_row(self):
        txn = create_transaction(
            transaction_type=InventoryTransaction.NHAP,
            items=[{"product_id": self.product.pk, "quantity": "12", "unit_price": "90000"}],
            to_warehouse_id=self.finished.pk,
        )
        self.assertTrue(txn.transaction_code.startswith("PN"))
        self.assertEqual(txn.details.get().total_amount, Decimal("1080000.00"))
        approve_transaction(txn.pk)
        self.assertEqual(balance_of(self.finished, product=self.product), Decimal("12"))

    def test_string_item_ids(self):
        txn = self.issue("5", material_id=str(self.m1.pk))
        self.assertEqual(txn.details.get().material, self.m1)

        with self.assertRaises(ValidationError):
            self.issue("5", material_id="M1")

    def test_transfer_destination_must_accept_item(self):
        with self.assertRaises(ValidationError):
            create_transaction(
                transaction_type=InventoryTransaction.CHUYEN,
                items=[{"material_id": self.m1.pk, "quantity": "10"}],
                from_warehouse_id=self.nvl.pk,
                to_warehouse_id=self.finished.pk,
            )
        self.assertFalse(InventoryTransaction.objects.exists())

    def test_items_from_another_branch_rejected(self):
        other_branch = Branch.objects.create(name="Chi nhanh 2", code="CN2")
        foreign = Material.objects.create(branch=other_branch, code="M9", name="Vai jean", unit="m")

        with self.assertRaises(ValidationError) as ctx:
            create_transaction(
                transaction_type=InventoryTransaction.NHAP,
                items=[{"material_id": foreign.pk, "quantity": "7"}],
                to_warehouse_id=self.nvl.pk,
            )
        self.assertEqual(ctx.exception.details["item_branch_id"], other_branch.pk)

    def test_snapshot_modes_agree_on_stocked_items(self):
        other_branch = Branch.objects.create(name="Chi nhanh 2", code="CN2")
        foreign = Material.objects.create(branch=other_branch, code="M9", name="Vai jean", unit="m")
        InventoryBalance.objects.create(warehouse=self.nvl, material=foreign, quantity=Decimal("7"))

        full = {row["itemCode"]: row["quantity"] for row in warehouse_balance(self.nvl.pk)["details"]}
        stocked = {
            row["itemCode"]: row["quantity"] for row in warehouse_balance(self.nvl.pk, show_all=False)["details"]
        }

        self.assertEqual(stocked, {"M1": Decimal("50.000"), "M9": Decimal("7.000")})
        for code, qty in stocked.items():
            self.assertEqual(full[code], qty)

    def test_terminal_states_reject_further_transitions(self):
        txn = self.issue("10")
        approve_transaction(txn.pk)

        with self.assertRaises(ConflictError):
            approve_transaction(txn.pk)
        with self.assertRaises(ConflictError):
            reject_transaction(txn.pk)
        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("40"))

        rejected = reject_transaction(self.issue("5").pk)
        self.assertEqual(rejected.status, InventoryTransaction.REJECTED)
        with self.assertRaises(ConflictError):
            approve_transaction(rejected.pk)
        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("40"))

    def test_unknown_transaction(self):
        with self.assertRaises(NotFoundError):
            approve_transaction(999999)

    def test_transfer_moves_quantity(self):
        txn = create_transaction(
            transaction_type=InventoryTransaction.CHUYEN,
            items=[{"material_id": self.m1.pk, "quantity": "20"}],
            from_warehouse_id=self.nvl.pk,
            to_warehouse_id=self.mixed.pk,
        )
        self.assertTrue(txn.transaction_code.startswith("PC"))

        approve_transaction(txn.pk)

        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("30"))
        self.assertEqual(balance_of(self.mixed, material=self.m1), Decimal("20"))

    def test_transfer_is_all_or_nothing(self):
        txn = create_transaction(
            transaction_type=InventoryTransaction.CHUYEN,
            items=[{"material_id": self.m1.pk, "quantity": "20"}],
            from_warehouse_id=self.nvl.pk,
            to_warehouse_id=self.mixed.pk,
        )
        real_apply = inventory._apply_delta
        calls = []

        def fail_on_second(*args):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("connection lost")
            return real_apply(*args)

        with mock.patch("erp.inventory._apply_delta", side_effect=fail_on_second):
            with self.assertRaises(RuntimeError):
                approve_transaction(txn.pk)

        self.assertEqual(len(calls), 2)
        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("50"))
        self.assertEqual(balance_of(self.mixed, material=self.m1), Decimal("0"))
        txn.refresh_from_db()
        self.assertEqual(txn.status, InventoryTransaction.PENDING)

    def test_approval_revalidates_stock(self):
        first = self.issue("30")
        second = self.issue("30")

        approve_transaction(first.pk)
        with self.assertRaises(ValidationError):
            approve_transaction(second.pk)

        second.refresh_from_db()
        self.assertEqual(second.status, InventoryTransaction.PENDING)
        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("20"))

    def test_warehouse_type_rules(self):
        with self.assertRaises(ValidationError):
            create_transaction(
                transaction_type=InventoryTransaction.NHAP,
                items=[{"product_id": self.product.pk, "quantity": "1"}],
                to_warehouse_id=self.nvl.pk,
            )
        with self.assertRaises(ValidationError):
            create_transaction(
                transaction_type=InventoryTransaction.NHAP,
                items=[{"material_id": self.m1.pk, "quantity": "1"}],
                to_warehouse_id=self.finished.pk,
            )
        txn = create_transaction(
            transaction_type=InventoryTransaction.NHAP,
            items=[{"material_id": self.m1.pk, "quantity": "1"}, {"product_id": self.product.pk, "quantity": "1"}],
            to_warehouse_id=self.mixed.pk,
        )
        self.assertEqual(txn.details.count(), 2)

    def test_header_rules(self):
        with self.assertRaises(ValidationError):
            create_transaction(
                transaction_type=InventoryTransaction.CHUYEN,
                items=[{"material_id": self.m1.pk, "quantity": "1"}],
                from_warehouse_id=self.nvl.pk,
                to_warehouse_id=self.nvl.pk,
            )
        with self.assertRaises(ValidationError):
            create_transaction(
                transaction_type=InventoryTransaction.XUAT,
                items=[{"material_id": self.m1.pk, "quantity": "1"}],
            )
        with self.assertRaises(ValidationError):
            create_transaction(transaction_type="KIEMKE", items=[{"material_id": self.m1.pk, "quantity": "1"}])
        with self.assertRaises(NotFoundError):
            create_transaction(
                transaction_type=InventoryTransaction.NHAP,
                items=[{"material_id": self.m1.pk, "quantity": "1"}],
                to_warehouse_id=999999,
            )
        with self.assertRaises(ValidationError):
            self.issue("0")

    def test_warehouse_balance_snapshot(self):
        Material.objects.create(branch=self.branch, code="M2", name="Chi may", unit="cuon")

        full = warehouse_balance(self.nvl.pk)
        stocked = warehouse_balance(self.nvl.pk, show_all=False)

        self.assertEqual(full["warehouse"]["warehouseCode"], self.nvl.warehouse_code)
        self.assertEqual(len(full["details"]), 2)
        self.assertEqual(
            {row["itemCode"]: row["quantity"] for row in full["details"]},
            {"M1": Decimal("50.000"), "M2": Decimal("0.000")},
        )
        self.assertEqual([row["itemCode"] for row in stocked["details"]], ["M1"])


class ProductionTests(TestCase):
    def setUp(self):
        self.branch = Branch.objects.create(name="HQ", code="HQ")
        self.customer = Customer.objects.create(code="KH001", name="Cong ty A")
        self.fabric = Material.objects.create(branch=self.branch, code="M1", name="Vai", unit="m")
        self.button = Material.objects.create(branch=self.branch, code="M2", name="Nut", unit="cai")
        self.shirt = Product.objects.create(branch=self.branch, code="SP01", name="Ao", unit="cai")
        self.pants = Product.objects.create(branch=self.branch, code="SP02", name="Quan", unit="cai")
        BillOfMaterial.objects.create(product=self.shirt, material=self.fabric, quantity=Decimal("2"))
        BillOfMaterial.objects.create(product=self.shirt, material=self.button, quantity=Decimal("0.5"))
        BillOfMaterial.objects.create(product=self.pants, material=self.fabric, quantity=Decimal("1"))
        self.order = create_sales_order(
            customer=self.customer,
            items=[
                {"product_id": self.shirt.pk, "quantity": "10", "unit_price": "100"},
                {"product_id": self.pants.pk, "quantity": "5", "unit_price": "80"},
            ],
        )
        self.nvl = Warehouse.objects.create(branch=self.branch, warehouse_name="Kho NVL", warehouse_type=Warehouse.NVL)
        self.finished = Warehouse.objects.create(
            branch=self.branch, warehouse_name="Kho TP", warehouse_type=Warehouse.THANH_PHAM
        )
        InventoryBalance.objects.create(warehouse=self.nvl, material=self.fabric, quantity=Decimal("30"))
        InventoryBalance.objects.create(warehouse=self.nvl, material=self.button, quantity=Decimal("10"))
        self.production_order = create_production_order(self.order)

    def test_create_production_order(self):
        self.assertTrue(self.production_order.production_code.startswith("SX"))
        self.assertEqual(self.production_order.current_step, ProductionOrder.MATERIAL_IMPORT)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.IN_PRODUCTION)

    def test_material_requirements(self):
        requirements = material_requirements(self.production_order)

        self.assertEqual(
            [(r.material_code, r.quantity_planned) for r in requirements],
            [("M1", Decimal("25.000")), ("M2", Decimal("5.000"))],
        )

    def test_leaving_material_import_issues_planned_materials(self):
        production_order, txn = advance_step(
            self.production_order.pk, ProductionOrder.CUTTING, warehouse_id=self.nvl.pk
        )

        self.assertEqual(production_order.current_step, ProductionOrder.CUTTING)
        self.assertEqual(production_order.status, ProductionOrder.IN_PROGRESS)
        self.assertEqual(txn.transaction_type, InventoryTransaction.XUAT)
        self.assertEqual(txn.status, InventoryTransaction.PENDING)
        self.assertEqual(txn.production_order, production_order)
        self.assertEqual(txn.material_request.details.count(), 2)
        self.assertEqual(balance_of(self.nvl, material=self.fabric), Decimal("30"))

    def test_material_import_needs_warehouse(self):
        with self.assertRaises(ValidationError):
            advance_step(self.production_order.pk, ProductionOrder.CUTTING)
        self.production_order.refresh_from_db()
        self.assertEqual(self.production_order.current_step, ProductionOrder.MATERIAL_IMPORT)

    def test_explicit_material_import_then_advance(self):
        txn = record_material_import(
            self.production_order.pk,
            self.nvl.pk,
            items=[{"material_id": self.fabric.pk, "quantity_planned": Decimal("25"), "quantity_actual": Decimal("26")}],
        )
        self.assertEqual(txn.details.get().quantity, Decimal("26.000"))

        _, second = advance_step(self.production_order.pk, ProductionOrder.CUTTING, warehouse_id=self.nvl.pk)
        self.assertIsNone(second)
        self.assertEqual(self.production_order.inventory_transactions.count(), 1)

    def test_steps_only_move_forward(self):
        advance_step(self.production_order.pk, ProductionOrder.CUTTING, warehouse_id=self.nvl.pk)

        with self.assertRaises(ConflictError):
            advance_step(self.production_order.pk, ProductionOrder.MATERIAL_IMPORT)
        with self.assertRaises(ConflictError):
            advance_step(self.production_order.pk, ProductionOrder.CUTTING)
        with self.assertRaises(ConflictError):
            advance_step(self.production_order.pk, ProductionOrder.COMPLETED_STEP, warehouse_id=self.finished.pk)
        with self.assertRaises(ValidationError):
            advance_step(self.production_order.pk, "PACKING")
        with self.assertRaises(ConflictError):
            record_material_import(self.production_order.pk, self.nvl.pk)

    def test_products_without_bom_still_advance(self):
        scarf = Product.objects.create(branch=self.branch, code="SP03", name="Khan", unit="cai")
        order = create_sales_order(
            customer=self.customer,
            items=[{"product_id": scarf.pk, "quantity": "4", "unit_price": "30"}],
        )
        production_order = create_production_order(order)

        advanced, txn = advance_step(production_order.pk, ProductionOrder.CUTTING, warehouse_id=self.nvl.pk)

        self.assertIsNone(txn)
        self.assertEqual(advanced.current_step, ProductionOrder.CUTTING)
        self.assertEqual(advanced.status, ProductionOrder.IN_PROGRESS)
        self.assertFalse(advanced.inventory_transactions.exists())

    def test_production_only_starts_from_open_orders(self):
        with self.assertRaises(ConflictError):
            create_production_order(self.order)

        completed = create_sales_order(
            customer=self.customer,
            items=[{"product_id": self.shirt.pk, "quantity": "1", "unit_price": "100"}],
        )
        Order.objects.filter(pk=completed.pk).update(status=Order.COMPLETED)
        with self.assertRaises(ConflictError):
            create_production_order(completed)
        completed.refresh_from_db()
        self.assertEqual(completed.status, Order.COMPLETED)

    def test_explicit_finished_goods_receipt(self):
        with self.assertRaises(ConflictError):
            record_finished_goods_receipt(self.production_order.pk, self.finished.pk)

        advance_step(self.production_order.pk, ProductionOrder.WAREHOUSE_IMPORT, warehouse_id=self.nvl.pk)
        txn = record_finished_goods_receipt(
            self.production_order.pk,
            self.finished.pk,
            items=[{"product_id": self.shirt.pk, "quantity": Decimal("8")}],
        )

        self.assertEqual(txn.transaction_type, InventoryTransaction.NHAP)
        self.assertEqual(txn.to_warehouse, self.finished)
        self.assertEqual([(d.product_id, d.quantity) for d in txn.details.all()], [(self.shirt.pk, Decimal("8.000"))])
        self.production_order.refresh_from_db()
        self.assertEqual(self.production_order.status, ProductionOrder.COMPLETED)

    def test_completion_receives_finished_goods(self):
        advance_step(self.production_order.pk, ProductionOrder.SEWING, warehouse_id=self.nvl.pk)
        advance_step(self.production_order.pk, ProductionOrder.WAREHOUSE_IMPORT)

        production_order, txn = advance_step(
            self.production_order.pk, ProductionOrder.COMPLETED_STEP, warehouse_id=self.finished.pk
        )

        self.assertEqual(production_order.status, ProductionOrder.COMPLETED)
        self.assertEqual(production_order.current_step, ProductionOrder.COMPLETED_STEP)
        self.assertIsNotNone(production_order.end_date)
        self.assertEqual(txn.transaction_type, InventoryTransaction.NHAP)
        self.assertEqual(
            {d.product_id: d.quantity for d in txn.details.all()},
            {self.shirt.pk: Decimal("10.000"), self.pants.pk: Decimal("5.000")},
        )
        self.assertEqual(production_order.inventory_transactions.count(), 2)
        with self.assertRaises(ConflictError):
            advance_step(self.production_order.pk, ProductionOrder.COMPLETED_STEP, warehouse_id=self.finished.pk)


class RecalculateDebtsCommandTests(TestCase):
    def test_rebuilds_debt_amount(self):
        customer = Customer.objects.create(code="KH001", name="Cong ty A")
        make_order(customer, "300", "DH1")
        cancelled = make_order(customer, "100", "DH2")
        cancel_order(cancelled)
        Customer.objects.filter(pk=customer.pk).update(debt_amount=Decimal("999"))
        out = StringIO()

        call_command("recalculate_debts", stdout=out)

        customer.refresh_from_db()
        self.assertEqual(customer.debt_amount, Decimal("300.00"))
        self.assertIn("KH001", out.getvalue())


class ApiTests(TestCase):
    def setUp(self):
        self.client = Client()
        self.branch = Branch.objects.create(name="HQ", code="HQ")
        self.customer = Customer.objects.create(code="KH001", name="Cong ty A")
        self.m1 = Material.objects.create(branch=self.branch, code="M1", name="Vai", unit="m")
        self.nvl = Warehouse.objects.create(branch=self.branch, warehouse_name="Kho NVL", warehouse_type=Warehouse.NVL)
        InventoryBalance.objects.create(warehouse=self.nvl, material=self.m1, quantity=Decimal("50"))

    def post(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")

    def test_settle_payment_endpoint(self):
        make_order(self.customer, "1000000", "DH1")
        url = reverse("erp:partner-payment", args=[self.customer.pk])

        response = self.post(
            url,
            {
                "partnerType": "customer",
                "paymentAmount": "400000",
                "paymentDate": "2024-05-01",
                "paymentMethod": "CASH",
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["ordersUpdated"], 1)
        self.assertEqual(Decimal(body["data"]["totalApplied"]), Decimal("400000"))
        self.assertEqual(body["data"]["details"][0]["newPaymentStatus"], "PARTIAL")

    def test_error_envelopes(self):
        make_order(self.customer, "100", "DH1")
        url = reverse("erp:partner-payment", args=[self.customer.pk])
        payload = {"partnerType": "customer", "paymentAmount": "500", "paymentDate": "2024-05-01", "paymentMethod": "CASH"}

        overpaid = self.post(url, payload)
        self.assertEqual(overpaid.status_code, 400)
        self.assertEqual(overpaid.json()["kind"], "validation")
        self.assertFalse(overpaid.json()["success"])

        missing = self.post(reverse("erp:partner-payment", args=[999999]), dict(payload, paymentAmount="10"))
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["kind"], "not_found")

        invalid = self.post(url, {"partnerType": "customer"})
        self.assertEqual(invalid.status_code, 400)
        self.assertIn("paymentAmount", invalid.json()["details"]["fields"])

        broken = self.client.post(url, data="{not json", content_type="application/json")
        self.assertEqual(broken.status_code, 400)

    def test_create_approve_and_balance(self):
        created = self.post(
            reverse("erp:inventory-transactions"),
            {
                "transactionType": "XUAT",
                "fromWarehouseId": self.nvl.pk,
                "items": [{"materialId": self.m1.pk, "quantity": "30"}],
            },
        )
        self.assertEqual(created.status_code, 201)
        txn_id = created.json()["data"]["id"]

        listed = self.client.get(reverse("erp:inventory-transactions"), {"status": "PENDING"})
        self.assertEqual([t["id"] for t in listed.json()["data"]["results"]], [txn_id])

        approved = self.post(reverse("erp:inventory-transaction-approve", args=[txn_id]), {})
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["data"]["status"], "APPROVED")

        again = self.post(reverse("erp:inventory-transaction-approve", args=[txn_id]), {})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["kind"], "conflict")

        balance = self.client.get(reverse("erp:inventory-balance"), {"warehouseId": self.nvl.pk, "showAll": "false"})
        self.assertEqual(balance.status_code, 200)
        self.assertEqual(Decimal(balance.json()["data"]["details"][0]["quantity"]), Decimal("20"))

    def test_insufficient_stock_via_api(self):
        response = self.post(
            reverse("erp:inventory-transactions"),
            {
                "transactionType": "XUAT",
                "fromWarehouseId": self.nvl.pk,
                "items": [{"materialId": self.m1.pk, "quantity": "60"}],
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["details"]["available"], "50.000")
        self.assertFalse(InventoryTransaction.objects.exists())

    def test_create_sales_order_endpoint(self):
        product = Product.objects.create(branch=self.branch, code="SP01", name="Ao", unit="cai")
        response = self.post(
            reverse("erp:sales-orders"),
            {
                "customerId": self.customer.pk,
                "items": [{"productId": product.pk, "quantity": "2", "unitPrice": "150000"}],
            },
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Decimal(response.json()["data"]["finalAmount"]), Decimal("300000"))

    def test_wrong_method(self):
        response = self.client.get(reverse("erp:partner-payment", args=[self.customer.pk]))
        self.assertEqual(response.status_code, 405)

    def test_reject_endpoint(self):
        txn = create_transaction(
            transaction_type=InventoryTransaction.XUAT,
            items=[{"material_id": self.m1.pk, "quantity": "10"}],
            from_warehouse_id=self.nvl.pk,
        )
        url = reverse("erp:inventory-transaction-reject", args=[txn.pk])

        rejected = self.post(url, {})
        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(rejected.json()["data"]["status"], "REJECTED")

        again = self.post(url, {})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["kind"], "conflict")
        self.assertEqual(balance_of(self.nvl, material=self.m1), Decimal("50"))

        missing = self.post(reverse("erp:inventory-transaction-reject", args=[999999]), {})
        self.assertEqual(missing.status_code, 404)

    def test_transaction_listing_reports_totals(self):
        create_transaction(
            transaction_type=InventoryTransaction.NHAP,
            items=[
                {"material_id": self.m1.pk, "quantity": "10", "unit_price": "25000"},
                {"material_id": self.m1.pk, "quantity": "2"},
            ],
            to_warehouse_id=self.nvl.pk,
        )

        response = self.client.get(reverse("erp:inventory-transactions"), {"transactionType": "NHAP"})

        row = response.json()["data"]["results"][0]
        self.assertEqual(Decimal(row["totalAmount"]), Decimal("250000"))
        self.assertEqual([line["totalAmount"] for line in row["details"]].count(None), 1)

    def test_partner_debt_endpoints(self):
        make_order(self.customer, "100", "DH1")
        settle_payment(
            partner_id=self.customer.pk,
            partner_type="customer",
            amount=Decimal("40"),
            payment_date=date(2024, 5, 1),
            payment_method=DebtPayment.CASH,
        )

        summary = self.client.get(reverse("erp:partner-debts", args=[self.customer.pk]), {"partnerType": "customer"})
        self.assertEqual(summary.status_code, 200)
        self.assertEqual(Decimal(summary.json()["data"]["totalRemaining"]), Decimal("60"))
        self.assertEqual(len(summary.json()["data"]["payments"]), 1)

        bad_type = self.client.get(reverse("erp:partner-debts", args=[self.customer.pk]), {"partnerType": "staff"})
        self.assertEqual(bad_type.status_code, 400)
        self.assertEqual(bad_type.json()["kind"], "validation")

        open_debts = self.client.get(reverse("erp:debt-list"), {"customerId": self.customer.pk, "openOnly": "true"})
        self.assertEqual(open_debts.status_code, 200)
        results = open_debts.json()["data"]["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(Decimal(results[0]["remainingAmount"]), Decimal("60"))
        self.assertEqual(results[0]["partnerName"], "Cong ty A")

        paid = self.client.get(reverse("erp:debt-list"), {"status": "PAID"})
        self.assertEqual(paid.json()["data"]["results"], [])

        invalid = self.client.get(reverse("erp:debt-list"), {"debtType": "LOAN"})
        self.assertEqual(invalid.status_code, 400)

    def test_create_purchase_order_endpoint(self):
        supplier = Supplier.objects.create(code="NCC01", name="Det May B")
        payload = {"supplierId": supplier.pk, "items": [{"materialId": self.m1.pk, "quantity": "100", "unitPrice": "5"}]}

        response = self.post(reverse("erp:purchase-orders"), payload)

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["data"]["poCode"].startswith("PO"))
        self.assertEqual(PurchaseOrder.objects.get().total_amount, Decimal("500.00"))

        missing = self.post(reverse("erp:purchase-orders"), dict(payload, supplierId=999999))
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["kind"], "not_found")


    def test_model_validation_errors_become_400(self):
        url = reverse("erp:inventory-transaction-approve", args=[1])
        with mock.patch("erp.views.approve_transaction", side_effect=ModelValidationError("Quantity must be positive.")):
            response = self.post(url, {})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["kind"], "validation")
        self.assertEqual(response.json()["error"], "Quantity must be positive.")


class ProductionApiTests(TestCase):
    def setUp(self):
        self.client = Client()
        self.branch = Branch.objects.create(name="HQ", code="HQ")
        customer = Customer.objects.create(code="KH001", name="Cong ty A")
        self.fabric = Material.objects.create(branch=self.branch, code="M1", name="Vai", unit="m")
        self.shirt = Product.objects.create(branch=self.branch, code="SP01", name="Ao", unit="cai")
        BillOfMaterial.objects.create(product=self.shirt, material=self.fabric, quantity=Decimal("1.5"))
        order = create_sales_order(
            customer=customer,
            items=[{"product_id": self.shirt.pk, "quantity": "10", "unit_price": "100"}],
        )
        self.nvl = Warehouse.objects.create(branch=self.branch, warehouse_name="Kho NVL", warehouse_type=Warehouse.NVL)
        self.finished = Warehouse.objects.create(
            branch=self.branch, warehouse_name="Kho TP", warehouse_type=Warehouse.THANH_PHAM
        )
        InventoryBalance.objects.create(warehouse=self.nvl, material=self.fabric, quantity=Decimal("20"))
        self.production_order = create_production_order(order)

    def post(self, name, payload):
        url = reverse(name, args=[self.production_order.pk])
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")

    def test_material_requirements_endpoint(self):
        response = self.client.get(reverse("erp:production-material-requirements", args=[self.production_order.pk]))
        self.assertEqual(response.status_code, 200)
        rows = response.json()["data"]
        self.assertEqual([r["materialCode"] for r in rows], ["M1"])
        self.assertEqual(Decimal(rows[0]["quantityPlanned"]), Decimal("15"))

        missing = self.client.get(reverse("erp:production-material-requirements", args=[999999]))
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["kind"], "not_found")

    def test_full_production_flow(self):
        imported = self.post(
            "erp:production-material-import",
            {
                "warehouseId": self.nvl.pk,
                "items": [{"materialId": self.fabric.pk, "quantityPlanned": "15", "quantityActual": "16"}],
            },
        )
        self.assertEqual(imported.status_code, 201)
        self.assertTrue(imported.json()["data"]["transactionCode"].startswith("PX"))
        issue = InventoryTransaction.objects.get(pk=imported.json()["data"]["transactionId"])
        self.assertEqual(issue.details.get().quantity, Decimal("16.000"))

        cutting = self.post("erp:production-advance", {"nextStep": "CUTTING"})
        self.assertEqual(cutting.status_code, 200)
        self.assertEqual(cutting.json()["data"]["currentStep"], "CUTTING")
        self.assertIsNone(cutting.json()["data"]["transactionId"])

        backwards = self.post("erp:production-advance", {"nextStep": "MATERIAL_IMPORT"})
        self.assertEqual(backwards.status_code, 409)
        self.assertEqual(backwards.json()["kind"], "conflict")

        early = self.post("erp:production-finish-product", {"warehouseId": self.finished.pk})
        self.assertEqual(early.status_code, 409)

        self.assertEqual(self.post("erp:production-advance", {"nextStep": "WAREHOUSE_IMPORT"}).status_code, 200)
        finished = self.post("erp:production-finish-product", {"warehouseId": self.finished.pk})
        self.assertEqual(finished.status_code, 201)
        self.assertTrue(finished.json()["data"]["transactionCode"].startswith("PN"))

        self.production_order.refresh_from_db()
        self.assertEqual(self.production_order.status, ProductionOrder.COMPLETED)
        self.assertEqual(self.production_order.inventory_transactions.count(), 2)

        done = self.post("erp:production-advance", {"nextStep": "COMPLETED", "warehouseId": self.finished.pk})
        self.assertEqual(done.status_code, 409)
        self.assertEqual(done.json()["kind"], "conflict")

    def test_invalid_production_requests(self):
        unknown_step = self.post("erp:production-advance", {"nextStep": "PACKING"})
        self.assertEqual(unknown_step.status_code, 400)
        self.assertIn("nextStep", unknown_step.json()["details"]["fields"])

        no_warehouse = self.post("erp:production-material-import", {})
        self.assertEqual(no_warehouse.status_code, 400)

        short = self.post(
            "erp:production-material-import",
            {"warehouseId": self.nvl.pk, "items": [{"materialId": self.fabric.pk, "quantityActual": "25"}]},
        )
        self.assertEqual(short.status_code, 400)
        self.assertEqual(Decimal(short.json()["details"]["available"]), Decimal("20"))


class AdminGuardTests(TestCase):
    def setUp(self):
        self.request = RequestFactory().get("/admin/")
        self.request.user = User.objects.create_superuser(username="admin", password="pass123", email="a@x.vn")
        branch = Branch.objects.create(name="HQ", code="HQ")
        self.m1 = Material.objects.create(branch=branch, code="M1", name="Vai", unit="m")
        self.nvl = Warehouse.objects.create(branch=branch, warehouse_name="Kho NVL", warehouse_type=Warehouse.NVL)

    def receipt(self):
        return create_transaction(
            transaction_type=InventoryTransaction.NHAP,
            items=[{"material_id": self.m1.pk, "quantity": "5"}],
            to_warehouse_id=self.nvl.pk,
        )

    def test_debt_record_amounts_are_read_only(self):
        model_admin = admin.site._registry[DebtRecord]
        for field in ("original_amount", "remaining_amount", "status"):
            self.assertIn(field, model_admin.get_readonly_fields(self.request))
        self.assertFalse(model_admin.has_add_permission(self.request))

    def test_balances_cannot_be_edited(self):
        model_admin = admin.site._registry[InventoryBalance]
        self.assertFalse(model_admin.has_add_permission(self.request))
        self.assertFalse(model_admin.has_change_permission(self.request))
        self.assertFalse(model_admin.has_delete_permission(self.request))

    def test_lines_locked_after_approval(self):
        inline = InventoryTransactionDetailInline(InventoryTransaction, admin.site)
        pending = self.receipt()
        self.assertTrue(inline.has_change_permission(self.request, pending))

        approved = approve_transaction(self.receipt().pk)
        self.assertFalse(inline.has_add_permission(self.request, approved))
        self.assertFalse(inline.has_change_permission(self.request, approved))
        self.assertFalse(inline.has_delete_permission(self.request, approved))

        header_admin = admin.site._registry[InventoryTransaction]
        self.assertIn("to_warehouse", header_admin.get_readonly_fields(self.request, approved))
        self.assertNotIn("to_warehouse", header_admin.get_readonly_fields(self.request, pending))

    def test_production_step_is_read_only(self):
        model_admin = admin.site._registry[ProductionOrder]
        self.assertIn("current_step", model_admin.get_readonly_fields(self.request))
        self.assertIn("status", model_admin.get_readonly_fields(self.request))
