"""Debt settlement: FIFO allocation of partner payments across open orders.

Every write to ``paid_amount``, ``debt_management``, ``debt_payments``,
``debt_amount`` and bank balances goes through this module, inside one
database transaction with the touched rows locked.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from django.db import transaction
from django.db.models import DecimalField, ExpressionWrapper, F, Sum
from django.db.models.functions import Coalesce

from .amounts import ZERO, money
from .exceptions import NotFoundError, ValidationError
from .models import (
    BankAccount,
    CodeSequence,
    Customer,
    DebtPayment,
    DebtRecord,
    Order,
    PurchaseOrder,
    Supplier,
)

logger = logging.getLogger(__name__)

CUSTOMER = "customer"
SUPPLIER = "supplier"


@dataclass(frozen=True)
class PartnerSide:
    label: str
    partner_model: type
    order_model: type
    partner_field: str
    amount_field: str
    code_field: str
    reference_type: str
    debt_type: str
    cancelled_status: str
    # +1: money comes in (receivable), -1: money goes out (payable)
    cash_direction: int


SIDES = {
    CUSTOMER: PartnerSide(
        label="Customer",
        partner_model=Customer,
        order_model=Order,
        partner_field="customer",
        amount_field="final_amount",
        code_field="order_code",
        reference_type=DebtRecord.ORDER,
        debt_type=DebtRecord.RECEIVABLE,
        cancelled_status=Order.CANCELLED,
        cash_direction=1,
    ),
    SUPPLIER: PartnerSide(
        label="Supplier",
        partner_model=Supplier,
        order_model=PurchaseOrder,
        partner_field="supplier",
        amount_field="total_amount",
        code_field="po_code",
        reference_type=DebtRecord.PURCHASE,
        debt_type=DebtRecord.PAYABLE,
        cancelled_status=PurchaseOrder.CANCELLED,
        cash_direction=-1,
    ),
}


@dataclass
class AllocationLine:
    order_id: int
    order_code: str
    payment_amount: Decimal
    new_paid_amount: Decimal
    new_payment_status: str
    debt_id: int
    debt_payment_id: int


@dataclass
class SettlementResult:
    partner_type: str
    partner_id: int
    total_payment: Decimal
    total_applied: Decimal = ZERO
    details: List[AllocationLine] = field(default_factory=list)

    @property
    def orders_updated(self):
        return len(self.details)


def get_side(partner_type) -> PartnerSide:
    try:
        return SIDES[partner_type]
    except KeyError:
        raise ValidationError(
            "partnerType must be 'customer' or 'supplier'.",
            partner_type=partner_type,
        ) from None


def side_for_order(order) -> PartnerSide:
    return SIDES[CUSTOMER] if isinstance(order, Order) else SIDES[SUPPLIER]


def payment_status_for(paid_amount, final_amount):
    paid_amount = money(paid_amount)
    if money(final_amount) - paid_amount <= ZERO:
        return "PAID"
    if paid_amount == ZERO:
        return "UNPAID"
    return "PARTIAL"


def _open_orders(side, partner, order_id=None):
    qs = (
        side.order_model.objects
        .select_for_update()
        .filter(**{side.partner_field: partner})
        .exclude(status=side.cancelled_status)
        .filter(paid_amount__lt=F(side.amount_field))
    )
    if order_id is not None:
        qs = qs.filter(pk=order_id)
    return list(qs.order_by("created_at", "id"))


def _lock_debt_record(side, partner, order, open_amount):
    lookup = {
        "reference_id": order.pk,
        "reference_type": side.reference_type,
        "debt_type": side.debt_type,
    }
    debt = DebtRecord.objects.select_for_update().filter(**lookup).first()
    if debt is not None:
        return debt

    # Insert-or-ignore against the unique constraint, then re-read under lock.
    DebtRecord.objects.bulk_create(
        [
            DebtRecord(
                debt_code=CodeSequence.next_daily_code("CN"),
                original_amount=order.finance_amount,
                remaining_amount=open_amount,
                status=DebtRecord.PARTIAL,
                **{side.partner_field: partner},
                **lookup,
            )
        ],
        ignore_conflicts=True,
    )
    return DebtRecord.objects.select_for_update().get(**lookup)


def settle_payment(
    *,
    partner_id,
    partner_type,
    amount,
    payment_date: date,
    payment_method,
    bank_account_id=None,
    notes="",
    order_id=None,
    user=None,
) -> SettlementResult:
    side = get_side(partner_type)
    try:
        amount = money(amount)
    except ValueError as exc:
        raise ValidationError(str(exc), amount=amount) from exc
    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than 0.", amount=str(amount))
    if payment_method not in dict(DebtPayment.PAYMENT_METHOD_CHOICES):
        raise ValidationError("Unknown payment method.", payment_method=payment_method)
    if payment_date is None:
        raise ValidationError("Payment date is required.")

    with transaction.atomic():
        partner = side.partner_model.objects.select_for_update().filter(pk=partner_id).first()
        if partner is None:
            raise NotFoundError(f"{side.label} not found.", partner_id=partner_id)

        bank_account = None
        if bank_account_id:
            bank_account = BankAccount.objects.select_for_update().filter(pk=bank_account_id).first()
            if bank_account is None:
                raise NotFoundError("Bank account not found.", bank_account_id=bank_account_id)

        orders = _open_orders(side, partner, order_id)
        if not orders:
            if order_id is not None:
                raise NotFoundError(
                    "Order not found for this partner or already fully paid.",
                    partner_id=partner.pk,
                    order_id=order_id,
                )
            raise NotFoundError("No open orders to settle.", partner_id=partner.pk)

        open_debt = sum((o.remaining_amount for o in orders), ZERO)
        if amount > open_debt:
            raise ValidationError(
                "Payment amount exceeds the open debt.",
                amount=str(amount),
                open_debt=str(open_debt),
            )

        result = SettlementResult(partner_type=partner_type, partner_id=partner.pk, total_payment=amount)
        remaining_payment = amount

        for order in orders:
            if remaining_payment <= ZERO:
                break

            open_amount = order.remaining_amount
            applied = min(remaining_payment, open_amount)

            order.paid_amount = money(order.paid_amount + applied)
            order.payment_status = payment_status_for(order.paid_amount, order.finance_amount)
            order.save(update_fields=["paid_amount", "payment_status"])

            debt = _lock_debt_record(side, partner, order, open_amount)
            payment = DebtPayment.objects.create(
                debt=debt,
                payment_amount=applied,
                payment_date=payment_date,
                payment_method=payment_method,
                bank_account=bank_account,
                notes=notes or "Debt payment",
                created_by=user,
            )
            debt.remaining_amount = max(ZERO, money(debt.remaining_amount - applied))
            debt.status = DebtRecord.PAID if debt.remaining_amount <= ZERO else DebtRecord.PARTIAL
            debt.save(update_fields=["remaining_amount", "status", "updated_at"])

            result.details.append(
                AllocationLine(
                    order_id=order.pk,
                    order_code=getattr(order, side.code_field),
                    payment_amount=applied,
                    new_paid_amount=order.paid_amount,
                    new_payment_status=order.payment_status,
                    debt_id=debt.pk,
                    debt_payment_id=payment.pk,
                )
            )
            result.total_applied += applied
            remaining_payment -= applied

        partner.debt_amount = max(ZERO, money(partner.debt_amount - result.total_applied))
        partner.save(update_fields=["debt_amount"])

        if bank_account is not None:
            bank_account.balance = money(bank_account.balance + side.cash_direction * amount)
            bank_account.save(update_fields=["balance"])

    logger.info(
        "Settled %s for %s #%s across %d order(s)",
        result.total_applied,
        partner_type,
        partner.pk,
        result.orders_updated,
    )
    return result


def lock_order_partner(order):
    """Lock the customer or supplier row that owns ``order``.

    Partner rows are always locked before their order rows.
    """
    side = side_for_order(order)
    return side.partner_model.objects.select_for_update().get(pk=getattr(order, f"{side.partner_field}_id"))


def _adjust_partner_debt(order, delta):
    with transaction.atomic():
        partner = lock_order_partner(order)
        partner.debt_amount = max(ZERO, money(partner.debt_amount + delta))
        partner.save(update_fields=["debt_amount"])
    return partner


def post_order_debt(order):
    """Add a newly created order's open amount to its partner's running debt."""
    return _adjust_partner_debt(order, order.remaining_amount)


def release_order_debt(order):
    return _adjust_partner_debt(order, -order.remaining_amount)


def open_debt_total(partner_type, partner):
    side = get_side(partner_type)
    remaining = ExpressionWrapper(
        F(side.amount_field) - F("paid_amount"),
        output_field=DecimalField(max_digits=18, decimal_places=2),
    )
    total = (
        side.order_model.objects
        .filter(**{side.partner_field: partner})
        .exclude(status=side.cancelled_status)
        .aggregate(total=Coalesce(Sum(remaining), ZERO, output_field=DecimalField(max_digits=18, decimal_places=2)))
    )["total"]
    return money(total)


def recalculate_partner_debt(partner_type, partner):
    """Rebuild ``debt_amount`` from the open orders of the partner."""
    side = get_side(partner_type)
    with transaction.atomic():
        locked = side.partner_model.objects.select_for_update().get(pk=partner.pk)
        locked.debt_amount = max(ZERO, open_debt_total(partner_type, locked))
        locked.save(update_fields=["debt_amount"])
    return locked.debt_amount


def partner_debt_summary(partner_type, partner_id, history_limit: Optional[int] = 50):
    side = get_side(partner_type)
    partner = side.partner_model.objects.filter(pk=partner_id).first()
    if partner is None:
        raise NotFoundError(f"{side.label} not found.", partner_id=partner_id)

    orders = (
        side.order_model.objects
        .filter(**{side.partner_field: partner})
        .exclude(status=side.cancelled_status)
        .order_by("created_at", "id")
    )
    total_amount = ZERO
    total_paid = ZERO
    open_orders = []
    for order in orders:
        total_amount += order.finance_amount
        total_paid += order.paid_amount
        if order.remaining_amount > ZERO:
            open_orders.append(
                {
                    "orderId": order.pk,
                    "orderCode": getattr(order, side.code_field),
                    "amount": order.finance_amount,
                    "paidAmount": order.paid_amount,
                    "remainingAmount": order.remaining_amount,
                    "paymentStatus": order.payment_status,
                    "createdAt": order.created_at,
                }
            )

    payments = (
        DebtPayment.objects
        .filter(**{f"debt__{side.partner_field}": partner})
        .select_related("debt", "bank_account")
        .order_by("-payment_date", "-id")
    )
    if history_limit:
        payments = payments[:history_limit]

    return {
        "partnerId": partner.pk,
        "partnerType": partner_type,
        "code": partner.code,
        "name": partner.name,
        "debtAmount": partner.debt_amount,
        "totalAmount": money(total_amount),
        "totalPaid": money(total_paid),
        "totalRemaining": money(total_amount - total_paid),
        "openOrders": open_orders,
        "payments": [
            {
                "id": p.pk,
                "debtCode": p.debt.debt_code,
                "orderId": p.debt.reference_id,
                "paymentAmount": p.payment_amount,
                "paymentDate": p.payment_date,
                "paymentMethod": p.payment_method,
                "bankAccountId": p.bank_account_id,
                "notes": p.notes,
            }
            for p in payments
        ],
    }
