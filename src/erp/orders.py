import logging

from django.db import transaction
from django.utils import timezone

from .amounts import ZERO, ZERO_QTY, money, quantity
from .debts import lock_order_partner, post_order_debt, release_order_debt
from .exceptions import ConflictError, NotFoundError, ValidationError
from .inventory import coerce_id
from .models import (
    CodeSequence,
    Material,
    Order,
    OrderDetail,
    Product,
    PurchaseOrder,
    PurchaseOrderDetail,
)

logger = logging.getLogger(__name__)


def _priced_lines(items, model, field):
    if not items:
        raise ValidationError("At least one item line is required.")
    ids = [coerce_id(item.get(f"{field}_id"), f"{field}_id", index) for index, item in enumerate(items)]
    refs = model.objects.in_bulk({pk for pk in ids if pk})
    lines = []
    for index, (item, pk) in enumerate(zip(items, ids)):
        ref = refs.get(pk)
        if ref is None:
            raise NotFoundError(f"{field.title()} not found.", line=index, **{f"{field}_id": pk})
        try:
            qty = quantity(item.get("quantity"))
            unit_price = money(item.get("unit_price"))
        except ValueError as exc:
            raise ValidationError(str(exc), line=index) from exc
        if qty <= ZERO_QTY:
            raise ValidationError("Quantity must be greater than 0.", line=index)
        if unit_price < ZERO:
            raise ValidationError("Unit price cannot be negative.", line=index)
        lines.append((ref, qty, unit_price, money(qty * unit_price)))
    return lines


def create_sales_order(*, customer, items, order_date=None, discount_amount=ZERO, notes="", user=None) -> Order:
    lines = _priced_lines(items, Product, "product")
    total = money(sum((line[3] for line in lines), ZERO))
    discount = money(discount_amount)
    if discount < ZERO or discount > total:
        raise ValidationError("Discount must be between 0 and the order total.", discount_amount=str(discount))

    with transaction.atomic():
        order = Order.objects.create(
            branch=customer.branch,
            customer=customer,
            order_code=CodeSequence.next_daily_code("DH", order_date),
            order_date=order_date or timezone.localdate(),
            total_amount=total,
            discount_amount=discount,
            final_amount=total - discount,
            payment_status="PAID" if total == discount else "UNPAID",
            notes=notes or "",
            created_by=user,
        )
        OrderDetail.objects.bulk_create(
            [
                OrderDetail(order=order, product=product, quantity=qty, unit_price=price, total_amount=line_total)
                for product, qty, price, line_total in lines
            ]
        )
        post_order_debt(order)

    logger.info("Created sales order %s for %s (%s)", order.order_code, customer.code, order.final_amount)
    return order


def create_purchase_order(*, supplier, items, order_date=None, notes="", user=None) -> PurchaseOrder:
    lines = _priced_lines(items, Material, "material")
    total = money(sum((line[3] for line in lines), ZERO))

    with transaction.atomic():
        purchase_order = PurchaseOrder.objects.create(
            branch=supplier.branch,
            supplier=supplier,
            po_code=CodeSequence.next_daily_code("PO", order_date),
            order_date=order_date or timezone.localdate(),
            total_amount=total,
            payment_status="PAID" if total == ZERO else "UNPAID",
            notes=notes or "",
            created_by=user,
        )
        PurchaseOrderDetail.objects.bulk_create(
            [
                PurchaseOrderDetail(
                    purchase_order=purchase_order,
                    material=material,
                    quantity=qty,
                    unit_price=price,
                    total_amount=line_total,
                )
                for material, qty, price, line_total in lines
            ]
        )
        post_order_debt(purchase_order)

    logger.info("Created purchase order %s for %s (%s)", purchase_order.po_code, supplier.code, total)
    return purchase_order


def cancel_order(order):
    """Cancel a sales or purchase order that has not received any payment."""
    model = type(order)
    with transaction.atomic():
        lock_order_partner(order)
        locked = model.objects.select_for_update().get(pk=order.pk)
        if locked.status == model.CANCELLED:
            raise ConflictError(f"Order {locked.code} is already cancelled.", order_id=locked.pk)
        if locked.paid_amount > ZERO:
            raise ConflictError(
                f"Order {locked.code} has payments and cannot be cancelled.",
                order_id=locked.pk,
                paid_amount=str(locked.paid_amount),
            )
        release_order_debt(locked)
        locked.status = model.CANCELLED
        locked.save(update_fields=["status"])

    logger.info("Cancelled order %s", locked.code)
    return locked
