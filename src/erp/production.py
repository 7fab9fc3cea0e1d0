"""Production orders: material requirements, step transitions and the
inventory transactions they trigger."""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from django.db import transaction
from django.utils import timezone

from .amounts import ZERO_QTY, quantity
from .exceptions import ConflictError, NotFoundError, ValidationError
from .inventory import create_transaction
from .models import (
    BillOfMaterial,
    CodeSequence,
    InventoryTransaction,
    Order,
    ProductionMaterialRequest,
    ProductionMaterialRequestDetail,
    ProductionOrder,
)

logger = logging.getLogger(__name__)


@dataclass
class MaterialRequirement:
    material_id: int
    material_code: str
    material_name: str
    unit: str
    quantity_planned: Decimal


def get_production_order(production_order_id, lock=False):
    qs = ProductionOrder.objects.select_related("order")
    if lock:
        qs = qs.select_for_update()
    production_order = qs.filter(pk=production_order_id).first()
    if production_order is None:
        raise NotFoundError("Production order not found.", production_order_id=production_order_id)
    return production_order


def create_production_order(order, notes="", user=None) -> ProductionOrder:
    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        if locked.status not in (Order.PENDING, Order.CONFIRMED):
            raise ConflictError(
                f"Cannot start production for order {locked.order_code} in status {locked.status}.",
                order_id=locked.pk,
                status=locked.status,
            )
        production_order = ProductionOrder.objects.create(
            order=locked,
            production_code=CodeSequence.next_daily_code("SX"),
            notes=notes or "",
            created_by=user,
        )
        locked.status = Order.IN_PRODUCTION
        locked.save(update_fields=["status"])
    logger.info("Created production order %s for %s", production_order.production_code, order.order_code)
    return production_order


def material_requirements(production_order) -> List[MaterialRequirement]:
    """Planned material quantities: ordered quantity x BOM quantity, summed per material."""
    ordered = {}
    for line in production_order.order.lines.all():
        ordered[line.product_id] = ordered.get(line.product_id, ZERO_QTY) + line.quantity

    requirements = {}
    boms = BillOfMaterial.objects.filter(product_id__in=ordered).select_related("material")
    for bom in boms:
        planned = quantity(ordered[bom.product_id] * bom.quantity)
        req = requirements.get(bom.material_id)
        if req is None:
            requirements[bom.material_id] = MaterialRequirement(
                material_id=bom.material_id,
                material_code=bom.material.code,
                material_name=bom.material.name,
                unit=bom.material.unit,
                quantity_planned=planned,
            )
        else:
            req.quantity_planned += planned
    return sorted(requirements.values(), key=lambda r: r.material_code)


def _ensure_active(production_order):
    if production_order.status == ProductionOrder.COMPLETED:
        raise ConflictError(
            f"Production order {production_order.production_code} is already completed.",
            production_order_id=production_order.pk,
        )


def _require_step(production_order, step):
    _ensure_active(production_order)
    if production_order.current_step != step:
        raise ConflictError(
            f"Production order {production_order.production_code} is at {production_order.current_step}, "
            f"expected {step}.",
            production_order_id=production_order.pk,
            current_step=production_order.current_step,
            expected_step=step,
        )


def _planned_material_items(production_order):
    return [
        {
            "material_id": req.material_id,
            "quantity_planned": req.quantity_planned,
            "quantity_actual": req.quantity_planned,
        }
        for req in material_requirements(production_order)
    ]


def _record_material_import(production_order, warehouse_id, items, user):
    if not items:
        raise ValidationError("No materials to import for this production order.", production_order_id=production_order.pk)

    issued = [
        {"material_id": item["material_id"], "quantity": item["quantity_actual"]}
        for item in items
        if quantity(item.get("quantity_actual")) > ZERO_QTY
    ]
    txn = create_transaction(
        transaction_type=InventoryTransaction.XUAT,
        items=issued,
        from_warehouse_id=warehouse_id,
        notes=f"Material issue for production order {production_order.production_code}",
        user=user,
        production_order=production_order,
    )
    request = ProductionMaterialRequest.objects.create(
        production_order=production_order,
        warehouse_id=warehouse_id,
        inventory_transaction=txn,
        created_by=user,
    )
    ProductionMaterialRequestDetail.objects.bulk_create(
        [
            ProductionMaterialRequestDetail(
                request=request,
                material_id=item["material_id"],
                quantity_planned=quantity(item.get("quantity_planned")),
                quantity_actual=quantity(item.get("quantity_actual")),
            )
            for item in items
        ]
    )

    production_order.status = ProductionOrder.IN_PROGRESS
    if production_order.start_date is None:
        production_order.start_date = timezone.now()
    production_order.save(update_fields=["status", "start_date", "updated_at"])
    return txn


def record_material_import(production_order_id, warehouse_id, items=None, user=None) -> InventoryTransaction:
    with transaction.atomic():
        production_order = get_production_order(production_order_id, lock=True)
        _require_step(production_order, ProductionOrder.MATERIAL_IMPORT)
        if items is None:
            items = _planned_material_items(production_order)
        txn = _record_material_import(production_order, warehouse_id, items, user)

    logger.info("Recorded material import %s for %s", txn.transaction_code, production_order.production_code)
    return txn


def _finished_goods_items(production_order):
    ordered = {}
    for line in production_order.order.lines.all():
        ordered[line.product_id] = ordered.get(line.product_id, ZERO_QTY) + line.quantity
    return [{"product_id": product_id, "quantity": qty} for product_id, qty in ordered.items()]


def _record_finished_goods_receipt(production_order, warehouse_id, items, user):
    received = [item for item in items if quantity(item.get("quantity")) > ZERO_QTY]
    if not received:
        raise ValidationError("No finished goods to receive.", production_order_id=production_order.pk)
    txn = create_transaction(
        transaction_type=InventoryTransaction.NHAP,
        items=received,
        to_warehouse_id=warehouse_id,
        notes=f"Finished goods receipt from production order {production_order.production_code}",
        user=user,
        production_order=production_order,
    )
    production_order.status = ProductionOrder.COMPLETED
    production_order.current_step = ProductionOrder.COMPLETED_STEP
    production_order.end_date = timezone.now()
    production_order.save(update_fields=["status", "current_step", "end_date", "updated_at"])
    return txn


def record_finished_goods_receipt(production_order_id, warehouse_id, items=None, user=None) -> InventoryTransaction:
    with transaction.atomic():
        production_order = get_production_order(production_order_id, lock=True)
        _require_step(production_order, ProductionOrder.WAREHOUSE_IMPORT)
        if items is None:
            items = _finished_goods_items(production_order)
        txn = _record_finished_goods_receipt(production_order, warehouse_id, items, user)

    logger.info("Completed production order %s with receipt %s", production_order.production_code, txn.transaction_code)
    return txn


def advance_step(production_order_id, next_step, warehouse_id=None, user=None):
    """Move a production order forward; steps never go back.

    Leaving MATERIAL_IMPORT issues the planned materials unless a material
    import was already recorded. Reaching COMPLETED receives the finished
    goods. Returns ``(production_order, inventory_transaction_or_None)``.
    """
    if next_step not in ProductionOrder.STEPS:
        raise ValidationError("Unknown production step.", next_step=next_step)

    txn = None
    with transaction.atomic():
        production_order = get_production_order(production_order_id, lock=True)
        _ensure_active(production_order)
        current = production_order.current_step
        if ProductionOrder.step_index(next_step) <= ProductionOrder.step_index(current):
            raise ConflictError(
                f"Cannot move production order {production_order.production_code} from {current} to {next_step}.",
                production_order_id=production_order.pk,
                current_step=current,
                next_step=next_step,
            )

        if next_step == ProductionOrder.COMPLETED_STEP and current != ProductionOrder.WAREHOUSE_IMPORT:
            raise ConflictError(
                "Finished goods can only be received from the warehouse import step.",
                production_order_id=production_order.pk,
                current_step=current,
            )

        if current == ProductionOrder.MATERIAL_IMPORT and not production_order.material_requests.exists():
            planned = _planned_material_items(production_order)
            # Products without a bill of materials have nothing to issue.
            if planned:
                txn = _record_material_import(production_order, warehouse_id, planned, user)

        if next_step == ProductionOrder.COMPLETED_STEP:
            txn = _record_finished_goods_receipt(
                production_order, warehouse_id, _finished_goods_items(production_order), user
            )
        else:
            production_order.current_step = next_step
            if production_order.status == ProductionOrder.PENDING:
                production_order.status = ProductionOrder.IN_PROGRESS
                production_order.start_date = production_order.start_date or timezone.now()
            production_order.save(update_fields=["current_step", "status", "start_date", "updated_at"])

    logger.info("Production order %s moved %s -> %s", production_order.production_code, current, next_step)
    return production_order, txn
