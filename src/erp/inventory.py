"""Approval-gated stock movements with per-warehouse balances.

Creating a transaction only records intent and checks feasibility against the
committed balance. Balances change exclusively when a PENDING transaction is
approved, and the approval re-validates every decrement under row locks.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .amounts import ZERO_QTY, money, quantity
from .exceptions import ConflictError, NotFoundError, ValidationError
from .models import (
    CodeSequence,
    InventoryBalance,
    InventoryTransaction,
    InventoryTransactionDetail,
    Material,
    Product,
    Warehouse,
)

logger = logging.getLogger(__name__)

MATERIAL = "material"
PRODUCT = "product"


@dataclass
class TransactionLine:
    kind: str
    item: object
    quantity: Decimal
    unit_price: Optional[Decimal] = None
    notes: str = ""

    @property
    def key(self):
        return (self.kind, self.item.pk)

    @property
    def total_amount(self):
        if self.unit_price is None:
            return None
        return money(self.quantity * self.unit_price)

    def describe(self):
        return {f"{self.kind}_id": self.item.pk, "item_code": self.item.code, "item_name": self.item.name}


def _get_warehouse(warehouse_id, role):
    if not warehouse_id:
        raise ValidationError(f"A {role} warehouse is required.", field=f"{role}_warehouse_id")
    warehouse = Warehouse.objects.filter(pk=warehouse_id).first()
    if warehouse is None:
        raise NotFoundError("Warehouse not found.", warehouse_id=warehouse_id)
    if not warehouse.is_active:
        raise ValidationError("Warehouse is inactive.", warehouse_id=warehouse_id)
    return warehouse


def _resolve_warehouses(transaction_type, from_warehouse_id, to_warehouse_id):
    if transaction_type == InventoryTransaction.NHAP:
        if from_warehouse_id:
            raise ValidationError("A receipt cannot have a source warehouse.", from_warehouse_id=from_warehouse_id)
        return None, _get_warehouse(to_warehouse_id, "destination")
    if transaction_type == InventoryTransaction.XUAT:
        if to_warehouse_id:
            raise ValidationError("An issue cannot have a destination warehouse.", to_warehouse_id=to_warehouse_id)
        return _get_warehouse(from_warehouse_id, "source"), None
    if transaction_type == InventoryTransaction.CHUYEN:
        source = _get_warehouse(from_warehouse_id, "source")
        destination = _get_warehouse(to_warehouse_id, "destination")
        if source.pk == destination.pk:
            raise ValidationError("Source and destination warehouses must be different.", warehouse_id=source.pk)
        return source, destination
    raise ValidationError("Unknown transaction type.", transaction_type=transaction_type)


def coerce_id(value, field, line=None):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer id.", line=line, **{field: value}) from exc


def _resolve_lines(items):
    if not items:
        raise ValidationError("At least one item line is required.")

    ids = [
        (coerce_id(item.get("material_id"), "material_id", index), coerce_id(item.get("product_id"), "product_id", index))
        for index, item in enumerate(items)
    ]
    materials = Material.objects.in_bulk({m for m, _ in ids if m})
    products = Product.objects.in_bulk({p for _, p in ids if p})

    lines = []
    for index, (item, (material_id, product_id)) in enumerate(zip(items, ids)):
        if bool(material_id) == bool(product_id):
            raise ValidationError("Each line needs exactly one of material or product.", line=index)
        if material_id:
            kind, ref = MATERIAL, materials.get(material_id)
        else:
            kind, ref = PRODUCT, products.get(product_id)
        if ref is None:
            raise NotFoundError(f"{kind.title()} not found.", line=index, **{f"{kind}_id": material_id or product_id})

        try:
            qty = quantity(item.get("quantity"))
            unit_price = item.get("unit_price")
            unit_price = money(unit_price) if unit_price not in (None, "") else None
        except ValueError as exc:
            raise ValidationError(str(exc), line=index) from exc
        if qty <= ZERO_QTY:
            raise ValidationError("Quantity must be greater than 0.", line=index, quantity=str(qty))
        if unit_price is not None and unit_price < 0:
            raise ValidationError("Unit price cannot be negative.", line=index, unit_price=str(unit_price))

        lines.append(TransactionLine(kind=kind, item=ref, quantity=qty, unit_price=unit_price, notes=item.get("notes") or ""))
    return lines


def _check_item_kinds(lines, warehouses):
    for warehouse in warehouses:
        for line in lines:
            accepted = warehouse.accepts_materials() if line.kind == MATERIAL else warehouse.accepts_products()
            if not accepted:
                raise ValidationError(
                    f"Warehouse {warehouse.warehouse_code} ({warehouse.warehouse_type}) does not accept {line.kind} "
                    f"{line.item.code}.",
                    warehouse_id=warehouse.pk,
                    warehouse_type=warehouse.warehouse_type,
                    **line.describe(),
                )


def _check_item_branches(lines, warehouses):
    for warehouse in warehouses:
        for line in lines:
            if line.item.branch_id != warehouse.branch_id:
                raise ValidationError(
                    f"{line.kind.title()} {line.item.code} belongs to another branch than warehouse "
                    f"{warehouse.warehouse_code}.",
                    warehouse_id=warehouse.pk,
                    branch_id=warehouse.branch_id,
                    item_branch_id=line.item.branch_id,
                    **line.describe(),
                )


def _requested_quantities(lines):
    requested = OrderedDict()
    for line in lines:
        if line.key in requested:
            requested[line.key] = (line, requested[line.key][1] + line.quantity)
        else:
            requested[line.key] = (line, line.quantity)
    return requested


def current_quantity(warehouse, kind, item_id):
    row = InventoryBalance.objects.filter(warehouse=warehouse, **{f"{kind}_id": item_id}).first()
    return row.quantity if row else ZERO_QTY


def _check_feasibility(lines, warehouse):
    for line, requested in _requested_quantities(lines).values():
        available = current_quantity(warehouse, line.kind, line.item.pk)
        if requested > available:
            logger.warning(
                "Stock check failed at %s for %s %s: requested %s, available %s",
                warehouse.warehouse_code,
                line.kind,
                line.item.code,
                requested,
                available,
            )
            raise ValidationError(
                f"Insufficient stock for {line.item.code} in {warehouse.warehouse_code}: "
                f"requested {requested}, available {available}.",
                warehouse_id=warehouse.pk,
                requested=str(requested),
                available=str(available),
                **line.describe(),
            )


def create_transaction(
    *,
    transaction_type,
    items,
    from_warehouse_id=None,
    to_warehouse_id=None,
    notes="",
    user=None,
    production_order=None,
) -> InventoryTransaction:
    source, destination = _resolve_warehouses(transaction_type, from_warehouse_id, to_warehouse_id)
    lines = _resolve_lines(items)
    warehouses = [w for w in (source, destination) if w is not None]
    _check_item_kinds(lines, warehouses)
    _check_item_branches(lines, warehouses)
    if source is not None:
        _check_feasibility(lines, source)

    with transaction.atomic():
        txn = InventoryTransaction.objects.create(
            transaction_code=CodeSequence.next_daily_code(InventoryTransaction.CODE_PREFIXES[transaction_type]),
            transaction_type=transaction_type,
            status=InventoryTransaction.PENDING,
            from_warehouse=source,
            to_warehouse=destination,
            production_order=production_order,
            notes=notes or "",
            created_by=user,
        )
        InventoryTransactionDetail.objects.bulk_create(
            [
                InventoryTransactionDetail(
                    transaction=txn,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_amount=line.total_amount,
                    notes=line.notes,
                    **{line.kind: line.item},
                )
                for line in lines
            ]
        )

    logger.info("Created %s transaction %s with %d line(s)", transaction_type, txn.transaction_code, len(lines))
    return txn


def _lock_balance(warehouse_id, kind, item_id):
    lookup = {"warehouse_id": warehouse_id, f"{kind}_id": item_id}
    row = InventoryBalance.objects.select_for_update().filter(**lookup).first()
    if row is None:
        InventoryBalance.objects.bulk_create([InventoryBalance(quantity=ZERO_QTY, **lookup)], ignore_conflicts=True)
        row = InventoryBalance.objects.select_for_update().get(**lookup)
    return row


def _apply_delta(warehouse_id, kind, item_id, delta):
    row = _lock_balance(warehouse_id, kind, item_id)
    new_quantity = row.quantity + delta
    if new_quantity < 0:
        raise ValidationError(
            f"Insufficient stock to approve: {kind} #{item_id} in warehouse #{warehouse_id} "
            f"has {row.quantity}, needs {-delta}.",
            warehouse_id=warehouse_id,
            requested=str(-delta),
            available=str(row.quantity),
            **{f"{kind}_id": item_id},
        )
    row.quantity = new_quantity
    row.save(update_fields=["quantity", "updated_at"])
    return row


def _balance_deltas(txn):
    deltas = {}
    for detail in txn.details.all():
        kind = MATERIAL if detail.material_id else PRODUCT
        item_id = detail.material_id or detail.product_id
        if txn.from_warehouse_id:
            key = (txn.from_warehouse_id, kind, item_id)
            deltas[key] = deltas.get(key, ZERO_QTY) - detail.quantity
        if txn.to_warehouse_id:
            key = (txn.to_warehouse_id, kind, item_id)
            deltas[key] = deltas.get(key, ZERO_QTY) + detail.quantity
    return deltas


def _lock_transaction(transaction_id, target_status):
    txn = InventoryTransaction.objects.select_for_update().filter(pk=transaction_id).first()
    if txn is None:
        raise NotFoundError("Inventory transaction not found.", transaction_id=transaction_id)
    if not txn.can_transition_to(target_status):
        raise ConflictError(
            f"Transaction {txn.transaction_code} is {txn.status} and cannot become {target_status}.",
            transaction_id=txn.pk,
            status=txn.status,
            target_status=target_status,
        )
    return txn


def approve_transaction(transaction_id, user=None) -> InventoryTransaction:
    try:
        with transaction.atomic():
            txn = _lock_transaction(transaction_id, InventoryTransaction.APPROVED)
            # Sorted keys give every approver the same lock order.
            for (warehouse_id, kind, item_id), delta in sorted(_balance_deltas(txn).items()):
                if delta:
                    _apply_delta(warehouse_id, kind, item_id, delta)
            txn.status = InventoryTransaction.APPROVED
            txn.approved_by = user
            txn.approved_at = timezone.now()
            txn.save(update_fields=["status", "approved_by", "approved_at"])
    except ValidationError:
        logger.warning("Approval of inventory transaction #%s failed re-validation", transaction_id)
        raise

    logger.info("Approved inventory transaction %s", txn.transaction_code)
    return txn


def reject_transaction(transaction_id, user=None) -> InventoryTransaction:
    with transaction.atomic():
        txn = _lock_transaction(transaction_id, InventoryTransaction.REJECTED)
        txn.status = InventoryTransaction.REJECTED
        txn.approved_by = user
        txn.approved_at = timezone.now()
        txn.save(update_fields=["status", "approved_by", "approved_at"])

    logger.info("Rejected inventory transaction %s", txn.transaction_code)
    return txn


def _balance_row(warehouse, kind, item, qty):
    return {
        "warehouseId": warehouse.pk,
        "warehouseName": warehouse.warehouse_name,
        "itemType": Warehouse.NVL if kind == MATERIAL else Warehouse.THANH_PHAM,
        f"{kind}Id": item.pk,
        "itemCode": item.code,
        "itemName": item.name,
        "unit": item.unit,
        "quantity": qty,
    }


def warehouse_balance(warehouse_id, show_all=True):
    warehouse = Warehouse.objects.filter(pk=warehouse_id).first()
    if warehouse is None:
        raise NotFoundError("Warehouse not found.", warehouse_id=warehouse_id)

    kinds = []
    if warehouse.accepts_materials():
        kinds.append((MATERIAL, Material))
    if warehouse.accepts_products():
        kinds.append((PRODUCT, Product))

    details = []
    for kind, model in kinds:
        balances = InventoryBalance.objects.filter(warehouse=warehouse, **{f"{kind}__isnull": False})
        if show_all:
            by_item = {getattr(b, f"{kind}_id"): b.quantity for b in balances}
            # Items holding stock are listed even if inactive or from another branch.
            items = model.objects.filter(
                Q(branch_id=warehouse.branch_id, is_active=True) | Q(pk__in=list(by_item))
            ).order_by("name")
            details.extend(_balance_row(warehouse, kind, item, by_item.get(item.pk, ZERO_QTY)) for item in items)
        else:
            rows = balances.filter(quantity__gt=0).select_related(kind).order_by(f"{kind}__name")
            details.extend(_balance_row(warehouse, kind, getattr(b, kind), b.quantity) for b in rows)

    return {
        "warehouse": {
            "id": warehouse.pk,
            "warehouseCode": warehouse.warehouse_code,
            "warehouseName": warehouse.warehouse_name,
            "warehouseType": warehouse.warehouse_type,
            "branchId": warehouse.branch_id,
        },
        "details": details,
    }
