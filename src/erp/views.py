import json
import logging
from decimal import Decimal
from functools import wraps

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.paginator import EmptyPage, PageNotAnInteger, Paginator
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from .debts import partner_debt_summary, settle_payment
from .exceptions import ErpError, NotFoundError, ValidationError
from .filters import DebtRecordFilter, InventoryTransactionFilter
from .forms import (
    AdvanceStepForm,
    FinishedGoodsLineForm,
    InventoryTransactionForm,
    MaterialImportLineForm,
    OrderLineForm,
    PurchaseOrderForm,
    SalesOrderForm,
    SettlePaymentForm,
    TransactionLineForm,
    WarehouseForm,
    cleaned,
    cleaned_lines,
)
from .inventory import approve_transaction, create_transaction, reject_transaction, warehouse_balance
from .models import Customer, DebtRecord, InventoryTransaction, Supplier
from .orders import create_purchase_order, create_sales_order
from .production import (
    advance_step,
    get_production_order,
    material_requirements,
    record_finished_goods_receipt,
    record_material_import,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


def _ok(data, status=200, message=None):
    payload = {"success": True, "data": data}
    if message:
        payload["message"] = message
    return JsonResponse(payload, status=status)


def _error(exc):
    return JsonResponse({"success": False, **exc.as_dict()}, status=exc.status_code)


def json_endpoint(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except ErpError as exc:
            return _error(exc)
        except DjangoValidationError as exc:
            return _error(ValidationError("; ".join(exc.messages)))
        except Exception:
            logger.exception("Unhandled error in %s", view.__name__)
            return JsonResponse({"success": False, "kind": "error", "error": "Server error"}, status=500)

    return wrapper


def _json_body(request):
    try:
        data = json.loads(request.body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body must be valid JSON.") from exc
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _user(request):
    user = getattr(request, "user", None)
    return user if user is not None and user.is_authenticated else None


def _paginate(request, queryset):
    paginator = Paginator(queryset, DEFAULT_PAGE_SIZE)
    try:
        page = paginator.page(request.GET.get("page", 1))
    except PageNotAnInteger:
        page = paginator.page(1)
    except EmptyPage:
        page = paginator.page(paginator.num_pages)
    return page, {"page": page.number, "pages": paginator.num_pages, "total": paginator.count}


def _transaction_payload(txn):
    details = list(txn.details.all())
    return {
        "id": txn.pk,
        "transactionCode": txn.transaction_code,
        "transactionType": txn.transaction_type,
        "status": txn.status,
        "fromWarehouseId": txn.from_warehouse_id,
        "toWarehouseId": txn.to_warehouse_id,
        "productionOrderId": txn.production_order_id,
        "notes": txn.notes,
        "createdBy": txn.created_by_id,
        "approvedBy": txn.approved_by_id,
        "approvedAt": txn.approved_at,
        "createdAt": txn.created_at,
        "totalAmount": sum((d.total_amount for d in details if d.total_amount is not None), Decimal("0.00")),
        "details": [
            {
                "id": d.pk,
                "materialId": d.material_id,
                "productId": d.product_id,
                "quantity": d.quantity,
                "unitPrice": d.unit_price,
                "totalAmount": d.total_amount,
                "notes": d.notes,
            }
            for d in details
        ],
    }


# Finance


@csrf_exempt
@require_POST
@json_endpoint
def settle_partner_payment(request, partner_id):
    data = cleaned(SettlePaymentForm, _json_body(request))
    result = settle_payment(
        partner_id=partner_id,
        partner_type=data["partnerType"],
        amount=data["paymentAmount"],
        payment_date=data["paymentDate"],
        payment_method=data["paymentMethod"],
        bank_account_id=data.get("bankAccountId"),
        notes=data.get("notes") or "",
        order_id=data.get("orderId"),
        user=_user(request),
    )
    return _ok(
        {
            "totalPayment": result.total_payment,
            "totalApplied": result.total_applied,
            "ordersUpdated": result.orders_updated,
            "details": [
                {
                    "orderId": line.order_id,
                    "orderCode": line.order_code,
                    "paymentAmount": line.payment_amount,
                    "newPaidAmount": line.new_paid_amount,
                    "newPaymentStatus": line.new_payment_status,
                    "debtId": line.debt_id,
                    "debtPaymentId": line.debt_payment_id,
                }
                for line in result.details
            ],
        },
        message="Payment recorded",
    )


@require_GET
@json_endpoint
def partner_debts(request, partner_id):
    return _ok(partner_debt_summary(request.GET.get("partnerType", "customer"), partner_id))


@require_GET
@json_endpoint
def debt_list(request):
    debt_filter = DebtRecordFilter(
        request.GET,
        queryset=DebtRecord.objects.select_related("customer", "supplier").order_by("-created_at", "-id"),
    )
    if not debt_filter.is_valid():
        raise ValidationError("Invalid filter.", fields=debt_filter.errors.get_json_data())
    page, meta = _paginate(request, debt_filter.qs)
    rows = [
        {
            "id": debt.pk,
            "debtCode": debt.debt_code,
            "debtType": debt.debt_type,
            "partnerId": debt.customer_id or debt.supplier_id,
            "partnerName": (debt.customer or debt.supplier).name,
            "referenceType": debt.reference_type,
            "referenceId": debt.reference_id,
            "originalAmount": debt.original_amount,
            "remainingAmount": debt.remaining_amount,
            "status": debt.status,
        }
        for debt in page
    ]
    return _ok({"results": rows, **meta})


# Sales / purchasing


@csrf_exempt
@require_POST
@json_endpoint
def sales_orders(request):
    body = _json_body(request)
    data = cleaned(SalesOrderForm, body)
    customer = Customer.objects.filter(pk=data["customerId"]).first()
    if customer is None:
        raise NotFoundError("Customer not found.", customer_id=data["customerId"])
    order = create_sales_order(
        customer=customer,
        items=cleaned_lines(OrderLineForm, body.get("items")),
        order_date=data.get("orderDate"),
        discount_amount=data.get("discountAmount") or 0,
        notes=data.get("notes") or "",
        user=_user(request),
    )
    return _ok({"id": order.pk, "orderCode": order.order_code, "finalAmount": order.final_amount}, status=201)


@csrf_exempt
@require_POST
@json_endpoint
def purchase_orders(request):
    body = _json_body(request)
    data = cleaned(PurchaseOrderForm, body)
    supplier = Supplier.objects.filter(pk=data["supplierId"]).first()
    if supplier is None:
        raise NotFoundError("Supplier not found.", supplier_id=data["supplierId"])
    purchase_order = create_purchase_order(
        supplier=supplier,
        items=cleaned_lines(OrderLineForm, body.get("items")),
        order_date=data.get("orderDate"),
        notes=data.get("notes") or "",
        user=_user(request),
    )
    return _ok(
        {"id": purchase_order.pk, "poCode": purchase_order.po_code, "totalAmount": purchase_order.total_amount},
        status=201,
    )


# Inventory


@csrf_exempt
@require_http_methods(["GET", "POST"])
@json_endpoint
def inventory_transactions(request):
    if request.method == "POST":
        body = _json_body(request)
        data = cleaned(InventoryTransactionForm, body)
        txn = create_transaction(
            transaction_type=data["transactionType"],
            items=cleaned_lines(TransactionLineForm, body.get("items")),
            from_warehouse_id=data.get("fromWarehouseId"),
            to_warehouse_id=data.get("toWarehouseId"),
            notes=data.get("notes") or "",
            user=_user(request),
        )
        return _ok({"id": txn.pk, "transactionCode": txn.transaction_code, "status": txn.status}, status=201)

    txn_filter = InventoryTransactionFilter(
        request.GET,
        queryset=InventoryTransaction.objects.prefetch_related("details"),
    )
    if not txn_filter.is_valid():
        raise ValidationError("Invalid filter.", fields=txn_filter.errors.get_json_data())
    page, meta = _paginate(request, txn_filter.qs)
    return _ok({"results": [_transaction_payload(txn) for txn in page], **meta})


@csrf_exempt
@require_POST
@json_endpoint
def approve_inventory_transaction(request, transaction_id):
    txn = approve_transaction(transaction_id, user=_user(request))
    return _ok({"id": txn.pk, "transactionCode": txn.transaction_code, "status": txn.status})


@csrf_exempt
@require_POST
@json_endpoint
def reject_inventory_transaction(request, transaction_id):
    txn = reject_transaction(transaction_id, user=_user(request))
    return _ok({"id": txn.pk, "transactionCode": txn.transaction_code, "status": txn.status})


@require_GET
@json_endpoint
def inventory_balance(request):
    warehouse_id = request.GET.get("warehouseId")
    if not warehouse_id or not warehouse_id.isdigit():
        raise ValidationError("warehouseId is required.", field="warehouseId")
    show_all = request.GET.get("showAll") != "false"
    return _ok(warehouse_balance(int(warehouse_id), show_all=show_all))


# Production


@require_GET
@json_endpoint
def production_material_requirements(request, production_order_id):
    production_order = get_production_order(production_order_id)
    return _ok(
        [
            {
                "materialId": req.material_id,
                "materialCode": req.material_code,
                "materialName": req.material_name,
                "unit": req.unit,
                "quantityPlanned": req.quantity_planned,
            }
            for req in material_requirements(production_order)
        ]
    )


@csrf_exempt
@require_POST
@json_endpoint
def advance_production_step(request, production_order_id):
    data = cleaned(AdvanceStepForm, _json_body(request))
    production_order, txn = advance_step(
        production_order_id,
        data["nextStep"],
        warehouse_id=data.get("warehouseId"),
        user=_user(request),
    )
    return _ok(
        {
            "id": production_order.pk,
            "currentStep": production_order.current_step,
            "status": production_order.status,
            "transactionId": txn.pk if txn else None,
            "transactionCode": txn.transaction_code if txn else None,
        }
    )


@csrf_exempt
@require_POST
@json_endpoint
def production_material_import(request, production_order_id):
    body = _json_body(request)
    data = cleaned(WarehouseForm, body)
    items = cleaned_lines(MaterialImportLineForm, body["items"]) if body.get("items") else None
    txn = record_material_import(production_order_id, data["warehouseId"], items=items, user=_user(request))
    return _ok({"transactionId": txn.pk, "transactionCode": txn.transaction_code}, status=201)


@csrf_exempt
@require_POST
@json_endpoint
def production_finish_product(request, production_order_id):
    body = _json_body(request)
    data = cleaned(WarehouseForm, body)
    items = cleaned_lines(FinishedGoodsLineForm, body["items"]) if body.get("items") else None
    txn = record_finished_goods_receipt(production_order_id, data["warehouseId"], items=items, user=_user(request))
    return _ok({"transactionId": txn.pk, "transactionCode": txn.transaction_code}, status=201)
