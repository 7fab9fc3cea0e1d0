from django.urls import path

from . import views

app_name = "erp"

urlpatterns = [
    path("finance/debts/", views.debt_list, name="debt-list"),
    path("finance/debts/partners/<int:partner_id>/", views.partner_debts, name="partner-debts"),
    path(
        "finance/debts/partners/<int:partner_id>/payment/",
        views.settle_partner_payment,
        name="partner-payment",
    ),
    path("sales/orders/", views.sales_orders, name="sales-orders"),
    path("purchasing/orders/", views.purchase_orders, name="purchase-orders"),
    path("inventory/transactions/", views.inventory_transactions, name="inventory-transactions"),
    path(
        "inventory/transactions/<int:transaction_id>/approve/",
        views.approve_inventory_transaction,
        name="inventory-transaction-approve",
    ),
    path(
        "inventory/transactions/<int:transaction_id>/reject/",
        views.reject_inventory_transaction,
        name="inventory-transaction-reject",
    ),
    path("inventory/balance/", views.inventory_balance, name="inventory-balance"),
    path(
        "production/orders/<int:production_order_id>/material-requirements/",
        views.production_material_requirements,
        name="production-material-requirements",
    ),
    path("production/orders/<int:production_order_id>/advance/", views.advance_production_step, name="production-advance"),
    path(
        "production/orders/<int:production_order_id>/material-import/",
        views.production_material_import,
        name="production-material-import",
    ),
    path(
        "production/orders/<int:production_order_id>/finish-product/",
        views.production_finish_product,
        name="production-finish-product",
    ),
]
