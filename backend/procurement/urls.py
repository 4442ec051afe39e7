from django.urls import path

from procurement import views

urlpatterns = [
    path("frbs/", views.frb_collection, name="frb_collection"),
    path("frbs/<int:frb_id>/", views.frb_detail, name="frb_detail"),
    path("frbs/<int:frb_id>/submit/", views.frb_submit, name="frb_submit"),
    path("frbs/<int:frb_id>/decision/", views.frb_decision, name="frb_decision"),
    path("frbs/<int:frb_id>/begin-validation/", views.frb_begin_validation, name="frb_begin_validation"),
    path("frbs/<int:frb_id>/validate/", views.frb_validate, name="frb_validate"),
    path("frbs/<int:frb_id>/fulfil/", views.frb_fulfil, name="frb_fulfil"),
    path("purchase-requests/", views.pr_list, name="pr_list"),
    path("purchase-requests/<int:pr_id>/", views.pr_detail, name="pr_detail"),
    path("purchase-requests/<int:pr_id>/decision/", views.pr_decision, name="pr_decision"),
    path("purchase-requests/<int:pr_id>/purchase-order/", views.pr_create_po, name="pr_create_po"),
    path("purchase-orders/", views.po_list, name="po_list"),
    path("purchase-orders/<int:po_id>/", views.po_detail, name="po_detail"),
    path("purchase-orders/<int:po_id>/ship/", views.po_ship, name="po_ship"),
    path("purchase-orders/<int:po_id>/cancel/", views.po_cancel, name="po_cancel"),
    path("purchase-orders/<int:po_id>/goods-receipts/", views.po_goods_receipts, name="po_goods_receipts"),
    path(
        "goods-receipt-items/<int:grn_item_id>/release-repaired/",
        views.grn_item_release_repaired,
        name="grn_item_release_repaired",
    ),
    path("delivery-orders/", views.do_list, name="do_list"),
    path("delivery-orders/<int:do_id>/", views.do_detail, name="do_detail"),
    path("delivery-orders/<int:do_id>/checklist/", views.do_checklist, name="do_checklist"),
    path("delivery-orders/<int:do_id>/send/", views.do_send, name="do_send"),
    path("delivery-orders/<int:do_id>/ttb/", views.do_ttb, name="do_ttb"),
    path("ttbs/", views.ttb_list, name="ttb_list"),
    path("rejection-reports/", views.rejection_report_list, name="rejection_report_list"),
    path("rejection-reports/<int:report_id>/start/", views.rejection_report_start, name="rejection_report_start"),
    path(
        "rejection-reports/<int:report_id>/resolve/",
        views.rejection_report_resolve,
        name="rejection_report_resolve",
    ),
    path("items/", views.item_collection, name="item_collection"),
    path("items/<int:item_id>/", views.item_detail, name="item_detail"),
    path("items/<int:item_id>/adjust-stock/", views.item_adjust_stock, name="item_adjust_stock"),
    path("items/<int:item_id>/movements/", views.item_movements, name="item_movements"),
    path("projects/", views.project_collection, name="project_collection"),
    path("projects/<int:project_id>/", views.project_detail, name="project_detail"),
    path("suppliers/", views.supplier_collection, name="supplier_collection"),
    path("suppliers/<int:supplier_id>/", views.supplier_detail, name="supplier_detail"),
    path("users/", views.user_collection, name="user_collection"),
    path("users/<int:user_id>/", views.user_detail, name="user_detail"),
    path("reports/summary/", views.report_summary, name="report_summary"),
    path("activity/", views.activity_list, name="activity_list"),
    path("notifications/", views.notification_list, name="notification_list"),
    path("notifications/read-all/", views.notification_mark_all_read, name="notification_mark_all_read"),
    path(
        "notifications/<int:notification_id>/read/",
        views.notification_mark_read,
        name="notification_mark_read",
    ),
]
