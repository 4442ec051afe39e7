import logging
from typing import Any

from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from api.authentication import SipbAuthentication
from api.permissions import WorkflowPermission
from api.rbac import (
    PERM_ACTIVITY_VIEW,
    PERM_CHECKLIST_RECORD,
    PERM_DO_SEND,
    PERM_DOCUMENTS_VIEW,
    PERM_FRB_CREATE,
    PERM_FRB_DECIDE,
    PERM_FRB_VALIDATE,
    PERM_GRN_RECORD,
    PERM_ITEM_CREATE,
    PERM_ITEM_EDIT,
    PERM_PO_MANAGE,
    PERM_PR_DECIDE,
    PERM_PROJECT_MANAGE,
    PERM_RECONCILE,
    PERM_REPORTS_VIEW,
    PERM_STOCK_ADJUST,
    PERM_SUPPLIER_MANAGE,
    PERM_TTB_RECORD,
    PERM_USER_MANAGE,
    resolve_app_user,
)
from procurement.exceptions import PermissionDenied, WorkflowError
from procurement.roles import Actor
from procurement.services import activity, delivery, frb as frb_service, master_data
from procurement.services import purchase_order, purchase_request, reports, stock_ledger
from procurement.services.common import parse_int

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    "validation": 400,
    "forbidden": 403,
    "not_found": 404,
    "invalid_transition": 409,
    "stock_insufficient": 409,
    "conflict": 409,
    "duplicate_document_no": 409,
}


def _error_response(exc: WorkflowError) -> Response:
    status = _STATUS_BY_CODE.get(exc.code, 400)
    if status >= 409:
        logger.info("workflow_rejected code=%s message=%s", exc.code, exc.message)
    return Response({"errors": {exc.field or exc.code: exc.message}}, status=status)


def _actor(request) -> Actor:
    user = resolve_app_user(request, request.user)
    if user is None:
        raise PermissionDenied("No active SIPB user is linked to this login.")
    return Actor(user_id=user.user_id, name=user.name, role=user.role_enum)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _data(request) -> dict:
    return request.data if isinstance(request.data, dict) else {}


# =============================================================================
# FRB
# =============================================================================

@api_view(["GET", "POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def frb_collection(request):
    try:
        actor = _actor(request)
        if request.method == "POST":
            data = _data(request)
            result = frb_service.create_frb(actor, data, as_draft=_as_bool(data.get("as_draft")))
            return Response(result, status=201)
        frbs = frb_service.list_frbs(actor, status=request.query_params.get("status"))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"frbs": frbs, "count": len(frbs)})


@api_view(["GET", "PATCH"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def frb_detail(request, frb_id: int):
    try:
        actor = _actor(request)
        if request.method == "PATCH":
            data = _data(request)
            result = frb_service.update_frb(frb_id, actor, data, as_draft=_as_bool(data.get("as_draft")))
        else:
            result = frb_service.get_frb(frb_id, actor)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def frb_submit(request, frb_id: int):
    try:
        result = frb_service.submit_frb(
            frb_id, _actor(request), as_draft=_as_bool(_data(request).get("as_draft"))
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def frb_decision(request, frb_id: int):
    data = _data(request)
    try:
        result = frb_service.director_decide(
            frb_id, _actor(request), approve=_as_bool(data.get("approve")), reason=data.get("reason")
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def frb_begin_validation(request, frb_id: int):
    try:
        result = frb_service.begin_validation(frb_id, _actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def frb_validate(request, frb_id: int):
    data = _data(request)
    try:
        result = frb_service.purchasing_validate(
            frb_id,
            _actor(request),
            approved_quantities=data.get("approved_quantities"),
            notes=data.get("notes") or "",
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result, status=200 if result["replayed"] else 201)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def frb_fulfil(request, frb_id: int):
    pr_id = _data(request).get("pr_id")
    try:
        result = frb_service.fulfil_purchased_items(
            frb_id,
            _actor(request),
            pr_id=parse_int(pr_id, "pr_id", minimum=1) if pr_id not in (None, "") else None,
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result, status=201)


# =============================================================================
# Purchase Requests & Orders
# =============================================================================

@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def pr_list(request):
    try:
        prs = purchase_request.list_prs(_actor(request), status=request.query_params.get("status"))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"purchase_requests": prs, "count": len(prs)})


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def pr_detail(request, pr_id: int):
    try:
        result = purchase_request.get_pr(pr_id, _actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def pr_decision(request, pr_id: int):
    data = _data(request)
    try:
        result = purchase_request.director_decide_pr(
            pr_id, _actor(request), approve=_as_bool(data.get("approve")), reason=data.get("reason")
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def pr_create_po(request, pr_id: int):
    data = _data(request)
    try:
        result = purchase_request.create_po(
            pr_id,
            _actor(request),
            supplier_id=data.get("supplier_id"),
            expected_delivery_date=data.get("expected_delivery_date"),
            notes=data.get("notes") or "",
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result, status=201)


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def po_list(request):
    try:
        pos = purchase_order.list_pos(_actor(request), status=request.query_params.get("status"))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"purchase_orders": pos, "count": len(pos)})


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def po_detail(request, po_id: int):
    try:
        result = purchase_order.get_po(po_id, _actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def po_ship(request, po_id: int):
    try:
        result = purchase_order.mark_shipped(po_id, _actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def po_cancel(request, po_id: int):
    try:
        result = purchase_order.cancel_po(po_id, _actor(request), _data(request).get("reason"))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["GET", "POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def po_goods_receipts(request, po_id: int):
    try:
        actor = _actor(request)
        if request.method == "POST":
            data = _data(request)
            result = purchase_order.record_grn(
                po_id,
                actor,
                items=data.get("items"),
                overall_condition=data.get("overall_condition"),
                notes=data.get("notes") or "",
            )
            return Response(result, status=201)
        grns = purchase_order.list_grns(actor, po_id=po_id)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"goods_receipts": grns, "count": len(grns)})


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def grn_item_release_repaired(request, grn_item_id: int):
    try:
        result = purchase_order.release_repaired(
            grn_item_id, _actor(request), _data(request).get("quantity")
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


# =============================================================================
# Delivery Orders, TTB & Reconciliation
# =============================================================================

@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def do_list(request):
    try:
        dos = delivery.list_dos(_actor(request), status=request.query_params.get("status"))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"delivery_orders": dos, "count": len(dos)})


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def do_detail(request, do_id: int):
    try:
        result = delivery.get_do(do_id, _actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def do_checklist(request, do_id: int):
    data = _data(request)
    try:
        result = delivery.record_checklist(
            do_id, _actor(request), items=data.get("items"), overall_status=data.get("overall_status")
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result, status=201)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def do_send(request, do_id: int):
    try:
        result = delivery.mark_sent(do_id, _actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def do_ttb(request, do_id: int):
    data = _data(request)
    try:
        result = delivery.record_ttb(do_id, _actor(request), accepted=_as_bool(data.get("accepted")), data=data)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result, status=201)


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def ttb_list(request):
    try:
        ttbs = delivery.list_ttbs(_actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"ttbs": ttbs, "count": len(ttbs)})


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def rejection_report_list(request):
    try:
        reports_ = delivery.list_rejection_reports(
            _actor(request), status=request.query_params.get("status")
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"rejection_reports": reports_, "count": len(reports_)})


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def rejection_report_start(request, report_id: int):
    try:
        result = delivery.start_reconciliation(report_id, _actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def rejection_report_resolve(request, report_id: int):
    try:
        result = delivery.resolve_reconciliation(
            report_id, _actor(request), _data(request).get("resolution_notes")
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


# =============================================================================
# Master Data & Stock
# =============================================================================

@api_view(["GET", "POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def item_collection(request):
    try:
        actor = _actor(request)
        if request.method == "POST":
            return Response(master_data.create_item(actor, _data(request)), status=201)
        items = master_data.list_items(
            actor, low_stock_only=_as_bool(request.query_params.get("low_stock"))
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"items": items, "count": len(items)})


@api_view(["GET", "PATCH"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def item_detail(request, item_id: int):
    try:
        actor = _actor(request)
        if request.method == "PATCH":
            result = master_data.update_item(item_id, actor, _data(request))
        else:
            result = master_data.get_item(item_id, actor)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def item_adjust_stock(request, item_id: int):
    data = _data(request)
    try:
        result = stock_ledger.manual_adjustment(
            _actor(request),
            item_id,
            data.get("quantity"),
            str(data.get("direction") or "").upper(),
            data.get("reason"),
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def item_movements(request, item_id: int):
    try:
        movements = stock_ledger.list_movements(item_id)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"movements": movements, "count": len(movements)})


@api_view(["GET", "POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def project_collection(request):
    try:
        actor = _actor(request)
        if request.method == "POST":
            return Response(master_data.create_project(actor, _data(request)), status=201)
        projects = master_data.list_projects(actor)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"projects": projects, "count": len(projects)})


@api_view(["PATCH"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def project_detail(request, project_id: int):
    try:
        result = master_data.update_project(project_id, _actor(request), _data(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["GET", "POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def supplier_collection(request):
    try:
        actor = _actor(request)
        if request.method == "POST":
            return Response(master_data.create_supplier(actor, _data(request)), status=201)
        suppliers = master_data.list_suppliers(
            actor, active_only=_as_bool(request.query_params.get("active"))
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"suppliers": suppliers, "count": len(suppliers)})


@api_view(["PATCH"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def supplier_detail(request, supplier_id: int):
    try:
        result = master_data.update_supplier(supplier_id, _actor(request), _data(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["GET", "POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def user_collection(request):
    try:
        actor = _actor(request)
        if request.method == "POST":
            return Response(master_data.create_user(actor, _data(request)), status=201)
        users = master_data.list_users(actor)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"users": users, "count": len(users)})


@api_view(["PATCH"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def user_detail(request, user_id: int):
    try:
        result = master_data.update_user(user_id, _actor(request), _data(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


# =============================================================================
# Reports, Activity & Notifications
# =============================================================================

@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def report_summary(request):
    try:
        result = reports.system_summary(_actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def activity_list(request):
    limit = request.query_params.get("limit")
    try:
        entries = activity.list_activity(
            _actor(request), limit=parse_int(limit, "limit", minimum=1) if limit else None
        )
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"activity": entries, "count": len(entries)})


@api_view(["GET"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def notification_list(request):
    try:
        actor = _actor(request)
        notifications = activity.list_notifications(
            actor, unread_only=_as_bool(request.query_params.get("unread"))
        )
        unread = activity.unread_count(actor)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"notifications": notifications, "unread_count": unread})


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def notification_mark_read(request, notification_id: int):
    try:
        result = activity.mark_read(_actor(request), notification_id)
    except WorkflowError as exc:
        return _error_response(exc)
    return Response(result)


@api_view(["POST"])
@authentication_classes([SipbAuthentication])
@permission_classes([WorkflowPermission])
def notification_mark_all_read(request):
    try:
        updated = activity.mark_all_read(_actor(request))
    except WorkflowError as exc:
        return _error_response(exc)
    return Response({"updated": updated})


frb_collection.required_permission = {"GET": PERM_DOCUMENTS_VIEW, "POST": PERM_FRB_CREATE}
frb_detail.required_permission = {"GET": PERM_DOCUMENTS_VIEW, "PATCH": PERM_FRB_CREATE}
frb_submit.required_permission = PERM_FRB_CREATE
frb_decision.required_permission = PERM_FRB_DECIDE
frb_begin_validation.required_permission = PERM_FRB_VALIDATE
frb_validate.required_permission = PERM_FRB_VALIDATE
frb_fulfil.required_permission = PERM_FRB_VALIDATE
pr_list.required_permission = PERM_DOCUMENTS_VIEW
pr_detail.required_permission = PERM_DOCUMENTS_VIEW
pr_decision.required_permission = PERM_PR_DECIDE
pr_create_po.required_permission = PERM_PO_MANAGE
po_list.required_permission = PERM_DOCUMENTS_VIEW
po_detail.required_permission = PERM_DOCUMENTS_VIEW
po_ship.required_permission = PERM_PO_MANAGE
po_cancel.required_permission = PERM_PO_MANAGE
po_goods_receipts.required_permission = {"GET": PERM_DOCUMENTS_VIEW, "POST": PERM_GRN_RECORD}
grn_item_release_repaired.required_permission = PERM_GRN_RECORD
do_list.required_permission = PERM_DOCUMENTS_VIEW
do_detail.required_permission = PERM_DOCUMENTS_VIEW
do_checklist.required_permission = PERM_CHECKLIST_RECORD
do_send.required_permission = PERM_DO_SEND
do_ttb.required_permission = PERM_TTB_RECORD
ttb_list.required_permission = PERM_DOCUMENTS_VIEW
rejection_report_list.required_permission = PERM_DOCUMENTS_VIEW
rejection_report_start.required_permission = PERM_RECONCILE
rejection_report_resolve.required_permission = PERM_RECONCILE
item_collection.required_permission = {"GET": PERM_DOCUMENTS_VIEW, "POST": PERM_ITEM_CREATE}
item_detail.required_permission = {"GET": PERM_DOCUMENTS_VIEW, "PATCH": PERM_ITEM_EDIT}
item_adjust_stock.required_permission = PERM_STOCK_ADJUST
item_movements.required_permission = PERM_DOCUMENTS_VIEW
project_collection.required_permission = {"GET": PERM_DOCUMENTS_VIEW, "POST": PERM_PROJECT_MANAGE}
project_detail.required_permission = PERM_PROJECT_MANAGE
supplier_collection.required_permission = {"GET": PERM_DOCUMENTS_VIEW, "POST": PERM_SUPPLIER_MANAGE}
supplier_detail.required_permission = PERM_SUPPLIER_MANAGE
user_collection.required_permission = {"GET": PERM_DOCUMENTS_VIEW, "POST": PERM_USER_MANAGE}
user_detail.required_permission = PERM_USER_MANAGE
report_summary.required_permission = PERM_REPORTS_VIEW
activity_list.required_permission = PERM_ACTIVITY_VIEW
notification_list.required_permission = PERM_DOCUMENTS_VIEW
notification_mark_read.required_permission = PERM_DOCUMENTS_VIEW
notification_mark_all_read.required_permission = PERM_DOCUMENTS_VIEW

for view_func in (
    frb_collection,
    frb_detail,
    frb_submit,
    frb_decision,
    frb_begin_validation,
    frb_validate,
    frb_fulfil,
    pr_list,
    pr_detail,
    pr_decision,
    pr_create_po,
    po_list,
    po_detail,
    po_ship,
    po_cancel,
    po_goods_receipts,
    grn_item_release_repaired,
    do_list,
    do_detail,
    do_checklist,
    do_send,
    do_ttb,
    ttb_list,
    rejection_report_list,
    rejection_report_start,
    rejection_report_resolve,
    item_collection,
    item_detail,
    item_adjust_stock,
    item_movements,
    project_collection,
    project_detail,
    supplier_collection,
    supplier_detail,
    user_collection,
    user_detail,
    report_summary,
    activity_list,
    notification_list,
    notification_mark_read,
    notification_mark_all_read,
):
    if hasattr(view_func, "cls"):
        view_func.cls.required_permission = view_func.required_permission
