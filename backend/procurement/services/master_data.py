"""
Master data: users, projects, items and suppliers.

Item edits never touch ``current_stock``; opening stock on a new item is
booked through the stock ledger so it shows up as a movement.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from django.conf import settings
from django.db import IntegrityError, transaction

from procurement.exceptions import PermissionDenied, ValidationError
from procurement.models import AppUser, Item, Project, Supplier
from procurement.roles import Actor, Capability, Role, parse_role, require_capability
from procurement.serializers import (
    serialize_item,
    serialize_project,
    serialize_supplier,
    serialize_user,
)
from procurement.services import activity, stock_ledger
from procurement.services.common import (
    audit_fields,
    get_document,
    lock_document,
    parse_int,
    require_text,
    save_document,
)

logger = logging.getLogger("sipb.audit")


def _optional_text(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


def _parse_price(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0.00")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Estimated unit price must be a number.", field="estimated_unit_price")
    if price < 0 or not price.is_finite():
        raise ValidationError("Estimated unit price cannot be negative.", field="estimated_unit_price")
    return price.quantize(Decimal("0.01"))


# =============================================================================
# Users
# =============================================================================

def list_users(actor: Actor) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    return [serialize_user(u) for u in AppUser.objects.all()]


@transaction.atomic
def create_user(actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    require_capability(actor, Capability.USER_MANAGE)
    role = parse_role(data.get("role"))
    if role is None:
        raise ValidationError("Unknown role.", field="role")
    username = require_text(data.get("username"), "username", "Username is required.")
    try:
        with transaction.atomic():
            user = AppUser.objects.create(
                username=username,
                name=require_text(data.get("name"), "name", "Name is required."),
                email=_optional_text(data.get("email")),
                role=role.value,
                **audit_fields(actor),
            )
    except IntegrityError:
        raise ValidationError(f"Username {username} is already taken.", field="username")
    activity.log_activity(actor, f"Created user {user.username} ({role.label})")
    logger.info("user_created", extra={"event_type": "CREATE", "user_id": user.user_id, "role": role.value})
    return serialize_user(user)


@transaction.atomic
def update_user(user_id: int, actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Change a user's name, email, role or active flag."""
    require_capability(actor, Capability.USER_MANAGE)
    user = lock_document(AppUser, user_id, "User")
    fields = []
    if "name" in data:
        user.name = require_text(data.get("name"), "name", "Name is required.")
        fields.append("name")
    if "email" in data:
        user.email = _optional_text(data.get("email"))
        fields.append("email")
    if "role" in data:
        role = parse_role(data.get("role"))
        if role is None:
            raise ValidationError("Unknown role.", field="role")
        user.role = role.value
        fields.append("role")
    if "is_active" in data:
        if user.user_id == actor.user_id and not data.get("is_active"):
            raise ValidationError("You cannot deactivate your own account.", field="is_active")
        user.is_active = bool(data.get("is_active"))
        fields.append("is_active")
    if fields:
        save_document(user, actor, fields)
        activity.log_activity(actor, f"Updated user {user.username}", details={"fields": fields})
    return serialize_user(user)


# =============================================================================
# Projects
# =============================================================================

def list_projects(actor: Actor) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = Project.objects.all()
    if actor.role == Role.PROJECT_MANAGER:
        qs = qs.filter(pm_id=actor.user_id)
    return [serialize_project(p) for p in qs]


def _resolve_pm(actor: Actor, pm_id: Any) -> int:
    if actor.role == Role.PROJECT_MANAGER:
        if pm_id not in (None, "") and parse_int(pm_id, "pm_id", minimum=1) != actor.user_id:
            raise PermissionDenied("Project managers can only manage their own projects.")
        return actor.user_id
    pid = parse_int(pm_id, "pm_id", minimum=1)
    if not AppUser.objects.filter(
        user_id=pid, role=Role.PROJECT_MANAGER.value, is_active=True
    ).exists():
        raise ValidationError("pm_id must reference an active project manager.", field="pm_id")
    return pid


@transaction.atomic
def create_project(actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    require_capability(actor, Capability.PROJECT_MANAGE)
    project = Project.objects.create(
        project_name=require_text(data.get("project_name"), "project_name", "Project name is required."),
        pm_id=_resolve_pm(actor, data.get("pm_id")),
        project_po_ref=_optional_text(data.get("project_po_ref")),
        **audit_fields(actor),
    )
    activity.log_activity(actor, f"Created project {project.project_name}")
    return serialize_project(project)


@transaction.atomic
def update_project(project_id: int, actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    require_capability(actor, Capability.PROJECT_MANAGE)
    project = lock_document(Project, project_id, "Project")
    if actor.role == Role.PROJECT_MANAGER and project.pm_id != actor.user_id:
        raise PermissionDenied("Project managers can only manage their own projects.")
    fields = []
    if "project_name" in data:
        project.project_name = require_text(
            data.get("project_name"), "project_name", "Project name is required."
        )
        fields.append("project_name")
    if "project_po_ref" in data:
        project.project_po_ref = _optional_text(data.get("project_po_ref"))
        fields.append("project_po_ref")
    if "pm_id" in data:
        project.pm_id = _resolve_pm(actor, data.get("pm_id"))
        fields.append("pm_id")
    if fields:
        save_document(project, actor, fields)
        activity.log_activity(actor, f"Updated project {project.project_name}")
    return serialize_project(project)


# =============================================================================
# Items
# =============================================================================

def list_items(actor: Actor, low_stock_only: bool = False, threshold: Optional[int] = None) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = Item.objects.all()
    if low_stock_only:
        limit = settings.SIPB_LOW_STOCK_THRESHOLD if threshold is None else threshold
        qs = qs.filter(current_stock__lt=limit)
    return [serialize_item(i) for i in qs]


def get_item(item_id: int, actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    return serialize_item(get_document(Item, item_id, "Item"))


@transaction.atomic
def create_item(actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    require_capability(actor, Capability.ITEM_CREATE)
    initial_stock = parse_int(data.get("initial_stock") or 0, "initial_stock", minimum=0)
    item = Item.objects.create(
        item_name=require_text(data.get("item_name"), "item_name", "Item name is required."),
        description=_optional_text(data.get("description")),
        unit=require_text(data.get("unit"), "unit", "Unit is required."),
        estimated_unit_price=_parse_price(data.get("estimated_unit_price")),
        current_stock=0,
        **audit_fields(actor),
    )
    if initial_stock:
        stock_ledger.adjust(
            item.item_id,
            initial_stock,
            stock_ledger.ADD,
            actor=actor,
            reason="Opening stock",
            reference_no="INITIAL",
        )
        item.refresh_from_db()
    activity.log_activity(actor, f"Added item {item.item_name}", details={"initial_stock": initial_stock})
    return serialize_item(item)


@transaction.atomic
def update_item(item_id: int, actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    require_capability(actor, Capability.ITEM_EDIT)
    if "current_stock" in data:
        raise ValidationError(
            "Stock can only be changed through a stock adjustment.", field="current_stock"
        )
    item = lock_document(Item, item_id, "Item")
    fields = []
    if "item_name" in data:
        item.item_name = require_text(data.get("item_name"), "item_name", "Item name is required.")
        fields.append("item_name")
    if "description" in data:
        item.description = _optional_text(data.get("description"))
        fields.append("description")
    if "unit" in data:
        item.unit = require_text(data.get("unit"), "unit", "Unit is required.")
        fields.append("unit")
    if "estimated_unit_price" in data:
        item.estimated_unit_price = _parse_price(data.get("estimated_unit_price"))
        fields.append("estimated_unit_price")
    if fields:
        save_document(item, actor, fields)
        activity.log_activity(actor, f"Updated item {item.item_name}", details={"fields": fields})
    return serialize_item(item)


# =============================================================================
# Suppliers
# =============================================================================

def list_suppliers(actor: Actor, active_only: bool = False) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = Supplier.objects.all()
    if active_only:
        qs = qs.filter(status_code="A")
    return [serialize_supplier(s) for s in qs]


@transaction.atomic
def create_supplier(actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    require_capability(actor, Capability.SUPPLIER_MANAGE)
    supplier = Supplier.objects.create(
        supplier_name=require_text(data.get("supplier_name"), "supplier_name", "Supplier name is required."),
        contact_person=_optional_text(data.get("contact_person")),
        phone_no=_optional_text(data.get("phone_no")),
        email_text=_optional_text(data.get("email_text") or data.get("email")),
        **audit_fields(actor),
    )
    activity.log_activity(actor, f"Added supplier {supplier.supplier_name}")
    return serialize_supplier(supplier)


@transaction.atomic
def update_supplier(supplier_id: int, actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    require_capability(actor, Capability.SUPPLIER_MANAGE)
    supplier = lock_document(Supplier, supplier_id, "Supplier")
    fields = []
    for name in ("contact_person", "phone_no", "email_text"):
        if name in data:
            setattr(supplier, name, _optional_text(data.get(name)))
            fields.append(name)
    if "supplier_name" in data:
        supplier.supplier_name = require_text(
            data.get("supplier_name"), "supplier_name", "Supplier name is required."
        )
        fields.append("supplier_name")
    if "status_code" in data:
        status = str(data.get("status_code") or "").strip().upper()
        if status not in ("A", "I"):
            raise ValidationError("status_code must be A or I.", field="status_code")
        supplier.status_code = status
        fields.append("status_code")
    if fields:
        save_document(supplier, actor, fields)
        activity.log_activity(actor, f"Updated supplier {supplier.supplier_name}")
    return serialize_supplier(supplier)
