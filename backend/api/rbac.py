from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError

from api.authentication import Principal
from procurement.models import AppUser
from procurement.roles import Capability, capabilities_for

logger = logging.getLogger(__name__)


def permission_for(capability: Capability) -> str:
    return f"procurement.{capability.value}"


PERM_DOCUMENTS_VIEW = permission_for(Capability.DOCUMENTS_VIEW)
PERM_FRB_CREATE = permission_for(Capability.FRB_CREATE)
PERM_FRB_DECIDE = permission_for(Capability.FRB_DECIDE)
PERM_FRB_VALIDATE = permission_for(Capability.FRB_VALIDATE)
PERM_PR_DECIDE = permission_for(Capability.PR_DECIDE)
PERM_PO_MANAGE = permission_for(Capability.PO_MANAGE)
PERM_GRN_RECORD = permission_for(Capability.GRN_RECORD)
PERM_CHECKLIST_RECORD = permission_for(Capability.CHECKLIST_RECORD)
PERM_DO_SEND = permission_for(Capability.DO_SEND)
PERM_TTB_RECORD = permission_for(Capability.TTB_RECORD)
PERM_RECONCILE = permission_for(Capability.RECONCILE)
PERM_STOCK_ADJUST = permission_for(Capability.STOCK_ADJUST)
PERM_ITEM_CREATE = permission_for(Capability.ITEM_CREATE)
PERM_ITEM_EDIT = permission_for(Capability.ITEM_EDIT)
PERM_PROJECT_MANAGE = permission_for(Capability.PROJECT_MANAGE)
PERM_SUPPLIER_MANAGE = permission_for(Capability.SUPPLIER_MANAGE)
PERM_USER_MANAGE = permission_for(Capability.USER_MANAGE)
PERM_REPORTS_VIEW = permission_for(Capability.REPORTS_VIEW)
PERM_ACTIVITY_VIEW = permission_for(Capability.ACTIVITY_VIEW)


def _dedupe_preserve_order(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def resolve_app_user(request, principal: Principal) -> Optional[AppUser]:
    """The active SIPB user behind ``principal``, cached on the request."""
    if hasattr(request, "_app_user_cache"):
        return request._app_user_cache

    user = None
    qs = AppUser.objects.filter(is_active=True)
    if principal.user_id:
        try:
            user = qs.filter(user_id=int(principal.user_id)).first()
        except ValueError:
            user = qs.filter(username=principal.user_id).first()
    if user is None and principal.username:
        user = qs.filter(username=principal.username).first()
    if user is None and principal.email:
        user = qs.filter(email__iexact=principal.email).first()

    request._app_user_cache = user
    return user


def resolve_roles_and_permissions(
    request, principal: Principal
) -> Tuple[list[str], list[str]]:
    if hasattr(request, "_rbac_cache"):
        cached = request._rbac_cache
        return cached["roles"], cached["permissions"]

    roles: list[str] = list(principal.roles or [])
    permissions: list[str] = list(getattr(principal, "permissions", []) or [])

    if settings.AUTH_USE_DB_RBAC:
        try:
            user = resolve_app_user(request, principal)
            if user is not None:
                roles = _dedupe_preserve_order(roles + [user.role])
        except DatabaseError as exc:
            logger.warning("RBAC DB lookup failed: %s", exc)

    permissions = _dedupe_preserve_order(
        permissions + sorted(permission_for(cap) for cap in capabilities_for(roles))
    )

    request._rbac_cache = {"roles": roles, "permissions": permissions}
    return roles, permissions
