"""
Closed set of SIPB roles and the capability table checked inside every
workflow operation.

HTTP permissions in ``api.rbac`` are derived from the same table, so a role
that cannot reach an endpoint also cannot perform the transition when the
service layer is called directly.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from procurement.exceptions import PermissionDenied


class Role(str, Enum):
    PROJECT_MANAGER = "PROJECT_MANAGER"
    DIREKTUR = "DIREKTUR"
    PURCHASING = "PURCHASING"
    WAREHOUSE = "WAREHOUSE"
    ADMIN = "ADMIN"

    @property
    def label(self) -> str:
        return _ROLE_LABELS[self]


_ROLE_LABELS = {
    Role.PROJECT_MANAGER: "Project Manager",
    Role.DIREKTUR: "Direktur",
    Role.PURCHASING: "Purchasing",
    Role.WAREHOUSE: "Warehouse",
    Role.ADMIN: "Admin",
}

ROLE_CHOICES = [(role.value, role.label) for role in Role]

# Identity providers and older clients send display names or short codes.
_ROLE_ALIASES = {
    "PM": Role.PROJECT_MANAGER,
    "PROJECT MANAGER": Role.PROJECT_MANAGER,
    "DIRECTOR": Role.DIREKTUR,
    "DIREKTUR": Role.DIREKTUR,
    "PURCHASING": Role.PURCHASING,
    "WAREHOUSE": Role.WAREHOUSE,
    "GUDANG": Role.WAREHOUSE,
    "ADMIN": Role.ADMIN,
    "SYSTEM_ADMINISTRATOR": Role.ADMIN,
}


class Capability(str, Enum):
    DOCUMENTS_VIEW = "documents.view"
    FRB_CREATE = "frb.create"
    FRB_DECIDE = "frb.decide"
    FRB_VALIDATE = "frb.validate"
    PR_DECIDE = "pr.decide"
    PO_MANAGE = "po.manage"
    GRN_RECORD = "grn.record"
    CHECKLIST_RECORD = "checklist.record"
    DO_SEND = "do.send"
    TTB_RECORD = "ttb.record"
    RECONCILE = "reconciliation.resolve"
    STOCK_ADJUST = "stock.adjust"
    ITEM_CREATE = "item.create"
    ITEM_EDIT = "item.edit"
    PROJECT_MANAGE = "project.manage"
    SUPPLIER_MANAGE = "supplier.manage"
    USER_MANAGE = "user.manage"
    REPORTS_VIEW = "reports.view"
    ACTIVITY_VIEW = "activity.view"


ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.PROJECT_MANAGER: frozenset(
        {
            Capability.DOCUMENTS_VIEW,
            Capability.FRB_CREATE,
            Capability.ITEM_CREATE,
            Capability.PROJECT_MANAGE,
            Capability.RECONCILE,
        }
    ),
    Role.DIREKTUR: frozenset(
        {
            Capability.DOCUMENTS_VIEW,
            Capability.FRB_DECIDE,
            Capability.PR_DECIDE,
        }
    ),
    Role.PURCHASING: frozenset(
        {
            Capability.DOCUMENTS_VIEW,
            Capability.FRB_VALIDATE,
            Capability.PO_MANAGE,
            Capability.SUPPLIER_MANAGE,
            Capability.RECONCILE,
        }
    ),
    Role.WAREHOUSE: frozenset(
        {
            Capability.DOCUMENTS_VIEW,
            Capability.GRN_RECORD,
            Capability.CHECKLIST_RECORD,
            Capability.DO_SEND,
            Capability.TTB_RECORD,
            Capability.STOCK_ADJUST,
            Capability.ITEM_CREATE,
            Capability.RECONCILE,
        }
    ),
    Role.ADMIN: frozenset(Capability),
}


@dataclass(frozen=True)
class Actor:
    """The acting user as resolved from the identity provider."""

    user_id: int
    name: str
    role: Role

    @property
    def audit_id(self) -> str:
        return str(self.user_id)

    def can(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES.get(self.role, frozenset())


def parse_role(value: object) -> Optional[Role]:
    normalized = str(value or "").strip().upper().replace("-", "_")
    if not normalized:
        return None
    try:
        return Role(normalized)
    except ValueError:
        pass
    return _ROLE_ALIASES.get(normalized) or _ROLE_ALIASES.get(normalized.replace("_", " "))


def capabilities_for(roles: Iterable[object]) -> set[Capability]:
    capabilities: set[Capability] = set()
    for raw in roles:
        role = parse_role(raw)
        if role is not None:
            capabilities |= ROLE_CAPABILITIES[role]
    return capabilities


def require_capability(actor: Actor, capability: Capability) -> None:
    if not actor.can(capability):
        raise PermissionDenied(
            f"Role {actor.role.label} is not allowed to perform {capability.value}."
        )
