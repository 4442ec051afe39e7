"""Helpers shared by the workflow services."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Type

from django.db import models
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_date as django_parse_date

from procurement import feed
from procurement.exceptions import ConcurrentModification, NotFound, ValidationError
from procurement.models import AppUser
from procurement.roles import Actor


def lock_document(model: Type[models.Model], pk: Any, label: str, select_related=()):
    """Fetch a document row with ``SELECT ... FOR UPDATE``."""
    try:
        return model.objects.select_for_update().select_related(*select_related).get(pk=pk)
    except (model.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"{label} not found.", field=f"{label.lower()}_id")


def get_document(model: Type[models.Model], pk: Any, label: str, select_related=()):
    try:
        return model.objects.select_related(*select_related).get(pk=pk)
    except (model.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"{label} not found.", field=f"{label.lower()}_id")


def save_document(obj: models.Model, actor: Actor, fields: Iterable[str]) -> None:
    """
    Persist ``fields`` and bump ``version_nbr``, refusing the write when the
    row changed since ``obj`` was loaded.
    """
    model = type(obj)
    expected_version = obj.version_nbr
    values = {name: getattr(obj, name) for name in fields}
    values["update_by_id"] = actor.audit_id
    values["update_dtime"] = timezone.now()
    values["version_nbr"] = F("version_nbr") + 1
    updated = model.objects.filter(pk=obj.pk, version_nbr=expected_version).update(**values)
    if not updated:
        raise ConcurrentModification(model.__name__, obj.pk)
    obj.version_nbr = expected_version + 1
    obj.update_by_id = actor.audit_id
    obj.update_dtime = values["update_dtime"]
    feed.publish(model, obj.pk)


def audit_fields(actor: Actor) -> Dict[str, str]:
    return {"create_by_id": actor.audit_id, "update_by_id": actor.audit_id}


def user_for(actor: Actor) -> AppUser:
    try:
        return AppUser.objects.get(user_id=actor.user_id)
    except AppUser.DoesNotExist:
        raise NotFound("Acting user not found.", field="user_id")


def require_text(value: Any, field: str, message: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(message, field=field)
    return text


def parse_int(value: Any, field: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{field} must be a whole number.", field=field)
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number.", field=field)
    if parsed < minimum:
        raise ValidationError(f"{field} must be at least {minimum}.", field=field)
    return parsed


def parse_date(value: Any, field: str, required: bool = True) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        if required:
            raise ValidationError(f"{field} is required.", field=field)
        return None
    parsed = django_parse_date(str(value)[:10])
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD).", field=field)
    return parsed


def parse_choice(value: Any, field: str, choices, default: Optional[str] = None) -> str:
    normalized = str(value or "").strip().upper().replace(" ", "_").replace("/", "_")
    if not normalized and default is not None:
        return default
    allowed = {code for code, _ in choices}
    if normalized not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(allowed))}.", field=field
        )
    return normalized


def parse_refs(value: Any, field: str) -> List[str]:
    if value in (None, ""):
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list of references.", field=field)
    return [str(ref) for ref in value if str(ref).strip()]


def iso(value) -> Optional[str]:
    return value.isoformat() if value else None
