"""
Human readable document numbers: ``{PREFIX}-{YYYYMMDD}-{SEQ}``.

Numbers are allocated from the highest numeric suffix issued today. Two
requests racing for the same number collide on the unique constraint and the
loser retries inside a savepoint.
"""
from __future__ import annotations

import re
import time
from typing import Any, Type

from django.conf import settings
from django.db import IntegrityError, connection, models, transaction
from django.db.models import IntegerField, Max
from django.db.models.functions import Cast, Length, Substr
from django.utils import timezone

from procurement.exceptions import WorkflowError


def generate_document_no(model: Type[models.Model], field: str, prefix: str) -> str:
    today = timezone.localdate().strftime("%Y%m%d")
    stem = f"{prefix}-{today}-"
    suffix_start = len(stem) + 1  # Substr is 1-indexed in SQL backends.

    queryset = model.objects.filter(**{f"{field}__startswith": stem})
    if connection.vendor == "postgresql":
        # Only strictly numeric suffixes can be cast.
        queryset = queryset.filter(**{f"{field}__regex": rf"^{re.escape(stem)}\d+$"})
    else:
        queryset = queryset.annotate(no_len=Length(field)).filter(no_len__gt=len(stem))

    max_seq = queryset.annotate(
        seq_num=Cast(Substr(field, suffix_start), IntegerField())
    ).aggregate(
        max_seq=Max("seq_num")
    ).get("max_seq")
    seq = int(max_seq or 0) + 1
    return f"{stem}{seq:03d}"


def _is_document_no_conflict(exc: IntegrityError, field: str) -> bool:
    message = str(exc).lower()
    return field in message and ("unique" in message or "duplicate" in message)


def create_numbered(model: Type[models.Model], field: str, prefix: str, **values: Any):
    """Create ``model`` with a freshly allocated document number."""
    attempts = max(1, int(settings.SIPB_DOCUMENT_NO_RETRY_ATTEMPTS))
    backoff = float(settings.SIPB_DOCUMENT_NO_RETRY_BACKOFF_SECONDS)
    for attempt in range(attempts):
        try:
            with transaction.atomic():
                return model.objects.create(
                    **{field: generate_document_no(model, field, prefix)},
                    **values,
                )
        except IntegrityError as exc:
            if not _is_document_no_conflict(exc, field):
                raise
            if attempt >= attempts - 1:
                raise WorkflowError(
                    f"Failed to generate a unique {prefix} number. Please retry.",
                    code="duplicate_document_no",
                ) from exc
            time.sleep(backoff * (attempt + 1))
    raise WorkflowError(
        f"Failed to generate a unique {prefix} number. Please retry.",
        code="duplicate_document_no",
    )
