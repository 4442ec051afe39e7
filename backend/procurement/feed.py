"""
In-process live query over the workflow collections.

``subscribe(collection, order_by)`` returns a ``Subscription`` that can take an
ordered snapshot of the collection and receives a change event for every
committed create, update or delete of one of its rows. Row saves are picked up
from Django's ``post_save``/``post_delete`` signals; services that write with
``QuerySet.update`` call ``publish`` themselves. Events are dispatched after
the transaction commits, so a rolled-back mutation is never observed.
"""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from django.conf import settings
from django.core.exceptions import FieldDoesNotExist
from django.db import models, transaction
from django.db.models.signals import post_delete, post_save
from django.forms.models import model_to_dict

from procurement import models as m
from procurement import serializers
from procurement.exceptions import ValidationError

logger = logging.getLogger("sipb.feed")

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"


@dataclass(frozen=True)
class Collection:
    name: str
    model: Type[models.Model]
    default_order: str
    serialize: Callable[[Any], Dict[str, Any]]
    select_related: tuple = ()
    limit: Optional[int] = None


def _plain(instance: models.Model) -> Dict[str, Any]:
    data = model_to_dict(instance)
    data[instance._meta.pk.name] = instance.pk
    return data


COLLECTIONS: Dict[str, Collection] = {
    c.name: c
    for c in (
        Collection("users", m.AppUser, "name", serializers.serialize_user),
        Collection("projects", m.Project, "project_name", serializers.serialize_project),
        Collection("items", m.Item, "item_name", serializers.serialize_item),
        Collection("suppliers", m.Supplier, "supplier_name", serializers.serialize_supplier),
        Collection("frbs", m.FormRequestBarang, "-submission_date", serializers.serialize_frb, ("project",)),
        Collection("purchaseRequests", m.PurchaseRequest, "-request_date", serializers.serialize_pr, ("frb",)),
        Collection("purchaseOrders", m.PurchaseOrder, "-order_date", serializers.serialize_po, ("pr", "supplier")),
        Collection("deliveryOrders", m.DeliveryOrder, "-creation_date", serializers.serialize_do, ("frb",)),
        Collection("goodsReceipts", m.GoodsReceipt, "-receipt_date", serializers.serialize_grn, ("po",)),
        Collection("checklists", m.GoodsPreparationChecklist, "-check_date", serializers.serialize_checklist),
        Collection("ttbs", m.TandaTerimaBarang, "-acceptance_date", serializers.serialize_ttb, ("delivery_order",)),
        Collection("rejectionReports", m.RejectionReport, "-reporting_date", serializers.serialize_rejection_report, ("ttb",)),
        Collection("activityLogs", m.ActivityLog, "-action_dtime", _plain, limit=200),
        Collection("notifications", m.Notification, "-create_dtime", _plain),
    )
}

_BY_MODEL: Dict[Type[models.Model], Collection] = {c.model: c for c in COLLECTIONS.values()}


class Subscription:
    """A consumer's view of one collection."""

    def __init__(self, collection: Collection, order_by: str):
        self.collection = collection
        self.order_by = order_by
        self.changes: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=settings.SIPB_FEED_QUEUE_SIZE)
        self.overflowed = False
        self.closed = False

    def snapshot(self) -> List[Dict[str, Any]]:
        c = self.collection
        qs = c.model.objects.select_related(*c.select_related).order_by(self.order_by)
        if c.limit:
            qs = qs[: c.limit]
        return [c.serialize(row) for row in qs]

    def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Next change event; raises ``queue.Empty`` after ``timeout`` seconds."""
        return self.changes.get(timeout=timeout)

    def drain(self) -> List[Dict[str, Any]]:
        events = []
        while True:
            try:
                events.append(self.changes.get_nowait())
            except queue.Empty:
                return events

    def _offer(self, event: Dict[str, Any]) -> None:
        try:
            self.changes.put_nowait(event)
        except queue.Full:
            # Consumer must resubscribe and take a fresh snapshot.
            self.overflowed = True
            logger.warning("feed_queue_full collection=%s", self.collection.name)
            unsubscribe(self)

    def close(self) -> None:
        unsubscribe(self)


_lock = threading.Lock()
_subscribers: Dict[str, List[Subscription]] = {}


def subscribe(collection: str, order_by: Optional[str] = None) -> Subscription:
    try:
        entry = COLLECTIONS[collection]
    except KeyError:
        raise ValidationError(f"Unknown collection {collection!r}.", field="collection")
    order = order_by or entry.default_order
    field = order.lstrip("-")
    try:
        entry.model._meta.get_field(field)
    except FieldDoesNotExist:
        raise ValidationError(f"Cannot order {collection} by {field!r}.", field="order_by")

    sub = Subscription(entry, order)
    with _lock:
        _subscribers.setdefault(collection, []).append(sub)
    return sub


def unsubscribe(sub: Subscription) -> None:
    with _lock:
        subs = _subscribers.get(sub.collection.name, [])
        if sub in subs:
            subs.remove(sub)
    sub.closed = True


def _listeners(name: str) -> List[Subscription]:
    with _lock:
        return list(_subscribers.get(name, ()))


def _dispatch(entry: Collection, pk: Any, kind: str) -> None:
    listeners = _listeners(entry.name)
    if not listeners:
        return
    data = None
    if kind != DELETED:
        row = entry.model.objects.select_related(*entry.select_related).filter(pk=pk).first()
        if row is None:
            return
        data = entry.serialize(row)
    event = {"collection": entry.name, "type": kind, "id": pk, "data": data}
    for sub in listeners:
        sub._offer(event)


def publish(model: Type[models.Model], pk: Any, kind: str = UPDATED) -> None:
    """Announce a change made without ``Model.save`` (e.g. ``QuerySet.update``)."""
    entry = _BY_MODEL.get(model)
    if entry is None or not _listeners(entry.name):
        return
    transaction.on_commit(lambda: _dispatch(entry, pk, kind))


def _on_save(sender, instance, created, **kwargs) -> None:
    publish(sender, instance.pk, CREATED if created else UPDATED)


def _on_delete(sender, instance, **kwargs) -> None:
    publish(sender, instance.pk, DELETED)


def connect_signals() -> None:
    for model in _BY_MODEL:
        post_save.connect(_on_save, sender=model, dispatch_uid=f"sipb-feed-save-{model.__name__}")
        post_delete.connect(_on_delete, sender=model, dispatch_uid=f"sipb-feed-delete-{model.__name__}")
