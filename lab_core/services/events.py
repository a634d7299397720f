# lab_core/services/events.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from lab_core.models import EventCounter, LabEvent

logger = logging.getLogger(__name__)


NEW_MESSAGE = "new_message"
RECEPTION_QUEUE_UPDATED = "reception:queue-updated"
NEW_TEST_REQUEST = "new_test_request"
TEST_STATUS_UPDATED = "test_status_updated"
RESULT_SAVED = "result_saved"
REPORT_RELEASED = "report_released"

EVENT_NAMES = (
    NEW_MESSAGE,
    RECEPTION_QUEUE_UPDATED,
    NEW_TEST_REQUEST,
    TEST_STATUS_UPDATED,
    RESULT_SAVED,
    REPORT_RELEASED,
)


FEED_COUNTER = "lab_event"


def _next_seq() -> int:
    counter, _ = EventCounter.objects.select_for_update().get_or_create(name=FEED_COUNTER)
    counter.last_value += 1
    counter.save(update_fields=["last_value"])
    return counter.last_value


def publish_event(name: str, payload: Optional[Dict[str, Any]] = None, department=None) -> LabEvent:
    """
    Append an event to the feed.

    Runs in the caller's transaction: a rolled back change never leaves an
    event behind. The seq comes from the locked counter row, which stays
    locked until the caller commits; a poller never sees seq N+1 while N
    is still uncommitted.
    """
    if name not in EVENT_NAMES:
        raise ValueError(f"Unknown event name: {name}")

    with transaction.atomic():
        event = LabEvent.objects.create(
            seq=_next_seq(),
            name=name,
            payload=payload or {},
            department=department,
        )
    logger.debug("Published %s #%s", name, event.seq)
    return event


def events_since(since: int = 0, *, limit: Optional[int] = None, department_id: Optional[int] = None) -> List[LabEvent]:
    """
    Events with seq > since in ascending order.

    With department_id, events scoped to other departments are skipped;
    unscoped events are always included.
    """
    max_limit = getattr(settings, "LAB_EVENT_PAGE_LIMIT", 500)
    limit = max_limit if not limit else min(int(limit), max_limit)

    qs = LabEvent.objects.filter(seq__gt=max(int(since or 0), 0))
    if department_id is not None:
        qs = qs.filter(department__isnull=True) | qs.filter(department_id=department_id)
    return list(qs.order_by("seq")[:limit])


def last_seq() -> int:
    latest = LabEvent.objects.order_by("-seq").values_list("seq", flat=True).first()
    return int(latest or 0)


def prune_events(*, now=None, retention_days: Optional[int] = None) -> int:
    now = now or timezone.now()
    days = retention_days if retention_days is not None else getattr(settings, "LAB_EVENT_RETENTION_DAYS", 14)
    cutoff = now - timedelta(days=days)
    deleted, _ = LabEvent.objects.filter(created_at__lt=cutoff).delete()
    if deleted:
        logger.info("Pruned %s lab events older than %s", deleted, cutoff.isoformat())
    return deleted
