# lab_core/tasks.py
from __future__ import annotations

from celery import shared_task

from lab_core.services.events import prune_events
from lab_core.workflows.turnaround_scanner import check_turnaround_breaches


@shared_task
def scan_turnaround() -> int:
    return check_turnaround_breaches()


@shared_task
def prune_lab_events(retention_days: int | None = None) -> int:
    return prune_events(retention_days=retention_days)
