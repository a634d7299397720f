from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from lab_core.models import TurnaroundAlert
from lab_core.tasks import scan_turnaround
from lab_core.workflows.executor import execute_action
from lab_core.workflows.turnaround_scanner import check_turnaround_breaches, status_entered_at


@pytest.mark.django_db
def test_breach_raises_one_alert_per_item_and_state(hb_item):
    later = timezone.now() + timedelta(hours=5)

    assert check_turnaround_breaches(now=later) == 1
    assert check_turnaround_breaches(now=later + timedelta(hours=1)) == 0

    alert = TurnaroundAlert.objects.get(item=hb_item)
    assert alert.state == "sample_collected"
    assert alert.severity == "warning"
    assert alert.budget_seconds == 4 * 3600
    assert alert.resolved_at is None


@pytest.mark.django_db
def test_items_within_budget_or_without_one_are_skipped(make_request, patient, hemoglobin, fbc, hb_item):
    # pending items and panel headers carry no budget
    make_request(patient, [hemoglobin, fbc])

    assert check_turnaround_breaches(now=timezone.now() + timedelta(hours=1)) == 0
    assert check_turnaround_breaches(now=timezone.now() + timedelta(days=30)) == 1


@pytest.mark.django_db
def test_alert_resolves_when_item_moves_on(hb_item, admin_user):
    check_turnaround_breaches(now=timezone.now() + timedelta(hours=5))

    execute_action(item=hb_item, action="start", user=admin_user)

    alert = TurnaroundAlert.objects.get(item=hb_item)
    assert alert.resolved_at is not None
    assert alert.duration_seconds is not None


@pytest.mark.django_db
def test_entered_at_follows_the_latest_transition(hb_item, admin_user):
    assert status_entered_at(hb_item) == hb_item.created_at

    item = execute_action(item=hb_item, action="start", user=admin_user).item

    assert status_entered_at(item) == item.transitions.get().created_at


@pytest.mark.django_db
def test_scan_entry_points(hb_item):
    out = StringIO()
    call_command("check_turnaround", stdout=out)
    assert out.getvalue().strip() == "0 new turnaround alert(s)."

    assert scan_turnaround() == 0
