# lab_core/signals.py
from __future__ import annotations

from threading import local

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from lab_core.models import (
    ApiKey,
    AuditLog,
    ItemTransition,
    NormalRange,
    PanelAnalyte,
    Patient,
    TestCatalog,
    TestRequest,
    UserRole,
)

# ===============================================================
# Thread-local user storage
# ===============================================================
_state = local()


def set_current_user(user):
    _state.user = user


def get_current_user():
    return getattr(_state, "user", None)


AUDITED_MODELS = {
    TestCatalog,
    PanelAnalyte,
    NormalRange,
    Patient,
    TestRequest,
    UserRole,
    ApiKey,
}


# ===============================================================
# Utilities
# ===============================================================
def _log(action: str, instance, details: dict | None = None):
    user = get_current_user()

    AuditLog.objects.create(
        user=user if user and user.is_authenticated else None,
        action=action,
        details=details or {
            "model": instance.__class__.__name__,
            "object_id": instance.pk,
        },
    )


# ===============================================================
# CREATE / UPDATE / DELETE audit (catalog, patients, requests, access)
# ===============================================================
@receiver(post_save)
def audit_create_update(sender, instance, created, **kwargs):
    if sender not in AUDITED_MODELS:
        return
    if kwargs.get("raw"):
        return

    _log("CREATE" if created else "UPDATE", instance)


@receiver(post_delete)
def audit_delete(sender, instance, **kwargs):
    if sender not in AUDITED_MODELS:
        return

    _log("DELETE", instance)


# ===============================================================
# Item workflow actions
# ===============================================================
@receiver(post_save, sender=ItemTransition)
def audit_item_transition(sender, instance: ItemTransition, created: bool, **kwargs):
    if not created:
        return

    AuditLog.objects.create(
        user=instance.performed_by,
        action=(
            f"ITEM {instance.item_id}: {instance.action} "
            f"{instance.from_status} -> {instance.to_status}"
        ),
        details={
            "item_id": instance.item_id,
            "action": instance.action,
            "from_status": instance.from_status,
            "to_status": instance.to_status,
            "transition_id": instance.pk,
        },
    )
