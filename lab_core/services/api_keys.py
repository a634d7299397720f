# lab_core/services/api_keys.py
from __future__ import annotations

import logging
import secrets
from typing import Optional, Tuple

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from lab_core.models import ApiKey
from lab_core.permissions import can

logger = logging.getLogger(__name__)


def _prefix_env() -> str:
    env = str(getattr(settings, "API_KEY_PREFIX_ENV", "test")).strip().lower()
    return env if env in ("live", "test") else "test"


def generate_prefix() -> str:
    return f"sk_{_prefix_env()}_{secrets.token_hex(4)}"


def generate_secret() -> str:
    return secrets.token_urlsafe(32)


def split_key(full_key: str) -> Tuple[str, str]:
    prefix, sep, secret = (full_key or "").strip().partition(".")
    if not sep or not prefix or not secret:
        return "", ""
    return prefix, secret


def create_key(*, user, name: str, attempts: int = 3) -> Tuple[ApiKey, str]:
    """
    Returns (key, full_key). The full key is never stored and cannot be
    shown again.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError({"name": "Key name is required."})

    secret = generate_secret()
    for _ in range(attempts):
        prefix = generate_prefix()
        try:
            with transaction.atomic():
                key = ApiKey.objects.create(
                    user=user,
                    name=name,
                    key_prefix=prefix,
                    secret_hash=make_password(secret),
                )
        except IntegrityError:
            logger.warning("API key prefix collision on %s, retrying", prefix)
            continue
        logger.info("API key %s created for user %s", key.key_prefix, user.pk)
        return key, f"{prefix}.{secret}"

    raise ValidationError({"name": "Could not allocate a unique key prefix, try again."})


def authenticate_key(full_key: str) -> Optional[ApiKey]:
    """Active key matching `prefix.secret`, with last_used_at touched."""
    prefix, secret = split_key(full_key)
    if not prefix:
        return None

    key = ApiKey.objects.select_related("user").filter(key_prefix=prefix).first()
    if key is None or key.revoked_at is not None:
        return None
    if not check_password(secret, key.secret_hash):
        return None

    now = timezone.now()
    ApiKey.objects.filter(pk=key.pk).update(last_used_at=now)
    key.last_used_at = now
    return key


def visible_keys(user):
    return ApiKey.objects.filter(user=user).order_by("-created_at", "-id")


def revoke_key(*, key_id, user) -> ApiKey:
    """
    Soft revoke. Owners revoke their own keys; api_keys:manage revokes any.
    Missing and already revoked keys are both 404.
    """
    qs = ApiKey.objects.filter(pk=key_id, revoked_at__isnull=True)
    if not can(user, "api_keys", "manage"):
        qs = qs.filter(user=user)

    try:
        key = qs.get()
    except (ApiKey.DoesNotExist, ValueError, TypeError):
        raise NotFound("Key not found or already revoked.")

    key.revoked_at = timezone.now()
    key.save(update_fields=["revoked_at", "updated_at"])
    logger.info("API key %s revoked by user %s", key.key_prefix, user.pk)
    return key
