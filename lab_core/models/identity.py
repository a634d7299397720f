from django.conf import settings
from django.db import models

from .base import TimeStampedModel
from .catalog import Department


# ---------------------------------------------------------------------
# Roles and capabilities
# ---------------------------------------------------------------------
class LabPermission(TimeStampedModel):
    """A (resource, action) capability; "*" is a wildcard on either side."""

    resource = models.CharField(max_length=64)
    action = models.CharField(max_length=64)
    description = models.CharField(max_length=255, blank=True)

    def __str__(self):
        return self.code

    @property
    def code(self) -> str:
        return f"{self.resource}:{self.action}"

    def save(self, *args, **kwargs):
        self.resource = (self.resource or "").strip().lower()
        self.action = (self.action or "").strip().lower()
        return super().save(*args, **kwargs)

    class Meta:
        ordering = ["resource", "action"]
        unique_together = [("resource", "action")]


class Role(TimeStampedModel):
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    permissions = models.ManyToManyField(LabPermission, related_name="roles", blank=True)

    def __str__(self):
        return self.name

    class Meta:
        ordering = ["name"]


class UserRole(TimeStampedModel):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="lab_roles")
    role = models.ForeignKey(Role, on_delete=models.CASCADE, related_name="user_roles")

    def __str__(self):
        return f"{self.user} - {self.role}"

    class Meta:
        ordering = ["user_id", "role__name"]
        unique_together = [("user", "role")]


class StaffProfile(TimeStampedModel):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="staff_profile"
    )
    full_name = models.CharField(max_length=255, blank=True)
    department = models.ForeignKey(
        Department, on_delete=models.SET_NULL, null=True, blank=True, related_name="staff"
    )

    def __str__(self):
        return self.full_name or str(self.user)


# ---------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------
class ApiKey(TimeStampedModel):
    """
    Only `key_prefix` is stored in clear; the secret half is hashed with
    Django's password hashers and shown to the owner exactly once.
    """

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="api_keys")
    name = models.CharField(max_length=120)
    key_prefix = models.CharField(max_length=64, unique=True, db_index=True)
    secret_hash = models.CharField(max_length=255)
    last_used_at = models.DateTimeField(null=True, blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True, db_index=True)

    def __str__(self):
        return f"{self.name} ({self.key_prefix})"

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    class Meta:
        ordering = ["-created_at"]
