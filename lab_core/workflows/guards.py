# lab_core/workflows/guards.py
from django.db import models

from lab_core.exceptions import Conflict


class ItemWriteRefused(Conflict):
    default_detail = "Item workflow fields change only through item actions and result entry."
    default_code = "item_write_refused"


class ItemWriteGuardMixin(models.Model):
    """
    Result items carry fields that only the action executor and the result
    service may touch. Both write them with queryset.update() and bump
    `version`; save() on a loaded instance must leave them as stored.

    Repair scripts pass allow_workflow_fields=True.
    """

    WORKFLOW_FIELDS = ("status", "result_value", "result_flag", "version")

    class Meta:
        abstract = True

    def changed_workflow_fields(self):
        stored = self.__class__.objects.filter(pk=self.pk).values(*self.WORKFLOW_FIELDS).first()
        if stored is None:
            return {}
        return {
            name: (stored[name], getattr(self, name))
            for name in self.WORKFLOW_FIELDS
            if stored[name] != getattr(self, name)
        }

    def save(self, *args, allow_workflow_fields=False, **kwargs):
        if self.pk is not None and not allow_workflow_fields:
            changed = self.changed_workflow_fields()
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                changed = {k: v for k, v in changed.items() if k in update_fields}
            if changed:
                detail = ", ".join(f"{k}: {old!r} -> {new!r}" for k, (old, new) in changed.items())
                raise ItemWriteRefused(f"Item {self.pk} workflow fields cannot be saved directly ({detail}).")

        return super().save(*args, **kwargs)
