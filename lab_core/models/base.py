from django.db import models


# ---------------------------------------------------------------------
# Base: adds created_at / updated_at to every model
# ---------------------------------------------------------------------
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
