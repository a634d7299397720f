from datetime import date

from django.db import models

from .base import TimeStampedModel
from .catalog import Ward


class Patient(TimeStampedModel):
    class Gender(models.TextChoices):
        MALE = "Male", "Male"
        FEMALE = "Female", "Female"
        OTHER = "Other", "Other"

    lab_id = models.CharField(max_length=64, unique=True, db_index=True)
    first_name = models.CharField(max_length=120, db_index=True)
    last_name = models.CharField(max_length=120, db_index=True)
    gender = models.CharField(max_length=10, choices=Gender.choices, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    phone = models.CharField(max_length=40, blank=True)
    ward = models.ForeignKey(Ward, on_delete=models.SET_NULL, null=True, blank=True, related_name="patients")
    referring_doctor = models.CharField(max_length=255, blank=True)

    def __str__(self):
        return f"{self.full_name} ({self.lab_id})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def age_on(self, on_date=None):
        """Whole years at `on_date` (today by default); None without a birth date."""
        if not self.date_of_birth:
            return None
        on_date = on_date or date.today()
        dob = self.date_of_birth
        years = on_date.year - dob.year
        if (on_date.month, on_date.day) < (dob.month, dob.day):
            years -= 1
        return max(years, 0)

    class Meta:
        ordering = ["last_name", "first_name"]
