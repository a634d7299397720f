from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from .base import TimeStampedModel


def format_decimal(value) -> str:
    """Render a Decimal without trailing zeros and without exponent notation."""
    if value is None:
        return ""
    text = format(Decimal(value), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


# ---------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------
class Department(TimeStampedModel):
    name = models.CharField(max_length=120, unique=True, db_index=True)
    description = models.TextField(blank=True)

    def __str__(self):
        return self.name

    class Meta:
        ordering = ["name"]


class SampleType(TimeStampedModel):
    name = models.CharField(max_length=120, unique=True, db_index=True)
    description = models.TextField(blank=True)

    def __str__(self):
        return self.name

    class Meta:
        ordering = ["name"]


class Unit(TimeStampedModel):
    name = models.CharField(max_length=64, unique=True, db_index=True)
    symbol = models.CharField(max_length=32, blank=True)

    def __str__(self):
        return self.symbol or self.name

    class Meta:
        ordering = ["name"]


class Ward(TimeStampedModel):
    name = models.CharField(max_length=120, unique=True, db_index=True)

    def __str__(self):
        return self.name

    class Meta:
        ordering = ["name"]


# ---------------------------------------------------------------------
# Test catalog (analytes and panels)
# ---------------------------------------------------------------------
class TestCatalog(TimeStampedModel):
    """An orderable test: a single analyte, or a panel bundling analytes."""

    class TestType(models.TextChoices):
        QUANTITATIVE = "quantitative", "Quantitative"
        QUALITATIVE = "qualitative", "Qualitative"

    name = models.CharField(max_length=255, unique=True, db_index=True)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))

    department = models.ForeignKey(
        Department, on_delete=models.SET_NULL, null=True, blank=True, related_name="tests"
    )
    sample_type = models.ForeignKey(
        SampleType, on_delete=models.SET_NULL, null=True, blank=True, related_name="tests"
    )
    unit = models.ForeignKey(
        Unit, on_delete=models.SET_NULL, null=True, blank=True, related_name="tests"
    )

    test_type = models.CharField(
        max_length=20, choices=TestType.choices, default=TestType.QUANTITATIVE
    )
    # Semicolon-delimited list, e.g. "Negative;Positive"
    qualitative_value = models.TextField(blank=True)

    is_active = models.BooleanField(default=True, db_index=True)
    is_panel = models.BooleanField(default=False, db_index=True)
    panel_auto_recalc = models.BooleanField(default=False)

    analytes = models.ManyToManyField(
        "self",
        through="PanelAnalyte",
        through_fields=("panel", "analyte"),
        symmetrical=False,
        related_name="panels",
        blank=True,
    )

    def __str__(self):
        return self.name

    @property
    def is_qualitative(self) -> bool:
        return self.test_type == self.TestType.QUALITATIVE

    def qualitative_options(self) -> list:
        return [v.strip() for v in (self.qualitative_value or "").split(";") if v.strip()]

    def constituent_price_total(self) -> Decimal:
        total = self.analytes.aggregate(total=models.Sum("price"))["total"]
        return (total or Decimal("0.00")).quantize(Decimal("0.01"))

    @property
    def effective_price(self) -> Decimal:
        """Auto panels always read as the sum of their current constituents."""
        if self.is_panel and self.panel_auto_recalc:
            return self.constituent_price_total()
        return self.price

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_panel", "is_active"], name="catalog_panel_active_idx"),
        ]


class PanelAnalyte(TimeStampedModel):
    panel = models.ForeignKey(TestCatalog, on_delete=models.CASCADE, related_name="memberships")
    analyte = models.ForeignKey(
        TestCatalog, on_delete=models.CASCADE, related_name="panel_memberships"
    )
    position = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.panel} > {self.analyte}"

    def clean(self):
        if self.analyte_id and self.analyte.is_panel:
            raise ValidationError({"analyte": "A panel cannot contain another panel."})
        if self.panel_id and not self.panel.is_panel:
            raise ValidationError({"panel": "Analytes can only be linked to a panel."})

    class Meta:
        ordering = ["position", "id"]
        unique_together = [("panel", "analyte")]


# ---------------------------------------------------------------------
# Normal ranges
# ---------------------------------------------------------------------
class NormalRange(TimeStampedModel):
    """
    Reference interval for an analyte, scoped by gender and age band.

    A non-null `panel` makes the row a per-panel override.
    """

    class RangeType(models.TextChoices):
        NUMERIC = "numeric", "Numeric"
        SYMBOLIC = "symbolic", "Symbolic"
        QUALITATIVE = "qualitative", "Qualitative"

    class Gender(models.TextChoices):
        ANY = "Any", "Any"
        MALE = "Male", "Male"
        FEMALE = "Female", "Female"

    class Operator(models.TextChoices):
        LT = "<", "<"
        LTE = "<=", "<="
        GT = ">", ">"
        GTE = ">=", ">="

    analyte = models.ForeignKey(TestCatalog, on_delete=models.CASCADE, related_name="normal_ranges")
    panel = models.ForeignKey(
        TestCatalog,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="panel_range_overrides",
    )

    range_type = models.CharField(max_length=20, choices=RangeType.choices, default=RangeType.NUMERIC)
    min_value = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    max_value = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    symbol_operator = models.CharField(max_length=2, choices=Operator.choices, blank=True)
    symbol_value = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    qualitative_value = models.CharField(max_length=255, blank=True)

    gender = models.CharField(max_length=10, choices=Gender.choices, default=Gender.ANY)
    min_age = models.PositiveIntegerField(null=True, blank=True)
    max_age = models.PositiveIntegerField(null=True, blank=True)

    unit = models.ForeignKey(Unit, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    range_label = models.CharField(max_length=120, blank=True)
    note = models.TextField(blank=True)

    def __str__(self):
        return f"{self.analyte} [{self.gender}] {self.display()}"

    # -------------------------------------------------------------
    # Validation and normalization
    # -------------------------------------------------------------
    def clean(self):
        errors = {}
        if self.range_type == self.RangeType.NUMERIC:
            if self.min_value is None and self.max_value is None:
                errors["min_value"] = "A numeric range needs min_value and/or max_value."
            elif (
                self.min_value is not None
                and self.max_value is not None
                and self.min_value > self.max_value
            ):
                errors["max_value"] = "max_value must be greater than or equal to min_value."
        elif self.range_type == self.RangeType.SYMBOLIC:
            if not self.symbol_operator or self.symbol_value is None:
                errors["symbol_operator"] = "A symbolic range needs symbol_operator and symbol_value."
        elif self.range_type == self.RangeType.QUALITATIVE:
            if not (self.qualitative_value or "").strip():
                errors["qualitative_value"] = "A qualitative range needs qualitative_value."

        if self.min_age is not None and self.max_age is not None and self.min_age > self.max_age:
            errors["max_age"] = "max_age must be greater than or equal to min_age."

        if errors:
            raise ValidationError(errors)

    def clear_irrelevant_fields(self):
        if self.range_type != self.RangeType.NUMERIC:
            self.min_value = None
            self.max_value = None
        if self.range_type != self.RangeType.SYMBOLIC:
            self.symbol_operator = ""
            self.symbol_value = None
        if self.range_type != self.RangeType.QUALITATIVE:
            self.qualitative_value = ""

    def save(self, *args, **kwargs):
        self.clear_irrelevant_fields()
        return super().save(*args, **kwargs)

    # -------------------------------------------------------------
    # Matching
    # -------------------------------------------------------------
    def matches(self, gender, age) -> bool:
        if self.gender != self.Gender.ANY:
            if (gender or "").strip().lower() != self.gender.lower():
                return False
        if age is None:
            return True
        if self.min_age is not None and age < self.min_age:
            return False
        if self.max_age is not None and age > self.max_age:
            return False
        return True

    def band_width(self) -> float:
        if self.min_age is None or self.max_age is None:
            return float("inf")
        return float(self.max_age - self.min_age)

    def qualitative_options(self) -> list:
        raw = self.qualitative_value or ""
        for sep in (",", "/"):
            raw = raw.replace(sep, ";")
        return [v.strip() for v in raw.split(";") if v.strip()]

    def display(self) -> str:
        if self.range_type == self.RangeType.NUMERIC:
            if self.min_value is not None and self.max_value is not None:
                return f"{format_decimal(self.min_value)} - {format_decimal(self.max_value)}"
            if self.min_value is not None:
                return f">= {format_decimal(self.min_value)}"
            if self.max_value is not None:
                return f"<= {format_decimal(self.max_value)}"
            return ""
        if self.range_type == self.RangeType.SYMBOLIC:
            return f"{self.symbol_operator} {format_decimal(self.symbol_value)}".strip()
        return " / ".join(self.qualitative_options())

    def flag_for(self, value):
        """
        L/H/N for numeric and symbolic ranges, N/A for qualitative ones.
        Returns None when the value cannot be compared.
        """
        if value is None or str(value).strip() == "":
            return None

        if self.range_type == self.RangeType.QUALITATIVE:
            expected = {v.lower() for v in self.qualitative_options()}
            return "N" if str(value).strip().lower() in expected else "A"

        try:
            number = Decimal(str(value).strip())
        except ArithmeticError:
            return None
        if not number.is_finite():
            return None

        if self.range_type == self.RangeType.NUMERIC:
            if self.min_value is not None and number < self.min_value:
                return "L"
            if self.max_value is not None and number > self.max_value:
                return "H"
            return "N"

        bound = self.symbol_value
        if bound is None:
            return None
        op = self.symbol_operator
        ok = {
            "<": number < bound,
            "<=": number <= bound,
            ">": number > bound,
            ">=": number >= bound,
        }.get(op)
        if ok is None:
            return None
        if ok:
            return "N"
        return "H" if op in ("<", "<=") else "L"

    class Meta:
        ordering = ["analyte_id", "id"]
        indexes = [
            models.Index(fields=["analyte", "panel"], name="range_analyte_panel_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                name="range_age_band_ordered",
                check=Q(min_age__isnull=True) | Q(max_age__isnull=True) | Q(max_age__gte=models.F("min_age")),
            ),
        ]
