from .base import TimeStampedModel
from .catalog import (
    Department,
    NormalRange,
    PanelAnalyte,
    SampleType,
    TestCatalog,
    Unit,
    Ward,
)
from .identity import ApiKey, LabPermission, Role, StaffProfile, UserRole
from .messaging import Message
from .patients import Patient
from .requests import AnalyzerResult, ResultAuditLog, TestRequest, TestRequestItem
from .workflow import AuditLog, EventCounter, ItemTransition, LabEvent, TurnaroundAlert

__all__ = [
    "TimeStampedModel",
    "Department",
    "SampleType",
    "Unit",
    "Ward",
    "TestCatalog",
    "PanelAnalyte",
    "NormalRange",
    "Patient",
    "TestRequest",
    "TestRequestItem",
    "ResultAuditLog",
    "AnalyzerResult",
    "ItemTransition",
    "TurnaroundAlert",
    "EventCounter",
    "LabEvent",
    "AuditLog",
    "LabPermission",
    "Role",
    "UserRole",
    "StaffProfile",
    "ApiKey",
    "Message",
]
