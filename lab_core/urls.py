# lab_core/urls.py

from django.urls import path, include
from rest_framework.routers import SimpleRouter

# -------------------------------------------------
# Catalog and system
# -------------------------------------------------
from .views import (
    HealthCheckView,
    AnalyteViewSet,
    PanelViewSet,
    NormalRangeViewSet,
    UnitViewSet,
    DepartmentViewSet,
    SampleTypeViewSet,
    WardViewSet,
)

# -------------------------------------------------
# Pathologist workspace
# -------------------------------------------------
from .views_pathologist import (
    WorklistView,
    StatusCountsView,
    WorkflowDefinitionView,
    ResultTemplateView,
    SubmitResultView,
    BatchResultsView,
    ItemHistoryView,
    AnalyzerResultsView,
    ItemActionView,
    AllowedActionsView,
    ItemStatusView,
    ReleaseReportView,
)

# -------------------------------------------------
# Reception and phlebotomy
# -------------------------------------------------
from .views_reception import (
    PatientViewSet,
    TestRequestViewSet,
    ReceptionQueueView,
    ReceptionStatusView,
    PaymentView,
    CollectSamplesView,
)

# -------------------------------------------------
# Identity, messaging, keys, events
# -------------------------------------------------
from .views_identity import MeView
from .views_messages import (
    SendMessageView,
    MessageHistoryView,
    UnreadCountView,
    MarkThreadReadView,
)
from .views_keys import ApiKeyListCreateView, ApiKeyRevokeView
from .views_events import EventFeedView


app_name = "lab_core"


# -------------------------------------------------
# Routers
# -------------------------------------------------
catalog_router = SimpleRouter(trailing_slash=False)
catalog_router.register(r"lab-config/tests", AnalyteViewSet, basename="analyte")
catalog_router.register(r"lab-config/panels", PanelViewSet, basename="panel")
catalog_router.register(r"lab-config/ranges", NormalRangeViewSet, basename="normal-range")
catalog_router.register(r"lab-config/units", UnitViewSet, basename="unit")
catalog_router.register(r"lab-config/departments", DepartmentViewSet, basename="department")
catalog_router.register(r"lab-config/sample-types", SampleTypeViewSet, basename="sample-type")
catalog_router.register(r"lab-config/wards", WardViewSet, basename="ward")

router = SimpleRouter()
router.register(r"patients", PatientViewSet, basename="patient")
router.register(r"test-requests", TestRequestViewSet, basename="test-request")


urlpatterns = [
    # -------------------------------------------------
    # System
    # -------------------------------------------------
    path("health/", HealthCheckView.as_view(), name="health"),
    path("me/", MeView.as_view(), name="me"),

    # -------------------------------------------------
    # Pathologist
    # -------------------------------------------------
    path("pathologist/worklist", WorklistView.as_view(), name="worklist"),
    path("pathologist/status-counts", StatusCountsView.as_view(), name="status-counts"),
    path("pathologist/workflow", WorkflowDefinitionView.as_view(), name="workflow-definition"),
    path(
        "pathologist/results/<int:request_id>/template",
        ResultTemplateView.as_view(),
        name="result-template",
    ),
    path("pathologist/results/<int:item_id>", SubmitResultView.as_view(), name="submit-result"),
    path(
        "pathologist/requests/<int:request_id>/results",
        BatchResultsView.as_view(),
        name="batch-results",
    ),
    path(
        "pathologist/requests/<int:request_id>/release",
        ReleaseReportView.as_view(),
        name="release-report",
    ),
    path("pathologist/items/<int:item_id>/history", ItemHistoryView.as_view(), name="item-history"),
    path(
        "pathologist/items/<int:item_id>/analyzer-results",
        AnalyzerResultsView.as_view(),
        name="item-analyzer-results",
    ),
    path(
        "pathologist/items/<int:item_id>/actions/<str:action>",
        ItemActionView.as_view(),
        name="item-action",
    ),
    path("pathologist/items/<int:item_id>/allowed", AllowedActionsView.as_view(), name="item-allowed"),
    path("pathologist/items/<int:item_id>/status", ItemStatusView.as_view(), name="item-status"),

    # -------------------------------------------------
    # Reception / phlebotomy
    # -------------------------------------------------
    path("reception/queue", ReceptionQueueView.as_view(), name="reception-queue"),
    path(
        "reception/requests/<int:request_id>/status",
        ReceptionStatusView.as_view(),
        name="reception-status",
    ),
    path(
        "reception/requests/<int:request_id>/payment",
        PaymentView.as_view(),
        name="reception-payment",
    ),
    path(
        "phlebotomy/requests/<int:request_id>/collect",
        CollectSamplesView.as_view(),
        name="phlebotomy-collect",
    ),

    # -------------------------------------------------
    # Messages
    # -------------------------------------------------
    path("messages/send", SendMessageView.as_view(), name="message-send"),
    path("messages/history", MessageHistoryView.as_view(), name="message-history"),
    path("messages/unread/count", UnreadCountView.as_view(), name="message-unread-count"),
    path("messages/mark-thread-read", MarkThreadReadView.as_view(), name="message-mark-thread-read"),

    # -------------------------------------------------
    # API keys and events
    # -------------------------------------------------
    path("keys", ApiKeyListCreateView.as_view(), name="api-keys"),
    path("keys/<int:key_id>", ApiKeyRevokeView.as_view(), name="api-key-revoke"),
    path("events", EventFeedView.as_view(), name="events"),

    # -------------------------------------------------
    # Routers
    # -------------------------------------------------
    path("", include(catalog_router.urls)),
    path("", include(router.urls)),
]
