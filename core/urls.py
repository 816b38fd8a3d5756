from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import AuditLogViewSet, ProfileView, healthz, readyz

router = DefaultRouter()
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("profile/", ProfileView.as_view(), name="profile"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
