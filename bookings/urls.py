from django.urls import path
from rest_framework.routers import DefaultRouter

from bookings.reports import (
    DashboardAnalyticsView,
    LedgerReportView,
    OverduePaymentsView,
    PartySummaryReportView,
    RecentActivityView,
    VehicleReportView,
    VehicleSummaryReportView,
)
from bookings.views import BookingViewSet

router = DefaultRouter()
router.register(r"bookings", BookingViewSet, basename="booking")

urlpatterns = router.urls + [
    path("reports/ledger/", LedgerReportView.as_view(), name="report_ledger"),
    path("reports/vehicles/", VehicleReportView.as_view(), name="report_vehicles"),
    path("reports/parties/summary/", PartySummaryReportView.as_view(), name="report_party_summary"),
    path("reports/vehicles/summary/", VehicleSummaryReportView.as_view(), name="report_vehicle_summary"),
    path("dashboard/analytics/", DashboardAnalyticsView.as_view(), name="dashboard_analytics"),
    path("dashboard/overdue-payments/", OverduePaymentsView.as_view(), name="dashboard_overdue_payments"),
    path("dashboard/recent-activity/", RecentActivityView.as_view(), name="dashboard_recent_activity"),
]
