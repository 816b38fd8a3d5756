from rest_framework.routers import DefaultRouter

from directory.views import MasterRecordViewSet, PartyViewSet, VehicleViewSet

router = DefaultRouter()
router.register(r"parties", PartyViewSet, basename="party")
router.register(r"vehicles", VehicleViewSet, basename="vehicle")
router.register(r"masters", MasterRecordViewSet, basename="master")

urlpatterns = router.urls
