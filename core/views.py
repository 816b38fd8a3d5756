import logging
from datetime import datetime, time

from django.core.cache import cache
from django.db import connections
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework import generics, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView

from common.audit import create_audit_log_from_request
from common.exports import csv_response
from common.permissions import RoleCapabilityPermission
from common.utils import parse_optional_date, split_param
from core.models import AuditLog
from core.serializers import AuditLogSerializer, EmailOrUsernameTokenObtainPairSerializer, ProfileSerializer

logger = logging.getLogger(__name__)

AUDIT_EXPORT_COLUMNS = ["id", "created_at", "actor", "action", "entity", "entity_id", "request_id"]


def parse_time_bound(name, value, *, end_of_day=False):
    """Read a timestamp or a plain date; a plain date covers the whole day."""
    # parse_datetime also accepts a bare date as midnight, so dates go first.
    day = parse_optional_date(value)
    if day is not None:
        moment = datetime.combine(day, time.max if end_of_day else time.min)
    else:
        try:
            moment = parse_datetime(value)
        except ValueError:
            moment = None
        if moment is None:
            raise ValidationError({name: "Enter a date (YYYY-MM-DD) or an ISO 8601 timestamp."})
    if timezone.is_naive(moment):
        moment = timezone.make_aware(moment)
    return moment


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class ProfileView(generics.RetrieveUpdateAPIView):
    serializer_class = ProfileSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "profile.manage", "put": "profile.manage", "patch": "profile.manage"}

    def get_object(self):
        return self.request.user

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        password_changed = "password_change" in serializer.validated_data
        user = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="profile.update",
            entity="user",
            entity_id=user.id,
            before_snapshot=before_snapshot,
            after_snapshot={**self.get_serializer(user).data, "password_changed": password_changed},
        )
        logger.info("profile_updated user=%s password_changed=%s", user.username, password_changed)


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "admin.records.manage", "retrieve": "admin.records.manage", "export": "admin.records.manage"}

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")
        params = self.request.query_params

        if params.get("start_date"):
            qs = qs.filter(created_at__gte=parse_time_bound("start_date", params["start_date"]))
        if params.get("end_date"):
            qs = qs.filter(created_at__lte=parse_time_bound("end_date", params["end_date"], end_of_day=True))

        # action and entity accept comma lists, e.g. ?action=booking.party_payment,booking.vehicle_payment
        for field in ("action", "entity"):
            values = split_param(params.get(field))
            if values:
                qs = qs.filter(**{f"{field}__in": values})
        for field in ("actor_id", "entity_id"):
            if params.get(field):
                qs = qs.filter(**{field: params[field]})
        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        rows = [
            {
                "id": log.id,
                "created_at": log.created_at.isoformat(),
                "actor": getattr(log.actor, "username", ""),
                "action": log.action,
                "entity": log.entity,
                "entity_id": log.entity_id or "",
                "request_id": log.request_id or "",
            }
            for log in self.get_queryset()
        ]
        return csv_response("audit-logs.csv", rows, columns=AUDIT_EXPORT_COLUMNS)


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


def _check_database():
    with connections["default"].cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def _check_cache():
    cache.set("readyz:probe", "1", timeout=5)


READINESS_CHECKS = (("database", _check_database), ("cache", _check_cache))


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    checks = {}
    failed = False
    for name, check in READINESS_CHECKS:
        try:
            check()
        except Exception as exc:
            logger.exception("readiness_check_failed check=%s", name)
            checks[name] = f"error: {exc}"
            failed = True
        else:
            checks[name] = "ok"

    return Response(
        {"status": "error" if failed else "ready", "request_id": getattr(request, "request_id", None), "checks": checks},
        status=status.HTTP_503_SERVICE_UNAVAILABLE if failed else status.HTTP_200_OK,
    )
