import logging

from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import AuditedMutationMixin, create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from directory.models import MasterRecord, Party, Vehicle
from directory.serializers import BulkDeleteSerializer, MasterRecordSerializer, PartySerializer, VehicleSerializer

logger = logging.getLogger(__name__)

DIRECTORY_PERMISSIONS = {
    "list": "directory.view",
    "retrieve": "directory.view",
    "create": "directory.manage",
    "update": "directory.manage",
    "partial_update": "directory.manage",
    "destroy": "directory.delete",
    "delete_multiple": "directory.delete",
}


class DirectoryViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = DIRECTORY_PERMISSIONS
    search_fields = ()

    def get_queryset(self):
        queryset = super().get_queryset()
        search = (self.request.query_params.get("search") or "").strip()
        if search and self.search_fields:
            condition = Q()
            for field in self.search_fields:
                condition |= Q(**{f"{field}__icontains": search})
            queryset = queryset.filter(condition)
        return queryset


class BulkDeleteMixin:
    def _bulk_delete(self, request, label):
        serializer = BulkDeleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ids = serializer.validated_data["ids"]

        queryset = self.get_queryset().filter(id__in=ids)
        deleted_ids = [str(pk) for pk in queryset.values_list("id", flat=True)]
        deleted_count, _ = queryset.delete()

        create_audit_log_from_request(
            request,
            action=f"{self.audit_entity}.bulk_delete",
            entity=self.audit_entity,
            before_snapshot={"ids": deleted_ids},
        )
        logger.info("%s_bulk_deleted count=%s", self.audit_entity, len(deleted_ids))
        return Response(
            {
                "detail": f"{len(deleted_ids)} {label} deleted successfully.",
                "deleted_count": len(deleted_ids),
                "deleted_ids": deleted_ids,
            },
            status=status.HTTP_200_OK,
        )


class PartyViewSet(BulkDeleteMixin, DirectoryViewSet):
    queryset = Party.objects.all()
    serializer_class = PartySerializer
    audit_entity = "party"
    search_fields = ("name", "contact_number", "email", "city", "gst_no")

    @action(detail=False, methods=["post"], url_path="delete-multiple")
    def delete_multiple(self, request):
        return self._bulk_delete(request, "parties")


class VehicleViewSet(BulkDeleteMixin, DirectoryViewSet):
    queryset = Vehicle.objects.all()
    serializer_class = VehicleSerializer
    audit_entity = "vehicle"
    search_fields = ("vehicle_number", "owner_name", "contact_number", "vehicle_type")

    def get_queryset(self):
        queryset = super().get_queryset()
        ownership = self.request.query_params.get("ownership")
        if ownership:
            queryset = queryset.filter(ownership=ownership)
        return queryset

    @action(detail=False, methods=["post"], url_path="delete-multiple")
    def delete_multiple(self, request):
        return self._bulk_delete(request, "vehicles")


class MasterRecordViewSet(DirectoryViewSet):
    queryset = MasterRecord.objects.all()
    serializer_class = MasterRecordSerializer
    audit_entity = "master"
    search_fields = ("name",)
