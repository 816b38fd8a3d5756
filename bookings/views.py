import logging

from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bookings.choices import DeliveryStatus, PaymentKind, PaymentStatus
from bookings.ledger import calculate_booking_totals, display_amount
from bookings.models import Booking
from bookings.serializers import (
    BookingPaymentSerializer,
    BookingSerializer,
    DeliveryStatusUpdateSerializer,
    LedgerPreviewSerializer,
    ProofImageSerializer,
)
from bookings.services import (
    build_invoice,
    delete_booking,
    delivery_update_context,
    record_payment,
    replace_proof_image,
    suggest_booking_no,
    update_delivery_status,
)
from common.audit import AuditedMutationMixin, create_audit_log_from_request
from common.exports import export_response, requested_file_type
from common.permissions import RoleCapabilityPermission
from common.utils import parse_json_object, parse_optional_date, split_param

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("booking_no", "party_name", "vehicle_number", "owner_name", "from_location", "to_location")

# Worklists of outstanding work: anything not yet at its final state.
PENDING_WORKLISTS = {
    "delivery": ~Q(delivery_status=DeliveryStatus.RECEIVED),
    "party": ~Q(party_payment_status=PaymentStatus.COMPLETED),
    "vehicle": ~Q(vehicle_payment_status=PaymentStatus.COMPLETED),
}

EXPORT_COLUMNS = [
    "booking_no",
    "booking_date",
    "party_name",
    "party_contact",
    "vehicle_number",
    "owner_name",
    "from_location",
    "to_location",
    "deal_amount",
    "advance_paid",
    "total_deductions",
    "sub_total",
    "final_pending_amount",
    "amount_due",
    "actual_vehicle_cost",
    "vehicle_advance",
    "vehicle_balance",
    "delivery_status",
    "party_payment_status",
    "vehicle_payment_status",
]


def _date_param(params, name):
    raw = params.get(name)
    value = parse_optional_date(raw)
    if raw and value is None:
        raise ValidationError({name: "Enter a valid date in YYYY-MM-DD format."})
    return value


def filter_bookings(queryset, params):
    search = (params.get("search") or "").strip()
    if search:
        condition = Q()
        for field in SEARCH_FIELDS:
            condition |= Q(**{f"{field}__icontains": search})
        queryset = queryset.filter(condition)

    date_from = _date_param(params, "date_from")
    date_to = _date_param(params, "date_to")
    if date_from and date_to and date_from > date_to:
        raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
    if date_from:
        queryset = queryset.filter(booking_date__gte=date_from)
    if date_to:
        queryset = queryset.filter(booking_date__lte=date_to)

    for field in ("delivery_status", "party_payment_status", "vehicle_payment_status"):
        values = split_param(params.get(field))
        if values:
            queryset = queryset.filter(**{f"{field}__in": values})

    pending = (params.get("pending") or "").strip()
    if pending:
        if pending not in PENDING_WORKLISTS:
            raise ValidationError({"pending": "pending must be one of: delivery, party, vehicle."})
        queryset = queryset.filter(PENDING_WORKLISTS[pending])
    return queryset


def export_row(booking):
    totals = booking.ledger_totals()
    return {
        "booking_no": booking.booking_no,
        "booking_date": booking.booking_date,
        "party_name": booking.party_name,
        "party_contact": booking.party_contact,
        "vehicle_number": booking.vehicle_number,
        "owner_name": booking.owner_name,
        "from_location": booking.from_location,
        "to_location": booking.to_location,
        "deal_amount": totals.deal_amount,
        "advance_paid": totals.advance_paid,
        "total_deductions": totals.total_deductions,
        "sub_total": totals.sub_total,
        "final_pending_amount": totals.final_pending_amount,
        "amount_due": display_amount(totals.final_pending_amount),
        "actual_vehicle_cost": totals.vehicle_cost,
        "vehicle_advance": totals.vehicle_advance_paid,
        "vehicle_balance": totals.vehicle_balance,
        "delivery_status": booking.delivery_status,
        "party_payment_status": booking.party_payment_status,
        "vehicle_payment_status": booking.vehicle_payment_status,
    }


def company_profile(user):
    if user is None:
        return {}
    return {
        "name": user.get_full_name() or user.username,
        "gst_number": user.gst_number,
        "description": user.description,
    }


class BookingViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Booking.objects.select_related("created_by").prefetch_related("payments")
    serializer_class = BookingSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "bookings.view",
        "retrieve": "bookings.view",
        "next_number": "bookings.view",
        "calculate": "bookings.view",
        "invoice": "bookings.view",
        "export": "bookings.view",
        "create": "bookings.manage",
        "update": "bookings.manage",
        "partial_update": "bookings.manage",
        "delivery_status": "bookings.manage",
        "proof": "bookings.manage",
        "party_payments": "payments.record",
        "vehicle_payments": "payments.record",
        "destroy": "bookings.delete",
    }
    audit_entity = "booking"

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action in ("list", "export"):
            queryset = filter_bookings(queryset, self.request.query_params)
        return queryset

    def perform_create(self, serializer):
        user = self.request.user
        instance = serializer.save(created_by=user if user.is_authenticated else None)
        self._audit(action="create", instance=instance, after_snapshot=self.get_serializer(instance).data)
        logger.info("booking_created booking=%s deal_amount=%s", instance.booking_no, instance.deal_amount)

    def perform_update(self, serializer):
        super().perform_update(serializer)
        logger.info("booking_updated booking=%s", serializer.instance.booking_no)

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        self._audit(action="delete", instance=instance, before_snapshot=before_snapshot)
        delete_booking(instance)

    @action(detail=False, methods=["get"], url_path="next-number")
    def next_number(self, request):
        return Response(suggest_booking_no())

    @action(detail=False, methods=["post"], url_path="calculate")
    def calculate(self, request):
        data = request.data if hasattr(request.data, "get") else {}
        totals = calculate_booking_totals(
            parse_json_object(data.get("charges")),
            parse_json_object(data.get("vehicle_payment")),
        )
        return Response(LedgerPreviewSerializer(totals).data)

    @action(detail=False, methods=["get"], url_path="export", pagination_class=None)
    def export(self, request):
        file_type = requested_file_type(request) or "csv"
        rows = [export_row(booking) for booking in self.get_queryset()]
        return export_response(file_type, "bookings", rows, columns=EXPORT_COLUMNS, sheet_title="Bookings")

    def _record_payment(self, request, kind):
        booking = self.get_object()
        serializer = BookingPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        before_snapshot = self.get_serializer(booking).data
        booking, payment = record_payment(booking, kind=kind, user=request.user, **serializer.validated_data)
        after_snapshot = self.get_serializer(booking).data

        create_audit_log_from_request(
            request,
            action=f"booking.{kind}_payment",
            entity=self.audit_entity,
            entity_id=booking.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )
        return Response(
            {"payment": BookingPaymentSerializer(payment).data, "booking": after_snapshot},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="party-payments")
    def party_payments(self, request, pk=None):
        return self._record_payment(request, PaymentKind.PARTY)

    @action(detail=True, methods=["post"], url_path="vehicle-payments")
    def vehicle_payments(self, request, pk=None):
        return self._record_payment(request, PaymentKind.VEHICLE)

    @action(detail=True, methods=["get", "post"], url_path="delivery-status")
    def delivery_status(self, request, pk=None):
        booking = self.get_object()
        if request.method == "GET":
            return Response(delivery_update_context(booking))

        serializer = DeliveryStatusUpdateSerializer(data=request.data, context={"booking": booking})
        serializer.is_valid(raise_exception=True)

        before_snapshot = self.get_serializer(booking).data
        booking = update_delivery_status(
            booking,
            status=serializer.validated_data["status"],
            remarks=serializer.validated_data.get("remarks"),
            proof_image=serializer.validated_data.get("proof_image"),
        )
        after_snapshot = self.get_serializer(booking).data
        self._audit(action="delivery_status", instance=booking, before_snapshot=before_snapshot, after_snapshot=after_snapshot)
        return Response(after_snapshot)

    @action(detail=True, methods=["post"], url_path="proof")
    def proof(self, request, pk=None):
        booking = self.get_object()
        serializer = ProofImageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = replace_proof_image(booking, serializer.validated_data["proof_image"])
        after_snapshot = self.get_serializer(booking).data
        self._audit(action="proof_upload", instance=booking, after_snapshot=after_snapshot)
        return Response(after_snapshot)

    @action(detail=True, methods=["get"], url_path="invoice")
    def invoice(self, request, pk=None):
        booking = self.get_object()
        return Response(build_invoice(booking, company=company_profile(booking.created_by or request.user)))
