from collections.abc import Mapping
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction
from rest_framework import serializers
from rest_framework.validators import UniqueValidator

from bookings.choices import DeliveryStatus, PaymentKind, PaymentMode, PaymentStatus
from bookings.delivery import transition_errors
from bookings.ledger import coerce_amount, derive_payment_statuses, display_amount
from bookings.models import Booking, BookingPayment
from bookings.services import payment_history, suggest_booking_no
from common.formatting import to_money
from common.utils import delete_stored_file, parse_json_object

NESTED_KEYS = ("party", "vehicle", "journey", "delivery", "charges", "vehicle_payment", "payment_status")
DUPLICATE_BOOKING_NO_MESSAGE = "A booking with this booking number already exists."


def money_text(value):
    try:
        return str(to_money(value))
    except InvalidOperation:
        return str(value)


class MoneyValueField(serializers.Field):
    def __init__(self, **kwargs):
        kwargs["read_only"] = True
        super().__init__(**kwargs)

    def to_representation(self, value):
        return money_text(value)


class AmountField(serializers.DecimalField):
    """Money input that reads blanks and unparseable values as zero but refuses negatives."""

    default_error_messages = {
        "negative": "Amount cannot be negative.",
        "too_large": "Amount is too large.",
    }

    def __init__(self, **kwargs):
        kwargs.setdefault("max_digits", 14)
        kwargs.setdefault("decimal_places", 2)
        kwargs.setdefault("required", False)
        super().__init__(**kwargs)

    def validate_empty_values(self, data):
        if data is None or (isinstance(data, str) and not data.strip()):
            return (True, Decimal("0.00"))
        return super().validate_empty_values(data)

    def to_internal_value(self, data):
        amount = coerce_amount(data)
        if amount < 0:
            self.fail("negative")
        try:
            amount = to_money(amount)
        except InvalidOperation:
            self.fail("too_large")
        return self.validate_precision(amount)


class LabelTolerantChoiceField(serializers.ChoiceField):
    """Choice field that also accepts the human label (``"Bank Transfer"`` for ``bank_transfer``)."""

    def to_internal_value(self, data):
        if isinstance(data, str):
            lowered = data.strip().lower()
            for value, label in self.choices.items():
                if lowered in (str(value).lower(), str(label).lower()):
                    return value
        return super().to_internal_value(data)


class BookingPaymentSerializer(serializers.ModelSerializer):
    mode = LabelTolerantChoiceField(choices=PaymentMode.choices)
    payment_date = serializers.DateTimeField(required=False)

    class Meta:
        model = BookingPayment
        fields = ["id", "kind", "amount", "mode", "bank_name", "remarks", "payment_date", "created_at"]
        read_only_fields = ["id", "kind", "created_at"]

    def validate_amount(self, value):
        if value is None or value <= 0:
            raise serializers.ValidationError("Invalid payment amount provided.")
        return value


class PartySnapshotSerializer(serializers.Serializer):
    name = serializers.CharField(source="party_name", max_length=255)
    address = serializers.CharField(source="party_address", required=False, allow_blank=True)
    contact = serializers.CharField(source="party_contact", max_length=64, required=False, allow_blank=True)
    gst_no = serializers.CharField(source="party_gst_no", max_length=32, required=False, allow_blank=True)


class VehicleSnapshotSerializer(serializers.Serializer):
    vehicle_number = serializers.CharField(max_length=32)
    owner_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    contact_number = serializers.CharField(source="owner_contact", max_length=64, required=False, allow_blank=True)
    vehicle_type = serializers.CharField(max_length=64, required=False, allow_blank=True)


class JourneySerializer(serializers.Serializer):
    from_location = serializers.CharField(max_length=255)
    to_location = serializers.CharField(max_length=255)


class DeliverySerializer(serializers.Serializer):
    status = serializers.ChoiceField(source="delivery_status", choices=DeliveryStatus.choices, required=False)
    remarks = serializers.CharField(source="delivery_remarks", required=False, allow_blank=True)
    proof_image = serializers.FileField(read_only=True)


class ChargesSerializer(serializers.Serializer):
    deal_amount = AmountField()
    advance_paid = AmountField()
    vehicle_charges = AmountField()
    commission = AmountField()
    local_charges = AmountField()
    hamali = AmountField()
    tds = AmountField()
    st_charges = AmountField()
    other = AmountField()
    total_deductions = serializers.SerializerMethodField()
    sub_total = serializers.SerializerMethodField()
    pending_amount = serializers.SerializerMethodField()
    final_pending_amount = serializers.SerializerMethodField()
    payment_history = serializers.SerializerMethodField()

    def get_total_deductions(self, obj):
        return money_text(obj.ledger_totals().total_deductions)

    def get_sub_total(self, obj):
        return money_text(obj.ledger_totals().sub_total)

    def get_pending_amount(self, obj):
        return money_text(obj.ledger_totals().pending_amount)

    def get_final_pending_amount(self, obj):
        return money_text(obj.ledger_totals().final_pending_amount)

    def get_payment_history(self, obj):
        return BookingPaymentSerializer(payment_history(obj, PaymentKind.PARTY), many=True).data


class VehiclePaymentSerializer(serializers.Serializer):
    actual_vehicle_cost = AmountField()
    vehicle_advance = AmountField()
    vehicle_balance = serializers.SerializerMethodField()
    payment_history = serializers.SerializerMethodField()

    def get_vehicle_balance(self, obj):
        return money_text(obj.ledger_totals().vehicle_balance)

    def get_payment_history(self, obj):
        return BookingPaymentSerializer(payment_history(obj, PaymentKind.VEHICLE), many=True).data


class PaymentStatusSerializer(serializers.Serializer):
    party_payment_status = serializers.ChoiceField(choices=PaymentStatus.choices, required=False)
    vehicle_payment_status = serializers.ChoiceField(choices=PaymentStatus.choices, required=False)


class BookingSerializer(serializers.ModelSerializer):
    booking_no = serializers.CharField(
        max_length=32,
        required=False,
        allow_blank=True,
        validators=[UniqueValidator(queryset=Booking.objects.all(), message=DUPLICATE_BOOKING_NO_MESSAGE)],
    )
    party = PartySnapshotSerializer(source="*")
    vehicle = VehicleSnapshotSerializer(source="*")
    journey = JourneySerializer(source="*")
    delivery = DeliverySerializer(source="*", required=False)
    charges = ChargesSerializer(source="*", required=False)
    vehicle_payment = VehiclePaymentSerializer(source="*", required=False)
    payment_status = PaymentStatusSerializer(source="*", required=False)
    proof_image = serializers.FileField(write_only=True, required=False)
    display = serializers.SerializerMethodField()
    is_settled = serializers.BooleanField(read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "booking_no",
            "booking_date",
            "our_gst_no",
            "party",
            "vehicle",
            "journey",
            "delivery",
            "charges",
            "vehicle_payment",
            "payment_status",
            "proof_image",
            "display",
            "is_settled",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def to_internal_value(self, data):
        if isinstance(data, Mapping):
            if hasattr(data, "getlist"):
                data = {key: data.get(key) for key in data.keys()}
            else:
                data = dict(data)
            for key in NESTED_KEYS:
                if key in data and not isinstance(data[key], Mapping):
                    data[key] = parse_json_object(data[key])
        return super().to_internal_value(data)

    def get_display(self, obj):
        totals = obj.ledger_totals()
        return {
            "amount_due": money_text(display_amount(totals.final_pending_amount)),
            "vehicle_amount_due": money_text(display_amount(totals.vehicle_balance)),
        }

    def validate(self, attrs):
        instance = self.instance
        current = instance.delivery_status if instance else DeliveryStatus.PENDING
        target = attrs.get("delivery_status", current)
        has_proof = bool(attrs.get("proof_image")) or bool(instance and instance.proof_image)
        errors = transition_errors(current, target, has_proof)
        if errors:
            raise serializers.ValidationError({"delivery": errors})
        return attrs

    def create(self, validated_data):
        request = self.context.get("request")
        user = getattr(request, "user", None)

        if not (validated_data.get("booking_no") or "").strip():
            validated_data["booking_no"] = suggest_booking_no()["suggested_booking_no"]
        if not validated_data.get("our_gst_no") and user is not None and user.is_authenticated:
            validated_data["our_gst_no"] = getattr(user, "gst_number", "") or ""

        try:
            with transaction.atomic():
                return super().create(validated_data)
        except IntegrityError:
            raise serializers.ValidationError({"booking_no": [DUPLICATE_BOOKING_NO_MESSAGE]})

    def update(self, instance, validated_data):
        if "booking_no" in validated_data and not (validated_data["booking_no"] or "").strip():
            validated_data.pop("booking_no")

        previous_proof = instance.proof_image.name if instance.proof_image else None
        try:
            with transaction.atomic():
                booking = super().update(instance, validated_data)
        except IntegrityError:
            raise serializers.ValidationError({"booking_no": [DUPLICATE_BOOKING_NO_MESSAGE]})

        if "proof_image" in validated_data and previous_proof and previous_proof != booking.proof_image.name:
            delete_stored_file(booking.proof_image.storage, previous_proof)
        return booking


class DeliveryStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=DeliveryStatus.choices)
    remarks = serializers.CharField(required=False, allow_blank=True)
    proof_image = serializers.FileField(required=False)

    def validate(self, attrs):
        booking = self.context["booking"]
        has_proof = bool(attrs.get("proof_image")) or bool(booking.proof_image)
        errors = transition_errors(booking.delivery_status, attrs["status"], has_proof)
        if errors:
            raise serializers.ValidationError(errors)
        return attrs


class ProofImageSerializer(serializers.Serializer):
    proof_image = serializers.FileField()


class LedgerPreviewSerializer(serializers.Serializer):
    """Read-only view of a calculator result for live form previews."""

    deal_amount = MoneyValueField()
    advance_paid = MoneyValueField()
    total_deductions = MoneyValueField()
    sub_total = MoneyValueField()
    pending_amount = MoneyValueField()
    final_pending_amount = MoneyValueField()
    vehicle_cost = MoneyValueField()
    vehicle_advance_paid = MoneyValueField()
    vehicle_balance = MoneyValueField()
    amount_due = serializers.SerializerMethodField()
    vehicle_amount_due = serializers.SerializerMethodField()
    payment_status = serializers.SerializerMethodField()

    def get_amount_due(self, totals):
        return money_text(display_amount(totals.final_pending_amount))

    def get_vehicle_amount_due(self, totals):
        return money_text(display_amount(totals.vehicle_balance))

    def get_payment_status(self, totals):
        return derive_payment_statuses(totals)
