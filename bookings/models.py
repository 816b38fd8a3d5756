import uuid

from django.db import models
from django.utils import timezone

from bookings.choices import DeliveryStatus, PaymentKind, PaymentMode, PaymentStatus
from bookings.ledger import (
    CHARGE_INPUT_FIELDS,
    VEHICLE_INPUT_FIELDS,
    calculate_booking_totals,
    reconcile_payment_status,
)
from common.formatting import to_money

DERIVED_FIELDS = (
    "sub_total",
    "total_deductions",
    "final_pending_amount",
    "vehicle_balance",
    "party_payment_status",
    "vehicle_payment_status",
)


def _money_field(**kwargs):
    kwargs.setdefault("default", 0)
    return models.DecimalField(max_digits=14, decimal_places=2, **kwargs)


class Booking(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking_no = models.CharField(max_length=32, unique=True)
    booking_date = models.DateField()
    our_gst_no = models.CharField(max_length=32, blank=True, default="")

    party_name = models.CharField(max_length=255)
    party_address = models.TextField(blank=True, default="")
    party_contact = models.CharField(max_length=64, blank=True, default="")
    party_gst_no = models.CharField(max_length=32, blank=True, default="")

    vehicle_number = models.CharField(max_length=32)
    owner_name = models.CharField(max_length=255, blank=True, default="")
    owner_contact = models.CharField(max_length=64, blank=True, default="")
    vehicle_type = models.CharField(max_length=64, blank=True, default="")

    from_location = models.CharField(max_length=255)
    to_location = models.CharField(max_length=255)

    delivery_status = models.CharField(max_length=16, choices=DeliveryStatus.choices, default=DeliveryStatus.PENDING)
    delivery_remarks = models.TextField(blank=True, default="")
    proof_image = models.FileField(upload_to="delivery_proof/", blank=True)

    deal_amount = _money_field()
    advance_paid = _money_field()
    vehicle_charges = _money_field()
    commission = _money_field()
    local_charges = _money_field()
    hamali = _money_field()
    tds = _money_field()
    st_charges = _money_field()
    other = _money_field()
    total_deductions = _money_field()
    sub_total = _money_field()
    final_pending_amount = _money_field()

    actual_vehicle_cost = _money_field()
    vehicle_advance = _money_field()
    vehicle_balance = _money_field()

    party_payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    vehicle_payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)

    created_by = models.ForeignKey("core.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="bookings")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["booking_date"], name="booking_date_idx"),
            models.Index(fields=["party_name", "booking_date"], name="booking_party_date_idx"),
            models.Index(fields=["vehicle_number", "booking_date"], name="booking_vehicle_date_idx"),
            models.Index(fields=["delivery_status"], name="booking_delivery_status_idx"),
            models.Index(fields=["party_payment_status"], name="booking_party_status_idx"),
            models.Index(fields=["vehicle_payment_status"], name="booking_vehicle_status_idx"),
        ]

    def __str__(self):
        return self.booking_no

    def charge_inputs(self):
        return {field: getattr(self, field) for field in CHARGE_INPUT_FIELDS}

    def vehicle_inputs(self):
        return {field: getattr(self, field) for field in VEHICLE_INPUT_FIELDS}

    def ledger_totals(self):
        return calculate_booking_totals(self.charge_inputs(), self.vehicle_inputs())

    def apply_ledger(self):
        """Refresh every stored derived field from the current inputs."""
        totals = self.ledger_totals()
        self.total_deductions = to_money(totals.total_deductions)
        self.sub_total = to_money(totals.sub_total)
        self.final_pending_amount = to_money(totals.final_pending_amount)
        self.vehicle_balance = to_money(totals.vehicle_balance)
        self.party_payment_status = reconcile_payment_status(self.party_payment_status, totals.final_pending_amount)
        self.vehicle_payment_status = reconcile_payment_status(self.vehicle_payment_status, totals.vehicle_balance)
        return totals

    def ledger_drift(self):
        """Stored derived values that disagree with a fresh calculation, as ``{field: (stored, expected)}``."""
        totals = self.ledger_totals()
        expected = {
            "total_deductions": to_money(totals.total_deductions),
            "sub_total": to_money(totals.sub_total),
            "final_pending_amount": to_money(totals.final_pending_amount),
            "vehicle_balance": to_money(totals.vehicle_balance),
            "party_payment_status": reconcile_payment_status(self.party_payment_status, totals.final_pending_amount),
            "vehicle_payment_status": reconcile_payment_status(self.vehicle_payment_status, totals.vehicle_balance),
        }
        drift = {}
        for field, value in expected.items():
            stored = getattr(self, field)
            if field.endswith("_status"):
                matches = stored == value
            else:
                matches = to_money(stored or 0) == value
            if not matches:
                drift[field] = (stored, value)
        return drift

    @property
    def is_settled(self):
        return (
            self.delivery_status == DeliveryStatus.RECEIVED
            and self.party_payment_status == PaymentStatus.COMPLETED
            and self.vehicle_payment_status == PaymentStatus.COMPLETED
        )

    def save(self, *args, **kwargs):
        self.apply_ledger()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = set(update_fields) | set(DERIVED_FIELDS) | {"updated_at"}
        super().save(*args, **kwargs)


class BookingPayment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="payments")
    kind = models.CharField(max_length=16, choices=PaymentKind.choices)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    mode = models.CharField(max_length=16, choices=PaymentMode.choices)
    bank_name = models.CharField(max_length=255, blank=True, default="")
    remarks = models.TextField(blank=True, default="")
    payment_date = models.DateTimeField(default=timezone.now)
    recorded_by = models.ForeignKey("core.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="booking_payments")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["payment_date", "created_at"]
        indexes = [
            models.Index(fields=["booking", "kind", "payment_date"], name="bookingpayment_kind_date_idx"),
        ]
