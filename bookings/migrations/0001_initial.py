import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

DELIVERY_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("in-transit", "In Transit"),
    ("delivered", "Delivered"),
    ("received", "Received"),
]
PAYMENT_STATUS_CHOICES = [("pending", "Pending"), ("partial", "Partial"), ("completed", "Completed")]


def money_field():
    return models.DecimalField(decimal_places=2, default=0, max_digits=14)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("booking_no", models.CharField(max_length=32, unique=True)),
                ("booking_date", models.DateField()),
                ("our_gst_no", models.CharField(blank=True, default="", max_length=32)),
                ("party_name", models.CharField(max_length=255)),
                ("party_address", models.TextField(blank=True, default="")),
                ("party_contact", models.CharField(blank=True, default="", max_length=64)),
                ("party_gst_no", models.CharField(blank=True, default="", max_length=32)),
                ("vehicle_number", models.CharField(max_length=32)),
                ("owner_name", models.CharField(blank=True, default="", max_length=255)),
                ("owner_contact", models.CharField(blank=True, default="", max_length=64)),
                ("vehicle_type", models.CharField(blank=True, default="", max_length=64)),
                ("from_location", models.CharField(max_length=255)),
                ("to_location", models.CharField(max_length=255)),
                ("delivery_status", models.CharField(choices=DELIVERY_STATUS_CHOICES, default="pending", max_length=16)),
                ("delivery_remarks", models.TextField(blank=True, default="")),
                ("proof_image", models.FileField(blank=True, upload_to="delivery_proof/")),
                ("deal_amount", money_field()),
                ("advance_paid", money_field()),
                ("vehicle_charges", money_field()),
                ("commission", money_field()),
                ("local_charges", money_field()),
                ("hamali", money_field()),
                ("tds", money_field()),
                ("st_charges", money_field()),
                ("other", money_field()),
                ("total_deductions", money_field()),
                ("sub_total", money_field()),
                ("final_pending_amount", money_field()),
                ("actual_vehicle_cost", money_field()),
                ("vehicle_advance", money_field()),
                ("vehicle_balance", money_field()),
                ("party_payment_status", models.CharField(choices=PAYMENT_STATUS_CHOICES, default="pending", max_length=16)),
                ("vehicle_payment_status", models.CharField(choices=PAYMENT_STATUS_CHOICES, default="pending", max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["booking_date"], name="booking_date_idx"),
                    models.Index(fields=["party_name", "booking_date"], name="booking_party_date_idx"),
                    models.Index(fields=["vehicle_number", "booking_date"], name="booking_vehicle_date_idx"),
                    models.Index(fields=["delivery_status"], name="booking_delivery_status_idx"),
                    models.Index(fields=["party_payment_status"], name="booking_party_status_idx"),
                    models.Index(fields=["vehicle_payment_status"], name="booking_vehicle_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingPayment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("kind", models.CharField(choices=[("party", "Party"), ("vehicle", "Vehicle")], max_length=16)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "mode",
                    models.CharField(
                        choices=[
                            ("cash", "Cash"),
                            ("cheque", "Cheque"),
                            ("bank_transfer", "Bank Transfer"),
                            ("upi", "UPI"),
                        ],
                        max_length=16,
                    ),
                ),
                ("bank_name", models.CharField(blank=True, default="", max_length=255)),
                ("remarks", models.TextField(blank=True, default="")),
                ("payment_date", models.DateTimeField(default=django.utils.timezone.now)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payments",
                        to="bookings.booking",
                    ),
                ),
                (
                    "recorded_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="booking_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["payment_date", "created_at"],
                "indexes": [
                    models.Index(fields=["booking", "kind", "payment_date"], name="bookingpayment_kind_date_idx"),
                ],
            },
        ),
    ]
