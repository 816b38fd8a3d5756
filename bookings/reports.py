from collections import OrderedDict
from datetime import date, datetime, timedelta
from decimal import Decimal

from django.conf import settings
from django.core.cache import cache
from django.db.models import Count, Q, Sum
from django.db.models.functions import Coalesce, TruncMonth
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.choices import DeliveryStatus, PaymentKind, PaymentStatus
from bookings.ledger import display_amount
from bookings.models import Booking, BookingPayment
from bookings.report_cache import report_cache_version
from bookings.views import filter_bookings
from common.exports import export_response, requested_file_type
from common.permissions import RoleCapabilityPermission
from directory.models import Party, Vehicle

ZERO = Decimal("0.00")
OUTSTANDING_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PARTIAL)


def _as_date(value):
    if isinstance(value, datetime):
        return timezone.localdate(value) if timezone.is_aware(value) else value.date()
    return value


def _party_history(booking):
    return [payment for payment in booking.payments.all() if payment.kind == PaymentKind.PARTY]


def booking_ledger_entries(booking):
    """Debit/credit lines for one booking with a running balance.

    Recorded payments are already part of ``advance_paid``, so only the
    remainder is shown as the initial advance.
    """
    totals = booking.ledger_totals()
    history = _party_history(booking)
    initial_advance = totals.advance_paid - sum((payment.amount for payment in history), ZERO)

    base = {
        "booking_no": booking.booking_no,
        "party_name": booking.party_name,
        "vehicle_number": booking.vehicle_number,
        "from_location": booking.from_location,
        "to_location": booking.to_location,
        "payment_status": booking.party_payment_status,
    }
    entries = []
    balance = ZERO

    if totals.deal_amount > 0:
        balance += totals.deal_amount
        entries.append({**base, "date": booking.booking_date, "debit_amount": totals.deal_amount, "credit_amount": ZERO, "balance": balance, "remarks": "Deal Amount"})

    if initial_advance > 0:
        balance -= initial_advance
        entries.append({**base, "date": booking.booking_date, "debit_amount": ZERO, "credit_amount": initial_advance, "balance": balance, "remarks": "Advance Payment"})

    for payment in history:
        balance -= payment.amount
        entries.append(
            {
                **base,
                "date": _as_date(payment.payment_date),
                "debit_amount": ZERO,
                "credit_amount": payment.amount,
                "balance": balance,
                "remarks": f"Payment - {payment.get_mode_display()}",
            }
        )
    return entries


def vehicle_report_row(booking, ownership_by_number):
    totals = booking.ledger_totals()
    return {
        "date": booking.booking_date,
        "booking_no": booking.booking_no,
        "vehicle_number": booking.vehicle_number,
        "owner_name": booking.owner_name,
        "owner_contact": booking.owner_contact,
        "vehicle_type": booking.vehicle_type,
        "ownership": ownership_by_number.get(booking.vehicle_number, ""),
        "party_name": booking.party_name,
        "from_location": booking.from_location,
        "to_location": booking.to_location,
        "vehicle_cost": totals.vehicle_cost,
        "advance_paid": totals.vehicle_advance_paid,
        "balance_amount": totals.vehicle_balance,
        "amount_due": display_amount(totals.vehicle_balance),
        "payment_status": booking.vehicle_payment_status,
        "delivery_status": booking.delivery_status,
        "remarks": booking.delivery_remarks,
    }


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}

    @property
    def cache_timeout(self):
        return getattr(settings, "REPORT_CACHE_SECONDS", 60)

    def _bookings(self, request):
        return filter_bookings(Booking.objects.prefetch_related("payments"), request.query_params).order_by("-booking_date", "-created_at")

    def _required_param(self, request, name):
        value = (request.query_params.get(name) or "").strip()
        if not value:
            raise ValidationError({name: f"{name} is required."})
        return value

    def _cached(self, request, key, callback):
        cache_key = f"reports:{key}:v{report_cache_version()}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload

    def _rows_response(self, request, basename, rows, sheet_title="Report"):
        file_type = requested_file_type(request)
        if file_type:
            return export_response(file_type, basename, rows, sheet_title=sheet_title)
        return Response({"count": len(rows), "results": rows})


class LedgerReportView(BaseReportView):
    def get(self, request):
        def run():
            rows = []
            for booking in self._bookings(request):
                rows.extend(booking_ledger_entries(booking))
            rows.sort(key=lambda row: row["date"], reverse=True)
            return rows

        rows = self._cached(request, "ledger", run)
        return self._rows_response(request, "ledger_report", rows, sheet_title="Ledger")


class VehicleReportView(BaseReportView):
    def get(self, request):
        def run():
            ownership = dict(Vehicle.objects.values_list("vehicle_number", "ownership"))
            return [vehicle_report_row(booking, ownership) for booking in self._bookings(request)]

        rows = self._cached(request, "vehicles", run)
        return self._rows_response(request, "vehicle_report", rows, sheet_title="Vehicles")


class PartySummaryReportView(BaseReportView):
    def get(self, request):
        name = self._required_param(request, "name")

        def run():
            total_debit = ZERO
            total_credit = ZERO
            transactions = []
            for booking in Booking.objects.filter(party_name=name).prefetch_related("payments").order_by("-booking_date"):
                for entry in booking_ledger_entries(booking):
                    total_debit += entry["debit_amount"]
                    total_credit += entry["credit_amount"]
                    is_debit = entry["debit_amount"] > 0
                    transactions.append(
                        {
                            "date": entry["date"],
                            "booking_no": entry["booking_no"],
                            "type": "debit" if is_debit else "credit",
                            "amount": entry["debit_amount"] if is_debit else entry["credit_amount"],
                            "description": entry["remarks"],
                        }
                    )
            transactions.sort(key=lambda row: row["date"], reverse=True)
            return OrderedDict(
                party_name=name,
                total_debit=total_debit,
                total_credit=total_credit,
                balance=total_debit - total_credit,
                amount_due=display_amount(total_debit - total_credit),
                transactions=transactions,
            )

        payload = self._cached(request, "party-summary", run)
        file_type = requested_file_type(request)
        if file_type:
            return export_response(file_type, "party_summary", payload["transactions"], sheet_title="Party Summary")
        return Response(payload)


class VehicleSummaryReportView(BaseReportView):
    def get(self, request):
        vehicle_number = self._required_param(request, "vehicle_number")

        def run():
            ownership = dict(Vehicle.objects.filter(vehicle_number=vehicle_number).values_list("vehicle_number", "ownership"))
            rows = [
                vehicle_report_row(booking, ownership)
                for booking in Booking.objects.filter(vehicle_number=vehicle_number).order_by("-booking_date")
            ]
            return OrderedDict(
                vehicle_number=vehicle_number,
                total_vehicle_cost=sum((row["vehicle_cost"] for row in rows), ZERO),
                total_advance_paid=sum((row["advance_paid"] for row in rows), ZERO),
                total_balance=sum((row["balance_amount"] for row in rows), ZERO),
                transactions=rows,
            )

        payload = self._cached(request, "vehicle-summary", run)
        file_type = requested_file_type(request)
        if file_type:
            return export_response(file_type, "vehicle_summary", payload["transactions"], sheet_title="Vehicle Summary")
        return Response(payload)


class DashboardAnalyticsView(BaseReportView):
    def get(self, request):
        today = timezone.localdate()

        def run():
            bookings = Booking.objects.all()
            revenue_bookings = bookings.filter(party_payment_status=PaymentStatus.COMPLETED)
            counts = bookings.aggregate(
                total_bookings=Count("id"),
                pending_deliveries=Count("id", filter=~Q(delivery_status=DeliveryStatus.RECEIVED)),
                pending_party_payments=Count("id", filter=~Q(party_payment_status=PaymentStatus.COMPLETED)),
                pending_vehicle_payments=Count("id", filter=~Q(vehicle_payment_status=PaymentStatus.COMPLETED)),
                settled_bookings=Count(
                    "id",
                    filter=Q(
                        delivery_status=DeliveryStatus.RECEIVED,
                        party_payment_status=PaymentStatus.COMPLETED,
                        vehicle_payment_status=PaymentStatus.COMPLETED,
                    ),
                ),
            )

            week_start = today - timedelta(days=6)
            per_day = dict(
                bookings.filter(booking_date__gte=week_start, booking_date__lte=today)
                .values("booking_date")
                .order_by()
                .annotate(count=Count("id"))
                .values_list("booking_date", "count")
            )
            booking_chart = [
                {"date": (week_start + timedelta(days=offset)).isoformat(), "count": per_day.get(week_start + timedelta(days=offset), 0)}
                for offset in range(7)
            ]

            months = _last_months(today, 6)
            per_month = {
                _as_date(row["month"]).strftime("%Y-%m"): row["revenue"]
                for row in revenue_bookings.filter(booking_date__gte=months[0])
                .annotate(month=TruncMonth("booking_date"))
                .values("month")
                .annotate(revenue=Coalesce(Sum("deal_amount"), ZERO))
            }
            revenue_chart = [
                {"month": month.strftime("%Y-%m"), "revenue": per_month.get(month.strftime("%Y-%m"), ZERO)}
                for month in months
            ]

            return OrderedDict(
                **counts,
                total_parties=Party.objects.count(),
                total_vehicles=Vehicle.objects.count(),
                total_revenue=revenue_bookings.aggregate(total=Coalesce(Sum("deal_amount"), ZERO))["total"],
                revenue_last_30_days=revenue_bookings.filter(booking_date__gte=today - timedelta(days=30)).aggregate(
                    total=Coalesce(Sum("deal_amount"), ZERO)
                )["total"],
                outstanding_receivable=bookings.filter(final_pending_amount__gt=0).aggregate(
                    total=Coalesce(Sum("final_pending_amount"), ZERO)
                )["total"],
                booking_chart=booking_chart,
                revenue_chart=revenue_chart,
            )

        payload = self._cached(request, "dashboard-analytics", run)
        response = Response(payload)
        response["Cache-Control"] = f"private, max-age={self.cache_timeout}"
        return response


def _last_months(today, count):
    """First day of each of the last ``count`` months, oldest first, ending with the current month."""
    year, month = today.year, today.month
    months = []
    for _ in range(count):
        months.append(date(year, month, 1))
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return list(reversed(months))


class OverduePaymentsView(BaseReportView):
    def get(self, request):
        today = timezone.localdate()
        overdue_days = getattr(settings, "OVERDUE_PAYMENT_DAYS", 3)
        cutoff = today - timedelta(days=overdue_days)

        queryset = Booking.objects.filter(booking_date__lt=cutoff).filter(
            Q(party_payment_status__in=OUTSTANDING_STATUSES) | Q(vehicle_payment_status__in=OUTSTANDING_STATUSES)
        ).order_by("booking_date", "created_at")

        rows = []
        for booking in queryset:
            totals = booking.ledger_totals()
            rows.append(
                {
                    "booking_id": str(booking.id),
                    "booking_no": booking.booking_no,
                    "booking_date": booking.booking_date,
                    "party_name": booking.party_name,
                    "vehicle_number": booking.vehicle_number,
                    "days_outstanding": (today - booking.booking_date).days,
                    "party_amount_due": display_amount(totals.final_pending_amount),
                    "vehicle_amount_due": display_amount(totals.vehicle_balance),
                    "party_payment_status": booking.party_payment_status,
                    "vehicle_payment_status": booking.vehicle_payment_status,
                }
            )
        return Response({"overdue_days": overdue_days, "count": len(rows), "results": rows})


class RecentActivityView(BaseReportView):
    """Latest bookings and payments merged into one feed of at most 10 items."""

    def get(self, request):
        booking_rows = list(
            Booking.objects.values("id", "booking_no", "party_name", "deal_amount", "delivery_status", "created_at").order_by("-created_at")[:10]
        )
        payment_rows = list(
            BookingPayment.objects.values(
                "booking_id",
                "booking__booking_no",
                "booking__party_name",
                "kind",
                "amount",
                "mode",
                "created_at",
            ).order_by("-created_at")[:10]
        )

        activities = [
            {
                "activity_type": "booking",
                "booking_id": str(row["id"]),
                "booking_no": row["booking_no"],
                "party_name": row["party_name"],
                "amount": row["deal_amount"],
                "detail": row["delivery_status"],
                "timestamp": row["created_at"],
            }
            for row in booking_rows
        ] + [
            {
                "activity_type": f"{row['kind']}_payment",
                "booking_id": str(row["booking_id"]),
                "booking_no": row["booking__booking_no"],
                "party_name": row["booking__party_name"],
                "amount": row["amount"],
                "detail": row["mode"],
                "timestamp": row["created_at"],
            }
            for row in payment_rows
        ]

        activities.sort(key=lambda item: item["timestamp"], reverse=True)
        return Response(activities[:10])
