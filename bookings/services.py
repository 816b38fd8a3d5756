import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings.choices import PaymentKind
from bookings.delivery import suggest_next_status
from bookings.ledger import DEFAULT_BOOKING_PREFIX, display_amount, next_booking_no
from bookings.models import Booking, BookingPayment
from common.formatting import format_inr, to_money
from common.utils import delete_stored_file

logger = logging.getLogger(__name__)


def booking_number_prefix():
    return getattr(settings, "BOOKING_NUMBER_PREFIX", DEFAULT_BOOKING_PREFIX) or DEFAULT_BOOKING_PREFIX


def last_booking_no():
    return Booking.objects.order_by("-created_at").values_list("booking_no", flat=True).first()


def suggest_booking_no():
    last_no = last_booking_no()
    return {
        "last_booking_no": last_no,
        "suggested_booking_no": next_booking_no(last_no, default_prefix=booking_number_prefix()),
    }


def record_payment(booking, *, kind, amount, mode, bank_name="", remarks="", payment_date=None, user=None):
    """Append a payment to the booking history and move the matching advance forward.

    The booking row is locked for the duration so two payments recorded at
    the same time both land in the advance total.
    """
    with transaction.atomic():
        locked = Booking.objects.select_for_update().get(pk=booking.pk)
        payment = BookingPayment.objects.create(
            booking=locked,
            kind=kind,
            amount=to_money(amount),
            mode=mode,
            bank_name=bank_name or "",
            remarks=remarks or "",
            payment_date=payment_date or timezone.now(),
            recorded_by=user if user is not None and user.is_authenticated else None,
        )

        if kind == PaymentKind.PARTY:
            locked.advance_paid = to_money(locked.advance_paid + payment.amount)
            update_fields = ["advance_paid"]
        else:
            locked.vehicle_advance = to_money(locked.vehicle_advance + payment.amount)
            update_fields = ["vehicle_advance"]
        locked.save(update_fields=update_fields)

    logger.info(
        "%s_payment_recorded booking=%s amount=%s mode=%s",
        kind,
        locked.booking_no,
        payment.amount,
        payment.mode,
    )
    return locked, payment


def replace_proof_image(booking, upload):
    """Attach a new proof image and remove the file it replaces."""
    previous_name = booking.proof_image.name if booking.proof_image else None
    booking.proof_image = upload
    booking.save(update_fields=["proof_image"])
    if previous_name and previous_name != booking.proof_image.name:
        delete_stored_file(booking.proof_image.storage, previous_name)
    return booking


def update_delivery_status(booking, *, status, remarks=None, proof_image=None):
    previous_status = booking.delivery_status
    previous_proof = booking.proof_image.name if booking.proof_image else None

    booking.delivery_status = status
    update_fields = ["delivery_status"]
    if remarks is not None:
        booking.delivery_remarks = remarks
        update_fields.append("delivery_remarks")
    if proof_image is not None:
        booking.proof_image = proof_image
        update_fields.append("proof_image")
    booking.save(update_fields=update_fields)

    if proof_image is not None and previous_proof and previous_proof != booking.proof_image.name:
        delete_stored_file(booking.proof_image.storage, previous_proof)
    logger.info(
        "delivery_status_updated booking=%s from=%s to=%s",
        booking.booking_no,
        previous_status,
        booking.delivery_status,
    )
    return booking


def delete_booking(booking):
    proof_name = booking.proof_image.name if booking.proof_image else None
    storage = booking.proof_image.storage
    booking_no = booking.booking_no
    booking.delete()
    delete_stored_file(storage, proof_name)
    logger.info("booking_deleted booking=%s", booking_no)


def payment_history(booking, kind):
    return [payment for payment in booking.payments.all() if payment.kind == kind]


def delivery_update_context(booking):
    return {
        "booking_id": str(booking.id),
        "booking_no": booking.booking_no,
        "party_name": booking.party_name or "N/A",
        "vehicle_number": booking.vehicle_number or "N/A",
        "current_status": booking.delivery_status,
        "suggested_status": suggest_next_status(booking.delivery_status),
        "remarks": booking.delivery_remarks,
        "has_proof_image": bool(booking.proof_image),
    }


def _money_line(label, value):
    return {"label": label, "amount": to_money(value), "formatted": format_inr(value)}


def build_invoice(booking, company=None):
    """Printable invoice payload for a booking; amounts due are clamped at zero."""
    totals = booking.ledger_totals()
    company = company or {}

    deductions = [
        _money_line("Vehicle Charges", booking.vehicle_charges),
        _money_line("Commission", booking.commission),
        _money_line("Local Charges", booking.local_charges),
        _money_line("Hamali", booking.hamali),
        _money_line("TDS", booking.tds),
        _money_line("ST Charges", booking.st_charges),
        _money_line("Other", booking.other),
    ]

    return {
        "invoice_number": booking.booking_no,
        "invoice_date": booking.booking_date,
        "company": {
            "name": company.get("name", ""),
            "gst_no": booking.our_gst_no or company.get("gst_number", ""),
            "description": company.get("description", ""),
        },
        "party": {
            "name": booking.party_name,
            "address": booking.party_address,
            "contact": booking.party_contact,
            "gst_no": booking.party_gst_no,
        },
        "vehicle": {
            "vehicle_number": booking.vehicle_number,
            "owner_name": booking.owner_name,
            "vehicle_type": booking.vehicle_type,
        },
        "journey": {
            "from_location": booking.from_location,
            "to_location": booking.to_location,
        },
        "delivery_status": booking.delivery_status,
        "deal_amount": _money_line("Deal Amount", totals.deal_amount),
        "deductions": deductions,
        "total_deductions": _money_line("Total Deductions", totals.total_deductions),
        "sub_total": _money_line("Sub Total", totals.sub_total),
        "advance_paid": _money_line("Advance Paid", totals.advance_paid),
        "amount_due": _money_line("Pending Amount", display_amount(totals.final_pending_amount)),
        "party_payments": [
            {
                "amount": payment.amount,
                "formatted": format_inr(payment.amount),
                "mode": payment.get_mode_display(),
                "bank_name": payment.bank_name,
                "payment_date": payment.payment_date,
                "remarks": payment.remarks,
            }
            for payment in payment_history(booking, PaymentKind.PARTY)
        ],
        "payment_status": booking.party_payment_status,
    }


def reconcile_booking_ledgers(apply_changes=False):
    """Find bookings whose stored derived values drifted from the calculator and optionally fix them."""
    drifted = []
    for booking in Booking.objects.order_by("created_at").iterator():
        drift = booking.ledger_drift()
        if not drift:
            continue
        drifted.append((booking, drift))
        if apply_changes:
            booking.save(update_fields=list(drift.keys()))
            logger.info("booking_ledger_reconciled booking=%s fields=%s", booking.booking_no, ",".join(sorted(drift)))
    return drifted
