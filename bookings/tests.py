import csv
import io
import json
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from openpyxl import load_workbook
from rest_framework.test import APIClient

from bookings.choices import DeliveryStatus, PaymentStatus
from bookings.delivery import can_transition, requires_proof, suggest_next_status, transition_errors
from bookings.ledger import (
    calculate_booking_totals,
    coerce_amount,
    derive_payment_status,
    derive_payment_statuses,
    display_amount,
    next_booking_no,
    reconcile_payment_status,
)
from bookings.models import Booking, BookingPayment
from common.formatting import format_inr
from core.models import AuditLog
from directory.models import Vehicle


def proof_file(name="proof.jpg"):
    return SimpleUploadedFile(name, b"fake-image-bytes", content_type="image/jpeg")


def booking_payload(**overrides):
    payload = {
        "booking_no": "NH0001",
        "booking_date": timezone.localdate().isoformat(),
        "party": {"name": "Acme Traders", "address": "12 Market Road", "contact": "9876543210", "gst_no": "27AAACA1234A1Z5"},
        "vehicle": {"vehicle_number": "MH12AB1234", "owner_name": "Ravi Patil", "contact_number": "9123456780", "vehicle_type": "Truck"},
        "journey": {"from_location": "Pune", "to_location": "Mumbai"},
        "charges": {
            "deal_amount": "50000",
            "advance_paid": "20000",
            "vehicle_charges": "30000",
            "commission": "2000",
            "hamali": "500",
        },
        "vehicle_payment": {"actual_vehicle_cost": "28000", "vehicle_advance": "10000"},
    }
    payload.update(overrides)
    return payload


def create_booking(**fields):
    defaults = {
        "booking_no": "NH0001",
        "booking_date": timezone.localdate(),
        "party_name": "Acme Traders",
        "vehicle_number": "MH12AB1234",
        "from_location": "Pune",
        "to_location": "Mumbai",
        "deal_amount": Decimal("50000"),
        "advance_paid": Decimal("20000"),
    }
    defaults.update(fields)
    return Booking.objects.create(**defaults)


class LedgerCalculatorTests(SimpleTestCase):
    def test_blank_and_missing_values_count_as_zero(self):
        totals = calculate_booking_totals({"deal_amount": "50000", "advance_paid": ""}, {})

        self.assertEqual(totals.final_pending_amount, Decimal("50000"))
        self.assertEqual(totals.total_deductions, Decimal("0"))
        self.assertEqual(totals.vehicle_balance, Decimal("0"))

    def test_non_mapping_inputs_are_treated_as_empty(self):
        totals = calculate_booking_totals(None, "garbage")

        self.assertEqual(totals.as_dict()["pending_amount"], Decimal("0"))
        self.assertEqual(totals.sub_total, Decimal("0"))

    def test_subtotal_plus_deductions_equals_deal_amount(self):
        charges = {
            "deal_amount": "12345.67",
            "vehicle_charges": "1000.10",
            "commission": 250,
            "local_charges": 99.99,
            "hamali": "12.5",
            "tds": "1",
            "st_charges": "0.01",
            "other": None,
        }
        totals = calculate_booking_totals(charges)

        self.assertEqual(totals.sub_total + totals.total_deductions, totals.deal_amount)
        self.assertEqual(totals.total_deductions, Decimal("1363.60"))

    def test_worked_example_party_side(self):
        charges = {"deal_amount": 50000, "advance_paid": 20000, "vehicle_charges": 30000, "commission": 2000, "hamali": 500}
        totals = calculate_booking_totals(charges)

        self.assertEqual(totals.total_deductions, Decimal("32500"))
        self.assertEqual(totals.sub_total, Decimal("17500"))
        self.assertEqual(totals.final_pending_amount, Decimal("30000"))
        self.assertEqual(derive_payment_statuses(totals)["party_payment_status"], PaymentStatus.PENDING)

        settled = calculate_booking_totals({**charges, "advance_paid": 50000})
        self.assertEqual(settled.final_pending_amount, Decimal("0"))
        self.assertEqual(derive_payment_statuses(settled)["party_payment_status"], PaymentStatus.COMPLETED)

    def test_worked_example_vehicle_side(self):
        exact = calculate_booking_totals({}, {"actual_vehicle_cost": 28000, "vehicle_advance": 28000})
        self.assertEqual(exact.vehicle_balance, Decimal("0"))
        self.assertEqual(derive_payment_statuses(exact)["vehicle_payment_status"], PaymentStatus.COMPLETED)

        overpaid = calculate_booking_totals({}, {"actual_vehicle_cost": 28000, "vehicle_advance": 30000})
        self.assertEqual(overpaid.vehicle_balance, Decimal("-2000"))
        self.assertEqual(display_amount(overpaid.vehicle_balance), Decimal("0"))

    def test_deductions_never_reduce_what_the_party_owes(self):
        with_deductions = calculate_booking_totals({"deal_amount": 1000, "advance_paid": 100, "tds": 900})
        without = calculate_booking_totals({"deal_amount": 1000, "advance_paid": 100})

        self.assertEqual(with_deductions.final_pending_amount, without.final_pending_amount)

    def test_coerce_amount_reads_leading_numbers(self):
        self.assertEqual(coerce_amount("12abc"), Decimal("12"))
        self.assertEqual(coerce_amount("1e3"), Decimal("1000"))
        self.assertEqual(coerce_amount("  42.5 "), Decimal("42.5"))
        self.assertEqual(coerce_amount(".5"), Decimal("0.5"))
        self.assertEqual(coerce_amount("abc"), Decimal("0"))
        self.assertEqual(coerce_amount(float("nan")), Decimal("0"))
        self.assertEqual(coerce_amount(float("inf")), Decimal("0"))
        self.assertEqual(coerce_amount(True), Decimal("0"))
        self.assertEqual(coerce_amount([1, 2]), Decimal("0"))

    def test_status_derivation_is_stable(self):
        for balance in (Decimal("-1"), Decimal("0"), Decimal("0.01"), Decimal("100")):
            first = derive_payment_status(balance)
            self.assertEqual(first, derive_payment_status(balance))
        self.assertEqual(derive_payment_status(0), PaymentStatus.COMPLETED)
        self.assertEqual(derive_payment_status("0.01"), PaymentStatus.PENDING)

    def test_partial_status_is_kept_until_balance_clears(self):
        self.assertEqual(reconcile_payment_status(PaymentStatus.PARTIAL, Decimal("10")), PaymentStatus.PARTIAL)
        self.assertEqual(reconcile_payment_status(PaymentStatus.PARTIAL, Decimal("0")), PaymentStatus.COMPLETED)
        self.assertEqual(reconcile_payment_status(PaymentStatus.COMPLETED, Decimal("10")), PaymentStatus.PENDING)
        self.assertEqual(reconcile_payment_status(None, Decimal("-5")), PaymentStatus.COMPLETED)

    def test_display_amount_clamps_negative_balances(self):
        self.assertEqual(display_amount(Decimal("-2000")), Decimal("0"))
        self.assertEqual(display_amount(Decimal("150.25")), Decimal("150.25"))


class BookingNumberTests(SimpleTestCase):
    def test_increments_and_pads(self):
        self.assertEqual(next_booking_no("NH0001"), "NH0002")
        self.assertEqual(next_booking_no("NH0034"), "NH0035")
        self.assertEqual(next_booking_no("NH0999"), "NH1000")
        self.assertEqual(next_booking_no("AB0012"), "AB0013")

    def test_blank_input_starts_the_sequence(self):
        self.assertEqual(next_booking_no(""), "NH0001")
        self.assertEqual(next_booking_no(None), "NH0001")
        self.assertEqual(next_booking_no("   "), "NH0001")
        self.assertEqual(next_booking_no(None, default_prefix="TR"), "TR0001")

    def test_number_without_prefix_uses_default_prefix(self):
        self.assertEqual(next_booking_no("0041"), "NH0042")


class DeliveryFlowTests(SimpleTestCase):
    def test_suggested_next_status(self):
        self.assertEqual(suggest_next_status("pending"), "in-transit")
        self.assertEqual(suggest_next_status("in-transit"), "delivered")
        self.assertEqual(suggest_next_status("delivered"), "received")
        self.assertEqual(suggest_next_status("received"), "received")
        self.assertEqual(suggest_next_status("lost"), "in-transit")

    def test_transitions_only_move_forward(self):
        self.assertTrue(can_transition("pending", "received"))
        self.assertTrue(can_transition("delivered", "delivered"))
        self.assertFalse(can_transition("delivered", "pending"))
        self.assertFalse(can_transition("pending", "lost"))
        self.assertTrue(can_transition(None, "in-transit"))

    def test_received_requires_proof(self):
        self.assertTrue(requires_proof("received"))
        self.assertFalse(requires_proof("delivered"))
        self.assertIn("proof_image", transition_errors("delivered", "received", has_proof=False))
        self.assertEqual(transition_errors("delivered", "received", has_proof=True), {})
        self.assertEqual(transition_errors("received", "received", has_proof=False), {})


class FormattingTests(SimpleTestCase):
    def test_indian_grouping(self):
        self.assertEqual(format_inr(Decimal("123456")), "₹ 1,23,456.00")
        self.assertEqual(format_inr(Decimal("999.5")), "₹ 999.50")
        self.assertEqual(format_inr(Decimal("-12345678.9")), "-₹ 1,23,45,678.90")
        self.assertEqual(format_inr(None), "₹ 0.00")


class BookingModelTests(TestCase):
    def test_save_recomputes_derived_fields(self):
        booking = create_booking(vehicle_charges=Decimal("30000"), commission=Decimal("2000"), hamali=Decimal("500"))
        booking.refresh_from_db()

        self.assertEqual(booking.total_deductions, Decimal("32500.00"))
        self.assertEqual(booking.sub_total, Decimal("17500.00"))
        self.assertEqual(booking.final_pending_amount, Decimal("30000.00"))
        self.assertEqual(booking.party_payment_status, PaymentStatus.PENDING)

        booking.advance_paid = Decimal("50000")
        booking.save(update_fields=["advance_paid"])
        booking.refresh_from_db()

        self.assertEqual(booking.final_pending_amount, Decimal("0.00"))
        self.assertEqual(booking.party_payment_status, PaymentStatus.COMPLETED)

    def test_settled_only_when_received_and_fully_paid(self):
        booking = create_booking(advance_paid=Decimal("50000"))
        self.assertFalse(booking.is_settled)

        booking.delivery_status = DeliveryStatus.RECEIVED
        booking.save()
        self.assertTrue(booking.is_settled)


class BookingApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.operator = self.user_model.objects.create_user(
            username="operator",
            password="pass1234",
            role="operator",
            gst_number="27OURCO1234F1Z5",
        )
        self.admin = self.user_model.objects.create_user(username="boss", password="pass1234", role="admin")
        self.client.force_authenticate(user=self.operator)

    def _create(self, **overrides):
        response = self.client.post("/api/v1/bookings/", booking_payload(**overrides), format="json")
        self.assertEqual(response.status_code, 201, response.content)
        return response.json()

    def test_create_booking_derives_totals_and_statuses(self):
        data = self._create()

        self.assertEqual(data["charges"]["total_deductions"], "32500.00")
        self.assertEqual(data["charges"]["sub_total"], "17500.00")
        self.assertEqual(data["charges"]["final_pending_amount"], "30000.00")
        self.assertEqual(data["charges"]["pending_amount"], "30000.00")
        self.assertEqual(data["vehicle_payment"]["vehicle_balance"], "18000.00")
        self.assertEqual(data["payment_status"]["party_payment_status"], "pending")
        self.assertEqual(data["payment_status"]["vehicle_payment_status"], "pending")
        self.assertEqual(data["delivery"]["status"], "pending")
        self.assertEqual(data["party"]["name"], "Acme Traders")
        self.assertEqual(data["our_gst_no"], "27OURCO1234F1Z5")
        self.assertFalse(data["is_settled"])

        booking = Booking.objects.get(id=data["id"])
        self.assertEqual(booking.created_by, self.operator)
        self.assertTrue(AuditLog.objects.filter(action="booking.create", entity_id=booking.id).exists())

    def test_blank_amounts_are_zero_and_negative_amounts_rejected(self):
        data = self._create(charges={"deal_amount": "50000", "advance_paid": ""})
        self.assertEqual(data["charges"]["final_pending_amount"], "50000.00")

        response = self.client.post(
            "/api/v1/bookings/",
            booking_payload(booking_no="NH0002", charges={"deal_amount": "-10"}),
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "validation_error")
        self.assertIn("deal_amount", body["errors"]["charges"])
        self.assertEqual(body["message"], "charges.deal_amount: Amount cannot be negative.")

    def test_missing_booking_number_uses_suggestion(self):
        self._create(booking_no="NH0034")

        suggestion = self.client.get("/api/v1/bookings/next-number/").json()
        self.assertEqual(suggestion, {"last_booking_no": "NH0034", "suggested_booking_no": "NH0035"})

        payload = booking_payload()
        payload.pop("booking_no")
        response = self.client.post("/api/v1/bookings/", payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["booking_no"], "NH0035")

    def test_next_number_on_empty_register(self):
        response = self.client.get("/api/v1/bookings/next-number/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"last_booking_no": None, "suggested_booking_no": "NH0001"})

    def test_duplicate_booking_number_is_a_validation_error(self):
        self._create()
        response = self.client.post("/api/v1/bookings/", booking_payload(), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"]["booking_no"], ["A booking with this booking number already exists."])

    def test_missing_party_name_is_rejected(self):
        payload = booking_payload(party={"address": "nowhere"})
        response = self.client.post("/api/v1/bookings/", payload, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["errors"]["party"])

    def test_editing_charges_recomputes_everything(self):
        data = self._create()
        response = self.client.patch(f"/api/v1/bookings/{data['id']}/", {"charges": {"advance_paid": 50000}}, format="json")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["charges"]["final_pending_amount"], "0.00")
        self.assertEqual(body["charges"]["sub_total"], "17500.00")
        self.assertEqual(body["payment_status"]["party_payment_status"], "completed")

    def test_overpayment_is_signed_internally_and_clamped_for_display(self):
        data = self._create(vehicle_payment={"actual_vehicle_cost": 28000, "vehicle_advance": 30000})

        self.assertEqual(data["vehicle_payment"]["vehicle_balance"], "-2000.00")
        self.assertEqual(data["display"]["vehicle_amount_due"], "0.00")
        self.assertEqual(data["payment_status"]["vehicle_payment_status"], "completed")

    def test_partial_status_survives_edits_while_balance_remains(self):
        data = self._create()
        url = f"/api/v1/bookings/{data['id']}/"

        response = self.client.patch(url, {"payment_status": {"party_payment_status": "partial"}}, format="json")
        self.assertEqual(response.json()["payment_status"]["party_payment_status"], "partial")

        response = self.client.patch(url, {"journey": {"from_location": "Nashik", "to_location": "Mumbai"}}, format="json")
        self.assertEqual(response.json()["payment_status"]["party_payment_status"], "partial")

        response = self.client.patch(url, {"charges": {"advance_paid": 50000}}, format="json")
        self.assertEqual(response.json()["payment_status"]["party_payment_status"], "completed")

    def test_completed_status_cannot_be_forced_while_money_is_owed(self):
        data = self._create()
        response = self.client.patch(
            f"/api/v1/bookings/{data['id']}/",
            {"payment_status": {"party_payment_status": "completed"}},
            format="json",
        )

        self.assertEqual(response.json()["payment_status"]["party_payment_status"], "pending")

    def test_multipart_booking_with_json_encoded_sections(self):
        payload = booking_payload()
        form = {key: json.dumps(value) if isinstance(value, dict) else value for key, value in payload.items()}
        form["delivery"] = json.dumps({"status": "received", "remarks": "Signed by store keeper"})
        form["proof_image"] = proof_file()

        response = self.client.post("/api/v1/bookings/", form, format="multipart")

        self.assertEqual(response.status_code, 201, response.content)
        body = response.json()
        self.assertEqual(body["delivery"]["status"], "received")
        self.assertIsNotNone(body["delivery"]["proof_image"])
        self.assertEqual(body["charges"]["sub_total"], "17500.00")

    def test_unparseable_multipart_section_counts_as_empty(self):
        payload = booking_payload()
        form = {key: json.dumps(value) if isinstance(value, dict) else value for key, value in payload.items()}
        form["charges"] = "{not json"

        response = self.client.post("/api/v1/bookings/", form, format="multipart")

        self.assertEqual(response.status_code, 201, response.content)
        self.assertEqual(response.json()["charges"]["deal_amount"], "0.00")

    def test_booking_update_cannot_move_delivery_backwards(self):
        data = self._create(delivery={"status": "delivered"})
        response = self.client.patch(f"/api/v1/bookings/{data['id']}/", {"delivery": {"status": "pending"}}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("status", response.json()["errors"]["delivery"])

    def test_booking_cannot_be_received_without_proof(self):
        response = self.client.post("/api/v1/bookings/", booking_payload(delivery={"status": "received"}), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("proof_image", response.json()["errors"]["delivery"])

    def test_list_filters_and_worklists(self):
        self._create()
        self._create(
            booking_no="NH0002",
            party={"name": "Bharat Logistics"},
            charges={"deal_amount": 1000, "advance_paid": 1000},
            vehicle_payment={"actual_vehicle_cost": 500, "vehicle_advance": 500},
            delivery={"status": "delivered"},
        )

        search = self.client.get("/api/v1/bookings/", {"search": "bharat"}).json()
        self.assertEqual([row["booking_no"] for row in search["results"]], ["NH0002"])

        pending_party = self.client.get("/api/v1/bookings/", {"pending": "party"}).json()
        self.assertEqual([row["booking_no"] for row in pending_party["results"]], ["NH0001"])

        statuses = self.client.get("/api/v1/bookings/", {"delivery_status": "pending,in-transit"}).json()
        self.assertEqual([row["booking_no"] for row in statuses["results"]], ["NH0001"])

        self.assertEqual(self.client.get("/api/v1/bookings/", {"pending": "everything"}).status_code, 400)
        self.assertEqual(self.client.get("/api/v1/bookings/", {"date_from": "yesterday"}).status_code, 400)

    def test_date_range_filter(self):
        self._create(booking_date=(timezone.localdate() - timedelta(days=10)).isoformat())
        self._create(booking_no="NH0002")

        response = self.client.get("/api/v1/bookings/", {"date_from": (timezone.localdate() - timedelta(days=1)).isoformat()})

        self.assertEqual([row["booking_no"] for row in response.json()["results"]], ["NH0002"])

    def test_calculate_preview_never_errors(self):
        response = self.client.post(
            "/api/v1/bookings/calculate/",
            {
                "charges": {"deal_amount": "50000", "advance_paid": ""},
                "vehicle_payment": {"actual_vehicle_cost": 28000, "vehicle_advance": 30000},
            },
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["final_pending_amount"], "50000.00")
        self.assertEqual(body["vehicle_balance"], "-2000.00")
        self.assertEqual(body["vehicle_amount_due"], "0.00")
        self.assertEqual(body["payment_status"], {"party_payment_status": "pending", "vehicle_payment_status": "completed"})

        garbage = self.client.post("/api/v1/bookings/calculate/", {"charges": "nope"}, format="json")
        self.assertEqual(garbage.status_code, 200)
        self.assertEqual(garbage.json()["sub_total"], "0.00")

    def test_operator_cannot_delete_booking(self):
        data = self._create()
        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.delete(f"/api/v1/bookings/{data['id']}/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_admin_delete_removes_proof_file(self):
        data = self._create()
        self.client.post(f"/api/v1/bookings/{data['id']}/proof/", {"proof_image": proof_file()}, format="multipart")
        proof_name = Booking.objects.get(id=data["id"]).proof_image.name
        self.assertTrue(default_storage.exists(proof_name))

        self.client.force_authenticate(user=self.admin)
        response = self.client.delete(f"/api/v1/bookings/{data['id']}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Booking.objects.filter(id=data["id"]).exists())
        self.assertFalse(default_storage.exists(proof_name))
        self.assertTrue(AuditLog.objects.filter(action="booking.delete").exists())

    def test_unauthenticated_requests_are_rejected(self):
        self.client.force_authenticate(user=None)
        response = self.client.get("/api/v1/bookings/")

        self.assertEqual(response.status_code, 401)


class BookingPaymentApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="cashdesk", password="pass1234", role="operator")
        self.client.force_authenticate(user=self.user)
        self.booking = create_booking(actual_vehicle_cost=Decimal("28000"), vehicle_advance=Decimal("10000"))

    def test_party_payment_increases_advance_and_completes_status(self):
        response = self.client.post(
            f"/api/v1/bookings/{self.booking.id}/party-payments/",
            {"amount": "30000", "mode": "Bank Transfer", "bank_name": "HDFC", "remarks": "Final settlement"},
            format="json",
        )

        self.assertEqual(response.status_code, 201, response.content)
        body = response.json()
        self.assertEqual(body["payment"]["mode"], "bank_transfer")
        self.assertEqual(body["booking"]["charges"]["advance_paid"], "50000.00")
        self.assertEqual(body["booking"]["charges"]["final_pending_amount"], "0.00")
        self.assertEqual(body["booking"]["payment_status"]["party_payment_status"], "completed")
        self.assertEqual(len(body["booking"]["charges"]["payment_history"]), 1)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.advance_paid, Decimal("50000.00"))
        self.assertTrue(AuditLog.objects.filter(action="booking.party_payment", entity_id=self.booking.id).exists())

    def test_partial_party_payment_keeps_balance_pending(self):
        response = self.client.post(
            f"/api/v1/bookings/{self.booking.id}/party-payments/",
            {"amount": "10000", "mode": "cash"},
            format="json",
        )

        body = response.json()["booking"]
        self.assertEqual(body["charges"]["final_pending_amount"], "20000.00")
        self.assertEqual(body["payment_status"]["party_payment_status"], "pending")

    def test_vehicle_payment_updates_vehicle_balance_only(self):
        response = self.client.post(
            f"/api/v1/bookings/{self.booking.id}/vehicle-payments/",
            {"amount": "18000", "mode": "upi"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()["booking"]
        self.assertEqual(body["vehicle_payment"]["vehicle_balance"], "0.00")
        self.assertEqual(body["payment_status"]["vehicle_payment_status"], "completed")
        self.assertEqual(body["charges"]["final_pending_amount"], "30000.00")
        self.assertEqual(len(body["vehicle_payment"]["payment_history"]), 1)
        self.assertEqual(body["charges"]["payment_history"], [])

    def test_invalid_payment_amounts_are_rejected(self):
        for amount in ("0", "-5", "abc"):
            response = self.client.post(
                f"/api/v1/bookings/{self.booking.id}/party-payments/",
                {"amount": amount, "mode": "cash"},
                format="json",
            )
            self.assertEqual(response.status_code, 400, amount)
            self.assertIn("amount", response.json()["errors"])

        self.assertFalse(BookingPayment.objects.exists())
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.advance_paid, Decimal("20000.00"))

    def test_unknown_payment_mode_is_rejected(self):
        response = self.client.post(
            f"/api/v1/bookings/{self.booking.id}/party-payments/",
            {"amount": "100", "mode": "barter"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("mode", response.json()["errors"])


class DeliveryStatusApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="dispatch", password="pass1234")
        self.client.force_authenticate(user=self.user)
        self.booking = create_booking()
        self.url = f"/api/v1/bookings/{self.booking.id}/delivery-status/"

    def test_get_suggests_next_status(self):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["current_status"], "pending")
        self.assertEqual(response.json()["suggested_status"], "in-transit")

    def test_forward_transition_updates_status_and_remarks(self):
        response = self.client.post(self.url, {"status": "in-transit", "remarks": "Left Pune depot"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["delivery"]["status"], "in-transit")
        self.assertEqual(response.json()["delivery"]["remarks"], "Left Pune depot")
        self.assertEqual(self.client.get(self.url).json()["suggested_status"], "delivered")

    def test_backward_transition_is_rejected(self):
        self.client.post(self.url, {"status": "delivered"}, format="json")
        response = self.client.post(self.url, {"status": "pending"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("status", response.json()["errors"])
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.delivery_status, "delivered")

    def test_received_requires_proof_image(self):
        response = self.client.post(self.url, {"status": "received"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("proof_image", response.json()["errors"])

        response = self.client.post(self.url, {"status": "received", "proof_image": proof_file()}, format="multipart")
        self.assertEqual(response.status_code, 200, response.content)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.delivery_status, "received")
        self.assertTrue(self.booking.proof_image)

    def test_existing_proof_allows_received(self):
        self.client.post(f"/api/v1/bookings/{self.booking.id}/proof/", {"proof_image": proof_file()}, format="multipart")
        response = self.client.post(self.url, {"status": "received"}, format="json")

        self.assertEqual(response.status_code, 200)

    def test_replacing_proof_removes_previous_file(self):
        proof_url = f"/api/v1/bookings/{self.booking.id}/proof/"
        self.client.post(proof_url, {"proof_image": proof_file("first.jpg")}, format="multipart")
        self.booking.refresh_from_db()
        first_name = self.booking.proof_image.name

        response = self.client.post(proof_url, {"proof_image": proof_file("second.jpg")}, format="multipart")

        self.assertEqual(response.status_code, 200)
        self.booking.refresh_from_db()
        self.assertNotEqual(self.booking.proof_image.name, first_name)
        self.assertFalse(default_storage.exists(first_name))
        self.assertTrue(default_storage.exists(self.booking.proof_image.name))

    def test_proof_upload_requires_a_file(self):
        response = self.client.post(f"/api/v1/bookings/{self.booking.id}/proof/", {}, format="multipart")

        self.assertEqual(response.status_code, 400)


class InvoiceAndExportTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="biller",
            password="pass1234",
            first_name="Nikhil",
            last_name="Haulers",
            gst_number="27NIKHL1234F1Z5",
            description="Full truck load carriers",
        )
        self.client.force_authenticate(user=self.user)
        self.booking = create_booking(
            created_by=self.user,
            vehicle_charges=Decimal("30000"),
            commission=Decimal("2000"),
            hamali=Decimal("500"),
            actual_vehicle_cost=Decimal("28000"),
            vehicle_advance=Decimal("30000"),
        )

    def test_invoice_uses_clamped_and_formatted_amounts(self):
        response = self.client.get(f"/api/v1/bookings/{self.booking.id}/invoice/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["invoice_number"], "NH0001")
        self.assertEqual(body["amount_due"]["formatted"], "₹ 30,000.00")
        self.assertEqual(body["sub_total"]["formatted"], "₹ 17,500.00")
        self.assertEqual(body["company"]["gst_no"], "27NIKHL1234F1Z5")
        self.assertEqual(body["company"]["name"], "Nikhil Haulers")
        self.assertEqual(len(body["deductions"]), 7)

    def test_invoice_amount_due_never_negative(self):
        self.booking.advance_paid = Decimal("60000")
        self.booking.save()

        body = self.client.get(f"/api/v1/bookings/{self.booking.id}/invoice/").json()

        self.assertEqual(body["amount_due"]["formatted"], "₹ 0.00")

    def test_csv_export_reuses_calculator_values(self):
        response = self.client.get("/api/v1/bookings/export/", {"file_type": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        rows = list(csv.DictReader(io.StringIO(response.content.decode())))
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["booking_no"], "NH0001")
        self.assertEqual(Decimal(rows[0]["sub_total"]), Decimal("17500"))
        self.assertEqual(Decimal(rows[0]["vehicle_balance"]), Decimal("-2000"))

    def test_xlsx_export(self):
        response = self.client.get("/api/v1/bookings/export/", {"file_type": "xlsx"})

        self.assertEqual(response.status_code, 200)
        workbook = load_workbook(io.BytesIO(response.content))
        sheet = workbook.active
        self.assertEqual(sheet.title, "Bookings")
        header = [cell.value for cell in sheet[1]]
        self.assertIn("final_pending_amount", header)
        self.assertEqual(sheet.cell(row=2, column=1).value, "NH0001")

    def test_unknown_export_type_is_rejected(self):
        response = self.client.get("/api/v1/bookings/export/", {"file_type": "pdf"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("file_type", response.json()["errors"])


class ReportTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="accounts", password="pass1234")
        self.client.force_authenticate(user=self.user)
        Vehicle.objects.create(
            vehicle_number="MH12AB1234",
            owner_name="Ravi Patil",
            contact_number="9123456780",
            address="Hadapsar, Pune",
            vehicle_type="Truck",
            ownership=Vehicle.Ownership.VENDOR,
        )
        self.booking = create_booking(
            booking_date=timezone.localdate() - timedelta(days=10),
            actual_vehicle_cost=Decimal("28000"),
            vehicle_advance=Decimal("8000"),
        )
        self.client.post(
            f"/api/v1/bookings/{self.booking.id}/party-payments/",
            {"amount": "10000", "mode": "cash"},
            format="json",
        )
        self.settled = create_booking(
            booking_no="NH0002",
            party_name="Bharat Logistics",
            vehicle_number="KA01CD5678",
            deal_amount=Decimal("15000"),
            advance_paid=Decimal("15000"),
        )

    def test_ledger_report_does_not_double_count_recorded_payments(self):
        response = self.client.get("/api/v1/reports/ledger/")

        self.assertEqual(response.status_code, 200)
        rows = [row for row in response.json()["results"] if row["booking_no"] == "NH0001"]
        remarks = sorted(row["remarks"] for row in rows)
        self.assertEqual(remarks, ["Advance Payment", "Deal Amount", "Payment - Cash"])
        credits = sum(Decimal(str(row["credit_amount"])) for row in rows)
        self.assertEqual(credits, Decimal("30000"))
        advance = next(row for row in rows if row["remarks"] == "Advance Payment")
        self.assertEqual(Decimal(str(advance["credit_amount"])), Decimal("20000"))

    def test_vehicle_report_rows(self):
        response = self.client.get("/api/v1/reports/vehicles/")

        rows = {row["booking_no"]: row for row in response.json()["results"]}
        self.assertEqual(rows["NH0001"]["ownership"], "vendor")
        self.assertEqual(Decimal(str(rows["NH0001"]["balance_amount"])), Decimal("20000"))
        self.assertEqual(rows["NH0002"]["ownership"], "")

    def test_report_csv_export(self):
        response = self.client.get("/api/v1/reports/vehicles/", {"file_type": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment", response["Content-Disposition"])
        self.assertIn("vehicle_report.csv", response["Content-Disposition"])

    def test_party_summary(self):
        response = self.client.get("/api/v1/reports/parties/summary/", {"name": "Acme Traders"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(Decimal(str(body["total_debit"])), Decimal("50000"))
        self.assertEqual(Decimal(str(body["total_credit"])), Decimal("30000"))
        self.assertEqual(Decimal(str(body["balance"])), Decimal("20000"))
        self.assertEqual(len(body["transactions"]), 3)

    def test_party_summary_requires_name(self):
        response = self.client.get("/api/v1/reports/parties/summary/")

        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["errors"])

    def test_vehicle_summary(self):
        response = self.client.get("/api/v1/reports/vehicles/summary/", {"vehicle_number": "MH12AB1234"})

        body = response.json()
        self.assertEqual(Decimal(str(body["total_vehicle_cost"])), Decimal("28000"))
        self.assertEqual(Decimal(str(body["total_advance_paid"])), Decimal("8000"))
        self.assertEqual(Decimal(str(body["total_balance"])), Decimal("20000"))
        self.assertEqual(len(body["transactions"]), 1)

    def test_dashboard_analytics(self):
        response = self.client.get("/api/v1/dashboard/analytics/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total_bookings"], 2)
        self.assertEqual(body["pending_party_payments"], 1)
        self.assertEqual(body["pending_deliveries"], 2)
        self.assertEqual(body["total_vehicles"], 1)
        self.assertEqual(Decimal(str(body["total_revenue"])), Decimal("15000"))
        self.assertEqual(Decimal(str(body["outstanding_receivable"])), Decimal("20000"))
        self.assertEqual(len(body["booking_chart"]), 7)
        self.assertEqual(body["booking_chart"][-1]["count"], 1)
        self.assertEqual(len(body["revenue_chart"]), 6)

    @override_settings(OVERDUE_PAYMENT_DAYS=3)
    def test_overdue_payments_only_lists_old_outstanding_bookings(self):
        create_booking(booking_no="NH0003")

        response = self.client.get("/api/v1/dashboard/overdue-payments/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([row["booking_no"] for row in body["results"]], ["NH0001"])
        self.assertEqual(body["results"][0]["days_outstanding"], 10)
        self.assertEqual(Decimal(str(body["results"][0]["party_amount_due"])), Decimal("20000"))

    @override_settings(OVERDUE_PAYMENT_DAYS=10)
    def test_booking_exactly_at_the_overdue_cutoff_is_not_listed(self):
        response = self.client.get("/api/v1/dashboard/overdue-payments/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["results"], [])

    def test_recent_activity_merges_bookings_and_payments(self):
        response = self.client.get("/api/v1/dashboard/recent-activity/")

        self.assertEqual(response.status_code, 200)
        types = {item["activity_type"] for item in response.json()}
        self.assertEqual(types, {"booking", "party_payment"})


@override_settings(
    CACHES={"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache", "LOCATION": "report-cache-tests"}}
)
class ReportCacheTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="ledger-reader", password="pass1234")
        self.client.force_authenticate(user=self.user)
        self.booking = create_booking()

    def ledger_remarks(self):
        response = self.client.get("/api/v1/reports/ledger/")
        self.assertEqual(response.status_code, 200)
        return sorted(row["remarks"] for row in response.json()["results"] if row["booking_no"] == "NH0001")

    def test_recorded_payment_shows_up_in_cached_ledger(self):
        self.assertEqual(self.ledger_remarks(), ["Advance Payment", "Deal Amount"])

        self.client.post(
            f"/api/v1/bookings/{self.booking.id}/party-payments/",
            {"amount": "10000", "mode": "cash"},
            format="json",
        )

        self.assertEqual(self.ledger_remarks(), ["Advance Payment", "Deal Amount", "Payment - Cash"])

    def test_new_and_deleted_bookings_refresh_cached_ledger(self):
        self.client.get("/api/v1/reports/ledger/")
        extra = create_booking(booking_no="NH0002", party_name="Bharat Logistics")

        booking_nos = {row["booking_no"] for row in self.client.get("/api/v1/reports/ledger/").json()["results"]}
        self.assertEqual(booking_nos, {"NH0001", "NH0002"})

        extra.delete()

        booking_nos = {row["booking_no"] for row in self.client.get("/api/v1/reports/ledger/").json()["results"]}
        self.assertEqual(booking_nos, {"NH0001"})

    def test_unchanged_data_is_served_from_cache(self):
        first = self.client.get("/api/v1/reports/ledger/").json()
        Booking.objects.filter(pk=self.booking.pk).update(party_name="Renamed Without Signal")

        second = self.client.get("/api/v1/reports/ledger/").json()

        self.assertEqual(first, second)


class ReconcileLedgerCommandTests(TestCase):
    def test_dry_run_reports_and_apply_fixes_drift(self):
        booking = create_booking()
        Booking.objects.filter(pk=booking.pk).update(sub_total=Decimal("1.00"), party_payment_status=PaymentStatus.COMPLETED)

        out = io.StringIO()
        call_command("reconcile_booking_ledgers", stdout=out)
        self.assertIn("NH0001", out.getvalue())
        booking.refresh_from_db()
        self.assertEqual(booking.sub_total, Decimal("1.00"))

        call_command("reconcile_booking_ledgers", "--apply", stdout=io.StringIO())
        booking.refresh_from_db()
        self.assertEqual(booking.sub_total, Decimal("50000.00"))
        self.assertEqual(booking.party_payment_status, PaymentStatus.PENDING)

    def test_consistent_ledgers(self):
        create_booking()
        out = io.StringIO()

        call_command("reconcile_booking_ledgers", stdout=out)

        self.assertIn("All booking ledgers are consistent.", out.getvalue())
