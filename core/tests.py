import csv
import io
import logging
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from common.exceptions import first_error_message
from common.logging import access_log_level, resolve_request_id
from core.models import AuditLog


class TokenLoginTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.user = self.user_model.objects.create_user(
            username="dispatcher",
            email="Dispatch@Freight.in",
            password="pass1234",
            role="operator",
        )

    def test_login_with_username(self):
        response = self.client.post("/api/v1/token/", {"username": "dispatcher", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())

    def test_login_with_email_is_case_insensitive(self):
        response = self.client.post("/api/v1/token/", {"username": "DISPATCH@freight.in", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)

    def test_wrong_password_is_rejected(self):
        response = self.client.post("/api/v1/token/", {"username": "dispatcher", "password": "nope"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")

    def test_email_is_stored_lowercase(self):
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, "dispatch@freight.in")


class ProfileTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.user = self.user_model.objects.create_user(
            username="owner",
            email="owner@freight.in",
            password="pass1234",
            first_name="Nikhil",
            last_name="Haulers",
        )
        self.client.force_authenticate(user=self.user)

    def test_get_profile(self):
        response = self.client.get("/api/v1/profile/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["username"], "owner")
        self.assertEqual(body["role"], "operator")
        self.assertNotIn("old_password", body)

    def test_update_company_details(self):
        response = self.client.patch(
            "/api/v1/profile/",
            {"gst_number": "27NIKHL1234F1Z5", "description": "Full truck load carriers", "role": "admin"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.user.refresh_from_db()
        self.assertEqual(self.user.gst_number, "27NIKHL1234F1Z5")
        self.assertEqual(self.user.role, "operator")
        self.assertTrue(AuditLog.objects.filter(action="profile.update", entity="user", entity_id=self.user.id).exists())

    def test_email_must_be_unique_ignoring_case(self):
        self.user_model.objects.create_user(username="other", email="taken@freight.in", password="pass1234")

        response = self.client.patch("/api/v1/profile/", {"email": "TAKEN@freight.in"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"]["email"], ["A user with this email already exists."])

    def test_keeping_own_email_is_allowed(self):
        response = self.client.patch("/api/v1/profile/", {"email": "OWNER@freight.in"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["email"], "owner@freight.in")

    def test_password_change_requires_current_password(self):
        response = self.client.patch(
            "/api/v1/profile/",
            {"old_password": "wrong", "new_password": "new-pass-5678"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("old_password", response.json()["errors"])
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("pass1234"))

    def test_password_change_needs_both_fields(self):
        response = self.client.patch("/api/v1/profile/", {"new_password": "new-pass-5678"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("new_password", response.json()["errors"])

    def test_password_change(self):
        response = self.client.patch(
            "/api/v1/profile/",
            {"old_password": "pass1234", "new_password": "new-pass-5678"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("new-pass-5678"))
        log = AuditLog.objects.get(action="profile.update")
        self.assertTrue(log.after_snapshot["password_changed"])

    def test_profile_requires_authentication(self):
        self.client.force_authenticate(user=None)

        self.assertEqual(self.client.get("/api/v1/profile/").status_code, 401)


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(username="audit-admin", password="pass1234", role="admin")
        self.operator = self.user_model.objects.create_user(username="audit-operator", password="pass1234", role="operator")

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_operator_cannot_read_audit_logs(self):
        self.client.force_authenticate(user=self.operator)
        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)

    def test_filter_by_action_and_entity(self):
        AuditLog.objects.create(action="booking.create", entity="booking", actor=self.admin)
        AuditLog.objects.create(action="party.create", entity="party", actor=self.admin)
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"entity": "booking"})

        results = response.json()["results"]
        self.assertEqual([row["action"] for row in results], ["booking.create"])
        self.assertEqual(results[0]["actor_username"], "audit-admin")

    def test_filter_by_action_list_and_plain_dates(self):
        AuditLog.objects.create(action="booking.party_payment", entity="booking", actor=self.admin)
        AuditLog.objects.create(action="booking.vehicle_payment", entity="booking", actor=self.admin)
        AuditLog.objects.create(action="booking.create", entity="booking", actor=self.admin)
        self.client.force_authenticate(user=self.admin)
        today = timezone.localdate().isoformat()

        response = self.client.get(
            "/api/v1/admin/audit-logs/",
            {"action": "booking.party_payment,booking.vehicle_payment", "start_date": today, "end_date": today},
        )

        self.assertEqual(response.json()["count"], 2)

    def test_end_date_alone_covers_the_whole_day(self):
        AuditLog.objects.create(action="booking.create", entity="booking", actor=self.admin)
        self.client.force_authenticate(user=self.admin)
        today = timezone.localdate()

        same_day = self.client.get("/api/v1/admin/audit-logs/", {"end_date": today.isoformat()})
        day_before = self.client.get(
            "/api/v1/admin/audit-logs/", {"end_date": (today - timedelta(days=1)).isoformat()}
        )

        self.assertEqual(same_day.json()["count"], 1)
        self.assertEqual(day_before.json()["count"], 0)

    def test_timestamp_bounds_are_still_accepted(self):
        AuditLog.objects.create(action="booking.create", entity="booking", actor=self.admin)
        self.client.force_authenticate(user=self.admin)
        earlier = (timezone.now() - timedelta(hours=1)).isoformat()

        response = self.client.get("/api/v1/admin/audit-logs/", {"start_date": earlier})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)

    def test_invalid_date_filter_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"start_date": "last week"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("start_date", response.json()["errors"])

    def test_csv_export(self):
        AuditLog.objects.create(action="booking.create", entity="booking", actor=self.admin, request_id="req-9")
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        rows = list(csv.DictReader(io.StringIO(response.content.decode())))
        self.assertEqual(rows[0]["action"], "booking.create")
        self.assertEqual(rows[0]["actor"], "audit-admin")
        self.assertEqual(rows[0]["request_id"], "req-9")


class HealthTests(TestCase):
    def test_healthz_and_readyz_are_public(self):
        client = APIClient()

        health = client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="req-health")
        ready = client.get("/api/v1/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json()["status"], "ok")
        self.assertEqual(health["X-Request-ID"], "req-health")
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json()["status"], "ready")

    def test_bad_request_id_header_is_not_echoed(self):
        response = APIClient().get("/api/v1/healthz/", HTTP_X_REQUEST_ID="not a token")

        self.assertNotEqual(response["X-Request-ID"], "not a token")
        self.assertEqual(response.json()["request_id"], response["X-Request-ID"])


class CreateAdminCommandTests(TestCase):
    def test_creates_admin_account(self):
        out = io.StringIO()
        call_command("create_admin", username="root-admin", password="pass1234", email="Root@Freight.in", stdout=out)

        user = get_user_model().objects.get(username="root-admin")
        self.assertEqual(user.role, "admin")
        self.assertTrue(user.is_superuser)
        self.assertTrue(user.is_staff)
        self.assertEqual(user.email, "root@freight.in")
        self.assertTrue(user.check_password("pass1234"))
        self.assertIn("created", out.getvalue())

    def test_existing_user_is_promoted_and_password_reset(self):
        user = get_user_model().objects.create_user(username="promote-me", password="old-pass", role="operator")

        call_command("create_admin", username="promote-me", password="new-pass", stdout=io.StringIO())

        user.refresh_from_db()
        self.assertEqual(user.role, "admin")
        self.assertTrue(user.check_password("new-pass"))

    def test_username_is_required(self):
        with self.assertRaises(CommandError):
            call_command("create_admin", username="", password="pass1234", stdout=io.StringIO())

    def test_password_is_required_for_new_admin(self):
        with self.assertRaises(CommandError):
            call_command("create_admin", username="no-password", password="", stdout=io.StringIO())


class RequestLoggingHelperTests(SimpleTestCase):
    def test_untrusted_request_ids_are_replaced(self):
        self.assertEqual(resolve_request_id("req-42"), "req-42")
        self.assertNotEqual(resolve_request_id("bad id with spaces"), "bad id with spaces")
        self.assertNotEqual(resolve_request_id("x" * 200), "x" * 200)
        self.assertTrue(resolve_request_id(None))

    def test_access_log_levels(self):
        self.assertEqual(access_log_level("/api/v1/bookings/", 200), logging.INFO)
        self.assertEqual(access_log_level("/api/v1/healthz/", 200), logging.DEBUG)
        self.assertEqual(access_log_level("/api/v1/bookings/", 404), logging.WARNING)
        self.assertEqual(access_log_level("/api/v1/readyz/", 503), logging.ERROR)


class ErrorMessageTests(SimpleTestCase):
    def test_first_error_message_keeps_section_path(self):
        errors = {"charges": {"deal_amount": ["Amount cannot be negative."]}, "party": {"name": ["Required."]}}

        self.assertEqual(first_error_message(errors), "charges.deal_amount: Amount cannot be negative.")

    def test_non_field_errors_have_no_prefix(self):
        self.assertEqual(first_error_message({"non_field_errors": ["Broken."]}), "Broken.")
        self.assertEqual(first_error_message(["Plain message."]), "Plain message.")
        self.assertIsNone(first_error_message({}))
