from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import AuditLog
from directory.models import MasterRecord, Party, Vehicle


class PartyDirectoryTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.operator = self.user_model.objects.create_user(username="desk", password="pass1234", role="operator")
        self.admin = self.user_model.objects.create_user(username="owner", password="pass1234", role="admin")
        self.client.force_authenticate(user=self.operator)

    def test_create_party_normalizes_email_and_writes_audit_log(self):
        response = self.client.post(
            "/api/v1/parties/",
            {
                "name": "Acme Traders",
                "contact_number": "9876543210",
                "email": "  Accounts@Acme.IN ",
                "city": "Pune",
                "gst_no": "27AAACA1234A1Z5",
            },
            format="json",
            HTTP_X_REQUEST_ID="req-party-1",
        )

        self.assertEqual(response.status_code, 201, response.content)
        self.assertEqual(response.json()["email"], "accounts@acme.in")
        self.assertTrue(AuditLog.objects.filter(action="party.create", entity="party", request_id="req-party-1").exists())

    def test_missing_required_fields_are_reported(self):
        response = self.client.post("/api/v1/parties/", {"name": "No Contact"}, format="json")

        self.assertEqual(response.status_code, 400)
        errors = response.json()["errors"]
        self.assertIn("contact_number", errors)
        self.assertIn("city", errors)

    def test_search_matches_name_and_city(self):
        Party.objects.create(name="Acme Traders", contact_number="1", email="a@acme.in", city="Pune")
        Party.objects.create(name="Bharat Logistics", contact_number="2", email="b@bharat.in", city="Nagpur")

        by_name = self.client.get("/api/v1/parties/", {"search": "acme"}).json()
        by_city = self.client.get("/api/v1/parties/", {"search": "nagpur"}).json()

        self.assertEqual([row["name"] for row in by_name["results"]], ["Acme Traders"])
        self.assertEqual([row["name"] for row in by_city["results"]], ["Bharat Logistics"])
        self.assertEqual(by_name["count"], 1)
        self.assertEqual(by_name["page"], 1)
        self.assertEqual(by_name["total_pages"], 1)

    def test_bulk_delete_requires_admin(self):
        party = Party.objects.create(name="Acme Traders", contact_number="1", email="a@acme.in", city="Pune")

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            denied = self.client.post("/api/v1/parties/delete-multiple/", {"ids": [str(party.id)]}, format="json")
        self.assertEqual(denied.status_code, 403)
        self.assertTrue(any("permission_denied" in message for message in cm.output))

        self.client.force_authenticate(user=self.admin)
        response = self.client.post("/api/v1/parties/delete-multiple/", {"ids": [str(party.id)]}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["deleted_count"], 1)
        self.assertFalse(Party.objects.exists())
        self.assertTrue(AuditLog.objects.filter(action="party.bulk_delete").exists())

    def test_single_delete_requires_admin_like_bulk_delete(self):
        party = Party.objects.create(name="Acme Traders", contact_number="1", email="a@acme.in", city="Pune")

        with self.assertLogs("security.authorization", level="WARNING"):
            denied = self.client.delete(f"/api/v1/parties/{party.id}/")
        self.assertEqual(denied.status_code, 403)
        self.assertTrue(Party.objects.filter(pk=party.pk).exists())

        self.client.force_authenticate(user=self.admin)
        response = self.client.delete(f"/api/v1/parties/{party.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Party.objects.exists())

    def test_bulk_delete_rejects_empty_id_list(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post("/api/v1/parties/delete-multiple/", {"ids": []}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("ids", response.json()["errors"])


class VehicleDirectoryTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="fleet", password="pass1234")
        self.client.force_authenticate(user=self.user)

    def _payload(self, **overrides):
        payload = {
            "vehicle_number": "MH12AB1234",
            "owner_name": "Ravi Patil",
            "contact_number": "9123456780",
            "address": "Hadapsar, Pune",
            "vehicle_type": "Truck",
            "ownership": "owner",
        }
        payload.update(overrides)
        return payload

    def test_vehicle_numbers_are_unique(self):
        first = self.client.post("/api/v1/vehicles/", self._payload(), format="json")
        second = self.client.post("/api/v1/vehicles/", self._payload(owner_name="Someone Else"), format="json")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 400)
        self.assertIn("vehicle_number", second.json()["errors"])

    def test_unknown_ownership_is_rejected(self):
        response = self.client.post("/api/v1/vehicles/", self._payload(ownership="leased"), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("ownership", response.json()["errors"])

    def test_filter_by_ownership(self):
        self.client.post("/api/v1/vehicles/", self._payload(), format="json")
        self.client.post("/api/v1/vehicles/", self._payload(vehicle_number="KA01CD5678", ownership="vendor"), format="json")

        response = self.client.get("/api/v1/vehicles/", {"ownership": "vendor"})

        self.assertEqual([row["vehicle_number"] for row in response.json()["results"]], ["KA01CD5678"])

    def test_update_vehicle(self):
        vehicle = Vehicle.objects.create(**self._payload())
        response = self.client.patch(f"/api/v1/vehicles/{vehicle.id}/", {"vehicle_type": "Trailer"}, format="json")

        self.assertEqual(response.status_code, 200)
        vehicle.refresh_from_db()
        self.assertEqual(vehicle.vehicle_type, "Trailer")
        self.assertTrue(AuditLog.objects.filter(action="vehicle.update", entity_id=vehicle.id).exists())


class MasterRecordTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="masters", password="pass1234")
        self.client.force_authenticate(user=self.user)

    def test_master_names_are_unique(self):
        MasterRecord.objects.create(name="Pune Depot")
        response = self.client.post("/api/v1/masters/", {"name": "Pune Depot"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["errors"])

    def test_delete_master_requires_admin(self):
        record = MasterRecord.objects.create(name="Nagpur Hub")
        with self.assertLogs("security.authorization", level="WARNING"):
            denied = self.client.delete(f"/api/v1/masters/{record.id}/")
        self.assertEqual(denied.status_code, 403)

        admin = get_user_model().objects.create_user(username="masters-admin", password="pass1234", role="admin")
        self.client.force_authenticate(user=admin)
        response = self.client.delete(f"/api/v1/masters/{record.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(MasterRecord.objects.exists())
        self.assertTrue(AuditLog.objects.filter(action="master.delete").exists())
