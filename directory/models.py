import uuid

from django.db import models


class Party(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    contact_number = models.CharField(max_length=64)
    email = models.EmailField()
    city = models.CharField(max_length=128)
    gst_no = models.CharField(max_length=32, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["name"], name="party_name_idx"),
            models.Index(fields=["city"], name="party_city_idx"),
        ]

    def __str__(self):
        return self.name


class Vehicle(models.Model):
    class Ownership(models.TextChoices):
        OWNER = "owner", "Owner"
        VENDOR = "vendor", "Vendor"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vehicle_number = models.CharField(max_length=32, unique=True)
    owner_name = models.CharField(max_length=255)
    contact_number = models.CharField(max_length=64)
    address = models.TextField()
    vehicle_type = models.CharField(max_length=64)
    ownership = models.CharField(max_length=16, choices=Ownership.choices)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["owner_name"], name="vehicle_owner_idx"),
        ]

    def __str__(self):
        return self.vehicle_number


class MasterRecord(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.name
