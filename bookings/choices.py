from django.db import models


class DeliveryStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    IN_TRANSIT = "in-transit", "In Transit"
    DELIVERED = "delivered", "Delivered"
    RECEIVED = "received", "Received"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PARTIAL = "partial", "Partial"
    COMPLETED = "completed", "Completed"


class PaymentMode(models.TextChoices):
    CASH = "cash", "Cash"
    CHEQUE = "cheque", "Cheque"
    BANK_TRANSFER = "bank_transfer", "Bank Transfer"
    UPI = "upi", "UPI"


class PaymentKind(models.TextChoices):
    PARTY = "party", "Party"
    VEHICLE = "vehicle", "Vehicle"
