"""Booking ledger arithmetic.

Every surface that shows or stores booking money (forms, lists, payments,
reports, exports, invoices) goes through this module. Nothing here touches
the database and nothing here raises: incomplete input degrades to zero.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from bookings.choices import PaymentStatus

ZERO = Decimal("0")

DEDUCTION_FIELDS = (
    "vehicle_charges",
    "commission",
    "local_charges",
    "hamali",
    "tds",
    "st_charges",
    "other",
)
CHARGE_INPUT_FIELDS = ("deal_amount", "advance_paid") + DEDUCTION_FIELDS
VEHICLE_INPUT_FIELDS = ("actual_vehicle_cost", "vehicle_advance")

DEFAULT_BOOKING_PREFIX = "NH"
BOOKING_NUMBER_WIDTH = 4

# Leading decimal number, the same prefix a lenient float parser accepts.
_LEADING_NUMBER_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_PREFIX_RE = re.compile(r"^[A-Za-z]+")
_NON_DIGIT_RE = re.compile(r"\D")


@dataclass(frozen=True)
class LedgerTotals:
    deal_amount: Decimal
    advance_paid: Decimal
    total_deductions: Decimal
    sub_total: Decimal
    final_pending_amount: Decimal
    vehicle_cost: Decimal
    vehicle_advance_paid: Decimal
    vehicle_balance: Decimal

    @property
    def pending_amount(self) -> Decimal:
        return self.final_pending_amount

    def as_dict(self) -> dict[str, Decimal]:
        payload = asdict(self)
        payload["pending_amount"] = self.pending_amount
        return payload


def coerce_amount(value: Any) -> Decimal:
    """Return ``value`` as a finite Decimal, or zero when it cannot be read as one."""
    if value is None or isinstance(value, bool):
        return ZERO

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return ZERO
    elif isinstance(value, str):
        match = _LEADING_NUMBER_RE.match(value)
        if match is None:
            return ZERO
        try:
            amount = Decimal(match.group(1))
        except InvalidOperation:
            return ZERO
    else:
        return ZERO

    if not amount.is_finite():
        return ZERO
    return amount


def _read(source: Any, field: str) -> Decimal:
    if not isinstance(source, Mapping):
        return ZERO
    return coerce_amount(source.get(field))


def calculate_booking_totals(charges: Any = None, vehicle_payment: Any = None) -> LedgerTotals:
    """Derive every booking total from the raw charge and vehicle-payment fields.

    Deductions only shape the internal subtotal; what the party owes is
    ``deal_amount - advance_paid`` regardless of them. Balances stay signed so
    overpayment shows up as a negative value.
    """
    deal_amount = _read(charges, "deal_amount")
    advance_paid = _read(charges, "advance_paid")
    total_deductions = sum((_read(charges, field) for field in DEDUCTION_FIELDS), ZERO)

    vehicle_cost = _read(vehicle_payment, "actual_vehicle_cost")
    vehicle_advance = _read(vehicle_payment, "vehicle_advance")

    return LedgerTotals(
        deal_amount=deal_amount,
        advance_paid=advance_paid,
        total_deductions=total_deductions,
        sub_total=deal_amount - total_deductions,
        final_pending_amount=deal_amount - advance_paid,
        vehicle_cost=vehicle_cost,
        vehicle_advance_paid=vehicle_advance,
        vehicle_balance=vehicle_cost - vehicle_advance,
    )


def display_amount(value: Any) -> Decimal:
    """Amount-due view of a signed balance: never below zero."""
    return max(coerce_amount(value), ZERO)


def derive_payment_status(balance: Any) -> str:
    if coerce_amount(balance) <= 0:
        return PaymentStatus.COMPLETED.value
    return PaymentStatus.PENDING.value


def derive_payment_statuses(totals: LedgerTotals) -> dict[str, str]:
    return {
        "party_payment_status": derive_payment_status(totals.final_pending_amount),
        "vehicle_payment_status": derive_payment_status(totals.vehicle_balance),
    }


def reconcile_payment_status(current: str | None, balance: Any) -> str:
    """Status to store after a recalculation.

    A cleared balance is always ``completed``. While money is still owed a
    ``partial`` set by an operator is kept; anything else falls back to
    ``pending``.
    """
    derived = derive_payment_status(balance)
    if derived == PaymentStatus.COMPLETED:
        return derived
    if current == PaymentStatus.PARTIAL:
        return PaymentStatus.PARTIAL.value
    return derived


def next_booking_no(
    last_booking_no: str | None,
    default_prefix: str = DEFAULT_BOOKING_PREFIX,
    width: int = BOOKING_NUMBER_WIDTH,
) -> str:
    """Suggest the booking number after ``last_booking_no`` (``NH0034`` -> ``NH0035``)."""
    if not last_booking_no or not str(last_booking_no).strip():
        return f"{default_prefix}{1:0{width}d}"

    last_booking_no = str(last_booking_no).strip()
    prefix_match = _PREFIX_RE.match(last_booking_no)
    prefix = prefix_match.group(0) if prefix_match else default_prefix

    digits = _NON_DIGIT_RE.sub("", last_booking_no)
    number = int(digits) if digits else 0
    return f"{prefix}{number + 1:0{width}d}"
