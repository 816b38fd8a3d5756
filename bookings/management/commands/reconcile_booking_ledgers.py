from django.core.management.base import BaseCommand

from bookings.services import reconcile_booking_ledgers


class Command(BaseCommand):
    help = "Report bookings whose stored totals or payment statuses disagree with the ledger calculator."

    def add_arguments(self, parser):
        parser.add_argument(
            "--apply",
            action="store_true",
            help="Rewrite the drifted derived fields from the calculator.",
        )

    def handle(self, *args, **options):
        apply_changes = options["apply"]
        drifted = reconcile_booking_ledgers(apply_changes=apply_changes)

        if not drifted:
            self.stdout.write(self.style.SUCCESS("All booking ledgers are consistent."))
            return

        self.stdout.write(self.style.WARNING(f"Found {len(drifted)} booking(s) with ledger drift."))
        for booking, drift in drifted:
            details = ", ".join(f"{field}: {stored} -> {expected}" for field, (stored, expected) in sorted(drift.items()))
            self.stdout.write(f"- {booking.booking_no}: {details}")

        if not apply_changes:
            self.stdout.write(self.style.WARNING("Dry run only. Re-run with --apply to rewrite derived fields."))
            return

        self.stdout.write(self.style.SUCCESS(f"Reconciled {len(drifted)} booking(s)."))
