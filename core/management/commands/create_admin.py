import os

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = "Create the back-office admin account, or reset its password if it already exists."

    def add_arguments(self, parser):
        parser.add_argument("--username", default=os.getenv("ADMIN_USERNAME"), help="Defaults to $ADMIN_USERNAME.")
        parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"), help="Defaults to $ADMIN_PASSWORD.")
        parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL", ""), help="Defaults to $ADMIN_EMAIL.")

    def handle(self, *args, **options):
        User = get_user_model()
        username = (options["username"] or "").strip()
        password = options["password"]
        email = (options["email"] or "").strip().lower()

        if not username:
            raise CommandError("An admin username is required (--username or ADMIN_USERNAME).")

        user = User.objects.filter(username=username).first()
        if user is None:
            if not password:
                raise CommandError("A password is required to create a new admin (--password or ADMIN_PASSWORD).")
            User.objects.create_user(
                username=username,
                email=email,
                password=password,
                role=User.Role.ADMIN,
                is_staff=True,
                is_superuser=True,
            )
            self.stdout.write(self.style.SUCCESS(f"Admin '{username}' created."))
            return

        update_fields = []
        if user.role != User.Role.ADMIN:
            user.role = User.Role.ADMIN
            update_fields.append("role")
        if password:
            user.set_password(password)
            update_fields.append("password")
        if not update_fields:
            self.stdout.write(self.style.WARNING(f"Admin '{username}' exists; no password given, nothing changed."))
            return

        user.save(update_fields=update_fields)
        self.stdout.write(self.style.SUCCESS(f"Admin '{username}' updated ({', '.join(update_fields)})."))
