from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from hospital.models import Accommodation, Medicine, Ward

User = get_user_model()

WARDS = [
    ("General Ward", ["1", "2", "3", "4"], Decimal("1500.00")),
    ("ICU", ["1", "2"], Decimal("5000.00")),
]

ROOMS = [("101", Decimal("3500.00")), ("102", Decimal("3500.00"))]

MEDICINES = [
    ("Paracetamol 500mg", 500, Decimal("2.50")),
    ("Amoxicillin 250mg", 200, Decimal("8.00")),
    ("Ibuprofen 400mg", 300, Decimal("3.75")),
]

USERS = [
    ("admin", "admin", "Hospital Admin"),
    ("drbrown", "doctor", "Dr. Brown"),
    ("drlee", "doctor", "Dr. Lee"),
    ("nurse_amy", "staff", "Amy Carter"),
    ("john_doe", "user", "John Doe"),
    ("jane_smith", "user", "Jane Smith"),
]


class Command(BaseCommand):
    help = "Seed wards, beds, rooms, medicines and one user per role for local development"

    def add_arguments(self, parser):
        parser.add_argument(
            "--password",
            default="testpass123",
            help="Password given to newly created users (default: testpass123)",
        )

    @transaction.atomic
    def handle(self, *args, **options):
        for name, numbers, price in WARDS:
            ward, created = Ward.objects.get_or_create(name=name)
            for number in numbers:
                _, bed_created = Accommodation.objects.get_or_create(
                    type="bed", ward=ward, number=number, defaults={"price_per_day": price}
                )
                if bed_created:
                    ward.capacity += 1
            ward.save(update_fields=["capacity"])
            self._report(created, f"Ward {name} ({ward.capacity} beds)")

        for number, price in ROOMS:
            _, created = Accommodation.objects.get_or_create(
                type="room", number=number, defaults={"price_per_day": price}
            )
            self._report(created, f"Room {number}")

        for name, quantity, unit_price in MEDICINES:
            _, created = Medicine.objects.get_or_create(
                name=name, defaults={"quantity": quantity, "unit_price": unit_price}
            )
            self._report(created, f"Medicine {name}")

        for username, role, full_name in USERS:
            user, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "name": full_name, "is_staff": role == "admin"},
            )
            if created:
                user.set_password(options["password"])
                user.save()
            self._report(created, f"{user.get_role_display()} {username} ({user.display_user_id})")

        self.stdout.write(self.style.SUCCESS("Seeding complete"))

    def _report(self, created, label):
        if created:
            self.stdout.write(f"Created {label}")
        else:
            self.stdout.write(f"{label} already exists")
