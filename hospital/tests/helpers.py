from decimal import Decimal

from django.contrib.auth import get_user_model

from hospital.models import Accommodation, Medicine, Ward

User = get_user_model()

PASSWORD = "testpass123"


def make_user(username, role="user", **extra):
    return User.objects.create_user(username=username, password=PASSWORD, role=role, **extra)


def make_ward(name="General Ward"):
    return Ward.objects.create(name=name)


def make_bed(number="12", ward=None, price="1000.00", **extra):
    if ward is None:
        ward = Ward.objects.get_or_create(name="General Ward")[0]
    return Accommodation.objects.create(
        type="bed", ward=ward, number=number, price_per_day=Decimal(price), **extra
    )


def make_medicine(name="Paracetamol 500mg", quantity=100, unit_price="2.50"):
    return Medicine.objects.create(name=name, quantity=quantity, unit_price=Decimal(unit_price))
