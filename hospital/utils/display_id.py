import re

from django.core.exceptions import ValidationError
from django.db import transaction

from hospital.models import RoleCounter

ROLE_PREFIXES = {
    "admin": "A",
    "doctor": "D",
    "staff": "S",
    "user": "U",
}

DISPLAY_ID_PATTERN = re.compile(r"^[ADSU]\d{4}$")
MAX_SEQUENCE = 9999


def generate_display_id(role, using=None):
    """
    Return the next display ID for ``role``, e.g. ``D0007``.

    The counter row is read with ``select_for_update`` so two callers can
    never be handed the same number. When called inside an outer
    ``transaction.atomic`` block the increment commits or rolls back with it.
    """
    prefix = ROLE_PREFIXES.get(role)
    if prefix is None:
        raise ValidationError(f"Invalid role for ID generation: {role!r}.")

    with transaction.atomic(using=using):
        counters = RoleCounter.objects.db_manager(using)
        counters.get_or_create(role_prefix=prefix, defaults={"last_id": 0})
        counter = counters.select_for_update().get(role_prefix=prefix)
        counter.last_id += 1
        if counter.last_id > MAX_SEQUENCE:
            raise ValidationError(f"Display ID range for role {role!r} is exhausted.")
        counter.save(update_fields=["last_id"])

    return f"{prefix}{counter.last_id:04d}"


def display_id_is_valid(value):
    return bool(value) and DISPLAY_ID_PATTERN.match(value) is not None


def sync_role_counters():
    """
    Create any missing counter rows and move each counter up to the highest
    display ID already issued with its prefix (e.g. after importing users).

    Counters are never moved backwards. Returns ``{prefix: last_id}``.
    """
    from django.contrib.auth import get_user_model

    User = get_user_model()
    state = {}
    with transaction.atomic():
        for prefix in ROLE_PREFIXES.values():
            RoleCounter.objects.get_or_create(role_prefix=prefix, defaults={"last_id": 0})
            counter = RoleCounter.objects.select_for_update().get(role_prefix=prefix)

            issued = User.objects.filter(display_user_id__startswith=prefix).values_list(
                "display_user_id", flat=True
            )
            highest = max((int(value[1:]) for value in issued if display_id_is_valid(value)), default=0)
            if highest > counter.last_id:
                counter.last_id = highest
                counter.save(update_fields=["last_id"])
            state[prefix] = counter.last_id
    return state
