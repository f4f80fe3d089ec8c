import logging
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Count, F
from django.utils import timezone

from hospital.models import (
    Accommodation,
    AccommodationStatus,
    Admission,
    UNOCCUPIED_STATUSES,
    Ward,
)
from hospital.utils import describe_user, log_action

logger = logging.getLogger(__name__)

# Marks a keyword argument the caller did not supply; ``None`` is a real
# value for ``patient`` (it means "clear the occupant").
UNSET = object()


def _clean_price(price):
    try:
        price = Decimal(str(price))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid price format.")
    if price < 0:
        raise ValidationError("Price must not be negative.")
    return price


def _clean_unoccupied_status(status):
    if status not in UNOCCUPIED_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Choose one of: {', '.join(UNOCCUPIED_STATUSES)}."
        )
    return status


@transaction.atomic
def add_accommodation(actor, *, type, number, price_per_day, ward=None):
    number = (number or "").strip()
    if not number:
        raise ValidationError("A bed or room number is required.")
    price = _clean_price(price_per_day)

    if type not in dict(Accommodation.TYPE_CHOICES):
        raise ValidationError("Type must be 'bed' or 'room'.")
    if type == "bed" and ward is None:
        raise ValidationError("Ward is required for a new bed.")
    if type == "room":
        ward = None

    accommodation = Accommodation.objects.create(
        type=type, number=number, ward=ward, price_per_day=price
    )

    if type == "bed":
        Ward.objects.filter(pk=ward.pk).update(capacity=F("capacity") + 1)

    log_action(actor, f"add_{type}", details=f"Added new {type} '{number}' with price {price}.")
    return accommodation


def _close_open_admissions(actor, accommodation, now):
    """Set ``discharge_date`` on every open admission of ``accommodation``."""
    open_admissions = (
        Admission.objects.select_for_update()
        .filter(accommodation=accommodation, discharge_date__isnull=True)
        .select_related("patient")
    )
    closed = []
    for admission in open_admissions:
        admission.discharge_date = now
        admission.save(update_fields=["discharge_date"])
        log_action(
            actor,
            "discharge_patient",
            target_user=admission.patient,
            details=(
                f"Discharged patient {describe_user(admission.patient)} "
                f"from {accommodation.type} '{accommodation.number}'."
            ),
        )
        closed.append(admission)
    return closed


def _open_admission_elsewhere(patient, accommodation):
    return (
        Admission.objects.filter(patient=patient, discharge_date__isnull=True)
        .exclude(accommodation=accommodation)
        .exists()
    )


@transaction.atomic
def update_accommodation(
    actor,
    accommodation_id,
    *,
    price_per_day=UNSET,
    number=UNSET,
    status=UNSET,
    patient=UNSET,
    doctor=None,
):
    """
    Update an accommodation and, when ``patient`` is supplied, its occupant.

    ``patient`` semantics:

    * a user that differs from the current occupant admits that patient
      (opens an :class:`Admission`, status becomes ``occupied``);
    * ``None`` discharges the current occupant; ``status`` must then be given
      explicitly (available, cleaning or reserved). On an already empty
      accommodation the given status is applied.

    ``status`` alone is rejected while a patient is assigned.
    """
    try:
        accommodation = Accommodation.objects.select_for_update().get(pk=accommodation_id)
    except Accommodation.DoesNotExist:
        raise ValidationError("Accommodation not found.")

    if all(value is UNSET for value in (price_per_day, number, status, patient)):
        raise ValidationError("No data provided to update.")

    changes = []
    if price_per_day is not UNSET:
        accommodation.price_per_day = _clean_price(price_per_day)
        changes.append(f"price to {accommodation.price_per_day}")
    if number is not UNSET:
        number = (number or "").strip()
        if not number:
            raise ValidationError("A bed or room number is required.")
        accommodation.number = number
        changes.append(f"number to '{number}'")

    if patient is UNSET:
        if status is not UNSET:
            if accommodation.patient_id:
                raise ValidationError(
                    "Cannot change status directly while a patient is assigned. "
                    "Please discharge the patient first."
                )
            accommodation.status = _clean_unoccupied_status(status)
            changes.append(f"status to '{status}'")
    elif patient is None and accommodation.patient_id is None:
        # Already empty: apply the status and close any stale admission.
        if status is not UNSET and status is not None:
            accommodation.status = _clean_unoccupied_status(status)
            _close_open_admissions(actor, accommodation, timezone.now())
            changes.append(f"status to '{status}'")
    else:
        _change_occupant(actor, accommodation, patient, doctor, status)

    accommodation.save()

    if changes:
        log_action(
            actor,
            f"update_{accommodation.type}",
            details=f"Updated {accommodation.type} '{accommodation.number}': set {', '.join(changes)}.",
        )
    return accommodation


def _change_occupant(actor, accommodation, patient, doctor, status):
    current_id = accommodation.patient_id
    new_id = patient.pk if patient is not None else None
    if new_id == current_id:
        return

    now = timezone.now()

    if patient is None:
        if status is UNSET or status is None:
            raise ValidationError(
                "A resulting status (available, cleaning or reserved) is required when discharging a patient."
            )
        _clean_unoccupied_status(status)
        _close_open_admissions(actor, accommodation, now)
        accommodation.patient = None
        accommodation.doctor = None
        accommodation.occupied_since = None
        accommodation.status = status
        return

    if current_id is not None:
        raise ValidationError(
            f"{accommodation} already holds an active admission for another patient. "
            "Discharge that patient first."
        )
    if not patient.is_patient():
        raise ValidationError("Only patients can be assigned to a bed or room.")
    if _open_admission_elsewhere(patient, accommodation):
        raise ValidationError(f"Patient {describe_user(patient)} is already admitted elsewhere.")

    _close_open_admissions(actor, accommodation, now)
    Admission.objects.create(
        patient=patient,
        doctor=doctor,
        accommodation=accommodation,
        admission_date=now,
    )
    accommodation.patient = patient
    accommodation.doctor = doctor
    accommodation.occupied_since = now
    accommodation.status = AccommodationStatus.OCCUPIED
    log_action(
        actor,
        "admit_patient",
        target_user=patient,
        details=f"Admitted patient {describe_user(patient)} to {accommodation.type} '{accommodation.number}'.",
    )


@transaction.atomic
def bulk_update_status(actor, ids, status):
    """Set ``status`` on every listed accommodation that has no patient."""
    if not ids:
        raise ValidationError("A list of IDs and a new status are required.")
    _clean_unoccupied_status(status)

    updated = Accommodation.objects.filter(id__in=ids, patient__isnull=True).update(status=status)
    requested = len(set(ids))
    if updated < requested:
        logger.warning("Bulk status change skipped %d of %d accommodations", requested - updated, requested)
    if not updated:
        raise ValidationError("No records were updated. They may be occupied or already updated by someone else.")

    log_action(actor, "bulk_update_beds", details=f"Updated {updated} accommodations to status '{status}'.")
    return updated


@transaction.atomic
def admit_patient(actor, *, patient, accommodation_id, notes=""):
    """Doctor-side admission into an ``available`` accommodation."""
    try:
        accommodation = Accommodation.objects.select_for_update().get(pk=accommodation_id)
    except Accommodation.DoesNotExist:
        raise ValidationError("Accommodation not found.")

    if accommodation.status != AccommodationStatus.AVAILABLE or accommodation.patient_id:
        raise ValidationError("Selected bed is no longer available. Please choose another one.")
    if patient is None or not patient.is_patient():
        raise ValidationError("Patient and bed are required.")
    if _open_admission_elsewhere(patient, accommodation):
        raise ValidationError(f"Patient {describe_user(patient)} is already admitted elsewhere.")

    now = timezone.now()
    admission = Admission.objects.create(
        patient=patient,
        doctor=actor,
        accommodation=accommodation,
        admission_date=now,
        notes=notes,
    )
    accommodation.patient = patient
    accommodation.doctor = actor
    accommodation.occupied_since = now
    accommodation.status = AccommodationStatus.OCCUPIED
    accommodation.save()

    log_action(
        actor,
        "admit_patient",
        target_user=patient,
        details=f"Admission ID: {admission.pk}. Notes: {notes or 'No notes provided.'}",
    )
    return admission


def occupancy_summary():
    counts = {status: 0 for status in AccommodationStatus.values}
    for row in Accommodation.objects.values("status").annotate(total=Count("id")):
        counts[row["status"]] = row["total"]
    return counts
