"""
Discharge clearance workflow.

An admission is discharged only after nursing, pharmacy and billing have
signed off, in that order. The last sign-off finalizes the discharge: the
admission is closed and its accommodation goes to ``cleaning``.
"""
import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Exists, OuterRef, Q
from django.utils import timezone

from hospital.models import (
    Accommodation,
    AccommodationStatus,
    Admission,
    ClearanceStep,
    DischargeClearance,
)
from hospital.utils import describe_user, log_action

logger = logging.getLogger(__name__)

CLEARANCE_ORDER = tuple(ClearanceStep.values)

# Steps that must already be cleared before a step may be cleared.
PREREQUISITES = {step: CLEARANCE_ORDER[:index] for index, step in enumerate(CLEARANCE_ORDER)}


class ClearanceOrderError(ValidationError):
    """A clearance step was attempted before its prerequisite steps."""

    def __init__(self, step, missing):
        self.step = step
        self.missing = tuple(missing)
        labels = " and ".join(ClearanceStep(s).label for s in self.missing)
        noun = "clearance" if len(self.missing) == 1 else "clearances"
        super().__init__(
            f"{labels} {noun} must be completed before {ClearanceStep(step).label.lower()} clearance.",
            code="clearance_order",
        )


class DischargeStage:
    NOT_INITIATED = "not_initiated"
    PENDING = "pending"
    NURSING_CLEARED = "nursing_cleared"
    PHARMACY_CLEARED = "pharmacy_cleared"
    BILLING_CLEARED = "billing_cleared"
    FINALIZED = "finalized"


@transaction.atomic
def initiate_discharge(actor, admission_id):
    """Open the clearance checklist (one row per step) for an admission."""
    try:
        admission = Admission.objects.select_for_update().get(pk=admission_id)
    except Admission.DoesNotExist:
        raise ValidationError("Admission record not found.")

    if not admission.is_open:
        raise ValidationError("This admission has already been discharged.")
    if admission.clearances.exists():
        raise ValidationError("Discharge has already been initiated for this admission.")

    clearances = DischargeClearance.objects.bulk_create(
        [DischargeClearance(admission=admission, clearance_step=step) for step in CLEARANCE_ORDER]
    )
    log_action(
        actor,
        "initiate_discharge",
        target_user=admission.patient,
        details=f"Initiated discharge for patient {describe_user(admission.patient)} (Admission #{admission.pk}).",
    )
    return clearances


def missing_prerequisites(step, cleared_steps):
    return [required for required in PREREQUISITES[step] if required not in cleared_steps]


@transaction.atomic
def process_clearance(actor, clearance_id, notes):
    notes = (notes or "").strip()
    if not clearance_id or not notes:
        raise ValidationError("Discharge ID and notes are required.")

    try:
        clearance = DischargeClearance.objects.select_for_update().get(pk=clearance_id)
    except DischargeClearance.DoesNotExist:
        raise ValidationError("Discharge record not found.")

    # Lock the sibling steps too so two departments cannot race each other.
    siblings = list(
        DischargeClearance.objects.select_for_update()
        .filter(admission_id=clearance.admission_id)
        .order_by("id")
    )
    cleared_steps = {s.clearance_step for s in siblings if s.is_cleared}

    if clearance.is_cleared:
        raise ValidationError("Failed to process clearance. It has already been processed.")

    missing = missing_prerequisites(clearance.clearance_step, cleared_steps)
    if missing:
        raise ClearanceOrderError(clearance.clearance_step, missing)

    clearance.is_cleared = True
    clearance.cleared_by = actor
    clearance.cleared_at = timezone.now()
    clearance.notes = notes
    clearance.save(update_fields=["is_cleared", "cleared_by", "cleared_at", "notes"])

    admission = clearance.admission
    log_action(
        actor,
        "process_discharge_clearance",
        target_user=admission.patient,
        details=(
            f"Processed {clearance.clearance_step} clearance for patient "
            f"{describe_user(admission.patient)}. Notes: {notes}"
        ),
    )

    check_and_finalize_discharge(actor, clearance.admission_id)
    return clearance


@transaction.atomic
def check_and_finalize_discharge(actor, admission_id):
    """
    Close the admission once every clearance step is signed off.

    Returns True only for the call that actually finalized; later calls see a
    discharge date already set and change nothing.

    Locks the accommodation before the admission, the same order as
    :func:`hospital.services.accommodation.update_accommodation`.
    """
    accommodation_id = (
        Admission.objects.filter(pk=admission_id).values_list("accommodation_id", flat=True).first()
    )
    if accommodation_id is not None:
        list(Accommodation.objects.select_for_update().filter(pk=accommodation_id))

    admission = (
        Admission.objects.select_for_update()
        .select_related("patient")
        .filter(pk=admission_id)
        .first()
    )
    if admission is None or not admission.is_open:
        return False

    cleared = admission.clearances.filter(is_cleared=True).count()
    if cleared != len(CLEARANCE_ORDER):
        return False

    now = timezone.now()
    closed = Admission.objects.filter(pk=admission.pk, discharge_date__isnull=True).update(discharge_date=now)
    if not closed:
        return False

    if admission.accommodation_id:
        # Only release the accommodation if this admission's patient is still in it.
        Accommodation.objects.filter(
            pk=admission.accommodation_id, patient_id=admission.patient_id
        ).update(
            status=AccommodationStatus.CLEANING,
            patient=None,
            doctor=None,
            occupied_since=None,
        )

    log_action(
        actor,
        "finalize_discharge",
        target_user=admission.patient,
        details=f"Finalized discharge for patient {describe_user(admission.patient)} (Admission #{admission.pk}).",
    )
    logger.info("Admission %s finalized", admission.pk)
    return True


def discharge_stage(admission):
    steps = {c.clearance_step: c.is_cleared for c in admission.clearances.all()}
    if not steps:
        return DischargeStage.NOT_INITIATED
    if admission.discharge_date is not None and all(steps.get(step) for step in CLEARANCE_ORDER):
        return DischargeStage.FINALIZED

    stage = DischargeStage.PENDING
    for step in CLEARANCE_ORDER:
        if not steps.get(step):
            break
        stage = f"{step}_cleared"
    return stage


def discharge_queue(step=None, search=""):
    """
    Uncleared clearance rows waiting on a department.

    Billing rows are only listed once nursing and pharmacy are done for the
    same admission.
    """
    queryset = DischargeClearance.objects.filter(is_cleared=False).select_related(
        "admission__patient", "admission__doctor", "cleared_by"
    )

    if search:
        queryset = queryset.filter(
            Q(admission__patient__name__icontains=search)
            | Q(admission__patient__username__icontains=search)
            | Q(admission__patient__display_user_id__icontains=search)
        )

    if step == ClearanceStep.BILLING:
        blocking = DischargeClearance.objects.filter(
            admission_id=OuterRef("admission_id"),
            is_cleared=False,
            clearance_step__in=PREREQUISITES[ClearanceStep.BILLING.value],
        )
        queryset = queryset.filter(clearance_step=step).filter(~Exists(blocking))
    elif step in CLEARANCE_ORDER:
        queryset = queryset.filter(clearance_step=step)

    return queryset.order_by("-id")
