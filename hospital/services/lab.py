import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.mail import EmailMessage
from django.db import transaction

from hospital.models import Admission, LabOrder
from hospital.services.accommodation import UNSET
from hospital.utils import describe_user, log_action

logger = logging.getLogger(__name__)


def _clean_cost(cost):
    if cost is None or cost == "":
        return Decimal("0.00")
    try:
        cost = Decimal(str(cost))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid cost format.")
    if cost < 0:
        raise ValidationError("Cost cannot be negative.")
    return cost


def _clean_status(status):
    if status not in dict(LabOrder.STATUS_CHOICES):
        choices = ", ".join(value for value, _ in LabOrder.STATUS_CHOICES)
        raise ValidationError(f"Invalid status '{status}'. Choose one of: {choices}.")
    return status


def _clean_doctor(doctor):
    if doctor is not None and not doctor.is_doctor():
        raise ValidationError("Lab tests can only be requested by a doctor.")
    return doctor


def _clean_test_name(test_name):
    test_name = (test_name or "").strip()
    if not test_name:
        raise ValidationError("Test name is required.")
    return test_name


@transaction.atomic
def add_lab_order(actor, *, patient, test_name, cost=None, status="ordered", doctor=None, test_date=None, result=""):
    """
    Record a lab order for a patient.

    The patient's open admission, if any, is attached so the cost lands on
    the stay's invoice. Staff who create the order become its handler.
    """
    if patient is None or not (test_name or "").strip():
        raise ValidationError("Patient and test name are required.")
    if not patient.is_patient():
        raise ValidationError("Lab tests can only be ordered for patients.")

    order = LabOrder.objects.create(
        patient=patient,
        doctor=_clean_doctor(doctor),
        staff=None if actor.is_doctor() else actor,
        admission=Admission.objects.filter(patient=patient, discharge_date__isnull=True).first(),
        test_name=_clean_test_name(test_name),
        test_date=test_date,
        cost=_clean_cost(cost),
        status=_clean_status(status),
        result=(result or "").strip(),
    )

    log_action(
        actor,
        "add_lab_order",
        target_user=patient,
        details=f"Added lab order #{order.pk} ('{order.test_name}') for patient {describe_user(patient)}.",
    )
    if order.status == "completed":
        transaction.on_commit(lambda: send_lab_result_notice(order))
    return order


@transaction.atomic
def update_lab_order(
    actor,
    lab_order_id,
    *,
    test_name=UNSET,
    test_date=UNSET,
    cost=UNSET,
    status=UNSET,
    doctor=UNSET,
    result=UNSET,
):
    """
    Change a lab order. Staff may move the status to any stage.

    The patient is e-mailed once the order first reaches ``completed``.
    """
    order = LabOrder.objects.select_for_update().select_related("patient").filter(pk=lab_order_id).first()
    if order is None:
        raise ValidationError("Lab order not found.")

    if all(value is UNSET for value in (test_name, test_date, cost, status, doctor, result)):
        raise ValidationError("No data provided to update.")

    previous_status = order.status
    if test_name is not UNSET:
        order.test_name = _clean_test_name(test_name)
    if test_date is not UNSET:
        order.test_date = test_date
    if cost is not UNSET:
        order.cost = _clean_cost(cost)
    if status is not UNSET:
        order.status = _clean_status(status)
    if doctor is not UNSET:
        order.doctor = _clean_doctor(doctor)
    if result is not UNSET:
        order.result = (result or "").strip()
    order.staff = actor
    order.save()

    log_action(
        actor,
        "update_lab_order",
        target_user=order.patient,
        details=f"Updated lab order #{order.pk} ('{order.test_name}') for patient {describe_user(order.patient)}.",
    )
    if order.status == "completed" and previous_status != "completed":
        transaction.on_commit(lambda: send_lab_result_notice(order))
    return order


@transaction.atomic
def remove_lab_order(actor, lab_order_id):
    order = LabOrder.objects.select_for_update().select_related("patient").filter(pk=lab_order_id).first()
    if order is None:
        raise ValidationError("Lab order not found.")

    patient, order_id = order.patient, order.pk
    order.delete()
    log_action(
        actor,
        "delete_lab_order",
        target_user=patient,
        details=f"Deleted lab order #{order_id} for patient {describe_user(patient)}.",
    )
    return order_id


def send_lab_result_notice(order):
    """Tell the patient their result is ready; failures are logged, never raised."""
    patient = order.patient
    if not patient.email:
        logger.info("Lab order %s completed; patient %s has no e-mail address", order.pk, patient.pk)
        return False

    try:
        EmailMessage(
            subject=f"Your Lab Results Are Ready - {settings.HOSPITAL_NAME}",
            body=(
                f"Dear {patient.get_full_name_or_username()},\n\n"
                f"Your lab test result for '{order.test_name}' is now ready. "
                "Please contact the hospital or check your account for details.\n\n"
                f"Sincerely,\n{settings.HOSPITAL_NAME} Lab Services"
            ),
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[patient.email],
        ).send()
    except Exception:
        logger.exception("Could not send lab result notice for order %s", order.pk)
        return False
    return True
