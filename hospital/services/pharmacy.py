import logging
from decimal import Decimal as D

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from hospital.models import (
    Admission,
    Invoice,
    Medicine,
    PharmacyBill,
    PharmacyBillItem,
    Prescription,
    PrescriptionItem,
)
from hospital.utils import log_action

logger = logging.getLogger(__name__)


def _to_int(value, field):
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number.")
    return value


@transaction.atomic
def issue_prescription(actor, *, patient, items, notes=""):
    """
    Doctor issues a prescription.

    ``items`` is a list of dicts with ``medicine_id``, ``quantity`` and
    optional ``dosage``/``frequency``. The patient's open admission, if any,
    is attached so dispensed medicine is billed to the stay.
    """
    if patient is None or not items:
        raise ValidationError("Patient and at least one medication are required.")
    if not patient.is_patient():
        raise ValidationError("Prescriptions can only be issued to patients.")

    admission = Admission.objects.filter(patient=patient, discharge_date__isnull=True).first()
    prescription = Prescription.objects.create(
        patient=patient,
        doctor=actor,
        admission=admission,
        notes=(notes or "").strip(),
    )

    for item in items:
        quantity = _to_int(item.get("quantity"), "Quantity")
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero.")
        try:
            medicine = Medicine.objects.get(pk=item.get("medicine_id"))
        except (Medicine.DoesNotExist, ValueError, TypeError):
            raise ValidationError(f"Medicine {item.get('medicine_id')} not found.")
        PrescriptionItem.objects.create(
            prescription=prescription,
            medicine=medicine,
            dosage=(item.get("dosage") or "").strip(),
            frequency=(item.get("frequency") or "").strip(),
            quantity_prescribed=quantity,
        )

    log_action(actor, "issue_prescription", target_user=patient, details=f"Prescription ID: {prescription.pk}")
    return prescription


@transaction.atomic
def dispense_prescription(actor, prescription_id, items, payment_mode=None):
    """
    Dispense medicine against a prescription and bill it in one step.

    A prescription may be filled in several runs; each run gets its own
    :class:`PharmacyBill` and the prescription stays ``partial`` until every
    line is fully dispensed.

    Outpatients pay on the spot (a paid :class:`Invoice` is created). For a
    patient whose admission is still open the cost is left on the admission
    and picked up by :func:`hospital.services.billing.generate_invoice`.

    Each medicine row is locked while its stock is checked and decremented,
    so concurrent dispensing can never oversell.
    """
    if not prescription_id or not items:
        raise ValidationError("Missing required billing data.")

    try:
        prescription = Prescription.objects.select_for_update().get(pk=prescription_id)
    except Prescription.DoesNotExist:
        raise ValidationError("Prescription not found.")

    charge_to_stay = prescription.admission is not None and prescription.admission.is_open
    if not charge_to_stay:
        if not payment_mode:
            raise ValidationError("Payment mode is required for outpatient prescriptions.")
        if payment_mode not in dict(Invoice.PAYMENT_MODES):
            raise ValidationError(f"Unknown payment mode '{payment_mode}'.")

    if prescription.status == "dispensed":
        raise ValidationError("This prescription has already been fully dispensed.")
    if prescription.status == "cancelled":
        raise ValidationError("This prescription has been cancelled.")

    total = D("0.00")
    lines = []
    for item in items:
        quantity = _to_int(item.get("quantity"), "Quantity")
        if quantity <= 0:
            continue
        medicine_id = item.get("medicine_id")

        try:
            line = PrescriptionItem.objects.select_for_update().get(
                prescription=prescription, medicine_id=medicine_id
            )
        except (PrescriptionItem.DoesNotExist, ValueError, TypeError):
            raise ValidationError(f"Medicine ID {medicine_id} is not on this prescription.")

        medicine = Medicine.objects.select_for_update().get(pk=line.medicine_id)
        if medicine.quantity < quantity:
            raise ValidationError(f"Insufficient stock for {medicine.name} (needed {quantity}, available {medicine.quantity}).")
        if quantity > line.quantity_remaining:
            raise ValidationError(
                f"Cannot dispense {quantity} of {medicine.name}; only {line.quantity_remaining} remaining on the prescription."
            )

        medicine.quantity -= quantity
        medicine.save(update_fields=["quantity"])
        if medicine.quantity == 0:
            logger.warning("Medicine %s (%s) is out of stock", medicine.pk, medicine.name)
        line.quantity_dispensed += quantity
        line.save(update_fields=["quantity_dispensed"])
        lines.append(PharmacyBillItem(medicine=medicine, quantity=quantity, unit_price=medicine.unit_price))
        total += quantity * medicine.unit_price

    if total <= 0:
        raise ValidationError("Cannot create a bill with zero total amount.")

    invoice = None
    if not charge_to_stay:
        invoice = Invoice.objects.create(
            patient=prescription.patient,
            description=f"Pharmacy Bill for Prescription #{prescription.pk}",
            amount=total,
            status="paid",
            payment_mode=payment_mode,
            paid_at=timezone.now(),
        )
    bill = PharmacyBill.objects.create(
        prescription=prescription,
        invoice=invoice,
        created_by=actor,
        total_amount=total,
    )
    for bill_item in lines:
        bill_item.bill = bill
    PharmacyBillItem.objects.bulk_create(lines)

    outstanding = prescription.items.filter(quantity_dispensed__lt=F("quantity_prescribed")).exists()
    prescription.status = "partial" if outstanding else "dispensed"
    prescription.save(update_fields=["status"])

    log_action(
        actor,
        "create_pharmacy_bill",
        target_user=prescription.patient,
        details=f"Created pharmacy bill #{bill.pk} for prescription #{prescription.pk}. Amount: {total:.2f}.",
    )
    return bill
