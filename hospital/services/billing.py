import logging
from decimal import Decimal as D
from io import BytesIO

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.mail import EmailMessage
from django.db import transaction
from django.db.models import Q, Sum
from django.template.loader import render_to_string
from django.utils import timezone
from xhtml2pdf import pisa

from hospital.models import Admission, Invoice, LabOrder, PharmacyBill
from hospital.utils import log_action

logger = logging.getLogger(__name__)


class InvoiceRenderError(Exception):
    """xhtml2pdf could not turn the invoice template into a PDF."""


def stay_length_days(admission_date, discharge_date):
    """Billed days for a stay: whole elapsed days plus the day of admission."""
    return max(1, (discharge_date - admission_date).days + 1)


def admission_charges(admission):
    """
    Break down what an admission costs so far.

    Returns a dict with ``days``, ``accommodation``, ``medicines``, ``lab`` and
    ``total`` (Decimals, except ``days``).
    """
    end = admission.discharge_date or timezone.now()
    days = stay_length_days(admission.admission_date, end)

    price = admission.accommodation.price_per_day if admission.accommodation_id else D("0.00")
    accommodation_cost = D(days) * price

    medicine_cost = (
        PharmacyBill.objects.filter(prescription__admission=admission, invoice__isnull=True)
        .aggregate(total=Sum("total_amount"))["total"]
        or D("0.00")
    )

    lab_cost = (
        LabOrder.objects.filter(
            Q(admission=admission)
            | Q(
                admission__isnull=True,
                patient=admission.patient,
                created_at__gte=admission.admission_date,
                created_at__lte=end,
            )
        )
        .aggregate(total=Sum("cost"))["total"]
        or D("0.00")
    )

    return {
        "days": days,
        "accommodation": accommodation_cost,
        "medicines": D(medicine_cost),
        "lab": D(lab_cost),
        "total": accommodation_cost + D(medicine_cost) + D(lab_cost),
    }


@transaction.atomic
def generate_invoice(actor, admission_id):
    try:
        admission = Admission.objects.select_for_update().get(pk=admission_id)
    except Admission.DoesNotExist:
        raise ValidationError("Admission record not found.")

    if Invoice.objects.filter(admission=admission, status="pending").exists():
        raise ValidationError("An unpaid invoice already exists for this admission. Please process the existing one.")

    charges = admission_charges(admission)
    description = (
        f"Final bill for admission #{admission.pk}. "
        f"Accommodation ({charges['days']} days): {charges['accommodation']:.2f}, "
        f"Medicines: {charges['medicines']:.2f}, Lab Tests: {charges['lab']:.2f}."
    )
    invoice = Invoice.objects.create(
        patient=admission.patient,
        admission=admission,
        description=description,
        amount=charges["total"],
    )

    log_action(
        actor,
        "generate_invoice",
        target_user=admission.patient,
        details=f"Generated invoice #{invoice.pk} for admission #{admission.pk}. Amount: {invoice.amount:.2f}.",
    )
    return invoice


@transaction.atomic
def process_payment(actor, invoice_id, payment_mode):
    if not invoice_id or not payment_mode:
        raise ValidationError("Invoice ID and payment mode are required.")
    if payment_mode not in dict(Invoice.PAYMENT_MODES):
        raise ValidationError(f"Unknown payment mode '{payment_mode}'.")

    updated = Invoice.objects.filter(pk=invoice_id, status="pending").update(
        status="paid", payment_mode=payment_mode, paid_at=timezone.now()
    )
    if not updated:
        raise ValidationError("Payment failed. The invoice may already be paid or does not exist.")

    invoice = Invoice.objects.select_related("patient", "admission").get(pk=invoice_id)
    log_action(
        actor,
        "process_payment",
        target_user=invoice.patient,
        details=f"Recorded {payment_mode} payment for invoice #{invoice.pk}. Amount: {invoice.amount:.2f}.",
    )

    transaction.on_commit(lambda: send_invoice_receipt(invoice))
    return invoice


def render_invoice_pdf(invoice):
    context = {"invoice": invoice, "hospital_name": settings.HOSPITAL_NAME}
    if invoice.admission_id:
        context["charges"] = admission_charges(invoice.admission)

    html = render_to_string("hospital/invoice_pdf.html", context)
    buffer = BytesIO()
    pisa_status = pisa.CreatePDF(html, dest=buffer, encoding="UTF-8")
    if pisa_status.err:
        raise InvoiceRenderError(f"PDF generation error for invoice #{invoice.pk}")
    return buffer.getvalue()


def send_invoice_receipt(invoice):
    """E-mail the paid invoice to the patient; failures are logged, never raised."""
    patient = invoice.patient
    if not patient.email:
        return False

    try:
        pdf = render_invoice_pdf(invoice)
        email = EmailMessage(
            subject=f"Your {settings.HOSPITAL_NAME} Bill (Invoice #{invoice.pk})",
            body=(
                f"Dear {patient.get_full_name_or_username()},\n\n"
                "Thank you for your payment. Please find your detailed bill attached.\n\n"
                f"Sincerely,\n{settings.HOSPITAL_NAME}"
            ),
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[patient.email],
        )
        email.attach(f"invoice-{invoice.pk}.pdf", pdf, "application/pdf")
        email.send()
    except Exception:
        logger.exception("Could not send receipt for invoice %s", invoice.pk)
        return False
    return True
