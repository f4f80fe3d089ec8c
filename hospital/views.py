import json
import logging

from django.contrib.auth import login, logout
from django.contrib.auth.forms import AuthenticationForm
from django.core.exceptions import PermissionDenied, ValidationError
from django.db.models import TextChoices
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.views import View

from .forms import (
    AddAccommodationForm,
    AdmitPatientForm,
    BulkStatusForm,
    DispenseForm,
    DoctorLabOrderForm,
    GenerateInvoiceForm,
    InitiateDischargeForm,
    LabOrderForm,
    PrescriptionForm,
    ProcessClearanceForm,
    ProcessPaymentForm,
    RemoveLabOrderForm,
    UpdateAccommodationForm,
    UpdateLabOrderForm,
)
from .mixins import RoleRequiredMixin, api_response, api_view
from .models import Accommodation, Admission, Invoice, LabOrder
from .services import accommodation as accommodation_service
from .services import billing as billing_service
from .services import discharge as discharge_service
from .services import lab as lab_service
from .services import pharmacy as pharmacy_service
from .utils import log_action

logger = logging.getLogger(__name__)


def read_payload(request):
    """Request body as a dict: JSON when sent as JSON, otherwise form data."""
    if request.content_type == "application/json":
        try:
            payload = json.loads(request.body or b"{}")
        except json.JSONDecodeError:
            raise ValidationError("Request body is not valid JSON.")
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object.")
        return payload
    return request.POST


# =======================================================
# SERIALIZATION
# =======================================================

def user_json(user):
    if user is None:
        return None
    return {
        "id": user.pk,
        "display_id": user.display_user_id,
        "name": user.get_full_name_or_username(),
        "role": user.role,
    }


def accommodation_json(accommodation):
    return {
        "id": accommodation.pk,
        "type": accommodation.type,
        "ward": accommodation.ward.name if accommodation.ward_id else None,
        "number": accommodation.number,
        "status": accommodation.status,
        "price_per_day": accommodation.price_per_day,
        "patient": user_json(accommodation.patient),
        "doctor": user_json(accommodation.doctor),
        "occupied_since": accommodation.occupied_since,
    }


def admission_json(admission):
    return {
        "id": admission.pk,
        "patient": user_json(admission.patient),
        "doctor": user_json(admission.doctor),
        "accommodation_id": admission.accommodation_id,
        "accommodation": str(admission.accommodation) if admission.accommodation_id else None,
        "admission_date": admission.admission_date,
        "discharge_date": admission.discharge_date,
        "notes": admission.notes,
        "discharge_stage": discharge_service.discharge_stage(admission),
    }


def clearance_json(clearance):
    return {
        "id": clearance.pk,
        "admission_id": clearance.admission_id,
        "patient": user_json(clearance.admission.patient),
        "step": clearance.clearance_step,
        "is_cleared": clearance.is_cleared,
        "cleared_by": user_json(clearance.cleared_by),
        "cleared_at": clearance.cleared_at,
        "notes": clearance.notes,
        "created_at": clearance.created_at,
    }


def invoice_json(invoice):
    return {
        "id": invoice.pk,
        "patient": user_json(invoice.patient),
        "admission_id": invoice.admission_id,
        "description": invoice.description,
        "amount": invoice.amount,
        "status": invoice.status,
        "payment_mode": invoice.payment_mode,
        "created_at": invoice.created_at,
        "paid_at": invoice.paid_at,
    }


def lab_order_json(order):
    return {
        "id": order.pk,
        "patient": user_json(order.patient),
        "doctor": user_json(order.doctor),
        "staff": user_json(order.staff),
        "admission_id": order.admission_id,
        "test_name": order.test_name,
        "test_date": order.test_date,
        "cost": order.cost,
        "status": order.status,
        "result": order.result,
        "created_at": order.created_at,
    }


# =======================================================
# AUTH
# =======================================================

def login_view(request):
    if request.method != "POST":
        return api_response(False, f"Method {request.method} not allowed.", status=405)
    try:
        payload = read_payload(request)
    except ValidationError as exc:
        return api_response(False, " ".join(exc.messages), status=400)

    form = AuthenticationForm(request, data=payload)
    if not form.is_valid():
        return api_response(False, "Invalid username or password.", status=400)

    user = form.get_user()
    login(request, user)
    log_action(user, "login", details=f"{user.get_role_display()} logged in.")
    return api_response(True, "Login successful.", user_json(user))


@api_view(methods=("POST",))
def logout_view(request):
    logout(request)
    return api_response(True, "You have been logged out.")


# =======================================================
# STAFF ACTIONS
# =======================================================

class StaffAction(TextChoices):
    ADD_ACCOMMODATION = "add_accommodation", "Add bed or room"
    UPDATE_ACCOMMODATION = "update_accommodation", "Update bed or room"
    BULK_UPDATE_STATUS = "bulk_update_status", "Bulk status change"
    PROCESS_CLEARANCE = "process_clearance", "Process discharge clearance"
    GENERATE_INVOICE = "generate_invoice", "Generate admission invoice"
    PROCESS_PAYMENT = "process_payment", "Record payment"
    DISPENSE_PRESCRIPTION = "dispense_prescription", "Dispense prescription"
    ADD_LAB_ORDER = "add_lab_order", "Add lab order"
    UPDATE_LAB_ORDER = "update_lab_order", "Update lab order"
    REMOVE_LAB_ORDER = "remove_lab_order", "Remove lab order"


def add_accommodation(request, payload):
    form = AddAccommodationForm.parse(payload)
    accommodation = accommodation_service.add_accommodation(request.user, **form.cleaned_data)
    return f"{accommodation.get_type_display()} added successfully.", accommodation_json(accommodation)


def update_accommodation(request, payload):
    form = UpdateAccommodationForm.parse(payload)
    accommodation = accommodation_service.update_accommodation(
        request.user, form.cleaned_data["id"], **form.service_kwargs()
    )
    return f"{accommodation.get_type_display()} updated successfully.", accommodation_json(accommodation)


def bulk_update_status(request, payload):
    form = BulkStatusForm.parse(payload)
    status = form.cleaned_data["status"]
    updated = accommodation_service.bulk_update_status(request.user, form.cleaned_data["ids"], status)
    return f"{updated} accommodations updated to '{status}'.", {"updated": updated}


def process_clearance(request, payload):
    form = ProcessClearanceForm.parse(payload)
    clearance = discharge_service.process_clearance(
        request.user, form.cleaned_data["discharge_id"], form.cleaned_data["notes"]
    )
    admission = Admission.objects.select_related("patient", "doctor", "accommodation").get(pk=clearance.admission_id)
    if admission.discharge_date is not None:
        message = "All clearances complete. The patient has been discharged."
    else:
        message = "Clearance processed successfully."
    return message, {"clearance": clearance_json(clearance), "admission": admission_json(admission)}


def generate_invoice(request, payload):
    form = GenerateInvoiceForm.parse(payload)
    invoice = billing_service.generate_invoice(request.user, form.cleaned_data["admission_id"])
    return f"Invoice #{invoice.pk} generated successfully.", invoice_json(invoice)


def process_payment(request, payload):
    form = ProcessPaymentForm.parse(payload)
    invoice = billing_service.process_payment(
        request.user, form.cleaned_data["invoice_id"], form.cleaned_data["payment_mode"]
    )
    return "Payment processed successfully.", invoice_json(invoice)


def dispense_prescription(request, payload):
    form = DispenseForm.parse(payload)
    bill = pharmacy_service.dispense_prescription(
        request.user,
        form.cleaned_data["prescription_id"],
        form.cleaned_data["items"],
        payment_mode=form.cleaned_data["payment_mode"] or None,
    )
    data = {
        "bill_id": bill.pk,
        "prescription_id": bill.prescription_id,
        "total_amount": bill.total_amount,
        "invoice": invoice_json(bill.invoice) if bill.invoice_id else None,
    }
    return f"Pharmacy bill #{bill.pk} created successfully.", data


def add_lab_order(request, payload):
    form = LabOrderForm.parse(payload)
    order = lab_service.add_lab_order(request.user, **form.service_kwargs())
    return "Lab order added successfully.", lab_order_json(order)


def update_lab_order(request, payload):
    form = UpdateLabOrderForm.parse(payload)
    order = lab_service.update_lab_order(request.user, form.cleaned_data["id"], **form.service_kwargs())
    return "Lab order updated successfully.", lab_order_json(order)


def remove_lab_order(request, payload):
    form = RemoveLabOrderForm.parse(payload)
    order_id = lab_service.remove_lab_order(request.user, form.cleaned_data["id"])
    return "Lab order removed successfully.", {"id": order_id}


STAFF_ACTIONS = {
    StaffAction.ADD_ACCOMMODATION.value: add_accommodation,
    StaffAction.UPDATE_ACCOMMODATION.value: update_accommodation,
    StaffAction.BULK_UPDATE_STATUS.value: bulk_update_status,
    StaffAction.PROCESS_CLEARANCE.value: process_clearance,
    StaffAction.GENERATE_INVOICE.value: generate_invoice,
    StaffAction.PROCESS_PAYMENT.value: process_payment,
    StaffAction.DISPENSE_PRESCRIPTION.value: dispense_prescription,
    StaffAction.ADD_LAB_ORDER.value: add_lab_order,
    StaffAction.UPDATE_LAB_ORDER.value: update_lab_order,
    StaffAction.REMOVE_LAB_ORDER.value: remove_lab_order,
}


@api_view("staff", "admin", methods=("POST",))
def staff_action(request):
    payload = read_payload(request)
    action = payload.get("action")
    handler = STAFF_ACTIONS.get(action)
    if handler is None:
        raise ValidationError(f"Invalid action '{action}'. Choose one of: {', '.join(StaffAction.values)}.")
    message, data = handler(request, payload)
    return api_response(True, message, data)


# =======================================================
# STAFF LISTINGS
# =======================================================

@api_view("staff", "admin", "doctor")
def bed_management(request):
    queryset = Accommodation.objects.select_related("ward", "patient", "doctor")
    type_filter = request.GET.get("type")
    status_filter = request.GET.get("status")
    if type_filter:
        queryset = queryset.filter(type=type_filter)
    if status_filter:
        queryset = queryset.filter(status=status_filter)

    return api_response(
        True,
        data={
            "summary": accommodation_service.occupancy_summary(),
            "accommodations": [accommodation_json(a) for a in queryset],
        },
    )


@api_view("staff", "admin")
def staff_admissions(request):
    state = request.GET.get("state", "open")
    queryset = Admission.objects.select_related("patient", "doctor", "accommodation__ward").prefetch_related(
        "clearances"
    )
    if state == "open":
        queryset = queryset.filter(discharge_date__isnull=True)
    elif state == "discharged":
        queryset = queryset.filter(discharge_date__isnull=False)
    elif state != "all":
        raise ValidationError("State must be one of: open, discharged, all.")
    return api_response(True, data=[admission_json(a) for a in queryset])


@api_view("staff", "admin")
def discharge_requests(request):
    step = request.GET.get("step") or None
    if step is not None and step not in discharge_service.CLEARANCE_ORDER:
        raise ValidationError(f"Unknown clearance step '{step}'.")
    queryset = discharge_service.discharge_queue(step=step, search=request.GET.get("search", "").strip())
    return api_response(True, data=[clearance_json(c) for c in queryset])


@api_view("staff", "admin")
def staff_lab_orders(request):
    queryset = LabOrder.objects.select_related("patient", "doctor", "staff")
    status = request.GET.get("status")
    if status:
        if status not in dict(LabOrder.STATUS_CHOICES):
            raise ValidationError(f"Unknown lab order status '{status}'.")
        queryset = queryset.filter(status=status)
    patient_id = request.GET.get("patient")
    if patient_id:
        if not patient_id.isdigit():
            raise ValidationError("Patient must be a numeric ID.")
        queryset = queryset.filter(patient_id=patient_id)
    return api_response(True, data=[lab_order_json(o) for o in queryset])


class InvoicePdfView(RoleRequiredMixin, View):
    allowed_roles = ["admin", "staff", "user"]

    def get(self, request, invoice_id):
        invoice = get_object_or_404(Invoice.objects.select_related("patient", "admission"), pk=invoice_id)
        if request.user.is_patient() and invoice.patient_id != request.user.pk:
            raise PermissionDenied("You can only download your own invoices.")

        try:
            pdf = billing_service.render_invoice_pdf(invoice)
        except billing_service.InvoiceRenderError:
            logger.exception("Invoice %s could not be rendered", invoice.pk)
            return HttpResponse("PDF generation error", status=500)

        response = HttpResponse(pdf, content_type="application/pdf")
        response["Content-Disposition"] = f'attachment; filename="invoice-{invoice.pk}.pdf"'
        return response


# =======================================================
# DOCTOR
# =======================================================

@api_view("doctor", methods=("POST",))
def doctor_admit(request):
    form = AdmitPatientForm.parse(read_payload(request))
    admission = accommodation_service.admit_patient(
        request.user,
        patient=form.cleaned_data["patient"],
        accommodation_id=form.cleaned_data["accommodation_id"],
        notes=form.cleaned_data["notes"],
    )
    return api_response(True, "Patient admitted successfully.", admission_json(admission), status=201)


@api_view("doctor", methods=("POST",))
def doctor_discharge(request):
    form = InitiateDischargeForm.parse(read_payload(request))
    admission = Admission.objects.filter(pk=form.cleaned_data["admission_id"]).first()
    if admission is None:
        raise ValidationError("Admission record not found.")
    if admission.doctor_id != request.user.pk:
        raise PermissionDenied("You can only discharge your own patients.")

    discharge_service.initiate_discharge(request.user, admission.pk)
    return api_response(
        True,
        "Discharge initiated. Awaiting nursing, pharmacy and billing clearance.",
        admission_json(admission),
    )


@api_view("doctor", methods=("POST",))
def doctor_prescriptions(request):
    form = PrescriptionForm.parse(read_payload(request))
    prescription = pharmacy_service.issue_prescription(
        request.user,
        patient=form.cleaned_data["patient"],
        items=form.cleaned_data["items"],
        notes=form.cleaned_data["notes"],
    )
    data = {
        "id": prescription.pk,
        "patient": user_json(prescription.patient),
        "admission_id": prescription.admission_id,
        "items": [
            {
                "medicine_id": item.medicine_id,
                "medicine": item.medicine.name,
                "quantity": item.quantity_prescribed,
                "dosage": item.dosage,
                "frequency": item.frequency,
            }
            for item in prescription.items.select_related("medicine")
        ],
    }
    return api_response(True, "Prescription issued successfully.", data, status=201)


@api_view("doctor")
def doctor_admissions(request):
    queryset = (
        Admission.objects.filter(doctor=request.user, discharge_date__isnull=True)
        .select_related("patient", "doctor", "accommodation__ward")
        .prefetch_related("clearances")
    )
    return api_response(True, data=[admission_json(a) for a in queryset])


@api_view("doctor", methods=("GET", "POST"))
def doctor_lab_orders(request):
    if request.method == "POST":
        form = DoctorLabOrderForm.parse(read_payload(request))
        order = lab_service.add_lab_order(request.user, doctor=request.user, **form.cleaned_data)
        return api_response(True, "Lab test ordered successfully.", lab_order_json(order), status=201)

    queryset = LabOrder.objects.filter(doctor=request.user).select_related("patient", "doctor", "staff")
    return api_response(True, data=[lab_order_json(o) for o in queryset])
