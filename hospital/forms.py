from django import forms
from django.contrib.auth import get_user_model
from django.core.exceptions import NON_FIELD_ERRORS, ValidationError

from .models import Accommodation, AccommodationStatus, Invoice, LabOrder, Ward

User = get_user_model()


def patient_queryset():
    return User.objects.filter(role="user", is_active=True)


def doctor_queryset():
    return User.objects.filter(role="doctor", is_active=True)


# ----------------- FIELDS -----------------
class IdListField(forms.Field):
    default_error_messages = {"invalid": "Enter a list of numeric IDs."}

    def to_python(self, value):
        if value in self.empty_values:
            return []
        if isinstance(value, (str, int)):
            value = [value]
        try:
            return [int(v) for v in value]
        except (TypeError, ValueError):
            raise ValidationError(self.error_messages["invalid"], code="invalid")


class ItemListField(forms.Field):
    """A JSON list of objects, e.g. ``[{"medicine_id": 3, "quantity": 10}]``."""

    default_error_messages = {"invalid": "Items must be a list of objects."}

    def to_python(self, value):
        if value in self.empty_values:
            return []
        if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
            raise ValidationError(self.error_messages["invalid"], code="invalid")
        return value


# ----------------- BASE -----------------
class PayloadForm(forms.Form):
    """Validates one JSON request body; errors become a single ValidationError."""

    @classmethod
    def parse(cls, data, **kwargs):
        form = cls(data, **kwargs)
        if not form.is_valid():
            raise ValidationError(form.error_summary())
        return form

    def error_summary(self):
        summary = []
        for name, errors in self.errors.items():
            if name == NON_FIELD_ERRORS:
                summary.extend(errors)
                continue
            label = self.fields[name].label or name.replace("_", " ").capitalize()
            summary.extend(f"{label}: {error}" for error in errors)
        return summary

    def supplied(self, name):
        return name in self.data


# ----------------- ACCOMMODATION -----------------
class AddAccommodationForm(PayloadForm):
    type = forms.ChoiceField(choices=Accommodation.TYPE_CHOICES)
    number = forms.CharField(max_length=20)
    price_per_day = forms.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    ward = forms.ModelChoiceField(
        queryset=Ward.objects.filter(is_active=True),
        required=False,
        error_messages={"invalid_choice": "Ward not found."},
    )


class UpdateAccommodationForm(PayloadForm):
    id = forms.IntegerField(label="Accommodation ID")
    number = forms.CharField(max_length=20, required=False)
    price_per_day = forms.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    status = forms.ChoiceField(choices=AccommodationStatus.choices, required=False)
    patient = forms.ModelChoiceField(
        queryset=patient_queryset(),
        required=False,
        error_messages={"invalid_choice": "Patient not found."},
    )
    doctor = forms.ModelChoiceField(
        queryset=doctor_queryset(),
        required=False,
        error_messages={"invalid_choice": "Doctor not found."},
    )

    def service_kwargs(self):
        """Only the fields present in the request; ``"patient": null`` clears the occupant."""
        kwargs = {}
        for name in ("number", "price_per_day", "status", "patient"):
            if self.supplied(name):
                kwargs[name] = self.cleaned_data[name]
        if kwargs.get("status") == "":
            kwargs["status"] = None
        if self.supplied("doctor"):
            kwargs["doctor"] = self.cleaned_data["doctor"]
        return kwargs


class BulkStatusForm(PayloadForm):
    ids = IdListField(label="IDs")
    status = forms.ChoiceField(choices=AccommodationStatus.choices)


class AdmitPatientForm(PayloadForm):
    patient = forms.ModelChoiceField(
        queryset=patient_queryset(),
        error_messages={"invalid_choice": "Patient not found."},
    )
    accommodation_id = forms.IntegerField(label="Bed")
    notes = forms.CharField(required=False)


# ----------------- DISCHARGE -----------------
class InitiateDischargeForm(PayloadForm):
    admission_id = forms.IntegerField(label="Admission ID")


class ProcessClearanceForm(PayloadForm):
    discharge_id = forms.IntegerField(label="Discharge ID")
    notes = forms.CharField()


# ----------------- BILLING -----------------
class GenerateInvoiceForm(PayloadForm):
    admission_id = forms.IntegerField(label="Admission ID")


class ProcessPaymentForm(PayloadForm):
    invoice_id = forms.IntegerField(label="Invoice ID")
    payment_mode = forms.ChoiceField(choices=Invoice.PAYMENT_MODES)


# ----------------- PHARMACY -----------------
class PrescriptionForm(PayloadForm):
    patient = forms.ModelChoiceField(
        queryset=patient_queryset(),
        error_messages={"invalid_choice": "Patient not found."},
    )
    items = ItemListField()
    notes = forms.CharField(required=False)


class DispenseForm(PayloadForm):
    prescription_id = forms.IntegerField(label="Prescription ID")
    items = ItemListField()
    payment_mode = forms.ChoiceField(choices=Invoice.PAYMENT_MODES, required=False)


# ----------------- LAB -----------------
LAB_STATUS_CHOICES = [("", "---------")] + LabOrder.STATUS_CHOICES


class LabOrderForm(PayloadForm):
    patient = forms.ModelChoiceField(
        queryset=patient_queryset(),
        error_messages={"invalid_choice": "Patient not found."},
    )
    test_name = forms.CharField(max_length=200)
    test_date = forms.DateField(
        required=False,
        input_formats=["%Y-%m-%d"],
        error_messages={"invalid": "Invalid test date format."},
    )
    # Negative costs are rejected by the lab service.
    cost = forms.DecimalField(max_digits=10, decimal_places=2, required=False)
    status = forms.ChoiceField(choices=LAB_STATUS_CHOICES, required=False)
    doctor = forms.ModelChoiceField(
        queryset=doctor_queryset(),
        required=False,
        error_messages={"invalid_choice": "Doctor not found."},
    )
    result = forms.CharField(required=False)

    def service_kwargs(self):
        kwargs = dict(self.cleaned_data)
        kwargs["status"] = kwargs["status"] or "ordered"
        return kwargs


class UpdateLabOrderForm(PayloadForm):
    id = forms.IntegerField(label="Lab order ID")
    test_name = forms.CharField(max_length=200, required=False)
    test_date = forms.DateField(
        required=False,
        input_formats=["%Y-%m-%d"],
        error_messages={"invalid": "Invalid test date format."},
    )
    cost = forms.DecimalField(max_digits=10, decimal_places=2, required=False)
    status = forms.ChoiceField(choices=LAB_STATUS_CHOICES, required=False)
    doctor = forms.ModelChoiceField(
        queryset=doctor_queryset(),
        required=False,
        error_messages={"invalid_choice": "Doctor not found."},
    )
    result = forms.CharField(required=False)

    def service_kwargs(self):
        """Only the fields present in the request; an empty status is ignored."""
        kwargs = {}
        for name in ("test_name", "test_date", "cost", "status", "doctor", "result"):
            if self.supplied(name):
                kwargs[name] = self.cleaned_data[name]
        if kwargs.get("status") == "":
            del kwargs["status"]
        return kwargs


class RemoveLabOrderForm(PayloadForm):
    id = forms.IntegerField(label="Lab order ID")


class DoctorLabOrderForm(PayloadForm):
    patient = forms.ModelChoiceField(
        queryset=patient_queryset(),
        error_messages={"invalid_choice": "Patient not found."},
    )
    test_name = forms.CharField(max_length=200)
    test_date = forms.DateField(
        required=False,
        input_formats=["%Y-%m-%d"],
        error_messages={"invalid": "Invalid test date format."},
    )
