from django.db import models
from django.db.models import Q
from django.contrib.auth.models import AbstractUser
from django.conf import settings
from django.utils import timezone


# ==============================
# USERS & DISPLAY IDS
# ==============================

class CustomUser(AbstractUser):
    USER_ROLE_CHOICES = [
        ('admin', 'Admin'),
        ('doctor', 'Doctor'),
        ('staff', 'Staff'),
        ('user', 'Patient'),
    ]

    role = models.CharField(max_length=10, choices=USER_ROLE_CHOICES, default='user')
    display_user_id = models.CharField(max_length=5, unique=True, null=True, blank=True, editable=False)
    name = models.CharField(max_length=150, blank=True)
    phone = models.CharField(max_length=20, blank=True)

    def __str__(self):
        return f"{self.get_full_name_or_username()} ({self.display_user_id or self.get_role_display()})"

    def get_full_name_or_username(self):
        return self.name or self.get_full_name() or self.username

    def is_admin(self):
        return self.role == "admin"

    def is_doctor(self):
        return self.role == "doctor"

    def is_hospital_staff(self):
        return self.role == "staff"

    def is_patient(self):
        return self.role == "user"


class RoleCounter(models.Model):
    """Last issued sequence number for one display-ID prefix."""

    role_prefix = models.CharField(max_length=1, primary_key=True)
    last_id = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.role_prefix}: {self.last_id}"


# ==============================
# WARDS & ACCOMMODATIONS
# ==============================

class Ward(models.Model):
    name = models.CharField(max_length=100, unique=True)
    capacity = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class AccommodationStatus(models.TextChoices):
    AVAILABLE = 'available', 'Available'
    OCCUPIED = 'occupied', 'Occupied'
    CLEANING = 'cleaning', 'Cleaning'
    RESERVED = 'reserved', 'Reserved'


# Statuses staff may set on an accommodation with no patient in it.
UNOCCUPIED_STATUSES = (
    AccommodationStatus.AVAILABLE,
    AccommodationStatus.CLEANING,
    AccommodationStatus.RESERVED,
)


class Accommodation(models.Model):
    TYPE_CHOICES = [('bed', 'Bed'), ('room', 'Private Room')]

    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    ward = models.ForeignKey(Ward, null=True, blank=True, related_name='accommodations', on_delete=models.PROTECT)
    number = models.CharField(max_length=20)
    status = models.CharField(max_length=20, choices=AccommodationStatus.choices, default=AccommodationStatus.AVAILABLE)
    price_per_day = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    patient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name='occupied_accommodations',
        on_delete=models.SET_NULL,
        limit_choices_to={'role': 'user'},
    )
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name='attended_accommodations',
        on_delete=models.SET_NULL,
        limit_choices_to={'role': 'doctor'},
    )
    occupied_since = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['type', 'ward__name', 'number']

    def __str__(self):
        if self.type == 'room':
            return f"Room {self.number}"
        return f"{self.ward} - Bed {self.number}"

    @property
    def is_occupied(self):
        return self.patient_id is not None


# ==============================
# ADMISSIONS & DISCHARGE
# ==============================

class Admission(models.Model):
    patient = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='admissions', on_delete=models.CASCADE)
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name='doctor_admissions',
        on_delete=models.SET_NULL,
    )
    accommodation = models.ForeignKey(
        Accommodation, null=True, blank=True, related_name='admissions', on_delete=models.SET_NULL
    )
    admission_date = models.DateTimeField(default=timezone.now)
    discharge_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['-admission_date']
        constraints = [
            models.UniqueConstraint(
                fields=['accommodation'],
                condition=Q(discharge_date__isnull=True),
                name='one_open_admission_per_accommodation',
            ),
        ]

    def __str__(self):
        return f"Admission #{self.pk} - {self.patient}"

    @property
    def is_open(self):
        return self.discharge_date is None


class ClearanceStep(models.TextChoices):
    # Declaration order is the order clearances must be signed off in.
    NURSING = 'nursing', 'Nursing'
    PHARMACY = 'pharmacy', 'Pharmacy'
    BILLING = 'billing', 'Billing'


class DischargeClearance(models.Model):
    admission = models.ForeignKey(Admission, related_name='clearances', on_delete=models.CASCADE)
    clearance_step = models.CharField(max_length=10, choices=ClearanceStep.choices)
    is_cleared = models.BooleanField(default=False)
    cleared_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name='clearances_signed',
        on_delete=models.SET_NULL,
    )
    cleared_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-id']
        unique_together = ('admission', 'clearance_step')

    def __str__(self):
        state = "cleared" if self.is_cleared else "pending"
        return f"{self.get_clearance_step_display()} clearance for admission #{self.admission_id} ({state})"


# ==============================
# PHARMACY & LAB
# ==============================

class Medicine(models.Model):
    name = models.CharField(max_length=255, unique=True)
    description = models.TextField(blank=True)
    quantity = models.PositiveIntegerField(default=0)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    def __str__(self):
        return self.name


class Prescription(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('partial', 'Partially Dispensed'),
        ('dispensed', 'Dispensed'),
        ('cancelled', 'Cancelled'),
    ]

    patient = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='prescriptions', on_delete=models.CASCADE)
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        related_name='prescriptions_made',
        on_delete=models.SET_NULL,
        limit_choices_to={'role': 'doctor'},
    )
    admission = models.ForeignKey(
        Admission, null=True, blank=True, related_name='prescriptions', on_delete=models.SET_NULL
    )
    prescription_date = models.DateTimeField(auto_now_add=True)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')

    def __str__(self):
        return f"Rx #{self.pk} for {self.patient}"


class PrescriptionItem(models.Model):
    prescription = models.ForeignKey(Prescription, related_name='items', on_delete=models.CASCADE)
    medicine = models.ForeignKey(Medicine, on_delete=models.PROTECT)
    dosage = models.CharField(max_length=100, blank=True)
    frequency = models.CharField(max_length=100, blank=True)
    quantity_prescribed = models.PositiveIntegerField()
    quantity_dispensed = models.PositiveIntegerField(default=0)

    class Meta:
        unique_together = ('prescription', 'medicine')

    @property
    def quantity_remaining(self):
        return self.quantity_prescribed - self.quantity_dispensed


class LabOrder(models.Model):
    STATUS_CHOICES = [
        ('ordered', 'Ordered'),
        ('processing', 'Processing'),
        ('completed', 'Completed'),
    ]

    patient = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='lab_orders', on_delete=models.CASCADE)
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, related_name='lab_orders_requested', on_delete=models.SET_NULL
    )
    # Last staff member to handle the order.
    staff = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, related_name='lab_orders_handled', on_delete=models.SET_NULL
    )
    admission = models.ForeignKey(Admission, null=True, blank=True, related_name='lab_orders', on_delete=models.SET_NULL)
    test_name = models.CharField(max_length=200)
    test_date = models.DateField(null=True, blank=True)
    cost = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='ordered')
    result = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"{self.test_name} - {self.status}"


# ==============================
# INVOICES
# ==============================

class Invoice(models.Model):
    STATUS_CHOICES = [('pending', 'Pending'), ('paid', 'Paid')]
    PAYMENT_MODES = [
        ('cash', 'Cash'),
        ('card', 'Card'),
        ('online', 'Online'),
        ('insurance', 'Insurance'),
    ]

    patient = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='invoices', on_delete=models.CASCADE)
    admission = models.ForeignKey(Admission, null=True, blank=True, related_name='invoices', on_delete=models.SET_NULL)
    description = models.TextField()
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    payment_mode = models.CharField(max_length=20, choices=PAYMENT_MODES, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Invoice #{self.pk} - {self.amount} ({self.status})"


class PharmacyBill(models.Model):
    """One dispensing run; a prescription filled in instalments has several."""

    prescription = models.ForeignKey(Prescription, related_name='pharmacy_bills', on_delete=models.CASCADE)
    # Empty when the medicine is charged to the patient's admission invoice instead.
    invoice = models.OneToOneField(
        Invoice, null=True, blank=True, related_name='pharmacy_bill', on_delete=models.SET_NULL
    )
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, on_delete=models.SET_NULL)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)


class PharmacyBillItem(models.Model):
    bill = models.ForeignKey(PharmacyBill, related_name='items', on_delete=models.CASCADE)
    medicine = models.ForeignKey(Medicine, on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    @property
    def amount(self):
        return self.quantity * self.unit_price


# ==============================
# ACTIVITY LOG
# ==============================

class ActivityLog(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, related_name='activity', on_delete=models.SET_NULL)
    action = models.CharField(max_length=50)
    target_user = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, related_name='activity_targeting', on_delete=models.SET_NULL
    )
    details = models.TextField(blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-timestamp', '-id']

    def __str__(self):
        return f"{self.action} by {self.user_id} at {self.timestamp:%Y-%m-%d %H:%M}"
