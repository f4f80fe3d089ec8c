from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import TestCase
from django.utils import timezone

from hospital.models import ActivityLog, Admission, Invoice, PharmacyBill
from hospital.services.billing import admission_charges
from hospital.services.pharmacy import dispense_prescription, issue_prescription

from .helpers import make_bed, make_medicine, make_user


class IssuePrescriptionTest(TestCase):
    def setUp(self):
        self.doctor = make_user("drbrown", role="doctor")
        self.patient = make_user("p1")
        self.medicine = make_medicine()

    def test_outpatient_prescription(self):
        prescription = issue_prescription(
            self.doctor,
            patient=self.patient,
            items=[{"medicine_id": self.medicine.pk, "quantity": 10, "dosage": "500mg", "frequency": "TID"}],
            notes="After meals",
        )

        self.assertEqual(prescription.doctor, self.doctor)
        self.assertIsNone(prescription.admission)
        self.assertEqual(prescription.status, "pending")
        item = prescription.items.get()
        self.assertEqual(item.quantity_prescribed, 10)
        self.assertEqual(item.frequency, "TID")
        self.assertTrue(ActivityLog.objects.filter(action="issue_prescription").exists())

    def test_open_admission_is_attached(self):
        admission = Admission.objects.create(patient=self.patient, doctor=self.doctor, accommodation=make_bed())
        prescription = issue_prescription(
            self.doctor, patient=self.patient, items=[{"medicine_id": self.medicine.pk, "quantity": 1}]
        )
        self.assertEqual(prescription.admission, admission)

    def test_requires_items(self):
        with self.assertRaisesMessage(ValidationError, "at least one medication"):
            issue_prescription(self.doctor, patient=self.patient, items=[])

    def test_rejects_bad_items(self):
        with self.assertRaisesMessage(ValidationError, "greater than zero"):
            issue_prescription(self.doctor, patient=self.patient, items=[{"medicine_id": self.medicine.pk, "quantity": 0}])
        with self.assertRaisesMessage(ValidationError, "whole number"):
            issue_prescription(self.doctor, patient=self.patient, items=[{"medicine_id": self.medicine.pk, "quantity": "x"}])
        with self.assertRaisesMessage(ValidationError, "Medicine 999999 not found."):
            issue_prescription(self.doctor, patient=self.patient, items=[{"medicine_id": 999999, "quantity": 1}])

    def test_only_patients_get_prescriptions(self):
        with self.assertRaises(ValidationError):
            issue_prescription(
                self.doctor, patient=self.doctor, items=[{"medicine_id": self.medicine.pk, "quantity": 1}]
            )


class DispensePrescriptionTest(TestCase):
    def setUp(self):
        self.doctor = make_user("drbrown", role="doctor")
        self.pharmacist = make_user("pharm", role="staff")
        self.patient = make_user("p1")
        self.paracetamol = make_medicine("Paracetamol 500mg", quantity=20, unit_price="2.50")
        self.amoxicillin = make_medicine("Amoxicillin 250mg", quantity=5, unit_price="8.00")
        self.prescription = issue_prescription(
            self.doctor,
            patient=self.patient,
            items=[
                {"medicine_id": self.paracetamol.pk, "quantity": 10},
                {"medicine_id": self.amoxicillin.pk, "quantity": 4},
            ],
        )

    def dispense(self, items, payment_mode="cash"):
        return dispense_prescription(self.pharmacist, self.prescription.pk, items, payment_mode)

    def test_outpatient_dispense_decrements_stock_and_bills(self):
        bill = self.dispense(
            [
                {"medicine_id": self.paracetamol.pk, "quantity": 10},
                {"medicine_id": self.amoxicillin.pk, "quantity": 4},
            ]
        )

        self.paracetamol.refresh_from_db()
        self.amoxicillin.refresh_from_db()
        self.prescription.refresh_from_db()
        self.assertEqual(self.paracetamol.quantity, 10)
        self.assertEqual(self.amoxicillin.quantity, 1)
        self.assertEqual(bill.total_amount, Decimal("57.00"))
        self.assertEqual(bill.invoice.status, "paid")
        self.assertEqual(bill.invoice.payment_mode, "cash")
        self.assertEqual(bill.invoice.amount, Decimal("57.00"))
        self.assertEqual(self.prescription.status, "dispensed")
        self.assertTrue(ActivityLog.objects.filter(action="create_pharmacy_bill").exists())

    def test_partial_dispense(self):
        self.dispense([{"medicine_id": self.paracetamol.pk, "quantity": 6}])
        self.prescription.refresh_from_db()
        self.assertEqual(self.prescription.status, "partial")
        self.assertEqual(self.prescription.items.get(medicine=self.paracetamol).quantity_dispensed, 6)

    def test_insufficient_stock_rolls_back_everything(self):
        with self.assertRaisesMessage(ValidationError, "Insufficient stock for Amoxicillin 250mg"):
            self.dispense(
                [
                    {"medicine_id": self.paracetamol.pk, "quantity": 10},
                    {"medicine_id": self.amoxicillin.pk, "quantity": 6},
                ]
            )

        self.paracetamol.refresh_from_db()
        self.assertEqual(self.paracetamol.quantity, 20)
        self.assertEqual(self.prescription.items.get(medicine=self.paracetamol).quantity_dispensed, 0)
        self.assertFalse(PharmacyBill.objects.exists())
        self.assertFalse(Invoice.objects.exists())

    def test_cannot_dispense_more_than_prescribed(self):
        with self.assertRaisesMessage(ValidationError, "only 4 remaining"):
            self.dispense([{"medicine_id": self.amoxicillin.pk, "quantity": 5}])

    def test_medicine_not_on_prescription(self):
        other = make_medicine("Ibuprofen 400mg")
        with self.assertRaisesMessage(ValidationError, "is not on this prescription"):
            self.dispense([{"medicine_id": other.pk, "quantity": 1}])

    def test_remainder_of_a_partial_prescription_can_be_dispensed(self):
        first = self.dispense([{"medicine_id": self.paracetamol.pk, "quantity": 6}])
        second = self.dispense(
            [
                {"medicine_id": self.paracetamol.pk, "quantity": 4},
                {"medicine_id": self.amoxicillin.pk, "quantity": 4},
            ]
        )

        self.prescription.refresh_from_db()
        self.assertEqual(self.prescription.status, "dispensed")
        self.assertEqual(first.total_amount, Decimal("15.00"))
        self.assertEqual(second.total_amount, Decimal("42.00"))
        self.assertEqual(self.prescription.pharmacy_bills.count(), 2)
        self.assertEqual(
            [(item.medicine_id, item.quantity) for item in second.items.order_by("id")],
            [(self.paracetamol.pk, 4), (self.amoxicillin.pk, 4)],
        )
        self.paracetamol.refresh_from_db()
        self.assertEqual(self.paracetamol.quantity, 10)

    def test_fully_dispensed_prescription_is_rejected(self):
        self.dispense(
            [
                {"medicine_id": self.paracetamol.pk, "quantity": 10},
                {"medicine_id": self.amoxicillin.pk, "quantity": 4},
            ]
        )
        with self.assertRaisesMessage(ValidationError, "already been fully dispensed"):
            self.dispense([{"medicine_id": self.paracetamol.pk, "quantity": 1}])
        self.assertEqual(PharmacyBill.objects.count(), 1)

    def test_bill_lines_keep_the_price_charged(self):
        bill = self.dispense([{"medicine_id": self.amoxicillin.pk, "quantity": 2}])
        self.amoxicillin.unit_price = Decimal("9.50")
        self.amoxicillin.save()

        item = bill.items.get()
        self.assertEqual(item.unit_price, Decimal("8.00"))
        self.assertEqual(item.amount, Decimal("16.00"))

    def test_zero_total_is_rejected(self):
        with self.assertRaisesMessage(ValidationError, "zero total amount"):
            self.dispense([{"medicine_id": self.paracetamol.pk, "quantity": 0}])

    def test_outpatient_needs_payment_mode(self):
        with self.assertRaisesMessage(ValidationError, "Payment mode is required"):
            self.dispense([{"medicine_id": self.paracetamol.pk, "quantity": 1}], payment_mode=None)

    def test_cancelled_prescription(self):
        self.prescription.status = "cancelled"
        self.prescription.save()
        with self.assertRaisesMessage(ValidationError, "has been cancelled"):
            self.dispense([{"medicine_id": self.paracetamol.pk, "quantity": 1}])


class InpatientDispenseTest(TestCase):
    def test_cost_is_left_on_the_admission(self):
        doctor = make_user("drbrown", role="doctor")
        pharmacist = make_user("pharm", role="staff")
        patient = make_user("p1")
        medicine = make_medicine(quantity=10, unit_price="3.00")
        Admission.objects.create(patient=patient, doctor=doctor, accommodation=make_bed(), admission_date=timezone.now())
        prescription = issue_prescription(doctor, patient=patient, items=[{"medicine_id": medicine.pk, "quantity": 2}])

        bill = dispense_prescription(pharmacist, prescription.pk, [{"medicine_id": medicine.pk, "quantity": 2}])

        self.assertIsNone(bill.invoice)
        self.assertEqual(bill.total_amount, Decimal("6.00"))
        self.assertFalse(Invoice.objects.exists())

    def test_instalments_are_all_charged_to_the_stay(self):
        doctor = make_user("drbrown", role="doctor")
        pharmacist = make_user("pharm", role="staff")
        patient = make_user("p1")
        medicine = make_medicine(quantity=10, unit_price="3.00")
        admission = Admission.objects.create(
            patient=patient, doctor=doctor, accommodation=make_bed(price="0.00"), admission_date=timezone.now()
        )
        prescription = issue_prescription(doctor, patient=patient, items=[{"medicine_id": medicine.pk, "quantity": 5}])

        dispense_prescription(pharmacist, prescription.pk, [{"medicine_id": medicine.pk, "quantity": 2}])
        dispense_prescription(pharmacist, prescription.pk, [{"medicine_id": medicine.pk, "quantity": 3}])

        self.assertEqual(admission_charges(admission)["medicines"], Decimal("15.00"))
