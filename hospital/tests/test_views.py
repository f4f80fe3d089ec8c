import json
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase
from django.urls import reverse

from hospital.models import Accommodation, Admission, DischargeClearance, Invoice, LabOrder, Ward
from hospital.services.accommodation import update_accommodation
from hospital.services.discharge import initiate_discharge
from hospital.views import STAFF_ACTIONS, StaffAction

from .helpers import PASSWORD, make_bed, make_medicine, make_user


class ApiTestCase(TestCase):
    def setUp(self):
        self.staff = make_user("nurse", role="staff")
        self.doctor = make_user("drbrown", role="doctor")
        self.patient = make_user("p1", name="Patient One")
        self.bed = make_bed("12")

    def post_json(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")

    def staff_action(self, action, **payload):
        return self.post_json(reverse("staff_action"), {"action": action, **payload})


class AuthTest(ApiTestCase):
    def test_login_and_logout(self):
        response = self.post_json(reverse("login"), {"username": "nurse", "password": PASSWORD})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["display_id"], self.staff.display_user_id)

        response = self.client.get(reverse("bed_management"))
        self.assertEqual(response.status_code, 200)

        response = self.client.post(reverse("logout"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(reverse("bed_management")).status_code, 401)

    def test_bad_credentials(self):
        response = self.post_json(reverse("login"), {"username": "nurse", "password": "wrong"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_anonymous_requests_get_401(self):
        response = self.staff_action(StaffAction.BULK_UPDATE_STATUS, ids=[self.bed.pk], status="cleaning")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.client.get(reverse("invoice_pdf", args=[1])).status_code, 401)

    def test_wrong_role_gets_403(self):
        self.client.force_login(self.patient)
        response = self.staff_action(StaffAction.BULK_UPDATE_STATUS, ids=[self.bed.pk], status="cleaning")
        self.assertEqual(response.status_code, 403)
        self.assertFalse(response.json()["success"])


class StaffActionTest(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.client.force_login(self.staff)

    def test_every_action_has_a_handler(self):
        self.assertEqual(set(STAFF_ACTIONS), set(StaffAction.values))

    def test_unknown_action(self):
        response = self.staff_action("launch_rocket")
        self.assertEqual(response.status_code, 400)
        self.assertIn("Invalid action 'launch_rocket'", response.json()["message"])

    def test_get_is_not_allowed(self):
        self.assertEqual(self.client.get(reverse("staff_action")).status_code, 405)

    def test_malformed_json(self):
        response = self.client.post(reverse("staff_action"), data="{not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)

    def test_add_accommodation(self):
        ward = Ward.objects.get(name="General Ward")
        response = self.staff_action(
            StaffAction.ADD_ACCOMMODATION, type="bed", number="14", price_per_day="1200.00", ward=ward.pk
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["ward"], "General Ward")
        self.assertEqual(body["data"]["status"], "available")

    def test_form_errors_are_reported(self):
        response = self.staff_action(StaffAction.ADD_ACCOMMODATION, type="tent", number="1", price_per_day="10")
        self.assertEqual(response.status_code, 400)
        self.assertIn("Type:", response.json()["message"])

    def test_assign_and_clear_occupant(self):
        response = self.staff_action(
            StaffAction.UPDATE_ACCOMMODATION, id=self.bed.pk, patient=self.patient.pk, doctor=self.doctor.pk
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["status"], "occupied")
        self.assertTrue(Admission.objects.filter(patient=self.patient, discharge_date__isnull=True).exists())

        response = self.staff_action(StaffAction.UPDATE_ACCOMMODATION, id=self.bed.pk, patient=None)
        self.assertEqual(response.status_code, 400)

        response = self.staff_action(StaffAction.UPDATE_ACCOMMODATION, id=self.bed.pk, patient=None, status="cleaning")
        self.assertEqual(response.status_code, 200)
        self.bed.refresh_from_db()
        self.assertEqual(self.bed.status, "cleaning")
        self.assertIsNone(self.bed.patient)

    def test_status_change_on_occupied_bed_is_400(self):
        update_accommodation(self.staff, self.bed.pk, patient=self.patient)
        response = self.staff_action(StaffAction.UPDATE_ACCOMMODATION, id=self.bed.pk, status="available")
        self.assertEqual(response.status_code, 400)
        self.assertIn("Please discharge the patient first.", response.json()["message"])

    def test_bulk_update_status(self):
        other = make_bed("13")
        response = self.staff_action(StaffAction.BULK_UPDATE_STATUS, ids=[self.bed.pk, other.pk], status="reserved")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"], {"updated": 2})

    def test_database_error_is_a_generic_500(self):
        with mock.patch("hospital.services.accommodation.bulk_update_status", side_effect=DatabaseError("boom")):
            with self.assertLogs("hospital.mixins", level="ERROR"):
                response = self.staff_action(StaffAction.BULK_UPDATE_STATUS, ids=[self.bed.pk], status="cleaning")
        self.assertEqual(response.status_code, 500)
        self.assertNotIn("boom", response.json()["message"])

    def test_clearance_workflow(self):
        update_accommodation(self.staff, self.bed.pk, patient=self.patient)
        admission = Admission.objects.get(patient=self.patient)
        initiate_discharge(self.doctor, admission.pk)
        ids = {c.clearance_step: c.pk for c in DischargeClearance.objects.filter(admission=admission)}

        response = self.staff_action(StaffAction.PROCESS_CLEARANCE, discharge_id=ids["pharmacy"], notes="meds returned")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Nursing clearance must be completed before pharmacy clearance.")

        for step in ("nursing", "pharmacy"):
            response = self.staff_action(StaffAction.PROCESS_CLEARANCE, discharge_id=ids[step], notes="ok")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["data"]["admission"]["discharge_stage"], f"{step}_cleared")

        response = self.staff_action(StaffAction.PROCESS_CLEARANCE, discharge_id=ids["billing"], notes="paid")
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["admission"]["discharge_stage"], "finalized")
        self.assertIsNotNone(data["admission"]["discharge_date"])
        self.assertEqual(Accommodation.objects.get(pk=self.bed.pk).status, "cleaning")

    def test_invoice_and_payment(self):
        update_accommodation(self.staff, self.bed.pk, patient=self.patient)
        admission = Admission.objects.get(patient=self.patient)

        response = self.staff_action(StaffAction.GENERATE_INVOICE, admission_id=admission.pk)
        self.assertEqual(response.status_code, 200)
        invoice_id = response.json()["data"]["id"]
        self.assertEqual(response.json()["data"]["amount"], "1000.00")

        response = self.staff_action(StaffAction.PROCESS_PAYMENT, invoice_id=invoice_id, payment_mode="cash")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Invoice.objects.get(pk=invoice_id).status, "paid")

        response = self.staff_action(StaffAction.PROCESS_PAYMENT, invoice_id=invoice_id, payment_mode="cash")
        self.assertEqual(response.status_code, 400)

    def test_dispense_prescription(self):
        medicine = make_medicine(quantity=10, unit_price="4.00")
        self.client.force_login(self.doctor)
        response = self.post_json(
            reverse("doctor_prescriptions"),
            {"patient": self.patient.pk, "items": [{"medicine_id": medicine.pk, "quantity": 3}]},
        )
        self.assertEqual(response.status_code, 201)
        prescription_id = response.json()["data"]["id"]

        self.client.force_login(self.staff)
        response = self.staff_action(
            StaffAction.DISPENSE_PRESCRIPTION,
            prescription_id=prescription_id,
            items=[{"medicine_id": medicine.pk, "quantity": 3}],
            payment_mode="card",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["total_amount"], "12.00")
        self.assertEqual(response.json()["data"]["invoice"]["status"], "paid")

    def test_lab_order_lifecycle(self):
        response = self.staff_action(
            StaffAction.ADD_LAB_ORDER,
            patient=self.patient.pk,
            test_name="Blood glucose",
            cost="120.00",
            test_date="2026-03-01",
            doctor=self.doctor.pk,
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["status"], "ordered")
        self.assertEqual(data["cost"], "120.00")
        self.assertEqual(data["test_date"], "2026-03-01")
        order_id = data["id"]

        response = self.staff_action(
            StaffAction.UPDATE_LAB_ORDER, id=order_id, status="completed", result="98 mg/dL"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["status"], "completed")
        self.assertEqual(response.json()["data"]["cost"], "120.00")

        response = self.client.get(reverse("staff_lab_orders"), {"status": "completed"})
        self.assertEqual([o["id"] for o in response.json()["data"]], [order_id])

        response = self.staff_action(StaffAction.REMOVE_LAB_ORDER, id=order_id)
        self.assertEqual(response.status_code, 200)
        self.assertFalse(LabOrder.objects.exists())

    def test_lab_order_validation(self):
        response = self.staff_action(StaffAction.ADD_LAB_ORDER, patient=self.patient.pk, test_name="CBC", cost="-10")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Cost cannot be negative.")

        response = self.staff_action(
            StaffAction.ADD_LAB_ORDER, patient=self.patient.pk, test_name="CBC", test_date="01/03/2026"
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("Invalid test date format.", response.json()["message"])

        response = self.staff_action(StaffAction.REMOVE_LAB_ORDER, id=999999)
        self.assertEqual(response.status_code, 400)

        self.assertEqual(self.client.get(reverse("staff_lab_orders"), {"status": "lost"}).status_code, 400)


class StaffListingTest(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.client.force_login(self.staff)
        update_accommodation(self.staff, self.bed.pk, patient=self.patient, doctor=self.doctor)
        self.admission = Admission.objects.get(patient=self.patient)

    def test_bed_management(self):
        make_bed("13")
        response = self.client.get(reverse("bed_management"), {"status": "occupied"})
        data = response.json()["data"]
        self.assertEqual(data["summary"]["occupied"], 1)
        self.assertEqual(data["summary"]["available"], 1)
        self.assertEqual([a["number"] for a in data["accommodations"]], ["12"])
        self.assertEqual(data["accommodations"][0]["patient"]["display_id"], self.patient.display_user_id)

    def test_admissions(self):
        response = self.client.get(reverse("staff_admissions"))
        data = response.json()["data"]
        self.assertEqual(len(data), 1)
        self.assertEqual(data[0]["discharge_stage"], "not_initiated")

        self.assertEqual(self.client.get(reverse("staff_admissions"), {"state": "discharged"}).json()["data"], [])
        self.assertEqual(self.client.get(reverse("staff_admissions"), {"state": "bogus"}).status_code, 400)

    def test_discharge_requests(self):
        initiate_discharge(self.doctor, self.admission.pk)

        response = self.client.get(reverse("discharge_requests"), {"step": "nursing"})
        self.assertEqual([row["step"] for row in response.json()["data"]], ["nursing"])
        response = self.client.get(reverse("discharge_requests"), {"step": "billing"})
        self.assertEqual(response.json()["data"], [])
        self.assertEqual(self.client.get(reverse("discharge_requests"), {"step": "surgery"}).status_code, 400)


class InvoicePdfTest(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.invoice = Invoice.objects.create(patient=self.patient, description="Consultation", amount="150.00")

    def test_staff_can_download(self):
        self.client.force_login(self.staff)
        response = self.client.get(reverse("invoice_pdf", args=[self.invoice.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/pdf")
        self.assertIn(f"invoice-{self.invoice.pk}.pdf", response["Content-Disposition"])

    def test_patient_can_download_only_their_own(self):
        self.client.force_login(self.patient)
        self.assertEqual(self.client.get(reverse("invoice_pdf", args=[self.invoice.pk])).status_code, 200)

        self.client.force_login(make_user("p2"))
        self.assertEqual(self.client.get(reverse("invoice_pdf", args=[self.invoice.pk])).status_code, 403)

    def test_doctor_role_is_refused(self):
        self.client.force_login(self.doctor)
        self.assertEqual(self.client.get(reverse("invoice_pdf", args=[self.invoice.pk])).status_code, 403)


class DoctorApiTest(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.client.force_login(self.doctor)

    def test_admit_and_list(self):
        response = self.post_json(
            reverse("doctor_admit"),
            {"patient": self.patient.pk, "accommodation_id": self.bed.pk, "notes": "Chest pain"},
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["data"]["doctor"]["id"], self.doctor.pk)

        response = self.client.get(reverse("doctor_admissions"))
        self.assertEqual([a["patient"]["id"] for a in response.json()["data"]], [self.patient.pk])

    def test_admit_into_occupied_bed(self):
        update_accommodation(self.staff, self.bed.pk, patient=make_user("p2"))
        response = self.post_json(
            reverse("doctor_admit"), {"patient": self.patient.pk, "accommodation_id": self.bed.pk}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("no longer available", response.json()["message"])

    def test_initiate_discharge_for_own_patient(self):
        self.post_json(reverse("doctor_admit"), {"patient": self.patient.pk, "accommodation_id": self.bed.pk})
        admission = Admission.objects.get(patient=self.patient)

        response = self.post_json(reverse("doctor_discharge"), {"admission_id": admission.pk})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["discharge_stage"], "pending")

    def test_cannot_discharge_another_doctors_patient(self):
        other_doctor = make_user("drlee", role="doctor")
        update_accommodation(self.staff, self.bed.pk, patient=self.patient, doctor=other_doctor)
        admission = Admission.objects.get(patient=self.patient)

        response = self.post_json(reverse("doctor_discharge"), {"admission_id": admission.pk})
        self.assertEqual(response.status_code, 403)
        self.assertFalse(DischargeClearance.objects.exists())

    def test_order_and_list_lab_tests(self):
        response = self.post_json(
            reverse("doctor_lab_orders"), {"patient": self.patient.pk, "test_name": "Chest X-ray"}
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertEqual(data["doctor"]["id"], self.doctor.pk)
        self.assertEqual(data["status"], "ordered")

        other_doctor = make_user("drlee", role="doctor")
        LabOrder.objects.create(patient=self.patient, doctor=other_doctor, test_name="ECG")

        response = self.client.get(reverse("doctor_lab_orders"))
        self.assertEqual([o["test_name"] for o in response.json()["data"]], ["Chest X-ray"])

    def test_staff_cannot_use_doctor_endpoints(self):
        self.client.force_login(self.staff)
        response = self.post_json(reverse("doctor_admit"), {"patient": self.patient.pk, "accommodation_id": self.bed.pk})
        self.assertEqual(response.status_code, 403)
