"""HTTP tests for /api/appointments/.

Checks the error mapping (409 with conflict details, 403, 404, 503) and the
role scoping of the list endpoint.
"""

from __future__ import annotations

from datetime import datetime
from unittest import mock

from django.db import IntegrityError, OperationalError
from django.test import TestCase
from django.utils import timezone

from rest_framework import status
from rest_framework.test import APIClient

from klinik_backend.appointments.models import Appointment
from klinik_backend.appointments.services.scheduling import create_appointment
from klinik_backend.core import audit
from klinik_backend.core.exceptions import ConflictError, PersistenceError
from klinik_backend.core.models import ActivityLog, Role, User
from klinik_backend.patients.models import Patient


class AppointmentApiTest(TestCase):
    databases = {"default"}

    def setUp(self):
        role_admin, _ = Role.objects.using("default").get_or_create(name="admin", defaults={"label": "Administrator"})
        role_doctor, _ = Role.objects.using("default").get_or_create(name="doctor", defaults={"label": "Doctor"})
        role_assistant, _ = Role.objects.using("default").get_or_create(name="assistant", defaults={"label": "Assistant"})

        self.admin = User.objects.db_manager("default").create_user(
            username="api_admin", password="SecurePass123!", role=role_admin,
        )
        self.doctor = User.objects.db_manager("default").create_user(
            username="api_doctor", password="SecurePass123!", role=role_doctor,
        )
        self.other_doctor = User.objects.db_manager("default").create_user(
            username="api_doctor2", password="SecurePass123!", role=role_doctor,
        )
        self.assistant = User.objects.db_manager("default").create_user(
            username="api_assistant", password="SecurePass123!", role=role_assistant,
        )
        self.no_role = User.objects.db_manager("default").create_user(
            username="api_norole", password="SecurePass123!",
        )
        self.patient = Patient.objects.using("default").create(name="Mehmet Yilmaz", phone="5051112233")
        self.client = APIClient()

    def _payload(self, start="2030-01-07T10:00:00Z", duration=30, doctor=None):
        return {
            "patient_id": self.patient.id,
            "doctor_id": (doctor or self.doctor).id,
            "appointment_date": start,
            "duration_minutes": duration,
        }

    def _post(self, user, **kwargs):
        self.client.force_authenticate(user=user)
        return self.client.post("/api/appointments/", self._payload(**kwargs), format="json")

    def test_create_returns_201_and_audits(self):
        with self.captureOnCommitCallbacks(execute=True):
            response = self._post(self.assistant)

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], "scheduled")
        self.assertEqual(response.data["doctor_id"], self.doctor.id)
        self.assertEqual(
            ActivityLog.objects.using("default").filter(action_type=audit.CREATE_APPOINTMENT).count(),
            1,
        )

    def test_conflict_returns_409_with_details(self):
        first = self._post(self.assistant)

        response = self._post(self.assistant, start="2030-01-07T10:15:00Z")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["kind"], "conflict")
        self.assertEqual(response.data["conflicts"][0]["id"], first.data["id"])

    def test_back_to_back_returns_201(self):
        self._post(self.assistant)
        response = self._post(self.assistant, start="2030-01-07T10:30:00Z")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_malformed_payload_returns_400(self):
        self.client.force_authenticate(user=self.assistant)
        response = self.client.post("/api/appointments/", {"patient_id": self.patient.id}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_patient_returns_404(self):
        self.client.force_authenticate(user=self.assistant)
        payload = self._payload()
        payload["patient_id"] = 999999

        response = self.client.post("/api/appointments/", payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["kind"], "not_found")

    def test_doctor_delete_forbidden_cancel_allowed(self):
        appt_id = self._post(self.assistant).data["id"]
        self.client.force_authenticate(user=self.doctor)

        response = self.client.delete(f"/api/appointments/{appt_id}/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["capability"], "deleteAppointment")

        response = self.client.post(f"/api/appointments/{appt_id}/cancel/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "cancelled")

    def test_admin_delete_returns_204(self):
        appt_id = self._post(self.assistant).data["id"]
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/appointments/{appt_id}/")

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Appointment.objects.using("default").filter(id=appt_id).exists())

    def test_patch_illegal_transition_returns_400(self):
        appt_id = self._post(self.assistant).data["id"]
        self.client.force_authenticate(user=self.doctor)

        response = self.client.patch(f"/api/appointments/{appt_id}/", {"status": "completed"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["kind"], "validation_error")

    def test_list_is_scoped_for_doctor(self):
        self._post(self.assistant)
        self._post(self.assistant, doctor=self.other_doctor)

        self.client.force_authenticate(user=self.doctor)
        response = self.client.get("/api/appointments/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([a["doctor_id"] for a in response.data], [self.doctor.id])

        self.client.force_authenticate(user=self.assistant)
        response = self.client.get("/api/appointments/")
        self.assertEqual(len(response.data), 2)

    def test_other_doctors_appointment_is_hidden(self):
        appt_id = self._post(self.assistant, doctor=self.other_doctor).data["id"]
        self.client.force_authenticate(user=self.doctor)

        response = self.client.get(f"/api/appointments/{appt_id}/")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_user_without_role_is_rejected(self):
        self.client.force_authenticate(user=self.no_role)
        response = self.client.get("/api/appointments/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_free_slots_endpoint(self):
        self._post(self.assistant)
        self.client.force_authenticate(user=self.assistant)

        response = self.client.get(
            "/api/appointments/free-slots/",
            {"doctor_id": self.doctor.id, "date": "2030-01-07", "duration_minutes": 30},
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertNotIn("2030-01-07T10:00:00+00:00", response.data["slots"])
        self.assertIn("2030-01-07T10:30:00+00:00", response.data["slots"])

    def test_reused_idempotency_key_returns_400(self):
        self.client.force_authenticate(user=self.other_doctor)
        payload = self._payload(doctor=self.other_doctor)
        payload["idempotency_key"] = "k1"
        self.assertEqual(
            self.client.post("/api/appointments/", payload, format="json").status_code,
            status.HTTP_201_CREATED,
        )

        self.client.force_authenticate(user=self.doctor)
        payload = self._payload(start="2030-01-07T15:00:00Z")
        payload["idempotency_key"] = "k1"
        response = self.client.post("/api/appointments/", payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["field"], "idempotency_key")
        self.assertNotIn("id", response.data)


class AppointmentPersistenceErrorTest(TestCase):
    """Database failures inside the scheduler surface as typed errors."""

    databases = {"default"}

    def setUp(self):
        role_assistant, _ = Role.objects.using("default").get_or_create(name="assistant", defaults={"label": "Assistant"})
        role_doctor, _ = Role.objects.using("default").get_or_create(name="doctor", defaults={"label": "Doctor"})
        self.assistant = User.objects.db_manager("default").create_user(
            username="persist_assistant", password="SecurePass123!", role=role_assistant,
        )
        self.doctor = User.objects.db_manager("default").create_user(
            username="persist_doctor", password="SecurePass123!", role=role_doctor,
        )
        self.patient = Patient.objects.using("default").create(name="Persist Patient", phone="5051112233")
        self.start = timezone.make_aware(datetime(2030, 1, 7, 10, 0))
        self.client = APIClient()

    def _create(self):
        return create_appointment(
            data={
                "patient_id": self.patient.id,
                "doctor_id": self.doctor.id,
                "appointment_date": self.start,
                "duration_minutes": 30,
            },
            user=self.assistant,
        )

    def test_racing_insert_on_same_slot_is_conflict(self):
        # A row committed by another writer after this one's overlap check.
        Appointment.objects.using("default").bulk_create([
            Appointment(
                patient=self.patient,
                doctor=self.doctor,
                appointment_date=self.start,
                duration_minutes=30,
                status=Appointment.STATUS_SCHEDULED,
            ),
        ])

        with mock.patch(
            "klinik_backend.appointments.services.scheduling.find_conflicts",
            return_value=[],
        ):
            with self.assertRaises(ConflictError) as ctx:
                self._create()

        self.assertIsInstance(ctx.exception.__cause__, IntegrityError)
        self.assertEqual(Appointment.objects.using("default").count(), 1)

    def test_storage_failure_returns_503(self):
        self.client.force_authenticate(user=self.assistant)

        with mock.patch(
            "klinik_backend.appointments.services.scheduling.find_conflicts",
            side_effect=OperationalError("connection lost"),
        ):
            response = self.client.post(
                "/api/appointments/",
                {
                    "patient_id": self.patient.id,
                    "doctor_id": self.doctor.id,
                    "appointment_date": "2030-01-07T10:00:00Z",
                    "duration_minutes": 30,
                },
                format="json",
            )

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data["kind"], "persistence_error")
        self.assertFalse(Appointment.objects.using("default").exists())

    def test_storage_failure_is_persistence_error(self):
        with mock.patch(
            "klinik_backend.appointments.services.scheduling.find_conflicts",
            side_effect=OperationalError("connection lost"),
        ):
            with self.assertRaises(PersistenceError):
                self._create()
