"""Doctor queue tests.

Covers rotation order, deactivation/reactivation, fairness over many
assignments and the empty-rotation error.
"""

from __future__ import annotations

from collections import Counter

from django.test import TestCase, override_settings

from rest_framework import status
from rest_framework.test import APIClient

from klinik_backend.core.exceptions import (
    NoActiveDoctorsError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from klinik_backend.core.models import Role, User
from klinik_backend.doctor_queue.models import DoctorQueueEntry
from klinik_backend.doctor_queue.services import (
    STRATEGY_ROUND_ROBIN,
    assign_next,
    dequeue_doctor,
    enqueue_doctor,
    peek_next,
    queue_snapshot,
)
from klinik_backend.patients.models import Patient


class DoctorQueueTestBase(TestCase):
    databases = {"default"}

    def setUp(self):
        role_admin, _ = Role.objects.using("default").get_or_create(name="admin", defaults={"label": "Administrator"})
        self.role_doctor, _ = Role.objects.using("default").get_or_create(name="doctor", defaults={"label": "Doctor"})
        role_assistant, _ = Role.objects.using("default").get_or_create(name="assistant", defaults={"label": "Assistant"})
        self.admin = User.objects.db_manager("default").create_user(
            username="queue_admin", password="SecurePass123!", role=role_admin,
        )
        self.assistant = User.objects.db_manager("default").create_user(
            username="queue_assistant", password="SecurePass123!", role=role_assistant,
        )
        self._patient_seq = 0

    def make_doctors(self, count, *, enqueue=True):
        doctors = []
        for i in range(count):
            doctor = User.objects.db_manager("default").create_user(
                username=f"queue_doc_{i + 1}", password="SecurePass123!", role=self.role_doctor,
            )
            if enqueue:
                enqueue_doctor(doctor_id=doctor.id, user=self.admin)
            doctors.append(doctor)
        return doctors

    def new_patient(self):
        self._patient_seq += 1
        return Patient.objects.using("default").create(
            name=f"Queue Patient {self._patient_seq}",
            phone=f"5{self._patient_seq:09d}",
        )

    def assign(self):
        return assign_next(patient_id=self.new_patient().id, user=self.assistant)


class RotationTest(DoctorQueueTestBase):
    def test_three_doctors_then_deactivation(self):
        d1, d2, d3 = self.make_doctors(3)

        self.assertEqual([self.assign() for _ in range(3)], [d1.id, d2.id, d3.id])

        dequeue_doctor(doctor_id=d2.id, user=self.admin)
        self.assertEqual(self.assign(), d1.id)

    def test_single_doctor_always_chosen(self):
        (only,) = self.make_doctors(1)
        self.assertEqual({self.assign() for _ in range(5)}, {only.id})

    def test_fair_share_over_many_assignments(self):
        doctors = self.make_doctors(3)
        n = 10

        counts = Counter(self.assign() for _ in range(n))

        for doctor in doctors:
            self.assertIn(counts[doctor.id], (n // 3, -(-n // 3)))

    def test_empty_rotation_raises(self):
        self.make_doctors(1, enqueue=False)
        with self.assertRaises(NoActiveDoctorsError):
            self.assign()

    def test_failed_assignment_leaves_patient_unassigned(self):
        patient = self.new_patient()
        with self.assertRaises(NoActiveDoctorsError):
            assign_next(patient_id=patient.id, user=self.assistant)

        patient.refresh_from_db()
        self.assertIsNone(patient.assigned_doctor_id)

    def test_assignment_stamps_patient(self):
        (doctor,) = self.make_doctors(1)
        patient = self.new_patient()

        assign_next(patient_id=patient.id, user=self.assistant)

        patient.refresh_from_db()
        self.assertEqual(patient.assigned_doctor_id, doctor.id)
        self.assertEqual(patient.assignment_type, Patient.ASSIGNMENT_QUEUE)
        self.assertIsNotNone(patient.assignment_date)

    def test_already_assigned_patient_rejected(self):
        self.make_doctors(1)
        patient = self.new_patient()
        assign_next(patient_id=patient.id, user=self.assistant)

        with self.assertRaises(ValidationError):
            assign_next(patient_id=patient.id, user=self.assistant)

    def test_positions_stay_dense(self):
        d1, d2, d3 = self.make_doctors(3)
        self.assign()
        dequeue_doctor(doctor_id=d3.id, user=self.admin)

        positions = [(e.doctor_id, e.position) for e in queue_snapshot()]
        self.assertEqual(positions, [(d2.id, 1), (d1.id, 2)])

    def test_reactivated_doctor_reenters_at_back(self):
        d1, d2, d3 = self.make_doctors(3)
        dequeue_doctor(doctor_id=d1.id, user=self.admin)
        enqueue_doctor(doctor_id=d1.id, user=self.admin)

        self.assertEqual([self.assign() for _ in range(3)], [d2.id, d3.id, d1.id])

    def test_peek_matches_assignment(self):
        self.make_doctors(2)
        expected = peek_next().doctor_id
        self.assertEqual(self.assign(), expected)

    @override_settings(DOCTOR_QUEUE_STRATEGY=STRATEGY_ROUND_ROBIN)
    def test_round_robin_strategy(self):
        d1, d2 = self.make_doctors(2)
        self.assertEqual([self.assign() for _ in range(4)], [d1.id, d2.id, d1.id, d2.id])


class MembershipTest(DoctorQueueTestBase):
    def test_only_admin_manages_queue(self):
        (doctor,) = self.make_doctors(1, enqueue=False)
        with self.assertRaises(PermissionDeniedError):
            enqueue_doctor(doctor_id=doctor.id, user=self.assistant)

    def test_double_enqueue_rejected(self):
        (doctor,) = self.make_doctors(1)
        with self.assertRaises(ValidationError):
            enqueue_doctor(doctor_id=doctor.id, user=self.admin)

    def test_dequeue_unknown_doctor(self):
        with self.assertRaises(NotFoundError):
            dequeue_doctor(doctor_id=999999, user=self.admin)

    def test_dequeue_keeps_assigned_patients(self):
        (doctor,) = self.make_doctors(1)
        patient = self.new_patient()
        assign_next(patient_id=patient.id, user=self.assistant)

        dequeue_doctor(doctor_id=doctor.id, user=self.admin)

        patient.refresh_from_db()
        self.assertEqual(patient.assigned_doctor_id, doctor.id)
        self.assertFalse(DoctorQueueEntry.objects.using("default").get(doctor=doctor).active)


class QueueApiTest(DoctorQueueTestBase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_snapshot_and_assign(self):
        d1, d2 = self.make_doctors(2)
        patient = self.new_patient()
        self.client.force_authenticate(user=self.assistant)

        response = self.client.get("/api/doctor-queue/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([e["doctor_id"] for e in response.data["entries"]], [d1.id, d2.id])
        self.assertEqual(response.data["strategy_next_doctor_id"], d1.id)

        response = self.client.post("/api/doctor-queue/assign/", {"patient_id": patient.id}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["doctor_id"], d1.id)

    def test_assign_with_empty_queue_returns_409(self):
        patient = self.new_patient()
        self.client.force_authenticate(user=self.assistant)

        response = self.client.post("/api/doctor-queue/assign/", {"patient_id": patient.id}, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["kind"], "no_active_doctors")

    def test_enqueue_dequeue_endpoints(self):
        (doctor,) = self.make_doctors(1, enqueue=False)
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(f"/api/doctor-queue/{doctor.id}/enqueue/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["position"], 1)

        response = self.client.post(f"/api/doctor-queue/{doctor.id}/dequeue/")
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
