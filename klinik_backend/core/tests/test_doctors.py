"""Tests for doctor management and password changes."""

from __future__ import annotations

from django.test import TestCase

from rest_framework import status
from rest_framework.test import APIClient

from klinik_backend.core import audit
from klinik_backend.core.exceptions import PermissionDeniedError, ValidationError
from klinik_backend.core.models import ActivityLog, Role, User
from klinik_backend.core.services import change_password, create_doctor, deactivate_doctor
from klinik_backend.doctor_queue.models import DoctorQueueEntry


class DoctorManagementTest(TestCase):
    databases = {"default"}

    def setUp(self):
        self.role_admin, _ = Role.objects.using("default").get_or_create(name="admin", defaults={"label": "Administrator"})
        self.role_assistant, _ = Role.objects.using("default").get_or_create(name="assistant", defaults={"label": "Assistant"})
        self.admin = User.objects.db_manager("default").create_user(
            username="dm_admin", password="SecurePass123!", role=self.role_admin,
        )
        self.assistant = User.objects.db_manager("default").create_user(
            username="dm_assistant", password="SecurePass123!", role=self.role_assistant,
        )
        self.client = APIClient()

    def _create(self, username="dr_new"):
        return create_doctor(
            data={"username": username, "password": "Clinic-Pass-2030", "first_name": "Deniz", "last_name": "Kaya"},
            user=self.admin,
        )

    def test_create_doctor_joins_queue(self):
        doctor = self._create()

        self.assertEqual(doctor.role_name, "doctor")
        entry = DoctorQueueEntry.objects.using("default").get(doctor=doctor)
        self.assertTrue(entry.active)
        self.assertEqual(entry.position, 1)

    def test_create_doctor_audited(self):
        with self.captureOnCommitCallbacks(execute=True):
            doctor = self._create()

        entry = ActivityLog.objects.using("default").get(action_type=audit.CREATE_DOCTOR)
        self.assertEqual(entry.details["doctor_id"], doctor.id)
        self.assertTrue(ActivityLog.objects.using("default").filter(action_type=audit.ENQUEUE_DOCTOR).exists())

    def test_duplicate_username_rejected(self):
        self._create()
        with self.assertRaises(ValidationError):
            self._create()

    def test_assistant_cannot_create_doctor(self):
        with self.assertRaises(PermissionDeniedError):
            create_doctor(data={"username": "x", "password": "Clinic-Pass-2030"}, user=self.assistant)

    def test_deactivate_doctor_leaves_queue(self):
        first = self._create("dr_one")
        second = self._create("dr_two")

        deactivate_doctor(doctor_id=first.id, user=self.admin)

        first.refresh_from_db()
        self.assertFalse(first.is_active)
        entry = DoctorQueueEntry.objects.using("default").get(doctor=first)
        self.assertFalse(entry.active)
        self.assertIsNone(entry.position)
        self.assertEqual(DoctorQueueEntry.objects.using("default").get(doctor=second).position, 1)

    def test_reactivate_via_api_rejoins_at_back(self):
        first = self._create("dr_one")
        self._create("dr_two")
        deactivate_doctor(doctor_id=first.id, user=self.admin)
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(f"/api/doctors/{first.id}/activate/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_active"])
        self.assertEqual(DoctorQueueEntry.objects.using("default").get(doctor=first).position, 2)

    def test_list_doctors_api(self):
        self._create("dr_one")
        self.client.force_authenticate(user=self.assistant)

        response = self.client.get("/api/doctors/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([d["username"] for d in response.data], ["dr_one"])
        self.assertTrue(response.data[0]["in_queue"])


class PasswordChangeTest(TestCase):
    databases = {"default"}

    def setUp(self):
        role_admin, _ = Role.objects.using("default").get_or_create(name="admin", defaults={"label": "Administrator"})
        role_doctor, _ = Role.objects.using("default").get_or_create(name="doctor", defaults={"label": "Doctor"})
        self.admin = User.objects.db_manager("default").create_user(
            username="pw_admin", password="SecurePass123!", role=role_admin,
        )
        self.doctor = User.objects.db_manager("default").create_user(
            username="pw_doctor", password="SecurePass123!", role=role_doctor,
        )
        self.client = APIClient()

    def test_own_password_requires_old_password(self):
        with self.assertRaises(ValidationError):
            change_password(target_id=self.doctor.id, new_password="Another-Pass-2030", old_password="wrong", user=self.doctor)

        change_password(
            target_id=self.doctor.id,
            new_password="Another-Pass-2030",
            old_password="SecurePass123!",
            user=self.doctor,
        )
        self.doctor.refresh_from_db()
        self.assertTrue(self.doctor.check_password("Another-Pass-2030"))

    def test_doctor_cannot_change_other_password(self):
        with self.assertRaises(PermissionDeniedError):
            change_password(target_id=self.admin.id, new_password="Another-Pass-2030", user=self.doctor)

    def test_admin_changes_other_password_via_api(self):
        self.client.force_authenticate(user=self.admin)

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(
                f"/api/users/{self.doctor.id}/password/",
                {"new_password": "Another-Pass-2030"},
                format="json",
            )

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.doctor.refresh_from_db()
        self.assertTrue(self.doctor.check_password("Another-Pass-2030"))
        self.assertTrue(ActivityLog.objects.using("default").filter(action_type=audit.CHANGE_PASSWORD).exists())

    def test_weak_password_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            f"/api/users/{self.doctor.id}/password/",
            {"new_password": "12345678"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["kind"], "validation_error")
