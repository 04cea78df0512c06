"""Tests for the activity log.

Entries are written after commit, so every test that expects an entry runs
the mutation inside ``captureOnCommitCallbacks(execute=True)``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest import mock

from django.db import OperationalError
from django.test import TestCase
from django.utils import timezone

from klinik_backend.appointments.services.scheduling import create_appointment
from klinik_backend.core import audit
from klinik_backend.core.exceptions import ConflictError, ImmutableRecordError
from klinik_backend.core.models import ActivityLog, Role, User
from klinik_backend.core.tasks import write_activity_log
from klinik_backend.patients.models import Patient


class ActivityLogImmutabilityTest(TestCase):
    databases = {"default"}

    def setUp(self):
        self.entry = ActivityLog.objects.using("default").create(
            user_name="system",
            action_type=audit.LOGIN,
            details={"username": "x"},
        )

    def test_save_existing_entry_raises(self):
        self.entry.action_type = "TAMPERED"
        with self.assertRaises(ImmutableRecordError):
            self.entry.save()

    def test_delete_entry_raises(self):
        with self.assertRaises(ImmutableRecordError):
            self.entry.delete()

    def test_bulk_update_and_delete_raise(self):
        with self.assertRaises(ImmutableRecordError):
            ActivityLog.objects.using("default").all().update(action_type="X")
        with self.assertRaises(ImmutableRecordError):
            ActivityLog.objects.using("default").all().delete()
        self.assertEqual(ActivityLog.objects.using("default").count(), 1)


class AuditRecordTest(TestCase):
    databases = {"default"}

    def setUp(self):
        role_admin, _ = Role.objects.using("default").get_or_create(name="admin", defaults={"label": "Administrator"})
        role_doctor, _ = Role.objects.using("default").get_or_create(name="doctor", defaults={"label": "Doctor"})
        self.admin = User.objects.db_manager("default").create_user(
            username="audit_admin",
            password="SecurePass123!",
            first_name="Ada",
            last_name="Admin",
            role=role_admin,
        )
        self.doctor = User.objects.db_manager("default").create_user(
            username="audit_doctor", password="SecurePass123!", role=role_doctor,
        )
        self.patient = Patient.objects.using("default").create(name="Audit Patient", phone="5321234567")
        self.start = timezone.make_aware(datetime(2030, 1, 7, 10, 0))

    def _create(self, start=None):
        return create_appointment(
            data={
                "patient_id": self.patient.id,
                "doctor_id": self.doctor.id,
                "appointment_date": start or self.start,
                "duration_minutes": 30,
            },
            user=self.admin,
        )

    def test_record_writes_one_entry_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            audit.record(self.admin, audit.LOGIN, {"username": "audit_admin"})

        entry = ActivityLog.objects.using("default").get()
        self.assertEqual(entry.user_id, self.admin.id)
        self.assertEqual(entry.user_name, "Ada Admin")
        self.assertEqual(entry.action_type, audit.LOGIN)
        self.assertEqual(entry.details, {"username": "audit_admin"})

    def test_record_without_actor_is_system(self):
        with self.captureOnCommitCallbacks(execute=True):
            audit.record(None, audit.ASSIGN_PATIENT, {"patient_id": 1})

        entry = ActivityLog.objects.using("default").get()
        self.assertIsNone(entry.user_id)
        self.assertEqual(entry.user_name, "system")

    def test_details_are_json_normalized(self):
        with self.captureOnCommitCallbacks(execute=True):
            audit.record(self.admin, audit.UPDATE_APPOINTMENT, {"at": self.start})

        entry = ActivityLog.objects.using("default").get()
        self.assertIsInstance(entry.details["at"], str)

    def test_successful_mutation_writes_exactly_one_entry(self):
        with self.captureOnCommitCallbacks(execute=True):
            appointment = self._create()

        entries = ActivityLog.objects.using("default").filter(action_type=audit.CREATE_APPOINTMENT)
        self.assertEqual(entries.count(), 1)
        self.assertEqual(entries.get().details["appointment_id"], appointment.id)

    def test_failed_mutation_writes_no_entry(self):
        with self.captureOnCommitCallbacks(execute=True):
            self._create()
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(ConflictError):
                self._create(start=self.start + timedelta(minutes=15))

        self.assertEqual(
            ActivityLog.objects.using("default").filter(action_type=audit.CREATE_APPOINTMENT).count(),
            1,
        )

    def test_broker_outage_falls_back_to_inline_write(self):
        with mock.patch.object(write_activity_log, "delay", side_effect=RuntimeError("broker down")):
            with self.assertLogs("klinik_backend.core.audit", level="ERROR"):
                with self.captureOnCommitCallbacks(execute=True):
                    appointment = self._create()

        entry = ActivityLog.objects.using("default").get()
        self.assertEqual(entry.action_type, audit.CREATE_APPOINTMENT)
        self.assertEqual(entry.details["appointment_id"], appointment.id)

    def test_total_audit_failure_does_not_reach_caller(self):
        with mock.patch.object(write_activity_log, "delay", side_effect=RuntimeError("broker down")), \
                mock.patch.object(write_activity_log, "run", side_effect=OperationalError("database gone")):
            with self.assertLogs("klinik_backend.core.audit", level="ERROR") as logs:
                with self.captureOnCommitCallbacks(execute=True):
                    appointment = self._create()

        self.assertIsNotNone(appointment.pk)
        self.assertTrue(any("entry lost" in line for line in logs.output))
        self.assertFalse(ActivityLog.objects.using("default").exists())
