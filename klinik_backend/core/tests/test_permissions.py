"""Tests for the capability gate (core.permissions)."""

from __future__ import annotations

from django.test import TestCase

from klinik_backend.core.exceptions import PermissionDeniedError
from klinik_backend.core.models import Role, User
from klinik_backend.core.permissions import Capability, check, require


class CapabilityTableTest(TestCase):
    databases = {"default"}

    def setUp(self):
        roles = {}
        for name, label in Role.NAME_CHOICES:
            roles[name], _ = Role.objects.using("default").get_or_create(name=name, defaults={"label": label})

        self.admin = User.objects.db_manager("default").create_user(
            username="perm_admin", password="SecurePass123!", role=roles["admin"],
        )
        self.doctor = User.objects.db_manager("default").create_user(
            username="perm_doctor", password="SecurePass123!", role=roles["doctor"],
        )
        self.other_doctor = User.objects.db_manager("default").create_user(
            username="perm_doctor2", password="SecurePass123!", role=roles["doctor"],
        )
        self.assistant = User.objects.db_manager("default").create_user(
            username="perm_assistant", password="SecurePass123!", role=roles["assistant"],
        )
        self.no_role = User.objects.db_manager("default").create_user(
            username="perm_norole", password="SecurePass123!",
        )

    def test_admin_holds_every_capability(self):
        for capability in Capability:
            self.assertTrue(check(self.admin, capability), capability)

    def test_doctor_own_grants_require_ownership(self):
        self.assertTrue(check(self.doctor, Capability.EDIT_ANY_APPOINTMENT, self.doctor.id))
        self.assertFalse(check(self.doctor, Capability.EDIT_ANY_APPOINTMENT, self.other_doctor.id))
        self.assertTrue(check(self.doctor, Capability.VIEW_ALL_PATIENTS, self.doctor.id))
        self.assertFalse(check(self.doctor, Capability.VIEW_ALL_PATIENTS, self.other_doctor.id))

    def test_own_grant_without_owner_is_denied(self):
        self.assertFalse(check(self.doctor, Capability.EDIT_ANY_APPOINTMENT))

    def test_doctor_denied_capabilities(self):
        for capability in (
            Capability.DELETE_APPOINTMENT,
            Capability.MANAGE_DOCTOR_QUEUE,
            Capability.CHANGE_OTHER_USER_PASSWORD,
            Capability.CREATE_PATIENT,
            Capability.VIEW_INCOME,
        ):
            self.assertFalse(check(self.doctor, capability, self.doctor.id), capability)

    def test_assistant_row(self):
        self.assertTrue(check(self.assistant, Capability.VIEW_ALL_PATIENTS))
        self.assertTrue(check(self.assistant, Capability.CREATE_APPOINTMENT, self.doctor.id))
        self.assertTrue(check(self.assistant, Capability.CREATE_PATIENT))
        self.assertFalse(check(self.assistant, Capability.EDIT_ANY_APPOINTMENT, self.doctor.id))
        self.assertFalse(check(self.assistant, Capability.DELETE_APPOINTMENT))
        self.assertFalse(check(self.assistant, Capability.MANAGE_DOCTOR_QUEUE))
        self.assertFalse(check(self.assistant, Capability.CHANGE_OTHER_USER_PASSWORD))

    def test_payment_rows(self):
        self.assertTrue(check(self.assistant, Capability.ADD_PAYMENT))
        self.assertTrue(check(self.assistant, Capability.SET_PAYMENT_AMOUNT, self.doctor.id))
        self.assertFalse(check(self.doctor, Capability.ADD_PAYMENT, self.doctor.id))
        self.assertTrue(check(self.doctor, Capability.SET_PAYMENT_AMOUNT, self.doctor.id))
        self.assertFalse(check(self.doctor, Capability.SET_PAYMENT_AMOUNT, self.other_doctor.id))

    def test_user_without_role_has_nothing(self):
        for capability in Capability:
            self.assertFalse(check(self.no_role, capability, self.no_role.id), capability)

    def test_inactive_user_has_nothing(self):
        self.admin.is_active = False
        self.assertFalse(check(self.admin, Capability.DELETE_APPOINTMENT))

    def test_require_raises_with_capability(self):
        with self.assertLogs("klinik_backend.security", level="WARNING"):
            with self.assertRaises(PermissionDeniedError) as ctx:
                require(self.doctor, Capability.DELETE_APPOINTMENT)
        self.assertEqual(ctx.exception.capability, "deleteAppointment")
        self.assertEqual(ctx.exception.status_code, 403)

    def test_require_passes_silently(self):
        require(self.admin, Capability.DELETE_APPOINTMENT)
