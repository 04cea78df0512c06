"""Tests for Authentication endpoints.

Tests cover:
- Login (POST /api/auth/login/), including the LOGIN activity entry
- Refresh (POST /api/auth/refresh/)
- Me (GET /api/auth/me/)
- Health (GET /api/health/)
"""

from __future__ import annotations

from django.test import TestCase

from rest_framework import status
from rest_framework.test import APIClient

from klinik_backend.core import audit
from klinik_backend.core.models import ActivityLog, Role, User


class AuthenticationTest(TestCase):
    databases = {"default"}

    def setUp(self):
        self.role_admin, _ = Role.objects.using("default").get_or_create(
            name="admin",
            defaults={"label": "Administrator"},
        )
        self.role_doctor, _ = Role.objects.using("default").get_or_create(
            name="doctor",
            defaults={"label": "Doctor"},
        )
        self.admin = User.objects.db_manager("default").create_user(
            username="admin_auth",
            email="admin_auth@example.com",
            password="SecurePass123!",
            role=self.role_admin,
        )
        self.doctor = User.objects.db_manager("default").create_user(
            username="doctor_auth",
            password="SecurePass123!",
            role=self.role_doctor,
        )
        User.objects.db_manager("default").create_user(
            username="inactive_auth",
            password="SecurePass123!",
            role=self.role_doctor,
            is_active=False,
        )
        self.client = APIClient()

    def _login(self, username, password="SecurePass123!"):
        return self.client.post(
            "/api/auth/login/",
            {"username": username, "password": password},
            format="json",
        )

    def test_login_returns_tokens_and_role(self):
        response = self._login("admin_auth")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("access", response.data)
        self.assertIn("refresh", response.data)
        self.assertEqual(response.data["user"]["id"], self.admin.id)
        self.assertEqual(response.data["user"]["role"]["name"], "admin")

    def test_login_records_activity(self):
        with self.captureOnCommitCallbacks(execute=True):
            self._login("doctor_auth")

        entry = ActivityLog.objects.using("default").get(action_type=audit.LOGIN)
        self.assertEqual(entry.user_id, self.doctor.id)

    def test_login_wrong_password_returns_400(self):
        response = self._login("admin_auth", "WrongPassword!")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertNotIn("access", response.data)

    def test_login_inactive_user_returns_400(self):
        self.assertEqual(self._login("inactive_auth").status_code, status.HTTP_400_BAD_REQUEST)

    def test_login_missing_fields_returns_400(self):
        response = self.client.post("/api/auth/login/", {"username": "admin_auth"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_refresh_returns_new_access_token(self):
        refresh_token = self._login("admin_auth").data["refresh"]

        response = self.client.post("/api/auth/refresh/", {"refresh": refresh_token}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["access"])

    def test_refresh_invalid_token_returns_400(self):
        response = self.client.post("/api/auth/refresh/", {"refresh": "not-a-token"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_refresh_token_carries_role_claim(self):
        import jwt
        from django.conf import settings

        refresh_token = self._login("doctor_auth").data["refresh"]
        decoded = jwt.decode(
            refresh_token,
            settings.SIMPLE_JWT["SIGNING_KEY"],
            algorithms=[settings.SIMPLE_JWT["ALGORITHM"]],
        )
        self.assertEqual(decoded["role"], "doctor")

    def test_me_with_token(self):
        access_token = self._login("doctor_auth").data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access_token}")

        response = self.client.get("/api/auth/me/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["id"], self.doctor.id)
        self.assertEqual(response.data["role"]["name"], "doctor")

    def test_me_without_token_returns_401(self):
        self.assertEqual(self.client.get("/api/auth/me/").status_code, status.HTTP_401_UNAUTHORIZED)

    def test_health_needs_no_auth(self):
        response = self.client.get("/api/health/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["status"], "ok")
