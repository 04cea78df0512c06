"""Core App URLs - Authentication, Health & User management.

Prefix: /api/
Routes:
    GET  /api/health/                   - Health check (no auth)
    POST /api/auth/login/               - JWT token obtain with user/role info
    POST /api/auth/refresh/             - JWT token refresh
    GET  /api/auth/me/                  - Current user info
    POST /api/users/<id>/password/      - Change password
    GET/POST /api/doctors/              - List / create doctors
    POST /api/doctors/<id>/activate/    - Re-activate (rejoins the queue)
    POST /api/doctors/<id>/deactivate/  - Deactivate (leaves the queue)
    GET  /api/activity-logs/            - Audit trail (admin)
"""

from django.urls import path

from klinik_backend.core.views import (
    ActivityLogListView,
    ChangePasswordView,
    DoctorActivationView,
    DoctorListCreateView,
    health,
    LoginView,
    MeView,
    RefreshView,
)

app_name = 'core'

urlpatterns = [
    # Health check
    path('health/', health, name='health'),

    # JWT Authentication
    path('auth/login/', LoginView.as_view(), name='login'),
    path('auth/refresh/', RefreshView.as_view(), name='refresh'),
    path('auth/me/', MeView.as_view(), name='me'),

    # Users & doctors
    path('users/<int:pk>/password/', ChangePasswordView.as_view(), name='change_password'),
    path('doctors/', DoctorListCreateView.as_view(), name='doctors'),
    path('doctors/<int:pk>/activate/', DoctorActivationView.as_view(activate=True), name='doctor_activate'),
    path('doctors/<int:pk>/deactivate/', DoctorActivationView.as_view(activate=False), name='doctor_deactivate'),

    # Audit trail
    path('activity-logs/', ActivityLogListView.as_view(), name='activity_logs'),
]
