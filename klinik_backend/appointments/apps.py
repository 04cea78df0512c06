"""
Appointments App Configuration
"""

from django.apps import AppConfig


class AppointmentsConfig(AppConfig):
    """Appointment lifecycle & conflict detection."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'klinik_backend.appointments'
    verbose_name = 'Appointments'
