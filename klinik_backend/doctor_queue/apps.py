"""
Doctor Queue App Configuration
"""

from django.apps import AppConfig


class DoctorQueueConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'klinik_backend.doctor_queue'
    verbose_name = 'Doctor Queue (Patient Rotation)'
