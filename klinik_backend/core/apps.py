"""
Core App Configuration
"""

from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Users, roles, permission gate and activity log."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'klinik_backend.core'
    verbose_name = 'Core (Users, Roles & Activity Log)'
