from django.contrib.auth.models import AbstractUser
from django.conf import settings
from django.db import models

from klinik_backend.core.exceptions import ImmutableRecordError


class Role(models.Model):
    """User roles for RBAC (Role-Based Access Control).

    Standard roles: admin, doctor, assistant. The capability table in
    ``core.permissions`` is keyed by ``name``.
    """

    ADMIN = 'admin'
    DOCTOR = 'doctor'
    ASSISTANT = 'assistant'

    NAME_CHOICES = (
        (ADMIN, 'Administrator'),
        (DOCTOR, 'Doctor'),
        (ASSISTANT, 'Assistant'),
    )

    # Roles that can hold appointments and receive patients.
    CLINICIAN_ROLES = frozenset({ADMIN, DOCTOR})

    name = models.CharField(max_length=64, unique=True, db_index=True, choices=NAME_CHOICES)
    label = models.CharField(max_length=128)

    class Meta:
        db_table = 'core_role'
        ordering = ['name']
        verbose_name = 'Role'
        verbose_name_plural = 'Roles'

    def __str__(self) -> str:
        return self.label


class User(AbstractUser):
    """Clinic staff member (the "doctor" record of the clinic).

    Extends Django's AbstractUser with:
    - role: ForeignKey to Role for RBAC
    - is_active (inherited) doubles as the "active doctor" flag
    """

    role = models.ForeignKey(
        Role,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name='users',
    )

    class Meta:
        db_table = 'core_user'
        ordering = ['username']
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    @property
    def role_name(self) -> str | None:
        role = self.role
        return role.name if role is not None else None

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username

    @property
    def is_clinician(self) -> bool:
        return self.role_name in Role.CLINICIAN_ROLES


class ActivityLogQuerySet(models.QuerySet):
    """Bulk writes are refused; entries are append-only."""

    def update(self, **kwargs):
        raise ImmutableRecordError('Activity log entries cannot be updated.')

    def delete(self):
        raise ImmutableRecordError('Activity log entries cannot be deleted.')


class ActivityLog(models.Model):
    """Append-only record of a committed state change.

    ``user_name`` is copied at write time so the entry stays readable after
    the user is renamed or deactivated.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='activity_logs',
    )
    user_name = models.CharField(max_length=150, blank=True, default='')
    action_type = models.CharField(max_length=50, db_index=True)
    details = models.JSONField(default=dict, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = ActivityLogQuerySet.as_manager()

    class Meta:
        db_table = 'user_activity_logs'
        ordering = ['-timestamp', '-id']
        verbose_name = 'Activity Log'
        verbose_name_plural = 'Activity Logs'
        indexes = [
            models.Index(fields=['action_type', 'timestamp'], name='user_activi_action__0c1f2e_idx'),
            models.Index(fields=['user', 'timestamp'], name='user_activi_user_id_5b9a3d_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.timestamp} {self.action_type} ({self.user_name})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError('Activity log entries cannot be updated.')
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError('Activity log entries cannot be deleted.')
