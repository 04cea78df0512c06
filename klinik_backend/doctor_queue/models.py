"""Rotation state for automatic patient assignment.

The rotation is stored as data (position + timestamps) so that it survives
restarts and stays consistent across several service instances.
"""

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class DoctorQueueEntry(models.Model):
    """A doctor's place in the new-patient rotation.

    - ``position``: dense 1..N ordering over active entries; NULL when the
      doctor is out of rotation.
    - ``activated_at``: when the doctor (re-)entered the rotation.
    - ``last_assigned_at`` / ``assignment_count``: kept across
      deactivation as history.
    """

    doctor = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        primary_key=True,
        on_delete=models.CASCADE,
        related_name='queue_entry',
    )
    position = models.PositiveIntegerField(null=True, blank=True)
    active = models.BooleanField(default=True)
    activated_at = models.DateTimeField(default=timezone.now)
    last_assigned_at = models.DateTimeField(null=True, blank=True)
    assignment_count = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'doctor_queue'
        ordering = ['position', 'doctor_id']
        verbose_name = 'Doctor Queue Entry'
        verbose_name_plural = 'Doctor Queue'
        constraints = [
            models.UniqueConstraint(
                fields=['position'],
                condition=Q(active=True),
                name='uniq_active_queue_position',
            ),
        ]

    def __str__(self) -> str:
        state = f"position={self.position}" if self.active else "inactive"
        return f"DoctorQueueEntry doctor_id={self.doctor_id} {state}"

    @property
    def rotation_time(self):
        """Last time this doctor moved to the back of the rotation.

        A doctor that never received a patient counts from activation; a
        reactivated doctor counts from reactivation, so it re-enters at the
        back rather than in its old slot.
        """
        if self.last_assigned_at is None:
            return self.activated_at
        return max(self.last_assigned_at, self.activated_at)
