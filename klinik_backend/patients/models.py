from django.conf import settings
from django.db import models


class PatientQuerySet(models.QuerySet):
    def alive(self):
        return self.filter(deleted_at__isnull=True)


class Patient(models.Model):
    """Clinic patient.

    ``assigned_doctor`` is set either by the doctor queue
    (``assignment_type='queue'``) or by a user's explicit choice
    (``assignment_type='manual'``). Deleted patients are kept with
    ``deleted_at`` set and are invisible to every service.
    """

    ASSIGNMENT_QUEUE = 'queue'
    ASSIGNMENT_MANUAL = 'manual'

    ASSIGNMENT_CHOICES = (
        (ASSIGNMENT_QUEUE, ASSIGNMENT_QUEUE),
        (ASSIGNMENT_MANUAL, ASSIGNMENT_MANUAL),
    )

    name = models.CharField(max_length=200)
    phone = models.CharField(max_length=10, db_index=True)
    anamnez = models.TextField(blank=True, default='')
    assigned_doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name='patients',
    )
    assignment_type = models.CharField(
        max_length=10,
        choices=ASSIGNMENT_CHOICES,
        null=True,
        blank=True,
    )
    assignment_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True, db_index=True)

    objects = PatientQuerySet.as_manager()

    class Meta:
        db_table = 'patients'
        ordering = ['name', 'id']
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'

    def __str__(self) -> str:
        return f"{self.name} (id={self.id})"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
