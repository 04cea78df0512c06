from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class TreatmentQuerySet(models.QuerySet):
    def alive(self):
        return self.filter(deleted_at__isnull=True)


class Treatment(models.Model):
    """Work performed on (or planned for) a patient, billed at ``cost``.

    Notes and cost may be corrected until the row is ``locked`` by the
    end-of-day lock; after that it is read-only. Payments are collected
    against ``cost`` independently of the lock.

    Status machine:
    - planned -> completed | cancelled
    - completed, cancelled are terminal
    """

    STATUS_PLANNED = 'planned'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = (
        (STATUS_PLANNED, STATUS_PLANNED),
        (STATUS_COMPLETED, STATUS_COMPLETED),
        (STATUS_CANCELLED, STATUS_CANCELLED),
    )

    TRANSITIONS = {
        STATUS_PLANNED: frozenset({STATUS_COMPLETED, STATUS_CANCELLED}),
        STATUS_COMPLETED: frozenset(),
        STATUS_CANCELLED: frozenset(),
    }

    PAYMENT_PENDING = 'pending'
    PAYMENT_PARTIAL = 'partial'
    PAYMENT_PAID = 'paid'

    PAYMENT_STATUS_CHOICES = (
        (PAYMENT_PENDING, PAYMENT_PENDING),
        (PAYMENT_PARTIAL, PAYMENT_PARTIAL),
        (PAYMENT_PAID, PAYMENT_PAID),
    )

    patient = models.ForeignKey(
        'patients.Patient',
        on_delete=models.PROTECT,
        related_name='treatments',
    )
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='treatments',
    )
    tooth_no = models.PositiveSmallIntegerField(null=True, blank=True)
    procedure = models.CharField(max_length=200)
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    notes = models.TextField(blank=True, default='')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_COMPLETED, db_index=True)
    planned_date = models.DateTimeField(null=True, blank=True)
    completed_date = models.DateTimeField(null=True, blank=True)
    payment_status = models.CharField(
        max_length=16,
        choices=PAYMENT_STATUS_CHOICES,
        default=PAYMENT_PENDING,
        db_index=True,
    )
    payment_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    payment_note = models.TextField(blank=True, default='')
    locked = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = TreatmentQuerySet.as_manager()

    class Meta:
        db_table = 'treatments'
        ordering = ['-created_at', '-id']
        constraints = [
            models.CheckConstraint(
                condition=Q(cost__gte=0),
                name='treatment_cost_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(payment_amount__gte=0) & Q(payment_amount__lte=F('cost')),
                name='treatment_payment_within_cost',
            ),
        ]

    def __str__(self) -> str:
        return f"Treatment #{self.id} patient_id={self.patient_id} {self.procedure} ({self.status})"

    @property
    def outstanding(self) -> Decimal:
        return self.cost - self.payment_amount

    @classmethod
    def can_transition(cls, current: str, new: str) -> bool:
        if current == new:
            return True
        return new in cls.TRANSITIONS.get(current, frozenset())

    @classmethod
    def payment_status_for(cls, cost: Decimal, paid: Decimal) -> str:
        if paid >= cost:
            return cls.PAYMENT_PAID
        if paid > 0:
            return cls.PAYMENT_PARTIAL
        return cls.PAYMENT_PENDING
