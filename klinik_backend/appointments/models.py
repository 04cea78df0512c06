"""Appointment model.

An appointment occupies the half-open interval
``[appointment_date, appointment_date + duration_minutes)`` on its doctor's
calendar while its status is ``scheduled`` or ``confirmed``. Cancelled and
other terminal appointments keep their row but no longer block the slot.
"""

from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import Q


class Appointment(models.Model):
	"""A booked visit of a patient with a doctor.

	Status machine:
	- scheduled -> confirmed | cancelled
	- confirmed -> completed | cancelled | no_show
	- completed, cancelled, no_show are terminal
	"""
	STATUS_SCHEDULED = 'scheduled'
	STATUS_CONFIRMED = 'confirmed'
	STATUS_COMPLETED = 'completed'
	STATUS_CANCELLED = 'cancelled'
	STATUS_NO_SHOW = 'no_show'

	STATUS_CHOICES = (
		(STATUS_SCHEDULED, STATUS_SCHEDULED),
		(STATUS_CONFIRMED, STATUS_CONFIRMED),
		(STATUS_COMPLETED, STATUS_COMPLETED),
		(STATUS_CANCELLED, STATUS_CANCELLED),
		(STATUS_NO_SHOW, STATUS_NO_SHOW),
	)

	# Statuses that occupy the doctor's time slot.
	ACTIVE_STATUSES = (STATUS_SCHEDULED, STATUS_CONFIRMED)
	TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW)

	TRANSITIONS = {
		STATUS_SCHEDULED: frozenset({STATUS_CONFIRMED, STATUS_CANCELLED}),
		STATUS_CONFIRMED: frozenset({STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW}),
		STATUS_COMPLETED: frozenset(),
		STATUS_CANCELLED: frozenset(),
		STATUS_NO_SHOW: frozenset(),
	}

	patient = models.ForeignKey(
		'patients.Patient',
		on_delete=models.PROTECT,
		related_name='appointments',
	)
	doctor = models.ForeignKey(
		settings.AUTH_USER_MODEL,
		on_delete=models.PROTECT,
		related_name='appointments',
	)
	appointment_date = models.DateTimeField(db_index=True)
	duration_minutes = models.PositiveIntegerField()
	status = models.CharField(
		max_length=20,
		choices=STATUS_CHOICES,
		default=STATUS_SCHEDULED,
	)
	notes = models.TextField(blank=True, default='')
	idempotency_key = models.CharField(max_length=64, unique=True, null=True, blank=True)
	created_by = models.ForeignKey(
		settings.AUTH_USER_MODEL,
		null=True,
		blank=True,
		on_delete=models.SET_NULL,
		related_name='created_appointments',
	)
	created_at = models.DateTimeField(auto_now_add=True)
	updated_at = models.DateTimeField(auto_now=True)

	class Meta:
		db_table = 'appointments'
		ordering = ['appointment_date', 'id']
		indexes = [
			models.Index(fields=['doctor', 'appointment_date'], name='appointment_doctor__3e7b1a_idx'),
			models.Index(fields=['patient', 'appointment_date'], name='appointment_patient_8d2c4f_idx'),
		]
		constraints = [
			# Backstop for racing inserts: two live bookings can never start
			# at the same instant for one doctor.
			models.UniqueConstraint(
				fields=['doctor', 'appointment_date'],
				condition=Q(status__in=['scheduled', 'confirmed']),
				name='uniq_active_appointment_start_per_doctor',
			),
		]

	def __str__(self) -> str:
		return f"Appointment #{self.id} doctor_id={self.doctor_id} {self.appointment_date:%Y-%m-%d %H:%M} ({self.status})"

	@property
	def end_time(self):
		return self.appointment_date + timedelta(minutes=self.duration_minutes)

	@property
	def is_active(self) -> bool:
		return self.status in self.ACTIVE_STATUSES

	@classmethod
	def can_transition(cls, current: str, new: str) -> bool:
		if current == new:
			return True
		return new in cls.TRANSITIONS.get(current, frozenset())
