"""
Scheduling Engine.

This service layer encapsulates the appointment lifecycle: creation with
conflict detection, updates, status transitions, cancellation, hard
deletion and role-scoped listing. Views and other callers (including the
chat assistant) go through these functions rather than touching the model
directly.

Architecture Rules:
- Every mutation checks the permission gate before writing and records an
  activity log entry after commit.
- Conflict detection and the write run in one ``transaction.atomic()``
  block after locking the doctor row with ``select_for_update()``, so two
  writers can never both pass the check for the same doctor.
- A racing insert that still slips through hits the partial unique
  constraint on (doctor, appointment_date) and surfaces as ConflictError.
- All exceptions are the core types from ``core.exceptions``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from klinik_backend.appointments.models import Appointment
from klinik_backend.core import audit
from klinik_backend.core.exceptions import (
    Conflict,
    ConflictError,
    NotFoundError,
    ValidationError,
    persistence_guard,
)
from klinik_backend.core.models import User
from klinik_backend.core.permissions import Capability, check, require, visible_appointments
from klinik_backend.patients.models import Patient

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('appointment_date', 'duration_minutes', 'status', 'notes', 'doctor_id')
SLOT_STEP_MINUTES = 5


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _max_duration() -> int:
    return getattr(settings, 'APPOINTMENT_MAX_DURATION_MINUTES', 480)


def parse_appointment_date(value) -> datetime:
    """Accept a datetime or an ISO-8601 string; return an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = parse_datetime(value.strip().replace('Z', '+00:00'))
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError('appointment_date is not a valid timestamp', field='appointment_date')
    else:
        raise ValidationError('appointment_date is required', field='appointment_date')

    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_current_timezone())
    return parsed


def parse_duration(value) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError('duration_minutes is required', field='duration_minutes')
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise ValidationError('duration_minutes must be an integer', field='duration_minutes') from None
    if minutes != value and not isinstance(value, str):
        raise ValidationError('duration_minutes must be an integer', field='duration_minutes')
    if minutes <= 0:
        raise ValidationError('duration_minutes must be greater than 0', field='duration_minutes')
    if minutes > _max_duration():
        raise ValidationError(f'duration_minutes must not exceed {_max_duration()}', field='duration_minutes')
    return minutes


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection; touching intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def _resolve_doctor(doctor_id, *, lock: bool = False) -> User:
    if doctor_id is None:
        raise ValidationError('doctor_id is required', field='doctor_id')
    qs = User.objects.using('default').select_related('role').filter(id=doctor_id, is_active=True)
    if lock:
        qs = qs.select_for_update(of=('self',))
    doctor = qs.first()
    if doctor is None:
        raise NotFoundError(f'Doctor with ID {doctor_id} not found or inactive', field='doctor_id')
    if not doctor.is_clinician:
        raise ValidationError('Specified user is not a doctor', field='doctor_id')
    return doctor


def _resolve_patient(patient_id) -> Patient:
    if patient_id is None:
        raise ValidationError('patient_id is required', field='patient_id')
    patient = Patient.objects.using('default').alive().filter(id=patient_id).first()
    if patient is None:
        raise NotFoundError(f'Patient with ID {patient_id} not found', field='patient_id')
    return patient


def _get_appointment(appointment_id, *, lock: bool = False) -> Appointment:
    qs = Appointment.objects.using('default')
    if lock:
        qs = qs.select_for_update()
    appointment = qs.filter(id=appointment_id).first()
    if appointment is None:
        raise NotFoundError(f'Appointment with ID {appointment_id} not found', field='id')
    return appointment


# ---------------------------------------------------------------------------
# Conflict Detection
# ---------------------------------------------------------------------------

def find_conflicts(
    *,
    doctor_id: int,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> list[Conflict]:
    """
    Return the doctor's live appointments overlapping ``[start, start+duration)``.

    Only ``scheduled``/``confirmed`` appointments block a slot. Candidates
    are narrowed in SQL by start time (no appointment is longer than the
    configured maximum) and checked exactly in Python.
    """
    end = start + timedelta(minutes=duration_minutes)
    candidates = Appointment.objects.using('default').filter(
        doctor_id=doctor_id,
        status__in=Appointment.ACTIVE_STATUSES,
        appointment_date__lt=end,
        appointment_date__gt=start - timedelta(minutes=_max_duration()),
    )
    if exclude_appointment_id is not None:
        candidates = candidates.exclude(id=exclude_appointment_id)

    conflicts: list[Conflict] = []
    for appt in candidates.order_by('appointment_date', 'id'):
        if intervals_overlap(start, end, appt.appointment_date, appt.end_time):
            conflicts.append(Conflict(
                type='doctor_conflict',
                model='Appointment',
                id=appt.id,
                message=f'Doctor has overlapping appointment #{appt.id}',
                meta={
                    'start': appt.appointment_date.isoformat(),
                    'end': appt.end_time.isoformat(),
                },
            ))
    return conflicts


def _raise_on_conflicts(conflicts: list[Conflict]) -> None:
    if conflicts:
        raise ConflictError('Doctor unavailable.', conflicts=conflicts)


def _find_by_idempotency_key(key: str) -> Appointment | None:
    return Appointment.objects.using('default').filter(idempotency_key=key).first()


def _replay(existing: Appointment, *, draft: dict, user) -> Appointment:
    """Return ``existing`` when the caller is retrying that same booking.

    A key reused for a different booking, or one the actor may not see,
    is rejected instead of handing back someone else's appointment.
    """
    same_booking = all(getattr(existing, attr) == value for attr, value in draft.items())
    if not same_booking or not check(user, Capability.CREATE_APPOINTMENT, existing.doctor_id):
        raise ValidationError(
            'idempotency_key was already used for a different appointment',
            field='idempotency_key',
        )
    logger.info('Idempotent replay of appointment #%s', existing.id)
    return existing


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def create_appointment(*, data: dict, user) -> Appointment:
    """
    Validate, conflict-check and persist a new appointment.

    Args:
        data: Dictionary with appointment data:
            - patient_id: int (required)
            - doctor_id: int (required)
            - appointment_date: datetime or ISO string (required)
            - duration_minutes: int > 0 (required)
            - notes: str (optional)
            - idempotency_key: str (optional; a repeated key returns the
              already committed appointment)
        user: The acting user (permission gate + audit)

    Returns:
        The created Appointment, always with status ``scheduled``.

    Raises:
        ValidationError, NotFoundError, PermissionDeniedError,
        ConflictError, PersistenceError
    """
    start = parse_appointment_date(data.get('appointment_date'))
    duration = parse_duration(data.get('duration_minutes'))
    doctor_id = data.get('doctor_id')
    patient_id = data.get('patient_id')
    if doctor_id is None:
        raise ValidationError('doctor_id is required', field='doctor_id')
    if patient_id is None:
        raise ValidationError('patient_id is required', field='patient_id')

    try:
        doctor_id, patient_id = int(doctor_id), int(patient_id)
    except (TypeError, ValueError):
        raise ValidationError('doctor_id and patient_id must be integers', field='doctor_id') from None

    require(user, Capability.CREATE_APPOINTMENT, doctor_id)

    idempotency_key = (data.get('idempotency_key') or '').strip() or None
    draft = {
        'doctor_id': doctor_id,
        'patient_id': patient_id,
        'appointment_date': start,
        'duration_minutes': duration,
    }

    with persistence_guard(conflict_message='Doctor unavailable.'):
        with transaction.atomic(using='default'):
            # Retries of one booking share the doctor lock, so the key
            # lookup below sees a row committed by an earlier attempt.
            doctor = _resolve_doctor(doctor_id, lock=True)
            if idempotency_key:
                existing = _find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    return _replay(existing, draft=draft, user=user)

            patient = _resolve_patient(patient_id)

            _raise_on_conflicts(find_conflicts(
                doctor_id=doctor.id,
                start=start,
                duration_minutes=duration,
            ))

            try:
                with transaction.atomic(using='default'):
                    appointment = Appointment.objects.using('default').create(
                        patient=patient,
                        doctor=doctor,
                        appointment_date=start,
                        duration_minutes=duration,
                        status=Appointment.STATUS_SCHEDULED,
                        notes=data.get('notes') or '',
                        idempotency_key=idempotency_key,
                        created_by=user if getattr(user, 'is_authenticated', False) else None,
                    )
            except IntegrityError:
                existing = _find_by_idempotency_key(idempotency_key) if idempotency_key else None
                if existing is None:
                    raise
                return _replay(existing, draft=draft, user=user)

            audit.record(user, audit.CREATE_APPOINTMENT, {
                'appointment_id': appointment.id,
                'patient_id': patient.id,
                'doctor_id': doctor.id,
                'appointment_date': start,
                'duration_minutes': duration,
            })

    logger.info('Appointment #%s created for doctor %s', appointment.id, appointment.doctor_id)
    return appointment


def update_appointment(*, appointment_id: int, patch: dict, user) -> Appointment:
    """
    Apply a partial update.

    Time or doctor changes re-run the conflict check (excluding this
    appointment). Status changes must follow ``Appointment.TRANSITIONS``.
    """
    unknown = set(patch) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])

    with persistence_guard(conflict_message='Doctor unavailable.'):
        with transaction.atomic(using='default'):
            appointment = _get_appointment(appointment_id, lock=True)
            require(user, Capability.EDIT_ANY_APPOINTMENT, appointment.doctor_id)

            changes: dict = {}
            if 'appointment_date' in patch:
                changes['appointment_date'] = parse_appointment_date(patch['appointment_date'])
            if 'duration_minutes' in patch:
                changes['duration_minutes'] = parse_duration(patch['duration_minutes'])
            if 'doctor_id' in patch:
                new_doctor_id = patch['doctor_id']
                if new_doctor_id != appointment.doctor_id:
                    require(user, Capability.EDIT_ANY_APPOINTMENT, new_doctor_id)
                changes['doctor_id'] = new_doctor_id
            if 'notes' in patch:
                changes['notes'] = patch['notes'] or ''
            if 'status' in patch:
                new_status = patch['status']
                if new_status not in Appointment.TRANSITIONS:
                    raise ValidationError(f'Unknown status {new_status!r}', field='status')
                if not Appointment.can_transition(appointment.status, new_status):
                    raise ValidationError(
                        f'Illegal status transition {appointment.status} -> {new_status}',
                        field='status',
                        meta={'from': appointment.status, 'to': new_status},
                    )
                changes['status'] = new_status

            changes = {k: v for k, v in changes.items() if getattr(appointment, k) != v}
            if not changes:
                return appointment

            reschedules = bool({'appointment_date', 'duration_minutes', 'doctor_id'} & set(changes))
            if reschedules and appointment.status in Appointment.TERMINAL_STATUSES:
                raise ValidationError(
                    f'A {appointment.status} appointment cannot be rescheduled',
                    field='appointment_date',
                )

            previous = {k: getattr(appointment, k) for k in changes}
            for attr, value in changes.items():
                setattr(appointment, attr, value)

            if 'doctor_id' in changes or (reschedules and appointment.status in Appointment.ACTIVE_STATUSES):
                doctor = _resolve_doctor(appointment.doctor_id, lock=True)
            if reschedules and appointment.status in Appointment.ACTIVE_STATUSES:
                _raise_on_conflicts(find_conflicts(
                    doctor_id=appointment.doctor_id,
                    start=appointment.appointment_date,
                    duration_minutes=appointment.duration_minutes,
                    exclude_appointment_id=appointment.id,
                ))

            appointment.save(using='default', update_fields=[
                'doctor' if k == 'doctor_id' else k for k in changes
            ] + ['updated_at'])

            audit.record(user, audit.UPDATE_APPOINTMENT, {
                'appointment_id': appointment.id,
                'changes': {k: {'from': previous[k], 'to': changes[k]} for k in changes},
            })

    return appointment


def cancel_appointment(*, appointment_id: int, user) -> Appointment:
    """Move an appointment to ``cancelled``; its slot becomes free.

    Cancelling an already cancelled appointment is a no-op, so a retried
    cancel neither fails nor writes a second log entry.
    """
    with persistence_guard():
        with transaction.atomic(using='default'):
            appointment = _get_appointment(appointment_id, lock=True)
            require(user, Capability.EDIT_ANY_APPOINTMENT, appointment.doctor_id)

            if appointment.status == Appointment.STATUS_CANCELLED:
                return appointment
            if not Appointment.can_transition(appointment.status, Appointment.STATUS_CANCELLED):
                raise ValidationError(
                    f'A {appointment.status} appointment cannot be cancelled',
                    field='status',
                    meta={'from': appointment.status, 'to': Appointment.STATUS_CANCELLED},
                )

            previous_status = appointment.status
            appointment.status = Appointment.STATUS_CANCELLED
            appointment.save(using='default', update_fields=['status', 'updated_at'])

            audit.record(user, audit.CANCEL_APPOINTMENT, {
                'appointment_id': appointment.id,
                'patient_id': appointment.patient_id,
                'doctor_id': appointment.doctor_id,
                'from': previous_status,
            })

    return appointment


def delete_appointment(*, appointment_id: int, user) -> None:
    """Hard delete (admin only). Everyone else cancels."""
    require(user, Capability.DELETE_APPOINTMENT)

    with persistence_guard():
        with transaction.atomic(using='default'):
            appointment = _get_appointment(appointment_id, lock=True)
            snapshot = {
                'appointment_id': appointment.id,
                'patient_id': appointment.patient_id,
                'doctor_id': appointment.doctor_id,
                'appointment_date': appointment.appointment_date,
                'status': appointment.status,
            }
            appointment.delete(using='default')
            audit.record(user, audit.DELETE_APPOINTMENT, snapshot)

    logger.info('Appointment #%s hard-deleted by user %s', appointment_id, getattr(user, 'id', None))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_for_actor(
    *,
    user,
    start: datetime | None = None,
    end: datetime | None = None,
    doctor_id: int | None = None,
    status: str | None = None,
) -> Iterator[Appointment]:
    """
    Yield the appointments ``user`` may see, ordered by start time.

    Doctors without the full ``viewAllPatients`` grant only see their own
    appointments. The result is a one-shot iterator over a fresh query.
    """
    qs = visible_appointments(
        user,
        Appointment.objects.using('default').select_related('patient', 'doctor'),
    )
    if start is not None:
        qs = qs.filter(appointment_date__gte=start)
    if end is not None:
        qs = qs.filter(appointment_date__lt=end)
    if doctor_id is not None:
        qs = qs.filter(doctor_id=doctor_id)
    if status is not None:
        qs = qs.filter(status=status)
    return qs.order_by('appointment_date', 'id').iterator()


def get_for_actor(*, appointment_id: int, user) -> Appointment:
    qs = visible_appointments(
        user,
        Appointment.objects.using('default').select_related('patient', 'doctor'),
    )
    appointment = qs.filter(id=appointment_id).first()
    if appointment is None:
        raise NotFoundError(f'Appointment with ID {appointment_id} not found', field='id')
    return appointment


def free_slots(
    *,
    doctor_id: int,
    day: date,
    duration_minutes: int,
    start_hour: int | None = None,
    end_hour: int | None = None,
) -> list[datetime]:
    """Start times on ``day`` at which a booking would pass the conflict check."""
    duration = parse_duration(duration_minutes)
    doctor = _resolve_doctor(doctor_id)
    start_hour = settings.CLINIC_DAY_START_HOUR if start_hour is None else start_hour
    end_hour = settings.CLINIC_DAY_END_HOUR if end_hour is None else end_hour

    tz = timezone.get_current_timezone()
    window_start = timezone.make_aware(datetime.combine(day, time(hour=start_hour)), tz)
    window_end = timezone.make_aware(datetime.combine(day, time.min), tz) + timedelta(hours=end_hour)
    length = timedelta(minutes=duration)

    busy = [
        (appt.appointment_date, appt.end_time)
        for appt in Appointment.objects.using('default')
        .filter(
            doctor=doctor,
            status__in=Appointment.ACTIVE_STATUSES,
            appointment_date__lt=window_end,
            appointment_date__gt=window_start - timedelta(minutes=_max_duration()),
        )
        .order_by('appointment_date', 'id')
    ]

    slots: list[datetime] = []
    candidate = window_start
    step = timedelta(minutes=SLOT_STEP_MINUTES)
    while candidate + length <= window_end:
        candidate_end = candidate + length
        if not any(intervals_overlap(candidate, candidate_end, b_start, b_end) for b_start, b_end in busy):
            slots.append(candidate)
        candidate += step
    return slots
