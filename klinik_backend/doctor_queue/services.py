"""
Doctor queue service.

Assigns new, unassigned patients to active doctors in rotation and keeps
the rotation consistent when doctors enter or leave it.

Architecture Rules:
- Every read-modify-write of the rotation runs in ``transaction.atomic()``
  after locking the active entries with ``select_for_update()``, so
  concurrent ``assign_next`` calls are serialized.
- The rotation pointer is data: after an assignment the chosen doctor moves
  to the last position and gets a fresh ``last_assigned_at``.
- Errors are the core types from ``core.exceptions``.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from klinik_backend.core import audit
from klinik_backend.core.exceptions import (
    NoActiveDoctorsError,
    NotFoundError,
    ValidationError,
    persistence_guard,
)
from klinik_backend.core.models import Role, User
from klinik_backend.core.permissions import Capability, require
from klinik_backend.doctor_queue.models import DoctorQueueEntry
from klinik_backend.patients.models import Patient

logger = logging.getLogger(__name__)

STRATEGY_LEAST_RECENTLY_ASSIGNED = 'least_recently_assigned'
STRATEGY_ROUND_ROBIN = 'round_robin'

STRATEGIES = (STRATEGY_LEAST_RECENTLY_ASSIGNED, STRATEGY_ROUND_ROBIN)


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def get_strategy() -> str:
    strategy = getattr(settings, 'DOCTOR_QUEUE_STRATEGY', STRATEGY_LEAST_RECENTLY_ASSIGNED)
    if strategy not in STRATEGIES:
        logger.warning('Unknown DOCTOR_QUEUE_STRATEGY=%r, falling back to %s', strategy, STRATEGY_LEAST_RECENTLY_ASSIGNED)
        return STRATEGY_LEAST_RECENTLY_ASSIGNED
    return strategy


def pick_next(entries: list[DoctorQueueEntry], strategy: str | None = None) -> DoctorQueueEntry:
    """Choose the doctor that receives the next patient.

    least_recently_assigned: oldest ``rotation_time`` wins, ties broken by
    ascending position. round_robin: lowest position wins.
    """
    if not entries:
        raise NoActiveDoctorsError()
    strategy = strategy or get_strategy()
    if strategy == STRATEGY_ROUND_ROBIN:
        return min(entries, key=lambda e: (e.position, e.doctor_id))
    return min(entries, key=lambda e: (e.rotation_time, e.position, e.doctor_id))


def _locked_active_entries() -> list[DoctorQueueEntry]:
    return list(
        DoctorQueueEntry.objects.using('default')
        .select_for_update()
        .select_related('doctor')
        .filter(active=True)
        .order_by('position', 'doctor_id')
    )


def _close_gap(entries: list[DoctorQueueEntry], removed_position: int) -> None:
    """Shift every entry behind ``removed_position`` one place forward.

    Rows are updated one at a time in ascending order so the partial unique
    index on ``position`` never sees a duplicate.
    """
    for entry in entries:
        if entry.position is not None and entry.position > removed_position:
            entry.position -= 1
            entry.save(using='default', update_fields=['position'])


def _move_to_back(chosen: DoctorQueueEntry, entries: list[DoctorQueueEntry]) -> None:
    old_position = chosen.position
    chosen.position = None
    chosen.save(using='default', update_fields=['position'])
    others = [e for e in entries if e.doctor_id != chosen.doctor_id]
    _close_gap(others, old_position)
    chosen.position = len(others) + 1


def _resolve_clinician(doctor_id: int) -> User:
    doctor = User.objects.using('default').select_related('role').filter(id=doctor_id).first()
    if doctor is None:
        raise NotFoundError(f'Doctor with ID {doctor_id} not found', field='doctor_id')
    if not doctor.is_clinician:
        raise ValidationError('Specified user is not a doctor', field='doctor_id')
    return doctor


# ---------------------------------------------------------------------------
# Rotation membership
# ---------------------------------------------------------------------------

def enqueue_doctor(*, doctor_id: int, user) -> DoctorQueueEntry:
    """Put a doctor at the back of the rotation."""
    require(user, Capability.MANAGE_DOCTOR_QUEUE)
    doctor = _resolve_clinician(doctor_id)
    if not doctor.is_active:
        raise ValidationError('Inactive doctors cannot join the queue', field='doctor_id')

    with persistence_guard(conflict_message='The doctor queue changed concurrently; retry.'):
        with transaction.atomic(using='default'):
            entries = _locked_active_entries()
            if any(e.doctor_id == doctor.id for e in entries):
                raise ValidationError('Doctor is already in the queue', field='doctor_id')

            entry, _created = DoctorQueueEntry.objects.using('default').get_or_create(doctor=doctor)
            entry.active = True
            entry.position = len(entries) + 1
            entry.activated_at = timezone.now()
            entry.save(using='default')

            audit.record(user, audit.ENQUEUE_DOCTOR, {'doctor_id': doctor.id, 'position': entry.position})

    logger.info('Doctor %s joined the queue at position %s', doctor.id, entry.position)
    return entry


def dequeue_doctor(*, doctor_id: int, user) -> None:
    """Take a doctor out of the rotation.

    Patients already assigned to the doctor stay with them.
    """
    require(user, Capability.MANAGE_DOCTOR_QUEUE)

    with persistence_guard(conflict_message='The doctor queue changed concurrently; retry.'):
        with transaction.atomic(using='default'):
            entries = _locked_active_entries()
            entry = next((e for e in entries if e.doctor_id == doctor_id), None)
            if entry is None:
                raise NotFoundError(f'Doctor with ID {doctor_id} is not in the queue', field='doctor_id')

            removed_position = entry.position
            entry.active = False
            entry.position = None
            entry.save(using='default', update_fields=['active', 'position'])
            _close_gap(entries, removed_position)

            audit.record(user, audit.DEQUEUE_DOCTOR, {'doctor_id': doctor_id, 'position': removed_position})

    logger.info('Doctor %s left the queue (was position %s)', doctor_id, removed_position)


def queue_snapshot() -> list[DoctorQueueEntry]:
    """Active rotation in position order."""
    return list(
        DoctorQueueEntry.objects.using('default')
        .select_related('doctor')
        .filter(active=True, doctor__is_active=True)
        .order_by('position', 'doctor_id')
    )


def peek_next() -> DoctorQueueEntry | None:
    """The doctor ``assign_next`` would choose right now (no lock, no write)."""
    entries = queue_snapshot()
    if not entries:
        return None
    return pick_next(entries)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

def assign_next(*, patient_id: int, user) -> int:
    """Assign an unassigned patient to the next doctor in rotation.

    Returns the chosen doctor's ID.

    Raises:
        PermissionDeniedError: actor may not register patients
        NotFoundError: patient missing or deleted
        ValidationError: patient already has a doctor
        NoActiveDoctorsError: rotation is empty
    """
    require(user, Capability.CREATE_PATIENT)

    with persistence_guard(conflict_message='The doctor queue changed concurrently; retry.'):
        with transaction.atomic(using='default'):
            patient = (
                Patient.objects.using('default')
                .alive()
                .select_for_update()
                .filter(id=patient_id)
                .first()
            )
            if patient is None:
                raise NotFoundError(f'Patient with ID {patient_id} not found', field='patient_id')
            if patient.assigned_doctor_id is not None:
                raise ValidationError('Patient already has an assigned doctor', field='patient_id')

            entries = _locked_active_entries()
            chosen = pick_next([e for e in entries if e.doctor.is_active])

            now = timezone.now()
            _move_to_back(chosen, entries)
            chosen.last_assigned_at = now
            chosen.assignment_count += 1
            chosen.save(using='default', update_fields=['position', 'last_assigned_at', 'assignment_count'])

            patient.assigned_doctor_id = chosen.doctor_id
            patient.assignment_type = Patient.ASSIGNMENT_QUEUE
            patient.assignment_date = now
            patient.save(using='default', update_fields=['assigned_doctor', 'assignment_type', 'assignment_date', 'updated_at'])

            audit.record(
                user,
                audit.ASSIGN_PATIENT,
                {'patient_id': patient.id, 'doctor_id': chosen.doctor_id, 'assignment_type': Patient.ASSIGNMENT_QUEUE},
            )

    logger.info('Patient %s assigned to doctor %s via queue', patient_id, chosen.doctor_id)
    return chosen.doctor_id


def sync_doctor_membership(*, doctor: User, user) -> None:
    """Align queue membership with the doctor's active flag and role."""
    entry = DoctorQueueEntry.objects.using('default').filter(doctor=doctor).first()
    in_rotation = entry is not None and entry.active
    eligible = doctor.is_active and doctor.role_name == Role.DOCTOR

    if eligible and not in_rotation:
        enqueue_doctor(doctor_id=doctor.id, user=user)
    elif not eligible and in_rotation:
        dequeue_doctor(doctor_id=doctor.id, user=user)
