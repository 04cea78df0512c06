"""Patient registration and maintenance.

Registration without an explicit doctor routes the patient through the
doctor queue in the same transaction; with a doctor it is a manual
assignment.
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from klinik_backend.core import audit
from klinik_backend.core.exceptions import NotFoundError, ValidationError, persistence_guard
from klinik_backend.core.models import User
from klinik_backend.core.permissions import Capability, require, visible_patients
from klinik_backend.patients.models import Patient
from klinik_backend.patients.utils import normalize_phone_number

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'phone', 'anamnez')


def _clean_name(value) -> str:
    name = (value or '').strip()
    if not name:
        raise ValidationError('name is required', field='name')
    return name


def _clean_phone(value) -> str:
    phone = normalize_phone_number(value)
    if phone is None:
        raise ValidationError('phone must be a 10-digit number starting with 5', field='phone')
    return phone


def _resolve_doctor(doctor_id: int) -> User:
    doctor = (
        User.objects.using('default')
        .select_related('role')
        .filter(id=doctor_id, is_active=True)
        .first()
    )
    if doctor is None:
        raise NotFoundError(f'Doctor with ID {doctor_id} not found or inactive', field='doctor_id')
    if not doctor.is_clinician:
        raise ValidationError('Specified user is not a doctor', field='doctor_id')
    return doctor


def get_patient(*, patient_id: int, user=None, for_update: bool = False) -> Patient:
    """Fetch a live patient, optionally restricted to ``user``'s visibility scope."""
    qs = Patient.objects.using('default').alive()
    if for_update:
        qs = qs.select_for_update()
    if user is not None:
        qs = visible_patients(user, qs)
    patient = qs.filter(id=patient_id).first()
    if patient is None:
        raise NotFoundError(f'Patient with ID {patient_id} not found', field='patient_id')
    return patient


def list_patients(*, user, search: str | None = None):
    qs = visible_patients(user, Patient.objects.using('default').alive().select_related('assigned_doctor'))
    if search:
        digits = ''.join(ch for ch in search if ch.isdigit())
        if digits:
            qs = qs.filter(phone__contains=digits)
        else:
            qs = qs.filter(name__icontains=search.strip())
    return qs.order_by('name', 'id')


def create_patient(*, data: dict, user) -> Patient:
    """Register a patient.

    Args:
        data: name, phone (required); anamnez, doctor_id (optional)
        user: acting user

    Raises:
        ValidationError, PermissionDeniedError, NotFoundError,
        NoActiveDoctorsError (queue path with an empty rotation)
    """
    require(user, Capability.CREATE_PATIENT)
    name = _clean_name(data.get('name'))
    phone = _clean_phone(data.get('phone'))
    anamnez = (data.get('anamnez') or '').strip()
    doctor_id = data.get('doctor_id')

    # Imported here: doctor_queue.services imports this app's models.
    from klinik_backend.doctor_queue.services import assign_next

    with persistence_guard():
        with transaction.atomic(using='default'):
            patient = Patient.objects.using('default').create(
                name=name,
                phone=phone,
                anamnez=anamnez,
            )
            audit.record(user, audit.CREATE_PATIENT, {'patient_id': patient.id, 'name': name})

            if doctor_id is not None:
                _assign_manually(patient, _resolve_doctor(doctor_id), user)
            else:
                assign_next(patient_id=patient.id, user=user)
                patient.refresh_from_db(using='default')

    logger.info('Patient %s registered (assignment=%s)', patient.id, patient.assignment_type)
    return patient


def _assign_manually(patient: Patient, doctor: User, user) -> None:
    patient.assigned_doctor = doctor
    patient.assignment_type = Patient.ASSIGNMENT_MANUAL
    patient.assignment_date = timezone.now()
    patient.save(using='default', update_fields=['assigned_doctor', 'assignment_type', 'assignment_date', 'updated_at'])
    audit.record(
        user,
        audit.ASSIGN_PATIENT,
        {'patient_id': patient.id, 'doctor_id': doctor.id, 'assignment_type': Patient.ASSIGNMENT_MANUAL},
    )


def assign_manually(*, patient_id: int, doctor_id: int, user) -> Patient:
    """Hand a patient to a doctor chosen by the user."""
    with persistence_guard():
        with transaction.atomic(using='default'):
            patient = get_patient(patient_id=patient_id, for_update=True)
            require(user, Capability.EDIT_PATIENT, patient.assigned_doctor_id)
            doctor = _resolve_doctor(doctor_id)
            _assign_manually(patient, doctor, user)
    return patient


def update_patient(*, patient_id: int, patch: dict, user) -> Patient:
    unknown = set(patch) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])

    with persistence_guard():
        with transaction.atomic(using='default'):
            patient = get_patient(patient_id=patient_id, for_update=True)
            require(user, Capability.EDIT_PATIENT, patient.assigned_doctor_id)

            changes = {}
            if 'name' in patch:
                changes['name'] = _clean_name(patch['name'])
            if 'phone' in patch:
                changes['phone'] = _clean_phone(patch['phone'])
            if 'anamnez' in patch:
                changes['anamnez'] = (patch['anamnez'] or '').strip()

            changes = {k: v for k, v in changes.items() if getattr(patient, k) != v}
            if not changes:
                return patient

            for attr, value in changes.items():
                setattr(patient, attr, value)
            patient.save(using='default', update_fields=[*changes, 'updated_at'])

            audit.record(user, audit.UPDATE_PATIENT, {'patient_id': patient.id, 'fields': sorted(changes)})

    return patient


def delete_patient(*, patient_id: int, user) -> None:
    """Soft delete. Appointments and treatments stay for reporting."""
    require(user, Capability.DELETE_PATIENT)
    with persistence_guard():
        with transaction.atomic(using='default'):
            patient = get_patient(patient_id=patient_id, for_update=True)
            patient.deleted_at = timezone.now()
            patient.save(using='default', update_fields=['deleted_at', 'updated_at'])
            audit.record(user, audit.DELETE_PATIENT, {'patient_id': patient.id, 'name': patient.name})
