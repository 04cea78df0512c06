"""Core permissions for RBAC (Role-Based Access Control).

Two layers:

- ``check``/``require``: the capability gate. A pure lookup of
  (role, capability) in ``CAPABILITY_TABLE`` plus an ownership comparison
  for "own only" entries. Every service consults it before mutating.
- ``RBACPermission``: coarse DRF permission with read_roles/write_roles,
  used by views to reject unauthenticated or role-less requests early.

Standard roles: admin, doctor, assistant
"""

from __future__ import annotations

import logging
from enum import Enum

from rest_framework.permissions import BasePermission, SAFE_METHODS

from klinik_backend.core.exceptions import PermissionDeniedError

security_logger = logging.getLogger('klinik_backend.security')


class Capability(str, Enum):
    VIEW_ALL_PATIENTS = 'viewAllPatients'
    EDIT_ANY_APPOINTMENT = 'editAnyAppointment'
    DELETE_APPOINTMENT = 'deleteAppointment'
    MANAGE_DOCTOR_QUEUE = 'manageDoctorQueue'
    CHANGE_OTHER_USER_PASSWORD = 'changeOtherUserPassword'
    CREATE_APPOINTMENT = 'createAppointment'
    CREATE_PATIENT = 'createPatient'
    EDIT_PATIENT = 'editPatient'
    DELETE_PATIENT = 'deletePatient'
    ADD_TREATMENT = 'addTreatment'
    EDIT_TREATMENT = 'editTreatment'
    ADD_PAYMENT = 'addPayment'
    SET_PAYMENT_AMOUNT = 'setPaymentAmount'
    VIEW_INCOME = 'viewIncome'
    FINALIZE_REPORTS = 'finalizeReports'
    MANAGE_USERS = 'manageUsers'


# Grant levels
YES = 'yes'
OWN = 'own'

ADMIN = 'admin'
DOCTOR = 'doctor'
ASSISTANT = 'assistant'

# Absence of an entry is a deny.
CAPABILITY_TABLE: dict[str, dict[Capability, str]] = {
    ADMIN: {capability: YES for capability in Capability},
    DOCTOR: {
        Capability.VIEW_ALL_PATIENTS: OWN,
        Capability.EDIT_ANY_APPOINTMENT: OWN,
        Capability.CREATE_APPOINTMENT: OWN,
        Capability.EDIT_PATIENT: OWN,
        Capability.ADD_TREATMENT: OWN,
        Capability.EDIT_TREATMENT: OWN,
        Capability.SET_PAYMENT_AMOUNT: OWN,
    },
    ASSISTANT: {
        Capability.VIEW_ALL_PATIENTS: YES,
        Capability.CREATE_APPOINTMENT: YES,
        Capability.CREATE_PATIENT: YES,
        Capability.EDIT_PATIENT: YES,
        Capability.ADD_TREATMENT: YES,
        Capability.ADD_PAYMENT: YES,
        Capability.SET_PAYMENT_AMOUNT: YES,
    },
}


def role_of(actor) -> str | None:
    if actor is None or not getattr(actor, 'is_authenticated', False):
        return None
    if not getattr(actor, 'is_active', False):
        return None
    role = getattr(actor, 'role', None)
    return getattr(role, 'name', None)


def grant_for(role_name: str | None, capability: Capability) -> str | None:
    if role_name is None:
        return None
    return CAPABILITY_TABLE.get(role_name, {}).get(Capability(capability))


def check(actor, capability: Capability, resource_owner_id: int | None = None) -> bool:
    """Return True if ``actor`` holds ``capability`` for the resource.

    For "own only" grants the resource owner must be the actor; a resource
    without an owner is denied.
    """
    grant = grant_for(role_of(actor), capability)
    if grant == YES:
        return True
    if grant == OWN:
        return resource_owner_id is not None and resource_owner_id == getattr(actor, 'id', None)
    return False


def has_full_scope(actor, capability: Capability) -> bool:
    """True if the actor holds ``capability`` without an ownership restriction."""
    return grant_for(role_of(actor), capability) == YES


def require(actor, capability: Capability, resource_owner_id: int | None = None) -> None:
    """Raise PermissionDeniedError unless ``check`` allows the request."""
    if check(actor, capability, resource_owner_id):
        return
    capability = Capability(capability)
    security_logger.warning(
        'Permission denied: user_id=%s role=%s capability=%s owner_id=%s',
        getattr(actor, 'id', None),
        role_of(actor),
        capability.value,
        resource_owner_id,
    )
    raise PermissionDeniedError(capability=capability.value)


def visible_appointments(actor, queryset):
    """Restrict an Appointment queryset to what ``actor`` may see."""
    if has_full_scope(actor, Capability.VIEW_ALL_PATIENTS):
        return queryset
    if grant_for(role_of(actor), Capability.VIEW_ALL_PATIENTS) == OWN:
        return queryset.filter(doctor_id=actor.id)
    return queryset.none()


def visible_patients(actor, queryset):
    """Restrict a Patient queryset to what ``actor`` may see."""
    if has_full_scope(actor, Capability.VIEW_ALL_PATIENTS):
        return queryset
    if grant_for(role_of(actor), Capability.VIEW_ALL_PATIENTS) == OWN:
        return queryset.filter(assigned_doctor_id=actor.id)
    return queryset.none()


def visible_treatments(actor, queryset):
    """Restrict a Treatment queryset to what ``actor`` may see."""
    if has_full_scope(actor, Capability.VIEW_ALL_PATIENTS):
        return queryset
    if grant_for(role_of(actor), Capability.VIEW_ALL_PATIENTS) == OWN:
        return queryset.filter(doctor_id=actor.id)
    return queryset.none()


class RBACPermission(BasePermission):
    """Base class for RBAC permissions with read_roles/write_roles pattern.

    Subclasses should define:
    - read_roles: set of role names that can perform GET/HEAD/OPTIONS
    - write_roles: set of role names that can perform POST/PUT/PATCH/DELETE

    Example:
        class MyPermission(RBACPermission):
            read_roles = {"admin", "doctor", "assistant"}
            write_roles = {"admin", "assistant"}
    """

    read_roles: set = set()
    write_roles: set = set()

    def has_permission(self, request, view):
        role_name = role_of(getattr(request, "user", None))
        if not role_name:
            return False

        if request.method in SAFE_METHODS:
            return role_name in self.read_roles

        return role_name in self.write_roles


class StaffPermission(RBACPermission):
    """Any authenticated staff member with a role; services decide the rest."""

    read_roles = {ADMIN, DOCTOR, ASSISTANT}
    write_roles = {ADMIN, DOCTOR, ASSISTANT}


class IsAdmin(RBACPermission):
    """Permission: user must have admin role."""

    read_roles = {ADMIN}
    write_roles = {ADMIN}
