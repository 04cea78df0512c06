"""User management: doctors and passwords.

Doctor activation drives doctor queue membership, so every activation
change runs ``sync_doctor_membership`` in the same transaction.
"""

from __future__ import annotations

import logging

from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from klinik_backend.core import audit
from klinik_backend.core.exceptions import NotFoundError, ValidationError, persistence_guard
from klinik_backend.core.models import Role, User
from klinik_backend.core.permissions import Capability, require

logger = logging.getLogger(__name__)


def _get_user(user_id: int, *, lock: bool = False) -> User:
    qs = User.objects.using('default').select_related('role')
    if lock:
        qs = qs.select_for_update(of=('self',))
    target = qs.filter(id=user_id).first()
    if target is None:
        raise NotFoundError(f'User with ID {user_id} not found', field='id')
    return target


def list_doctors(*, include_inactive: bool = False):
    qs = User.objects.using('default').select_related('role').filter(role__name=Role.DOCTOR)
    if not include_inactive:
        qs = qs.filter(is_active=True)
    return qs.order_by('last_name', 'first_name', 'id')


def create_doctor(*, data: dict, user) -> User:
    """Create a doctor account; active doctors join the queue immediately."""
    require(user, Capability.MANAGE_USERS)
    from klinik_backend.doctor_queue.services import sync_doctor_membership

    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username:
        raise ValidationError('username is required', field='username')
    if User.objects.using('default').filter(username=username).exists():
        raise ValidationError('A user with this username already exists', field='username')
    try:
        validate_password(password)
    except DjangoValidationError as exc:
        raise ValidationError(' '.join(exc.messages), field='password') from None

    with persistence_guard(conflict_message='A user with this username already exists'):
        with transaction.atomic(using='default'):
            role, _ = Role.objects.using('default').get_or_create(
                name=Role.DOCTOR,
                defaults={'label': 'Doctor'},
            )
            doctor = User.objects.db_manager('default').create_user(
                username=username,
                password=password,
                email=data.get('email') or '',
                first_name=data.get('first_name') or '',
                last_name=data.get('last_name') or '',
                role=role,
            )
            audit.record(user, audit.CREATE_DOCTOR, {'doctor_id': doctor.id, 'username': username})
            sync_doctor_membership(doctor=doctor, user=user)

    logger.info('Doctor %s (%s) created', doctor.id, username)
    return doctor


def set_doctor_active(*, doctor_id: int, active: bool, user) -> User:
    """Activate or deactivate a doctor.

    Deactivation removes the doctor from the queue; patients and
    appointments already assigned stay with them.
    """
    require(user, Capability.MANAGE_USERS)
    from klinik_backend.doctor_queue.services import sync_doctor_membership

    with persistence_guard():
        with transaction.atomic(using='default'):
            doctor = _get_user(doctor_id, lock=True)
            if not doctor.is_clinician:
                raise ValidationError('Specified user is not a doctor', field='doctor_id')
            if doctor.is_active == active:
                return doctor

            doctor.is_active = active
            doctor.save(using='default', update_fields=['is_active'])
            audit.record(
                user,
                audit.ACTIVATE_DOCTOR if active else audit.DEACTIVATE_DOCTOR,
                {'doctor_id': doctor.id},
            )
            sync_doctor_membership(doctor=doctor, user=user)

    return doctor


def deactivate_doctor(*, doctor_id: int, user) -> User:
    return set_doctor_active(doctor_id=doctor_id, active=False, user=user)


def activate_doctor(*, doctor_id: int, user) -> User:
    return set_doctor_active(doctor_id=doctor_id, active=True, user=user)


def change_password(*, target_id: int, new_password: str, user, old_password: str | None = None) -> None:
    """Change a password.

    Users may change their own password by confirming the old one; changing
    someone else's requires ``changeOtherUserPassword``.
    """
    is_self = getattr(user, 'id', None) == target_id
    if not is_self:
        require(user, Capability.CHANGE_OTHER_USER_PASSWORD)

    with persistence_guard():
        with transaction.atomic(using='default'):
            target = _get_user(target_id, lock=True)
            if is_self and not target.check_password(old_password or ''):
                raise ValidationError('Current password is incorrect', field='old_password')
            try:
                validate_password(new_password, user=target)
            except DjangoValidationError as exc:
                raise ValidationError(' '.join(exc.messages), field='new_password') from None

            target.set_password(new_password)
            target.save(using='default', update_fields=['password'])
            audit.record(user, audit.CHANGE_PASSWORD, {'target_user_id': target.id, 'self': is_self})

    logger.info('Password changed for user %s by user %s', target_id, getattr(user, 'id', None))
