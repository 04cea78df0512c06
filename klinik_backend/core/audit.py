"""Activity log recorder.

``record`` is best-effort: the write is scheduled for after the surrounding
transaction commits and handed to Celery. If the broker cannot take the
task, the entry is written inline instead. A failure of both paths is
logged and never reaches the caller; the business operation has already
committed at that point.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction

logger = logging.getLogger(__name__)

LOGIN = 'LOGIN'
CREATE_APPOINTMENT = 'CREATE_APPOINTMENT'
UPDATE_APPOINTMENT = 'UPDATE_APPOINTMENT'
CANCEL_APPOINTMENT = 'CANCEL_APPOINTMENT'
DELETE_APPOINTMENT = 'DELETE_APPOINTMENT'
CREATE_PATIENT = 'CREATE_PATIENT'
UPDATE_PATIENT = 'UPDATE_PATIENT'
DELETE_PATIENT = 'DELETE_PATIENT'
ASSIGN_PATIENT = 'ASSIGN_PATIENT'
ENQUEUE_DOCTOR = 'ENQUEUE_DOCTOR'
DEQUEUE_DOCTOR = 'DEQUEUE_DOCTOR'
CREATE_DOCTOR = 'CREATE_DOCTOR'
DEACTIVATE_DOCTOR = 'DEACTIVATE_DOCTOR'
ACTIVATE_DOCTOR = 'ACTIVATE_DOCTOR'
CREATE_TREATMENT = 'CREATE_TREATMENT'
UPDATE_TREATMENT = 'UPDATE_TREATMENT'
DELETE_TREATMENT = 'DELETE_TREATMENT'
COMPLETE_TREATMENT = 'COMPLETE_TREATMENT'
CANCEL_TREATMENT = 'CANCEL_TREATMENT'
ADD_PAYMENT = 'ADD_PAYMENT'
LOCK_TREATMENTS = 'LOCK_TREATMENTS'
CHANGE_PASSWORD = 'CHANGE_PASSWORD'


def _actor_fields(actor) -> dict[str, Any]:
    if actor is None or not getattr(actor, 'is_authenticated', False):
        return {'user_id': None, 'user_name': 'system'}
    name = getattr(actor, 'display_name', None) or getattr(actor, 'username', '')
    return {'user_id': actor.id, 'user_name': name}


def _jsonable(details: dict[str, Any] | None) -> dict[str, Any]:
    # Celery's JSON serializer does not know Decimal/datetime/UUID.
    return json.loads(json.dumps(details or {}, cls=DjangoJSONEncoder))


def record(actor, action_type: str, details: dict[str, Any] | None = None, *, using: str = 'default') -> None:
    """Append one activity log entry once the current transaction commits."""
    try:
        payload = {
            **_actor_fields(actor),
            'action_type': action_type,
            'details': _jsonable(details),
        }
    except (TypeError, ValueError):
        logger.exception('Activity log payload not serializable (action=%s)', action_type)
        return

    def _dispatch():
        from klinik_backend.core.tasks import write_activity_log

        try:
            write_activity_log.delay(**payload)
            return
        except Exception:
            logger.exception(
                'Activity log dispatch failed, writing inline (action=%s, user_id=%s)',
                action_type,
                payload['user_id'],
            )

        try:
            write_activity_log(**payload)
        except Exception:
            logger.exception(
                'Activity log entry lost (action=%s, user_id=%s)',
                action_type,
                payload['user_id'],
            )

    transaction.on_commit(_dispatch, using=using)
