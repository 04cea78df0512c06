"""
Celery tasks for the core app.
"""
import logging

from celery import shared_task
from django.db import DatabaseError

logger = logging.getLogger(__name__)


@shared_task(
    name='klinik_backend.core.tasks.write_activity_log',
    acks_late=True,
    autoretry_for=(DatabaseError,),
    retry_backoff=True,
    max_retries=3,
)
def write_activity_log(*, user_id, user_name, action_type, details):
    """
    Persist one activity log entry.

    Args:
        user_id: Acting user's ID (None for system actions)
        user_name: Display name at the time of the action
        action_type: One of the constants in ``core.audit``
        details: JSON-safe payload
    """
    from .models import ActivityLog

    try:
        entry = ActivityLog.objects.using('default').create(
            user_id=user_id,
            user_name=user_name,
            action_type=action_type,
            details=details,
        )
    except DatabaseError:
        logger.exception('ActivityLog write failed (action=%s, user_id=%s)', action_type, user_id)
        raise

    return entry.id
