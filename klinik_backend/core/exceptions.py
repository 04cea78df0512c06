"""
Error taxonomy shared by the scheduling, queue, patient and treatment services.

Services raise these; views translate them to DRF responses through
``error_response``. Every error carries a machine-readable ``kind`` and a
human-readable message so the calling surface can render a localized text.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from django.db import DatabaseError, IntegrityError


@dataclass
class Conflict:
    """Represents a single overlapping booking."""
    type: str  # 'doctor_conflict'
    model: str  # 'Appointment'
    id: int | None = None
    message: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {
            'type': self.type,
            'model': self.model,
        }
        if self.id is not None:
            result['id'] = self.id
        if self.message:
            result['message'] = self.message
        if self.meta:
            result['meta'] = self.meta
        return result


class ClinicError(Exception):
    """Base exception for all core errors."""

    kind = 'error'
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None, meta: dict[str, Any] | None = None):
        self.message = message
        self.field = field
        self.meta = meta or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = {'kind': self.kind, 'detail': self.message}
        if self.field:
            result['field'] = self.field
        if self.meta:
            result['meta'] = self.meta
        return result


class ValidationError(ClinicError):
    """Malformed or missing fields, or an illegal state transition."""

    kind = 'validation_error'
    status_code = 400


class ImmutableRecordError(ValidationError):
    """Raised on any attempt to modify or remove an append-only record."""

    kind = 'immutable_record'


class ConflictError(ClinicError):
    """
    Raised when a booking overlaps an existing one for the same doctor.

    Contains a list of Conflict objects describing each overlap found.
    Never retried automatically; the caller must pick another slot.
    """

    kind = 'conflict'
    status_code = 409

    def __init__(self, message: str = 'Scheduling conflicts detected', *, conflicts: list[Conflict] | None = None, **kwargs):
        self.conflicts = conflicts or []
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result['conflicts'] = [c.to_dict() for c in self.conflicts]
        return result


class PermissionDeniedError(ClinicError):
    kind = 'permission_denied'
    status_code = 403

    def __init__(self, message: str = 'You do not have permission to perform this action.', *, capability: str | None = None, **kwargs):
        self.capability = capability
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.capability:
            result['capability'] = self.capability
        return result


class NotFoundError(ClinicError):
    """Referenced patient/doctor/appointment/treatment is missing or soft-deleted."""

    kind = 'not_found'
    status_code = 404


class NoActiveDoctorsError(ClinicError):
    kind = 'no_active_doctors'
    status_code = 409

    def __init__(self, message: str = 'No active doctor is available in the queue.', **kwargs):
        super().__init__(message, **kwargs)


class PersistenceError(ClinicError):
    """Transient storage failure. The caller may retry; the core does not."""

    kind = 'persistence_error'
    status_code = 503


@contextmanager
def persistence_guard(*, conflict_message: str = 'The record was changed concurrently.'):
    """Translate database exceptions raised inside the block.

    IntegrityError means another writer won the race for a constrained row
    (unique slot, queue position) and is reported as ConflictError. Any
    other DatabaseError becomes PersistenceError.
    """
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(conflict_message) from exc
    except DatabaseError as exc:
        raise PersistenceError(f'Storage failure: {exc}') from exc


def error_response(exc: ClinicError):
    """Render a core error as a DRF response."""
    from rest_framework.response import Response

    return Response(exc.to_dict(), status=exc.status_code)
