"""
Treatment service.

Treatments are billed work. Rules:
- ``cost`` is a non-negative Decimal; ``tooth_no`` uses ISO-3950 two-digit
  notation (quadrant 1-8, tooth 1-8) and is optional.
- A treatment is recorded as ``completed`` or ``planned``. Planned work
  either gets completed or cancelled; both are final.
- Only ``notes`` and ``cost`` may change, and only while unlocked. Changing
  the cost needs ``setPaymentAmount``; it can never drop below what was
  already paid.
- Payments accumulate in ``payment_amount`` up to ``cost``;
  ``payment_status`` follows from the two.
- Deletion is soft; deleted rows drop out of every listing and total.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from klinik_backend.core import audit
from klinik_backend.core.exceptions import NotFoundError, ValidationError, persistence_guard
from klinik_backend.core.models import User
from klinik_backend.core.permissions import Capability, require, visible_treatments
from klinik_backend.patients.models import Patient
from klinik_backend.treatments.models import Treatment

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('notes', 'cost')
REMINDER_WINDOW_DAYS = 7


@dataclass
class IncomeSummary:
    start: datetime
    end: datetime
    treatments: list[Treatment] = field(default_factory=list)
    total: Decimal = Decimal('0.00')
    collected: Decimal = Decimal('0.00')

    @property
    def count(self) -> int:
        return len(self.treatments)

    @property
    def outstanding(self) -> Decimal:
        return self.total - self.collected


@dataclass
class TreatmentReminders:
    overdue: list[Treatment] = field(default_factory=list)
    upcoming: list[Treatment] = field(default_factory=list)


def validate_tooth_no(value) -> int | None:
    if value in (None, ''):
        return None
    try:
        tooth_no = int(value)
    except (TypeError, ValueError):
        raise ValidationError('tooth_no must be a two-digit ISO-3950 code', field='tooth_no') from None
    quadrant, tooth = divmod(tooth_no, 10)
    if not (1 <= quadrant <= 8 and 1 <= tooth <= 8):
        raise ValidationError('tooth_no must be a two-digit ISO-3950 code', field='tooth_no')
    return tooth_no


def validate_cost(value, *, field_name: str = 'cost') -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field_name} is required', field=field_name)
    try:
        cost = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f'{field_name} must be a number', field=field_name) from None
    if not cost.is_finite() or cost < 0:
        raise ValidationError(f'{field_name} must be a non-negative amount', field=field_name)
    return cost.quantize(Decimal('0.01'))


def _parse_planned_date(value) -> datetime | None:
    if value in (None, ''):
        return None
    parsed = value if isinstance(value, datetime) else parse_datetime(str(value))
    if parsed is None:
        raise ValidationError('planned_date is not a valid timestamp', field='planned_date')
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_current_timezone())
    return parsed


def _get_treatment(treatment_id: int, *, lock: bool = False) -> Treatment:
    qs = Treatment.objects.using('default').alive()
    if lock:
        qs = qs.select_for_update()
    treatment = qs.filter(id=treatment_id).first()
    if treatment is None:
        raise NotFoundError(f'Treatment with ID {treatment_id} not found', field='id')
    return treatment


def list_treatments(
    *,
    user,
    patient_id: int | None = None,
    status: str | None = None,
    unpaid: bool = False,
):
    """Visible, non-deleted treatments. ``unpaid`` keeps rows with a balance due."""
    qs = visible_treatments(user, Treatment.objects.using('default').alive().select_related('patient', 'doctor'))
    if patient_id is not None:
        qs = qs.filter(patient_id=patient_id)
    if status is not None:
        if status not in Treatment.TRANSITIONS:
            raise ValidationError(f'Unknown status {status!r}', field='status')
        qs = qs.filter(status=status)
    if unpaid:
        qs = qs.exclude(payment_status=Treatment.PAYMENT_PAID).exclude(status=Treatment.STATUS_CANCELLED)
    return qs


def create_treatment(*, data: dict, user) -> Treatment:
    """Record a treatment.

    ``doctor_id`` defaults to the acting user; a doctor may only record
    treatments under their own name. ``status`` is ``completed`` (default)
    or ``planned`` with an optional ``planned_date``.
    """
    doctor_id = data.get('doctor_id') or getattr(user, 'id', None)
    require(user, Capability.ADD_TREATMENT, doctor_id)

    procedure = (data.get('procedure') or '').strip()
    if not procedure:
        raise ValidationError('procedure is required', field='procedure')
    cost = validate_cost(data.get('cost'))
    tooth_no = validate_tooth_no(data.get('tooth_no'))

    status = data.get('status') or Treatment.STATUS_COMPLETED
    if status not in (Treatment.STATUS_PLANNED, Treatment.STATUS_COMPLETED):
        raise ValidationError('status must be planned or completed', field='status')
    planned_date = _parse_planned_date(data.get('planned_date')) if status == Treatment.STATUS_PLANNED else None

    patient_id = data.get('patient_id')
    if patient_id is None:
        raise ValidationError('patient_id is required', field='patient_id')

    with persistence_guard():
        with transaction.atomic(using='default'):
            patient = Patient.objects.using('default').alive().filter(id=patient_id).first()
            if patient is None:
                raise NotFoundError(f'Patient with ID {patient_id} not found', field='patient_id')
            doctor = User.objects.using('default').select_related('role').filter(id=doctor_id).first()
            if doctor is None or not doctor.is_clinician:
                raise NotFoundError(f'Doctor with ID {doctor_id} not found', field='doctor_id')

            treatment = Treatment.objects.using('default').create(
                patient=patient,
                doctor=doctor,
                tooth_no=tooth_no,
                procedure=procedure,
                cost=cost,
                notes=(data.get('notes') or '').strip(),
                status=status,
                planned_date=planned_date,
                completed_date=timezone.now() if status == Treatment.STATUS_COMPLETED else None,
                payment_status=Treatment.payment_status_for(cost, Decimal('0.00')),
            )
            audit.record(user, audit.CREATE_TREATMENT, {
                'treatment_id': treatment.id,
                'patient_id': patient.id,
                'doctor_id': doctor.id,
                'cost': cost,
                'status': status,
            })

    return treatment


def update_treatment(*, treatment_id: int, patch: dict, user) -> Treatment:
    unknown = set(patch) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])

    with persistence_guard():
        with transaction.atomic(using='default'):
            treatment = _get_treatment(treatment_id, lock=True)
            if 'notes' in patch:
                require(user, Capability.EDIT_TREATMENT, treatment.doctor_id)
            if 'cost' in patch:
                require(user, Capability.SET_PAYMENT_AMOUNT, treatment.doctor_id)
            if treatment.locked:
                raise ValidationError('Treatment is locked', field='id')

            changes = {}
            if 'cost' in patch:
                changes['cost'] = validate_cost(patch['cost'])
                if changes['cost'] < treatment.payment_amount:
                    raise ValidationError(
                        f'cost cannot drop below the amount already paid ({treatment.payment_amount})',
                        field='cost',
                    )
            if 'notes' in patch:
                changes['notes'] = (patch['notes'] or '').strip()
            changes = {k: v for k, v in changes.items() if getattr(treatment, k) != v}
            if not changes:
                return treatment

            previous = {k: getattr(treatment, k) for k in changes}
            for attr, value in changes.items():
                setattr(treatment, attr, value)
            update_fields = [*changes, 'updated_at']
            if 'cost' in changes:
                treatment.payment_status = Treatment.payment_status_for(treatment.cost, treatment.payment_amount)
                update_fields.append('payment_status')
            treatment.save(using='default', update_fields=update_fields)

            audit.record(user, audit.UPDATE_TREATMENT, {
                'treatment_id': treatment.id,
                'changes': {k: {'from': previous[k], 'to': changes[k]} for k in changes},
            })

    return treatment


def _transition(*, treatment_id: int, new_status: str, action_type: str, user) -> Treatment:
    with persistence_guard():
        with transaction.atomic(using='default'):
            treatment = _get_treatment(treatment_id, lock=True)
            require(user, Capability.EDIT_TREATMENT, treatment.doctor_id)

            if treatment.status == new_status:
                return treatment
            if not Treatment.can_transition(treatment.status, new_status):
                raise ValidationError(
                    f'Illegal status transition {treatment.status} -> {new_status}',
                    field='status',
                    meta={'from': treatment.status, 'to': new_status},
                )

            previous_status = treatment.status
            treatment.status = new_status
            update_fields = ['status', 'updated_at']
            if new_status == Treatment.STATUS_COMPLETED:
                treatment.completed_date = timezone.now()
                update_fields.append('completed_date')
            treatment.save(using='default', update_fields=update_fields)

            audit.record(user, action_type, {
                'treatment_id': treatment.id,
                'patient_id': treatment.patient_id,
                'from': previous_status,
            })

    return treatment


def complete_treatment(*, treatment_id: int, user) -> Treatment:
    """Mark planned work as done; ``completed_date`` is stamped now."""
    return _transition(
        treatment_id=treatment_id,
        new_status=Treatment.STATUS_COMPLETED,
        action_type=audit.COMPLETE_TREATMENT,
        user=user,
    )


def cancel_treatment(*, treatment_id: int, user) -> Treatment:
    return _transition(
        treatment_id=treatment_id,
        new_status=Treatment.STATUS_CANCELLED,
        action_type=audit.CANCEL_TREATMENT,
        user=user,
    )


def record_payment(*, treatment_id: int, amount, user, note: str = '') -> Treatment:
    """Collect ``amount`` against a treatment's outstanding balance.

    Payments are allowed on locked treatments; the lock only freezes the
    billed figures.
    """
    require(user, Capability.ADD_PAYMENT)
    amount = validate_cost(amount, field_name='amount')
    if amount <= 0:
        raise ValidationError('amount must be greater than 0', field='amount')

    with persistence_guard():
        with transaction.atomic(using='default'):
            treatment = _get_treatment(treatment_id, lock=True)
            if treatment.status == Treatment.STATUS_CANCELLED:
                raise ValidationError('A cancelled treatment cannot be paid', field='status')
            if amount > treatment.outstanding:
                raise ValidationError(
                    f'amount exceeds the outstanding balance ({treatment.outstanding})',
                    field='amount',
                    meta={'outstanding': str(treatment.outstanding)},
                )

            treatment.payment_amount += amount
            treatment.payment_status = Treatment.payment_status_for(treatment.cost, treatment.payment_amount)
            update_fields = ['payment_amount', 'payment_status', 'updated_at']
            note = (note or '').strip()
            if note:
                treatment.payment_note = note
                update_fields.append('payment_note')
            treatment.save(using='default', update_fields=update_fields)

            audit.record(user, audit.ADD_PAYMENT, {
                'treatment_id': treatment.id,
                'patient_id': treatment.patient_id,
                'amount': amount,
                'payment_amount': treatment.payment_amount,
                'payment_status': treatment.payment_status,
                'note': note,
            })

    logger.info('Payment of %s recorded on treatment #%s (%s)', amount, treatment.id, treatment.payment_status)
    return treatment


def delete_treatment(*, treatment_id: int, user) -> None:
    with persistence_guard():
        with transaction.atomic(using='default'):
            treatment = _get_treatment(treatment_id, lock=True)
            require(user, Capability.EDIT_TREATMENT, treatment.doctor_id)
            if treatment.locked:
                raise ValidationError('Treatment is locked', field='id')
            treatment.deleted_at = timezone.now()
            treatment.save(using='default', update_fields=['deleted_at', 'updated_at'])
            audit.record(user, audit.DELETE_TREATMENT, {
                'treatment_id': treatment.id,
                'patient_id': treatment.patient_id,
                'cost': treatment.cost,
            })


def lock_treatments(*, until: datetime, user) -> int:
    """End-of-day lock: freeze every finished treatment created before ``until``.

    Planned work stays open so it can still be completed or cancelled.
    """
    require(user, Capability.FINALIZE_REPORTS)
    with persistence_guard():
        with transaction.atomic(using='default'):
            count = (
                Treatment.objects.using('default')
                .alive()
                .filter(locked=False, created_at__lt=until)
                .exclude(status=Treatment.STATUS_PLANNED)
                .update(locked=True)
            )
            audit.record(user, audit.LOCK_TREATMENTS, {'until': until, 'count': count})
    logger.info('Locked %s treatments created before %s', count, until.isoformat())
    return count


def income_summary(*, start: datetime, end: datetime, user) -> IncomeSummary:
    """Non-deleted treatments with ``start <= created_at <= end`` and their totals."""
    require(user, Capability.VIEW_INCOME)
    if start > end:
        raise ValidationError('from must not be after to', field='from')

    treatments = list(
        Treatment.objects.using('default')
        .alive()
        .select_related('patient', 'doctor')
        .filter(created_at__gte=start, created_at__lte=end)
        .order_by('created_at', 'id')
    )
    total = sum((t.cost for t in treatments), Decimal('0.00'))
    collected = sum((t.payment_amount for t in treatments), Decimal('0.00'))
    return IncomeSummary(start=start, end=end, treatments=treatments, total=total, collected=collected)


def treatment_reminders(*, user, today=None, days: int = REMINDER_WINDOW_DAYS) -> TreatmentReminders:
    """Planned treatments with a date: overdue ones and those due within ``days``."""
    today = today or timezone.localdate()
    window_end = today + timedelta(days=days)

    planned = (
        list_treatments(user=user, status=Treatment.STATUS_PLANNED)
        .filter(planned_date__isnull=False)
        .order_by('planned_date', 'id')
    )
    reminders = TreatmentReminders()
    for treatment in planned:
        due = timezone.localdate(treatment.planned_date)
        if due < today:
            reminders.overdue.append(treatment)
        elif due <= window_end:
            reminders.upcoming.append(treatment)
    return reminders
