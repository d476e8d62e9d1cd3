"""Appointment status transitions, booking and rescheduling."""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Iterable

from .availability import conflicts_for
from .errors import InvalidTransition, NotFound, SlotConflict
from .models import (
    Appointment,
    AppointmentStats,
    AppointmentStatus,
    BookRequest,
    RescheduleRequest,
    Role,
)
from .store import ClinicStore
from .timerange import TimeRange

logger = logging.getLogger(__name__)

S = AppointmentStatus

# target -> (allowed sources, guard on (appointment date, today))
Guard = Callable[[dt.date, dt.date], bool]

TRANSITIONS: dict[AppointmentStatus, tuple[frozenset[AppointmentStatus], Guard]] = {
    S.CONFIRMED: (frozenset({S.SCHEDULED}), lambda day, today: True),
    S.COMPLETED: (frozenset({S.SCHEDULED, S.CONFIRMED}), lambda day, today: day <= today),
    S.CANCELLED: (frozenset({S.SCHEDULED, S.CONFIRMED}), lambda day, today: True),
    S.NO_SHOW: (frozenset({S.SCHEDULED, S.CONFIRMED}), lambda day, today: day < today),
}

RESCHEDULABLE = frozenset({S.SCHEDULED, S.CONFIRMED})


def can_transition(
    current: AppointmentStatus,
    target: AppointmentStatus,
    appointment_date: dt.date,
    today: dt.date,
) -> bool:
    if current.is_terminal or target not in TRANSITIONS:
        return False
    sources, guard = TRANSITIONS[target]
    return current in sources and guard(appointment_date, today)


def check_transition(
    current: AppointmentStatus,
    target: AppointmentStatus,
    appointment_date: dt.date,
    today: dt.date,
) -> None:
    if current.is_terminal:
        raise InvalidTransition(f"appointment is {current.value}; no further change allowed")
    if not can_transition(current, target, appointment_date, today):
        raise InvalidTransition(
            f"cannot move appointment on {appointment_date} from {current.value} to {target.value}"
        )


async def _load(store: ClinicStore, appointment_id: str) -> Appointment:
    appt = await store.get(appointment_id)
    if appt is None:
        raise NotFound(f"appointment {appointment_id} not found")
    return appt


async def _ensure_free(
    store: ClinicStore,
    practitioner_id: str,
    date: dt.date,
    slot: TimeRange,
    excluding_id: str | None = None,
) -> None:
    found = await conflicts_for(store, practitioner_id, date, slot, excluding_id)
    if found:
        logger.info("slot conflict for %s on %s at %s", practitioner_id, date, slot)
        raise SlotConflict(
            f"practitioner {practitioner_id} is already booked on {date} during {slot}",
            conflicts=[appt.id for appt in found],
        )


async def book(store: ClinicStore, req: BookRequest, created_by: str | None = None) -> Appointment:
    """Create an appointment in ``scheduled`` status if the slot is free."""
    slot = TimeRange(req.time, req.duration)
    await _ensure_free(store, req.practitioner_id, req.date, slot)
    appt = Appointment(
        patient_id=req.patient_id,
        practitioner_id=req.practitioner_id,
        date=req.date,
        time=req.time,
        duration=req.duration,
        reason=req.reason,
        notes=req.notes,
        status=S.SCHEDULED,
        created_by=created_by,
    )
    created = await store.create(appt)
    logger.info("booked appointment %s for %s on %s at %s", created.id, req.practitioner_id, req.date, slot)
    return created


async def transition(
    store: ClinicStore,
    appointment_id: str,
    target: AppointmentStatus,
    today: dt.date | None = None,
) -> Appointment:
    """Move an appointment to ``target`` after checking the transition table.

    Confirming re-checks the slot against the practitioner's other bookings.
    """
    today = today or dt.date.today()
    appt = await _load(store, appointment_id)
    try:
        check_transition(appt.status, target, appt.date, today)
    except InvalidTransition:
        logger.info("rejected %s -> %s for appointment %s", appt.status.value, target.value, appointment_id)
        raise
    if target == S.CONFIRMED:
        await _ensure_free(store, appt.practitioner_id, appt.date, appt.slot, excluding_id=appt.id)
    updated = await store.update(appointment_id, {"status": target})
    logger.info("appointment %s: %s -> %s", appointment_id, appt.status.value, target.value)
    return updated


async def reschedule(store: ClinicStore, appointment_id: str, req: RescheduleRequest) -> Appointment:
    """Change date, time or duration of a live appointment.

    Nothing is written when the new slot is taken.
    """
    appt = await _load(store, appointment_id)
    if appt.status not in RESCHEDULABLE:
        raise InvalidTransition(f"cannot reschedule a {appt.status.value} appointment")
    date = req.date or appt.date
    start = req.time or appt.time
    duration = req.duration if req.duration is not None else appt.duration
    slot = TimeRange(start, duration)
    await _ensure_free(store, appt.practitioner_id, date, slot, excluding_id=appt.id)
    updated = await store.update(appointment_id, {"date": date, "time": start, "duration": duration})
    logger.info("rescheduled appointment %s to %s %s", appointment_id, date, slot)
    return updated


async def hard_delete(store: ClinicStore, appointment_id: str, actor_role: Role | None) -> None:
    """Physically remove an appointment; administrators only."""
    if actor_role != Role.ADMIN:
        raise InvalidTransition("only administrators may delete appointments; cancel instead")
    await _load(store, appointment_id)
    await store.delete(appointment_id)
    logger.warning("appointment %s deleted by administrator", appointment_id)


def appointment_stats(appointments: Iterable[Appointment], today: dt.date) -> AppointmentStats:
    stats = AppointmentStats()
    for appt in appointments:
        stats.total += 1
        if appt.created_at and (appt.created_at.year, appt.created_at.month) == (today.year, today.month):
            stats.this_month += 1
        if appt.date != today:
            continue
        stats.today_total += 1
        if appt.status == S.CONFIRMED:
            stats.today_confirmed += 1
        elif appt.status == S.SCHEDULED:
            stats.today_pending += 1
        elif appt.status == S.COMPLETED:
            stats.today_completed += 1
    return stats
