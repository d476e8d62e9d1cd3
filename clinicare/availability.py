"""Practitioner availability checks."""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable

from .models import Appointment, AppointmentStatus
from .store import ClinicStore
from .timerange import TimeRange, overlaps

logger = logging.getLogger(__name__)


def find_conflicts(
    candidate: TimeRange,
    bookings: Iterable[Appointment],
    excluding_id: str | None = None,
) -> list[Appointment]:
    """Return the bookings that overlap ``candidate``.

    Cancelled bookings and the booking with ``excluding_id`` (the one being
    edited) never count as conflicts.
    """
    return [
        booking for booking in bookings
        if booking.status != AppointmentStatus.CANCELLED
        and (excluding_id is None or booking.id != excluding_id)
        and overlaps(candidate, booking.slot)
    ]


async def conflicts_for(
    store: ClinicStore,
    practitioner_id: str,
    date: dt.date,
    candidate: TimeRange,
    excluding_appointment_id: str | None = None,
) -> list[Appointment]:
    bookings = await store.list_for_practitioner(practitioner_id, date)
    found = find_conflicts(candidate, bookings, excluding_appointment_id)
    logger.debug(
        "availability %s %s %s: %d booking(s), %d conflict(s)",
        practitioner_id, date, candidate, len(bookings), len(found),
    )
    return found


async def is_available(
    store: ClinicStore,
    practitioner_id: str,
    date: dt.date,
    candidate: TimeRange,
    excluding_appointment_id: str | None = None,
) -> bool:
    """True when ``candidate`` fits the practitioner's day on ``date``."""
    return not await conflicts_for(store, practitioner_id, date, candidate, excluding_appointment_id)
