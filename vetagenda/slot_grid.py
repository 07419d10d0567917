"""
Slot grid for a single clinic day.

Generates the fixed 30-minute grid between 07:00 and 22:00 and marks the
slots held by active (Programada) appointments. Pure function of its inputs,
safe to recompute on every change.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable

from vetagenda.domain import (
    Appointment,
    AppointmentStatus,
    MalformedSlotInput,
    OccupantSummary,
    Slot,
    SlotMisaligned,
    SlotUnavailable,
    parse_scheduled_at,
)

logger = logging.getLogger(__name__)

DAY_START = dt.time(7, 0)
DAY_END = dt.time(22, 0)  # exclusive
SLOT_MINUTES = 30


def slot_times() -> list[dt.time]:
    times: list[dt.time] = []
    minutes = DAY_START.hour * 60 + DAY_START.minute
    end = DAY_END.hour * 60 + DAY_END.minute
    while minutes < end:
        times.append(dt.time(minutes // 60, minutes % 60))
        minutes += SLOT_MINUTES
    return times


def display_label(t: dt.time) -> str:
    # 12h clock: "7:00 AM", "12:30 PM"
    period = "PM" if t.hour >= 12 else "AM"
    hour = t.hour % 12 or 12
    return f"{hour}:{t.minute:02d} {period}"


def is_on_grid(value: dt.datetime) -> bool:
    t = value.time()
    if t < DAY_START or t >= DAY_END:
        return False
    return t.second == 0 and t.microsecond == 0 and (t.hour * 60 + t.minute) % SLOT_MINUTES == 0


def _active_by_time(
    day: dt.date,
    appointments: Iterable[Appointment],
    exclude_appointment_id: str | None,
) -> dict[tuple[int, int], Appointment]:
    taken: dict[tuple[int, int], Appointment] = {}

    for appt in appointments:
        if appt.status is not AppointmentStatus.SCHEDULED:
            continue
        if exclude_appointment_id is not None and appt.id == exclude_appointment_id:
            continue

        try:
            when = parse_scheduled_at(appt.id, appt.scheduled_at)
        except MalformedSlotInput as e:
            logger.warning("Skipping appointment in slot grid (%s)", e)
            continue

        # Only the requested day counts; callers may hand over a wider snapshot.
        if when.date() != day:
            logger.debug("Appointment %s is on %s, not %s; ignored", appt.id, when.date(), day)
            continue

        # Duplicates are upstream corruption; the first one is enough to occupy the slot.
        taken.setdefault((when.hour, when.minute), appt)

    return taken


def build_slot_grid(
    day: dt.date,
    appointments: Iterable[Appointment],
    *,
    exclude_appointment_id: str | None = None,
) -> list[Slot]:
    """Build the ordered slot list for ``day``.

    Args:
        day: calendar day (a datetime is reduced to its date).
        appointments: snapshot of appointments; entries from other days are ignored.
        exclude_appointment_id: appointment that must not block its own slot (rescheduling).

    Returns:
        list[Slot]: 30 slots from 07:00 to 21:30, in order.
    """
    if isinstance(day, dt.datetime):
        day = day.date()

    taken = _active_by_time(day, appointments, exclude_appointment_id)

    slots: list[Slot] = []
    for t in slot_times():
        appt = taken.get((t.hour, t.minute))
        occupant = OccupantSummary(patient_name=appt.patient_name, reason=appt.reason) if appt else None
        slots.append(
            Slot(
                time=f"{t.hour:02d}:{t.minute:02d}",
                display_label=display_label(t),
                occupied=appt is not None,
                occupant=occupant,
            )
        )
    return slots


def free_times(day: dt.date, appointments: Iterable[Appointment]) -> list[str]:
    return [s.time for s in build_slot_grid(day, appointments) if not s.occupied]


def ensure_bookable(
    scheduled_at: dt.datetime,
    appointments: Iterable[Appointment],
    *,
    exclude_appointment_id: str | None = None,
) -> None:
    """Raise unless ``scheduled_at`` is a free grid slot among ``appointments``."""
    if not is_on_grid(scheduled_at):
        raise SlotMisaligned(scheduled_at)

    grid = build_slot_grid(scheduled_at.date(), appointments, exclude_appointment_id=exclude_appointment_id)
    wanted = f"{scheduled_at.hour:02d}:{scheduled_at.minute:02d}"
    for slot in grid:
        if slot.time == wanted:
            if slot.occupied:
                raise SlotUnavailable(scheduled_at)
            return

    raise SlotMisaligned(scheduled_at)
