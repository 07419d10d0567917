from __future__ import annotations

import datetime as dt
import logging
from collections import Counter
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable

from vetagenda.domain import (
    Appointment,
    AppointmentDraft,
    AppointmentEdit,
    AppointmentStatus,
    AppointmentType,
    InvalidAppointmentData,
    InvalidTransition,
    MalformedSlotInput,
    Slot,
    parse_scheduled_at,
)
from vetagenda.ports import AppointmentStore
from vetagenda.slot_grid import build_slot_grid, ensure_bookable

logger = logging.getLogger(__name__)

REASON_MIN_LENGTH = 2
REASON_MAX_LENGTH = 200
OBSERVATIONS_MAX_LENGTH = 500
DEFAULT_MAX_PREPAID_AMOUNT = Decimal("10000")
_CENTS = Decimal("0.01")


def _clean_reason(reason: str | None) -> str:
    text = (reason or "").strip()
    if not text:
        raise InvalidAppointmentData("reason", "El motivo es requerido")
    if len(text) < REASON_MIN_LENGTH:
        raise InvalidAppointmentData("reason", f"Mínimo {REASON_MIN_LENGTH} caracteres")
    if len(text) > REASON_MAX_LENGTH:
        raise InvalidAppointmentData("reason", f"Máximo {REASON_MAX_LENGTH} caracteres")
    return text


def _clean_observations(observations: str | None) -> str | None:
    text = (observations or "").strip()
    if len(text) > OBSERVATIONS_MAX_LENGTH:
        raise InvalidAppointmentData("observations", f"Máximo {OBSERVATIONS_MAX_LENGTH} caracteres")
    return text or None


def _clean_type(value: AppointmentType | str) -> AppointmentType:
    try:
        return AppointmentType(value)
    except ValueError as e:
        raise InvalidAppointmentData("type", f"Tipo de cita desconocido: {value!r}") from e


def parse_prepaid_amount(value: Decimal | str | int | float | None, *, maximum: Decimal) -> Decimal | None:
    """Validate a deposit amount. Zero or empty means no deposit."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise InvalidAppointmentData("prepaid_amount", "Ingresa un monto válido") from e

    if not amount.is_finite():
        raise InvalidAppointmentData("prepaid_amount", "Ingresa un monto válido")
    if amount < 0:
        raise InvalidAppointmentData("prepaid_amount", "El monto no puede ser negativo")
    if amount == 0:
        return None
    if amount != amount.quantize(_CENTS):
        raise InvalidAppointmentData("prepaid_amount", "Máximo 2 decimales")
    if amount > maximum:
        raise InvalidAppointmentData("prepaid_amount", f"El monto máximo es ${maximum:,}")
    return amount.quantize(_CENTS)


def active_appointments(appointments: Iterable[Appointment]) -> list[Appointment]:
    """Programada appointments ordered by time; unparsable times go last."""
    active = [a for a in appointments if a.status is AppointmentStatus.SCHEDULED]

    def sort_key(a: Appointment) -> tuple[int, dt.datetime]:
        try:
            return (0, parse_scheduled_at(a.id, a.scheduled_at))
        except MalformedSlotInput:
            return (1, dt.datetime.max)

    return sorted(active, key=sort_key)


def status_counts(appointments: Iterable[Appointment]) -> dict[AppointmentStatus, int]:
    counts = Counter(a.status for a in appointments)
    return {status: counts.get(status, 0) for status in AppointmentStatus}


class BookingService:
    """Creates and edits appointments, always checking the slot grid first."""

    def __init__(
        self,
        store: AppointmentStore,
        *,
        max_prepaid_amount: Decimal = DEFAULT_MAX_PREPAID_AMOUNT,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ) -> None:
        self.store = store
        self.max_prepaid_amount = max_prepaid_amount
        self._clock = clock

    def slots_for(self, day: dt.date) -> list[Slot]:
        return build_slot_grid(day, self.store.list_appointments_for_date(day))

    def _check_not_past(self, scheduled_at: dt.datetime) -> None:
        if scheduled_at.date() < self._clock().date():
            raise InvalidAppointmentData("scheduled_at", "No se pueden agendar citas en fechas pasadas")

    def _check_slot(self, scheduled_at: dt.datetime, *, exclude_appointment_id: str | None = None) -> None:
        day_appointments = self.store.list_appointments_for_date(scheduled_at.date())
        ensure_bookable(scheduled_at, day_appointments, exclude_appointment_id=exclude_appointment_id)

    def book(
        self,
        *,
        patient_id: str,
        type: AppointmentType | str,
        scheduled_at: dt.datetime,
        reason: str,
        observations: str | None = None,
        prepaid_amount: Decimal | str | int | float | None = None,
    ) -> Appointment:
        if not patient_id:
            raise InvalidAppointmentData("patient_id", "El paciente es requerido")

        scheduled_at = scheduled_at.replace(second=0, microsecond=0)
        draft = AppointmentDraft(
            patient_id=patient_id,
            type=_clean_type(type),
            scheduled_at=scheduled_at,
            reason=_clean_reason(reason),
            observations=_clean_observations(observations),
            prepaid_amount=parse_prepaid_amount(prepaid_amount, maximum=self.max_prepaid_amount),
        )

        self._check_not_past(scheduled_at)
        self._check_slot(scheduled_at)

        created = self.store.create_appointment(draft)
        if draft.prepaid_amount:
            logger.info("Booked appointment %s at %s with prepayment %s", created.id, scheduled_at, draft.prepaid_amount)
        else:
            logger.info("Booked appointment %s at %s", created.id, scheduled_at)
        return created

    def edit(self, appointment: Appointment, edit: AppointmentEdit) -> Appointment:
        """Change type, time, reason or observations of an active appointment."""
        if appointment.status is not AppointmentStatus.SCHEDULED:
            raise InvalidTransition(appointment.status, AppointmentStatus.SCHEDULED)

        new_time = edit.scheduled_at.replace(second=0, microsecond=0) if edit.scheduled_at else None
        cleaned = AppointmentEdit(
            type=_clean_type(edit.type) if edit.type is not None else None,
            scheduled_at=new_time,
            reason=_clean_reason(edit.reason) if edit.reason is not None else None,
            observations=_clean_observations(edit.observations) if edit.observations is not None else None,
        )

        if new_time is not None:
            try:
                current = parse_scheduled_at(appointment.id, appointment.scheduled_at)
            except MalformedSlotInput:
                current = None
            if new_time != current:
                self._check_not_past(new_time)
                self._check_slot(new_time, exclude_appointment_id=appointment.id)

        updated = self.store.update_appointment(appointment.id, cleaned)
        logger.info("Edited appointment %s", appointment.id)
        return updated

    def active_for_patient(self, patient_id: str) -> list[Appointment]:
        return active_appointments(self.store.list_appointments_for_patient(patient_id))
