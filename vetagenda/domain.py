from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class AppointmentStatus(str, Enum):
    SCHEDULED = "Programada"
    COMPLETED = "Completada"
    CANCELLED = "Cancelada"
    NO_SHOW = "No asistió"

    @property
    def is_terminal(self) -> bool:
        return self is not AppointmentStatus.SCHEDULED


class AppointmentType(str, Enum):
    CONSULTATION = "Consulta"
    GROOMING = "Peluquería"
    LABORATORY = "Laboratorio"
    VACCINE = "Vacuna"
    SURGERY = "Cirugía"
    TREATMENT = "Tratamiento"


class SettlementAction(str, Enum):
    REFUND = "refund"
    KEEP_AS_CREDIT = "keepAsCredit"


@dataclass(frozen=True)
class Appointment:
    id: str
    patient_id: str
    type: AppointmentType
    # Local wall-clock time. Holds the raw wire value when it could not be parsed,
    # so a single bad record still reaches the slot grid (which skips it).
    scheduled_at: dt.datetime | str
    status: AppointmentStatus
    reason: str
    observations: str | None = None
    prepaid_amount: Decimal | None = None
    patient_name: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @property
    def has_prepayment(self) -> bool:
        return self.prepaid_amount is not None and self.prepaid_amount > 0


@dataclass(frozen=True)
class OccupantSummary:
    patient_name: str | None
    reason: str


@dataclass(frozen=True)
class Slot:
    """A bookable start time within a single day."""

    time: str  # HH:MM
    display_label: str
    occupied: bool
    occupant: OccupantSummary | None = None


@dataclass(frozen=True)
class PrepaymentSettlement:
    """Refund-or-credit disposition of a deposit, consumed by billing."""

    appointment_id: str
    amount: Decimal
    action: SettlementAction
    request_id: str


@dataclass(frozen=True)
class PendingCancellation:
    """Phase-1 cancellation request waiting for a refund/credit decision.

    Lives outside the Appointment record: the appointment stays Programada
    until the decision is committed.

    ``settled_action`` is set once billing accepted the settlement but the
    status write has not gone through yet.
    """

    appointment_id: str
    amount: Decimal
    request_id: str
    requested_at: dt.datetime
    settled_action: SettlementAction | None = None

    @property
    def is_settled(self) -> bool:
        return self.settled_action is not None


@dataclass(frozen=True)
class AppointmentDraft:
    """Validated booking request, ready to be persisted."""

    patient_id: str
    type: AppointmentType
    scheduled_at: dt.datetime
    reason: str
    observations: str | None = None
    prepaid_amount: Decimal | None = None


@dataclass(frozen=True)
class AppointmentEdit:
    # None means "leave as is"
    type: AppointmentType | None = None
    scheduled_at: dt.datetime | None = None
    reason: str | None = None
    observations: str | None = None


class VetAgendaError(RuntimeError):
    pass


class InvalidTransition(VetAgendaError):
    def __init__(self, current: AppointmentStatus, requested: AppointmentStatus) -> None:
        super().__init__(f"Invalid status transition: {current.value} -> {requested.value}")
        self.current = current
        self.requested = requested


class MissingSettlementDecision(VetAgendaError):
    def __init__(self, appointment_id: str) -> None:
        super().__init__(
            f"No pending cancellation request for appointment {appointment_id}; request the cancellation first"
        )
        self.appointment_id = appointment_id


class MalformedSlotInput(VetAgendaError):
    """No es fatal: el registro se omite y la grilla se sigue construyendo."""

    def __init__(self, appointment_id: str, raw_value: object) -> None:
        super().__init__(f"Unparsable scheduled time for appointment {appointment_id}: {raw_value!r}")
        self.appointment_id = appointment_id
        self.raw_value = raw_value


class SettlementRejected(VetAgendaError):
    def __init__(self, appointment_id: str, reason: str) -> None:
        super().__init__(f"Settlement for appointment {appointment_id} rejected: {reason}")
        self.appointment_id = appointment_id
        self.reason = reason


class SlotUnavailable(VetAgendaError):
    def __init__(self, scheduled_at: dt.datetime) -> None:
        super().__init__(f"Slot {scheduled_at:%Y-%m-%d %H:%M} is already taken")
        self.scheduled_at = scheduled_at


class SlotMisaligned(VetAgendaError):
    def __init__(self, scheduled_at: dt.datetime) -> None:
        super().__init__(f"{scheduled_at:%Y-%m-%d %H:%M} is not a bookable slot")
        self.scheduled_at = scheduled_at


class InvalidAppointmentData(VetAgendaError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class SettlementAlreadyApplied(VetAgendaError):
    def __init__(self, appointment_id: str, action: SettlementAction) -> None:
        super().__init__(
            f"Prepayment of appointment {appointment_id} was already settled as {action.value}; "
            "the cancellation has to be committed"
        )
        self.appointment_id = appointment_id
        self.action = action

class ApiError(VetAgendaError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


def parse_scheduled_at(appointment_id: str, raw: object) -> dt.datetime:
    """Turn a wire timestamp into local wall-clock time (minute precision).

    Aware values are converted to the local timezone and made naive.
    """
    if isinstance(raw, dt.datetime):
        value = raw
    elif isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = dt.datetime.fromisoformat(text)
        except ValueError as e:
            raise MalformedSlotInput(appointment_id, raw) from e
    else:
        raise MalformedSlotInput(appointment_id, raw)

    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)
