"""Collaborators the scheduling core talks to.

The persistence API and the billing service are remote and may fail; the core
surfaces their errors and never retries on its own.
"""

from __future__ import annotations

import datetime as dt
from typing import Protocol, runtime_checkable

from vetagenda.domain import (
    Appointment,
    AppointmentDraft,
    AppointmentEdit,
    AppointmentStatus,
    PendingCancellation,
    PrepaymentSettlement,
)


@runtime_checkable
class AppointmentStore(Protocol):
    def list_appointments_for_date(self, day: dt.date) -> list[Appointment]: ...

    def list_appointments_for_patient(self, patient_id: str) -> list[Appointment]: ...

    def get_appointment(self, appointment_id: str) -> Appointment: ...

    def create_appointment(self, draft: AppointmentDraft) -> Appointment: ...

    def update_appointment(self, appointment_id: str, edit: AppointmentEdit) -> Appointment: ...

    def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        settlement: PrepaymentSettlement | None = None,
    ) -> Appointment: ...


@runtime_checkable
class SettlementSink(Protocol):
    def settle(self, settlement: PrepaymentSettlement) -> None:
        """Apply the settlement or raise SettlementRejected."""
        ...


@runtime_checkable
class PendingStore(Protocol):
    def get(self, appointment_id: str) -> PendingCancellation | None: ...

    def put(self, pending: PendingCancellation) -> None: ...

    def discard(self, appointment_id: str) -> None: ...

    def all(self) -> list[PendingCancellation]: ...
