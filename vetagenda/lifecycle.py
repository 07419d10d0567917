"""
Appointment status lifecycle.

Programada is the only non-terminal status. Completada and No asistió are
single steps. Cancelada is a single step too unless the appointment carries
a deposit; then it is split in two phases:

    1. request_cancellation() records a PendingCancellation and leaves the
       appointment untouched, waiting for a refund/keepAsCredit decision.
    2. commit_cancellation() sends the settlement to billing and only after
       billing accepts it writes status=Cancelada.

An abandoned request changes nothing; the appointment stays Programada.
A request whose deposit billing already settled can only be committed.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Callable

from vetagenda.domain import (
    Appointment,
    AppointmentStatus,
    InvalidTransition,
    MissingSettlementDecision,
    PendingCancellation,
    PrepaymentSettlement,
    SettlementAction,
    SettlementAlreadyApplied,
    SettlementRejected,
)
from vetagenda.ports import AppointmentStore, PendingStore, SettlementSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    appointment: Appointment
    pending: PendingCancellation | None = None
    settlement: PrepaymentSettlement | None = None

    @property
    def needs_decision(self) -> bool:
        return self.pending is not None


def check_transition(current: AppointmentStatus, requested: AppointmentStatus) -> None:
    if current.is_terminal or requested is AppointmentStatus.SCHEDULED or requested is current:
        raise InvalidTransition(current, requested)


class AppointmentLifecycle:
    def __init__(
        self,
        store: AppointmentStore,
        billing: SettlementSink,
        pending: PendingStore,
        *,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ) -> None:
        self.store = store
        self.billing = billing
        self.pending = pending
        self._clock = clock

    def transition(self, appointment: Appointment, target: AppointmentStatus | str) -> TransitionResult:
        """Move ``appointment`` to ``target``.

        A prepaid cancellation does not change anything yet: the result carries
        the PendingCancellation and ``needs_decision`` is True.
        """
        target = AppointmentStatus(target)
        check_transition(appointment.status, target)

        if target is AppointmentStatus.CANCELLED:
            return self.request_cancellation(appointment)

        pending = self.pending.get(appointment.id)
        if pending is not None and pending.is_settled:
            raise SettlementAlreadyApplied(appointment.id, pending.settled_action)

        updated = self.store.update_appointment_status(appointment.id, target)
        logger.info("Appointment %s: %s -> %s", appointment.id, appointment.status.value, target.value)
        return TransitionResult(appointment=updated)

    def request_cancellation(self, appointment: Appointment) -> TransitionResult:
        check_transition(appointment.status, AppointmentStatus.CANCELLED)

        if not appointment.has_prepayment:
            updated = self.store.update_appointment_status(appointment.id, AppointmentStatus.CANCELLED)
            logger.info("Appointment %s cancelled (no prepayment)", appointment.id)
            return TransitionResult(appointment=updated)

        pending = self.pending.get(appointment.id)
        if pending is None:
            pending = PendingCancellation(
                appointment_id=appointment.id,
                amount=appointment.prepaid_amount,
                request_id=uuid.uuid4().hex,
                requested_at=self._clock(),
            )
            self.pending.put(pending)
            logger.info(
                "Appointment %s: cancellation requested, waiting for prepayment decision (amount=%s)",
                appointment.id,
                pending.amount,
            )
        else:
            # Same request_id on repeated requests so billing can deduplicate.
            logger.info("Appointment %s: cancellation already pending since %s", appointment.id, pending.requested_at)

        return TransitionResult(appointment=appointment, pending=pending)

    def commit_cancellation(self, appointment: Appointment, action: SettlementAction | str) -> TransitionResult:
        """Settle the deposit and cancel, all or nothing.

        Raises:
            InvalidTransition: the appointment is not Programada.
            MissingSettlementDecision: no phase-1 request recorded for this appointment.
            SettlementRejected: billing refused; the appointment is not cancelled.

        Once billing accepts, the pending request is marked settled before the
        status write. If that write fails, the next commit only repeats the
        write; the settlement is not sent again.
        """
        action = SettlementAction(action)

        try:
            check_transition(appointment.status, AppointmentStatus.CANCELLED)
        except InvalidTransition:
            self.pending.discard(appointment.id)
            raise

        pending = self.pending.get(appointment.id)
        if pending is None:
            raise MissingSettlementDecision(appointment.id)

        if pending.is_settled and pending.settled_action is not action:
            raise SettlementAlreadyApplied(appointment.id, pending.settled_action)

        amount = appointment.prepaid_amount if appointment.has_prepayment else pending.amount
        settlement = PrepaymentSettlement(
            appointment_id=appointment.id,
            amount=amount,
            action=action,
            request_id=pending.request_id,
        )

        if not pending.is_settled:
            try:
                self.billing.settle(settlement)
            except SettlementRejected as e:
                logger.warning("Appointment %s stays %s (%s)", appointment.id, appointment.status.value, e)
                raise
            self.pending.put(replace(pending, settled_action=action))
        else:
            logger.info("Appointment %s: prepayment already settled, retrying status write", appointment.id)

        updated = self.store.update_appointment_status(appointment.id, AppointmentStatus.CANCELLED, settlement)
        self.pending.discard(appointment.id)
        logger.info("Appointment %s cancelled, prepayment %s settled as %s", appointment.id, amount, action.value)
        return TransitionResult(appointment=updated, settlement=settlement)

    def abandon_cancellation(self, appointment_id: str) -> bool:
        pending = self.pending.get(appointment_id)
        if pending is None:
            return False
        if pending.is_settled:
            raise SettlementAlreadyApplied(appointment_id, pending.settled_action)
        self.pending.discard(appointment_id)
        logger.info("Appointment %s: cancellation request abandoned", appointment_id)
        return True
