from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from vetagenda.domain import (
    ApiError,
    Appointment,
    AppointmentDraft,
    AppointmentEdit,
    AppointmentStatus,
    AppointmentType,
    MalformedSlotInput,
    PrepaymentSettlement,
    parse_scheduled_at,
)

logger = logging.getLogger(__name__)

_INVALID_RESPONSE = "Estructura de respuesta inválida del servidor"


def _format_local(value: dt.datetime) -> str:
    # Wall-clock time without offset, as the clinic API stores it.
    return value.strftime("%Y-%m-%dT%H:%M")


def _parse_optional_datetime(raw: Any) -> dt.datetime | None:
    if not raw:
        return None
    try:
        return dt.datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_amount(raw: Any) -> Decimal | None:
    if raw is None or raw == "":
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation as e:
        raise ValueError(f"Invalid prepaidAmount: {raw!r}") from e


def appointment_from_json(raw: dict[str, Any]) -> Appointment:
    """Parse one appointment from the API.

    ``patient`` is either an id or a populated object with ``_id`` and ``name``.
    An unparsable ``date`` is kept as the raw string.
    """
    appointment_id = str(raw["_id"])

    patient = raw.get("patient")
    if isinstance(patient, dict):
        patient_id = str(patient.get("_id", ""))
        patient_name = patient.get("name")
    else:
        patient_id = str(patient or "")
        patient_name = None

    raw_date = raw.get("date")
    try:
        scheduled_at: dt.datetime | str = parse_scheduled_at(appointment_id, raw_date)
    except MalformedSlotInput:
        logger.warning("Appointment %s has an unparsable date %r", appointment_id, raw_date)
        scheduled_at = "" if raw_date is None else str(raw_date)

    return Appointment(
        id=appointment_id,
        patient_id=patient_id,
        patient_name=patient_name,
        type=AppointmentType(raw["type"]),
        scheduled_at=scheduled_at,
        status=AppointmentStatus(raw["status"]),
        reason=str(raw.get("reason") or ""),
        observations=raw.get("observations") or None,
        prepaid_amount=_parse_amount(raw.get("prepaidAmount")),
        created_at=_parse_optional_datetime(raw.get("createdAt")),
        updated_at=_parse_optional_datetime(raw.get("updatedAt")),
    )


def draft_to_json(draft: AppointmentDraft) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": draft.type.value,
        "date": _format_local(draft.scheduled_at),
        "reason": draft.reason,
        "prepaidAmount": float(draft.prepaid_amount or 0),
    }
    if draft.observations:
        payload["observations"] = draft.observations
    return payload


def edit_to_json(edit: AppointmentEdit) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if edit.type is not None:
        payload["type"] = edit.type.value
    if edit.scheduled_at is not None:
        payload["date"] = _format_local(edit.scheduled_at)
    if edit.reason is not None:
        payload["reason"] = edit.reason
    if edit.observations is not None:
        payload["observations"] = edit.observations
    return payload


def settlement_to_json(settlement: PrepaymentSettlement) -> dict[str, Any]:
    return {
        "appointmentId": settlement.appointment_id,
        "amount": float(settlement.amount),
        "action": settlement.action.value,
        "requestId": settlement.request_id,
    }


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("msg"):
        return str(data["msg"])
    return default


class ClinicApiClient:
    """Persistence collaborator backed by the clinic REST API.

    The bearer token is passed in explicitly; nothing is read from ambient state.
    Network errors (httpx.TransportError) are not retried here.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout_seconds: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self._token}"},
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None, error: str) -> Any:
        logger.debug("%s %s", method, path)
        with self._client() as client:
            r = client.request(method, path, json=json)
        if r.is_error:
            raise ApiError(r.status_code, _error_message(r, error))
        try:
            return r.json()
        except ValueError as e:
            raise ApiError(r.status_code, _INVALID_RESPONSE) from e

    def _one(self, data: Any, status_code: int = 200) -> Appointment:
        try:
            raw = data["appointment"] if isinstance(data, dict) and "appointment" in data else data
            return appointment_from_json(raw)
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(status_code, _INVALID_RESPONSE) from e

    def _many(self, data: Any) -> list[Appointment]:
        try:
            items = data.get("appointments", []) if isinstance(data, dict) else data
            return [appointment_from_json(item) for item in items]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ApiError(200, _INVALID_RESPONSE) from e

    def list_appointments_for_date(self, day: dt.date) -> list[Appointment]:
        data = self._request("GET", f"/appointments/date/{day.isoformat()}", error="Error al obtener las citas del día")
        return self._many(data)

    def list_appointments_for_patient(self, patient_id: str) -> list[Appointment]:
        data = self._request(
            "GET", f"/patients/{patient_id}/appointments", error="Error al obtener las citas del paciente"
        )
        return self._many(data)

    def get_appointment(self, appointment_id: str) -> Appointment:
        data = self._request("GET", f"/appointments/{appointment_id}", error="Error al obtener la cita")
        return self._one(data)

    def create_appointment(self, draft: AppointmentDraft) -> Appointment:
        data = self._request(
            "POST",
            f"/patients/{draft.patient_id}/appointments",
            json=draft_to_json(draft),
            error="Error al crear la cita",
        )
        return self._one(data, 201)

    def update_appointment(self, appointment_id: str, edit: AppointmentEdit) -> Appointment:
        data = self._request(
            "PUT", f"/appointments/{appointment_id}", json=edit_to_json(edit), error="Error al actualizar la cita"
        )
        return self._one(data)

    def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        settlement: PrepaymentSettlement | None = None,
    ) -> Appointment:
        payload: dict[str, Any] = {"status": status.value}
        if settlement is not None:
            payload["settlement"] = settlement_to_json(settlement)
        data = self._request(
            "PATCH",
            f"/appointments/{appointment_id}/status",
            json=payload,
            error="Error al actualizar el estado de la cita",
        )
        return self._one(data)
