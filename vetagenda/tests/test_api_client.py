from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal

import httpx
import pytest

from vetagenda.api_client import ClinicApiClient, appointment_from_json
from vetagenda.domain import (
    ApiError,
    AppointmentDraft,
    AppointmentEdit,
    AppointmentStatus,
    AppointmentType,
    PrepaymentSettlement,
    SettlementAction,
)


def _raw(**overrides) -> dict:
    raw = {
        "_id": "a1",
        "patient": {"_id": "p1", "name": "Firulais"},
        "type": "Consulta",
        "date": "2025-03-10T14:30:00",
        "status": "Programada",
        "reason": "Control",
        "observations": None,
        "prepaidAmount": 50,
        "createdAt": "2025-03-01T10:00:00",
        "updatedAt": "2025-03-01T10:00:00",
    }
    raw.update(overrides)
    return raw


class _Recorder:
    def __init__(self, status_code: int = 200, body: object = None) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.body = body

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


def _client(recorder: _Recorder) -> ClinicApiClient:
    return ClinicApiClient(
        base_url="https://api.clinic.test/api/",
        token="secret",
        transport=httpx.MockTransport(recorder),
    )


def test_appointment_from_json_with_populated_patient() -> None:
    appt = appointment_from_json(_raw())

    assert appt.id == "a1"
    assert appt.patient_id == "p1"
    assert appt.patient_name == "Firulais"
    assert appt.type is AppointmentType.CONSULTATION
    assert appt.status is AppointmentStatus.SCHEDULED
    assert appt.scheduled_at == dt.datetime(2025, 3, 10, 14, 30)
    assert appt.prepaid_amount == Decimal("50")
    assert appt.created_at == dt.datetime(2025, 3, 1, 10, 0)


def test_appointment_from_json_with_patient_id_only() -> None:
    appt = appointment_from_json(_raw(patient="p7", prepaidAmount=None))

    assert appt.patient_id == "p7"
    assert appt.patient_name is None
    assert appt.prepaid_amount is None


def test_appointment_from_json_keeps_unparsable_date_raw() -> None:
    appt = appointment_from_json(_raw(date="mañana"))
    assert appt.scheduled_at == "mañana"


def test_list_for_date_sends_token_and_parses() -> None:
    recorder = _Recorder(body={"success": True, "appointments": [_raw(), _raw(_id="a2", status="Cancelada")]})

    items = _client(recorder).list_appointments_for_date(dt.date(2025, 3, 10))

    assert [a.id for a in items] == ["a1", "a2"]
    request = recorder.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/api/appointments/date/2025-03-10"
    assert request.headers["Authorization"] == "Bearer secret"


def test_list_for_patient_accepts_bare_list() -> None:
    recorder = _Recorder(body=[_raw()])

    items = _client(recorder).list_appointments_for_patient("p1")

    assert [a.id for a in items] == ["a1"]
    assert recorder.requests[0].url.path == "/api/patients/p1/appointments"


def test_create_posts_local_wall_clock_date() -> None:
    recorder = _Recorder(status_code=201, body={"msg": "ok", "appointment": _raw()})
    draft = AppointmentDraft(
        patient_id="p1",
        type=AppointmentType.CONSULTATION,
        scheduled_at=dt.datetime(2025, 3, 10, 14, 30),
        reason="Control",
        prepaid_amount=Decimal("50.00"),
    )

    created = _client(recorder).create_appointment(draft)

    assert created.id == "a1"
    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/patients/p1/appointments"
    assert json.loads(request.content) == {
        "type": "Consulta",
        "date": "2025-03-10T14:30",
        "reason": "Control",
        "prepaidAmount": 50.0,
    }


def test_update_sends_only_changed_fields() -> None:
    recorder = _Recorder(body={"appointment": _raw(reason="Otro")})

    _client(recorder).update_appointment("a1", AppointmentEdit(reason="Otro"))

    request = recorder.requests[0]
    assert request.method == "PUT"
    assert json.loads(request.content) == {"reason": "Otro"}


def test_update_status_includes_settlement() -> None:
    recorder = _Recorder(body={"appointment": _raw(status="Cancelada", prepaidAmount=0)})
    settlement = PrepaymentSettlement(
        appointment_id="a1", amount=Decimal("50"), action=SettlementAction.REFUND, request_id="r1"
    )

    updated = _client(recorder).update_appointment_status("a1", AppointmentStatus.CANCELLED, settlement)

    assert updated.status is AppointmentStatus.CANCELLED
    request = recorder.requests[0]
    assert request.method == "PATCH"
    assert request.url.path == "/api/appointments/a1/status"
    assert json.loads(request.content) == {
        "status": "Cancelada",
        "settlement": {"appointmentId": "a1", "amount": 50.0, "action": "refund", "requestId": "r1"},
    }


def test_update_status_without_settlement() -> None:
    recorder = _Recorder(body={"appointment": _raw(status="Completada")})

    _client(recorder).update_appointment_status("a1", AppointmentStatus.COMPLETED)

    assert json.loads(recorder.requests[0].content) == {"status": "Completada"}


def test_error_response_surfaces_backend_message() -> None:
    recorder = _Recorder(status_code=409, body={"msg": "Ya existe una cita en ese horario"})

    with pytest.raises(ApiError) as exc_info:
        _client(recorder).get_appointment("a1")

    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "Ya existe una cita en ese horario"


def test_error_response_without_message_uses_default() -> None:
    recorder = _Recorder(status_code=500, body=None)

    with pytest.raises(ApiError, match="Error al obtener la cita"):
        _client(recorder).get_appointment("a1")


def test_invalid_payload_is_reported() -> None:
    recorder = _Recorder(body={"appointment": _raw(status="Perdida")})

    with pytest.raises(ApiError, match="Estructura de respuesta inválida"):
        _client(recorder).get_appointment("a1")


def test_network_errors_propagate() -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = ClinicApiClient(base_url="https://api.clinic.test", token="t", transport=httpx.MockTransport(boom))

    with pytest.raises(httpx.ConnectError):
        client.list_appointments_for_date(dt.date(2025, 3, 10))
