import argparse
import datetime as dt
import json
import logging
from dataclasses import asdict

from vetagenda.api_client import ClinicApiClient
from vetagenda.billing_client import BillingClient
from vetagenda.booking import BookingService
from vetagenda.config import Settings, load_settings
from vetagenda.domain import AppointmentStatus, AppointmentType, SettlementAction, Slot, VetAgendaError
from vetagenda.lifecycle import AppointmentLifecycle
from vetagenda.pending_store import JsonPendingStore
from vetagenda.retry import call_with_retry
from vetagenda.slot_grid import build_slot_grid, free_times

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def _parse_datetime(value: str) -> dt.datetime:
    try:
        return dt.datetime.fromisoformat(value.replace(" ", "T"))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected 'YYYY-MM-DD HH:MM', got {value!r}") from e


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="VetAgenda: clinic appointment scheduling")
    sub = parser.add_subparsers(dest="command", required=True)

    slots = sub.add_parser("slots", help="Show the slot grid of a day")
    slots.add_argument("--date", type=_parse_date, required=True)
    slots.add_argument("--json", action="store_true", help="Print slots as JSON")
    slots.add_argument("--free", action="store_true", help="Only list the free start times")

    book = sub.add_parser("book", help="Book an appointment")
    book.add_argument("--patient", required=True)
    book.add_argument("--type", required=True, choices=[t.value for t in AppointmentType])
    book.add_argument("--at", type=_parse_datetime, required=True, help="'YYYY-MM-DD HH:MM'")
    book.add_argument("--reason", required=True)
    book.add_argument("--observations")
    book.add_argument("--prepaid", help="Deposit amount")

    status = sub.add_parser("status", help="Change appointment status")
    status.add_argument("appointment_id")
    status.add_argument(
        "target",
        choices=[s.value for s in AppointmentStatus if s is not AppointmentStatus.SCHEDULED],
    )

    settle = sub.add_parser("settle", help="Commit a pending cancellation with a prepayment decision")
    settle.add_argument("appointment_id")
    settle.add_argument("action", choices=[a.value for a in SettlementAction])

    abandon = sub.add_parser("abandon", help="Drop a pending cancellation request")
    abandon.add_argument("appointment_id")

    sub.add_parser("pending", help="List pending cancellation requests")

    return parser


def _format_slot(slot: Slot) -> str:
    if not slot.occupied:
        return f"{slot.display_label:>8}  libre"
    name = slot.occupant.patient_name if slot.occupant else None
    reason = slot.occupant.reason if slot.occupant else ""
    return f"{slot.display_label:>8}  ocupado ({name or 'Cita existente'}: {reason})"


def _run(args: argparse.Namespace, settings: Settings) -> None:
    store = ClinicApiClient(
        base_url=settings.api_url,
        token=settings.api_token,
        timeout_seconds=settings.request_timeout_seconds,
    )
    billing = BillingClient(
        base_url=settings.billing_url,
        token=settings.api_token,
        timeout_seconds=settings.request_timeout_seconds,
    )
    pending = JsonPendingStore(settings.pending_file)
    booking = BookingService(store, max_prepaid_amount=settings.max_prepaid_amount)
    lifecycle = AppointmentLifecycle(store, billing, pending)

    def fetch(appointment_id: str):
        return call_with_retry(store.get_appointment, appointment_id, attempts=settings.api_retry_attempts)

    if args.command == "slots":
        day_appointments = call_with_retry(
            store.list_appointments_for_date, args.date, attempts=settings.api_retry_attempts
        )
        if args.free:
            times = free_times(args.date, day_appointments)
            print(json.dumps(times) if args.json else "\n".join(times))
            return
        grid = build_slot_grid(args.date, day_appointments)
        if args.json:
            print(json.dumps([asdict(s) for s in grid], ensure_ascii=False, indent=2))
        else:
            print("\n".join(_format_slot(s) for s in grid))

    elif args.command == "book":
        created = booking.book(
            patient_id=args.patient,
            type=args.type,
            scheduled_at=args.at,
            reason=args.reason,
            observations=args.observations,
            prepaid_amount=args.prepaid,
        )
        if created.has_prepayment:
            print(f"Cita creada con anticipo de ${created.prepaid_amount:.2f}: {created.id}")
        else:
            print(f"Cita creada con éxito: {created.id}")

    elif args.command == "status":
        result = lifecycle.transition(fetch(args.appointment_id), args.target)
        if result.needs_decision:
            print(
                f"La cita tiene un anticipo de ${result.pending.amount:.2f}. "
                f"Indique qué hacer con él: main.py settle {args.appointment_id} refund|keepAsCredit"
            )
        else:
            print(f"Estado actualizado: {result.appointment.status.value}")

    elif args.command == "settle":
        result = lifecycle.commit_cancellation(fetch(args.appointment_id), args.action)
        print(f"Cita cancelada. Anticipo ${result.settlement.amount:.2f}: {result.settlement.action.value}")

    elif args.command == "abandon":
        if lifecycle.abandon_cancellation(args.appointment_id):
            print("Solicitud de cancelación descartada; la cita sigue Programada.")
        else:
            print("No hay solicitud de cancelación pendiente para esa cita.")

    elif args.command == "pending":
        for p in pending.all():
            line = f"{p.appointment_id}  ${p.amount:.2f}  desde {p.requested_at:%Y-%m-%d %H:%M}"
            if p.is_settled:
                line += f"  (liquidado: {p.settled_action.value})"
            print(line)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    _setup_logging()
    settings = load_settings()

    try:
        _run(args, settings)
        return 0
    except VetAgendaError as e:
        logger.error("%s failed (%s: %s)", args.command, type(e).__name__, e)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
