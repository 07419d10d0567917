from __future__ import annotations

import datetime as dt
import json
import logging
import os
import tempfile
from decimal import Decimal, InvalidOperation

from vetagenda.domain import PendingCancellation, SettlementAction

logger = logging.getLogger(__name__)


def _to_json(p: PendingCancellation) -> dict:
    entry = {
        "amount": str(p.amount),
        "request_id": p.request_id,
        "requested_at": p.requested_at.isoformat(),
    }
    if p.settled_action is not None:
        entry["settled_action"] = p.settled_action.value
    return entry


def _from_json(appointment_id: str, entry: dict) -> PendingCancellation:
    settled = entry.get("settled_action")
    return PendingCancellation(
        appointment_id=appointment_id,
        amount=Decimal(str(entry["amount"])),
        request_id=str(entry["request_id"]),
        requested_at=dt.datetime.fromisoformat(str(entry["requested_at"])),
        settled_action=SettlementAction(settled) if settled is not None else None,
    )


class InMemoryPendingStore:
    def __init__(self) -> None:
        self._items: dict[str, PendingCancellation] = {}

    def get(self, appointment_id: str) -> PendingCancellation | None:
        return self._items.get(appointment_id)

    def put(self, pending: PendingCancellation) -> None:
        self._items[pending.appointment_id] = pending

    def discard(self, appointment_id: str) -> None:
        self._items.pop(appointment_id, None)

    def all(self) -> list[PendingCancellation]:
        return sorted(self._items.values(), key=lambda p: p.requested_at)


class JsonPendingStore:
    """Pending cancellation requests kept in a JSON file between runs.

    The file holds ``{"pending": {appointment_id: {...}}}``. It is rewritten
    whole on every change through a temporary file in the same folder.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _load(self) -> dict[str, PendingCancellation]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning("Pending file %s is not valid JSON, starting empty", self.path)
            return {}

        entries = raw.get("pending") if isinstance(raw, dict) else None
        if not isinstance(entries, dict):
            logger.warning("Pending file %s has no pending map, starting empty", self.path)
            return {}

        items: dict[str, PendingCancellation] = {}
        for appointment_id, entry in entries.items():
            try:
                items[appointment_id] = _from_json(appointment_id, entry)
            except (AttributeError, KeyError, TypeError, ValueError, InvalidOperation) as e:
                logger.warning("Skipping pending entry %s (%s)", appointment_id, e)
        return items

    def _save(self, items: dict[str, PendingCancellation]) -> None:
        folder = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(folder, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=".pending-", dir=folder)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"pending": {k: _to_json(p) for k, p in items.items()}}, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            os.unlink(tmp_path)
            raise

    def get(self, appointment_id: str) -> PendingCancellation | None:
        return self._load().get(appointment_id)

    def put(self, pending: PendingCancellation) -> None:
        items = self._load()
        items[pending.appointment_id] = pending
        self._save(items)

    def discard(self, appointment_id: str) -> None:
        items = self._load()
        if items.pop(appointment_id, None) is not None:
            self._save(items)

    def all(self) -> list[PendingCancellation]:
        return sorted(self._load().values(), key=lambda p: p.requested_at)
