"""Persistent interaction record store."""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

RECORD_EVENT = "event"
RECORD_DISABLE_ALL = "disable_all"
RECORD_PROMPT = "prompt"
RECORD_KINDS = frozenset({RECORD_EVENT, RECORD_DISABLE_ALL, RECORD_PROMPT})


class FileInteractionStore:
    """Append-only JSONL record stream, one record per line."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._read_records: list[dict[str, Any]] = []
        self._read_offset = 0

    def _reset(self) -> None:
        self._read_records = []
        self._read_offset = 0

    def read(self) -> list[dict[str, Any]]:
        with self._lock:
            return self._read_locked()

    def _read_locked(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            self._reset()
            return []

        file_size = self.path.stat().st_size
        if file_size < self._read_offset:
            # The file was truncated or replaced, so cached records are stale.
            self._reset()

        with self.path.open("r", encoding="utf-8") as handle:
            handle.seek(self._read_offset)
            for raw_line in handle:
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                record = self.record_from_payload(payload)
                if record is not None:
                    self._read_records.append(record)
            self._read_offset = handle.tell()

        return list(self._read_records)

    @staticmethod
    def record_from_payload(payload: object) -> dict[str, Any] | None:
        if not isinstance(payload, dict):
            return None
        kind = payload.get("kind", RECORD_EVENT)
        if kind not in RECORD_KINDS:
            return None
        user_id = payload.get("user_id")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            return None
        if kind == RECORD_DISABLE_ALL:
            return {"kind": kind, "user_id": user_id, "timestamp": payload.get("timestamp", "")}
        content = payload.get("content")
        if not isinstance(content, str):
            return None
        record = {"kind": kind, "user_id": user_id, "content": content, "timestamp": payload.get("timestamp", "")}
        if kind == RECORD_EVENT:
            direction = payload.get("direction")
            if not isinstance(direction, str):
                return None
            record["direction"] = direction
            record["used"] = bool(payload.get("used", True))
        return record

    def append(self, record: dict[str, Any]) -> None:
        self.append_many([record])

    def append_many(self, records: Iterable[dict[str, Any]]) -> None:
        batch = list(records)
        if not batch:
            return

        with self._lock:
            # Keep cache and offset in sync before writing.
            self._read_locked()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                for record in batch:
                    handle.write(json.dumps(record, ensure_ascii=False) + "\n")
                    self._read_records.append(dict(record))
                self._read_offset = handle.tell()
