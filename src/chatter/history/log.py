"""Per-user interaction history with used/unused lifecycle."""

from __future__ import annotations

import dataclasses
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from loguru import logger

from chatter.history.store import RECORD_DISABLE_ALL, RECORD_EVENT, RECORD_PROMPT, FileInteractionStore


class Direction(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM_NOTE = "system-note"


_ROLE_BY_DIRECTION = {
    Direction.USER: "user",
    Direction.ASSISTANT: "assistant",
    Direction.SYSTEM_NOTE: "system",
}


@dataclass(frozen=True)
class InteractionEvent:
    """One exchanged message."""

    timestamp: str
    user_id: int
    direction: Direction
    content: str
    used: bool = True

    def to_message(self) -> dict[str, str]:
        return {"role": _ROLE_BY_DIRECTION[self.direction], "content": self.content}

    def to_record(self) -> dict[str, Any]:
        return {
            "kind": RECORD_EVENT,
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "direction": self.direction.value,
            "content": self.content,
            "used": self.used,
        }


def _now() -> str:
    return datetime.now(UTC).isoformat()


class InteractionLog:
    """Append-only store of exchanged messages, each tagged used/unused.

    Events of one user are totally ordered by append sequence. Disabled
    events never reach prompt assembly but stay available through
    ``get_all`` and survive restarts through the record store.
    """

    def __init__(self, store: FileInteractionStore | None = None) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._events: dict[int, list[InteractionEvent]] = defaultdict(list)

    def append(
        self,
        user_id: int,
        direction: Direction | str,
        content: str,
        *,
        used: bool = True,
    ) -> InteractionEvent:
        event = InteractionEvent(_now(), user_id, Direction(direction), content, used)
        with self._lock:
            self._events[user_id].append(event)
        self._persist(event.to_record())
        return event

    def get_active(self, user_id: int) -> list[InteractionEvent]:
        with self._lock:
            return [event for event in self._events.get(user_id, ()) if event.used]

    def get_all(self, user_id: int) -> list[InteractionEvent]:
        with self._lock:
            return list(self._events.get(user_id, ()))

    def disable_all(self, user_id: int) -> int:
        """Mark every existing event of the user unused; returns how many flipped."""
        with self._lock:
            flipped = self._disable_locked(user_id)
        self._persist({"kind": RECORD_DISABLE_ALL, "user_id": user_id, "timestamp": _now()})
        logger.info("history.disable_all user={} flipped={}", user_id, flipped)
        return flipped

    def reset(self, user_id: int) -> None:
        """Forget the in-memory state of one user; the durable stream is untouched."""
        with self._lock:
            self._events.pop(user_id, None)

    def note_prompt(self, user_id: int, addition: str) -> None:
        """Persist one system-prompt addition so replay can restore it."""
        self._persist({"kind": RECORD_PROMPT, "user_id": user_id, "content": addition, "timestamp": _now()})

    def replay(self) -> dict[int, list[str]]:
        """Rebuild events from the store and return prompt additions per user."""
        if self._store is None:
            return {}
        records = self._store.read()
        prompts: dict[int, list[str]] = defaultdict(list)
        with self._lock:
            self._events.clear()
            for record in records:
                user_id = record["user_id"]
                kind = record["kind"]
                if kind == RECORD_DISABLE_ALL:
                    self._disable_locked(user_id)
                elif kind == RECORD_PROMPT:
                    prompts[user_id].append(record["content"])
                else:
                    try:
                        direction = Direction(record["direction"])
                    except ValueError:
                        continue
                    self._events[user_id].append(
                        InteractionEvent(record["timestamp"], user_id, direction, record["content"], record["used"])
                    )
            users = len(self._events)
        logger.info("history.replay records={} users={}", len(records), users)
        return dict(prompts)

    def render_transcript(self, user_id: int) -> str:
        lines: list[str] = []
        for event in self.get_active(user_id):
            if event.direction is Direction.USER:
                lines.append(f"**User:** {event.content}")
            elif event.direction is Direction.ASSISTANT:
                lines.append(f"**Assistant:** {event.content}")
        return "\n\n".join(lines)

    def _disable_locked(self, user_id: int) -> int:
        events = self._events.get(user_id)
        if not events:
            return 0
        flipped = sum(1 for event in events if event.used)
        self._events[user_id] = [dataclasses.replace(event, used=False) if event.used else event for event in events]
        return flipped

    def _persist(self, record: dict[str, Any]) -> None:
        if self._store is None:
            return
        try:
            self._store.append(record)
        except OSError:
            # The message is still processed in memory for the current turn.
            logger.exception("history.append.error kind={} user={}", record.get("kind"), record.get("user_id"))
