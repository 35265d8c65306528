"""Prompt assembly and history compaction."""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from chatter.agents.output import StructuredAgentOutput
from chatter.core.session import SessionStore
from chatter.history import InteractionLog
from chatter.types import Message


class ContextCompactor:
    """Swaps raw history for a model-written summary folded into the system prompt."""

    def __init__(self, history: InteractionLog, sessions: SessionStore) -> None:
        self._history = history
        self._sessions = sessions

    def build_messages(self, user_id: int, hints: Iterable[str] = ()) -> list[Message]:
        messages: list[Message] = [{"role": "system", "content": hint} for hint in hints]
        system_prompt = self._sessions.system_prompt(user_id)
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(event.to_message() for event in self._history.get_active(user_id))
        return messages

    def fold_prompt(self, user_id: int, addition: str) -> bool:
        added = self._sessions.add_prompt(user_id, addition)
        if added:
            self._history.note_prompt(user_id, addition.strip())
        return added

    def apply(self, user_id: int, output: StructuredAgentOutput) -> bool:
        """Compact when the output carries a summary; returns whether it did."""
        if not output.wants_compaction:
            return False
        added = self.fold_prompt(user_id, output.compressed_context)
        flipped = self._history.disable_all(user_id)
        logger.info("compactor.apply user={} prompt_added={} disabled={}", user_id, added, flipped)
        return True
