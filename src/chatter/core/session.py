"""Per-user session state: system prompt overrides and elicitation budget."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass
class UserSession:
    elicitation_mode: bool = False
    remaining_turns: int = 0
    elicitation_instruction: str = ""
    prompt_additions: list[str] = field(default_factory=list)

    @property
    def prompt_override(self) -> str:
        return "\n\n".join(self.prompt_additions)


class SessionStore:
    """Mutable per-user state shared by every conversation component.

    All fields of all users live behind one lock; callers never get the
    ``UserSession`` object itself.
    """

    def __init__(self, base_prompt: str = "") -> None:
        self._base_prompt = base_prompt.strip()
        self._lock = threading.Lock()
        self._sessions: dict[int, UserSession] = {}

    def _session(self, user_id: int) -> UserSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = UserSession()
            self._sessions[user_id] = session
        return session

    def system_prompt(self, user_id: int) -> str:
        with self._lock:
            session = self._session(user_id)
            parts = [self._base_prompt, session.prompt_override]
            if session.elicitation_mode:
                parts.append(session.elicitation_instruction)
        return "\n\n".join(part for part in parts if part)

    def prompt_override(self, user_id: int) -> str:
        with self._lock:
            return self._session(user_id).prompt_override

    def add_prompt(self, user_id: int, addition: str) -> bool:
        """Fold text into the user's prompt unless it is already contained there."""
        addition = addition.strip()
        if not addition:
            return False
        with self._lock:
            session = self._session(user_id)
            if addition in session.prompt_override:
                return False
            session.prompt_additions.append(addition)
        return True

    def enter_elicitation(self, user_id: int, budget: int, instruction: str) -> None:
        with self._lock:
            session = self._session(user_id)
            session.elicitation_mode = True
            session.remaining_turns = budget
            session.elicitation_instruction = instruction

    def is_eliciting(self, user_id: int) -> bool:
        with self._lock:
            return self._session(user_id).elicitation_mode

    def remaining_turns(self, user_id: int) -> int:
        with self._lock:
            return self._session(user_id).remaining_turns

    def decrement_turns(self, user_id: int) -> int:
        with self._lock:
            session = self._session(user_id)
            session.remaining_turns = max(0, session.remaining_turns - 1)
            return session.remaining_turns

    def clear_elicitation(self, user_id: int) -> None:
        with self._lock:
            session = self._session(user_id)
            session.elicitation_mode = False
            session.remaining_turns = 0
            session.elicitation_instruction = ""
