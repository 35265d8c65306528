"""Turn-budgeted elicitation dialogue."""

from __future__ import annotations

import re
from enum import StrEnum

from loguru import logger

from chatter.agents.output import ReplyStatus
from chatter.agents.prompts import accelerate_hint, elicitation_instruction, elicitation_seed
from chatter.core.session import SessionStore

NUMBERED_LINE_RE = re.compile(r"^\d+\.")


class TurnDecision(StrEnum):
    CONTINUE = "continue"
    FINAL = "final"
    FORCE_FINAL = "force_final"


class ElicitationMachine:
    """Idle -> Eliciting(remaining > 0) -> Eliciting(0, forcing final) -> Idle.

    The counter lives in the shared ``SessionStore``; this class owns the
    transition rules only.
    """

    def __init__(self, sessions: SessionStore, *, budget: int = 15, hint_threshold: int = 2) -> None:
        if budget < 1:
            raise ValueError("budget must be >= 1")
        self._sessions = sessions
        self.budget = budget
        self.hint_threshold = hint_threshold

    def start(self, user_id: int, topic: str) -> str:
        """Enter elicitation mode and return the seed user message."""
        topic = topic.strip()
        self._sessions.enter_elicitation(user_id, self.budget, elicitation_instruction(topic, self.budget))
        logger.info("elicitation.start user={} budget={}", user_id, self.budget)
        return elicitation_seed(topic)

    def is_active(self, user_id: int) -> bool:
        return self._sessions.is_eliciting(user_id)

    def remaining(self, user_id: int) -> int:
        return self._sessions.remaining_turns(user_id)

    def needs_forced_final(self, user_id: int) -> bool:
        return self.is_active(user_id) and self.remaining(user_id) == 0

    def hints(self, user_id: int) -> list[str]:
        if not self.is_active(user_id):
            return []
        remaining = self.remaining(user_id)
        if 0 < remaining <= self.hint_threshold:
            return [accelerate_hint(remaining)]
        return []

    def advance(self, user_id: int, status: ReplyStatus | None) -> TurnDecision:
        """Account for one assistant turn carrying ``status``."""
        if not self.is_active(user_id):
            return TurnDecision.CONTINUE
        if status is ReplyStatus.FINAL:
            self.finish(user_id)
            return TurnDecision.FINAL
        remaining = self._sessions.decrement_turns(user_id)
        logger.info("elicitation.turn user={} remaining={}", user_id, remaining)
        if remaining == 0:
            return TurnDecision.FORCE_FINAL
        return TurnDecision.CONTINUE

    def finish(self, user_id: int) -> None:
        self._sessions.clear_elicitation(user_id)
        logger.info("elicitation.finish user={}", user_id)


def enforce_numbered_list(answer: str) -> str:
    """Render a multi-line question block as ``1. ... 2. ...`` unless already numbered."""
    lines = [line.strip() for line in answer.splitlines() if line.strip()]
    if len(lines) < 2:
        return answer
    if sum(1 for line in lines if NUMBERED_LINE_RE.match(line)) >= 2:
        return answer
    return "\n".join(f"{index}. {line}" for index, line in enumerate(lines, start=1))
