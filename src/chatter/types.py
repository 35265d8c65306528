"""Framework-neutral data aliases."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

type Message = dict[str, Any]

MALFORMED_VALIDATOR_FEEDBACK = "malformed validator response: reply with the exact JSON schema requested"


@dataclass(frozen=True)
class Verdict:
    """Judgement of one candidate; an invalid verdict is a non-exceptional validation failure."""

    valid: bool
    feedback: str = ""

    @classmethod
    def ok(cls) -> Verdict:
        return cls(True)

    @classmethod
    def reject(cls, feedback: str) -> Verdict:
        return cls(False, feedback)


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class Completion:
    """Text returned by one producer call."""

    text: str
    model: str = ""
    usage: Usage = field(default_factory=Usage)
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
