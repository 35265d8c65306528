"""Structured model output and validator response parsing."""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from chatter.errors import UpstreamError
from chatter.types import MALFORMED_VALIDATOR_FEEDBACK, Verdict

FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*(.*?)\s*```$", re.DOTALL)
OUTPUT_KEYS = frozenset({"title", "answer", "compressed_context", "status"})


class ReplyStatus(StrEnum):
    CONTINUE = "continue"
    FINAL = "final"


@dataclass(frozen=True)
class TextIssue:
    text: str

    def to_display_string(self) -> str:
        return self.text


@dataclass(frozen=True)
class TextListIssue:
    items: tuple[str, ...]

    def to_display_string(self) -> str:
        return "; ".join(self.items)


@dataclass(frozen=True)
class OpaqueIssue:
    raw: str

    def to_display_string(self) -> str:
        return self.raw


type IssueText = TextIssue | TextListIssue | OpaqueIssue


def issue_text_from_json(value: object) -> IssueText | None:
    """Fold a duck-typed JSON value into one of the issue variants."""
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, TextIssue | TextListIssue | OpaqueIssue):
        return value
    if isinstance(value, str):
        return TextIssue(value)
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return TextListIssue(tuple(value))
    return OpaqueIssue(compact_json(value))


def compact_json(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except TypeError:
        return str(value)


def _text(value: object) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else compact_json(value)


class StructuredAgentOutput(BaseModel):
    """Answer envelope every primary producer is asked to return."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    title: str = ""
    answer: str = ""
    compressed_context: str = ""
    status: ReplyStatus | None = None
    issues: IssueText | None = Field(default=None, validation_alias=AliasChoices("issues", "specific_issues"))
    correction_request: str = ""

    @field_validator("title", "answer", "correction_request", "compressed_context", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        return _text(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: object) -> ReplyStatus | None:
        if not isinstance(value, str):
            return None
        try:
            return ReplyStatus(value.strip().lower())
        except ValueError:
            return None

    @field_validator("issues", mode="before")
    @classmethod
    def _fold_issues(cls, value: object) -> IssueText | None:
        return issue_text_from_json(value)

    @property
    def wants_compaction(self) -> bool:
        return bool(self.compressed_context.strip())


class ValidationReport(BaseModel):
    """Schema returned by LLM validators of collected data and generated artifacts."""

    model_config = ConfigDict(extra="ignore")

    is_valid: bool
    message: str = ""
    suggested_action: str = ""
    correction_request: str = ""
    specific_issues: IssueText | None = None

    @field_validator("message", "suggested_action", "correction_request", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        return _text(value)

    @field_validator("specific_issues", mode="before")
    @classmethod
    def _fold_issues(cls, value: object) -> IssueText | None:
        return issue_text_from_json(value)

    def to_verdict(self) -> Verdict:
        if self.is_valid:
            return Verdict.ok()
        feedback = self.correction_request or self.suggested_action or self.message or "output rejected"
        if self.specific_issues is not None:
            feedback = f"{feedback} (issues: {self.specific_issues.to_display_string()})"
        return Verdict.reject(feedback)


@dataclass(frozen=True)
class StructuredReply:
    output: StructuredAgentOutput
    raw: str

    @property
    def answer(self) -> str:
        return self.output.answer or self.raw

    @property
    def title(self) -> str:
        return self.output.title

    @property
    def status(self) -> ReplyStatus | None:
        return self.output.status


@dataclass(frozen=True)
class RawReply:
    """Model text that could not be structured; delivered verbatim in degraded mode."""

    text: str

    @property
    def answer(self) -> str:
        return self.text

    @property
    def title(self) -> str:
        return ""

    @property
    def status(self) -> ReplyStatus | None:
        return None


type ParsedReply = StructuredReply | RawReply


def strip_fences(text: str) -> str:
    stripped = text.strip()
    match = FENCE_RE.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def load_json_object(text: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(strip_fences(text))
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def parse_structured(text: str) -> StructuredAgentOutput | None:
    payload = load_json_object(text)
    if payload is None or OUTPUT_KEYS.isdisjoint(payload):
        return None
    try:
        return StructuredAgentOutput.model_validate(payload)
    except ValidationError:
        return None


async def parse_or_reformat(raw: str, reformat: Callable[[str], Awaitable[str]] | None = None) -> ParsedReply:
    """Parse model text, trying one reformat pass before falling back to raw text."""
    output = parse_structured(raw)
    if output is not None:
        return StructuredReply(output, raw)
    if reformat is None:
        return RawReply(raw)
    try:
        reformatted = await reformat(raw)
    except UpstreamError as exc:
        logger.warning("output.reformat.error error={}", exc)
        return RawReply(raw)
    output = parse_structured(reformatted)
    if output is None:
        logger.info("output.reformat.unstructured chars={}", len(raw))
        return RawReply(raw)
    return StructuredReply(output, raw)


def parse_validation_report(text: str) -> Verdict:
    """Judge a validation-report reply; unparseable text is never a success."""
    payload = load_json_object(text)
    if payload is None:
        return Verdict.reject(MALFORMED_VALIDATOR_FEEDBACK)
    try:
        report = ValidationReport.model_validate(payload)
    except ValidationError:
        return Verdict.reject(MALFORMED_VALIDATOR_FEEDBACK)
    return report.to_verdict()


def parse_checker_verdict(text: str) -> Verdict:
    """Judge a ``{status: ok|fail, msg}`` checker reply."""
    payload = load_json_object(text)
    if payload is None:
        return Verdict.reject(MALFORMED_VALIDATOR_FEEDBACK)
    status = str(payload.get("status", "")).strip().lower()
    message = _text(payload.get("msg")).strip()
    if status == "ok":
        return Verdict.ok()
    if status == "fail":
        return Verdict.reject(message or "the status does not match the content of the answer")
    return Verdict.reject(MALFORMED_VALIDATOR_FEEDBACK)
