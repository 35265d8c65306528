"""Ports to the outside world: chat transport, progress and external services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol


@dataclass(frozen=True)
class MessageRef:
    """Handle of one sent message that can be edited later."""

    chat_id: int
    message_id: int


class ChatTransport(Protocol):
    async def send(self, user_id: int, text: str) -> MessageRef: ...

    async def edit(self, ref: MessageRef, text: str) -> None: ...


class StageStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class ProgressSink(Protocol):
    async def update(self, stage_key: str, status: str) -> None: ...


@dataclass(frozen=True)
class SearchResult:
    items: list[dict[str, Any]] = field(default_factory=list)
    success: bool = True
    message: str = ""


@dataclass(frozen=True)
class PageResult:
    page_id: str = ""
    success: bool = True
    message: str = ""
    url: str = ""


class ExternalDataSource(Protocol):
    async def search(self, query: str, limit: int, time_range: str) -> SearchResult: ...


class ExternalSink(Protocol):
    async def create_page(self, title: str, content: str, parent_id: str, tags: list[str]) -> PageResult: ...
