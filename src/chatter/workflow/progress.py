"""Progress reporting for long-running workflows."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from loguru import logger

from chatter.interfaces import ChatTransport, MessageRef, StageStatus

STATUS_ICONS = {
    StageStatus.PENDING: "⏳",
    StageStatus.IN_PROGRESS: "🔄",
    StageStatus.COMPLETED: "✅",
    StageStatus.ERROR: "❌",
}


class NullProgress:
    """Progress sink that drops every update."""

    async def update(self, stage_key: str, status: str) -> None:
        return None


@dataclass
class ProgressStep:
    label: str
    status: StageStatus = StageStatus.PENDING
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


class MessageProgressTracker:
    """Keeps one previously sent status message in sync with the workflow stages."""

    def __init__(
        self,
        transport: ChatTransport,
        ref: MessageRef,
        steps: list[tuple[str, str]],
        *,
        title: str = "Processing request...",
        done_title: str = "Summary is ready!",
    ) -> None:
        self._transport = transport
        self._ref = ref
        self._steps = {key: ProgressStep(label) for key, label in steps}
        self._title = title
        self._done_title = done_title
        self._final_url: str | None = None
        self._failure: str | None = None
        self._lock = asyncio.Lock()

    async def update(self, stage_key: str, status: str) -> None:
        step = self._steps.get(stage_key)
        if step is not None:
            step.status = StageStatus(status)
            if step.status is StageStatus.IN_PROGRESS:
                step.started_at = time.monotonic()
                step.finished_at = None
            elif step.status in (StageStatus.COMPLETED, StageStatus.ERROR):
                step.finished_at = time.monotonic()
        await self._refresh()

    async def set_final_result(self, url: str) -> None:
        self._final_url = url
        await self._refresh()

    async def fail(self, message: str) -> None:
        self._failure = message
        await self._refresh()

    def render(self) -> str:
        lines: list[str] = []
        finished = self._final_url is not None
        if finished:
            lines.append(f"**{self._done_title}**")
            if self._final_url:
                lines.append(f"🔗 {self._final_url}")
            lines.append("")
            lines.append("**Completed stages:**")
        elif self._failure is not None:
            lines.append(f"❌ **Request failed:** {self._failure}")
            lines.append("")
        else:
            lines.append(f"🔄 **{self._title}**")
            lines.append("")

        for step in self._steps.values():
            lines.append(f"{STATUS_ICONS.get(step.status, '❓')} {step.label}")
            duration = step.duration
            if finished and duration is not None and 0 < duration < 86400:
                lines.append(f"   ⏱️ {_format_duration(duration)}")

        if not finished and self._failure is None:
            lines.append("")
            lines.append("_This may take 30-60 seconds..._")
        return "\n".join(lines)

    async def _refresh(self) -> None:
        async with self._lock:
            text = self.render()
            try:
                await self._transport.edit(self._ref, text)
            except Exception:
                logger.exception("progress.edit.error chat={} message={}", self._ref.chat_id, self._ref.message_id)


def _format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(round(seconds), 60)
    return f"{minutes}m{rest:02d}s"
