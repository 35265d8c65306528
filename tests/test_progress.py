from __future__ import annotations

import pytest

from chatter.interfaces import MessageRef, StageStatus
from chatter.workflow.progress import MessageProgressTracker

STEPS = [("search", "Search"), ("publish", "Publish")]


class RecordingTransport:
    def __init__(self, *, fail_edit: bool = False) -> None:
        self.fail_edit = fail_edit
        self.edits: list[str] = []

    async def send(self, user_id: int, text: str) -> MessageRef:
        return MessageRef(user_id, 1)

    async def edit(self, ref: MessageRef, text: str) -> None:
        if self.fail_edit:
            raise RuntimeError("message to edit not found")
        self.edits.append(text)


@pytest.mark.asyncio
async def test_updates_edit_the_status_message() -> None:
    transport = RecordingTransport()
    tracker = MessageProgressTracker(transport, MessageRef(1, 1), STEPS)

    await tracker.update("search", StageStatus.IN_PROGRESS)

    assert transport.edits[-1] == (
        "🔄 **Processing request...**\n\n🔄 Search\n⏳ Publish\n\n_This may take 30-60 seconds..._"
    )


@pytest.mark.asyncio
async def test_final_result_lists_completed_stages() -> None:
    transport = RecordingTransport()
    tracker = MessageProgressTracker(transport, MessageRef(1, 1), STEPS)
    for key, _label in STEPS:
        await tracker.update(key, StageStatus.IN_PROGRESS)
        await tracker.update(key, StageStatus.COMPLETED)

    await tracker.set_final_result("file:///page.md")

    text = transport.edits[-1]
    assert text.startswith("**Summary is ready!**\n🔗 file:///page.md\n\n**Completed stages:**")
    assert "✅ Search" in text
    assert "✅ Publish" in text
    assert "30-60 seconds" not in text


@pytest.mark.asyncio
async def test_failure_is_rendered() -> None:
    transport = RecordingTransport()
    tracker = MessageProgressTracker(transport, MessageRef(1, 1), STEPS)
    await tracker.update("search", StageStatus.ERROR)

    await tracker.fail("stage 'search' failed: no data")

    assert transport.edits[-1].startswith("❌ **Request failed:** stage 'search' failed: no data")
    assert "❌ Search" in transport.edits[-1]


@pytest.mark.asyncio
async def test_edit_errors_are_not_raised() -> None:
    tracker = MessageProgressTracker(RecordingTransport(fail_edit=True), MessageRef(1, 1), STEPS)

    await tracker.update("search", StageStatus.IN_PROGRESS)
    await tracker.update("unknown", StageStatus.COMPLETED)
