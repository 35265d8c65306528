"""Bounded tool-call resolution and the dialog tools exposed to the primary model."""

from __future__ import annotations

import inspect
import json
import time
from typing import Any

from loguru import logger
from republic import Tool

from chatter.agents.prompts import STOP_AND_SUMMARIZE
from chatter.agents.producer import ProducerAgent
from chatter.history import InteractionLog
from chatter.interfaces import ExternalDataSource, ExternalSink
from chatter.types import Completion, Message

DEFAULT_MAX_DEPTH = 3
SEARCH_LIMIT = 5
DIALOG_TAG = "dialog_summary"


class ToolResolver:
    """Executes model tool calls, recursing at most ``max_depth`` rounds.

    When the cap is reached the model gets one last call without tools and an
    explicit instruction to stop and summarize. Successful tool results are
    kept per resolver, so a retried turn does not repeat side effects.
    """

    def __init__(self, producer: ProducerAgent, tools: list[Tool], *, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._producer = producer
        self._tools = {tool.name: tool for tool in tools}
        self._max_depth = max_depth
        self._results: dict[str, str] = {}

    @property
    def tools(self) -> list[Tool]:
        return list(self._tools.values())

    async def run(self, messages: list[Message], *, purpose: str = "chat") -> Completion:
        completion = await self._producer.generate(messages, tools=self.tools or None, purpose=purpose)
        return await self.resolve(messages, completion)

    async def resolve(self, messages: list[Message], completion: Completion, *, depth: int = 0) -> Completion:
        if not completion.tool_calls:
            return completion
        if depth >= self._max_depth:
            logger.info("tools.depth_cap depth={} pending={}", depth, len(completion.tool_calls))
            final_messages = [*messages, {"role": "system", "content": STOP_AND_SUMMARIZE}]
            return await self._producer.generate(final_messages, purpose="tool_summary")

        followup = [
            *messages,
            {"role": "assistant", "content": completion.text, "tool_calls": completion.tool_calls},
        ]
        for call in completion.tool_calls:
            result = await self.execute(call)
            followup.append({"role": "tool", "tool_call_id": call["id"], "content": result})
        next_completion = await self._producer.generate(followup, tools=self.tools, purpose="tool_followup")
        return await self.resolve(followup, next_completion, depth=depth + 1)

    async def execute(self, call: dict[str, Any]) -> str:
        function = call.get("function") or {}
        name = str(function.get("name", ""))
        tool = self._tools.get(name)
        if tool is None:
            return f"error: unknown tool '{name}'"
        try:
            kwargs = _parse_arguments(function.get("arguments"))
        except ValueError as exc:
            return f"error: {exc}"

        signature = _tool_signature(name, kwargs)
        cached = self._results.get(signature)
        if cached is not None:
            logger.info("tool.call.cached name={}", name)
            return cached

        logger.info("tool.call.start name={} args={}", name, ",".join(sorted(kwargs)))
        start = time.monotonic()
        try:
            result = tool.run(**kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.exception("tool.call.error name={}", name)
            return f"error: {exc!s}"
        finally:
            logger.info("tool.call.end name={} duration={:.3f}ms", name, (time.monotonic() - start) * 1000)
        output = str(result)
        if not output.startswith("error:"):
            self._results[signature] = output
        return output


def _tool_signature(name: str, kwargs: dict[str, Any]) -> str:
    return f"{name}:{json.dumps(kwargs, sort_keys=True, ensure_ascii=False, default=str)}"


def _parse_arguments(raw: object) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        payload = json.loads(str(raw))
    except json.JSONDecodeError as exc:
        raise ValueError(f"arguments are not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ValueError("arguments must be a JSON object")
    return payload


def build_dialog_tools(
    history: InteractionLog,
    user_id: int,
    *,
    sink: ExternalSink | None = None,
    source: ExternalDataSource | None = None,
    parent_page: str = "",
) -> list[Tool]:
    """Tools bound to one user's dialogue."""
    tools: list[Tool] = []

    if sink is not None:

        async def save_dialog(title: str) -> str:
            if not title.strip():
                return "error: page title is empty"
            transcript = history.render_transcript(user_id)
            if not transcript:
                return "dialog history is empty, nothing to save"
            result = await sink.create_page(title, transcript, parent_page, [DIALOG_TAG, str(user_id)])
            if not result.success:
                return f"error: {result.message}"
            return f"dialog saved as '{title}' {result.url}".strip()

        async def create_page(title: str, content: str, parent_page_id: str = "") -> str:
            result = await sink.create_page(title, content, parent_page_id or parent_page, [])
            if not result.success:
                return f"error: {result.message}"
            return f"page '{title}' created id={result.page_id} {result.url}".strip()

        tools.append(
            Tool(
                name="save_dialog",
                description="Save the current dialogue as a page. Use when the user asks to save or remember the conversation.",
                parameters={
                    "type": "object",
                    "properties": {"title": {"type": "string", "description": "Short page title"}},
                    "required": ["title"],
                },
                handler=save_dialog,
            )
        )
        tools.append(
            Tool(
                name="create_page",
                description="Create a page with arbitrary markdown content, optionally under a parent page.",
                parameters={
                    "type": "object",
                    "properties": {
                        "title": {"type": "string", "description": "Page title"},
                        "content": {"type": "string", "description": "Markdown content"},
                        "parent_page_id": {"type": "string", "description": "Parent page id, optional"},
                    },
                    "required": ["title", "content"],
                },
                handler=create_page,
            )
        )

    if source is not None:

        async def search(query: str) -> str:
            result = await source.search(query, SEARCH_LIMIT, "")
            if not result.success:
                return f"error: {result.message}"
            if not result.items:
                return f"nothing found for '{query}'"
            return json.dumps(result.items, ensure_ascii=False, default=str)

        tools.append(
            Tool(
                name="search",
                description="Search previously saved dialogues and pages.",
                parameters={
                    "type": "object",
                    "properties": {"query": {"type": "string", "description": "Search query"}},
                    "required": ["query"],
                },
                handler=search,
            )
        )

    return tools
