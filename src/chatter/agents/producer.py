"""Producer agents: named wrappers around one model-calling client."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Protocol

from loguru import logger
from republic import LLM, RepublicError, Tool

from chatter.errors import EmptyResponseError, UpstreamError
from chatter.types import Completion, Message, Usage

LOG_CONTENT_LIMIT = 1500
PRIMARY = "primary"
CHECKER = "checker"

# Failures of the model transport; anything else is a bug and propagates.
TRANSPORT_ERRORS = (RepublicError, OSError)


class ChatClient(Protocol):
    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int,
        tools: list[Tool] | None = None,
    ) -> Any: ...


class RepublicChatClient:
    """Chat client backed by a Republic LLM instance.

    With tools the model is first asked for tool calls; when it makes none,
    the same messages are sent once more as a plain chat request.
    """

    def __init__(self, llm: LLM, model: str = "") -> None:
        self._llm = llm
        self._model = model

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int,
        tools: list[Tool] | None = None,
    ) -> Completion:
        if tools:
            calls = await self._llm.tool_calls_async(messages=messages, max_tokens=max_tokens, tools=tools)
            if calls:
                return Completion(text="", model=self._model, tool_calls=normalize_tool_calls(calls))
            logger.debug("producer.tools.unused model={} tools={}", self._model, len(tools))
        text = await self._llm.chat_async(messages=messages, max_tokens=max_tokens)
        return Completion(text=text or "", model=self._model)


class ProducerAgent:
    """One model instance with a role label.

    The role is only a routing convention: the orchestrator sends validator
    calls to a producer named ``checker`` and everything else to ``primary``.
    """

    def __init__(
        self,
        name: str,
        client: ChatClient,
        *,
        max_tokens: int = 2048,
        timeout_seconds: float | None = 60,
    ) -> None:
        self.name = name
        self._client = client
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    async def generate(
        self,
        messages: list[Message],
        *,
        tools: list[Tool] | None = None,
        purpose: str = "chat",
    ) -> Completion:
        _log_request(self.name, purpose, messages)
        try:
            async with asyncio.timeout(self._timeout_seconds):
                response = await self._client.complete(messages, max_tokens=self._max_tokens, tools=tools)
        except TimeoutError as exc:
            raise UpstreamError(f"{self.name}: no response within {self._timeout_seconds}s") from exc
        except TRANSPORT_ERRORS as exc:
            raise UpstreamError(f"{self.name}: {exc!s}") from exc

        completion = _to_completion(response)
        logger.info(
            "producer.response name={} purpose={} model={} tokens={}/{}/{}",
            self.name,
            purpose,
            completion.model or "-",
            completion.usage.prompt_tokens,
            completion.usage.completion_tokens,
            completion.usage.total_tokens,
        )
        return completion


def _to_completion(response: Any) -> Completion:
    if isinstance(response, Completion):
        if not response.text.strip() and not response.tool_calls:
            raise EmptyResponseError("upstream returned an empty completion")
        return response

    if isinstance(response, str):
        if not response.strip():
            raise EmptyResponseError("upstream returned an empty text")
        return Completion(text=response)

    choices = getattr(response, "choices", None)
    if not choices:
        raise EmptyResponseError("upstream returned zero choices")
    message = getattr(choices[0], "message", None)
    if message is None:
        raise EmptyResponseError("upstream choice carries no message")
    return Completion(
        text=getattr(message, "content", "") or "",
        model=str(getattr(response, "model", "") or ""),
        usage=_extract_usage(response),
        tool_calls=normalize_tool_calls(getattr(message, "tool_calls", None) or []),
    )


def _extract_usage(response: Any) -> Usage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return Usage()
    return Usage(
        prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
    )


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def normalize_tool_calls(tool_calls: list[Any]) -> list[dict[str, Any]]:
    """Tool calls as OpenAI-style dicts, from dicts or SDK objects."""
    calls: list[dict[str, Any]] = []
    for idx, tool_call in enumerate(tool_calls):
        function = _field(tool_call, "function")
        if function is None:
            continue
        arguments = _field(function, "arguments")
        if arguments is not None and not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        calls.append({
            "id": _field(tool_call, "id") or str(idx),
            "type": _field(tool_call, "type") or "function",
            "function": {
                "name": _field(function, "name") or "",
                "arguments": arguments or "",
            },
        })
    return calls


def _log_request(name: str, purpose: str, messages: list[Message]) -> None:
    logger.info("producer.request name={} purpose={} messages={}", name, purpose, len(messages))
    for index, message in enumerate(messages):
        content = str(message.get("content") or "")
        if len(content) > LOG_CONTENT_LIMIT:
            content = content[:LOG_CONTENT_LIMIT] + "..."
        logger.debug("producer.request.message index={} role={} chars={} content={}", index, message.get("role"), len(content), content)
