from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest
from republic import Tool

from chatter.agents.producer import ProducerAgent
from chatter.agents.prompts import STOP_AND_SUMMARIZE
from chatter.core.tools import DIALOG_TAG, ToolResolver, build_dialog_tools
from chatter.history import Direction, InteractionLog
from chatter.interfaces import PageResult, SearchResult


class ScriptedClient:
    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def complete(self, messages: list[dict[str, Any]], *, max_tokens: int, tools: Any = None) -> Any:
        self.calls.append({"messages": list(messages), "tools": tools})
        return self.responses.pop(0)


def _tool_call_response(name: str, arguments: str, call_id: str = "c1") -> SimpleNamespace:
    call = SimpleNamespace(id=call_id, type="function", function=SimpleNamespace(name=name, arguments=arguments))
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="", tool_calls=[call]))])


def _echo_tool(calls: list[str]) -> Tool:
    def echo(value: str) -> str:
        calls.append(value)
        return f"echo:{value}"

    return Tool(
        name="echo",
        description="Echo a value",
        parameters={"type": "object", "properties": {"value": {"type": "string"}}, "required": ["value"]},
        handler=echo,
    )


class DummyPages:
    def __init__(self, *, items: list[dict[str, Any]] | None = None, fail: bool = False) -> None:
        self.items = items or []
        self.fail = fail
        self.pages: list[dict[str, Any]] = []

    async def create_page(self, title: str, content: str, parent_id: str, tags: list[str]) -> PageResult:
        if self.fail:
            return PageResult(success=False, message="quota exceeded")
        self.pages.append({"title": title, "content": content, "parent_id": parent_id, "tags": tags})
        return PageResult(page_id="p1", url="file:///p1.md")

    async def search(self, query: str, limit: int, time_range: str) -> SearchResult:
        return SearchResult(items=self.items[:limit])


@pytest.mark.asyncio
async def test_resolver_executes_calls_and_returns_followup() -> None:
    executed: list[str] = []
    client = ScriptedClient([_tool_call_response("echo", '{"value": "hi"}'), "final answer"])
    resolver = ToolResolver(ProducerAgent("primary", client), [_echo_tool(executed)])

    completion = await resolver.run([{"role": "user", "content": "say hi"}])

    assert completion.text == "final answer"
    assert executed == ["hi"]
    assert [tool.name for tool in client.calls[0]["tools"]] == ["echo"]
    followup = client.calls[1]["messages"]
    assert followup[1]["role"] == "assistant"
    assert followup[1]["tool_calls"][0]["function"]["name"] == "echo"
    assert followup[2] == {"role": "tool", "tool_call_id": "c1", "content": "echo:hi"}


@pytest.mark.asyncio
async def test_resolver_stops_at_depth_cap() -> None:
    executed: list[str] = []
    client = ScriptedClient([
        _tool_call_response("echo", '{"value": "1"}'),
        _tool_call_response("echo", '{"value": "2"}'),
        _tool_call_response("echo", '{"value": "3"}'),
        "summary",
    ])
    resolver = ToolResolver(ProducerAgent("primary", client), [_echo_tool(executed)], max_depth=2)

    completion = await resolver.run([{"role": "user", "content": "loop"}])

    assert completion.text == "summary"
    assert executed == ["1", "2"]
    assert len(client.calls) == 4
    last = client.calls[-1]
    assert last["tools"] is None
    assert last["messages"][-1] == {"role": "system", "content": STOP_AND_SUMMARIZE}


@pytest.mark.asyncio
async def test_execute_reports_errors_as_tool_results() -> None:
    def broken(value: str) -> str:
        raise RuntimeError(f"cannot handle {value}")

    tool = Tool(
        name="broken",
        description="Always fails",
        parameters={"type": "object", "properties": {"value": {"type": "string"}}},
        handler=broken,
    )
    resolver = ToolResolver(ProducerAgent("primary", ScriptedClient([])), [tool])

    unknown = await resolver.execute({"id": "1", "function": {"name": "nope", "arguments": "{}"}})
    bad_args = await resolver.execute({"id": "2", "function": {"name": "broken", "arguments": "{oops"}})
    failed = await resolver.execute({"id": "3", "function": {"name": "broken", "arguments": '{"value": "x"}'}})

    assert unknown == "error: unknown tool 'nope'"
    assert bad_args.startswith("error: arguments are not valid JSON")
    assert failed.startswith("error:")
    assert "cannot handle x" in failed


@pytest.mark.asyncio
async def test_save_dialog_publishes_transcript() -> None:
    history = InteractionLog()
    history.append(5, Direction.USER, "plan a trip")
    history.append(5, Direction.ASSISTANT, "where to?")
    pages = DummyPages()
    tools = {tool.name: tool for tool in build_dialog_tools(history, 5, sink=pages, parent_page="root")}
    resolver = ToolResolver(ProducerAgent("primary", ScriptedClient([])), list(tools.values()))

    result = await resolver.execute({"id": "1", "function": {"name": "save_dialog", "arguments": '{"title": "Trip"}'}})

    assert result == "dialog saved as 'Trip' file:///p1.md"
    assert pages.pages == [
        {
            "title": "Trip",
            "content": "**User:** plan a trip\n\n**Assistant:** where to?",
            "parent_id": "root",
            "tags": [DIALOG_TAG, "5"],
        }
    ]
    assert set(tools) == {"save_dialog", "create_page"}


@pytest.mark.asyncio
async def test_save_dialog_on_empty_history_and_failing_sink() -> None:
    history = InteractionLog()
    tools = build_dialog_tools(history, 1, sink=DummyPages(fail=True))
    resolver = ToolResolver(ProducerAgent("primary", ScriptedClient([])), tools)

    empty = await resolver.execute({"id": "1", "function": {"name": "save_dialog", "arguments": '{"title": "x"}'}})
    history.append(1, Direction.USER, "hi")
    failed = await resolver.execute({"id": "2", "function": {"name": "save_dialog", "arguments": '{"title": "x"}'}})

    assert empty == "dialog history is empty, nothing to save"
    assert failed == "error: quota exceeded"


@pytest.mark.asyncio
async def test_search_tool_returns_json_items() -> None:
    pages = DummyPages(items=[{"id": "p1", "subject": "Trip"}])
    tools = build_dialog_tools(InteractionLog(), 1, source=pages)
    resolver = ToolResolver(ProducerAgent("primary", ScriptedClient([])), tools)

    found = await resolver.execute({"id": "1", "function": {"name": "search", "arguments": '{"query": "trip"}'}})

    assert json.loads(found) == [{"id": "p1", "subject": "Trip"}]
    assert [tool.name for tool in tools] == ["search"]
    assert build_dialog_tools(InteractionLog(), 1) == []


@pytest.mark.asyncio
async def test_repeated_call_reuses_successful_result() -> None:
    executed: list[str] = []
    resolver = ToolResolver(ProducerAgent("primary", ScriptedClient([])), [_echo_tool(executed)])

    first = await resolver.execute({"id": "1", "function": {"name": "echo", "arguments": '{"value": "hi"}'}})
    again = await resolver.execute({"id": "2", "function": {"name": "echo", "arguments": {"value": "hi"}}})
    other = await resolver.execute({"id": "3", "function": {"name": "echo", "arguments": '{"value": "yo"}'}})

    assert first == again == "echo:hi"
    assert other == "echo:yo"
    assert executed == ["hi", "yo"]


@pytest.mark.asyncio
async def test_failed_results_are_not_reused() -> None:
    attempts: list[str] = []

    def flaky(value: str) -> str:
        attempts.append(value)
        if len(attempts) == 1:
            raise RuntimeError("busy")
        return "done"

    tool = Tool(
        name="flaky",
        description="Fails once",
        parameters={"type": "object", "properties": {"value": {"type": "string"}}},
        handler=flaky,
    )
    resolver = ToolResolver(ProducerAgent("primary", ScriptedClient([])), [tool])
    call = {"id": "1", "function": {"name": "flaky", "arguments": '{"value": "x"}'}}

    assert (await resolver.execute(call)).startswith("error:")
    assert await resolver.execute(call) == "done"
    assert attempts == ["x", "x"]
