from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest
from republic import Tool

from chatter.agents.producer import ProducerAgent
from chatter.agents.prompts import CHECKER_INSTRUCTION, FINALIZE_INSTRUCTION, REFORMAT_INSTRUCTION
from chatter.core.assistant import APOLOGY, EMPTY_HISTORY, SUMMARY_APOLOGY, ChatAssistant, Reply
from chatter.core.elicitation import ElicitationMachine
from chatter.core.session import SessionStore
from chatter.history import Direction, InteractionLog
from chatter.types import Usage


class ScriptedClient:
    """Returns queued responses in order; queued exceptions are raised."""

    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.calls: list[list[dict[str, Any]]] = []
        self.tools: list[Any] = []

    async def complete(self, messages: list[dict[str, Any]], *, max_tokens: int, tools: Any = None) -> Any:
        self.calls.append(list(messages))
        self.tools.append(tools)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _reply(answer: str, *, status: str = "continue", title: str = "", compressed: str = "") -> str:
    return json.dumps({"title": title, "answer": answer, "compressed_context": compressed, "status": status})


def _build(
    primary: ScriptedClient,
    checker: ScriptedClient | None = None,
    *,
    budget: int = 15,
    tool_factory: Any = None,
) -> ChatAssistant:
    sessions = SessionStore("You are helpful.")
    return ChatAssistant(
        history=InteractionLog(),
        sessions=sessions,
        primary=ProducerAgent("primary", primary),
        checker=ProducerAgent("checker", checker) if checker is not None else None,
        elicitation=ElicitationMachine(sessions, budget=budget),
        tool_factory=tool_factory,
    )


@pytest.mark.asyncio
async def test_plain_chat_turn_records_both_sides() -> None:
    primary = ScriptedClient([_reply("Hello there", title="Greeting")])
    assistant = _build(primary)

    reply = await assistant.handle_message(1, "hi")

    assert reply.text == "Hello there"
    assert reply.render() == "**Greeting**\n\nHello there"
    assert [(event.direction, event.content) for event in assistant.history.get_active(1)] == [
        (Direction.USER, "hi"),
        (Direction.ASSISTANT, "Hello there"),
    ]
    assert primary.calls[0][0] == {"role": "system", "content": "You are helpful."}


@pytest.mark.asyncio
async def test_unstructured_reply_is_reformatted_once_then_delivered_raw() -> None:
    primary = ScriptedClient(["just text", "still just text"])
    assistant = _build(primary)

    reply = await assistant.handle_message(1, "hi")

    assert reply.text == "just text"
    assert primary.calls[1][0] == {"role": "system", "content": REFORMAT_INSTRUCTION}


@pytest.mark.asyncio
async def test_upstream_failure_returns_apology() -> None:
    primary = ScriptedClient([ConnectionError("down"), ConnectionError("down")])
    assistant = _build(primary)

    reply = await assistant.handle_message(1, "hi")

    assert reply.text == APOLOGY
    assert [event.content for event in assistant.history.get_all(1)] == ["hi"]


@pytest.mark.asyncio
async def test_compressed_reply_compacts_history() -> None:
    primary = ScriptedClient([_reply("Noted", compressed="user plans a trip to Rome")])
    assistant = _build(primary)
    assistant.history.append(1, Direction.USER, "earlier")

    reply = await assistant.handle_message(1, "I go to Rome")

    assert reply.text == "Noted"
    assert assistant.history.get_active(1) == []
    assert assistant.history.get_all(1)[-1].used is False
    assert "user plans a trip to Rome" in assistant.sessions.system_prompt(1)


@pytest.mark.asyncio
async def test_elicitation_with_budget_two_forces_final() -> None:
    primary = ScriptedClient([
        _reply("Who will use it?\nWhere will it run?"),
        _reply("How many users?"),
        _reply("Final spec body", status="final", title="Spec"),
    ])
    checker = ScriptedClient([
        '{"status": "ok", "msg": ""}',
        '{"status": "ok", "msg": ""}',
        "1. Pick a stack\n2. Build it",
    ])
    assistant = _build(primary, checker, budget=2)

    opening = await assistant.start_elicitation(1, "team bot")
    assert opening.text == "1. Who will use it?\n2. Where will it run?"
    assert opening.final is False
    assert assistant.sessions.remaining_turns(1) == 1

    final = await assistant.handle_message(1, "a team of three")

    assert final.final is True
    assert final.title == "Spec"
    assert final.text == "Final spec body"
    assert final.followups == ["1. Pick a stack\n2. Build it"]
    assert len(primary.calls) == 3
    assert "Very few clarification turns remain (1)" in primary.calls[1][0]["content"]
    assert primary.calls[2][0] == {"role": "system", "content": FINALIZE_INSTRUCTION}
    assert checker.calls[0][0] == {"role": "system", "content": CHECKER_INSTRUCTION}
    assert assistant.sessions.is_eliciting(1) is False
    assert assistant.sessions.remaining_turns(1) == 0
    events = assistant.history.get_all(1)
    assert events[0].content == "Specification topic: team bot"
    assert (events[-2].content, events[-2].used) == ("How many users?", False)
    assert events[-1].content == "**Spec**\n\nFinal spec body"


@pytest.mark.asyncio
async def test_checker_rejection_triggers_correction() -> None:
    primary = ScriptedClient([
        _reply("Here is everything you need", status="continue"),
        _reply("Complete specification", status="final", title="Spec"),
    ])
    checker = ScriptedClient([
        '{"status": "fail", "msg": "the answer is a finished specification, use final"}',
        '{"status": "ok", "msg": ""}',
        "Step 1",
    ])
    assistant = _build(primary, checker, budget=5)

    reply = await assistant.start_elicitation(1, "cake")

    assert reply.final is True
    assert reply.text == "Complete specification"
    correction = primary.calls[1]
    assert "use final" in correction[0]["content"]
    assert correction[1] == {"role": "user", "content": "Here is everything you need"}
    assert assistant.sessions.is_eliciting(1) is False
    notes = [event for event in assistant.history.get_all(1) if event.direction is Direction.SYSTEM_NOTE]
    assert [note.content.split(" ", 1)[0] for note in notes] == ["[check]", "[correction]", "[check]"]
    assert "use final" in notes[1].content
    assert all(note.used is False for note in notes)
    assert all(event.direction is not Direction.SYSTEM_NOTE for event in assistant.history.get_active(1))


@pytest.mark.asyncio
async def test_checker_never_agreeing_keeps_last_draft() -> None:
    primary = ScriptedClient([_reply("Question one?"), _reply("Question two?")])
    checker = ScriptedClient(["not json", "not json either"])
    assistant = _build(primary, checker, budget=5)

    reply = await assistant.start_elicitation(1, "topic")

    assert reply.text == "Question two?"
    assert assistant.sessions.remaining_turns(1) == 4


@pytest.mark.asyncio
async def test_summarize_empty_history() -> None:
    assistant = _build(ScriptedClient([]))

    reply = await assistant.summarize(1)

    assert reply.text == EMPTY_HISTORY


@pytest.mark.asyncio
async def test_summarize_compacts_conversation() -> None:
    primary = ScriptedClient([_reply("You talked about Rome", title="Summary", compressed="Rome trip in May")])
    assistant = _build(primary)
    assistant.history.append(1, Direction.USER, "Rome in May")

    reply = await assistant.summarize(1)

    assert reply.render() == "**Summary**\n\nYou talked about Rome"
    assert [event.content for event in assistant.history.get_active(1)] == ["You talked about Rome"]
    assert "Rome trip in May" in assistant.sessions.system_prompt(1)


@pytest.mark.asyncio
async def test_summarize_upstream_failure() -> None:
    assistant = _build(ScriptedClient([ConnectionError("down")]))
    assistant.history.append(1, Direction.USER, "hi")

    assert (await assistant.summarize(1)).text == SUMMARY_APOLOGY


@pytest.mark.asyncio
async def test_reset_context_leaves_elicitation() -> None:
    primary = ScriptedClient([_reply("Question?")])
    assistant = _build(primary)
    await assistant.start_elicitation(1, "topic")

    flipped = await assistant.reset_context(1)

    assert flipped == 2
    assert assistant.sessions.is_eliciting(1) is False
    assert assistant.history.get_active(1) == []


@pytest.mark.asyncio
async def test_plain_chat_resolves_tool_calls() -> None:
    call = SimpleNamespace(id="t1", type="function", function=SimpleNamespace(name="clock", arguments="{}"))
    tool_response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="", tool_calls=[call]))])
    primary = ScriptedClient([tool_response, _reply("It is noon")])

    def tool_factory(_user_id: int) -> list[Tool]:
        return [
            Tool(
                name="clock",
                description="Current time",
                parameters={"type": "object", "properties": {}},
                handler=lambda: "12:00",
            )
        ]

    assistant = _build(primary, tool_factory=tool_factory)

    reply = await assistant.handle_message(1, "what time is it?")

    assert reply.text == "It is noon"
    assert [tool.name for tool in primary.tools[0]] == ["clock"]
    assert primary.calls[1][-1] == {"role": "tool", "tool_call_id": "t1", "content": "12:00"}


def test_restore_folds_replayed_prompts() -> None:
    assistant = _build(ScriptedClient([]))

    assistant.restore({1: ["likes tea", "likes tea"]})

    assert assistant.sessions.prompt_override(1) == "likes tea"


@pytest.mark.asyncio
async def test_tool_side_effects_run_once_when_turn_is_retried() -> None:
    saved: list[str] = []
    call = SimpleNamespace(id="t1", type="function", function=SimpleNamespace(name="save", arguments='{"title": "Trip"}'))
    tool_response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="", tool_calls=[call]))])
    primary = ScriptedClient([tool_response, ConnectionError("down"), tool_response, _reply("Saved it")])

    def save(title: str) -> str:
        saved.append(title)
        return f"saved {title}"

    def tool_factory(_user_id: int) -> list[Tool]:
        return [
            Tool(
                name="save",
                description="Save the dialog",
                parameters={"type": "object", "properties": {"title": {"type": "string"}}},
                handler=save,
            )
        ]

    assistant = _build(primary, tool_factory=tool_factory)

    reply = await assistant.handle_message(1, "save this")

    assert reply.text == "Saved it"
    assert saved == ["Trip"]
    assert primary.calls[3][-1] == {"role": "tool", "tool_call_id": "t1", "content": "saved Trip"}


@pytest.mark.asyncio
async def test_reply_carries_model_and_usage() -> None:
    response = SimpleNamespace(
        model="gpt4o",
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        choices=[SimpleNamespace(message=SimpleNamespace(content=_reply("Hi"), tool_calls=None))],
    )
    assistant = _build(ScriptedClient([response]))

    reply = await assistant.handle_message(1, "hello")

    assert reply.model == "gpt4o"
    assert reply.usage == Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
    assert reply.meta_line() == "[model=gpt4o, tokens: prompt=10, completion=5, total=15]"


def test_meta_line_is_empty_without_model_or_usage() -> None:
    assert Reply("x").meta_line() == ""
