from chatter.agents.output import StructuredAgentOutput
from chatter.core.compactor import ContextCompactor
from chatter.core.session import SessionStore
from chatter.history import Direction, InteractionLog


def test_build_messages_orders_hints_prompt_and_active_history() -> None:
    history = InteractionLog()
    sessions = SessionStore("base")
    compactor = ContextCompactor(history, sessions)
    history.append(1, Direction.USER, "old")
    history.disable_all(1)
    history.append(1, Direction.USER, "hi")
    history.append(1, Direction.ASSISTANT, "hello")

    messages = compactor.build_messages(1, ["hurry"])

    assert messages == [
        {"role": "system", "content": "hurry"},
        {"role": "system", "content": "base"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]


def test_build_messages_without_prompt_has_no_empty_system_message() -> None:
    history = InteractionLog()
    history.append(1, Direction.USER, "hi")

    messages = ContextCompactor(history, SessionStore()).build_messages(1)

    assert messages == [{"role": "user", "content": "hi"}]


def test_apply_folds_summary_and_disables_history() -> None:
    history = InteractionLog()
    sessions = SessionStore()
    compactor = ContextCompactor(history, sessions)
    history.append(1, Direction.USER, "long story")
    history.append(1, Direction.ASSISTANT, "long answer")

    applied = compactor.apply(1, StructuredAgentOutput(answer="a", compressed_context="user builds a bot"))

    assert applied is True
    assert sessions.prompt_override(1) == "user builds a bot"
    assert history.get_active(1) == []
    assert len(history.get_all(1)) == 2


def test_apply_without_summary_changes_nothing() -> None:
    history = InteractionLog()
    sessions = SessionStore()
    history.append(1, Direction.USER, "hi")

    applied = ContextCompactor(history, sessions).apply(1, StructuredAgentOutput(answer="a", compressed_context="  "))

    assert applied is False
    assert len(history.get_active(1)) == 1
    assert sessions.prompt_override(1) == ""


def test_repeated_summary_is_folded_once() -> None:
    history = InteractionLog()
    sessions = SessionStore()
    compactor = ContextCompactor(history, sessions)
    output = StructuredAgentOutput(compressed_context="same facts")

    compactor.apply(1, output)
    compactor.apply(1, output)

    assert sessions.prompt_override(1) == "same facts"
