"""Application wiring."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from republic import Tool

from chatter.agents.producer import ProducerAgent
from chatter.config import Settings
from chatter.core.assistant import ChatAssistant
from chatter.core.elicitation import ElicitationMachine
from chatter.core.session import SessionStore
from chatter.core.tools import build_dialog_tools
from chatter.history import FileInteractionStore, InteractionLog
from chatter.integrations.pages import MarkdownPages
from chatter.integrations.republic_client import build_producers
from chatter.interfaces import ExternalDataSource, ExternalSink
from chatter.workflow.summary import DocumentSummaryWorkflow


@dataclass
class AppRuntime:
    """Everything one process needs to serve conversations."""

    settings: Settings
    assistant: ChatAssistant
    summary: DocumentSummaryWorkflow


def build_assistant(
    settings: Settings,
    *,
    primary: ProducerAgent,
    checker: ProducerAgent | None = None,
    sink: ExternalSink | None = None,
    source: ExternalDataSource | None = None,
) -> ChatAssistant:
    """Wire the chat assistant and restore its state from the durable log."""

    history = InteractionLog(FileInteractionStore(settings.resolve_history_file()))
    sessions = SessionStore(settings.system_prompt)
    elicitation = ElicitationMachine(
        sessions,
        budget=settings.elicitation_budget,
        hint_threshold=settings.elicitation_hint_threshold,
    )

    def tool_factory(user_id: int) -> list[Tool]:
        return build_dialog_tools(history, user_id, sink=sink, source=source, parent_page=settings.summary_parent_page)

    assistant = ChatAssistant(
        history=history,
        sessions=sessions,
        primary=primary,
        checker=checker,
        elicitation=elicitation,
        chat_attempts=settings.chat_attempts,
        checker_attempts=settings.checker_attempts,
        tool_factory=tool_factory if sink is not None or source is not None else None,
        tool_depth=settings.tool_depth,
    )
    assistant.restore(history.replay())
    return assistant


def build_runtime(settings: Settings) -> AppRuntime:
    """Build the full runtime from settings; fails fast on missing model config."""

    primary, checker = build_producers(settings)
    pages = MarkdownPages(settings.resolve_pages_dir())
    assistant = build_assistant(settings, primary=primary, checker=checker, sink=pages, source=pages)
    summary = DocumentSummaryWorkflow(
        primary=primary,
        validator=checker,
        source=pages,
        sink=pages,
        parent_page=settings.summary_parent_page,
        search_limit=settings.summary_search_limit,
        time_range=settings.summary_time_range,
        max_attempts=settings.max_attempts,
    )
    logger.info("app.runtime.ready model={} checker={}", settings.model, settings.resolved_checker_model)
    return AppRuntime(settings, assistant, summary)
