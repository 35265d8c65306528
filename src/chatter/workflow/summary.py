"""Document-summary pipeline: query -> collect -> summarize -> publish."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger

from chatter.agents.output import load_json_object, parse_validation_report
from chatter.agents.producer import ProducerAgent
from chatter.agents.prompts import (
    collect_data_prompt,
    collect_data_validation_prompt,
    search_query_prompt,
    search_query_validation_prompt,
    summary_prompt,
    summary_validation_prompt,
)
from chatter.core.retry import DEFAULT_MAX_ATTEMPTS, RetryOutcome, RetryValidateCorrect
from chatter.errors import MalformedOutputError, UpstreamError, WorkflowError
from chatter.interfaces import ChatTransport, ExternalDataSource, ExternalSink, ProgressSink
from chatter.types import Verdict
from chatter.workflow.coordinator import Stage, WorkflowCoordinator
from chatter.workflow.progress import MessageProgressTracker

FALLBACK_QUERY = "(is:unread OR is:important) newer_than:7d"
PUBLISH_TAGS = ["summary", "auto-generated"]
TITLE_DATE_FORMAT = "%d/%m/%Y"
STEPS = [
    ("search_query", "🔍 Build search query"),
    ("collect_data", "📥 Collect data"),
    ("validate_data", "🧪 Validate data"),
    ("generate_summary", "🤖 Generate summary"),
    ("validate_summary", "✅ Validate summary"),
    ("publish_page", "📄 Publish page"),
]


@dataclass(frozen=True)
class SummaryJob:
    """Value threaded through the stages; each stage fills its own fields."""

    request: str
    query: str = ""
    data: str = ""
    title: str = ""
    content: str = ""
    page_id: str = ""
    url: str = ""


@dataclass(frozen=True)
class SummaryDraft:
    title: str
    content: str


def run_id_for(user_id: int, request: str) -> str:
    return f"{user_id}:{' '.join(request.split()).lower()}"


def format_items(query: str, items: list[dict[str, Any]]) -> str:
    if not items:
        return f"Search query used: {query}\nNo items found for the query."
    lines = [f"Search query used: {query}", f"Found {len(items)} items:", ""]
    for index, item in enumerate(items, start=1):
        flags = "".join(f" [{flag.upper()}]" for flag in ("important", "unread") if item.get(f"is_{flag}"))
        lines.append(f"{index}. From: {item.get('from', '')}{flags}")
        for key in ("subject", "date", "snippet"):
            if item.get(key):
                lines.append(f"   {key.capitalize()}: {item[key]}")
        lines.append("")
    return "\n".join(lines)


def _carry(outcome: RetryOutcome[Any], value: SummaryJob) -> RetryOutcome[SummaryJob]:
    return RetryOutcome(value, outcome.attempts_used, outcome.succeeded, outcome.last_validator_feedback)


class DocumentSummaryWorkflow:
    """Summarizes documents found for a free-text request and publishes the result."""

    def __init__(
        self,
        *,
        primary: ProducerAgent,
        validator: ProducerAgent,
        source: ExternalDataSource,
        sink: ExternalSink,
        parent_page: str = "",
        search_limit: int = 20,
        time_range: str = "today",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._primary = primary
        self._validator = validator
        self._source = source
        self._sink = sink
        self._parent_page = parent_page
        self._search_limit = search_limit
        self._time_range = time_range
        self._max_attempts = max_attempts
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()
        self.coordinator = WorkflowCoordinator([
            Stage("search_query", self._search_query, recoverable=True),
            Stage("collect_data", self._collect_data, recoverable=False, validation_key="validate_data"),
            Stage("generate_summary", self._generate_summary, recoverable=False, validation_key="validate_summary"),
            Stage("publish_page", self._publish, recoverable=False),
        ])

    async def run(self, user_id: int, request: str, progress: ProgressSink | None = None) -> SummaryJob:
        run_id = run_id_for(user_id, request)
        run = await self.coordinator.run(run_id, SummaryJob(request.strip()), progress)
        self.coordinator.forget(run_id)
        return run.artifact

    async def start(self, user_id: int, request: str, transport: ChatTransport) -> asyncio.Task[None]:
        """Send a status message and run the pipeline detached from the caller."""
        ref = await transport.send(user_id, "🔄 Processing request...")
        tracker = MessageProgressTracker(transport, ref, STEPS)
        task = asyncio.create_task(self._run_detached(user_id, request, tracker))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_detached(self, user_id: int, request: str, tracker: MessageProgressTracker) -> None:
        try:
            job = await self.run(user_id, request, tracker)
        except WorkflowError as exc:
            logger.warning("workflow.summary.failed user={} error={}", user_id, exc)
            await tracker.fail(str(exc))
            return
        except Exception:
            logger.exception("workflow.summary.error user={}", user_id)
            await tracker.fail("unexpected error, please try again later")
            return
        logger.info("workflow.summary.done user={} page={}", user_id, job.page_id)
        await tracker.set_final_result(job.url or job.page_id)

    async def _validate(self, instruction: str, content: str, *, purpose: str) -> Verdict:
        messages = [
            {"role": "system", "content": instruction},
            {"role": "user", "content": content},
        ]
        completion = await self._validator.generate(messages, purpose=purpose)
        return parse_validation_report(completion.text)

    async def _search_query(self, job: SummaryJob) -> RetryOutcome[SummaryJob]:
        async def produce(feedback: str) -> str:
            messages = [
                {"role": "system", "content": search_query_prompt(job.request, feedback)},
                {"role": "user", "content": f'Generate a search query for: "{job.request}"'},
            ]
            completion = await self._primary.generate(messages, purpose="search_query")
            payload = load_json_object(completion.text) or {}
            query = str(payload.get("query") or "").strip()
            if not query:
                raise MalformedOutputError(
                    'reply must be raw JSON {"query": "...", "explanation": "..."} with a non-empty query',
                    raw=completion.text,
                )
            return query

        async def validate(query: str) -> Verdict:
            return await self._validate(
                search_query_validation_prompt(job.request, query),
                f'Validate this query mapping:\nUser: "{job.request}"\nGenerated: "{query}"',
                purpose="validate_query",
            )

        engine = RetryValidateCorrect(
            "search_query",
            produce,
            validate,
            fallback=lambda: FALLBACK_QUERY,
            max_attempts=self._max_attempts,
        )
        outcome = await engine.run()
        return _carry(outcome, dataclasses.replace(job, query=outcome.value))

    async def _collect_data(self, job: SummaryJob) -> RetryOutcome[SummaryJob]:
        async def produce(feedback: str) -> str:
            result = await self._source.search(job.query, self._search_limit, self._time_range)
            if not result.success:
                raise UpstreamError(f"search failed: {result.message}")
            messages = [
                {"role": "system", "content": collect_data_prompt(job.request, feedback)},
                {"role": "user", "content": format_items(job.query, result.items)},
            ]
            completion = await self._primary.generate(messages, purpose="collect_data")
            return completion.text

        async def validate(data: str) -> Verdict:
            return await self._validate(
                collect_data_validation_prompt(job.request),
                f"Data to validate:\n\n{data}",
                purpose="validate_data",
            )

        engine = RetryValidateCorrect("collect_data", produce, validate, max_attempts=self._max_attempts)
        outcome = await engine.run()
        return _carry(outcome, dataclasses.replace(job, data=outcome.value))

    async def _generate_summary(self, job: SummaryJob) -> RetryOutcome[SummaryJob]:
        async def produce(feedback: str) -> SummaryDraft:
            messages = [
                {"role": "system", "content": summary_prompt(job.request, feedback)},
                {"role": "user", "content": f"Data to summarize:\n\n{job.data}"},
            ]
            completion = await self._primary.generate(messages, purpose="generate_summary")
            payload = load_json_object(completion.text) or {}
            title = payload.get("title")
            content = payload.get("content")
            if not isinstance(title, str) or not isinstance(content, str) or not title.strip() or not content.strip():
                raise MalformedOutputError(
                    'reply must be raw JSON {"title": "...", "content": "markdown"} without code fences',
                    raw=completion.text,
                )
            return SummaryDraft(f"{title.strip()}: {self._clock().strftime(TITLE_DATE_FORMAT)}", content)

        async def validate(draft: SummaryDraft) -> Verdict:
            return await self._validate(
                summary_validation_prompt(),
                f"Title: {draft.title}\n\nContent:\n{draft.content}",
                purpose="validate_summary",
            )

        engine = RetryValidateCorrect("generate_summary", produce, validate, max_attempts=self._max_attempts)
        outcome = await engine.run()
        draft = outcome.value
        return _carry(outcome, dataclasses.replace(job, title=draft.title, content=draft.content))

    async def _publish(self, job: SummaryJob) -> RetryOutcome[SummaryJob]:
        result = await self._sink.create_page(job.title, job.content, self._parent_page, PUBLISH_TAGS)
        if not result.success:
            raise WorkflowError("publish_page", result.message or "page was not created")
        logger.info("workflow.summary.published page={} url={}", result.page_id, result.url)
        return RetryOutcome(dataclasses.replace(job, page_id=result.page_id, url=result.url), 1, True)
