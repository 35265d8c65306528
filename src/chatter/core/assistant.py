"""Chat orchestration: one user turn from inbound text to delivered reply."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger
from republic import Tool

from chatter.agents.output import (
    ParsedReply,
    RawReply,
    ReplyStatus,
    StructuredReply,
    parse_checker_verdict,
    parse_or_reformat,
)
from chatter.agents.producer import ProducerAgent
from chatter.agents.prompts import (
    CHECKER_INSTRUCTION,
    FINALIZE_INSTRUCTION,
    REFORMAT_INSTRUCTION,
    SUMMARY_INSTRUCTION,
    build_checker_input,
    correction_instruction,
    instruction_prompt,
)
from chatter.core.compactor import ContextCompactor
from chatter.core.elicitation import ElicitationMachine, TurnDecision, enforce_numbered_list
from chatter.core.retry import RetryValidateCorrect
from chatter.core.session import SessionStore
from chatter.core.tools import DEFAULT_MAX_DEPTH, ToolResolver
from chatter.errors import BudgetExhausted, UpstreamError
from chatter.history import Direction, InteractionLog
from chatter.logging_utils import bind_user
from chatter.types import Completion, Usage, Verdict

APOLOGY = "Sorry, I could not prepare an answer right now. Please try again."
SUMMARY_APOLOGY = "Could not build the summary. Please try again."
INSTRUCTION_APOLOGY = "Could not prepare the instruction. Please try again."
EMPTY_HISTORY = "History is empty."

type ToolFactory = Callable[[int], list[Tool]]


@dataclass(frozen=True)
class Reply:
    """What the user sees for one turn."""

    text: str
    title: str = ""
    final: bool = False
    followups: list[str] = field(default_factory=list)
    model: str = ""
    usage: Usage = field(default_factory=Usage)

    def render(self) -> str:
        return format_title_answer(self.title, self.text)

    def meta_line(self) -> str:
        if not self.model and not self.usage.total_tokens:
            return ""
        return (
            f"[model={self.model or '-'}, tokens: prompt={self.usage.prompt_tokens}, "
            f"completion={self.usage.completion_tokens}, total={self.usage.total_tokens}]"
        )


@dataclass(frozen=True)
class Draft:
    reply: ParsedReply
    completion: Completion

    def to_reply(self, text: str, *, final: bool = False, followups: list[str] | None = None) -> Reply:
        return Reply(
            text,
            self.reply.title,
            final=final,
            followups=followups or [],
            model=self.completion.model,
            usage=self.completion.usage,
        )


def format_title_answer(title: str, answer: str) -> str:
    if not title.strip():
        return answer
    return f"**{title.strip()}**\n\n{answer}"


class ChatAssistant:
    """Composes history, session state, the elicitation machine and producers.

    Turns of one user are serialized; different users proceed in parallel.
    The per-user lock map lives as long as the process, one small lock per
    user who has written; deployments are bounded by the allow-list.
    """

    def __init__(
        self,
        *,
        history: InteractionLog,
        sessions: SessionStore,
        primary: ProducerAgent,
        checker: ProducerAgent | None = None,
        elicitation: ElicitationMachine | None = None,
        chat_attempts: int = 2,
        checker_attempts: int = 2,
        tool_factory: ToolFactory | None = None,
        tool_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.history = history
        self.sessions = sessions
        self.elicitation = elicitation or ElicitationMachine(sessions)
        self.compactor = ContextCompactor(history, sessions)
        self._primary = primary
        self._checker = checker
        self._chat_attempts = chat_attempts
        self._checker_attempts = checker_attempts
        self._tool_factory = tool_factory
        self._tool_depth = tool_depth
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def restore(self, prompts: dict[int, list[str]]) -> None:
        """Fold replayed prompt additions back into the session store."""
        for user_id, additions in prompts.items():
            for addition in additions:
                self.sessions.add_prompt(user_id, addition)

    async def handle_message(self, user_id: int, text: str) -> Reply:
        async with self._locks[user_id]:
            with bind_user(user_id):
                logger.info("assistant.message chars={}", len(text))
                self.history.append(user_id, Direction.USER, text)
                if self.elicitation.needs_forced_final(user_id):
                    final = await self._finalize(user_id)
                    if final is None:
                        return Reply(APOLOGY)
                    return await self._deliver_final(user_id, final)
                return await self._turn(user_id)

    async def start_elicitation(self, user_id: int, topic: str) -> Reply:
        """Enter elicitation mode for ``topic`` and run the opening turn."""
        async with self._locks[user_id]:
            with bind_user(user_id):
                self.history.disable_all(user_id)
                seed = self.elicitation.start(user_id, topic)
                self.history.append(user_id, Direction.USER, seed)
                return await self._turn(user_id)

    async def summarize(self, user_id: int) -> Reply:
        async with self._locks[user_id]:
            with bind_user(user_id):
                if not self.history.get_active(user_id):
                    return Reply(EMPTY_HISTORY)
                messages = [
                    {"role": "system", "content": SUMMARY_INSTRUCTION},
                    *self.compactor.build_messages(user_id),
                ]
                try:
                    completion = await self._primary.generate(messages, purpose="summary")
                except UpstreamError as exc:
                    logger.warning("assistant.summary.error error={}", exc)
                    return Reply(SUMMARY_APOLOGY)
                reply = await parse_or_reformat(completion.text, self._reformat)
                if isinstance(reply, StructuredReply):
                    self.compactor.apply(user_id, reply.output)
                self.history.append(user_id, Direction.ASSISTANT, reply.answer)
                return Draft(reply, completion).to_reply(reply.answer)

    async def reset_context(self, user_id: int) -> int:
        """Disable the user's history and leave elicitation mode."""
        async with self._locks[user_id]:
            with bind_user(user_id):
                if self.elicitation.is_active(user_id):
                    self.elicitation.finish(user_id)
                return self.history.disable_all(user_id)

    async def _turn(self, user_id: int) -> Reply:
        eliciting = self.elicitation.is_active(user_id)
        try:
            draft = await self._draft(user_id, eliciting)
        except (UpstreamError, BudgetExhausted) as exc:
            logger.warning("assistant.turn.failed error={}", exc)
            return Reply(APOLOGY)

        reply = draft.reply
        compressed = isinstance(reply, StructuredReply) and self.compactor.apply(user_id, reply.output)
        answer = reply.answer
        if not eliciting:
            self.history.append(user_id, Direction.ASSISTANT, answer, used=not compressed)
            return draft.to_reply(answer)

        if reply.status is not ReplyStatus.FINAL:
            answer = enforce_numbered_list(answer)
        decision = self.elicitation.advance(user_id, reply.status)
        if decision is TurnDecision.FINAL:
            return await self._deliver_final(user_id, draft)
        if decision is TurnDecision.FORCE_FINAL:
            final = await self._finalize(user_id)
            if final is not None:
                self.history.append(user_id, Direction.ASSISTANT, answer, used=False)
                return await self._deliver_final(user_id, final)
        self.history.append(user_id, Direction.ASSISTANT, answer, used=not compressed)
        return draft.to_reply(answer)

    async def _draft(self, user_id: int, eliciting: bool) -> Draft:
        hints = self.elicitation.hints(user_id)
        if not eliciting or self._checker is None:
            resolver = self._resolver(user_id) if not eliciting else None
            engine = RetryValidateCorrect[Draft](
                "chat",
                lambda _feedback: self._primary_draft(user_id, hints, resolver),
                _accept,
                max_attempts=self._chat_attempts,
            )
            return (await engine.run()).value

        latest: list[Draft] = []

        async def produce(feedback: str) -> Draft:
            if feedback and latest:
                draft = await self._corrected_draft(user_id, latest[-1], feedback)
            else:
                draft = await self._primary_draft(user_id, hints)
            latest.append(draft)
            return draft

        async def check(draft: Draft) -> Verdict:
            return await self._check(user_id, draft)

        def fallback() -> Draft:
            # The checker never agreed; deliver the latest draft.
            if not latest:
                raise BudgetExhausted("elicitation", self._checker_attempts, "no answer produced")
            return latest[-1]

        engine = RetryValidateCorrect[Draft](
            "elicitation",
            produce,
            check,
            fallback=fallback,
            max_attempts=self._checker_attempts,
        )
        outcome = await engine.run()
        return outcome.value

    def _resolver(self, user_id: int) -> ToolResolver | None:
        # One resolver per turn: its result cache spans every attempt.
        if self._tool_factory is None:
            return None
        tools = self._tool_factory(user_id)
        if not tools:
            return None
        return ToolResolver(self._primary, tools, max_depth=self._tool_depth)

    async def _primary_draft(self, user_id: int, hints: list[str], resolver: ToolResolver | None = None) -> Draft:
        messages = self.compactor.build_messages(user_id, hints)
        if resolver is not None:
            completion = await resolver.run(messages, purpose="chat")
        else:
            completion = await self._primary.generate(messages, purpose="chat")
        reply = await parse_or_reformat(completion.text, self._reformat)
        return Draft(reply, completion)

    async def _corrected_draft(self, user_id: int, previous: Draft, feedback: str) -> Draft:
        self.history.append(user_id, Direction.SYSTEM_NOTE, f"[correction] {feedback}", used=False)
        messages = [
            {"role": "system", "content": correction_instruction(feedback)},
            {"role": "user", "content": previous.reply.answer},
        ]
        completion = await self._primary.generate(messages, purpose="correct")
        reply = await parse_or_reformat(completion.text, self._reformat)
        return Draft(reply, completion)

    async def _check(self, user_id: int, draft: Draft) -> Verdict:
        if self._checker is None:
            return Verdict.ok()
        status = draft.reply.status.value if draft.reply.status is not None else ""
        messages = [
            {"role": "system", "content": CHECKER_INSTRUCTION},
            {"role": "user", "content": build_checker_input(draft.reply.answer, status)},
        ]
        completion = await self._checker.generate(messages, purpose="check")
        self.history.append(user_id, Direction.SYSTEM_NOTE, f"[check] {completion.text}", used=False)
        return parse_checker_verdict(completion.text)

    async def _reformat(self, raw: str) -> str:
        messages = [
            {"role": "system", "content": REFORMAT_INSTRUCTION},
            {"role": "user", "content": raw},
        ]
        completion = await self._primary.generate(messages, purpose="reformat")
        return completion.text

    async def _finalize(self, user_id: int) -> Draft | None:
        messages = [
            {"role": "system", "content": FINALIZE_INSTRUCTION},
            *self.compactor.build_messages(user_id),
        ]
        try:
            completion = await self._primary.generate(messages, purpose="finalize")
        except UpstreamError as exc:
            logger.warning("assistant.finalize.error error={}", exc)
            return None
        reply = await parse_or_reformat(completion.text, self._reformat)
        return Draft(reply, completion)

    async def _deliver_final(self, user_id: int, draft: Draft) -> Reply:
        reply = draft.reply
        self.elicitation.finish(user_id)
        self.history.append(user_id, Direction.ASSISTANT, format_title_answer(reply.title, reply.answer))
        instruction = await self._instructions(reply.answer)
        return draft.to_reply(reply.answer, final=True, followups=[instruction])

    async def _instructions(self, specification: str) -> str:
        producer = self._checker or self._primary
        messages = [{"role": "system", "content": instruction_prompt(specification)}]
        try:
            completion = await producer.generate(messages, purpose="instructions")
        except UpstreamError as exc:
            logger.warning("assistant.instructions.error error={}", exc)
            return INSTRUCTION_APOLOGY
        reply = await parse_or_reformat(completion.text)
        if isinstance(reply, RawReply) or not reply.output.answer.strip():
            return completion.text
        return format_title_answer(reply.title, reply.answer)


async def _accept(_draft: Draft) -> Verdict:
    return Verdict.ok()
