"""Republic integration helpers."""

from __future__ import annotations

from republic import LLM

from chatter.agents.producer import CHECKER, PRIMARY, ProducerAgent, RepublicChatClient
from chatter.config import Settings


def build_llm(settings: Settings, model: str) -> LLM:
    """Build Republic LLM client for one model."""

    return LLM(model, api_key=settings.api_key, api_base=settings.api_base)


def build_producers(settings: Settings) -> tuple[ProducerAgent, ProducerAgent]:
    """Build the primary and checker producers from settings."""

    settings.require_model()
    primary_llm = build_llm(settings, settings.model)
    if settings.resolved_checker_model == settings.model:
        checker_llm = primary_llm
    else:
        checker_llm = build_llm(settings, settings.resolved_checker_model)
    primary = ProducerAgent(
        PRIMARY,
        RepublicChatClient(primary_llm, settings.model),
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.model_timeout_seconds,
    )
    checker = ProducerAgent(
        CHECKER,
        RepublicChatClient(checker_llm, settings.resolved_checker_model),
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.model_timeout_seconds,
    )
    return primary, checker
