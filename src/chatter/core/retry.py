"""Generic produce / validate / correct loop."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger

from chatter.errors import BudgetExhausted, MalformedOutputError, UpstreamError
from chatter.types import MALFORMED_VALIDATOR_FEEDBACK, Verdict

DEFAULT_MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class RetryOutcome[T]:
    value: T
    attempts_used: int
    succeeded: bool
    last_validator_feedback: str = ""


class RetryValidateCorrect[T]:
    """Run ``produce`` until ``validate`` accepts, feeding each rejection back.

    ``produce`` receives the feedback of the immediately preceding attempt,
    or "" on the first attempt and after an upstream failure. The loop makes
    at most ``max_attempts`` produce calls; when none is accepted it returns
    ``fallback()`` or, without a fallback, raises ``BudgetExhausted``.
    """

    def __init__(
        self,
        name: str,
        produce: Callable[[str], Awaitable[T]],
        validate: Callable[[T], Awaitable[Verdict]],
        *,
        fallback: Callable[[], T] | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.name = name
        self._produce = produce
        self._validate = validate
        self._fallback = fallback
        self._max_attempts = max_attempts

    async def run(self) -> RetryOutcome[T]:
        feedback = ""
        for attempt in range(1, self._max_attempts + 1):
            try:
                candidate = await self._produce(feedback)
            except MalformedOutputError as exc:
                feedback = str(exc)
                logger.warning("retry.produce.malformed name={} attempt={} error={}", self.name, attempt, exc)
                continue
            except UpstreamError as exc:
                feedback = ""
                logger.warning("retry.produce.error name={} attempt={} error={}", self.name, attempt, exc)
                continue

            verdict = await self._judge(candidate, attempt)
            logger.info(
                "retry.attempt name={} attempt={}/{} valid={}",
                self.name,
                attempt,
                self._max_attempts,
                verdict.valid,
            )
            if verdict.valid:
                return RetryOutcome(candidate, attempt, True, feedback)
            feedback = verdict.feedback

        logger.warning("retry.exhausted name={} attempts={} feedback={}", self.name, self._max_attempts, feedback)
        if self._fallback is None:
            raise BudgetExhausted(self.name, self._max_attempts, feedback)
        return RetryOutcome(self._fallback(), self._max_attempts, False, feedback)

    async def _judge(self, candidate: T, attempt: int) -> Verdict:
        try:
            return await self._validate(candidate)
        except (UpstreamError, MalformedOutputError) as exc:
            logger.warning("retry.validate.error name={} attempt={} error={}", self.name, attempt, exc)
            return Verdict.reject(MALFORMED_VALIDATOR_FEEDBACK)
