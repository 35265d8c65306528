"""Ordered multi-stage pipelines built from retry loops."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger

from chatter.core.retry import RetryOutcome
from chatter.errors import BudgetExhausted, WorkflowError
from chatter.interfaces import ProgressSink, StageStatus
from chatter.workflow.progress import NullProgress

DEFAULT_FAILED_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class Stage:
    """One named unit of work; ``run`` maps the previous stage value to a retry outcome."""

    key: str
    run: Callable[[Any], Awaitable[RetryOutcome[Any]]]
    recoverable: bool = True
    validation_key: str | None = None


@dataclass
class StageRecord:
    status: StageStatus = StageStatus.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    value: Any = None
    attempts: int = 0
    succeeded: bool = False


@dataclass
class WorkflowRun:
    run_id: str
    stages: dict[str, StageRecord] = field(default_factory=dict)
    artifact: Any = None
    error: str = ""
    failed_at: datetime | None = None

    @property
    def completed(self) -> bool:
        return all(record.status is StageStatus.COMPLETED for record in self.stages.values())


class WorkflowCoordinator:
    """Runs stages in order, threading each stage's value into the next.

    Runs are cached by id: invoking ``run`` again with the same id resumes at
    the first stage that did not complete. A failed run stays resumable for
    ``failed_ttl``; after that it is dropped and the next call starts over.
    """

    def __init__(
        self,
        stages: list[Stage],
        *,
        failed_ttl: timedelta = DEFAULT_FAILED_TTL,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        keys = [stage.key for stage in stages]
        if len(set(keys)) != len(keys):
            raise ValueError(f"duplicate stage keys: {keys}")
        self._stages = stages
        self._runs: dict[str, WorkflowRun] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._failed_ttl = failed_ttl
        self._clock = clock

    def get(self, run_id: str) -> WorkflowRun | None:
        return self._runs.get(run_id)

    def forget(self, run_id: str) -> None:
        self._runs.pop(run_id, None)
        self._locks.pop(run_id, None)

    def prune(self) -> int:
        """Drop failed runs older than the TTL; returns how many were dropped."""
        cutoff = self._clock() - self._failed_ttl
        expired = [
            run_id
            for run_id, run in self._runs.items()
            if run.failed_at is not None and run.failed_at <= cutoff and not self._locks[run_id].locked()
        ]
        for run_id in expired:
            logger.info("workflow.expired run={}", run_id)
            self.forget(run_id)
        return len(expired)

    async def run(self, run_id: str, initial: Any, progress: ProgressSink | None = None) -> WorkflowRun:
        sink = progress or NullProgress()
        self.prune()
        async with self._locks[run_id]:
            run = self._runs.get(run_id)
            if run is None:
                run = WorkflowRun(run_id, {stage.key: StageRecord() for stage in self._stages})
                self._runs[run_id] = run
            else:
                logger.info("workflow.resume run={}", run_id)
            run.error = ""
            run.failed_at = None
            await self._report_initial(run, sink)

            value = initial
            for stage in self._stages:
                record = run.stages[stage.key]
                if record.status is StageStatus.COMPLETED:
                    value = record.value
                    continue
                value = await self._run_stage(run, stage, record, value, sink)

            run.artifact = value
            logger.info("workflow.completed run={}", run_id)
            return run

    async def _run_stage(
        self,
        run: WorkflowRun,
        stage: Stage,
        record: StageRecord,
        value: Any,
        sink: ProgressSink,
    ) -> Any:
        record.status = StageStatus.IN_PROGRESS
        record.started_at = datetime.now(UTC)
        record.finished_at = None
        logger.info("workflow.stage.start run={} stage={}", run.run_id, stage.key)
        await sink.update(stage.key, StageStatus.IN_PROGRESS)
        if stage.validation_key:
            await sink.update(stage.validation_key, StageStatus.IN_PROGRESS)

        try:
            outcome = await stage.run(value)
        except BudgetExhausted as exc:
            await self._fail(run, stage, record, sink, str(exc))
            raise WorkflowError(stage.key, str(exc)) from exc
        except Exception as exc:
            await self._fail(run, stage, record, sink, f"{type(exc).__name__}: {exc}")
            raise

        record.attempts = outcome.attempts_used
        record.succeeded = outcome.succeeded
        if not outcome.succeeded and not stage.recoverable:
            message = outcome.last_validator_feedback or "no valid result"
            await self._fail(run, stage, record, sink, message)
            raise WorkflowError(stage.key, message)

        record.status = StageStatus.COMPLETED
        record.finished_at = datetime.now(UTC)
        record.value = outcome.value
        logger.info(
            "workflow.stage.end run={} stage={} attempts={} succeeded={}",
            run.run_id,
            stage.key,
            outcome.attempts_used,
            outcome.succeeded,
        )
        await sink.update(stage.key, StageStatus.COMPLETED)
        if stage.validation_key:
            status = StageStatus.COMPLETED if outcome.succeeded else StageStatus.ERROR
            await sink.update(stage.validation_key, status)
        return outcome.value

    async def _fail(
        self,
        run: WorkflowRun,
        stage: Stage,
        record: StageRecord,
        sink: ProgressSink,
        message: str,
    ) -> None:
        record.status = StageStatus.ERROR
        record.finished_at = datetime.now(UTC)
        run.error = f"{stage.key}: {message}"
        run.failed_at = self._clock()
        logger.warning("workflow.stage.error run={} stage={} error={}", run.run_id, stage.key, message)
        await sink.update(stage.key, StageStatus.ERROR)
        if stage.validation_key:
            await sink.update(stage.validation_key, StageStatus.ERROR)

    async def _report_initial(self, run: WorkflowRun, sink: ProgressSink) -> None:
        for stage in self._stages:
            status = run.stages[stage.key].status
            if status is not StageStatus.COMPLETED:
                status = StageStatus.PENDING
            await sink.update(stage.key, status)
            if stage.validation_key:
                await sink.update(stage.validation_key, status)
