"""
Retry scheduling for ingestion tasks.

RetryPolicy is pure (no I/O, no sleeping, no side effects). RetryScheduler
runs one wrapped operation and records the decision on the task; waiting is
expressed as `next_retry_at`, never as a sleep.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

from axp_exceptions import is_retryable
from config.constant import (
    INGEST_MAX_RETRY_ATTEMPTS,
    INGEST_RETRY_BASE_MINUTES,
    INGEST_RETRY_CAP_MINUTES,
)
from interfaces.task_registry import IngestionTask, TaskOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptStatus(Enum):
    OK = "ok"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    NOT_DUE = "not_due"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class AttemptOutcome(Generic[T]):
    status: AttemptStatus
    task: IngestionTask
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is AttemptStatus.OK


class RetryPolicy:
    def __init__(
        self,
        *,
        max_attempts: int = INGEST_MAX_RETRY_ATTEMPTS,
        base_minutes: int = INGEST_RETRY_BASE_MINUTES,
        cap_minutes: int = INGEST_RETRY_CAP_MINUTES,
    ) -> None:
        self.max_attempts = int(max_attempts)
        self.base_minutes = int(base_minutes)
        self.cap_minutes = int(cap_minutes)

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        return is_retryable(error)

    def delay_for(self, attempts: int) -> timedelta:
        """Backoff after the `attempts`-th failure: base * 2^attempts minutes."""
        minutes = min(self.cap_minutes, self.base_minutes * (2 ** attempts))
        return timedelta(minutes=minutes)

    def should_dead_letter(self, error: BaseException, attempts: int) -> bool:
        if not self.is_retryable(error):
            return True
        return attempts > self.max_attempts


class RetryScheduler:
    def __init__(self, policy: Optional[RetryPolicy] = None) -> None:
        self.policy = policy or RetryPolicy()

    def record_failure(self, task: IngestionTask, error: BaseException,
                       now: datetime) -> AttemptOutcome[Any]:
        attempts = task.attempts + 1
        failed = replace(task, attempts=attempts).with_error(error)
        if self.policy.should_dead_letter(error, attempts):
            logger.warning("Dead-lettering task %s (%s) after %d attempt(s): %s",
                           task.task_id, task.filename, attempts, error)
            failed = replace(failed, outcome=TaskOutcome.DEAD_LETTERED, next_retry_at=None)
            return AttemptOutcome(AttemptStatus.DEAD_LETTERED, failed, error=error)
        next_retry_at = now + self.policy.delay_for(attempts)
        logger.info("Task %s (%s) failed attempt %d, retry at %s: %s",
                    task.task_id, task.filename, attempts, next_retry_at.isoformat(), error)
        failed = replace(failed, next_retry_at=next_retry_at)
        return AttemptOutcome(AttemptStatus.RETRY_SCHEDULED, failed, error=error)

    def run(
        self,
        task: IngestionTask,
        operation: Callable[[], T],
        now: datetime,
    ) -> AttemptOutcome[T]:
        """Execute `operation` once, unless the task is terminal or not yet due."""
        if task.is_terminal:
            return AttemptOutcome(AttemptStatus.SKIPPED, task)
        if not task.is_due(now):
            return AttemptOutcome(AttemptStatus.NOT_DUE, task)
        try:
            value = operation()
        except Exception as exc:  # pylint: disable=broad-except
            return self.record_failure(task, exc, now)
        return AttemptOutcome(
            AttemptStatus.OK,
            replace(task, next_retry_at=None),
            value=value,
        )

    @staticmethod
    def mark_succeeded(task: IngestionTask) -> IngestionTask:
        return replace(task, outcome=TaskOutcome.SUCCEEDED,
                       next_retry_at=None, last_error=None)


__all__ = [
    "AttemptStatus",
    "AttemptOutcome",
    "RetryPolicy",
    "RetryScheduler",
]
