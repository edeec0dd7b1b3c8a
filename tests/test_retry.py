#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Retry policy and scheduler tests
"""
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from axp_exceptions import ExternalServiceError, NetworkError, ValidationError
from interfaces import IngestionTask, TaskOutcome
from ingest.retry import AttemptStatus, RetryPolicy, RetryScheduler

NOW = datetime(2025, 12, 26, 10, 0, tzinfo=timezone.utc)


def _task(**overrides):
    return replace(IngestionTask.new("/tmp/weiss_a.pdf", "weiss_a.pdf", now=NOW), **overrides)


class TestRetryPolicy:

    @pytest.mark.parametrize("attempts,minutes", [(1, 2), (2, 4), (3, 8), (4, 16)])
    def test_exponential_delay(self, attempts, minutes):
        assert RetryPolicy().delay_for(attempts) == timedelta(minutes=minutes)

    def test_delay_is_capped(self):
        assert RetryPolicy(cap_minutes=60).delay_for(10) == timedelta(minutes=60)

    def test_transient_errors_retry_until_budget_spent(self):
        policy = RetryPolicy(max_attempts=4)
        error = ExternalServiceError("503")
        assert not policy.should_dead_letter(error, 4)
        assert policy.should_dead_letter(error, 5)

    def test_permanent_errors_dead_letter_immediately(self):
        assert RetryPolicy().should_dead_letter(ValidationError("bad"), 1)

    def test_builtin_connection_errors_are_retryable(self):
        assert RetryPolicy.is_retryable(ConnectionError("reset"))
        assert RetryPolicy.is_retryable(NetworkError("down"))
        assert not RetryPolicy.is_retryable(ValueError("nope"))


class TestRetryScheduler:

    def setup_method(self):
        self.scheduler = RetryScheduler(RetryPolicy(max_attempts=4))

    def test_success_clears_next_retry(self):
        task = _task(next_retry_at=NOW - timedelta(minutes=1), attempts=1)
        outcome = self.scheduler.run(task, lambda: "ok", NOW)
        assert outcome.ok
        assert outcome.value == "ok"
        assert outcome.task.next_retry_at is None

    def test_transient_failure_schedules_retry(self):
        def boom():
            raise ExternalServiceError("storage down")

        outcome = self.scheduler.run(_task(), boom, NOW)
        assert outcome.status is AttemptStatus.RETRY_SCHEDULED
        assert outcome.task.attempts == 1
        assert outcome.task.next_retry_at == NOW + timedelta(minutes=2)
        assert "storage down" in outcome.task.last_error

    def test_fifth_failure_dead_letters(self):
        def boom():
            raise ExternalServiceError("still down")

        task = _task()
        statuses = []
        for _ in range(5):
            outcome = self.scheduler.run(task, boom, task.next_retry_at or NOW)
            statuses.append(outcome.status)
            task = outcome.task
        assert statuses[:4] == [AttemptStatus.RETRY_SCHEDULED] * 4
        assert statuses[4] is AttemptStatus.DEAD_LETTERED
        assert task.outcome == TaskOutcome.DEAD_LETTERED
        assert task.attempts == 5

    def test_not_due_does_not_run(self):
        calls = []
        task = _task(next_retry_at=NOW + timedelta(minutes=5))
        outcome = self.scheduler.run(task, lambda: calls.append(1), NOW)
        assert outcome.status is AttemptStatus.NOT_DUE
        assert calls == []

    def test_terminal_task_is_skipped(self):
        task = _task(outcome=TaskOutcome.SUCCEEDED)
        outcome = self.scheduler.run(task, lambda: 1, NOW)
        assert outcome.status is AttemptStatus.SKIPPED

    def test_permanent_failure_dead_letters_on_first_attempt(self):
        def boom():
            raise ValidationError("corrupt")

        outcome = self.scheduler.run(_task(), boom, NOW)
        assert outcome.status is AttemptStatus.DEAD_LETTERED
        assert outcome.task.attempts == 1
