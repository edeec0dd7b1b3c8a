#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration, error mapping, task registry and event sink tests
"""
import json
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from axp_exceptions import (
    ConfigError,
    ExternalServiceError,
    FileNotStableError,
    IngestError,
    NetworkError,
    ValidationError,
    is_retryable,
    wrap_exception,
)
from config import WorkerConfig
from interfaces import (
    IngestionTask,
    InMemoryTaskRegistry,
    JsonlEventSink,
    TaskOutcome,
    build_event,
    task_id_for,
)


class TestWorkerConfig:

    def test_from_env_reads_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        monkeypatch.setenv("WEBDAV_DIR", str(tmp_path))
        monkeypatch.setenv("MAX_CONCURRENT_JOBS", "3")
        monkeypatch.setenv("ALLOWED_EXTENSIONS", ".PDF, jpg")
        config = WorkerConfig.from_env()
        assert config.max_workers == 3
        assert config.allowed_extensions == {"pdf", "jpg"}
        assert config.processing_dir == str(tmp_path / "processing")
        assert config.failed_dir == str(tmp_path / "failed")

    def test_missing_database_url_outside_dry_run(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("DRY_RUN", "false")
        with pytest.raises(ConfigError):
            WorkerConfig.from_env()

    def test_invalid_number_is_a_config_error(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        monkeypatch.setenv("MAX_RETRY_ATTEMPTS", "many")
        with pytest.raises(ConfigError):
            WorkerConfig.from_env()

    def test_validate_creates_work_directories(self, tmp_path):
        config = WorkerConfig(database_url="sqlite://", watch_dir=str(tmp_path), dry_run=True)
        config.validate()
        for name in ("processing", "done", "failed"):
            assert (tmp_path / name).is_dir()

    def test_validate_rejects_bad_values(self, tmp_path):
        config = WorkerConfig(database_url="sqlite://", watch_dir=str(tmp_path),
                              dry_run=True, stability_samples=1)
        with pytest.raises(ConfigError):
            config.validate()
        with pytest.raises(ConfigError):
            WorkerConfig(database_url="sqlite://", watch_dir=str(tmp_path / "nope"),
                         dry_run=True).validate()


class TestErrors:

    def test_wrap_keeps_own_errors(self):
        error = ValidationError("bad")
        assert wrap_exception(error) is error

    @pytest.mark.parametrize("raw,expected", [
        (ConnectionError("reset"), NetworkError),
        (ValueError("bad"), ValidationError),
        (OSError("disk"), IngestError),
        (RuntimeError("?"), IngestError),
    ])
    def test_wrap_builtin_errors(self, raw, expected):
        assert isinstance(wrap_exception(raw), expected)

    def test_retryable_classification(self):
        assert is_retryable(ExternalServiceError("503"))
        assert is_retryable(FileNotStableError("still copying"))
        assert not is_retryable(ValidationError("bad"))


class TestInMemoryTaskRegistry:

    def setup_method(self):
        self.registry = InMemoryTaskRegistry()
        self.task = self.registry.save(IngestionTask.new("/w/weiss_a.pdf", "weiss_a.pdf"))

    def test_task_id_is_stable_per_filename(self):
        assert self.task.task_id == task_id_for("weiss_a.pdf")
        assert task_id_for("weiss_a.pdf") != task_id_for("weiss_b.pdf")

    def test_lease_is_exclusive(self):
        assert self.registry.try_start_processing(
            self.task.task_id, lease_seconds=60, processing_token="a")
        assert not self.registry.try_start_processing(
            self.task.task_id, lease_seconds=60, processing_token="b")

    def test_save_with_wrong_token_is_rejected(self):
        self.registry.try_start_processing(
            self.task.task_id, lease_seconds=60, processing_token="a")
        with pytest.raises(ValueError):
            self.registry.save(self.task, processing_token="b")

    def test_terminal_tasks_cannot_start(self):
        self.registry.save(replace(self.task, outcome=TaskOutcome.SUCCEEDED))
        assert not self.registry.try_start_processing(
            self.task.task_id, lease_seconds=60, processing_token="a")

    def test_lease_creates_missing_task_from_seed(self):
        seed = IngestionTask.new("/w/weiss_new.pdf", "weiss_new.pdf")
        assert not self.registry.try_start_processing(
            seed.task_id, lease_seconds=60, processing_token="a")
        assert self.registry.try_start_processing(
            seed.task_id, lease_seconds=60, processing_token="a", seed=seed)
        stored = self.registry.get(seed.task_id)
        assert stored.processing_token == "a"
        assert not self.registry.try_start_processing(
            seed.task_id, lease_seconds=60, processing_token="b", seed=seed)

    def test_restart_replaces_terminal_task(self):
        self.registry.save(replace(self.task, outcome=TaskOutcome.SUCCEEDED,
                                   document_id="doc-1", attempts=2))
        seed = IngestionTask.new("/w/weiss_a.pdf", "weiss_a.pdf")
        assert not self.registry.try_start_processing(
            seed.task_id, lease_seconds=60, processing_token="a", seed=seed)
        assert self.registry.try_start_processing(
            seed.task_id, lease_seconds=60, processing_token="a", seed=seed, restart=True)
        restarted = self.registry.get(seed.task_id)
        assert restarted.outcome == TaskOutcome.PENDING
        assert restarted.document_id is None
        assert restarted.attempts == 0
        assert not self.registry.try_start_processing(
            seed.task_id, lease_seconds=60, processing_token="b", seed=seed, restart=True)

    def test_mapping_round_trip_keeps_retry_time(self):
        when = datetime(2025, 12, 26, 10, 2, tzinfo=timezone.utc)
        task = replace(self.task, attempts=2, next_retry_at=when, prefix_map_version=4)
        restored = IngestionTask.from_mapping(task.to_mapping())
        assert restored.attempts == 2
        assert restored.next_retry_at == when
        assert restored.prefix_map_version == 4


class TestJsonlEventSink:

    def test_events_are_appended_as_json_lines(self, tmp_path):
        path = tmp_path / "events" / "ingest.jsonl"
        sink = JsonlEventSink(events_path=str(path))
        sink.emit_event(build_event("warn", "WATCHER", "Unrouted", filename="x.pdf"))
        sink.emit_event(build_event("info", "PROCESSOR", "ok", details={"n": 1}))
        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [e["level"] for e in lines] == ["WARN", "INFO"]
        assert lines[1]["details"] == {"n": 1}

    def test_empty_path_disables_output(self, tmp_path):
        JsonlEventSink(events_path="").emit_event(build_event("info", "SYSTEM", "x"))
        assert list(tmp_path.iterdir()) == []

    def test_long_messages_are_truncated(self):
        event = build_event("info", "SYSTEM", "x" * 5000)
        assert len(event["message"]) == 1000
