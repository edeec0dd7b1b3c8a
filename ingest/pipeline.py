"""
Per-file ingestion pipeline.

One call to `FilePipeline.process(path)` advances a single file as far as it
can go in this scan:

  stability -> fingerprint -> route -> claim -> storage key -> upload
  -> extraction -> provider resolution + review state -> document -> done/

Transient failures schedule a retry (`next_retry_at`) and return; the scan
loop picks the task up again once it is due.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from axp_exceptions import (
    FileNotStableError,
    UnroutableFileError,
    ValidationError,
    wrap_exception,
)
from config.constant import (
    ALLOWED_EXTENSIONS,
    DUPLICATE_FILENAME_PREFIX,
    EXTRACTION_MIN_CONFIDENCE,
    INGEST_PROCESSING_LEASE_SECONDS,
    MIN_FILE_BYTES,
    STABILITY_INTERVAL_S,
    STABILITY_REQUIRED_SAMPLES,
    STABILITY_TIMEOUT_S,
    EventSources,
)
from interfaces import (
    EventSink,
    ExtractionService,
    IngestionTask,
    ObjectStore,
    TaskOutcome,
    TaskRegistry,
    TaskStage,
    build_event,
    task_id_for,
)
from routing import (
    PrefixMapHolder,
    TenantDescriptor,
    add_fingerprint_suffix,
    build_storage_key,
    route,
    sanitise_filename,
    timestamp_from_filename,
)
from .documents import DocumentService, SourceRef
from .extraction import interpret
from .fingerprint import ContentDedup, compute_fingerprint
from .retry import AttemptOutcome, AttemptStatus, RetryScheduler
from .stability import wait_until_stable
from .transaction import ThreadSafeStats
from .utils import content_type_for, is_allowed_extension, move_file_safe

logger = logging.getLogger(__name__)


class ResultStatus:
    SUCCEEDED = "succeeded"
    DUPLICATE = "duplicate"
    UNROUTED = "unrouted"
    DEAD_LETTERED = "dead_lettered"
    RETRY_SCHEDULED = "retry_scheduled"
    NOT_STABLE = "not_stable"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ProcessResult:
    status: str
    filename: str
    task: Optional[IngestionTask] = None
    document_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class PipelineDirs:
    watch: Path
    processing: Path
    done: Path
    failed: Path


@dataclass(frozen=True)
class PipelineSettings:
    allowed_extensions: frozenset = ALLOWED_EXTENSIONS
    min_file_bytes: int = MIN_FILE_BYTES
    stability_interval_s: float = STABILITY_INTERVAL_S
    stability_timeout_s: float = STABILITY_TIMEOUT_S
    stability_samples: int = STABILITY_REQUIRED_SAMPLES
    processing_lease_seconds: int = INGEST_PROCESSING_LEASE_SECONDS
    min_field_confidence: float = EXTRACTION_MIN_CONFIDENCE
    move_files: bool = True


class FilePipeline:
    def __init__(
        self,
        *,
        dirs: PipelineDirs,
        registry: TaskRegistry,
        prefix_maps: PrefixMapHolder,
        dedup: ContentDedup,
        object_store: ObjectStore,
        extraction: ExtractionService,
        documents: DocumentService,
        event_sink: EventSink,
        scheduler: Optional[RetryScheduler] = None,
        stats: Optional[ThreadSafeStats] = None,
        settings: Optional[PipelineSettings] = None,
        now: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.dirs = dirs
        self.registry = registry
        self.prefix_maps = prefix_maps
        self.dedup = dedup
        self.object_store = object_store
        self.extraction = extraction
        self.documents = documents
        self.event_sink = event_sink
        self.scheduler = scheduler or RetryScheduler()
        self.stats = stats or ThreadSafeStats()
        self.settings = settings or PipelineSettings()
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._clock = clock

    # -----------------------------------------------------------------------
    # ENTRY POINT
    # -----------------------------------------------------------------------

    def process(self, path: Path) -> ProcessResult:
        filename = path.name
        task_id = task_id_for(filename)
        now = self._now()
        task = self.registry.get(task_id)
        restart = False
        if task is not None:
            if task.is_terminal:
                if not self._is_new_drop(path, task):
                    logger.debug("Skipping %s: task already %s", filename, task.outcome)
                    return ProcessResult(ResultStatus.SKIPPED, filename, task, task.document_id)
                restart = True
            elif (task.outcome == TaskOutcome.UNROUTED
                    and task.prefix_map_version == self.prefix_maps.version):
                return ProcessResult(ResultStatus.SKIPPED, filename, task)
            elif not task.is_due(now):
                return ProcessResult(ResultStatus.SKIPPED, filename, task)

        # The lease is the only per-file exclusion; it also creates the task.
        token = uuid.uuid4().hex
        seed = IngestionTask.new(str(path), filename, now=now)
        if not self.registry.try_start_processing(
                task_id,
                lease_seconds=self.settings.processing_lease_seconds,
                processing_token=token,
                seed=seed,
                restart=restart):
            logger.debug("Skipping %s: processing lease held elsewhere", filename)
            return ProcessResult(ResultStatus.SKIPPED, filename, task, error="leased")
        if restart:
            logger.info("%s dropped again after task %s; started a new task",
                        filename, task.outcome)
        task = replace(self.registry.get(task_id) or seed, source_path=str(path))

        started = time.monotonic()
        try:
            return self._run(task, token, path)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected failure while processing %s", filename)
            latest = self.registry.get(task_id) or task
            outcome = self.scheduler.record_failure(latest, wrap_exception(exc), self._now())
            return self._after_failure(outcome, token, Path(latest.source_path or path))
        finally:
            self.stats.observe_timing("file_process_seconds", time.monotonic() - started)

    # -----------------------------------------------------------------------
    # STEPS
    # -----------------------------------------------------------------------

    def _run(self, task: IngestionTask, token: str, path: Path) -> ProcessResult:
        filename = task.filename
        in_root = path.parent.resolve() == self.dirs.watch.resolve()

        if not is_allowed_extension(filename, self.settings.allowed_extensions):
            error = ValidationError(f"Extension not allowed: {filename}")
            return self._after_failure(
                self.scheduler.record_failure(task, error, self._now()), token, path)

        if in_root or task.fingerprint is None:
            verdict = wait_until_stable(
                path,
                self.settings.stability_interval_s,
                self.settings.stability_timeout_s,
                self.settings.stability_samples,
                sleep=self._sleep,
                clock=self._clock,
            )
            if not verdict.stable:
                error = FileNotStableError(
                    f"{filename} not stable after {self.settings.stability_timeout_s}s")
                logger.info("%s", error)
                self.stats.increment("files_not_stable")
                task = self._save(task.with_error(error), token)
                return ProcessResult(ResultStatus.NOT_STABLE, filename, task, error=str(error))
            if (verdict.size or 0) < self.settings.min_file_bytes:
                error = ValidationError(
                    f"File too small ({verdict.size} bytes < {self.settings.min_file_bytes}): {filename}")
                return self._after_failure(
                    self.scheduler.record_failure(task, error, self._now()), token, path)
            task = replace(task, size=int(verdict.size or 0), mtime=float(verdict.mtime or 0.0),
                           fingerprint=compute_fingerprint(path))

        snapshot = self.prefix_maps.current()
        try:
            tenant = route(filename, snapshot)
        except UnroutableFileError as exc:
            logger.warning("%s (prefix map version %d)", exc, snapshot.version)
            task = replace(task, outcome=TaskOutcome.UNROUTED,
                           prefix_map_version=snapshot.version).with_error(exc)
            self._save(task, token)
            self.stats.increment("files_unrouted")
            self._emit("WARN", EventSources.WATCHER, str(exc), task,
                       details={"prefix_map_version": snapshot.version})
            return ProcessResult(ResultStatus.UNROUTED, filename, task, error=str(exc))

        task = replace(task, tenant_id=tenant.tenant_id, bucket=tenant.bucket,
                       outcome=TaskOutcome.PENDING, prefix_map_version=None)
        if in_root:
            path = self._move(path, self.dirs.processing)
            task = self._save(replace(task, source_path=str(path)), token, release=False)
            self._emit("INFO", EventSources.WATCHER, "File received", task,
                       details={"size": task.size, "fingerprint": task.fingerprint})

        claim = self.dedup.claim(tenant.tenant_id, task.fingerprint, task.task_id)
        # A fresh task finding its own stored claim is the same file dropped again.
        if (claim.resumed and claim.existing_document_id
                and task.stage == TaskStage.RECEIVED):
            return self._duplicate(task, token, path, claim.existing_document_id)
        if claim.resumed:
            return self._succeed(task, token, path, claim.existing_document_id)
        if not claim.claimed:
            return self._duplicate(task, token, path, claim.existing_document_id)
        if task.stage == TaskStage.RECEIVED:
            task = replace(task, stage=TaskStage.CLAIMED)
        task = self._save(task, token, release=False)

        if task.stage == TaskStage.CLAIMED:
            attempt = self.scheduler.run(task, lambda: self._upload(task, tenant, path), self._now())
            if not attempt.ok:
                return self._after_failure(attempt, token, path)
            task = replace(attempt.task, storage_key=attempt.value, stage=TaskStage.UPLOADED)
            task = self._save(task, token, release=False)
            self._emit("INFO", EventSources.PROCESSOR, "File uploaded", task,
                       details={"bucket": tenant.bucket, "key": task.storage_key})

        extracted = self.scheduler.run(
            task, lambda: self.extraction.analyse(tenant.bucket, task.storage_key), self._now())
        if extracted.status is AttemptStatus.DEAD_LETTERED:
            return self._extraction_dead(extracted, token, path, tenant)
        if not extracted.ok:
            return self._after_failure(extracted, token, path)
        task = extracted.task

        invoice = interpret(extracted.value,
                            min_confidence=self.settings.min_field_confidence,
                            today=self._now().date())
        source = self._source_ref(task)
        stored = self.scheduler.run(
            task, lambda: self.documents.create_from_extraction(tenant, invoice, source), self._now())
        if not stored.ok:
            return self._after_failure(stored, token, path)
        document = stored.value
        self._emit("INFO", EventSources.OCR, f"Document created ({document.review_state})",
                   stored.task, details={"document_id": document.id,
                                         "missing_fields": list(document.missing_fields)})
        return self._succeed(stored.task, token, path, document.id)

    def _upload(self, task: IngestionTask, tenant: TenantDescriptor, path: Path) -> str:
        timestamp = timestamp_from_filename(task.filename) or task.created_at or self._now()
        key = task.storage_key or build_storage_key(tenant.namespace, task.filename, timestamp)
        if not task.storage_key and self.object_store.exists(tenant.bucket, key):
            suffixed = add_fingerprint_suffix(sanitise_filename(task.filename), task.fingerprint)
            key = build_storage_key(tenant.namespace, suffixed, timestamp)
            logger.info("Object exists for %s, using %s", task.filename, key)
        self.object_store.put(tenant.bucket, key, path.read_bytes(),
                              content_type_for(task.filename))
        return key

    # -----------------------------------------------------------------------
    # OUTCOMES
    # -----------------------------------------------------------------------

    def _succeed(self, task: IngestionTask, token: str, path: Path,
                 document_id: Optional[str]) -> ProcessResult:
        self._move(path, self.dirs.done)
        task = self.scheduler.mark_succeeded(
            replace(task, document_id=document_id, stage=TaskStage.STORED))
        task = self._save(task, token)
        self.stats.increment("files_succeeded")
        logger.info("Ingested %s -> document %s", task.filename, document_id)
        return ProcessResult(ResultStatus.SUCCEEDED, task.filename, task, document_id)

    def _duplicate(self, task: IngestionTask, token: str, path: Path,
                   existing_document_id: Optional[str]) -> ProcessResult:
        self._move(path, self.dirs.done, DUPLICATE_FILENAME_PREFIX + task.filename)
        task = replace(task, outcome=TaskOutcome.DUPLICATE, document_id=existing_document_id)
        task = self._save(task, token)
        self.stats.increment("files_duplicate")
        self._emit("WARN", EventSources.PROCESSOR, "Duplicate file", task,
                   details={"fingerprint": task.fingerprint,
                            "existing_document_id": existing_document_id})
        return ProcessResult(ResultStatus.DUPLICATE, task.filename, task, existing_document_id)

    def _extraction_dead(self, outcome: AttemptOutcome[Any], token: str, path: Path,
                         tenant: TenantDescriptor) -> ProcessResult:
        task = outcome.task
        document = self.documents.create_failed(tenant, self._source_ref(task),
                                                str(outcome.error))
        task = replace(task, document_id=document.id, stage=TaskStage.STORED)
        return self._after_failure(replace(outcome, task=task), token, path,
                                   claim_stored=True)

    def _after_failure(self, outcome: AttemptOutcome[Any], token: str, path: Path,
                       *, claim_stored: bool = False) -> ProcessResult:
        task = outcome.task
        if outcome.status is AttemptStatus.RETRY_SCHEDULED:
            self._save(task, token)
            self.stats.increment("files_retry_scheduled")
            self._emit("WARN", EventSources.PROCESSOR,
                       f"Attempt {task.attempts} failed, retry scheduled", task,
                       details={"next_retry_at": task.next_retry_at, "error": task.last_error})
            return ProcessResult(ResultStatus.RETRY_SCHEDULED, task.filename, task,
                                 error=task.last_error)

        if task.tenant_id and task.fingerprint and not claim_stored:
            self.dedup.release(task.tenant_id, task.fingerprint, task.task_id)
        if path.exists():
            self._move(path, self.dirs.failed)
        task = self._save(replace(task, outcome=TaskOutcome.DEAD_LETTERED), token)
        self.stats.increment("files_dead_lettered")
        self.stats.append_failed(task.filename)
        self._emit("ERROR", EventSources.PROCESSOR, "Dead-lettered", task,
                   details={"attempts": task.attempts, "error": task.last_error,
                            "document_id": task.document_id})
        return ProcessResult(ResultStatus.DEAD_LETTERED, task.filename, task,
                             task.document_id, error=task.last_error)

    # -----------------------------------------------------------------------
    # HELPERS
    # -----------------------------------------------------------------------

    def _is_new_drop(self, path: Path, task: IngestionTask) -> bool:
        """A file in the watch root whose task already finished."""
        if path.parent.resolve() != self.dirs.watch.resolve():
            return False
        if self.settings.move_files:
            return True
        # Files are left in place without moves; only a changed file is new.
        try:
            stat = path.stat()
        except FileNotFoundError:
            return False
        return stat.st_size != task.size or stat.st_mtime != task.mtime

    @staticmethod
    def _source_ref(task: IngestionTask) -> SourceRef:
        return SourceRef(
            task_id=task.task_id,
            fingerprint=task.fingerprint or "",
            bucket=task.bucket or "",
            storage_key=task.storage_key or "",
            filename=task.filename,
        )

    def _save(self, task: IngestionTask, token: str, *, release: bool = True) -> IngestionTask:
        if release:
            task = replace(task, processing_token=None, processing_expires_at_epoch=None)
        return self.registry.save(task, processing_token=token)

    def _move(self, path: Path, dest_dir: Path, name: Optional[str] = None) -> Path:
        if not self.settings.move_files:
            logger.info("[DRY-RUN] Would move %s -> %s", path, dest_dir / (name or path.name))
            return path
        return move_file_safe(path, dest_dir, name)

    def _emit(self, level: str, source: str, message: str, task: IngestionTask,
              *, details: Optional[dict[str, Any]] = None) -> None:
        try:
            self.event_sink.emit_event(build_event(
                level, source, message,
                tenant_id=task.tenant_id,
                filename=task.filename,
                details={"task_id": task.task_id, **(details or {})},
            ))
        except OSError as error:
            logger.warning("Could not write processing event: %s", error)


__all__ = [
    "ResultStatus",
    "ProcessResult",
    "PipelineDirs",
    "PipelineSettings",
    "FilePipeline",
]
