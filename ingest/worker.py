"""
Polling worker: scans the watch root and processing/ and feeds each candidate
file to the pipeline on a bounded thread pool.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from config.constant import INGEST_MAX_WORKERS, INGEST_SCAN_INTERVAL_S
from .pipeline import FilePipeline, ProcessResult, ResultStatus
from .utils import list_candidate_files

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    """Value object returned by IngestWorker.scan_once()."""
    files_found: int = 0
    files_submitted: int = 0
    duration_seconds: float = 0.0
    by_status: Counter = field(default_factory=Counter)
    failed_files: list[str] = field(default_factory=list)

    def count(self, status: str) -> int:
        return self.by_status.get(status, 0)

    @property
    def files_processed(self) -> int:
        return sum(v for k, v in self.by_status.items() if k != ResultStatus.SKIPPED)


class IngestWorker:
    def __init__(
        self,
        pipeline: FilePipeline,
        *,
        max_workers: int = INGEST_MAX_WORKERS,
        scan_interval_s: float = INGEST_SCAN_INTERVAL_S,
        allowed_extensions: Optional[Iterable[str]] = None,
    ) -> None:
        self.pipeline = pipeline
        self.max_workers = max(1, int(max_workers))
        self.scan_interval_s = float(scan_interval_s)
        self.allowed_extensions = frozenset(
            allowed_extensions or pipeline.settings.allowed_extensions)
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    def candidates(self) -> list[Path]:
        dirs = self.pipeline.dirs
        # processing/ first: those files already hold a claim.
        found = list_candidate_files(dirs.processing, self.allowed_extensions)
        found += list_candidate_files(dirs.watch, self.allowed_extensions)
        return found

    def _reserve(self, path: Path) -> bool:
        with self._in_flight_lock:
            if path.name in self._in_flight:
                return False
            self._in_flight.add(path.name)
            return True

    def _finish(self, path: Path) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(path.name)

    def _process(self, path: Path) -> ProcessResult:
        try:
            return self.pipeline.process(path)
        finally:
            self._finish(path)

    def scan_once(self) -> ScanReport:
        started = time.time()
        paths = self.candidates()
        report = ScanReport(files_found=len(paths))
        submit = [p for p in paths if self._reserve(p)]
        report.files_submitted = len(submit)
        if not submit:
            report.duration_seconds = time.time() - started
            return report

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(submit))) as executor:
            futures = {executor.submit(self._process, path): path for path in submit}
            for future in as_completed(futures):
                path = futures[future]
                try:
                    result = future.result()
                except Exception as error:  # pylint: disable=broad-except
                    logger.warning("Failed to process %s: %s", path.name, error)
                    report.by_status["error"] += 1
                    report.failed_files.append(path.name)
                    continue
                report.by_status[result.status] += 1
                if result.status == ResultStatus.DEAD_LETTERED:
                    report.failed_files.append(result.filename)

        report.duration_seconds = time.time() - started
        if report.files_processed:
            _log_scan_summary(report)
        return report

    def run_forever(self, stop_event: threading.Event) -> None:
        logger.info("Watching %s every %.1fs with %d worker(s)",
                    self.pipeline.dirs.watch, self.scan_interval_s, self.max_workers)
        while not stop_event.is_set():
            try:
                self.scan_once()
            except Exception:  # pylint: disable=broad-except
                logger.exception("Scan failed; retrying next interval")
            stop_event.wait(self.scan_interval_s)
        logger.info("Worker stopped")


def _log_scan_summary(report: ScanReport) -> None:
    logger.info(
        """========================================
            SCAN SUMMARY
            ========================================
            Files found:          %d
            Succeeded:            %d
            Duplicates:           %d
            Unrouted:             %d
            Retry scheduled:      %d
            Not stable:           %d
            Dead-lettered:        %d
            Duration:             %.2fs
            ========================================
            """,
        report.files_found,
        report.count(ResultStatus.SUCCEEDED),
        report.count(ResultStatus.DUPLICATE),
        report.count(ResultStatus.UNROUTED),
        report.count(ResultStatus.RETRY_SCHEDULED),
        report.count(ResultStatus.NOT_STABLE),
        report.count(ResultStatus.DEAD_LETTERED),
        report.duration_seconds,
    )
    if report.failed_files:
        logger.warning("Failed files:")
        for failed_file in report.failed_files:
            logger.warning("  - %s", failed_file)


__all__ = [
    "ScanReport",
    "IngestWorker",
]
