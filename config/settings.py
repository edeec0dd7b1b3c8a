#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration settings for the AXP ingest worker.
Enhanced with validation and type safety.
"""

from dataclasses import dataclass, field
import os
import logging
from pathlib import Path

from axp_exceptions import ConfigError
from .constant import (
    ALLOWED_EXTENSIONS,
    DEFAULT_PREFIX_MAP_PATH,
    DEFAULT_WATCH_DIR,
    DONE_SUBDIR,
    EXTRACTION_MIN_CONFIDENCE,
    FAILED_SUBDIR,
    INGEST_MAX_RETRY_ATTEMPTS,
    INGEST_MAX_WORKERS,
    INGEST_PROCESSING_LEASE_SECONDS,
    INGEST_RETRY_BASE_MINUTES,
    INGEST_RETRY_CAP_MINUTES,
    INGEST_SCAN_INTERVAL_S,
    MIN_FILE_BYTES,
    PROCESSING_SUBDIR,
    PROVIDER_FUZZY_THRESHOLD,
    S3_DEFAULT_REGION,
    S3_PRESIGNED_URL_EXPIRY,
    STABILITY_INTERVAL_S,
    STABILITY_REQUIRED_SAMPLES,
    STABILITY_TIMEOUT_S,
    TEXTRACT_DEFAULT_REGION,
)


from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


# ===========================================================================
# WORKER CONFIGURATION
# ===========================================================================


@dataclass
class WorkerConfig:
    """Centralised configuration for the ingest worker."""

    database_url: str
    redis_host: str = ""
    redis_port: int = 0
    redis_username: str = ""
    redis_password: str = ""

    watch_dir: str = DEFAULT_WATCH_DIR
    processing_dir: str = ""
    done_dir: str = ""
    failed_dir: str = ""
    prefix_map_path: str = DEFAULT_PREFIX_MAP_PATH

    s3_endpoint_url: str = ""
    s3_region: str = S3_DEFAULT_REGION
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    textract_region: str = TEXTRACT_DEFAULT_REGION
    presign_ttl_seconds: int = S3_PRESIGNED_URL_EXPIRY

    max_workers: int = INGEST_MAX_WORKERS
    scan_interval_s: float = INGEST_SCAN_INTERVAL_S
    stability_interval_s: float = STABILITY_INTERVAL_S
    stability_timeout_s: float = STABILITY_TIMEOUT_S
    stability_samples: int = STABILITY_REQUIRED_SAMPLES
    max_retry_attempts: int = INGEST_MAX_RETRY_ATTEMPTS
    retry_base_minutes: int = INGEST_RETRY_BASE_MINUTES
    retry_cap_minutes: int = INGEST_RETRY_CAP_MINUTES
    processing_lease_seconds: int = INGEST_PROCESSING_LEASE_SECONDS

    min_file_bytes: int = MIN_FILE_BYTES
    allowed_extensions: set[str] = field(
        default_factory=lambda: set(ALLOWED_EXTENSIONS)
    )
    fuzzy_threshold: float = PROVIDER_FUZZY_THRESHOLD
    min_field_confidence: float = EXTRACTION_MIN_CONFIDENCE

    log_level: str = "INFO"
    events_file: str = ""
    dry_run: bool = False

    def __post_init__(self) -> None:
        root = Path(self.watch_dir)
        if not self.processing_dir:
            self.processing_dir = str(root / PROCESSING_SUBDIR)
        if not self.done_dir:
            self.done_dir = str(root / DONE_SUBDIR)
        if not self.failed_dir:
            self.failed_dir = str(root / FAILED_SUBDIR)

    # -----------------------------------------------------------------------
    # ENVIRONMENT LOADERS
    # -----------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        database_url = os.getenv("DATABASE_URL", "")
        dry_run = _env_bool("DRY_RUN", False)
        if not database_url and not dry_run:
            raise ConfigError("DATABASE_URL not set")
        try:
            redis_port = int(os.getenv("REDIS_PORT") or 0)
        except ValueError as exc:
            raise ConfigError(
                f"Invalid REDIS_PORT: {os.getenv('REDIS_PORT')}") from exc

        defaults = WorkerConfig(database_url="")
        extensions = os.getenv("ALLOWED_EXTENSIONS")

        try:
            return cls(
                database_url=database_url or "sqlite://",
                redis_host=os.getenv("REDIS_HOST", ""),
                redis_port=redis_port,
                redis_username=os.getenv("REDIS_USERNAME", ""),
                redis_password=os.getenv("REDIS_PASSWORD", ""),
                watch_dir=os.getenv("WEBDAV_DIR", defaults.watch_dir),
                processing_dir=os.getenv("PROCESSING_DIR", ""),
                done_dir=os.getenv("DONE_DIR", ""),
                failed_dir=os.getenv("FAILED_DIR", ""),
                prefix_map_path=os.getenv(
                    "PREFIX_MAP_PATH", defaults.prefix_map_path),
                s3_endpoint_url=os.getenv("S3_ENDPOINT_URL", ""),
                s3_region=os.getenv("S3_REGION", defaults.s3_region),
                s3_access_key_id=os.getenv("S3_ACCESS_KEY_ID", ""),
                s3_secret_access_key=os.getenv("S3_SECRET_ACCESS_KEY", ""),
                textract_region=os.getenv(
                    "TEXTRACT_REGION", defaults.textract_region),
                presign_ttl_seconds=int(
                    os.getenv("PRESIGN_TTL_SECONDS", str(defaults.presign_ttl_seconds))),
                max_workers=int(
                    os.getenv("MAX_CONCURRENT_JOBS", str(defaults.max_workers))),
                scan_interval_s=float(
                    os.getenv("WATCHER_POLL_INTERVAL_S", str(defaults.scan_interval_s))),
                stability_interval_s=float(
                    os.getenv("STABILITY_INTERVAL_S", str(defaults.stability_interval_s))),
                stability_timeout_s=float(
                    os.getenv("STABILITY_TIMEOUT_S", str(defaults.stability_timeout_s))),
                stability_samples=int(
                    os.getenv("FILE_STABLE_CHECKS", str(defaults.stability_samples))),
                max_retry_attempts=int(
                    os.getenv("MAX_RETRY_ATTEMPTS", str(defaults.max_retry_attempts))),
                retry_base_minutes=int(
                    os.getenv("RETRY_BASE_MINUTES", str(defaults.retry_base_minutes))),
                retry_cap_minutes=int(
                    os.getenv("RETRY_CAP_MINUTES", str(defaults.retry_cap_minutes))),
                processing_lease_seconds=int(
                    os.getenv("PROCESSING_LEASE_SECONDS",
                              str(defaults.processing_lease_seconds))),
                min_file_bytes=int(
                    os.getenv("MIN_FILE_BYTES", str(defaults.min_file_bytes))),
                allowed_extensions=(
                    {e.strip().lower().lstrip(".")
                     for e in extensions.split(",") if e.strip()}
                    if extensions else defaults.allowed_extensions
                ),
                fuzzy_threshold=float(
                    os.getenv("PROVIDER_FUZZY_THRESHOLD", str(defaults.fuzzy_threshold))),
                min_field_confidence=float(
                    os.getenv("MIN_FIELD_CONFIDENCE", str(defaults.min_field_confidence))),
                log_level=os.getenv("LOG_LEVEL", defaults.log_level),
                events_file=os.getenv("EVENTS_FILE", defaults.events_file),
                dry_run=dry_run,
            )
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc

    # -----------------------------------------------------------------------
    # VALIDATION
    # -----------------------------------------------------------------------

    def validate(self) -> None:
        if self.max_workers < 1:
            raise ConfigError("max_workers must be >= 1")
        if self.scan_interval_s <= 0:
            raise ConfigError("scan_interval_s must be > 0")
        if self.stability_interval_s <= 0:
            raise ConfigError("stability_interval_s must be > 0")
        if self.stability_timeout_s < self.stability_interval_s:
            raise ConfigError(
                "stability_timeout_s must be >= stability_interval_s")
        if self.stability_samples < 2:
            raise ConfigError("stability_samples must be >= 2")
        if self.max_retry_attempts < 0:
            raise ConfigError("max_retry_attempts must be >= 0")
        if self.retry_base_minutes < 1:
            raise ConfigError("retry_base_minutes must be >= 1")
        if self.retry_cap_minutes < self.retry_base_minutes:
            raise ConfigError("retry_cap_minutes must be >= retry_base_minutes")
        if self.processing_lease_seconds < 1:
            raise ConfigError("processing_lease_seconds must be >= 1")
        if not 0.0 < self.fuzzy_threshold <= 1.0:
            raise ConfigError("fuzzy_threshold out of range (0-1]")
        if not 0.0 <= self.min_field_confidence <= 100.0:
            raise ConfigError("min_field_confidence out of range (0-100)")
        if self.min_file_bytes < 0:
            raise ConfigError("min_file_bytes must be >= 0")
        if not self.allowed_extensions:
            raise ConfigError("allowed_extensions must not be empty")

        path = Path(self.watch_dir)
        if not path.exists():
            raise ConfigError(f"watch_dir does not exist: {self.watch_dir}")
        if not path.is_dir():
            raise ConfigError(f"watch_dir is not a directory: {self.watch_dir}")

        if not self.dry_run:
            if not self.database_url:
                raise ConfigError("database_url must be set in non-dry-run")
            if self.redis_username and not self.redis_password:
                raise ConfigError(
                    "redis_password must be set when redis_username is provided"
                )
            if not self.s3_access_key_id or not self.s3_secret_access_key:
                raise ConfigError(
                    "S3_ACCESS_KEY_ID/S3_SECRET_ACCESS_KEY must be set in non-dry-run")
            if self.redis_host and self.redis_port:
                logging.info(
                    "Redis target: %s:%s",
                    self.redis_host,
                    self.redis_port,
                )
            else:
                logging.warning(
                    "REDIS_HOST/REDIS_PORT not set; task registry and processing leases "
                    "are process-local.")

        for directory in (self.processing_dir, self.done_dir, self.failed_dir):
            Path(directory).mkdir(parents=True, exist_ok=True)


__all__ = [
    "WorkerConfig",
]
