#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Constants for AXP ingest configuration.
"""

from __future__ import annotations

import os
from pathlib import Path

# ===========================================================================
# WATCH ROOT LAYOUT
# ===========================================================================
DEFAULT_WATCH_DIR = "/srv/webdav/data"
PROCESSING_SUBDIR = "processing"
DONE_SUBDIR = "done"
FAILED_SUBDIR = "failed"
DUPLICATE_FILENAME_PREFIX = "DUPLICATE_"
DEFAULT_PREFIX_MAP_PATH = os.getenv(
    "PREFIX_MAP_PATH", str(Path("/etc/axp/prefix-map.json")))
ALLOWED_EXTENSIONS = frozenset({"pdf"})
MIN_FILE_BYTES = 1000

# ===========================================================================
# STABILITY GATE
# ===========================================================================
STABILITY_INTERVAL_S = 0.5
STABILITY_TIMEOUT_S = 10.0
STABILITY_REQUIRED_SAMPLES = 2

# ===========================================================================
# INGEST / RETRY CONFIGURATION
# ===========================================================================
INGEST_MAX_RETRY_ATTEMPTS = 4
INGEST_RETRY_BASE_MINUTES = 1
INGEST_RETRY_CAP_MINUTES = 60
INGEST_PROCESSING_LEASE_SECONDS = 10 * 60
INGEST_SCAN_INTERVAL_S = 2.0
INGEST_MAX_WORKERS = 5
INGEST_LAST_ERROR_MAX_CHARS = 5000
INGEST_TASK_TTL_SUCCESS_SECONDS = 7 * 24 * 60 * 60
INGEST_TASK_TTL_TERMINAL_SECONDS = 30 * 24 * 60 * 60
INGEST_TASK_TTL_PENDING_SECONDS = 24 * 60 * 60

# ===========================================================================
# PROVIDER RESOLUTION
# ===========================================================================
PROVIDER_FUZZY_THRESHOLD = 0.60
PROVIDER_MIN_WORD_LENGTH = 3
PROVIDER_PARTIAL_MIN_LENGTH = 4
PROVIDER_PARTIAL_WEIGHT = 0.5

# ===========================================================================
# EXTRACTION
# ===========================================================================
EXTRACTION_MIN_CONFIDENCE = 50.0
DEFAULT_CURRENCY = "ARS"
DEFAULT_DOC_TYPE = "FACTURA"
EXTRACTED_NAME_MAX_CHARS = 255
EXTRACTED_CODE_MAX_CHARS = 32
EXTRACTED_CURRENCY_MAX_CHARS = 8
TEXTRACT_DEFAULT_REGION = "us-east-1"

# ===========================================================================
# STORAGE
# ===========================================================================
S3_DEFAULT_REGION = "auto"
S3_PRESIGNED_URL_EXPIRY = 3600
S3_CONNECT_TIMEOUT_S = 10
S3_READ_TIMEOUT_S = 60
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# ===========================================================================
# REDIS
# ===========================================================================
REDIS_TASK_KEY_PREFIX = "axp:ingest:task:"
REDIS_POOL_MAX_CONNECTIONS = 20
REDIS_POOL_SOCKET_TIMEOUT_S = 5.0
REDIS_POOL_SOCKET_CONNECT_TIMEOUT_S = 5.0
REDIS_POOL_HEALTH_CHECK_INTERVAL_S = 30

# ===========================================================================
# EVENTS
# ===========================================================================
EVENT_MESSAGE_MAX_CHARS = 1000


class ReviewStates:
    PENDIENTE = "PENDIENTE"
    CONFIRMADO = "CONFIRMADO"
    ERROR = "ERROR"
    DUPLICADO = "DUPLICADO"


class EventSources:
    WATCHER = "WATCHER"
    PROCESSOR = "PROCESSOR"
    OCR = "OCR"
    SYSTEM = "SYSTEM"


__all__ = [
    "DEFAULT_WATCH_DIR",
    "PROCESSING_SUBDIR",
    "DONE_SUBDIR",
    "FAILED_SUBDIR",
    "DUPLICATE_FILENAME_PREFIX",
    "DEFAULT_PREFIX_MAP_PATH",
    "ALLOWED_EXTENSIONS",
    "MIN_FILE_BYTES",
    "STABILITY_INTERVAL_S",
    "STABILITY_TIMEOUT_S",
    "STABILITY_REQUIRED_SAMPLES",
    "INGEST_MAX_RETRY_ATTEMPTS",
    "INGEST_RETRY_BASE_MINUTES",
    "INGEST_RETRY_CAP_MINUTES",
    "INGEST_PROCESSING_LEASE_SECONDS",
    "INGEST_SCAN_INTERVAL_S",
    "INGEST_MAX_WORKERS",
    "INGEST_LAST_ERROR_MAX_CHARS",
    "INGEST_TASK_TTL_SUCCESS_SECONDS",
    "INGEST_TASK_TTL_TERMINAL_SECONDS",
    "INGEST_TASK_TTL_PENDING_SECONDS",
    "PROVIDER_FUZZY_THRESHOLD",
    "PROVIDER_MIN_WORD_LENGTH",
    "PROVIDER_PARTIAL_MIN_LENGTH",
    "PROVIDER_PARTIAL_WEIGHT",
    "EXTRACTION_MIN_CONFIDENCE",
    "DEFAULT_CURRENCY",
    "DEFAULT_DOC_TYPE",
    "EXTRACTED_NAME_MAX_CHARS",
    "EXTRACTED_CODE_MAX_CHARS",
    "EXTRACTED_CURRENCY_MAX_CHARS",
    "TEXTRACT_DEFAULT_REGION",
    "S3_DEFAULT_REGION",
    "S3_PRESIGNED_URL_EXPIRY",
    "S3_CONNECT_TIMEOUT_S",
    "S3_READ_TIMEOUT_S",
    "DEFAULT_CONTENT_TYPE",
    "REDIS_TASK_KEY_PREFIX",
    "REDIS_POOL_MAX_CONNECTIONS",
    "REDIS_POOL_SOCKET_TIMEOUT_S",
    "REDIS_POOL_SOCKET_CONNECT_TIMEOUT_S",
    "REDIS_POOL_HEALTH_CHECK_INTERVAL_S",
    "EVENT_MESSAGE_MAX_CHARS",
    "ReviewStates",
    "EventSources",
]
