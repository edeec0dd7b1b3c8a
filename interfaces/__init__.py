"""
Interfaces package exports.
"""

from .task_registry import (
    TaskOutcome,
    TaskStage,
    IngestionTask,
    TaskRegistry,
    RedisTaskRegistry,
    InMemoryTaskRegistry,
    task_id_for,
)
from .object_store import ObjectStore, S3ObjectStore, InMemoryObjectStore
from .extraction import (
    FieldCandidate,
    ExtractionResult,
    ExtractionService,
    TextractExtractionService,
    StaticExtractionService,
)
from .event_sink import EventSink, JsonlEventSink, MetricsReader, build_event

__all__ = [
    "TaskOutcome",
    "TaskStage",
    "IngestionTask",
    "TaskRegistry",
    "RedisTaskRegistry",
    "InMemoryTaskRegistry",
    "task_id_for",
    "ObjectStore",
    "S3ObjectStore",
    "InMemoryObjectStore",
    "FieldCandidate",
    "ExtractionResult",
    "ExtractionService",
    "TextractExtractionService",
    "StaticExtractionService",
    "EventSink",
    "JsonlEventSink",
    "MetricsReader",
    "build_event",
]
