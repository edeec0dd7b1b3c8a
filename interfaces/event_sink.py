# EventSink port
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Optional, Protocol, Mapping, runtime_checkable

from config.constant import EVENT_MESSAGE_MAX_CHARS


@runtime_checkable
class MetricsReader(Protocol):
    def get_stats(self) -> dict[str, Any]: ...


class EventSink(Protocol):
    def emit_event(self, event: dict[str, Any]) -> None: ...


def build_event(
    level: str,
    source: str,
    message: str,
    *,
    tenant_id: Optional[str] = None,
    filename: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Operator-facing processing log entry."""
    return {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": level.upper(),
        "source": source,
        "tenant_id": tenant_id,
        "filename": filename,
        "message": (message or "")[:EVENT_MESSAGE_MAX_CHARS],
        "details": dict(details or {}),
    }


class JsonlEventSink:
    """Appends events as JSON lines. An empty path disables output."""

    def __init__(
        self,
        *,
        events_path: Optional[str] = None,
        lock: Optional[Lock] = None,
    ):
        self._events_path = (events_path or "").strip() or None
        self._lock = lock or Lock()

    @property
    def events_path(self) -> Optional[str]:
        return self._events_path

    def emit_event(self, event: dict[str, Any]) -> None:
        if not self._events_path:
            return
        path = Path(self._events_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(event, ensure_ascii=False, default=str) + "\n"
        with self._lock:
            with open(path, "a", encoding="utf-8") as handle:
                handle.write(line)


__all__ = [
    "EventSink",
    "JsonlEventSink",
    "MetricsReader",
    "build_event",
]
