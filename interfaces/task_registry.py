# TaskRegistry port
from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Optional, Protocol, cast

from redis import Redis
from config.constant import (
    INGEST_LAST_ERROR_MAX_CHARS,
    INGEST_TASK_TTL_PENDING_SECONDS,
    INGEST_TASK_TTL_SUCCESS_SECONDS,
    INGEST_TASK_TTL_TERMINAL_SECONDS,
    REDIS_TASK_KEY_PREFIX,
)


class TaskOutcome:
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    DEAD_LETTERED = "dead_lettered"
    DUPLICATE = "duplicate"
    UNROUTED = "unrouted"

    TERMINAL = frozenset({SUCCEEDED, DEAD_LETTERED, DUPLICATE})


class TaskStage:
    RECEIVED = "received"
    CLAIMED = "claimed"
    UPLOADED = "uploaded"
    STORED = "stored"


def task_id_for(filename: str) -> str:
    """Stable id from the watch-root-relative filename."""
    return hashlib.sha1(filename.encode("utf-8")).hexdigest()


def _iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def _parse_dt(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class IngestionTask:
    task_id: str
    source_path: str
    filename: str
    size: int = 0
    mtime: float = 0.0
    fingerprint: Optional[str] = None
    tenant_id: Optional[str] = None
    attempts: int = 0
    next_retry_at: Optional[datetime] = None
    outcome: str = TaskOutcome.PENDING
    stage: str = TaskStage.RECEIVED
    last_error: Optional[str] = None
    bucket: Optional[str] = None
    storage_key: Optional[str] = None
    document_id: Optional[str] = None
    prefix_map_version: Optional[int] = None
    processing_token: Optional[str] = None
    processing_expires_at_epoch: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def new(cls, source_path: str, filename: str, *,
            now: Optional[datetime] = None) -> "IngestionTask":
        ts = now or datetime.now(timezone.utc)
        return cls(
            task_id=task_id_for(filename),
            source_path=source_path,
            filename=filename,
            created_at=ts,
            updated_at=ts,
        )

    @property
    def is_terminal(self) -> bool:
        return self.outcome in TaskOutcome.TERMINAL

    def is_due(self, now: datetime) -> bool:
        if self.is_terminal:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now

    def with_error(self, error: str | BaseException | None) -> "IngestionTask":
        text = str(error) if error is not None else None
        if text and len(text) > INGEST_LAST_ERROR_MAX_CHARS:
            text = text[:INGEST_LAST_ERROR_MAX_CHARS]
        return replace(self, last_error=text)

    def to_mapping(self) -> dict[str, str]:
        payload: dict[str, str] = {}
        for key, value in asdict(self).items():
            if isinstance(value, datetime):
                payload[key] = _iso(value)
            elif value is None:
                payload[key] = ""
            else:
                payload[key] = str(value)
        return payload

    @classmethod
    def from_mapping(cls, raw: dict[str, str]) -> "IngestionTask":
        def _int(name: str) -> Optional[int]:
            value = raw.get(name)
            try:
                return int(value) if value else None
            except (TypeError, ValueError):
                return None

        def _text(name: str) -> Optional[str]:
            return raw.get(name) or None

        try:
            mtime = float(raw.get("mtime") or 0.0)
        except ValueError:
            mtime = 0.0
        return cls(
            task_id=raw.get("task_id", ""),
            source_path=raw.get("source_path", ""),
            filename=raw.get("filename", ""),
            size=_int("size") or 0,
            mtime=mtime,
            fingerprint=_text("fingerprint"),
            tenant_id=_text("tenant_id"),
            attempts=_int("attempts") or 0,
            next_retry_at=_parse_dt(raw.get("next_retry_at")),
            outcome=raw.get("outcome") or TaskOutcome.PENDING,
            stage=raw.get("stage") or TaskStage.RECEIVED,
            last_error=_text("last_error"),
            bucket=_text("bucket"),
            storage_key=_text("storage_key"),
            document_id=_text("document_id"),
            prefix_map_version=_int("prefix_map_version"),
            processing_token=_text("processing_token"),
            processing_expires_at_epoch=_int("processing_expires_at_epoch"),
            created_at=_parse_dt(raw.get("created_at")),
            updated_at=_parse_dt(raw.get("updated_at")),
        )


class TaskRegistry(Protocol):
    def get(self, task_id: str) -> Optional[IngestionTask]: ...
    def save(self, task: IngestionTask, *,
             processing_token: str | None = None) -> IngestionTask: ...

    def try_start_processing(
        self,
        task_id: str,
        *,
        lease_seconds: int,
        processing_token: str,
        seed: Optional[IngestionTask] = None,
        restart: bool = False,
    ) -> bool: ...
    def delete(self, task_id: str) -> None: ...


def _check_lease(existing: Optional[IngestionTask], task_id: str,
                 processing_token: str | None, now_epoch: int) -> None:
    if existing is None or not existing.processing_token:
        return
    if int(existing.processing_expires_at_epoch or 0) <= now_epoch:
        return
    if processing_token != existing.processing_token:
        raise ValueError(f"Rejecting state update for {task_id}: token mismatch")


def _release_lease_if_done(task: IngestionTask) -> IngestionTask:
    return replace(task, processing_token=None, processing_expires_at_epoch=None)


class RedisTaskRegistry:
    """Redis-backed TaskRegistry storing each task as a hash."""

    def __init__(
        self,
        client: Redis,
        *,
        prefix: str = REDIS_TASK_KEY_PREFIX,
        success_ttl_seconds: int = INGEST_TASK_TTL_SUCCESS_SECONDS,
        terminal_ttl_seconds: int = INGEST_TASK_TTL_TERMINAL_SECONDS,
        pending_ttl_seconds: int = INGEST_TASK_TTL_PENDING_SECONDS,
    ):
        self._client = client
        self._prefix = prefix
        self._success_ttl_seconds = int(success_ttl_seconds)
        self._terminal_ttl_seconds = int(terminal_ttl_seconds)
        self._pending_ttl_seconds = int(pending_ttl_seconds)
        self._try_start_script = self._client.register_script(
            """
            local key = KEYS[1]
            local now_epoch = tonumber(ARGV[1])
            local token = ARGV[2]
            local expires_epoch = tonumber(ARGV[3])
            local ttl_seconds = tonumber(ARGV[4])
            local restart = ARGV[5] == "1"
            local has_seed = #ARGV > 5

            local outcome = redis.call("HGET", key, "outcome")
            local reseed = false
            if not outcome then
                if not has_seed then
                    return 0
                end
                reseed = true
            elseif outcome == "succeeded" or outcome == "dead_lettered" or outcome == "duplicate" then
                if not (restart and has_seed) then
                    return 0
                end
                reseed = true
            else
                local current_token = redis.call("HGET", key, "processing_token")
                local current_expiry = tonumber(redis.call("HGET", key, "processing_expires_at_epoch") or "0") or 0
                if current_token and current_token ~= "" and current_expiry > now_epoch then
                    return 0
                end
            end

            if reseed then
                redis.call("DEL", key)
                for i = 6, #ARGV, 2 do
                    redis.call("HSET", key, ARGV[i], ARGV[i + 1])
                end
            end
            redis.call(
                "HSET",
                key,
                "processing_token", token,
                "processing_expires_at_epoch", tostring(expires_epoch)
            )
            local ttl = redis.call("TTL", key)
            if ttl < ttl_seconds then
                redis.call("EXPIRE", key, ttl_seconds)
            end
            return 1
            """
        )

    def _key(self, task_id: str) -> str:
        return f"{self._prefix}{task_id}"

    def _ttl_for_outcome(self, outcome: str) -> int:
        if outcome == TaskOutcome.SUCCEEDED:
            return self._success_ttl_seconds
        if outcome in (TaskOutcome.DEAD_LETTERED, TaskOutcome.DUPLICATE):
            return self._terminal_ttl_seconds
        return self._pending_ttl_seconds

    @staticmethod
    def _decode_value(raw: object) -> Optional[str]:
        if isinstance(raw, (bytes, bytearray)):
            return raw.decode("utf-8")
        if isinstance(raw, str):
            return raw
        return None

    def get(self, task_id: str) -> Optional[IngestionTask]:
        payload = cast(dict[object, object],
                       self._client.hgetall(self._key(task_id)))
        if not payload:
            return None
        decoded: dict[str, str] = {}
        for key, value in payload.items():
            raw_key = self._decode_value(key)
            raw_value = self._decode_value(value)
            if raw_key is None or raw_value is None:
                continue
            decoded[raw_key] = raw_value
        decoded.setdefault("task_id", task_id)
        return IngestionTask.from_mapping(decoded)

    def save(self, task: IngestionTask, *,
             processing_token: str | None = None) -> IngestionTask:
        now = datetime.now(timezone.utc)
        _check_lease(self.get(task.task_id), task.task_id,
                     processing_token, int(now.timestamp()))
        stored = replace(task, updated_at=now, created_at=task.created_at or now)
        if stored.is_terminal:
            stored = _release_lease_if_done(stored)
        key = self._key(task.task_id)
        pipe = self._client.pipeline()
        pipe.hset(key, mapping=stored.to_mapping())
        pipe.expire(key, self._ttl_for_outcome(stored.outcome))
        pipe.execute()
        return stored

    def try_start_processing(
        self,
        task_id: str,
        *,
        lease_seconds: int,
        processing_token: str,
        seed: Optional[IngestionTask] = None,
        restart: bool = False,
    ) -> bool:
        """
        Take the processing lease. A missing task is created from `seed`; a
        terminal one is replaced by `seed` only when `restart` is set.
        """
        now = datetime.now(timezone.utc)
        now_epoch = int(now.timestamp())
        args = [
            str(now_epoch),
            processing_token,
            str(now_epoch + int(lease_seconds)),
            str(max(self._pending_ttl_seconds, int(lease_seconds))),
            "1" if restart else "0",
        ]
        if seed is not None:
            fresh = replace(seed, created_at=seed.created_at or now, updated_at=now)
            for field_name, value in fresh.to_mapping().items():
                args.extend([field_name, value])
        result = self._try_start_script(keys=[self._key(task_id)], args=args)
        return bool(result)

    def delete(self, task_id: str) -> None:
        self._client.delete(self._key(task_id))


class InMemoryTaskRegistry:
    """Process-local TaskRegistry for dry-run mode, single-host runs and tests."""

    def __init__(self):
        self._lock = Lock()
        self._tasks: dict[str, IngestionTask] = {}

    def get(self, task_id: str) -> Optional[IngestionTask]:
        with self._lock:
            return self._tasks.get(task_id)

    def save(self, task: IngestionTask, *,
             processing_token: str | None = None) -> IngestionTask:
        now = datetime.now(timezone.utc)
        with self._lock:
            _check_lease(self._tasks.get(task.task_id), task.task_id,
                         processing_token, int(now.timestamp()))
            stored = replace(task, updated_at=now, created_at=task.created_at or now)
            if stored.is_terminal:
                stored = _release_lease_if_done(stored)
            self._tasks[task.task_id] = stored
            return stored

    def try_start_processing(
        self,
        task_id: str,
        *,
        lease_seconds: int,
        processing_token: str,
        seed: Optional[IngestionTask] = None,
        restart: bool = False,
    ) -> bool:
        now = datetime.now(timezone.utc)
        now_epoch = int(now.timestamp())
        with self._lock:
            existing = self._tasks.get(task_id)
            if existing is None or existing.is_terminal:
                if seed is None or (existing is not None and not restart):
                    return False
                existing = replace(seed, created_at=seed.created_at or now, updated_at=now)
            elif (existing.processing_token
                    and int(existing.processing_expires_at_epoch or 0) > now_epoch):
                return False
            self._tasks[task_id] = replace(
                existing,
                processing_token=processing_token,
                processing_expires_at_epoch=now_epoch + int(lease_seconds),
            )
            return True

    def delete(self, task_id: str) -> None:
        with self._lock:
            self._tasks.pop(task_id, None)

    def all(self) -> list[IngestionTask]:
        with self._lock:
            return list(self._tasks.values())


__all__ = [
    "TaskOutcome",
    "TaskStage",
    "IngestionTask",
    "TaskRegistry",
    "RedisTaskRegistry",
    "InMemoryTaskRegistry",
    "task_id_for",
]
