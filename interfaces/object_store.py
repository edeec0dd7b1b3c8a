# ObjectStore port
from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Optional, Protocol
from urllib.parse import quote

from botocore.exceptions import BotoCoreError, ClientError

from axp_exceptions import ExternalServiceError, ValidationError, wrap_exception
from config.constant import DEFAULT_CONTENT_TYPE, S3_PRESIGNED_URL_EXPIRY

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class ObjectStore(Protocol):
    def put(self, bucket: str, key: str, data: bytes,
            content_type: str = DEFAULT_CONTENT_TYPE) -> None: ...

    def get(self, bucket: str, key: str) -> bytes: ...
    def delete(self, bucket: str, key: str) -> None: ...
    def exists(self, bucket: str, key: str) -> bool: ...
    def presign(self, bucket: str, key: str,
                ttl_seconds: int = S3_PRESIGNED_URL_EXPIRY) -> str: ...


def _error_code(exc: ClientError) -> str:
    return str(getattr(exc, "response", {}).get("Error", {}).get("Code", ""))


class S3ObjectStore:
    """ObjectStore over an S3-compatible endpoint (AWS S3 or Cloudflare R2)."""

    def __init__(self, client: Any):
        if client is None:
            raise RuntimeError("s3 client not provided")
        self._client = client

    def put(self, bucket: str, key: str, data: bytes,
            content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        try:
            self._client.put_object(
                Bucket=bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise wrap_exception(exc) from exc
        logger.info("Uploaded s3://%s/%s (%d bytes)", bucket, key, len(data))

    def get(self, bucket: str, key: str) -> bytes:
        try:
            obj = self._client.get_object(Bucket=bucket, Key=key)
            return obj["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise ValidationError(f"Object not found: s3://{bucket}/{key}") from exc
            raise wrap_exception(exc) from exc
        except BotoCoreError as exc:
            raise wrap_exception(exc) from exc

    def delete(self, bucket: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise wrap_exception(exc) from exc

    def exists(self, bucket: str, key: str) -> bool:
        try:
            self._client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise wrap_exception(exc) from exc
        except BotoCoreError as exc:
            raise wrap_exception(exc) from exc

    def presign(self, bucket: str, key: str,
                ttl_seconds: int = S3_PRESIGNED_URL_EXPIRY) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=int(ttl_seconds),
            )
        except (BotoCoreError, ClientError) as exc:
            raise wrap_exception(exc) from exc


class InMemoryObjectStore:
    """Dict-backed ObjectStore for dry-run mode and tests."""

    def __init__(self, *, fail_puts: int = 0, error: Optional[Exception] = None):
        self._lock = Lock()
        self._objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self._fail_puts = int(fail_puts)
        self._error = error
        self.put_calls = 0

    def put(self, bucket: str, key: str, data: bytes,
            content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        with self._lock:
            self.put_calls += 1
            if self._fail_puts > 0:
                self._fail_puts -= 1
                raise self._error or ExternalServiceError(
                    f"Simulated storage outage for {bucket}/{key}")
            self._objects[(bucket, key)] = (bytes(data), content_type)

    def get(self, bucket: str, key: str) -> bytes:
        with self._lock:
            try:
                return self._objects[(bucket, key)][0]
            except KeyError as exc:
                raise ValidationError(f"Object not found: {bucket}/{key}") from exc

    def delete(self, bucket: str, key: str) -> None:
        with self._lock:
            self._objects.pop((bucket, key), None)

    def exists(self, bucket: str, key: str) -> bool:
        with self._lock:
            return (bucket, key) in self._objects

    def presign(self, bucket: str, key: str,
                ttl_seconds: int = S3_PRESIGNED_URL_EXPIRY) -> str:
        return f"memory://{bucket}/{quote(key)}?expires={int(ttl_seconds)}"

    def content_type(self, bucket: str, key: str) -> Optional[str]:
        with self._lock:
            entry = self._objects.get((bucket, key))
            return entry[1] if entry else None

    def keys(self) -> list[tuple[str, str]]:
        with self._lock:
            return sorted(self._objects)


__all__ = [
    "ObjectStore",
    "S3ObjectStore",
    "InMemoryObjectStore",
]
