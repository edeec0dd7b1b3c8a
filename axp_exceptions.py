class AxpError(Exception):
    """Base exception for AXP ingest."""


class ConfigError(AxpError):
    """Raised when configuration is missing or invalid."""


class IngestError(AxpError):
    """Raised when the ingestion pipeline fails."""


class ValidationError(IngestError):
    """Raised when a file or record fails validation."""


class StoreError(IngestError):
    """Raised when the relational store rejects an operation."""


# Permanent outcomes. These are never retried automatically.


class UnroutableFileError(IngestError):
    """Raised when a filename carries no prefix or an unknown prefix."""

    def __init__(self, filename: str, prefix: str | None = None):
        self.filename = filename
        self.prefix = prefix
        reason = f"unknown prefix '{prefix}'" if prefix else "no routing prefix"
        super().__init__(f"Cannot route {filename}: {reason}")


class ExtractionError(IngestError):
    """Raised when the extraction service rejects a document permanently."""


# Retriable errors


class TransientError(IngestError):
    pass


class FileNotStableError(TransientError):
    """Raised when a file keeps changing past the stability timeout."""


class NetworkError(TransientError):
    pass


class ExternalServiceError(TransientError):
    """Raised when storage or extraction is temporarily unavailable."""


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, TransientError):
        return True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return False


def wrap_exception(error: Exception) -> AxpError:
    """
    Map foreign exceptions onto the ingest taxonomy.
    botocore and SQLAlchemy are matched by module so this file stays import-light.
    """
    if isinstance(error, AxpError):
        return error

    if isinstance(error, (TimeoutError, ConnectionError)):
        return NetworkError(str(error))

    module = type(error).__module__ or ""
    name = type(error).__name__
    if module.startswith("botocore") or module.startswith("boto3"):
        if name in ("ParamValidationError", "NoCredentialsError"):
            return ConfigError(str(error))
        return ExternalServiceError(str(error))
    if module.startswith("sqlalchemy"):
        if name in ("OperationalError", "DisconnectionError", "TimeoutError"):
            return ExternalServiceError(str(error))
        return StoreError(str(error))
    if module.startswith("redis"):
        return ExternalServiceError(str(error))

    if isinstance(error, (ValueError, KeyError, TypeError, UnicodeError)):
        return ValidationError(str(error))

    if isinstance(error, (FileNotFoundError, PermissionError, OSError)):
        return IngestError(str(error))

    return IngestError(f"Unexpected {name}: {error}")
