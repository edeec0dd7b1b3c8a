"""
Ingest package exports.
"""

from .context import IngestContext
from .documents import BulkAssignResult, DocumentService, SourceRef
from .estado import evaluate, apply_hold
from .pipeline import FilePipeline, PipelineDirs, PipelineSettings, ProcessResult, ResultStatus
from .provider_resolver import ProviderResolver
from .worker import IngestWorker, ScanReport

__all__ = [
    "IngestContext",
    "BulkAssignResult",
    "DocumentService",
    "SourceRef",
    "evaluate",
    "apply_hold",
    "FilePipeline",
    "PipelineDirs",
    "PipelineSettings",
    "ProcessResult",
    "ResultStatus",
    "ProviderResolver",
    "IngestWorker",
    "ScanReport",
]
