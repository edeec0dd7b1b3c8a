"""
Shared fixtures: an in-memory SQLite store, a tenant prefix map and a fully
wired pipeline over in-process fakes.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from interfaces import InMemoryObjectStore, InMemoryTaskRegistry, StaticExtractionService
from ingest.documents import DocumentService
from ingest.fingerprint import ContentDedup
from ingest.pipeline import FilePipeline, PipelineDirs, PipelineSettings
from ingest.retry import RetryScheduler
from ingest.transaction import ThreadSafeStats
from routing import PrefixMapHolder, build_prefix_map
from store import Provider, RecordStore

TENANT_ID = "tenant-weiss"
TENANT_TAX_ID = "30712345678"
BUCKET = "axp-weiss"


class ListEventSink:
    def __init__(self):
        self.events = []

    def emit_event(self, event):
        self.events.append(event)

    def messages(self):
        return [e["message"] for e in self.events]


class Clock:
    """Mutable wall clock for retry scheduling."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 12, 26, 10, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def record_store():
    store = RecordStore.from_url("sqlite://")
    store.create_schema()
    return store


@pytest.fixture
def add_provider(record_store):
    def _add(legal_name, *, tenant_id=TENANT_ID, tax_id=None, aliases=(),
             active=True, default_letter=None, provider_id=None):
        provider = Provider(
            tenant_id=tenant_id,
            legal_name=legal_name,
            tax_id=tax_id,
            aliases=list(aliases),
            active=active,
            default_letter=default_letter,
        )
        if provider_id:
            provider.id = provider_id
        return record_store.add_provider(provider)
    return _add


@pytest.fixture
def prefix_maps():
    snapshot = build_prefix_map({
        "weiss": {
            "tenantId": TENANT_ID,
            "namespace": f"cuit={TENANT_TAX_ID}",
            "bucket": BUCKET,
            "taxId": TENANT_TAX_ID,
        },
    })
    return PrefixMapHolder(snapshot)


@pytest.fixture
def dirs(tmp_path):
    watch = tmp_path / "webdav"
    watch.mkdir()
    return PipelineDirs(
        watch=watch,
        processing=watch / "processing",
        done=watch / "done",
        failed=watch / "failed",
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def make_pipeline(dirs, record_store, prefix_maps, clock):
    def _make(*, extraction=None, object_store=None, move_files=True):
        sink = ListEventSink()
        pipeline = FilePipeline(
            dirs=dirs,
            registry=InMemoryTaskRegistry(),
            prefix_maps=prefix_maps,
            dedup=ContentDedup(record_store),
            object_store=object_store or InMemoryObjectStore(),
            extraction=extraction or StaticExtractionService(),
            documents=DocumentService(record_store),
            event_sink=sink,
            scheduler=RetryScheduler(),
            stats=ThreadSafeStats(),
            settings=PipelineSettings(
                min_file_bytes=10,
                stability_interval_s=0.01,
                stability_timeout_s=1.0,
                move_files=move_files,
            ),
            now=clock,
            sleep=lambda _s: None,
        )
        return pipeline, sink
    return _make


def write_pdf(directory, name, body=b"invoice body"):
    path = Path(directory) / name
    path.write_bytes(b"%PDF-1.4\n" + body + b"\n%%EOF\n")
    return path
