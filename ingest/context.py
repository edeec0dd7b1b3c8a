"""
Ingestion Context module.
This module defines the IngestContext class, which serves as a container
for all worker dependencies. It provides dependency injection for
cleaner, testable code.
"""
import logging
import threading
from pathlib import Path
from typing import Optional

from redis import Redis, ConnectionPool

from axp_exceptions import IngestError
from clients import build_s3_client, build_textract_client
from config import (
    WorkerConfig,
    REDIS_POOL_MAX_CONNECTIONS,
    REDIS_POOL_SOCKET_TIMEOUT_S,
    REDIS_POOL_SOCKET_CONNECT_TIMEOUT_S,
    REDIS_POOL_HEALTH_CHECK_INTERVAL_S,
)
from interfaces import (
    EventSink,
    ExtractionService,
    InMemoryObjectStore,
    InMemoryTaskRegistry,
    JsonlEventSink,
    ObjectStore,
    RedisTaskRegistry,
    S3ObjectStore,
    StaticExtractionService,
    TaskRegistry,
    TextractExtractionService,
)
from routing import PrefixMapHolder
from store import RecordStore
from .documents import DocumentService
from .fingerprint import ContentDedup
from .pipeline import FilePipeline, PipelineDirs, PipelineSettings
from .provider_resolver import ProviderResolver
from .retry import RetryPolicy, RetryScheduler
from .transaction import ThreadSafeStats
from .worker import IngestWorker


# ============================================================================
# INGESTION CONTEXT
# ============================================================================


class IngestContext:
    """
    Container for all worker dependencies.
    Provides dependency injection for cleaner, testable code.
    """

    def __init__(self, config: WorkerConfig):
        """
        Initialise ingestion context.

        Args:
            config: Worker configuration
        """
        self.config = config

        logging.basicConfig(
            level=config.log_level,
            format="%(asctime)s %(levelname)s %(message)s",
        )
        self.logger = logging.getLogger(__name__)

        # Lazy-loaded collaborators
        self._redis: Optional[Redis] = None
        self._task_registry: Optional[TaskRegistry] = None
        self._object_store: Optional[ObjectStore] = None
        self._record_store: Optional[RecordStore] = None
        self._extraction: Optional[ExtractionService] = None
        self._event_sink: Optional[EventSink] = None
        self._prefix_maps: Optional[PrefixMapHolder] = None
        self._documents: Optional[DocumentService] = None
        self._pipeline: Optional[FilePipeline] = None
        self._worker: Optional[IngestWorker] = None

        self.stats = ThreadSafeStats()
        self.export_events_lock = threading.Lock()

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.config, "dry_run", False))

    @property
    def redis_enabled(self) -> bool:
        return bool(self.config.redis_host and self.config.redis_port)

    @property
    def redis(self) -> Redis:
        """Get Redis client (lazy init)."""
        if self.dry_run:
            raise IngestError(
                "Dry-run enabled: Redis client must not be used")
        if not self.redis_enabled:
            raise IngestError("REDIS_HOST/REDIS_PORT not configured")
        if self._redis is None:
            pool = ConnectionPool(
                host=self.config.redis_host,
                port=self.config.redis_port,
                username=self.config.redis_username or None,
                password=self.config.redis_password or None,
                max_connections=REDIS_POOL_MAX_CONNECTIONS,
                socket_timeout=REDIS_POOL_SOCKET_TIMEOUT_S,
                socket_connect_timeout=REDIS_POOL_SOCKET_CONNECT_TIMEOUT_S,
                health_check_interval=REDIS_POOL_HEALTH_CHECK_INTERVAL_S,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=pool)
        return self._redis

    @property
    def task_registry(self) -> TaskRegistry:
        if self._task_registry is None:
            if self.dry_run or not self.redis_enabled:
                self._task_registry = InMemoryTaskRegistry()
            else:
                self._task_registry = RedisTaskRegistry(self.redis)
        return self._task_registry

    @property
    def object_store(self) -> ObjectStore:
        if self._object_store is None:
            if self.dry_run:
                self._object_store = InMemoryObjectStore()
            else:
                self._object_store = S3ObjectStore(build_s3_client(
                    endpoint_url=self.config.s3_endpoint_url,
                    region=self.config.s3_region,
                    access_key_id=self.config.s3_access_key_id,
                    secret_access_key=self.config.s3_secret_access_key,
                ))
        return self._object_store

    @property
    def record_store(self) -> RecordStore:
        if self._record_store is None:
            url = "sqlite://" if self.dry_run else self.config.database_url
            self._record_store = RecordStore.from_url(url)
            self._record_store.create_schema()
        return self._record_store

    @property
    def extraction(self) -> ExtractionService:
        if self._extraction is None:
            if self.dry_run:
                self._extraction = StaticExtractionService()
            else:
                self._extraction = TextractExtractionService(
                    build_textract_client(region=self.config.textract_region),
                    self.object_store,
                )
        return self._extraction

    @property
    def event_sink(self) -> EventSink:
        if self._event_sink is None:
            self._event_sink = JsonlEventSink(
                events_path="" if self.dry_run else self.config.events_file,
                lock=self.export_events_lock,
            )
        return self._event_sink

    @property
    def prefix_maps(self) -> PrefixMapHolder:
        if self._prefix_maps is None:
            self._prefix_maps = PrefixMapHolder.from_file(self.config.prefix_map_path)
        return self._prefix_maps

    @property
    def documents(self) -> DocumentService:
        if self._documents is None:
            self._documents = DocumentService(
                self.record_store,
                ProviderResolver(threshold=self.config.fuzzy_threshold),
                object_store=self.object_store,
                presign_ttl_seconds=self.config.presign_ttl_seconds,
            )
        return self._documents

    @property
    def pipeline(self) -> FilePipeline:
        if self._pipeline is None:
            config = self.config
            self._pipeline = FilePipeline(
                dirs=PipelineDirs(
                    watch=Path(config.watch_dir),
                    processing=Path(config.processing_dir),
                    done=Path(config.done_dir),
                    failed=Path(config.failed_dir),
                ),
                registry=self.task_registry,
                prefix_maps=self.prefix_maps,
                dedup=ContentDedup(self.record_store),
                object_store=self.object_store,
                extraction=self.extraction,
                documents=self.documents,
                event_sink=self.event_sink,
                scheduler=RetryScheduler(RetryPolicy(
                    max_attempts=config.max_retry_attempts,
                    base_minutes=config.retry_base_minutes,
                    cap_minutes=config.retry_cap_minutes,
                )),
                stats=self.stats,
                settings=PipelineSettings(
                    allowed_extensions=frozenset(config.allowed_extensions),
                    min_file_bytes=config.min_file_bytes,
                    stability_interval_s=config.stability_interval_s,
                    stability_timeout_s=config.stability_timeout_s,
                    stability_samples=config.stability_samples,
                    processing_lease_seconds=config.processing_lease_seconds,
                    min_field_confidence=config.min_field_confidence,
                    move_files=not self.dry_run,
                ),
            )
        return self._pipeline

    @property
    def worker(self) -> IngestWorker:
        if self._worker is None:
            self._worker = IngestWorker(
                self.pipeline,
                max_workers=self.config.max_workers,
                scan_interval_s=self.config.scan_interval_s,
            )
        return self._worker
