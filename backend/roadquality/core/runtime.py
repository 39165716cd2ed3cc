from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from roadquality.core.config import Settings
from roadquality.integrations.alerts import AlertNotifier, LoggingAlertNotifier, WebhookAlertNotifier
from roadquality.services.cache import InMemoryCacheBackend, QueryCache
from roadquality.services.ingestion import IngestionPipeline
from roadquality.services.query import ConditionQueryEngine
from roadquality.services.record_store import RecordStore
from roadquality.services.scoring import ScoringConfig


@dataclass
class Runtime:
    """Explicitly wired pipeline components shared by the HTTP routes."""

    settings: Settings
    store: RecordStore
    cache: QueryCache
    pipeline: IngestionPipeline
    query_engine: ConditionQueryEngine

    def start(self) -> None:
        self.pipeline.start()

    def stop(self) -> None:
        self.pipeline.stop()


def build_notifier(settings: Settings) -> AlertNotifier:
    if settings.ALERT_WEBHOOK_URL:
        return WebhookAlertNotifier(
            settings.ALERT_WEBHOOK_URL,
            timeout_s=settings.ALERT_TIMEOUT_S,
            max_retries=settings.ALERT_MAX_RETRIES,
        )
    return LoggingAlertNotifier()


def build_runtime(
    settings: Settings,
    store: RecordStore | None = None,
    cache: QueryCache | None = None,
    notifier: AlertNotifier | None = None,
) -> Runtime:
    if store is None:
        from roadquality.core.db import SessionLocal
        from roadquality.services.record_store import SqlRecordStore

        store = SqlRecordStore(SessionLocal)
    if cache is None:
        cache = QueryCache(
            InMemoryCacheBackend(),
            ttl_s=settings.CACHE_TTL_S,
            precision=settings.CACHE_PRECISION,
        )
    if notifier is None:
        notifier = build_notifier(settings)

    scoring = ScoringConfig(
        good_min=settings.GOOD_MIN_SCORE,
        fair_min=settings.FAIR_MIN_SCORE,
        poor_min=settings.POOR_MIN_SCORE,
    )
    pipeline = IngestionPipeline(
        store,
        cache,
        notifier,
        scoring=scoring,
        partitions=settings.INGEST_WORKERS,
        queue_size=settings.INGEST_QUEUE_SIZE,
        min_window=settings.MIN_WINDOW_SAMPLES,
        max_batch_samples=settings.MAX_BATCH_SAMPLES,
        spike_k=settings.SPIKE_K,
    )
    query_engine = ConditionQueryEngine(store, cache, max_limit=settings.QUERY_MAX_LIMIT)
    return Runtime(
        settings=settings,
        store=store,
        cache=cache,
        pipeline=pipeline,
        query_engine=query_engine,
    )


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime
