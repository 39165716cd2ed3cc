"""Asynchronous ingestion of sensor batches.

``submit`` validates a batch and enqueues it without doing any signal work;
worker threads then extract features, score, persist, invalidate the query
cache and raise alerts. Batches are routed to a partition by session id, and
each partition is drained by exactly one worker, so batches from one session
are processed in submission order while different sessions run concurrently.
Alerts are handed to a dedicated delivery thread so a slow webhook never
holds up a partition.

Usage::

    pipeline = IngestionPipeline(store, cache, notifier, partitions=4)
    pipeline.start()
    batch_id = pipeline.submit("session-1", samples)
    pipeline.stop()
"""

from __future__ import annotations

import logging
import queue
import threading
import zlib
from collections.abc import Sequence
from typing import Any

from roadquality.core.errors import (
    AlertDeliveryError,
    InsufficientDataError,
    InvalidBatchError,
    InvalidFeatureError,
    OverloadError,
    PersistenceError,
)
from roadquality.integrations.alerts import AlertNotifier, SeverityEvent
from roadquality.services.cache import QueryCache
from roadquality.services.features import (
    DEFAULT_MIN_WINDOW_SAMPLES,
    DEFAULT_SPIKE_K,
    extract_features,
)
from roadquality.services.geo import BoundingBox
from roadquality.services.record_store import ConditionRecord, RecordStore
from roadquality.services.samples import SensorBatch, SensorSample, build_batch
from roadquality.services.scoring import DEFAULT_SCORING, ScoringConfig, score_features

logger = logging.getLogger(__name__)

DEFAULT_PARTITIONS = 4
DEFAULT_QUEUE_SIZE = 256
DEFAULT_MAX_BATCH_SAMPLES = 4096

_STOP = object()


class IngestionPipeline:
    def __init__(
        self,
        store: RecordStore,
        cache: QueryCache | None = None,
        notifier: AlertNotifier | None = None,
        *,
        scoring: ScoringConfig = DEFAULT_SCORING,
        partitions: int = DEFAULT_PARTITIONS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        min_window: int = DEFAULT_MIN_WINDOW_SAMPLES,
        max_batch_samples: int = DEFAULT_MAX_BATCH_SAMPLES,
        spike_k: float = DEFAULT_SPIKE_K,
    ) -> None:
        self._store = store
        self._cache = cache
        self._notifier = notifier
        self._scoring = scoring
        self._min_window = min_window
        self._max_batch_samples = max_batch_samples
        self._spike_k = spike_k
        self._queues: list[queue.Queue] = [
            queue.Queue(maxsize=max(1, int(queue_size))) for _ in range(max(1, int(partitions)))
        ]
        self._threads: list[threading.Thread] = []
        self._alert_queue: queue.Queue = queue.Queue(maxsize=max(1, int(queue_size)))
        self._alert_thread: threading.Thread | None = None
        self._stats_lock = threading.Lock()
        self._stats = {
            "submitted": 0,
            "rejected_invalid": 0,
            "rejected_overload": 0,
            "processed": 0,
            "dropped": 0,
            "persistence_failures": 0,
            "alerts_sent": 0,
            "alerts_failed": 0,
            "alerts_dropped": 0,
        }

    # -- Public API -----------------------------------------------------------

    def start(self) -> None:
        if self._threads:
            return
        for i, q in enumerate(self._queues):
            t = threading.Thread(
                target=self._worker,
                args=(q,),
                name=f"roadquality-ingest-{i}",
                daemon=True,
            )
            t.start()
            self._threads.append(t)
        if self._notifier is not None:
            self._alert_thread = threading.Thread(
                target=self._alert_worker,
                name="roadquality-alerts",
                daemon=True,
            )
            self._alert_thread.start()
        logger.info("Ingestion pipeline started", extra={"partitions": len(self._queues)})

    def stop(self, timeout: float | None = 10.0) -> None:
        """Finish queued batches, then stop the workers. Safe to call twice."""
        if not self._threads:
            return
        for q in self._queues:
            q.put(_STOP)
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []
        if self._alert_thread is not None:
            self._alert_queue.put(_STOP)
            self._alert_thread.join(timeout=timeout)
            self._alert_thread = None
        logger.info("Ingestion pipeline stopped")

    def drain(self) -> None:
        """Block until every batch queued so far has been processed."""
        for q in self._queues:
            q.join()
        self._alert_queue.join()

    def submit(self, session_id: str, samples: Sequence[SensorSample]) -> str:
        """Validate and enqueue a batch; returns its batch id.

        Raises InvalidBatchError for a malformed batch and OverloadError when
        the session's partition queue is full. Never blocks.
        """
        try:
            batch = build_batch(session_id, samples, max_samples=self._max_batch_samples)
        except InvalidBatchError:
            self._count("rejected_invalid")
            raise

        q = self._queues[self.partition_for(session_id)]
        try:
            q.put_nowait(batch)
        except queue.Full:
            self._count("rejected_overload")
            logger.warning(
                "Ingestion queue full; rejecting batch",
                extra={"session_id": session_id, "queue_size": q.maxsize},
            )
            raise OverloadError("ingestion queue is full; retry with backoff") from None

        self._count("submitted")
        logger.debug(
            "Batch accepted",
            extra={"batch_id": batch.batch_id, "session_id": session_id, "samples": len(batch)},
        )
        return batch.batch_id

    def partition_for(self, session_id: str) -> int:
        return zlib.crc32(session_id.encode("utf-8")) % len(self._queues)

    def process(self, batch: SensorBatch) -> ConditionRecord:
        """Extract, score, persist, invalidate and alert for one batch.

        Extraction and scoring errors propagate to the caller, as do
        persistence errors; cache and alert failures are absorbed.
        """
        features = extract_features(batch, min_window=self._min_window, spike_k=self._spike_k)
        score, category = score_features(features, self._scoring)
        lat, lon = batch.location

        record = self._store.save_record(
            ConditionRecord(
                batch_id=batch.batch_id,
                session_id=batch.session_id,
                lat=lat,
                lon=lon,
                score=score,
                category=category,
                features=features,
                recorded_at=batch.recorded_at,
                mean_speed_mps=batch.mean_speed_mps,
            )
        )

        if self._cache is not None:
            self._cache.invalidate(BoundingBox.around_point(lat, lon))

        if category.alerts and self._notifier is not None:
            self._dispatch_alert(record)

        logger.info(
            "Batch processed",
            extra={
                "batch_id": record.batch_id,
                "session_id": record.session_id,
                "record_id": record.record_id,
                "score": record.score,
                "category": record.category.value,
            },
        )
        return record

    # -- Observability --------------------------------------------------------

    def queue_depth(self) -> int:
        return sum(q.qsize() for q in self._queues)

    def stats(self) -> dict[str, Any]:
        with self._stats_lock:
            stats: dict[str, Any] = dict(self._stats)
        stats["partitions"] = len(self._queues)
        stats["queue_depth"] = self.queue_depth()
        stats["running"] = bool(self._threads)
        return stats

    # -- Internals ------------------------------------------------------------

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def _dispatch_alert(self, record: ConditionRecord) -> None:
        event = SeverityEvent(
            record_id=record.record_id,
            batch_id=record.batch_id,
            session_id=record.session_id,
            lat=record.lat,
            lon=record.lon,
            score=record.score,
            category=record.category.value,
            recorded_at=record.recorded_at,
        )
        if self._alert_thread is None:
            # Direct process() calls outside a running pipeline deliver inline.
            self._deliver_alert(event)
            return
        try:
            self._alert_queue.put_nowait(event)
        except queue.Full:
            self._count("alerts_dropped")
            logger.warning("Alert queue full; dropping alert", extra={"batch_id": event.batch_id})

    def _deliver_alert(self, event: SeverityEvent) -> None:
        try:
            self._notifier.notify(event)
        except AlertDeliveryError:
            self._count("alerts_failed")
            logger.warning("Alert delivery failed", extra={"batch_id": event.batch_id}, exc_info=True)
            return
        self._count("alerts_sent")

    def _alert_worker(self) -> None:
        while True:
            event = self._alert_queue.get()
            try:
                if event is _STOP:
                    return
                self._deliver_alert(event)
            except Exception:
                self._count("alerts_failed")
                logger.exception("Unexpected error while delivering alert")
            finally:
                self._alert_queue.task_done()

    def _run_one(self, batch: SensorBatch) -> None:
        try:
            self.process(batch)
        except (InsufficientDataError, InvalidFeatureError, InvalidBatchError) as exc:
            self._count("dropped")
            logger.warning(
                "Batch dropped",
                extra={"batch_id": batch.batch_id, "session_id": batch.session_id, "reason": str(exc)},
            )
        except PersistenceError:
            self._count("persistence_failures")
            logger.exception(
                "Failed to persist condition record",
                extra={"batch_id": batch.batch_id, "session_id": batch.session_id},
            )
        else:
            self._count("processed")

    def _worker(self, q: queue.Queue) -> None:
        while True:
            item = q.get()
            try:
                if item is _STOP:
                    return
                self._run_one(item)
            except Exception:
                # Keep the partition alive; the batch is lost but later ones are not.
                self._count("dropped")
                logger.exception("Unexpected error while processing batch")
            finally:
                q.task_done()
