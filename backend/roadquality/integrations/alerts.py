from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import httpx

from roadquality.core.errors import AlertDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeverityEvent:
    record_id: int | None
    batch_id: str
    session_id: str
    lat: float
    lon: float
    score: float
    category: str
    recorded_at: datetime

    def to_payload(self) -> dict:
        return {
            "record_id": self.record_id,
            "batch_id": self.batch_id,
            "session_id": self.session_id,
            "lat": self.lat,
            "lon": self.lon,
            "score": self.score,
            "category": self.category,
            "recorded_at": self.recorded_at.isoformat(),
        }


class AlertNotifier(Protocol):
    def notify(self, event: SeverityEvent) -> None: ...


class LoggingAlertNotifier:
    """Fallback notifier used when no webhook is configured."""

    def notify(self, event: SeverityEvent) -> None:
        logger.warning("Road condition alert", extra=event.to_payload())


class WebhookAlertNotifier:
    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        url: str,
        timeout_s: float = 10.0,
        max_retries: int = 3,
        backoff_base_s: float = 0.5,
    ):
        self.url = url
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_base_s = backoff_base_s

    @staticmethod
    def _retry_after_seconds(response: httpx.Response) -> float | None:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def _sleep_before_retry(self, attempt: int, reason: str, retry_after_s: float | None = None) -> None:
        delay = retry_after_s if retry_after_s is not None else self.backoff_base_s * (2**attempt)
        delay = min(delay, 30.0)
        logger.warning("Retrying alert webhook after %s (attempt=%s delay=%.2fs)", reason, attempt + 1, delay)
        time.sleep(delay)

    def notify(self, event: SeverityEvent) -> None:
        payload = event.to_payload()

        for attempt in range(self.max_retries + 1):
            try:
                r = httpx.post(self.url, json=payload, timeout=self.timeout_s)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt >= self.max_retries:
                    raise AlertDeliveryError(f"alert webhook unreachable: {exc}") from exc
                self._sleep_before_retry(attempt, reason=exc.__class__.__name__)
                continue

            if r.status_code in self.RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                self._sleep_before_retry(
                    attempt,
                    reason=f"HTTP {r.status_code}",
                    retry_after_s=self._retry_after_seconds(r),
                )
                continue

            try:
                r.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise AlertDeliveryError(f"alert webhook returned HTTP {r.status_code}") from exc
            return

        raise RuntimeError("Alert webhook retry loop ended unexpectedly")
