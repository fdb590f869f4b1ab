from __future__ import annotations

import logging

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider

from edit_url_poller.schemas.rows import OriginTable

logger = logging.getLogger(__name__)


class PollMetrics:
    """Counters for the poll loop, pushed to the collector after each cycle."""

    def __init__(self, meter_provider: MeterProvider | None = None, *, push_timeout_millis: int = 5000) -> None:
        self._meter_provider = meter_provider
        self._push_timeout_millis = push_timeout_millis
        provider = meter_provider if meter_provider is not None else metrics.get_meter_provider()
        meter = provider.get_meter(__name__)
        self.db_poll_counter = meter.create_counter(
            "poller.db_polls",
            description="Database poll cycles completed",
        )
        self.urls_inserted_counter = meter.create_counter(
            "poller.urls_inserted",
            description="Archival candidate URLs newly stored",
        )
        self.urls_skipped_counter = meter.create_counter(
            "poller.urls_skipped",
            description="Archival candidate URLs already stored for the same origin",
        )
        self.url_save_failures_counter = meter.create_counter(
            "poller.url_save_failures",
            description="Archival candidate URLs that failed to store",
        )

    def record_poll(self) -> None:
        self.db_poll_counter.add(1)

    def record_save(self, origin_table: OriginTable, *, inserted: bool) -> None:
        counter = self.urls_inserted_counter if inserted else self.urls_skipped_counter
        counter.add(1, {"origin_table": origin_table.value})

    def record_save_failure(self, origin_table: OriginTable) -> None:
        self.url_save_failures_counter.add(1, {"origin_table": origin_table.value})

    def push(self) -> None:
        if self._meter_provider is None:
            return
        try:
            flushed = self._meter_provider.force_flush(timeout_millis=self._push_timeout_millis)
        except Exception as exc:
            logger.warning("metrics push failed: %s", exc)
            return
        if not flushed:
            logger.warning("metrics push timed out after %sms", self._push_timeout_millis)
