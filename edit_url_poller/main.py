from __future__ import annotations

import asyncio
import logging
import random

from edit_url_poller.core.config import Settings, get_settings
from edit_url_poller.core.telemetry import (
    configure_poller_logging,
    setup_poller_telemetry,
    shutdown_poller_telemetry,
)
from edit_url_poller.poller.cycle import poll_db
from edit_url_poller.poller.metrics import PollMetrics
from edit_url_poller.schemas.watermarks import Watermarks
from edit_url_poller.services.repository import PostgresRepository, get_repository

logger = logging.getLogger(__name__)


async def resolve_start_watermarks(repository: PostgresRepository, settings: Settings) -> Watermarks:
    if settings.start_edit_data_id is not None and settings.start_edit_note_id is not None:
        return Watermarks(edit_data_id=settings.start_edit_data_id, edit_note_id=settings.start_edit_note_id)

    latest_edit_data_id, latest_edit_note_id = await repository.latest_ids()
    return Watermarks(
        edit_data_id=(
            settings.start_edit_data_id if settings.start_edit_data_id is not None else latest_edit_data_id
        ),
        edit_note_id=(
            settings.start_edit_note_id if settings.start_edit_note_id is not None else latest_edit_note_id
        ),
    )


async def run_poller() -> None:
    settings = get_settings()
    configure_poller_logging()
    telemetry_runtime = setup_poller_telemetry(settings)
    repository = get_repository()
    metrics = PollMetrics(
        telemetry_runtime.meter_provider,
        push_timeout_millis=settings.otel_metrics_push_timeout_millis,
    )

    backoff = settings.poll_interval_seconds
    watermarks: Watermarks | None = None

    try:
        while True:
            try:
                if watermarks is None:
                    watermarks = await resolve_start_watermarks(repository, settings)
                    logger.info(
                        "watching edit_data from %s and edit_note from %s",
                        watermarks.edit_data_id,
                        watermarks.edit_note_id,
                    )

                result = await poll_db(
                    repository,
                    watermarks,
                    metrics=metrics,
                    batch_size=settings.batch_size,
                    concurrent=settings.concurrent_batches,
                )
                watermarks = watermarks.apply(result)
                logger.info(
                    "poll done edit_data rows=%s inserted=%s failed=%s edit_note rows=%s inserted=%s failed=%s; "
                    "next edit_data=%s edit_note=%s",
                    result.edit_data.rows,
                    result.edit_data.inserted,
                    result.edit_data.failed,
                    result.edit_note.rows,
                    result.edit_note.inserted,
                    result.edit_note.failed,
                    watermarks.edit_data_id,
                    watermarks.edit_note_id,
                )
                backoff = settings.poll_interval_seconds
                await asyncio.sleep(settings.poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("poll cycle failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await repository.close()
        get_repository.cache_clear()
        shutdown_poller_telemetry(telemetry_runtime)


def main() -> None:
    asyncio.run(run_poller())


if __name__ == "__main__":
    main()
