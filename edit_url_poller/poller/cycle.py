from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from opentelemetry import trace

from edit_url_poller.poller.extract import extract_from_edit_data, extract_from_edit_note
from edit_url_poller.poller.metrics import PollMetrics
from edit_url_poller.schemas.rows import EditDataRow, EditNoteRow, OriginTable
from edit_url_poller.schemas.watermarks import Advanced, BatchOutcome, CycleResult, Watermarks
from edit_url_poller.services.repository import RepositoryError, SourceRow

DEFAULT_BATCH_SIZE = 10

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class PollRepository(Protocol):
    async def fetch_batch(self, table: OriginTable, start_id: int, limit: int) -> Sequence[SourceRow]: ...

    async def save_archival_url(self, url: str, origin_table: OriginTable, origin_id: int) -> bool: ...


async def poll_db(
    repository: PollRepository,
    watermarks: Watermarks,
    *,
    metrics: PollMetrics,
    batch_size: int = DEFAULT_BATCH_SIZE,
    concurrent: bool = True,
) -> CycleResult:
    """Run one poll cycle over edit_data and edit_note starting at ``watermarks``.

    Every URL found in the fetched rows is offered to the repository as an
    archival candidate. A failed save is logged and counted but never stops the
    batch; a failed fetch fails the whole cycle and no watermark is returned.
    The poll counter is incremented once per completed cycle and pushed.
    """
    logger.info(
        "starting poll from edit_data=%s edit_note=%s",
        watermarks.edit_data_id,
        watermarks.edit_note_id,
    )
    with tracer.start_as_current_span("poller.cycle") as span:
        span.set_attribute("poller.edit_data.start_id", watermarks.edit_data_id)
        span.set_attribute("poller.edit_note.start_id", watermarks.edit_note_id)

        if concurrent:
            outcomes = await asyncio.gather(
                _poll_table(repository, OriginTable.EDIT_DATA, watermarks.edit_data_id, batch_size, metrics),
                _poll_table(repository, OriginTable.EDIT_NOTE, watermarks.edit_note_id, batch_size, metrics),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            edit_data, edit_note = outcomes
        else:
            edit_data = await _poll_table(
                repository, OriginTable.EDIT_DATA, watermarks.edit_data_id, batch_size, metrics
            )
            edit_note = await _poll_table(
                repository, OriginTable.EDIT_NOTE, watermarks.edit_note_id, batch_size, metrics
            )

    metrics.record_poll()
    await asyncio.to_thread(metrics.push)
    return CycleResult(edit_data=edit_data, edit_note=edit_note)


async def _poll_table(
    repository: PollRepository,
    table: OriginTable,
    start_id: int,
    batch_size: int,
    metrics: PollMetrics,
) -> BatchOutcome:
    outcome = BatchOutcome(table=table, start_id=start_id)
    with tracer.start_as_current_span("poller.batch") as span:
        span.set_attribute("poller.table", table.value)
        span.set_attribute("poller.start_id", start_id)

        rows = await repository.fetch_batch(table, start_id, batch_size)
        for row in rows:
            origin_id = _origin_id(row)
            urls = _extract_urls(row)
            outcome.urls_found += len(urls)
            for url in sorted(urls):
                await _save_url(repository, url, table, origin_id, outcome, metrics)

        outcome.rows = len(rows)
        if rows:
            outcome.update = Advanced(max(_origin_id(row) for row in rows) + 1)

        span.set_attribute("poller.rows", outcome.rows)
        span.set_attribute("poller.urls_inserted", outcome.inserted)
        span.set_attribute("poller.url_save_failures", outcome.failed)
    return outcome


async def _save_url(
    repository: PollRepository,
    url: str,
    table: OriginTable,
    origin_id: int,
    outcome: BatchOutcome,
    metrics: PollMetrics,
) -> None:
    try:
        inserted = await repository.save_archival_url(url, table, origin_id)
    except RepositoryError as exc:
        outcome.failed += 1
        metrics.record_save_failure(table)
        logger.warning("error saving url from %s id=%s: %s", table.value, origin_id, exc)
        return

    metrics.record_save(table, inserted=inserted)
    if inserted:
        outcome.inserted += 1
        logger.info("added %s id=%s url=%s", table.value, origin_id, url)
    else:
        outcome.skipped += 1
        logger.debug("already recorded %s id=%s url=%s", table.value, origin_id, url)


def _origin_id(row: SourceRow) -> int:
    if isinstance(row, EditNoteRow):
        return row.note_id
    return row.edit_id


def _extract_urls(row: SourceRow) -> set[str]:
    if isinstance(row, EditDataRow):
        return extract_from_edit_data(row)
    return extract_from_edit_note(row)
