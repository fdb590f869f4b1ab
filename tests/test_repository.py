from __future__ import annotations

import asyncio
import json
from typing import Any

import asyncpg  # type: ignore[import-untyped]
import pytest

from edit_url_poller.poller.extract import extract_from_edit_data
from edit_url_poller.schemas.rows import OriginTable
from edit_url_poller.services.repository import (
    PostgresRepository,
    RepositoryUnavailableError,
    RowFetchError,
    UrlSaveError,
)


class FakePool:
    def __init__(self, rows: list[dict[str, Any]] | None = None, error: Exception | None = None) -> None:
        self.rows = rows or []
        self.error = error

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        if self.error is not None:
            raise self.error
        return self.rows

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        if self.error is not None:
            raise self.error
        return self.rows[0] if self.rows else None


def _repository(monkeypatch, pool: FakePool) -> PostgresRepository:
    repository = PostgresRepository(database_url="postgresql://localhost/test", min_pool_size=1, max_pool_size=1)

    async def fake_get_pool() -> FakePool:
        return pool

    monkeypatch.setattr(repository, "_get_pool", fake_get_pool)
    return repository


def test_fetch_edit_data_batch_decodes_jsonb_text(monkeypatch) -> None:
    pool = FakePool(
        rows=[
            {"edit": 1, "data": json.dumps({"link": {"url": "https://example.com/from-text"}})},
            {"edit": 2, "data": json.dumps("see http://example.org/x")},
            {"edit": 3, "data": {"already": "decoded"}},
        ]
    )
    repository = _repository(monkeypatch, pool)

    rows = asyncio.run(repository.fetch_edit_data_batch(0, 10))

    assert [row.payload for row in rows] == [
        {"link": {"url": "https://example.com/from-text"}},
        "see http://example.org/x",
        {"already": "decoded"},
    ]
    assert extract_from_edit_data(rows[1]) == {"http://example.org/x"}


def test_fetch_edit_data_batch_maps_undecodable_payloads_to_none(monkeypatch) -> None:
    pool = FakePool(
        rows=[
            {"edit": 1, "data": '{"url": "https://example.com/a"'},
            {"edit": 2, "data": "[" * 5000 + "]" * 5000},
            {"edit": 3, "data": "[" * 5000},
        ]
    )
    repository = _repository(monkeypatch, pool)

    rows = asyncio.run(repository.fetch_edit_data_batch(0, 10))

    assert [row.edit_id for row in rows] == [1, 2, 3]
    assert [row.payload for row in rows] == [None, None, None]
    assert all(extract_from_edit_data(row) == set() for row in rows)


def test_fetch_wraps_driver_errors(monkeypatch) -> None:
    repository = _repository(monkeypatch, FakePool(error=asyncpg.PostgresError("boom")))

    with pytest.raises(RowFetchError) as exc_info:
        asyncio.run(repository.fetch_edit_note_batch(7, 10))

    assert exc_info.value.table is OriginTable.EDIT_NOTE
    assert exc_info.value.start_id == 7


def test_save_wraps_driver_errors(monkeypatch) -> None:
    repository = _repository(monkeypatch, FakePool(error=ConnectionResetError("reset")))

    with pytest.raises(UrlSaveError):
        asyncio.run(repository.save_archival_url("https://example.com/a", OriginTable.EDIT_DATA, 1))


def test_latest_ids_and_listing_wrap_driver_errors(monkeypatch) -> None:
    repository = _repository(monkeypatch, FakePool(error=asyncpg.InterfaceError("closed")))

    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(repository.latest_ids())
    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(repository.list_archival_urls(OriginTable.EDIT_NOTE, 1))


def test_unconfigured_repository_reports_unavailable_on_every_call() -> None:
    repository = PostgresRepository(database_url=None, min_pool_size=1, max_pool_size=1)

    with pytest.raises(RowFetchError):
        asyncio.run(repository.fetch_edit_data_batch(0, 10))
    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(repository.latest_ids())
    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(repository.list_archival_urls(OriginTable.EDIT_DATA, 1))
