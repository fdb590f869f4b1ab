from __future__ import annotations

import asyncio
import json
from functools import lru_cache
from typing import Union

import asyncpg  # type: ignore[import-untyped]

from edit_url_poller.core.config import get_settings
from edit_url_poller.schemas.rows import ArchivalCandidateUrl, EditDataRow, EditNoteRow, JSONValue, OriginTable

SourceRow = Union[EditDataRow, EditNoteRow]

# Driver, network and timeout failures; anything else is a programming error.
DATABASE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryValidationError(RepositoryError):
    """Raised when input validation fails before persistence."""


class RowFetchError(RepositoryError):
    """Raised when a source batch cannot be read. Fatal to the current poll cycle."""

    def __init__(self, table: OriginTable, start_id: int) -> None:
        super().__init__(f"failed to fetch {table.value} rows from id {start_id}")
        self.table = table
        self.start_id = start_id


class UrlSaveError(RepositoryError):
    """Raised when one archival candidate cannot be stored. Scoped to that URL."""

    def __init__(self, url: str, origin_table: OriginTable, origin_id: int) -> None:
        super().__init__(f"failed to save url from {origin_table.value} id {origin_id}: {url}")
        self.url = url
        self.origin_table = origin_table
        self.origin_id = origin_id


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        command_timeout_seconds: float = 15.0,
        search_path: str | None = None,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout_seconds = command_timeout_seconds
        self.search_path = search_path
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def fetch_batch(self, table: OriginTable, start_id: int, limit: int) -> list[SourceRow]:
        if table is OriginTable.EDIT_DATA:
            return list(await self.fetch_edit_data_batch(start_id, limit))
        return list(await self.fetch_edit_note_batch(start_id, limit))

    async def fetch_edit_data_batch(self, start_id: int, limit: int) -> list[EditDataRow]:
        self._validate_window(start_id, limit)
        try:
            pool = await self._get_pool()
            rows = await pool.fetch(
                """
                select distinct on (edit)
                  edit,
                  data
                from edit_data
                where edit >= $1
                order by edit
                limit $2
                """,
                start_id,
                limit,
            )
        except (RepositoryUnavailableError, *DATABASE_ERRORS) as exc:
            raise RowFetchError(OriginTable.EDIT_DATA, start_id) from exc
        return [EditDataRow(edit_id=row["edit"], payload=self._decode_payload(row["data"])) for row in rows]

    async def fetch_edit_note_batch(self, start_id: int, limit: int) -> list[EditNoteRow]:
        self._validate_window(start_id, limit)
        try:
            pool = await self._get_pool()
            rows = await pool.fetch(
                """
                select
                  id,
                  edit,
                  editor,
                  text,
                  post_time
                from edit_note
                where id >= $1
                order by id
                limit $2
                """,
                start_id,
                limit,
            )
        except (RepositoryUnavailableError, *DATABASE_ERRORS) as exc:
            raise RowFetchError(OriginTable.EDIT_NOTE, start_id) from exc
        return [
            EditNoteRow(
                note_id=row["id"],
                edit_id=row["edit"],
                editor_id=row["editor"],
                text=row["text"] or "",
                posted_at=row["post_time"],
            )
            for row in rows
        ]

    async def latest_ids(self) -> tuple[int, int]:
        """Return the ids just past the newest row of edit_data and edit_note."""
        try:
            pool = await self._get_pool()
            row = await pool.fetchrow(
                """
                select
                  coalesce((select max(edit) from edit_data), -1) + 1 as next_edit_data_id,
                  coalesce((select max(id) from edit_note), -1) + 1 as next_edit_note_id
                """
            )
        except DATABASE_ERRORS as exc:
            raise RepositoryUnavailableError("failed to read latest source ids") from exc
        if not row:
            return 0, 0
        return int(row["next_edit_data_id"]), int(row["next_edit_note_id"])

    async def save_archival_url(self, url: str, origin_table: OriginTable, origin_id: int) -> bool:
        normalized_url = self._coerce_text(url)
        if not normalized_url:
            raise RepositoryValidationError("url must be a non-empty string")

        try:
            pool = await self._get_pool()
            row = await pool.fetchrow(
                """
                insert into internet_archive_urls (url, from_table, from_table_id)
                values ($1, $2, $3)
                on conflict (url, from_table, from_table_id) do nothing
                returning id
                """,
                normalized_url,
                origin_table.value,
                origin_id,
            )
        except (RepositoryUnavailableError, *DATABASE_ERRORS) as exc:
            raise UrlSaveError(normalized_url, origin_table, origin_id) from exc
        return row is not None

    async def list_archival_urls(self, origin_table: OriginTable, origin_id: int) -> list[ArchivalCandidateUrl]:
        try:
            pool = await self._get_pool()
            rows = await pool.fetch(
                """
                select
                  id,
                  url,
                  from_table,
                  from_table_id,
                  created_at
                from internet_archive_urls
                where from_table = $1 and from_table_id = $2
                order by id
                """,
                origin_table.value,
                origin_id,
            )
        except DATABASE_ERRORS as exc:
            raise RepositoryUnavailableError(
                f"failed to list archival urls for {origin_table.value} id {origin_id}"
            ) from exc
        return [
            ArchivalCandidateUrl(
                id=row["id"],
                url=row["url"],
                origin_table=OriginTable(row["from_table"]),
                origin_id=row["from_table_id"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("EUP_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        server_settings = {"search_path": self.search_path} if self.search_path else None
        async with self._pool_lock:
            if self._pool is not None:
                return self._pool
            try:
                self._pool = await asyncpg.create_pool(
                    dsn=self.database_url,
                    min_size=self.min_pool_size,
                    max_size=self.max_pool_size,
                    command_timeout=self.command_timeout_seconds,
                    server_settings=server_settings,
                )
                return self._pool
            except Exception as exc:  # pragma: no cover - depends on environment
                raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _validate_window(start_id: int, limit: int) -> None:
        if start_id < 0:
            raise ValueError("start_id must be non-negative")
        if limit < 1:
            raise ValueError("limit must be positive")

    @staticmethod
    def _decode_payload(data: object) -> JSONValue:
        # asyncpg hands jsonb back as text unless a codec is registered.
        if not isinstance(data, str):
            return data  # type: ignore[return-value]
        try:
            return json.loads(data)
        except (ValueError, RecursionError):
            return None

    @staticmethod
    def _coerce_text(value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout_seconds=settings.database_command_timeout_seconds,
        search_path=settings.database_search_path,
    )
