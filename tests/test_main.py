from __future__ import annotations

import asyncio

from edit_url_poller.core.config import Settings
from edit_url_poller.main import resolve_start_watermarks
from edit_url_poller.schemas.watermarks import Watermarks


class FakeLatestIdsRepository:
    def __init__(self, latest: tuple[int, int]) -> None:
        self.latest = latest
        self.calls = 0

    async def latest_ids(self) -> tuple[int, int]:
        self.calls += 1
        return self.latest


def test_resolve_start_watermarks_prefers_configured_ids() -> None:
    repository = FakeLatestIdsRepository((500, 600))
    settings = Settings(start_edit_data_id=10, start_edit_note_id=20)

    watermarks = asyncio.run(resolve_start_watermarks(repository, settings))  # type: ignore[arg-type]

    assert watermarks == Watermarks(edit_data_id=10, edit_note_id=20)
    assert repository.calls == 0


def test_resolve_start_watermarks_falls_back_to_latest_ids() -> None:
    repository = FakeLatestIdsRepository((500, 600))
    settings = Settings(start_edit_data_id=None, start_edit_note_id=None)

    watermarks = asyncio.run(resolve_start_watermarks(repository, settings))  # type: ignore[arg-type]

    assert watermarks == Watermarks(edit_data_id=500, edit_note_id=600)


def test_resolve_start_watermarks_mixes_configured_and_latest() -> None:
    repository = FakeLatestIdsRepository((500, 600))
    settings = Settings(start_edit_data_id=None, start_edit_note_id=3)

    watermarks = asyncio.run(resolve_start_watermarks(repository, settings))  # type: ignore[arg-type]

    assert watermarks == Watermarks(edit_data_id=500, edit_note_id=3)
