from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from edit_url_poller.schemas.rows import OriginTable


@dataclass(frozen=True, slots=True)
class Advanced:
    next_id: int


@dataclass(frozen=True, slots=True)
class Unchanged:
    pass


WatermarkUpdate = Union[Advanced, Unchanged]


@dataclass(frozen=True, slots=True)
class Watermarks:
    """Next unprocessed row id per source table, owned by the caller between cycles."""

    edit_data_id: int
    edit_note_id: int

    def __post_init__(self) -> None:
        if self.edit_data_id < 0 or self.edit_note_id < 0:
            raise ValueError("watermarks must be non-negative")

    def apply(self, result: CycleResult) -> Watermarks:
        edit_data_update, edit_note_update = result.next_ids
        return Watermarks(
            edit_data_id=_resolve(edit_data_update, self.edit_data_id),
            edit_note_id=_resolve(edit_note_update, self.edit_note_id),
        )


@dataclass(slots=True)
class BatchOutcome:
    table: OriginTable
    start_id: int
    rows: int = 0
    urls_found: int = 0
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    update: WatermarkUpdate = field(default_factory=Unchanged)


@dataclass(slots=True)
class CycleResult:
    edit_data: BatchOutcome
    edit_note: BatchOutcome

    @property
    def next_ids(self) -> tuple[WatermarkUpdate, WatermarkUpdate]:
        return self.edit_data.update, self.edit_note.update


def _resolve(update: WatermarkUpdate, current: int) -> int:
    if isinstance(update, Advanced):
        return update.next_id
    return current
