from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from pydantic import BaseModel

JSONValue = Union[str, int, float, bool, None, list["JSONValue"], dict[str, "JSONValue"]]


class OriginTable(str, Enum):
    EDIT_DATA = "edit_data"
    EDIT_NOTE = "edit_note"


@dataclass(slots=True)
class EditDataRow:
    edit_id: int
    # Decoded document; a bare string is a string node, not JSON text.
    payload: JSONValue


@dataclass(slots=True)
class EditNoteRow:
    note_id: int
    edit_id: int
    editor_id: int
    text: str
    posted_at: datetime | None = None


class ArchivalCandidateUrl(BaseModel):
    id: int
    url: str
    origin_table: OriginTable
    origin_id: int
    created_at: datetime | None = None
