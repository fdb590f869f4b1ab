from __future__ import annotations

from collections.abc import Iterator

from edit_url_poller.core.urls import find_urls
from edit_url_poller.schemas.rows import EditDataRow, EditNoteRow, JSONValue


def extract_from_edit_data(row: EditDataRow) -> set[str]:
    found: set[str] = set()
    for value in _iter_strings(row.payload):
        found.update(find_urls(value))
    return found


def extract_from_edit_note(row: EditNoteRow) -> set[str]:
    if not isinstance(row.text, str):
        return set()
    return find_urls(row.text)


def _iter_strings(node: JSONValue) -> Iterator[str]:
    # Explicit stack: payload nesting depth is unbounded.
    stack: list[JSONValue] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, str):
            yield current
        elif isinstance(current, dict):
            stack.extend(current.values())
        elif isinstance(current, list):
            stack.extend(current)
