"""Cursor pagination over the sorted transaction history."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

from .models import Transaction

CURSOR_SEPARATOR = '|'


class Cursor(NamedTuple):
    """Position of the last record seen, as ``(date_iso, id)``.

    Serialized as ``"<date_iso>|<id>"``.  Decoding splits on the first
    separator, so ids that contain ``|`` survive the round trip; a
    ``date_iso`` containing ``|`` does not, which the token format cannot
    express.
    """

    date_iso: str
    id: str

    def encode(self) -> str:
        return f"{self.date_iso}{CURSOR_SEPARATOR}{self.id}"

    @classmethod
    def decode(cls, token: str) -> Optional['Cursor']:
        date_iso, sep, tx_id = token.partition(CURSOR_SEPARATOR)
        if not sep:
            return None
        return cls(date_iso, tx_id)

    @classmethod
    def after(cls, tx: Transaction) -> 'Cursor':
        return cls(tx.date_iso, tx.id)


CursorLike = Union[Cursor, str, None]


@dataclass(frozen=True)
class Page:
    items: Tuple[Transaction, ...]
    next_cursor: Optional[str]
    has_more: bool


def _coerce_cursor(cursor: CursorLike) -> Optional[Cursor]:
    if cursor is None or isinstance(cursor, Cursor):
        return cursor
    if isinstance(cursor, tuple) and len(cursor) == 2:
        return Cursor(*cursor)
    if isinstance(cursor, str) and cursor:
        return Cursor.decode(cursor)
    return None


def start_index(ordered: Sequence[Transaction], cursor: CursorLike) -> int:
    """Index just past the cursor record, or 0 if the cursor is unknown."""
    position = _coerce_cursor(cursor)
    if position is None:
        return 0
    for index, tx in enumerate(ordered):
        if tx.date_iso == position.date_iso and tx.id == position.id:
            return index + 1
    return 0


def paginate(ordered: Sequence[Transaction], limit: int, cursor: CursorLike = None) -> Page:
    """Slice ``limit`` records after ``cursor`` from an already sorted list.

    ``next_cursor`` is only set when the page came back full, meaning more
    records may follow.  A ``limit`` of zero or less yields an empty, final
    page.
    """
    if limit <= 0:
        return Page(items=(), next_cursor=None, has_more=False)
    begin = start_index(ordered, cursor)
    items: List[Transaction] = list(ordered[begin:begin + limit])
    next_cursor = Cursor.after(items[-1]).encode() if len(items) == limit else None
    return Page(items=tuple(items), next_cursor=next_cursor, has_more=next_cursor is not None)
