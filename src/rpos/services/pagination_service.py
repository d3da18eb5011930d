from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from rpos.domain.errors import ValidationError

log = logging.getLogger(__name__)

DIRECTIONS = ("initial", "next", "prev", "reset")
DEFAULT_SORTS = {
    "products": ("name", "asc"),
    "orders": ("order_date", "desc"),
}


@dataclass(frozen=True)
class PageCursor:
    """Sort value and id of a boundary record."""

    value: Any
    id: int


@dataclass(frozen=True)
class CursorState:
    collection: str
    sort_key: str
    sort_dir: str
    page_size: int
    filters: tuple[tuple[str, Any], ...] = ()
    first: Optional[PageCursor] = None
    last: Optional[PageCursor] = None
    # first-record cursors of the pages visited before this one
    history: tuple[PageCursor, ...] = ()
    has_next: bool = False

    @property
    def has_prev(self) -> bool:
        return bool(self.history)

    def encode(self) -> str:
        def cur(c: Optional[PageCursor]):
            return [c.value, c.id] if c is not None else None

        payload = {
            "c": self.collection,
            "k": self.sort_key,
            "d": self.sort_dir,
            "n": self.page_size,
            "f": [list(f) for f in self.filters],
            "first": cur(self.first),
            "last": cur(self.last),
            "h": [cur(c) for c in self.history],
            "more": self.has_next,
        }
        raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "CursorState":
        try:
            payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8"))

            def cur(v) -> Optional[PageCursor]:
                return PageCursor(value=v[0], id=int(v[1])) if v is not None else None

            return cls(
                collection=str(payload["c"]),
                sort_key=str(payload["k"]),
                sort_dir=str(payload["d"]),
                page_size=int(payload["n"]),
                filters=tuple((str(k), v) for k, v in payload["f"]),
                first=cur(payload["first"]),
                last=cur(payload["last"]),
                history=tuple(cur(v) for v in payload["h"]),
                has_next=bool(payload["more"]),
            )
        except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError, IndexError) as e:
            raise ValidationError("Invalid page cursor.") from e


@dataclass(frozen=True)
class PageResult:
    items: list
    cursor_state: CursorState
    has_next: bool

    @property
    def has_prev(self) -> bool:
        return self.cursor_state.has_prev


class PaginationService:
    """Keyset pagination over products and orders.

    Cursors hold sort values, never offsets, so rows inserted or deleted
    outside the current window do not shift what ``next``/``prev`` return.
    """

    def __init__(self, repo, default_page_size: int = 10, max_page_size: int = 100):
        self.repo = repo
        self.default_page_size = int(default_page_size)
        self.max_page_size = int(max_page_size)

    def page(
        self,
        collection: str,
        direction: str = "initial",
        cursor_state: Optional[CursorState] = None,
        page_size: Optional[int] = None,
        sort_key: Optional[str] = None,
        sort_dir: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> PageResult:
        if direction not in DIRECTIONS:
            raise ValidationError(f"Unknown page direction: {direction}")
        if collection not in DEFAULT_SORTS:
            raise ValidationError(f"Unknown collection: {collection}")
        if cursor_state is not None and cursor_state.collection != collection:
            raise ValidationError("Cursor belongs to a different collection.")

        if direction in ("initial", "reset") or cursor_state is None:
            if direction in ("next", "prev"):
                raise ValidationError(f"'{direction}' needs the cursor of the current page.")
            state = self._fresh_state(collection, cursor_state, page_size, sort_key, sort_dir, filters)
            return self._first_page(state)

        # changing size, ordering or filters restarts the walk
        wanted = self._fresh_state(collection, cursor_state, page_size, sort_key, sort_dir, filters)
        if (wanted.page_size, wanted.sort_key, wanted.sort_dir, wanted.filters) != (
            cursor_state.page_size,
            cursor_state.sort_key,
            cursor_state.sort_dir,
            cursor_state.filters,
        ):
            log.info("page_reset collection=%s page_size=%s sort=%s %s", collection, wanted.page_size, wanted.sort_key, wanted.sort_dir)
            return self._first_page(wanted)

        if direction == "next":
            return self._next_page(cursor_state)
        return self._prev_page(cursor_state)

    def _fresh_state(
        self,
        collection: str,
        base: Optional[CursorState],
        page_size: Optional[int],
        sort_key: Optional[str],
        sort_dir: Optional[str],
        filters: Optional[Mapping[str, Any]],
    ) -> CursorState:
        default_key, default_dir = DEFAULT_SORTS[collection]
        size = page_size if page_size is not None else (base.page_size if base else self.default_page_size)
        if isinstance(size, bool) or not isinstance(size, int) or not 1 <= size <= self.max_page_size:
            raise ValidationError(f"Page size must be between 1 and {self.max_page_size}.")
        key = sort_key or (base.sort_key if base else default_key)
        direction = (sort_dir or (base.sort_dir if base else default_dir)).lower()
        if direction not in ("asc", "desc"):
            raise ValidationError("Sort direction must be 'asc' or 'desc'.")
        if filters is not None:
            flt = tuple(sorted(filters.items()))
        else:
            flt = base.filters if base else ()
        return CursorState(collection=collection, sort_key=key, sort_dir=direction, page_size=size, filters=flt)

    def _fetch(
        self,
        state: CursorState,
        limit: int,
        boundary: Optional[PageCursor] = None,
        forward: bool = True,
        inclusive: bool = False,
    ) -> list:
        return self.repo.fetch_page(
            state.collection,
            state.sort_key,
            state.sort_dir == "desc",
            limit,
            boundary=(boundary.value, boundary.id) if boundary is not None else None,
            forward=forward,
            filters=dict(state.filters),
            inclusive=inclusive,
        )

    def _cursor(self, state: CursorState, item) -> PageCursor:
        return PageCursor(value=getattr(item, state.sort_key), id=int(item.id))

    def _window(self, state: CursorState, items: list, history: tuple[PageCursor, ...], has_next: bool) -> PageResult:
        new_state = replace(
            state,
            first=self._cursor(state, items[0]) if items else None,
            last=self._cursor(state, items[-1]) if items else None,
            history=history,
            has_next=has_next,
        )
        return PageResult(items=items, cursor_state=new_state, has_next=has_next)

    def _first_page(self, state: CursorState) -> PageResult:
        rows = self._fetch(state, state.page_size + 1)
        has_next = len(rows) > state.page_size
        return self._window(state, rows[: state.page_size], (), has_next)

    def _next_page(self, state: CursorState) -> PageResult:
        if not state.has_next or state.last is None:
            raise ValidationError("No next page.")
        rows = self._fetch(state, state.page_size + 1, boundary=state.last)
        history = state.history + ((state.first,) if state.first is not None else ())
        if not rows:
            # everything after this page was removed meanwhile; the page just left stays reachable
            return self._window(state, [], history, False)
        has_next = len(rows) > state.page_size
        return self._window(state, rows[: state.page_size], history, has_next)

    def _prev_page(self, state: CursorState) -> PageResult:
        if not state.history:
            raise ValidationError("No previous page.")
        history = state.history[:-1]
        if not history:
            return self._first_page(state)
        if state.first is None:
            # empty page: reopen the page it was reached from at its own start
            rows = self._fetch(state, state.page_size + 1, boundary=state.history[-1], inclusive=True)
            if not rows:
                return self._first_page(state)
            return self._window(state, rows[: state.page_size], history, len(rows) > state.page_size)

        rows = self._fetch(state, state.page_size, boundary=state.first, forward=False)
        rows.reverse()
        if not rows:
            return self._first_page(state)
        has_next = bool(self._fetch(state, 1, boundary=self._cursor(state, rows[-1])))
        return self._window(state, rows, history, has_next)
