"""
Feed ranking & pagination.

Pure functions over a materialised slice of content items — no I/O, no clock
reads unless `now` is omitted. The posts router loads candidates from the DB,
hands them to `rank`, and renders the returned page.

Modes
  latest / newest / ""      created_at descending
  popular                   engagement score descending, no time filter
  popular_today             ... since the start of the current UTC day
  popular_week|month|year   ... within the last 7 / 30 / 365 days

Score = likes + 2*comments + 3*shares.  Sorting is stable: items with equal
keys keep the order they were given in (the posts service passes candidates
newest-first, so score ties surface the newer post first).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from socialgraph.models.users import utcnow

LIKE_WEIGHT = 1
COMMENT_WEIGHT = 2
SHARE_WEIGHT = 3

DEFAULT_LIMIT = 10

LATEST_MODES = frozenset({"latest", "newest", ""})
POPULAR_WINDOWS = {
    "popular": None,
    "popular_today": "today",
    "popular_week": timedelta(days=7),
    "popular_month": timedelta(days=30),
    "popular_year": timedelta(days=365),
}


@dataclass
class ContentItem:
    id: int
    author_id: int
    created_at: datetime
    likes: int = 0
    comments: int = 0
    shares: int = 0
    # Whatever the caller wants carried through ranking (ORM row, DTO, …)
    payload: Any = None

    @property
    def score(self) -> int:
        return engagement_score(self.likes, self.comments, self.shares)


@dataclass
class RankedPage:
    items: list[ContentItem]
    total: int
    limit: int
    offset: int


def engagement_score(likes: int, comments: int, shares: int) -> int:
    """Also accepts SQL column expressions; the posts service orders by it in SQL."""
    return LIKE_WEIGHT * likes + COMMENT_WEIGHT * comments + SHARE_WEIGHT * shares


def window_start(mode: str, now: datetime) -> Optional[datetime]:
    """Lower bound of the time window for `mode`, or None when unbounded."""
    window = POPULAR_WINDOWS.get(mode)
    if window is None:
        return None
    if window == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    return now - window


def is_popular(mode: str) -> bool:
    return mode in POPULAR_WINDOWS


def normalize_mode(mode: Optional[str]) -> str:
    """Lower-cased mode name; anything unrecognised reads as 'latest'."""
    mode = (mode or "").strip().lower()
    if mode in LATEST_MODES or not is_popular(mode):
        return "latest"
    return mode


def clamp_window(limit: int, offset: int) -> tuple[int, int]:
    return (limit if limit >= 1 else DEFAULT_LIMIT), max(offset, 0)


def rank(
    items: Sequence[ContentItem],
    mode: str = "latest",
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> RankedPage:
    """
    Filter, order and paginate `items`.

    Unknown modes fall back to `latest`. `limit < 1` becomes DEFAULT_LIMIT and
    a negative offset becomes 0. `total` counts the filtered items before
    pagination so callers can compute page counts.
    """
    mode = normalize_mode(mode)
    limit, offset = clamp_window(limit, offset)

    if is_popular(mode):
        now = now or utcnow()
        start = window_start(mode, now)
        if start is not None:
            items = [i for i in items if start <= i.created_at <= now]
        ordered = sorted(items, key=lambda i: i.score, reverse=True)
    else:
        ordered = sorted(items, key=lambda i: i.created_at, reverse=True)

    return RankedPage(
        items=ordered[offset:offset + limit],
        total=len(ordered),
        limit=limit,
        offset=offset,
    )
