"""
Bump ordering for board listings.

Pure functions over thread records; storage clients either call these
directly (in-memory) or express the same ordering in SQL.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

# Non-sticky threads shown on a board page. Sticky threads are never capped.
BOARD_THREAD_LIMIT = 20


class Rankable(Protocol):
    id: int
    is_sticky: bool
    bump_time: datetime
    created_at: datetime


def sticky_key(thread: Rankable) -> tuple:
    return (thread.created_at, thread.id)


def bump_key(thread: Rankable) -> tuple:
    return (thread.bump_time, thread.id)


def order_board_threads(
    threads: Iterable[Rankable], limit: int = BOARD_THREAD_LIMIT
) -> list:
    """Return the board listing: sticky threads first, then bumped threads.

    Sticky threads are ordered by ``created_at`` descending and all of them
    are returned. Non-sticky threads are ordered by ``bump_time`` descending
    (newer id wins ties) and cut to ``limit``.
    """
    sticky = []
    regular = []
    for thread in threads:
        (sticky if thread.is_sticky else regular).append(thread)
    sticky.sort(key=sticky_key, reverse=True)
    regular.sort(key=bump_key, reverse=True)
    return sticky + regular[:limit]


def next_bump_time(current: datetime, now: datetime) -> datetime:
    """Bump time after an accepted post; never moves backwards."""
    return now if now > current else current
