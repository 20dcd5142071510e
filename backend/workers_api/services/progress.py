"""
Completion ratio and terminal state of a scraping range.

Works on anything exposing range_start, range_end, cursor and enabled, so the
same rules apply to ORM rows and to plain objects in tests.
"""
from __future__ import annotations


def percent(done: int, total: int) -> int:
    """done/total as an integer percentage in [0, 100], halves rounded up."""
    total = int(total or 0)
    if total <= 0:
        return 0
    pct = (200 * int(done or 0) + total) // (2 * total)
    return max(0, min(100, pct))


def progress_percent(config) -> int:
    start = int(config.range_start or 0)
    end = int(config.range_end or 0)
    if end <= start:
        return 0
    cursor = config.cursor if config.cursor is not None else start
    return percent(int(cursor) - start, end - start)


def is_completed(config) -> bool:
    if config.cursor is None or config.range_end is None:
        return False
    return not bool(config.enabled) and int(config.cursor) >= int(config.range_end)


def progress_bucket(config) -> str:
    if is_completed(config):
        return 'completed'
    if config.cursor is not None and int(config.cursor) > int(config.range_start or 0):
        return 'in_progress'
    return 'not_started'
