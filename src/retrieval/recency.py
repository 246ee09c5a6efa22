"""Recency window policy: the coarse server-side filter and the exact client-side one.

IMAP SEARCH SINCE only understands calendar dates, so a 5-minute window and a
23-hour window can produce the same server-side filter.  The exact check in
`within_window` is opt-in; the default behaviour keeps the day-level filter.
"""

from datetime import date, datetime, timedelta

from src.mail.types import MessageSummary


def imap_since_date(now: datetime, window: timedelta) -> date:
    """Calendar day used for ``SEARCH SINCE``: the day ``now - window`` falls on."""
    return (now - window).date()


def within_window(summary: MessageSummary, now: datetime, window: timedelta) -> bool:
    """True if the message's timestamp is no older than `window` before `now`.

    Messages with no timestamp fail.  Naive timestamps are read as local time.
    """
    if summary.timestamp is None:
        return False
    return _aware(summary.timestamp) >= _aware(now) - window


def select_latest(summaries: list[MessageSummary]) -> MessageSummary | None:
    """Return the newest summary, or None for an empty list.

    Equal timestamps keep listing order (the sort is stable), so the first one
    the server listed wins.  Missing timestamps sort as the oldest.
    """
    if not summaries:
        return None
    return sorted(summaries, key=_sort_key, reverse=True)[0]


def _sort_key(summary: MessageSummary) -> float:
    if summary.timestamp is None:
        return float("-inf")
    return _aware(summary.timestamp).timestamp()


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()
