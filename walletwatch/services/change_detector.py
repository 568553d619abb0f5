"""Incremental change detection against previously recorded activity.

Each (exchange, feed) pair keeps a checkpoint: the time of the last
successful poll. The next fetch starts ``overlap`` before it, so records that
arrive late or carry skewed clocks are fetched again and filtered out here by
their exchange-assigned identifier.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable

from walletwatch.models.activity_record import ActivityRecord


def fetch_since(last_checked: datetime | None, overlap: timedelta) -> datetime | None:
    """Start of the next fetch window; None means full history (first run)."""
    if last_checked is None:
        return None
    return last_checked - overlap


def detect_new(
    fetched: Iterable[ActivityRecord],
    existing_ids: set[str],
) -> list[ActivityRecord]:
    """Records whose identifier is not already stored, in source order.

    Repeats inside ``fetched`` are collapsed to their first occurrence.
    """
    seen = set(existing_ids)
    new_records = []
    for record in fetched:
        if record.record_id in seen:
            continue
        seen.add(record.record_id)
        new_records.append(record)
    return new_records


def advance(last_checked: datetime | None, now: datetime) -> datetime:
    """Next checkpoint value. Never moves backwards."""
    now = as_utc(now)
    if last_checked is None:
        return now
    return max(as_utc(last_checked), now)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
