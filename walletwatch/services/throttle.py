"""Notification throttling for newly detected activity.

Large backlogs (first run, or after an outage) collapse into one summary
message; normal small deltas are sent one message per record.
"""

from dataclasses import dataclass, field
from typing import Mapping

from walletwatch.models.activity_record import ActivityRecord
from walletwatch.services import formatting
from walletwatch.utils.constants import FEED_TRADES


@dataclass(frozen=True)
class Emit:
    records: list[ActivityRecord] = field(default_factory=list)


@dataclass(frozen=True)
class Suppress:
    count: int
    reason: str


def decide(records: list[ActivityRecord], limit: int, feed: str, exchange: str) -> Emit | Suppress:
    """Emit individually up to ``limit`` records, summarise anything above."""
    if len(records) > limit:
        return Suppress(count=len(records), reason=formatting.suppression_reason(exchange, feed, len(records)))
    return Emit(records=list(records))


def flag_for(record: ActivityRecord, feed: str) -> str:
    """Notification flag that governs a record: the trade side, or the feed itself."""
    if feed == FEED_TRADES:
        return record.side
    return feed


def emit_messages(decision: Emit | Suppress, feed: str, flags: Mapping[str, bool]) -> list[str]:
    """Messages to send for a decision; records with a disabled flag are skipped."""
    if isinstance(decision, Suppress):
        return [decision.reason]
    return [
        formatting.format_record(record)
        for record in decision.records
        if flags.get(flag_for(record, feed), False)
    ]
