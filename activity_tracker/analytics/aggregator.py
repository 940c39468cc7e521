"""
Rolling-window activity aggregation.

Sums the minutes of every matched session in whatever window the caller
fetched (180 days for endorsements, 60 for waiting-list hours, 365 for
roster checks). The sum is recomputed from scratch on each sync and
overwrites the stored value; it is never added to a previous total.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Union

from activity_tracker.analytics.matcher import matches
from activity_tracker.analytics.policy import MatchingPolicy
from activity_tracker.analytics.positions import ConnectionRecord, PositionDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityResult:
    """Aggregated activity for one position."""
    minutes: float
    last_activity_at: Optional[datetime]
    matched_sessions: int = 0

    @property
    def hours(self) -> float:
        return round(self.minutes / 60, 1)


def aggregate(
    descriptor: PositionDescriptor,
    connections: Iterable[Union[ConnectionRecord, Mapping[str, Any]]],
    policy: MatchingPolicy,
) -> ActivityResult:
    """
    Aggregate matched session minutes and the latest matched start time.

    Accepts parsed ConnectionRecords or raw API dicts. Sessions without a
    parseable start still count toward the minutes but are ignored for
    last_activity_at.
    """
    total = 0.0
    last_activity: Optional[datetime] = None
    matched = 0

    for raw in connections:
        conn = raw if isinstance(raw, ConnectionRecord) else ConnectionRecord.from_api(raw)

        if not matches(descriptor, conn.callsign, policy):
            continue

        matched += 1
        total += conn.minutes
        if conn.start is not None and (last_activity is None or conn.start > last_activity):
            last_activity = conn.start

        logger.debug(
            f'Match for {descriptor}: {conn.callsign} {conn.minutes:.0f} min '
            f'({conn.start.date() if conn.start else "no date"}), total {total:.0f}'
        )

    logger.debug(f'Activity for {descriptor}: {total:.0f} min over {matched} sessions')

    return ActivityResult(minutes=total, last_activity_at=last_activity, matched_sessions=matched)
