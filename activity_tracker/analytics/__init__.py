"""
Activity analytics for the tracker.

Turns raw ATC session lists into per-position activity:
- Position descriptors parsed from registry strings
- Callsign matching with suffix, topdown and alias rules
- Rolling-window minute sums
"""

from activity_tracker.analytics.aggregator import ActivityResult, aggregate
from activity_tracker.analytics.matcher import matches
from activity_tracker.analytics.policy import DEFAULT_POLICY, MatchingPolicy, PolicyProvider
from activity_tracker.analytics.positions import (
    ConnectionRecord,
    PositionDescriptor,
    StationCategory,
)

__all__ = [
    'ActivityResult',
    'aggregate',
    'matches',
    'DEFAULT_POLICY',
    'MatchingPolicy',
    'PolicyProvider',
    'ConnectionRecord',
    'PositionDescriptor',
    'StationCategory',
]
