"""
Position matcher.

Decides whether a session callsign counts as activity for a position.
Pure function of (descriptor, callsign, policy): no clock, no I/O, so
recomputing a batch always yields the same result.

Callsign formats seen in practice:
    EDDL_GND, EDDL_M_GND, EDDL__GND   airport positions (middle tokens ignored)
    EDWW_W_CTR, EDWW_CTR              sector positions
"""

from activity_tracker.analytics.policy import MatchingPolicy
from activity_tracker.analytics.positions import (
    SEPARATOR,
    PositionDescriptor,
    StationCategory,
)


def _matches_center(descriptor: PositionDescriptor, callsign: str, policy: MatchingPolicy) -> bool:
    prefix = descriptor.sector_prefix
    if prefix and callsign.startswith(prefix):
        return True
    return policy.is_alias(descriptor.position, callsign)


def _matches_region(descriptor: PositionDescriptor, callsign: str, policy: MatchingPolicy) -> bool:
    return any(
        prefix and callsign.startswith(prefix)
        for prefix in policy.prefixes_for_region(descriptor.code)
    )


def _matches_airport(descriptor: PositionDescriptor, callsign: str, policy: MatchingPolicy) -> bool:
    parts = callsign.split(SEPARATOR)
    if len(parts) < 2:
        return False

    airport, station = parts[0], parts[-1]
    if airport == descriptor.code and station in policy.suffixes_for(descriptor.category):
        return True

    # Topdown: overlying sector staffed instead of the airport position
    return any(
        prefix and callsign.startswith(prefix)
        for prefix in policy.topdown_for(descriptor.code)
    )


def matches(descriptor: PositionDescriptor, callsign: str, policy: MatchingPolicy) -> bool:
    """
    Check whether callsign credits activity to descriptor under policy.

    Unknown categories and empty tables never match; a misconfigured policy
    under-credits activity instead of raising.
    """
    if not callsign or descriptor.category is None:
        return False

    callsign = callsign.strip().upper()

    if descriptor.category == StationCategory.CENTER:
        return _matches_center(descriptor, callsign, policy)
    if descriptor.category == StationCategory.REGION:
        return _matches_region(descriptor, callsign, policy)
    return _matches_airport(descriptor, callsign, policy)
