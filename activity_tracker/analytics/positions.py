"""
Position descriptors and connection records.

A position descriptor is the structured form of a registry position string:

    EDDF_TWR      airport EDDF, category TOWER
    EDDF_GNDDEL   airport EDDF, category GROUND_DELIVERY
    EDWW_W_CTR    FIR EDWW, category CENTER, sector prefix 'EDWW_W'
    GER_RGN       region GER, category REGION (roster checks)

Connection records are the raw ATC sessions returned by the VATSIM
ratings API. They are parsed tolerantly: a malformed field degrades the
record instead of rejecting the whole batch.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from activity_tracker.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

SEPARATOR = '_'
SECTOR_PREFIX_LENGTH = 6


class StationCategory(str, Enum):
    """
    Station category of an endorsement position.

    Values are the suffix tokens used in registry position strings.
    """
    GROUND_DELIVERY = 'GNDDEL'
    TOWER = 'TWR'
    APPROACH = 'APP'
    CENTER = 'CTR'
    REGION = 'RGN'

    @classmethod
    def from_token(cls, token: str) -> Optional['StationCategory']:
        for category in cls:
            if category.value == token:
                return category
        return None


@dataclass(frozen=True)
class PositionDescriptor:
    """
    Immutable parsed position.

    category is None when the suffix is not a known station category;
    the matcher never credits activity to such a descriptor.
    """
    position: str
    code: str
    category: Optional[StationCategory]

    @classmethod
    def parse(cls, position: Optional[str]) -> 'PositionDescriptor':
        """Parse a registry position string. Never raises."""
        position = (position or '').strip().upper()
        parts = position.split(SEPARATOR)
        if len(parts) < 2 or not parts[0]:
            return cls(position=position, code=parts[0] if parts else '', category=None)

        return cls(
            position=position,
            code=parts[0],
            category=StationCategory.from_token(parts[-1]),
        )

    @classmethod
    def region(cls, region_code: str) -> 'PositionDescriptor':
        """Descriptor crediting any session inside a region (roster checks)."""
        code = region_code.strip().upper()
        return cls(
            position=f'{code}{SEPARATOR}{StationCategory.REGION.value}',
            code=code,
            category=StationCategory.REGION,
        )

    @property
    def sector_prefix(self) -> Optional[str]:
        """6-character sector prefix for center positions (e.g. 'EDWW_W')."""
        if self.category != StationCategory.CENTER:
            return None
        return self.position[:SECTOR_PREFIX_LENGTH]

    @property
    def region_key(self) -> str:
        """
        Key used to select a matching policy: the FIR prefix ('ED' for EDDF),
        or the whole code for region descriptors ('GER').
        """
        if self.category == StationCategory.REGION:
            return self.code
        return self.code[:2]

    def __str__(self) -> str:
        return self.position


@dataclass(frozen=True)
class ConnectionRecord:
    """
    One observed ATC session.

    minutes is never negative; start is None when no timestamp could be
    parsed.
    """
    callsign: str
    minutes: float
    start: Optional[datetime]

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> 'ConnectionRecord':
        """
        Parse a session from the ratings API.

        Missing or unparseable duration counts as 0 minutes. The start
        timestamp falls back to 'end', 'created_at' and 'date'.
        """
        callsign = raw.get('callsign') or ''
        if not isinstance(callsign, str):
            callsign = str(callsign)

        try:
            minutes = float(raw.get('minutes_on_callsign') or 0)
        except (TypeError, ValueError):
            logger.warning(f'Unparseable session duration for {callsign}: {raw.get("minutes_on_callsign")!r}')
            minutes = 0.0
        if minutes < 0 or minutes != minutes:  # negative or NaN
            minutes = 0.0

        start = None
        for field_name in ('start', 'end', 'created_at', 'date'):
            if raw.get(field_name) is not None:
                start = parse_timestamp(raw.get(field_name))
                if start is not None:
                    break
                logger.warning(f'Failed to parse session {field_name} for {callsign}: {raw.get(field_name)!r}')

        return cls(callsign=callsign.strip().upper(), minutes=minutes, start=start)
