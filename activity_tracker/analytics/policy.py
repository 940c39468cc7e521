"""
Matching policies.

A matching policy decides which callsigns credit which positions:

- viable_suffixes: station suffixes that count for each category
  (a TOWER endorsement is also credited by APP and DEP sessions)
- topdown: airport -> overlying sector prefixes. When the lower position
  is unstaffed the sector controller works its traffic, so sessions on
  those sector callsigns count for the airport positions too.
- center_aliases: (position, callsign) pairs where an umbrella sector
  callsign stands in for a named sub-sector
- region_prefixes: region -> callsign prefixes for roster checks

Policies are immutable and versioned. PolicyProvider looks them up by FIR
region key, either from the compiled-in table or from a remote JSON
document, and caches the result for a short TTL so tables can be changed
without a redeploy.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import requests

from activity_tracker.analytics.positions import PositionDescriptor, StationCategory
from activity_tracker.cache import TTLCache
from activity_tracker.config import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchingPolicy:
    """Immutable, versioned matching configuration."""
    version: str
    viable_suffixes: Mapping[StationCategory, FrozenSet[str]] = field(default_factory=dict)
    topdown: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    center_aliases: FrozenSet[Tuple[str, str]] = frozenset()
    region_prefixes: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def suffixes_for(self, category: Optional[StationCategory]) -> FrozenSet[str]:
        if category is None:
            return frozenset()
        return self.viable_suffixes.get(category, frozenset())

    def topdown_for(self, airport: str) -> Tuple[str, ...]:
        return self.topdown.get(airport, ())

    def prefixes_for_region(self, region: str) -> Tuple[str, ...]:
        return self.region_prefixes.get(region, ())

    def is_alias(self, position: str, callsign: str) -> bool:
        return (position, callsign) in self.center_aliases

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'MatchingPolicy':
        """
        Build a policy from its JSON representation.

        Unknown categories are skipped rather than rejected, so a partially
        valid document still yields a usable (narrower) policy.
        """
        viable: Dict[StationCategory, FrozenSet[str]] = {}
        for token, suffixes in (data.get('viable_suffixes') or {}).items():
            category = StationCategory.from_token(str(token).upper())
            if category is None:
                logger.warning(f'Ignoring unknown station category in policy: {token!r}')
                continue
            viable[category] = frozenset(str(s).upper() for s in suffixes)

        topdown = {
            str(airport).upper(): tuple(str(p).upper() for p in prefixes)
            for airport, prefixes in (data.get('topdown') or {}).items()
        }

        aliases = frozenset(
            (str(pair[0]).upper(), str(pair[1]).upper())
            for pair in (data.get('center_aliases') or [])
            if len(pair) == 2
        )

        regions = {
            str(region).upper(): tuple(str(p).upper() for p in prefixes)
            for region, prefixes in (data.get('region_prefixes') or {}).items()
        }

        return cls(
            version=str(data.get('version', 'remote')),
            viable_suffixes=viable,
            topdown=topdown,
            center_aliases=aliases,
            region_prefixes=regions,
        )


# Compiled-in policy for the German FIRs (EDWW, EDGG, EDMM)
DEFAULT_POLICY = MatchingPolicy(
    version='static-2025.1',
    viable_suffixes={
        StationCategory.APPROACH: frozenset({'APP', 'DEP'}),
        StationCategory.TOWER: frozenset({'APP', 'DEP', 'TWR'}),
        StationCategory.GROUND_DELIVERY: frozenset({'APP', 'DEP', 'TWR', 'GND', 'DEL'}),
    },
    topdown={
        'EDDB': ('EDWW_F', 'EDWW_B', 'EDWW_K', 'EDWW_M', 'EDWW_C'),
        'EDDH': ('EDWW_H', 'EDWW_A', 'EDWW_W', 'EDWW_C'),
        'EDDF': ('EDGG_G', 'EDGG_R', 'EDGG_D', 'EDGG_B', 'EDGG_K'),
        'EDDK': ('EDGG_P',),
        'EDDL': ('EDGG_P',),
        'EDDM': ('EDMM_N', 'EDMM_Z', 'EDMM_R'),
    },
    center_aliases=frozenset({('EDWW_W_CTR', 'EDWW_CTR')}),
    region_prefixes={'GER': ('ED', 'ET')},
)


class PolicyProvider:
    """
    Looks up the matching policy for a descriptor.

    With a remote_url template (containing '{region}'), policies are fetched
    per FIR region and cached for ttl_seconds. Any fetch or parse failure
    falls back to the static policy; the failure is not cached, so the next
    lookup after the TTL tries again.
    """

    def __init__(
        self,
        static_policy: MatchingPolicy = DEFAULT_POLICY,
        remote_url: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.static_policy = static_policy
        self.remote_url = remote_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cache = TTLCache(ttl_seconds if ttl_seconds is not None else config.policy.ttl_seconds)

    @classmethod
    def from_config(cls) -> 'PolicyProvider':
        """Create provider from application configuration."""
        return cls(
            remote_url=config.policy.remote_url,
            ttl_seconds=config.policy.ttl_seconds,
        )

    def policy_for(self, descriptor: PositionDescriptor) -> MatchingPolicy:
        """Return the policy governing descriptor's FIR region."""
        if not self.remote_url:
            return self.static_policy

        region = descriptor.region_key or 'default'
        cached = self._cache.get(region)
        if cached is not None:
            return cached

        policy = self._fetch_remote(region)
        if policy is None:
            return self.static_policy

        self._cache.set(region, policy)
        return policy

    def _fetch_remote(self, region: str) -> Optional[MatchingPolicy]:
        url = self.remote_url.format(region=region)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            policy = MatchingPolicy.from_dict(response.json())
        except requests.RequestException as e:
            logger.warning(f'Matching policy fetch failed for {region}, using static policy: {e}')
            return None
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f'Malformed matching policy for {region}, using static policy: {e}')
            return None

        logger.info(f'Loaded matching policy {policy.version} for region {region}')
        return policy

    def invalidate(self) -> None:
        """Drop cached remote policies (hot reload)."""
        self._cache.clear()
