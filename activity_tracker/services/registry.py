"""
VatEUD core API client - the authoritative registry.

Provides:
- Tier-1 endorsement snapshots (entries subject to activity requirements)
- Facility roster snapshots
- Delete-by-id for tier-1 endorsements and roster memberships

Snapshots are cached for a few minutes; one removal run re-checks many
records against the same snapshot. Unlike the session log, a registry
failure is not degradable: reconciling against an empty snapshot would
delete every local record, so errors surface as RegistryUnavailable and
the run is aborted.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests

from activity_tracker.cache import TTLCache
from activity_tracker.config import config
from activity_tracker.ingestion.http import TRANSIENT_ERRORS, call_with_retry
from activity_tracker.timeutil import parse_timestamp

logger = logging.getLogger(__name__)


class RegistryUnavailable(Exception):
    """The registry could not be queried; the run must not touch records."""


@dataclass(frozen=True)
class RegistryEntry:
    """One qualification-holder entry in the registry."""
    entry_id: int
    subject_id: int
    position: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> Optional['RegistryEntry']:
        """Parse an endorsement entry; None if required fields are missing."""
        try:
            entry_id = int(raw['id'])
            subject_id = int(raw['user_cid'])
        except (KeyError, TypeError, ValueError):
            return None

        position = raw.get('position')
        if not position or not isinstance(position, str):
            return None

        return cls(
            entry_id=entry_id,
            subject_id=subject_id,
            position=position.strip().upper(),
            created_at=parse_timestamp(raw.get('created_at')),
        )


class RegistryClient:
    """
    Client for the VatEUD facility API.

    All calls use the shared retry policy; read calls raise
    RegistryUnavailable once it is exhausted, delete calls return False.
    """

    TIER1_CACHE_KEY = 'tier1'
    TIER2_CACHE_KEY = 'tier2'
    ROSTER_CACHE_KEY = 'roster'

    def __init__(
        self,
        base_url: str = 'https://core.vateud.net/api',
        token: Optional[str] = None,
        timeout: float = 10,
        cache_ttl_seconds: float = 600,
        attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.attempts = attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._cache = TTLCache(cache_ttl_seconds)

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': 'VATGER Training System',
        })
        if token:
            self.session.headers['X-API-KEY'] = token
        else:
            logger.warning('VatEUD token not configured - registry requests will be rejected')

    @classmethod
    def from_config(cls) -> 'RegistryClient':
        """Create client from application configuration."""
        return cls(
            base_url=config.registry.base_url,
            token=config.registry.token,
            timeout=config.registry.timeout_seconds,
            cache_ttl_seconds=config.registry.cache_ttl_seconds,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _get(self, path: str) -> Any:
        def do_get():
            response = self.session.get(f'{self.base_url}{path}', timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        try:
            return call_with_retry(
                do_get,
                description=f'VatEUD GET {path}',
                attempts=self.attempts,
                delay=self.retry_delay,
                sleep=self._sleep,
            )
        except TRANSIENT_ERRORS as e:
            raise RegistryUnavailable(f'VatEUD GET {path} failed: {e}') from e

    @staticmethod
    def _unwrap_list(data: Any, path: str) -> List[Any]:
        # Responses come either as {'data': [...]} or as a bare list
        if isinstance(data, dict) and isinstance(data.get('data'), list):
            return data['data']
        if isinstance(data, list):
            return data
        raise RegistryUnavailable(f'Unexpected VatEUD response structure for {path}')

    def get_tier1_endorsements(self) -> List[RegistryEntry]:
        """Current tier-1 endorsements (the ones with activity requirements)."""
        return self._cache.get_or_load(self.TIER1_CACHE_KEY, self._load_tier1)

    def _load_tier1(self) -> List[RegistryEntry]:
        path = '/facility/endorsements/tier-1'
        raw = self._unwrap_list(self._get(path), path)

        entries = []
        for item in raw:
            entry = RegistryEntry.from_api(item) if isinstance(item, dict) else None
            if entry is None:
                logger.warning(f'Skipping malformed tier-1 entry: {item!r}')
                continue
            entries.append(entry)

        logger.info(f'Fetched {len(entries)} tier-1 endorsements from VatEUD')
        return entries

    def get_tier2_endorsements(self) -> List[RegistryEntry]:
        """Current tier-2 endorsements (no activity requirement)."""
        return self._cache.get_or_load(self.TIER2_CACHE_KEY, self._load_tier2)

    def _load_tier2(self) -> List[RegistryEntry]:
        path = '/facility/endorsements/tier-2'
        raw = self._unwrap_list(self._get(path), path)
        return [e for e in (RegistryEntry.from_api(i) for i in raw if isinstance(i, dict)) if e]

    def get_roster(self) -> List[int]:
        """CIDs of every controller on the facility roster."""
        return self._cache.get_or_load(self.ROSTER_CACHE_KEY, self._load_roster)

    def _load_roster(self) -> List[int]:
        path = '/facility/roster'
        data = self._get(path)
        inner = data.get('data') if isinstance(data, dict) else None
        controllers = inner.get('controllers') if isinstance(inner, dict) else None
        if not isinstance(controllers, list):
            raise RegistryUnavailable('Unexpected VatEUD roster response structure')

        cids = []
        for value in controllers:
            try:
                cids.append(int(value))
            except (TypeError, ValueError):
                logger.warning(f'Skipping malformed roster entry: {value!r}')

        logger.info(f'Fetched {len(cids)} roster members from VatEUD')
        return cids

    # -------------------------------------------------------------------------
    # Deletes
    # -------------------------------------------------------------------------

    def _delete(self, path: str) -> bool:
        def do_delete():
            response = self.session.delete(f'{self.base_url}{path}', timeout=self.timeout)
            response.raise_for_status()
            return True

        try:
            return call_with_retry(
                do_delete,
                description=f'VatEUD DELETE {path}',
                attempts=self.attempts,
                delay=self.retry_delay,
                sleep=self._sleep,
            )
        except TRANSIENT_ERRORS as e:
            logger.error(f'VatEUD DELETE {path} failed: {e}')
            return False

    def remove_tier1_endorsement(self, endorsement_id: int) -> bool:
        """Delete one tier-1 endorsement."""
        ok = self._delete(f'/facility/endorsements/tier-1/{endorsement_id}')
        if ok:
            self._cache.invalidate(self.TIER1_CACHE_KEY)
        return ok

    def remove_roster_member(self, cid: int) -> bool:
        """
        Remove a controller from the roster together with all of their
        tier-1 and tier-2 endorsements.
        """
        if not self._delete(f'/facility/roster/{cid}'):
            return False

        ok = True
        for entry in self.get_tier1_endorsements():
            if entry.subject_id == cid:
                ok &= self._delete(f'/facility/endorsements/tier-1/{entry.entry_id}')
        for entry in self.get_tier2_endorsements():
            if entry.subject_id == cid:
                ok &= self._delete(f'/facility/endorsements/tier-2/{entry.entry_id}')

        self.invalidate()
        return ok

    def invalidate(self) -> None:
        """Drop cached snapshots."""
        self._cache.clear()
