"""
Session log source.

Wraps VatsimClient with the retry policy and a response cache. The one
rule that matters: an outage is not the same as inactivity. fetch()
returns a (possibly empty) list on success and None when every attempt
failed, so callers can leave the record unchanged instead of recording
zero minutes and starting a false removal. A permanent 4xx rejection is
not an outage: it is answered with an empty list so the record still
advances in the stale queue.
"""

import logging
import time
from datetime import date
from typing import Callable, List, Optional

from activity_tracker.analytics.positions import ConnectionRecord
from activity_tracker.cache import TTLCache
from activity_tracker.config import config
from activity_tracker.ingestion.http import TRANSIENT_ERRORS, call_with_retry, is_permanent
from activity_tracker.ingestion.vatsim_client import VatsimClient

logger = logging.getLogger(__name__)


class SessionLogSource:
    """Retrying, caching access to controller session history."""

    def __init__(
        self,
        client: Optional[VatsimClient] = None,
        attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        cache_ttl_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client or VatsimClient.from_config()
        self.attempts = attempts if attempts is not None else config.retry.attempts
        self.retry_delay = retry_delay if retry_delay is not None else config.retry.delay_seconds
        self._sleep = sleep
        self._cache = TTLCache(
            cache_ttl_seconds if cache_ttl_seconds is not None else config.vatsim.cache_ttl_seconds
        )

        self._fetch_count = 0
        self._failure_count = 0

    def fetch(self, subject_id: int, start: date) -> Optional[List[ConnectionRecord]]:
        """
        Sessions of subject_id since start, or None if the source is unavailable.
        """
        key = (subject_id, start.isoformat())
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            raw = call_with_retry(
                lambda: self.client.get_atc_sessions(subject_id, start),
                description=f'Session log for {subject_id}',
                attempts=self.attempts,
                delay=self.retry_delay,
                sleep=self._sleep,
            )
        except TRANSIENT_ERRORS as e:
            if not is_permanent(e):
                self._failure_count += 1
                logger.error(f'Session log unavailable for {subject_id}, leaving activity unchanged: {e}')
                return None
            # A rejected request (unknown CID and the like) has no sessions to report
            logger.warning(f'Session log rejected {subject_id}, counting no sessions: {e}')
            raw = []

        self._fetch_count += 1
        connections = [ConnectionRecord.from_api(r) for r in raw]
        self._cache.set(key, connections)
        return connections

    def fetch_rating(self, subject_id: int) -> Optional[dict]:
        """Rating payload of subject_id, or None if unavailable."""
        try:
            return call_with_retry(
                lambda: self.client.get_rating(subject_id),
                description=f'Rating for {subject_id}',
                attempts=self.attempts,
                delay=self.retry_delay,
                sleep=self._sleep,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning(f'Rating lookup unavailable for {subject_id}: {e}')
            return None

    @property
    def stats(self) -> dict:
        return {
            'fetch_count': self._fetch_count,
            'failure_count': self._failure_count,
            'cache': self._cache.stats,
        }
