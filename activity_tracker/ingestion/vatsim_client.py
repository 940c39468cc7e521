"""
VATSIM ratings API client.

Handles communication with the public VATSIM API, including:
- ATC session history per controller (the session log)
- Rating lookups (for the roster's recent-promotion exemption)
- Rate limiting compliance through a shared RateLimiter
- Pagination via the 'next' link

ATC session format (one entry of 'results'):
    callsign              - e.g. 'EDDF_TWR', 'EDWW_W_CTR'
    minutes_on_callsign   - session length in minutes (string or number)
    start                 - ISO-8601 start timestamp
    end                   - ISO-8601 end timestamp

Errors are raised to the caller; retry and degradation policy live in
SessionLogSource.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from activity_tracker.config import config
from activity_tracker.ingestion.http import RateLimiter

logger = logging.getLogger(__name__)


class VatsimClient:
    """
    Client for the VATSIM ratings API.

    Handles:
    - GET /ratings/{cid}/atcsessions/?start=YYYY-MM-DD
    - GET /ratings/{cid}/
    - Request pacing through a RateLimiter shared for the whole run
    """

    def __init__(
        self,
        base_url: str = 'https://api.vatsim.net/api',
        timeout: float = 15,
        rate_limiter: Optional[RateLimiter] = None,
        max_pages: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter(1.0)
        self.max_pages = max_pages
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})

    @classmethod
    def from_config(cls, rate_limiter: Optional[RateLimiter] = None) -> 'VatsimClient':
        """Create client from application configuration."""
        return cls(
            base_url=config.vatsim.base_url,
            timeout=config.vatsim.timeout_seconds,
            rate_limiter=rate_limiter or RateLimiter(config.vatsim.min_interval_seconds),
            max_pages=config.vatsim.max_pages,
        )

    def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        self.rate_limiter.wait()

        logger.debug(f'GET {url} params={params}')

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout:
            logger.warning(f'VATSIM API timeout: {url}')
            raise
        except requests.exceptions.HTTPError as e:
            if e.response is not None and e.response.status_code == 429:
                logger.warning('VATSIM API rate limit exceeded')
            else:
                status = e.response.status_code if e.response is not None else '?'
                logger.warning(f'VATSIM API error: {status}')
            raise

    def get_atc_sessions(self, cid: int, start: date) -> List[Dict[str, Any]]:
        """
        Fetch ATC sessions of a controller since start.

        Follows 'next' links up to max_pages.

        Raises:
            requests.RequestException on network/API errors
            ValueError if the payload has no 'results' list
        """
        url: Optional[str] = f'{self.base_url}/ratings/{cid}/atcsessions/'
        params: Optional[dict] = {'start': start.isoformat()}
        sessions: List[Dict[str, Any]] = []

        for _ in range(self.max_pages):
            data = self._get_json(url, params)

            results = data.get('results') if isinstance(data, dict) else None
            if not isinstance(results, list):
                keys = list(data.keys()) if isinstance(data, dict) else type(data).__name__
                raise ValueError(f'Unexpected VATSIM session payload for {cid}: {keys}')

            sessions.extend(r for r in results if isinstance(r, dict))

            url = data.get('next')
            params = None  # 'next' already carries the query string
            if not url:
                break
        else:
            logger.warning(f'Session history for {cid} truncated at {self.max_pages} pages')

        logger.debug(f'Fetched {len(sessions)} ATC sessions for {cid} since {start}')
        return sessions

    def get_rating(self, cid: int) -> Dict[str, Any]:
        """
        Fetch rating details of a controller.

        Returns the raw payload ('rating', 'lastratingchange', ...).
        """
        data = self._get_json(f'{self.base_url}/ratings/{cid}/')
        if not isinstance(data, dict):
            raise ValueError(f'Unexpected VATSIM rating payload for {cid}')
        return data
