"""
Removal warning notifier.

Sends board notifications through the VATGER user API:

    POST {base_url}/user/{cid}/send_notification
    {title, message, source_name, via}

A missing API key is a failure, not a silent success: the record stays
unnotified and the finalization job will not remove an entry whose owner
was never warned.
"""

import logging
import time
from typing import Callable, Optional

import requests

from activity_tracker.config import config
from activity_tracker.ingestion.http import TRANSIENT_ERRORS, call_with_retry

logger = logging.getLogger(__name__)


class Notifier:
    """Client for the VATGER notification endpoint."""

    def __init__(
        self,
        base_url: str = 'https://vatsim-germany.org/api',
        api_key: Optional[str] = None,
        timeout: float = 10,
        source_name: str = 'VATGER ATD',
        via: str = 'board.ping',
        attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.source_name = source_name
        self.via = via
        self.attempts = attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.session = session or requests.Session()

        if not self.api_key:
            logger.warning('VATGER API key not configured - removal notifications disabled')

    @classmethod
    def from_config(cls) -> 'Notifier':
        """Create notifier from application configuration."""
        return cls(
            base_url=config.notifier.base_url,
            api_key=config.notifier.api_key,
            timeout=config.notifier.timeout_seconds,
            source_name=config.notifier.source_name,
            via=config.notifier.via,
        )

    def send(self, subject_id: int, title: str, message: str) -> bool:
        """
        Deliver a notification. Returns True on success.

        Never raises for transport errors; the notification job retries
        unsent warnings on its next run.
        """
        if not self.api_key:
            logger.warning(f'Skipping notification for {subject_id}: no VATGER API key')
            return False

        payload = {
            'title': title,
            'message': message,
            'source_name': self.source_name,
            'via': self.via,
        }

        def do_post():
            response = self.session.post(
                f'{self.base_url}/user/{subject_id}/send_notification',
                json=payload,
                headers={'Authorization': f'Token {self.api_key}'},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return True

        try:
            return call_with_retry(
                do_post,
                description=f'Notification to {subject_id}',
                attempts=self.attempts,
                delay=self.retry_delay,
                sleep=self._sleep,
            )
        except TRANSIENT_ERRORS as e:
            logger.error(f'Failed to notify {subject_id}: {e}')
            return False
