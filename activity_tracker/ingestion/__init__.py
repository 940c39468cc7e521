"""
Data ingestion for the activity tracker.

Handles fetching controller session history from the VATSIM API with
rate limiting, bounded retries and caching. The sync scheduler lives in
ingestion.scheduler and is imported directly.
"""

from activity_tracker.ingestion.http import RateLimiter, call_with_retry
from activity_tracker.ingestion.session_log import SessionLogSource
from activity_tracker.ingestion.vatsim_client import VatsimClient

__all__ = ['RateLimiter', 'call_with_retry', 'SessionLogSource', 'VatsimClient']
