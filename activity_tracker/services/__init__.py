"""
External integration services.

Handles third-party API calls with caching, bounded retries, and
explicit failure signalling where degrading silently would be unsafe.
"""

from activity_tracker.services.notifier import Notifier
from activity_tracker.services.registry import RegistryClient, RegistryEntry, RegistryUnavailable

__all__ = ['Notifier', 'RegistryClient', 'RegistryEntry', 'RegistryUnavailable']
