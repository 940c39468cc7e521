"""
Configuration management for the activity tracker.

Loads settings from environment variables with sensible defaults.
All configuration is centralized here to avoid magic numbers scattered
throughout the sync and removal jobs.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = '0') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class VatsimConfig:
    """VATSIM session-log API configuration."""
    base_url: str = os.getenv('VATSIM_API_URL', 'https://api.vatsim.net/api')
    timeout_seconds: float = float(os.getenv('VATSIM_TIMEOUT_SECONDS', '15'))

    # Shared across one run; the ratings API is rate limited per IP
    min_interval_seconds: float = float(os.getenv('VATSIM_MIN_INTERVAL_SECONDS', '1.0'))
    cache_ttl_seconds: int = int(os.getenv('VATSIM_CACHE_TTL_SECONDS', '3600'))
    max_pages: int = int(os.getenv('VATSIM_MAX_PAGES', '10'))


@dataclass(frozen=True)
class RegistryConfig:
    """VatEUD core API (authoritative endorsement and roster registry)."""
    base_url: str = os.getenv('VATEUD_API_URL', 'https://core.vateud.net/api')
    token: Optional[str] = os.getenv('VATEUD_TOKEN') or None
    timeout_seconds: float = float(os.getenv('VATEUD_TIMEOUT_SECONDS', '10'))
    cache_ttl_seconds: int = int(os.getenv('VATEUD_CACHE_TTL_SECONDS', '600'))

    @property
    def is_configured(self) -> bool:
        return bool(self.token)


@dataclass(frozen=True)
class NotifierConfig:
    """VATGER board notification API."""
    base_url: str = os.getenv('VATGER_API_URL', 'https://vatsim-germany.org/api')
    api_key: Optional[str] = os.getenv('VATGER_API_KEY') or None
    timeout_seconds: float = float(os.getenv('VATGER_TIMEOUT_SECONDS', '10'))
    source_name: str = 'VATGER ATD'
    via: str = 'board.ping'

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///activity_tracker.db')

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy shared by every outbound HTTP call."""
    attempts: int = int(os.getenv('RETRY_ATTEMPTS', '3'))
    delay_seconds: float = float(os.getenv('RETRY_DELAY_SECONDS', '15'))


@dataclass(frozen=True)
class SyncConfig:
    """Activity sync scheduling."""
    limit: int = int(os.getenv('SYNC_LIMIT', '1'))  # Records per default run
    batch_size: int = int(os.getenv('SYNC_BATCH_SIZE', '50'))
    batch_pause_seconds: float = float(os.getenv('SYNC_BATCH_PAUSE_SECONDS', '2'))
    notify_on_mark: bool = _env_bool('SYNC_NOTIFY_ON_MARK', '1')


@dataclass(frozen=True)
class RemovalConfig:
    """Removal executor settings."""
    dry_run: bool = _env_bool('REMOVAL_DRY_RUN', '0')


@dataclass(frozen=True)
class PolicyConfig:
    """Matching policy source."""
    # Optional URL template with a {region} placeholder, e.g. https://.../policies/{region}.json
    remote_url: Optional[str] = os.getenv('MATCHING_POLICY_URL') or None
    ttl_seconds: int = int(os.getenv('MATCHING_POLICY_TTL_SECONDS', '300'))


@dataclass(frozen=True)
class TrackerPolicyConfig:
    """Activity thresholds for one kind of tracked subject."""
    min_minutes: float
    removal_warning_days: int
    grace_period_days: int
    window_days: int


def _tracker_policy(prefix: str, min_minutes: str, warning_days: str,
                    grace_days: str, window_days: str) -> TrackerPolicyConfig:
    return TrackerPolicyConfig(
        min_minutes=float(os.getenv(f'{prefix}_MIN_MINUTES', min_minutes)),
        removal_warning_days=int(os.getenv(f'{prefix}_REMOVAL_WARNING_DAYS', warning_days)),
        grace_period_days=int(os.getenv(f'{prefix}_GRACE_PERIOD_DAYS', grace_days)),
        window_days=int(os.getenv(f'{prefix}_WINDOW_DAYS', window_days)),
    )


@dataclass(frozen=True)
class RosterConfig:
    """Roster-specific settings beyond the activity thresholds."""
    region: str = os.getenv('ROSTER_REGION', 'GER')
    s1_exempt_days: int = int(os.getenv('ROSTER_S1_EXEMPT_DAYS', str(11 * 30)))


@dataclass(frozen=True)
class WaitingListConfig:
    """Waiting-list export location (entries are owned by the training system)."""
    export_path: Optional[str] = os.getenv('WAITING_LIST_EXPORT') or None


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    vatsim: VatsimConfig
    registry: RegistryConfig
    notifier: NotifierConfig
    database: DatabaseConfig
    retry: RetryConfig
    sync: SyncConfig
    removal: RemovalConfig
    policy: PolicyConfig
    roster: RosterConfig
    waiting_list: WaitingListConfig

    # Per-tracker thresholds
    endorsement_policy: TrackerPolicyConfig
    roster_policy: TrackerPolicyConfig
    waiting_list_policy: TrackerPolicyConfig

    # Flask settings
    secret_key: str
    debug: bool


def load_config() -> AppConfig:
    """Load and validate all configuration."""
    return AppConfig(
        vatsim=VatsimConfig(),
        registry=RegistryConfig(),
        notifier=NotifierConfig(),
        database=DatabaseConfig(),
        retry=RetryConfig(),
        sync=SyncConfig(),
        removal=RemovalConfig(),
        policy=PolicyConfig(),
        roster=RosterConfig(),
        waiting_list=WaitingListConfig(),
        endorsement_policy=_tracker_policy('ENDORSEMENT', '180', '31', '180', '180'),
        roster_policy=_tracker_policy('ROSTER', '1', '35', '0', '365'),
        waiting_list_policy=_tracker_policy('WAITING_LIST', '600', '0', '0', '60'),
        secret_key=os.getenv('SECRET_KEY', 'dev-key-change-in-prod'),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
    )


# Singleton instance
config = load_config()
