"""
Trackers - the kinds of registry entries the lifecycle engine watches.

Every tracker supplies the same small capability set, so the scheduler,
state machine and removal jobs are written once:

    fetch_registry()   authoritative snapshot of entries to track
    measure()          fresh activity for one record (None = source down)
    thresholds         activity floor, grace period, warning period
    notification()     wording of the removal warning
    remove()           delete the entry in the registry

Instances:
    EndorsementTracker   tier-1 endorsements, activity on the endorsed position
    RosterTracker        roster membership, any session inside the region
    WaitingListTracker   waiting-list hours; measured only, never removed
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.orm import Session

from activity_tracker.analytics.aggregator import aggregate
from activity_tracker.analytics.policy import PolicyProvider
from activity_tracker.analytics.positions import PositionDescriptor
from activity_tracker.config import AppConfig, TrackerPolicyConfig, config as app_config
from activity_tracker.ingestion.http import RateLimiter
from activity_tracker.ingestion.session_log import SessionLogSource
from activity_tracker.ingestion.vatsim_client import VatsimClient
from activity_tracker.lifecycle.state_machine import Thresholds
from activity_tracker.models.lifecycle_record import LifecycleRecord
from activity_tracker.services.registry import RegistryClient, RegistryEntry, RegistryUnavailable
from activity_tracker.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

S1_RATING = 2


@dataclass(frozen=True)
class Measurement:
    """Fresh activity of one record."""
    minutes: float
    last_activity_at: Optional[datetime]
    exempt: bool = False


class Tracker(ABC):
    """Capability set shared by every tracked entry kind."""

    kind: str = ''
    removal_enabled: bool = True

    def __init__(
        self,
        policy: TrackerPolicyConfig,
        sessions: SessionLogSource,
        policies: PolicyProvider,
    ):
        self.thresholds = Thresholds.from_config(policy)
        self.window_days = policy.window_days
        self.sessions = sessions
        self.policies = policies

    def __repr__(self) -> str:
        return f'<{type(self).__name__} kind={self.kind}>'

    @abstractmethod
    def fetch_registry(self) -> List[RegistryEntry]:
        """
        Authoritative snapshot.

        Raises:
            RegistryUnavailable if the snapshot cannot be trusted
        """

    def window_start(self, now: datetime) -> date:
        return (now - timedelta(days=self.window_days)).date()

    def measure(self, record: LifecycleRecord, now: datetime) -> Optional[Measurement]:
        """Aggregate activity inside the rolling window; None if the source is down."""
        connections = self.sessions.fetch(record.subject_id, self.window_start(now))
        if connections is None:
            return None

        descriptor = record.descriptor
        if descriptor.category is None:
            logger.warning(f'Unknown position category for {record!r}; no activity can match')

        result = aggregate(descriptor, connections, self.policies.policy_for(descriptor))
        return Measurement(minutes=result.minutes, last_activity_at=result.last_activity_at)

    def notification(self, record: LifecycleRecord) -> Tuple[str, str]:
        """(title, message) of the removal warning."""
        due = record.removal_due_at.strftime('%d.%m.%Y') if record.removal_due_at else 'soon'
        return (
            'Removal Notice',
            f'Your {record.position} entry will be removed on {due} due to inactivity.',
        )

    @abstractmethod
    def remove(self, record: LifecycleRecord) -> bool:
        """Delete the entry in the registry. True on success."""

    def after_removal(self, session: Session, record: LifecycleRecord) -> None:
        """Local cleanup after a successful removal (same transaction)."""


class EndorsementTracker(Tracker):
    """Tier-1 endorsements, credited by sessions on the endorsed position."""

    kind = 'endorsement'

    def __init__(self, policy, sessions, policies, registry: RegistryClient):
        super().__init__(policy, sessions, policies)
        self.registry = registry

    def fetch_registry(self) -> List[RegistryEntry]:
        return self.registry.get_tier1_endorsements()

    def notification(self, record: LifecycleRecord) -> Tuple[str, str]:
        return (
            'Endorsement Removal',
            f'Your endorsement for {record.position} will be removed on '
            f'{record.removal_due_at.strftime("%d.%m.%Y")}. If you wish to keep it, '
            f'please ensure you meet the minimum activity requirements by then.',
        )

    def remove(self, record: LifecycleRecord) -> bool:
        return self.registry.remove_tier1_endorsement(record.registry_id)


class RosterTracker(Tracker):
    """
    Roster membership, credited by any session inside the region.

    A controller promoted to S1 within s1_exempt_days counts as active even
    without sessions: they only just became able to control.
    """

    kind = 'roster'

    def __init__(self, policy, sessions, policies, registry: RegistryClient,
                 region: str = 'GER', s1_exempt_days: int = 330):
        super().__init__(policy, sessions, policies)
        self.registry = registry
        self.descriptor = PositionDescriptor.region(region)
        self.s1_exempt_days = s1_exempt_days

    def fetch_registry(self) -> List[RegistryEntry]:
        cids = self.registry.get_roster()
        if not cids:
            # An empty roster is never real; treat it as a failed fetch
            raise RegistryUnavailable('VatEUD returned an empty roster')
        return [
            RegistryEntry(entry_id=cid, subject_id=cid, position=self.descriptor.position)
            for cid in cids
        ]

    def measure(self, record: LifecycleRecord, now: datetime) -> Optional[Measurement]:
        measurement = super().measure(record, now)
        if measurement is None or measurement.minutes >= self.thresholds.min_minutes:
            return measurement

        promoted_at = self._recent_s1_promotion(record.subject_id, now)
        if promoted_at is None:
            return measurement

        logger.info(f'Roster member {record.subject_id} promoted to S1 on {promoted_at.date()}, exempt')
        last = measurement.last_activity_at
        return Measurement(
            minutes=measurement.minutes,
            last_activity_at=max(last, promoted_at) if last else promoted_at,
            exempt=True,
        )

    def _recent_s1_promotion(self, cid: int, now: datetime) -> Optional[datetime]:
        rating = self.sessions.fetch_rating(cid)
        if not rating or rating.get('rating') != S1_RATING:
            return None
        changed = parse_timestamp(rating.get('lastratingchange'))
        if changed is None or now - changed >= timedelta(days=self.s1_exempt_days):
            return None
        return changed

    def notification(self, record: LifecycleRecord) -> Tuple[str, str]:
        return (
            'Removal from VATSIM Germany Roster',
            'You have not controlled in the past months. If you want to stay on the '
            'VATSIM Germany roster, please log in to the VATSIM network and control '
            f'at least once before {record.removal_due_at.strftime("%d.%m.%Y")}. '
            'If you do not, your account will be removed from the roster. '
            'If you believe this is a mistake, please contact the ATD.',
        )

    def remove(self, record: LifecycleRecord) -> bool:
        return self.registry.remove_roster_member(record.subject_id)

    def after_removal(self, session: Session, record: LifecycleRecord) -> None:
        # Endorsements went with the roster membership
        session.execute(
            delete(LifecycleRecord).where(
                LifecycleRecord.tracker == EndorsementTracker.kind,
                LifecycleRecord.subject_id == record.subject_id,
            )
        )


class WaitingListTracker(Tracker):
    """
    Waiting-list activity hours.

    Entries are owned by the training system and read from its JSON export
    ([{id, user_cid, position, created_at}, ...]). Only measured: a low
    count never starts a removal.
    """

    kind = 'waiting_list'
    removal_enabled = False

    def __init__(self, policy, sessions, policies, export_path: Optional[str] = None):
        super().__init__(policy, sessions, policies)
        self.export_path = export_path

    def fetch_registry(self) -> List[RegistryEntry]:
        if not self.export_path:
            raise RegistryUnavailable('WAITING_LIST_EXPORT not configured')
        try:
            with open(self.export_path, encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            raise RegistryUnavailable(f'Cannot read waiting-list export: {e}') from e

        if isinstance(raw, dict):
            raw = raw.get('data')
        if not isinstance(raw, list):
            raise RegistryUnavailable('Waiting-list export is not a list')

        entries = [RegistryEntry.from_api(item) for item in raw if isinstance(item, dict)]
        return [e for e in entries if e is not None]

    def remove(self, record: LifecycleRecord) -> bool:
        return False


def build_trackers(cfg: Optional[AppConfig] = None) -> Dict[str, Tracker]:
    """
    Wire every tracker from configuration.

    All trackers share one rate limiter and session cache, so a run that
    touches several kinds still respects one VATSIM quota.
    """
    cfg = cfg or app_config
    limiter = RateLimiter(cfg.vatsim.min_interval_seconds)
    sessions = SessionLogSource(
        client=VatsimClient.from_config(rate_limiter=limiter),
        attempts=cfg.retry.attempts,
        retry_delay=cfg.retry.delay_seconds,
        cache_ttl_seconds=cfg.vatsim.cache_ttl_seconds,
    )
    policies = PolicyProvider.from_config()
    registry = RegistryClient.from_config()

    trackers: List[Tracker] = [
        EndorsementTracker(cfg.endorsement_policy, sessions, policies, registry),
        RosterTracker(cfg.roster_policy, sessions, policies, registry,
                      region=cfg.roster.region, s1_exempt_days=cfg.roster.s1_exempt_days),
        WaitingListTracker(cfg.waiting_list_policy, sessions, policies,
                           export_path=cfg.waiting_list.export_path),
    ]
    return {t.kind: t for t in trackers}
