from __future__ import annotations

from datetime import datetime, timedelta

import pytest
import requests
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from activity_tracker.analytics.policy import PolicyProvider
from activity_tracker.analytics.positions import ConnectionRecord
from activity_tracker.config import TrackerPolicyConfig
from activity_tracker.lifecycle.trackers import EndorsementTracker
from activity_tracker.models.base import Base, build_engine
from activity_tracker.models.lifecycle_record import LifecycleRecord
from activity_tracker.services.registry import RegistryEntry, RegistryUnavailable
from activity_tracker.timeutil import EPOCH

NOW = datetime(2025, 6, 1, 12, 0, 0)

ENDORSEMENT_POLICY = TrackerPolicyConfig(
    min_minutes=180,
    removal_warning_days=31,
    grace_period_days=180,
    window_days=180,
)


# -------------------------------------------------------------------------
# HTTP fakes
# -------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} Error', response=self)

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeHTTPSession:
    """Replays queued responses in order; a queued exception is raised instead."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []
        self.headers = {}

    def _next(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if not self.responses:
            raise requests.ConnectionError('no response queued')
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self._next('POST', url, **kwargs)

    def delete(self, url, **kwargs):
        return self._next('DELETE', url, **kwargs)


# -------------------------------------------------------------------------
# Collaborator fakes
# -------------------------------------------------------------------------

class FakeSessionLog:
    """Session log keyed by CID; None simulates an outage for that CID."""

    def __init__(self):
        self.sessions = {}
        self.ratings = {}
        self.failing = set()
        self.calls = []

    def fetch(self, subject_id, start):
        self.calls.append((subject_id, start))
        if subject_id in self.failing:
            raise RuntimeError('boom')
        raw = self.sessions.get(subject_id, [])
        if raw is None:
            return None
        return [ConnectionRecord.from_api(r) for r in raw]

    def fetch_rating(self, subject_id):
        return self.ratings.get(subject_id)

    @property
    def stats(self):
        return {'fetch_count': len(self.calls)}


class FakeRegistry:
    def __init__(self):
        self.entries = []
        self.roster = []
        self.available = True
        self.remove_ok = True
        self.removed = []

    def _check(self):
        if not self.available:
            raise RegistryUnavailable('registry down')

    def get_tier1_endorsements(self):
        self._check()
        return list(self.entries)

    def get_roster(self):
        self._check()
        return list(self.roster)

    def remove_tier1_endorsement(self, endorsement_id):
        self.removed.append(endorsement_id)
        if self.remove_ok:
            self.entries = [e for e in self.entries if e.entry_id != endorsement_id]
        return self.remove_ok

    def remove_roster_member(self, cid):
        self.removed.append(cid)
        if self.remove_ok:
            self.roster = [c for c in self.roster if c != cid]
        return self.remove_ok


class FakeNotifier:
    def __init__(self, ok=True):
        self.ok = ok
        self.sent = []

    def send(self, subject_id, title, message):
        self.sent.append((subject_id, title, message))
        return self.ok


def atc_session(callsign, minutes, start='2025-05-01T10:00:00Z'):
    return {'callsign': callsign, 'minutes_on_callsign': minutes, 'start': start}


# -------------------------------------------------------------------------
# Fixtures
# -------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    engine = build_engine('sqlite://', poolclass=StaticPool)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def session_log():
    return FakeSessionLog()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def tracker(session_log, registry):
    return EndorsementTracker(ENDORSEMENT_POLICY, session_log, PolicyProvider(), registry)


@pytest.fixture
def seed(session_factory, registry):
    """Add a registry entry and its matching local record; returns the record id."""
    counter = {'next': 1}

    def _seed(cid, position='EDDF_TWR', age_days=200, tracker='endorsement',
              last_synced_at=EPOCH, activity_minutes=0.0, removal_due_at=None,
              removal_notified=False, in_registry=True):
        registry_id = counter['next']
        counter['next'] += 1
        created = NOW - timedelta(days=age_days)
        if in_registry:
            registry.entries.append(RegistryEntry(registry_id, cid, position, created))

        with session_factory() as s:
            record = LifecycleRecord(
                tracker=tracker,
                registry_id=registry_id,
                subject_id=cid,
                position=position,
                activity_minutes=activity_minutes,
                removal_due_at=removal_due_at,
                removal_notified=removal_notified,
                last_synced_at=last_synced_at,
                registry_created_at=created,
            )
            s.add(record)
            s.commit()
            return record.id

    return _seed


def load(session_factory, record_id):
    with session_factory() as s:
        return s.get(LifecycleRecord, record_id)
