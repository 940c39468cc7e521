from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from activity_tracker.analytics.policy import PolicyProvider
from activity_tracker.ingestion.http import RateLimiter
from activity_tracker.ingestion.scheduler import RefreshOutcome, SyncReport, SyncScheduler
from activity_tracker.ingestion.session_log import SessionLogSource
from activity_tracker.ingestion.vatsim_client import VatsimClient
from activity_tracker.lifecycle.jobs import NotificationJob
from activity_tracker.lifecycle.trackers import EndorsementTracker
from activity_tracker.models.lifecycle_record import LifecycleRecord
from activity_tracker.services.registry import RegistryEntry, RegistryUnavailable
from activity_tracker.timeutil import EPOCH

from conftest import ENDORSEMENT_POLICY, NOW, FakeHTTPSession, FakeResponse, atc_session, load


def make_scheduler(tracker, session_factory, **kwargs):
    kwargs.setdefault('notify_on_mark', False)
    return SyncScheduler(tracker, session_factory=session_factory, clock=lambda: NOW, **kwargs)


def count_records(session_factory):
    with session_factory() as s:
        return s.scalar(select(func.count()).select_from(LifecycleRecord))


# -------------------------------------------------------------------------
# Reconciliation
# -------------------------------------------------------------------------

def test_reconcile_creates_missing_and_deletes_orphans(tracker, session_factory, registry, seed):
    kept = seed(1001)
    orphan = seed(1002, in_registry=False)
    granted = NOW - timedelta(days=3)
    registry.entries.append(RegistryEntry(50, 1003, 'EDDH_APP', granted))
    registry.entries.append(RegistryEntry(51, 1004, 'EDDM_TWR', None))

    report = SyncReport(tracker='endorsement', mode='test')
    make_scheduler(tracker, session_factory).reconcile(report)

    assert report.created == 2
    assert report.deleted == 1
    assert load(session_factory, kept) is not None
    assert load(session_factory, orphan) is None

    with session_factory() as s:
        new = s.scalar(select(LifecycleRecord).where(LifecycleRecord.registry_id == 50))
        undated = s.scalar(select(LifecycleRecord).where(LifecycleRecord.registry_id == 51))
    assert new.subject_id == 1003
    assert new.position == 'EDDH_APP'
    assert new.last_synced_at == EPOCH
    assert new.registry_created_at == granted
    assert new.removal_due_at is None
    assert undated.registry_created_at == NOW


def test_reconcile_never_rewrites_position(tracker, session_factory, registry, seed):
    record_id = seed(1001, position='EDDF_TWR')
    registry.entries[0] = RegistryEntry(registry.entries[0].entry_id, 1001, 'EDDF_APP', None)

    make_scheduler(tracker, session_factory).reconcile(SyncReport(tracker='endorsement', mode='test'))

    assert load(session_factory, record_id).position == 'EDDF_TWR'


def test_registry_outage_aborts_without_touching_records(tracker, session_factory, registry, seed):
    record_id = seed(1001, in_registry=False)
    registry.available = False

    with pytest.raises(RegistryUnavailable):
        make_scheduler(tracker, session_factory).sync_stale(limit=5)

    assert load(session_factory, record_id) is not None


# -------------------------------------------------------------------------
# Selection
# -------------------------------------------------------------------------

def test_stale_first_selects_exactly_the_oldest(tracker, session_factory, session_log, seed):
    base = datetime(2025, 5, 1)
    offsets = [5, 1, 9, 3, 7, 2]
    ids = {}
    for i, offset in enumerate(offsets):
        ids[offset] = seed(2000 + i, last_synced_at=base + timedelta(hours=offset))

    make_scheduler(tracker, session_factory).sync_stale(limit=3)

    refreshed = {offset for offset, rid in ids.items() if load(session_factory, rid).last_synced_at == NOW}
    assert refreshed == {1, 2, 3}
    assert len(session_log.calls) == 3


def test_sync_subject_only_touches_that_subject(tracker, session_factory, session_log, seed):
    mine = [seed(3001, position='EDDF_TWR'), seed(3001, position='EDDH_APP')]
    other = seed(3002)

    report = make_scheduler(tracker, session_factory).sync_subject(3001)

    assert report.updated == 2
    assert all(load(session_factory, rid).last_synced_at == NOW for rid in mine)
    assert load(session_factory, other).last_synced_at == EPOCH


def test_sync_all_runs_batches_with_pauses(tracker, session_factory, seed):
    ids = [seed(4000 + i) for i in range(5)]
    pauses = []

    scheduler = make_scheduler(tracker, session_factory, sleep=pauses.append)
    report = scheduler.sync_all(batch_size=2, pause_seconds=1.5)

    assert report.updated == 5
    assert pauses == [1.5, 1.5]
    assert all(load(session_factory, rid).last_synced_at == NOW for rid in ids)


def test_explicit_zero_limit_reconciles_only(tracker, session_factory, session_log, seed):
    record_id = seed(4101)

    report = make_scheduler(tracker, session_factory).sync_stale(limit=0)

    assert report.processed == 0
    assert session_log.calls == []
    assert load(session_factory, record_id).last_synced_at == EPOCH


def test_sync_all_rejects_empty_batches(tracker, session_factory):
    with pytest.raises(ValueError):
        make_scheduler(tracker, session_factory).sync_all(batch_size=0)


# -------------------------------------------------------------------------
# Per-record refresh
# -------------------------------------------------------------------------

def test_activity_is_overwritten_not_added(tracker, session_factory, session_log, seed):
    record_id = seed(5001, activity_minutes=500)
    session_log.sessions[5001] = [atc_session('EDDF_TWR', 200, start='2025-05-20T10:00:00Z')]
    scheduler = make_scheduler(tracker, session_factory)

    scheduler.sync_stale(limit=10)
    scheduler.sync_stale(limit=10)

    record = load(session_factory, record_id)
    assert record.activity_minutes == 200
    assert record.last_activity_at == datetime(2025, 5, 20, 10, 0)


def test_source_outage_leaves_record_unchanged(tracker, session_factory, session_log, seed):
    synced = datetime(2025, 5, 30)
    record_id = seed(5002, activity_minutes=42, last_synced_at=synced)
    session_log.sessions[5002] = None

    report = make_scheduler(tracker, session_factory).sync_stale(limit=10)

    record = load(session_factory, record_id)
    assert report.unchanged == 1
    assert record.activity_minutes == 42
    assert record.last_synced_at == synced
    assert record.removal_due_at is None


def test_rejected_subject_does_not_block_the_queue(session_factory, registry, seed):
    http = FakeHTTPSession([
        FakeResponse(status_code=404),
        FakeResponse({'results': [atc_session('EDDF_TWR', 200)], 'next': None}),
    ])
    client = VatsimClient(rate_limiter=RateLimiter(0, sleep=lambda s: None), session=http)
    sessions = SessionLogSource(client, attempts=3, retry_delay=15, cache_ttl_seconds=0, sleep=lambda s: None)
    tracker = EndorsementTracker(ENDORSEMENT_POLICY, sessions, PolicyProvider(), registry)
    rejected = seed(111, last_synced_at=datetime(2025, 1, 1))
    healthy = seed(222, last_synced_at=datetime(2025, 1, 2))
    scheduler = make_scheduler(tracker, session_factory)

    scheduler.sync_stale(limit=1)
    scheduler.sync_stale(limit=1)

    assert load(session_factory, rejected).last_synced_at == NOW
    assert load(session_factory, rejected).activity_minutes == 0
    assert load(session_factory, healthy).last_synced_at == NOW
    assert load(session_factory, healthy).activity_minutes == 200
    assert len(http.calls) == 2


def test_per_record_failure_does_not_abort_batch(tracker, session_factory, session_log, seed):
    broken = seed(5003, last_synced_at=datetime(2025, 1, 1))
    healthy = seed(5004, last_synced_at=datetime(2025, 1, 2))
    session_log.failing.add(5003)

    report = make_scheduler(tracker, session_factory).sync_stale(limit=10)

    assert report.failed == 1
    assert report.updated == 1
    assert load(session_factory, broken).last_synced_at == datetime(2025, 1, 1)
    assert load(session_factory, healthy).last_synced_at == NOW


def test_inactive_old_record_is_marked_then_kept_then_cleared(tracker, session_factory, session_log, seed):
    record_id = seed(6001, age_days=200)
    scheduler = make_scheduler(tracker, session_factory)

    first = scheduler.sync_stale(limit=1)
    assert first.marked == 1
    record = load(session_factory, record_id)
    assert record.removal_due_at == NOW + timedelta(days=31)
    assert record.removal_notified is False

    second = scheduler.sync_stale(limit=1)
    assert second.marked == 0
    assert load(session_factory, record_id).removal_due_at == NOW + timedelta(days=31)

    session_log.sessions[6001] = [atc_session('EDDF_TWR', 200)]
    third = scheduler.sync_stale(limit=1)
    assert third.cleared == 1
    record = load(session_factory, record_id)
    assert record.removal_due_at is None
    assert record.removal_notified is False


def test_young_record_is_not_marked(tracker, session_factory, seed):
    record_id = seed(6002, age_days=10)

    make_scheduler(tracker, session_factory).sync_stale(limit=1)

    assert load(session_factory, record_id).removal_due_at is None


def test_on_demand_sync_never_marks(tracker, session_factory, seed):
    record_id = seed(6003, age_days=400)

    report = make_scheduler(tracker, session_factory).sync_subject(6003)

    assert report.marked == 0
    assert load(session_factory, record_id).removal_due_at is None


def test_on_demand_sync_clears_recovered_subject(tracker, session_factory, session_log, seed):
    record_id = seed(6004, removal_due_at=NOW + timedelta(days=3), removal_notified=True)
    session_log.sessions[6004] = [atc_session('EDDF_APP', 181)]

    make_scheduler(tracker, session_factory).sync_subject(6004)

    record = load(session_factory, record_id)
    assert record.removal_due_at is None
    assert record.removal_notified is False


def test_bulk_sync_notifies_newly_marked_records(tracker, session_factory, notifier, seed):
    record_id = seed(7001, age_days=365)
    job = NotificationJob(tracker, notifier=notifier, session_factory=session_factory)

    report = make_scheduler(tracker, session_factory, notification_job=job, notify_on_mark=True).sync_stale(limit=1)

    assert report.notified == 1
    assert notifier.sent[0][0] == 7001
    assert load(session_factory, record_id).removal_notified is True


def test_refresh_of_deleted_record_is_missing(tracker, session_factory):
    report = SyncReport(tracker='endorsement', mode='test')
    outcome = make_scheduler(tracker, session_factory).refresh_record(999, report)

    assert outcome == RefreshOutcome.MISSING
    assert report.processed == 0
    assert count_records(session_factory) == 0
