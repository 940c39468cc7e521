from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

from activity_tracker.analytics.policy import PolicyProvider
from activity_tracker.config import TrackerPolicyConfig
from activity_tracker.lifecycle.trackers import RosterTracker, WaitingListTracker
from activity_tracker.models.lifecycle_record import LifecycleRecord
from activity_tracker.services.registry import RegistryUnavailable

from conftest import NOW, atc_session

ROSTER_POLICY = TrackerPolicyConfig(min_minutes=1, removal_warning_days=35, grace_period_days=0, window_days=365)
WAITING_POLICY = TrackerPolicyConfig(min_minutes=600, removal_warning_days=0, grace_period_days=0, window_days=60)


def roster_record(cid=1001):
    return LifecycleRecord(tracker='roster', registry_id=cid, subject_id=cid, position='GER_RGN',
                           registry_created_at=NOW - timedelta(days=500))


def test_endorsement_window_and_measurement(tracker, session_log):
    session_log.sessions[1001] = [atc_session('EDDF_APP', 90), atc_session('EDDH_TWR', 30)]
    record = LifecycleRecord(tracker='endorsement', registry_id=1, subject_id=1001, position='EDDF_TWR',
                             registry_created_at=NOW)

    measurement = tracker.measure(record, NOW)

    assert measurement.minutes == 90
    assert session_log.calls == [(1001, (NOW - timedelta(days=180)).date())]


def test_roster_snapshot_uses_region_descriptor(session_log, registry):
    registry.roster = [1001, 1002]
    roster = RosterTracker(ROSTER_POLICY, session_log, PolicyProvider(), registry)

    entries = roster.fetch_registry()

    assert [e.entry_id for e in entries] == [1001, 1002]
    assert {e.position for e in entries} == {'GER_RGN'}


def test_empty_roster_is_treated_as_outage(session_log, registry):
    roster = RosterTracker(ROSTER_POLICY, session_log, PolicyProvider(), registry)

    with pytest.raises(RegistryUnavailable):
        roster.fetch_registry()


def test_roster_credits_any_german_session(session_log, registry):
    session_log.sessions[1001] = [atc_session('ETNL_TWR', 45), atc_session('LOWW_TWR', 60)]
    roster = RosterTracker(ROSTER_POLICY, session_log, PolicyProvider(), registry)

    measurement = roster.measure(roster_record(), NOW)

    assert measurement.minutes == 45
    assert not measurement.exempt


def test_recent_s1_promotion_exempts_inactive_member(session_log, registry):
    promoted = NOW - timedelta(days=40)
    session_log.ratings[1001] = {'rating': 2, 'lastratingchange': promoted.isoformat() + 'Z'}
    roster = RosterTracker(ROSTER_POLICY, session_log, PolicyProvider(), registry)

    measurement = roster.measure(roster_record(), NOW)

    assert measurement.exempt
    assert measurement.last_activity_at == promoted


@pytest.mark.parametrize('rating', [
    {'rating': 2, 'lastratingchange': (NOW - timedelta(days=400)).isoformat()},
    {'rating': 3, 'lastratingchange': (NOW - timedelta(days=5)).isoformat()},
    {'rating': 2, 'lastratingchange': None},
    None,
])
def test_old_or_other_ratings_are_not_exempt(session_log, registry, rating):
    session_log.ratings[1001] = rating
    roster = RosterTracker(ROSTER_POLICY, session_log, PolicyProvider(), registry)

    assert not roster.measure(roster_record(), NOW).exempt


def test_roster_notification_wording(session_log, registry):
    roster = RosterTracker(ROSTER_POLICY, session_log, PolicyProvider(), registry)
    record = roster_record()
    record.removal_due_at = datetime(2025, 7, 6)

    title, message = roster.notification(record)

    assert title == 'Removal from VATSIM Germany Roster'
    assert '06.07.2025' in message


def test_waiting_list_reads_export(tmp_path, session_log):
    export = tmp_path / 'waiting_list.json'
    export.write_text(json.dumps({'data': [
        {'id': 7, 'user_cid': 1001, 'position': 'eddf_twr', 'created_at': '2025-01-01T00:00:00Z'},
        {'id': 8, 'user_cid': 'oops', 'position': 'EDDF_APP'},
    ]}))
    waiting = WaitingListTracker(WAITING_POLICY, session_log, PolicyProvider(), export_path=str(export))

    entries = waiting.fetch_registry()

    assert len(entries) == 1
    assert entries[0].position == 'EDDF_TWR'
    assert entries[0].created_at == datetime(2025, 1, 1)
    assert waiting.removal_enabled is False


def test_waiting_list_without_export_is_unavailable(tmp_path, session_log):
    missing = WaitingListTracker(WAITING_POLICY, session_log, PolicyProvider(), export_path=str(tmp_path / 'nope'))
    unset = WaitingListTracker(WAITING_POLICY, session_log, PolicyProvider())

    with pytest.raises(RegistryUnavailable):
        missing.fetch_registry()
    with pytest.raises(RegistryUnavailable):
        unset.fetch_registry()
