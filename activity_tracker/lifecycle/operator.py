"""
Operator-facing lifecycle actions.

- subject_status: per-subject lifecycle read used by user-facing views
- mark_for_removal: set a removal deadline directly, bypassing the activity
  check but not the notify -> finalize pipeline
- force_refresh: re-sync one subject now (never starts a removal)

Failures are raised as OperatorActionError so the API and CLI can report
them synchronously.
"""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional

from activity_tracker.lifecycle.state_machine import state_of
from activity_tracker.lifecycle.trackers import Tracker
from activity_tracker.models.base import SessionFactory, get_session
from activity_tracker.models.lifecycle_record import LifecycleRecord, records_for_subject
from activity_tracker.services.registry import RegistryUnavailable
from activity_tracker.timeutil import EPOCH, utcnow

if TYPE_CHECKING:
    from activity_tracker.ingestion.scheduler import SyncReport, SyncScheduler

logger = logging.getLogger(__name__)


class OperatorActionError(Exception):
    """An operator action was refused or could not be carried out."""
    status_code = 409


class RecordNotFound(OperatorActionError):
    status_code = 404


class ServiceUnavailable(OperatorActionError):
    status_code = 503


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def display_status(activity_minutes: float, min_minutes: float) -> str:
    """active at the floor, warning from half of it, removal below."""
    minutes = activity_minutes or 0
    if minutes >= min_minutes:
        return 'active'
    if minutes >= min_minutes / 2:
        return 'warning'
    return 'removal'


def progress_percent(activity_minutes: float, min_minutes: float) -> float:
    if min_minutes <= 0:
        return 100.0
    return round(min((activity_minutes or 0) / min_minutes * 100, 100.0), 1)


def record_status(record: LifecycleRecord, tracker: Tracker, now: Optional[datetime] = None) -> dict:
    """Serialize one record with its derived lifecycle state."""
    now = now or utcnow()
    thresholds = tracker.thresholds
    due = record.removal_due_at

    return {
        'id': record.id,
        'tracker': record.tracker,
        'registry_id': record.registry_id,
        'subject_id': record.subject_id,
        'position': record.position,
        'activity_minutes': round(record.activity_minutes or 0, 1),
        'activity_hours': record.activity_hours,
        'min_minutes': thresholds.min_minutes,
        'progress': progress_percent(record.activity_minutes, thresholds.min_minutes),
        'status': display_status(record.activity_minutes, thresholds.min_minutes),
        'state': state_of(record.activity_minutes, due, record.removal_notified, thresholds).value,
        'last_activity_at': _iso(record.last_activity_at),
        'removal_due_at': _iso(due),
        'removal_in_days': max((due - now).days, 0) if due else None,
        'removal_notified': bool(record.removal_notified),
        'last_synced_at': _iso(record.last_synced_at),
    }


def subject_status(
    subject_id: int,
    trackers: Dict[str, Tracker],
    session_factory: Optional[SessionFactory] = None,
) -> List[dict]:
    """Lifecycle status of every record held by one subject."""
    now = utcnow()
    with get_session(session_factory) as session:
        records = records_for_subject(session, subject_id)
        return [
            record_status(r, trackers[r.tracker], now)
            for r in records if r.tracker in trackers
        ]


def mark_for_removal(
    record_id: int,
    trackers: Dict[str, Tracker],
    session_factory: Optional[SessionFactory] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Set removal_due_at = now + warning days on one record.

    Bypasses the grace period only. Refused for unknown records, records
    already marked, records with sufficient activity and trackers that
    never remove. The record goes back to the head of the stale queue so
    its activity is re-measured before the deadline.
    """
    now = now or utcnow()
    with get_session(session_factory) as session:
        record = session.get(LifecycleRecord, record_id)
        if record is None:
            raise RecordNotFound(f'Record {record_id} not found')

        tracker = trackers.get(record.tracker)
        if tracker is None or not tracker.removal_enabled:
            raise OperatorActionError(f'{record.tracker} records cannot be removed')
        if record.removal_due_at is not None:
            raise OperatorActionError(
                f'Record {record_id} is already marked for removal on {record.removal_due_at.date()}'
            )
        if (record.activity_minutes or 0) >= tracker.thresholds.min_minutes:
            raise OperatorActionError(
                f'Record {record_id} has sufficient activity and cannot be marked for removal'
            )

        record.removal_due_at = now + timedelta(days=tracker.thresholds.removal_warning_days)
        record.removal_notified = False
        record.last_synced_at = EPOCH
        logger.info(f'Operator marked {record!r} for removal on {record.removal_due_at.date()}')
        return record_status(record, tracker, now)


def force_refresh(scheduler: 'SyncScheduler', subject_id: int) -> 'SyncReport':
    """Re-sync one subject now; clears a pending removal if they recovered."""
    try:
        report = scheduler.sync_subject(subject_id)
    except RegistryUnavailable as e:
        raise ServiceUnavailable(str(e)) from e

    if report.processed == 0:
        raise RecordNotFound(f'No {scheduler.tracker.kind} records for subject {subject_id}')
    return report
