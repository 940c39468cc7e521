"""
Sync scheduler - orchestrates activity reconciliation for one tracker.

Every run starts from the authoritative registry and ends with the
lifecycle state of each processed record persisted:

1. Reconcile: create records for new registry entries, delete orphans
2. Select: stalest N records, one subject's records, or everything
3. Measure: fetch sessions, aggregate minutes inside the rolling window
4. Transition: run the removal state machine, persist the result
5. Notify: (bulk modes) deliver the warning for newly marked records

Each record is measured and committed on its own, so one failure or a
killed run loses at most one record's work. A failed measurement leaves
the record untouched, last_synced_at included, so it is picked first again.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from sqlalchemy import select

from activity_tracker.config import config
from activity_tracker.lifecycle.jobs import NotificationJob, removal_fields
from activity_tracker.lifecycle.state_machine import Intent, evaluate
from activity_tracker.lifecycle.trackers import Tracker
from activity_tracker.models.base import SessionFactory, get_session
from activity_tracker.models.lifecycle_record import (
    LifecycleRecord, record_ids, records_for_subject, stalest_records,
)
from activity_tracker.timeutil import EPOCH, utcnow

logger = logging.getLogger(__name__)


class RefreshOutcome(str, Enum):
    UPDATED = 'updated'
    UNCHANGED = 'unchanged'      # source unavailable, record left as it was
    FAILED = 'failed'
    MISSING = 'missing'          # deleted by a concurrent run


@dataclass
class SyncReport:
    """Counters for one scheduler run."""
    tracker: str
    mode: str
    created: int = 0
    deleted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    marked: int = 0
    cleared: int = 0
    notified: int = 0
    started_at: datetime = field(default_factory=utcnow)

    @property
    def processed(self) -> int:
        return self.updated + self.unchanged + self.failed

    def count(self, outcome: RefreshOutcome) -> None:
        if outcome == RefreshOutcome.UPDATED:
            self.updated += 1
        elif outcome == RefreshOutcome.UNCHANGED:
            self.unchanged += 1
        elif outcome == RefreshOutcome.FAILED:
            self.failed += 1

    def to_dict(self) -> dict:
        data = asdict(self)
        data['started_at'] = self.started_at.isoformat()
        data['processed'] = self.processed
        return data


class SyncScheduler:
    """
    Runs activity sync for one tracker.

    notify_on_mark delivers the removal warning straight after a bulk run
    marks a record; the on-demand subject path never marks, so it never
    notifies either.
    """

    def __init__(
        self,
        tracker: Tracker,
        session_factory: Optional[SessionFactory] = None,
        notification_job: Optional[NotificationJob] = None,
        notify_on_mark: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.tracker = tracker
        self.session_factory = session_factory
        self.notification_job = notification_job
        self.notify_on_mark = config.sync.notify_on_mark if notify_on_mark is None else notify_on_mark
        self.clock = clock
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile(self, report: SyncReport) -> None:
        """
        Mirror the registry snapshot into the local store.

        Raises RegistryUnavailable (nothing is touched) if the snapshot
        cannot be fetched.
        """
        entries = {entry.entry_id: entry for entry in self.tracker.fetch_registry()}
        now = self.clock()

        with get_session(self.session_factory) as session:
            existing: Dict[int, LifecycleRecord] = {
                r.registry_id: r for r in session.scalars(
                    select(LifecycleRecord).where(LifecycleRecord.tracker == self.tracker.kind)
                )
            }

            for entry_id, entry in entries.items():
                record = existing.get(entry_id)
                if record is None:
                    session.add(LifecycleRecord(
                        tracker=self.tracker.kind,
                        registry_id=entry_id,
                        subject_id=entry.subject_id,
                        position=entry.position,
                        activity_minutes=0.0,
                        removal_notified=False,
                        last_synced_at=EPOCH,
                        registry_created_at=entry.created_at or now,
                    ))
                    report.created += 1
                elif record.position != entry.position:
                    # Positions are immutable; a changed one is a new grant upstream
                    logger.warning(
                        f'Registry position for {record!r} is now {entry.position}, keeping stored value'
                    )

            for registry_id, record in existing.items():
                if registry_id not in entries:
                    session.delete(record)
                    report.deleted += 1

        if report.created or report.deleted:
            logger.info(
                f'Reconciled {self.tracker.kind}: {report.created} new, {report.deleted} orphaned'
            )

    # -------------------------------------------------------------------------
    # Modes
    # -------------------------------------------------------------------------

    def sync_stale(self, limit: Optional[int] = None) -> SyncReport:
        """Refresh the limit records least recently synced."""
        limit = config.sync.limit if limit is None else limit
        report = SyncReport(tracker=self.tracker.kind, mode='stale')
        self.reconcile(report)

        with get_session(self.session_factory) as session:
            ids = [r.id for r in stalest_records(session, self.tracker.kind, limit)]

        for record_id in ids:
            self.refresh_record(record_id, report, allow_auto_mark=True)

        self._log_report(report)
        return report

    def sync_subject(self, subject_id: int) -> SyncReport:
        """
        Refresh every record of one subject, on demand.

        May clear a pending removal but never starts one.
        """
        report = SyncReport(tracker=self.tracker.kind, mode='subject')
        self.reconcile(report)

        with get_session(self.session_factory) as session:
            ids = [r.id for r in records_for_subject(session, subject_id, self.tracker.kind)]

        for record_id in ids:
            self.refresh_record(record_id, report, allow_auto_mark=False)

        self._log_report(report)
        return report

    def sync_all(self, batch_size: Optional[int] = None, pause_seconds: Optional[float] = None) -> SyncReport:
        """Refresh every record in fixed-size batches with a pause in between."""
        batch_size = config.sync.batch_size if batch_size is None else batch_size
        if batch_size < 1:
            raise ValueError(f'batch_size must be at least 1, got {batch_size}')
        pause = config.sync.batch_pause_seconds if pause_seconds is None else pause_seconds
        report = SyncReport(tracker=self.tracker.kind, mode='all')
        self.reconcile(report)

        with get_session(self.session_factory) as session:
            ids = record_ids(session, self.tracker.kind)

        batches = [ids[i:i + batch_size] for i in range(0, len(ids), batch_size)]
        for index, batch in enumerate(batches, start=1):
            logger.info(f'Syncing {self.tracker.kind} batch {index}/{len(batches)} ({len(batch)} records)')
            for record_id in batch:
                self.refresh_record(record_id, report, allow_auto_mark=True)
            if index < len(batches) and pause > 0:
                self._sleep(pause)

        self._log_report(report)
        return report

    # -------------------------------------------------------------------------
    # Per-record refresh
    # -------------------------------------------------------------------------

    def refresh_record(self, record_id: int, report: SyncReport, allow_auto_mark: bool = True) -> RefreshOutcome:
        """Measure one record and persist its next lifecycle state."""
        try:
            outcome, marked = self._refresh(record_id, report, allow_auto_mark)
        except Exception as e:
            logger.error(f'Sync failed for {self.tracker.kind} record {record_id}: {e}')
            outcome, marked = RefreshOutcome.FAILED, False

        report.count(outcome)

        if marked and self.notify_on_mark and self.notification_job is not None:
            if self.notification_job.notify_record(record_id):
                report.notified += 1

        return outcome

    def _refresh(self, record_id: int, report: SyncReport, allow_auto_mark: bool):
        now = self.clock()

        with get_session(self.session_factory) as session:
            snapshot = session.get(LifecycleRecord, record_id)
        if snapshot is None:
            return RefreshOutcome.MISSING, False

        # Network I/O happens outside any open transaction
        measurement = self.tracker.measure(snapshot, now)
        if measurement is None:
            return RefreshOutcome.UNCHANGED, False

        with get_session(self.session_factory) as session:
            record = session.get(LifecycleRecord, record_id)
            if record is None:
                return RefreshOutcome.MISSING, False

            transition = evaluate(
                removal_fields(record),
                measurement.minutes,
                self.tracker.thresholds,
                now,
                allow_auto_mark=allow_auto_mark and self.tracker.removal_enabled,
                exempt=measurement.exempt,
            )

            record.activity_minutes = measurement.minutes
            record.last_activity_at = measurement.last_activity_at
            record.removal_due_at = transition.removal_due_at
            record.removal_notified = transition.removal_notified
            record.last_synced_at = now

            if Intent.REPAIR in transition.intents:
                logger.warning(f'Repaired notified flag without deadline on {record!r}')
            if transition.marked:
                report.marked += 1
                logger.info(f'{record!r} marked for removal on {transition.removal_due_at.date()}')
            if transition.cleared:
                report.cleared += 1
                logger.info(f'{record!r} recovered, pending removal cleared')

            logger.debug(
                f'{record!r}: {measurement.minutes:.0f} min, state {transition.state.value}'
            )

        return RefreshOutcome.UPDATED, transition.marked

    def _log_report(self, report: SyncReport) -> None:
        logger.info(
            f'{report.tracker} sync ({report.mode}): {report.updated} updated, '
            f'{report.unchanged} unchanged, {report.failed} failed, '
            f'{report.marked} marked, {report.cleared} cleared'
        )

