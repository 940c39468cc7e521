"""
Removal jobs - notification and finalization.

Both run independently of activity sync so an unreachable notifier never
blocks reconciliation and a failed removal is simply retried next run.

NotificationJob
    records with removal_due_at set and removal_notified false:
    send the warning, set removal_notified on success.

FinalizationJob
    notified records whose deadline has passed: re-check the registry,
    fresh activity and grace eligibility, then hand the record to the
    RemovalExecutor and delete it locally once the registry confirms.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Callable, Optional, Set

from activity_tracker.config import config
from activity_tracker.lifecycle.state_machine import FinalizeDecision, RemovalFields, decide_finalization
from activity_tracker.lifecycle.trackers import Tracker
from activity_tracker.models.base import SessionFactory, get_session
from activity_tracker.models.lifecycle_record import LifecycleRecord, due_for_removal, pending_notifications
from activity_tracker.services.notifier import Notifier
from activity_tracker.timeutil import utcnow

logger = logging.getLogger(__name__)


def removal_fields(record: LifecycleRecord) -> RemovalFields:
    return RemovalFields(
        removal_due_at=record.removal_due_at,
        removal_notified=bool(record.removal_notified),
        registry_created_at=record.registry_created_at,
    )


# -------------------------------------------------------------------------
# Notification
# -------------------------------------------------------------------------

@dataclass
class NotificationReport:
    tracker: str
    sent: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationJob:
    """Deliver pending removal warnings for one tracker."""

    def __init__(
        self,
        tracker: Tracker,
        notifier: Optional[Notifier] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.tracker = tracker
        self.notifier = notifier or Notifier.from_config()
        self.session_factory = session_factory

    def run(self) -> NotificationReport:
        report = NotificationReport(tracker=self.tracker.kind)

        with get_session(self.session_factory) as session:
            ids = [r.id for r in pending_notifications(session, self.tracker.kind)]

        if ids:
            logger.info(f'{len(ids)} pending {self.tracker.kind} removal warnings')

        for record_id in ids:
            if self.notify_record(record_id):
                report.sent += 1
            else:
                report.failed += 1

        return report

    def notify_record(self, record_id: int) -> bool:
        """
        Send the warning for one record. True once the record is notified.

        The flag is only set if the deadline is still the one the warning
        announced; a concurrent recovery wins.
        """
        with get_session(self.session_factory) as session:
            record = session.get(LifecycleRecord, record_id)
            if record is None or record.removal_due_at is None:
                return False
            if record.removal_notified:
                return True
            due = record.removal_due_at
            subject_id = record.subject_id
            title, message = self.tracker.notification(record)

        if not self.notifier.send(subject_id, title, message):
            logger.warning(f'Removal warning for record {record_id} not delivered, retrying next run')
            return False

        with get_session(self.session_factory) as session:
            record = session.get(LifecycleRecord, record_id)
            if record is None or record.removal_due_at != due:
                logger.info(f'Record {record_id} changed while notifying, flag not set')
                return False
            record.removal_notified = True

        logger.info(f'Notified {subject_id} of removal on {due.date()} (record {record_id})')
        return True


# -------------------------------------------------------------------------
# Removal
# -------------------------------------------------------------------------

class RemovalExecutor:
    """Issues the registry delete for a confirmed removal."""

    def __init__(self, tracker: Tracker, dry_run: Optional[bool] = None):
        self.tracker = tracker
        self.dry_run = config.removal.dry_run if dry_run is None else dry_run

    def execute(self, record: LifecycleRecord) -> bool:
        """True only if the registry confirmed the removal."""
        if self.dry_run:
            logger.info(f'[dry run] Would remove {record!r}')
            return False

        ok = self.tracker.remove(record)
        if ok:
            logger.info(f'Removed {record!r} from the registry')
        else:
            logger.error(f'Registry removal failed for {record!r}, retrying next run')
        return ok


@dataclass
class FinalizationReport:
    tracker: str
    removed: int = 0
    cancelled: int = 0
    stale: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class FinalizationJob:
    """
    Finalize due removals for one tracker.

    Raises RegistryUnavailable before touching any record if the registry
    snapshot cannot be fetched.
    """

    def __init__(
        self,
        tracker: Tracker,
        executor: Optional[RemovalExecutor] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tracker = tracker
        self.executor = executor or RemovalExecutor(tracker)
        self.session_factory = session_factory
        self.clock = clock

    def run(self) -> FinalizationReport:
        report = FinalizationReport(tracker=self.tracker.kind)
        if not self.tracker.removal_enabled:
            logger.debug(f'{self.tracker.kind} tracker never removes, skipping finalization')
            return report

        now = self.clock()
        with get_session(self.session_factory) as session:
            candidates = due_for_removal(session, self.tracker.kind, now)

        if not candidates:
            return report

        # One snapshot per run
        in_registry = {entry.entry_id for entry in self.tracker.fetch_registry()}
        logger.info(f'Finalizing {len(candidates)} due {self.tracker.kind} removals')

        for record in candidates:
            try:
                self._finalize(record, in_registry, now, report)
            except Exception as e:
                report.failed += 1
                report.errors.append(f'{record.id}: {e}')
                logger.error(f'Finalization failed for {record!r}: {e}')

        return report

    def _finalize(self, record: LifecycleRecord, in_registry: Set[int],
                  now: datetime, report: FinalizationReport) -> None:
        present = record.registry_id in in_registry

        fresh_minutes = 0.0
        measurement = None
        if present:
            measurement = self.tracker.measure(record, now)
            if measurement is None:
                logger.warning(f'No fresh activity for {record!r}, finalization deferred')
                report.skipped += 1
                return
            fresh_minutes = self.tracker.thresholds.min_minutes if measurement.exempt else measurement.minutes

        decision = decide_finalization(removal_fields(record), present, fresh_minutes,
                                       self.tracker.thresholds, now)

        if decision == FinalizeDecision.NOT_DUE:
            report.skipped += 1
            return

        if decision == FinalizeDecision.REMOVE and not self.executor.execute(record):
            if self.executor.dry_run:
                report.skipped += 1
            else:
                report.failed += 1
            return

        with get_session(self.session_factory) as session:
            current = session.get(LifecycleRecord, record.id)
            if current is None:
                return

            if decision == FinalizeDecision.DELETE_STALE:
                logger.info(f'{record!r} no longer in the registry, deleting local record')
                session.delete(current)
                report.stale += 1

            elif decision == FinalizeDecision.REMOVE:
                session.delete(current)
                self.tracker.after_removal(session, current)
                report.removed += 1

            else:
                # Recovered or no longer eligible: the removal is cancelled
                if measurement is not None:
                    current.activity_minutes = measurement.minutes
                    current.last_activity_at = measurement.last_activity_at
                current.clear_removal()
                report.cancelled += 1
                logger.info(f'Removal of {record!r} cancelled ({decision.value})')
