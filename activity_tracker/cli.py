"""
Cron entry points for the lifecycle jobs.

Commands:
    sync     Reconcile with the registry and refresh activity
               (stalest N by default, --all in batches, --subject for one CID)
    notify   Deliver pending removal warnings
    remove   Finalize due removals (optionally notifying first)
    debug    Show per-connection match decisions for one CID (read-only)
    init-db  Create database tables
    serve    Run the development API server

Every command exits 0 on success and 1 when a run was aborted (registry
unavailable) or an operator action was refused.

Example:
    activity-tracker sync --tracker endorsement --limit 5
    activity-tracker remove --tracker roster --notify
    activity-tracker debug --subject 1234567 --position EDDF_TWR
"""

import argparse
import logging
import sys
from typing import Dict, List, Optional

from activity_tracker.analytics.aggregator import aggregate
from activity_tracker.analytics.matcher import matches
from activity_tracker.analytics.positions import PositionDescriptor
from activity_tracker.config import config
from activity_tracker.ingestion.scheduler import SyncScheduler
from activity_tracker.lifecycle.jobs import FinalizationJob, NotificationJob, RemovalExecutor
from activity_tracker.lifecycle.operator import OperatorActionError, force_refresh
from activity_tracker.lifecycle.trackers import Tracker, build_trackers
from activity_tracker.models import init_db
from activity_tracker.models.base import get_session
from activity_tracker.models.lifecycle_record import records_for_subject
from activity_tracker.services.registry import RegistryUnavailable
from activity_tracker.timeutil import utcnow

logger = logging.getLogger('activity_tracker.cli')

TRACKER_CHOICES = ['endorsement', 'roster', 'waiting_list', 'all']


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog='activity-tracker', description='ATC activity lifecycle jobs')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    sync = sub.add_parser('sync', help='Reconcile and refresh activity')
    sync.add_argument('--tracker', choices=TRACKER_CHOICES, default='endorsement')
    mode = sync.add_mutually_exclusive_group()
    mode.add_argument('--limit', type=int, help='Stalest records to refresh (default SYNC_LIMIT)')
    mode.add_argument('--all', action='store_true', help='Refresh every record in batches')
    mode.add_argument('--subject', type=int, help='Refresh every record of one CID')
    sync.add_argument('--batch-size', type=int, help='Batch size for --all (default SYNC_BATCH_SIZE)')
    sync.add_argument('--pause', type=float, help='Seconds between batches for --all')

    notify = sub.add_parser('notify', help='Deliver pending removal warnings')
    notify.add_argument('--tracker', choices=TRACKER_CHOICES, default='all')

    remove = sub.add_parser('remove', help='Finalize due removals')
    remove.add_argument('--tracker', choices=TRACKER_CHOICES, default='all')
    remove.add_argument('--notify', action='store_true', help='Deliver pending warnings first')
    remove.add_argument('--dry-run', action='store_true', help='Log removals without executing them')

    debug = sub.add_parser('debug', help='Explain the activity measured for one CID')
    debug.add_argument('--subject', type=int, required=True, help='VATSIM CID')
    debug.add_argument('--tracker', choices=TRACKER_CHOICES[:-1], default='endorsement')
    debug.add_argument('--position', action='append', default=[],
                       help='Extra position to test (repeatable), e.g. EDDF_TWR')

    sub.add_parser('init-db', help='Create database tables')
    sub.add_parser('serve', help='Run the development API server')

    return parser.parse_args(argv)


def _selected(trackers: Dict[str, Tracker], kind: str) -> List[Tracker]:
    if kind == 'all':
        return list(trackers.values())
    return [trackers[kind]]


def run_sync(args: argparse.Namespace, trackers: Dict[str, Tracker]) -> int:
    exit_code = 0
    for tracker in _selected(trackers, args.tracker):
        scheduler = SyncScheduler(tracker, notification_job=NotificationJob(tracker))
        try:
            if args.subject is not None:
                report = force_refresh(scheduler, args.subject)
            elif args.all:
                report = scheduler.sync_all(batch_size=args.batch_size, pause_seconds=args.pause)
            else:
                report = scheduler.sync_stale(limit=args.limit)
        except RegistryUnavailable as e:
            logger.error(f'{tracker.kind} sync aborted, registry unavailable: {e}')
            exit_code = 1
            continue
        except OperatorActionError as e:
            logger.error(str(e))
            exit_code = 1
            continue
        print(report.to_dict())
    return exit_code


def run_notify(args: argparse.Namespace, trackers: Dict[str, Tracker]) -> int:
    for tracker in _selected(trackers, args.tracker):
        if not tracker.removal_enabled:
            continue
        print(NotificationJob(tracker).run().to_dict())
    return 0


def run_remove(args: argparse.Namespace, trackers: Dict[str, Tracker]) -> int:
    exit_code = 0
    dry_run = True if args.dry_run else None
    for tracker in _selected(trackers, args.tracker):
        if not tracker.removal_enabled:
            continue
        if args.notify:
            print(NotificationJob(tracker).run().to_dict())
        job = FinalizationJob(tracker, executor=RemovalExecutor(tracker, dry_run=dry_run))
        try:
            print(job.run().to_dict())
        except RegistryUnavailable as e:
            logger.error(f'{tracker.kind} removal aborted, registry unavailable: {e}')
            exit_code = 1
    return exit_code


def run_debug(args: argparse.Namespace, trackers: Dict[str, Tracker]) -> int:
    """Print which sessions each position credits. Nothing is written."""
    tracker = trackers[args.tracker]
    now = utcnow()

    with get_session() as session:
        stored = {r.position: r.activity_minutes for r in records_for_subject(session, args.subject, tracker.kind)}
    positions = list(stored) + [p.strip().upper() for p in args.position if p.strip().upper() not in stored]
    if not positions:
        logger.error(f'No {tracker.kind} records for {args.subject}; pass --position to test one')
        return 1

    start = tracker.window_start(now)
    connections = tracker.sessions.fetch(args.subject, start)
    if connections is None:
        logger.error(f'Session log unavailable for {args.subject}')
        return 1
    print(f'{len(connections)} ATC sessions for {args.subject} since {start}')

    for position in positions:
        descriptor = PositionDescriptor.parse(position)
        policy = tracker.policies.policy_for(descriptor)
        category = descriptor.category.name if descriptor.category else 'unknown'
        print(f'\n--- {position} ({category}, policy {policy.version}) ---')
        for conn in connections:
            mark = '+' if matches(descriptor, conn.callsign, policy) else ' '
            started = conn.start.isoformat() if conn.start else '?'
            print(f'  {mark} {conn.callsign:<14} {conn.minutes:>7.1f} min  {started}')

        result = aggregate(descriptor, connections, policy)
        print(f'Measured: {result.minutes:.1f} min over {result.matched_sessions} sessions '
              f'(floor {tracker.thresholds.min_minutes})')
        if position in stored:
            print(f'Stored:   {stored[position] or 0:.1f} min')
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if (args.verbose or config.debug) else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    if args.command == 'init-db':
        init_db()
        logger.info('Database initialized')
        return 0

    if args.command == 'serve':
        from activity_tracker.app import run_development_server
        run_development_server()
        return 0

    trackers = build_trackers()
    if args.command == 'sync':
        return run_sync(args, trackers)
    if args.command == 'notify':
        return run_notify(args, trackers)
    if args.command == 'debug':
        return run_debug(args, trackers)
    return run_remove(args, trackers)


if __name__ == '__main__':
    sys.exit(main())
