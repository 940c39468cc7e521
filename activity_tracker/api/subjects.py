"""
Lifecycle API endpoints.

Provides endpoints for:
- GET  /api/subjects/<cid>                       - Lifecycle status of every record of a controller
- POST /api/subjects/<cid>/refresh               - Force-refresh a controller (never starts a removal)
- POST /api/records/<id>/mark-for-removal        - Operator-initiated removal deadline
- GET  /api/status                               - System status and health
"""

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from activity_tracker.config import config
from activity_tracker.ingestion.scheduler import SyncScheduler
from activity_tracker.lifecycle.operator import (
    OperatorActionError, force_refresh, mark_for_removal, subject_status,
)
from activity_tracker.models.base import get_session

logger = logging.getLogger(__name__)

subjects_bp = Blueprint('subjects', __name__, url_prefix='/api')


def _trackers() -> dict:
    return current_app.config['TRACKERS']


def _session_factory():
    return current_app.config.get('SESSION_FACTORY')


@subjects_bp.errorhandler(OperatorActionError)
def handle_operator_error(e: OperatorActionError):
    logger.warning(f'Operator action refused: {e}')
    return jsonify({'error': str(e)}), e.status_code


@subjects_bp.route('/subjects/<int:subject_id>', methods=['GET'])
def get_subject(subject_id: int):
    """
    Current lifecycle status of one controller.

    Reads stored state only; no external calls are made here.
    """
    start_time = time.perf_counter()

    records = subject_status(subject_id, _trackers(), _session_factory())
    if not records:
        return jsonify({'error': 'Subject not tracked'}), 404

    query_time_ms = (time.perf_counter() - start_time) * 1000

    return jsonify({
        'subject_id': subject_id,
        'records': records,
        'count': len(records),
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    })


@subjects_bp.route('/subjects/<int:subject_id>/refresh', methods=['POST'])
def refresh_subject(subject_id: int):
    """
    Re-sync one controller now.

    Query parameters:
    - tracker: endorsement|roster|waiting_list (default endorsement)
    """
    kind = request.args.get('tracker', 'endorsement')
    tracker = _trackers().get(kind)
    if tracker is None:
        return jsonify({'error': f'Unknown tracker: {kind}'}), 400

    scheduler = SyncScheduler(tracker, session_factory=_session_factory())
    report = force_refresh(scheduler, subject_id)

    return jsonify({
        'subject_id': subject_id,
        'sync': report.to_dict(),
        'records': subject_status(subject_id, _trackers(), _session_factory()),
    })


@subjects_bp.route('/records/<int:record_id>/mark-for-removal', methods=['POST'])
def mark_record(record_id: int):
    """Set the removal deadline of one record; notification and removal follow as usual."""
    record = mark_for_removal(record_id, _trackers(), _session_factory())
    return jsonify({'success': True, 'record': record})


@subjects_bp.route('/status', methods=['GET'])
def get_system_status():
    """
    System health and configuration summary.

    Returns:
    - Database connectivity
    - Tracker thresholds and session-log cache statistics
    - Which external integrations are configured
    """
    db_ok = True
    try:
        with get_session(_session_factory()) as session:
            session.execute(text('SELECT 1'))
    except Exception as e:
        db_ok = False
        logger.error(f'Database health check failed: {e}')

    trackers = {
        kind: {
            'min_minutes': t.thresholds.min_minutes,
            'grace_period_days': t.thresholds.grace_period_days,
            'removal_warning_days': t.thresholds.removal_warning_days,
            'window_days': t.window_days,
            'removal_enabled': t.removal_enabled,
        }
        for kind, t in _trackers().items()
    }
    sessions = next(iter(_trackers().values())).sessions if _trackers() else None

    return jsonify({
        'status': 'healthy' if db_ok else 'degraded',
        'database': {
            'connected': db_ok,
            'type': 'sqlite' if config.database.is_sqlite else 'postgresql',
        },
        'trackers': trackers,
        'session_log': sessions.stats if sessions else None,
        'config': {
            'registry_configured': config.registry.is_configured,
            'notifier_configured': config.notifier.is_configured,
            'removal_dry_run': config.removal.dry_run,
            'sync_limit': config.sync.limit,
        },
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })
