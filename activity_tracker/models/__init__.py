"""
Database models for the activity tracker.

Schema priorities:
1. One independent row per tracked registry entry
2. Cheap stale-first selection for frequent small sync runs
3. Cheap scans for pending notifications and due removals
"""

from activity_tracker.models.base import Base, engine, SessionLocal, init_db, get_session, build_engine
from activity_tracker.models.lifecycle_record import (
    LifecycleRecord,
    stalest_records,
    records_for_subject,
    record_ids,
    pending_notifications,
    due_for_removal,
)

__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'init_db',
    'get_session',
    'build_engine',
    'LifecycleRecord',
    'stalest_records',
    'records_for_subject',
    'record_ids',
    'pending_notifications',
    'due_for_removal',
]
