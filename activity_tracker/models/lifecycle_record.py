"""
LifecycleRecord model - activity and removal state of a tracked subject.

One row per registry entry being watched: a tier-1 endorsement, a roster
membership or a waiting-list entry. The sync scheduler overwrites the
activity fields; the removal jobs drive removal_due_at / removal_notified.

Design notes:
- (tracker, registry_id) is unique; reconciliation upserts on it
- last_synced_at orders the stale-first scheduler, so it is indexed
- removal_notified is only meaningful while removal_due_at is set
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, UniqueConstraint, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from activity_tracker.analytics.positions import PositionDescriptor
from activity_tracker.models.base import Base
from activity_tracker.timeutil import EPOCH, utcnow


class LifecycleRecord(Base):
    """
    Lifecycle state of one tracked registry entry.

    Activity fields mirror the latest successful reconciliation; they are
    left untouched when the session-log source is unavailable.
    """

    __tablename__ = 'lifecycle_records'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identification
    tracker: Mapped[str] = mapped_column(
        String(20),
        comment='Tracker kind: endorsement, roster or waiting_list'
    )

    registry_id: Mapped[int] = mapped_column(
        Integer,
        comment='Entry id in the authoritative registry'
    )

    subject_id: Mapped[int] = mapped_column(
        Integer,
        index=True,
        comment='VATSIM CID'
    )

    position: Mapped[str] = mapped_column(
        String(32),
        comment='Position descriptor, e.g. EDDF_TWR (immutable)'
    )

    # Activity (rolling window, overwritten on each sync)
    activity_minutes: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        comment='Matched minutes inside the rolling window'
    )

    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment='Latest matched session start'
    )

    # Removal lifecycle
    removal_due_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment='Removal deadline, set once per low-activity episode'
    )

    removal_notified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment='Removal warning delivered'
    )

    # Scheduling and eligibility
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=EPOCH,
        comment='Last successful activity sync'
    )

    registry_created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        comment='Grant date in the registry, anchors the grace period'
    )

    # Record timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        comment='First seen timestamp'
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        comment='Last update timestamp'
    )

    __table_args__ = (
        UniqueConstraint('tracker', 'registry_id', name='uq_lifecycle_tracker_registry'),
        # Stale-first selection
        Index('ix_lifecycle_tracker_synced', 'tracker', 'last_synced_at'),
        # Notification and finalization scans
        Index('ix_lifecycle_removal', 'tracker', 'removal_due_at', 'removal_notified'),
    )

    def __repr__(self) -> str:
        return f'<LifecycleRecord {self.tracker}:{self.registry_id} {self.subject_id} {self.position}>'

    @property
    def descriptor(self) -> PositionDescriptor:
        return PositionDescriptor.parse(self.position)

    @property
    def activity_hours(self) -> float:
        return round((self.activity_minutes or 0) / 60, 1)

    def clear_removal(self) -> None:
        """Cancel a pending removal; both fields change together."""
        self.removal_due_at = None
        self.removal_notified = False


# -------------------------------------------------------------------------
# Query helpers
# -------------------------------------------------------------------------

def stalest_records(session: Session, tracker: str, limit: int) -> List[LifecycleRecord]:
    """The limit records with the oldest last_synced_at (id breaks ties)."""
    stmt = (
        select(LifecycleRecord)
        .where(LifecycleRecord.tracker == tracker)
        .order_by(LifecycleRecord.last_synced_at.asc(), LifecycleRecord.id.asc())
        .limit(limit)
    )
    return list(session.scalars(stmt))


def records_for_subject(session: Session, subject_id: int, tracker: Optional[str] = None) -> List[LifecycleRecord]:
    stmt = select(LifecycleRecord).where(LifecycleRecord.subject_id == subject_id)
    if tracker:
        stmt = stmt.where(LifecycleRecord.tracker == tracker)
    return list(session.scalars(stmt.order_by(LifecycleRecord.tracker, LifecycleRecord.position)))


def record_ids(session: Session, tracker: str) -> List[int]:
    stmt = (
        select(LifecycleRecord.id)
        .where(LifecycleRecord.tracker == tracker)
        .order_by(LifecycleRecord.id.asc())
    )
    return list(session.scalars(stmt))


def pending_notifications(session: Session, tracker: str) -> List[LifecycleRecord]:
    """Records marked for removal whose warning has not been delivered."""
    stmt = (
        select(LifecycleRecord)
        .where(
            LifecycleRecord.tracker == tracker,
            LifecycleRecord.removal_due_at.is_not(None),
            LifecycleRecord.removal_notified.is_(False),
        )
        .order_by(LifecycleRecord.removal_due_at.asc(), LifecycleRecord.id.asc())
    )
    return list(session.scalars(stmt))


def due_for_removal(session: Session, tracker: str, now: datetime) -> List[LifecycleRecord]:
    """Notified records whose removal deadline has passed."""
    stmt = (
        select(LifecycleRecord)
        .where(
            LifecycleRecord.tracker == tracker,
            LifecycleRecord.removal_due_at.is_not(None),
            LifecycleRecord.removal_due_at < now,
            LifecycleRecord.removal_notified.is_(True),
        )
        .order_by(LifecycleRecord.removal_due_at.asc(), LifecycleRecord.id.asc())
    )
    return list(session.scalars(stmt))
