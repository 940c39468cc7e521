"""
Removal lifecycle state machine.

Pure decision functions: given the current removal fields of a record, a
freshly aggregated activity measurement and the tracker's thresholds,
return the next removal fields plus the side effects the caller should
perform. Nothing here touches the database or the network.

States:
    ACTIVE                    activity at or above the floor
    WARNING                   below the floor, no deadline set
    MARKED_FOR_REMOVAL        deadline set, warning not yet delivered
    NOTIFIED_PENDING_REMOVAL  deadline set, warning delivered
    REMOVED                   terminal, record deleted

Transition rule per sync, with fresh minutes m:
    m >= floor                 -> clear deadline and notified flag (ACTIVE)
    younger than grace period  -> set nothing (WARNING)
    deadline already set       -> keep it as-is; never pushed back
    otherwise                  -> deadline = now + warning days (MARKED)

Re-running a transition with the same measurement reproduces the same
fields, so double-fired jobs are harmless.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import FrozenSet, Optional

from activity_tracker.config import TrackerPolicyConfig


class LifecycleState(str, Enum):
    ACTIVE = 'active'
    WARNING = 'warning'
    MARKED_FOR_REMOVAL = 'marked_for_removal'
    NOTIFIED_PENDING_REMOVAL = 'notified_pending_removal'
    REMOVED = 'removed'


class Intent(str, Enum):
    """Side effects requested by a transition."""
    MARK = 'mark'        # removal deadline newly set
    NOTIFY = 'notify'    # removal warning should be delivered
    CLEAR = 'clear'      # pending removal cancelled
    REPAIR = 'repair'    # inconsistent notified flag reset


@dataclass(frozen=True)
class Thresholds:
    """Policy thresholds for one tracker."""
    min_minutes: float
    grace_period_days: int
    removal_warning_days: int

    @classmethod
    def from_config(cls, policy: TrackerPolicyConfig) -> 'Thresholds':
        return cls(
            min_minutes=policy.min_minutes,
            grace_period_days=policy.grace_period_days,
            removal_warning_days=policy.removal_warning_days,
        )


@dataclass(frozen=True)
class RemovalFields:
    """The persisted removal state of a record."""
    removal_due_at: Optional[datetime]
    removal_notified: bool
    registry_created_at: datetime


@dataclass(frozen=True)
class Transition:
    """Next removal fields plus requested side effects."""
    state: LifecycleState
    removal_due_at: Optional[datetime]
    removal_notified: bool
    intents: FrozenSet[Intent] = frozenset()

    @property
    def marked(self) -> bool:
        return Intent.MARK in self.intents

    @property
    def cleared(self) -> bool:
        return Intent.CLEAR in self.intents


def is_grace_eligible(registry_created_at: datetime, thresholds: Thresholds, now: datetime) -> bool:
    """A record becomes removable only once it is older than the grace period."""
    return (now - registry_created_at) >= timedelta(days=thresholds.grace_period_days)


def pending_state(removal_notified: bool) -> LifecycleState:
    if removal_notified:
        return LifecycleState.NOTIFIED_PENDING_REMOVAL
    return LifecycleState.MARKED_FOR_REMOVAL


def state_of(
    activity_minutes: float,
    removal_due_at: Optional[datetime],
    removal_notified: bool,
    thresholds: Thresholds,
) -> LifecycleState:
    """Derive the displayed state from stored fields."""
    if removal_due_at is not None:
        return pending_state(removal_notified)
    if (activity_minutes or 0) >= thresholds.min_minutes:
        return LifecycleState.ACTIVE
    return LifecycleState.WARNING


def evaluate(
    current: RemovalFields,
    minutes: float,
    thresholds: Thresholds,
    now: datetime,
    allow_auto_mark: bool = True,
    exempt: bool = False,
) -> Transition:
    """
    Compute the next removal state after one activity measurement.

    allow_auto_mark=False is the on-demand path: it may clear a pending
    removal but never starts one. exempt treats the subject as active
    regardless of minutes (e.g. a freshly promoted controller).
    """
    intents = set()
    due = current.removal_due_at
    notified = current.removal_notified

    if notified and due is None:
        notified = False
        intents.add(Intent.REPAIR)

    if exempt or minutes >= thresholds.min_minutes:
        if due is not None:
            intents.add(Intent.CLEAR)
        return Transition(LifecycleState.ACTIVE, None, False, frozenset(intents))

    if not is_grace_eligible(current.registry_created_at, thresholds, now):
        # Operator-set deadlines on young records are left alone
        state = pending_state(notified) if due is not None else LifecycleState.WARNING
        return Transition(state, due, notified, frozenset(intents))

    if due is not None:
        return Transition(pending_state(notified), due, notified, frozenset(intents))

    if not allow_auto_mark:
        return Transition(LifecycleState.WARNING, None, False, frozenset(intents))

    intents.update((Intent.MARK, Intent.NOTIFY))
    return Transition(
        LifecycleState.MARKED_FOR_REMOVAL,
        now + timedelta(days=thresholds.removal_warning_days),
        False,
        frozenset(intents),
    )


# -------------------------------------------------------------------------
# Finalization
# -------------------------------------------------------------------------

class FinalizeDecision(str, Enum):
    NOT_DUE = 'not_due'              # deadline not reached or warning not delivered
    DELETE_STALE = 'delete_stale'    # registry no longer has the entry
    CANCEL_RECOVERED = 'cancel_recovered'
    CANCEL_INELIGIBLE = 'cancel_ineligible'
    REMOVE = 'remove'


def decide_finalization(
    current: RemovalFields,
    in_registry: bool,
    fresh_minutes: float,
    thresholds: Thresholds,
    now: datetime,
) -> FinalizeDecision:
    """
    Re-check a due record right before removal.

    Last-second recovery always wins over a passed deadline.
    """
    if current.removal_due_at is None or current.removal_due_at >= now or not current.removal_notified:
        return FinalizeDecision.NOT_DUE
    if not in_registry:
        return FinalizeDecision.DELETE_STALE
    if fresh_minutes >= thresholds.min_minutes:
        return FinalizeDecision.CANCEL_RECOVERED
    if not is_grace_eligible(current.registry_created_at, thresholds, now):
        return FinalizeDecision.CANCEL_INELIGIBLE
    return FinalizeDecision.REMOVE
