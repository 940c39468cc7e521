"""
Removal lifecycle.

The pure state machine lives here together with the trackers it is applied
to and the jobs that carry out its side effects (notification, removal).
Import the submodules directly; this package only re-exports the decision
types.
"""

from activity_tracker.lifecycle.state_machine import (
    FinalizeDecision,
    Intent,
    LifecycleState,
    Thresholds,
    Transition,
    decide_finalization,
    evaluate,
)

__all__ = [
    'FinalizeDecision',
    'Intent',
    'LifecycleState',
    'Thresholds',
    'Transition',
    'decide_finalization',
    'evaluate',
]
