from __future__ import annotations

from datetime import timedelta

from activity_tracker.lifecycle.state_machine import (
    FinalizeDecision,
    Intent,
    LifecycleState,
    RemovalFields,
    Thresholds,
    decide_finalization,
    evaluate,
    state_of,
)

from conftest import NOW

THRESHOLDS = Thresholds(min_minutes=180, grace_period_days=150, removal_warning_days=31)

LOW_VALUES = [0, 1, 60, 179, 179.9]
HIGH_VALUES = [180, 200, 10_000]


def fields(age_days=200, due=None, notified=False):
    return RemovalFields(
        removal_due_at=due,
        removal_notified=notified,
        registry_created_at=NOW - timedelta(days=age_days),
    )


def test_young_record_stays_in_warning():
    transition = evaluate(fields(age_days=10), 0, THRESHOLDS, NOW)

    assert transition.state == LifecycleState.WARNING
    assert transition.removal_due_at is None
    assert transition.intents == frozenset()


def test_old_inactive_record_is_marked_once():
    first = evaluate(fields(age_days=200), 0, THRESHOLDS, NOW)

    assert first.state == LifecycleState.MARKED_FOR_REMOVAL
    assert first.removal_due_at == NOW + timedelta(days=31)
    assert first.removal_notified is False
    assert first.intents == frozenset({Intent.MARK, Intent.NOTIFY})

    later = NOW + timedelta(days=3)
    second = evaluate(fields(age_days=203, due=first.removal_due_at), 0, THRESHOLDS, later)

    assert second.removal_due_at == first.removal_due_at
    assert not second.marked


def test_recovery_clears_deadline_and_flag():
    due = NOW + timedelta(days=20)
    transition = evaluate(fields(due=due, notified=True), 200, THRESHOLDS, NOW)

    assert transition.state == LifecycleState.ACTIVE
    assert transition.removal_due_at is None
    assert transition.removal_notified is False
    assert transition.cleared


def test_deadline_never_moves_while_activity_stays_low():
    due = NOW + timedelta(days=5)
    for notified in (False, True):
        for minutes in LOW_VALUES:
            for days_later in (0, 1, 30, 400):
                transition = evaluate(
                    fields(due=due, notified=notified), minutes, THRESHOLDS, NOW + timedelta(days=days_later)
                )
                assert transition.removal_due_at == due
                assert transition.removal_notified == notified


def test_full_recovery_clears_everything_from_any_state():
    for due in (None, NOW - timedelta(days=3), NOW + timedelta(days=3)):
        for notified in (False, True):
            for age in (1, 200):
                for minutes in HIGH_VALUES:
                    transition = evaluate(fields(age, due, notified), minutes, THRESHOLDS, NOW)
                    assert transition.removal_due_at is None
                    assert transition.removal_notified is False
                    assert transition.state == LifecycleState.ACTIVE


def test_grace_period_blocks_marking_at_any_activity():
    for age in range(0, 150, 7):
        for minutes in LOW_VALUES:
            transition = evaluate(fields(age_days=age), minutes, THRESHOLDS, NOW)
            assert transition.state == LifecycleState.WARNING
            assert not transition.marked


def test_on_demand_path_never_marks_but_clears():
    blocked = evaluate(fields(age_days=400), 0, THRESHOLDS, NOW, allow_auto_mark=False)
    assert blocked.state == LifecycleState.WARNING
    assert blocked.removal_due_at is None

    due = NOW + timedelta(days=10)
    cleared = evaluate(fields(due=due), 500, THRESHOLDS, NOW, allow_auto_mark=False)
    assert cleared.removal_due_at is None
    assert cleared.cleared


def test_exempt_subject_counts_as_active():
    transition = evaluate(fields(due=NOW + timedelta(days=1)), 0, THRESHOLDS, NOW, exempt=True)
    assert transition.state == LifecycleState.ACTIVE
    assert transition.removal_due_at is None


def test_notified_without_deadline_is_repaired():
    transition = evaluate(fields(age_days=10, notified=True), 0, THRESHOLDS, NOW)

    assert transition.removal_notified is False
    assert Intent.REPAIR in transition.intents


def test_operator_deadline_on_young_record_is_kept():
    due = NOW + timedelta(days=31)
    transition = evaluate(fields(age_days=10, due=due), 0, THRESHOLDS, NOW)

    assert transition.removal_due_at == due
    assert transition.state == LifecycleState.MARKED_FOR_REMOVAL


def test_state_of_stored_fields():
    assert state_of(200, None, False, THRESHOLDS) == LifecycleState.ACTIVE
    assert state_of(0, None, False, THRESHOLDS) == LifecycleState.WARNING
    assert state_of(0, NOW, False, THRESHOLDS) == LifecycleState.MARKED_FOR_REMOVAL
    assert state_of(0, NOW, True, THRESHOLDS) == LifecycleState.NOTIFIED_PENDING_REMOVAL


def test_evaluate_is_repeatable():
    current = fields(age_days=200)
    assert evaluate(current, 12, THRESHOLDS, NOW) == evaluate(current, 12, THRESHOLDS, NOW)


# -------------------------------------------------------------------------
# Finalization
# -------------------------------------------------------------------------

PAST = NOW - timedelta(days=1)


def test_finalization_requires_passed_deadline_and_notification():
    assert decide_finalization(fields(), True, 0, THRESHOLDS, NOW) == FinalizeDecision.NOT_DUE
    assert decide_finalization(fields(due=NOW + timedelta(days=1), notified=True), True, 0, THRESHOLDS, NOW) \
        == FinalizeDecision.NOT_DUE
    assert decide_finalization(fields(due=PAST, notified=False), True, 0, THRESHOLDS, NOW) \
        == FinalizeDecision.NOT_DUE


def test_finalization_rechecks():
    due = fields(due=PAST, notified=True)

    assert decide_finalization(due, False, 0, THRESHOLDS, NOW) == FinalizeDecision.DELETE_STALE
    assert decide_finalization(due, True, 180, THRESHOLDS, NOW) == FinalizeDecision.CANCEL_RECOVERED
    assert decide_finalization(due, True, 0, THRESHOLDS, NOW) == FinalizeDecision.REMOVE

    young = fields(age_days=10, due=PAST, notified=True)
    assert decide_finalization(young, True, 0, THRESHOLDS, NOW) == FinalizeDecision.CANCEL_INELIGIBLE
