from datetime import datetime, timedelta, timezone

import pytest

from config import TimerStatus, UrgencyLevel
from core import InvalidTransitionException
from escalation.domain import EscalationPolicy, EscalationTimer

T0 = datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)
TEN_MINUTES_MS = 10 * 60 * 1000


def minutes(n: float) -> datetime:
    return T0 + timedelta(minutes=n)


@pytest.fixture
def timer() -> EscalationTimer:
    policy = EscalationPolicy(base_duration_ms=TEN_MINUTES_MS, warning_ratio=0.5, critical_ratio=0.8)
    return EscalationTimer.start("INC-1", policy, T0, incident_type="medical", priority="high")


def test_start_sets_deadline(timer):
    assert timer.status == TimerStatus.RUNNING
    assert timer.version == 1
    assert timer.deadline_at == minutes(10)
    assert timer.elapsed_active_ms(T0) == 0


def test_pause_resume_shifts_deadline(timer):
    paused = timer.pause(minutes(3))
    assert paused.status == TimerStatus.PAUSED
    assert paused.current_pause_started_at == minutes(3)

    # Clock stands still while paused
    assert paused.elapsed_active_ms(minutes(4)) == 3 * 60 * 1000

    resumed = paused.resume(minutes(5))
    assert resumed.status == TimerStatus.RUNNING
    assert resumed.total_paused_ms == 2 * 60 * 1000
    assert resumed.current_pause_started_at is None
    assert resumed.deadline_at == minutes(12)
    assert not resumed.is_due(minutes(11))
    assert resumed.is_due(minutes(12))


def test_transitions_do_not_mutate(timer):
    timer.pause(minutes(1))
    assert timer.status == TimerStatus.RUNNING


def test_repeated_pause_and_resume_are_no_ops(timer):
    assert timer.resume(minutes(1)) is None
    paused = timer.pause(minutes(1))
    assert paused.pause(minutes(2)) is None


def test_paused_timer_is_never_due(timer):
    paused = timer.pause(minutes(9))
    assert not paused.is_due(minutes(60))


def test_escalate_requires_due_running_timer(timer):
    with pytest.raises(InvalidTransitionException):
        timer.escalate(minutes(5))

    escalated = timer.escalate(minutes(10))
    assert escalated.status == TimerStatus.ESCALATED
    assert escalated.ended_at == minutes(10)


@pytest.mark.parametrize("operation", ["pause", "resume", "resolve"])
def test_terminal_states_reject_operations(timer, operation):
    escalated = timer.escalate(minutes(11))
    with pytest.raises(InvalidTransitionException) as exc_info:
        getattr(escalated, operation)(minutes(12))
    assert exc_info.value.current_status == "escalated"

    resolved = timer.resolve(minutes(2))
    with pytest.raises(InvalidTransitionException):
        getattr(resolved, operation)(minutes(3))


def test_resolve_freezes_elapsed_time(timer):
    resolved = timer.resolve(minutes(4))
    assert resolved.status == TimerStatus.RESOLVED
    assert resolved.elapsed_active_ms(minutes(30)) == 4 * 60 * 1000
    assert resolved.urgency(minutes(30)) is None


def test_resolve_while_paused_ends_at_pause_start(timer):
    resolved = timer.pause(minutes(3)).resolve(minutes(7))
    assert resolved.ended_at == minutes(3)
    assert resolved.current_pause_started_at is None
    assert resolved.elapsed_active_ms(minutes(20)) == 3 * 60 * 1000


def test_remaining_never_negative(timer):
    assert timer.remaining_ms(minutes(4)) == 6 * 60 * 1000
    assert timer.remaining_ms(minutes(25)) == 0


@pytest.mark.parametrize("at,expected", [
    (1, UrgencyLevel.NORMAL),
    (5, UrgencyLevel.WARNING),
    (8, UrgencyLevel.CRITICAL),
    (10, UrgencyLevel.OVERDUE),
])
def test_urgency_levels(timer, at, expected):
    assert timer.urgency(minutes(at)) == expected


def test_invalid_construction():
    with pytest.raises(ValueError):
        EscalationTimer("INC-1", TimerStatus.RUNNING, 0, T0)
    with pytest.raises(ValueError):
        EscalationTimer("INC-1", TimerStatus.PAUSED, 1000, T0)


def test_snapshot(timer):
    snapshot = timer.pause(minutes(3)).snapshot(minutes(4))
    assert snapshot.status == TimerStatus.PAUSED
    assert snapshot.paused_since == minutes(3)
    assert snapshot.elapsed_active_ms == 3 * 60 * 1000
    assert snapshot.remaining_ms == 7 * 60 * 1000
    assert snapshot.evaluated_at == minutes(4)
