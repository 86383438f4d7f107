"""
Escalation Domain Entities
===========================

Pure Python domain entities for incident escalation.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Timers are
immutable: every transition returns a new instance, and persistence
decides whether that instance wins.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from config import TimerStatus, EscalationEventKind, UrgencyLevel
from core import InvalidTransitionException
from escalation.domain.value_objects import EscalationPolicy

_ONE_MS = timedelta(milliseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_ms(delta: timedelta) -> int:
    """Whole milliseconds in a timedelta (floored)."""
    return delta // _ONE_MS


@dataclass(frozen=True)
class EscalationTimer:
    """
    SLA timer for one incident.

    ``deadline_at`` moves forward by every completed pause, so paused time
    never counts against the SLA.
    """

    incident_id: str
    status: TimerStatus
    base_duration_ms: int
    started_at: datetime
    incident_type: str = ""
    priority: str = ""
    event_id: Optional[str] = None
    warning_ratio: float = 0.5
    critical_ratio: float = 0.8
    total_paused_ms: int = 0
    current_pause_started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    version: int = 1

    def __post_init__(self):
        if self.base_duration_ms <= 0:
            raise ValueError("base_duration_ms must be positive")
        if self.total_paused_ms < 0:
            raise ValueError("total_paused_ms cannot be negative")
        if (self.status == TimerStatus.PAUSED) != (self.current_pause_started_at is not None):
            raise ValueError("current_pause_started_at must be set exactly while paused")

    @classmethod
    def start(
        cls,
        incident_id: str,
        policy: EscalationPolicy,
        now: datetime,
        incident_type: str = "",
        priority: str = "",
        event_id: Optional[str] = None
    ) -> "EscalationTimer":
        """Create a fresh Running timer from a resolved policy."""
        return cls(
            incident_id=incident_id,
            status=TimerStatus.RUNNING,
            base_duration_ms=policy.base_duration_ms,
            started_at=now,
            incident_type=incident_type,
            priority=priority,
            event_id=event_id,
            warning_ratio=policy.warning_ratio,
            critical_ratio=policy.critical_ratio
        )

    # ---------- derived values ----------

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def deadline_at(self) -> datetime:
        return self.started_at + timedelta(
            milliseconds=self.base_duration_ms + self.total_paused_ms
        )

    def elapsed_active_ms(self, now: datetime) -> int:
        """Active time consumed against the SLA as of ``now``."""
        if self.ended_at is not None:
            now = self.ended_at
        elapsed = to_ms(now - self.started_at) - self.total_paused_ms
        if self.status == TimerStatus.PAUSED:
            elapsed -= to_ms(now - self.current_pause_started_at)
        return max(0, elapsed)

    def remaining_ms(self, now: datetime) -> int:
        return max(0, self.base_duration_ms - self.elapsed_active_ms(now))

    def is_due(self, now: datetime) -> bool:
        """Escalation guard: Running and the active budget is spent."""
        return (
            self.status == TimerStatus.RUNNING
            and self.elapsed_active_ms(now) >= self.base_duration_ms
        )

    def urgency(self, now: datetime) -> Optional[UrgencyLevel]:
        if self.status == TimerStatus.RESOLVED:
            return None
        if self.status == TimerStatus.ESCALATED:
            return UrgencyLevel.OVERDUE

        consumed = self.elapsed_active_ms(now) / self.base_duration_ms
        if consumed >= 1:
            return UrgencyLevel.OVERDUE
        if consumed >= self.critical_ratio:
            return UrgencyLevel.CRITICAL
        if consumed >= self.warning_ratio:
            return UrgencyLevel.WARNING
        return UrgencyLevel.NORMAL

    # ---------- transitions ----------

    def pause(self, now: datetime) -> Optional["EscalationTimer"]:
        """Running -> Paused. Returns None when already paused."""
        if self.status == TimerStatus.PAUSED:
            return None
        if self.status != TimerStatus.RUNNING:
            raise InvalidTransitionException(self.incident_id, self.status.value, "pause")
        return replace(self, status=TimerStatus.PAUSED, current_pause_started_at=now)

    def resume(self, now: datetime) -> Optional["EscalationTimer"]:
        """Paused -> Running, folding the pause into total_paused_ms. None when already running."""
        if self.status == TimerStatus.RUNNING:
            return None
        if self.status != TimerStatus.PAUSED:
            raise InvalidTransitionException(self.incident_id, self.status.value, "resume")
        paused_ms = max(0, to_ms(now - self.current_pause_started_at))
        return replace(
            self,
            status=TimerStatus.RUNNING,
            total_paused_ms=self.total_paused_ms + paused_ms,
            current_pause_started_at=None
        )

    def escalate(self, now: datetime) -> "EscalationTimer":
        if not self.is_due(now):
            raise InvalidTransitionException(self.incident_id, self.status.value, "escalate")
        return replace(self, status=TimerStatus.ESCALATED, ended_at=now)

    def resolve(self, now: datetime) -> "EscalationTimer":
        if self.is_terminal:
            raise InvalidTransitionException(self.incident_id, self.status.value, "resolve")
        # A paused clock already stopped when the pause began
        ended_at = self.current_pause_started_at or now
        return replace(
            self,
            status=TimerStatus.RESOLVED,
            current_pause_started_at=None,
            ended_at=ended_at
        )

    def snapshot(self, now: datetime) -> "TimerSnapshot":
        return TimerSnapshot(
            incident_id=self.incident_id,
            status=self.status,
            deadline_at=self.deadline_at,
            base_duration_ms=self.base_duration_ms,
            started_at=self.started_at,
            elapsed_active_ms=self.elapsed_active_ms(now),
            remaining_ms=self.remaining_ms(now),
            total_paused_ms=self.total_paused_ms,
            paused_since=self.current_pause_started_at,
            urgency=self.urgency(now),
            version=self.version,
            evaluated_at=now
        )


@dataclass(frozen=True)
class EscalationEvent:
    """One immutable entry in an incident's escalation history."""

    incident_id: str
    kind: EscalationEventKind
    occurred_at: datetime
    reason: Optional[str] = None
    actor_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass(frozen=True)
class EscalationNotice:
    """Payload handed to the notification dispatcher when a timer escalates."""

    incident_id: str
    deadline_at: datetime
    occurred_at: datetime


@dataclass(frozen=True)
class TimerSnapshot:
    """Computed view of a timer at a given instant."""

    incident_id: str
    status: TimerStatus
    deadline_at: datetime
    base_duration_ms: int
    started_at: datetime
    elapsed_active_ms: int
    remaining_ms: int
    total_paused_ms: int
    paused_since: Optional[datetime]
    urgency: Optional[UrgencyLevel]
    version: int
    evaluated_at: datetime


@dataclass(frozen=True)
class CalculationResult:
    """Outcome of a calculate call."""

    snapshot: TimerSnapshot
    created: bool


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of pause/resume/resolve. ``changed`` is False for tolerated no-ops."""

    snapshot: TimerSnapshot
    changed: bool
    success: bool = True
