"""
Escalation Application DTOs
============================

Data Transfer Objects for the escalation API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from escalation.domain import EscalationEvent, TimerSnapshot


# ========== Type Aliases for Literals ==========
TimerStatusStr = Literal["running", "paused", "escalated", "resolved"]
EventKindStr = Literal["started", "paused", "resumed", "escalated", "resolved"]
UrgencyStr = Literal["normal", "warning", "critical", "overdue"]

MAX_REASON_LENGTH = 500


# ========== Request DTOs ==========

class CalculateEscalationRequest(BaseModel):
    """Request model for calculating (and lazily creating) an escalation timer."""
    incident_type: str = Field(..., min_length=1, max_length=100, description="Incident type, e.g. 'medical'")
    priority: str = Field(..., min_length=1, max_length=50, description="Incident priority, e.g. 'high'")
    event_id: Optional[str] = Field(None, max_length=255, description="Live event the incident belongs to")
    actor_id: Optional[str] = Field(None, max_length=255, description="User creating the timer")

    @field_validator("incident_type", "priority")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class TimerTransitionRequest(BaseModel):
    """Request model for pause/resume/resolve."""
    reason: Optional[str] = Field(
        None,
        max_length=MAX_REASON_LENGTH,
        description="Why the timer is changing"
    )
    actor_id: Optional[str] = Field(None, max_length=255, description="User performing the change")

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


# ========== Response DTOs ==========

class EscalationStatusResponse(BaseModel):
    """Computed timer state for one incident."""
    incident_id: str
    status: TimerStatusStr
    deadline_at: datetime = Field(..., description="started_at + base duration + completed pauses")
    base_duration_ms: int
    started_at: datetime
    elapsed_active_ms: int = Field(..., description="Time consumed against the SLA, pauses excluded")
    remaining_ms: int
    total_paused_ms: int
    paused_since: Optional[datetime] = None
    urgency: Optional[UrgencyStr] = None
    version: int
    evaluated_at: datetime

    @classmethod
    def from_domain(cls, snapshot: TimerSnapshot) -> "EscalationStatusResponse":
        """Create from domain snapshot."""
        return cls(
            incident_id=snapshot.incident_id,
            status=snapshot.status.value,
            deadline_at=snapshot.deadline_at,
            base_duration_ms=snapshot.base_duration_ms,
            started_at=snapshot.started_at,
            elapsed_active_ms=snapshot.elapsed_active_ms,
            remaining_ms=snapshot.remaining_ms,
            total_paused_ms=snapshot.total_paused_ms,
            paused_since=snapshot.paused_since,
            urgency=snapshot.urgency.value if snapshot.urgency else None,
            version=snapshot.version,
            evaluated_at=snapshot.evaluated_at
        )


class CalculateEscalationResponse(EscalationStatusResponse):
    """Response for calculate: the timer plus whether this call created it."""
    created: bool = Field(..., description="True when this request started the timer")


class TransitionResponse(BaseModel):
    """Response for pause/resume/resolve."""
    success: bool
    changed: bool = Field(..., description="False when the timer was already in the target state")
    status: TimerStatusStr
    timer: EscalationStatusResponse


class HistoryEntryResponse(BaseModel):
    """One escalation history entry."""
    id: str
    kind: EventKindStr
    reason: Optional[str] = None
    occurred_at: datetime
    actor_id: Optional[str] = None

    @classmethod
    def from_domain(cls, event: EscalationEvent) -> "HistoryEntryResponse":
        return cls(
            id=event.id,
            kind=event.kind.value,
            reason=event.reason,
            occurred_at=event.occurred_at,
            actor_id=event.actor_id
        )


class HistoryResponse(BaseModel):
    """Ordered escalation history for an incident."""
    incident_id: str
    events: List[HistoryEntryResponse] = Field(default_factory=list)


class SweepResponse(BaseModel):
    """Result of a sweep over running timers."""
    escalated: List[str] = Field(default_factory=list, description="Incident ids escalated by this sweep")
    escalated_count: int


class ErrorResponse(BaseModel):
    """Error body returned for application exceptions."""
    detail: str
    error: str
    correlation_id: Optional[str] = None
    current_status: Optional[TimerStatusStr] = None
