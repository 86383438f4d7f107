"""
Escalation Infrastructure Models
=================================

SQLAlchemy ORM models for the escalation module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from config import TimerStatus
from infrastructure.database import Base


class EscalationTimerModel(Base):
    """
    Database model for the EscalationTimer entity.

    Maps to the 'escalation_timers' table. ``version`` is the optimistic
    concurrency token checked by every update.
    """
    __tablename__ = "escalation_timers"

    incident_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True, default=TimerStatus.RUNNING.value)

    # Inputs the policy was resolved from
    incident_type: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Policy, fixed at creation
    base_duration_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    warning_ratio: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    critical_ratio: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)

    # Clock
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_paused_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    current_pause_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class EscalationEventModel(Base):
    """
    Database model for EscalationEvent.

    Maps to the 'escalation_events' table. Rows are inserted, never updated;
    ``sequence`` breaks ties between events with the same timestamp.
    """
    __tablename__ = "escalation_events"

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False, default=uuid4)

    incident_id: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_escalation_events_incident_order", "incident_id", "occurred_at", "sequence"),
    )
