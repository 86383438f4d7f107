"""
Escalation Infrastructure Repositories
=======================================

Concrete implementations of the store and history interfaces.

- SQLAlchemy: the production backend. Store and history log share one
  session so a timer transition and its history entry commit together.
- In-memory: single-process backend for development and tests.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import TimerStatus, EscalationEventKind
from core import (
    AlreadyExistsException,
    StoreUnavailableException,
    VersionConflictException,
)
from escalation.application import IEscalationStore, IEscalationHistoryLog
from escalation.domain import EscalationTimer, EscalationEvent
from escalation.infrastructure.models import EscalationTimerModel, EscalationEventModel


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Some drivers (sqlite) hand back naive datetimes; they were stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _timer_to_domain(model: EscalationTimerModel) -> EscalationTimer:
    return EscalationTimer(
        incident_id=model.incident_id,
        status=TimerStatus(model.status),
        base_duration_ms=model.base_duration_ms,
        started_at=_as_utc(model.started_at),
        incident_type=model.incident_type,
        priority=model.priority,
        event_id=model.event_id,
        warning_ratio=model.warning_ratio,
        critical_ratio=model.critical_ratio,
        total_paused_ms=model.total_paused_ms,
        current_pause_started_at=_as_utc(model.current_pause_started_at),
        ended_at=_as_utc(model.ended_at),
        version=model.version
    )


class SQLAlchemyEscalationStore(IEscalationStore):
    """
    SQLAlchemy implementation of the escalation store.

    Updates are ``UPDATE ... WHERE incident_id = :id AND version = :expected``;
    a rowcount other than 1 means someone else won.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def load(self, incident_id: str) -> Optional[EscalationTimer]:
        stmt = (
            select(EscalationTimerModel)
            .where(EscalationTimerModel.incident_id == incident_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreUnavailableException("load", str(e)) from e

        model = result.scalar_one_or_none()
        return _timer_to_domain(model) if model else None

    async def create(self, timer: EscalationTimer) -> EscalationTimer:
        model = EscalationTimerModel(
            incident_id=timer.incident_id,
            status=timer.status.value,
            incident_type=timer.incident_type,
            priority=timer.priority,
            event_id=timer.event_id,
            base_duration_ms=timer.base_duration_ms,
            warning_ratio=timer.warning_ratio,
            critical_ratio=timer.critical_ratio,
            started_at=timer.started_at,
            total_paused_ms=timer.total_paused_ms,
            current_pause_started_at=timer.current_pause_started_at,
            ended_at=timer.ended_at,
            version=timer.version,
            updated_at=timer.started_at
        )

        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            await self._session.rollback()
            raise AlreadyExistsException(timer.incident_id) from e
        except SQLAlchemyError as e:
            raise StoreUnavailableException("create", str(e)) from e

        return timer

    async def conditional_save(self, timer: EscalationTimer) -> EscalationTimer:
        new_version = timer.version + 1
        stmt = (
            update(EscalationTimerModel)
            .where(
                EscalationTimerModel.incident_id == timer.incident_id,
                EscalationTimerModel.version == timer.version
            )
            .values(
                status=timer.status.value,
                total_paused_ms=timer.total_paused_ms,
                current_pause_started_at=timer.current_pause_started_at,
                ended_at=timer.ended_at,
                version=new_version,
                updated_at=datetime.now(timezone.utc)
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreUnavailableException("conditional_save", str(e)) from e

        if result.rowcount != 1:
            raise VersionConflictException(timer.incident_id, timer.version)

        return replace(timer, version=new_version)

    async def list_active(self) -> List[EscalationTimer]:
        stmt = (
            select(EscalationTimerModel)
            .where(EscalationTimerModel.status == TimerStatus.RUNNING.value)
            .order_by(EscalationTimerModel.started_at.asc())
            .execution_options(populate_existing=True)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreUnavailableException("list_active", str(e)) from e

        return [_timer_to_domain(model) for model in result.scalars().all()]

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailableException("commit", str(e)) from e

    async def rollback(self) -> None:
        await self._session.rollback()


class SQLAlchemyEscalationHistoryLog(IEscalationHistoryLog):
    """
    SQLAlchemy implementation of the history log.

    Appends are flushed into the caller's transaction and become visible
    when the store commits.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, event: EscalationEvent) -> None:
        self._session.add(EscalationEventModel(
            id=UUID(event.id),
            incident_id=event.incident_id,
            kind=event.kind.value,
            reason=event.reason,
            occurred_at=event.occurred_at,
            actor_id=event.actor_id
        ))
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise StoreUnavailableException("append", str(e)) from e

    async def list_by_incident(self, incident_id: str) -> List[EscalationEvent]:
        stmt = (
            select(EscalationEventModel)
            .where(EscalationEventModel.incident_id == incident_id)
            .order_by(EscalationEventModel.occurred_at.asc(), EscalationEventModel.sequence.asc())
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreUnavailableException("list_by_incident", str(e)) from e

        return [
            EscalationEvent(
                id=str(model.id),
                incident_id=model.incident_id,
                kind=EscalationEventKind(model.kind),
                occurred_at=_as_utc(model.occurred_at),
                reason=model.reason,
                actor_id=model.actor_id
            )
            for model in result.scalars().all()
        ]


class InMemoryEscalationStore(IEscalationStore):
    """
    Process-local store with the same create-once / version-checked contract.

    Writes apply immediately, so commit and rollback have nothing to do.
    Not shared between processes; use the database backend when deployed.
    """

    def __init__(self):
        self._timers: Dict[str, EscalationTimer] = {}
        self._lock = asyncio.Lock()

    async def load(self, incident_id: str) -> Optional[EscalationTimer]:
        return self._timers.get(incident_id)

    async def create(self, timer: EscalationTimer) -> EscalationTimer:
        async with self._lock:
            if timer.incident_id in self._timers:
                raise AlreadyExistsException(timer.incident_id)
            self._timers[timer.incident_id] = timer
        return timer

    async def conditional_save(self, timer: EscalationTimer) -> EscalationTimer:
        async with self._lock:
            current = self._timers.get(timer.incident_id)
            if current is None or current.version != timer.version:
                raise VersionConflictException(timer.incident_id, timer.version)
            saved = replace(timer, version=timer.version + 1)
            self._timers[timer.incident_id] = saved
        return saved

    async def list_active(self) -> List[EscalationTimer]:
        return [t for t in self._timers.values() if t.status == TimerStatus.RUNNING]

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        return None


class InMemoryEscalationHistoryLog(IEscalationHistoryLog):
    """Process-local append-only history."""

    def __init__(self):
        self._events: Dict[str, List[EscalationEvent]] = {}

    async def append(self, event: EscalationEvent) -> None:
        self._events.setdefault(event.incident_id, []).append(event)

    async def list_by_incident(self, incident_id: str) -> List[EscalationEvent]:
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(self._events.get(incident_id, []), key=lambda e: e.occurred_at)
