from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from config import EscalationEventKind, TimerStatus
from core import AlreadyExistsException, VersionConflictException
from escalation.container import EscalationContainer
from escalation.domain import EscalationEvent, EscalationPolicy, EscalationTimer
from escalation.infrastructure import SQLAlchemyEscalationHistoryLog, SQLAlchemyEscalationStore
from infrastructure.database import close_database, create_tables, get_session_context, init_database

T0 = datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def database(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'escalation.db'}")
    await create_tables()
    try:
        yield
    finally:
        await close_database()


def new_timer(incident_id: str = "INC-1") -> EscalationTimer:
    policy = EscalationPolicy(base_duration_ms=600_000, warning_ratio=0.5, critical_ratio=0.8)
    return EscalationTimer.start(incident_id, policy, T0, incident_type="medical", priority="high")


@pytest.mark.asyncio
async def test_create_and_load_round_trip(database):
    async with get_session_context() as session:
        store = SQLAlchemyEscalationStore(session)
        await store.create(new_timer())
        await store.commit()

    async with get_session_context() as session:
        loaded = await SQLAlchemyEscalationStore(session).load("INC-1")

    assert loaded == new_timer()
    assert loaded.started_at.tzinfo is not None
    assert loaded.deadline_at == T0 + timedelta(minutes=10)


@pytest.mark.asyncio
async def test_load_missing_returns_none(database):
    async with get_session_context() as session:
        assert await SQLAlchemyEscalationStore(session).load("nope") is None


@pytest.mark.asyncio
async def test_duplicate_create_is_rejected(database):
    async with get_session_context() as session:
        store = SQLAlchemyEscalationStore(session)
        await store.create(new_timer())
        await store.commit()

    async with get_session_context() as session:
        with pytest.raises(AlreadyExistsException):
            await SQLAlchemyEscalationStore(session).create(new_timer())


@pytest.mark.asyncio
async def test_conditional_save_checks_version(database):
    async with get_session_context() as session:
        store = SQLAlchemyEscalationStore(session)
        await store.create(new_timer())
        await store.commit()

    async with get_session_context() as first, get_session_context() as second:
        store_a = SQLAlchemyEscalationStore(first)
        store_b = SQLAlchemyEscalationStore(second)
        timer_a = await store_a.load("INC-1")
        timer_b = await store_b.load("INC-1")

        saved = await store_a.conditional_save(timer_a.pause(T0 + timedelta(minutes=1)))
        await store_a.commit()
        assert saved.version == 2

        with pytest.raises(VersionConflictException):
            await store_b.conditional_save(timer_b.resolve(T0 + timedelta(minutes=2)))
        await store_b.rollback()

        reloaded = await store_b.load("INC-1")
        assert reloaded.status == TimerStatus.PAUSED
        assert reloaded.version == 2
        assert reloaded.current_pause_started_at == T0 + timedelta(minutes=1)


@pytest.mark.asyncio
async def test_list_active_returns_running_only(database):
    async with get_session_context() as session:
        store = SQLAlchemyEscalationStore(session)
        await store.create(new_timer("INC-1"))
        paused = new_timer("INC-2")
        await store.create(paused)
        await store.conditional_save(paused.pause(T0))
        await store.commit()

        active = await store.list_active()

    assert [t.incident_id for t in active] == ["INC-1"]


@pytest.mark.asyncio
async def test_history_is_ordered(database):
    async with get_session_context() as session:
        history = SQLAlchemyEscalationHistoryLog(session)
        later = EscalationEvent("INC-1", EscalationEventKind.PAUSED, T0 + timedelta(minutes=1))
        first = EscalationEvent("INC-1", EscalationEventKind.STARTED, T0)
        same_time = EscalationEvent("INC-1", EscalationEventKind.RESUMED, T0 + timedelta(minutes=1))
        for event in (later, first, same_time):
            await history.append(event)
        await history.append(EscalationEvent("INC-2", EscalationEventKind.STARTED, T0))
        await session.commit()

    async with get_session_context() as session:
        events = await SQLAlchemyEscalationHistoryLog(session).list_by_incident("INC-1")

    assert [e.id for e in events] == [first.id, later.id, same_time.id]
    assert events[0] == first


@pytest.mark.asyncio
async def test_uncommitted_transition_is_discarded(database):
    async with get_session_context() as session:
        store = SQLAlchemyEscalationStore(session)
        await store.create(new_timer())
        await store.commit()

    async with get_session_context() as session:
        store = SQLAlchemyEscalationStore(session)
        timer = await store.load("INC-1")
        await store.conditional_save(timer.pause(T0))
        await SQLAlchemyEscalationHistoryLog(session).append(
            EscalationEvent("INC-1", EscalationEventKind.PAUSED, T0)
        )
        await store.rollback()

    async with get_session_context() as session:
        assert (await SQLAlchemyEscalationStore(session).load("INC-1")).status == TimerStatus.RUNNING
        assert await SQLAlchemyEscalationHistoryLog(session).list_by_incident("INC-1") == []


@pytest.mark.asyncio
async def test_engine_over_database(database, policy_provider, dispatcher, clock):
    container = EscalationContainer(
        policy_provider=policy_provider,
        dispatcher=dispatcher,
        clock=clock,
        retry_backoff_seconds=0
    )
    assert container.uses_database

    async with container.engine_scope() as engine:
        result = await engine.calculate("INC-1", "medical", "high")
        assert result.created

    clock.advance(minutes=3)
    async with container.engine_scope() as engine:
        await engine.pause("INC-1")

    clock.advance(minutes=2)
    async with container.engine_scope() as engine:
        await engine.resume("INC-1")

    clock.advance(minutes=8)
    async with container.engine_scope() as engine:
        status = await engine.get_status("INC-1")
        assert status.status == TimerStatus.ESCALATED
        history = await engine.get_history("INC-1")

    assert [e.kind for e in history] == [
        EscalationEventKind.STARTED,
        EscalationEventKind.PAUSED,
        EscalationEventKind.RESUMED,
        EscalationEventKind.ESCALATED,
    ]
    assert len(dispatcher.notices) == 1

    async with container.engine_scope() as engine:
        assert (await engine.get_status("INC-1")).version == 4
