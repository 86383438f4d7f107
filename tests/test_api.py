from datetime import datetime, timedelta
from typing import get_args

import pytest

from config import EscalationEventKind, TimerStatus, UrgencyLevel
from core import VersionConflictException
from escalation.application.dto import EventKindStr, TimerStatusStr, UrgencyStr
from escalation.infrastructure import InMemoryEscalationStore


def parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


CALCULATE_BODY = {"incident_type": "medical", "priority": "high", "actor_id": "dispatcher-1"}


@pytest.mark.asyncio
async def test_calculate_creates_then_reads(api_client, clock):
    first = await api_client.post("/escalations/incidents/INC-1/calculate", json=CALCULATE_BODY)
    assert first.status_code == 201
    body = first.json()
    assert body["created"] is True
    assert body["status"] == "running"
    assert body["version"] == 1
    assert body["urgency"] == "normal"
    assert parse_time(body["deadline_at"]) == clock.now + timedelta(minutes=10)

    second = await api_client.post("/escalations/incidents/INC-1/calculate", json=CALCULATE_BODY)
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["deadline_at"] == body["deadline_at"]


@pytest.mark.asyncio
async def test_calculate_validates_body(api_client):
    response = await api_client.post(
        "/escalations/incidents/INC-1/calculate",
        json={"incident_type": "   ", "priority": "high"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_status_of_unknown_incident(api_client):
    response = await api_client.get(
        "/escalations/incidents/missing",
        headers={"X-Correlation-ID": "corr-123"}
    )
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "TimerNotFoundException"
    assert body["correlation_id"] == "corr-123"
    assert response.headers["X-Correlation-ID"] == "corr-123"


@pytest.mark.asyncio
async def test_pause_resume_and_status(api_client, clock):
    await api_client.post("/escalations/incidents/INC-1/calculate", json=CALCULATE_BODY)
    clock.advance(minutes=3)

    paused = await api_client.post(
        "/escalations/incidents/INC-1/pause",
        json={"reason": "  caller on hold  ", "actor_id": "u-1"}
    )
    assert paused.status_code == 200
    assert paused.json()["changed"] is True
    assert paused.json()["status"] == "paused"

    repeat = await api_client.post("/escalations/incidents/INC-1/pause", json={})
    assert repeat.status_code == 200
    assert repeat.json()["success"] is True
    assert repeat.json()["changed"] is False

    clock.advance(minutes=2)
    resumed = await api_client.post("/escalations/incidents/INC-1/resume", json={})
    assert resumed.json()["timer"]["total_paused_ms"] == 2 * 60 * 1000

    clock.advance(minutes=6)
    status = await api_client.get("/escalations/incidents/INC-1")
    assert status.status_code == 200
    assert status.json()["status"] == "running"
    assert status.json()["urgency"] == "critical"

    history = await api_client.get("/escalations/incidents/INC-1/history")
    events = history.json()["events"]
    assert [e["kind"] for e in events] == ["started", "paused", "resumed"]
    assert events[1]["reason"] == "caller on hold"
    assert events[1]["actor_id"] == "u-1"


@pytest.mark.asyncio
async def test_reason_length_is_limited(api_client):
    await api_client.post("/escalations/incidents/INC-1/calculate", json=CALCULATE_BODY)
    response = await api_client.post(
        "/escalations/incidents/INC-1/pause",
        json={"reason": "x" * 501}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_escalated_timer_rejects_resolve(api_client, clock, dispatcher):
    await api_client.post("/escalations/incidents/INC-1/calculate", json=CALCULATE_BODY)
    clock.advance(minutes=10)

    status = await api_client.get("/escalations/incidents/INC-1")
    assert status.json()["status"] == "escalated"
    assert status.json()["urgency"] == "overdue"

    response = await api_client.post("/escalations/incidents/INC-1/resolve", json={})
    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "InvalidTransitionException"
    assert body["current_status"] == "escalated"
    assert len(dispatcher.notices) == 1


@pytest.mark.asyncio
async def test_sweep_endpoint(api_client, clock):
    await api_client.post("/escalations/incidents/INC-1/calculate", json=CALCULATE_BODY)
    await api_client.post(
        "/escalations/incidents/INC-2/calculate",
        json={"incident_type": "lost_person", "priority": "low"}
    )
    clock.advance(minutes=12)

    response = await api_client.post("/escalations/sweep")

    assert response.status_code == 200
    assert response.json() == {"escalated": ["INC-1"], "escalated_count": 1}


class ConflictingStore(InMemoryEscalationStore):
    async def conditional_save(self, timer):
        raise VersionConflictException(timer.incident_id, timer.version)


@pytest.mark.asyncio
async def test_busy_timer_answers_503(api_client, container):
    container.memory_store = ConflictingStore()
    await api_client.post("/escalations/incidents/INC-1/calculate", json=CALCULATE_BODY)

    response = await api_client.post("/escalations/incidents/INC-1/pause", json={})

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"
    body = response.json()
    assert body["error"] == "EscalationBusyException"
    assert body["current_status"] == "running"
    assert body["retryable"] is True


@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["checks"]["escalation_policies"] == "loaded"


def test_response_literals_match_enums():
    assert get_args(TimerStatusStr) == tuple(s.value for s in TimerStatus)
    assert get_args(EventKindStr) == tuple(k.value for k in EscalationEventKind)
    assert get_args(UrgencyStr) == tuple(u.value for u in UrgencyLevel)


@pytest.mark.asyncio
async def test_history_of_overdue_incident_includes_escalation(api_client, clock, dispatcher):
    await api_client.post("/escalations/incidents/INC-1/calculate", json=CALCULATE_BODY)
    clock.advance(minutes=11)

    response = await api_client.get("/escalations/incidents/INC-1/history")

    assert response.status_code == 200
    assert [e["kind"] for e in response.json()["events"]] == ["started", "escalated"]
    assert len(dispatcher.notices) == 1
