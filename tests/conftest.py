import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure src/ is importable when tests run from the repo root
SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from escalation.application import EscalationEngine, INotificationDispatcher
from escalation.container import EscalationContainer
from escalation.domain import EscalationNotice, EscalationPolicyConfig, EscalationTimer
from escalation.infrastructure import (
    InMemoryEscalationHistoryLog,
    InMemoryEscalationStore,
    PolicyConfigManager,
)

T0 = datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher(INotificationDispatcher):
    def __init__(self, result: bool = True):
        self.notices: List[EscalationNotice] = []
        self.result = result

    async def dispatch(self, notice: EscalationNotice) -> bool:
        self.notices.append(notice)
        return self.result


class InterleavingStore(InMemoryEscalationStore):
    """Yields to the event loop after every read so concurrent callers interleave."""

    async def load(self, incident_id: str) -> Optional[EscalationTimer]:
        timer = await super().load(incident_id)
        await asyncio.sleep(0)
        return timer


def make_policy_config() -> EscalationPolicyConfig:
    return EscalationPolicyConfig(
        policies={"medical": {"high": {"timeout_minutes": 10}}},
        event_overrides={
            "festival": [{"incident_type": "medical", "priority": "high", "timeout_minutes": 4}]
        }
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def policy_provider() -> PolicyConfigManager:
    return PolicyConfigManager(make_policy_config())


@pytest.fixture
def store() -> InterleavingStore:
    return InterleavingStore()


@pytest.fixture
def history() -> InMemoryEscalationHistoryLog:
    return InMemoryEscalationHistoryLog()


@pytest.fixture
def make_engine(store, history, policy_provider, dispatcher, clock):
    def _make(**kwargs) -> EscalationEngine:
        options = {
            "store": store,
            "history": history,
            "policy_provider": policy_provider,
            "dispatcher": dispatcher,
            "clock": clock,
            "retry_backoff_seconds": 0,
        }
        options.update(kwargs)
        return EscalationEngine(**options)

    return _make


@pytest.fixture
def engine(make_engine) -> EscalationEngine:
    return make_engine()


@pytest.fixture
def container(store, history, policy_provider, dispatcher, clock) -> EscalationContainer:
    return EscalationContainer(
        policy_provider=policy_provider,
        dispatcher=dispatcher,
        clock=clock,
        retry_backoff_seconds=0,
        memory_store=store,
        memory_history=history
    )


@pytest_asyncio.fixture
async def api_client(container):
    from main import app

    original = getattr(app.state, "escalation", None)
    app.state.escalation = container
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.state.escalation = original
