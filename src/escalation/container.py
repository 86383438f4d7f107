"""
Escalation Composition Root
============================

Process-wide collaborators for the escalation engine.

The container is built once at startup and reused by every request.
Engines are cheap and built per unit of work around a session-scoped store.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncGenerator, Callable, Optional

from config import Settings
from infrastructure.database import ensure_database, get_session_context
from escalation.application import (
    EscalationEngine,
    IEscalationHistoryLog,
    IEscalationStore,
    INotificationDispatcher,
    IPolicyProvider,
)
from escalation.domain import utc_now
from escalation.infrastructure import (
    InMemoryEscalationHistoryLog,
    InMemoryEscalationStore,
    PolicyConfigManager,
    SlackEscalationDispatcher,
    SQLAlchemyEscalationHistoryLog,
    SQLAlchemyEscalationStore,
)


@dataclass
class EscalationContainer:
    """
    Explicit dependencies of the escalation engine.

    ``memory_store``/``memory_history`` are set only for the in-memory
    backend; otherwise every unit of work opens its own database session.
    """

    policy_provider: IPolicyProvider
    dispatcher: INotificationDispatcher
    clock: Callable[[], datetime] = utc_now
    max_attempts: int = 3
    retry_backoff_seconds: float = 0.05
    memory_store: Optional[IEscalationStore] = None
    memory_history: Optional[IEscalationHistoryLog] = None

    @property
    def uses_database(self) -> bool:
        return self.memory_store is None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        policy_provider: PolicyConfigManager,
        dispatcher: Optional[INotificationDispatcher] = None
    ) -> "EscalationContainer":
        if dispatcher is None:
            dispatcher = SlackEscalationDispatcher(
                webhook_url=settings.slack_webhook_url,
                channel=settings.slack_channel,
                timeout_seconds=settings.slack_timeout_seconds,
                incident_base_url=settings.incident_base_url
            )

        memory = settings.escalation_store_backend == "memory"
        return cls(
            policy_provider=policy_provider,
            dispatcher=dispatcher,
            max_attempts=settings.escalation_max_attempts,
            retry_backoff_seconds=settings.escalation_retry_backoff_seconds,
            memory_store=InMemoryEscalationStore() if memory else None,
            memory_history=InMemoryEscalationHistoryLog() if memory else None
        )

    def build_engine(
        self,
        store: IEscalationStore,
        history: IEscalationHistoryLog
    ) -> EscalationEngine:
        return EscalationEngine(
            store=store,
            history=history,
            policy_provider=self.policy_provider,
            dispatcher=self.dispatcher,
            clock=self.clock,
            max_attempts=self.max_attempts,
            retry_backoff_seconds=self.retry_backoff_seconds
        )

    @asynccontextmanager
    async def engine_scope(self) -> AsyncGenerator[EscalationEngine, None]:
        """Yield an engine bound to one unit of work."""
        if not self.uses_database:
            yield self.build_engine(self.memory_store, self.memory_history)
            return

        async with get_session_context() as session:
            yield self.build_engine(
                SQLAlchemyEscalationStore(session),
                SQLAlchemyEscalationHistoryLog(session)
            )

    async def close(self) -> None:
        stop_watching = getattr(self.policy_provider, "stop_watching", None)
        if stop_watching is not None:
            stop_watching()
        close = getattr(self.dispatcher, "close", None)
        if close is not None:
            await close()


def create_container(settings: Settings, watch_policies: bool = False) -> EscalationContainer:
    """
    Load policies and wire the default collaborators.

    Called from the app lifespan, or lazily on the first request where no
    lifespan runs (serverless).
    """
    policy_manager = PolicyConfigManager()
    policy_manager.load(settings.escalation_policy_path)
    if watch_policies:
        policy_manager.start_watching()

    if settings.escalation_store_backend == "database":
        ensure_database()

    return EscalationContainer.from_settings(settings, policy_manager)
