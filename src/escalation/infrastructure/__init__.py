"""
Escalation Infrastructure Layer
================================

Infrastructure implementations for incident escalation:
- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy and in-memory timer stores and history logs
- External: policy file manager, Slack dispatcher, sweep scheduler
"""

from escalation.infrastructure.models import EscalationTimerModel, EscalationEventModel
from escalation.infrastructure.repositories import (
    SQLAlchemyEscalationStore,
    SQLAlchemyEscalationHistoryLog,
    InMemoryEscalationStore,
    InMemoryEscalationHistoryLog,
)
from escalation.infrastructure.external import (
    PolicyConfigManager,
    SlackEscalationDispatcher,
    EscalationScheduler,
    CircuitBreaker,
)

__all__ = [
    "EscalationTimerModel",
    "EscalationEventModel",
    "SQLAlchemyEscalationStore",
    "SQLAlchemyEscalationHistoryLog",
    "InMemoryEscalationStore",
    "InMemoryEscalationHistoryLog",
    "PolicyConfigManager",
    "SlackEscalationDispatcher",
    "EscalationScheduler",
    "CircuitBreaker",
]
