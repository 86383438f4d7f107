"""
Escalation Application Layer
=============================

Application layer for the incident escalation module.

Contains:
- Services: the EscalationEngine and the collaborator interfaces it depends on
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from escalation.application.dto import (
    CalculateEscalationRequest,
    TimerTransitionRequest,
    EscalationStatusResponse,
    CalculateEscalationResponse,
    TransitionResponse,
    HistoryEntryResponse,
    HistoryResponse,
    SweepResponse,
    ErrorResponse,
)
from escalation.application.services import (
    EscalationEngine,
    IEscalationStore,
    IEscalationHistoryLog,
    INotificationDispatcher,
    IPolicyProvider,
)

__all__ = [
    # DTOs
    "CalculateEscalationRequest",
    "TimerTransitionRequest",
    "EscalationStatusResponse",
    "CalculateEscalationResponse",
    "TransitionResponse",
    "HistoryEntryResponse",
    "HistoryResponse",
    "SweepResponse",
    "ErrorResponse",
    # Services
    "EscalationEngine",
    # Collaborator Interfaces
    "IEscalationStore",
    "IEscalationHistoryLog",
    "INotificationDispatcher",
    "IPolicyProvider",
]
