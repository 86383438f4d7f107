"""
Escalation Domain Layer
========================

Domain layer for the incident escalation module.

Contains:
- Entities: EscalationTimer, EscalationEvent and computed result records
- Value Objects: policy table, resolved policy and the PolicyResolver

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from escalation.domain.entities import (
    EscalationTimer,
    EscalationEvent,
    EscalationNotice,
    TimerSnapshot,
    CalculationResult,
    TransitionResult,
    utc_now,
)
from escalation.domain.value_objects import (
    PolicyResolver,
    PolicyRule,
    EventPolicyOverride,
    EscalationPolicyConfig,
    EscalationPolicy,
)

__all__ = [
    # Entities
    "EscalationTimer",
    "EscalationEvent",
    "EscalationNotice",
    "TimerSnapshot",
    "CalculationResult",
    "TransitionResult",
    "utc_now",
    # Value Objects & Services
    "PolicyResolver",
    "PolicyRule",
    "EventPolicyOverride",
    "EscalationPolicyConfig",
    "EscalationPolicy",
]
