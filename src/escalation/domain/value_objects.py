"""
Escalation Value Objects
=========================

Immutable value objects for the escalation domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from config import DEFAULT_GLOBAL_TIMEOUT_MINUTES, DEFAULT_PRIORITY_TIMEOUT_MINUTES
from core import PolicyNotFoundException

MS_PER_MINUTE = 60 * 1000


def normalize_key(value: Optional[str]) -> str:
    """Lower-case and strip a lookup key (incident type, priority, event id)."""
    return (value or "").strip().lower()


class PolicyRule(BaseModel):
    """A single SLA rule: how long until escalation, and when to warn."""
    timeout_minutes: float = Field(gt=0, description="Active minutes before escalation")
    warning_ratio: float = Field(default=0.5, gt=0, le=1, description="Consumed ratio for warning")
    critical_ratio: float = Field(default=0.8, gt=0, le=1, description="Consumed ratio for critical")

    @model_validator(mode="after")
    def check_ratio_order(self) -> "PolicyRule":
        if self.warning_ratio > self.critical_ratio:
            raise ValueError("warning_ratio cannot exceed critical_ratio")
        return self

    def to_policy(self) -> "EscalationPolicy":
        return EscalationPolicy(
            base_duration_ms=int(round(self.timeout_minutes * MS_PER_MINUTE)),
            warning_ratio=self.warning_ratio,
            critical_ratio=self.critical_ratio
        )


class EventPolicyOverride(PolicyRule):
    """
    Per-event override. Omitting ``incident_type`` or ``priority`` makes the
    override match any value for that field.
    """
    incident_type: Optional[str] = None
    priority: Optional[str] = None

    @field_validator("incident_type", "priority")
    @classmethod
    def normalize_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return normalize_key(v) or None

    def matches(self, incident_type: str, priority: str) -> bool:
        if self.incident_type is not None and self.incident_type != incident_type:
            return False
        if self.priority is not None and self.priority != priority:
            return False
        return True

    @property
    def specificity(self) -> int:
        # type+priority > priority > type > wildcard
        return (2 if self.priority is not None else 0) + (1 if self.incident_type is not None else 0)


def _default_priority_rules() -> Dict[str, PolicyRule]:
    return {
        priority: PolicyRule(timeout_minutes=minutes)
        for priority, minutes in DEFAULT_PRIORITY_TIMEOUT_MINUTES.items()
    }


class EscalationPolicyConfig(BaseModel):
    """
    Escalation policy table loaded from YAML.

    Lookup order: event override, (type, priority), priority default,
    global default.
    """
    policies: Dict[str, Dict[str, PolicyRule]] = Field(
        default_factory=dict,
        description="Rules by incident type, then priority"
    )
    priority_defaults: Dict[str, PolicyRule] = Field(
        default_factory=_default_priority_rules,
        description="Fallback rules by priority alone"
    )
    global_default: Optional[PolicyRule] = Field(
        default_factory=lambda: PolicyRule(timeout_minutes=DEFAULT_GLOBAL_TIMEOUT_MINUTES),
        description="Rule used when the priority itself is unrecognized"
    )
    event_overrides: Dict[str, List[EventPolicyOverride]] = Field(
        default_factory=dict,
        description="Per-event overrides keyed by event id"
    )

    @field_validator("policies")
    @classmethod
    def normalize_policies(
        cls, v: Dict[str, Dict[str, PolicyRule]]
    ) -> Dict[str, Dict[str, PolicyRule]]:
        return {
            normalize_key(incident_type): {
                normalize_key(priority): rule for priority, rule in rules.items()
            }
            for incident_type, rules in v.items()
        }

    @field_validator("priority_defaults")
    @classmethod
    def normalize_priority_defaults(cls, v: Dict[str, PolicyRule]) -> Dict[str, PolicyRule]:
        return {normalize_key(priority): rule for priority, rule in v.items()}

    @field_validator("event_overrides")
    @classmethod
    def normalize_event_ids(
        cls, v: Dict[str, List[EventPolicyOverride]]
    ) -> Dict[str, List[EventPolicyOverride]]:
        return {normalize_key(event_id): overrides for event_id, overrides in v.items()}


@dataclass(frozen=True)
class EscalationPolicy:
    """Resolved SLA policy for one incident."""
    base_duration_ms: int
    warning_ratio: float
    critical_ratio: float

    @property
    def base_duration_minutes(self) -> float:
        return self.base_duration_ms / MS_PER_MINUTE


class PolicyResolver:
    """
    Deterministic lookup from (incident type, priority, event) to a policy.

    Pure: no I/O, no clock, no mutation of the config it was given.
    """

    def __init__(self, config: EscalationPolicyConfig):
        self._config = config

    def resolve(
        self,
        incident_type: str,
        priority: str,
        event_id: Optional[str] = None
    ) -> EscalationPolicy:
        """
        Resolve the SLA policy for an incident.

        Raises:
            PolicyNotFoundException: nothing matched and no global default exists
        """
        incident_type = normalize_key(incident_type)
        priority = normalize_key(priority)

        override = self._match_override(incident_type, priority, normalize_key(event_id))
        if override is not None:
            return override.to_policy()

        rule = self._config.policies.get(incident_type, {}).get(priority)
        if rule is None:
            rule = self._config.priority_defaults.get(priority)
        if rule is None:
            rule = self._config.global_default
        if rule is None:
            raise PolicyNotFoundException(incident_type, priority)

        return rule.to_policy()

    def _match_override(
        self,
        incident_type: str,
        priority: str,
        event_id: str
    ) -> Optional[EventPolicyOverride]:
        if not event_id:
            return None

        candidates = [
            override
            for override in self._config.event_overrides.get(event_id, [])
            if override.matches(incident_type, priority)
        ]
        if not candidates:
            return None

        # max() keeps the first of equally specific overrides
        return max(candidates, key=lambda o: o.specificity)
