"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


# ========== Escalation ==========

class PolicyNotFoundException(ConfigurationException):
    """No policy and no default covers an incident type/priority pair."""

    def __init__(self, incident_type: str, priority: str):
        self.incident_type = incident_type
        self.priority = priority
        super().__init__(
            f"No escalation policy for {incident_type}/{priority} and no default configured",
            {"incident_type": incident_type, "priority": priority}
        )


class InvalidTransitionException(DomainException):
    """Requested operation is not permitted from the timer's current status."""

    def __init__(self, incident_id: str, current_status: str, operation: str):
        self.incident_id = incident_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} escalation timer for incident {incident_id} "
            f"in status '{current_status}'",
            {
                "incident_id": incident_id,
                "current_status": current_status,
                "operation": operation
            }
        )


class TimerNotFoundException(ResourceNotFoundException):
    """No escalation timer exists yet for the incident."""

    def __init__(self, incident_id: str):
        self.incident_id = incident_id
        super().__init__("Escalation timer", incident_id, {"incident_id": incident_id})


class VersionConflictException(RepositoryException):
    """Conditional write rejected because the stored version moved on."""

    def __init__(self, incident_id: str, expected_version: int):
        self.incident_id = incident_id
        self.expected_version = expected_version
        super().__init__(
            f"Escalation timer for incident {incident_id} changed concurrently "
            f"(expected version {expected_version})",
            {"incident_id": incident_id, "expected_version": expected_version}
        )


class AlreadyExistsException(RepositoryException):
    """Create rejected because a timer already exists for the incident."""

    def __init__(self, incident_id: str):
        self.incident_id = incident_id
        super().__init__(
            f"Escalation timer for incident {incident_id} already exists",
            {"incident_id": incident_id}
        )


class EscalationBusyException(RepositoryException):
    """Conflicting writes kept winning until the retry budget ran out."""

    def __init__(self, incident_id: str, current_status: Optional[str], attempts: int):
        self.incident_id = incident_id
        self.current_status = current_status
        self.attempts = attempts
        super().__init__(
            f"Escalation timer for incident {incident_id} is busy, retry later",
            {
                "incident_id": incident_id,
                "current_status": current_status,
                "attempts": attempts,
                "retryable": True
            }
        )


class StoreUnavailableException(RepositoryException):
    """The backing store failed to answer."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(
            f"Escalation store failed during {operation}: {message}",
            {"operation": operation}
        )
