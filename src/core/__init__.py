"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    PolicyNotFoundException,
    InvalidTransitionException,
    TimerNotFoundException,
    VersionConflictException,
    AlreadyExistsException,
    EscalationBusyException,
    StoreUnavailableException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "PolicyNotFoundException",
    "InvalidTransitionException",
    "TimerNotFoundException",
    "VersionConflictException",
    "AlreadyExistsException",
    "EscalationBusyException",
    "StoreUnavailableException",
]
