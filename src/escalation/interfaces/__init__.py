"""
Escalation Interfaces Layer
============================

Interface adapters (controllers) for the escalation module.

This is the outermost layer - handles HTTP requests/responses and
delegates to the EscalationEngine.
"""

from escalation.interfaces.controllers import escalation_router

__all__ = ["escalation_router"]
