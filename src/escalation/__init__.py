"""
Incident Escalation Module
==========================

Bounded Context for incident SLA timers and escalation.

Responsibilities:
- Resolve the SLA duration that applies to an incident
- Track active (non-paused) elapsed time against that duration
- Escalate exactly once when the deadline is exceeded
- Keep an append-only history of every timer transition
- Notify a dispatcher when an incident escalates

Requests are stateless: escalation is detected lazily whenever a running
timer is read, and an optional sweep shortens detection latency for
incidents nobody is looking at.
"""

__version__ = "1.0.0"
