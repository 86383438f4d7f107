"""
Escalation Controllers (API Routes)
====================================

FastAPI routes for incident escalation timers.

Controllers are thin - they delegate to the EscalationEngine. Application
exceptions are mapped to HTTP responses by the shared exception handler.
"""

from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request, Response, status

from escalation.application import (
    EscalationEngine,
    CalculateEscalationRequest,
    CalculateEscalationResponse,
    TimerTransitionRequest,
    TransitionResponse,
    EscalationStatusResponse,
    HistoryEntryResponse,
    HistoryResponse,
    SweepResponse,
    ErrorResponse,
)
from config import settings
from escalation.container import EscalationContainer, create_container
from escalation.domain import TransitionResult
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/escalations", tags=["Escalation"])


# ========== Example payloads for Swagger ==========

STATUS_RESPONSE_EXAMPLE = {
    "incident_id": "INC-2041",
    "status": "running",
    "deadline_at": "2024-06-01T14:10:00Z",
    "base_duration_ms": 600000,
    "started_at": "2024-06-01T14:00:00Z",
    "elapsed_active_ms": 180000,
    "remaining_ms": 420000,
    "total_paused_ms": 0,
    "paused_since": None,
    "urgency": "normal",
    "version": 1,
    "evaluated_at": "2024-06-01T14:03:00Z"
}

INVALID_TRANSITION_EXAMPLE = {
    "detail": "Cannot resolve escalation timer for incident INC-2041 in status 'escalated'",
    "error": "InvalidTransitionException",
    "correlation_id": "6f1c3c8e-8a44-4c55-9f51-2f0a1f0f5a42",
    "current_status": "escalated"
}

ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "No escalation timer for this incident"},
    409: {
        "model": ErrorResponse,
        "description": "Operation not permitted in the current status",
        "content": {"application/json": {"example": INVALID_TRANSITION_EXAMPLE}}
    },
    503: {"model": ErrorResponse, "description": "Timer busy or store unavailable, retry later"},
}


# ========== Dependencies ==========

def get_container(request: Request) -> EscalationContainer:
    """
    Process-wide escalation collaborators.

    Normally created by the app lifespan; built on first use where the
    lifespan is disabled (serverless) and kept for the process lifetime.
    """
    container = getattr(request.app.state, "escalation", None)
    if container is None:
        logger.info("Initializing escalation container on first request")
        container = create_container(settings)
        request.app.state.escalation = container
    return container


async def get_escalation_engine(
    container: EscalationContainer = Depends(get_container)
) -> AsyncGenerator[EscalationEngine, None]:
    """Engine bound to this request's unit of work."""
    async with container.engine_scope() as engine:
        yield engine


def _transition_response(result: TransitionResult) -> TransitionResponse:
    timer = EscalationStatusResponse.from_domain(result.snapshot)
    return TransitionResponse(
        success=result.success,
        changed=result.changed,
        status=timer.status,
        timer=timer
    )


# ========== Route Handlers ==========

@router.post(
    "/incidents/{incident_id}/calculate",
    response_model=CalculateEscalationResponse,
    summary="Calculate escalation time",
    description="""
    Start the incident's escalation timer, or report the existing one.

    **Idempotent**: the first call resolves the SLA policy from
    `incident_type`, `priority` and the optional `event_id` and starts the
    timer (201). Later calls return the existing deadline unchanged (200);
    the policy is never re-resolved.

    **Policy lookup**: event override, then type + priority, then priority
    default, then global default.
    """,
    responses={
        200: {"description": "Timer already existed"},
        201: {
            "description": "Timer created",
            "content": {"application/json": {"example": {**STATUS_RESPONSE_EXAMPLE, "created": True}}}
        },
        500: {"model": ErrorResponse, "description": "No applicable escalation policy configured"},
        503: ERROR_RESPONSES[503],
    }
)
async def calculate_escalation_time(
    incident_id: str,
    body: CalculateEscalationRequest,
    response: Response,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    result = await engine.calculate(
        incident_id,
        incident_type=body.incident_type,
        priority=body.priority,
        event_id=body.event_id,
        actor_id=body.actor_id
    )
    if result.created:
        response.status_code = status.HTTP_201_CREATED

    return CalculateEscalationResponse(
        **EscalationStatusResponse.from_domain(result.snapshot).model_dump(),
        created=result.created
    )


@router.get(
    "/incidents/{incident_id}",
    response_model=EscalationStatusResponse,
    summary="Get escalation status",
    description="""
    Current timer state. A running timer whose active time has reached its
    SLA duration is escalated as part of answering this request.
    """,
    responses={
        200: {"content": {"application/json": {"example": STATUS_RESPONSE_EXAMPLE}}},
        404: ERROR_RESPONSES[404],
        503: ERROR_RESPONSES[503],
    }
)
async def get_escalation_status(
    incident_id: str,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    snapshot = await engine.get_status(incident_id)
    return EscalationStatusResponse.from_domain(snapshot)


@router.get(
    "/incidents/{incident_id}/history",
    response_model=HistoryResponse,
    summary="Get escalation history",
    description="""
    Every timer transition for the incident, oldest first. An overdue
    running timer is escalated before the history is listed.
    """,
    responses={404: ERROR_RESPONSES[404], 503: ERROR_RESPONSES[503]}
)
async def get_escalation_history(
    incident_id: str,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    events = await engine.get_history(incident_id)
    return HistoryResponse(
        incident_id=incident_id,
        events=[HistoryEntryResponse.from_domain(event) for event in events]
    )


@router.post(
    "/incidents/{incident_id}/pause",
    response_model=TransitionResponse,
    summary="Pause escalation timer",
    description="""
    Stop the SLA clock. Pausing an already paused timer succeeds with
    `changed=false` and records nothing, so the call is safe to retry.
    """,
    responses=ERROR_RESPONSES
)
async def pause_escalation_timer(
    incident_id: str,
    body: TimerTransitionRequest,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    result = await engine.pause(incident_id, reason=body.reason, actor_id=body.actor_id)
    return _transition_response(result)


@router.post(
    "/incidents/{incident_id}/resume",
    response_model=TransitionResponse,
    summary="Resume escalation timer",
    description="""
    Restart the SLA clock; the paused interval moves the deadline forward.
    Resuming a running timer succeeds with `changed=false`.
    """,
    responses=ERROR_RESPONSES
)
async def resume_escalation_timer(
    incident_id: str,
    body: TimerTransitionRequest,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    result = await engine.resume(incident_id, reason=body.reason, actor_id=body.actor_id)
    return _transition_response(result)


@router.post(
    "/incidents/{incident_id}/resolve",
    response_model=TransitionResponse,
    summary="Resolve escalation timer",
    description="Stop the timer for good. Not allowed once the incident has escalated.",
    responses=ERROR_RESPONSES
)
async def resolve_escalation_timer(
    incident_id: str,
    body: TimerTransitionRequest,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    result = await engine.resolve(incident_id, reason=body.reason, actor_id=body.actor_id)
    return _transition_response(result)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run escalation sweep",
    description="""
    Check every running timer and escalate the overdue ones. Intended for an
    external cron where no in-process scheduler runs (serverless).
    """
)
async def run_escalation_sweep(
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    escalated = await engine.sweep()
    logger.info("Escalation sweep requested", extra={"escalated_count": len(escalated)})
    return SweepResponse(escalated=escalated, escalated_count=len(escalated))


# Export router for inclusion in main app
escalation_router = router
