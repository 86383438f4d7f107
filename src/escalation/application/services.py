"""
Escalation Application Services
================================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: the engine owns the state machine, nothing else writes timers
- Dependency Inversion: depend on abstractions (store, history log, dispatcher,
  policy provider), never on concrete implementations
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from config import EscalationEventKind
from core import (
    AlreadyExistsException,
    EscalationBusyException,
    StoreUnavailableException,
    TimerNotFoundException,
    ValidationException,
    VersionConflictException,
    ApplicationException,
)
from escalation.domain import (
    EscalationTimer,
    EscalationEvent,
    EscalationNotice,
    EscalationPolicyConfig,
    PolicyResolver,
    CalculationResult,
    TransitionResult,
    TimerSnapshot,
    utc_now,
)
from escalation.domain.value_objects import normalize_key
from shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

T = TypeVar("T")


# ========== Repository Interfaces (Dependency Inversion) ==========

class IEscalationStore(ABC):
    """
    Durable timer storage.

    Every mutation is create-once or version-checked; there is no blind
    overwrite. ``commit``/``rollback`` delimit one transition so the timer
    write and its history entry land together.
    """

    @abstractmethod
    async def load(self, incident_id: str) -> Optional[EscalationTimer]:
        """Get the timer for an incident, or None."""

    @abstractmethod
    async def create(self, timer: EscalationTimer) -> EscalationTimer:
        """Insert a new timer. Raises AlreadyExistsException on duplicates."""

    @abstractmethod
    async def conditional_save(self, timer: EscalationTimer) -> EscalationTimer:
        """
        Persist ``timer`` if the stored version equals ``timer.version``.

        Returns the saved timer with the incremented version.
        Raises VersionConflictException on mismatch.
        """

    @abstractmethod
    async def list_active(self) -> List[EscalationTimer]:
        """List Running timers (sweep candidates)."""

    @abstractmethod
    async def commit(self) -> None:
        """Make the pending transition durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard the pending transition."""


class IEscalationHistoryLog(ABC):
    """Append-only transition history."""

    @abstractmethod
    async def append(self, event: EscalationEvent) -> None:
        """Append one entry."""

    @abstractmethod
    async def list_by_incident(self, incident_id: str) -> List[EscalationEvent]:
        """Entries for an incident, ascending by occurred_at then insertion order."""


class INotificationDispatcher(ABC):
    """Delivery of escalation notices (email, SMS, chat...)."""

    @abstractmethod
    async def dispatch(self, notice: EscalationNotice) -> bool:
        """Deliver a notice. Returns False when delivery failed."""


class IPolicyProvider(ABC):
    """Interface for escalation policy configuration access."""

    @abstractmethod
    def get_config(self) -> EscalationPolicyConfig:
        """Get current policy table."""


# ========== Application Services ==========

class EscalationEngine:
    """
    Orchestrates policy resolution, the timer state machine and history.

    One engine instance serves one unit of work (typically one request);
    its collaborators carry the process-wide state.
    """

    def __init__(
        self,
        store: IEscalationStore,
        history: IEscalationHistoryLog,
        policy_provider: IPolicyProvider,
        dispatcher: INotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 0.05
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._history = history
        self._policy_provider = policy_provider
        self._dispatcher = dispatcher
        self._clock = clock
        self._max_attempts = max_attempts
        self._retry_backoff_seconds = retry_backoff_seconds

    # ---------- public operations ----------

    async def calculate(
        self,
        incident_id: str,
        incident_type: str,
        priority: str,
        event_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        deadline_seconds: Optional[float] = None
    ) -> CalculationResult:
        """
        Create the incident's timer if absent, otherwise report the existing one.

        Policy is resolved only on creation; an existing timer keeps the
        duration it was created with.
        """
        missing = [
            name for name, value in (
                ("incident_id", incident_id),
                ("incident_type", incident_type),
                ("priority", priority),
            )
            if not (value or "").strip()
        ]
        if missing:
            raise ValidationException(
                f"Missing required fields: {', '.join(missing)}",
                {"fields": missing}
            )

        async def attempt() -> CalculationResult:
            timer = await self._store.load(incident_id)
            if timer is None:
                created = await self._create_timer(
                    incident_id, incident_type, priority, event_id, actor_id
                )
                if created is not None:
                    return CalculationResult(snapshot=created.snapshot(self._clock()), created=True)
                timer = await self._require_timer(incident_id)

            now = self._clock()
            timer, _ = await self._escalate_if_due(timer, now)
            return CalculationResult(snapshot=timer.snapshot(now), created=False)

        return await self._run(incident_id, attempt, deadline_seconds)

    async def get_status(
        self,
        incident_id: str,
        deadline_seconds: Optional[float] = None
    ) -> TimerSnapshot:
        """Read the timer, escalating it first if its deadline has passed."""

        async def attempt() -> TimerSnapshot:
            timer = await self._require_timer(incident_id)
            now = self._clock()
            timer, _ = await self._escalate_if_due(timer, now)
            return timer.snapshot(now)

        return await self._run(incident_id, attempt, deadline_seconds)

    # External pollers use the same read path
    check_and_escalate = get_status

    async def pause(
        self,
        incident_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        deadline_seconds: Optional[float] = None
    ) -> TransitionResult:
        return await self._transition(
            incident_id, EscalationEventKind.PAUSED, reason, actor_id, deadline_seconds
        )

    async def resume(
        self,
        incident_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        deadline_seconds: Optional[float] = None
    ) -> TransitionResult:
        return await self._transition(
            incident_id, EscalationEventKind.RESUMED, reason, actor_id, deadline_seconds
        )

    async def resolve(
        self,
        incident_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        deadline_seconds: Optional[float] = None
    ) -> TransitionResult:
        return await self._transition(
            incident_id, EscalationEventKind.RESOLVED, reason, actor_id, deadline_seconds
        )

    async def get_history(
        self,
        incident_id: str,
        deadline_seconds: Optional[float] = None
    ) -> List[EscalationEvent]:
        """
        Transition history, oldest first.

        An overdue Running timer is escalated before the history is listed.
        Raises TimerNotFoundException if no timer was ever created.
        """

        async def attempt() -> List[EscalationEvent]:
            timer = await self._require_timer(incident_id)
            await self._escalate_if_due(timer, self._clock())
            return await self._history.list_by_incident(incident_id)

        return await self._run(incident_id, attempt, deadline_seconds)

    async def sweep(self) -> List[str]:
        """
        Check every Running timer and escalate the due ones.

        Returns:
            Incident ids escalated by this sweep
        """
        escalated: List[str] = []
        with log_latency(logger, "escalation_sweep") as stats:
            candidates = await self._store.list_active()
            now = self._clock()
            stats["timers_checked"] = len(candidates)

            for timer in candidates:
                if not timer.is_due(now):
                    continue
                try:
                    escalated_here = await self._sweep_one(timer.incident_id)
                except ApplicationException as e:
                    logger.error(
                        "Escalation sweep failed for incident",
                        extra={"incident_id": timer.incident_id, "error": e.message}
                    )
                    continue
                if escalated_here:
                    escalated.append(timer.incident_id)

            stats["timers_escalated"] = len(escalated)
        return escalated

    async def _sweep_one(self, incident_id: str) -> bool:
        """Escalate one sweep candidate; False if it was no longer due or someone else escalated it."""

        async def attempt() -> bool:
            timer = await self._require_timer(incident_id)
            _, escalated = await self._escalate_if_due(timer, self._clock())
            return escalated

        return await self._run(incident_id, attempt, None)

    # ---------- transition internals ----------

    async def _transition(
        self,
        incident_id: str,
        kind: EscalationEventKind,
        reason: Optional[str],
        actor_id: Optional[str],
        deadline_seconds: Optional[float]
    ) -> TransitionResult:

        async def attempt() -> TransitionResult:
            timer = await self._require_timer(incident_id)
            now = self._clock()
            timer, _ = await self._escalate_if_due(timer, now)

            if kind == EscalationEventKind.PAUSED:
                updated = timer.pause(now)
            elif kind == EscalationEventKind.RESUMED:
                updated = timer.resume(now)
            else:
                updated = timer.resolve(now)

            if updated is None:
                return TransitionResult(snapshot=timer.snapshot(now), changed=False)

            saved = await self._store.conditional_save(updated)
            await self._history.append(EscalationEvent(
                incident_id=incident_id,
                kind=kind,
                occurred_at=now,
                reason=reason,
                actor_id=actor_id
            ))
            await self._store.commit()

            logger.info(
                "Escalation timer transitioned",
                extra={
                    "incident_id": incident_id,
                    "transition": kind.value,
                    "status": saved.status.value,
                    "version": saved.version
                }
            )
            return TransitionResult(snapshot=saved.snapshot(now), changed=True)

        return await self._run(incident_id, attempt, deadline_seconds)

    async def _create_timer(
        self,
        incident_id: str,
        incident_type: str,
        priority: str,
        event_id: Optional[str],
        actor_id: Optional[str]
    ) -> Optional[EscalationTimer]:
        """Create and record a new timer. Returns None if another request created it first."""
        resolver = PolicyResolver(self._policy_provider.get_config())
        policy = resolver.resolve(incident_type, priority, event_id)

        now = self._clock()
        timer = EscalationTimer.start(
            incident_id,
            policy,
            now,
            incident_type=normalize_key(incident_type),
            priority=normalize_key(priority),
            event_id=event_id
        )

        try:
            created = await self._store.create(timer)
        except AlreadyExistsException:
            await self._store.rollback()
            logger.debug("Lost timer creation race", extra={"incident_id": incident_id})
            return None

        await self._history.append(EscalationEvent(
            incident_id=incident_id,
            kind=EscalationEventKind.STARTED,
            occurred_at=now,
            actor_id=actor_id
        ))
        await self._store.commit()

        logger.info(
            "Escalation timer started",
            extra={
                "incident_id": incident_id,
                "incident_type": timer.incident_type,
                "priority": timer.priority,
                "event_id": event_id,
                "base_duration_ms": timer.base_duration_ms,
                "deadline_at": timer.deadline_at.isoformat()
            }
        )
        return created

    async def _escalate_if_due(
        self,
        timer: EscalationTimer,
        now: datetime
    ) -> Tuple[EscalationTimer, bool]:
        """
        Apply the Running -> Escalated guard.

        Only the caller whose conditional save wins appends the history entry
        and notifies; a loser gets VersionConflictException and re-reads.

        Returns:
            The current timer and whether this call escalated it
        """
        if not timer.is_due(now):
            return timer, False

        saved = await self._store.conditional_save(timer.escalate(now))
        await self._history.append(EscalationEvent(
            incident_id=timer.incident_id,
            kind=EscalationEventKind.ESCALATED,
            occurred_at=now,
            reason="SLA deadline exceeded"
        ))
        await self._store.commit()

        logger.warning(
            "Incident escalated",
            extra={
                "incident_id": timer.incident_id,
                "deadline_at": saved.deadline_at.isoformat(),
                "elapsed_active_ms": saved.elapsed_active_ms(now)
            }
        )

        notice = EscalationNotice(
            incident_id=timer.incident_id,
            deadline_at=saved.deadline_at,
            occurred_at=now
        )
        await self._notify(notice)
        return saved, True

    async def _notify(self, notice: EscalationNotice) -> None:
        """Hand the notice to the dispatcher. The escalation is already committed."""
        try:
            delivered = await self._dispatcher.dispatch(notice)
        except Exception as e:
            logger.error(
                "Escalation notification failed",
                extra={"incident_id": notice.incident_id, "error": str(e)}
            )
            return
        if not delivered:
            logger.warning(
                "Escalation notification not delivered",
                extra={"incident_id": notice.incident_id}
            )

    async def _require_timer(self, incident_id: str) -> EscalationTimer:
        timer = await self._store.load(incident_id)
        if timer is None:
            raise TimerNotFoundException(incident_id)
        return timer

    async def _run(
        self,
        incident_id: str,
        attempt: Callable[[], Awaitable[T]],
        deadline_seconds: Optional[float]
    ) -> T:
        """
        Run ``attempt`` with bounded retries.

        Version conflicts are retried with exponential backoff up to
        ``max_attempts`` (and never past ``deadline_seconds``). A store
        failure is retried once, then surfaced.
        """
        started = time.monotonic()
        store_retry_used = False
        attempt_no = 0

        while True:
            attempt_no += 1
            try:
                return await attempt()
            except VersionConflictException:
                await self._store.rollback()
                out_of_time = (
                    deadline_seconds is not None
                    and time.monotonic() - started >= deadline_seconds
                )
                if attempt_no >= self._max_attempts or out_of_time:
                    break
                logger.debug(
                    "Version conflict, retrying",
                    extra={"incident_id": incident_id, "attempt": attempt_no}
                )
                await asyncio.sleep(self._retry_backoff_seconds * 2 ** (attempt_no - 1))
            except StoreUnavailableException as e:
                await self._store.rollback()
                if store_retry_used:
                    raise
                store_retry_used = True
                attempt_no -= 1
                logger.warning(
                    "Escalation store failed, retrying once",
                    extra={"incident_id": incident_id, "error": e.message}
                )
                await asyncio.sleep(self._retry_backoff_seconds)
            except Exception:
                await self._store.rollback()
                raise

        current = await self._store.load(incident_id)
        logger.warning(
            "Escalation timer busy, giving up",
            extra={"incident_id": incident_id, "attempts": attempt_no}
        )
        raise EscalationBusyException(
            incident_id,
            current.status.value if current else None,
            attempt_no
        )
