"""
Escalation External Service Integrations
=========================================

External services for incident escalation:
- YAML policy table with watchdog hot-reload
- Slack webhook notifications for escalated incidents
- APScheduler interval job for the escalation sweep
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from core import ConfigurationException
from escalation.application import INotificationDispatcher, IPolicyProvider
from escalation.domain import EscalationNotice, EscalationPolicyConfig
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for policy file changes."""

    def __init__(self, config_manager: "PolicyConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Escalation policy file changed", extra={"path": event.src_path})
            self.config_manager.reload()


class PolicyConfigManager(IPolicyProvider):
    """
    Thread-safe escalation policy provider with hot-reload support.

    Reloads only affect timers created afterwards; existing timers keep
    the policy they were started with.
    """

    def __init__(self, config: Optional[EscalationPolicyConfig] = None):
        self._config = config
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EscalationPolicyConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: the file exists but is not a valid policy table
        """
        self._path = path
        config = self._load_from_file(path)
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> EscalationPolicyConfig:
        if not path.exists():
            logger.warning(
                "Escalation policy file not found, using default policies",
                extra={"path": str(path)}
            )
            return EscalationPolicyConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return EscalationPolicyConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid escalation policy file {path}: {e}",
                {"path": str(path)}
            ) from e

    def reload(self) -> bool:
        """Reload configuration from file, keeping the old table on failure."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error("Failed to reload escalation policies", extra={"error": e.message})
            return False

        with self._lock:
            self._config = new_config
        logger.info("Escalation policies reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching if the file doesn't exist or the platform can't watch
        (e.g. read-only serverless filesystems).
        """
        if self._path is None:
            raise RuntimeError("Policies not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Policy file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                PolicyFileHandler(self, self._path),
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning(
                "File watching not available, using static policies",
                extra={"error": str(e)}
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the policy file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> EscalationPolicyConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("Escalation policies not loaded")
            return self._config


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class SlackEscalationDispatcher(INotificationDispatcher):
    """
    Slack webhook dispatcher with circuit breaker and retry logic.

    Delivery is best effort: failures are logged and reported as False,
    never raised, so an escalation is not undone by a chat outage.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        channel: str,
        timeout_seconds: float = 5.0,
        incident_base_url: str = "",
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout_seconds = timeout_seconds
        self._incident_base_url = incident_base_url.rstrip("/")
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    def build_message(self, notice: EscalationNotice) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        incident_ref = notice.incident_id
        if self._incident_base_url:
            incident_ref = f"<{self._incident_base_url}/{notice.incident_id}|{notice.incident_id}>"

        overdue_seconds = max(0, (notice.occurred_at - notice.deadline_at).total_seconds())

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": "🚨 Incident Escalated",
                    "emoji": True
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Incident:*\n{incident_ref}"},
                    {"type": "mrkdwn", "text": f"*Deadline:*\n{notice.deadline_at.isoformat()}"},
                    {"type": "mrkdwn", "text": f"*Escalated at:*\n{notice.occurred_at.isoformat()}"},
                    {"type": "mrkdwn", "text": f"*Overdue by:*\n{overdue_seconds:.0f}s"}
                ]
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": "SLA deadline exceeded while the incident was still open."
                    }
                ]
            }
        ]

        return {
            "channel": self._channel,
            "text": f"Incident {notice.incident_id} escalated",
            "blocks": blocks
        }

    async def dispatch(self, notice: EscalationNotice) -> bool:
        if not self._webhook_url:
            logger.debug(
                "Slack webhook URL not configured, skipping notification",
                extra={"incident_id": notice.incident_id}
            )
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping Slack notification",
                extra={"incident_id": notice.incident_id}
            )
            return False

        message = self.build_message(notice)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack escalation notification sent",
                        extra={"incident_id": notice.incident_id}
                    )
                    return True

                logger.warning(
                    "Slack webhook returned non-200",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "incident_id": notice.incident_id
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class EscalationScheduler:
    """
    Wrapper for APScheduler running the escalation sweep.

    The sweep only shortens detection latency; reads escalate on their own.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="escalation_sweep",
            name="Escalation Sweep Job",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
