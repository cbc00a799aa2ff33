"""
Ticket External Service Integrations
====================================

External services for the ticket engine:
- YAML engine config file watcher
- Notification sinks (in-app notifications table, JSON webhook)
- APScheduler adapter that triggers the scanner passes
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from uuid import UUID

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from agency_desk.config import NotificationKind
from agency_desk.core import ConfigurationException
from agency_desk.shared.infrastructure.logging import get_logger
from agency_desk.tickets.application.services import IEngineConfigProvider, INotificationSink
from agency_desk.tickets.domain import EngineConfig, NotificationEvent
from agency_desk.tickets.infrastructure.models import NotificationModel

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for engine config file changes."""

    def __init__(self, config_manager: "EngineConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Engine config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class EngineConfigManager(IEngineConfigProvider):
    """
    Thread-safe engine configuration with hot-reload support.

    Uses watchdog to monitor the YAML file and swaps in the new
    configuration atomically. A file that fails to parse on reload is
    ignored and the previous configuration stays active.
    """

    def __init__(self):
        self._config: Optional[EngineConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EngineConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = path
        try:
            config = self._load_from_file(path)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(
                f"Invalid engine configuration in {path}",
                details={"error": str(e)}
            ) from e
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> EngineConfig:
        if not path.exists():
            logger.warning("Engine config file not found, using defaults", extra={"path": str(path)})
            return EngineConfig()

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return EngineConfig(**data)

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, OSError) as e:
            logger.error(
                "Failed to reload engine config, keeping previous",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._config = new_config
        logger.info(
            "Engine configuration reloaded",
            extra={
                "sla_policies": len(new_config.sla_policies),
                "escalation_rules": len(new_config.escalation_rules),
            }
        )
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skipped when the file doesn't exist or the platform has no
        file-system notifications (some containers).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Engine config file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching engine config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> EngineConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("Engine configuration not loaded")
            return self._config


class StaticConfigProvider(IEngineConfigProvider):
    """Fixed configuration, for jobs run against a known rule set."""

    def __init__(self, config: EngineConfig):
        self._config = config

    def get_config(self) -> EngineConfig:
        return self._config


# ========== Notification Sinks ==========

NOTIFICATION_TYPES = {
    NotificationKind.ASSIGNMENT: "info",
    NotificationKind.ESCALATION: "warning",
    NotificationKind.CLOSURE: "info",
    NotificationKind.SLA_WARNING: "warning",
}


class DatabaseNotificationSink(INotificationSink):
    """Stores events as in-app notifications."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def emit(self, event: NotificationEvent) -> bool:
        try:
            reference_id = UUID(event.ticket_id)
        except ValueError:
            reference_id = None

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(NotificationModel(
                        user_id=event.target_agent_id,
                        title=event.title,
                        description=event.message,
                        type=NOTIFICATION_TYPES.get(event.kind, "info"),
                        kind=event.kind,
                        reference_type="ticket",
                        reference_id=reference_id,
                    ))
        except SQLAlchemyError as e:
            logger.error(
                "Failed to store notification",
                extra={"ticket_id": event.ticket_id, "kind": event.kind, "error": str(e)}
            )
            return False

        logger.debug("Notification stored", extra={"ticket_id": event.ticket_id, "kind": event.kind})
        return True


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the webhook sink.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout,
                }
            )


class WebhookNotificationSink(INotificationSink):
    """
    Posts events as JSON to a webhook, with retry and a circuit breaker.

    Retries use exponential backoff; after the last attempt the failure
    counts toward opening the circuit.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    @staticmethod
    def _build_payload(event: NotificationEvent) -> Dict[str, Any]:
        return {
            "kind": event.kind,
            "type": NOTIFICATION_TYPES.get(event.kind, "info"),
            "target_user_id": event.target_agent_id,
            "ticket_id": event.ticket_id,
            "title": event.title,
            "message": event.message,
        }

    async def emit(self, event: NotificationEvent) -> bool:
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping webhook notification",
                extra={"ticket_id": event.ticket_id, "kind": event.kind}
            )
            return False

        payload = self._build_payload(event)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Webhook notification sent",
                        extra={"ticket_id": event.ticket_id, "kind": event.kind}
                    )
                    return True

                logger.warning(
                    "Webhook returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Webhook notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "ticket_id": event.ticket_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class CompositeNotificationSink(INotificationSink):
    """Fans an event out to several sinks; succeeds if any of them did."""

    def __init__(self, sinks: Sequence[INotificationSink]):
        self._sinks = list(sinks)

    async def emit(self, event: NotificationEvent) -> bool:
        results = [await sink.emit(event) for sink in self._sinks]
        return any(results)


# ========== Scheduling ==========

class PassScheduler:
    """
    Wrapper for APScheduler that triggers the scanner passes in-process.

    Cron or the job endpoints can drive the same passes; this adapter is
    only for deployments that keep a long-running process.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._jobs: List[Dict[str, Any]] = []
        self._running = False

    def add_pass(
        self,
        job_id: str,
        job_func: Callable[[], Awaitable[Any]],
        interval_seconds: int
    ) -> None:
        """Register a pass to run every ``interval_seconds``."""
        self._jobs.append({"id": job_id, "func": job_func, "seconds": interval_seconds})

    async def start(self) -> None:
        if self._running:
            logger.warning("Pass scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        for job in self._jobs:
            self._scheduler.add_job(
                job["func"],
                "interval",
                seconds=job["seconds"],
                id=job["id"],
                name=job["id"],
                misfire_grace_time=60,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Pass scheduler started",
            extra={"jobs": {job["id"]: job["seconds"] for job in self._jobs}}
        )

    async def stop(self) -> None:
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Pass scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
