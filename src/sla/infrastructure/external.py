"""
SLA External Service Integrations
==================================

External services for the SLA engine:
- YAML config file watcher
- Email relay webhook client
- Notification routing per channel
- System clock
- APScheduler for background evaluation
"""

import asyncio
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from config import NotificationChannel, settings
from core import CollaboratorTimeoutException, ConfigurationException, NotificationException
from shared.infrastructure.logging import get_logger
from sla.application import IClock, INotificationSink, ISLAConfigProvider
from sla.domain.value_objects import SLAConfig

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info(f"Config file changed: {event.src_path}")
            self.config_manager.reload()


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA configuration manager with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A broken file on reload keeps the
    previous configuration in place.
    """

    def __init__(self):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning(f"SLA config file not found: {path}, using defaults")
            return SLAConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return SLAConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA configuration in {path}",
                {"error": str(e)}
            ) from e

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error(f"Failed to reload SLA config: {e.message}", extra=e.details)
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if:
        - File doesn't exist (production environments often use env vars)
        - Running in a containerized environment where inotify doesn't work
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                f"Config file doesn't exist, skipping file watch: {self._path}. "
                "Using default SLA configuration."
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info(f"Started watching config file: {self._path}")
        except OSError as e:
            logger.warning(
                f"File watching not available, using static config: {e}"
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> SLAConfig:
        """Get current configuration."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    def get_config(self) -> SLAConfig:
        return self.config


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
    - HALF_OPEN: After timeout, allow one test request; other requests
      are rejected until it succeeds or fails
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_in_flight = False

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not self._half_open_in_flight:
            self._half_open_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        self._failure_count = 0
        self._half_open_in_flight = False
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        was_half_open = self._half_open_in_flight
        self._half_open_in_flight = False

        if was_half_open or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class EmailWebhookClient(INotificationSink):
    """
    Sends email notifications through a mail relay webhook.

    One POST per recipient, no retries: a failed send fails the action and
    the next pass decides again. Repeated failures open the circuit.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def _build_payload(recipient: str, message: str, reference_id: Optional[str]) -> Dict[str, Any]:
        return {
            "to": recipient,
            "subject": f"SLA escalation: ticket {reference_id}" if reference_id else "SLA escalation",
            "body": message,
            "reference_id": reference_id,
        }

    async def enqueue(
        self,
        channel: NotificationChannel,
        recipient: str,
        message: str,
        reference_id: Optional[str] = None
    ) -> None:
        if not self._webhook_url:
            logger.debug("Email relay URL not configured, skipping email notification")
            return

        if not self._circuit_breaker.allow_request():
            raise NotificationException(
                "Circuit breaker open for email relay",
                {"recipient": recipient}
            )

        try:
            client = await self._get_client()
            response = await client.post(
                self._webhook_url,
                json=self._build_payload(recipient, message, reference_id)
            )
            response.raise_for_status()
        except asyncio.CancelledError:
            # Cut off by the router's timeout; counts as a failed request
            self._circuit_breaker.record_failure()
            raise
        except httpx.HTTPError as e:
            self._circuit_breaker.record_failure()
            raise NotificationException(
                "Email relay request failed",
                {"recipient": recipient, "error": str(e)}
            ) from e

        self._circuit_breaker.record_success()
        logger.info(
            "Email notification sent",
            extra={"recipient": recipient, "reference_id": reference_id}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class NotificationRouter(INotificationSink):
    """
    Dispatches each notification to the sink registered for its channel.

    Sinks that reach outside the process are bounded by ``timeout_seconds``.
    Sinks writing through the shared database session are left alone;
    cancelling one mid-statement would break the session for the rest of
    the pass, and the driver's command timeout already bounds them.
    """

    def __init__(
        self,
        sinks: Dict[NotificationChannel, INotificationSink],
        timeout_seconds: Optional[float] = None
    ):
        self._sinks = {NotificationChannel(k): v for k, v in sinks.items()}
        self._timeout = timeout_seconds

    async def enqueue(
        self,
        channel: NotificationChannel,
        recipient: str,
        message: str,
        reference_id: Optional[str] = None
    ) -> None:
        sink = self._sinks.get(NotificationChannel(channel))
        if sink is None:
            raise NotificationException(f"No sink registered for channel {channel}")

        call = sink.enqueue(channel, recipient, message, reference_id)
        if self._timeout is None or sink.shares_session:
            await call
            return
        try:
            await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorTimeoutException(
                f"{NotificationChannel(channel).value} notification", self._timeout
            ) from e


class SystemClock(IClock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SLAScheduler:
    """
    Wrapper for APScheduler for background SLA evaluation.

    Manages the lifecycle of the scheduler and jobs. Ticks are allowed to
    overlap up to ``max_instances``; firing records keep them from
    escalating the same ticket twice.
    """

    def __init__(self, interval_seconds: int = 300, max_instances: int = 3):
        self.interval_seconds = interval_seconds
        self.max_instances = max_instances
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_evaluation",
            name="SLA Evaluation Job",
            misfire_grace_time=60,
            max_instances=self.max_instances,
            coalesce=False,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={
                "interval_seconds": self.interval_seconds,
                "max_instances": self.max_instances
            }
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
