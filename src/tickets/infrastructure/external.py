"""
Ticket External Service Integrations
====================================

Process-level services for the ticket workflow:
- YAML lifecycle policy with watchdog hot-reload
- APScheduler jobs for the lifecycle poller and the periodic violation scan
"""

import asyncio
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.core import ConfigurationException
from src.shared.infrastructure.logging import get_logger
from src.tickets.application import ILifecycleConfigProvider
from src.tickets.domain import LifecycleConfig
from src.tickets.infrastructure.repositories import load_lifecycle_config

logger = get_logger(__name__)

JobFunc = Callable[[], Awaitable[object]]


class PolicyFileHandler(FileSystemEventHandler):
    """
    Calls ``on_change`` whenever the watched policy file is rewritten.

    Editors often save by writing a temp file and renaming it over the
    original, so created and moved-onto events count as well.
    """

    def __init__(self, policy_path: Path, on_change: Callable[[], bool]):
        super().__init__()
        self._policy_path = policy_path.resolve()
        self._on_change = on_change

    def on_modified(self, event):
        self._maybe_reload(event, event.src_path)

    def on_created(self, event):
        self._maybe_reload(event, event.src_path)

    def on_moved(self, event):
        self._maybe_reload(event, event.dest_path)

    def _maybe_reload(self, event, path) -> None:
        if event.is_directory or Path(path).resolve() != self._policy_path:
            return
        logger.info("Lifecycle policy file changed", extra={"path": str(path)})
        self._on_change()


class LifecycleConfigManager(ILifecycleConfigProvider):
    """
    Thread-safe lifecycle policy holder with hot-reload support.

    A reload that fails validation keeps the previous policy.
    """

    def __init__(self):
        self._config: Optional[LifecycleConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> LifecycleConfig:
        """Initial configuration load."""
        self._path = Path(path)
        if not self._path.exists():
            logger.warning(
                "Lifecycle config file not found, using defaults",
                extra={"path": str(self._path)}
            )
        config = load_lifecycle_config(self._path)
        with self._lock:
            self._config = config
        return config

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = load_lifecycle_config(self._path)
        except ConfigurationException as e:
            logger.error("Failed to reload lifecycle config", extra={"error": e.message})
            return False

        with self._lock:
            self._config = new_config
        logger.info("Lifecycle configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self._path, self.reload)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info("Started watching lifecycle config", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning(
                "File watching not available, using static config",
                extra={"error": str(e)}
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> LifecycleConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("Lifecycle configuration not loaded")
            return self._config

    @property
    def config(self) -> LifecycleConfig:
        return self.get_config()


class LifecycleScheduler:
    """
    Wrapper for APScheduler running the background jobs.

    - ``lifecycle_poll``: applies due ticket transitions
    - ``violation_scan``: periodic detection scan (optional)

    Both jobs run with ``max_instances=1`` so a slow poll never overlaps
    itself. ``stop()`` waits for running jobs before returning, so the
    database can be closed right after it.
    """

    def __init__(
        self,
        poll_interval_seconds: int = 5,
        scan_interval_seconds: int = 0,
        drain_timeout_seconds: float = 30
    ):
        self.poll_interval_seconds = poll_interval_seconds
        self.scan_interval_seconds = scan_interval_seconds
        self.drain_timeout_seconds = drain_timeout_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._in_flight: Set[asyncio.Task] = set()

    def _tracked(self, job: JobFunc) -> JobFunc:
        async def run():
            task = asyncio.current_task()
            self._in_flight.add(task)
            try:
                await job()
            finally:
                self._in_flight.discard(task)

        return run

    async def start(self, poll_job: JobFunc, scan_job: Optional[JobFunc] = None) -> None:
        """Start the scheduler with the given job functions."""
        if self._running:
            logger.warning("Lifecycle scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            self._tracked(poll_job),
            "interval",
            seconds=self.poll_interval_seconds,
            id="lifecycle_poll",
            name="Ticket Lifecycle Poll",
            misfire_grace_time=30,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        if scan_job is not None and self.scan_interval_seconds > 0:
            self._scheduler.add_job(
                self._tracked(scan_job),
                "interval",
                seconds=self.scan_interval_seconds,
                id="violation_scan",
                name="Capacity Violation Scan",
                misfire_grace_time=60,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Lifecycle scheduler started",
            extra={
                "poll_interval_seconds": self.poll_interval_seconds,
                "scan_interval_seconds": self.scan_interval_seconds
            }
        )

    def run_now(self, job_id: str) -> None:
        """Bring a job's next run forward to now."""
        if self._scheduler is None:
            raise RuntimeError("Lifecycle scheduler not started")
        self._scheduler.modify_job(job_id, next_run_time=datetime.now(timezone.utc))

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.pause()
            await self._drain()
            # The asyncio executor cannot wait on coroutine jobs; they were drained above
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("Lifecycle scheduler stopped")

    async def _drain(self) -> None:
        if not self._in_flight:
            return

        logger.info("Waiting for running jobs", extra={"job_count": len(self._in_flight)})
        _, pending = await asyncio.wait(set(self._in_flight), timeout=self.drain_timeout_seconds)
        if pending:
            logger.warning(
                "Jobs still running after drain timeout",
                extra={"job_count": len(pending), "timeout_seconds": self.drain_timeout_seconds}
            )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
