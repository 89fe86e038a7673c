"""Cron schedules and debounced file watching that start indexing runs."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from croniter import croniter
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from archive_search.core.config import settings
from archive_search.core.exceptions import SchedulingError
from archive_search.knowledge.ingestion.scanner import CONTENT_EXTENSIONS
from archive_search.orchestration.indexer import IndexingOrchestrator

logger = logging.getLogger(__name__)

WATCHED_EVENT_TYPES = frozenset({"created", "modified", "deleted", "moved"})
OBSERVER_JOIN_TIMEOUT = 5.0


def is_archive_file(path: str | Path) -> bool:
    path = Path(path)
    if any(part.startswith(".") for part in path.parts):
        return False
    return path.suffix.lower() in CONTENT_EXTENSIONS


class ArchiveEventHandler(FileSystemEventHandler):
    """Forward content-file changes from watchdog threads to the triggers."""

    def __init__(self, triggers: "IndexingTriggers") -> None:
        super().__init__()
        self.triggers = triggers

    def on_any_event(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        if event.is_directory or event.event_type not in WATCHED_EVENT_TYPES:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(path and self.triggers.is_relevant(str(path)) for path in paths):
            self.triggers.notify_change(str(event.src_path))


class IndexingTriggers:
    """Own the scheduled tasks, the watch observers and the single debounce timer.

    After `stop()` returns no scheduled or debounced callback fires, runs they
    started have finished, and no coalesced follow-up run is left queued.
    """

    def __init__(self, orchestrator: IndexingOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.schedules: List[str] = []
        self.watched: List[Path] = []
        self.debounce_seconds = settings.WATCH_DEBOUNCE_SECONDS
        self.failures = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._schedule_tasks: List[asyncio.Task] = []
        self._run_tasks: Set[asyncio.Task] = set()
        self._observers: List[Observer] = []
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._stopped = False

    def describe(self) -> Dict[str, object]:
        return {
            "schedules": list(self.schedules),
            "watching": [str(path) for path in self.watched],
            "debounceSeconds": self.debounce_seconds,
            "failures": self.failures,
            "active": not self._stopped and bool(self._schedule_tasks or self._observers),
        }

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, cron_expression: str) -> None:
        """Run indexing on a cron schedule; must be called from the event loop."""

        if not cron_expression or not croniter.is_valid(cron_expression):
            raise SchedulingError(
                f"Invalid cron expression: {cron_expression!r}",
                details={"cron_expression": cron_expression},
            )
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        task = self._loop.create_task(self._schedule_loop(cron_expression))
        self._schedule_tasks.append(task)
        self.schedules.append(cron_expression)
        logger.info("Scheduled indexing with cron expression %s", cron_expression)

    async def _schedule_loop(self, cron_expression: str) -> None:
        iterator = croniter(cron_expression, datetime.now(timezone.utc))
        while not self._stopped:
            await asyncio.sleep(self._next_delay(iterator))
            if self._stopped:
                return
            # Cancelling this loop must only interrupt the sleep; stop() awaits the run.
            await asyncio.shield(self._spawn_run("schedule"))

    def _next_delay(self, iterator: croniter) -> float:
        next_run = iterator.get_next(datetime)
        return max((next_run - datetime.now(timezone.utc)).total_seconds(), 0.0)

    # ------------------------------------------------------------------
    # File watching
    # ------------------------------------------------------------------

    def watch(self, directories: Iterable[str | Path], debounce_seconds: Optional[float] = None) -> None:
        """Start watchdog observers; bursts of changes collapse into one run."""

        self._loop = asyncio.get_running_loop()
        self._stopped = False
        if debounce_seconds is not None:
            self.debounce_seconds = debounce_seconds

        handler = ArchiveEventHandler(self)
        observer = Observer()
        scheduled = 0
        for directory in directories:
            path = Path(directory)
            if not path.is_dir():
                logger.warning("Watch root does not exist: %s", path)
                continue
            observer.schedule(handler, str(path), recursive=True)
            self.watched.append(path)
            scheduled += 1
            logger.info("Watching %s for archive changes", path)

        if not scheduled:
            return
        observer.daemon = True
        observer.start()
        self._observers.append(observer)

    def is_relevant(self, path: str) -> bool:
        """Content files only, judged relative to the watched root."""

        candidate = Path(path)
        for root in self.watched:
            try:
                return is_archive_file(candidate.relative_to(root))
            except ValueError:
                continue
        return is_archive_file(candidate.name)

    def notify_change(self, path: str) -> None:
        """Called from watchdog threads."""

        if self._stopped or self._loop is None:
            return
        logger.debug("Archive change detected: %s", path)
        try:
            self._loop.call_soon_threadsafe(self._reset_debounce)
        except RuntimeError:
            logger.debug("Event loop closed; dropping change notification for %s", path)

    def _reset_debounce(self) -> None:
        if self._stopped or self._loop is None:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = self._loop.call_later(self.debounce_seconds, self._fire_debounced)

    def _fire_debounced(self) -> None:
        self._debounce_handle = None
        if self._stopped or self._loop is None:
            return
        self._spawn_run("watch")

    def _spawn_run(self, trigger: str) -> asyncio.Task:
        task = self._loop.create_task(self._run(trigger))
        self._run_tasks.add(task)
        task.add_done_callback(self._run_tasks.discard)
        return task

    async def _run(self, trigger: str) -> None:
        try:
            await self.orchestrator.request_run(trigger)
        except Exception:
            self.failures += 1
            logger.exception("Indexing run started by %s trigger failed", trigger)
            return
        if self.orchestrator.last_error:
            self.failures += 1

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        self._stopped = True
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        await self.orchestrator.cancel_pending()

        for task in self._schedule_tasks:
            task.cancel()
        if self._schedule_tasks:
            await asyncio.gather(*self._schedule_tasks, return_exceptions=True)
        self._schedule_tasks.clear()

        observers, self._observers = self._observers, []
        for observer in observers:
            observer.stop()
        for observer in observers:
            await asyncio.to_thread(observer.join, OBSERVER_JOIN_TIMEOUT)

        if self._run_tasks:
            await asyncio.gather(*list(self._run_tasks), return_exceptions=True)
        # Trigger runs that finished waiting above may have queued another follow-up.
        await self.orchestrator.cancel_pending()
        self.schedules.clear()
        self.watched.clear()
        logger.info("Indexing triggers stopped")
