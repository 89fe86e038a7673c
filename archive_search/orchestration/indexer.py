"""Indexing pipeline: scan, normalize, write and rebuild citations in one transaction."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from archive_search.core.config import settings
from archive_search.core.exceptions import ApplicationError, IndexingError, IndexingInProgressError, StoreError
from archive_search.knowledge.graph.citations import CitationGraphBuilder
from archive_search.knowledge.ingestion.normalizer import ContentNormalizer
from archive_search.knowledge.ingestion.scanner import ArchiveScanner
from archive_search.knowledge.storage.database import MEMORY_PATH, DocumentStore
from archive_search.models import Document, IndexingPhase, IndexingState, IndexingStats
from archive_search.orchestration.state import IndexingStateStore
from archive_search.utils.monitoring import observe_documents, observe_indexing_run

logger = logging.getLogger(__name__)

STATE_FILENAME = "indexing-state.json"


def default_state_path(store: DocumentStore) -> Path:
    if settings.INDEXING_STATE_PATH is not None or store.db_path == MEMORY_PATH:
        return settings.state_path
    return Path(store.db_path).parent / STATE_FILENAME


class IndexingOrchestrator:
    """Run the indexing pipeline against a single store.

    Only one run executes at a time. A direct call while a run is in flight
    raises `IndexingInProgressError`; trigger requests arriving during a run
    collapse into a single follow-up run.
    """

    def __init__(
        self,
        store: DocumentStore,
        scanner: Optional[ArchiveScanner] = None,
        normalizer: Optional[ContentNormalizer] = None,
        citation_builder: Optional[CitationGraphBuilder] = None,
        state_store: Optional[IndexingStateStore] = None,
        research_path: Optional[str | Path] = None,
        url_content_path: Optional[str | Path] = None,
    ) -> None:
        self.store = store
        self.scanner = scanner or ArchiveScanner()
        self.normalizer = normalizer or ContentNormalizer()
        self.citation_builder = citation_builder or CitationGraphBuilder(store)
        self.state_store = state_store or IndexingStateStore(default_state_path(store))
        self.research_path = Path(research_path or settings.RESEARCH_ARCHIVE_PATH)
        self.url_content_path = Path(url_content_path or settings.URL_CONTENT_ARCHIVE_PATH)

        self.phase = IndexingPhase.IDLE
        self.last_stats: Optional[IndexingStats] = None
        self.last_error: Optional[str] = None
        self._lock = asyncio.Lock()
        self._pending_rerun = False
        self._draining = False
        self._follow_up: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def status(self) -> Dict[str, object]:
        return {
            "phase": self.phase.value,
            "running": self.is_running,
            "lastScanTime": self.state_store.load().last_scan_time,
            "lastStats": self.last_stats.model_dump(by_alias=True) if self.last_stats else None,
            "lastError": self.last_error,
        }

    async def run_indexing(self, force: bool = False, trigger: str = "manual") -> IndexingStats:
        if self._lock.locked():
            raise IndexingInProgressError("An indexing run is already in progress")
        try:
            async with self._lock:
                return await self._run(force, trigger)
        finally:
            if self._pending_rerun and not self._draining:
                self._follow_up = asyncio.create_task(self.request_run("coalesced"))

    async def request_run(self, trigger: str = "schedule") -> Optional[IndexingStats]:
        """Trigger entry point: queue behind an active run instead of failing.

        Failures are logged and counted; they are not retried within this call.
        """

        if self._lock.locked():
            self._pending_rerun = True
            logger.info("Indexing run in progress; %s trigger coalesced into a follow-up run", trigger)
            return None

        stats: Optional[IndexingStats] = None
        self._draining = True
        try:
            while True:
                self._pending_rerun = False
                try:
                    stats = await self.run_indexing(trigger=trigger)
                except ApplicationError as exc:
                    logger.error("Triggered indexing run (%s) failed: %s", trigger, exc)
                if not self._pending_rerun:
                    return stats
                trigger = "coalesced"
        finally:
            self._draining = False

    async def cancel_pending(self) -> None:
        """Drop the queued follow-up run; one already in flight is cancelled and awaited."""

        self._pending_rerun = False
        follow_up, self._follow_up = self._follow_up, None
        if follow_up is not None and not follow_up.done():
            follow_up.cancel()
            await asyncio.gather(follow_up, return_exceptions=True)
            logger.info("Queued follow-up indexing run cancelled")

    async def wait_idle(self) -> None:
        """Wait for the current run and any queued follow-up run to finish."""

        while self._follow_up is not None and not self._follow_up.done():
            await self._follow_up
        async with self._lock:
            pass

    async def _run(self, force: bool, trigger: str) -> IndexingStats:
        started = time.perf_counter()
        logger.info("Starting indexing run trigger=%s force=%s", trigger, force)
        try:
            self.phase = IndexingPhase.SCANNING
            state = self.state_store.load()
            known_ids = await asyncio.to_thread(self.store.list_ids)
            scan = await asyncio.to_thread(
                self.scanner.scan,
                self.research_path,
                self.url_content_path,
                state.last_scan_time,
                force,
                list(known_ids),
            )

            self.phase = IndexingPhase.NORMALIZING
            documents = await self.normalizer.process_batch(scan.documents)

            self.phase = IndexingPhase.WRITING
            stats = await self._write_settled(documents, scan.deleted_ids)
            stats.scanned_count = len(scan.documents)
        except asyncio.CancelledError:
            if self.phase != IndexingPhase.FAILED:
                logger.warning("Indexing run cancelled during %s", self.phase.value)
                self.phase = IndexingPhase.FAILED
                self.last_error = "Indexing run cancelled"
            observe_indexing_run("cancelled", trigger, time.perf_counter() - started)
            raise
        except Exception as exc:
            failed_phase = self.phase
            self.phase = IndexingPhase.FAILED
            self.last_error = str(exc)
            observe_indexing_run("failed", trigger, time.perf_counter() - started)
            logger.error("Indexing run failed during %s: %s", failed_phase.value, exc)
            if isinstance(exc, (StoreError, IndexingError)):
                raise
            raise IndexingError(f"Indexing run failed: {exc}") from exc

        self.state_store.save(IndexingState(last_scan_time=scan.scan_time))
        stats.elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        self.phase = IndexingPhase.IDLE
        self.last_stats = stats
        self.last_error = None
        observe_indexing_run("succeeded", trigger, stats.elapsed_ms / 1000)
        observe_documents(stats.added_count, stats.updated_count, stats.deleted_count)
        logger.info(
            "Indexing run complete: %d scanned, %d added, %d updated, %d deleted, %d citations in %.0f ms",
            stats.scanned_count,
            stats.added_count,
            stats.updated_count,
            stats.deleted_count,
            stats.citation_count,
            stats.elapsed_ms,
        )
        return stats

    async def _write_settled(self, documents: Sequence[Document], deleted_ids: List[str]) -> IndexingStats:
        """Run the write in a worker thread and keep the run lock until it settles.

        Cancelling the caller does not stop the thread that owns the open
        transaction, so the lock is only released once it commits or rolls back.
        """

        write = asyncio.ensure_future(asyncio.to_thread(self._write, documents, deleted_ids))
        try:
            return await asyncio.shield(write)
        except asyncio.CancelledError:
            await asyncio.wait([write])
            outcome = "rolled back" if write.exception() is not None else "committed"
            self.phase = IndexingPhase.FAILED
            self.last_error = f"Indexing run cancelled; write {outcome}"
            logger.warning("Indexing run cancelled during write; transaction %s", outcome)
            raise

    def _write(self, documents: Sequence[Document], deleted_ids: List[str]) -> IndexingStats:
        stats = IndexingStats()
        self.store.begin()
        try:
            for document in documents:
                if self.store.exists(document.id):
                    stats.updated_count += 1
                else:
                    stats.added_count += 1
                self.store.upsert(document)
            for document_id in deleted_ids:
                if self.store.delete(document_id):
                    stats.deleted_count += 1

            self.phase = IndexingPhase.CITATION_BUILDING
            citations = self.citation_builder.build(manage_transaction=False)
            stats.citation_count = len(citations)

            self.phase = IndexingPhase.COMMITTING
            self.store.commit()
        except BaseException:
            if self.store.in_transaction:
                self.store.rollback()
            raise
        return stats
