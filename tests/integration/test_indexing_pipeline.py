import asyncio
import json
import os
import threading
import time

import pytest

from archive_search.core.exceptions import IndexingError, IndexingInProgressError
from archive_search.knowledge.graph.citations import CitationGraphBuilder
from archive_search.knowledge.ingestion.normalizer import ContentNormalizer
from archive_search.knowledge.retrieval.search import SearchAPI
from archive_search.models import IndexingPhase
from archive_search.orchestration.indexer import IndexingOrchestrator
from archive_search.orchestration.state import IndexingStateStore
from archive_search.orchestration.triggers import IndexingTriggers

REPORT = """
# Research: solid state batteries

## Source: perplexity
## Date: 2024-04-01

Recent work is summarized in [the battery article](https://example.com/batteries).

Solid state electrolytes replace flammable liquids with ceramic layers, which improves safety and
allows lithium metal anodes to reach higher energy density.
"""

CAPTURED = """
# Source: [Battery Article](https://example.com/batteries/)
## Captured: 2024-03-30

Ceramic separators are the main topic of this captured page.
"""


class FailingCitationBuilder:
    def build(self, manage_transaction=True):
        raise RuntimeError("citation builder exploded")


class SlowCitationBuilder:
    """Holds the write transaction open for a while before building."""

    def __init__(self, store, delay=0.5):
        self.inner = CitationGraphBuilder(store)
        self.delay = delay
        self.started = threading.Event()

    def build(self, manage_transaction=True):
        self.started.set()
        time.sleep(self.delay)
        return self.inner.build(manage_transaction=manage_transaction)


class ImmediateTriggers(IndexingTriggers):
    def __init__(self, orchestrator):
        super().__init__(orchestrator)
        self.ticks = 0

    def _next_delay(self, iterator):
        self.ticks += 1
        return 0.0 if self.ticks == 1 else 3600.0


class GatedNormalizer(ContentNormalizer):
    """Blocks every batch until released so tests can observe a run in flight."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.batches = 0

    async def process_batch(self, documents, concurrency=None):
        self.batches += 1
        self.started.set()
        await self.release.wait()
        return await super().process_batch(documents, concurrency)


@pytest.fixture
def populated(archives, write_file):
    research, captured = archives
    write_file(research / "batteries.md", REPORT)
    write_file(captured / "a1b2" / "content.md", CAPTURED)
    return research, captured


def _orchestrator(store, archives, tmp_path, **kwargs):
    research, captured = archives
    return IndexingOrchestrator(
        store,
        state_store=IndexingStateStore(tmp_path / "index" / "indexing-state.json"),
        research_path=research,
        url_content_path=captured,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_full_run_indexes_and_links(store, populated, tmp_path):
    orchestrator = _orchestrator(store, populated, tmp_path)

    stats = await orchestrator.run_indexing()

    assert stats.added_count == 2
    assert stats.updated_count == 0
    assert stats.citation_count == 1
    assert orchestrator.phase == IndexingPhase.IDLE

    citation = store.all_citations()[0]
    captured_doc = next(doc for doc in store.list() if doc.source.value == "url-content")
    assert citation.target_id == captured_doc.id

    results = SearchAPI(store).search("electrolytes")
    assert [result.document.path for result in results] == ["batteries.md"]

    state = json.loads((tmp_path / "index" / "indexing-state.json").read_text())
    assert state["lastScanTime"]


@pytest.mark.asyncio
async def test_forced_reindex_is_idempotent(store, populated, tmp_path):
    orchestrator = _orchestrator(store, populated, tmp_path)
    await orchestrator.run_indexing()
    documents_before = store.list()
    citations_before = store.stats()["citation_count"]

    stats = await orchestrator.run_indexing(force=True)

    assert stats.added_count == 0
    assert stats.updated_count == 2
    assert store.list() == documents_before
    assert store.stats()["citation_count"] == citations_before


@pytest.mark.asyncio
async def test_incremental_run_picks_up_only_changes(store, populated, tmp_path, write_file):
    research, _ = populated
    orchestrator = _orchestrator(store, populated, tmp_path)
    await orchestrator.run_indexing()

    unchanged = await orchestrator.run_indexing()
    assert unchanged.scanned_count == 0

    note = write_file(research / "new-note.md", "# Fresh findings\n\nNovel zircon observations.")
    future = time.time() + 5
    os.utime(note, (future, future))
    changed = await orchestrator.run_indexing()

    assert changed.scanned_count == 1
    assert changed.added_count == 1
    assert [r.document.path for r in SearchAPI(store).search("zircon")] == ["new-note.md"]


@pytest.mark.asyncio
async def test_deleted_file_is_removed_from_index(store, populated, tmp_path):
    _, captured = populated
    orchestrator = _orchestrator(store, populated, tmp_path)
    await orchestrator.run_indexing()

    (captured / "a1b2" / "content.md").unlink()
    stats = await orchestrator.run_indexing()

    assert stats.deleted_count == 1
    assert [doc.path for doc in store.list()] == ["batteries.md"]
    assert SearchAPI(store).search("ceramic separators") == []
    assert all(citation.target_id is None for citation in store.all_citations())


@pytest.mark.asyncio
async def test_failed_run_rolls_back_and_keeps_watermark(store, populated, tmp_path):
    orchestrator = _orchestrator(store, populated, tmp_path, citation_builder=FailingCitationBuilder())

    with pytest.raises(IndexingError):
        await orchestrator.run_indexing()

    assert orchestrator.phase == IndexingPhase.FAILED
    assert not store.in_transaction
    assert store.list() == []
    assert not (tmp_path / "index" / "indexing-state.json").exists()
    assert "citation builder exploded" in orchestrator.last_error


@pytest.mark.asyncio
async def test_concurrent_direct_run_is_rejected(store, populated, tmp_path):
    normalizer = GatedNormalizer()
    orchestrator = _orchestrator(store, populated, tmp_path, normalizer=normalizer)

    first = asyncio.create_task(orchestrator.run_indexing())
    await normalizer.started.wait()
    with pytest.raises(IndexingInProgressError):
        await orchestrator.run_indexing()

    normalizer.release.set()
    stats = await first
    assert stats.added_count == 2


@pytest.mark.asyncio
async def test_trigger_requests_during_run_coalesce(store, populated, tmp_path):
    normalizer = GatedNormalizer()
    orchestrator = _orchestrator(store, populated, tmp_path, normalizer=normalizer)

    first = asyncio.create_task(orchestrator.request_run("schedule"))
    await normalizer.started.wait()
    assert await orchestrator.request_run("watch") is None
    assert await orchestrator.request_run("watch") is None

    normalizer.release.set()
    await first
    await orchestrator.wait_idle()

    assert normalizer.batches == 2
    assert not orchestrator.is_running


@pytest.mark.asyncio
async def test_trigger_during_direct_run_schedules_follow_up(store, populated, tmp_path):
    normalizer = GatedNormalizer()
    orchestrator = _orchestrator(store, populated, tmp_path, normalizer=normalizer)

    direct = asyncio.create_task(orchestrator.run_indexing())
    await normalizer.started.wait()
    await orchestrator.request_run("watch")

    normalizer.release.set()
    await direct
    await orchestrator.wait_idle()

    assert normalizer.batches == 2


@pytest.mark.asyncio
async def test_unreadable_state_file_is_ignored(store, populated, tmp_path):
    state_path = tmp_path / "index" / "indexing-state.json"
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state_path.write_text("{not json")
    orchestrator = _orchestrator(store, populated, tmp_path)

    stats = await orchestrator.run_indexing()

    assert stats.added_count == 2
    assert json.loads(state_path.read_text())["lastScanTime"]


def test_builder_defaults_share_the_store(store, tmp_path, archives):
    orchestrator = _orchestrator(store, archives, tmp_path)

    assert isinstance(orchestrator.citation_builder, CitationGraphBuilder)
    assert orchestrator.citation_builder.store is store


@pytest.mark.asyncio
async def test_failed_run_keeps_previously_committed_index(store, populated, tmp_path, write_file):
    research, _ = populated
    state_path = tmp_path / "index" / "indexing-state.json"
    await _orchestrator(store, populated, tmp_path).run_indexing()
    report = next(doc for doc in store.list() if doc.path == "batteries.md")
    watermark = json.loads(state_path.read_text())["lastScanTime"]
    citations_before = store.all_citations()

    edited = write_file(research / "batteries.md", "# Research: sodium batteries\n\nSodium cells only now.")
    future = time.time() + 5
    os.utime(edited, (future, future))
    failing = _orchestrator(store, populated, tmp_path, citation_builder=FailingCitationBuilder())

    with pytest.raises(IndexingError):
        await failing.run_indexing()

    assert not store.in_transaction
    assert store.get(report.id).content == report.content
    assert store.all_citations() == citations_before
    assert SearchAPI(store).search("sodium") == []
    assert json.loads(state_path.read_text())["lastScanTime"] == watermark


@pytest.mark.asyncio
async def test_stop_drops_follow_up_queued_during_direct_run(store, populated, tmp_path):
    normalizer = GatedNormalizer()
    orchestrator = _orchestrator(store, populated, tmp_path, normalizer=normalizer)
    triggers = IndexingTriggers(orchestrator)

    direct = asyncio.create_task(orchestrator.run_indexing(trigger="api"))
    await normalizer.started.wait()
    assert await orchestrator.request_run("watch") is None

    await triggers.stop()
    normalizer.release.set()
    await direct
    await asyncio.sleep(0.3)
    await orchestrator.wait_idle()

    assert normalizer.batches == 1


@pytest.mark.asyncio
async def test_stop_waits_for_scheduled_write_to_settle(store, populated, tmp_path):
    builder = SlowCitationBuilder(store)
    orchestrator = _orchestrator(store, populated, tmp_path, citation_builder=builder)
    triggers = ImmediateTriggers(orchestrator)

    triggers.schedule("0 3 * * *")
    assert await asyncio.to_thread(builder.started.wait, 5.0)
    await triggers.stop()

    assert not orchestrator.is_running
    assert not store.in_transaction
    stats = await orchestrator.run_indexing(force=True)
    assert stats.updated_count == 2


@pytest.mark.asyncio
async def test_cancelled_run_holds_lock_until_write_settles(store, populated, tmp_path):
    builder = SlowCitationBuilder(store)
    orchestrator = _orchestrator(store, populated, tmp_path, citation_builder=builder)

    task = asyncio.create_task(orchestrator.run_indexing())
    assert await asyncio.to_thread(builder.started.wait, 5.0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert not orchestrator.is_running
    assert not store.in_transaction
    assert orchestrator.phase == IndexingPhase.FAILED
    assert not (tmp_path / "index" / "indexing-state.json").exists()
