from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from archive_search.core.config import Settings, settings
from archive_search.knowledge.retrieval.search import SearchAPI
from archive_search.knowledge.storage.database import DocumentStore
from archive_search.orchestration.indexer import IndexingOrchestrator
from archive_search.orchestration.state import IndexingStateStore
from archive_search.orchestration.triggers import IndexingTriggers


@dataclass
class ArchiveServices:
    """Explicitly wired components sharing one store."""

    store: DocumentStore
    search: SearchAPI
    orchestrator: IndexingOrchestrator
    triggers: IndexingTriggers

    def close(self) -> None:
        self.store.close()


def build_services(config: Settings = settings) -> ArchiveServices:
    store = DocumentStore(config.SEARCH_DB_PATH)
    orchestrator = IndexingOrchestrator(
        store,
        state_store=IndexingStateStore(config.state_path),
        research_path=config.RESEARCH_ARCHIVE_PATH,
        url_content_path=config.URL_CONTENT_ARCHIVE_PATH,
    )
    return ArchiveServices(
        store=store,
        search=SearchAPI(store),
        orchestrator=orchestrator,
        triggers=IndexingTriggers(orchestrator),
    )


def get_services(request: Request) -> ArchiveServices:
    return request.app.state.services


def get_search_api(request: Request) -> SearchAPI:
    return get_services(request).search


def get_orchestrator(request: Request) -> IndexingOrchestrator:
    return get_services(request).orchestrator
