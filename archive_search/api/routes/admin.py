"""Indexing control and index statistics endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from archive_search.api.dependencies import ArchiveServices, get_orchestrator, get_services
from archive_search.core.config import settings
from archive_search.models import IndexingStats
from archive_search.orchestration.indexer import IndexingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


class IndexRequest(BaseModel):
    force: bool = False


@router.get("/health")
async def healthcheck() -> Dict[str, str]:
    """Liveness probe."""

    return {"status": "ok", "version": settings.API_VERSION}


@router.post("/index", response_model=IndexingStats)
async def run_indexing(
    payload: IndexRequest,
    orchestrator: IndexingOrchestrator = Depends(get_orchestrator),
) -> IndexingStats:
    """Run one indexing pass; 409 while another run is in flight."""

    logger.info("Indexing requested over HTTP force=%s", payload.force)
    return await orchestrator.run_indexing(force=payload.force, trigger="api")


@router.get("/stats")
def index_stats(request: Request) -> Dict[str, Any]:
    services: ArchiveServices = get_services(request)
    return {
        "index": services.search.store.stats(),
        "indexing": services.orchestrator.status(),
        "triggers": services.triggers.describe(),
    }
