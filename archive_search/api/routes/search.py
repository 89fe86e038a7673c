"""Query endpoints: search, document lookup, related documents and citation graphs."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Response
from pydantic import Field

from archive_search.api.dependencies import get_search_api
from archive_search.core.config import settings
from archive_search.knowledge.retrieval.search import SearchAPI, search_local_archives
from archive_search.models import CitationNetwork, CitationReport, Document, SearchRequest, SearchResponse, SearchResult
from archive_search.models.search import SurfaceModel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["search"])

EXPORT_MEDIA_TYPES = {
    "json": "application/json",
    "graphml": "application/xml",
    "dot": "text/vnd.graphviz",
}


class VisualizationRequest(SurfaceModel):
    document_ids: List[str] = Field(..., min_length=1)


@router.post("/search", response_model=SearchResponse)
def search_archives(request: SearchRequest, api: SearchAPI = Depends(get_search_api)) -> SearchResponse:
    """Ranked full-text search with optional citation context."""

    return search_local_archives(request, api)


@router.get("/documents/{document_id}", response_model=Document)
def get_document(document_id: str, api: SearchAPI = Depends(get_search_api)) -> Document:
    return api.get_document(document_id)


@router.get("/documents/{document_id}/related", response_model=List[SearchResult])
def related_documents(
    document_id: str,
    depth: int = Query(1, ge=1, le=settings.MAX_CITATION_DEPTH),
    api: SearchAPI = Depends(get_search_api),
) -> List[SearchResult]:
    return api.find_related(document_id, depth)


@router.get("/documents/{document_id}/citation-report", response_model=CitationReport)
def citation_report(document_id: str, api: SearchAPI = Depends(get_search_api)) -> CitationReport:
    return api.citation_report(document_id)


@router.post("/graph/visualization", response_model=CitationNetwork)
def citation_visualization(
    request: VisualizationRequest,
    api: SearchAPI = Depends(get_search_api),
) -> CitationNetwork:
    return api.citation_visualization(request.document_ids)


@router.get("/graph/export")
def export_graph(
    format: str = Query("json", pattern="^(json|graphml|dot)$"),
    api: SearchAPI = Depends(get_search_api),
) -> Response:
    return Response(content=api.export(format), media_type=EXPORT_MEDIA_TYPES[format])
