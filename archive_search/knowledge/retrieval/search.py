"""Ranked, citation-enriched queries over the indexed archives."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from archive_search.core.config import settings
from archive_search.core.exceptions import NotFoundError
from archive_search.knowledge.graph.citations import CitationGraphBuilder
from archive_search.knowledge.storage.database import DocumentStore, StoreMatch
from archive_search.models import (
    Citation,
    CitationLists,
    CitationMetrics,
    CitationNetwork,
    CitationReport,
    Document,
    DocumentSummary,
    Highlight,
    NetworkEdge,
    NetworkNode,
    SearchRequest,
    SearchResponse,
    SearchResult,
)
from archive_search.utils.monitoring import observe_search

logger = logging.getLogger(__name__)


def summarize(document: Document, score: float) -> DocumentSummary:
    return DocumentSummary(
        id=document.id,
        title=document.title,
        path=document.path,
        source=document.source.value,
        date=document.date,
        score=score,
    )


class SearchAPI:
    """Read-side facade over the store and the citation graph.

    All reads go through `store.reader()` so queries observe the last committed
    index and never wait on an indexing transaction.
    """

    def __init__(self, store: DocumentStore, graph: Optional[CitationGraphBuilder] = None) -> None:
        self.store = store.reader()
        self.graph = graph or CitationGraphBuilder(self.store)

    def search(
        self,
        query: str,
        fuzzy: bool = False,
        fields: Optional[Sequence[str]] = None,
        limit: int = 50,
        include_citations: bool = False,
        citation_depth: int = 1,
    ) -> List[SearchResult]:
        started = time.perf_counter()
        matches = self.store.search(query, fields=fields, fuzzy=fuzzy, limit=limit)
        results = [self._to_result(match, query, include_citations, citation_depth) for match in matches]
        observe_search("search", time.perf_counter() - started)
        logger.debug("Query %r matched %d documents", query, len(results))
        return results

    def _to_result(
        self,
        match: StoreMatch,
        query: str,
        include_citations: bool,
        citation_depth: int,
    ) -> SearchResult:
        highlights = [
            Highlight(field=snippet.field, term=query, snippets=[snippet.text]) for snippet in match.snippets
        ]
        citations = None
        if include_citations:
            doc_id = match.document.id
            citations = CitationLists(
                citing=self.graph.citations_to(doc_id),
                cited=self.graph.citations_from(doc_id),
                related=self.graph.related_documents(doc_id, citation_depth) if citation_depth > 1 else None,
            )
        return SearchResult(document=summarize(match.document, match.score), highlights=highlights, citations=citations)

    def get_document(self, document_id: str) -> Document:
        document = self.store.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found", details={"document_id": document_id})
        return document

    def find_related(self, document_id: str, depth: int = 1) -> List[SearchResult]:
        started = time.perf_counter()
        self.get_document(document_id)
        results: List[SearchResult] = []
        for related_id in self.graph.related_documents(document_id, depth):
            document = self.store.get(related_id)
            if document is not None:
                results.append(SearchResult(document=summarize(document, 1.0)))
        observe_search("related", time.perf_counter() - started)
        return results

    def citation_report(self, document_id: str) -> CitationReport:
        started = time.perf_counter()
        self.get_document(document_id)
        outgoing = self.graph.citations_from(document_id)
        incoming = self.graph.citations_to(document_id)
        edges = outgoing + incoming
        average = sum(c.confidence for c in edges) / len(edges) if edges else 0.0
        report = CitationReport(
            document_id=document_id,
            metrics=CitationMetrics(
                outgoing_count=len(outgoing),
                incoming_count=len(incoming),
                average_confidence=average,
            ),
            network=self.citation_visualization([document_id]),
        )
        observe_search("citation_report", time.perf_counter() - started)
        return report

    def citation_visualization(self, document_ids: Iterable[str]) -> CitationNetwork:
        """Nodes and edges around the given documents; unknown ids are skipped."""

        labels: Dict[str, str] = {}
        edges: Dict[Tuple[str, str], float] = {}

        def remember(doc_id: str) -> bool:
            if doc_id in labels:
                return True
            document = self.store.get(doc_id)
            if document is None:
                return False
            labels[doc_id] = document.title
            return True

        def connect(citation: Citation) -> None:
            if not citation.target_id:
                return
            if not (remember(citation.source_id) and remember(citation.target_id)):
                return
            key = (citation.source_id, citation.target_id)
            edges[key] = max(edges.get(key, 0.0), citation.confidence)

        for doc_id in document_ids:
            if not remember(doc_id):
                logger.debug("Skipping unknown document %s in citation network", doc_id)
                continue
            for citation in self.graph.citations_from(doc_id):
                connect(citation)
            for citation in self.graph.citations_to(doc_id):
                connect(citation)

        sources = {source for source, _ in edges}
        targets = {target for _, target in edges}
        nodes = []
        for doc_id, label in labels.items():
            if doc_id in sources and doc_id in targets:
                node_type = "both"
            elif doc_id in sources:
                node_type = "source"
            elif doc_id in targets:
                node_type = "target"
            else:
                node_type = "isolated"
            nodes.append(NetworkNode(id=doc_id, label=label, type=node_type))

        return CitationNetwork(
            nodes=nodes,
            edges=[NetworkEdge(from_=source, to=target, confidence=conf) for (source, target), conf in edges.items()],
        )

    def export(self, format: str = "json") -> str:
        return self.graph.export(format)


def search_local_archives(request: SearchRequest | Dict[str, Any], api: SearchAPI) -> SearchResponse:
    """Host-facing query operation: validated request in, citation-enriched results out.

    Raises `pydantic.ValidationError` for malformed requests.
    """

    if not isinstance(request, SearchRequest):
        request = SearchRequest.model_validate(request)
    limit = min(request.limit, settings.SEARCH_MAX_LIMIT)

    started = time.perf_counter()
    results = api.search(
        request.query,
        fuzzy=request.fuzzy,
        limit=limit,
        include_citations=request.include_citations,
        citation_depth=request.citation_depth,
    )
    citation_graph = None
    if request.include_citations:
        citation_graph = api.citation_visualization(result.document.id for result in results)

    return SearchResponse(
        results=results,
        citation_graph=citation_graph,
        metadata={
            "query": request.query,
            "totalResults": len(results),
            "fuzzy": request.fuzzy,
            "includeCitations": request.include_citations,
            "citationDepth": request.citation_depth,
            "elapsedMs": round((time.perf_counter() - started) * 1000, 2),
        },
    )


__all__ = ["SearchAPI", "search_local_archives", "summarize"]
