"""Citation extraction, URL resolution and graph traversal."""

from __future__ import annotations

import logging
import re
from collections import deque
from typing import Dict, Iterable, List, Optional, Sequence, Set

from archive_search.core.config import settings
from archive_search.knowledge.graph.export import export_graph
from archive_search.knowledge.storage.database import DocumentStore
from archive_search.models import Citation, CitationDirection, Document, DocumentSource, DocumentType
from archive_search.models.citation import EXPLICIT_CONFIDENCE

logger = logging.getLogger(__name__)

LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
WORD_SPLIT_RE = re.compile(r"\W+")
SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_url(url: str) -> str:
    """Comparison key for URLs: no scheme, no trailing slash, lowercase."""

    return SCHEME_RE.sub("", (url or "").strip()).rstrip("/").lower()


def word_set(text: str) -> Set[str]:
    return {word for word in WORD_SPLIT_RE.split(text.lower()) if word}


def jaccard_similarity(left: Set[str], right: Set[str]) -> float:
    if not left or not right:
        return 0.0
    union = len(left | right)
    return len(left & right) / union if union else 0.0


class CitationGraphBuilder:
    """Derive citation edges from research documents and query the stored graph."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        context_chars: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        min_paragraph_length: Optional[int] = None,
    ) -> None:
        self.store = store
        self.context_chars = context_chars or settings.CITATION_CONTEXT_CHARS
        self.similarity_threshold = (
            settings.IMPLICIT_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )
        self.min_paragraph_length = min_paragraph_length or settings.IMPLICIT_MIN_PARAGRAPH_LENGTH

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_explicit(self, document: Document) -> List[Citation]:
        content = document.content or ""
        citations: List[Citation] = []
        for match in LINK_RE.finditer(content):
            start = max(0, match.start() - self.context_chars)
            end = min(len(content), match.end() + self.context_chars)
            citations.append(
                Citation(
                    source_id=document.id,
                    target_url=match.group(2).strip(),
                    context=content[start:end],
                    confidence=EXPLICIT_CONFIDENCE,
                )
            )
        return citations

    def match_url_references(self, document: Document, url_content_docs: Iterable[Document]) -> List[Citation]:
        """Explicit citations, resolved to captured pages by normalized URL."""

        by_url: Dict[str, str] = {}
        for captured in url_content_docs:
            key = normalize_url(captured.original_url)
            if key and key not in by_url:
                by_url[key] = captured.id

        resolved: List[Citation] = []
        for citation in self.extract_explicit(document):
            target_id = by_url.get(normalize_url(citation.target_url))
            if target_id and target_id != document.id:
                citation = citation.model_copy(update={"target_id": target_id})
            resolved.append(citation)
        return resolved

    def detect_implicit(
        self,
        document: Document,
        all_docs: Iterable[Document],
        word_sets: Optional[Dict[str, Set[str]]] = None,
    ) -> List[Citation]:
        """Paragraph-level word overlap with other documents, for research reports only."""

        if not document.content or not (
            document.source == DocumentSource.RESEARCH and document.type == DocumentType.REPORT
        ):
            return []

        candidates = [other for other in all_docs if other.id != document.id and other.content]
        if word_sets is None:
            word_sets = {other.id: word_set(other.content) for other in candidates}

        citations: List[Citation] = []
        for paragraph in PARAGRAPH_SPLIT_RE.split(document.content):
            paragraph = paragraph.strip()
            if len(paragraph) < self.min_paragraph_length:
                continue
            paragraph_words = word_set(paragraph)
            for other in candidates:
                similarity = jaccard_similarity(paragraph_words, word_sets.get(other.id) or word_set(other.content))
                if similarity > self.similarity_threshold:
                    citations.append(
                        Citation(
                            source_id=document.id,
                            target_id=other.id,
                            target_url=other.original_url,
                            context=paragraph,
                            confidence=min(similarity, 1.0),
                        )
                    )
        return citations

    # ------------------------------------------------------------------
    # Full rebuild
    # ------------------------------------------------------------------

    def build(
        self,
        research_docs: Optional[Sequence[Document]] = None,
        url_content_docs: Optional[Sequence[Document]] = None,
        all_docs: Optional[Sequence[Document]] = None,
        manage_transaction: bool = True,
    ) -> List[Citation]:
        """Regenerate every stored citation.

        With `manage_transaction=False` the caller owns the transaction and this
        method never begins, commits or rolls back.
        """

        if all_docs is None:
            all_docs = self.store.list()
        if research_docs is None:
            research_docs = [doc for doc in all_docs if doc.source == DocumentSource.RESEARCH]
        if url_content_docs is None:
            url_content_docs = [doc for doc in all_docs if doc.source == DocumentSource.URL_CONTENT]

        if manage_transaction:
            self.store.begin()
        try:
            citations = self._rebuild(research_docs, url_content_docs, all_docs)
        except BaseException:
            if manage_transaction:
                self.store.rollback()
            raise
        if manage_transaction:
            self.store.commit()

        logger.info("Built %d citations from %d research documents", len(citations), len(research_docs))
        return citations

    def _rebuild(
        self,
        research_docs: Sequence[Document],
        url_content_docs: Sequence[Document],
        all_docs: Sequence[Document],
    ) -> List[Citation]:
        self.store.clear_citations()
        word_sets = {doc.id: word_set(doc.content) for doc in all_docs if doc.content}

        stored: List[Citation] = []
        for document in research_docs:
            found = self.match_url_references(document, url_content_docs)
            found += self.detect_implicit(document, all_docs, word_sets=word_sets)
            for citation in found:
                citation_id = self.store.add_citation(citation)
                stored.append(citation.model_copy(update={"id": citation_id}))
        return stored

    # ------------------------------------------------------------------
    # Graph queries
    # ------------------------------------------------------------------

    def citations_to(self, document_id: str) -> List[Citation]:
        return self.store.citations_for(document_id, CitationDirection.CITING)

    def citations_from(self, document_id: str) -> List[Citation]:
        return self.store.citations_for(document_id, CitationDirection.CITED)

    def related_documents(self, document_id: str, depth: int = 1) -> List[str]:
        """Breadth-first neighbours over outgoing and incoming edges.

        Each document is visited once, the origin is excluded and results keep
        discovery order.
        """

        visited = {document_id}
        related: List[str] = []
        frontier = deque([(document_id, 0)])
        while frontier:
            current, level = frontier.popleft()
            if level >= depth:
                continue
            neighbours = [c.target_id for c in self.citations_from(current) if c.target_id]
            neighbours += [c.source_id for c in self.citations_to(current)]
            for neighbour in neighbours:
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                related.append(neighbour)
                frontier.append((neighbour, level + 1))
        return related

    def export(self, format: str = "json") -> str:
        return export_graph(self.store.list(), self.store.all_citations(), format)
