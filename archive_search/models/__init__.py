from .citation import Citation, CitationDirection
from .document import Document, DocumentSource, DocumentType
from .indexing import IndexingPhase, IndexingState, IndexingStats, ScanResult
from .search import (
    CitationLists,
    CitationMetrics,
    CitationNetwork,
    CitationReport,
    DocumentSummary,
    Highlight,
    NetworkEdge,
    NetworkNode,
    SearchRequest,
    SearchResponse,
    SearchResult,
)

__all__ = [
    "Citation",
    "CitationDirection",
    "CitationLists",
    "CitationMetrics",
    "CitationNetwork",
    "CitationReport",
    "Document",
    "DocumentSource",
    "DocumentSummary",
    "DocumentType",
    "Highlight",
    "IndexingPhase",
    "IndexingState",
    "IndexingStats",
    "NetworkEdge",
    "NetworkNode",
    "ScanResult",
    "SearchRequest",
    "SearchResponse",
    "SearchResult",
]
