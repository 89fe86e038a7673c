"""Search request/response models shared by the Search API and the host surface."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from archive_search.models.citation import Citation

SearchField = Literal["title", "content", "query"]
DEFAULT_SEARCH_FIELDS: tuple[str, ...] = ("title", "content", "query")


class SurfaceModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentSummary(SurfaceModel):
    id: str
    title: str
    path: str
    source: str
    date: str
    score: float


class Highlight(SurfaceModel):
    field: str
    term: str = ""
    snippets: List[str] = Field(default_factory=list)


class CitationLists(SurfaceModel):
    citing: List[Citation] = Field(default_factory=list)
    cited: List[Citation] = Field(default_factory=list)
    related: Optional[List[str]] = None


class SearchResult(SurfaceModel):
    document: DocumentSummary
    highlights: List[Highlight] = Field(default_factory=list)
    citations: Optional[CitationLists] = None


class NetworkNode(SurfaceModel):
    id: str
    label: str
    type: Literal["source", "target", "both", "isolated"] = "isolated"


class NetworkEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    confidence: float


class CitationNetwork(SurfaceModel):
    nodes: List[NetworkNode] = Field(default_factory=list)
    edges: List[NetworkEdge] = Field(default_factory=list)


class CitationMetrics(SurfaceModel):
    outgoing_count: int
    incoming_count: int
    average_confidence: float


class CitationReport(SurfaceModel):
    document_id: str
    metrics: CitationMetrics
    network: CitationNetwork


class SearchRequest(SurfaceModel):
    """Contract of the single query operation exposed to the host tool layer."""

    query: str = Field(..., min_length=1)
    fuzzy: bool = True
    include_citations: bool = False
    citation_depth: int = Field(1, ge=1, le=3)
    limit: int = Field(10, ge=1, le=50)


class SearchResponse(SurfaceModel):
    results: List[SearchResult] = Field(default_factory=list)
    citation_graph: Optional[CitationNetwork] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
