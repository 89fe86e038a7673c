"""Document data model definitions."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentSource(str, Enum):
    RESEARCH = "research"
    URL_CONTENT = "url-content"


class DocumentType(str, Enum):
    REPORT = "report"
    SEARCH = "search"
    WEBPAGE = "webpage"
    UNKNOWN = "unknown"


class Document(BaseModel):
    """One archived unit of research or captured web content."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    title: str
    path: str
    source: DocumentSource
    type: DocumentType = DocumentType.UNKNOWN
    date: str
    content: str = ""
    query: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def original_url(self) -> str:
        return str(self.metadata.get("originalUrl") or "")

    @property
    def is_research_report(self) -> bool:
        return self.source == DocumentSource.RESEARCH and self.type == DocumentType.REPORT
