"""Citation edge model."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

EXPLICIT_CONFIDENCE = 1.0


class CitationDirection(str, Enum):
    CITING = "citing"  # citations whose target is the document
    CITED = "cited"  # citations whose source is the document


class Citation(BaseModel):
    """A directed, weighted edge from a citing document to a URL or document."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    source_id: str = Field(alias="sourceId")
    target_url: str = Field(alias="targetUrl")
    target_id: Optional[str] = Field(None, alias="targetId")
    context: str = ""
    confidence: float = Field(EXPLICIT_CONFIDENCE, ge=0.0, le=1.0)

    @property
    def is_explicit(self) -> bool:
        return self.confidence >= EXPLICIT_CONFIDENCE
