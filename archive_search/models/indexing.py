"""Indexing run state and statistics models."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from archive_search.models.document import Document


class IndexingPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    NORMALIZING = "normalizing"
    WRITING = "writing"
    CITATION_BUILDING = "citation_building"
    COMMITTING = "committing"
    FAILED = "failed"


class IndexingState(BaseModel):
    """Watermark of the last committed indexing run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    last_scan_time: Optional[str] = None


class ScanResult(BaseModel):
    documents: List[Document] = Field(default_factory=list)
    deleted_ids: List[str] = Field(default_factory=list)
    scan_time: str
    scanned_files: int = 0
    errors: List[str] = Field(default_factory=list)


class IndexingStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    scanned_count: int = 0
    added_count: int = 0
    updated_count: int = 0
    deleted_count: int = 0
    citation_count: int = 0
    elapsed_ms: float = 0.0
