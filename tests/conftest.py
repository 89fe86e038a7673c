from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from archive_search.knowledge.storage.database import DocumentStore
from archive_search.models import Document, DocumentSource, DocumentType


def _make_document(doc_id: str, **overrides) -> Document:
    fields = {
        "id": doc_id,
        "title": f"Title {doc_id}",
        "path": f"{doc_id}.md",
        "source": DocumentSource.RESEARCH,
        "type": DocumentType.REPORT,
        "date": "2024-05-01",
        "content": "",
    }
    fields.update(overrides)
    return Document(**fields)


def _write_file(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
    return path


@pytest.fixture
def make_document():
    return _make_document


@pytest.fixture
def write_file():
    return _write_file


@pytest.fixture
def store(tmp_path):
    document_store = DocumentStore(tmp_path / "index" / "search.db")
    yield document_store
    document_store.close()


@pytest.fixture
def archives(tmp_path):
    research = tmp_path / "research-archive"
    captured = tmp_path / "url-content-archive"
    research.mkdir()
    captured.mkdir()
    return research, captured
