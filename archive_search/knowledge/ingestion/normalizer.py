"""Content normalization and key-information extraction."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from typing import Dict, List, Optional, Sequence

from archive_search.core.config import settings
from archive_search.core.exceptions import NormalizationError
from archive_search.knowledge.ingestion.parsers import HtmlConverter, contains_markup
from archive_search.models import Document, DocumentSource, DocumentType

logger = logging.getLogger(__name__)

FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\n.*?\n---[ \t]*(?:\n|\Z)", re.DOTALL)
HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
INLINE_SPACE_RE = re.compile(r"[ \t]+")
SENTENCE_BREAK_RE = re.compile(r"(?<=\.) +(?=\S)")
EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t]*$", re.MULTILINE)
LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
ISO_DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
RESEARCH_MARKER_RE = re.compile(r"^#[ \t]+Research:[ \t]*(.+?)[ \t]*$", re.MULTILINE)
CAPTURED_SOURCE_RE = re.compile(r"^#[ \t]+Source:[ \t]*\[.+?\]\((.+?)\)[ \t]*$", re.MULTILINE)
SECTION_RE_TEMPLATE = r"^##[ \t]+{name}[ \t]*\n(.*?)(?=^##?[ \t]|\Z)"

PAGE_LEAD_RE = re.compile(r"\A\s*<(?:!doctype|[a-z])", re.IGNORECASE)
HTML_EXTENSIONS = {".html", ".htm"}
STOP_WORDS = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "is", "are", "was", "were",
        "in", "on", "at", "to", "for", "with", "by", "about", "of", "from",
        "this", "that", "these", "those", "it", "its", "be", "been", "has",
        "have", "had", "not", "can", "will", "which", "their", "they", "as",
    }
)


def normalize_text(content: str) -> str:
    """Canonical whitespace form that keeps headings, paragraphs and links intact."""

    if not content:
        return ""
    text = content.replace("\r\n", "\n").replace("\r", "\n")
    text = FRONT_MATTER_RE.sub("", text, count=1)
    text = HTML_COMMENT_RE.sub("", text)
    text = CONTROL_CHARS_RE.sub("", text)

    lines: List[str] = []
    for line in text.split("\n"):
        line = INLINE_SPACE_RE.sub(" ", line).strip()
        if line and not line.startswith("#"):
            line = SENTENCE_BREAK_RE.sub("\n", line)
        lines.append(line)
    text = "\n".join(lines)
    return EXCESS_NEWLINES_RE.sub("\n\n", text).strip()


def extract_keywords(content: str, limit: int = 20) -> List[str]:
    words = re.sub(r"[^\w\s]", " ", content.lower()).split()
    counts = Counter(word for word in words if len(word) >= 3 and word not in STOP_WORDS)
    return [word for word, _ in counts.most_common(limit)]


def extract_section(content: str, name: str) -> Optional[str]:
    match = re.search(SECTION_RE_TEMPLATE.format(name=re.escape(name)), content, re.MULTILINE | re.DOTALL)
    if not match:
        return None
    section = match.group(1).strip()
    return section or None


class ContentNormalizer:
    """Turn scanned documents into a canonical, indexable form."""

    def __init__(
        self,
        converter: Optional[HtmlConverter] = None,
        concurrency: Optional[int] = None,
        keyword_limit: Optional[int] = None,
    ) -> None:
        self.converter = converter or HtmlConverter()
        self.concurrency = concurrency or settings.NORMALIZE_CONCURRENCY
        self.keyword_limit = keyword_limit or settings.KEYWORD_LIMIT

    def process(self, document: Document) -> Document:
        """Return a normalized copy; the input document is never modified.

        Markup conversion failures are logged and leave the document as it was.
        """

        try:
            return self._process(document)
        except NormalizationError as exc:
            logger.warning("Normalization failed for document %s (%s): %s", document.id, document.path, exc)
            return document

    def _process(self, document: Document) -> Document:
        content = document.content or ""
        metadata: Dict[str, object] = dict(document.metadata)

        if contains_markup(content):
            if self._is_page(document, content):
                page = self.converter.convert(content)
                content = page.markdown
                if page.title and not metadata.get("pageTitle"):
                    metadata["pageTitle"] = page.title
            else:
                content = self.converter.strip_markup(content)

        content = normalize_text(content)
        metadata.update(self.extract_key_information(content, document.type))

        query = document.query
        if not query and document.source == DocumentSource.RESEARCH and document.type == DocumentType.REPORT:
            marker = RESEARCH_MARKER_RE.search(content)
            if marker:
                query = marker.group(1)

        if document.source == DocumentSource.URL_CONTENT and not metadata.get("originalUrl"):
            captured = CAPTURED_SOURCE_RE.search(content)
            if captured:
                metadata["originalUrl"] = captured.group(1).strip()

        return document.model_copy(update={"content": content, "metadata": metadata, "query": query})

    def _is_page(self, document: Document, content: str) -> bool:
        """HTML files and markup-led content are whole pages; anything else is markdown with embedded tags."""

        extension = str(document.metadata.get("extension") or "")
        return extension in HTML_EXTENSIONS or PAGE_LEAD_RE.match(content) is not None

    def extract_key_information(self, content: str, doc_type: DocumentType = DocumentType.UNKNOWN) -> Dict[str, object]:
        info: Dict[str, object] = {}

        headings = [{"level": len(marks), "text": text} for marks, text in HEADING_RE.findall(content)]
        if headings:
            info["headings"] = headings

        links = [{"text": text.strip(), "url": url.strip()} for text, url in LINK_RE.findall(content)]
        if links:
            info["links"] = links

        dates = list(dict.fromkeys(ISO_DATE_RE.findall(content)))
        if dates:
            info["dates"] = dates

        keywords = extract_keywords(content, self.keyword_limit)
        if keywords:
            info["keywords"] = keywords

        if doc_type == DocumentType.REPORT:
            for name in ("Summary", "Findings"):
                section = extract_section(content, name)
                if section:
                    info[name.lower()] = section
        return info

    async def process_batch(self, documents: Sequence[Document], concurrency: Optional[int] = None) -> List[Document]:
        """Normalize documents in worker threads; order matches the input."""

        semaphore = asyncio.Semaphore(concurrency or self.concurrency)

        async def worker(document: Document) -> Document:
            async with semaphore:
                try:
                    return await asyncio.to_thread(self.process, document)
                except Exception:
                    logger.exception("Unexpected failure normalizing document %s", document.id)
                    return document

        return list(await asyncio.gather(*(worker(document) for document in documents)))
