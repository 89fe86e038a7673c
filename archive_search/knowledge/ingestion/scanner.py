"""Archive tree discovery and per-file metadata extraction."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from archive_search.core.exceptions import ScanError
from archive_search.models import Document, DocumentSource, DocumentType, ScanResult

logger = logging.getLogger(__name__)

CONTENT_EXTENSIONS = frozenset({".md", ".markdown", ".txt", ".html", ".htm"})
SIDECAR_METADATA = "metadata.json"

FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
FRONT_MATTER_LINE_RE = re.compile(r"^([A-Za-z0-9_\-]+)\s*:\s*(.*?)\s*$")
RESEARCH_MARKER_RE = re.compile(r"^#[ \t]+Research:[ \t]*(.+?)[ \t]*$", re.MULTILINE)
FIRST_HEADING_RE = re.compile(r"^#[ \t]+(.+?)[ \t]*$", re.MULTILINE)
DECLARED_SOURCE_RE = re.compile(r"^##[ \t]+Source:[ \t]*(.+?)[ \t]*$", re.MULTILINE)
DECLARED_DATE_RE = re.compile(r"^##[ \t]+(?:Date|Captured):[ \t]*(.+?)[ \t]*$", re.MULTILINE)
CAPTURED_SOURCE_RE = re.compile(r"^#[ \t]+Source:[ \t]*\[(.+?)\]\((.+?)\)[ \t]*$", re.MULTILINE)
HTML_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
ISO_DATE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")
SEARCH_HINT_RE = re.compile(r"(?<![a-z])search(?![a-z])", re.IGNORECASE)
REPORT_HINT_RE = re.compile(r"(?<![a-z])reports?(?![a-z])", re.IGNORECASE)

TEXT_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y", "%m/%d/%Y")
URL_KEYS = ("url", "original_url", "originalUrl", "source_url")


def document_id(source: DocumentSource | str, relative_path: str) -> str:
    """Stable identifier derived from the archive root and the relative path."""

    source_value = source.value if isinstance(source, DocumentSource) else str(source)
    digest = hashlib.sha256(f"{source_value}:{relative_path}".encode("utf-8")).hexdigest()
    return f"doc-{digest[:24]}"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_declared_date(value: Optional[str]) -> Optional[str]:
    """Return an ISO `YYYY-MM-DD` date for a declared date string, if parseable."""

    if not value:
        return None
    value = value.strip().strip("\"'")
    match = ISO_DATE_RE.search(value)
    if match:
        try:
            return date.fromisoformat(match.group(1)).isoformat()
        except ValueError:
            return None
    for fmt in TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def parse_front_matter(text: str) -> Dict[str, str]:
    match = FRONT_MATTER_RE.match(text)
    if not match:
        return {}
    values: Dict[str, str] = {}
    for line in match.group(1).splitlines():
        pair = FRONT_MATTER_LINE_RE.match(line.strip())
        if pair:
            values[pair.group(1)] = pair.group(2).strip().strip("\"'")
    return values


class ArchiveScanner:
    """Walk the research and captured-content archives and produce documents.

    Files whose modification time is not newer than the previous scan are left
    out of the result but still count as present, so deletion detection sees
    the whole tree on every pass.
    """

    def __init__(self, extensions: Iterable[str] = CONTENT_EXTENSIONS) -> None:
        self.extensions = frozenset(ext.lower() for ext in extensions)

    def scan(
        self,
        research_path: str | Path,
        url_content_path: str | Path,
        last_scan_time: Optional[str] = None,
        force: bool = False,
        known_ids: Optional[Iterable[str]] = None,
    ) -> ScanResult:
        scan_time = datetime.now(timezone.utc).isoformat()
        watermark = None if force else parse_timestamp(last_scan_time)

        documents: List[Document] = []
        errors: List[str] = []
        present: set[str] = set()
        scanned = 0

        roots = (
            (DocumentSource.RESEARCH, Path(research_path)),
            (DocumentSource.URL_CONTENT, Path(url_content_path)),
        )
        for source, root in roots:
            if not root.is_dir():
                logger.warning("Archive root %s for %s does not exist; treating it as empty", root, source.value)
                continue
            for file_path, relative in self._walk(root):
                scanned += 1
                doc_id = document_id(source, relative)
                present.add(doc_id)
                try:
                    modified = datetime.fromtimestamp(file_path.stat().st_mtime, tz=timezone.utc)
                    if watermark is not None and modified <= watermark:
                        continue
                    documents.append(self._read_document(source, root, file_path, relative, doc_id, modified))
                except ScanError as exc:
                    logger.error("Skipping unreadable archive file: %s", exc)
                    errors.append(relative)
                except OSError as exc:
                    logger.error("Skipping unreadable archive file %s: %s", file_path, exc)
                    errors.append(relative)

        deleted_ids = sorted(set(known_ids) - present) if known_ids is not None else []
        logger.info(
            "Scanned %d files: %d changed, %d deleted, %d errors",
            scanned,
            len(documents),
            len(deleted_ids),
            len(errors),
        )
        return ScanResult(
            documents=documents,
            deleted_ids=deleted_ids,
            scan_time=scan_time,
            scanned_files=scanned,
            errors=errors,
        )

    def _walk(self, root: Path) -> Iterator[Tuple[Path, str]]:
        for directory, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                file_path = Path(directory) / filename
                if file_path.suffix.lower() not in self.extensions:
                    continue
                yield file_path, file_path.relative_to(root).as_posix()

    def _read_document(
        self,
        source: DocumentSource,
        root: Path,
        file_path: Path,
        relative: str,
        doc_id: str,
        modified: datetime,
    ) -> Document:
        try:
            text = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise ScanError(f"Unable to read {file_path}: {exc}", details={"path": relative}) from exc

        front_matter = parse_front_matter(text)
        metadata: Dict[str, object] = {
            "extension": file_path.suffix.lower(),
            "sizeBytes": len(text.encode("utf-8")),
            "modifiedAt": modified.isoformat(),
        }
        if front_matter:
            metadata["frontMatter"] = front_matter

        if source == DocumentSource.RESEARCH:
            title, query, declared_date, doc_type = self._research_fields(text, relative, metadata)
        else:
            title, query, declared_date, doc_type = self._captured_fields(text, file_path, metadata)

        title = front_matter.get("title") or title or file_path.stem
        query = front_matter.get("query") or query
        declared_date = parse_declared_date(front_matter.get("date")) or declared_date
        for key in URL_KEYS:
            if front_matter.get(key):
                metadata["originalUrl"] = front_matter[key]
                break

        return Document(
            id=doc_id,
            title=title.strip(),
            path=relative,
            source=source,
            type=doc_type,
            date=declared_date or modified.date().isoformat(),
            content=text,
            query=query or None,
            metadata=metadata,
        )

    def _research_fields(
        self, text: str, relative: str, metadata: Dict[str, object]
    ) -> Tuple[str, Optional[str], Optional[str], DocumentType]:
        marker = RESEARCH_MARKER_RE.search(text)
        heading = FIRST_HEADING_RE.search(text)
        query = marker.group(1) if marker else None
        title = query or (heading.group(1) if heading else "")

        declared_source = DECLARED_SOURCE_RE.search(text)
        if declared_source:
            metadata["declaredSource"] = declared_source.group(1)
        declared = DECLARED_DATE_RE.search(text)
        declared_date = parse_declared_date(declared.group(1)) if declared else None

        path_parts = relative.split("/")
        if any(SEARCH_HINT_RE.search(part) for part in path_parts) or (
            heading is not None and SEARCH_HINT_RE.search(heading.group(1))
        ):
            doc_type = DocumentType.SEARCH
        elif marker or heading or any(REPORT_HINT_RE.search(part) for part in path_parts):
            doc_type = DocumentType.REPORT
        else:
            doc_type = DocumentType.UNKNOWN
        return title, query, declared_date, doc_type

    def _captured_fields(
        self, text: str, file_path: Path, metadata: Dict[str, object]
    ) -> Tuple[str, Optional[str], Optional[str], DocumentType]:
        title = ""
        captured_source = CAPTURED_SOURCE_RE.search(text)
        if captured_source:
            title = captured_source.group(1)
            metadata["originalUrl"] = captured_source.group(2).strip()
        declared = DECLARED_DATE_RE.search(text)
        declared_date = parse_declared_date(declared.group(1)) if declared else None

        sidecar = self._load_sidecar(file_path.parent / SIDECAR_METADATA)
        if sidecar:
            if sidecar.get("url") and "originalUrl" not in metadata:
                metadata["originalUrl"] = str(sidecar["url"])
            title = title or str(sidecar.get("title") or "")
            declared_date = declared_date or parse_declared_date(str(sidecar.get("capturedAt") or ""))

        if not title:
            html_title = HTML_TITLE_RE.search(text)
            heading = FIRST_HEADING_RE.search(text)
            if html_title:
                title = re.sub(r"\s+", " ", html_title.group(1)).strip()
            elif heading:
                title = heading.group(1)
        return title, None, declared_date, DocumentType.WEBPAGE

    @staticmethod
    def _load_sidecar(path: Path) -> Optional[Dict[str, object]]:
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable capture metadata %s: %s", path, exc)
            return None
        return data if isinstance(data, dict) else None
