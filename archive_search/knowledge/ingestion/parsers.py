"""HTML cleanup and markdown conversion for captured pages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

import trafilatura
from bs4 import BeautifulSoup, NavigableString, Tag

from archive_search.core.exceptions import NormalizationError

logger = logging.getLogger(__name__)

BOILERPLATE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "iframe", "svg")
BLOCK_TAGS = {"p", "div", "section", "article", "main", "blockquote", "table", "tr", "figure", "body"}
HEADING_TAGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
LINE_TAGS = BLOCK_TAGS | set(HEADING_TAGS) | {"li", "ul", "ol", "pre", "hr"}
MARKUP_RE = re.compile(r"<([a-z][a-z0-9]*)(\s[^<>]*)?/?>", re.IGNORECASE)
AUTOLINK_RE = re.compile(r"<(https?://[^\s<>]+)>")

Extractor = Callable[[str], Optional[str]]


def contains_markup(content: str) -> bool:
    return bool(content) and MARKUP_RE.search(content) is not None


def extract_main_markdown(html: str) -> Optional[str]:
    """Main-content extraction with trafilatura, rendered as markdown."""

    return trafilatura.extract(
        html,
        output_format="markdown",
        include_comments=False,
        include_tables=True,
        include_images=True,
        include_links=True,
        include_formatting=True,
        favor_recall=True,
    )


@dataclass
class ParsedPage:
    markdown: str
    title: Optional[str] = None


class HtmlConverter:
    """Convert captured pages to markdown and scrub stray tags from markdown documents.

    Pages go through trafilatura first. Fragments too small for its content
    scoring come back empty and are rendered from the BeautifulSoup tree instead.
    """

    def __init__(self, extractor: Optional[Extractor] = None) -> None:
        self.extractor = extractor or extract_main_markdown

    def convert(self, html: str) -> ParsedPage:
        try:
            soup = BeautifulSoup(html, "html.parser")
            title = soup.title.get_text(" ", strip=True) if soup.title else None
            self._strip_boilerplate(soup)
            markdown = self.extractor(str(soup))
            if not markdown:
                logger.debug("No main content extracted; rendering page tree directly")
                markdown = self._render_children(self._main_content(soup))
        except Exception as exc:
            raise NormalizationError(f"Unable to convert markup: {exc}") from exc
        return ParsedPage(markdown=markdown.strip(), title=title or None)

    def strip_markup(self, text: str) -> str:
        """Drop tags embedded in a markdown document, keeping its text and line layout."""

        try:
            soup = BeautifulSoup(AUTOLINK_RE.sub(r"[\1](\1)", text), "html.parser")
            self._strip_boilerplate(soup)
            for tag in soup.find_all("br"):
                tag.replace_with("\n")
            for tag in soup.find_all(list(LINE_TAGS)):
                tag.insert_before("\n")
                tag.insert_after("\n")
            return soup.get_text()
        except Exception as exc:
            raise NormalizationError(f"Unable to strip markup: {exc}") from exc

    @staticmethod
    def _strip_boilerplate(soup: BeautifulSoup) -> None:
        for element in soup(list(BOILERPLATE_TAGS)):
            element.decompose()

    def _main_content(self, soup: BeautifulSoup) -> Tag:
        for name in ("article", "main"):
            candidate = soup.find(name)
            if isinstance(candidate, Tag) and candidate.get_text(strip=True):
                return candidate

        # Densest paragraph container
        best: Optional[Tag] = None
        best_length = 0
        for paragraph in soup.find_all("p"):
            parent = paragraph.parent
            if not isinstance(parent, Tag):
                continue
            length = sum(len(p.get_text(strip=True)) for p in parent.find_all("p", recursive=False))
            if length > best_length:
                best, best_length = parent, length
        if best is not None and best.name not in {"body", "html", "[document]"}:
            return best
        return soup.body or soup

    def _render_children(self, element: Tag) -> str:
        return "".join(self._render(child) for child in element.children)

    def _render(self, node) -> str:
        if isinstance(node, NavigableString):
            if type(node) is not NavigableString:
                # Comments, doctypes and CDATA sections
                return ""
            return re.sub(r"\s+", " ", str(node))
        if not isinstance(node, Tag):
            return ""

        name = node.name.lower()
        if name in HEADING_TAGS:
            text = node.get_text(" ", strip=True)
            return f"\n\n{'#' * HEADING_TAGS[name]} {text}\n\n" if text else ""
        if name == "a":
            text = self._render_children(node).strip()
            href = (node.get("href") or "").strip()
            if href and text and not href.startswith(("#", "javascript:")):
                return f"[{text}]({href})"
            return text
        if name in {"em", "i"}:
            text = self._render_children(node).strip()
            return f"*{text}*" if text else ""
        if name in {"strong", "b"}:
            text = self._render_children(node).strip()
            return f"**{text}**" if text else ""
        if name == "br":
            return "\n"
        if name == "pre":
            return f"\n\n```\n{node.get_text().strip(chr(10))}\n```\n\n"
        if name == "code":
            return f"`{node.get_text()}`"
        if name in {"ul", "ol"}:
            return self._render_list(node, ordered=name == "ol")
        if name == "img":
            alt = (node.get("alt") or "").strip()
            return f"![{alt}]({node.get('src')})" if node.get("src") else ""
        if name in BLOCK_TAGS or name in {"li", "td", "th"}:
            inner = self._render_children(node).strip()
            if name in {"td", "th"}:
                return f"{inner} "
            return f"\n\n{inner}\n\n" if inner else ""
        return self._render_children(node)

    def _render_list(self, node: Tag, ordered: bool) -> str:
        lines: List[str] = []
        for index, item in enumerate(node.find_all("li", recursive=False), start=1):
            bullet = f"{index}." if ordered else "-"
            text = re.sub(r"\s*\n\s*", " ", self._render_children(item)).strip()
            if text:
                lines.append(f"{bullet} {text}")
        return "\n\n" + "\n".join(lines) + "\n\n" if lines else ""
