import pytest

from archive_search.core.exceptions import NormalizationError
from archive_search.knowledge.ingestion.normalizer import ContentNormalizer, extract_keywords, normalize_text
from archive_search.knowledge.ingestion.parsers import HtmlConverter, contains_markup
from archive_search.models import DocumentSource, DocumentType

PAGE = """
<html>
  <head><title>Archived Page</title><script>trackVisitor()</script><style>.x {}</style></head>
  <body>
    <nav>Home | About | Contact</nav>
    <article>
      <h1>Main Heading</h1>
      <p>First paragraph with a <a href="https://example.com/ref">reference link</a>.</p>
      <p>Second paragraph with <em>emphasis</em> and <strong>weight</strong>.</p>
      <ul><li>one</li><li>two</li></ul>
    </article>
    <footer>Copyright notice</footer>
  </body>
</html>
"""


class FailingConverter:
    def convert(self, html):
        raise NormalizationError("broken markup")


def no_extraction(html):
    return None


def test_normalize_text_keeps_structure():
    raw = (
        "---\ntitle: x\n---\n"
        "# Heading One\r\n"
        "<!-- hidden -->\n"
        "First   sentence. Second\tsentence.\x07\n\n\n\n"
        "Next paragraph with [a link](https://example.com)."
    )

    text = normalize_text(raw)

    assert text.startswith("# Heading One")
    assert "hidden" not in text
    assert "title: x" not in text
    assert "First sentence.\nSecond sentence." in text
    assert "\x07" not in text
    assert "\n\n\n" not in text
    assert "[a link](https://example.com)" in text


def test_headings_are_not_split_on_sentence_breaks():
    assert normalize_text("# Research: Dr. Smith and co. work") == "# Research: Dr. Smith and co. work"


def test_contains_markup():
    assert contains_markup("<p>hello</p>")
    assert contains_markup('<a href="x">y</a>')
    assert not contains_markup("a < b and c > d")
    assert not contains_markup("")


def test_tree_rendering_drops_boilerplate():
    page = HtmlConverter(extractor=no_extraction).convert(PAGE)

    assert page.title == "Archived Page"
    assert "# Main Heading" in page.markdown
    assert "[reference link](https://example.com/ref)" in page.markdown
    assert "*emphasis*" in page.markdown
    assert "**weight**" in page.markdown
    assert "- one" in page.markdown
    assert "trackVisitor" not in page.markdown
    assert "Home | About" not in page.markdown
    assert "Copyright" not in page.markdown


def test_extractor_sees_page_without_boilerplate():
    seen = []

    def recording_extractor(html):
        seen.append(html)
        return "# Extracted\n\nBody text."

    page = HtmlConverter(extractor=recording_extractor).convert(PAGE)

    assert page.markdown == "# Extracted\n\nBody text."
    assert page.title == "Archived Page"
    assert "trackVisitor" not in seen[0]
    assert "Copyright notice" not in seen[0]
    assert "First paragraph" in seen[0]


def test_default_extraction_keeps_article_text():
    page = HtmlConverter().convert(PAGE)

    assert page.title == "Archived Page"
    assert "First paragraph" in page.markdown
    assert "Second paragraph" in page.markdown
    assert "trackVisitor" not in page.markdown
    assert "Copyright" not in page.markdown
    assert "<p>" not in page.markdown


def test_captured_html_is_converted_and_enriched(make_document):
    document = make_document(
        "doc-page",
        source=DocumentSource.URL_CONTENT,
        type=DocumentType.WEBPAGE,
        content=PAGE,
        metadata={"extension": ".html"},
    )

    processed = ContentNormalizer(converter=HtmlConverter(extractor=no_extraction)).process(document)

    assert "<p>" not in processed.content
    assert processed.metadata["pageTitle"] == "Archived Page"
    assert processed.metadata["headings"] == [{"level": 1, "text": "Main Heading"}]
    assert processed.metadata["links"] == [{"text": "reference link", "url": "https://example.com/ref"}]
    assert document.content == PAGE


def test_research_report_query_and_sections(make_document):
    content = (
        "# Research: solid state batteries\n\n"
        "## Summary\n\nBatteries are improving. Costs fall.\n\n"
        "## Findings\n\nDensity doubled on 2024-01-10 and again on 2024-01-10.\n\n"
        "## Sources\n\n- [Paper](https://example.com/paper)\n"
    )
    document = make_document("doc-r", content=content, query=None)

    processed = ContentNormalizer().process(document)

    assert processed.query == "solid state batteries"
    assert processed.metadata["summary"].startswith("Batteries are improving.")
    assert processed.metadata["findings"].startswith("Density doubled")
    assert processed.metadata["dates"] == ["2024-01-10"]
    assert "batteries" in processed.metadata["keywords"]


def test_captured_original_url_from_source_header(make_document):
    document = make_document(
        "doc-c",
        source=DocumentSource.URL_CONTENT,
        type=DocumentType.WEBPAGE,
        content="# Source: [Title](https://example.com/x)\n\nBody.",
    )

    processed = ContentNormalizer().process(document)

    assert processed.metadata["originalUrl"] == "https://example.com/x"


def test_markup_embedded_in_markdown_is_stripped(make_document):
    content = (
        "# Notes\n\n"
        "<div><script>track()</script><p>Battery <b>chemistry</b> notes</p></div>\n\n"
        "Line one<br>line two, see <https://example.com/cells>.\n"
    )
    document = make_document("doc-r", content=content, metadata={"extension": ".md"})

    processed = ContentNormalizer().process(document)

    assert processed.content.startswith("# Notes")
    assert "Battery chemistry notes" in processed.content
    assert "track()" not in processed.content
    assert "<" not in processed.content
    assert "Line one\nline two" in processed.content
    assert processed.metadata["links"] == [{"text": "https://example.com/cells", "url": "https://example.com/cells"}]
    assert "track" not in processed.metadata["keywords"]


def test_markup_led_markdown_file_is_cleaned(make_document):
    document = make_document(
        "doc-r",
        content="<div><script>track()</script><p>Battery <b>chemistry</b> notes</p></div>",
        metadata={"extension": ".md"},
    )

    processed = ContentNormalizer(converter=HtmlConverter(extractor=no_extraction)).process(document)

    assert processed.content == "Battery **chemistry** notes"


def test_conversion_failure_returns_original(make_document):
    document = make_document(
        "doc-page",
        source=DocumentSource.URL_CONTENT,
        type=DocumentType.WEBPAGE,
        content="<div>broken</div>",
    )

    processed = ContentNormalizer(converter=FailingConverter()).process(document)

    assert processed is document


def test_extract_keywords_counts_and_filters():
    keywords = extract_keywords("The graph and the graph and THE index. Graph index of it.", limit=2)

    assert keywords == ["graph", "index"]


class ExplodingNormalizer(ContentNormalizer):
    def process(self, document):
        if document.id == "doc-bad":
            raise RuntimeError("unexpected")
        return super().process(document)


@pytest.mark.asyncio
async def test_process_batch_preserves_order_and_failures(make_document):
    documents = [make_document(f"doc-{index}", content=f"Document {index}. More text.") for index in range(7)]
    documents.insert(3, make_document("doc-bad", content="Keep   me. As is."))

    processed = await ExplodingNormalizer(concurrency=2).process_batch(documents)

    assert [document.id for document in processed] == [document.id for document in documents]
    assert processed[3] is documents[3]
    assert processed[0].content == "Document 0.\nMore text."
