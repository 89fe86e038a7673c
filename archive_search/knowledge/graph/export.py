"""Serialize the citation graph for external visualization tools."""

from __future__ import annotations

import json
from typing import Callable, Dict, List, Sequence
from xml.etree import ElementTree

from archive_search.models import Citation, Document

GRAPHML_NAMESPACE = "http://graphml.graphdrawing.org/xmlns"
EXTERNAL_TARGET = "external"


def export_json(documents: Sequence[Document], citations: Sequence[Citation]) -> str:
    nodes = [
        {"id": doc.id, "label": doc.title, "type": doc.source.value, "metadata": doc.metadata}
        for doc in documents
    ]
    edges = [
        {
            "source": citation.source_id,
            "target": citation.target_id or EXTERNAL_TARGET,
            "url": citation.target_url,
            "confidence": citation.confidence,
        }
        for citation in citations
    ]
    return json.dumps({"nodes": nodes, "edges": edges}, indent=2, ensure_ascii=False, default=str)


def export_graphml(documents: Sequence[Document], citations: Sequence[Citation]) -> str:
    root = ElementTree.Element("graphml", xmlns=GRAPHML_NAMESPACE)
    for key_id, domain, attr_type in (
        ("label", "node", "string"),
        ("type", "node", "string"),
        ("url", "edge", "string"),
        ("confidence", "edge", "double"),
    ):
        ElementTree.SubElement(root, "key", id=key_id, attrib={"for": domain, "attr.name": key_id, "attr.type": attr_type})

    graph = ElementTree.SubElement(root, "graph", id="CitationGraph", edgedefault="directed")
    for doc in documents:
        node = ElementTree.SubElement(graph, "node", id=doc.id)
        ElementTree.SubElement(node, "data", key="label").text = doc.title
        ElementTree.SubElement(node, "data", key="type").text = doc.source.value
    for citation in citations:
        if not citation.target_id:
            continue
        edge = ElementTree.SubElement(graph, "edge", source=citation.source_id, target=citation.target_id)
        ElementTree.SubElement(edge, "data", key="url").text = citation.target_url
        ElementTree.SubElement(edge, "data", key="confidence").text = str(citation.confidence)

    body = ElementTree.tostring(root, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body


def _dot_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", " ") + '"'


def export_dot(documents: Sequence[Document], citations: Sequence[Citation]) -> str:
    lines: List[str] = ["digraph CitationGraph {"]
    for doc in documents:
        lines.append(f"  {_dot_quote(doc.id)} [label={_dot_quote(doc.title)}, shape=box];")
    for citation in citations:
        if citation.target_id:
            lines.append(
                f"  {_dot_quote(citation.source_id)} -> {_dot_quote(citation.target_id)} [weight={citation.confidence}];"
            )
    lines.append("}")
    return "\n".join(lines) + "\n"


EXPORTERS: Dict[str, Callable[[Sequence[Document], Sequence[Citation]], str]] = {
    "json": export_json,
    "graphml": export_graphml,
    "dot": export_dot,
}


def export_graph(documents: Sequence[Document], citations: Sequence[Citation], format: str = "json") -> str:
    exporter = EXPORTERS.get((format or "").lower())
    if exporter is None:
        raise ValueError(f"Unsupported export format: {format}")
    return exporter(documents, citations)
