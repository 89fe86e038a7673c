import pytest
from fastapi.testclient import TestClient

from archive_search.api.dependencies import ArchiveServices
from archive_search.api.main import create_app
from archive_search.core.exceptions import IndexingInProgressError
from archive_search.knowledge.retrieval.search import SearchAPI
from archive_search.orchestration.indexer import IndexingOrchestrator
from archive_search.orchestration.state import IndexingStateStore
from archive_search.orchestration.triggers import IndexingTriggers


class BusyOrchestrator:
    def __init__(self):
        self.phase_value = "writing"

    async def run_indexing(self, force=False, trigger="manual"):
        raise IndexingInProgressError("An indexing run is already in progress")

    async def wait_idle(self):
        return None

    def status(self):
        return {"phase": self.phase_value, "running": True}


@pytest.fixture
def services(store, archives, tmp_path, write_file):
    research, captured = archives
    write_file(
        research / "graphs.md",
        """
        # Research: graph databases

        Property graphs are compared in [the survey](https://example.com/survey).
        """,
    )
    write_file(
        captured / "f00d" / "content.md",
        """
        # Source: [Graph Survey](https://example.com/survey)

        A survey of property graph engines.
        """,
    )
    orchestrator = IndexingOrchestrator(
        store,
        state_store=IndexingStateStore(tmp_path / "index" / "indexing-state.json"),
        research_path=research,
        url_content_path=captured,
    )
    return ArchiveServices(
        store=store,
        search=SearchAPI(store),
        orchestrator=orchestrator,
        triggers=IndexingTriggers(orchestrator),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services, start_triggers=False)) as test_client:
        yield test_client


def _index(client):
    response = client.post("/api/index", json={"force": True})
    assert response.status_code == 200
    return response.json()


def test_index_then_search(client):
    stats = _index(client)
    assert stats["addedCount"] == 2
    assert stats["citationCount"] == 1

    response = client.post("/api/search", json={"query": "graph", "includeCitations": True})

    assert response.status_code == 200
    payload = response.json()
    assert payload["metadata"]["totalResults"] == 2
    assert payload["citationGraph"]["edges"][0].keys() == {"from", "to", "confidence"}
    assert {result["document"]["source"] for result in payload["results"]} == {"research", "url-content"}


def test_search_validation_errors(client):
    assert client.post("/api/search", json={"query": "graph", "limit": 100}).status_code == 422
    assert client.post("/api/search", json={"query": ""}).status_code == 422
    assert client.post("/api/search", json={}).status_code == 422


def test_document_routes(client, services):
    _index(client)
    research_doc = next(doc for doc in services.store.list() if doc.source.value == "research")

    document = client.get(f"/api/documents/{research_doc.id}")
    related = client.get(f"/api/documents/{research_doc.id}/related", params={"depth": 2})
    report = client.get(f"/api/documents/{research_doc.id}/citation-report")

    assert document.status_code == 200
    assert document.json()["query"] == "graph databases"
    assert [item["document"]["source"] for item in related.json()] == ["url-content"]
    assert report.json()["metrics"]["outgoingCount"] == 1
    assert client.get(f"/api/documents/{research_doc.id}/related", params={"depth": 9}).status_code == 422


def test_unknown_document_is_404(client):
    response = client.get("/api/documents/doc-missing/citation-report")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_visualization_and_export(client, services):
    _index(client)
    ids = [doc.id for doc in services.store.list()]

    network = client.post("/api/graph/visualization", json={"documentIds": ids})
    dot = client.get("/api/graph/export", params={"format": "dot"})
    graphml = client.get("/api/graph/export", params={"format": "graphml"})

    assert {node["type"] for node in network.json()["nodes"]} == {"source", "target"}
    assert dot.text.startswith("digraph CitationGraph {")
    assert "<graphml" in graphml.text
    assert client.get("/api/graph/export", params={"format": "csv"}).status_code == 422


def test_stats_and_metrics(client):
    _index(client)

    stats = client.get("/api/stats").json()
    metrics = client.get("/metrics")

    assert stats["index"]["document_count"] == 2
    assert stats["indexing"]["phase"] == "idle"
    assert stats["triggers"]["schedules"] == []
    assert metrics.status_code == 200
    assert "archive_search_indexing_runs_total" in metrics.text


def test_concurrent_index_request_is_409(services):
    busy = ArchiveServices(
        store=services.store,
        search=services.search,
        orchestrator=BusyOrchestrator(),
        triggers=services.triggers,
    )
    with TestClient(create_app(services=busy, start_triggers=False)) as test_client:
        response = test_client.post("/api/index", json={})

    assert response.status_code == 409
    assert response.json()["code"] == "indexing_in_progress"


def test_health(client):
    assert client.get("/api/health").json()["status"] == "ok"
