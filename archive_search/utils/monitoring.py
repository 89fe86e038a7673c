"""Monitoring utilities leveraging Prometheus client."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

indexing_runs_total = Counter(
    "archive_search_indexing_runs_total",
    "Indexing runs by outcome",
    ["outcome", "trigger"],
)

indexing_run_duration_seconds = Histogram(
    "archive_search_indexing_run_duration_seconds",
    "Wall-clock duration of indexing runs",
)

documents_indexed_total = Counter(
    "archive_search_documents_indexed_total",
    "Documents written by indexing runs",
    ["operation"],
)

search_requests_total = Counter(
    "archive_search_search_requests_total",
    "Search API calls",
    ["operation"],
)

search_latency_seconds = Histogram(
    "archive_search_search_latency_seconds",
    "Search API latency",
    ["operation"],
)


def observe_indexing_run(outcome: str, trigger: str, duration_seconds: float) -> None:
    indexing_runs_total.labels(outcome=outcome, trigger=trigger).inc()
    indexing_run_duration_seconds.observe(duration_seconds)


def observe_documents(added: int, updated: int, deleted: int) -> None:
    documents_indexed_total.labels(operation="added").inc(added)
    documents_indexed_total.labels(operation="updated").inc(updated)
    documents_indexed_total.labels(operation="deleted").inc(deleted)


def observe_search(operation: str, duration_seconds: float) -> None:
    search_requests_total.labels(operation=operation).inc()
    search_latency_seconds.labels(operation=operation).observe(duration_seconds)
