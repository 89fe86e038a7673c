"""Command line entry for the archive search index."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence

import uvicorn
from pydantic import BaseModel, ValidationError

from archive_search.api.dependencies import ArchiveServices, build_services
from archive_search.core.config import settings
from archive_search.core.exceptions import ApplicationError
from archive_search.core.observability import configure_logging
from archive_search.knowledge.retrieval.search import search_local_archives

logger = logging.getLogger(__name__)


def _emit(payload: Any) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True, mode="json")
    elif isinstance(payload, list):
        payload = [item.model_dump(by_alias=True, mode="json") if isinstance(item, BaseModel) else item for item in payload]
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def run_server(_: argparse.Namespace) -> int:
    uvicorn.run(
        "archive_search.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
    return 0


def run_index(args: argparse.Namespace, services: ArchiveServices) -> int:
    stats = asyncio.run(services.orchestrator.run_indexing(force=args.force, trigger="cli"))
    _emit(stats)
    return 0


def run_search(args: argparse.Namespace, services: ArchiveServices) -> int:
    response = search_local_archives(
        {
            "query": args.query,
            "fuzzy": args.fuzzy,
            "includeCitations": args.citations,
            "citationDepth": args.depth,
            "limit": args.limit,
        },
        services.search,
    )
    _emit(response)
    return 0


def run_related(args: argparse.Namespace, services: ArchiveServices) -> int:
    _emit(services.search.find_related(args.document_id, args.depth))
    return 0


def run_report(args: argparse.Namespace, services: ArchiveServices) -> int:
    _emit(services.search.citation_report(args.document_id))
    return 0


def run_export(args: argparse.Namespace, services: ArchiveServices) -> int:
    output = services.search.export(args.format)
    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        logger.info("Citation graph written to %s", args.output)
    else:
        sys.stdout.write(output)
    return 0


def run_stats(_: argparse.Namespace, services: ArchiveServices) -> int:
    _emit({"index": services.store.stats(), "indexing": services.orchestrator.status()})
    return 0


async def _watch(args: argparse.Namespace, services: ArchiveServices) -> None:
    triggers = services.triggers
    schedule = args.schedule or settings.INDEX_SCHEDULE
    if schedule:
        triggers.schedule(schedule)
    triggers.watch(
        [settings.RESEARCH_ARCHIVE_PATH, settings.URL_CONTENT_ARCHIVE_PATH],
        args.debounce,
    )
    await services.orchestrator.request_run("startup")
    try:
        await asyncio.Event().wait()
    finally:
        await triggers.stop()
        await services.orchestrator.wait_idle()


def run_watch(args: argparse.Namespace, services: ArchiveServices) -> int:
    try:
        asyncio.run(_watch(args, services))
    except KeyboardInterrupt:
        logger.info("Watcher interrupted; shutting down")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="archive-search", description="Citation-aware local archive search")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("serve", help="Run the HTTP API").set_defaults(handler=run_server, needs_services=False)

    index = commands.add_parser("index", help="Run one indexing pass")
    index.add_argument("--force", action="store_true", help="Re-read every file regardless of modification time")
    index.set_defaults(handler=run_index)

    search = commands.add_parser("search", help="Query the index")
    search.add_argument("query")
    search.add_argument("--fuzzy", action="store_true", help="Prefix-match every term")
    search.add_argument("--limit", type=int, default=settings.SEARCH_DEFAULT_LIMIT)
    search.add_argument("--citations", action="store_true", help="Include citation context")
    search.add_argument("--depth", type=int, default=1, help="Citation traversal depth (1-3)")
    search.set_defaults(handler=run_search)

    related = commands.add_parser("related", help="Documents connected by citations")
    related.add_argument("document_id")
    related.add_argument("--depth", type=int, default=1)
    related.set_defaults(handler=run_related)

    report = commands.add_parser("report", help="Citation report for a document")
    report.add_argument("document_id")
    report.set_defaults(handler=run_report)

    export = commands.add_parser("export", help="Export the citation graph")
    export.add_argument("--format", choices=["json", "graphml", "dot"], default="json")
    export.add_argument("--output", default=None, help="Write to a file instead of stdout")
    export.set_defaults(handler=run_export)

    commands.add_parser("stats", help="Index statistics").set_defaults(handler=run_stats)

    watch = commands.add_parser("watch", help="Index on a schedule and on file changes")
    watch.add_argument("--schedule", default=None, help="Cron expression (defaults to INDEX_SCHEDULE)")
    watch.add_argument("--debounce", type=float, default=settings.WATCH_DEBOUNCE_SECONDS)
    watch.set_defaults(handler=run_watch)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if not getattr(args, "needs_services", True):
        return args.handler(args)

    services = build_services()
    try:
        return args.handler(args, services)
    except ValidationError as exc:
        errors: List[str] = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in exc.errors()]
        logger.error("Invalid request: %s", "; ".join(errors))
        return 2
    except ApplicationError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
