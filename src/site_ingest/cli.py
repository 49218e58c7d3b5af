"""Command-line entry point.

Usage
-----
    site-ingest full-crawl https://docs.example.com --max-pages 20 --max-depth 2
    site-ingest add-page https://example.com https://example.com/docs/api --priority 90
    site-ingest serve --port 8080
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

import uvicorn

from site_ingest.config import settings
from site_ingest.pipeline.factory import build_pipeline
from site_ingest.pipeline.models import ProgressEvent

log = logging.getLogger("site_ingest.cli")


def _print_progress(event: ProgressEvent) -> None:
    log.info("[%5.1f%%] %s: %s", event.progress, event.stage.value, event.message)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="site-ingest", description="Crawl websites into embedded chunks.")
    parser.add_argument("--log-level", default=settings.log_level)
    sub = parser.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("full-crawl", help="Discover and ingest a website")
    crawl.add_argument("website_url")
    crawl.add_argument("--max-pages", type=int, default=10)
    crawl.add_argument("--max-depth", type=int, default=1)
    crawl.add_argument("--description")

    page = sub.add_parser("add-page", help="Ingest a single page")
    page.add_argument("website_url")
    page.add_argument("page_url")
    page.add_argument("--title")
    page.add_argument("--description")
    page.add_argument("--priority", type=int)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level)

    if args.command == "serve":
        uvicorn.run("site_ingest.serving.app:app", host=args.host, port=args.port)
        return 0

    pipeline = build_pipeline(settings)
    if args.command == "full-crawl":
        result = pipeline.execute_full_crawl(
            args.website_url,
            max_pages=args.max_pages,
            max_depth=args.max_depth,
            description=args.description,
            progress=_print_progress,
        )
    else:
        result = pipeline.execute_add_page(
            args.website_url,
            args.page_url,
            title=args.title,
            description=args.description,
            priority=args.priority,
            progress=_print_progress,
        )

    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
