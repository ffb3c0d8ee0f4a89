"""Terminal client that reuses the in-process search pipeline."""
from __future__ import annotations

import argparse
import asyncio
import time
from pathlib import Path
from typing import Iterable

from marketsearch.backends import build_catalog
from marketsearch.cache import InMemoryCache
from marketsearch.catalog import CatalogStore
from marketsearch.config import settings
from marketsearch.filters import SortMode
from marketsearch.models import SearchRequest
from marketsearch.search import search_products

GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"


class SearchSession:
    def __init__(self, catalog: CatalogStore, page: int = 1, limit: int = 10, sort: str = "relevance") -> None:
        self.catalog = catalog
        # Repeated queries in one session hit the local cache like the service would.
        self.cache = InMemoryCache()
        self.page = page
        self.limit = limit
        self.sort = sort

    def run(self, term: str) -> tuple[dict, float]:
        request = SearchRequest(term=term, page=self.page, limit=self.limit, sort=self.sort)
        started = time.perf_counter()
        payload = asyncio.run(search_products(self.catalog, self.cache, request, settings))
        return payload, (time.perf_counter() - started) * 1000


def interactive_shell(session: SearchSession) -> None:
    print("Interactive product search. Type 'exit' to quit.")
    while True:
        try:
            query = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return
        if not query:
            continue
        if query.lower() in {"exit", "quit"}:
            return
        payload, elapsed = session.run(query)
        pretty_print_response(query, payload, elapsed)


def pretty_print_response(query: str, payload: dict, elapsed_ms: float) -> None:
    results = payload.get("data", [])
    color = GREEN if elapsed_ms < 200 else RED
    eta_label = f"{color}{elapsed_ms:.1f} ms{RESET}"
    print(f"Query: {query} | {payload.get('message')} | total: {payload.get('totalCount', 0)} | ETA: {eta_label}")
    correction = payload.get("autoCorrection")
    if correction:
        print(f"  showing results for {correction['to']!r} instead of {correction['from']!r}")
    elif payload.get("didYouMean"):
        print(f"  did you mean {payload['didYouMean']!r}?")
    if payload.get("error"):
        print(f"  error: {payload['error']}")
    for idx, item in enumerate(results, start=1):
        score = item.get("relevanceScore")
        score_repr = f"{score:.2f}" if isinstance(score, (int, float)) else "-"
        brand = (item.get("brand") or {}).get("brandName") or "-"
        print(
            f"  {idx:02d}. score={score_repr} | {item.get('offerPrice')} | "
            f"{brand} | {item.get('productName')}"
        )


def batch_mode(session: SearchSession, file_path: Path) -> None:
    with file_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            query = line.strip()
            if not query:
                continue
            payload, elapsed = session.run(query)
            pretty_print_response(query, payload, elapsed)


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="CLI client for the product search pipeline")
    parser.add_argument("query", nargs="?", help="Search term. If omitted, starts REPL mode.")
    parser.add_argument("--batch", type=Path, help="File with search terms to execute line by line")
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--limit", type=int, default=settings.default_page_size)
    parser.add_argument("--sort", choices=[mode.value for mode in SortMode], default=SortMode.RELEVANCE.value)
    args = parser.parse_args(list(argv) if argv is not None else None)

    session = SearchSession(build_catalog(settings), page=args.page, limit=args.limit, sort=args.sort)
    if args.batch:
        batch_mode(session, args.batch)
        return 0
    if args.query:
        payload, elapsed = session.run(args.query)
        pretty_print_response(args.query, payload, elapsed)
        return 0
    interactive_shell(session)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
