#!/usr/bin/env python
"""Crawl the wiki and (re)populate the vector index.

Usage:
    python scripts/reindex.py                      # Upsert all seeded pages
    python scripts/reindex.py --rebuild            # Clear the index first
    python scripts/reindex.py --page Lifeline      # Only the given page(s)
    python scripts/reindex.py --no-delay           # Skip the politeness delay
"""
import argparse
import asyncio
import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from apex_rag import config
from apex_rag.logging_config import configure_logging
from apex_rag.rag.ingest import IngestPipeline
import structlog

logger = structlog.get_logger()

# Stats keys reported after a run, in display order
SUMMARY_LABELS = [
    ("pages_discovered", "Pages discovered"),
    ("pages_scraped", "Pages scraped"),
    ("pages_failed", "Pages failed"),
    ("chunks_created", "Chunks created"),
    ("embeddings_generated", "Embeddings generated"),
    ("embeddings_failed", "Embeddings failed"),
    ("vectors_upserted", "Vectors upserted"),
    ("batches_failed", "Batches failed"),
]


def render_bar(current: int, total: int, width: int = 30) -> str:
    """Text progress bar such as ``[#####.....]  50%``."""
    fraction = current / total if total else 0.0
    filled = round(width * fraction)
    return f"[{'#' * filled}{'.' * (width - filled)}] {fraction:4.0%}"


def has_failures(stats: dict) -> bool:
    return bool(stats["pages_failed"] or stats["batches_failed"])


class ProgressReporter:
    """Writes crawl progress and the final stats table to stdout."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.started = None

    def start(self, title: str):
        self.started = time.monotonic()
        print(f"\n{title}\n{'-' * len(title)}")

    def update(self, current: int, total: int, page_name: str):
        line = f"{render_bar(current, total)} {current}/{total} {page_name}"
        if self.verbose:
            print(line)
        else:
            # redraw in place
            print(f"\r{line:<80}", end="", flush=True)

    def finish(self, stats: dict):
        elapsed = time.monotonic() - self.started if self.started else 0.0
        width = max(len(label) for _, label in SUMMARY_LABELS)

        print("\n")
        for key, label in SUMMARY_LABELS:
            print(f"  {label:<{width}}  {stats[key]}")
        print(f"  {'Elapsed':<{width}}  {elapsed:.1f}s\n")

        if has_failures(stats):
            print("Some pages or batches failed; see the log for details.\n")


async def main():
    """Main entry point for the reindex script."""
    parser = argparse.ArgumentParser(
        description="Crawl the wiki and populate the vector index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reindex.py                  # Upsert all seeded pages
  python scripts/reindex.py --rebuild        # Clear the index first
  python scripts/reindex.py --page Lifeline  # Only the given page(s)
        """,
    )

    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Delete every vector before writing (whole-index replacement)",
    )
    parser.add_argument(
        "--page",
        action="append",
        dest="pages",
        default=None,
        help="Scrape only this page slug (repeatable); skips link discovery",
    )
    parser.add_argument(
        "--no-delay",
        action="store_true",
        help="Disable the delay between page fetches",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")
    progress = ProgressReporter(verbose=args.verbose)

    try:
        print("\nConfiguration:")
        print(f"   Wiki:             {config.WIKI_BASE_URL}")
        print(f"   Vector backend:   {config.VECTOR_BACKEND}")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Batch size:       {config.UPSERT_BATCH_SIZE}")
        print(f"   Fetch delay:      {0 if args.no_delay else config.SCRAPE_DELAY}s")

        if args.rebuild:
            print("\nRebuild mode: the existing index will be cleared!")
            print("   Press Ctrl+C within 3 seconds to cancel...")
            await asyncio.sleep(3)

        progress.start("Rebuilding Index" if args.rebuild else "Ingesting Wiki")

        pipeline = IngestPipeline(request_delay=0 if args.no_delay else None)

        stats = await pipeline.ingest_all(
            rebuild=args.rebuild,
            pages=args.pages,
            progress_callback=progress.update,
        )

        progress.finish(stats)

        if has_failures(stats):
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
