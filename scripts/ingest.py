#!/usr/bin/env python
"""Ingest corpus text files into the vector store.

Usage:
    python scripts/ingest.py                   # Add files from CORPUS_DIR
    python scripts/ingest.py --rebuild         # Clear the corpus first
    python scripts/ingest.py --corpus-dir DIR  # Ingest another directory
    python scripts/ingest.py --stats           # Show corpus size and exit
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from corpus_rag import config
from corpus_rag.llm_client import LLMClient
from corpus_rag.rag.ingest import IngestPipeline
from corpus_rag.rag.store_faiss import open_vector_store
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Files processed:  {stats['files_processed']}")
        print(f"  Files failed:     {stats['files_failed']}")
        print(f"  Chunks created:   {stats['chunks_created']}")
        print(f"  Time elapsed:     {elapsed_seconds:.1f}s")

        if stats["files_failed"] > 0:
            print(f"\n  Warning: {stats['files_failed']} file(s) failed. Check logs for details.")

        print(f"\n{'=' * 60}\n")


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest corpus files for the RAG pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear the corpus before ingesting (irreversible)",
    )
    parser.add_argument(
        "--corpus-dir",
        type=Path,
        default=None,
        help=f"Directory of .txt/.md files (default: {config.CORPUS_DIR})",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print corpus statistics and exit",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose progress output")

    args = parser.parse_args()

    try:
        store = await open_vector_store()

        if args.stats:
            total = await store.count()
            print(f"Total documents: {total}\nTotal chunks:    {total}")
            return

        corpus_dir = args.corpus_dir or config.CORPUS_DIR

        print("\nConfiguration:")
        print(f"   Corpus directory: {corpus_dir}")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")
        print(f"   Batch size:       {config.INSERT_BATCH_SIZE} (delay {config.INSERT_BATCH_DELAY}s)")

        if args.rebuild:
            print("\nRebuild mode: the existing corpus will be cleared!")
            print("   Press Ctrl+C within 3 seconds to cancel...")
            await asyncio.sleep(3)

        progress = ProgressReporter(verbose=args.verbose)
        progress.start("Rebuilding corpus" if args.rebuild else "Ingesting corpus")

        pipeline = IngestPipeline(LLMClient(), store)
        stats = await pipeline.ingest_directory(
            corpus_dir,
            rebuild=args.rebuild,
            progress_callback=progress.update,
        )

        progress.finish(stats)

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
