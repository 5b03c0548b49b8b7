"""
Quiz worker: generate multiple-choice questions for every quiz with a PDF.

Usage:
    python worker.py                  # process all quizzes
    python worker.py --quiz-id 42     # process one quiz
    python worker.py --dry-run        # generate but do not insert
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

# Load environment variables before the modules that read them at import time
load_dotenv()

from database.crud import QuizStore
from generation.gpt_client import VisionCompletion
from generation.pipeline import PipelineConfig, QuizPipeline, RunSummary
from ingestion.page_renderer import PdfPageRenderer
from ingestion.storage import SupabaseBlobStore

log = logging.getLogger("generation.pipeline")


def build_pipeline(dry_run: bool = False) -> QuizPipeline:
    """Wire the production collaborators."""
    return QuizPipeline(
        blob_store=SupabaseBlobStore(),
        renderer=PdfPageRenderer(),
        completion=VisionCompletion(),
        store=QuizStore(),
        config=PipelineConfig(dry_run=dry_run),
    )


async def process_quizzes(quiz_id=None, dry_run: bool = False) -> RunSummary:
    pipeline = build_pipeline(dry_run=dry_run)
    return await pipeline.run(quiz_id=quiz_id)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Generate quiz questions from stored PDFs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--quiz-id", type=int, help="Process a single quiz")
    parser.add_argument("--dry-run", action="store_true", help="Generate questions without saving them")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)s  %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    try:
        asyncio.run(process_quizzes(quiz_id=args.quiz_id, dry_run=args.dry_run))
    except Exception:
        log.exception("Unhandled top-level error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
