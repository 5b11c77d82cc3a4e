"""
Command-line entry point.

Runs one document through the pipeline and prints the linked entities with
the stage metrics as JSON:

    finlink report.pdf --evaluate
    finlink notes.txt --local-only --memory
"""
import argparse
import asyncio
import json
import sys
from typing import List, Optional

import structlog

from finlink.config import get_settings
from finlink.database import create_db_engine, create_session_factory, init_db
from finlink.exceptions import FinLinkError
from finlink.finlink_engine.orchestrator import PipelineOptions, build_orchestrator
from finlink.services.stores import (
    InMemoryDocumentStore,
    InMemoryResultStore,
    SqlDocumentStore,
    SqlResultStore,
)
from finlink.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="finlink",
        description="Extract financial entities from a document and link them to US-GAAP concepts.",
    )
    parser.add_argument("path", help="PDF or text document to process")
    parser.add_argument(
        "--local-only",
        action="store_true",
        help="Use the rule-based extractor instead of the oracle",
    )
    parser.add_argument(
        "--evaluate",
        action="store_true",
        help="Score both stages against a gold-standard sample",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=None,
        help="Override extraction retries for this run",
    )
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Keep documents and results in memory instead of the configured database",
    )
    return parser


async def run(args: argparse.Namespace) -> dict:
    """Process one document and return the JSON-ready result."""
    settings = get_settings()

    if args.memory:
        document_store, result_store = InMemoryDocumentStore(), InMemoryResultStore()
    else:
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        session_factory = create_session_factory(engine)
        document_store = SqlDocumentStore(session_factory)
        result_store = SqlResultStore(session_factory)

    orchestrator = build_orchestrator(settings, document_store, result_store)
    document_id = document_store.add_document(file_path=args.path)
    result = await orchestrator.process_document(
        document_id,
        PipelineOptions(
            use_local_only=args.local_only,
            extraction_retries=args.retries,
            evaluate=args.evaluate,
        ),
    )

    return {
        "documentId": result.document_id,
        "status": result.status.value,
        "runId": result.run_id,
        "entities": [e.to_dict() for e in result.entities],
        "extraction": result.extraction.metrics.to_dict(),
        "linking": result.linking.metrics.to_dict(),
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    try:
        output = asyncio.run(run(args))
    except FinLinkError as e:
        logger.error("Processing failed", **e.to_dict())
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
