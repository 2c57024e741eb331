"""Command-line access to the RAG write and query paths.

Usage::

    python scripts/rag_cli.py chunk meeting.vtt --topics Planning Budget --dry-run
    python scripts/rag_cli.py write meeting.vtt --workspace acme --type transcript
    python scripts/rag_cli.py query "what did we decide on pricing?" --workspace acme

``chunk`` runs locally (no storage). ``write`` and ``query`` need
SUPABASE_URL / SUPABASE_KEY and OPENAI_API_KEY in .env.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.errors import RAGError
from src.ingestion.chunking import chunk_transcript
from src.ingestion.models import ChunkOptions
from src.ingestion.parsers import parse_transcript
from src.pipeline_config import ContentType, DocumentType, RerankMethod
from src.retrieval.models import QueryFilter, QueryRequest

PREVIEW_CHARS = 100


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python scripts/rag_cli.py",
        description="Chunk, store and query workspace RAG content.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    chunk = sub.add_parser("chunk", help="Chunk a transcript file and print the chunks as JSON.")
    chunk.add_argument("file", type=Path)
    chunk.add_argument("--topics", nargs="*", default=[], metavar="TOPIC")
    chunk.add_argument("--format", default=None, help="vtt, fathom, text or json (default: auto).")
    chunk.add_argument("--dry-run", action="store_true", help="Heuristic chunking, no LLM call.")
    chunk.add_argument("--chunk-size", type=int, default=None, metavar="N")

    write = sub.add_parser("write", help="Store a file in a workspace namespace.")
    write.add_argument("file", type=Path)
    write.add_argument("--workspace", required=True)
    write.add_argument(
        "--type",
        default=DocumentType.TRANSCRIPT.value,
        choices=[t.value for t in DocumentType],
    )
    write.add_argument("--source", default=None, help="Source label (default: file name).")
    write.add_argument("--topics", nargs="*", default=[], metavar="TOPIC")
    write.add_argument("--format", default=None)
    write.add_argument("--dry-run", action="store_true", help="Heuristic chunking, no LLM call.")

    query = sub.add_parser("query", help="Query a workspace namespace.")
    query.add_argument("text")
    query.add_argument("--workspace", required=True)
    query.add_argument(
        "--rerank",
        default=RerankMethod.LLM.value,
        choices=[m.value for m in RerankMethod],
    )
    query.add_argument(
        "--content-type",
        default=ContentType.ALL.value,
        choices=[c.value for c in ContentType],
    )
    query.add_argument("--top-k", type=int, default=None, metavar="N")
    query.add_argument("--source", default=None)
    query.add_argument("--expand-context", action="store_true")

    return parser


def _chunk_summary(chunk: dict) -> dict:
    content = chunk["content"]
    return {
        "topic": chunk["topic"],
        "startIdx": chunk["startIdx"],
        "endIdx": chunk["endIdx"],
        "speakers": chunk["metadata"]["speakers"],
        "preview": content[:PREVIEW_CHARS] + ("..." if len(content) > PREVIEW_CHARS else ""),
    }


def run_chunk(args: argparse.Namespace) -> int:
    items = parse_transcript(args.file.read_text(encoding="utf-8"), args.format)
    options = ChunkOptions(chunk_size=args.chunk_size, dry_run=args.dry_run)
    chunks = chunk_transcript(items, args.topics, options)
    print(json.dumps([_chunk_summary(c.to_dict()) for c in chunks], indent=2))
    return 0


def run_write(args: argparse.Namespace) -> int:
    # Import here to avoid building storage clients for offline commands
    from src.ingestion.pipeline import write_content
    from src.ingestion.storage import SupabaseVectorStore

    result = write_content(
        args.file.read_text(encoding="utf-8"),
        DocumentType(args.type),
        args.source or args.file.name,
        args.workspace,
        SupabaseVectorStore(),
        topics=args.topics,
        chunk_options=ChunkOptions(dry_run=args.dry_run),
        transcript_format=args.format,
    )
    print(
        json.dumps(
            {
                "success": result.success,
                "documentsWritten": result.documents_written,
                "namespace": result.namespace,
                "errors": result.errors,
            },
            indent=2,
        )
    )
    return 0 if result.success else 1


def run_query(args: argparse.Namespace) -> int:
    from src.ingestion.storage import SupabaseVectorStore
    from src.retrieval.engine import RAGQueryEngine
    from src.retrieval.search import VectorQueryClient

    engine = RAGQueryEngine(VectorQueryClient(SupabaseVectorStore()))
    request = QueryRequest(
        query=args.text,
        content_type=ContentType(args.content_type),
        filter=QueryFilter(source=args.source) if args.source else None,
        rerank_method=RerankMethod(args.rerank),
        top_k=args.top_k,
        expand_context=args.expand_context,
    )
    response = engine.query(request, args.workspace)
    if not response["success"]:
        print(f"ERROR: {response['error']}", file=sys.stderr)
        return 1

    print(response["content"])
    print(
        f"\n{response['matchCount']} matches via {response['metadata']['rerankMethod']} "
        f"in {response['duration']}",
        file=sys.stderr,
    )
    return 0


COMMANDS = {"chunk": run_chunk, "write": run_write, "query": run_query}


def main(argv: list[str] | None = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return COMMANDS[args.command](args)
    except (RAGError, OSError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
