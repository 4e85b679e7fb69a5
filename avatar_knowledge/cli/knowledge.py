"""Command-line interface for managing an avatar knowledge base.

Usage::

    python -m avatar_knowledge.cli ingest notes.pdf --scope avatar-42 --title "Case notes"
    python -m avatar_knowledge.cli status 6f1c0c1e-...
    python -m avatar_knowledge.cli search "What medication was prescribed?" --scope avatar-42
    python -m avatar_knowledge.cli list --scope avatar-42
    python -m avatar_knowledge.cli delete 3b9a...

Settings come from ``config/config.yaml``, ``.env`` and the environment
(``--config`` points at a different YAML file).  Ingestion runs on the
in-process worker pool, so ``ingest`` waits for its job to reach a
terminal state before exiting.

Exit codes: ``0`` success, ``1`` a pipeline error (its kind is printed),
``2`` bad usage.
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path

from avatar_knowledge.config.loader import load_settings
from avatar_knowledge.config.settings import Settings
from avatar_knowledge.main import build_knowledge_base
from avatar_knowledge.models.knowledge import SHARED_SCOPE
from avatar_knowledge.services.extraction.text_extractor import MIME_DOCX
from avatar_knowledge.services.knowledge_base import KnowledgeBase
from avatar_knowledge.utils.errors import KnowledgeBaseError
from avatar_knowledge.utils.logging import configure_logging

_EXTENSION_MIME_TYPES = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/plain",
    ".docx": MIME_DOCX,
}


def guess_mime_type(path: Path) -> str:
    """Mime type from the file extension; ``application/octet-stream`` if unknown."""
    known = _EXTENSION_MIME_TYPES.get(path.suffix.lower())
    if known:
        return known
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

async def _handle_ingest(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: {path} is not a file", file=sys.stderr)
        return 2

    mime_type = args.mime_type or guess_mime_type(path)
    data = path.read_bytes()
    kb.validate_upload(data, mime_type)

    print(f"Ingesting {path.name} ({mime_type}, {len(data)} bytes) into scope '{args.scope}'")
    job_id = await kb.ingest(data, mime_type, path.name, scope=args.scope, title=args.title)
    print(f"  Job: {job_id}")

    await kb.wait_for_idle()
    status = await kb.get_status(job_id)
    if status.error_kind:
        print(f"  Failed: {status.error_kind} -- {status.error_detail}", file=sys.stderr)
        return 1
    print(f"  State:    {status.state.value}")
    print(f"  Document: {status.document_id}")
    return 0


async def _handle_status(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    status = await kb.get_status(args.job_id)
    print(f"Job {status.job_id}")
    print(f"  State:    {status.state.value}")
    print(f"  Progress: {status.progress:.0f}%  {status.message}")
    if status.document_id:
        print(f"  Document: {status.document_id}")
    if status.error_kind:
        print(f"  Error:    {status.error_kind} -- {status.error_detail}")
    return 0


async def _handle_search(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    result = await kb.search(args.query, scope=args.scope, top_k=args.top_k)
    if result.is_empty:
        print("No relevant knowledge found.")
        return 0
    if args.context:
        print(result.to_context())
        return 0
    for rank, item in enumerate(result.results, start=1):
        preview = " ".join(item.chunk.text.split())[:160]
        print(f"{rank}. [{item.score:.3f}] {item.document_title} #{item.chunk.chunk_index}")
        print(f"   {preview}")
    print(f"\nSources: {', '.join(result.sources)}")
    return 0


async def _handle_list(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    documents = await kb.list_documents(args.scope)
    if not documents:
        print("No documents.")
        return 0
    for doc in documents:
        print(
            f"{doc.document_id}  {doc.created_at:%Y-%m-%d %H:%M}  "
            f"{doc.chunk_count:>4} chunks  {doc.title}"
        )
    return 0


async def _handle_delete(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    await kb.delete_document(args.document_id)
    print(f"Deleted {args.document_id}")
    return 0


_HANDLERS = {
    "ingest": _handle_ingest,
    "status": _handle_status,
    "search": _handle_search,
    "list": _handle_list,
    "delete": _handle_delete,
}


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    async with build_knowledge_base(app_settings) as kb:
        try:
            return await _HANDLERS[args.command](args, kb)
        except KnowledgeBaseError as exc:
            print(f"Error: {exc.kind}", file=sys.stderr)
            return 1


# ---------------------------------------------------------------------------
# Parser / entry point
# ---------------------------------------------------------------------------

def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="avatar-knowledge",
        description="Manage the knowledge base that grounds avatar conversations.",
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="YAML settings file"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a PDF, TXT or DOCX file")
    ingest_parser.add_argument("file", help="Path to the document")
    ingest_parser.add_argument(
        "--scope",
        default=SHARED_SCOPE,
        help=f'Owner: "{SHARED_SCOPE}" (default) or an avatar id',
    )
    ingest_parser.add_argument("--title", default=None, help="Display title (default: filename)")
    ingest_parser.add_argument(
        "--mime-type", dest="mime_type", default=None, help="Override the detected mime type"
    )

    status_parser = subparsers.add_parser("status", help="Show an ingestion job's status")
    status_parser.add_argument("job_id")

    search_parser = subparsers.add_parser("search", help="Search the knowledge base")
    search_parser.add_argument("query")
    search_parser.add_argument(
        "--scope", default=None, help="Avatar id (default: shared documents only)"
    )
    search_parser.add_argument(
        "--top-k", dest="top_k", type=_positive_int, default=None, help="Number of passages"
    )
    search_parser.add_argument(
        "--context", action="store_true", help="Print the assembled context block"
    )

    list_parser = subparsers.add_parser("list", help="List documents")
    list_parser.add_argument("--scope", default=None, help="Avatar id (default: shared)")

    delete_parser = subparsers.add_parser("delete", help="Delete a document and its chunks")
    delete_parser.add_argument("document_id")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.  Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    try:
        app_settings = load_settings(args.config)
    except KnowledgeBaseError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    configure_logging(app_settings.log_level)
    try:
        return asyncio.run(_run(args, app_settings))
    except KnowledgeBaseError as exc:
        # Raised while building or starting the knowledge base.
        print(f"Error: {exc.kind}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
