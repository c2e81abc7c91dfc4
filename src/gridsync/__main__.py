"""CLI entry point for gridsync.

Usage:
    python -m gridsync resolve <document_or_url>
    python -m gridsync pull <document_or_url> [-o output_file]
    python -m gridsync diff <baseline_file> <edited_file>
    python -m gridsync push <document_or_url> <edited_file>
    python -m gridsync token set <token> | token clear
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path

from gridsync.client import DocumentClient
from gridsync.config import get_settings
from gridsync.credentials import Token, TokenProvider
from gridsync.diff import diff, edits_to_payload
from gridsync.exceptions import GridsyncError, ResolverError
from gridsync.ingestion import parse_document
from gridsync.logging import setup_logging
from gridsync.resolver import SignedUrlResolver
from gridsync.transport import HttpTransport
from gridsync.url_cache import URLCache


def _build_client() -> DocumentClient:
    settings = get_settings()
    return DocumentClient(
        HttpTransport.from_settings(settings),
        URLCache.from_settings(settings),
        TokenProvider(settings=settings),
        resolve_timeout=settings.resolve_timeout,
        save_timeout=settings.save_timeout,
    )


def _print_attempts(error: ResolverError) -> None:
    for attempt in error.attempts:
        print(f"#   {json.dumps(attempt.to_dict())}", file=sys.stderr)


async def cmd_resolve(args: argparse.Namespace) -> int:
    """Print a working signed URL for a document."""
    settings = get_settings()
    transport = HttpTransport.from_settings(settings)
    resolver = SignedUrlResolver(
        transport,
        URLCache.from_settings(settings),
        TokenProvider(settings=settings),
        timeout=settings.resolve_timeout,
    )

    try:
        resolution = await resolver.resolve_detailed(
            args.document, document_id=args.document_id
        )
        print(resolution.signed_url.url)
        if args.verbose:
            print(f"# resolved via {resolution.source}", file=sys.stderr)
            for attempt in resolution.attempts:
                print(f"#   {json.dumps(attempt.to_dict())}", file=sys.stderr)
        return 0
    except ResolverError as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            _print_attempts(e)
        if e.retryable:
            print("Reload the document to try again.", file=sys.stderr)
        return 1
    finally:
        await transport.close()


async def cmd_pull(args: argparse.Namespace) -> int:
    """Download a document and save it or print its contents."""
    client = _build_client()

    try:
        opened = await client.open(
            args.document,
            document_id=args.document_id,
            mime_type=args.mime_type,
            file_name=args.file_name,
        )
        document = opened.baseline
        if args.output:
            output = {name: document.values(name) for name in document.sheet_names}
            Path(args.output).write_text(json.dumps(output, indent=2, default=str))
            print(f"Wrote {len(document.sheet_names)} sheet(s) to {args.output}")
        else:
            for name in document.sheet_names:
                grid = document.grid(name)
                width = max((len(row) for row in grid), default=0)
                print(f"{name}: {len(grid)} row(s) x {width} column(s)")
        return 0
    except GridsyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await client.close()


async def cmd_diff(args: argparse.Namespace) -> int:
    """Show the cell edits between two local files (dry run)."""
    baseline_path = Path(args.baseline)
    edited_path = Path(args.edited)
    for path in (baseline_path, edited_path):
        if not path.exists():
            print(f"Error: File not found: {path}", file=sys.stderr)
            return 1

    try:
        baseline = parse_document(baseline_path.read_bytes(), file_name=baseline_path.name)
        edited = parse_document(edited_path.read_bytes(), file_name=edited_path.name)
    except GridsyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    edits = diff(baseline, edited)
    if not edits:
        print("No changes detected.")
        return 0

    print(json.dumps({"edits": edits_to_payload(edits)}, indent=2, default=str))
    print(f"\n# {len(edits)} edit(s)", file=sys.stderr)
    return 0


async def cmd_push(args: argparse.Namespace) -> int:
    """Apply the changes in a local file to the remote document."""
    edited_path = Path(args.edited)
    if not edited_path.exists():
        print(f"Error: File not found: {edited_path}", file=sys.stderr)
        return 1

    client = _build_client()
    try:
        opened = await client.open(
            args.document,
            document_id=args.document_id,
            mime_type=args.mime_type,
            file_name=edited_path.name,
        )
        edited = parse_document(edited_path.read_bytes(), file_name=edited_path.name)
        result = await client.save(opened, edited)
        if result.changes_applied == 0:
            print("No changes to apply.")
        else:
            print(
                f"Successfully applied {result.changes_applied} changes to document {result.document_id}"
            )
        return 0
    except GridsyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await client.close()


async def cmd_token(args: argparse.Namespace) -> int:
    """Save or clear the bearer token kept in the OS keyring."""
    provider = TokenProvider(use_keyring=True)
    if args.action == "clear":
        provider.clear_token()
        print("Token cleared.")
        return 0

    if not args.token:
        print("Error: token value required", file=sys.stderr)
        return 1
    expires_at = time.time() + args.expires_in if args.expires_in else None
    provider.save_token(Token(access_token=args.token, expires_at=expires_at))
    print("Token saved.")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="gridsync",
        description="Open and edit spreadsheets stored behind signed URLs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # resolve subcommand
    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Print a working signed URL for a document",
    )
    resolve_parser.add_argument(
        "document",
        help="Document ID, storage reference (documents/...) or signed URL",
    )
    resolve_parser.add_argument(
        "--document-id",
        default=None,
        help="Document ID to send when refreshing a URL",
    )
    resolve_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Print the attempt log",
    )
    resolve_parser.set_defaults(func=cmd_resolve)

    # pull subcommand
    pull_parser = subparsers.add_parser(
        "pull",
        help="Download a document",
    )
    pull_parser.add_argument("document", help="Document ID, storage reference or URL")
    pull_parser.add_argument("--document-id", default=None)
    pull_parser.add_argument("--mime-type", default=None, help="MIME type of the document")
    pull_parser.add_argument("--file-name", default=None, help="File name of the document")
    pull_parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Write sheet values as JSON to this file",
    )
    pull_parser.set_defaults(func=cmd_pull)

    # diff subcommand
    diff_parser = subparsers.add_parser(
        "diff",
        help="Show cell edits between two local files (dry run)",
    )
    diff_parser.add_argument("baseline", help="Original file (.xlsx or .csv)")
    diff_parser.add_argument("edited", help="Edited file of the same type")
    diff_parser.set_defaults(func=cmd_diff)

    # push subcommand
    push_parser = subparsers.add_parser(
        "push",
        help="Apply the changes in a local file to the remote document",
    )
    push_parser.add_argument("document", help="Document ID, storage reference or URL")
    push_parser.add_argument("edited", help="Edited local copy")
    push_parser.add_argument("--document-id", default=None)
    push_parser.add_argument("--mime-type", default=None)
    push_parser.set_defaults(func=cmd_push)

    # token subcommand
    token_parser = subparsers.add_parser(
        "token",
        help="Manage the bearer token stored in the OS keyring",
    )
    token_parser.add_argument("action", choices=["set", "clear"])
    token_parser.add_argument("token", nargs="?", default=None)
    token_parser.add_argument(
        "--expires-in",
        type=int,
        default=None,
        help="Seconds until the token expires",
    )
    token_parser.set_defaults(func=cmd_token)

    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(json_logs=settings.json_logs, log_level=settings.log_level)

    result: int = asyncio.run(args.func(args))
    return result


if __name__ == "__main__":
    sys.exit(main())
