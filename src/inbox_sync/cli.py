"""Command-line entry point for Inbox Sync."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

import uvicorn

from inbox_sync.core import AppSettings, configure_logging, load_app_settings
from inbox_sync.core.datetime_utils import display_datetime
from inbox_sync.core.models import Category, SearchFilter
from inbox_sync.pipeline import (
    StartupError,
    SyncService,
    build_notifier,
    open_repository,
)
from inbox_sync.web import create_app


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Inbox Sync email pipeline")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "sync", "serve", "search"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--no-sync",
        dest="no_sync",
        action="store_true",
        help="Serve the API without running the ingestion pipeline.",
    )
    parser.add_argument(
        "--query", default=None, help="Free-text terms for the search command."
    )
    parser.add_argument(
        "--category", default=None, help="Category filter for the search command."
    )
    parser.add_argument(
        "--account", default=None, help="Account id filter for the search command."
    )
    parser.add_argument(
        "--folder", default=None, help="Folder filter for the search command."
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum results for the search command; 0 for no limit (default: 20).",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> None:
    """Execute the requested CLI command."""
    command = args.command
    if command == "info":
        _print_info(settings)
    elif command == "sync":
        try:
            asyncio.run(_run_sync(settings))
        except KeyboardInterrupt:
            print("Sync stopped.")
    elif command == "serve":
        _run_server(settings, run_sync=not args.no_sync)
    elif command == "search":
        _run_search(
            settings,
            query=args.query,
            category=args.category,
            account_id=args.account,
            folder=args.folder,
            limit=args.limit,
        )


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    try:
        execute(args, settings)
    except StartupError as exc:
        print(f"Startup failed: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


def _print_info(settings: AppSettings) -> None:
    print("Inbox Sync is ready. Configure IMAP accounts to get started.")
    if not settings.accounts:
        print("No accounts configured.")
    for account in settings.accounts:
        state = "ready" if account.has_credentials else "missing credentials"
        print(
            f"Account {account.id}: {account.username or '-'} @ "
            f"{account.host}:{account.port}/{account.mailbox} ({state})"
        )
    print(f"Database path: {settings.storage.db_path}")
    print(f"LLM replies: {'enabled' if settings.llm.enabled else 'disabled'}")


async def _run_sync(settings: AppSettings) -> None:
    """Run every account pipeline until interrupted."""
    repository = open_repository(settings)
    service = SyncService(settings, repository, notifier=build_notifier(settings))
    try:
        if not service.coordinators:
            print("No accounts with credentials configured.")
            return
        await service.start()
        print(f"Syncing {len(service.coordinators)} account(s). Press Ctrl+C to stop.")
        await asyncio.Event().wait()
    finally:
        await service.stop()
        repository.close()


def _run_server(settings: AppSettings, *, run_sync: bool) -> None:
    """Serve the HTTP API, optionally alongside the ingestion pipeline."""
    repository = open_repository(settings)
    try:
        app = create_app(settings, repository=repository, run_sync=run_sync)
        uvicorn.run(
            app,
            host=settings.web.host,
            port=settings.web.port,
            log_config=None,
        )
    finally:
        repository.close()


def _run_search(
    settings: AppSettings,
    *,
    query: str | None,
    category: str | None,
    account_id: str | None,
    folder: str | None,
    limit: int,
) -> None:
    """Print stored messages matching the given filters."""
    try:
        parsed_category = Category.parse(category) if category else None
    except ValueError as exc:
        print(str(exc))
        return
    criteria = SearchFilter(
        text=query,
        folder=folder,
        account_id=account_id,
        category=parsed_category,
        limit=None if limit <= 0 else limit,
    )
    repository = open_repository(settings)
    try:
        messages = repository.search(criteria)
    finally:
        repository.close()

    if not messages:
        print("No messages found.")
        return

    print(f"Showing {len(messages)} message(s):")
    header = f"{'Date':<26}  {'Category':<15}  {'From':<30}  Subject"
    print(header)
    print("-" * len(header))
    for message in messages:
        label = message.category.value if message.category else "-"
        print(
            f"{display_datetime(message.date):<26}  {label:<15}  "
            f"{message.sender[:30]:<30}  {message.subject or '(no subject)'}"
        )


if __name__ == "__main__":
    main()
