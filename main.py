"""Console entry point: run a sync pass against the configured Supabase project."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from core.settings import LOG_DIR, SUPABASE, SupabaseSettings
from services.favorites import FavoritesService
from services.errors import SyncError
from services.remote import SupabaseTable, build_client
from services.sync_service import build_sync_service
from storage.db import init_db


LOG_PATH = LOG_DIR / "stamp.log"


async def _run_sync(settings: SupabaseSettings) -> int:
    async with build_client(settings) as client:
        service = build_sync_service(settings, client=client)
        result = await service.perform_sync()
    if result.ok:
        print(
            f"Sync complete: {result.downloaded} downloaded, {result.uploaded} uploaded, "
            f"{result.decode_failures} malformed rows skipped."
        )
        return 0
    if result.skipped:
        print("Sync already in progress.")
        return 0
    print(f"Sync failed: {result.error.description}", file=sys.stderr)
    return 1


async def _status(settings: SupabaseSettings) -> int:
    async with build_client(settings) as client:
        service = build_sync_service(settings, client=client)
        print(json.dumps(service.status_report(), indent=2, ensure_ascii=False))
    return 0


async def _clear_pending(settings: SupabaseSettings) -> int:
    async with build_client(settings) as client:
        service = build_sync_service(settings, client=client)
        service.clear_pending_changes()
    print("Pending changes cleared.")
    return 0


async def _toggle_favorite(settings: SupabaseSettings, stamp_id: str) -> int:
    async with build_client(settings) as client:
        favorites = FavoritesService(SupabaseTable(client, settings.favorites_table))
        try:
            state = await favorites.toggle_favorite(stamp_id)
        except SyncError as exc:
            print(f"Favourite toggle failed: {exc.description}", file=sys.stderr)
            return 1
    print("Favourite" if state else "Not favourite")
    return 0


def _setup_logging(log_path: Path) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(log_path),
        filemode="a",
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None, settings: SupabaseSettings = SUPABASE) -> int:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    parser.add_argument(
        "--log",
        type=Path,
        default=LOG_PATH,
        help="Path to a log file (default: %(default)s)",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("sync", help="Run one two-way sync pass")
    commands.add_parser("status", help="Print the sync checkpoint and queue sizes")
    commands.add_parser("clear-pending", help="Forget all pending local changes")
    favorite = commands.add_parser("favorite", help="Toggle the favourite flag of a stamp")
    favorite.add_argument("stamp_id")
    args = parser.parse_args(argv)

    _setup_logging(args.log)
    if not settings.enabled:
        print("Set STAMP_SUPABASE_URL and STAMP_SUPABASE_KEY first.", file=sys.stderr)
        return 1

    init_db()
    if args.command == "sync":
        return asyncio.run(_run_sync(settings))
    if args.command == "status":
        return asyncio.run(_status(settings))
    if args.command == "clear-pending":
        return asyncio.run(_clear_pending(settings))
    return asyncio.run(_toggle_favorite(settings, args.stamp_id))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
