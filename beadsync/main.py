#!/usr/bin/env python3
"""Load a beads snapshot for one or more workspaces and print or watch it.

Usage:
  beadsync --root .
  beadsync --root ~/src/app --root ~/src/lib --json
  beadsync --root . --watch --stale-hours 8
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

from beadsync import config
from beadsync.cli_client import BdCliClient, BdCliError, BdCliErrorKind, check_dependency_editing_supported
from beadsync.date_utils import format_datetime_utc
from beadsync.models import Item, Snapshot, WorkspaceTarget
from beadsync.observability import initialize as initialize_observability, shutdown as shutdown_observability
from beadsync.status import format_priority_label, format_status_label
from beadsync.store.snapshot_store import SnapshotStore, get_stale_info
from beadsync.store.watchers import WatchfilesAdapter

logger = logging.getLogger("beadsync")


def _build_targets(roots: list[str]) -> list[WorkspaceTarget]:
    targets = []
    for raw in roots:
        root = Path(raw).expanduser().resolve()
        targets.append(WorkspaceTarget(id=root.name or str(root), root=str(root)))
    return targets


def _snapshot_payload(snapshot: Snapshot, items: list[Item], stale: list[Item]) -> dict[str, Any]:
    return {
        "refreshedAt": format_datetime_utc(snapshot.refreshedAt) if snapshot.refreshedAt else None,
        "workspaceIds": snapshot.workspaceIds,
        "itemCount": len(items),
        "items": [item.model_dump(exclude={"raw"}) for item in items],
        "staleIds": [item.id for item in stale],
    }


def _print_snapshot(store: SnapshotStore, snapshot: Snapshot, query: Optional[str], as_json: bool) -> None:
    items = store.filter_items(query) if query else snapshot.items
    stale = store.get_stale_items()

    if as_json:
        print(json.dumps(_snapshot_payload(snapshot, items, stale), indent=2))
        return

    print(f"Workspaces: {', '.join(snapshot.workspaceIds) or '-'}")
    print(f"Items: {len(items)}")
    print("")
    for item in items:
        priority = format_priority_label(item.priority)
        status = format_status_label(item.status or "") or "-"
        print(f"{item.id:<14} {status:<12} {priority:<3} {item.title}")
    if stale:
        print("")
        print(f"Stale (in progress >= {store.stale_threshold_hours:g}h):")
        for item in stale:
            info = get_stale_info(item)
            print(f"  {item.id} {info.formattedTime if info else ''}")


async def _run(args: argparse.Namespace) -> int:
    targets = _build_targets(args.root)
    adapter = WatchfilesAdapter() if args.watch else None
    store = SnapshotStore(
        watch_adapter=adapter,
        watch_debounce_ms=args.debounce_ms,
        stale_threshold_hours=args.stale_hours,
        on_error=lambda exc: logger.warning("Reload failed: %s", exc),
    )

    if args.check_version:
        warning = await check_dependency_editing_supported(BdCliClient(cwd=targets[0].root))
        if warning:
            logger.warning(warning)

    try:
        snapshot = await store.refresh(targets)
    except BdCliError as exc:
        if exc.kind == BdCliErrorKind.OFFLINE:
            print(f"bd appears to be offline: {exc.message}")
        else:
            print(f"Failed to load workspaces ({exc.kind.value}): {exc.message}")
        store.dispose()
        return 1

    _print_snapshot(store, snapshot, args.filter, args.json)
    if not args.watch:
        store.dispose()
        return 0

    store.on_did_change(lambda snap: _print_snapshot(store, snap, args.filter, args.json))
    logger.info("Watching %d path(s); press Ctrl-C to stop", len(store.subscriptions))
    try:
        await asyncio.Event().wait()
    finally:
        store.dispose()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--root", action="append", default=[], help="Workspace root (repeatable)")
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--filter", default="")
    parser.add_argument("--stale-hours", type=float, default=config.STALE_THRESHOLD_HOURS)
    parser.add_argument("--debounce-ms", type=int, default=config.WATCH_DEBOUNCE_MS)
    parser.add_argument("--watch", action="store_true")
    parser.add_argument("--check-version", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    if not args.root:
        args.root = ["."]

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    initialize_observability()
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130
    finally:
        shutdown_observability()


if __name__ == "__main__":
    raise SystemExit(main())
