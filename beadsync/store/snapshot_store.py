"""Multi-workspace snapshot store.

Loads every workspace target through an injectable loader, merges the items
into one naturally ordered snapshot and keeps it current by watching the
paths each loaded document declares. Bursts of watch notifications are
debounced into a single reload, and reloads never overlap.
"""
from __future__ import annotations

import asyncio
import logging
import math
import os
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from beadsync import config
from beadsync.date_utils import parse_timestamp, utc_now
from beadsync.models import Item, LoadedDocument, Snapshot, StaleInfo, WorkspaceTarget
from beadsync.observability import record_snapshot_reload, start_span
from beadsync.parsers.items import filter_items_by_query, sort_items
from beadsync.status import normalize_status
from beadsync.store.loader import load_workspace
from beadsync.store.watchers import WatchAdapter, WatchSubscription

logger = logging.getLogger("beadsync.store")

Loader = Callable[[WorkspaceTarget], Awaitable[LoadedDocument]]
Clock = Callable[[], datetime]
ChangeListener = Callable[[Snapshot], None]
ErrorHandler = Callable[[BaseException], None]

DEFAULT_STALE_THRESHOLD_HOURS = config.STALE_THRESHOLD_HOURS


def _as_utc(value: datetime) -> datetime:
    """Naive clock values are taken as UTC, matching ``parse_timestamp``."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _hours_in_progress(item: Item, now: datetime) -> Optional[float]:
    if normalize_status(item.status) != "in_progress" or not item.inProgressSince:
        return None
    started = parse_timestamp(item.inProgressSince)
    if started is None:
        return None
    return (_as_utc(now) - started).total_seconds() / 3600


def is_stale(
    item: Item,
    threshold_hours: float = DEFAULT_STALE_THRESHOLD_HOURS,
    now: Optional[datetime] = None,
) -> bool:
    hours = _hours_in_progress(item, now or utc_now())
    return hours is not None and hours >= threshold_hours


def get_stale_info(item: Item, now: Optional[datetime] = None) -> Optional[StaleInfo]:
    hours = _hours_in_progress(item, now or utc_now())
    if hours is None:
        return None

    days = math.floor(hours / 24)
    remainder_hours = math.floor(hours % 24)
    if days > 0:
        formatted = f"{days}d {remainder_hours}h" if remainder_hours > 0 else f"{days}d"
    elif remainder_hours > 0:
        formatted = f"{remainder_hours}h"
    else:
        formatted = f"{max(0, math.floor(hours * 60))}m"
    return StaleInfo(hoursInProgress=hours, formattedTime=formatted)


class SnapshotStore:
    """Owns the current snapshot and the watch subscriptions behind it.

    ``refresh`` is all-or-nothing: if any target fails to load, the previous
    snapshot and subscriptions stay in place and the error propagates.
    Reloads triggered by watch notifications report failures through
    ``on_error`` instead.
    """

    def __init__(
        self,
        loader: Optional[Loader] = None,
        watch_adapter: Optional[WatchAdapter] = None,
        *,
        watch_debounce_ms: int = config.WATCH_DEBOUNCE_MS,
        stale_threshold_hours: float = DEFAULT_STALE_THRESHOLD_HOURS,
        clock: Optional[Clock] = None,
        on_error: Optional[ErrorHandler] = None,
    ):
        self._loader: Loader = loader or load_workspace
        self._watch_adapter = watch_adapter
        self._debounce_seconds = max(0, watch_debounce_ms) / 1000
        self.stale_threshold_hours = stale_threshold_hours
        self._clock_source: Clock = clock or utc_now
        self._on_error = on_error

        self._snapshot = Snapshot()
        self._targets: list[WorkspaceTarget] = []
        self._subscriptions: dict[str, WatchSubscription] = {}
        self._listeners: list[ChangeListener] = []
        self._refresh_lock = asyncio.Lock()
        self._debounce_task: Optional[asyncio.Task] = None
        self._reload_task: Optional[asyncio.Task] = None
        self._reload_in_flight = False
        self._reload_pending = False
        self._disposed = False

    def _clock(self) -> datetime:
        return _as_utc(self._clock_source())

    # ── Reads ───────────────────────────────────────────────────────

    def get_snapshot(self) -> Snapshot:
        return self._snapshot

    def get_items(self) -> list[Item]:
        return list(self._snapshot.items)

    def get_stale_items(self, threshold_hours: Optional[float] = None) -> list[Item]:
        threshold = self.stale_threshold_hours if threshold_hours is None else threshold_hours
        now = self._clock()
        return [item for item in self._snapshot.items if is_stale(item, threshold, now)]

    def filter_items(self, query: Optional[str]) -> list[Item]:
        return filter_items_by_query(self.get_items(), query)

    @property
    def subscriptions(self) -> dict[str, WatchSubscription]:
        return dict(self._subscriptions)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def on_did_change(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ── Refresh ─────────────────────────────────────────────────────

    async def refresh(self, targets: Sequence[WorkspaceTarget]) -> Snapshot:
        return await self._refresh(targets, trigger="explicit")

    async def _refresh(self, targets: Sequence[WorkspaceTarget], trigger: str) -> Snapshot:
        if self._disposed:
            raise RuntimeError("SnapshotStore has been disposed")

        valid_targets = [target for target in targets if target is not None and target.root]
        async with self._refresh_lock:
            self._targets = valid_targets
            started = time.monotonic()

            if not valid_targets:
                snapshot = Snapshot(refreshedAt=self._clock())
                self._reconcile_subscriptions([])
                self._publish(snapshot)
                return snapshot

            with start_span("snapshot.refresh", {"snapshot.trigger": trigger, "snapshot.targets": len(valid_targets)}):
                results = await asyncio.gather(
                    *(self._loader(target) for target in valid_targets),
                    return_exceptions=True,
                )
            elapsed_ms = (time.monotonic() - started) * 1000

            failures = [
                (target, result)
                for target, result in zip(valid_targets, results)
                if isinstance(result, BaseException)
            ]
            if failures:
                record_snapshot_reload(trigger, "error", elapsed_ms)
                for target, error in failures:
                    logger.warning("Failed to load workspace %s: %s", target.id, type(error).__name__)
                raise failures[0][1]

            if self._disposed:
                # dispose() ran while loading; nothing may be re-subscribed.
                return self._snapshot

            documents: list[LoadedDocument] = list(results)  # type: ignore[arg-type]
            snapshot = Snapshot(
                items=sort_items(item for document in documents for item in document.items),
                refreshedAt=self._clock(),
                workspaceIds=[target.id for target in valid_targets],
            )
            self._publish(snapshot)
            self._reconcile_subscriptions(path for document in documents for path in document.watchPaths)
            record_snapshot_reload(trigger, "success", elapsed_ms, len(snapshot.items))
            logger.info(
                "Snapshot refreshed (%s): %d items across %d workspace(s)",
                trigger, len(snapshot.items), len(valid_targets),
            )
            return snapshot

    def _publish(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot change listener failed")

    def _reconcile_subscriptions(self, watch_paths: Iterable[str]) -> None:
        """Keep exactly one live subscription per distinct watch path."""
        desired = list(dict.fromkeys(os.path.normpath(path) for path in watch_paths if path))

        for path in list(self._subscriptions):
            if path not in desired:
                self._subscriptions.pop(path).dispose()

        if self._watch_adapter is None:
            return

        for path in desired:
            existing = self._subscriptions.get(path)
            if existing is not None and not existing.disposed:
                continue
            listener = self._on_watch_event
            try:
                handle = self._watch_adapter.watch(path, listener)
            except Exception as e:
                logger.error("Could not watch %s: %s", path, e)
                continue
            self._subscriptions[path] = WatchSubscription(path, handle, listener)

    # ── Debounced reloads ───────────────────────────────────────────

    def _on_watch_event(self, event: str, path: str) -> None:
        if self._disposed:
            return
        logger.debug("Watch event %s for %s", event, path)
        self._schedule_reload()

    def _schedule_reload(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounce_elapsed())

    async def _debounce_elapsed(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        self._debounce_task = None
        self._request_reload()

    def _request_reload(self) -> None:
        if self._disposed:
            return
        if self._reload_in_flight:
            self._reload_pending = True
            return
        self._reload_in_flight = True
        self._reload_task = asyncio.get_running_loop().create_task(self._run_reloads())

    async def _run_reloads(self) -> None:
        try:
            while True:
                self._reload_pending = False
                await self._reload_once()
                if not self._reload_pending or self._disposed:
                    break
        finally:
            self._reload_in_flight = False
            self._reload_task = None

    async def _reload_once(self) -> None:
        try:
            await self._refresh(self._targets, trigger="watch")
        except Exception as exc:
            logger.error("Debounced snapshot reload failed: %s: %s", type(exc).__name__, exc)
            if self._on_error is not None:
                try:
                    self._on_error(exc)
                except Exception:
                    logger.exception("Snapshot store error handler failed")

    async def wait_until_idle(self) -> None:
        """Wait for any pending debounce timer and in-flight reload to finish."""
        while True:
            pending = [
                task
                for task in (self._debounce_task, self._reload_task)
                if task is not None and not task.done()
            ]
            if not pending:
                return
            await asyncio.wait(pending)

    # ── Teardown ────────────────────────────────────────────────────

    def dispose(self) -> None:
        """Release every subscription exactly once; safe to call repeatedly."""
        self._disposed = True
        for task in (self._debounce_task, self._reload_task):
            if task is not None and not task.done():
                task.cancel()
        self._debounce_task = None
        self._reload_task = None
        for subscription in self._subscriptions.values():
            subscription.dispose()
        self._subscriptions.clear()
        self._listeners.clear()
