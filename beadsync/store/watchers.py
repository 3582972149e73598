"""Filesystem watch adapters for beads data paths.

The snapshot store only depends on the :class:`WatchAdapter` protocol. The
default :class:`WatchfilesAdapter` uses `watchfiles` (Rust-accelerated) and
runs one background task per watched path.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Literal, Optional, Protocol

from watchfiles import Change, awatch

logger = logging.getLogger("beadsync.watcher")

WatchEvent = Literal["create", "change", "delete"]
WatchListener = Callable[[str, str], None]

_CHANGE_EVENTS: dict[Change, str] = {
    Change.added: "create",
    Change.modified: "change",
    Change.deleted: "delete",
}


class WatchHandle(Protocol):
    def dispose(self) -> None:
        ...


class WatchAdapter(Protocol):
    def watch(self, path: str, listener: WatchListener) -> WatchHandle:
        """Start watching ``path``; ``listener(event, path)`` fires per change."""
        ...


class WatchSubscription:
    """One registration with a watch adapter. ``dispose`` releases it once."""

    def __init__(self, path: str, handle: WatchHandle, listener: WatchListener):
        self.path = path
        self.listener = listener
        self.disposed = False
        self._handle = handle

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._handle.dispose()


class _WatchfilesHandle:
    def __init__(self, path: str, task: asyncio.Task, stop_event: asyncio.Event):
        self._path = path
        self._task = task
        self._stop_event = stop_event

    def dispose(self) -> None:
        self._stop_event.set()
        if not self._task.done():
            self._task.cancel()
        logger.debug("Stopped watching %s", self._path)


def _nearest_existing(path: Path) -> Optional[Path]:
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return None


class WatchfilesAdapter:
    """Watch adapter backed by ``watchfiles.awatch``.

    Paths that do not exist yet are watched through their nearest existing
    parent, and only changes at or below the requested path are reported.
    Must be used from a running event loop.
    """

    def __init__(self, debounce_ms: int = 50, force_polling: Optional[bool] = None):
        self.debounce_ms = debounce_ms
        self.force_polling = force_polling

    def watch(self, path: str, listener: WatchListener) -> WatchHandle:
        stop_event = asyncio.Event()
        task = asyncio.get_running_loop().create_task(self._watch_loop(path, listener, stop_event))
        return _WatchfilesHandle(path, task, stop_event)

    async def _watch_loop(self, path: str, listener: WatchListener, stop_event: asyncio.Event) -> None:
        target = Path(path)
        watch_root = _nearest_existing(target)
        if watch_root is None:
            logger.warning("No existing parent for %s, watcher has nothing to monitor", path)
            return

        logger.info("Watching %s for changes to %s", watch_root, target)
        try:
            async for changes in awatch(
                watch_root,
                stop_event=stop_event,
                debounce=self.debounce_ms,
                force_polling=self.force_polling,
            ):
                for event, changed_path in self._classify_changes(changes, target):
                    try:
                        listener(event, changed_path)
                    except Exception:
                        logger.exception("Watch listener failed for %s", changed_path)
        except asyncio.CancelledError:
            logger.debug("Watch task for %s cancelled", path)
        except Exception as e:
            logger.error("File watcher error for %s: %s", path, e)

    @staticmethod
    def _classify_changes(changes: set[tuple[Change, str]], target: Path) -> list[tuple[str, str]]:
        """Keep changes at or below ``target`` as (event, path) pairs."""
        result = []
        for change_type, path_str in changes:
            changed = Path(path_str)
            if changed != target and target not in changed.parents:
                continue
            event = _CHANGE_EVENTS.get(change_type)
            if event:
                result.append((event, path_str))
        return result
