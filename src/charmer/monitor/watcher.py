"""Metadata change notifier.

Watches ``.snakemake/metadata`` with watchfiles and feeds changed records
into the store.  Events for the same path inside the debounce window are
coalesced to the last one so a file being written is parsed once.  A
periodic full rescan covers anything the watcher missed; both paths go
through the same idempotent merge.

If the metadata directory does not exist yet, the nearest existing
ancestor is watched instead and the watch re-arms once the directory
appears.  If the watch cannot be set up at all, the notifier keeps running
in rescan-only mode.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import watchfiles

from charmer.core.config import WatcherConfig
from charmer.core.exceptions import WatcherSetupError
from charmer.core.logging import get_logger
from charmer.core.task_utils import log_task_exception
from charmer.state.store import StateStore
from charmer.workflow.metadata import MetadataScanner

_logger = get_logger("watcher")


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    path: Path


_CHANGE_KINDS = {
    watchfiles.Change.added: ChangeKind.CREATED,
    watchfiles.Change.modified: ChangeKind.MODIFIED,
}


class Debouncer:
    """Coalesces events per path until the path has been quiet for ``window`` seconds.

    Time is passed in explicitly so the policy can be driven by a fake clock.
    """

    def __init__(self, window: float = 0.5) -> None:
        self.window = window
        self._pending: dict[Path, tuple[ChangeEvent, float]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, event: ChangeEvent, now: float) -> None:
        """Record ``event``; a later event for the same path replaces it."""
        self._pending[event.path] = (event, now + self.window)

    def drain_ready(self, now: float) -> list[ChangeEvent]:
        """Remove and return events whose quiet period has elapsed."""
        ready = [path for path, (_, deadline) in self._pending.items() if deadline <= now]
        return [self._pending.pop(path)[0] for path in ready]

    def next_deadline(self) -> float | None:
        if not self._pending:
            return None
        return min(deadline for _, deadline in self._pending.values())


def nearest_existing_ancestor(path: Path) -> Path | None:
    for candidate in path.parents:
        if candidate.is_dir():
            return candidate
    return None


class ChangeNotifier:
    """Filesystem watch plus periodic rescan over one metadata directory.

    Lifecycle:
        notifier = ChangeNotifier(store, scanner, config)
        await notifier.start()
        ...
        await notifier.stop()
    """

    def __init__(
        self,
        store: StateStore,
        scanner: MetadataScanner,
        config: WatcherConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._scanner = scanner
        self._config = config or WatcherConfig()
        self._clock = clock
        self._debouncer = Debouncer(self._config.debounce_ms / 1000)
        self._stop_event = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False
        self.watching = False

    @property
    def directory(self) -> Path:
        return self._scanner.directory

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        coros = [("rescan", self._rescan_loop())]
        if self._config.enabled:
            coros += [("watch", self._watch()), ("debounce", self._flush_loop())]
        for name, coro in coros:
            task = asyncio.create_task(coro, name=f"watcher-{name}")
            task.add_done_callback(self._on_task_done)
            self._tasks.append(task)
        _logger.info(
            "watcher.started",
            directory=str(self.directory),
            watch=self._config.enabled,
            rescan_interval=self._config.rescan_interval_seconds,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.watching = False
        _logger.info("watcher.stopped", directory=str(self.directory))

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        log_task_exception(task, _logger, "watcher.task_died_unexpectedly")

    # ─── Events ──────────────────────────────────────────────────────

    def submit(self, event: ChangeEvent) -> None:
        """Queue an event behind the debounce window."""
        self._debouncer.add(event, self._clock())
        self._wakeup.set()

    async def handle_events(self, events: list[ChangeEvent]) -> int:
        """Merge the records behind ``events``.  Returns the number merged."""
        if not events:
            return 0
        if any(e.path == self.directory for e in events):
            records = await asyncio.to_thread(self._scanner.scan)
        else:
            paths = [e.path for e in events]
            records = await asyncio.to_thread(self._scanner.read_paths, paths)
        if not records:
            return 0
        result = await self._store.merge_workflow(records)
        _logger.debug("watcher.events_merged", events=len(events), records=result.total)
        return result.total

    async def flush(self) -> int:
        """Hand every event whose debounce window has elapsed to the merge path."""
        return await self.handle_events(self._debouncer.drain_ready(self._clock()))

    async def rescan(self) -> int:
        """Full pass over the directory, merging new or changed files."""
        records = await asyncio.to_thread(self._scanner.scan)
        if not records:
            return 0
        result = await self._store.merge_workflow(records)
        _logger.debug("watcher.rescan_merged", records=result.total)
        return result.total

    # ─── Tasks ───────────────────────────────────────────────────────

    async def _flush_loop(self) -> None:
        while self._running:
            try:
                deadline = self._debouncer.next_deadline()
                if deadline is None:
                    await self._wakeup.wait()
                    self._wakeup.clear()
                    continue
                delay = deadline - self._clock()
                if delay > 0:
                    await asyncio.sleep(delay)
                await self.flush()
            except asyncio.CancelledError:
                break
            except Exception:
                _logger.exception("watcher.flush_failed")

    async def _rescan_loop(self) -> None:
        while self._running:
            try:
                await self.rescan()
            except asyncio.CancelledError:
                break
            except Exception:
                _logger.exception("watcher.rescan_failed")
            await asyncio.sleep(self._config.rescan_interval_seconds)

    async def _watch(self) -> None:
        """Watch the metadata directory, or its nearest ancestor until it exists."""
        try:
            while self._running:
                if self.directory.is_dir():
                    await self._watch_directory()
                    if self.directory.is_dir():
                        return
                    continue
                ancestor = nearest_existing_ancestor(self.directory)
                if ancestor is None:
                    raise WatcherSetupError(f"no existing ancestor of {self.directory}")
                await self._watch_ancestor(ancestor)
        except asyncio.CancelledError:
            return
        except WatcherSetupError as e:
            _logger.warning("watcher.setup_failed", error=str(e), mode="rescan_only")
        except Exception:
            _logger.warning(
                "watcher.setup_failed",
                directory=str(self.directory),
                mode="rescan_only",
                exc_info=True,
            )
        finally:
            self.watching = False

    async def _watch_directory(self) -> None:
        self.watching = True
        _logger.debug("watcher.armed", path=str(self.directory))
        async for changes in watchfiles.awatch(
            self.directory,
            stop_event=self._stop_event,
            debounce=0,
            step=50,
        ):
            if not self._running:
                break
            for change, path_str in changes:
                kind = _CHANGE_KINDS.get(change)
                if kind is not None:
                    self.submit(ChangeEvent(kind, Path(path_str)))
            if not self.directory.is_dir():
                break

    async def _watch_ancestor(self, ancestor: Path) -> None:
        self.watching = True
        _logger.debug("watcher.armed_ancestor", path=str(ancestor), target=str(self.directory))
        async for _changes in watchfiles.awatch(
            ancestor,
            stop_event=self._stop_event,
            recursive=False,
            debounce=0,
            step=50,
        ):
            if not self._running:
                break
            if self.directory.is_dir():
                _logger.info("watcher.directory_created", path=str(self.directory))
                self.submit(ChangeEvent(ChangeKind.CREATED, self.directory))
                break
            if nearest_existing_ancestor(self.directory) != ancestor:
                break


__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "ChangeNotifier",
    "Debouncer",
    "nearest_existing_ancestor",
]
