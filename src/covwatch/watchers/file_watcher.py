"""Debounced source-file change monitor.

Watches a directory tree with ``watchfiles`` (native OS notifications), keeps
only changes to monitored source files outside build-output directories, and
turns each settled burst of changes into exactly one ``Trigger``.

Debounce policy: an event is *accepted* only when no trigger is pending and
at least ``debounce_window`` seconds have passed since the previous accepted
event. An accepted event schedules a trigger ``settle_delay`` seconds later;
every qualifying event up to that moment only updates the event the trigger
will carry (last wins). Nothing is queued per event.

All debounce state is owned by the event loop the monitor runs on.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change, awatch

from covwatch.models.pipeline import ChangeEvent, ChangeKind, Trigger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable

    from covwatch.config import CovwatchConfig

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_WINDOW = 0.5
DEFAULT_SETTLE_DELAY = 0.5

# Batching inside watchfiles itself; kept short so the policy above governs.
_BACKEND_DEBOUNCE_MS = 50
_BACKEND_STEP_MS = 50
_RETRY_DELAY = 1.0


class WatchError(Exception):
    """The watch mechanism cannot be established or has failed permanently."""


class FileChangeMonitor:
    """Watch a source tree and emit debounced pipeline triggers.

    Usage::

        monitor = FileChangeMonitor(root)
        await monitor.start()
        async for trigger in monitor.triggers():
            ...
        await monitor.stop()
    """

    def __init__(
        self,
        root: Path,
        *,
        extensions: Iterable[str] = (".cs",),
        excluded: Iterable[str] = ("bin", "obj"),
        debounce_window: float = DEFAULT_DEBOUNCE_WINDOW,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the monitor.

        Args:
            root: Directory tree to watch.
            extensions: Monitored source file suffixes (e.g. ``".cs"``).
            excluded: Path components that mark build output.
            debounce_window: Minimum seconds between accepted events.
            settle_delay: Seconds between an accepted event and its trigger.
            clock: Monotonic time source used for the debounce window.
        """
        self._root = root.resolve()
        self._extensions = frozenset(ext.lower() for ext in extensions)
        self._excluded = frozenset(excluded)
        self._debounce_window = debounce_window
        self._settle_delay = settle_delay
        self._clock = clock

        self._queue: asyncio.Queue[Trigger | None] = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._watch_task: asyncio.Task[None] | None = None
        self._settle_task: asyncio.Task[None] | None = None
        self._last_accepted_at: float | None = None
        self._latest_event: ChangeEvent | None = None
        self._fatal: WatchError | None = None
        self._stopped = False

    @classmethod
    def from_config(cls, config: CovwatchConfig) -> FileChangeMonitor:
        """Build a monitor from the ``watch`` configuration section."""
        return cls(
            config.root,
            extensions=config.watch.extensions,
            excluded=config.watch.exclude_segments,
            debounce_window=config.watch.debounce_window,
            settle_delay=config.watch.settle_delay,
        )

    @property
    def root(self) -> Path:
        return self._root

    @property
    def running(self) -> bool:
        """Whether the watcher task is active."""
        return self._watch_task is not None and not self._watch_task.done()

    @property
    def trigger_pending(self) -> bool:
        """Whether an accepted event is waiting out its settle delay."""
        return self._settle_task is not None and not self._settle_task.done()

    # ── Filtering ────────────────────────────────────────────────────

    def is_relevant(self, path: str | Path) -> bool:
        """Return True for monitored source files outside build-output directories."""
        candidate = Path(path)
        if candidate.suffix.lower() not in self._extensions:
            return False
        try:
            parts = candidate.resolve().relative_to(self._root).parts
        except ValueError:
            parts = candidate.parts
        return not any(part in self._excluded for part in parts[:-1])

    def _watch_filter(self, _change: Change, path: str) -> bool:
        return self.is_relevant(path)

    def classify(self, changes: Iterable[tuple[Change, str]]) -> list[ChangeEvent]:
        """Convert one backend batch into change events.

        A batch holding both a deletion and an addition of monitored files is
        treated as a rename: its additions become ``RENAMED``. Other additions
        are ``CREATED``, modifications ``MODIFIED``; deletions on their own
        produce nothing.
        """
        now = self._clock()
        added: list[str] = []
        modified: list[str] = []
        deleted = False
        for change, path in changes:
            if not self.is_relevant(path):
                continue
            if change == Change.added:
                added.append(path)
            elif change == Change.modified:
                modified.append(path)
            elif change == Change.deleted:
                deleted = True

        add_kind = ChangeKind.RENAMED if deleted and added else ChangeKind.CREATED
        events = [ChangeEvent(path=p, kind=add_kind, observed_at=now) for p in sorted(added)]
        events.extend(
            ChangeEvent(path=p, kind=ChangeKind.MODIFIED, observed_at=now) for p in sorted(modified)
        )
        return events

    # ── Debounce ─────────────────────────────────────────────────────

    def offer(self, event: ChangeEvent) -> bool:
        """Feed one qualifying event through the debouncer.

        Must be called from the event loop. Returns True if the event was
        accepted and scheduled a new trigger, False if it was coalesced into
        the pending trigger or dropped inside the debounce window.
        """
        if self._stopped:
            return False

        self._latest_event = event
        if self.trigger_pending:
            logger.debug("Coalesced change: %s (%s)", event.path, event.kind.value)
            return False

        now = self._clock()
        last = self._last_accepted_at
        if last is not None and now - last < self._debounce_window:
            logger.debug("Dropped change inside debounce window: %s", event.path)
            return False

        self._last_accepted_at = now
        logger.info("File changed: %s (%s)", event.path, event.kind.value)
        self._settle_task = asyncio.create_task(self._fire_after_settle())
        return True

    async def _fire_after_settle(self) -> None:
        await asyncio.sleep(self._settle_delay)
        event = self._latest_event
        self._queue.put_nowait(Trigger(reason="file change", event=event))

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start watching.

        Raises:
            WatchError: If the root directory does not exist.
        """
        if self.running:
            return
        if not self._root.is_dir():
            raise WatchError(f"Cannot watch {self._root}: not an existing directory")

        if self._stopped:
            self._queue = asyncio.Queue()
        self._stopped = False
        self._fatal = None
        self._stop_event.clear()
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info(
            "File watcher started on %s (extensions: %s, debounce: %.2fs + %.2fs settle)",
            self._root,
            ", ".join(sorted(self._extensions)),
            self._debounce_window,
            self._settle_delay,
        )

    async def stop(self) -> None:
        """Stop watching and release the OS watch. Safe to call in any state."""
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()

        for task in (self._settle_task, self._watch_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._settle_task = None
        self._watch_task = None

        self._queue.put_nowait(None)
        logger.info("File watcher stopped")

    async def triggers(self) -> AsyncIterator[Trigger]:
        """Yield triggers until the monitor is stopped.

        Raises:
            WatchError: If watching failed permanently.
        """
        while True:
            trigger = await self._queue.get()
            if trigger is None:
                if self._fatal is not None:
                    raise self._fatal
                return
            yield trigger

    async def _watch_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                async for changes in awatch(
                    self._root,
                    watch_filter=self._watch_filter,
                    debounce=_BACKEND_DEBOUNCE_MS,
                    step=_BACKEND_STEP_MS,
                    stop_event=self._stop_event,
                    recursive=True,
                    ignore_permission_denied=True,
                ):
                    for event in self.classify(changes):
                        self.offer(event)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._stop_event.is_set():
                    return
                if not self._root.is_dir():
                    logger.error("Watched directory is gone: %s", self._root)
                    self._fatal = WatchError(f"Watched directory disappeared: {self._root}")
                    self._queue.put_nowait(None)
                    return
                logger.error("File watcher error: %s", e)
                await asyncio.sleep(_RETRY_DELAY)
