"""
Persistence outbox for optimistic trail updates.

State changes are committed in memory first; the write to storage is queued
here and performed later, fire-and-forget. Entries are keyed (one key per
week and kind of data), and re-scheduling a key replaces its payload and
restarts its timer, so rapid edits coalesce into a single write carrying the
final state. The last scheduled state for a key is never dropped: it is
written either when its timer fires or on ``flush()``.

Writes for the same key run strictly in scheduling order. Failures are
logged and counted, never raised to the code that changed the state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

WriteFactory = Callable[[], Awaitable[None]]


class PersistenceOutbox:
    """Debounced, keyed queue of asynchronous persistence writes."""

    def __init__(self, default_delay_ms: int = 500):
        self.default_delay_ms = default_delay_ms
        self.failures = 0
        self.completed = 0
        self._pending: dict[str, WriteFactory] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._last_task: dict[str, asyncio.Task] = {}
        self._in_flight: set[asyncio.Task] = set()

    @property
    def pending_keys(self) -> list[str]:
        return sorted(self._pending)

    @property
    def has_work(self) -> bool:
        return bool(self._pending or self._in_flight)

    def schedule(self, key: str, write: WriteFactory, delay_ms: int | None = None) -> None:
        """
        Queue ``write`` under ``key``, replacing any pending write for it.

        Without a running event loop the write waits for ``flush()``.
        """
        self._pending[key] = write

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, '{key}' write held until flush")
            return

        delay = self.default_delay_ms if delay_ms is None else delay_ms
        self._timers[key] = loop.call_later(max(delay, 0) / 1000, self._fire, key)

    async def flush(self) -> None:
        """Run every pending write now and wait for all in-flight writes."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        for key in list(self._pending):
            self._start(key, self._pending.pop(key))

        while self._in_flight:
            await asyncio.gather(*list(self._in_flight))

    def discard(self, *keys: str, prefix: str | None = None) -> None:
        """
        Drop pending writes without running them (in-flight writes continue).

        Args:
            keys: Keys to drop
            prefix: Drop every key starting with this prefix

        With neither ``keys`` nor ``prefix`` every pending write is dropped.
        """
        if keys or prefix is not None:
            targets = {
                key for key in self._pending if key in keys or (prefix is not None and key.startswith(prefix))
            }
        else:
            targets = set(self._pending)

        for key in targets:
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            del self._pending[key]

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        write = self._pending.pop(key, None)
        if write is not None:
            self._start(key, write)

    def _start(self, key: str, write: WriteFactory) -> None:
        previous = self._last_task.get(key)
        task = asyncio.get_running_loop().create_task(self._run(key, write, previous))
        self._last_task[key] = task
        self._in_flight.add(task)
        task.add_done_callback(lambda done, k=key: self._finished(k, done))

    def _finished(self, key: str, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if self._last_task.get(key) is task:
            del self._last_task[key]

    async def _run(self, key: str, write: WriteFactory, previous: asyncio.Task | None) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        try:
            await write()
        except Exception:  # Background write: log and keep the optimistic state
            self.failures += 1
            logger.exception(f"Persistence write '{key}' failed")
        else:
            self.completed += 1
            logger.debug(f"Persistence write '{key}' done")
