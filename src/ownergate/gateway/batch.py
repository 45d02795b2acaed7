"""Write coalescing — many small writes, one flush per table.

Learn: Under a burst, every handler writing to user_stats would make its
own round trip. The coalescer parks each write in a per-table window and
flushes the window when it is full (batch_size) or when batch_delay_ms
has passed since its FIRST entry, whichever comes first.

A flush runs the queued operations concurrently and settles each
caller's future with that caller's own result or exception. One failed
write never fails or cancels its siblings, and operations are never
merged or reordered semantically; only their round trips are batched.

Concurrency: all window bookkeeping happens on the event loop with no
await between "look up window" and "swap it out", so the loop itself is
the single writer. Timers are loop.call_later handles.
"""

import asyncio
import contextvars
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

logger = structlog.get_logger()

Operation = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class PendingBatchEntry:
    table: str
    operation: Operation
    future: asyncio.Future
    context: contextvars.Context


@dataclass
class BatchWindow:
    table: str
    entries: list[PendingBatchEntry] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None


@dataclass
class BatchStats:
    """Runtime statistics for monitoring."""
    flushes: int = 0
    entries: int = 0
    failures: int = 0
    skipped: int = 0
    last_batch_size: int = 0


class BatchCoalescer:
    """Per-table write coalescer."""

    def __init__(self, batch_size: int = 10, batch_delay_ms: int = 100):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.batch_delay = max(0, batch_delay_ms) / 1000.0
        self.stats = BatchStats()
        self._windows: dict[str, BatchWindow] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._closed = False

    def pending(self, table: str) -> int:
        window = self._windows.get(table)
        return len(window.entries) if window else 0

    async def submit(self, table: str, operation: Operation) -> Any:
        """Queue `operation` in the table's window and wait for its own result."""
        if self._closed:
            raise RuntimeError("BatchCoalescer is closed")

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        window = self._windows.get(table)
        if window is None:
            window = BatchWindow(table=table)
            window.timer = loop.call_later(self.batch_delay, self._flush_table, table, window)
            self._windows[table] = window

        window.entries.append(
            PendingBatchEntry(table, operation, future, contextvars.copy_context())
        )
        if len(window.entries) >= self.batch_size:
            self._flush_table(table, window)

        return await future

    async def flush_all(self) -> None:
        """Flush every open window and wait for in-flight batches (shutdown)."""
        for table, window in list(self._windows.items()):
            self._flush_table(table, window)
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        await self.flush_all()

    def _flush_table(self, table: str, window: BatchWindow) -> None:
        # Swap the window out before running anything: new submissions
        # start a fresh window.
        if self._windows.get(table) is not window:
            return
        del self._windows[table]
        if window.timer is not None:
            window.timer.cancel()
            window.timer = None
        if not window.entries:
            return

        task = asyncio.get_running_loop().create_task(self._execute(window))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _execute(self, window: BatchWindow) -> None:
        # A caller that stopped waiting has already released its scope, so
        # its operation must not run.
        live = [entry for entry in window.entries if not entry.future.done()]
        skipped = len(window.entries) - len(live)
        self.stats.flushes += 1
        self.stats.entries += len(live)
        self.stats.skipped += skipped
        self.stats.last_batch_size = len(live)

        loop = asyncio.get_running_loop()
        # Each operation runs in its submitter's context so current_scope()
        # resolves to that request's handle.
        tasks = [
            loop.create_task(self._invoke(entry.operation), context=entry.context)
            for entry in live
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True) if tasks else []

        failures = 0
        for entry, result in zip(live, results):
            if entry.future.done():
                # Caller gave up while the flush was running.
                continue
            if isinstance(result, asyncio.CancelledError):
                failures += 1
                entry.future.cancel()
            elif isinstance(result, BaseException):
                failures += 1
                entry.future.set_exception(result)
            else:
                entry.future.set_result(result)

        self.stats.failures += failures
        logger.debug(
            "gateway.batch.flushed",
            table=window.table,
            size=len(live),
            skipped=skipped,
            failures=failures,
        )

    @staticmethod
    async def _invoke(operation: Operation) -> Any:
        result = operation()
        if inspect.isawaitable(result):
            result = await result
        return result
