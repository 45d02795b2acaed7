"""Batch coalescer tests — one flush per window, per-caller results."""

import asyncio

import pytest

from ownergate.gateway.batch import BatchCoalescer
from ownergate.gateway.context import current_scope


@pytest.mark.asyncio
async def test_k_submissions_one_flush_with_isolated_failure():
    coalescer = BatchCoalescer(batch_size=10, batch_delay_ms=20)

    def ok(n):
        async def op():
            await asyncio.sleep(0)
            return n * 10
        return op

    async def boom():
        raise ValueError("row 3 failed")

    ops = [ok(0), ok(1), ok(2), boom, ok(4)]
    results = await asyncio.gather(
        *(coalescer.submit("user_stats", op) for op in ops),
        return_exceptions=True,
    )

    assert results[:3] == [0, 10, 20]
    assert isinstance(results[3], ValueError)
    assert results[4] == 40
    assert coalescer.stats.flushes == 1
    assert coalescer.stats.last_batch_size == 5
    assert coalescer.stats.failures == 1


@pytest.mark.asyncio
async def test_full_window_flushes_without_waiting_for_timer():
    coalescer = BatchCoalescer(batch_size=3, batch_delay_ms=60_000)

    results = await asyncio.wait_for(
        asyncio.gather(*(coalescer.submit("t", lambda i=i: i) for i in range(3))),
        timeout=1,
    )

    assert results == [0, 1, 2]
    assert coalescer.stats.flushes == 1


@pytest.mark.asyncio
async def test_overflow_starts_a_fresh_window():
    coalescer = BatchCoalescer(batch_size=2, batch_delay_ms=10)

    results = await asyncio.gather(*(coalescer.submit("t", lambda i=i: i) for i in range(5)))

    assert results == [0, 1, 2, 3, 4]
    # Two full windows flush on size, the fifth entry on the timer.
    assert coalescer.stats.flushes == 3
    assert coalescer.pending("t") == 0


@pytest.mark.asyncio
async def test_tables_have_separate_windows():
    coalescer = BatchCoalescer(batch_size=10, batch_delay_ms=10)

    results = await asyncio.gather(
        coalescer.submit("user_stats", lambda: "stats"),
        coalescer.submit("user_preferences", lambda: "prefs"),
    )

    assert results == ["stats", "prefs"]
    assert coalescer.stats.flushes == 2


@pytest.mark.asyncio
async def test_pending_counts_open_window():
    coalescer = BatchCoalescer(batch_size=10, batch_delay_ms=60_000)

    task = asyncio.ensure_future(coalescer.submit("t", lambda: 1))
    await asyncio.sleep(0)
    assert coalescer.pending("t") == 1

    await coalescer.flush_all()
    assert await task == 1
    assert coalescer.pending("t") == 0


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_break_siblings():
    coalescer = BatchCoalescer(batch_size=10, batch_delay_ms=20)

    gate = asyncio.Event()

    async def slow():
        await gate.wait()
        return "slow"

    abandoned = asyncio.ensure_future(coalescer.submit("t", slow))
    kept = asyncio.ensure_future(coalescer.submit("t", lambda: "kept"))
    await asyncio.sleep(0)
    abandoned.cancel()
    gate.set()

    assert await kept == "kept"
    with pytest.raises(asyncio.CancelledError):
        await abandoned


@pytest.mark.asyncio
async def test_caller_cancelled_before_flush_never_runs():
    coalescer = BatchCoalescer(batch_size=10, batch_delay_ms=20)
    ran = []

    abandoned = asyncio.ensure_future(coalescer.submit("t", lambda: ran.append("write")))
    kept = asyncio.ensure_future(coalescer.submit("t", lambda: "kept"))
    await asyncio.sleep(0)
    abandoned.cancel()

    assert await kept == "kept"
    await asyncio.sleep(0.05)
    assert ran == []
    assert coalescer.stats.skipped == 1
    assert coalescer.stats.last_batch_size == 1


@pytest.mark.asyncio
async def test_operations_see_their_own_callers_scope(security_context):
    coalescer = BatchCoalescer(batch_size=10, batch_delay_ms=20)

    async def request(caller_id):
        handle = await security_context.enter(caller_id)
        try:
            return await coalescer.submit("user_stats", lambda: current_scope().acting_as_id)
        finally:
            await security_context.exit(handle)

    results = await asyncio.gather(request("did:issuer:alice"), request("did:issuer:bob"))

    assert results == ["did:issuer:alice", "did:issuer:bob"]
    assert coalescer.stats.flushes == 1


@pytest.mark.asyncio
async def test_close_drains_and_rejects_new_work():
    coalescer = BatchCoalescer(batch_size=10, batch_delay_ms=60_000)

    task = asyncio.ensure_future(coalescer.submit("t", lambda: "drained"))
    await asyncio.sleep(0)
    await coalescer.close()

    assert await task == "drained"
    with pytest.raises(RuntimeError):
        await coalescer.submit("t", lambda: None)


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        BatchCoalescer(batch_size=0)
