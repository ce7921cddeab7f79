"""Unit tests for the FIFO concurrency limiter."""

import asyncio

import pytest

from app.adapters.concurrency.fifo import FifoConcurrencyLimiter


class Recorder:
    """Tracks start/finish order and peak concurrency of fake operations."""

    def __init__(self) -> None:
        self.running = 0
        self.peak = 0
        self.started: list[str] = []
        self.finished: list[str] = []

    def op(self, tag: str, delay: float = 0.01, *, fail: Exception | None = None):
        async def _operation() -> str:
            self.running += 1
            self.peak = max(self.peak, self.running)
            self.started.append(tag)
            try:
                await asyncio.sleep(delay)
                if fail is not None:
                    raise fail
                return tag
            finally:
                self.running -= 1
                self.finished.append(tag)

        return _operation

    def gated(self, tag: str, gate: asyncio.Event):
        async def _operation() -> str:
            self.running += 1
            self.peak = max(self.peak, self.running)
            self.started.append(tag)
            try:
                await gate.wait()
                return tag
            finally:
                self.running -= 1
                self.finished.append(tag)

        return _operation


async def _settle() -> None:
    # Let admitted tasks reach their first suspension point.
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.parametrize("capacity", [0, -1])
def test_rejects_non_positive_capacity(capacity: int) -> None:
    with pytest.raises(ValueError):
        FifoConcurrencyLimiter(capacity)


@pytest.mark.asyncio
async def test_never_exceeds_capacity() -> None:
    limiter = FifoConcurrencyLimiter(3, name="test")
    rec = Recorder()

    futures = [limiter.submit(rec.op(f"op-{i}", delay=0.001 * (i % 4))) for i in range(20)]
    results = await asyncio.gather(*futures)

    assert results == [f"op-{i}" for i in range(20)]
    assert rec.peak == 3
    assert limiter.active_count == 0
    assert limiter.pending_count == 0


@pytest.mark.asyncio
async def test_submit_returns_immediately_and_queues_over_capacity() -> None:
    limiter = FifoConcurrencyLimiter(2)
    rec = Recorder()
    gate = asyncio.Event()

    futures = [limiter.submit(rec.gated(tag, gate)) for tag in "ABCD"]

    assert limiter.active_count == 2
    assert limiter.pending_count == 2
    assert not any(f.done() for f in futures)

    gate.set()
    assert await asyncio.gather(*futures) == ["A", "B", "C", "D"]


@pytest.mark.asyncio
async def test_capacity_two_admits_queued_items_as_slots_free() -> None:
    limiter = FifoConcurrencyLimiter(2)
    rec = Recorder()
    gates = {tag: asyncio.Event() for tag in "ABCD"}

    futures = {tag: limiter.submit(rec.gated(tag, gates[tag])) for tag in "ABCD"}
    await _settle()
    assert rec.started == ["A", "B"]

    gates["A"].set()
    assert await futures["A"] == "A"
    await _settle()
    assert rec.started == ["A", "B", "C"]
    assert rec.running == 2

    gates["B"].set()
    assert await futures["B"] == "B"
    await _settle()
    assert rec.started == ["A", "B", "C", "D"]
    assert rec.running == 2

    gates["D"].set()
    gates["C"].set()
    assert await futures["C"] == "C"
    assert await futures["D"] == "D"
    assert rec.peak == 2


@pytest.mark.asyncio
async def test_capacity_one_runs_serially_in_submission_order() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()

    # Later submissions are faster; serial execution must still keep order.
    futures = [limiter.submit(rec.op(str(i), delay=0.005 * (5 - i))) for i in range(5)]
    await asyncio.gather(*futures)

    assert rec.peak == 1
    assert rec.started == ["0", "1", "2", "3", "4"]
    assert rec.finished == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_waiting_operations_are_admitted_fifo() -> None:
    limiter = FifoConcurrencyLimiter(2)
    rec = Recorder()

    tags = [f"t{i}" for i in range(10)]
    await asyncio.gather(*(limiter.submit(rec.op(tag)) for tag in tags))

    assert rec.started == tags


@pytest.mark.asyncio
async def test_failure_is_forwarded_verbatim() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()
    error = RuntimeError("upstream exploded")

    future = limiter.submit(rec.op("bad", fail=error))

    with pytest.raises(RuntimeError) as exc_info:
        await future
    assert exc_info.value is error


@pytest.mark.asyncio
async def test_failure_releases_slot_for_queued_operation() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()

    failing = limiter.submit(rec.op("bad", fail=ValueError("nope")))
    queued = limiter.submit(rec.op("good"))
    assert limiter.pending_count == 1

    results = await asyncio.gather(failing, queued, return_exceptions=True)

    assert isinstance(results[0], ValueError)
    assert results[1] == "good"
    assert limiter.active_count == 0

    stats = limiter.stats()
    assert stats.failed == 1
    assert stats.completed == 2


@pytest.mark.asyncio
async def test_mixed_outcomes_each_settle_with_their_own_result() -> None:
    limiter = FifoConcurrencyLimiter(2)
    rec = Recorder()

    futures = [
        limiter.submit(rec.op(str(i), fail=KeyError(i) if i % 3 == 0 else None))
        for i in range(9)
    ]
    outcomes = await asyncio.gather(*futures, return_exceptions=True)

    for i, outcome in enumerate(outcomes):
        if i % 3 == 0:
            assert isinstance(outcome, KeyError)
            assert outcome.args == (i,)
        else:
            assert outcome == str(i)


@pytest.mark.asyncio
async def test_synchronous_callable_error_is_forwarded() -> None:
    limiter = FifoConcurrencyLimiter(1)

    def broken():
        raise TypeError("not an operation")

    with pytest.raises(TypeError, match="not an operation"):
        await limiter.submit(broken)

    # The limiter is still usable afterwards
    assert await limiter.submit(lambda: 42) == 42


@pytest.mark.asyncio
async def test_run_awaits_outcome() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()

    assert await limiter.run(rec.op("x")) == "x"
    assert await limiter(rec.op("y")) == "y"


@pytest.mark.asyncio
async def test_cancelled_queued_future_is_never_started() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()
    gate = asyncio.Event()

    first = limiter.submit(rec.gated("first", gate))
    abandoned = limiter.submit(rec.op("abandoned"))
    last = limiter.submit(rec.op("last"))

    abandoned.cancel()
    gate.set()

    assert await first == "first"
    assert await last == "last"
    assert "abandoned" not in rec.started
    assert limiter.stats().admitted == 2


@pytest.mark.asyncio
async def test_stats_snapshot_reflects_state() -> None:
    limiter = FifoConcurrencyLimiter(2, name="geocoding")
    rec = Recorder()
    gate = asyncio.Event()

    futures = [limiter.submit(rec.gated(str(i), gate)) for i in range(3)]
    stats = limiter.stats()

    assert stats.name == "geocoding"
    assert stats.capacity == 2
    assert stats.active == 2
    assert stats.pending == 1
    assert stats.admitted == 2
    assert stats.completed == 0

    gate.set()
    await asyncio.gather(*futures)

    stats = limiter.stats()
    assert stats.active == 0
    assert stats.pending == 0
    assert stats.admitted == 3
    assert stats.completed == 3
    assert stats.failed == 0


@pytest.mark.asyncio
async def test_independent_limiters_do_not_share_capacity() -> None:
    first = FifoConcurrencyLimiter(1, name="a")
    second = FifoConcurrencyLimiter(1, name="b")
    gate = asyncio.Event()
    rec = Recorder()

    blocked = first.submit(rec.gated("a1", gate))
    other = second.submit(rec.op("b1"))

    assert await other == "b1"
    assert not blocked.done()

    gate.set()
    assert await blocked == "a1"


class Abort(BaseException):
    """Non-Exception error raised by an operation."""


@pytest.mark.asyncio
async def test_base_exception_is_forwarded_and_releases_slot() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()

    async def aborting() -> None:
        raise Abort("stop")

    aborted = limiter.submit(aborting)
    queued = limiter.submit(rec.op("next"))

    with pytest.raises(Abort):
        await aborted
    assert await queued == "next"
    assert limiter.stats().failed == 1


@pytest.mark.asyncio
async def test_operation_raising_cancelled_error_cancels_its_future() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()

    async def self_cancelling() -> None:
        raise asyncio.CancelledError()

    cancelled = limiter.submit(self_cancelling)
    queued = limiter.submit(rec.op("next"))

    assert await queued == "next"
    assert cancelled.cancelled()
    assert limiter.active_count == 0


@pytest.mark.asyncio
async def test_task_cancelled_before_first_step_still_releases_slot() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()

    first = limiter.submit(rec.op("first"))
    queued = limiter.submit(rec.op("second"))
    (task,) = limiter._tasks
    task.cancel()

    assert await queued == "second"
    assert first.cancelled()
    assert rec.started == ["second"]
    assert limiter.active_count == 0
    assert limiter.stats().failed == 1


@pytest.mark.asyncio
async def test_pending_excludes_cancelled_waiters() -> None:
    limiter = FifoConcurrencyLimiter(1)
    rec = Recorder()
    gate = asyncio.Event()

    running = limiter.submit(rec.gated("running", gate))
    abandoned = limiter.submit(rec.op("abandoned"))
    waiting = limiter.submit(rec.op("waiting"))
    assert limiter.pending_count == 2

    abandoned.cancel()

    assert limiter.pending_count == 1
    assert limiter.stats().pending == 1

    gate.set()
    assert await running == "running"
    assert await waiting == "waiting"
    assert limiter.pending_count == 0
