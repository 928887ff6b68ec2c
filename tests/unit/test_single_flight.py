import asyncio

import pytest

from playsync.infra.singleflight import SingleFlight, gather_mapping


class GatedCall:
    """Counts invocations and blocks until released."""

    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.calls = 0
        self.gate = asyncio.Event()
        self.result = result
        self.error = error

    async def __call__(self):
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_execution():
    flight = SingleFlight()
    call = GatedCall(result={"friends": ["bob"]})

    waiters = [asyncio.create_task(flight.run("friend-state:alice", call)) for _ in range(5)]
    await asyncio.sleep(0)
    assert flight.in_flight("friend-state:alice")

    call.gate.set()
    results = await asyncio.gather(*waiters)

    assert call.calls == 1
    assert all(result is results[0] for result in results)
    assert not flight.in_flight("friend-state:alice")
    assert len(flight) == 0


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_releases_key():
    flight = SingleFlight()
    failing = GatedCall(error=RuntimeError("boom"))

    waiters = [asyncio.create_task(flight.run("k", failing)) for _ in range(3)]
    await asyncio.sleep(0)
    failing.gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert failing.calls == 1
    assert all(isinstance(result, RuntimeError) for result in results)

    retry = GatedCall(result="ok")
    retry.gate.set()
    assert await flight.run("k", retry) == "ok"
    assert retry.calls == 1


@pytest.mark.asyncio
async def test_unrelated_keys_do_not_block_each_other():
    flight = SingleFlight()
    slow = GatedCall(result="slow")
    fast = GatedCall(result="fast")
    fast.gate.set()

    pending = asyncio.create_task(flight.run("a", slow))
    await asyncio.sleep(0)

    assert await flight.run("b", fast) == "fast"
    assert not pending.done()

    slow.gate.set()
    assert await pending == "slow"


@pytest.mark.asyncio
async def test_forget_lets_the_next_caller_start_fresh():
    flight = SingleFlight()
    first = GatedCall(result="first")
    second = GatedCall(result="second")
    second.gate.set()

    stale = asyncio.create_task(flight.run("k", first))
    await asyncio.sleep(0)
    flight.forget("k")

    assert await flight.run("k", second) == "second"
    first.gate.set()
    assert await stale == "first"
    assert first.calls == 1 and second.calls == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_the_shared_call():
    flight = SingleFlight()
    call = GatedCall(result="value")

    first = asyncio.create_task(flight.run("k", call))
    second = asyncio.create_task(flight.run("k", call))
    await asyncio.sleep(0)
    first.cancel()
    call.gate.set()

    assert await second == "value"
    with pytest.raises(asyncio.CancelledError):
        await first


@pytest.mark.asyncio
async def test_gather_mapping_preserves_keys():
    async def value(v):
        return v

    assert await gather_mapping({"a": value(1), "b": value(2)}) == {"a": 1, "b": 2}
