import asyncio

import pytest

from contract_hub.concurrency import KeyedLocks, RateLimiter, with_deadline
from contract_hub.errors import UpstreamServiceError


def test_with_deadline_returns_result():
    async def quick():
        return "done"

    assert asyncio.run(with_deadline(quick(), 1, "renderer")) == "done"


def test_with_deadline_raises_timeout():
    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(UpstreamServiceError) as excinfo:
        asyncio.run(with_deadline(slow(), 0.01, "renderer"))
    assert excinfo.value.kind == "timeout"
    assert excinfo.value.service == "renderer"
    assert excinfo.value.status_code == 504


def test_keyed_locks_do_not_block_other_keys():
    locks = KeyedLocks()
    order = []

    async def main():
        async with locks(1):
            async with locks(2):
                order.append("both")
            assert len(locks) == 1

    asyncio.run(asyncio.wait_for(main(), 1))
    assert order == ["both"]
    assert len(locks) == 0


def test_keyed_locks_serialize_same_key():
    locks = KeyedLocks()
    order = []

    async def worker(name):
        async with locks("participant-42"):
            order.append(f"{name}-start")
            await asyncio.sleep(0.01)
            order.append(f"{name}-end")

    async def main():
        await asyncio.gather(worker("a"), worker("b"))

    asyncio.run(main())
    assert order == ["a-start", "a-end", "b-start", "b-end"]
    assert len(locks) == 0


def test_rate_limiter_spaces_calls():
    now = [10.0]
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        now[0] += seconds

    limiter = RateLimiter(4, clock=lambda: now[0], sleep=fake_sleep)

    async def main():
        await limiter.acquire()
        await limiter.acquire()
        now[0] += 1.0
        await limiter.acquire()

    asyncio.run(main())
    assert sleeps == [0.25]


def test_rate_limiter_disabled_for_non_positive_rate():
    async def fail_sleep(seconds):
        raise AssertionError("should not sleep")

    limiter = RateLimiter(0, sleep=fail_sleep)

    async def main():
        for _ in range(3):
            await limiter.acquire()

    asyncio.run(main())
