"""Tests for coalescing of concurrent identical work."""

import asyncio

import pytest

from replicator.coalescer import Coalescer


class TestCoalescer:
    """Test single-owner execution and outcome sharing."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_execution(self):
        coalescer = Coalescer()
        release = asyncio.Event()
        calls = []

        async def work():
            calls.append(1)
            await release.wait()
            return "exported"

        tasks = [asyncio.create_task(coalescer.coalesce("key", work)) for _ in range(5)]
        await asyncio.sleep(0)
        assert coalescer.in_flight("key")

        release.set()
        results = await asyncio.gather(*tasks)

        assert results == ["exported"] * 5
        assert len(calls) == 1
        assert len(coalescer) == 0

    @pytest.mark.asyncio
    async def test_error_is_shared_by_all_callers(self):
        coalescer = Coalescer()
        release = asyncio.Event()

        async def work():
            await release.wait()
            raise RuntimeError("export failed")

        tasks = [asyncio.create_task(coalescer.coalesce("key", work)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) and str(r) == "export failed" for r in results)
        assert not coalescer.in_flight("key")

    @pytest.mark.asyncio
    async def test_distinct_keys_run_independently(self):
        coalescer = Coalescer()
        calls = []

        async def work(name):
            calls.append(name)
            await asyncio.sleep(0)
            return name

        results = await asyncio.gather(
            coalescer.coalesce("a", lambda: work("a")),
            coalescer.coalesce("b", lambda: work("b")),
        )

        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_synchronous_raise_cleans_up(self):
        coalescer = Coalescer()

        def work():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await coalescer.coalesce("key", work)
        assert len(coalescer) == 0

    @pytest.mark.asyncio
    async def test_key_is_reusable_after_completion(self):
        coalescer = Coalescer()
        calls = []

        async def work():
            calls.append(1)
            return len(calls)

        assert await coalescer.coalesce("key", work) == 1
        assert await coalescer.coalesce("key", work) == 2

    @pytest.mark.asyncio
    async def test_cancelled_joiner_does_not_cancel_owner(self):
        coalescer = Coalescer()
        release = asyncio.Event()

        async def work():
            await release.wait()
            return "done"

        owner = asyncio.create_task(coalescer.coalesce("key", work))
        await asyncio.sleep(0)
        joiner = asyncio.create_task(coalescer.coalesce("key", work))
        await asyncio.sleep(0)

        joiner.cancel()
        release.set()

        assert await owner == "done"
        with pytest.raises(asyncio.CancelledError):
            await joiner

    @pytest.mark.asyncio
    async def test_cancelled_owner_cancels_joiners(self):
        coalescer = Coalescer()

        async def work():
            await asyncio.Event().wait()

        owner = asyncio.create_task(coalescer.coalesce("key", work))
        await asyncio.sleep(0)
        joiner = asyncio.create_task(coalescer.coalesce("key", work))
        await asyncio.sleep(0)

        owner.cancel()

        with pytest.raises(asyncio.CancelledError):
            await joiner
        assert not coalescer.in_flight("key")
