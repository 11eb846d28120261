"""
Per-account locking
"""

import asyncio

from utils.locks import AccountLock, KeyedLock


class TestKeyedLock:
    async def test_same_key_is_serialized(self):
        lock = KeyedLock()
        events = []

        async def worker(name):
            async with lock.hold("account-1"):
                events.append(f"{name}:in")
                await asyncio.sleep(0.01)
                events.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (
            ["a:in", "a:out", "b:in", "b:out"],
            ["b:in", "b:out", "a:in", "a:out"],
        )

    async def test_different_keys_do_not_contend(self):
        lock = KeyedLock()
        release = asyncio.Event()

        async def hold_first():
            async with lock.hold("account-1"):
                await release.wait()

        holder = asyncio.create_task(hold_first())
        await asyncio.sleep(0)

        async with lock.hold("account-2"):
            assert lock.is_locked("account-1")
            assert lock.is_locked("account-2")

        release.set()
        await holder

    async def test_entries_are_dropped_when_released(self):
        lock = KeyedLock()

        async with lock.hold("account-1"):
            pass

        assert not lock.is_locked("account-1")
        assert lock._locks == {}


class TestAccountLock:
    async def test_local_only_by_default(self):
        lock = AccountLock()

        async with lock.hold("account-1"):
            assert lock.is_locked("account-1")

        assert not lock.is_locked("account-1")
