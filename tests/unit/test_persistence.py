"""
Unit tests for the debounced snapshot writer.

Covers marks that land while a save is running and closing a writer whose
delayed save is still talking to the store.
"""

import asyncio

import pytest

from codegate.engines.unlock.persistence import DebouncedSnapshotWriter, InMemorySnapshotStore


class GatedStore(InMemorySnapshotStore):
    """In-memory store whose first save waits for `release`."""

    def __init__(self):
        super().__init__()
        self.attempts = 0
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def save(self, conversation_id, snapshot):
        self.attempts += 1
        if self.attempts == 1:
            self.entered.set()
            await self.release.wait()
        await super().save(conversation_id, snapshot)


async def _until(condition, timeout: float = 1.0):
    async def poll():
        while not condition():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class TestDebouncedSnapshotWriter:

    @pytest.mark.asyncio
    async def test_burst_is_saved_once(self):
        store = InMemorySnapshotStore()
        data = {"v": 1}
        writer = DebouncedSnapshotWriter("c", store, lambda: dict(data), delay=0.01)

        writer.mark_dirty()
        data["v"] = 2
        writer.mark_dirty()
        await _until(lambda: store.save_count == 1)

        assert await store.load("c") == {"v": 2}
        assert writer.dirty is False
        await writer.close()
        assert store.save_count == 1

    @pytest.mark.asyncio
    async def test_mark_during_running_save_schedules_another(self):
        """A change made while a save is in flight still reaches the store."""
        store = GatedStore()
        data = {"v": 1}
        writer = DebouncedSnapshotWriter("c", store, lambda: dict(data), delay=0.01)

        writer.mark_dirty()
        await asyncio.wait_for(store.entered.wait(), 1.0)
        data["v"] = 2
        writer.mark_dirty()
        store.release.set()

        await _until(lambda: store.save_count == 2)
        assert await store.load("c") == {"v": 2}
        assert writer.dirty is False
        await writer.close()

    @pytest.mark.asyncio
    async def test_close_during_running_save_keeps_snapshot(self):
        """Cancelling the in-flight save leaves the writer dirty for the final flush."""
        store = GatedStore()
        writer = DebouncedSnapshotWriter("c", store, lambda: {"v": 1}, delay=0.01)

        writer.mark_dirty()
        await asyncio.wait_for(store.entered.wait(), 1.0)
        await asyncio.wait_for(writer.close(), 1.0)

        assert await store.load("c") == {"v": 1}
        assert store.attempts == 2
        assert writer.dirty is False

    @pytest.mark.asyncio
    async def test_failed_save_stays_dirty(self):
        class FailingStore(InMemorySnapshotStore):
            async def save(self, conversation_id, snapshot):
                raise OSError("disk full")

        writer = DebouncedSnapshotWriter("c", FailingStore(), lambda: {"v": 1}, delay=60)
        writer.mark_dirty()

        with pytest.raises(OSError):
            await writer.flush()
        assert writer.dirty is True

        writer.store = InMemorySnapshotStore()
        await writer.close()
        assert await writer.store.load("c") == {"v": 1}
