"""
Snapshot persistence for unlock sessions.

SnapshotStore is the save/load contract; InMemorySnapshotStore backs tests
and offline use, SqlSnapshotStore writes to the generation_sessions table.
DebouncedSnapshotWriter coalesces bursts of mutations into one save.
"""

import asyncio
import copy
from typing import Any, Callable, Dict, Optional, Protocol

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from codegate.kernel.models.generation_session import GenerationSession
from codegate.logging_config import get_logger

logger = get_logger(__name__)

Snapshot = Dict[str, Any]


class SnapshotStore(Protocol):
    """Key-value persistence for session snapshots."""

    async def save(self, conversation_id: str, snapshot: Snapshot) -> None:
        ...

    async def load(self, conversation_id: str) -> Optional[Snapshot]:
        ...

    async def delete(self, conversation_id: str) -> None:
        ...


class InMemorySnapshotStore:
    """Process-local store. Snapshots are deep-copied in and out."""

    def __init__(self):
        self._snapshots: Dict[str, Snapshot] = {}
        self.save_count = 0

    async def save(self, conversation_id: str, snapshot: Snapshot) -> None:
        self._snapshots[conversation_id] = copy.deepcopy(snapshot)
        self.save_count += 1

    async def load(self, conversation_id: str) -> Optional[Snapshot]:
        snapshot = self._snapshots.get(conversation_id)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    async def delete(self, conversation_id: str) -> None:
        self._snapshots.pop(conversation_id, None)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._snapshots


class SqlSnapshotStore:
    """Stores snapshots in the generation_sessions table."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def save(self, conversation_id: str, snapshot: Snapshot) -> None:
        async with self.session_maker() as session:
            row = await session.get(GenerationSession, conversation_id)
            if row is None:
                row = GenerationSession(conversation_id=conversation_id, snapshot=snapshot)
                session.add(row)
            else:
                # Assign a fresh object so the JSON column is flagged as changed
                row.snapshot = dict(snapshot)
            row.phase = str(snapshot.get("phase", "initial"))
            row.active_artifact_id = snapshot.get("active_artifact_id")
            row.schema_version = int(snapshot.get("schema_version", 1))
            await session.commit()

    async def load(self, conversation_id: str) -> Optional[Snapshot]:
        async with self.session_maker() as session:
            row = await session.get(GenerationSession, conversation_id)
            return dict(row.snapshot) if row is not None else None

    async def delete(self, conversation_id: str) -> None:
        async with self.session_maker() as session:
            await session.execute(
                delete(GenerationSession).where(GenerationSession.conversation_id == conversation_id)
            )
            await session.commit()


class DebouncedSnapshotWriter:
    """
    Dirty flag + delayed save.

    mark_dirty() schedules a save after `delay` seconds; further marks inside
    the window ride along. flush() saves immediately. The snapshot is taken
    synchronously when a save starts, so it never observes a half-applied
    mutation.
    """

    def __init__(
        self,
        conversation_id: str,
        store: SnapshotStore,
        snapshot_fn: Callable[[], Snapshot],
        delay: float = 1.0,
    ):
        self.conversation_id = conversation_id
        self.store = store
        self.snapshot_fn = snapshot_fn
        self.delay = delay
        self._dirty = False
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self) -> None:
        self._dirty = True
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next flush() persists the change
            return
        self._task = loop.create_task(self._save_later())

    async def _save_later(self) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self.flush()
        except Exception:
            logger.exception("Debounced snapshot save failed")
            return
        # Marks that landed while the save was running need a save of their own
        if self._dirty and self._task is asyncio.current_task():
            self._task = asyncio.get_running_loop().create_task(self._save_later())

    async def flush(self) -> bool:
        """Save now if dirty. Returns True when a save happened."""
        async with self._lock:
            if not self._dirty:
                return False
            snapshot = self.snapshot_fn()
            self._dirty = False
            try:
                await self.store.save(self.conversation_id, snapshot)
            except BaseException:
                # Covers cancellation by close(), which then saves again
                self._dirty = True
                raise
        logger.debug("Snapshot saved")
        return True

    async def close(self) -> None:
        """Cancel the pending delayed save and flush whatever is dirty."""
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.flush()
