"""
Session Manager - the single writer for one conversation's unlock state.

Every mutation goes through an entry point here, on one event loop, and never
spans an await. Oracle calls are the only suspension points; their completion
handlers re-check that the session is still open, the state was not replaced
by a restore, and the artifact version is unchanged before touching anything.
"""

import asyncio
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from codegate.config import get_settings
from codegate.engines.unlock.artifact_store import ArtifactStore
from codegate.engines.unlock.errors import RestoreError, SessionClosedError
from codegate.engines.unlock.line_classifier import ClassificationCache
from codegate.engines.unlock.models import (
    AnswerOutcome,
    Artifact,
    ProgressView,
    Quiz,
    SessionState,
    compute_content_hash,
)
from codegate.engines.unlock.persistence import (
    DebouncedSnapshotWriter,
    InMemorySnapshotStore,
    SnapshotStore,
)
from codegate.engines.unlock.quiz_oracle import QuizOracle, QuizOracleAdapter
from codegate.engines.unlock.state_machine import UnlockStateMachine
from codegate.engines.unlock.visibility_planner import (
    band_description,
    render_visible_code,
    visible_indices,
)
from codegate.logging_config import conversation_id_var, get_logger

logger = get_logger(__name__)

Listener = Callable[[SessionState], None]


class SessionManager:
    """Owns one conversation's SessionState and everything that mutates it."""

    def __init__(
        self,
        conversation_id: str,
        *,
        store: Optional[SnapshotStore] = None,
        oracle: Optional[QuizOracle] = None,
        artifact_store: Optional[ArtifactStore] = None,
        skip_allowed: Optional[bool] = None,
        default_total_gates: Optional[int] = None,
        version_policy: Optional[str] = None,
        debounce_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.conversation_id = conversation_id
        self.skip_allowed = settings.skip_allowed if skip_allowed is None else skip_allowed
        self.artifact_store = artifact_store or ArtifactStore()
        self.adapter = QuizOracleAdapter(oracle)
        self.machine = UnlockStateMachine(
            self._fresh_state(),
            self.adapter,
            artifact_store=self.artifact_store,
            default_total_gates=default_total_gates,
            version_policy=version_policy,
        )
        self.store: SnapshotStore = store if store is not None else InMemorySnapshotStore()
        self.writer = DebouncedSnapshotWriter(
            conversation_id,
            self.store,
            self.snapshot,
            delay=settings.snapshot_debounce_seconds if debounce_seconds is None else debounce_seconds,
        )
        self.classifications = ClassificationCache()
        self._listeners: List[Listener] = []
        self._closed = False

    @classmethod
    async def open(
        cls,
        conversation_id: str,
        store: SnapshotStore,
        oracle: Optional[QuizOracle] = None,
        **kwargs: Any,
    ) -> "SessionManager":
        """Create a manager and restore the last persisted snapshot, if any."""
        manager = cls(conversation_id, store=store, oracle=oracle, **kwargs)
        with manager._bound():
            snapshot = await store.load(conversation_id)
            if snapshot is not None:
                manager.restore(snapshot)
        return manager

    # ── properties ─────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self.machine.state

    @property
    def closed(self) -> bool:
        return self._closed

    # ── ingestion ──────────────────────────────────────────────────────

    async def ingest_assistant_text(
        self,
        text: str,
        is_final: bool,
        *,
        turn_ordinal: Optional[int] = None,
    ) -> List[Artifact]:
        """
        Feed the assistant's text so far.

        Safe to call with every growing prefix of a streaming message. Quiz
        generation is deferred until is_final.
        """
        with self._bound():
            self._ensure_open()
            phase_before = self.state.phase
            self.machine.observe_text(text)

            changed = self.state.phase != phase_before
            stored: List[Artifact] = []
            for artifact in self.artifact_store.extract(text, is_final=is_final):
                previous = self.state.artifact_by_key(artifact.key)
                record = self.machine.register_artifact(artifact)
                changed = changed or record is not previous
                stored.append(record)

            if is_final:
                changed = self._advance_turn(text, turn_ordinal) or changed

            if changed:
                self._changed()

            if is_final:
                await self._generate_missing()
            return stored

    def add_or_update_artifact(self, artifact: Artifact) -> str:
        """Register an artifact directly (bypassing text extraction)."""
        with self._bound():
            self._ensure_open()
            previous = self.state.artifact_by_key(artifact.key)
            record = self.machine.register_artifact(artifact)
            if record is not previous:
                self._changed()
            return record.id

    def _advance_turn(self, text: str, turn_ordinal: Optional[int]) -> bool:
        """Count a final turn once; a repeated completion signal for the same text is ignored."""
        state = self.state
        digest = compute_content_hash(text)
        before = (state.turn_ordinal, state.last_final_hash)
        if turn_ordinal is not None:
            state.turn_ordinal = turn_ordinal
        elif digest != state.last_final_hash:
            state.turn_ordinal += 1
        state.last_final_hash = digest
        return (state.turn_ordinal, state.last_final_hash) != before

    # ── quizzes ────────────────────────────────────────────────────────

    async def _generate_missing(self) -> None:
        for artifact_id in list(self.state.artifacts):
            progress = self.state.progress.get(artifact_id)
            if progress is None or progress.generation_attempted:
                continue
            if progress.is_unlocked or progress.current_quiz is not None:
                continue
            await self._generate(artifact_id, regenerate=False)
            if self._closed:
                return

    async def _generate(self, artifact_id: str, *, regenerate: bool) -> bool:
        state = self.state
        artifact = state.artifacts[artifact_id]
        progress = state.progress[artifact_id]
        expected_version = artifact.version

        # The attempt marker is set synchronously before the oracle is awaited
        self.writer.mark_dirty()
        quizzes = await self.adapter.generate(artifact, progress, regenerate=regenerate)

        if self._closed or self.state is not state:
            logger.debug("Dropping quiz batch for a closed or restored session", extra={"artifact_id": artifact_id})
            return False

        attached = self.machine.attach_quizzes(artifact_id, quizzes, expected_version=expected_version)
        if not attached and self.machine.needs_quiz(artifact_id):
            if state.artifacts[artifact_id].version != expected_version:
                # The batch was built for an older version; ask again for the current one
                logger.debug("Quiz batch outdated by a new version", extra={"artifact_id": artifact_id})
                progress.generation_attempted = False
                return await self._generate(artifact_id, regenerate=regenerate)
            self.machine.fill_from_fallback(artifact_id)
        self._changed()
        return attached

    async def regenerate_quizzes(self, artifact_id: str) -> Optional[Quiz]:
        """Throw away unanswered quizzes and ask the oracle again."""
        with self._bound():
            self._ensure_open()
            progress = self.machine.progress(artifact_id)
            if progress.is_unlocked:
                return None
            self.machine.clear_quizzes(artifact_id)
            self._changed()

            await self._generate(artifact_id, regenerate=True)
            if self._closed:
                return None
            if self.machine.needs_quiz(artifact_id):
                self.machine.fill_from_fallback(artifact_id, force=True)
                self._changed()
            return self.machine.progress(artifact_id).current_quiz

    async def answer_quiz(self, artifact_id: str, quiz_id: str, user_answer: str) -> AnswerOutcome:
        with self._bound():
            self._ensure_open()
            outcome = self.machine.answer(
                artifact_id, quiz_id, user_answer, turn_ordinal=self.state.turn_ordinal,
            )
            self._changed()
            if outcome.is_correct and outcome.is_unlocked:
                await self.flush()
            return outcome

    async def answer_freeform(
        self,
        artifact_id: str,
        quiz_id: str,
        user_answer: str,
        code_context: Optional[str] = None,
    ) -> AnswerOutcome:
        with self._bound():
            self._ensure_open()
            outcome = await self.machine.answer_freeform(
                artifact_id,
                quiz_id,
                user_answer,
                turn_ordinal=self.state.turn_ordinal,
                code_context=code_context,
            )
            self._changed()
            if outcome.is_correct and outcome.is_unlocked:
                await self.flush()
            return outcome

    async def skip(self, artifact_id: str) -> ProgressView:
        with self._bound():
            self._ensure_open()
            self.machine.skip(artifact_id)
            self._changed()
            await self.flush()
            return self.get_progress(artifact_id)

    # ── navigation ─────────────────────────────────────────────────────

    def set_active_artifact(self, artifact_id: str) -> None:
        with self._bound():
            self._ensure_open()
            if self.state.active_artifact_id == artifact_id:
                return
            self.machine.switch_active_artifact(artifact_id)
            self._changed()

    def begin_planning(self) -> None:
        with self._bound():
            self._ensure_open()
            before = self.state.phase
            if self.machine.begin_planning() != before:
                self._changed()

    # ── read model ─────────────────────────────────────────────────────

    def visible_line_indices(self, artifact_id: str) -> List[int]:
        artifact = self.machine.artifact(artifact_id)
        progress = self.machine.progress(artifact_id)
        lines = self.classifications.get(artifact)
        return sorted(visible_indices(lines, progress.unlock_level, progress.total_gates))

    def get_visible_code(self, artifact_id: str) -> str:
        """Artifact content with not-yet-unlocked lines redacted."""
        artifact = self.machine.artifact(artifact_id)
        progress = self.machine.progress(artifact_id)
        lines = self.classifications.get(artifact)
        visible = visible_indices(lines, progress.unlock_level, progress.total_gates)
        return render_visible_code(lines, set(visible))

    def get_progress(self, artifact_id: str) -> ProgressView:
        progress = self.machine.progress(artifact_id)
        return ProgressView(
            artifact_id=artifact_id,
            unlock_level=progress.unlock_level,
            total_gates=progress.total_gates,
            percent=progress.percent,
            is_unlocked=progress.is_unlocked,
            description=band_description(progress.unlock_level, progress.total_gates),
        )

    # ── snapshots ──────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return self.machine.snapshot()

    def restore(self, snapshot: Mapping[str, Any]) -> bool:
        """
        Replace the state with a persisted snapshot.

        Returns False (and starts from an empty state) when the snapshot is
        unusable; in-flight oracle results for the old state are discarded.
        """
        with self._bound():
            try:
                if not isinstance(snapshot, Mapping):
                    raise RestoreError("Snapshot must be a mapping")
                if snapshot.get("conversation_id") != self.conversation_id:
                    raise RestoreError("Snapshot belongs to another conversation")
                self.machine.restore(snapshot)
            except RestoreError as exc:
                logger.warning("Snapshot restore failed, starting fresh: %s", exc)
                self.machine.state = self._fresh_state()
                self._changed()
                return False
            self._notify()
            return True

    # ── observers / lifecycle ──────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def flush(self) -> bool:
        return await self.writer.flush()

    async def close(self) -> None:
        """Persist pending changes and turn every later call into a no-op or error."""
        if self._closed:
            return
        with self._bound():
            self._closed = True
            self.machine.closed = True
            await self.writer.close()
            self._listeners.clear()
            logger.info("Session closed")

    # ── internals ──────────────────────────────────────────────────────

    def _fresh_state(self) -> SessionState:
        return SessionState(conversation_id=self.conversation_id, skip_allowed=self.skip_allowed)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Session {self.conversation_id!r} is closed")

    def _changed(self) -> None:
        self.writer.mark_dirty()
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:
                logger.exception("Session listener failed")

    @contextmanager
    def _bound(self) -> Iterator[None]:
        token = conversation_id_var.set(self.conversation_id)
        try:
            yield
        finally:
            conversation_id_var.reset(token)


class SessionRegistry:
    """Maps conversation ids to open SessionManagers."""

    def __init__(self, store: SnapshotStore, oracle: Optional[QuizOracle] = None, **manager_kwargs: Any):
        self.store = store
        self.oracle = oracle
        self.manager_kwargs = manager_kwargs
        self._sessions: Dict[str, SessionManager] = {}
        self._lock = asyncio.Lock()

    async def get(self, conversation_id: str) -> SessionManager:
        """Open (or reuse) the manager for a conversation."""
        async with self._lock:
            manager = self._sessions.get(conversation_id)
            if manager is None or manager.closed:
                manager = await SessionManager.open(
                    conversation_id, self.store, self.oracle, **self.manager_kwargs,
                )
                self._sessions[conversation_id] = manager
            return manager

    async def close(self, conversation_id: str, *, forget: bool = False) -> bool:
        """Close a conversation's manager; with forget=True also drop its snapshot."""
        async with self._lock:
            manager = self._sessions.pop(conversation_id, None)
        if manager is not None:
            await manager.close()
        if forget:
            await self.store.delete(conversation_id)
        return manager is not None

    async def close_all(self) -> None:
        async with self._lock:
            managers = list(self._sessions.values())
            self._sessions.clear()
        for manager in managers:
            await manager.close()

    def __contains__(self, conversation_id: str) -> bool:
        manager = self._sessions.get(conversation_id)
        return manager is not None and not manager.closed

    def __len__(self) -> int:
        return sum(1 for m in self._sessions.values() if not m.closed)
