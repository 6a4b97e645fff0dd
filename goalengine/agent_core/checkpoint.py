"""
Checkpoint Management

Saves and restores agent execution state for crash recovery.

Design decisions:
- One human-readable JSON file per checkpoint, named by its identifier
- Checkpoints are point-in-time copies built from an agent snapshot
- Persistence operations are serialised by one lock per manager
- Periodic auto-save runs as a background asyncio task
"""

import asyncio
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from goalengine.core.exceptions import CheckpointError, CheckpointNotFoundError
from goalengine.core.types import AgentState, Decision, Goal, Task, TaskResult, TaskState, utcnow
from goalengine.observability.logging import get_logger
from goalengine.resilience.cancellation import sleep_or_cancelled

DIR_MODE = 0o755
FILE_MODE = 0o644
CHECKPOINT_PREFIX = "checkpoint-"
CHECKPOINT_SUFFIX = ".json"
DEFAULT_CHECKPOINT_DIR = "./checkpoints"
DEFAULT_SAVE_INTERVAL = 300.0

logger = get_logger("goalengine.checkpoint")


@dataclass
class AgentSnapshot:
    """Deep copy of the agent's mutable fields taken under its state lock."""

    state: AgentState
    goal: Goal | None = None
    plan: list[Task] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    iteration: int = 0


class CheckpointableAgent(Protocol):
    """What the manager needs from an agent."""

    def snapshot(self) -> AgentSnapshot:
        ...

    def load_snapshot(self, snapshot: AgentSnapshot) -> None:
        ...


class Checkpoint(BaseModel):
    """
    A saved state of an agent execution.

    Independent of the live agent: it is built from a deep-copied
    snapshot and restore copies it again.
    """

    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    state: AgentState
    goal: Goal | None = None
    current_plan: list[Task] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    completed_tasks: list[TaskResult] = Field(default_factory=list)
    iteration: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_snapshot(
        cls,
        checkpoint_id: str,
        snapshot: AgentSnapshot,
        metadata: dict[str, Any] | None = None,
    ) -> "Checkpoint":
        completed = [
            task.result
            for task in snapshot.plan
            if task.state == TaskState.COMPLETE and task.result is not None
        ]
        return cls(
            id=checkpoint_id,
            state=snapshot.state,
            goal=snapshot.goal,
            current_plan=snapshot.plan,
            decisions=snapshot.decisions,
            completed_tasks=completed,
            iteration=snapshot.iteration,
            metadata=dict(metadata or {}),
        )

    def to_snapshot(self) -> AgentSnapshot:
        copy = self.model_copy(deep=True)
        return AgentSnapshot(
            state=copy.state,
            goal=copy.goal,
            plan=copy.current_plan,
            decisions=copy.decisions,
            iteration=copy.iteration,
        )


class CheckpointManager:
    """
    File-backed checkpoint store.

    Save/restore/list/delete hold the manager's lock for their whole
    duration. Restore overwrites the live agent in place and must not be
    called while that agent is executing.
    """

    def __init__(
        self,
        checkpoint_dir: str | Path = DEFAULT_CHECKPOINT_DIR,
        auto_save: bool = True,
        save_interval: float = DEFAULT_SAVE_INTERVAL,
    ):
        self.checkpoint_dir = Path(checkpoint_dir or DEFAULT_CHECKPOINT_DIR)
        self.auto_save = auto_save
        self.save_interval = save_interval if save_interval > 0 else DEFAULT_SAVE_INTERVAL
        self._lock = asyncio.Lock()
        self._last_id_ns = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "CheckpointManager":
        """Build from AgentSettings."""
        return cls(
            checkpoint_dir=settings.checkpoint_dir,
            auto_save=settings.auto_save,
            save_interval=settings.save_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(
        self,
        agent: CheckpointableAgent,
        metadata: dict[str, Any] | None = None,
    ) -> Checkpoint:
        """Snapshot ``agent`` and write it durably."""
        if agent is None:
            raise CheckpointError("cannot save checkpoint: agent is None")

        async with self._lock:
            checkpoint = Checkpoint.from_snapshot(self._next_id(), agent.snapshot(), metadata)
            try:
                await asyncio.to_thread(self._write, checkpoint)
            except OSError as exc:
                logger.error("checkpoint.save.failed", error=exc, checkpoint_id=checkpoint.id)
                raise CheckpointError(
                    f"failed to write checkpoint {checkpoint.id}",
                    context={"checkpoint_id": checkpoint.id, "dir": str(self.checkpoint_dir)},
                    cause=exc,
                ) from exc

        logger.info(
            "checkpoint.saved",
            checkpoint_id=checkpoint.id,
            state=checkpoint.state.value,
            iteration=checkpoint.iteration,
        )
        return checkpoint

    async def load(self, checkpoint_id: str) -> Checkpoint:
        """Read one checkpoint without touching any agent."""
        async with self._lock:
            return await asyncio.to_thread(self._read, checkpoint_id)

    async def restore(self, checkpoint_id: str, agent: CheckpointableAgent) -> Checkpoint:
        """Overwrite ``agent``'s state, goal, plan, decisions and iteration."""
        if agent is None:
            raise CheckpointError("cannot restore checkpoint: agent is None")

        async with self._lock:
            checkpoint = await asyncio.to_thread(self._read, checkpoint_id)
            agent.load_snapshot(checkpoint.to_snapshot())

        logger.info("checkpoint.restored", checkpoint_id=checkpoint_id, state=checkpoint.state.value)
        return checkpoint

    async def list_checkpoints(self) -> list[Checkpoint]:
        """All readable checkpoints, oldest first. Corrupt files are skipped."""
        async with self._lock:
            return await asyncio.to_thread(self._list)

    async def delete(self, checkpoint_id: str) -> None:
        async with self._lock:
            path = self._path_for(checkpoint_id)
            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError as exc:
                raise CheckpointNotFoundError(
                    f"checkpoint not found: {checkpoint_id}",
                    context={"checkpoint_id": checkpoint_id},
                    cause=exc,
                ) from exc
            except OSError as exc:
                raise CheckpointError(
                    f"failed to delete checkpoint {checkpoint_id}",
                    context={"checkpoint_id": checkpoint_id},
                    cause=exc,
                ) from exc

        logger.info("checkpoint.deleted", checkpoint_id=checkpoint_id)

    # ------------------------------------------------------------------
    # Auto-save
    # ------------------------------------------------------------------

    def start_auto_save(
        self,
        agent: CheckpointableAgent,
        cancel_event: asyncio.Event,
    ) -> "asyncio.Task[None] | None":
        """
        Launch the periodic save loop.

        Returns None when auto-save is disabled. The loop ends when
        ``cancel_event`` is set or the task is cancelled.
        """
        if not self.auto_save:
            return None
        return asyncio.create_task(self._auto_save_loop(agent, cancel_event), name="checkpoint-auto-save")

    @staticmethod
    async def stop_auto_save(task: "asyncio.Task[None] | None") -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _auto_save_loop(self, agent: CheckpointableAgent, cancel_event: asyncio.Event) -> None:
        logger.debug("checkpoint.auto_save.started", interval=self.save_interval)

        while not await sleep_or_cancelled(self.save_interval, cancel_event):
            state = agent.snapshot().state
            if state in (AgentState.IDLE, AgentState.COMPLETE):
                continue
            try:
                await self.save(agent, metadata={"auto_save": True})
            except CheckpointError as exc:
                logger.error("checkpoint.auto_save.failed", error=exc)

        logger.debug("checkpoint.auto_save.stopped")

    # ------------------------------------------------------------------
    # File helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _next_id(self) -> str:
        now = time.time_ns()
        # Two saves within the clock's resolution still get distinct ids.
        if now <= self._last_id_ns:
            now = self._last_id_ns + 1
        self._last_id_ns = now
        return f"{CHECKPOINT_PREFIX}{now}"

    def _path_for(self, checkpoint_id: str) -> Path:
        if not checkpoint_id:
            raise CheckpointError("checkpoint id is empty")
        if "/" in checkpoint_id or "\\" in checkpoint_id or checkpoint_id.startswith("."):
            raise CheckpointError(
                f"invalid checkpoint id: {checkpoint_id}",
                context={"checkpoint_id": checkpoint_id},
            )
        return self.checkpoint_dir / f"{checkpoint_id}{CHECKPOINT_SUFFIX}"

    def _write(self, checkpoint: Checkpoint) -> None:
        self.checkpoint_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

        path = self._path_for(checkpoint.id)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(checkpoint.model_dump_json(indent=2), encoding="utf-8")
        os.chmod(tmp_path, FILE_MODE)
        os.replace(tmp_path, path)

    def _read(self, checkpoint_id: str) -> Checkpoint:
        path = self._path_for(checkpoint_id)
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise CheckpointNotFoundError(
                f"checkpoint not found: {checkpoint_id}",
                context={"checkpoint_id": checkpoint_id},
                cause=exc,
            ) from exc
        except UnicodeDecodeError as exc:
            raise CheckpointError(
                f"corrupt checkpoint {checkpoint_id}",
                context={"checkpoint_id": checkpoint_id},
                cause=exc,
            ) from exc
        except OSError as exc:
            raise CheckpointError(
                f"failed to read checkpoint {checkpoint_id}",
                context={"checkpoint_id": checkpoint_id},
                cause=exc,
            ) from exc

        try:
            return Checkpoint.model_validate_json(data)
        except ValidationError as exc:
            raise CheckpointError(
                f"corrupt checkpoint {checkpoint_id}",
                context={"checkpoint_id": checkpoint_id},
                cause=exc,
            ) from exc

    def _list(self) -> list[Checkpoint]:
        if not self.checkpoint_dir.is_dir():
            return []

        checkpoints = []
        for path in sorted(self.checkpoint_dir.glob(f"{CHECKPOINT_PREFIX}*{CHECKPOINT_SUFFIX}")):
            try:
                checkpoints.append(Checkpoint.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, UnicodeDecodeError, ValidationError) as exc:
                logger.warning("checkpoint.list.skipped", path=str(path), error=str(exc))

        checkpoints.sort(key=lambda c: c.timestamp)
        return checkpoints
