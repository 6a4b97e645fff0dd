"""
Learning Store

In-memory long-term memory collaborator: learnings and the decision log.

Design decisions:
- Stored values are copies; callers cannot mutate what was stored
- Recall is a case-insensitive substring match, best matches first
- Confidence moves with feedback but never leaves [0.1, 1.0]
"""

import asyncio
from uuid import uuid4

from goalengine.core.types import Decision, Learning, utcnow

DEFAULT_CONFIDENCE = 0.5
CONFIDENCE_REWARD = 0.05
CONFIDENCE_PENALTY = 0.1
MIN_CONFIDENCE = 0.1


class LearningStore:
    """
    Default memory collaborator.

    Usage:
        store = LearningStore()
        await store.store(Learning(pattern="flaky tests", lesson="rerun once"))
        matches = await store.recall("flaky")
    """

    def __init__(self):
        self._learnings: dict[str, Learning] = {}
        self._decisions: list[Decision] = []
        self._lock = asyncio.Lock()

    async def store(self, learning: Learning) -> Learning:
        """
        Store a learning, filling in id and default confidence.

        Raises:
            ValueError: no pattern and no lesson, or confidence outside [0, 1]
        """
        if not learning.pattern and not learning.lesson:
            raise ValueError("learning must have either a pattern or a lesson")
        if not 0.0 <= learning.confidence <= 1.0:
            raise ValueError(f"confidence must be between 0 and 1, got: {learning.confidence}")

        stored = learning.model_copy(
            update={
                "id": learning.id or f"learning-{uuid4().hex[:12]}",
                "confidence": learning.confidence or DEFAULT_CONFIDENCE,
            },
            deep=True,
        )

        async with self._lock:
            self._learnings[stored.id] = stored
        return stored.model_copy(deep=True)

    async def recall(self, pattern: str) -> list[Learning]:
        """Learnings whose context, pattern or lesson contains ``pattern``."""
        if not pattern:
            raise ValueError("pattern cannot be empty")

        needle = pattern.lower()
        async with self._lock:
            matches = [
                learning.model_copy(deep=True)
                for learning in self._learnings.values()
                if needle in learning.context.lower()
                or needle in learning.pattern.lower()
                or needle in learning.lesson.lower()
            ]

        matches.sort(key=lambda l: (l.confidence, l.timestamp), reverse=True)
        return matches

    async def record_decision(self, decision: Decision) -> None:
        if not decision.reasoning:
            raise ValueError("decision must have reasoning")

        if not decision.id:
            decision = decision.model_copy(update={"id": f"decision-{uuid4().hex[:12]}"})

        async with self._lock:
            self._decisions.append(decision)

    async def get_decision_history(self, limit: int = 0) -> list[Decision]:
        """Most recent decisions first. ``limit <= 0`` returns all."""
        async with self._lock:
            history = list(reversed(self._decisions))
        if limit > 0:
            history = history[:limit]
        return history

    async def update_learning_confidence(self, learning_id: str, successful: bool) -> Learning | None:
        """Reward or penalise a learning after it was applied. Unknown ids are ignored."""
        async with self._lock:
            learning = self._learnings.get(learning_id)
            if learning is None:
                return None

            if successful:
                confidence = min(1.0, learning.confidence + CONFIDENCE_REWARD)
            else:
                confidence = max(MIN_CONFIDENCE, learning.confidence - CONFIDENCE_PENALTY)

            updated = learning.model_copy(
                update={
                    "confidence": confidence,
                    "applied_count": learning.applied_count + 1,
                    "timestamp": utcnow(),
                }
            )
            self._learnings[learning_id] = updated
            return updated.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._learnings)
