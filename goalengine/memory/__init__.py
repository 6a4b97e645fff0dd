"""
Memory collaborators.
"""

from goalengine.memory.learning_store import LearningStore

__all__ = ["LearningStore"]
