"""
Tool collaborators.
"""

from goalengine.tools.tool_registry import ToolRegistry

__all__ = ["ToolRegistry"]
