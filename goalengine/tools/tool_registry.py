"""
Tool Registry

Tool registration and task-to-tool lookup.
"""

import threading

from goalengine.core.exceptions import ToolNotFoundError
from goalengine.core.interfaces import ToolProtocol
from goalengine.core.types import Task


class ToolRegistry:
    """
    Tool registration and discovery.

    Keeps registration order, which is the order ``find_for_task``
    reports capability matches in.
    """

    def __init__(self, tools: list[ToolProtocol] | None = None):
        self._tools: dict[str, ToolProtocol] = {}
        self._lock = threading.Lock()
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolProtocol) -> None:
        """
        Register a tool.

        Raises:
            ValueError: empty or duplicate name
        """
        name = tool.name
        if not name:
            raise ValueError("tool name cannot be empty")

        with self._lock:
            if name in self._tools:
                raise ValueError(f"tool {name} already registered")
            self._tools[name] = tool

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._tools.pop(name, None) is not None

    def get(self, name: str) -> ToolProtocol:
        with self._lock:
            tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"tool {name} not found", context={"tool": name})
        return tool

    def list_tools(self) -> list[ToolProtocol]:
        with self._lock:
            return list(self._tools.values())

    def find_for_task(self, task: Task) -> list[ToolProtocol]:
        """The task's preferred tool if it can handle it, else every capable tool."""
        with self._lock:
            tools = list(self._tools.values())
            preferred = self._tools.get(task.tool) if task.tool else None

        if preferred is not None and preferred.can_handle(task):
            return [preferred]

        return [tool for tool in tools if tool.can_handle(task)]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)
