"""Tool Registry for callables invoked by tool and mcp nodes."""

import inspect
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List

from .exceptions import ToolRegistryError
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ToolInfo:
    name: str
    description: str
    function: Callable


class ToolRegistry:
    """In-process registry of tools callable by workflow nodes.

    Tools are called as ``function(context, **parameters)`` where ``context``
    is the run's ``ExecutionContext``.
    """

    def __init__(self):
        self._tools: Dict[str, ToolInfo] = {}
        self._lock = threading.RLock()

    def register_tool(self, name: str, function: Callable, description: str = "", replace: bool = False) -> None:
        """Register a Python callable as a tool.

        Args:
            name: Unique identifier for the tool
            function: Callable accepting the execution context plus keyword parameters
            description: Optional description of the tool's purpose
            replace: Overwrite an existing registration instead of failing

        Raises:
            ToolRegistryError: If the name is taken or the function is invalid
        """
        if not name or not name.strip():
            raise ToolRegistryError("Tool name cannot be empty", operation="register")
        name = name.strip()

        if not callable(function):
            raise ToolRegistryError(f"Tool '{name}' must be a callable function", tool_name=name, operation="register")

        try:
            signature = inspect.signature(function)
        except (ValueError, TypeError) as e:
            raise ToolRegistryError(
                f"Cannot inspect function signature for tool '{name}': {e}", tool_name=name, operation="register"
            ) from e
        if len(signature.parameters) == 0:
            raise ToolRegistryError(
                f"Tool '{name}' must accept the execution context", tool_name=name, operation="register"
            )

        with self._lock:
            if name in self._tools and not replace:
                raise ToolRegistryError(f"Tool '{name}' is already registered", tool_name=name, operation="register")
            self._tools[name] = ToolInfo(name=name, description=description.strip(), function=function)

        logger.info(f"Registered tool '{name}' from {function.__module__}.{getattr(function, '__name__', name)}")

    def get_tool(self, name: str) -> Callable:
        """Retrieve a registered tool by name.

        Raises:
            ToolRegistryError: If the tool is not registered
        """
        if not name or not name.strip():
            raise ToolRegistryError("Tool name cannot be empty", operation="get")
        with self._lock:
            info = self._tools.get(name.strip())
        if info is None:
            raise ToolRegistryError(f"Tool '{name}' is not registered", tool_name=name, operation="get")
        return info.function

    def tool_exists(self, name: str) -> bool:
        with self._lock:
            return name.strip() in self._tools if name else False

    def list_tools(self) -> List[Dict[str, str]]:
        with self._lock:
            return [{"name": info.name, "description": info.description} for info in self._tools.values()]

    def unregister_tool(self, name: str) -> bool:
        with self._lock:
            return self._tools.pop(name, None) is not None
