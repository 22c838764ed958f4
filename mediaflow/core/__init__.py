"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    ConfigurationError,
    ToolRegistryError,
    GraphError,
    NodeExecutionError,
    ProviderError,
    RateLimitError,
    TransientError,
    StitchError,
    StorageError,
    WorkflowNotFoundError,
    RunNotFoundError,
)
from .logging import setup_logging, get_logger
from .tool_registry import ToolRegistry

__all__ = [
    "WorkflowEngineError",
    "ConfigurationError",
    "ToolRegistryError",
    "GraphError",
    "NodeExecutionError",
    "ProviderError",
    "RateLimitError",
    "TransientError",
    "StitchError",
    "StorageError",
    "WorkflowNotFoundError",
    "RunNotFoundError",
    "setup_logging",
    "get_logger",
    "ToolRegistry",
]
