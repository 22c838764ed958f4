"""Data models for the media workflow engine."""

from .core import (
    ExecutionStatusEnum,
    NodeType,
    StartNode,
    AgentNode,
    ToolNode,
    McpNode,
    ConditionNode,
    EndNode,
    Node,
    Edge,
    Workflow,
    ChatMessage,
    ExecutionState,
    NodeResult,
    RunResult,
)
from .media import (
    MediaKind,
    InputMode,
    StitchingStatus,
    WorkItem,
    MediaResult,
    FinalAsset,
    BatchResult,
    ImageGenerationOptions,
    VideoGenerationOptions,
    round_cost,
)

__all__ = [
    "ExecutionStatusEnum",
    "NodeType",
    "StartNode",
    "AgentNode",
    "ToolNode",
    "McpNode",
    "ConditionNode",
    "EndNode",
    "Node",
    "Edge",
    "Workflow",
    "ChatMessage",
    "ExecutionState",
    "NodeResult",
    "RunResult",
    "MediaKind",
    "InputMode",
    "StitchingStatus",
    "WorkItem",
    "MediaResult",
    "FinalAsset",
    "BatchResult",
    "ImageGenerationOptions",
    "VideoGenerationOptions",
    "round_cost",
]
