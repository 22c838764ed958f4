"""Core Pydantic models for workflow graphs and run state."""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow run statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeType(str, Enum):
    """Closed set of node type tags."""
    START = "start"
    AGENT = "agent"
    TOOL = "tool"
    MCP = "mcp"
    CONDITION = "condition"
    END = "end"


class CamelModel(BaseModel):
    """Base for payloads stored and exchanged in camelCase."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Position(CamelModel):
    x: float = 0.0
    y: float = 0.0


# Per-type configuration variants

class StartField(CamelModel):
    """A declared input field of the start node."""
    name: str = Field(..., description="Variable name the value is stored under")
    type: str = Field(default="text", description="Input widget type")
    label: Optional[str] = Field(None, description="Display label")
    required: bool = Field(default=False, description="Whether the run payload must provide it")


class StartConfig(CamelModel):
    fields: List[StartField] = Field(default_factory=list)


class AgentConfig(CamelModel):
    provider: Optional[str] = Field(None, description="LLM provider name")
    model: Optional[str] = Field(None, description="Model identifier passed to the agent runner")
    system_prompt: str = Field(default="", alias="systemPrompt", description="System prompt template")
    user_prompt: Optional[str] = Field(
        None, alias="userPrompt",
        description="User turn template; defaults to the previous node's output"
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, alias="maxTokens", gt=0)
    parse_json: bool = Field(
        default=True, alias="parseJson",
        description="Decode a JSON reply and merge object keys into run variables"
    )


class ToolConfig(CamelModel):
    tool_name: str = Field(..., alias="toolName", description="Registered tool to invoke")
    provider: Optional[str] = Field(None, description="Informational provider tag")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Templated tool parameters")

    @field_validator('tool_name')
    @classmethod
    def validate_tool_name(cls, tool_name):
        """Ensure tool name is not blank."""
        if not tool_name or not tool_name.strip():
            raise ValueError("Tool name cannot be empty")
        return tool_name.strip()


class ConditionConfig(CamelModel):
    condition: str = Field(..., description="Boolean expression over run variables")

    @field_validator('condition')
    @classmethod
    def validate_condition(cls, condition):
        """Ensure the expression is not blank."""
        if not condition or not condition.strip():
            raise ValueError("Condition expression cannot be empty")
        return condition.strip()


class EndOutput(CamelModel):
    name: str
    type: Optional[str] = None
    format: Optional[str] = None


class EndConfig(CamelModel):
    outputs: List[EndOutput] = Field(default_factory=list)


class NodeData(CamelModel):
    """Fields shared by every node's data payload."""
    label: str = Field(default="", description="Display label")
    description: Optional[str] = Field(None, description="Display description")
    output_variable: Optional[str] = Field(
        None, alias="outputVariable",
        description="Run variable that receives this node's result"
    )


class StartNodeData(NodeData):
    config: StartConfig = Field(default_factory=StartConfig)


class AgentNodeData(NodeData):
    config: AgentConfig = Field(default_factory=AgentConfig)


class ToolNodeData(NodeData):
    config: ToolConfig


class ConditionNodeData(NodeData):
    config: ConditionConfig


class EndNodeData(NodeData):
    config: EndConfig = Field(default_factory=EndConfig)


_NODE_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.:-]+$')


class BaseNode(CamelModel):
    """Common node fields; position is cosmetic."""
    id: str = Field(..., description="Unique identifier for the node")
    position: Position = Field(default_factory=Position)

    @field_validator('id')
    @classmethod
    def validate_id_format(cls, id_value):
        """Ensure node ID follows valid format."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        if not _NODE_ID_PATTERN.match(id_value.strip()):
            raise ValueError("Node ID must contain only alphanumeric characters, '_', '-', '.' and ':'")
        return id_value.strip()


class StartNode(BaseNode):
    type: Literal["start"] = "start"
    data: StartNodeData = Field(default_factory=StartNodeData)


class AgentNode(BaseNode):
    type: Literal["agent"] = "agent"
    data: AgentNodeData = Field(default_factory=AgentNodeData)


class ToolNode(BaseNode):
    type: Literal["tool"] = "tool"
    data: ToolNodeData


class McpNode(BaseNode):
    type: Literal["mcp"] = "mcp"
    data: ToolNodeData


class ConditionNode(BaseNode):
    type: Literal["condition"] = "condition"
    data: ConditionNodeData


class EndNode(BaseNode):
    type: Literal["end"] = "end"
    data: EndNodeData = Field(default_factory=EndNodeData)


Node = Annotated[
    Union[StartNode, AgentNode, ToolNode, McpNode, ConditionNode, EndNode],
    Field(discriminator="type"),
]


class Edge(CamelModel):
    """Directed edge between two nodes."""
    id: str = Field(..., description="Edge identifier")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    label: Optional[str] = Field(
        None, validation_alias=AliasChoices("label", "sourceHandle"),
        description="Branch label ('true'/'false') for edges leaving a condition node"
    )
    animated: bool = Field(default=False, description="Cosmetic animation flag")

    @field_validator('label')
    @classmethod
    def normalize_label(cls, label):
        """Branch labels are compared case-insensitively."""
        if label is None:
            return None
        label = str(label).strip().lower()
        return label or None


class Workflow(CamelModel):
    """A persisted workflow graph."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=datetime.utcnow, alias="updatedAt")

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("All node IDs must be unique")
        return nodes

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        """Ensure workflow name is not empty."""
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    def node_by_id(self, node_id: str):
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class ChatMessage(CamelModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ExecutionState(CamelModel):
    """Mutable state for one run; discarded when the run ends."""
    variables: Dict[str, Any] = Field(default_factory=dict)
    last_output: Any = Field(default=None, alias="lastOutput")
    chat_history: List[ChatMessage] = Field(default_factory=list, alias="chatHistory")


class NodeResult(CamelModel):
    node_id: str = Field(..., alias="nodeId")
    node_type: NodeType = Field(..., alias="nodeType")
    output: Any = None
    duration: float = Field(default=0.0, description="Handler wall time in seconds")
    branch: Optional[str] = Field(None, description="Branch taken by a condition node")


class RunResult(CamelModel):
    """Structured summary of a finished (or failed) run."""
    run_id: str = Field(..., alias="runId")
    workflow_id: str = Field(..., alias="workflowId")
    status: ExecutionStatusEnum
    execution_path: List[str] = Field(default_factory=list, alias="executionPath")
    node_results: List[NodeResult] = Field(default_factory=list, alias="nodeResults")
    last_output: Any = Field(default=None, alias="lastOutput")
    variables: Dict[str, Any] = Field(default_factory=dict)
    chat_history: List[ChatMessage] = Field(default_factory=list, alias="chatHistory")
    removed_edge_count: int = Field(default=0, alias="removedEdgeCount")
    error: Optional[Dict[str, Any]] = Field(None, description="Error payload when the run failed")
    started_at: datetime = Field(default_factory=datetime.utcnow, alias="startedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
