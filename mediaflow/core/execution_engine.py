"""Execution Engine for workflow graphs."""

import json
import re
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.core import (
    AgentNode, ChatMessage, ConditionNode, Edge, EndNode, ExecutionState,
    ExecutionStatusEnum, NodeResult, NodeType, RunResult, StartNode, Workflow,
)
from .agent_runner import AgentRequest, AgentRunner
from .conditions import evaluate_condition
from .edge_validator import EdgeValidator
from .exceptions import (
    ConfigurationError, GraphError, NodeExecutionError, RunNotFoundError,
    WorkflowEngineError,
)
from .graph_store import GraphStore
from .logging import clear_logging_context, get_logger, set_logging_context
from .templates import render_template, render_value
from .tool_registry import ToolRegistry

logger = get_logger(__name__)

_JSON_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL | re.IGNORECASE)


class ExecutionContext:
    """Context for node execution containing state, tools and shared services."""

    def __init__(self, state: ExecutionState, tool_registry: ToolRegistry, run_id: str,
                 workflow_id: Optional[str] = None, services: Any = None):
        self.state = state
        self.tool_registry = tool_registry
        self.run_id = run_id
        self.workflow_id = workflow_id
        self.services = services

    def template_variables(self) -> Dict[str, Any]:
        """Variables visible to ``{{...}}`` placeholders."""
        return {**self.state.variables, "lastOutput": self.state.last_output}


def parse_agent_reply(text: str) -> Any:
    """Decode a JSON reply, tolerating a surrounding code fence; return ``text`` otherwise."""
    candidate = text.strip()
    fenced = _JSON_FENCE.match(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    try:
        return json.loads(candidate)
    except ValueError:
        return text


class ExecutionEngine:
    """Walks workflow graphs node by node.

    Runs are linear chains with binary branches: every non-condition node has
    at most one outgoing edge, and condition nodes choose between edges
    labelled ``true`` and ``false``.
    """

    def __init__(
        self,
        tool_registry: ToolRegistry,
        graph_store: Optional[GraphStore] = None,
        agent_runner: Optional[AgentRunner] = None,
        edge_validator: Optional[EdgeValidator] = None,
        services: Any = None,
        max_concurrent_executions: int = 4,
        max_run_steps: int = 1000,
    ):
        """Initialize the execution engine.

        Args:
            tool_registry: Registry for tools invoked by tool and mcp nodes
            graph_store: Store used to load workflows for background runs
            agent_runner: Runner for agent nodes; agent nodes fail without one
            edge_validator: Pre-run topology cleanup
            services: Shared collaborators handed to tools through the context
            max_concurrent_executions: Size of the background run thread pool
            max_run_steps: Node executions allowed per run before aborting
        """
        self.tool_registry = tool_registry
        self.graph_store = graph_store
        self.agent_runner = agent_runner
        self.edge_validator = edge_validator or EdgeValidator()
        self.services = services
        self.max_run_steps = max_run_steps

        self._handlers: Dict[NodeType, Callable] = {
            NodeType.START: self._handle_start,
            NodeType.AGENT: self._handle_agent,
            NodeType.TOOL: self._handle_tool,
            NodeType.MCP: self._handle_tool,
            NodeType.CONDITION: self._handle_condition,
            NodeType.END: self._handle_end,
        }

        self._runs: Dict[str, RunResult] = {}
        self._futures: Dict[str, Future] = {}
        self._runs_lock = threading.RLock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_executions, thread_name_prefix="mediaflow-run"
        )

        logger.info(f"ExecutionEngine initialized with max_concurrent_executions={max_concurrent_executions}")

    # Public API

    def execute(self, workflow: Workflow, payload: Optional[Dict[str, Any]] = None,
                run_id: Optional[str] = None) -> RunResult:
        """
        Execute ``workflow`` synchronously on the calling thread.

        Args:
            workflow: Workflow to run
            payload: Input payload handed to the start node
            run_id: Optional pre-allocated run ID

        Returns:
            Completed run summary

        Raises:
            ConfigurationError: Missing credentials, unknown tools or bad node config
            GraphError: Missing start node, ambiguous routing or step limit exceeded
            NodeExecutionError: A node handler failed
        """
        run_id = run_id or str(uuid.uuid4())
        started_at = datetime.utcnow()

        cleaned = self.edge_validator.clean(workflow.nodes, workflow.edges)
        edges = cleaned.edges if cleaned.removed_count > 0 else list(workflow.edges)

        context = ExecutionContext(
            ExecutionState(), self.tool_registry, run_id,
            workflow_id=workflow.id, services=self.services,
        )
        execution_path: List[str] = []
        node_results: List[NodeResult] = []

        current = self._find_start_node(workflow)
        steps = 0
        logger.info(f"Starting run {run_id} for workflow '{workflow.name}' ({workflow.id})")

        while current is not None:
            steps += 1
            if steps > self.max_run_steps:
                raise GraphError(
                    f"Run exceeded {self.max_run_steps} steps; the graph likely contains a cycle",
                    node_id=current.id, workflow_id=workflow.id,
                )

            execution_path.append(current.id)
            result = self._execute_node(current, context, payload or {})
            node_results.append(result)

            if isinstance(current, EndNode):
                break
            current = self._get_next_node(workflow, edges, current, result.branch)

        logger.info(f"Run {run_id} completed after {steps} step(s)")
        return RunResult(
            run_id=run_id,
            workflow_id=workflow.id,
            status=ExecutionStatusEnum.COMPLETED,
            execution_path=execution_path,
            node_results=node_results,
            last_output=context.state.last_output,
            variables=context.state.variables,
            chat_history=context.state.chat_history,
            removed_edge_count=cleaned.removed_count,
            started_at=started_at,
            completed_at=datetime.utcnow(),
        )

    def submit(self, workflow_id: str, payload: Optional[Dict[str, Any]] = None) -> str:
        """
        Load a stored workflow and run it on the background thread pool.

        Returns:
            Run ID for polling with ``get_run``

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        if self.graph_store is None:
            raise ConfigurationError("ExecutionEngine has no graph store for background runs")
        workflow = self.graph_store.load(workflow_id)

        run_id = str(uuid.uuid4())
        with self._runs_lock:
            self._runs[run_id] = RunResult(
                run_id=run_id, workflow_id=workflow.id, status=ExecutionStatusEnum.PENDING
            )
            self._futures[run_id] = self._executor.submit(
                self._run_in_background, run_id, workflow, dict(payload or {})
            )
        logger.info(f"Queued run {run_id} for workflow {workflow_id}")
        return run_id

    def get_run(self, run_id: str) -> RunResult:
        """Return the latest known summary of a run.

        Raises:
            RunNotFoundError: If the run ID is unknown
        """
        with self._runs_lock:
            run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def wait(self, run_id: str, timeout: Optional[float] = None) -> RunResult:
        """Block until a background run finishes and return its summary."""
        with self._runs_lock:
            future = self._futures.get(run_id)
        if future is None:
            raise RunNotFoundError(run_id)
        future.result(timeout=timeout)
        return self.get_run(run_id)

    def shutdown(self, wait: bool = True) -> None:
        """Shut down the execution engine and clean up resources."""
        logger.info("Shutting down ExecutionEngine")
        self._executor.shutdown(wait=wait)
        logger.info("ExecutionEngine shutdown complete")

    # Background runs

    def _run_in_background(self, run_id: str, workflow: Workflow, payload: Dict[str, Any]) -> None:
        set_logging_context(run_id=run_id, workflow_id=workflow.id)
        started_at = datetime.utcnow()
        self._store_run(run_id, status=ExecutionStatusEnum.RUNNING, started_at=started_at)
        try:
            result = self.execute(workflow, payload, run_id=run_id)
            with self._runs_lock:
                self._runs[run_id] = result.model_copy(update={"started_at": started_at})
        except WorkflowEngineError as e:
            logger.error(f"Run {run_id} failed: {e.message}")
            self._store_run(
                run_id, status=ExecutionStatusEnum.FAILED,
                error=e.to_dict(), completed_at=datetime.utcnow(),
            )
        except Exception as e:
            logger.exception(f"Run {run_id} failed unexpectedly")
            error = NodeExecutionError(f"Unexpected run failure: {e}", run_id=run_id)
            self._store_run(
                run_id, status=ExecutionStatusEnum.FAILED,
                error=error.to_dict(), completed_at=datetime.utcnow(),
            )
        finally:
            clear_logging_context()

    def _store_run(self, run_id: str, **update) -> None:
        with self._runs_lock:
            self._runs[run_id] = self._runs[run_id].model_copy(update=update)

    # Graph walking

    def _find_start_node(self, workflow: Workflow) -> StartNode:
        starts = [node for node in workflow.nodes if isinstance(node, StartNode)]
        if not starts:
            raise GraphError("Workflow has no start node", workflow_id=workflow.id)
        if len(starts) > 1:
            raise GraphError(
                f"Workflow has {len(starts)} start nodes; expected exactly one",
                workflow_id=workflow.id,
            )
        return starts[0]

    def _get_next_node(self, workflow: Workflow, edges: List[Edge], node, branch: Optional[str]):
        """
        Determine the next node to execute.

        Returns:
            The next node, or None when the current node has no outgoing edge
        """
        outgoing = [edge for edge in edges if edge.source == node.id]

        if isinstance(node, ConditionNode):
            matching = [edge for edge in outgoing if edge.label == branch]
            if not matching:
                raise GraphError(
                    f"Condition node {node.id} has no '{branch}' edge",
                    node_id=node.id, workflow_id=workflow.id,
                )
            if len(matching) > 1:
                raise GraphError(
                    f"Condition node {node.id} has {len(matching)} '{branch}' edges",
                    node_id=node.id, workflow_id=workflow.id,
                )
            target_id = matching[0].target
        else:
            if not outgoing:
                return None
            if len(outgoing) > 1:
                raise GraphError(
                    f"Node {node.id} has {len(outgoing)} outgoing edges; only condition nodes may branch",
                    node_id=node.id, workflow_id=workflow.id,
                )
            target_id = outgoing[0].target

        target = workflow.node_by_id(target_id)
        if target is None:
            raise GraphError(f"Edge target {target_id} not found", node_id=node.id, workflow_id=workflow.id)
        return target

    def _execute_node(self, node, context: ExecutionContext, payload: Dict[str, Any]) -> NodeResult:
        """
        Execute a single node and fold its result into the run state.

        Raises:
            WorkflowEngineError: Handler errors propagate unchanged
            NodeExecutionError: Wraps any other exception
        """
        node_type = NodeType(node.type)
        handler = self._handlers[node_type]
        started = time.monotonic()
        logger.debug(f"Executing {node_type.value} node {node.id}")

        try:
            if node_type is NodeType.START:
                output = handler(node, context, payload)
            else:
                output = handler(node, context)
        except WorkflowEngineError as e:
            e.add_context(node_id=node.id, run_id=context.run_id)
            raise
        except Exception as e:
            raise NodeExecutionError(
                f"Node {node.id} execution failed: {e}",
                node_id=node.id, run_id=context.run_id,
                execution_time=time.monotonic() - started,
            ) from e

        branch = None
        if node_type is NodeType.CONDITION:
            branch = "true" if output else "false"
        else:
            context.state.last_output = output

        if node.data.output_variable:
            context.state.variables[node.data.output_variable] = output

        duration = time.monotonic() - started
        logger.debug(f"Node {node.id} finished in {duration:.3f}s")
        return NodeResult(node_id=node.id, node_type=node_type, output=output, duration=duration, branch=branch)

    # Node handlers

    def _handle_start(self, node: StartNode, context: ExecutionContext, payload: Dict[str, Any]) -> Any:
        missing = [
            field.name for field in node.data.config.fields
            if field.required and payload.get(field.name) in (None, "")
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required input field(s): {', '.join(missing)}",
                config_key=missing[0],
            )
        context.state.variables.update(payload)
        return payload

    def _handle_agent(self, node: AgentNode, context: ExecutionContext) -> Any:
        if self.agent_runner is None:
            raise ConfigurationError(
                f"Agent node {node.id} requires an agent runner; set AGENT_API_KEY",
                config_key="AGENT_API_KEY",
            )
        config = node.data.config
        variables = context.template_variables()
        system_prompt = render_template(config.system_prompt, variables)

        if config.user_prompt:
            user_turn = render_template(config.user_prompt, variables)
        else:
            last_output = context.state.last_output
            user_turn = last_output if isinstance(last_output, str) else json.dumps(last_output, default=str)

        history = context.state.chat_history
        user_message = ChatMessage(role="user", content=user_turn)
        reply = self.agent_runner.run(AgentRequest(
            model=config.model,
            system_prompt=system_prompt,
            messages=[*history, user_message],
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        ))
        history.append(user_message)
        history.append(ChatMessage(role="assistant", content=reply))

        if not config.parse_json:
            return reply
        parsed = parse_agent_reply(reply)
        if isinstance(parsed, dict):
            context.state.variables.update(parsed)
        return parsed

    def _handle_tool(self, node, context: ExecutionContext) -> Any:
        config = node.data.config
        tool = self.tool_registry.get_tool(config.tool_name)
        parameters = render_value(config.parameters, context.template_variables())
        logger.info(f"Node {node.id} invoking tool '{config.tool_name}'")
        return tool(context, **parameters)

    def _handle_condition(self, node: ConditionNode, context: ExecutionContext) -> bool:
        result = evaluate_condition(node.data.config.condition, context.state.variables, node_id=node.id)
        logger.info(f"Condition node {node.id} evaluated to {result}")
        return result

    def _handle_end(self, node: EndNode, context: ExecutionContext) -> Any:
        return context.state.last_output
