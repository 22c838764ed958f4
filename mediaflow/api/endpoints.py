"""FastAPI REST endpoints for the media workflow engine."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import Field

from ..core.exceptions import (
    ConfigurationError,
    GraphError,
    RunNotFoundError,
    WorkflowEngineError,
    WorkflowNotFoundError,
    create_error_response,
)
from ..core.execution_engine import ExecutionEngine
from ..core.graph_store import GraphStore, WorkflowAutosaver
from ..core.logging import get_logger
from ..models.core import CamelModel, Edge, Node, RunResult, Workflow

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized by the application factory)
_graph_store: Optional[GraphStore] = None
_execution_engine: Optional[ExecutionEngine] = None
_autosaver: Optional[WorkflowAutosaver] = None


def init_dependencies(graph_store: GraphStore, execution_engine: ExecutionEngine,
                      autosaver: Optional[WorkflowAutosaver] = None):
    """Initialize the global dependencies."""
    global _graph_store, _execution_engine, _autosaver
    _graph_store = graph_store
    _execution_engine = execution_engine
    _autosaver = autosaver or WorkflowAutosaver(graph_store)


def get_graph_store() -> GraphStore:
    """Dependency to get the graph store."""
    if _graph_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Graph store not initialized"
        )
    return _graph_store


def get_execution_engine() -> ExecutionEngine:
    """Dependency to get execution engine."""
    if _execution_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution engine not initialized"
        )
    return _execution_engine


def get_autosaver() -> WorkflowAutosaver:
    if _autosaver is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow autosaver not initialized"
        )
    return _autosaver


def _http_error(error: WorkflowEngineError) -> HTTPException:
    """Map an engine error onto an HTTP status with a structured body."""
    if isinstance(error, (WorkflowNotFoundError, RunNotFoundError)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, (ConfigurationError, GraphError)):
        status_code = status.HTTP_400_BAD_REQUEST
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail=create_error_response(error))


def _internal_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"Unexpected error while {action}: {error}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while {action}",
            "details": {"original_error": str(error)},
            "timestamp": datetime.utcnow().isoformat()
        }
    )


def _validation_error(error: ValueError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"error": "ValidationError", "message": str(error)}
    )


# Request/Response models
class SaveWorkflowRequest(CamelModel):
    """Workflow as sent by the editor; a missing ID creates a new workflow."""
    id: Optional[str] = Field(None, description="Existing workflow ID to overwrite")
    name: str = Field(..., description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)


def _to_workflow(request: SaveWorkflowRequest, workflow_id: str) -> Workflow:
    return Workflow(
        id=workflow_id,
        name=request.name,
        description=request.description,
        nodes=request.nodes,
        edges=request.edges,
    )


class SaveWorkflowResponse(CamelModel):
    workflow_id: str = Field(..., alias="workflowId")
    message: str


class RunWorkflowRequest(CamelModel):
    payload: Dict[str, Any] = Field(default_factory=dict, description="Input handed to the start node")


class RunWorkflowResponse(CamelModel):
    run_id: str = Field(..., alias="runId")
    status: str = Field(default="pending")
    message: str


# Endpoints

@router.get(
    "/workflows",
    response_model=List[Workflow],
    summary="List workflows",
    description="List stored workflows, most recently updated first"
)
async def list_workflows(graph_store: GraphStore = Depends(get_graph_store)) -> List[Workflow]:
    try:
        return graph_store.list()
    except WorkflowEngineError as e:
        logger.warning(f"Workflow engine error while listing workflows: {e}")
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("listing workflows", e)


@router.get(
    "/workflows/{workflow_id}",
    response_model=Workflow,
    summary="Get a workflow",
)
async def get_workflow(workflow_id: str, graph_store: GraphStore = Depends(get_graph_store)) -> Workflow:
    try:
        return graph_store.load(workflow_id)
    except WorkflowEngineError as e:
        logger.warning(f"Could not load workflow {workflow_id}: {e}")
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("retrieving workflow", e)


@router.post(
    "/workflows",
    response_model=SaveWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create or overwrite a workflow",
    description="Saves are last-write-wins"
)
async def save_workflow(
    request: SaveWorkflowRequest,
    graph_store: GraphStore = Depends(get_graph_store),
    autosaver: WorkflowAutosaver = Depends(get_autosaver)
) -> SaveWorkflowResponse:
    """
    Save a workflow definition immediately.

    A pending autosave of the same workflow is dropped so it cannot
    overwrite this save later.

    Raises:
        HTTPException: If the workflow is invalid or cannot be stored
    """
    try:
        workflow = _to_workflow(request, request.id or str(uuid.uuid4()))
        autosaver.discard(workflow.id)
        workflow_id = graph_store.save(workflow)
        return SaveWorkflowResponse(
            workflow_id=workflow_id,
            message=f"Workflow '{workflow.name}' saved successfully"
        )
    except ValueError as e:
        raise _validation_error(e)
    except WorkflowEngineError as e:
        logger.warning(f"Workflow engine error while saving workflow: {e}")
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("saving workflow", e)


@router.put(
    "/workflows/{workflow_id}",
    response_model=SaveWorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Autosave a workflow",
    description="Schedules a debounced save; rapid edits collapse into one write of the latest version"
)
async def autosave_workflow(
    workflow_id: str,
    request: SaveWorkflowRequest,
    autosaver: WorkflowAutosaver = Depends(get_autosaver)
) -> SaveWorkflowResponse:
    try:
        workflow = _to_workflow(request, workflow_id)
    except ValueError as e:
        raise _validation_error(e)
    autosaver.schedule(workflow)
    return SaveWorkflowResponse(workflow_id=workflow_id, message="Save scheduled")


@router.delete(
    "/workflows/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workflow",
)
async def delete_workflow(
    workflow_id: str,
    graph_store: GraphStore = Depends(get_graph_store),
    autosaver: WorkflowAutosaver = Depends(get_autosaver)
):
    try:
        autosaver.discard(workflow_id)
        deleted = graph_store.delete(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("deleting workflow", e)

    if not deleted:
        logger.warning(f"Workflow not found for deletion: {workflow_id}")
        raise _http_error(WorkflowNotFoundError(workflow_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/workflows/{workflow_id}/runs",
    response_model=RunWorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run a workflow",
    description="Start a background run; poll /runs/{run_id} for the outcome"
)
async def run_workflow(
    workflow_id: str,
    request: Optional[RunWorkflowRequest] = None,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> RunWorkflowResponse:
    try:
        payload = request.payload if request else {}
        run_id = execution_engine.submit(workflow_id, payload)
        logger.info(f"Started run {run_id} for workflow {workflow_id}")
        return RunWorkflowResponse(run_id=run_id, message="Workflow run started")
    except WorkflowEngineError as e:
        logger.warning(f"Could not start workflow {workflow_id}: {e}")
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("starting workflow run", e)


@router.get(
    "/runs/{run_id}",
    response_model=RunResult,
    summary="Get run status",
    description="Status and, once finished, the structured run summary"
)
async def get_run(run_id: str, execution_engine: ExecutionEngine = Depends(get_execution_engine)) -> RunResult:
    try:
        return execution_engine.get_run(run_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("retrieving run status", e)
