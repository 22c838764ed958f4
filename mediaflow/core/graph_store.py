"""Workflow persistence and debounced auto-save."""

import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models.core import Workflow
from ..storage.models import WorkflowModel
from .edge_validator import EdgeValidator
from .exceptions import GraphError, StorageError, WorkflowEngineError, WorkflowNotFoundError
from .logging import get_logger

logger = get_logger(__name__)


class GraphStore:
    """Loads and saves workflows. Saves are last-write-wins."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    def load(self, workflow_id: str) -> Workflow:
        """
        Retrieve a workflow by its ID.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID
            StorageError: If the stored record cannot be read
        """
        session = self._session()
        try:
            record = session.get(WorkflowModel, workflow_id)
            if record is None:
                raise WorkflowNotFoundError(workflow_id)
            return self._to_workflow(record)
        except SQLAlchemyError as e:
            logger.error(f"Database error while loading workflow {workflow_id}: {e}")
            raise StorageError(f"Failed to load workflow: {e}", operation="load", table="workflows") from e
        finally:
            session.close()

    def save(self, workflow: Workflow) -> str:
        """Insert or overwrite ``workflow`` and return its ID."""
        definition = workflow.model_dump(by_alias=True, mode="json", include={"nodes", "edges"})
        session = self._session()
        try:
            record = session.get(WorkflowModel, workflow.id)
            now = datetime.utcnow()
            if record is None:
                record = WorkflowModel(id=workflow.id, created_at=workflow.created_at or now)
                session.add(record)
            record.name = workflow.name
            record.description = workflow.description
            record.definition = definition
            record.updated_at = now
            session.commit()
            logger.info(f"Saved workflow '{workflow.name}' ({workflow.id})")
            return workflow.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error while saving workflow {workflow.id}: {e}")
            raise StorageError(f"Failed to save workflow: {e}", operation="save", table="workflows") from e
        finally:
            session.close()

    def list(self) -> List[Workflow]:
        session = self._session()
        try:
            records = session.query(WorkflowModel).order_by(WorkflowModel.updated_at.desc()).all()
            return [self._to_workflow(record) for record in records]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list workflows: {e}", operation="list", table="workflows") from e
        finally:
            session.close()

    def delete(self, workflow_id: str) -> bool:
        session = self._session()
        try:
            deleted = session.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).delete()
            session.commit()
            if deleted:
                logger.info(f"Deleted workflow {workflow_id}")
            return bool(deleted)
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Failed to delete workflow: {e}", operation="delete", table="workflows") from e
        finally:
            session.close()

    @staticmethod
    def _to_workflow(record: WorkflowModel) -> Workflow:
        definition = record.definition or {}
        try:
            return Workflow(
                id=record.id,
                name=record.name,
                description=record.description or "",
                nodes=definition.get("nodes", []),
                edges=definition.get("edges", []),
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
        except ValidationError as e:
            raise GraphError(
                f"Stored workflow {record.id} is malformed",
                workflow_id=record.id,
                validation_errors=[err["msg"] for err in e.errors()],
            ) from e


class DebouncedWorkflowSaver:
    """Coalesces rapid edits into one save after ``delay`` seconds of quiet.

    Only the most recently scheduled workflow is written. Dangling edges are
    dropped before saving.
    """

    def __init__(
        self,
        store: GraphStore,
        delay: float = 1.0,
        edge_validator: Optional[EdgeValidator] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.store = store
        self.delay = delay
        self.edge_validator = edge_validator or EdgeValidator()
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._pending: Optional[Workflow] = None
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> Optional[Workflow]:
        return self._pending

    def schedule(self, workflow: Workflow) -> None:
        with self._lock:
            self._pending = workflow
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._timer_factory(self.delay, self._flush_on_timer)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> Optional[str]:
        """Write the pending workflow now, if any."""
        with self._lock:
            workflow = self._pending
            self._pending = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if workflow is None:
            return None

        cleaned = self.edge_validator.clean(workflow.nodes, workflow.edges)
        if cleaned.removed_count:
            workflow = workflow.model_copy(update={"edges": cleaned.edges})
        return self.store.save(workflow)

    def _flush_on_timer(self) -> None:
        try:
            self.flush()
        except WorkflowEngineError as e:
            logger.error(f"Autosave failed: {e.message}", extra={"extra_fields": {"error_code": e.error_code}})

    def cancel(self) -> None:
        with self._lock:
            self._pending = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class WorkflowAutosaver:
    """One debounced saver per workflow ID, so edits to different workflows never clobber each other."""

    def __init__(self, store: GraphStore, delay: float = 1.0, **saver_options):
        self.store = store
        self.delay = delay
        self._saver_options = saver_options
        self._savers: Dict[str, DebouncedWorkflowSaver] = {}
        self._lock = threading.Lock()

    def schedule(self, workflow: Workflow) -> None:
        with self._lock:
            saver = self._savers.get(workflow.id)
            if saver is None:
                saver = DebouncedWorkflowSaver(self.store, self.delay, **self._saver_options)
                self._savers[workflow.id] = saver
        saver.schedule(workflow)

    def flush(self, workflow_id: str) -> Optional[str]:
        with self._lock:
            saver = self._savers.get(workflow_id)
        return saver.flush() if saver else None

    def discard(self, workflow_id: str) -> None:
        """Drop any pending write for a workflow that is being deleted."""
        with self._lock:
            saver = self._savers.pop(workflow_id, None)
        if saver:
            saver.cancel()

    def flush_all(self) -> List[str]:
        with self._lock:
            savers = list(self._savers.values())
        saved = []
        for saver in savers:
            workflow_id = saver.flush()
            if workflow_id:
                saved.append(workflow_id)
        if saved:
            logger.info(f"Flushed {len(saved)} pending workflow saves")
        return saved
