"""Exception hierarchy for the media workflow engine.

Two families matter to callers:

* Fatal errors (``ConfigurationError``, ``GraphError``, ``NodeExecutionError``)
  stop a run and are reported on the run record.
* Item errors (``ProviderError`` and its subclasses, ``TransientError``) are
  absorbed by the batch executors and become failed media results.

Each class carries its default severity, category and recoverability as
class attributes; constructor keyword arguments override them per instance.
"""

import traceback
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    PROVIDER = "provider"
    MEDIA = "media"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    default_severity = ErrorSeverity.MEDIUM
    default_category = ErrorCategory.EXECUTION
    default_recoverable = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        category: Optional[ErrorCategory] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity or self.default_severity
        self.category = category or self.default_category
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self.retry_after = retry_after
        self.details = dict(details or {})
        self.context = dict(context or {})
        self.timestamp = datetime.utcnow()
        self.traceback_info = traceback.format_stack()

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form stored on failed run records."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Merge non-empty values into ``context``; returns self for chaining."""
        self.context.update({key: value for key, value in kwargs.items() if value is not None})
        return self

    def add_details(self, **kwargs):
        self.details.update({key: value for key, value in kwargs.items() if value is not None})
        return self


class ConfigurationError(WorkflowEngineError):
    """Missing credentials, unknown models or tools, invalid node configuration.

    Always fatal for the run.
    """

    default_severity = ErrorSeverity.HIGH
    default_category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(config_key=config_key)


class ToolRegistryError(ConfigurationError):
    """A tool is missing, duplicated or not callable."""

    default_severity = ErrorSeverity.MEDIUM

    def __init__(self, message: str, tool_name: Optional[str] = None,
                 operation: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(tool_name=tool_name, operation=operation)


class GraphError(WorkflowEngineError):
    """The graph cannot be routed: no start node, ambiguous or missing edges, cycles."""

    default_severity = ErrorSeverity.HIGH
    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        validation_errors: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.validation_errors = validation_errors or []
        self.add_context(node_id=node_id, workflow_id=workflow_id)
        if self.validation_errors:
            self.add_details(validation_errors=self.validation_errors)


class NodeExecutionError(WorkflowEngineError):
    """A node handler raised something that is not already an engine error."""

    default_severity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        run_id: Optional[str] = None,
        execution_time: Optional[float] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.add_context(node_id=node_id, run_id=run_id)
        if execution_time:
            self.add_details(execution_time=round(execution_time, 3))


class ProviderError(WorkflowEngineError):
    """A generative-media provider rejected or failed a request.

    Only ``message`` is inspected by the batch executors.
    """

    default_category = ErrorCategory.PROVIDER

    def __init__(self, message: str, provider: Optional[str] = None,
                 status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.add_context(provider=provider)
        self.add_details(status_code=status_code)


class RateLimitError(ProviderError):
    """The provider signalled throttling (HTTP 429)."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)


class TransientError(WorkflowEngineError):
    """Timeouts, dropped connections and 5xx responses; retried with backoff."""

    default_category = ErrorCategory.NETWORK
    default_recoverable = True


class StitchError(WorkflowEngineError):
    """Clip concatenation failed. Reported on the batch, never fatal."""

    default_severity = ErrorSeverity.LOW
    default_category = ErrorCategory.MEDIA

    def __init__(self, message: str, return_code: Optional[int] = None,
                 output_tail: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_details(return_code=return_code, output_tail=output_tail or None)


class StorageError(WorkflowEngineError):
    """Workflow persistence failed."""

    default_severity = ErrorSeverity.HIGH
    default_category = ErrorCategory.STORAGE

    def __init__(self, message: str, operation: Optional[str] = None,
                 table: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(operation=operation, table=table)


class WorkflowNotFoundError(StorageError):
    default_severity = ErrorSeverity.LOW

    def __init__(self, workflow_id: str, **kwargs):
        super().__init__(f"Workflow '{workflow_id}' not found", operation="load", table="workflows", **kwargs)
        self.workflow_id = workflow_id
        self.add_context(workflow_id=workflow_id)


class RunNotFoundError(WorkflowEngineError):
    default_severity = ErrorSeverity.LOW
    default_category = ErrorCategory.VALIDATION

    def __init__(self, run_id: str, **kwargs):
        super().__init__(f"Run '{run_id}' not found", **kwargs)
        self.add_context(run_id=run_id)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Shape an engine error as an HTTP error body."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
