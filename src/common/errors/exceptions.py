"""Typed exceptions raised across the execution boundary.

Each exception carries a canonical ``code`` and ``category`` as class attributes so
callers can classify failures without string matching. ``retryable`` drives the
execution queue: only transient and timeout failures are attempted again.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel, Field

from common.errors.error_codes import ErrorCategory, ErrorCode, is_retryable_category


class ExecutionError(Exception):
    """Base class for all runtime, workflow and queue errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    @property
    def retryable(self) -> bool:
        return is_retryable_category(self.category)


class ConfigurationError(ExecutionError):
    """The graph, registry or settings are invalid; retrying cannot help."""

    code = ErrorCode.CONFIGURATION_ERROR
    category = ErrorCategory.CONFIGURATION


class WorkflowCycleError(ConfigurationError):
    """The workflow graph contains a cycle and has no topological order."""

    code = ErrorCode.WORKFLOW_CYCLE

    def __init__(self, node_ids: Iterable[str]):
        self.node_ids = sorted(node_ids)
        super().__init__(
            f"Workflow contains a cycle involving nodes: {', '.join(self.node_ids)}",
            details={"node_ids": self.node_ids},
        )


class MissingExecutorError(ConfigurationError):
    """No executor is registered for a node type."""

    code = ErrorCode.EXECUTOR_NOT_FOUND

    def __init__(self, node_type: str, node_id: Optional[str] = None):
        self.node_type = node_type
        self.node_id = node_id
        where = f" (node '{node_id}')" if node_id else ""
        super().__init__(
            f"No executor found for node type: {node_type}{where}",
            details={"node_type": node_type, "node_id": node_id},
        )


class UnknownNodeTypeError(ConfigurationError):
    """A node declares a type outside the closed set of node types."""

    def __init__(self, node_type: str, node_id: Optional[str] = None):
        self.node_type = node_type
        self.node_id = node_id
        super().__init__(
            f"Unknown node type '{node_type}'" + (f" for node '{node_id}'" if node_id else ""),
            details={"node_type": node_type, "node_id": node_id},
        )


class PolicyError(ExecutionError):
    """A safety or budget policy rejected the operation."""

    category = ErrorCategory.POLICY


class CostLimitExceededError(PolicyError):
    """Monthly spend for the tenant reached its configured ceiling."""

    code = ErrorCode.COST_LIMIT_EXCEEDED

    def __init__(self, *, current_cost: float, limit: float, scope: str):
        self.current_cost = float(current_cost)
        self.limit = float(limit)
        self.scope = scope
        super().__init__(
            f"Monthly cost limit exceeded: ${self.current_cost:.2f} of ${self.limit:.2f}",
            details={"current_cost": self.current_cost, "limit": self.limit, "scope": scope},
        )


class SafeModeBlockedError(PolicyError):
    """A side-effecting tool was requested while safe mode is on."""

    code = ErrorCode.SAFE_MODE_BLOCKED

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(
            f"Tool '{tool_name}' is blocked in safe mode", details={"tool_name": tool_name}
        )


class TransientExecutionError(ExecutionError):
    """An external call failed in a way that may succeed on a later attempt."""

    code = ErrorCode.TRANSIENT_ERROR
    category = ErrorCategory.TRANSIENT


class NodeExecutionError(ExecutionError):
    """A workflow node executor raised; wraps the cause with node identity."""

    code = ErrorCode.NODE_EXECUTION_FAILED

    def __init__(self, node_id: str, node_type: str, cause: BaseException):
        self.node_id = node_id
        self.node_type = node_type
        self.cause = cause
        if isinstance(cause, ExecutionError):
            self.category = cause.category
        else:
            self.category = ErrorCategory.TRANSIENT
        super().__init__(
            f'Node "{node_type}" failed: {cause}',
            details={"node_id": node_id, "node_type": node_type},
        )


class ExecutionTimeoutError(ExecutionError):
    code = ErrorCode.EXECUTION_TIMEOUT
    category = ErrorCategory.TIMEOUT


class ExecutionCancelledError(ExecutionError):
    code = ErrorCode.EXECUTION_CANCELLED
    category = ErrorCategory.CANCELLED


class NotFoundError(ExecutionError):
    code = ErrorCode.NOT_FOUND
    category = ErrorCategory.NOT_FOUND


class ResumeStateError(ConfigurationError):
    """The execution is not in a state that can be resumed."""

    code = ErrorCode.INVALID_RESUME_STATE


class ErrorInfo(BaseModel):
    """Serializable error description attached to execution results."""

    code: ErrorCode
    category: ErrorCategory
    message: str
    retryable: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)


def error_info_from_exception(exc: BaseException) -> ErrorInfo:
    """Build an ``ErrorInfo`` from any exception, typed or not."""
    if isinstance(exc, ExecutionError):
        return ErrorInfo(
            code=exc.code,
            category=exc.category,
            message=exc.message,
            retryable=exc.retryable,
            details=exc.details,
        )
    return ErrorInfo(
        code=ErrorCode.INTERNAL_ERROR,
        category=ErrorCategory.INTERNAL,
        message=str(exc) or type(exc).__name__,
        retryable=False,
        details={"exception_type": type(exc).__name__},
    )
