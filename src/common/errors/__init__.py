"""Common error taxonomy helpers."""

from common.errors.error_codes import (
    ErrorCategory,
    ErrorCode,
    category_for_code,
    is_retryable_category,
)
from common.errors.exceptions import (
    ConfigurationError,
    CostLimitExceededError,
    ErrorInfo,
    ExecutionCancelledError,
    ExecutionError,
    ExecutionTimeoutError,
    MissingExecutorError,
    NodeExecutionError,
    NotFoundError,
    PolicyError,
    ResumeStateError,
    SafeModeBlockedError,
    TransientExecutionError,
    UnknownNodeTypeError,
    WorkflowCycleError,
    error_info_from_exception,
)

__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "category_for_code",
    "is_retryable_category",
    "ConfigurationError",
    "CostLimitExceededError",
    "ErrorInfo",
    "ExecutionCancelledError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "MissingExecutorError",
    "NodeExecutionError",
    "NotFoundError",
    "PolicyError",
    "ResumeStateError",
    "SafeModeBlockedError",
    "TransientExecutionError",
    "UnknownNodeTypeError",
    "WorkflowCycleError",
    "error_info_from_exception",
]
