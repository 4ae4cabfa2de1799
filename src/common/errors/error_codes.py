"""Canonical error taxonomy for agent, workflow and queue execution."""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Coarse error categories used for retry and reporting decisions."""

    CONFIGURATION = "configuration"
    POLICY = "policy"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class ErrorCode(str, Enum):
    """Bounded canonical error codes for external contracts and observability."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    WORKFLOW_CYCLE = "WORKFLOW_CYCLE"
    EXECUTOR_NOT_FOUND = "EXECUTOR_NOT_FOUND"
    COST_LIMIT_EXCEEDED = "COST_LIMIT_EXCEEDED"
    SAFE_MODE_BLOCKED = "SAFE_MODE_BLOCKED"
    NODE_EXECUTION_FAILED = "NODE_EXECUTION_FAILED"
    TRANSIENT_ERROR = "TRANSIENT_ERROR"
    EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"
    EXECUTION_CANCELLED = "EXECUTION_CANCELLED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_RESUME_STATE = "INVALID_RESUME_STATE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_CODE_TO_CATEGORY: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.CONFIGURATION_ERROR: ErrorCategory.CONFIGURATION,
    ErrorCode.WORKFLOW_CYCLE: ErrorCategory.CONFIGURATION,
    ErrorCode.EXECUTOR_NOT_FOUND: ErrorCategory.CONFIGURATION,
    ErrorCode.COST_LIMIT_EXCEEDED: ErrorCategory.POLICY,
    ErrorCode.SAFE_MODE_BLOCKED: ErrorCategory.POLICY,
    ErrorCode.NODE_EXECUTION_FAILED: ErrorCategory.TRANSIENT,
    ErrorCode.TRANSIENT_ERROR: ErrorCategory.TRANSIENT,
    ErrorCode.EXECUTION_TIMEOUT: ErrorCategory.TIMEOUT,
    ErrorCode.EXECUTION_CANCELLED: ErrorCategory.CANCELLED,
    ErrorCode.NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.INVALID_RESUME_STATE: ErrorCategory.CONFIGURATION,
    ErrorCode.INTERNAL_ERROR: ErrorCategory.INTERNAL,
}

_RETRYABLE_CATEGORIES = frozenset({ErrorCategory.TRANSIENT, ErrorCategory.TIMEOUT})


def category_for_code(code: str | ErrorCode | None) -> ErrorCategory:
    """Resolve the category for a code-like value, defaulting to internal."""
    if code is None:
        return ErrorCategory.INTERNAL
    try:
        return _CODE_TO_CATEGORY[ErrorCode(code)]
    except (ValueError, KeyError):
        return ErrorCategory.INTERNAL


def is_retryable_category(category: str | ErrorCategory | None) -> bool:
    """Return True when errors in this category are worth another attempt."""
    if category is None:
        return False
    try:
        return ErrorCategory(category) in _RETRYABLE_CATEGORIES
    except ValueError:
        return False
