"""Tests for the execution error taxonomy."""

import pytest

from common.errors import (
    ConfigurationError,
    CostLimitExceededError,
    ErrorCategory,
    ErrorCode,
    ExecutionTimeoutError,
    MissingExecutorError,
    NodeExecutionError,
    SafeModeBlockedError,
    TransientExecutionError,
    WorkflowCycleError,
    category_for_code,
    error_info_from_exception,
    is_retryable_category,
)


@pytest.mark.parametrize(
    "category,expected",
    [
        (ErrorCategory.TRANSIENT, True),
        (ErrorCategory.TIMEOUT, True),
        (ErrorCategory.CONFIGURATION, False),
        (ErrorCategory.POLICY, False),
        ("not-a-category", False),
        (None, False),
    ],
)
def test_is_retryable_category(category, expected):
    """Only transient and timeout failures are retryable."""
    assert is_retryable_category(category) is expected


def test_category_for_unknown_code_is_internal():
    """Unknown codes fall back to the internal category."""
    assert category_for_code("SOMETHING_ELSE") == ErrorCategory.INTERNAL
    assert category_for_code(ErrorCode.WORKFLOW_CYCLE) == ErrorCategory.CONFIGURATION


def test_workflow_cycle_error_names_nodes():
    """Cycle errors list the offending nodes in sorted order."""
    exc = WorkflowCycleError(["c", "a", "b"])

    assert isinstance(exc, ConfigurationError)
    assert exc.code == ErrorCode.WORKFLOW_CYCLE
    assert exc.node_ids == ["a", "b", "c"]
    assert "a, b, c" in str(exc)
    assert exc.retryable is False


def test_missing_executor_message():
    """Missing executors are configuration errors naming the node type."""
    exc = MissingExecutorError("HTTP_REQUEST", "node-1")

    assert str(exc).startswith("No executor found for node type: HTTP_REQUEST")
    assert exc.details == {"node_type": "HTTP_REQUEST", "node_id": "node-1"}
    assert exc.category == ErrorCategory.CONFIGURATION


def test_policy_errors_are_not_retryable():
    """Cost and safe-mode rejections are policy errors."""
    cost = CostLimitExceededError(current_cost=120.5, limit=100, scope="user_id:u1")
    blocked = SafeModeBlockedError("send_email")

    assert cost.category == ErrorCategory.POLICY
    assert cost.details["limit"] == 100.0
    assert "$120.50" in cost.message
    assert blocked.code == ErrorCode.SAFE_MODE_BLOCKED
    assert not cost.retryable and not blocked.retryable


def test_node_execution_error_inherits_cause_category():
    """Node failures keep the category of a typed cause."""
    wrapped = NodeExecutionError("n1", "TOOL_ACTION", ConfigurationError("bad config"))
    transient = NodeExecutionError("n2", "HTTP_REQUEST", TransientExecutionError("502"))

    assert wrapped.category == ErrorCategory.CONFIGURATION
    assert wrapped.retryable is False
    assert transient.retryable is True
    assert str(wrapped) == 'Node "TOOL_ACTION" failed: bad config'


def test_node_execution_error_untyped_cause_is_transient():
    """Untyped exceptions from executors are assumed transient."""
    exc = NodeExecutionError("n1", "TRANSFORM", RuntimeError("boom"))

    assert exc.category == ErrorCategory.TRANSIENT
    assert exc.details == {"node_id": "n1", "node_type": "TRANSFORM"}


def test_error_info_from_typed_exception():
    """Typed errors keep their code, category and details."""
    info = error_info_from_exception(ExecutionTimeoutError("too slow", details={"ms": 50}))

    assert info.code == ErrorCode.EXECUTION_TIMEOUT
    assert info.category == ErrorCategory.TIMEOUT
    assert info.retryable is True
    assert info.details == {"ms": 50}


def test_error_info_from_plain_exception():
    """Plain exceptions become internal, non-retryable errors."""
    info = error_info_from_exception(KeyError("missing"))

    assert info.code == ErrorCode.INTERNAL_ERROR
    assert info.retryable is False
    assert info.details["exception_type"] == "KeyError"
