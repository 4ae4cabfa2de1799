from enum import Enum


class ExecutionStatus(str, Enum):
    """Terminal status of one agent execution."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
