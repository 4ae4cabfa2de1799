"""Runtime settings for the agent runtime, workflow executor and execution queue."""

from typing import List

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SAFE_MODE_BLOCKED_TOOLS = [
    "send_email",
    "create_calendar_event",
    "send_slack_message",
    "create_notion_page",
    "append_to_notion",
]


class RuntimeSettings(BaseSettings):
    """Configuration settings loaded from the environment (and `.env` when present)."""

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    WORKFLOW_SYNC_TIMEOUT_MS: int = 30_000

    DURABLE_STEP_MAX_ATTEMPTS: int = 3
    DURABLE_STEP_BASE_DELAY_MS: int = 2_000
    DURABLE_STEP_MAX_DELAY_MS: int = 30_000

    QUEUE_CONCURRENCY: int = 3
    QUEUE_MAX_ATTEMPTS: int = 3
    QUEUE_BACKOFF_DELAY_MS: int = 2_000
    QUEUE_REMOVE_ON_COMPLETE: int = 100
    QUEUE_REMOVE_ON_FAIL: int = 50
    QUEUE_LEASE_SECONDS: float = 300.0
    QUEUE_MAX_STALLED_COUNT: int = 1
    QUEUE_POLL_INTERVAL_SECONDS: float = 0.5
    SHUTDOWN_GRACE_PERIOD_SECONDS: float = 30.0

    AGENT_MAX_STEPS: int = 10
    AGENT_MONTHLY_COST_LIMIT_USD: float = 100.0
    COST_GUARD_REFRESH_SECONDS: float = 60.0
    CONTEXT_COMPRESSION_THRESHOLD: int = 20
    CONTEXT_RETAIN_MESSAGES: int = 5
    SAFE_MODE_BLOCKED_TOOLS: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SAFE_MODE_BLOCKED_TOOLS)
    )

    @model_validator(mode="after")
    def check_bounds(self) -> "RuntimeSettings":
        """Reject settings that would make the runtime spin or never retry."""
        if self.QUEUE_CONCURRENCY < 1:
            raise ValueError("QUEUE_CONCURRENCY must be at least 1")
        if self.QUEUE_MAX_ATTEMPTS < 1 or self.DURABLE_STEP_MAX_ATTEMPTS < 1:
            raise ValueError("attempt counts must be at least 1")
        if self.CONTEXT_RETAIN_MESSAGES >= self.CONTEXT_COMPRESSION_THRESHOLD:
            raise ValueError(
                "CONTEXT_RETAIN_MESSAGES must be lower than CONTEXT_COMPRESSION_THRESHOLD"
            )
        return self

    @property
    def workflow_sync_timeout_seconds(self) -> float:
        """Sync workflow wall-clock budget in seconds."""
        return self.WORKFLOW_SYNC_TIMEOUT_MS / 1000.0


def load_settings(**overrides) -> RuntimeSettings:
    """Build settings from the environment, with explicit keyword overrides."""
    return RuntimeSettings(**overrides)
