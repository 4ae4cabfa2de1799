"""Run-level usage accounting for agent executions."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class UsageTotals:
    """Immutable snapshot of accumulated usage."""

    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    llm_calls: int = 0
    tool_calls: int = 0
    tool_successes: int = 0
    tool_failures: int = 0

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out


@dataclass
class UsageAccumulator:
    """Mutable per-execution counters owned by the runtime.

    Totals only ever grow: negative deltas are rejected so a result can never
    report less usage than was observed mid-run.
    """

    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    llm_calls: int = 0
    tool_calls: int = 0
    tool_successes: int = 0
    tool_failures: int = 0

    def record_llm_usage(self, tokens_in: int, tokens_out: int, cost: float) -> None:
        """Add one LLM call's token usage and cost."""
        if tokens_in < 0 or tokens_out < 0 or cost < 0:
            raise ValueError(
                f"Usage deltas must be non-negative (in={tokens_in}, out={tokens_out}, "
                f"cost={cost})"
            )
        self.tokens_in += int(tokens_in)
        self.tokens_out += int(tokens_out)
        self.cost += float(cost)
        self.llm_calls += 1

    def record_tool_outcome(self, success: bool) -> None:
        """Count one attempted tool call and whether it succeeded."""
        self.tool_calls += 1
        if success:
            self.tool_successes += 1
        else:
            self.tool_failures += 1

    def snapshot(self) -> UsageTotals:
        return UsageTotals(
            tokens_in=self.tokens_in,
            tokens_out=self.tokens_out,
            cost=round(self.cost, 8),
            llm_calls=self.llm_calls,
            tool_calls=self.tool_calls,
            tool_successes=self.tool_successes,
            tool_failures=self.tool_failures,
        )
