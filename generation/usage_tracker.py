"""
Usage Tracker

Accumulates token usage and estimated cost across completion calls.
The ledger is an immutable value: record() returns a new ledger, so callers
thread it through explicitly and tests can build one from scratch.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

from generation.schemas import Usage

# USD per 1M tokens (gpt-4o list price)
INPUT_COST_PER_MTOK = float(os.getenv("GPT_INPUT_COST_PER_MTOK", "2.50"))
OUTPUT_COST_PER_MTOK = float(os.getenv("GPT_OUTPUT_COST_PER_MTOK", "10.00"))


def estimate_cost(
    usage: Usage,
    input_cost_per_mtok: float = INPUT_COST_PER_MTOK,
    output_cost_per_mtok: float = OUTPUT_COST_PER_MTOK,
) -> float:
    """Estimated USD cost of one call."""
    return (
        (usage.prompt_tokens / 1_000_000) * input_cost_per_mtok
        + (usage.completion_tokens / 1_000_000) * output_cost_per_mtok
    )


@dataclass(frozen=True)
class CostLedger:
    """Running totals for one worker run."""
    calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_cost: float = 0.0

    def record(self, usage: Optional[Usage]) -> "CostLedger":
        """Return a new ledger including one more call. Calls without usage still count."""
        if usage is None:
            return replace(self, calls=self.calls + 1)
        return CostLedger(
            calls=self.calls + 1,
            prompt_tokens=self.prompt_tokens + usage.prompt_tokens,
            completion_tokens=self.completion_tokens + usage.completion_tokens,
            total_cost=self.total_cost + estimate_cost(usage),
        )

    def summary(self) -> str:
        return (
            f"{self.calls} calls, {self.prompt_tokens} prompt tokens, "
            f"{self.completion_tokens} completion tokens, total GPT cost: ${self.total_cost:.4f}"
        )
