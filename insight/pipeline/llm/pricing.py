"""
Token pricing and cost calculation
"""
from decimal import Decimal, ROUND_HALF_UP

from insight.dtos import TokenUsage

# USD per 1K tokens
PRICING: dict[str, dict[str, Decimal]] = {
    "gpt-4o": {"input": Decimal("0.005"), "output": Decimal("0.015")},
    "gpt-4o-mini": {"input": Decimal("0.00015"), "output": Decimal("0.0006")},
    "gpt-3.5-turbo": {"input": Decimal("0.0005"), "output": Decimal("0.0015")},
}

DEFAULT_MODEL = "gpt-4o-mini"

# Cost columns are NUMERIC(10, 6)
COST_QUANTUM = Decimal("0.000001")


def quantize_cost(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)


def rates_for(model: str) -> dict[str, Decimal]:
    """
    Price table entry for a model

    Provider model ids may carry a date suffix (gpt-4o-2024-08-06), so the
    longest known prefix wins. Unknown models are priced as gpt-4o-mini.
    """
    name = (model or "").lower()
    if name in PRICING:
        return PRICING[name]
    for known in sorted(PRICING, key=len, reverse=True):
        if name.startswith(known):
            return PRICING[known]
    return PRICING[DEFAULT_MODEL]


def calculate_cost(prompt_tokens: int, completion_tokens: int, model: str = DEFAULT_MODEL) -> Decimal:
    rates = rates_for(model)
    prompt_cost = Decimal(prompt_tokens) / 1000 * rates["input"]
    completion_cost = Decimal(completion_tokens) / 1000 * rates["output"]
    return quantize_cost(prompt_cost + completion_cost)


class UsageLedger:
    """Token usage and cost of every LLM call made during one turn"""

    def __init__(self):
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_tokens = 0
        self.cost = Decimal("0")

    def record(self, usage: TokenUsage, model: str) -> None:
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.total_tokens += usage.total_tokens
        self.cost = quantize_cost(
            self.cost + calculate_cost(usage.prompt_tokens, usage.completion_tokens, model)
        )

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            total_tokens=self.total_tokens
        )
