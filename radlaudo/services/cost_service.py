"""
Cost accounting for radlaudo.
Converts token usage reported by the generation backend into BRL/USD cost.
"""

import re
from dataclasses import dataclass
from typing import Dict, Any, Optional

from radlaudo.utils.config import settings, ModelConfig

# Ordered so that more specific families win (opus-4.5 before opus-4)
_MODEL_FAMILIES = [
    "claude-opus-4.5",
    "claude-opus-4.1",
    "claude-opus-4",
    "claude-opus-3",
    "claude-sonnet-4.5",
    "claude-sonnet-4",
    "claude-sonnet-3.7",
    "claude-haiku-4.5",
    "claude-haiku-3.5",
    "claude-haiku-3",
]


@dataclass
class CostInfo:
    """Cost of one generation. BRL values are primary, USD is derived."""

    input_cost: float
    output_cost: float
    total_cost: float
    total_cost_usd: float
    model: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputCost": self.input_cost,
            "outputCost": self.output_cost,
            "totalCost": self.total_cost,
            "totalCostUsd": self.total_cost_usd,
            "model": self.model,
        }


def identify_model(model_name: Optional[str]) -> str:
    """Map a full model id (``claude-sonnet-4-5-20250929``) to a pricing key."""
    lowered = (model_name or "").lower()
    # "4-5" and "4.5" are both used for minor versions
    lowered = re.sub(r"(\d)-(\d)(?!\d)", r"\1.\2", lowered)

    for family in _MODEL_FAMILIES:
        _, tier, version = family.split("-", 2)
        if f"{tier}-{version}" in lowered or f"{tier}{version}" in lowered:
            return family

    return ModelConfig.DEFAULT_PRICING_KEY


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    model_name: Optional[str],
    usd_brl_rate: Optional[float] = None,
) -> CostInfo:
    """Token counts times the per-million price, converted to BRL."""
    rate = usd_brl_rate if usd_brl_rate is not None else settings.usd_brl_rate
    pricing = ModelConfig.PRICING.get(
        identify_model(model_name),
        ModelConfig.PRICING[ModelConfig.DEFAULT_PRICING_KEY],
    )

    input_usd = (input_tokens / 1_000_000) * pricing["input"]
    output_usd = (output_tokens / 1_000_000) * pricing["output"]
    total_usd = input_usd + output_usd

    return CostInfo(
        input_cost=input_usd * rate,
        output_cost=output_usd * rate,
        total_cost=total_usd * rate,
        total_cost_usd=total_usd,
        model=model_name or ModelConfig.DEFAULT_MODEL,
    )


def format_cost(value: float) -> str:
    """Format a BRL amount for display (``R$ 0,0123``)."""
    if value < 0.0001:
        return "< R$ 0,00"
    if value < 0.01:
        digits = 4
    elif value < 1:
        digits = 3
    else:
        digits = 2
    return f"R$ {value:.{digits}f}".replace(".", ",")


def format_tokens(tokens: int) -> str:
    if tokens < 1000:
        return str(tokens)
    if tokens < 1_000_000:
        return f"{tokens / 1000:.1f}K"
    return f"{tokens / 1_000_000:.2f}M"
