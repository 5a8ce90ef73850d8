"""Model modules for the radlaudo API layer."""

from radlaudo.app.models.generation import (
    GenerationMeta,
    GenerationRequest,
    GenerationResult,
    RuleEvaluation,
    TemplateListResponse,
    TokenUsage,
)

__all__ = [
    "GenerationMeta",
    "GenerationRequest",
    "GenerationResult",
    "RuleEvaluation",
    "TemplateListResponse",
    "TokenUsage",
]
