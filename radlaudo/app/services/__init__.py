"""Generation pipeline services for radlaudo."""

from radlaudo.app.services.context_formatter import (
    GroundingContextBuilder,
    format_grounding_context,
)
from radlaudo.app.services.prompt_assembler import (
    FIDELITY_CONSTRAINT,
    assemble_system_prompt,
)
from radlaudo.app.services.response_parser import (
    parse_generation_result,
    strip_code_fence,
)
from radlaudo.app.services.validation_gate import ValidationGate, evaluate_field_rules

__all__ = [
    "FIDELITY_CONSTRAINT",
    "GroundingContextBuilder",
    "ValidationGate",
    "assemble_system_prompt",
    "evaluate_field_rules",
    "format_grounding_context",
    "parse_generation_result",
    "strip_code_fence",
]
