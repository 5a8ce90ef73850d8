"""Template record models for radlaudo."""

from radlaudo.models.template_model import (
    ContrastMode,
    FieldRule,
    Finding,
    Region,
    RuleKind,
    Template,
    TemplateBundle,
    TemplateStatus,
    TemplateValidationError,
)

__all__ = [
    "ContrastMode",
    "FieldRule",
    "Finding",
    "Region",
    "RuleKind",
    "Template",
    "TemplateBundle",
    "TemplateStatus",
    "TemplateValidationError",
]
