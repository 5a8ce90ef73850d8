"""Pydantic models for report generation requests, results and stream events."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GenerationRequest(BaseModel):
    """Request body of the generation endpoint (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    emergency_mode: bool = Field(False, alias="emergencyMode")
    comparative_mode: bool = Field(False, alias="comparativeMode")
    research_detail_mode: bool = Field(False, alias="researchDetailMode")
    exam_type: Optional[str] = Field(None, alias="examType")
    locale: Optional[str] = None

    @field_validator("text", mode="before")
    @classmethod
    def coerce_text(cls, value):
        """Missing or null text becomes empty and is rejected later with a 400."""

        if value is None:
            return ""
        return value

    @property
    def dictation(self) -> str:
        return self.text.strip()

    @property
    def mode(self) -> str:
        """Mode label used in the generation log."""

        if self.comparative_mode:
            return "comparativo"
        if self.emergency_mode:
            return "ps"
        return "eletivo"


class GenerationResult(BaseModel):
    """Structured outcome of one generation: report, suggestions, error."""

    model_config = ConfigDict(populate_by_name=True)

    report: Optional[str] = Field(None, alias="laudo")
    suggestions: List[str] = Field(default_factory=list, alias="sugestoes")
    error: Optional[str] = Field(None, alias="erro")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class TokenUsage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    input_tokens: int = Field(0, alias="inputTokens")
    output_tokens: int = Field(0, alias="outputTokens")
    total_tokens: int = Field(0, alias="totalTokens")

    @classmethod
    def from_counts(cls, input_tokens: int, output_tokens: int) -> "TokenUsage":
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )


class GenerationMeta(BaseModel):
    """Supplementary event appended after ``done``."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = "generation_meta"
    generation_duration_ms: int = Field(..., alias="generationDurationMs")
    cost_brl: float = Field(..., alias="costBrl")
    cost_usd: float = Field(..., alias="costUsd")


class RuleEvaluation(BaseModel):
    """Deterministic field-rule verdict for one dictation."""

    blocking: List[str] = Field(default_factory=list)
    advisory: List[str] = Field(default_factory=list)
    contrast: Optional[str] = None
    matched_templates: List[str] = Field(default_factory=list)
    mentioned_findings: List[str] = Field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocking)


class TemplateListResponse(BaseModel):
    templates: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0
