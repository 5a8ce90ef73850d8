"""Turns the backend text stream into newline-delimited JSON events."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, Optional

from ...services.llm_service import llm_service
from ...utils.config import ModelConfig, settings
from ...utils.logging import get_logger
from ..models.generation import RuleEvaluation, TokenUsage
from .response_parser import parse_generation_result
from .validation_gate import ValidationGate

logger = get_logger(__name__)

MESSAGES: Dict[str, Dict[str, str]] = {
    "pt-BR": {
        "empty_text": "O texto ditado está vazio.",
        "backend_not_configured": "A chave da API de geração não está configurada.",
        "quota_exceeded": "Limite mensal de laudos do seu plano atingido.",
        "unauthorized": "Usuário não identificado.",
        "timeout": "A geração do laudo excedeu o tempo limite. Tente novamente.",
        "auth": "Chave da API de geração inválida.",
        "generic": "Erro ao processar o laudo. Tente novamente.",
        "incomplete": "A geração terminou sem uma resposta completa. Tente novamente.",
    },
    "en": {
        "empty_text": "The dictated text is empty.",
        "backend_not_configured": "The generation API key is not configured.",
        "quota_exceeded": "Your plan's monthly report limit has been reached.",
        "unauthorized": "Unauthorized.",
        "timeout": "Report generation timed out. Please try again.",
        "auth": "Invalid generation API key.",
        "generic": "Error while processing the report. Please try again.",
        "incomplete": "Generation ended without a complete answer. Please try again.",
    },
}


def localized_message(key: str, locale: Optional[str] = None) -> str:
    """Message for ``key``; unsupported locales fall back to the default one."""
    if locale not in ModelConfig.SUPPORTED_LOCALES:
        locale = settings.default_locale
    return MESSAGES.get(locale, MESSAGES["pt-BR"])[key]


def classify_backend_error(exc: BaseException) -> str:
    """Map a failure to ``timeout``, ``auth`` or ``generic`` by its message."""
    message = f"{type(exc).__name__}: {exc}".lower()
    if "timeout" in message or "etimedout" in message:
        return "timeout"
    if "401" in message or "authentication" in message:
        return "auth"
    return "generic"


def encode_event(event: Dict[str, Any]) -> bytes:
    return (json.dumps(event, ensure_ascii=False) + "\n").encode("utf-8")


def error_event(message: str) -> bytes:
    return encode_event({"type": "error", "message": message})


class ReportGenerator:
    """Emits ``delta`` events while text arrives, then one ``done`` or ``error``."""

    def __init__(self, llm_client=llm_service, gate: Optional[ValidationGate] = None):
        self._llm_client = llm_client
        self._gate = gate or ValidationGate()

    async def stream_report(
        self,
        system_prompt: str,
        text: str,
        evaluation: Optional[RuleEvaluation] = None,
        locale: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AsyncIterator[bytes]:
        chunks = []
        usage: Dict[str, Any] = {}
        backend = self._llm_client.stream_messages(system_prompt, text, user_id=user_id)

        try:
            try:
                async for event in backend:
                    if event.get("type") == "text":
                        chunks.append(event["text"])
                        yield encode_event({"type": "delta", "text": event["text"]})
                    elif event.get("type") == "usage":
                        usage = event
            except Exception as exc:
                category = classify_backend_error(exc)
                logger.error(f"Report generation failed ({category}): {exc}")
                yield error_event(localized_message(category, locale))
                return
        finally:
            await backend.aclose()

        raw = "".join(chunks)
        result = self._gate.finalize(parse_generation_result(raw), evaluation)
        token_usage = TokenUsage.from_counts(
            int(usage.get("input_tokens", 0) or 0),
            int(usage.get("output_tokens", 0) or 0),
        )

        yield encode_event(
            {
                "type": "done",
                "result": result.to_wire(),
                "tokenUsage": token_usage.model_dump(by_alias=True),
                "model": usage.get("model") or settings.anthropic_model,
            }
        )

