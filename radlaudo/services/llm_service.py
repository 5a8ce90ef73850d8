"""
LLM service for radlaudo.
Streams report generations from the Anthropic Messages API.
Temperature is always 0.0 for deterministic output.
"""

import json
import time
from typing import Dict, Any, Optional, AsyncIterator

import httpx

from radlaudo.utils.config import settings, ModelConfig
from radlaudo.utils.logging import get_logger, get_latency_logger, get_compliance_logger

logger = get_logger(__name__)
latency_logger = get_latency_logger()


class LLMServiceError(Exception):
    """Raised for backend failures: HTTP errors, error events, truncated streams."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LLMService:
    """Streaming client for the text-generation backend.

    ``stream_messages`` yields ``{"type": "text", "text": ...}`` events while
    the answer arrives and one final ``{"type": "usage", ...}`` event.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        endpoint: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.anthropic_model
        self.endpoint = endpoint or settings.anthropic_endpoint
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": settings.anthropic_version,
            "content-type": "application/json",
        }

    async def stream_messages(
        self,
        system_prompt: str,
        text: str,
        max_tokens: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Send the dictation as the only user turn and stream the answer back."""
        payload = {
            "model": self.model,
            "max_tokens": max_tokens or settings.max_output_tokens,
            "temperature": ModelConfig.TEMPERATURE,
            "system": system_prompt,
            "messages": [{"role": "user", "content": text}],
            "stream": True,
        }

        start_time = time.time()
        model = self.model
        input_tokens = 0
        output_tokens = 0
        response_length = 0
        completed = False
        success = False

        try:
            async with self.client.stream(
                "POST", self.endpoint, json=payload, headers=self._headers()
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMServiceError(
                        f"Anthropic API error {response.status_code}: {body[:500]}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if not data:
                        continue

                    event = json.loads(data)
                    event_type = event.get("type")

                    if event_type == "message_start":
                        message = event.get("message") or {}
                        model = message.get("model") or model
                        usage = message.get("usage") or {}
                        input_tokens = usage.get("input_tokens", input_tokens)
                        output_tokens = usage.get("output_tokens", output_tokens)
                    elif event_type == "content_block_delta":
                        delta = event.get("delta") or {}
                        if delta.get("type") == "text_delta" and delta.get("text"):
                            response_length += len(delta["text"])
                            yield {"type": "text", "text": delta["text"]}
                    elif event_type == "message_delta":
                        usage = event.get("usage") or {}
                        output_tokens = usage.get("output_tokens", output_tokens)
                    elif event_type == "message_stop":
                        completed = True
                    elif event_type == "error":
                        error = event.get("error") or {}
                        raise LLMServiceError(
                            f"{error.get('type', 'error')}: {error.get('message', 'unknown error')}"
                        )

            if not completed:
                raise LLMServiceError("Generation stream ended before message_stop")

            success = True
            yield {
                "type": "usage",
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
            }

        except httpx.HTTPError as e:
            logger.error(f"Anthropic request failed: {type(e).__name__}: {e}")
            raise
        except LLMServiceError as e:
            logger.error(f"Anthropic generation failed: {e}")
            raise
        finally:
            duration_ms = (time.time() - start_time) * 1000
            latency_logger.log_latency(
                operation="llm_anthropic_stream",
                duration_ms=duration_ms,
                success=success,
                model=model,
                threshold_exceeded=duration_ms > settings.llm_generation_threshold,
            )
            if success:
                get_compliance_logger().log_llm_interaction(
                    request_id=f"llm_{int(time.time())}",
                    model=model,
                    prompt_length=len(system_prompt) + len(text),
                    response_length=response_length,
                    user_id=user_id or "unknown",
                )

    async def health_check(self) -> Dict[str, Any]:
        """Check LLM service health without spending tokens."""
        return {
            "service": "llm",
            "status": "healthy" if self.is_configured() else "not_configured",
            "model": self.model,
            "timestamp": time.time(),
        }


# Global LLM service instance
llm_service = LLMService()
