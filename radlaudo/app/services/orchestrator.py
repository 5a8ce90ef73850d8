"""Generation Orchestrator.

Runs the pre-stream checks (input, backend configuration, essential fields,
quota), assembles the prompt and tees the ndjson event stream: every
upstream chunk is forwarded unchanged while complete lines are inspected
for the terminal event. A ``generation_meta`` event with duration and cost
follows ``done``; usage logging is fire-and-forget.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set

from ...services.cost_service import calculate_cost
from ...services.llm_service import llm_service
from ...services.quota_service import (
    InMemoryQuotaStore,
    QuotaService,
    SupabaseQuotaStore,
)
from ...services.storage_service import storage_service
from ...services.template_store import (
    InMemoryTemplateStore,
    SupabaseTemplateStore,
    TemplateStore,
)
from ...utils.config import settings
from ...utils.logging import get_compliance_logger, get_logger
from ..models.generation import (
    GenerationMeta,
    GenerationRequest,
    GenerationResult,
    RuleEvaluation,
)
from .context_formatter import GroundingContextBuilder
from .prompt_assembler import assemble_system_prompt
from .report_generator import (
    ReportGenerator,
    classify_backend_error,
    encode_event,
    error_event,
    localized_message,
)
from .validation_gate import ValidationGate

logger = get_logger(__name__)
compliance_logger = get_compliance_logger()

UsageSink = Callable[[Dict[str, Any]], Awaitable[None]]


class GenerationRejected(Exception):
    """Pre-stream refusal; carries the HTTP status and a result-shaped body."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, Any]:
        return GenerationResult(report=None, suggestions=[], error=self.message).to_wire()


class InvalidDictationError(GenerationRejected):
    status_code = 400


class BackendNotConfiguredError(GenerationRejected):
    status_code = 500


class EssentialFieldsMissingError(GenerationRejected):
    status_code = 422


class QuotaExceededError(GenerationRejected):
    status_code = 429


@dataclass
class PreparedGeneration:
    request: GenerationRequest
    user_id: str
    dictation: str
    system_prompt: str
    evaluation: RuleEvaluation
    locale: str
    started_at: float
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _decode_line(line: bytes) -> Optional[Dict[str, Any]]:
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Skipping non-JSON line in generation stream")
        return None
    return event if isinstance(event, dict) else None


def _line_break(buffer: bytes) -> bytes:
    """Separator needed before appending an event after an unterminated line."""
    return b"\n" if buffer.strip() else b""


class GenerationOrchestrator:
    def __init__(
        self,
        store: TemplateStore,
        quota: QuotaService,
        generator: Optional[ReportGenerator] = None,
        llm_client=llm_service,
        gate: Optional[ValidationGate] = None,
        context_builder: Optional[GroundingContextBuilder] = None,
        usage_sink: Optional[UsageSink] = None,
        max_context_chars: Optional[int] = None,
        usd_brl_rate: Optional[float] = None,
    ):
        self.store = store
        self.quota = quota
        self.llm_client = llm_client
        self.gate = gate or ValidationGate()
        self.generator = generator or ReportGenerator(llm_client=llm_client, gate=self.gate)
        # The builder must share the cache whose versions the store bumps
        self.context_builder = context_builder or GroundingContextBuilder(
            store, cache=getattr(store, "cache", None)
        )
        self.usage_sink = usage_sink
        self.max_context_chars = (
            max_context_chars if max_context_chars is not None else settings.max_context_chars
        )
        self.usd_brl_rate = usd_brl_rate
        self._pending: Set[asyncio.Task] = set()

    async def prepare(self, request: GenerationRequest, user_id: str) -> PreparedGeneration:
        """Run every check that can refuse the request before streaming starts."""
        started_at = time.monotonic()
        locale = request.locale or settings.default_locale
        dictation = request.dictation

        if not dictation:
            raise InvalidDictationError(localized_message("empty_text", locale))

        if not self.llm_client.is_configured():
            logger.error("Generation backend API key is not configured")
            raise BackendNotConfiguredError(localized_message("backend_not_configured", locale))

        bundles = await self.store.list_bundles(user_id, request.exam_type)
        evaluation = self.gate.evaluate(dictation, bundles)
        if self.gate.should_block(evaluation):
            compliance_logger.log_generation(
                user_id=user_id,
                success=False,
                mode=request.mode,
                reason="essential_fields_missing",
                blocking=evaluation.blocking,
            )
            raise EssentialFieldsMissingError(self.gate.blocking_message(evaluation))

        decision = await self.quota.consume(user_id)
        if not decision.allowed:
            raise QuotaExceededError(localized_message("quota_exceeded", locale))

        context = await self.context_builder.build(user_id, request.exam_type)
        system_prompt = assemble_system_prompt(
            context,
            emergency_mode=request.emergency_mode,
            comparative_mode=request.comparative_mode,
            research_detail_mode=request.research_detail_mode,
            max_context_chars=self.max_context_chars,
        )

        return PreparedGeneration(
            request=request,
            user_id=user_id,
            dictation=dictation,
            system_prompt=system_prompt,
            evaluation=evaluation,
            locale=locale,
            started_at=started_at,
        )

    async def stream(self, prepared: PreparedGeneration) -> AsyncIterator[bytes]:
        """Forward upstream chunks unchanged; append meta after ``done``.

        Exactly one terminal event reaches the consumer unless it disconnects
        first, in which case the upstream is closed and nothing is billed.
        """
        upstream = self.generator.stream_report(
            prepared.system_prompt,
            prepared.dictation,
            evaluation=prepared.evaluation,
            locale=prepared.locale,
            user_id=prepared.user_id,
        )
        buffer = b""
        terminal: Optional[str] = None

        def observe(line: bytes) -> Optional[bytes]:
            nonlocal terminal
            event = _decode_line(line)
            if event is None or terminal is not None:
                return None
            if event.get("type") == "done":
                terminal = "done"
                return self._on_done(prepared, event)
            if event.get("type") == "error":
                terminal = "error"
                self._on_error(prepared, str(event.get("message", "")))
            return None

        try:
            async for chunk in upstream:
                yield chunk
                buffer += chunk
                *lines, buffer = buffer.split(b"\n")
                appended = [extra for extra in map(observe, lines) if extra]
                for extra in appended:
                    yield extra

            # Last event without a trailing newline
            extra = observe(buffer)
            if extra:
                yield b"\n" + extra

            if terminal is None:
                terminal = "error"
                message = localized_message("incomplete", prepared.locale)
                self._on_error(prepared, message)
                yield _line_break(buffer) + error_event(message)

        except Exception as exc:
            logger.error(f"Generation stream failed: {exc}")
            if terminal is None:
                terminal = "error"
                message = localized_message(classify_backend_error(exc), prepared.locale)
                self._on_error(prepared, message)
                yield _line_break(buffer) + error_event(message)
        finally:
            await upstream.aclose()
            if terminal is None:
                self._on_abort(prepared)

    async def generate(self, request: GenerationRequest, user_id: str) -> GenerationResult:
        """Non-streaming variant: collect the stream into the final result."""
        prepared = await self.prepare(request, user_id)
        result: Optional[GenerationResult] = None
        buffer = b""

        async for chunk in self.stream(prepared):
            buffer += chunk
            *lines, buffer = buffer.split(b"\n")
            for line in lines:
                event = _decode_line(line)
                if event is None:
                    continue
                if event.get("type") == "done":
                    result = GenerationResult.model_validate(event.get("result") or {})
                elif event.get("type") == "error":
                    result = GenerationResult(error=str(event.get("message", "")))

        return result or GenerationResult(
            error=localized_message("incomplete", prepared.locale)
        )

    def _on_done(self, prepared: PreparedGeneration, event: Dict[str, Any]) -> bytes:
        duration_ms = int((time.monotonic() - prepared.started_at) * 1000)
        usage = event.get("tokenUsage") or {}
        input_tokens = int(usage.get("inputTokens", 0) or 0)
        output_tokens = int(usage.get("outputTokens", 0) or 0)
        model = event.get("model") or settings.anthropic_model
        cost = calculate_cost(input_tokens, output_tokens, model, self.usd_brl_rate)

        self._record(
            prepared,
            success=True,
            generation_duration_ms=duration_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=int(usage.get("totalTokens", input_tokens + output_tokens) or 0),
            cost_brl=cost.total_cost,
            cost_usd=cost.total_cost_usd,
            model=model,
        )

        meta = GenerationMeta(
            generation_duration_ms=duration_ms,
            cost_brl=cost.total_cost,
            cost_usd=cost.total_cost_usd,
        )
        return encode_event(meta.model_dump(by_alias=True))

    def _on_error(self, prepared: PreparedGeneration, message: str) -> None:
        self._record(
            prepared,
            success=False,
            error_message=message,
            generation_duration_ms=int((time.monotonic() - prepared.started_at) * 1000),
        )

    def _on_abort(self, prepared: PreparedGeneration) -> None:
        # Best effort only; an aborted generation is never logged as a success.
        try:
            self._record(
                prepared,
                success=False,
                error_message="aborted",
                generation_duration_ms=int((time.monotonic() - prepared.started_at) * 1000),
            )
        except Exception as e:
            logger.warning(f"Failed to record aborted generation: {e}")

    def record_failure(self, request: GenerationRequest, user_id: str, message: str) -> None:
        """Log a failure that happened before a prepared generation existed."""
        self._dispatch(
            {
                "user_id": user_id,
                "input_text_length": len(request.dictation),
                "mode": request.mode,
                "locale": request.locale,
                "research_detail_mode": request.research_detail_mode,
                "success": False,
                "error_message": message,
            }
        )

    def _record(self, prepared: PreparedGeneration, success: bool, **fields) -> None:
        request = prepared.request
        record = {
            "user_id": prepared.user_id,
            "input_text_length": len(prepared.dictation),
            "mode": request.mode,
            "locale": request.locale,
            "research_detail_mode": request.research_detail_mode,
            "success": success,
            **fields,
        }
        if success:
            record["input_text_hash"] = hash_text(prepared.dictation)
        self._dispatch(record)

    def _dispatch(self, record: Dict[str, Any]) -> None:
        compliance_logger.log_generation(
            user_id=record["user_id"],
            success=record["success"],
            mode=record["mode"],
            **{k: v for k, v in record.items() if k not in ("user_id", "success", "mode")},
        )
        if self.usage_sink is None:
            return

        try:
            task = asyncio.get_running_loop().create_task(self._write(record))
        except RuntimeError:
            logger.warning("No running event loop; generation log skipped")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, record: Dict[str, Any]) -> None:
        try:
            await self.usage_sink(record)
        except Exception as e:
            logger.error(f"Failed to log generation: {e}")

    async def wait_for_pending(self) -> None:
        """Await outstanding usage writes (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def create_default_orchestrator() -> GenerationOrchestrator:
    """Wire the orchestrator from settings: Supabase when configured, else in-memory."""
    use_supabase = storage_service.is_configured()

    if settings.templates_dir:
        store: TemplateStore = InMemoryTemplateStore.from_directory(settings.templates_dir)
    elif use_supabase:
        store = SupabaseTemplateStore(storage_service)
    else:
        logger.warning("No template source configured; generating without grounding templates")
        store = InMemoryTemplateStore()

    quota_store = SupabaseQuotaStore(storage_service) if use_supabase else InMemoryQuotaStore()

    return GenerationOrchestrator(
        store=store,
        quota=QuotaService(quota_store),
        usage_sink=storage_service.log_generation if use_supabase else None,
    )
