"""
Tests for the generation orchestrator: pre-stream checks and the event tee.
"""

import json

import httpx
import pytest

from radlaudo.app.models.generation import GenerationRequest
from radlaudo.app.services.orchestrator import (
    BackendNotConfiguredError,
    EssentialFieldsMissingError,
    GenerationOrchestrator,
    InvalidDictationError,
    QuotaExceededError,
    hash_text,
)
from radlaudo.app.services.prompt_assembler import FIDELITY_CONSTRAINT
from radlaudo.app.services.report_generator import (
    MESSAGES,
    encode_event,
    error_event,
    localized_message,
)
from radlaudo.app.services.validation_gate import ValidationGate
from radlaudo.services.llm_service import LLMServiceError
from radlaudo.services.quota_service import InMemoryQuotaStore, QuotaService
from radlaudo.services.template_store import InMemoryTemplateStore

USER = "user-1"
NORMAL_EXAM = "tc abdome sem contraste, normal"
MODEL = "claude-sonnet-4-5-20250929"


class FakeLLM:
    def __init__(self, chunks=(), error=None, configured=True):
        self.chunks = list(chunks)
        self.error = error
        self.configured = configured
        self.calls = []

    def is_configured(self):
        return self.configured

    async def stream_messages(self, system_prompt, text, max_tokens=None, user_id=None):
        self.calls.append((system_prompt, text))
        for chunk in self.chunks:
            yield {"type": "text", "text": chunk}
        if self.error is not None:
            raise self.error
        yield {"type": "usage", "model": MODEL, "input_tokens": 1000, "output_tokens": 500}


class ScriptedGenerator:
    """Upstream that emits fixed byte chunks, optionally failing afterwards."""

    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    async def stream_report(self, system_prompt, text, evaluation=None, locale=None, user_id=None):
        try:
            for chunk in self.chunks:
                yield chunk
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class RecordingSink:
    def __init__(self, error=None):
        self.records = []
        self.error = error

    async def __call__(self, record):
        self.records.append(record)
        if self.error is not None:
            raise self.error


def delta(text):
    return encode_event({"type": "delta", "text": text})


def done_event(report="Laudo."):
    return encode_event(
        {
            "type": "done",
            "result": {"laudo": report, "sugestoes": [], "erro": None},
            "tokenUsage": {"inputTokens": 1000, "outputTokens": 500, "totalTokens": 1500},
            "model": MODEL,
        }
    )


def parse_events(chunks):
    text = b"".join(chunks).decode("utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


@pytest.fixture
def quota_store():
    return InMemoryQuotaStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_orchestrator(cache, abdome_bundles, quota_store, sink):
    def factory(llm=None, generator=None, usage_sink=sink):
        store = InMemoryTemplateStore.from_bundles(abdome_bundles, cache=cache)
        quota = QuotaService(quota_store, limits={"free": 5}, default_limit=5)
        return GenerationOrchestrator(
            store=store,
            quota=quota,
            generator=generator,
            llm_client=llm or FakeLLM(),
            gate=ValidationGate(enforce_essential=True),
            usage_sink=usage_sink,
            usd_brl_rate=5.0,
        )

    return factory


async def run(orchestrator, text=NORMAL_EXAM, **flags):
    prepared = await orchestrator.prepare(GenerationRequest(text=text, **flags), USER)
    chunks = [chunk async for chunk in orchestrator.stream(prepared)]
    await orchestrator.wait_for_pending()
    return chunks


@pytest.mark.parametrize(
    "locale, expected",
    [("en", "en"), ("pt-BR", "pt-BR"), (None, "pt-BR"), ("fr", "pt-BR"), ("", "pt-BR")],
)
def test_localized_message_locale_fallback(locale, expected):
    assert localized_message("generic", locale) == MESSAGES[expected]["generic"]


class TestPreStreamChecks:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n "])
    async def test_empty_dictation_is_rejected_before_backend(self, make_orchestrator, quota_store, text):
        llm = FakeLLM()
        orchestrator = make_orchestrator(llm=llm)

        with pytest.raises(InvalidDictationError) as exc_info:
            await orchestrator.prepare(GenerationRequest(text=text), USER)

        assert exc_info.value.status_code == 400
        assert exc_info.value.to_body() == {
            "laudo": None,
            "sugestoes": [],
            "erro": MESSAGES["pt-BR"]["empty_text"],
        }
        assert llm.calls == []
        assert quota_store.usage(USER) == 0

    @pytest.mark.asyncio
    async def test_unconfigured_backend(self, make_orchestrator):
        orchestrator = make_orchestrator(llm=FakeLLM(configured=False))

        with pytest.raises(BackendNotConfiguredError) as exc_info:
            await orchestrator.prepare(GenerationRequest(text=NORMAL_EXAM, locale="en"), USER)

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == MESSAGES["en"]["backend_not_configured"]

    @pytest.mark.asyncio
    async def test_unsupported_locale_falls_back_to_default(self, make_orchestrator):
        orchestrator = make_orchestrator(llm=FakeLLM(configured=False))

        with pytest.raises(BackendNotConfiguredError) as exc_info:
            await orchestrator.prepare(GenerationRequest(text=NORMAL_EXAM, locale="fr"), USER)

        assert exc_info.value.message == MESSAGES["pt-BR"]["backend_not_configured"]

    @pytest.mark.asyncio
    async def test_missing_contrast_blocks_without_consuming_quota(self, make_orchestrator, quota_store):
        llm = FakeLLM()
        orchestrator = make_orchestrator(llm=llm)

        with pytest.raises(EssentialFieldsMissingError) as exc_info:
            await orchestrator.prepare(GenerationRequest(text="tc abdome, normal"), USER)

        assert exc_info.value.status_code == 422
        assert "Contraste" in exc_info.value.to_body()["erro"]
        assert llm.calls == []
        assert quota_store.usage(USER) == 0

    @pytest.mark.asyncio
    async def test_exhausted_quota_never_reaches_backend(self, make_orchestrator, quota_store):
        llm = FakeLLM()
        orchestrator = make_orchestrator(llm=llm)
        quota_store.set_usage(USER, 5, orchestrator.quota.current_period())

        with pytest.raises(QuotaExceededError) as exc_info:
            await orchestrator.prepare(GenerationRequest(text=NORMAL_EXAM), USER)

        assert exc_info.value.status_code == 429
        assert llm.calls == []
        assert quota_store.usage(USER) == 5

    @pytest.mark.asyncio
    async def test_prompt_carries_context_and_fidelity_rule(self, make_orchestrator):
        orchestrator = make_orchestrator()

        prepared = await orchestrator.prepare(
            GenerationRequest(text=f"  {NORMAL_EXAM}  ", emergencyMode=True), USER
        )

        assert prepared.dictation == NORMAL_EXAM
        assert prepared.system_prompt.count(FIDELITY_CONSTRAINT) == 1
        assert "### tc-abdome-sem-contraste" in prepared.system_prompt
        assert "MODO PRONTO-SOCORRO" in prepared.system_prompt


class TestStreaming:
    @pytest.mark.asyncio
    async def test_successful_generation_streams_done_then_meta(self, make_orchestrator, sink, quota_store):
        llm = FakeLLM(['```json\n{"laudo": "Fígado normal.", ', '"sugestoes": [], "erro": null}\n```'])
        orchestrator = make_orchestrator(llm=llm)

        events = parse_events(await run(orchestrator))

        assert [e["type"] for e in events] == ["delta", "delta", "done", "generation_meta"]
        done, meta = events[2], events[3]
        assert done["result"] == {"laudo": "Fígado normal.", "sugestoes": [], "erro": None}
        assert done["tokenUsage"] == {"inputTokens": 1000, "outputTokens": 500, "totalTokens": 1500}
        assert meta["costUsd"] == pytest.approx(0.0105)
        assert meta["costBrl"] == pytest.approx(0.0525)
        assert meta["generationDurationMs"] >= 0

        assert llm.calls[0][1] == NORMAL_EXAM
        assert quota_store.usage(USER) == 1
        [record] = sink.records
        assert record["success"] is True
        assert record["input_text_hash"] == hash_text(NORMAL_EXAM)
        assert record["mode"] == "eletivo"
        assert record["cost_brl"] == pytest.approx(0.0525)

    @pytest.mark.asyncio
    async def test_advisory_findings_reach_suggestions(self, make_orchestrator):
        llm = FakeLLM(['{"laudo": "Cisto hepático.", "sugestoes": []}'])
        orchestrator = make_orchestrator(llm=llm)

        events = parse_events(
            await run(orchestrator, text="TC abdome sem contraste. Cisto hepático medindo 2,0 cm.")
        )

        done = next(e for e in events if e["type"] == "done")
        assert done["result"]["sugestoes"] == ["Achado 'Cisto hepático': considere descrever 'segmento'."]

    @pytest.mark.asyncio
    async def test_chunks_are_forwarded_unchanged(self, make_orchestrator):
        chunks = [b'{"type": "delta", "text": "a"}\n{"type": "del', b'ta", "text": "b"}\n', done_event()]
        orchestrator = make_orchestrator(generator=ScriptedGenerator(chunks))

        output = await run(orchestrator)

        assert output[:3] == chunks
        assert len(output) == 4
        assert json.loads(output[3])["type"] == "generation_meta"

    @pytest.mark.asyncio
    async def test_done_without_trailing_newline_still_gets_meta(self, make_orchestrator):
        chunks = [delta("a"), done_event().rstrip(b"\n")]
        orchestrator = make_orchestrator(generator=ScriptedGenerator(chunks))

        events = parse_events(await run(orchestrator))

        assert [e["type"] for e in events] == ["delta", "done", "generation_meta"]

    @pytest.mark.asyncio
    async def test_upstream_error_event_is_terminal_without_meta(self, make_orchestrator, sink):
        chunks = [delta("a"), error_event("falhou")]
        orchestrator = make_orchestrator(generator=ScriptedGenerator(chunks))

        output = await run(orchestrator)

        assert output == chunks
        [record] = sink.records
        assert record["success"] is False
        assert record["error_message"] == "falhou"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, expected",
        [
            (RuntimeError("boom"), MESSAGES["pt-BR"]["generic"]),
            (httpx.ReadTimeout("timed out"), MESSAGES["pt-BR"]["timeout"]),
        ],
    )
    async def test_upstream_failure_yields_one_error_event(self, make_orchestrator, sink, error, expected):
        generator = ScriptedGenerator([delta("a")], error=error)
        orchestrator = make_orchestrator(generator=generator)

        events = parse_events(await run(orchestrator))

        assert [e["type"] for e in events] == ["delta", "error"]
        assert events[-1]["message"] == expected
        assert generator.closed
        assert [r["success"] for r in sink.records] == [False]

    @pytest.mark.asyncio
    async def test_failure_after_partial_line_keeps_framing(self, make_orchestrator):
        generator = ScriptedGenerator([b'{"type": "delta", "te'], error=RuntimeError("boom"))
        orchestrator = make_orchestrator(generator=generator)

        output = await run(orchestrator)

        lines = b"".join(output).decode("utf-8").splitlines()
        assert json.loads(lines[-1]) == {"type": "error", "message": MESSAGES["pt-BR"]["generic"]}

    @pytest.mark.asyncio
    async def test_stream_without_terminal_event_is_completed_with_error(self, make_orchestrator):
        orchestrator = make_orchestrator(generator=ScriptedGenerator([delta("a")]))

        events = parse_events(await run(orchestrator))

        assert [e["type"] for e in events] == ["delta", "error"]
        assert events[-1]["message"] == MESSAGES["pt-BR"]["incomplete"]

    @pytest.mark.asyncio
    async def test_backend_auth_failure_through_report_generator(self, make_orchestrator, sink):
        llm = FakeLLM(["{"], error=LLMServiceError("Anthropic API error 401: invalid key", 401))
        orchestrator = make_orchestrator(llm=llm)

        events = parse_events(await run(orchestrator))

        assert [e["type"] for e in events] == ["delta", "error"]
        assert events[-1]["message"] == MESSAGES["pt-BR"]["auth"]
        assert all(not r["success"] for r in sink.records)

    @pytest.mark.asyncio
    async def test_client_disconnect_closes_upstream_and_never_bills(self, make_orchestrator, sink):
        generator = ScriptedGenerator([delta("a"), delta("b"), done_event()])
        orchestrator = make_orchestrator(generator=generator)
        prepared = await orchestrator.prepare(GenerationRequest(text=NORMAL_EXAM), USER)

        stream = orchestrator.stream(prepared)
        first = await stream.__anext__()
        await stream.aclose()
        await orchestrator.wait_for_pending()

        assert first == delta("a")
        assert generator.closed
        assert not any(r["success"] for r in sink.records)
        assert [r["error_message"] for r in sink.records] == ["aborted"]

    @pytest.mark.asyncio
    async def test_failing_usage_sink_does_not_affect_stream(self, make_orchestrator):
        orchestrator = make_orchestrator(
            llm=FakeLLM(['{"laudo": "ok"}']),
            usage_sink=RecordingSink(error=RuntimeError("database down")),
        )

        events = parse_events(await run(orchestrator))

        assert events[-1]["type"] == "generation_meta"


@pytest.mark.asyncio
async def test_generate_collects_final_result(make_orchestrator):
    orchestrator = make_orchestrator(llm=FakeLLM(["Laudo em texto livre"]))

    result = await orchestrator.generate(GenerationRequest(text=NORMAL_EXAM), USER)
    await orchestrator.wait_for_pending()

    assert result.report == "Laudo em texto livre"
    assert result.error is None
