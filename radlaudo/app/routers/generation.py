"""REST router for report generation."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse, StreamingResponse

from radlaudo.app.models.generation import GenerationRequest, GenerationResult
from radlaudo.app.services.orchestrator import (
    GenerationOrchestrator,
    GenerationRejected,
    create_default_orchestrator,
)
from radlaudo.app.services.report_generator import (
    classify_backend_error,
    localized_message,
)
from radlaudo.utils.logging import RequestContext, get_logger

router = APIRouter(prefix="/api", tags=["generation"])
logger = get_logger(__name__)

_ERROR_STATUS = {
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "auth": status.HTTP_401_UNAUTHORIZED,
    "generic": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_orchestrator: Optional[GenerationOrchestrator] = None


def get_orchestrator() -> GenerationOrchestrator:
    """Process-wide orchestrator, built from settings on first use."""

    global _orchestrator
    if _orchestrator is None:
        _orchestrator = create_default_orchestrator()
    return _orchestrator


def _result_response(status_code: int, message: str) -> JSONResponse:
    body = GenerationResult(report=None, suggestions=[], error=message).to_wire()
    return JSONResponse(status_code=status_code, content=body)


@router.post("/generate")
async def generate_report(
    payload: GenerationRequest,
    x_user_id: Optional[str] = Header(None),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Stream a structured report as newline-delimited JSON events."""

    if not x_user_id:
        return _result_response(
            status.HTTP_401_UNAUTHORIZED, localized_message("unauthorized", payload.locale)
        )

    with RequestContext(user_id=x_user_id) as context:
        try:
            prepared = await orchestrator.prepare(payload, x_user_id)
        except GenerationRejected as exc:
            logger.info(
                "Generation rejected",
                extra={"extra_fields": {"status_code": exc.status_code, "reason": type(exc).__name__}},
            )
            return JSONResponse(status_code=exc.status_code, content=exc.to_body())
        except Exception as exc:
            category = classify_backend_error(exc)
            logger.error(f"Generation preparation failed ({category}): {exc}")
            orchestrator.record_failure(payload, x_user_id, str(exc))
            return _result_response(
                _ERROR_STATUS[category], localized_message(category, payload.locale)
            )

        prepared.request_id = context.request_id

    return StreamingResponse(
        orchestrator.stream(prepared),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "X-Request-Id": prepared.request_id},
    )
