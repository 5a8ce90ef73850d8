"""Read-only router over the templates visible to a user."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from radlaudo.app.models.generation import TemplateListResponse
from radlaudo.app.routers.generation import get_orchestrator
from radlaudo.app.services.orchestrator import GenerationOrchestrator
from radlaudo.utils.logging import RequestContext, get_logger

router = APIRouter(prefix="/api/templates", tags=["templates"])
logger = get_logger(__name__)


@router.get("", response_model=TemplateListResponse)
async def list_templates(
    exam_type: Optional[str] = Query(None, alias="examType"),
    x_user_id: Optional[str] = Header(None),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> TemplateListResponse:
    """Templates with regions and findings, optionally filtered by exam type."""

    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    with RequestContext(user_id=x_user_id):
        bundles = await orchestrator.store.list_bundles(x_user_id, exam_type)

    templates = [bundle.to_dict() for bundle in bundles]
    return TemplateListResponse(templates=templates, count=len(templates))
