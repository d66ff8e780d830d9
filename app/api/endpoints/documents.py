from fastapi import APIRouter, Depends, Query

from app.core.config import settings
from app.core.dependencies import get_agent_service
from app.schemas.agents import DocumentDecisionsResponse
from app.services.agent_service import AgentService

router = APIRouter()


@router.get(
    "/{document_id}/decisions",
    response_model=DocumentDecisionsResponse,
    summary="Stored audit trail for a document",
)
async def get_document_decisions(
    document_id: str,
    tenant_id: str = Query(
        settings.DEFAULT_TENANT_ID, alias="tenantId", description="Owning tenant"
    ),
    service: AgentService = Depends(get_agent_service),
) -> DocumentDecisionsResponse:
    return await service.get_decisions(document_id, tenant_id)
