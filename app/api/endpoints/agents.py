import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.dependencies import get_agent_health_service, get_agent_service
from app.pipeline.exceptions import InvalidDocumentError
from app.schemas.agents import (
    AgentsHealthResponse,
    ProcessDocumentRequest,
    ProcessDocumentResponse,
    RunPipelineRequest,
    RunPipelineResponse,
)
from app.services.agent_service import AgentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=AgentsHealthResponse,
    summary="Status and health of every registered agent",
)
def get_agents(
    service: AgentService = Depends(get_agent_health_service),
):
    try:
        return service.get_agents_health()
    except Exception as e:
        logger.error("Agent status failed: %s", e, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": str(e)},
        )


@router.post(
    "",
    response_model=RunPipelineResponse,
    summary="Run a full document through the pipeline",
)
async def run_pipeline(
    payload: RunPipelineRequest,
    service: AgentService = Depends(get_agent_service),
):
    try:
        return await service.process_full_document(payload.document)
    except InvalidDocumentError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except ValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid document", "details": str(e)},
        )
    except Exception as e:
        logger.error("Pipeline run failed: %s", e, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Processing failed", "details": str(e)},
        )


@router.post(
    "/process",
    response_model=ProcessDocumentResponse,
    response_model_exclude_none=True,
    summary="Process a full document or build one from minimal fields",
)
async def process_document(
    payload: ProcessDocumentRequest,
    service: AgentService = Depends(get_agent_service),
):
    """
    Body is either `{document}` or the minimal fields
    `{invoiceNumber, vendorName, amount, currency?, sourceType?, ...}`.
    Agent disagreement (flag, block, reject) is a normal 200 response;
    stage failures come back in `errors`.
    """
    try:
        return await service.process_submission(payload)
    except ValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid document", "details": str(e)},
        )
    except Exception as e:
        logger.error("Process error: %s", e, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Failed to process document",
                "details": str(e),
            },
        )
