import logging
from typing import Any, Optional

from fastapi import HTTPException

from app.core.config import settings
from app.pipeline.exceptions import InvalidDocumentError
from app.pipeline.orchestrator import Orchestrator
from app.pipeline.state import AgentRunState, FinancialDocument, PipelineResult, utcnow
from app.repositories.document_repository_interface import IDocumentRepository
from app.schemas.agents import (
    AgentHealthSummary,
    AgentInfo,
    AgentsHealthResponse,
    DecisionBrief,
    DecisionSummary,
    DocumentDecisionsResponse,
    PipelineSummary,
    ProcessDocumentRequest,
    ProcessDocumentResponse,
    ProcessedDocumentSummary,
    RunPipelineResponse,
    RunPipelineResult,
    StoredDecisionResponse,
)
from app.services.document_builder import build_document, document_from_payload

logger = logging.getLogger(__name__)


class AgentService:
    """
    The web layer's handle on the orchestrator. Shapes pipeline results
    into the API responses and, when enabled, persists the processed
    document and its decisions.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        repository: Optional[IDocumentRepository] = None,
        persist: Optional[bool] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.repository = repository
        self.persist = settings.PERSIST_PIPELINE_RESULTS if persist is None else persist

    async def run_pipeline(self, document: FinancialDocument) -> PipelineResult:
        result = await self.orchestrator.process_document(document)
        if self.persist and self.repository is not None:
            await self.repository.save_document(result.document)
            await self.repository.append_decisions(
                result.document_id,
                result.document.tenant_id,
                result.trace_id,
                result.decisions,
            )
        return result

    async def process_submission(
        self,
        payload: ProcessDocumentRequest,
    ) -> ProcessDocumentResponse:
        document = build_document(payload)
        header = document.header
        logger.info(
            "Processing document %s (%s)",
            document.id,
            (header.vendor_name if header else None) or "unknown vendor",
        )

        result = await self.run_pipeline(document)
        return ProcessDocumentResponse(
            document=ProcessedDocumentSummary(
                id=document.id,
                invoice_number=header.invoice_number if header else None,
                vendor_name=header.vendor_name if header else None,
                amount=header.total_amount if header else None,
            ),
            pipeline=PipelineSummary(
                trace_id=result.trace_id,
                status=result.status,
                duration_ms=result.duration_ms,
                stages_completed=len(result.decisions),
            ),
            decisions=[
                DecisionSummary(
                    agent=d.agent_id,
                    action=d.action,
                    outcome=d.outcome,
                    confidence=d.confidence_score,
                    reasoning=d.reasoning,
                    timestamp=d.timestamp,
                )
                for d in result.decisions
            ],
            errors=result.errors or None,
        )

    async def process_full_document(
        self,
        raw: Optional[dict[str, Any]],
    ) -> RunPipelineResponse:
        if not raw or not raw.get("id"):
            raise InvalidDocumentError("Missing required field: document with id")

        result = await self.run_pipeline(document_from_payload(raw))
        return RunPipelineResponse(
            result=RunPipelineResult(
                document_id=result.document_id,
                trace_id=result.trace_id,
                status=result.status,
                decisions_count=len(result.decisions),
                decisions=[
                    DecisionBrief(
                        agent_id=d.agent_id,
                        action=d.action,
                        outcome=d.outcome,
                        confidence_score=d.confidence_score,
                        reasoning=d.reasoning,
                    )
                    for d in result.decisions
                ],
                duration_ms=result.duration_ms,
                errors=result.errors,
            )
        )

    def get_agents_health(self) -> AgentsHealthResponse:
        agents = self.orchestrator.get_registered_agents()
        return AgentsHealthResponse(
            timestamp=utcnow(),
            health=AgentHealthSummary(
                total_agents=len(agents),
                idle=sum(1 for a in agents if a.status == AgentRunState.IDLE),
                processing=sum(1 for a in agents if a.status == AgentRunState.PROCESSING),
                error=sum(1 for a in agents if a.status == AgentRunState.ERROR),
            ),
            agents=[
                AgentInfo(
                    id=a.agent_id,
                    name=a.agent_name,
                    capabilities=a.capabilities,
                    status=a.status,
                    last_processed_at=a.last_processed_at,
                    processed_count=a.processed_count,
                    average_latency_ms=a.average_latency_ms,
                )
                for a in agents
            ],
        )

    async def get_decisions(
        self,
        document_id: str,
        tenant_id: str,
    ) -> DocumentDecisionsResponse:
        if self.repository is None:
            raise HTTPException(status_code=503, detail="Document storage is not configured")

        record = await self.repository.get_by_id(document_id, tenant_id)
        if not record:
            raise HTTPException(
                status_code=404,
                detail=f"Document {document_id} not found",
            )
        decisions = await self.repository.list_decisions(document_id, tenant_id)
        return DocumentDecisionsResponse(
            document_id=record.id,
            tenant_id=record.tenant_id,
            status=record.status,
            decisions=[StoredDecisionResponse.model_validate(d) for d in decisions],
        )
