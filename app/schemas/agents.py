from datetime import datetime
from typing import Any, Optional

from pydantic import ConfigDict, Field

from app.pipeline.state import (
    AgentRunState,
    CamelModel,
    Capability,
    DocumentStatus,
    LineItem,
    Money,
    PipelineError,
    SourceType,
)


# ── Requests ──────────────────────────────────────────────

class RunPipelineRequest(CamelModel):
    """POST /api/agents: a full document. Validated by the service."""
    document: Optional[dict[str, Any]] = None


class ProcessDocumentRequest(CamelModel):
    """
    POST /api/agents/process: either a full `document`, or the minimal
    fields the document builder expands into one.
    """
    model_config = ConfigDict(extra="allow")

    document: Optional[dict[str, Any]] = None

    invoice_number: Optional[str] = None
    vendor_name: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    source_type: Optional[SourceType] = None
    tenant_id: Optional[str] = None
    raw_file_ref: Optional[str] = None
    sender_email: Optional[str] = None
    file_name: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    vendor_id: Optional[str] = None
    tax_amount: Optional[float] = None
    po_number: Optional[str] = None
    line_items: Optional[list[LineItem]] = None


# ── POST /api/agents/process ──────────────────────────────

class ProcessedDocumentSummary(CamelModel):
    id: str
    invoice_number: Optional[str] = None
    vendor_name: Optional[str] = None
    amount: Optional[Money] = None


class PipelineSummary(CamelModel):
    trace_id: str
    status: DocumentStatus
    duration_ms: int
    stages_completed: int


class DecisionSummary(CamelModel):
    agent: str
    action: str
    outcome: str
    confidence: float
    reasoning: str
    timestamp: datetime


class ProcessDocumentResponse(CamelModel):
    success: bool = True
    document: ProcessedDocumentSummary
    pipeline: PipelineSummary
    decisions: list[DecisionSummary]
    # omitted from the body when the run had no errors
    errors: Optional[list[PipelineError]] = None


# ── POST /api/agents ──────────────────────────────────────

class DecisionBrief(CamelModel):
    agent_id: str
    action: str
    outcome: str
    confidence_score: float
    reasoning: str


class RunPipelineResult(CamelModel):
    document_id: str
    trace_id: str
    status: DocumentStatus
    decisions_count: int
    decisions: list[DecisionBrief]
    duration_ms: int
    errors: list[PipelineError] = Field(default_factory=list)


class RunPipelineResponse(CamelModel):
    success: bool = True
    result: RunPipelineResult


# ── GET /api/agents ───────────────────────────────────────

class AgentHealthSummary(CamelModel):
    total_agents: int
    idle: int
    processing: int
    error: int


class AgentInfo(CamelModel):
    id: str
    name: str
    capabilities: list[Capability]
    status: AgentRunState
    last_processed_at: Optional[datetime] = None
    processed_count: int
    average_latency_ms: float


class AgentsHealthResponse(CamelModel):
    status: str = "healthy"
    timestamp: datetime
    health: AgentHealthSummary
    agents: list[AgentInfo]


# ── GET /api/documents/{id}/decisions ─────────────────────

class StoredDecisionResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    trace_id: str
    agent_id: str
    action: str
    reasoning: str
    confidence_score: float = Field(ge=0.0, le=1.0)
    outcome: str
    timestamp: datetime
    decision_metadata: Optional[dict[str, Any]] = Field(
        default=None, serialization_alias="metadata"
    )


class DocumentDecisionsResponse(CamelModel):
    document_id: str
    tenant_id: str
    status: DocumentStatus
    decisions: list[StoredDecisionResponse]
