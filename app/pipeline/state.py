from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """
    Lifecycle of a financial document.
    str Enum so it serializes to the same tokens the
    dashboard and the database use.
    """
    INGESTED = "ingested"
    EXTRACTED = "extracted"
    CLASSIFIED = "classified"
    COMPLIANCE_CHECKED = "compliance_checked"
    MATCHED = "matched"
    FLAGGED_FOR_REVIEW = "flagged_for_review"
    REJECTED = "rejected"
    APPROVED = "approved"
    SCHEDULED_FOR_PAYMENT = "scheduled_for_payment"
    PAID = "paid"


# Position in the lifecycle. The three review outcomes share a rank so a
# human can move a document between them.
STATUS_RANK: dict[DocumentStatus, int] = {
    DocumentStatus.INGESTED: 0,
    DocumentStatus.EXTRACTED: 1,
    DocumentStatus.CLASSIFIED: 2,
    DocumentStatus.COMPLIANCE_CHECKED: 3,
    DocumentStatus.MATCHED: 4,
    DocumentStatus.FLAGGED_FOR_REVIEW: 5,
    DocumentStatus.REJECTED: 5,
    DocumentStatus.APPROVED: 5,
    DocumentStatus.SCHEDULED_FOR_PAYMENT: 6,
    DocumentStatus.PAID: 7,
}


def is_regression(current: DocumentStatus, new: DocumentStatus) -> bool:
    """True when moving from `current` to `new` goes back in the lifecycle."""
    return STATUS_RANK[DocumentStatus(new)] < STATUS_RANK[DocumentStatus(current)]


class SourceType(str, Enum):
    EMAIL = "email"
    API = "api"
    UPLOAD = "upload"
    NETWORK = "network"


class Capability(str, Enum):
    """Stage roles an agent can service."""
    EXTRACTION = "extraction"
    CLASSIFICATION = "classification"
    COMPLIANCE = "compliance"
    MATCHING = "matching"
    RISK = "risk"
    APPROVAL = "approval"
    PAYMENT = "payment"


class Outcome(str, Enum):
    """
    Outcome tokens the sequencer understands. Agents may emit
    other tokens (the classification agent emits a GL code);
    anything not listed here counts as SUCCESS.
    """
    SUCCESS = "success"
    FLAGGED = "flagged"
    BLOCK = "block"
    REJECT = "reject"


class AgentRunState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    ERROR = "error"


class ErrorKind(str, Enum):
    AGENT_ERROR = "agent_error"
    TIMEOUT = "timeout"
    CONTRACT_VIOLATION = "contract_violation"
    CONFIGURATION = "configuration"
    RISK_FLAGGED = "risk_flagged"


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Document ──────────────────────────────────────────────

class Money(CamelModel):
    amount: float
    currency: str = "USD"


class InvoiceHeader(CamelModel):
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_tax_id: Optional[str] = None
    total_amount: Optional[Money] = None
    tax_amount: Optional[Money] = None
    subtotal_amount: Optional[Money] = None
    po_number: Optional[str] = None
    cost_center: Optional[str] = None


class LineItem(CamelModel):
    description: str = ""
    quantity: float = 1
    unit_price: float = 0.0
    total_amount: float = 0.0
    gl_code: Optional[str] = None
    cost_center: Optional[str] = None
    confidence: Optional[float] = None


class ExtractedData(CamelModel):
    header: InvoiceHeader = Field(default_factory=InvoiceHeader)
    line_items: list[LineItem] = Field(default_factory=list)


class FinancialDocument(CamelModel):
    id: str
    tenant_id: str = "tenant-default"
    source_type: SourceType = SourceType.API
    raw_file_ref: str = ""
    status: DocumentStatus = DocumentStatus.INGESTED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)
    extracted_data: Optional[ExtractedData] = None
    ai_confidence: Optional[float] = None

    @property
    def header(self) -> Optional[InvoiceHeader]:
        return self.extracted_data.header if self.extracted_data else None

    @property
    def total(self) -> float:
        """Invoice total, 0.0 when nothing has been extracted yet."""
        header = self.header
        if header is None or header.total_amount is None:
            return 0.0
        return header.total_amount.amount


# ── Audit trail ───────────────────────────────────────────

class Decision(CamelModel):
    """One agent's verdict on one document pass. Never mutated."""
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    agent_id: str
    document_id: str
    action: str
    reasoning: str
    confidence_score: float
    outcome: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def capability(self) -> Optional[Capability]:
        value = self.metadata.get("capability")
        return Capability(value) if value else None


class AgentResult(BaseModel):
    decision: Decision
    document: FinancialDocument


class AgentStatus(CamelModel):
    agent_id: str
    agent_name: str
    capabilities: list[Capability]
    status: AgentRunState = AgentRunState.IDLE
    last_processed_at: Optional[datetime] = None
    processed_count: int = 0
    average_latency_ms: float = 0.0


class PipelineError(CamelModel):
    agent_id: Optional[str] = None
    stage: Optional[Capability] = None
    error: str
    kind: ErrorKind = ErrorKind.AGENT_ERROR
    timestamp: datetime = Field(default_factory=utcnow)
    recoverable: bool = False


class PipelineResult(CamelModel):
    document_id: str
    trace_id: str
    status: DocumentStatus
    decisions: list[Decision] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime
    duration_ms: int = Field(ge=0)
    errors: list[PipelineError] = Field(default_factory=list)
    # Final state of the document after the run, for the caller to persist.
    document: FinancialDocument = Field(exclude=True)


class PipelineState(TypedDict):
    """LangGraph state for one orchestrator run."""
    trace_id: str
    document: FinancialDocument
    decisions: list[Decision]
    errors: list[PipelineError]
    # Capabilities already run at the document's current status.
    completed: list[Capability]
    halted: bool
