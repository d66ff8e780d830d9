from datetime import datetime
from sqlalchemy import (
    String, Float, Text, DateTime, JSON, ForeignKey, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.database import Base
from app.pipeline.state import DocumentStatus, SourceType, utcnow


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class FinancialDocumentRecord(Base):
    __tablename__ = "financial_documents"

    # Primary Key
    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True, nullable=False)

    # Provenance
    source_type: Mapped[SourceType] = mapped_column(
        SAEnum(SourceType, values_callable=_values), nullable=False
    )
    raw_file_ref: Mapped[str] = mapped_column(String, default="", nullable=False)

    # Searchable header fields, copied out of extracted_data
    invoice_number: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    vendor_name: Mapped[str | None] = mapped_column(String, nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    # JSON fields (camelCase, as serialized by the pipeline models)
    extracted_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes
    document_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    status: Mapped[DocumentStatus] = mapped_column(
        SAEnum(DocumentStatus, values_callable=_values),
        default=DocumentStatus.INGESTED,
        nullable=False,
    )
    ai_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    decisions: Mapped[list["AgentDecisionRecord"]] = relationship(
        back_populates="document",
        order_by="AgentDecisionRecord.timestamp",
        cascade="all, delete-orphan",
    )


class AgentDecisionRecord(Base):
    __tablename__ = "agent_decisions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    document_id: Mapped[str] = mapped_column(
        ForeignKey("financial_documents.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    tenant_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    trace_id: Mapped[str] = mapped_column(String, index=True, nullable=False)

    agent_id: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    outcome: Mapped[str] = mapped_column(String, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    decision_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    document: Mapped[FinancialDocumentRecord] = relationship(back_populates="decisions")
