import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.document import AgentDecisionRecord, FinancialDocumentRecord
from app.pipeline.state import Decision, DocumentStatus, FinancialDocument, is_regression
from app.repositories.document_repository_interface import IDocumentRepository

logger = logging.getLogger(__name__)


def _header_columns(document: FinancialDocument) -> dict:
    header = document.header
    total = header.total_amount if header else None
    return {
        "invoice_number": header.invoice_number if header else None,
        "vendor_name": header.vendor_name if header else None,
        "total_amount": total.amount if total else None,
        "currency": total.currency if total else None,
    }


class DocumentRepository(IDocumentRepository):

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, entity: FinancialDocumentRecord) -> FinancialDocumentRecord:
        self.db.add(entity)
        await self.db.commit()
        await self.db.refresh(entity)
        logger.info("Created document: %s", entity.id)
        return entity

    async def get_by_id(
        self, entity_id: str, tenant_id: str
    ) -> Optional[FinancialDocumentRecord]:
        result = await self.db.execute(
            select(FinancialDocumentRecord).where(
                FinancialDocumentRecord.id == entity_id,
                FinancialDocumentRecord.tenant_id == tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_all(self, tenant_id: str) -> list[FinancialDocumentRecord]:
        result = await self.db.execute(
            select(FinancialDocumentRecord)
            .where(FinancialDocumentRecord.tenant_id == tenant_id)
            .order_by(FinancialDocumentRecord.created_at.desc())
        )
        return list(result.scalars().all())

    async def update(self, entity: FinancialDocumentRecord) -> FinancialDocumentRecord:
        await self.db.commit()
        await self.db.refresh(entity)
        logger.info("Updated document: %s", entity.id)
        return entity

    async def delete(self, entity_id: str, tenant_id: str) -> bool:
        record = await self.get_by_id(entity_id, tenant_id)
        if not record:
            return False
        await self.db.delete(record)
        await self.db.commit()
        logger.info("Deleted document: %s", entity_id)
        return True

    async def save_document(
        self,
        document: FinancialDocument,
    ) -> FinancialDocumentRecord:
        values = {
            "tenant_id": document.tenant_id,
            "source_type": document.source_type,
            "raw_file_ref": document.raw_file_ref,
            "status": document.status,
            "extracted_data": (
                document.extracted_data.model_dump(mode="json", by_alias=True)
                if document.extracted_data else None
            ),
            "document_metadata": document.metadata,
            "ai_confidence": document.ai_confidence,
            "created_at": document.created_at,
            "updated_at": document.updated_at,
            **_header_columns(document),
        }

        record = await self.db.get(FinancialDocumentRecord, document.id)
        if record is None:
            return await self.create(FinancialDocumentRecord(id=document.id, **values))

        if record.tenant_id != document.tenant_id:
            raise ValueError(
                f"Document {document.id} belongs to another tenant"
            )
        if is_regression(record.status, document.status):
            # resets are explicit updates, never a pipeline write
            logger.warning(
                "Keeping stored status %s for %s (run ended at %s)",
                DocumentStatus(record.status).value, document.id, document.status.value,
            )
            values["status"] = record.status
        for key, value in values.items():
            setattr(record, key, value)
        return await self.update(record)

    async def append_decisions(
        self,
        document_id: str,
        tenant_id: str,
        trace_id: str,
        decisions: Sequence[Decision],
    ) -> list[AgentDecisionRecord]:
        records = [
            AgentDecisionRecord(
                id=decision.id,
                document_id=document_id,
                tenant_id=tenant_id,
                trace_id=trace_id,
                agent_id=decision.agent_id,
                action=decision.action,
                reasoning=decision.reasoning,
                confidence_score=decision.confidence_score,
                outcome=decision.outcome,
                timestamp=decision.timestamp,
                decision_metadata=decision.metadata,
            )
            for decision in decisions
        ]
        self.db.add_all(records)
        await self.db.commit()
        logger.info(
            "Stored %d decisions for document %s (trace %s)",
            len(records), document_id, trace_id,
        )
        return records

    async def list_decisions(
        self,
        document_id: str,
        tenant_id: str,
    ) -> list[AgentDecisionRecord]:
        result = await self.db.execute(
            select(AgentDecisionRecord)
            .where(
                AgentDecisionRecord.document_id == document_id,
                AgentDecisionRecord.tenant_id == tenant_id,
            )
            .order_by(AgentDecisionRecord.timestamp)
        )
        return list(result.scalars().all())

    async def find_invoice(
        self,
        tenant_id: str,
        vendor_name: str,
        invoice_number: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[FinancialDocumentRecord]:
        query = select(FinancialDocumentRecord).where(
            FinancialDocumentRecord.tenant_id == tenant_id,
            func.lower(FinancialDocumentRecord.vendor_name) == vendor_name.strip().lower(),
            func.lower(FinancialDocumentRecord.invoice_number) == invoice_number.strip().lower(),
        )
        if exclude_id is not None:
            query = query.where(FinancialDocumentRecord.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.scalars().first()
