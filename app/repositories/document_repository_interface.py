from abc import abstractmethod
from typing import Optional, Sequence
from app.repositories.base_repository import BaseRepository
from app.models.document import AgentDecisionRecord, FinancialDocumentRecord
from app.pipeline.state import Decision, FinancialDocument


class IDocumentRepository(BaseRepository[FinancialDocumentRecord]):

    @abstractmethod
    async def save_document(
        self,
        document: FinancialDocument,
    ) -> FinancialDocumentRecord:
        """Insert the document, or overwrite the stored row with the same id."""
        raise NotImplementedError

    @abstractmethod
    async def append_decisions(
        self,
        document_id: str,
        tenant_id: str,
        trace_id: str,
        decisions: Sequence[Decision],
    ) -> list[AgentDecisionRecord]:
        raise NotImplementedError

    @abstractmethod
    async def list_decisions(
        self,
        document_id: str,
        tenant_id: str,
    ) -> list[AgentDecisionRecord]:
        """Stored audit trail, oldest first."""
        raise NotImplementedError

    @abstractmethod
    async def find_invoice(
        self,
        tenant_id: str,
        vendor_name: str,
        invoice_number: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[FinancialDocumentRecord]:
        """A stored document carrying this vendor/invoice number, other than `exclude_id`."""
        raise NotImplementedError
