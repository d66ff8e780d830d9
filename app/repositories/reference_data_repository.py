import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.pipeline.reference_data import (
    GoodsReceipt,
    InMemoryReferenceData,
    PurchaseOrder,
    ReferenceData,
    VendorProfile,
    load_reference_data,
)
from app.repositories.document_repository import DocumentRepository

logger = logging.getLogger(__name__)


class StoredDocumentReferenceData:
    """
    Master data (vendors, purchase orders, receipts) from an in-memory
    seed; duplicate invoice checks against the stored financial_documents.

    The orchestrator outlives any request, so each lookup opens its own
    session.
    """

    def __init__(
        self,
        master: InMemoryReferenceData,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.master = master
        self.session_factory = session_factory

    async def get_vendor(
        self, tenant_id: str, vendor_name: str
    ) -> Optional[VendorProfile]:
        return await self.master.get_vendor(tenant_id, vendor_name)

    async def get_purchase_order(
        self, tenant_id: str, po_number: str
    ) -> Optional[PurchaseOrder]:
        return await self.master.get_purchase_order(tenant_id, po_number)

    async def get_receipt(
        self, tenant_id: str, po_number: str
    ) -> Optional[GoodsReceipt]:
        return await self.master.get_receipt(tenant_id, po_number)

    async def is_duplicate_invoice(
        self,
        tenant_id: str,
        vendor_name: str,
        invoice_number: str,
        document_id: str,
    ) -> bool:
        if await self.master.is_duplicate_invoice(
            tenant_id, vendor_name, invoice_number, document_id
        ):
            return True
        async with self.session_factory() as session:
            record = await DocumentRepository(session).find_invoice(
                tenant_id, vendor_name, invoice_number, exclude_id=document_id
            )
        if record is not None:
            logger.debug(
                "Invoice %s from %s already stored as %s",
                invoice_number, vendor_name, record.id,
            )
        return record is not None


def create_reference_data(
    config: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> ReferenceData:
    """
    Reference data for the service: the REFERENCE_DATA_PATH seed when set,
    plus stored-document duplicate checks while results are persisted.
    """
    master = InMemoryReferenceData()
    if config.REFERENCE_DATA_PATH:
        load_reference_data(config.REFERENCE_DATA_PATH, into=master)
    else:
        logger.warning(
            "REFERENCE_DATA_PATH is not set; vendor and purchase order lookups will find nothing"
        )

    if not config.PERSIST_PIPELINE_RESULTS:
        return master
    if session_factory is None:
        from app.core.database import AsyncSessionLocal

        session_factory = AsyncSessionLocal
    return StoredDocumentReferenceData(master, session_factory)
