"""Shared fixtures: document factory, reference data, stub agents."""
import asyncio
from datetime import date
from typing import Callable, Optional

import pytest

from app.core.config import Settings
from app.pipeline.agents.base import BaseAgent
from app.pipeline.reference_data import InMemoryReferenceData, VendorProfile
from app.pipeline.state import (
    Capability,
    DocumentStatus,
    ExtractedData,
    FinancialDocument,
    InvoiceHeader,
    LineItem,
    Money,
)

TENANT = "tenant-default"


class StubAgent(BaseAgent):
    """Agent with a canned outcome, for driving the orchestrator."""

    def __init__(
        self,
        capability: Capability,
        outcome: str = "success",
        confidence: float = 0.9,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        agent_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            agent_id or f"stub-{capability.value}",
            f"Stub {capability.value}",
            [capability],
            action=f"Stub {capability.value}",
        )
        self.outcome = outcome
        self.confidence = confidence
        self.delay = delay
        self.error = error

    async def process(self, document, trail):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.decide(
            document, f"{self.action} finished", self.confidence, self.outcome
        )


@pytest.fixture
def stub_agent() -> type[StubAgent]:
    return StubAgent


@pytest.fixture
def make_document() -> Callable[..., FinancialDocument]:
    def _make(
        doc_id: str = "doc-1",
        invoice_number: Optional[str] = "INV-1",
        vendor_name: Optional[str] = "Acme",
        amount: Optional[float] = 499.0,
        status: DocumentStatus = DocumentStatus.INGESTED,
        line_items: Optional[list[LineItem]] = None,
        invoice_date: str = "2026-01-15",
        **header_fields,
    ) -> FinancialDocument:
        header = InvoiceHeader(
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            vendor_name=vendor_name,
            total_amount=Money(amount=amount) if amount is not None else None,
            **header_fields,
        )
        return FinancialDocument(
            id=doc_id,
            tenant_id=TENANT,
            raw_file_ref=f"api-submission/{invoice_number}",
            status=status,
            extracted_data=ExtractedData(header=header, line_items=line_items or []),
        )

    return _make


@pytest.fixture
def reference_data() -> InMemoryReferenceData:
    data = InMemoryReferenceData()
    data.add_vendor(TENANT, VendorProfile(
        vendor_name="Acme",
        vendor_id="V-ACME",
        tax_id="US-12-3456789",
        risk_score=5,
        onboarded_at=date(2021, 3, 1),
    ))
    return data


@pytest.fixture
def test_settings() -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        values = {
            "EXTRACTION_USE_LLM": False,
            "AUTO_SCHEDULE_PAYMENT": False,
            "REQUIRE_VENDOR_TAX_ID": False,
            "AGENT_TIMEOUT_SECONDS": 5.0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make
