"""
Runs three sample documents through an in-process orchestrator and
prints the audit trail of each:

1. a small invoice from a low-risk vendor (touchless approval)
2. an invoice from a vendor without a tax ID, with tax IDs required
3. an invoice whose matching agent hangs past its timeout
"""
import asyncio
from datetime import date

from app.core.config import Settings
from app.pipeline.agents.approval_agent import ApprovalAgent
from app.pipeline.agents.capture_agent import CaptureAgent
from app.pipeline.agents.classification_agent import ClassificationAgent
from app.pipeline.agents.compliance_agent import ComplianceAgent
from app.pipeline.agents.matching_agent import MatchingAgent
from app.pipeline.agents.risk_agent import RiskAgent
from app.pipeline.orchestrator import Orchestrator, create_orchestrator
from app.pipeline.reference_data import InMemoryReferenceData, VendorProfile
from app.pipeline.registry import AgentRegistry
from app.pipeline.state import (
    ExtractedData,
    FinancialDocument,
    InvoiceHeader,
    Money,
    PipelineResult,
)


class SlowMatchingAgent(MatchingAgent):
    async def process(self, document, trail):
        await asyncio.sleep(5)
        return await super().process(document, trail)


def make_document(doc_id: str, invoice_number: str, vendor: str, amount: float) -> FinancialDocument:
    return FinancialDocument(
        id=doc_id,
        raw_file_ref=f"api-submission/{invoice_number}",
        extracted_data=ExtractedData(
            header=InvoiceHeader(
                invoice_number=invoice_number,
                invoice_date="2026-01-15",
                vendor_name=vendor,
                total_amount=Money(amount=amount),
            )
        ),
    )


def print_result(title: str, result: PipelineResult) -> None:
    print("\n" + "=" * 60)
    print(f"🚀 {title}")
    print("=" * 60)
    print(f"Trace:     {result.trace_id}")
    print(f"Status:    {result.status.value}")
    print(f"Duration:  {result.duration_ms} ms")
    print(f"\n📋 Decisions ({len(result.decisions)}):")
    for d in result.decisions:
        print(f"   - [{d.agent_id}] {d.action}: {d.outcome} ({d.confidence_score:.2f})")
        print(f"     {d.reasoning}")
    if result.errors:
        print(f"\n⚠️  Errors ({len(result.errors)}):")
        for error in result.errors:
            print(f"   - [{error.kind.value}] {error.error}")


async def main() -> None:
    reference = InMemoryReferenceData()
    reference.add_vendor("tenant-default", VendorProfile(
        vendor_name="Acme",
        vendor_id="V-ACME",
        tax_id="US-12-3456789",
        risk_score=5,
        onboarded_at=date(2021, 3, 1),
    ))
    reference.add_vendor("tenant-default", VendorProfile(
        vendor_name="Shadow Supplies",
        risk_score=20,
        onboarded_at=date(2022, 6, 1),
    ))

    orchestrator = create_orchestrator(Settings(), reference)
    result = await orchestrator.process_document(make_document("doc-1", "INV-1", "Acme", 499))
    print_result("Scenario 1: low-risk vendor", result)

    strict = create_orchestrator(Settings(REQUIRE_VENDOR_TAX_ID=True), reference)
    result = await strict.process_document(
        make_document("doc-2", "INV-2", "Shadow Supplies", 320)
    )
    print_result("Scenario 2: missing vendor tax ID", result)

    registry = AgentRegistry()
    registry.register(CaptureAgent())
    registry.register(ClassificationAgent())
    registry.register(ComplianceAgent(reference))
    registry.register(SlowMatchingAgent(reference))
    registry.register(RiskAgent(reference))
    registry.register(ApprovalAgent(reference))
    impatient = Orchestrator(registry, agent_timeout=0.5)
    result = await impatient.process_document(make_document("doc-3", "INV-3", "Acme", 250))
    print_result("Scenario 3: matching timeout", result)


if __name__ == "__main__":
    asyncio.run(main())
