"""Unit tests for the standard agent suite."""
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.pipeline.agents.approval_agent import ApprovalAgent
from app.pipeline.agents.capture_agent import CaptureAgent, SYNTHETIC_LINE_DESCRIPTION
from app.pipeline.agents.classification_agent import ClassificationAgent
from app.pipeline.agents.compliance_agent import ComplianceAgent
from app.pipeline.agents.matching_agent import MatchingAgent
from app.pipeline.agents.payment_agent import PaymentAgent
from app.pipeline.agents.risk_agent import RiskAgent
from app.pipeline.exceptions import AgentExecutionError
from app.pipeline.reference_data import (
    GoodsReceipt,
    InMemoryReferenceData,
    PurchaseOrder,
    PurchaseOrderLine,
    VendorProfile,
)
from app.pipeline.state import Capability, Decision, LineItem, Money

from conftest import TENANT


def _trail_decision(capability: Capability, outcome: str) -> Decision:
    return Decision(
        id=f"d-{capability.value}",
        agent_id=f"agent-{capability.value}",
        document_id="doc-1",
        action=capability.value,
        reasoning="earlier stage",
        confidence_score=0.9,
        outcome=outcome,
        metadata={"capability": capability.value},
    )


# ── Capture ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_capture_synthesizes_line_item(make_document) -> None:
    doc = make_document()
    result = await CaptureAgent().run(doc)

    data = result.document.extracted_data
    assert len(data.line_items) == 1
    assert data.line_items[0].description == SYNTHETIC_LINE_DESCRIPTION
    assert data.line_items[0].total_amount == 499.0
    assert data.header.subtotal_amount.amount == 499.0
    assert result.decision.outcome == "success"
    assert result.decision.action == "Data Extraction"
    # only invoice_date among the optional fields
    assert result.decision.confidence_score == 0.76
    assert result.document.ai_confidence == 0.76


@pytest.mark.asyncio
async def test_capture_does_not_touch_input_document(make_document) -> None:
    doc = make_document()
    await CaptureAgent().run(doc)
    assert doc.extracted_data.line_items == []
    assert doc.extracted_data.header.subtotal_amount is None


@pytest.mark.asyncio
async def test_capture_requires_header_fields(make_document) -> None:
    doc = make_document(vendor_name=None)
    with pytest.raises(AgentExecutionError) as exc_info:
        await CaptureAgent().run(doc)
    assert "vendor_name" in str(exc_info.value)
    assert exc_info.value.agent_id == "agent-capture"
    assert exc_info.value.stage is Capability.EXTRACTION


@pytest.mark.asyncio
async def test_capture_repairs_line_math(make_document) -> None:
    doc = make_document(
        amount=1000.0,
        line_items=[LineItem(description="Laptop", quantity=2, unit_price=500.0)],
    )
    result = await CaptureAgent().run(doc)
    item = result.document.extracted_data.line_items[0]
    assert item.total_amount == 1000.0
    assert "does not match" not in result.decision.reasoning


@pytest.mark.asyncio
async def test_capture_penalizes_line_total_mismatch(make_document) -> None:
    doc = make_document(
        line_items=[LineItem(description="Widget", quantity=1, unit_price=100.0, total_amount=100.0)],
    )
    result = await CaptureAgent().run(doc)
    assert result.decision.confidence_score == 0.56
    assert "does not match subtotal 499.00" in result.decision.reasoning


@pytest.mark.asyncio
async def test_capture_subtotal_excludes_tax(make_document) -> None:
    doc = make_document(amount=110.0, tax_amount=Money(amount=10.0))
    result = await CaptureAgent().run(doc)
    assert result.document.extracted_data.header.subtotal_amount.amount == 100.0


@pytest.mark.asyncio
async def test_capture_uses_llm_chain_for_raw_text(make_document) -> None:
    doc = make_document()
    doc.extracted_data = None
    doc.metadata["rawText"] = "INVOICE INV-77 from Globex, total 250.00"
    chain = MagicMock()
    chain.ainvoke = AsyncMock(return_value={
        "invoice_number": "INV-77",
        "vendor_name": "Globex",
        "total_amount": 250.0,
        "currency": "EUR",
        "line_items": [{"description": "Consulting", "quantity": 1, "unit_price": 250, "total": 250}],
    })

    result = await CaptureAgent(extraction_chain=chain).run(doc)

    chain.ainvoke.assert_awaited_once_with({"raw_text": doc.metadata["rawText"]})
    header = result.document.extracted_data.header
    assert header.invoice_number == "INV-77"
    assert header.total_amount.currency == "EUR"
    assert result.document.extracted_data.line_items[0].description == "Consulting"
    assert "LLM extraction" in result.decision.reasoning


@pytest.mark.asyncio
async def test_capture_wraps_llm_failures(make_document) -> None:
    doc = make_document()
    doc.extracted_data = None
    doc.metadata["rawText"] = "garbled"
    chain = MagicMock()
    chain.ainvoke = AsyncMock(side_effect=RuntimeError("connection refused"))

    with pytest.raises(AgentExecutionError) as exc_info:
        await CaptureAgent(extraction_chain=chain).run(doc)
    assert "LLM extraction failed" in str(exc_info.value)


@pytest.mark.asyncio
async def test_capture_without_data_or_chain_fails(make_document) -> None:
    doc = make_document()
    doc.extracted_data = None
    doc.metadata["rawText"] = "INVOICE"
    with pytest.raises(AgentExecutionError):
        await CaptureAgent().run(doc)


# ── Classification ────────────────────────────────────────

@pytest.mark.asyncio
async def test_classification_codes_lines_and_picks_dominant(make_document) -> None:
    doc = make_document(amount=1000.0, line_items=[
        LineItem(description="Annual software license", total_amount=800.0),
        LineItem(description="Office paper", total_amount=200.0),
    ])
    result = await ClassificationAgent().run(doc)

    items = result.document.extracted_data.line_items
    assert [i.gl_code for i in items] == ["6001", "6100"]
    assert result.decision.outcome == "6001"
    assert result.decision.confidence_score == 0.95


@pytest.mark.asyncio
async def test_classification_falls_back_to_general_expense(make_document) -> None:
    doc = make_document(line_items=[LineItem(description="Misc", total_amount=499.0)])
    result = await ClassificationAgent().run(doc)
    assert result.decision.outcome == "6900"
    assert result.decision.confidence_score == 0.65
    assert result.document.extracted_data.line_items[0].confidence == 0.6


@pytest.mark.asyncio
async def test_classification_uses_vendor_name(make_document) -> None:
    doc = make_document(
        vendor_name="FastFreight Logistics",
        line_items=[LineItem(description="Invoice 4471", total_amount=499.0)],
    )
    result = await ClassificationAgent().run(doc)
    assert result.decision.outcome == "6400"


@pytest.mark.asyncio
async def test_classification_requires_line_items(make_document) -> None:
    with pytest.raises(AgentExecutionError):
        await ClassificationAgent().run(make_document())


# ── Compliance ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_compliance_passes_clean_document(make_document, reference_data) -> None:
    result = await ComplianceAgent(reference_data).run(make_document())
    assert result.decision.outcome == "success"
    assert result.decision.confidence_score == 1.0


@pytest.mark.asyncio
async def test_compliance_blocks_schema_failure(make_document, reference_data) -> None:
    doc = make_document()
    doc.raw_file_ref = "uploads/invalid-ubl.xml"
    result = await ComplianceAgent(reference_data).run(doc)
    assert result.decision.outcome == "block"
    assert "UBL-CR-001" in result.decision.reasoning


@pytest.mark.asyncio
async def test_compliance_french_invoices_need_facturx(make_document, reference_data) -> None:
    agent = ComplianceAgent(reference_data)
    doc = make_document()
    doc.metadata["country"] = "FR"
    assert (await agent.run(doc)).decision.outcome == "block"

    doc.metadata["hasPdfEmbedding"] = True
    assert (await agent.run(doc)).decision.outcome == "success"


@pytest.mark.asyncio
async def test_compliance_tax_id_requirement(make_document, reference_data) -> None:
    agent = ComplianceAgent(reference_data, require_tax_id=True)

    unknown = make_document(vendor_name="Shadow Supplies")
    result = await agent.run(unknown)
    assert result.decision.outcome == "block"
    assert "tax ID missing" in result.decision.reasoning

    on_invoice = make_document(vendor_name="Shadow Supplies", vendor_tax_id="DE123")
    assert (await agent.run(on_invoice)).decision.outcome == "success"

    # Acme's profile carries the tax id
    assert (await agent.run(make_document())).decision.outcome == "success"


@pytest.mark.asyncio
async def test_compliance_vendor_status(make_document, reference_data) -> None:
    reference_data.add_vendor(TENANT, VendorProfile(vendor_name="Pending Co", compliance_status="pending"))
    reference_data.add_vendor(TENANT, VendorProfile(vendor_name="Bad Co", compliance_status="non_compliant"))
    agent = ComplianceAgent(reference_data)

    assert (await agent.run(make_document(vendor_name="Pending Co"))).decision.outcome == "flagged"
    assert (await agent.run(make_document(vendor_name="Bad Co"))).decision.outcome == "block"


# ── Matching ──────────────────────────────────────────────

@pytest.fixture
def po_reference(reference_data: InMemoryReferenceData) -> InMemoryReferenceData:
    reference_data.add_purchase_order(TENANT, PurchaseOrder(
        po_number="PO-100",
        vendor_name="Acme",
        lines=[
            PurchaseOrderLine(description="Laptop", amount=1000.0),
            PurchaseOrderLine(description="Monitor", amount=500.0),
        ],
    ))
    return reference_data


def _po_document(make_document, laptop: float, monitor: float):
    return make_document(
        amount=laptop + monitor,
        po_number="PO-100",
        line_items=[
            LineItem(description="Laptop", total_amount=laptop),
            LineItem(description="Monitor", total_amount=monitor),
        ],
    )


@pytest.mark.asyncio
async def test_matching_non_po_invoice_within_limit(make_document, reference_data) -> None:
    result = await MatchingAgent(reference_data).run(make_document())
    assert result.decision.outcome == "success"
    assert result.decision.confidence_score == 0.8
    assert result.decision.metadata["matchType"] == "non-PO"


@pytest.mark.asyncio
async def test_matching_non_po_invoice_over_limit(make_document, reference_data) -> None:
    result = await MatchingAgent(reference_data).run(make_document(amount=4500.0))
    assert result.decision.outcome == "flagged"
    assert "exceeds the non-PO limit" in result.decision.reasoning


@pytest.mark.asyncio
async def test_matching_unknown_po_blocks(make_document, reference_data) -> None:
    result = await MatchingAgent(reference_data).run(make_document(po_number="PO-404"))
    assert result.decision.outcome == "block"
    assert "PO-404" in result.decision.reasoning


@pytest.mark.asyncio
async def test_matching_two_way(make_document, po_reference) -> None:
    result = await MatchingAgent(po_reference).run(_po_document(make_document, 1000.0, 500.0))
    assert result.decision.outcome == "success"
    assert result.decision.confidence_score == 0.92
    assert result.decision.metadata["matchType"] == "2-way"


@pytest.mark.asyncio
async def test_matching_three_way(make_document, po_reference) -> None:
    po_reference.add_receipt(TENANT, GoodsReceipt(receipt_number="GR-1", po_number="PO-100"))
    result = await MatchingAgent(po_reference).run(_po_document(make_document, 1000.0, 500.0))
    assert result.decision.confidence_score == 0.99
    assert result.decision.metadata["receiptNumber"] == "GR-1"
    assert "GR-1" in result.decision.reasoning


@pytest.mark.asyncio
async def test_matching_variance_flags_partial_match(make_document, po_reference) -> None:
    result = await MatchingAgent(po_reference).run(_po_document(make_document, 1100.0, 500.0))
    assert result.decision.outcome == "flagged"
    assert result.decision.confidence_score == 0.7
    assert "Laptop (10.0% variance)" in result.decision.reasoning


@pytest.mark.asyncio
async def test_matching_variance_blocks_when_nothing_matches(make_document, po_reference) -> None:
    result = await MatchingAgent(po_reference).run(_po_document(make_document, 1500.0, 900.0))
    assert result.decision.outcome == "block"
    assert result.decision.confidence_score == 0.5


# ── Risk ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_risk_low_for_small_invoice(make_document, reference_data) -> None:
    result = await RiskAgent(reference_data).run(make_document())
    assert result.decision.outcome == "success"
    assert result.decision.metadata["riskScore"] == 5
    assert result.decision.confidence_score == 0.95


@pytest.mark.asyncio
async def test_risk_duplicate_is_critical(make_document, reference_data) -> None:
    reference_data.add_invoice(TENANT, "Acme", "INV-1", "doc-0")
    result = await RiskAgent(reference_data).run(make_document())
    assert result.decision.outcome == "block"
    assert result.decision.metadata["riskLevel"] == "critical"
    assert "duplicate" in result.decision.metadata["signals"]


@pytest.mark.asyncio
async def test_risk_same_document_is_not_duplicate(make_document, reference_data) -> None:
    reference_data.add_invoice(TENANT, "Acme", "INV-1", "doc-1")
    result = await RiskAgent(reference_data).run(make_document())
    assert result.decision.outcome == "success"


@pytest.mark.asyncio
async def test_risk_high_value_invoice(make_document, reference_data) -> None:
    result = await RiskAgent(reference_data).run(make_document(amount=60500.0))
    assert result.decision.outcome == "flagged"
    assert result.decision.metadata["riskScore"] == 57
    assert result.decision.metadata["riskLevel"] == "high"


@pytest.mark.asyncio
async def test_risk_round_amount(make_document, reference_data) -> None:
    result = await RiskAgent(reference_data).run(make_document(amount=20000.0))
    assert result.decision.metadata["riskScore"] == 29
    assert result.decision.metadata["riskLevel"] == "medium"
    assert "suspicious_pattern" in result.decision.metadata["signals"]


@pytest.mark.asyncio
async def test_risk_vendor_profile_and_velocity(make_document, reference_data) -> None:
    reference_data.add_vendor(TENANT, VendorProfile(vendor_name="Risky Co", risk_score=80))
    reference_data.add_vendor(TENANT, VendorProfile(vendor_name="Busy Co", risk_score=10, recent_invoice_count=9))
    agent = RiskAgent(reference_data)

    risky = await agent.run(make_document(vendor_name="Risky Co"))
    assert risky.decision.metadata["riskScore"] == 65
    assert risky.decision.outcome == "flagged"

    busy = await agent.run(make_document(vendor_name="Busy Co"))
    assert busy.decision.metadata["riskScore"] == 25
    assert "velocity" in busy.decision.metadata["signals"]


# ── Approval ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_approval_auto_approves_low_value(make_document, reference_data) -> None:
    result = await ApprovalAgent(reference_data).run(make_document())
    assert result.decision.outcome == "success"
    assert result.decision.confidence_score == 0.99
    assert result.decision.metadata["approvalTier"] == "auto"


@pytest.mark.parametrize("amount, tier", [
    (5000.0, "manager"),
    (20000.0, "director"),
    (75000.0, "vp"),
    (150000.0, "cfo"),
])
@pytest.mark.asyncio
async def test_approval_routes_to_tier(make_document, reference_data, amount, tier) -> None:
    result = await ApprovalAgent(reference_data).run(make_document(amount=amount))
    assert result.decision.outcome == "flagged"
    assert result.decision.metadata["approvalTier"] == tier
    assert f"Routed to {tier}" in result.decision.reasoning


@pytest.mark.asyncio
async def test_approval_rejects_non_compliant_vendor(make_document, reference_data) -> None:
    reference_data.add_vendor(TENANT, VendorProfile(vendor_name="Bad Co", compliance_status="non_compliant"))
    result = await ApprovalAgent(reference_data).run(make_document(vendor_name="Bad Co"))
    assert result.decision.outcome == "reject"
    assert "Block Non-Compliant Vendors" in result.decision.reasoning


@pytest.mark.asyncio
async def test_approval_rejects_after_compliance_block(make_document, reference_data) -> None:
    trail = [_trail_decision(Capability.COMPLIANCE, "block")]
    result = await ApprovalAgent(reference_data).run(make_document(), trail)
    assert result.decision.outcome == "reject"


@pytest.mark.asyncio
async def test_approval_flags_new_vendor(make_document, reference_data) -> None:
    reference_data.add_vendor(TENANT, VendorProfile(vendor_name="Fresh Co", onboarded_at=date(2026, 1, 1)))
    result = await ApprovalAgent(reference_data).run(
        make_document(vendor_name="Fresh Co", amount=200.0, invoice_date="2026-01-15")
    )
    assert result.decision.outcome == "flagged"
    assert "Flag New Vendors" in result.decision.reasoning


@pytest.mark.asyncio
async def test_approval_escalates_flagged_risk(make_document, reference_data) -> None:
    trail = [_trail_decision(Capability.RISK, "flagged")]
    result = await ApprovalAgent(reference_data).run(make_document(), trail)
    assert result.decision.outcome == "flagged"
    assert result.decision.metadata["approvalTier"] == "manager"


@pytest.mark.asyncio
async def test_approval_workflow_id_depends_on_content_only(make_document, reference_data) -> None:
    agent = ApprovalAgent(reference_data)
    first = await agent.run(make_document(doc_id="doc-a", amount=5000.0))
    second = await agent.run(make_document(doc_id="doc-b", amount=5000.0))
    assert first.decision.metadata["workflowId"] == second.decision.metadata["workflowId"]
    assert first.decision.reasoning == second.decision.reasoning


# ── Payment ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_payment_takes_early_discount(make_document) -> None:
    reference = InMemoryReferenceData()
    reference.add_vendor(TENANT, VendorProfile(vendor_name="Acme", discount_terms="2/10 net 30", payment_method="WIRE"))
    result = await PaymentAgent(reference).run(make_document(amount=1000.0, invoice_date="2026-01-01"))

    schedule = result.document.metadata["paymentSchedule"]
    assert schedule["scheduledDate"] == "2026-01-11"
    assert schedule["discountAmount"] == 20.0
    assert schedule["amount"] == 980.0
    assert schedule["method"] == "WIRE"
    assert result.decision.outcome == "success"


@pytest.mark.asyncio
async def test_payment_uses_net_terms(make_document) -> None:
    reference = InMemoryReferenceData()
    reference.add_vendor(TENANT, VendorProfile(vendor_name="Acme", payment_terms="Net 45"))
    result = await PaymentAgent(reference).run(make_document(invoice_date="2026-01-01"))
    assert result.decision.metadata["scheduledDate"] == "2026-02-15"
    assert "Net 45" in result.decision.reasoning


@pytest.mark.asyncio
async def test_payment_defaults_without_vendor(make_document) -> None:
    result = await PaymentAgent(InMemoryReferenceData()).run(make_document(invoice_date="2026-01-01"))
    assert result.decision.metadata["scheduledDate"] == "2026-01-31"
    assert result.decision.metadata["paymentMethod"] == "ACH"
