import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from app.pipeline.agents.base import BaseAgent
from app.pipeline.reference_data import ReferenceData, VendorProfile
from app.pipeline.state import Capability, Decision, FinancialDocument, Outcome

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {"critical": 3.0, "high": 2.0, "medium": 1.0, "low": 0.5}


@dataclass(frozen=True)
class RiskSignal:
    category: str  # duplicate | anomaly | suspicious_pattern | velocity | vendor_risk
    severity: str  # low | medium | high | critical
    score: int
    description: str


def score_to_level(score: float) -> str:
    if score >= 80:
        return "critical"
    if score >= 50:
        return "high"
    if score >= 25:
        return "medium"
    return "low"


RECOMMENDATIONS = {
    "low": ("approve", Outcome.SUCCESS),
    "medium": ("review", Outcome.FLAGGED),
    "high": ("escalate", Outcome.FLAGGED),
    "critical": ("block", Outcome.BLOCK),
}


class RiskAgent(BaseAgent):
    """
    Duplicate, anomaly, pattern, velocity and vendor-risk checks folded
    into one composite score (severity-weighted mean of the active
    signals). A critical signal makes the whole assessment critical.
    """

    def __init__(
        self,
        reference_data: ReferenceData,
        velocity_threshold: int = 5,
    ) -> None:
        super().__init__(
            "agent-risk",
            "Risk Assessment Agent",
            [Capability.RISK],
            action="Risk Assessment",
        )
        self.reference_data = reference_data
        self.velocity_threshold = velocity_threshold

    async def process(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision],
    ) -> Decision:
        header = self.require_extracted(document).header
        vendor_name = header.vendor_name or "unknown vendor"
        vendor = None
        if header.vendor_name:
            vendor = await self.reference_data.get_vendor(
                document.tenant_id, header.vendor_name
            )

        signals = [
            await self._check_duplicate(document),
            self._check_amount(document.total),
            self._check_pattern(document.total),
            self._check_velocity(vendor, vendor_name),
            self._check_vendor(vendor, vendor_name),
        ]
        active = [s for s in signals if s.score > 0]

        composite = 0
        if active:
            weighted = sum(s.score * SEVERITY_WEIGHTS[s.severity] for s in active)
            total_weight = sum(SEVERITY_WEIGHTS[s.severity] for s in active)
            composite = min(100, round(weighted / total_weight))

        level = score_to_level(composite)
        if any(s.severity == "critical" for s in active):
            level = "critical"
        recommendation, outcome = RECOMMENDATIONS[level]
        confidence = round(1 - composite / 100, 2)

        logger.info(
            "Risk for %s: score=%d level=%s", document.id, composite, level
        )
        return self.decide(
            document,
            self._reasoning(composite, level, active, recommendation),
            confidence,
            outcome,
            riskScore=composite,
            riskLevel=level,
            signals=[s.category for s in active],
        )

    async def _check_duplicate(self, document: FinancialDocument) -> RiskSignal:
        header = document.header
        if header and header.invoice_number and header.vendor_name:
            duplicate = await self.reference_data.is_duplicate_invoice(
                document.tenant_id,
                header.vendor_name,
                header.invoice_number,
                document.id,
            )
            if duplicate:
                return RiskSignal(
                    "duplicate", "critical", 95,
                    f"Potential duplicate detected. Invoice number "
                    f"{header.invoice_number} from {header.vendor_name} "
                    "matches an existing record.",
                )
        return RiskSignal("duplicate", "low", 0, "No duplicate invoices detected.")

    @staticmethod
    def _check_amount(amount: float) -> RiskSignal:
        if amount > 50000:
            return RiskSignal(
                "anomaly", "high", 70,
                f"Invoice amount {amount:.2f} exceeds the high-value threshold of 50000.00.",
            )
        if amount > 10000:
            return RiskSignal(
                "anomaly", "medium", 30,
                f"Invoice amount {amount:.2f} is above average but within acceptable range.",
            )
        return RiskSignal(
            "anomaly", "low", 5,
            f"Invoice amount {amount:.2f} is within normal range.",
        )

    @staticmethod
    def _check_pattern(amount: float) -> RiskSignal:
        if amount > 5000 and amount % 1000 == 0:
            return RiskSignal(
                "suspicious_pattern", "medium", 40,
                f"Round amount ({amount:.2f}) on high-value invoice. "
                "Pattern flagged for verification.",
            )
        return RiskSignal(
            "suspicious_pattern", "low", 0, "No suspicious patterns detected."
        )

    def _check_velocity(
        self, vendor: Optional[VendorProfile], vendor_name: str
    ) -> RiskSignal:
        if vendor is not None and vendor.recent_invoice_count > self.velocity_threshold:
            return RiskSignal(
                "velocity", "medium", 45,
                f"Vendor {vendor_name} has submitted {vendor.recent_invoice_count} "
                f"invoices in the last 7 days, exceeding the "
                f"{self.velocity_threshold}-per-week threshold.",
            )
        return RiskSignal(
            "velocity", "low", 0, "Invoice submission velocity within normal range."
        )

    @staticmethod
    def _check_vendor(
        vendor: Optional[VendorProfile], vendor_name: str
    ) -> RiskSignal:
        if vendor is None:
            return RiskSignal(
                "vendor_risk", "low", 5,
                f"No risk profile on file for {vendor_name}; default low risk applied.",
            )
        score = vendor.risk_score
        if score > 75:
            return RiskSignal(
                "vendor_risk", "high", score,
                f"Vendor {vendor_name} has elevated risk profile (score: {score}/100).",
            )
        if score > 40:
            return RiskSignal(
                "vendor_risk", "medium", round(score * 0.5),
                f"Vendor risk profile moderate (score: {score}/100).",
            )
        return RiskSignal(
            "vendor_risk", "low", 5,
            f"Vendor risk profile low (score: {score}/100). No concerns.",
        )

    @staticmethod
    def _reasoning(
        composite: int,
        level: str,
        active: list[RiskSignal],
        recommendation: str,
    ) -> str:
        parts = [f"Composite risk score: {composite}/100 ({level})."]
        if active:
            listed = ", ".join(f"{s.category} [{s.severity}]" for s in active)
            parts.append(f"Active signals ({len(active)}): {listed}.")
            highest = max(active, key=lambda s: s.score)
            parts.append(f"Primary concern: {highest.description}")
        else:
            parts.append("No risk signals triggered.")
        parts.append(f"Recommendation: {recommendation}.")
        return " ".join(parts)
