import hashlib
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Sequence

from app.pipeline.agents.base import BaseAgent, find_decision
from app.pipeline.reference_data import ReferenceData, VendorProfile
from app.pipeline.state import Capability, Decision, FinancialDocument, Outcome

logger = logging.getLogger(__name__)

NEW_VENDOR_WINDOW = timedelta(days=90)

# (lower bound, tier), highest first
APPROVAL_TIERS: tuple[tuple[float, str], ...] = (
    (100000, "cfo"),
    (50000, "vp"),
    (10000, "director"),
)


@dataclass(frozen=True)
class PolicyRule:
    id: str
    name: str
    priority: int


@dataclass(frozen=True)
class PolicyMatch:
    rule: PolicyRule
    result: str  # pass | fail | flag
    details: str


POLICIES: tuple[PolicyRule, ...] = (
    PolicyRule("pol-006", "Block Non-Compliant Vendors", 0),
    PolicyRule("pol-001", "Auto-Approve Low Value", 1),
    PolicyRule("pol-007", "Flag New Vendors", 1),
    PolicyRule("pol-002", "Manager Approval Required", 2),
    PolicyRule("pol-003", "Director Approval Required", 3),
    PolicyRule("pol-004", "VP Approval Required", 4),
    PolicyRule("pol-005", "CFO Approval Required", 5),
)


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


class ApprovalAgent(BaseAgent):
    """
    Delegation-of-authority routing. Evaluates the policy set in
    priority order and either auto-approves, routes to a human tier
    (manager, director, vp, cfo) or rejects.
    """

    def __init__(
        self,
        reference_data: ReferenceData,
        auto_approve_limit: float = 1000.0,
    ) -> None:
        super().__init__(
            "agent-approval",
            "Approval Routing Agent",
            [Capability.APPROVAL],
            action="Approval Routing",
        )
        self.reference_data = reference_data
        self.auto_approve_limit = auto_approve_limit

    async def process(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision],
    ) -> Decision:
        header = self.require_extracted(document).header
        amount = document.total

        vendor = None
        if header.vendor_name:
            vendor = await self.reference_data.get_vendor(
                document.tenant_id, header.vendor_name
            )

        risk = find_decision(trail, Capability.RISK)
        high_risk = risk is not None and risk.outcome in (
            Outcome.FLAGGED.value, Outcome.BLOCK.value
        )
        compliance = find_decision(trail, Capability.COMPLIANCE)
        non_compliant = (
            compliance is not None and compliance.outcome == Outcome.BLOCK.value
        ) or (vendor is not None and vendor.compliance_status == "non_compliant")

        invoice_date = _parse_date(header.invoice_date) or document.created_at.date()
        matches = [
            self._evaluate(rule, amount, high_risk, non_compliant, vendor, invoice_date)
            for rule in sorted(POLICIES, key=lambda r: r.priority)
        ]
        blocked = any(m.result == "fail" for m in matches)
        flagged = any(m.result == "flag" for m in matches)

        tier = "auto"
        if blocked:
            tier = "cfo"
        else:
            for bound, name in APPROVAL_TIERS:
                if amount >= bound:
                    tier = name
                    break
            else:
                if amount >= self.auto_approve_limit or flagged or high_risk:
                    tier = "manager"

        auto_approved = tier == "auto" and not (blocked or flagged or high_risk)
        workflow_id = self._workflow_id(document)

        if blocked:
            outcome = Outcome.REJECT
        elif auto_approved:
            outcome = Outcome.SUCCESS
        else:
            outcome = Outcome.FLAGGED

        logger.info(
            "Approval for %s: tier=%s outcome=%s", document.id, tier, outcome.value
        )
        return self.decide(
            document,
            self._reasoning(amount, auto_approved, blocked, tier, matches, high_risk, workflow_id),
            0.99 if auto_approved else 0.95,
            outcome,
            approvalTier=tier,
            workflowId=None if auto_approved else workflow_id,
        )

    def _evaluate(
        self,
        rule: PolicyRule,
        amount: float,
        high_risk: bool,
        non_compliant: bool,
        vendor: Optional[VendorProfile],
        invoice_date: date,
    ) -> PolicyMatch:
        if rule.id == "pol-001":
            qualifies = amount < self.auto_approve_limit
            passed = qualifies and not non_compliant and not high_risk
            details = (
                f"Amount {amount:.2f} qualifies for auto-approval."
                if qualifies
                else f"Amount {amount:.2f} exceeds auto-approval threshold."
            )
            return PolicyMatch(rule, "pass" if passed else "flag", details)
        if rule.id == "pol-006":
            if non_compliant:
                return PolicyMatch(rule, "fail", "Vendor failed compliance check. Invoice blocked.")
            return PolicyMatch(rule, "pass", "Vendor compliance status verified.")
        if rule.id == "pol-007":
            onboarded = vendor.onboarded_at if vendor is not None else None
            if onboarded is not None and invoice_date - onboarded < NEW_VENDOR_WINDOW:
                return PolicyMatch(
                    rule, "flag", "New vendor (< 90 days). Additional review recommended."
                )
            return PolicyMatch(rule, "pass", "Established vendor relationship.")
        return PolicyMatch(rule, "pass", f"Policy {rule.name} evaluated.")

    @staticmethod
    def _workflow_id(document: FinancialDocument) -> str:
        header = document.header
        key = "|".join([
            document.tenant_id,
            (header.vendor_name or "") if header else "",
            (header.invoice_number or "") if header else "",
            f"{document.total:.2f}",
        ])
        return "WF-" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:8].upper()

    @staticmethod
    def _reasoning(
        amount: float,
        auto_approved: bool,
        blocked: bool,
        tier: str,
        matches: list[PolicyMatch],
        high_risk: bool,
        workflow_id: str,
    ) -> str:
        parts = [
            f"Evaluated {len(matches)} active policies against invoice amount {amount:.2f}."
        ]
        failed = [m.rule.name for m in matches if m.result == "fail"]
        flagged = [m.rule.name for m in matches if m.result == "flag"]
        if failed:
            parts.append("BLOCKED by: " + ", ".join(failed) + ".")
        if flagged:
            parts.append("Flagged by: " + ", ".join(flagged) + ".")
        if high_risk:
            parts.append("Elevated risk assessment requires additional approval.")
        if auto_approved:
            parts.append("All policies passed. Invoice auto-approved per delegation matrix.")
        elif blocked:
            parts.append(f"Invoice rejected; escalated to {tier} ({workflow_id}).")
        else:
            parts.append(f"Routed to {tier} approval workflow ({workflow_id}).")
        return " ".join(parts)
