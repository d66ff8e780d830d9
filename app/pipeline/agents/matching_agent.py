import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from app.pipeline.agents.base import BaseAgent
from app.pipeline.reference_data import PurchaseOrder, ReferenceData
from app.pipeline.state import (
    Capability,
    Decision,
    FinancialDocument,
    LineItem,
    Outcome,
)

logger = logging.getLogger(__name__)


@dataclass
class LineItemMatch:
    description: str
    invoice_amount: float
    po_amount: float
    variance_percent: float
    matched: bool


@dataclass
class MatchResult:
    match_type: str  # "2-way" | "3-way" | "non-PO"
    po_number: Optional[str]
    receipt_number: Optional[str]
    invoice_variance_percent: float
    within_tolerance: bool
    score: float
    lines: list[LineItemMatch] = field(default_factory=list)


def _variance_percent(invoice_amount: float, po_amount: float) -> float:
    if po_amount == 0:
        return 0.0 if invoice_amount == 0 else 100.0
    return round(abs(invoice_amount - po_amount) / po_amount * 100, 2)


class MatchingAgent(BaseAgent):
    """
    2-way (invoice/PO) and 3-way (invoice/PO/receipt) matching with a
    percentage tolerance. Invoices without a PO are accepted below the
    non-PO limit.
    """

    def __init__(
        self,
        reference_data: ReferenceData,
        tolerance_percent: float = 2.0,
        non_po_limit: float = 1000.0,
    ) -> None:
        super().__init__(
            "agent-matching",
            "Matching Agent",
            [Capability.MATCHING],
            action="PO Matching",
        )
        self.reference_data = reference_data
        self.tolerance_percent = tolerance_percent
        self.non_po_limit = non_po_limit

    async def process(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision],
    ) -> Decision:
        data = self.require_extracted(document)
        header = data.header
        po_number = header.po_number or document.metadata.get("poNumber")
        total = document.total

        order: Optional[PurchaseOrder] = None
        if po_number:
            order = await self.reference_data.get_purchase_order(
                document.tenant_id, po_number
            )

        if order is None:
            return self._decide_without_po(document, po_number, total)

        receipt = await self.reference_data.get_receipt(
            document.tenant_id, order.po_number
        )
        subtotal = header.subtotal_amount.amount if header.subtotal_amount else total
        result = self._match(order, data.line_items, subtotal, receipt is not None)
        result.receipt_number = receipt.receipt_number if receipt else None

        if result.within_tolerance:
            outcome = Outcome.SUCCESS
        elif result.score > 0.5:
            outcome = Outcome.FLAGGED
        else:
            outcome = Outcome.BLOCK

        logger.info(
            "%s match for %s against %s: %s",
            result.match_type, document.id, order.po_number, outcome.value,
        )
        return self.decide(
            document,
            self._reasoning(result),
            result.score,
            outcome,
            matchType=result.match_type,
            poNumber=result.po_number,
            receiptNumber=result.receipt_number,
            variancePercent=result.invoice_variance_percent,
        )

    def _decide_without_po(
        self,
        document: FinancialDocument,
        po_number: Optional[str],
        total: float,
    ) -> Decision:
        if po_number:
            reasoning = (
                f"Referenced Purchase Order {po_number} was not found. "
                "Invoice requires manual PO assignment."
            )
            return self.decide(document, reasoning, 0.3, Outcome.BLOCK, matchType="none")

        if total <= self.non_po_limit:
            reasoning = (
                f"No Purchase Order referenced. Amount {total:.2f} is within the "
                f"non-PO limit of {self.non_po_limit:.2f}; accepted as a non-PO invoice."
            )
            return self.decide(document, reasoning, 0.8, Outcome.SUCCESS, matchType="non-PO")

        reasoning = (
            "No matching Purchase Order found in system. Amount "
            f"{total:.2f} exceeds the non-PO limit of {self.non_po_limit:.2f}; "
            "invoice requires manual PO assignment or non-PO approval workflow."
        )
        return self.decide(document, reasoning, 0.3, Outcome.FLAGGED, matchType="none")

    def _match(
        self,
        order: PurchaseOrder,
        items: list[LineItem],
        subtotal: float,
        has_receipt: bool,
    ) -> MatchResult:
        po_lines = {line.description.lower().strip(): line for line in order.lines}
        lines: list[LineItemMatch] = []
        for index, item in enumerate(items):
            po_line = po_lines.get(item.description.lower().strip())
            if po_line is None and index < len(order.lines):
                po_line = order.lines[index]
            po_amount = po_line.amount if po_line else 0.0
            variance = _variance_percent(item.total_amount, po_amount)
            lines.append(LineItemMatch(
                description=item.description,
                invoice_amount=item.total_amount,
                po_amount=po_amount,
                variance_percent=variance,
                matched=po_line is not None and variance <= self.tolerance_percent,
            ))

        invoice_variance = _variance_percent(subtotal, order.total_amount)
        within = (
            invoice_variance <= self.tolerance_percent
            and all(line.matched for line in lines)
        )
        if within:
            score = 0.99 if has_receipt else 0.92
        else:
            matched = sum(1 for line in lines if line.matched)
            score = 0.5 + (matched / len(lines)) * 0.4 if lines else 0.5

        return MatchResult(
            match_type="3-way" if has_receipt else "2-way",
            po_number=order.po_number,
            receipt_number=None,
            invoice_variance_percent=invoice_variance,
            within_tolerance=within,
            score=round(score, 2),
            lines=lines,
        )

    def _reasoning(self, result: MatchResult) -> str:
        receipt_part = f" and {result.receipt_number}" if result.receipt_number else ""
        matched = sum(1 for line in result.lines if line.matched)
        parts = [
            f"{result.match_type} match performed against {result.po_number}{receipt_part}.",
            f"Overall variance: {result.invoice_variance_percent}% "
            f"(tolerance: {self.tolerance_percent}%).",
            f"Line items matched: {matched}/{len(result.lines)}.",
        ]
        if result.within_tolerance:
            parts.append("All variances within tolerance. Match confirmed.")
        else:
            exceptions = [
                f"{line.description} ({line.variance_percent}% variance)"
                for line in result.lines
                if not line.matched
            ]
            if exceptions:
                parts.append("Exceptions on: " + ", ".join(exceptions) + ".")
            parts.append("Routing for review.")
        return " ".join(parts)
