import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from app.pipeline.agents.base import BaseAgent
from app.pipeline.state import Capability, Decision, FinancialDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GLRule:
    code: str
    label: str
    keywords: tuple[str, ...]


GL_RULES: tuple[GLRule, ...] = (
    GLRule("6001", "Software Subscription", (
        "software", "subscription", "saas", "license", "licence", "cloud", "hosting",
    )),
    GLRule("1500", "Computer Hardware", (
        "laptop", "server", "monitor", "hardware", "computer", "printer",
    )),
    GLRule("6100", "Office Supplies", (
        "paper", "toner", "stationery", "office supplies", "pens", "furniture",
    )),
    GLRule("6200", "Professional Services", (
        "consulting", "advisory", "legal", "audit", "professional services", "retainer",
    )),
    GLRule("6300", "Travel & Entertainment", (
        "travel", "flight", "hotel", "airfare", "lodging", "meal",
    )),
    GLRule("6400", "Freight & Logistics", (
        "freight", "shipping", "logistics", "courier", "delivery", "transport",
    )),
    GLRule("6500", "Utilities", (
        "electricity", "utility", "utilities", "water", "gas", "internet", "telecom",
    )),
)
FALLBACK_RULE = GLRule("6900", "General Expense", ())


def match_rule(text: str) -> Optional[GLRule]:
    lowered = text.lower()
    for rule in GL_RULES:
        if any(keyword in lowered for keyword in rule.keywords):
            return rule
    return None


class ClassificationAgent(BaseAgent):
    """
    GL coding. Each line item is coded from its description, then from
    the vendor name, then falls back to General Expense. The decision
    outcome is the GL code carrying the largest share of the invoice.
    """

    def __init__(self) -> None:
        super().__init__(
            "agent-classification",
            "Classification Agent",
            [Capability.CLASSIFICATION],
            action="GL Classification",
        )

    async def process(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision],
    ) -> Decision:
        data = self.require_extracted(document)
        if not data.line_items:
            raise self.fail("No line items to classify")

        vendor_rule = match_rule(data.header.vendor_name or "")
        amounts: dict[str, float] = {}
        labels: dict[str, str] = {}
        matched = 0

        for item in data.line_items:
            rule = match_rule(item.description)
            if rule is not None:
                matched += 1
                item.confidence = 0.95
            else:
                rule = vendor_rule or FALLBACK_RULE
                item.confidence = 0.75 if vendor_rule else 0.6
            item.gl_code = rule.code
            amounts[rule.code] = amounts.get(rule.code, 0.0) + item.total_amount
            labels[rule.code] = rule.label

        # Largest amount wins; equal amounts go to the lower code.
        dominant = min(amounts, key=lambda code: (-amounts[code], code))
        ratio = matched / len(data.line_items)
        confidence = round(0.65 + 0.3 * ratio, 2)

        reasoning = (
            f"Coded {matched}/{len(data.line_items)} line item(s) from their "
            f"descriptions. Assigned GL Code {dominant} ({labels[dominant]}) "
            f"covering {amounts[dominant]:.2f} of the invoice."
        )
        if matched < len(data.line_items):
            source = (
                f"vendor '{data.header.vendor_name}'"
                if vendor_rule else "the General Expense fallback"
            )
            reasoning += f" Remaining lines coded from {source}."

        logger.info("Classified %s as GL %s", document.id, dominant)
        return self.decide(
            document,
            reasoning,
            confidence,
            dominant,
            glCodes=sorted(amounts),
        )
