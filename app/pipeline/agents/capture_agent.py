import logging
from typing import Any, Optional, Sequence

from langchain_core.runnables import Runnable

from app.pipeline.agents.base import BaseAgent
from app.pipeline.state import (
    Capability,
    Decision,
    ExtractedData,
    FinancialDocument,
    InvoiceHeader,
    LineItem,
    Money,
    Outcome,
)

logger = logging.getLogger(__name__)

REQUIRED_HEADER_FIELDS = ("invoice_number", "vendor_name", "total_amount")
# Fields that raise confidence when present but are not required.
OPTIONAL_HEADER_FIELDS = (
    "invoice_date",
    "due_date",
    "vendor_id",
    "tax_amount",
    "po_number",
)
SYNTHETIC_LINE_DESCRIPTION = "Invoice total (no itemized lines)"


def _num(val: object, default: float) -> float:
    if val is None:
        return default
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def fix_line_item_math(items: list[LineItem]) -> list[LineItem]:
    """
    Fill in a zero total from quantity * unit_price, or a zero
    unit_price from total / quantity.
    """
    fixed: list[LineItem] = []
    for item in items:
        qty, unit, total = item.quantity, item.unit_price, item.total_amount
        if qty <= 0:
            fixed.append(item)
            continue
        if not total and unit > 0:
            total = round(qty * unit, 2)
        if not unit and total > 0:
            unit = round(total / qty, 2)
        fixed.append(item.model_copy(update={"unit_price": unit, "total_amount": total}))
    return fixed


def extracted_from_llm(result: dict[str, Any], currency: str) -> ExtractedData:
    """Map the extraction chain's JSON onto ExtractedData."""
    currency = result.get("currency") or currency

    def money(key: str) -> Optional[Money]:
        value = result.get(key)
        if value is None:
            return None
        return Money(amount=_num(value, 0.0), currency=currency)

    items: list[LineItem] = []
    for raw in result.get("line_items") or []:
        if not isinstance(raw, dict):
            continue
        total_val = raw.get("total") if raw.get("total") is not None else raw.get("amount")
        items.append(LineItem(
            description=str(raw.get("description") or raw.get("item") or "").strip(),
            quantity=_num(raw.get("quantity") or raw.get("qty"), 1),
            unit_price=_num(raw.get("unit_price") or raw.get("rate") or raw.get("price"), 0.0),
            total_amount=_num(total_val, 0.0),
        ))

    header = InvoiceHeader(
        invoice_number=result.get("invoice_number"),
        invoice_date=result.get("invoice_date"),
        due_date=result.get("due_date"),
        vendor_name=result.get("vendor_name"),
        vendor_tax_id=result.get("vendor_tax_id"),
        po_number=result.get("po_number"),
        total_amount=money("total_amount"),
        tax_amount=money("tax_amount"),
        subtotal_amount=money("subtotal"),
    )
    return ExtractedData(header=header, line_items=items)


class CaptureAgent(BaseAgent):
    """
    Extraction stage. Validates the invoice header, repairs line-item
    arithmetic and scores how complete the extraction is.

    Documents submitted without extracted data can be read from
    metadata["rawText"] through an LLM chain when one is configured.
    """

    def __init__(
        self,
        extraction_chain: Optional[Runnable] = None,
        default_currency: str = "USD",
    ) -> None:
        super().__init__(
            "agent-capture",
            "Capture Agent",
            [Capability.EXTRACTION],
            action="Data Extraction",
        )
        self.extraction_chain = extraction_chain
        self.default_currency = default_currency

    async def process(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision],
    ) -> Decision:
        source = "submitted payload"
        if document.extracted_data is None:
            document.extracted_data = await self._extract_from_text(document)
            source = "LLM extraction"

        data = document.extracted_data
        header = data.header

        missing = [f for f in REQUIRED_HEADER_FIELDS if getattr(header, f) is None]
        if missing:
            raise self.fail(
                f"Missing required header fields: {', '.join(missing)}"
            )
        currency = header.total_amount.currency

        if header.subtotal_amount is None:
            tax = header.tax_amount.amount if header.tax_amount else 0.0
            header.subtotal_amount = Money(
                amount=round(header.total_amount.amount - tax, 2),
                currency=currency,
            )
        subtotal = header.subtotal_amount.amount

        notes: list[str] = []
        if data.line_items:
            data.line_items = fix_line_item_math(data.line_items)
        else:
            data.line_items = [LineItem(
                description=SYNTHETIC_LINE_DESCRIPTION,
                quantity=1,
                unit_price=subtotal,
                total_amount=subtotal,
            )]
            notes.append("No line items supplied; synthesized one from the subtotal.")

        present = sum(1 for f in OPTIONAL_HEADER_FIELDS if getattr(header, f))
        confidence = 0.7 + 0.3 * present / len(OPTIONAL_HEADER_FIELDS)

        line_total = round(sum(item.total_amount for item in data.line_items), 2)
        if abs(line_total - subtotal) > 0.01:
            confidence -= 0.2
            notes.append(
                f"Line items total {line_total:.2f} does not match "
                f"subtotal {subtotal:.2f}."
            )
        confidence = round(confidence, 2)
        document.ai_confidence = confidence

        reasoning = (
            f"Validated header for invoice {header.invoice_number} from "
            f"{header.vendor_name} ({source}): total "
            f"{header.total_amount.amount:.2f} {currency}, "
            f"{len(data.line_items)} line item(s), "
            f"{present}/{len(OPTIONAL_HEADER_FIELDS)} optional fields present."
        )
        if notes:
            reasoning += " " + " ".join(notes)

        logger.info(
            "Extraction validated for %s (confidence %.2f)", document.id, confidence
        )
        return self.decide(
            document,
            reasoning,
            confidence,
            Outcome.SUCCESS,
            lineItemCount=len(data.line_items),
        )

    async def _extract_from_text(self, document: FinancialDocument) -> ExtractedData:
        raw_text = document.metadata.get("rawText")
        if not raw_text:
            raise self.fail("Document has neither extracted data nor raw text")
        if self.extraction_chain is None:
            raise self.fail("Document has no extracted data and LLM extraction is disabled")

        logger.info("Running LLM extraction for %s", document.id)
        try:
            result = await self.extraction_chain.ainvoke({"raw_text": raw_text})
        except Exception as e:
            raise self.fail(f"LLM extraction failed: {e}") from e
        if not isinstance(result, dict):
            raise self.fail("LLM extraction returned a non-object response")
        return extracted_from_llm(result, self.default_currency)
