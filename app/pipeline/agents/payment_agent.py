import logging
import re
from datetime import date, timedelta
from typing import Optional, Sequence

from app.pipeline.agents.base import BaseAgent
from app.pipeline.reference_data import ReferenceData
from app.pipeline.state import Capability, Decision, FinancialDocument, Outcome

logger = logging.getLogger(__name__)

# "2/10 net 30": 2% off when paid within 10 days, otherwise due in 30
DISCOUNT_TERMS = re.compile(r"(\d+(?:\.\d+)?)\s*/\s*(\d+)\s*net\s*(\d+)", re.IGNORECASE)
NET_TERMS = re.compile(r"net\s*(\d+)", re.IGNORECASE)
DEFAULT_NET_DAYS = 30


class PaymentAgent(BaseAgent):
    """
    Schedules approved invoices: captures early-payment discounts when
    the vendor offers them, otherwise pays at the end of the net term.
    """

    def __init__(self, reference_data: ReferenceData) -> None:
        super().__init__(
            "agent-payment",
            "Payment Scheduling Agent",
            [Capability.PAYMENT],
            action="Payment Scheduling",
        )
        self.reference_data = reference_data

    async def process(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision],
    ) -> Decision:
        header = self.require_extracted(document).header
        total = document.total
        currency = header.total_amount.currency if header.total_amount else "USD"

        vendor = None
        if header.vendor_name:
            vendor = await self.reference_data.get_vendor(
                document.tenant_id, header.vendor_name
            )
        method = vendor.payment_method if vendor is not None else "ACH"
        base_date = self._invoice_date(header.invoice_date) or document.created_at.date()

        discount = 0.0
        terms = DISCOUNT_TERMS.search(vendor.discount_terms or "") if vendor else None
        if terms:
            percent, discount_days = float(terms.group(1)), int(terms.group(2))
            discount = round(total * percent / 100, 2)
            pay_on = base_date + timedelta(days=discount_days)
            reasoning = (
                f"Identified {percent:g}% early payment discount "
                f"({discount:.2f} {currency}) under terms '{vendor.discount_terms}'."
            )
        else:
            net_days = DEFAULT_NET_DAYS
            if vendor is not None:
                net = NET_TERMS.search(vendor.payment_terms or "")
                if net:
                    net_days = int(net.group(1))
            pay_on = base_date + timedelta(days=net_days)
            reasoning = (
                f"No discount available. Scheduled for Net {net_days} "
                "to maximize cash float."
            )

        reasoning += f" Scheduled for {pay_on.isoformat()} via {method}."
        document.metadata["paymentSchedule"] = {
            "scheduledDate": pay_on.isoformat(),
            "method": method,
            "discountAmount": discount,
            "amount": round(total - discount, 2),
            "currency": currency,
        }

        logger.info("Payment for %s scheduled on %s", document.id, pay_on)
        return self.decide(
            document,
            reasoning,
            0.95,
            Outcome.SUCCESS,
            scheduledDate=pay_on.isoformat(),
            paymentMethod=method,
            discountAmount=discount,
        )

    @staticmethod
    def _invoice_date(value: Optional[str]) -> Optional[date]:
        if not value:
            return None
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
