"""
Reference data the agents consult: vendor master records, purchase
orders, goods receipts and previously seen invoices.

Agents depend on the ReferenceData protocol only. The in-memory
implementation backs tests, the demo script and deployments that have
not wired an ERP connector yet. It can be seeded from a JSON file keyed
by tenant id (see load_reference_data).
"""
import logging
from datetime import date
from pathlib import Path
from typing import Literal, Optional, Protocol

from pydantic import Field, TypeAdapter

from app.pipeline.state import CamelModel

logger = logging.getLogger(__name__)


class VendorProfile(CamelModel):
    vendor_name: str
    vendor_id: Optional[str] = None
    tax_id: Optional[str] = None
    # 0-100, higher is riskier
    risk_score: int = Field(default=5, ge=0, le=100)
    compliance_status: Literal["compliant", "non_compliant", "pending"] = "compliant"
    onboarded_at: Optional[date] = None
    payment_method: str = "ACH"
    payment_terms: str = "net 30"
    # e.g. "2/10 net 30"
    discount_terms: Optional[str] = None
    # Invoices received from this vendor in the last 7 days
    recent_invoice_count: int = Field(default=0, ge=0)


class PurchaseOrderLine(CamelModel):
    description: str
    amount: float


class PurchaseOrder(CamelModel):
    po_number: str
    vendor_name: Optional[str] = None
    lines: list[PurchaseOrderLine] = Field(default_factory=list)

    @property
    def total_amount(self) -> float:
        return round(sum(line.amount for line in self.lines), 2)


class GoodsReceipt(CamelModel):
    receipt_number: str
    po_number: str


class ReferenceData(Protocol):
    async def get_vendor(
        self, tenant_id: str, vendor_name: str
    ) -> Optional[VendorProfile]:
        ...

    async def get_purchase_order(
        self, tenant_id: str, po_number: str
    ) -> Optional[PurchaseOrder]:
        ...

    async def get_receipt(
        self, tenant_id: str, po_number: str
    ) -> Optional[GoodsReceipt]:
        ...

    async def is_duplicate_invoice(
        self,
        tenant_id: str,
        vendor_name: str,
        invoice_number: str,
        document_id: str,
    ) -> bool:
        """True when another document already carries this vendor/invoice number."""
        ...


def _key(value: str) -> str:
    return value.lower().strip()


class InMemoryReferenceData:
    """Tenant-scoped reference data held in dictionaries."""

    def __init__(self) -> None:
        self._vendors: dict[tuple[str, str], VendorProfile] = {}
        self._orders: dict[tuple[str, str], PurchaseOrder] = {}
        self._receipts: dict[tuple[str, str], GoodsReceipt] = {}
        # (tenant, vendor, invoice number) -> document id
        self._invoices: dict[tuple[str, str, str], str] = {}

    def add_vendor(self, tenant_id: str, profile: VendorProfile) -> None:
        self._vendors[(tenant_id, _key(profile.vendor_name))] = profile

    def add_purchase_order(self, tenant_id: str, order: PurchaseOrder) -> None:
        self._orders[(tenant_id, _key(order.po_number))] = order

    def add_receipt(self, tenant_id: str, receipt: GoodsReceipt) -> None:
        self._receipts[(tenant_id, _key(receipt.po_number))] = receipt

    def add_invoice(
        self,
        tenant_id: str,
        vendor_name: str,
        invoice_number: str,
        document_id: str,
    ) -> None:
        key = (tenant_id, _key(vendor_name), _key(invoice_number))
        self._invoices[key] = document_id

    async def get_vendor(
        self, tenant_id: str, vendor_name: str
    ) -> Optional[VendorProfile]:
        return self._vendors.get((tenant_id, _key(vendor_name)))

    async def get_purchase_order(
        self, tenant_id: str, po_number: str
    ) -> Optional[PurchaseOrder]:
        return self._orders.get((tenant_id, _key(po_number)))

    async def get_receipt(
        self, tenant_id: str, po_number: str
    ) -> Optional[GoodsReceipt]:
        return self._receipts.get((tenant_id, _key(po_number)))

    async def is_duplicate_invoice(
        self,
        tenant_id: str,
        vendor_name: str,
        invoice_number: str,
        document_id: str,
    ) -> bool:
        key = (tenant_id, _key(vendor_name), _key(invoice_number))
        seen = self._invoices.get(key)
        return seen is not None and seen != document_id

    def seed(self, tenant_id: str, data: "ReferenceSeed") -> None:
        for profile in data.vendors:
            self.add_vendor(tenant_id, profile)
        for order in data.purchase_orders:
            self.add_purchase_order(tenant_id, order)
        for receipt in data.receipts:
            self.add_receipt(tenant_id, receipt)


class ReferenceSeed(CamelModel):
    """One tenant's entry in a reference data file."""
    vendors: list[VendorProfile] = Field(default_factory=list)
    purchase_orders: list[PurchaseOrder] = Field(default_factory=list)
    receipts: list[GoodsReceipt] = Field(default_factory=list)


_seed_file = TypeAdapter(dict[str, ReferenceSeed])


def load_reference_data(
    path: "str | Path",
    into: Optional[InMemoryReferenceData] = None,
) -> InMemoryReferenceData:
    """
    Load vendors, purchase orders and receipts from a JSON file of the form
    {"<tenant id>": {"vendors": [...], "purchaseOrders": [...], "receipts": [...]}}.
    Raises pydantic.ValidationError on a malformed file.
    """
    data = into or InMemoryReferenceData()
    tenants = _seed_file.validate_json(Path(path).read_bytes())
    for tenant_id, seed in tenants.items():
        data.seed(tenant_id, seed)
        logger.info(
            "Loaded reference data for %s: %d vendors, %d purchase orders, %d receipts",
            tenant_id, len(seed.vendors), len(seed.purchase_orders), len(seed.receipts),
        )
    return data
