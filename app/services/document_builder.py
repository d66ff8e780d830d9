"""
Expands request bodies into FinancialDocument instances.

The orchestrator only ever sees fully-formed documents; everything that
fills gaps in what a caller sent lives here.
"""
import random
import uuid
from datetime import date
from typing import Any, Optional

from app.core.config import settings
from app.pipeline.state import (
    ExtractedData,
    FinancialDocument,
    InvoiceHeader,
    LineItem,
    Money,
    SourceType,
)
from app.schemas.agents import ProcessDocumentRequest

DEFAULT_VENDOR_NAME = "Unknown Vendor"
API_LINE_DESCRIPTION = "Line item from API submission"


def random_invoice_number() -> str:
    return f"INV-{random.randint(0, 99999)}"


def build_from_minimal_fields(
    payload: ProcessDocumentRequest,
    tenant_id: Optional[str] = None,
    currency: Optional[str] = None,
) -> FinancialDocument:
    invoice_number = payload.invoice_number or random_invoice_number()
    vendor_name = payload.vendor_name or DEFAULT_VENDOR_NAME
    amount = payload.amount or 0.0
    currency = payload.currency or currency or settings.DEFAULT_CURRENCY

    header = InvoiceHeader(
        invoice_number=invoice_number,
        invoice_date=payload.invoice_date or date.today().isoformat(),
        due_date=payload.due_date,
        vendor_name=vendor_name,
        vendor_id=payload.vendor_id,
        total_amount=Money(amount=amount, currency=currency),
        tax_amount=(
            Money(amount=payload.tax_amount, currency=currency)
            if payload.tax_amount else None
        ),
        po_number=payload.po_number,
    )
    line_items = payload.line_items or [
        LineItem(
            description=API_LINE_DESCRIPTION,
            quantity=1,
            unit_price=amount,
            total_amount=amount,
        )
    ]

    metadata = {
        "senderEmail": payload.sender_email,
        "originalFileName": payload.file_name,
        "submittedVia": "api",
    }
    return FinancialDocument(
        id=str(uuid.uuid4()),
        tenant_id=payload.tenant_id or tenant_id or settings.DEFAULT_TENANT_ID,
        source_type=payload.source_type or SourceType.API,
        raw_file_ref=payload.raw_file_ref or f"api-submission/{invoice_number}",
        metadata={k: v for k, v in metadata.items() if v is not None},
        extracted_data=ExtractedData(header=header, line_items=line_items),
    )


def document_from_payload(
    raw: dict[str, Any],
    assign_id: bool = False,
) -> FinancialDocument:
    """
    Validate a full document body. With assign_id, a body without an id
    gets a fresh one instead of failing validation.
    """
    if assign_id and not raw.get("id"):
        raw = {**raw, "id": str(uuid.uuid4())}
    if not raw.get("status"):
        raw = {key: value for key, value in raw.items() if key != "status"}
    return FinancialDocument.model_validate(raw)


def build_document(payload: ProcessDocumentRequest) -> FinancialDocument:
    """Full document if one was sent, otherwise expand the minimal fields."""
    if payload.document:
        return document_from_payload(payload.document, assign_id=True)
    return build_from_minimal_fields(payload)
