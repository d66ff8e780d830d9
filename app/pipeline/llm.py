"""
LLM extraction chain for documents that arrive as raw text.

prompt | llm | parser, the same LCEL chain shape used for every model
call in the service. temperature=0 and format="json" keep the output
parseable and repeatable.
"""
import logging

from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.runnables import Runnable
from langchain_ollama import ChatOllama

from app.core.config import settings

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """
You are an accounts-payable clerk extracting structured data
from supplier invoices.

Extract the following fields from the invoice text below.
Return ONLY valid JSON with these exact keys.
If a field is not found, return null for that field.

{{
    "invoice_number": "string or null",
    "invoice_date": "YYYY-MM-DD or null",
    "due_date": "YYYY-MM-DD or null",
    "vendor_name": "string or null",
    "vendor_tax_id": "string or null",
    "po_number": "string or null",
    "currency": "ISO 4217 code or null",
    "subtotal": number or null,
    "tax_amount": number or null,
    "total_amount": number or null,
    "line_items": [
        {{
            "description": "string",
            "quantity": number,
            "unit_price": number,
            "total": number
        }}
    ]
}}

Rules:
- All amounts are numbers, not strings
- Use 1 for quantity when the invoice does not state one
- Return an empty list for line_items only when the invoice has no itemized lines

Invoice Text:
{raw_text}
"""


def build_extraction_chain(
    model: str | None = None,
    base_url: str | None = None,
) -> Runnable:
    llm = ChatOllama(
        model=model or settings.OLLAMA_MODEL,
        temperature=0,
        format="json",
        base_url=base_url or settings.OLLAMA_BASE_URL,
    )
    logger.info("Extraction chain using Ollama model %s", llm.model)
    prompt = ChatPromptTemplate.from_template(EXTRACTION_PROMPT)
    return prompt | llm | JsonOutputParser()
