# ai/agents.py
"""
Classification and extraction agents over the LLM client.

Both agents degrade instead of raising: a failed call or an unreadable answer
gives an UNKNOWN classification or an empty extraction with confidence 0, and
the coordinator turns that into a rejection.
"""

import logging
from typing import Optional

from ai.llm_client import LLMClient, parse_json_response
from ai.models import EXTRACTED_TYPES, ClassificationResult
from config import AI_FAST_MODEL
from domain.enums import DocumentType

logger = logging.getLogger(__name__)

# Documents are truncated to keep prompts inside the model context
MAX_TEXT_CHARS = 30000

CLASSIFICATION_PROMPT = """You classify financial documents of a Belgian freelancer.

Types:
- INVOICE: an invoice the freelancer sends to a client (outgoing)
- BILL: an invoice received from a supplier (incoming, to be paid)
- RECEIPT: a proof of payment from a shop or till, already paid
- EXPENSE: a simple cost document without line items (parking, ticket, fee)
- CREDIT_NOTE: a document that cancels or refunds an earlier invoice
- UNKNOWN: none of the above, or unreadable

Answer with JSON only:
{"documentType": "BILL", "confidence": 0.0-1.0, "reasoning": "one sentence"}"""

_COMMON_RULES = """Rules:
- Answer with JSON only, no markdown
- Use null for anything not present or not readable
- Dates as YYYY-MM-DD
- Amounts as strings with a dot decimal separator ("1234.56")
- VAT rates as strings with a percent sign ("21%")
- Belgian VAT numbers as BE0123456789
- confidence: your overall certainty between 0.0 and 1.0"""

EXTRACTION_PROMPTS = {
    DocumentType.INVOICE: f"""You extract data from an outgoing invoice.

{_COMMON_RULES}

Schema:
{{"vendorName": null, "vendorVatNumber": null, "vendorAddress": null, "invoiceNumber": null,
  "issueDate": null, "dueDate": null, "paymentTerms": null,
  "lineItems": [{{"description": "", "quantity": 1, "unitPrice": "", "vatRate": "21%", "total": ""}}],
  "currency": "EUR", "subtotal": null, "vatBreakdown": [{{"rate": "21%", "base": "", "amount": ""}}],
  "totalVatAmount": null, "totalAmount": null, "iban": null, "bic": null, "paymentReference": null,
  "confidence": 0.0}}""",

    DocumentType.BILL: f"""You extract data from a supplier invoice (a bill the freelancer has to pay).

{_COMMON_RULES}
- amount is the amount excluding VAT, totalAmount the amount to pay
- category is one of OFFICE_SUPPLIES, HARDWARE, SOFTWARE, TRAVEL, TELECOM, MEALS,
  PROFESSIONAL_SERVICES, INSURANCE, UTILITIES, RENT, MARKETING, VEHICLE, OTHER
- paymentReference is the structured communication (+++123/4567/89012+++) when present

Schema:
{{"supplierName": null, "supplierVatNumber": null, "supplierAddress": null, "invoiceNumber": null,
  "issueDate": null, "dueDate": null, "amount": null, "vatAmount": null, "vatRate": null,
  "totalAmount": null, "lineItems": [{{"description": "", "quantity": 1, "unitPrice": "", "vatRate": "21%", "total": ""}}],
  "currency": "EUR", "category": null, "description": null, "iban": null, "paymentReference": null,
  "confidence": 0.0}}""",

    DocumentType.EXPENSE: f"""You extract data from a simple expense document.

{_COMMON_RULES}
- amount is the total paid, VAT included
- paymentMethod is one of BANK_TRANSFER, CREDIT_CARD, DEBIT_CARD, CASH, PAYPAL, OTHER

Schema:
{{"merchant": null, "merchantVatNumber": null, "date": null, "amount": null, "vatAmount": null,
  "vatRate": null, "category": null, "description": null, "paymentMethod": null, "currency": "EUR",
  "confidence": 0.0}}""",

    DocumentType.RECEIPT: f"""You extract data from a till or shop receipt.

{_COMMON_RULES}

Schema:
{{"merchantName": null, "merchantVatNumber": null, "merchantAddress": null, "transactionDate": null,
  "receiptNumber": null, "items": [{{"description": "", "quantity": 1, "unitPrice": "", "total": ""}}],
  "subtotal": null, "vatBreakdown": [{{"rate": "21%", "base": "", "amount": ""}}], "totalAmount": null,
  "paymentMethod": null, "currency": "EUR", "confidence": 0.0}}""",
}
EXTRACTION_PROMPTS[DocumentType.CREDIT_NOTE] = f"""You extract data from a credit note.

{_COMMON_RULES}
- invoiceNumber is the credit note's own number
- originalInvoiceNumber is the number of the invoice being credited, when mentioned
- amounts are positive even when printed with a minus sign

Schema:
{{"vendorName": null, "vendorVatNumber": null, "vendorAddress": null, "invoiceNumber": null,
  "originalInvoiceNumber": null, "issueDate": null,
  "lineItems": [{{"description": "", "quantity": 1, "unitPrice": "", "vatRate": "21%", "total": ""}}],
  "currency": "EUR", "subtotal": null, "vatBreakdown": [{{"rate": "21%", "base": "", "amount": ""}}],
  "totalVatAmount": null, "totalAmount": null, "confidence": 0.0}}"""


def _document_prompt(text: str) -> str:
    if len(text) > MAX_TEXT_CHARS:
        text = text[:MAX_TEXT_CHARS]
    return f"DOCUMENT:\n{text}"


class DocumentClassificationAgent:

    def __init__(self, client: LLMClient, model: str = AI_FAST_MODEL):
        self.client = client
        self.model = model

    async def classify(self, text: str) -> ClassificationResult:
        result = await self.client.complete(self.model, CLASSIFICATION_PROMPT, _document_prompt(text))
        if not result.success:
            logger.warning(f"[Classification] LLM call failed: {result.error}")
            return ClassificationResult(DocumentType.UNKNOWN, 0.0, result.error or "Classification failed")

        data = parse_json_response(result.content)
        if data is None:
            logger.warning("[Classification] Unparseable answer")
            return ClassificationResult(DocumentType.UNKNOWN, 0.0, "Unparseable classification answer")

        try:
            confidence = max(0.0, min(1.0, float(data.get("confidence", 0))))
        except (TypeError, ValueError):
            confidence = 0.0

        return ClassificationResult(
            document_type=DocumentType.parse(data.get("documentType")),
            confidence=confidence,
            reasoning=str(data.get("reasoning") or ""),
        )


class ExtractionAgent:

    def __init__(self, client: LLMClient):
        self.client = client

    async def extract(self, document_type: DocumentType, text: str, model: str,
                      feedback: Optional[str] = None):
        """
        Extracts the fields of `document_type` from `text` with `model`.

        `feedback` is the correction prompt of a previous failed audit; it is
        appended to the system prompt on retries.
        """
        data_type = EXTRACTED_TYPES.get(document_type)
        if data_type is None:
            raise ValueError(f"No extraction available for {document_type}")

        system_prompt = EXTRACTION_PROMPTS[document_type]
        if feedback:
            system_prompt = f"{system_prompt}\n\n{feedback}"

        result = await self.client.complete(model, system_prompt, _document_prompt(text))
        if not result.success:
            logger.warning(f"[Extraction] {document_type.value} with {model} failed: {result.error}")
            return data_type()

        data = parse_json_response(result.content)
        if data is None:
            logger.warning(f"[Extraction] {document_type.value} with {model}: unparseable answer")
            return data_type()

        return data_type.from_dict(data)
