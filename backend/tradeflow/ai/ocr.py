"""
Gemini OCR service: step 1 of the document pipeline.

Sends the raw file to Gemini with a document-type specific prompt and
returns text, entities and a structured JSON object. Every call carries
a fixed timeout.
"""

import asyncio
import logging
from dataclasses import dataclass, field

import aiofiles
from google import genai
from google.genai import types

from tradeflow.ai.quota_manager import GEMINI
from tradeflow.ai.responses import parse_json_response
from tradeflow.config import Settings

logger = logging.getLogger("tradeflow.ocr")

BASE_PROMPT = (
    "Extract all text and data from this document and structure it as JSON. "
    "Focus on accuracy and completeness. Use null for fields that are not present, "
    "numbers without currency symbols and dates as YYYY-MM-DD. "
    "Respond with valid JSON only, no additional text."
)

ENTITIES_SCHEMA = """  "extracted_text": "full plain text of the document",
  "entities": [{"type": "string", "value": "string", "confidence": 0}],
  "page_count": 0,
  "confidence": 0"""

EXTRACTION_SCHEMAS = {
    "invoice": """{
  "document_type": "invoice",
  "invoice_number": "string",
  "invoice_date": "YYYY-MM-DD",
  "due_date": "YYYY-MM-DD",
  "supplier": {"name": "string", "address": "string", "tax_id": "string", "email": "string", "phone": "string"},
  "buyer": {"name": "string", "address": "string", "tax_id": "string"},
  "items": [{"description": "string", "quantity": 0, "unit_price": 0, "total_price": 0, "hs_code": "string"}],
  "totals": {"subtotal": 0, "tax": 0, "total": 0, "currency": "string"},
%s
}""" % ENTITIES_SCHEMA,
    "boe": """{
  "document_type": "boe",
  "boe_number": "string",
  "boe_date": "YYYY-MM-DD",
  "port_code": "string",
  "importer_details": {"name": "string", "address": "string", "iec_code": "string"},
  "shipment_details": {"bill_of_lading": "string", "vessel": "string", "port_of_loading": "string", "port_of_discharge": "string"},
  "items": [{"description": "string", "hs_code": "string", "quantity": 0, "unit": "string", "unit_price": 0, "total_value": 0, "duty_rate": "string", "duty_amount": 0}],
  "totals": {"assessable_value": 0, "total_duty": 0, "total_value": 0, "currency": "string"},
%s
}""" % ENTITIES_SCHEMA,
    "default": """{
  "document_type": "general",
%s
}""" % ENTITIES_SCHEMA,
}


def build_extraction_prompt(document_type: str) -> str:
    schema = EXTRACTION_SCHEMAS.get(document_type, EXTRACTION_SCHEMAS["default"])
    label = document_type.replace("_", " ").upper()
    return f"{BASE_PROMPT}\n\nFor this {label} document, extract:\n{schema}"


@dataclass
class OCRResult:
    """Output of step 1, whichever extractor produced it."""

    extracted_text: str
    entities: list[dict]
    structured_data: dict
    confidence: float
    provider: str
    metadata: dict = field(default_factory=dict)
    page_count: int | None = None


class GeminiOCRService:
    def __init__(self, settings: Settings, client: genai.Client | None = None):
        self.api_key = settings.gemini_api_key
        self.model = settings.gemini_model
        self.max_tokens = settings.ai_max_tokens
        self.timeout = settings.ai_request_timeout_seconds
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def extract(self, file_path: str, mime_type: str, document_type: str) -> OCRResult:
        """Run OCR on a stored file. Provider and parse errors propagate to the caller."""
        async with aiofiles.open(file_path, "rb") as f:
            data = await f.read()

        prompt = build_extraction_prompt(document_type)
        response = await asyncio.wait_for(
            self._get_client().aio.models.generate_content(
                model=self.model,
                contents=[types.Part.from_bytes(data=data, mime_type=mime_type), prompt],
                config=types.GenerateContentConfig(
                    temperature=0.1,
                    max_output_tokens=self.max_tokens,
                ),
            ),
            timeout=self.timeout,
        )

        text = response.text or ""
        structured = parse_json_response(text, provider=GEMINI)
        entities = structured.get("entities") or []
        confidence = float(structured.get("confidence") or 85)
        page_count = structured.get("page_count")

        logger.info(
            "Gemini OCR for %s: %d entities, confidence %.0f",
            document_type, len(entities), confidence,
        )
        return OCRResult(
            extracted_text=structured.get("extracted_text") or text,
            entities=entities,
            structured_data=structured,
            confidence=confidence,
            provider=GEMINI,
            metadata={"model": self.model, "document_type": document_type},
            page_count=page_count if isinstance(page_count, int) else None,
        )
