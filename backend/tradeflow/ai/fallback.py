"""Degraded local OCR used when the OCR provider is unavailable or failing.

Reads whatever text the file carries locally and pulls out entities and a
few per-type fields with regular expressions. The structured result is
never empty so the compliance step always has something to check.
"""

import logging
import re
from pathlib import Path

from tradeflow.ai.ocr import OCRResult
from tradeflow.ai.parser import DocumentParser
from tradeflow.ai.quota_manager import OCR_FALLBACK

logger = logging.getLogger("tradeflow.fallback")

ENTITY_PATTERNS: dict[str, re.Pattern] = {
    "email": re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+"),
    "phone": re.compile(r"(?<![\w.])\+?\d[\d\s().-]{7,}\d(?![\w.])"),
    "amount": re.compile(r"(?:[$€£₹]|\b(?:USD|EUR|GBP|INR)\b)\s?\d[\d,]*(?:\.\d{1,2})?"),
    "date": re.compile(r"\b\d{4}-\d{2}-\d{2}\b|\b\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b"),
}

FIELD_PATTERNS: dict[str, dict[str, re.Pattern]] = {
    "invoice": {
        "invoice_number": re.compile(r"invoice\s*(?:no\.?|number|#)\s*[:#]?\s*([A-Z0-9][A-Z0-9/-]*)", re.I),
        "invoice_date": re.compile(r"(?:invoice\s*)?date\s*[:]\s*([0-9][0-9/.-]+[0-9])", re.I),
        "currency": re.compile(r"\b(USD|EUR|GBP|INR)\b"),
        "total": re.compile(r"total(?:\s*amount)?\s*[:]?\s*(?:[$€£₹]|USD|EUR|GBP|INR)?\s?([\d,]+(?:\.\d{1,2})?)", re.I),
    },
    "boe": {
        "boe_number": re.compile(r"(?:boe|bill\s+of\s+entry)\s*(?:no\.?|number|#)\s*[:#]?\s*([A-Z0-9][A-Z0-9/-]*)", re.I),
        "port_code": re.compile(r"port(?:\s*code)?\s*[:]\s*([A-Z]{2}[A-Z0-9]{3,4})", re.I),
        "iec_code": re.compile(r"IEC(?:\s*code)?\s*[:]?\s*(\d{10})", re.I),
        "currency": re.compile(r"\b(USD|EUR|GBP|INR)\b"),
    },
}

HS_CODE_PATTERN = re.compile(r"HS\s*(?:code)?\s*[:#]?\s*(\d{4}(?:\.?\d{2}){0,3})", re.I)


def extract_entities(text: str) -> list[dict]:
    entities: list[dict] = []
    for entity_type, pattern in ENTITY_PATTERNS.items():
        seen = set()
        for match in pattern.finditer(text):
            value = match.group(0).strip()
            if value not in seen:
                seen.add(value)
                entities.append({"type": entity_type, "value": value, "confidence": 60})
    return entities


def extract_fields(text: str, document_type: str) -> dict:
    fields: dict = {}
    for name, pattern in FIELD_PATTERNS.get(document_type, {}).items():
        match = pattern.search(text)
        if match:
            fields[name] = match.group(1).strip()

    hs_codes = sorted({m.group(1).replace(".", "") for m in HS_CODE_PATTERN.finditer(text)})
    if hs_codes:
        fields["hs_codes"] = hs_codes
    if "total" in fields:
        fields["total"] = float(fields["total"].replace(",", ""))
    return fields


class HeuristicExtractor:
    def __init__(self, parser: DocumentParser | None = None):
        self.parser = parser or DocumentParser()

    async def extract(self, file_path: str, file_type: str, document_type: str, reason: str | None = None) -> OCRResult:
        """Best-effort extraction. Raises only when the file cannot be read at all."""
        parsed = await self.parser.parse(file_path, file_type)
        text = parsed.text
        entities = extract_entities(text)
        fields = extract_fields(text, document_type)

        structured = {
            "document_type": document_type,
            "file_name": Path(file_path).name,
            **fields,
            "entity_counts": {t: sum(1 for e in entities if e["type"] == t) for t in ENTITY_PATTERNS},
            "text_length": len(text),
            "page_count": parsed.page_count,
            "extraction_method": OCR_FALLBACK,
        }
        confidence = min(70.0, 30.0 + 8.0 * len(fields) + 2.0 * len(entities)) if text else 20.0

        logger.info(
            "Fallback extraction for %s: %d chars, %d entities, %d fields",
            Path(file_path).name, len(text), len(entities), len(fields),
        )
        return OCRResult(
            extracted_text=text,
            entities=entities,
            structured_data=structured,
            confidence=confidence,
            provider=OCR_FALLBACK,
            metadata={
                "model": OCR_FALLBACK,
                "document_type": document_type,
                "reason": reason,
                **parsed.metadata,
            },
            page_count=parsed.page_count,
        )
