"""Tests for the local heuristic extractor used when OCR is unavailable."""

import pytest

from tradeflow.ai.fallback import HeuristicExtractor, extract_entities, extract_fields
from tradeflow.ai.quota_manager import OCR_FALLBACK

INVOICE_TEXT = """COMMERCIAL INVOICE
Invoice No: EXP-2026-001
Date: 14/02/2026
Seller: Asha Exports, sales@ashaexports.in, +91 22 4567 8901
Item: Basmati Rice HS Code: 1006.30
Total: USD 2,900.00
"""

BOE_TEXT = """BILL OF ENTRY
BOE No: 7654321
Port Code: INNSA1
IEC: 0123456789
Currency INR
"""


class TestPatterns:
    def test_entities(self):
        entities = extract_entities(INVOICE_TEXT)
        by_type = {e["type"]: e["value"] for e in entities}
        assert by_type["email"] == "sales@ashaexports.in"
        assert by_type["amount"] == "USD 2,900.00"
        assert by_type["date"] == "14/02/2026"
        assert "phone" in by_type

    def test_invoice_fields(self):
        fields = extract_fields(INVOICE_TEXT, "invoice")
        assert fields["invoice_number"] == "EXP-2026-001"
        assert fields["invoice_date"] == "14/02/2026"
        assert fields["currency"] == "USD"
        assert fields["total"] == 2900.0
        assert fields["hs_codes"] == ["100630"]

    def test_boe_fields(self):
        fields = extract_fields(BOE_TEXT, "boe")
        assert fields["boe_number"] == "7654321"
        assert fields["port_code"] == "INNSA1"
        assert fields["iec_code"] == "0123456789"
        assert fields["currency"] == "INR"

    def test_unknown_type_only_hs_codes(self):
        assert extract_fields("nothing here", "other") == {}


class TestHeuristicExtractor:
    async def test_structured_data_never_empty(self, tmp_path):
        path = tmp_path / "blank.txt"
        path.write_text("")
        result = await HeuristicExtractor().extract(str(path), "txt", "invoice", reason="quota_exceeded")

        assert result.provider == OCR_FALLBACK
        assert result.structured_data["extraction_method"] == OCR_FALLBACK
        assert result.structured_data["file_name"] == "blank.txt"
        assert result.confidence == 20.0
        assert result.metadata["reason"] == "quota_exceeded"

    async def test_extracts_invoice(self, tmp_path):
        path = tmp_path / "invoice.txt"
        path.write_text(INVOICE_TEXT)
        result = await HeuristicExtractor().extract(str(path), "txt", "invoice")

        assert result.structured_data["invoice_number"] == "EXP-2026-001"
        assert result.structured_data["entity_counts"]["email"] == 1
        assert result.extracted_text == INVOICE_TEXT
        assert 30.0 < result.confidence <= 70.0

    async def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await HeuristicExtractor().extract(str(tmp_path / "gone.pdf"), "pdf", "invoice")
