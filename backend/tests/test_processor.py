"""Tests for the two-step document pipeline and its fallbacks."""

import json
import os
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradeflow.ai.compliance import (
    ClaudeComplianceBackend,
    ComplianceReport,
    ComplianceVerdict,
    OpenAIComplianceBackend,
    RuleBasedCompliance,
)
from tradeflow.ai.fallback import HeuristicExtractor
from tradeflow.ai.ocr import GeminiOCRService
from tradeflow.ai.processor import DocumentProcessor
from tradeflow.ai.quota_manager import ANTHROPIC, COMPLIANCE_FALLBACK, GEMINI, OCR_FALLBACK, OPENAI
from tradeflow.models.document import DocumentStatus

QUOTA_ERROR = '429 RESOURCE_EXHAUSTED {"retryDelay":"30s"}'

GEMINI_PAYLOAD = {
    "document_type": "invoice",
    "invoice_number": "INV-9",
    "invoice_date": "2025-01-10",
    "totals": {"subtotal": 200, "total": 200, "currency": "USD"},
    "items": [{"description": "Rice", "quantity": 2, "unit_price": 100, "total_price": 200, "hs_code": "100630"}],
    "extracted_text": "INVOICE INV-9 Rice 2 x 100",
    "entities": [{"type": "amount", "value": "200", "confidence": 90}],
    "page_count": 2,
    "confidence": 92,
}

COMPLIANCE_PAYLOAD = {
    "compliance": {
        "isValid": True,
        "score": 95,
        "checks": [
            {"name": "Invoice number", "passed": True, "severity": "info"},
            {"name": "HS codes", "passed": False, "severity": "warning", "message": "Verify HS code"},
        ],
    },
    "errors": [{"field": "hs_code", "message": "Verify HS code", "severity": "warning"}],
    "corrections": [],
    "recommendations": [{"message": "Confirm classification", "priority": "low"}],
}


def gemini_client(text: str | None = None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.aio.models.generate_content = AsyncMock(side_effect=error)
    else:
        client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text=text))
    return client


def openai_client(payload: dict | None = None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content=json.dumps(payload)))]
        client.chat.completions.create = AsyncMock(return_value=response)
    return client


def claude_client(payload: dict) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(
        return_value=MagicMock(content=[MagicMock(text=f"```json\n{json.dumps(payload)}\n```")])
    )
    return client


@pytest.fixture
def build_processor(test_settings, quota_manager):
    def _build(gemini=None, openai=None, claude=None) -> DocumentProcessor:
        return DocumentProcessor(
            test_settings,
            quota_manager,
            ocr_service=GeminiOCRService(test_settings, client=gemini),
            heuristic_extractor=HeuristicExtractor(),
            compliance_backends={
                OPENAI: OpenAIComplianceBackend(test_settings, client=openai),
                ANTHROPIC: ClaudeComplianceBackend(test_settings, client=claude),
            },
            rule_engine=RuleBasedCompliance(),
        )

    return _build


class TestFallbackPipeline:
    async def test_no_providers_configured(self, db_session, document_processor, exporter, make_document):
        document = await make_document(exporter)
        result = await document_processor.process_document(db_session, document.id)

        assert result.status == DocumentStatus.COMPLETED
        assert result.structured_data["invoice_number"] == "INV-1"
        assert result.page_count == 1
        assert result.ocr_metadata["reason"] == "not_configured"

        step1 = result.ai_processing_results["step1_ocr"]
        step2 = result.ai_processing_results["step2_compliance"]
        assert step1 == {
            "provider": OCR_FALLBACK, "success": True, "fallback": True,
            "confidence": result.confidence, "entities_found": len(result.entities),
        }
        assert step2["provider"] == COMPLIANCE_FALLBACK
        assert step2["fallback"] is True
        # content, invoice number, currency and currency code pass; the invoice date is missing
        assert step2["compliance_score"] == 80.0
        assert step2["issues_found"] == 1
        assert result.compliance_analysis["is_valid"] is False
        assert result.compliance_summary["total_checks"] == 5
        assert "total_processing_time_ms" in result.ai_processing_results
        assert "completed_at" in result.ai_processing_results
        assert result.processing_started_at is not None
        assert result.processing_ended_at is not None

    async def test_gemini_quota_error_switches_to_fallback(
        self, db_session, build_processor, quota_manager, exporter, make_document
    ):
        gemini = gemini_client(error=RuntimeError(QUOTA_ERROR))
        processor = build_processor(gemini=gemini)
        document = await make_document(exporter)

        result = await processor.process_document(db_session, document.id)

        assert result.status == DocumentStatus.COMPLETED
        assert not quota_manager.is_service_available(GEMINI)
        assert quota_manager.get_quota_status()[GEMINI]["retry_after"] == 30.0
        assert result.structured_data
        assert result.ai_processing_results["step1_ocr"]["provider"] == OCR_FALLBACK
        assert result.ocr_metadata["reason"] == "quota_exceeded"

        # While Gemini is cooling down it is not called at all
        second = await make_document(exporter)
        await processor.process_document(db_session, second.id)
        assert gemini.aio.models.generate_content.await_count == 1

    async def test_gemini_used_again_once_cooldown_elapsed(
        self, db_session, build_processor, quota_manager, exporter, make_document
    ):
        quota_manager.handle_quota_exceeded(GEMINI, "429 retryDelay: 0s")
        gemini = gemini_client(text=json.dumps(GEMINI_PAYLOAD))
        processor = build_processor(gemini=gemini)
        document = await make_document(exporter)

        result = await processor.process_document(db_session, document.id)

        assert gemini.aio.models.generate_content.await_count == 1
        assert result.ai_processing_results["step1_ocr"]["provider"] == GEMINI
        assert quota_manager.get_quota_status()[GEMINI]["failures"] == 0

    async def test_gemini_generic_error_keeps_provider_available(
        self, db_session, build_processor, quota_manager, exporter, make_document
    ):
        processor = build_processor(gemini=gemini_client(error=RuntimeError("deadline exceeded")))
        document = await make_document(exporter)
        result = await processor.process_document(db_session, document.id)

        assert result.status == DocumentStatus.COMPLETED
        assert quota_manager.is_service_available(GEMINI)
        assert result.ocr_metadata["reason"].startswith("provider_error")

    async def test_unparseable_gemini_reply_uses_fallback(self, db_session, build_processor, exporter, make_document):
        processor = build_processor(gemini=gemini_client(text="I could not read this document."))
        document = await make_document(exporter)
        result = await processor.process_document(db_session, document.id)
        assert result.ai_processing_results["step1_ocr"]["provider"] == OCR_FALLBACK


class TestProviderPipeline:
    async def test_gemini_and_openai(self, db_session, build_processor, exporter, make_document):
        gemini = gemini_client(text=f"```json\n{json.dumps(GEMINI_PAYLOAD)}\n```")
        openai = openai_client(COMPLIANCE_PAYLOAD)
        processor = build_processor(gemini=gemini, openai=openai)
        document = await make_document(exporter)

        result = await processor.process_document(db_session, document.id)

        assert result.status == DocumentStatus.COMPLETED
        assert result.structured_data["invoice_number"] == "INV-9"
        assert result.confidence == 92
        assert result.page_count == 2
        assert result.extracted_text == "INVOICE INV-9 Rice 2 x 100"
        assert result.ai_processing_results["step1_ocr"]["provider"] == GEMINI
        assert result.ai_processing_results["step1_ocr"]["fallback"] is False

        step2 = result.ai_processing_results["step2_compliance"]
        assert step2["provider"] == OPENAI
        assert step2["compliance_score"] == 95
        assert step2["issues_found"] == 1
        # Summary is derived from the checks when the model leaves it out
        assert result.compliance_summary["total_checks"] == 2
        assert result.compliance_summary["warnings_count"] == 1

        kwargs = openai.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "INV-9" in kwargs["messages"][1]["content"]

    async def test_openai_quota_falls_through_to_claude(
        self, db_session, build_processor, quota_manager, exporter, make_document
    ):
        processor = build_processor(
            openai=openai_client(error=RuntimeError("Rate limit reached")),
            claude=claude_client(COMPLIANCE_PAYLOAD),
        )
        document = await make_document(exporter)
        result = await processor.process_document(db_session, document.id)

        assert result.ai_processing_results["step2_compliance"]["provider"] == ANTHROPIC
        assert result.compliance_metadata["attempted_providers"] == [OPENAI, ANTHROPIC]
        assert not quota_manager.is_service_available(OPENAI)

    async def test_both_backends_failing_use_rules(self, db_session, build_processor, exporter, make_document):
        broken = MagicMock()
        broken.messages.create = AsyncMock(side_effect=RuntimeError("overloaded"))
        processor = build_processor(openai=openai_client(error=RuntimeError("boom")), claude=broken)
        document = await make_document(exporter)
        result = await processor.process_document(db_session, document.id)

        step2 = result.ai_processing_results["step2_compliance"]
        assert step2["provider"] == COMPLIANCE_FALLBACK
        assert step2["fallback"] is True


class TestFailures:
    async def test_unreadable_file_marks_failed(self, db_session, document_processor, exporter, make_document):
        document = await make_document(exporter)
        os.remove(document.file_path)

        result = await document_processor.process_document(db_session, document.id)

        assert result.status == DocumentStatus.FAILED
        assert "fallback extraction failed" in result.processing_error
        assert result.ai_processing_results["step1_ocr"]["success"] is False

    async def test_rule_engine_failure_marks_failed(self, db_session, test_settings, quota_manager, exporter, make_document):
        rules = MagicMock()
        rules.analyze.side_effect = RuntimeError("bad rules")
        processor = DocumentProcessor(
            test_settings, quota_manager,
            ocr_service=GeminiOCRService(test_settings), compliance_backends={}, rule_engine=rules,
        )
        document = await make_document(exporter)
        result = await processor.process_document(db_session, document.id)

        assert result.status == DocumentStatus.FAILED
        assert result.ai_processing_results["step1_ocr"]["success"] is True
        assert result.ai_processing_results["step2_compliance"]["success"] is False

    async def test_unknown_document(self, db_session, document_processor):
        from tradeflow.workflow.errors import NotFoundError

        with pytest.raises(NotFoundError):
            await document_processor.process_document(db_session, uuid.uuid4())


class TestStatusAndBatch:
    async def test_processing_status_is_read_only(self, db_session, document_processor, exporter, make_document):
        document = await make_document(exporter)
        await document_processor.process_document(db_session, document.id)
        updated_at = document.updated_at

        first = await document_processor.get_processing_status(db_session, document.id)
        second = await document_processor.get_processing_status(db_session, document.id)

        assert first == second
        assert first["status"] == "completed"
        assert first["progress"] == 100
        assert first["compliance_score"] == 80.0
        assert document.updated_at == updated_at

    async def test_reprocess_clears_previous_results(self, db_session, document_processor, exporter, make_document):
        document = await make_document(exporter)
        await document_processor.process_document(db_session, document.id)
        first_started = document.processing_started_at

        result = await document_processor.reprocess_document(db_session, document.id)

        assert result.status == DocumentStatus.COMPLETED
        assert result.page_count == 1
        assert result.processing_started_at >= first_started
        assert result.ai_processing_results["step1_ocr"]["provider"] == OCR_FALLBACK

    async def test_batch_counts_failures(self, db_session, document_processor, exporter, make_document):
        good = await make_document(exporter)
        missing_file = await make_document(exporter)
        os.remove(missing_file.file_path)

        tally = await document_processor.batch_process_documents(db_session, [good.id, missing_file.id, uuid.uuid4()])

        assert tally["total"] == 3
        assert tally["successful"] == 1
        assert tally["failed"] == 2
        assert [r["success"] for r in tally["results"]] == [True, False, False]


def test_report_properties():
    report = ComplianceReport(compliance=ComplianceVerdict(score=42.5))
    assert report.score == 42.5
    assert report.issue_count == 0
