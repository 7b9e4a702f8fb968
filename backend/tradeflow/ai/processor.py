"""
Two-step AI processing pipeline for uploaded trade documents.

Flow:
  1. Mark the document as processing
  2. Step 1, OCR: Gemini, else the local heuristic extractor
  3. Step 2, Compliance: preferred LLM backend, the other one, else rule checks
  4. Finalise with timings and per-step provenance

The document is committed after every step so a status poll sees partial
progress. Provider failures never escape: they switch the step to its
fallback. Only when a step's fallback fails too is the document marked
failed.
"""

import logging
import time
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.ai.compliance import (
    ClaudeComplianceBackend,
    ComplianceReport,
    OpenAIComplianceBackend,
    RuleBasedCompliance,
)
from tradeflow.ai.fallback import HeuristicExtractor
from tradeflow.ai.ocr import GeminiOCRService, OCRResult
from tradeflow.ai.quota_manager import ANTHROPIC, GEMINI, OPENAI, QuotaManager, is_quota_error
from tradeflow.config import Settings
from tradeflow.models.base import utcnow
from tradeflow.models.document import Document, DocumentStatus
from tradeflow.workflow.errors import NotFoundError

logger = logging.getLogger("tradeflow.processor")

# Rough completion percentage reported to pollers
_PROGRESS = {
    DocumentStatus.UPLOADING: 0,
    DocumentStatus.COMPLETED: 100,
    DocumentStatus.FAILED: 100,
    DocumentStatus.ERROR: 100,
    DocumentStatus.VALIDATED: 100,
    DocumentStatus.REJECTED: 100,
}


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


class StepFailed(Exception):
    """Both the provider and the fallback of a pipeline step failed."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(message)


class DocumentProcessor:
    """Orchestrates OCR and compliance analysis for one document at a time."""

    def __init__(
        self,
        settings: Settings,
        quota_manager: QuotaManager,
        *,
        ocr_service: GeminiOCRService | None = None,
        heuristic_extractor: HeuristicExtractor | None = None,
        compliance_backends: dict | None = None,
        rule_engine: RuleBasedCompliance | None = None,
    ):
        self.quota = quota_manager
        self.ocr = ocr_service or GeminiOCRService(settings)
        self.heuristic = heuristic_extractor or HeuristicExtractor()
        self.backends = compliance_backends if compliance_backends is not None else {
            OPENAI: OpenAIComplianceBackend(settings),
            ANTHROPIC: ClaudeComplianceBackend(settings),
        }
        self.rules = rule_engine or RuleBasedCompliance()

    async def _load(self, db: AsyncSession, document_id: uuid.UUID) -> Document:
        document = await db.get(Document, document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    # ── Step 1 ──

    async def _run_ocr(self, document: Document) -> tuple[OCRResult, dict]:
        doc_type = document.document_type.value
        self.quota.should_retry_service(GEMINI)
        choice = self.quota.get_best_available_service("ocr")
        reason = "quota_exceeded"

        if choice == GEMINI and not self.ocr.configured:
            reason = "not_configured"
        elif choice == GEMINI:
            try:
                result = await self.ocr.extract(document.file_path, document.mime_type, doc_type)
                self.quota.record_success(GEMINI)
                return result, {"fallback": False}
            except Exception as e:
                if is_quota_error(e):
                    self.quota.handle_quota_exceeded(GEMINI, e)
                    reason = "quota_exceeded"
                else:
                    reason = f"provider_error: {e}"
                logger.warning("Gemini OCR failed for %s, using fallback: %s", document.id, e)

        try:
            result = await self.heuristic.extract(
                document.file_path, document.file_type, doc_type, reason=reason
            )
        except Exception as e:
            raise StepFailed("step1_ocr", f"OCR and fallback extraction failed: {e}") from e
        return result, {"fallback": True, "reason": reason}

    # ── Step 2 ──

    async def _run_compliance(self, structured_data: dict, document_type: str) -> tuple[ComplianceReport, dict]:
        attempted: list[str] = []
        for provider in self.quota.compliance_preference:
            self.quota.should_retry_service(provider)
        for provider in self.quota.available_compliance_providers():
            backend = self.backends.get(provider)
            if backend is None or not backend.configured:
                continue
            attempted.append(provider)
            try:
                report = await backend.analyze(structured_data, document_type)
                self.quota.record_success(provider)
                return report, {"fallback": False, "attempted": attempted}
            except Exception as e:
                if is_quota_error(e):
                    self.quota.handle_quota_exceeded(provider, e)
                logger.warning("Compliance analysis via %s failed: %s", provider, e)

        try:
            report = self.rules.analyze(structured_data, document_type)
        except Exception as e:
            raise StepFailed("step2_compliance", f"Compliance analysis and rule checks failed: {e}") from e
        return report, {"fallback": True, "attempted": attempted}

    # ── Orchestration ──

    async def process_document(self, db: AsyncSession, document_id: uuid.UUID) -> Document:
        """Run both steps on one document and return it in its final state."""
        document = await self._load(db, document_id)
        start_time = time.monotonic()
        results: dict = {}

        document.status = DocumentStatus.PROCESSING
        document.processing_started_at = utcnow()
        document.processing_error = None
        await db.commit()
        logger.info("Processing document %s (%s)", document.id, document.document_type.value)

        try:
            ocr, ocr_info = await self._run_ocr(document)
            document.extracted_text = ocr.extracted_text
            document.entities = ocr.entities
            document.confidence = ocr.confidence
            document.structured_data = ocr.structured_data
            document.page_count = ocr.page_count
            document.ocr_metadata = {**ocr.metadata, "provider": ocr.provider, "processed_at": utcnow().isoformat()}
            results["step1_ocr"] = {
                "provider": ocr.provider,
                "success": True,
                "fallback": ocr_info["fallback"],
                "confidence": ocr.confidence,
                "entities_found": len(ocr.entities),
            }
            document.ai_processing_results = dict(results)
            await db.commit()
            logger.info("Step 1 complete for %s via %s", document.id, ocr.provider)

            report, compliance_info = await self._run_compliance(
                document.structured_data, document.document_type.value
            )
        except StepFailed as e:
            results.setdefault("step1_ocr", {"provider": None, "success": False})
            if e.step == "step2_compliance":
                results["step2_compliance"] = {"provider": None, "success": False}
            return await self._fail(db, document, str(e), start_time, results)

        document.compliance_analysis = report.compliance.model_dump()
        document.compliance_errors = [e.model_dump() for e in report.errors]
        document.compliance_corrections = [c.model_dump() for c in report.corrections]
        document.compliance_summary = report.summary.model_dump()
        document.compliance_recommendations = [r.model_dump() for r in report.recommendations]
        document.compliance_metadata = {
            "provider": report.provider,
            "document_type": document.document_type.value,
            "analyzed_at": utcnow().isoformat(),
            "attempted_providers": compliance_info["attempted"],
        }
        results["step2_compliance"] = {
            "provider": report.provider,
            "success": True,
            "fallback": compliance_info["fallback"],
            "compliance_score": report.score,
            "issues_found": report.issue_count,
        }

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        now = utcnow()
        document.status = DocumentStatus.COMPLETED
        document.processing_time_ms = elapsed_ms
        document.processing_ended_at = now
        document.ai_processing_results = {
            **results,
            "total_processing_time_ms": elapsed_ms,
            "completed_at": now.isoformat(),
        }
        await db.commit()

        logger.info(
            "Document %s processed in %dms (ocr=%s, compliance=%s)",
            document.id, elapsed_ms,
            results["step1_ocr"]["provider"], results["step2_compliance"]["provider"],
        )
        return document

    async def _fail(
        self, db: AsyncSession, document: Document, message: str, start_time: float, results: dict
    ) -> Document:
        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        document.status = DocumentStatus.FAILED
        document.processing_error = message
        document.processing_time_ms = elapsed_ms
        document.processing_ended_at = utcnow()
        document.ai_processing_results = {**results, "total_processing_time_ms": elapsed_ms}
        await db.commit()
        logger.error("Document %s processing failed: %s", document.id, message)
        return document

    async def reprocess_document(self, db: AsyncSession, document_id: uuid.UUID) -> Document:
        """Reset every derived field and run the pipeline again."""
        document = await self._load(db, document_id)
        document.reset_processing()
        await db.commit()
        return await self.process_document(db, document_id)

    async def batch_process_documents(self, db: AsyncSession, document_ids: list[uuid.UUID]) -> dict:
        """Process documents one after another; one failure does not stop the batch."""
        outcomes = []
        for document_id in document_ids:
            try:
                document = await self.process_document(db, document_id)
                success = document.status == DocumentStatus.COMPLETED
                outcomes.append({
                    "document_id": str(document_id),
                    "success": success,
                    "status": document.status.value,
                    "error": document.processing_error,
                })
            except NotFoundError as e:
                outcomes.append({"document_id": str(document_id), "success": False, "status": None, "error": e.message})
            except Exception as e:
                await db.rollback()
                logger.error("Batch processing of %s failed: %s", document_id, e)
                outcomes.append({"document_id": str(document_id), "success": False, "status": None, "error": str(e)})

        successful = sum(1 for o in outcomes if o["success"])
        return {
            "total": len(outcomes),
            "successful": successful,
            "failed": len(outcomes) - successful,
            "results": outcomes,
        }

    async def get_processing_status(self, db: AsyncSession, document_id: uuid.UUID) -> dict:
        """Read-only view of pipeline progress."""
        document = await self._load(db, document_id)
        return build_processing_status(document)


def build_processing_status(document: Document) -> dict:
    if document.status == DocumentStatus.PROCESSING:
        progress = 50 if document.structured_data is not None else 10
    else:
        progress = _PROGRESS.get(document.status, 0)

    summary = document.compliance_summary or {}
    analysis = document.compliance_analysis or {}
    return {
        "document_id": str(document.id),
        "status": document.status.value,
        "progress": progress,
        "processing_started_at": _iso(document.processing_started_at),
        "processing_ended_at": _iso(document.processing_ended_at),
        "processing_time_ms": document.processing_time_ms,
        "processing_error": document.processing_error,
        "confidence": document.confidence,
        "entities_found": len(document.entities or []),
        "compliance_score": analysis.get("score"),
        "compliance_valid": analysis.get("is_valid"),
        "issues_found": summary.get("failed_checks"),
        "ai_processing_results": document.ai_processing_results,
    }
