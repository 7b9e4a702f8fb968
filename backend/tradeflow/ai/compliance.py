"""
Compliance analysis: step 2 of the document pipeline.

Two interchangeable LLM backends (OpenAI, Anthropic) score the structured
data from step 1 against per-type trade requirements. RuleBasedCompliance
is the deterministic fallback when neither backend can answer.
"""

import asyncio
import json
import logging
import re
from datetime import date, datetime
from typing import Any

import anthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tradeflow.ai.quota_manager import ANTHROPIC, COMPLIANCE_FALLBACK, OPENAI
from tradeflow.ai.responses import parse_json_response
from tradeflow.config import Settings

logger = logging.getLogger("tradeflow.compliance")


# ── Report model ──


class _ReportModel(BaseModel):
    # Accept the camelCase keys models tend to echo back as well as snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ComplianceCheck(_ReportModel):
    name: str
    passed: bool
    message: str = ""
    severity: str = "info"
    field: str | None = None
    requirement: str | None = None


class ComplianceIssue(_ReportModel):
    type: str = "compliance"
    field: str | None = None
    message: str
    severity: str = "error"
    requirement: str | None = None


class ComplianceCorrection(_ReportModel):
    type: str = "correction"
    field: str | None = None
    message: str
    suggestion: str | None = None
    priority: str = "medium"


class ComplianceSummary(_ReportModel):
    total_checks: int = 0
    passed_checks: int = 0
    failed_checks: int = 0
    warnings_count: int = 0
    critical_issues: int = 0


class ComplianceRecommendation(_ReportModel):
    category: str = "compliance"
    message: str
    priority: str = "medium"


class ComplianceVerdict(_ReportModel):
    is_valid: bool = False
    score: float = 0
    checks: list[ComplianceCheck] = Field(default_factory=list)


class ComplianceReport(_ReportModel):
    compliance: ComplianceVerdict = Field(default_factory=ComplianceVerdict)
    errors: list[ComplianceIssue] = Field(default_factory=list)
    corrections: list[ComplianceCorrection] = Field(default_factory=list)
    summary: ComplianceSummary = Field(default_factory=ComplianceSummary)
    recommendations: list[ComplianceRecommendation] = Field(default_factory=list)
    provider: str = ""

    @property
    def score(self) -> float:
        return self.compliance.score

    @property
    def issue_count(self) -> int:
        return len(self.errors)


def report_from_payload(payload: dict, provider: str) -> ComplianceReport:
    """Validate a model's JSON reply and fill in a missing summary from the checks."""
    report = ComplianceReport.model_validate({**payload, "provider": provider})
    checks = report.compliance.checks
    if report.summary.total_checks == 0 and checks:
        failed = [c for c in checks if not c.passed]
        report.summary = ComplianceSummary(
            total_checks=len(checks),
            passed_checks=len(checks) - len(failed),
            failed_checks=len(failed),
            warnings_count=sum(1 for c in failed if c.severity == "warning"),
            critical_issues=sum(1 for c in failed if c.severity == "error"),
        )
    return report


# ── Prompt ──

COMPLIANCE_SYSTEM_PROMPT = """You are an international trade compliance analyst. You check customs and trade documents for completeness, consistency and regulatory compliance.

Respond with valid JSON only, no additional text."""

REQUIREMENTS = {
    "invoice": [
        "Invoice number must be present and unique",
        "Invoice date must be valid and not future-dated",
        "Supplier and buyer information must be complete",
        "Item descriptions must be detailed and accurate",
        "HS codes must be valid (if present)",
        "Prices and totals must be mathematically correct",
        "Currency must be specified",
        "All mandatory fields for customs clearance must be present",
    ],
    "boe": [
        "BOE number must be present and follow correct format",
        "BOE date must be valid",
        "Port codes must be valid",
        "Importer IEC code must be valid format",
        "HS codes must be accurate and complete",
        "Duty calculations must be correct",
        "All shipment details must be complete",
        "Assessable value must be properly calculated",
    ],
    "default": [
        "Document must contain required information",
        "Data must be consistent and accurate",
        "No missing critical fields",
        "Proper formatting and structure",
    ],
}

OUTPUT_FORMAT = """{
  "compliance": {
    "is_valid": true,
    "score": 0,
    "checks": [{"name": "string", "passed": true, "message": "string", "severity": "error|warning|info", "field": "string or null", "requirement": "string"}]
  },
  "errors": [{"type": "string", "field": "string", "message": "string", "severity": "error|warning", "requirement": "string"}],
  "corrections": [{"type": "string", "field": "string", "message": "string", "suggestion": "string", "priority": "high|medium|low"}],
  "summary": {"total_checks": 0, "passed_checks": 0, "failed_checks": 0, "warnings_count": 0, "critical_issues": 0},
  "recommendations": [{"category": "string", "message": "string", "priority": "high|medium|low"}]
}"""


def build_compliance_prompt(structured_data: dict, document_type: str) -> str:
    requirements = REQUIREMENTS.get(document_type, REQUIREMENTS["default"])
    numbered = "\n".join(f"{i}. {req}" for i, req in enumerate(requirements, start=1))
    return (
        f"Analyze the following {document_type} document data for compliance with "
        "international trade regulations and customs requirements.\n\n"
        f"EXTRACTED DOCUMENT DATA:\n{json.dumps(structured_data, indent=2, default=str)}\n\n"
        f"DOCUMENT TYPE: {document_type.upper()}\n\n"
        f"COMPLIANCE REQUIREMENTS TO CHECK:\n{numbered}\n\n"
        f"REQUIRED OUTPUT FORMAT (JSON), score is 0-100:\n{OUTPUT_FORMAT}"
    )


# ── LLM backends ──


class OpenAIComplianceBackend:
    provider = OPENAI

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None):
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.max_tokens = settings.ai_max_tokens
        self.timeout = settings.ai_request_timeout_seconds
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    async def analyze(self, structured_data: dict, document_type: str) -> ComplianceReport:
        response = await asyncio.wait_for(
            self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": COMPLIANCE_SYSTEM_PROMPT},
                    {"role": "user", "content": build_compliance_prompt(structured_data, document_type)},
                ],
                temperature=0.1,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            ),
            timeout=self.timeout,
        )
        text = response.choices[0].message.content or ""
        return report_from_payload(parse_json_response(text, provider=OPENAI), OPENAI)


class ClaudeComplianceBackend:
    provider = ANTHROPIC

    def __init__(self, settings: Settings, client: anthropic.AsyncAnthropic | None = None):
        self.api_key = settings.anthropic_api_key
        self.model = settings.claude_model
        self.max_tokens = settings.ai_max_tokens
        self.timeout = settings.ai_request_timeout_seconds
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, max_retries=0)
        return self._client

    async def analyze(self, structured_data: dict, document_type: str) -> ComplianceReport:
        response = await asyncio.wait_for(
            self._get_client().messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=COMPLIANCE_SYSTEM_PROMPT,
                messages=[
                    {"role": "user", "content": build_compliance_prompt(structured_data, document_type)}
                ],
            ),
            timeout=self.timeout,
        )
        text = response.content[0].text
        return report_from_payload(parse_json_response(text, provider=ANTHROPIC), ANTHROPIC)


# ── Deterministic fallback ──

_REQUIRED_FIELDS = {
    "invoice": [
        ("Invoice number", ("invoice_number",)),
        ("Invoice date", ("invoice_date", "date")),
        ("Currency", ("totals.currency", "currency")),
    ],
    "boe": [
        ("BOE number", ("boe_number",)),
        ("BOE date", ("boe_date", "date")),
        ("Port code", ("port_code",)),
        ("Importer IEC code", ("importer_details.iec_code", "iec_code")),
    ],
}

_DATE_FIELDS = ("invoice_date", "boe_date", "date", "due_date")
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%m/%d/%Y", "%d/%m/%y")
_HS_CODE_RE = re.compile(r"^\d{6,10}$")
_IEC_RE = re.compile(r"^\d{10}$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_META_KEYS = {"document_type", "file_name", "entity_counts", "text_length", "page_count", "extraction_method"}


def _lookup(data: dict, path: str) -> Any:
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _first(data: dict, paths: tuple[str, ...]) -> Any:
    for path in paths:
        value = _lookup(data, path)
        if value not in (None, "", [], {}):
            return value
    return None


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _to_float(value: Any) -> float | None:
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return None


class RuleBasedCompliance:
    """Deterministic checks over step-1 output. Same input, same report."""

    provider = COMPLIANCE_FALLBACK

    def __init__(self, today: date | None = None):
        self._today = today

    def analyze(self, structured_data: dict | None, document_type: str) -> ComplianceReport:
        data = structured_data or {}
        today = self._today or date.today()
        checks: list[ComplianceCheck] = []

        # Content present
        content_keys = [k for k, v in data.items() if k not in _META_KEYS and v not in (None, "", [], {})]
        checks.append(ComplianceCheck(
            name="Document content",
            passed=bool(content_keys),
            message="Document data extracted" if content_keys else "No document fields could be extracted",
            severity="info" if content_keys else "error",
            requirement="Document must contain required information",
        ))

        for label, paths in _REQUIRED_FIELDS.get(document_type, []):
            present = _first(data, paths) is not None
            checks.append(ComplianceCheck(
                name=f"{label} present",
                passed=present,
                message=f"{label} found" if present else f"{label} is missing",
                severity="info" if present else "error",
                field=paths[0],
                requirement=f"{label} must be present",
            ))

        for field_name in _DATE_FIELDS:
            raw = data.get(field_name)
            if raw in (None, ""):
                continue
            parsed = _parse_date(raw)
            if parsed is None:
                checks.append(ComplianceCheck(
                    name=f"{field_name} format", passed=False, severity="warning", field=field_name,
                    message=f"Could not read date '{raw}'", requirement="Dates must be valid",
                ))
            elif field_name != "due_date" and parsed > today:
                checks.append(ComplianceCheck(
                    name=f"{field_name} not future-dated", passed=False, severity="error", field=field_name,
                    message=f"{field_name} {parsed.isoformat()} is in the future",
                    requirement="Document date must not be future-dated",
                ))
            else:
                checks.append(ComplianceCheck(
                    name=f"{field_name} valid", passed=True, field=field_name,
                    message="Date is valid", requirement="Dates must be valid",
                ))

        items = data.get("items") if isinstance(data.get("items"), list) else []
        hs_codes = [str(c) for c in data.get("hs_codes") or []]
        hs_codes += [str(i.get("hs_code")) for i in items if isinstance(i, dict) and i.get("hs_code")]
        if hs_codes:
            invalid = [c for c in hs_codes if not _HS_CODE_RE.match(c.replace(".", "").replace(" ", ""))]
            checks.append(ComplianceCheck(
                name="HS code format",
                passed=not invalid,
                message="HS codes are well-formed" if not invalid else f"Invalid HS codes: {', '.join(invalid)}",
                severity="info" if not invalid else "warning",
                field="hs_code",
                requirement="HS codes must be valid (6-10 digits)",
            ))

        checks.extend(self._arithmetic_checks(data, items))

        currency = _first(data, ("totals.currency", "currency"))
        if currency is not None:
            valid = bool(_CURRENCY_RE.match(str(currency).strip()))
            checks.append(ComplianceCheck(
                name="Currency code", passed=valid, field="currency",
                severity="info" if valid else "warning",
                message="Currency code is valid" if valid else f"'{currency}' is not an ISO currency code",
                requirement="Currency must be specified",
            ))

        if document_type == "boe":
            iec = _first(data, ("importer_details.iec_code", "iec_code"))
            if iec is not None:
                valid = bool(_IEC_RE.match(str(iec).strip()))
                checks.append(ComplianceCheck(
                    name="IEC code format", passed=valid, field="iec_code",
                    severity="info" if valid else "error",
                    message="IEC code is valid" if valid else "IEC code must be 10 digits",
                    requirement="Importer IEC code must be valid format",
                ))

        return self._report(checks)

    @staticmethod
    def _arithmetic_checks(data: dict, items: list) -> list[ComplianceCheck]:
        checks: list[ComplianceCheck] = []
        line_total = 0.0
        priced_lines = 0
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            qty = _to_float(item.get("quantity"))
            price = _to_float(item.get("unit_price"))
            total = _to_float(item.get("total_price", item.get("total_value")))
            if total is not None:
                line_total += total
                priced_lines += 1
            if qty is None or price is None or total is None:
                continue
            ok = abs(qty * price - total) <= max(0.01, 0.01 * abs(total))
            checks.append(ComplianceCheck(
                name=f"Line {index + 1} arithmetic",
                passed=ok,
                severity="info" if ok else "error",
                field=f"items[{index}].total_price",
                message="Line total matches" if ok else f"{qty} x {price} != {total}",
                requirement="Prices and totals must be mathematically correct",
            ))

        stated = _to_float(_first(data, ("totals.subtotal", "totals.total", "total")))
        if priced_lines and stated is not None:
            ok = abs(line_total - stated) <= max(0.01, 0.01 * abs(stated))
            checks.append(ComplianceCheck(
                name="Document total",
                passed=ok,
                severity="info" if ok else "warning",
                field="totals",
                message="Line items add up to the stated total" if ok else f"Line items sum to {line_total:.2f}, document states {stated:.2f}",
                requirement="Prices and totals must be mathematically correct",
            ))
        return checks

    def _report(self, checks: list[ComplianceCheck]) -> ComplianceReport:
        failed = [c for c in checks if not c.passed]
        critical = [c for c in failed if c.severity == "error"]
        warnings = [c for c in failed if c.severity == "warning"]
        score = round(100.0 * (len(checks) - len(failed)) / len(checks), 1) if checks else 0.0

        errors = [
            ComplianceIssue(
                type="rule_check", field=c.field, message=c.message,
                severity=c.severity, requirement=c.requirement,
            )
            for c in failed
        ]
        corrections = [
            ComplianceCorrection(
                type="verify_data", field=c.field, message=c.message,
                suggestion=f"Review the document: {c.requirement}" if c.requirement else "Review the document",
                priority="high" if c.severity == "error" else "medium",
            )
            for c in failed
        ]
        recommendations = [
            ComplianceRecommendation(
                category="compliance",
                message="Document may need review and corrections" if failed else "Document meets the basic rule checks",
                priority="high" if critical else "low",
            ),
            ComplianceRecommendation(
                category="ai_processing",
                message="Rule-based analysis was used; AI compliance analysis will resume when a provider is available",
                priority="medium",
            ),
        ]
        return ComplianceReport(
            compliance=ComplianceVerdict(is_valid=not critical, score=score, checks=checks),
            errors=errors,
            corrections=corrections,
            summary=ComplianceSummary(
                total_checks=len(checks),
                passed_checks=len(checks) - len(failed),
                failed_checks=len(failed),
                warnings_count=len(warnings),
                critical_issues=len(critical),
            ),
            recommendations=recommendations,
            provider=self.provider,
        )
