"""Per-provider quota tracking for the AI pipeline.

State is in-memory and process-wide; a restart makes every provider
available again. Nothing resets on a timer: availability only comes back
through ``reset_service_quota`` or by polling ``should_retry_service``
after the cool-down has elapsed.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

logger = logging.getLogger("tradeflow.quota")

GEMINI = "gemini"
OPENAI = "openai"
ANTHROPIC = "anthropic"
PROVIDERS = (GEMINI, OPENAI, ANTHROPIC)

OCR_FALLBACK = "enhanced-fallback-ocr"
COMPLIANCE_FALLBACK = "fallback-compliance"
GENERIC_FALLBACK = "fallback"

_RETRY_DELAY_RE = re.compile(r'retryDelay["\']?\s*[:=]\s*["\']?(\d+(?:\.\d+)?)s')
_QUOTA_MARKERS = ("429", "quota", "resource_exhausted", "rate limit", "rate_limit", "too many requests")


def is_quota_error(error: BaseException | str) -> bool:
    """True when an upstream failure means "out of quota" rather than "broken"."""
    status = getattr(error, "status_code", None) or getattr(error, "code", None)
    if status == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _QUOTA_MARKERS)


def parse_retry_delay(error: BaseException | str) -> float | None:
    """Seconds from a provider's ``retryDelay":"<n>s`` hint, if present."""
    match = _RETRY_DELAY_RE.search(str(error))
    return float(match.group(1)) if match else None


@dataclass
class ProviderState:
    available: bool = True
    reset_time: datetime | None = None
    retry_after: float | None = None
    last_error: str | None = None
    failures: int = 0

    def as_dict(self) -> dict:
        return {
            "available": self.available,
            "reset_time": self.reset_time.isoformat() if self.reset_time else None,
            "retry_after": self.retry_after,
            "last_error": self.last_error,
            "failures": self.failures,
        }


class QuotaManager:
    def __init__(
        self,
        compliance_preference: tuple[str, ...] = (OPENAI, ANTHROPIC),
        default_cooldown: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] | None = None,
    ):
        self.compliance_preference = tuple(compliance_preference)
        self.default_cooldown = default_cooldown
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._state: dict[str, ProviderState] = {p: ProviderState() for p in PROVIDERS}

    @classmethod
    def from_settings(cls, settings) -> "QuotaManager":
        preferred = settings.compliance_ai_provider.lower()
        preference = (ANTHROPIC, OPENAI) if preferred == ANTHROPIC else (OPENAI, ANTHROPIC)
        return cls(
            compliance_preference=preference,
            default_cooldown=timedelta(hours=settings.quota_default_cooldown_hours),
        )

    def _get(self, provider: str) -> ProviderState:
        return self._state.setdefault(provider, ProviderState())

    def is_service_available(self, provider: str) -> bool:
        return self._get(provider).available

    def handle_quota_exceeded(self, provider: str, error: BaseException | str) -> datetime:
        """Mark ``provider`` unavailable; return when it may be retried."""
        state = self._get(provider)
        retry_after = parse_retry_delay(error)
        cooldown = timedelta(seconds=retry_after) if retry_after is not None else self.default_cooldown

        state.available = False
        state.retry_after = retry_after
        state.reset_time = self._clock() + cooldown
        state.last_error = str(error)[:500]
        state.failures += 1

        logger.warning(
            "Quota exceeded for %s; unavailable until %s", provider, state.reset_time.isoformat()
        )
        return state.reset_time

    def should_retry_service(self, provider: str) -> bool:
        """True unless a cool-down is still pending; restores the provider once it has passed."""
        state = self._get(provider)
        if state.available:
            return True
        if state.reset_time is not None and self._clock() >= state.reset_time:
            self.reset_service_quota(provider)
            return True
        return False

    def reset_service_quota(self, provider: str) -> None:
        self._state[provider] = ProviderState()
        logger.info("Quota state reset for %s", provider)

    def get_best_available_service(self, task: str) -> str:
        """Return the provider tag to use for ``task``.

        Pure read of the recorded state: an expired cool-down still counts as
        unavailable until ``should_retry_service`` is polled for it.
        """
        if task == "ocr":
            return GEMINI if self.is_service_available(GEMINI) else OCR_FALLBACK
        if task == "compliance":
            for provider in self.compliance_preference:
                if self.is_service_available(provider):
                    return provider
            return COMPLIANCE_FALLBACK
        return GENERIC_FALLBACK

    def available_compliance_providers(self) -> list[str]:
        return [p for p in self.compliance_preference if self.is_service_available(p)]

    def get_quota_status(self) -> dict[str, dict]:
        return {provider: state.as_dict() for provider, state in self._state.items()}

    # Narrow interface used by the pipeline

    def is_available(self, provider: str) -> bool:
        return self.is_service_available(provider)

    def record_failure(self, provider: str, hint: BaseException | str) -> None:
        self.handle_quota_exceeded(provider, hint)

    def record_success(self, provider: str) -> None:
        state = self._get(provider)
        if state.failures or not state.available:
            self.reset_service_quota(provider)
