"""Facts Extractor: provider call -> JSON -> validated EmailFacts -> side-channel persistence.

Invariants:
    - Never raises for provider failures or contract violations: both come back
      as ExtractionResult(success=False) with a distinct error_kind
    - email_facts_v1 is written ONLY for schema-valid facts; failures write
      email_facts_meta_v1 alone and leave any earlier facts untouched
    - Persistence is an additive merge into SyncedEmail.extracted_data
    - JSON parsing: direct parse, then the first {...} block; nothing else

Design Decisions:
    - Provider injected through the ExtractionProvider protocol: the Anthropic
      client in production, a scripted provider in tests
    - Meta is committed immediately: extraction diagnostics survive later stage failures
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from decisioning.core.domain_types import FACTS_KEY, FACTS_META_KEY
from decisioning.core.errors import ErrorContext, ExtractionProviderError
from decisioning.core.repository_protocols import ExtractionProvider
from decisioning.infrastructure.observability import report_error
from decisioning.models.synced_email import SyncedEmail
from decisioning.schemas.email_facts import EmailFacts
from decisioning.schemas.validation import (
    contract_dump, parse_email_facts, validate_email_facts,
)
from decisioning.services.extraction_prompt import SYSTEM_PROMPT, build_user_prompt

logger = logging.getLogger(__name__)

PROVIDER_FAILURE = "provider_failure"
CONTRACT_VIOLATION = "contract_violation"

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class ExtractionResult:
    success: bool
    facts: EmailFacts | None = None
    error: str | None = None
    error_kind: str | None = None
    errors: list[dict] = field(default_factory=list)
    provider: str | None = None
    model: str | None = None
    latency_ms: int = 0
    reused: bool = False


def parse_json_object(text: str) -> dict | None:
    """Extract a JSON object from provider text. Handles markdown wrapping.

    Fallback levels:
    1. Direct json.loads
    2. Regex: extract first {...} block
    """
    text = (text or "").strip()

    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    match = _JSON_BLOCK.search(text)
    if match:
        try:
            parsed = json.loads(match.group())
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass
    return None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EmailFactsExtractor:
    """Extracts, validates and persists EmailFacts for one email."""

    def __init__(
        self,
        db: AsyncSession,
        provider: ExtractionProvider,
        max_tokens: int = 2048,
        reuse_persisted: bool = False,
    ):
        self.db = db
        self.provider = provider
        self.max_tokens = max_tokens
        self.reuse_persisted = reuse_persisted

    async def extract(self, email: SyncedEmail, decision_input_base: dict) -> ExtractionResult:
        if self.reuse_persisted:
            reused = self.persisted_facts(email)
            if reused is not None:
                return reused

        context = ErrorContext(
            email_id=email.id, application_id=email.interview_application_id,
        )
        provider_name = getattr(self.provider, "name", type(self.provider).__name__)
        started = time.monotonic()
        try:
            response = await self.provider.complete(
                system=SYSTEM_PROMPT,
                prompt=build_user_prompt(decision_input_base),
                max_tokens=self.max_tokens,
                context=context,
            )
        except ExtractionProviderError as e:
            return await self._fail(
                email, PROVIDER_FAILURE, e.message, [report_error(e, context)],
                provider_name, None, started,
            )
        except Exception as e:
            return await self._fail(
                email, PROVIDER_FAILURE, str(e), [report_error(e, context)],
                provider_name, None, started,
            )

        provider_name = response.provider or provider_name
        model = response.model
        parsed = parse_json_object(response.text)
        if parsed is None:
            return await self._fail(
                email, PROVIDER_FAILURE, "provider returned non-JSON content",
                [{"code": "NON_JSON_RESPONSE", "message": "no JSON object in response"}],
                provider_name, model, started,
            )

        errors = validate_email_facts(parsed)
        if errors:
            logger.warning(
                "EmailFacts failed validation with %d error(s)", len(errors),
                extra={"email_id": email.id, "error_code": "CONTRACT_VIOLATION"},
            )
            return await self._fail(
                email, CONTRACT_VIOLATION,
                f"EmailFacts failed validation with {len(errors)} error(s)",
                [e.to_dict() for e in errors], provider_name, model, started,
            )

        facts = parse_email_facts(parsed, context)
        latency_ms = self._elapsed(started)
        self._persist(email, facts=contract_dump(facts), meta={
            "status": "ok",
            "provider": provider_name,
            "model": model,
            "latency_ms": latency_ms,
            "input_tokens": response.input_tokens,
            "output_tokens": response.output_tokens,
            "generated_at": _now(),
        })
        await self.db.commit()
        logger.info(
            "EmailFacts extracted: kind=%s", facts.classification.kind.value,
            extra={"email_id": email.id, "latency_ms": latency_ms},
        )
        return ExtractionResult(
            success=True, facts=facts, provider=provider_name,
            model=model, latency_ms=latency_ms,
        )

    def persisted_facts(self, email: SyncedEmail) -> ExtractionResult | None:
        data = email.extracted_data or {}
        meta = data.get(FACTS_META_KEY) or {}
        stored = data.get(FACTS_KEY)
        if meta.get("status") != "ok" or not isinstance(stored, dict):
            return None
        if validate_email_facts(stored):
            return None
        return ExtractionResult(
            success=True,
            facts=parse_email_facts(stored),
            provider=meta.get("provider"),
            model=meta.get("model"),
            reused=True,
        )

    async def _fail(
        self,
        email: SyncedEmail,
        kind: str,
        message: str,
        errors: list[dict],
        provider: str | None,
        model: str | None,
        started: float,
    ) -> ExtractionResult:
        latency_ms = self._elapsed(started)
        self._persist(email, facts=None, meta={
            "status": "failed",
            "error_kind": kind,
            "error_count": len(errors),
            "errors": errors,
            "provider": provider,
            "model": model,
            "latency_ms": latency_ms,
            "generated_at": _now(),
        })
        await self.db.commit()
        logger.warning(
            "EmailFacts extraction failed (%s): %s", kind, message,
            extra={"email_id": email.id, "error_code": kind.upper()},
        )
        return ExtractionResult(
            success=False, error=message, error_kind=kind, errors=errors,
            provider=provider, model=model, latency_ms=latency_ms,
        )

    @staticmethod
    def _persist(email: SyncedEmail, facts: dict | None, meta: dict) -> None:
        updates = {FACTS_META_KEY: meta}
        if facts is not None:
            updates[FACTS_KEY] = facts
        email.merge_extracted_data(updates)

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.monotonic() - started) * 1000)


# ─── Facts acquisition for runners ───────────────────────────────

EXTRACTED = "extracted"
PERSISTED = "persisted"
FALLBACK = "fallback"


@dataclass(frozen=True)
class FactsOutcome:
    """Which facts feed the DecisionInput, and where they came from."""
    facts: EmailFacts | None
    source: str
    provider: str | None = None
    error_kind: str | None = None
    errors: list[dict] = field(default_factory=list)


async def obtain_facts(
    extractor: EmailFactsExtractor | None,
    email: SyncedEmail,
    decision_input_base: dict,
    enabled: bool = True,
    prefer_persisted: bool = False,
) -> FactsOutcome:
    """Persisted facts (optional) -> provider extraction -> fallback (facts=None)."""
    if extractor is not None and prefer_persisted:
        reused = extractor.persisted_facts(email)
        if reused is not None:
            return FactsOutcome(reused.facts, PERSISTED, provider=reused.provider)

    if extractor is None or not enabled:
        return FactsOutcome(None, FALLBACK)

    result = await extractor.extract(email, decision_input_base)
    if result.success:
        source = PERSISTED if result.reused else EXTRACTED
        return FactsOutcome(result.facts, source, provider=result.provider)
    return FactsOutcome(
        None, FALLBACK, provider=result.provider,
        error_kind=result.error_kind, errors=result.errors,
    )
