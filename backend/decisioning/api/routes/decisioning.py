"""Decisioning Routes: trigger shadow runs and guarded execution for one synced email.

Invariants:
    - Flags are checked before any work: a disabled stage answers 409
      (FeatureDisabledError), never a silent success
    - Unknown email ids answer 404 (ResourceNotFoundError)
    - Background shadow runs open their own session; the request session is
      closed by the time the task runs

Design Decisions:
    - Extraction provider is a dependency (get_extraction_provider) so tests can
      swap in a scripted provider without patching
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decisioning.config import Settings, get_settings
from decisioning.core.domain_types import (
    DECISION_INPUT_KEY, DECISION_META_KEY, DECISION_PLAN_KEY, DRY_RUN_KEY,
    EXECUTION_META_KEY, FACTS_KEY, FACTS_META_KEY,
)
from decisioning.core.errors import ErrorContext, FeatureDisabledError, ResourceNotFoundError
from decisioning.core.repository_protocols import ExtractionProvider
from decisioning.infrastructure import database
from decisioning.infrastructure.anthropic_client import create_extraction_provider
from decisioning.infrastructure.database import get_db
from decisioning.infrastructure.observability import report_error
from decisioning.models.decision_execution import DecisionExecution
from decisioning.models.synced_email import SyncedEmail
from decisioning.services.execution_runner import ExecutionRunner
from decisioning.services.facts_extractor import EmailFactsExtractor
from decisioning.services.shadow_runner import ShadowRunner

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/emails", tags=["decisioning"])

_SIDE_CHANNEL_KEYS = (
    FACTS_KEY, FACTS_META_KEY, DECISION_INPUT_KEY, DECISION_PLAN_KEY,
    DECISION_META_KEY, DRY_RUN_KEY, EXECUTION_META_KEY,
)


def get_extraction_provider(
    settings: Settings = Depends(get_settings),
) -> ExtractionProvider | None:
    if not settings.email_facts_extraction_enabled:
        return None
    return create_extraction_provider(settings)


def _extractor(
    db: AsyncSession, provider: ExtractionProvider | None, settings: Settings,
) -> EmailFactsExtractor | None:
    if provider is None:
        return None
    return EmailFactsExtractor(db, provider, max_tokens=settings.extraction_max_tokens)


async def get_email_or_404(email_id: int, db: AsyncSession) -> SyncedEmail:
    email = await db.get(SyncedEmail, email_id)
    if email is None:
        raise ResourceNotFoundError(
            "SyncedEmail", str(email_id), ErrorContext(email_id=email_id),
        )
    return email


async def _decisioning_view(db: AsyncSession, email: SyncedEmail) -> dict:
    data = email.extracted_data or {}
    execution = (await db.execute(
        select(DecisionExecution)
        .where(DecisionExecution.synced_email_id == email.id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    return {
        "email_id": email.id,
        "interview_application_id": email.interview_application_id,
        **{key: data.get(key) for key in _SIDE_CHANNEL_KEYS},
        "execution": _execution_view(execution) if execution else None,
    }


def _execution_view(execution: DecisionExecution) -> dict:
    return {
        "id": execution.id,
        "decision": execution.decision,
        "status": execution.status,
        "applied_count": execution.applied_count,
        "confidence": execution.confidence,
        "completed_at": execution.completed_at.isoformat() if execution.completed_at else None,
        "audit": [
            {
                "step_index": entry.step_index,
                "step_id": entry.step_id,
                "action": entry.action,
                "outcome": entry.outcome,
                "reason": entry.reason,
                "detail": entry.detail,
            }
            for entry in execution.audit_entries
        ],
    }


async def _shadow_in_background(
    email_id: int, settings: Settings, provider: ExtractionProvider | None,
) -> None:
    """Shadow run on a fresh session; failures are reported, never raised."""
    try:
        async with database.db_manager.session() as db:
            email = await db.get(SyncedEmail, email_id)
            if email is None:
                logger.warning("Email vanished before shadow run", extra={"email_id": email_id})
                return
            runner = ShadowRunner(db, _extractor(db, provider, settings), settings)
            await runner.run_shadow(email)
    except Exception as e:
        report_error(e, ErrorContext(email_id=email_id))


@router.get("/{email_id}/decisioning")
async def get_decisioning(email_id: int, db: AsyncSession = Depends(get_db)):
    """Side-channel payloads and the execution ledger for one email."""
    email = await get_email_or_404(email_id, db)
    return await _decisioning_view(db, email)


@router.post("/{email_id}/shadow-run")
async def shadow_run(
    email_id: int,
    background_tasks: BackgroundTasks,
    background: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    provider: ExtractionProvider | None = Depends(get_extraction_provider),
):
    """Build and store DecisionInput + DecisionPlan; never applies the plan."""
    if not settings.shadow_decisioning_enabled:
        raise FeatureDisabledError("shadow_decisioning_enabled", ErrorContext(email_id=email_id))
    email = await get_email_or_404(email_id, db)

    if background:
        background_tasks.add_task(_shadow_in_background, email.id, settings, provider)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"email_id": email.id, "status": "scheduled"},
        )

    await ShadowRunner(db, _extractor(db, provider, settings), settings).run_shadow(email)
    return await _decisioning_view(db, email)


@router.post("/{email_id}/execute")
async def execute(
    email_id: int,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    provider: ExtractionProvider | None = Depends(get_extraction_provider),
):
    """Plan and apply the legal subset of steps, exactly once per email."""
    if not settings.decision_execution_enabled:
        raise FeatureDisabledError("decision_execution_enabled", ErrorContext(email_id=email_id))
    email = await get_email_or_404(email_id, db)

    runner = ExecutionRunner(db, _extractor(db, provider, settings), settings)
    executed = await runner.run(email)
    view = await _decisioning_view(db, email)
    view["executed"] = executed
    return view
