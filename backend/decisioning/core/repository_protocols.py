"""Boundary Protocols: contracts between core and shell.

Invariants:
    - Core NEVER imports from services/, infrastructure/, models/ or api/
    - The application aggregate (status/stage FSM) is consumed through these shapes,
      never redefined in core
    - Implementations provided by shell (ORM models, provider clients)

Design Decisions:
    - Protocol over ABC: structural subtyping, ORM rows satisfy these directly
    - Async only on ExtractionProvider: it is the one boundary core services call
      that performs network IO
"""

from datetime import datetime
from typing import Protocol

from decisioning.core.errors import ErrorContext


class EmailLike(Protocol):
    """Structural contract for a synced email row."""
    id: int
    thread_id: str | None
    email_type: str | None
    email_date: datetime | None
    from_email: str | None
    from_name: str | None
    subject: str | None
    snippet: str | None
    body_preview: str | None
    body_html: str | None
    extraction_confidence: float | None
    interview_application_id: int | None
    extracted_data: dict | None


class RoundLike(Protocol):
    """Structural contract for an interview round row."""
    id: int
    position: int | None
    stage: str
    stage_name: str | None
    scheduled_at: datetime | None
    completed_at: datetime | None
    result: str
    interviewer_name: str | None
    source_email_id: int | None


class ApplicationLike(Protocol):
    """Structural contract for the externally owned application aggregate.

    Guard methods encode the aggregate's FSM; the executor asks them before
    every mutation and never assumes a transition is legal.
    """
    id: int
    status: str
    pipeline_stage: str

    def may_transition_status(self, target: str) -> bool: ...
    def may_move_to_stage(self, target: str) -> bool: ...


class ProviderResponse(Protocol):
    """Raw text answer from an extraction provider."""
    text: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int


class ExtractionProvider(Protocol):
    """Text-understanding provider: canonical prompt in, free text out."""
    name: str

    async def complete(
        self, *, system: str, prompt: str, max_tokens: int,
        context: ErrorContext | None = None,
    ) -> ProviderResponse: ...
