"""Error Hierarchy: typed, categorized exceptions for all decisioning failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Domain errors (400-level) are recoverable; infrastructure errors (500-level) are critical
    - to_response() produces the REST envelope used by the API error handlers
    - No internal details leaked in user-facing messages

Design Decisions:
    - Single hierarchy with DecisioningError base: FastAPI global handler catches all
    - ErrorContext as dataclass: carries email/application/step identity for
      observability without coupling to the logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    CONTRACT = "contract"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    INTERNAL = "internal"
    CONFLICT = "conflict"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    email_id: int | None = None
    application_id: int | None = None
    step_id: str | None = None
    rule_name: str | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class DecisioningError(Exception):
    """Base exception for all decisioning errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.context.user_message or self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "email_id": self.context.email_id,
                    "application_id": self.context.application_id,
                    "step_id": self.context.step_id,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }

    def to_record(self) -> dict:
        """Compact JSON-safe form stored in side-channel meta payloads."""
        return {"code": self.code, "message": self.message}


# ─── Domain Errors (400-level) ──────────────────────────────────

class ContractViolationError(DecisioningError):
    """Payload failed contract validation (EmailFacts, DecisionInput, DecisionPlan)."""
    def __init__(
        self, contract: str, errors: list, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{contract} failed validation with {len(errors)} error(s)",
            "CONTRACT_VIOLATION", ErrorCategory.CONTRACT,
            ErrorSeverity.WARNING, context, 422,
        )
        self.contract = contract
        self.errors = errors


class ResourceNotFoundError(DecisioningError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )


class FeatureDisabledError(DecisioningError):
    """Operation gated by a runtime flag that is switched off."""
    def __init__(self, flag: str, context: ErrorContext | None = None):
        super().__init__(
            f"Feature '{flag}' is disabled",
            "FEATURE_DISABLED", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.INFO, context, 409,
        )
        self.flag = flag


# ─── Infrastructure Errors (500-level) ──────────────────────────

class DatabaseError(DecisioningError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class ExtractionProviderError(DecisioningError):
    """Text-understanding provider call failed or returned unusable content."""
    def __init__(
        self,
        message: str,
        api_error_type: str,
        retry_after_ms: int | None = None,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.retry_after_ms = retry_after_ms
        super().__init__(
            f"Extraction provider error ({api_error_type}): {message}",
            "EXTRACTION_PROVIDER_ERROR", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, ctx, 503,
        )
        self.api_error_type = api_error_type
