"""Infrastructure: tests for settings, structured logging and error reporting.

Tests cover:
    - postgresql:// URLs rewritten for asyncpg; pipeline flags default off
    - JSONFormatter emits core fields plus known extras only
    - report_error returns the compact record and logs with context
"""

import json
import logging

from decisioning.config import Settings
from decisioning.core.domain_types import EvidencePolicy
from decisioning.core.errors import ErrorContext, FeatureDisabledError
from decisioning.infrastructure.observability import JSONFormatter, report_error


def test_postgres_url_rewritten_for_asyncpg():
    settings = Settings(database_url="postgresql://u:p@host:5432/db")
    assert settings.database_url == "postgresql+asyncpg://u:p@host:5432/db"


def test_pipeline_flags_default_off():
    settings = Settings()
    assert settings.shadow_decisioning_enabled is False
    assert settings.shadow_dry_run_enabled is False
    assert settings.decision_execution_enabled is False
    assert settings.evidence_policy == EvidencePolicy.STRICT
    assert settings.min_destructive_confidence == 0.7


def test_json_formatter_includes_known_extras():
    record = logging.LogRecord(
        "decisioning.test", logging.WARNING, __file__, 1, "step %s skipped", ("01",), None,
    )
    record.email_id = 42
    record.outcome = "skipped"
    record.unrelated = "hidden"

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "step 01 skipped"
    assert payload["level"] == "WARNING"
    assert payload["email_id"] == 42
    assert payload["outcome"] == "skipped"
    assert "unrelated" not in payload


def test_report_error_returns_compact_record(caplog):
    error = FeatureDisabledError("decision_execution_enabled")

    with caplog.at_level(logging.ERROR, logger="decisioning.errors"):
        record = report_error(error, ErrorContext(email_id=5), stage="persist_failure")

    assert record == {
        "code": "FEATURE_DISABLED",
        "message": "Feature 'decision_execution_enabled' is disabled",
        "stage": "persist_failure",
    }
    assert caplog.records[0].email_id == 5
    assert caplog.records[0].error_code == "FEATURE_DISABLED"
