"""ORM Models: SQLAlchemy declarative models for the application aggregate and the decision ledger.

Invariants:
    - All models inherit from Base (db/base.py)
    - InterviewApplication is the aggregate root for rounds and feedback

Design Decisions:
    - One file per entity (ledger tables share one file)
    - All models imported here so SQLAlchemy resolves string-based relationship()
      references before any query runs
"""

from decisioning.models.interview_application import InterviewApplication  # noqa: F401
from decisioning.models.interview_round import InterviewRound  # noqa: F401
from decisioning.models.round_feedback import RoundFeedback  # noqa: F401
from decisioning.models.company_feedback import CompanyFeedback  # noqa: F401
from decisioning.models.synced_email import SyncedEmail  # noqa: F401
from decisioning.models.decision_execution import (  # noqa: F401
    DecisionAuditEntry, DecisionExecution,
)
