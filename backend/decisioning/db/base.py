"""SQLAlchemy Declarative Base: shared base class and column helpers for all ORM models.

Invariants:
    - All models inherit from Base
    - Base is the single source of truth for table metadata
    - Timestamps are timezone-aware UTC (utcnow)

Design Decisions:
    - Separate file for Base: avoids circular imports between models
"""

from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for the application aggregate and decision ledger tables."""
    pass
