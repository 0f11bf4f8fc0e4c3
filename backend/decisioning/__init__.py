"""Inbox Decisioning: contract-first pipeline from job-search email to guarded state transitions."""

__version__ = "0.1.0"
