"""
External integrations.

Modules:
- summary_client: HTTP client for AI session summaries
"""
from .summary_client import SessionSummaryClient

__all__ = ["SessionSummaryClient"]
