"""
DJED ANALYTICS - Exception Hierarchy

- TransientError: upstream trouble that was retried and still failed. The
  current fetch is aborted; the next scheduled cycle tries again.
- ResourceNotFound: a specific resource (block, datum, tx) does not exist.
  For block lookups this is the rollback signal.
- DecodeError: a datum or timestamp could not be decoded. Caught where
  snapshots are built; the entry is skipped.
- RollbackExceedsHistory: no persisted block survives on-chain. Fatal for
  the cycle; needs an operator-driven full resync.
- InvariantViolation: input the pipeline should never see (unsorted
  entries, mismatched kinds). Fail fast.
"""
from typing import Optional


class AnalyticsSyncError(Exception):
    """Base exception for the analytics sync engine."""


class ConfigurationError(AnalyticsSyncError):
    """Required configuration is missing or malformed."""


class TransientError(AnalyticsSyncError):
    """Network, timeout or server-side failure that survived all retries."""

    def __init__(self, message: str, status: Optional[int] = None, attempts: int = 0):
        super().__init__(message)
        self.status = status
        self.attempts = attempts


class RateLimitError(TransientError):
    """Upstream kept answering 429 after all retries."""


class ChainApiError(AnalyticsSyncError):
    """Non-retryable upstream response (bad request, forbidden, ...)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ResourceNotFound(ChainApiError):
    """HTTP 404 for a specific resource."""

    def __init__(self, path: str):
        super().__init__(f"Resource not found: {path}", status=404)
        self.path = path


class DecodeError(AnalyticsSyncError):
    """A datum or timestamp could not be decoded into a snapshot."""


class RollbackExceedsHistory(AnalyticsSyncError):
    """Every stored block was rolled back. Full resync required."""


class InvariantViolation(AnalyticsSyncError):
    """Pipeline input broke an ordering or shape guarantee."""
