"""Exception hierarchy for CodeJournal."""

from __future__ import annotations

from typing import Optional


class JournalError(Exception):
    """Base exception for journal operations."""
    pass


class SessionStateError(JournalError):
    """Raised when a session transition is not allowed."""
    pass


class RetryUnavailableError(JournalError):
    """Raised when a summarization retry was already used or never offered."""
    pass


class ConfigError(JournalError):
    """Raised when configuration is missing or invalid."""
    pass


class SummarizerError(JournalError):
    """Raised by summarization transports to declare a classified failure.

    Transports raise this with one of the ``ErrorKind`` values; the
    summarizer boundary turns it into a ``SummaryFailure`` result.
    """

    def __init__(self, message: str, kind: str = "unknown_error", retryable: Optional[bool] = None):
        super().__init__(message)
        self.kind = kind
        self.retryable = retryable


class JournalLockError(JournalError):
    """Raised when the journal lock cannot be acquired."""
    pass
