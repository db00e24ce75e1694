"""Session lifecycle: start, stop, summarize, write.

States::

    IDLE --start()--> RECORDING --stop()--> SUMMARIZING --> IDLE

Only one session records at a time. Stopping stamps the end time at once;
the summarizer call that follows may take a while, and a new session can
be started while it is in flight. Whatever that call returns is still
written to the journal when it arrives.

The lifecycle talks to its collaborators only through the ports passed to
its constructor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from .errors import JournalError, RetryUnavailableError
from .models import (
    Change,
    ErrorKind,
    JournalSession,
    Session,
    SessionSummary,
    SummaryFailure,
)
from .summarizer import Summarizer

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    SUMMARIZING = "summarizing"


class StopStatus(Enum):
    """How a stop (or retry) ended."""
    NOT_RECORDING = "not_recording"
    EMPTY = "empty"
    WRITTEN = "written"
    FAILED = "failed"
    WRITE_FAILED = "write_failed"


class ChangeSource(Protocol):
    def get_changes_by_session(self, session_id: str) -> list[Change]:
        ...


class JournalWriter(Protocol):
    def append_session(self, session: JournalSession) -> Path:
        ...


class Notifier(Protocol):
    def info(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


class LogNotifier:
    """Notifier that only logs; hosts with a UI supply their own."""

    def info(self, message: str) -> None:
        logger.info(message)

    def error(self, message: str) -> None:
        logger.error(message)


@dataclass
class StopOutcome:
    """Result of ``stop()`` or of running a retry."""
    status: StopStatus
    session: Optional[Session] = None
    change_count: int = 0
    summary: Optional[SessionSummary] = None
    failure: Optional[SummaryFailure] = None
    error: Optional[str] = None
    journal_path: Optional[Path] = None
    retry: Optional["PendingRetry"] = None

    @property
    def can_retry(self) -> bool:
        return self.retry is not None and not self.retry.used

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "session": self.session.to_dict() if self.session else None,
            "change_count": self.change_count,
            "failure": self.failure.to_dict() if self.failure else None,
            "error": self.error,
            "journal_path": str(self.journal_path) if self.journal_path else None,
            "can_retry": self.can_retry,
        }


class PendingRetry:
    """One manual retry of a failed summarization, same session, same changes."""

    def __init__(self, lifecycle: "SessionLifecycle", session: Session, changes: list[Change]):
        self._lifecycle = lifecycle
        self.session = session
        self.changes = list(changes)
        self.used = False

    async def run(self) -> StopOutcome:
        """Re-run the summarize-and-write step.

        Raises:
            RetryUnavailableError: If this retry already ran
        """
        if self.used:
            raise RetryUnavailableError(f"Retry for session {self.session.id} was already used")
        self.used = True
        logger.info("Retrying summary for session %s", self.session.id)
        return await self._lifecycle._summarize_and_write(self.session, self.changes)


class SessionLifecycle:
    """Gates capture and drives the stop-time pipeline.

    Args:
        changes: Source of captured changes for a session id
        summarizer: Summarization collaborator
        journal: Where successful summaries are written
        notifier: Receives user-facing notices
        on_written: Called after each successful journal write
    """

    def __init__(
        self,
        changes: ChangeSource,
        summarizer: Summarizer,
        journal: JournalWriter,
        notifier: Optional[Notifier] = None,
        on_written: Optional[list[Callable[[], None]]] = None,
    ):
        self._changes = changes
        self._summarizer = summarizer
        self._journal = journal
        self._notifier = notifier or LogNotifier()
        self._on_written = list(on_written or [])
        self._current: Optional[Session] = None
        self._sessions: list[Session] = []
        self._in_flight = 0

    # ========== State ==========

    @property
    def current_session(self) -> Optional[Session]:
        """The recording session, or None."""
        if self._current is not None and self._current.is_active:
            return self._current
        return None

    @property
    def state(self) -> SessionState:
        if self.current_session is not None:
            return SessionState.RECORDING
        if self._in_flight:
            return SessionState.SUMMARIZING
        return SessionState.IDLE

    def is_recording(self) -> bool:
        return self.current_session is not None

    def get_sessions(self) -> list[Session]:
        return list(self._sessions)

    def add_refresh_listener(self, listener: Callable[[], None]) -> None:
        self._on_written.append(listener)

    # ========== Transitions ==========

    def start(self) -> Optional[Session]:
        """Begin recording. Returns None if a session is already recording."""
        if self.current_session is not None:
            self._notifier.info("A CodeJournal session is already active.")
            return None

        session = Session.begin()
        self._current = session
        self._sessions.append(session)
        logger.info("Session %s started at %s", session.id, session.start_time.isoformat())
        self._notifier.info("CodeJournal session started.")
        return session

    async def stop(self) -> StopOutcome:
        """End the recording session and summarize what it captured."""
        session = self.current_session
        if session is None:
            self._notifier.info("No active CodeJournal session to stop.")
            return StopOutcome(status=StopStatus.NOT_RECORDING)

        session.close()
        changes = self._changes.get_changes_by_session(session.id)
        logger.info(
            "Session %s stopped after %d minutes with %d changes",
            session.id, session.duration_minutes(), len(changes),
        )
        self._notifier.info(f"CodeJournal session stopped. {len(changes)} changes recorded.")

        if not changes:
            return StopOutcome(status=StopStatus.EMPTY, session=session)

        return await self._summarize_and_write(session, changes)

    async def _summarize_and_write(self, session: Session, changes: list[Change]) -> StopOutcome:
        self._in_flight += 1
        try:
            try:
                result = await self._summarizer.summarize(session, changes)
            except Exception as e:
                logger.exception("Summarizer raised for session %s", session.id)
                result = SummaryFailure.of(ErrorKind.UNKNOWN_ERROR, str(e) or type(e).__name__)
        finally:
            self._in_flight -= 1

        if isinstance(result, SummaryFailure):
            return self._failed(session, changes, result)

        try:
            result.validate()
        except ValueError as e:
            failure = SummaryFailure.of(ErrorKind.API_ERROR, f"Malformed summary response: {e}")
            return self._failed(session, changes, failure)

        try:
            path = self._journal.append_session(result.to_journal_session(session))
        except (OSError, ValueError, JournalError) as e:
            logger.error("Could not write session %s to the journal: %s", session.id, e)
            self._notifier.error(f"Could not write CodeJournal entry: {e}")
            return StopOutcome(
                status=StopStatus.WRITE_FAILED,
                session=session,
                change_count=len(changes),
                summary=result,
                error=str(e),
            )

        for listener in self._on_written:
            try:
                listener()
            except Exception:
                logger.exception("Journal refresh listener failed")

        self._notifier.info("Session summary added to the CodeJournal.")
        return StopOutcome(
            status=StopStatus.WRITTEN,
            session=session,
            change_count=len(changes),
            summary=result,
            journal_path=path,
        )

    def _failed(self, session: Session, changes: list[Change], failure: SummaryFailure) -> StopOutcome:
        logger.warning(
            "Summary failed for session %s: %s (%s, retryable=%s)",
            session.id, failure.message, failure.kind.value, failure.retryable,
        )
        retry = PendingRetry(self, session, changes) if failure.retryable else None
        suffix = " You can retry." if retry else ""
        self._notifier.error(f"CodeJournal summary failed ({failure.kind.value}): {failure.message}.{suffix}")
        return StopOutcome(
            status=StopStatus.FAILED,
            session=session,
            change_count=len(changes),
            failure=failure,
            retry=retry,
        )
