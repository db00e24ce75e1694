"""Journal engine - wires capture, lifecycle, store and index for one project."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from .capture import ChangeCapture
from .config import ProjectConfig
from .errors import RetryUnavailableError
from .index import JournalIndex, ViewMode
from .models import JournalChange, Session
from .session import Notifier, PendingRetry, SessionLifecycle, StopOutcome, StopStatus
from .store import JournalStore
from .summarizer import Summarizer, build_summarizer
from .watcher import WorkspaceWatcher, bounded_reader

logger = logging.getLogger(__name__)


class JournalEngine:
    """Composition root: one project, one journal, one recording lifecycle.

    Args:
        config: Project configuration
        notifier: Receives user-facing notices (defaults to logging)
        summarizer: Overrides the summarizer chosen from ``config``
    """

    def __init__(
        self,
        config: ProjectConfig,
        notifier: Optional[Notifier] = None,
        summarizer: Optional[Summarizer] = None,
    ):
        self.config = config
        self.store = JournalStore(
            config.get_journal_path(),
            title=config.journal_title,
            lock_timeout=config.lock_timeout,
        )
        self.capture = ChangeCapture(
            lambda: self.lifecycle.current_session,
            reader=bounded_reader(config.max_file_bytes),
            retain_closed_documents=config.retain_closed_documents,
            record_idle_changes=config.record_idle_changes,
        )
        self.summarizer = summarizer or build_summarizer(config)
        self.index = JournalIndex(self.store, project_root=config.project_root)
        self.lifecycle = SessionLifecycle(
            self.capture,
            self.summarizer,
            self.store,
            notifier=notifier,
            on_written=[self.index.refresh],
        )
        self._pending_retry: Optional[PendingRetry] = None
        self._newest_written: Optional[Session] = None

    def create_watcher(self) -> WorkspaceWatcher:
        """Watcher for the project root that excludes the journal itself."""
        return WorkspaceWatcher(
            self.config.project_root,
            self.capture,
            poll_interval=self.config.poll_interval,
            ignore_patterns=self.config.ignore_patterns,
            max_file_bytes=self.config.max_file_bytes,
            journal_path=self.store.path,
        )

    # ========== Session Operations ==========

    def start_session(self) -> dict[str, Any]:
        session = self.lifecycle.start()
        if session is None:
            current = self.lifecycle.current_session
            return {
                "started": False,
                "reason": "already_recording",
                "session": current.to_dict() if current else None,
            }
        return {"started": True, "session": session.to_dict()}

    async def stop_session(self) -> dict[str, Any]:
        """Stop recording and summarize. A retryable failure stays available to ``retry_last``."""
        outcome = await self.lifecycle.stop()
        return self._remember(outcome)

    async def retry_last(self) -> dict[str, Any]:
        """Run the retry offered by the last failed summary.

        A pending retry survives later sessions, whether they were written
        or failed without a retry. Its block is still placed at the top of
        the journal, above any newer session written in the meantime; the
        result then carries ``"out_of_order": True``.

        Raises:
            RetryUnavailableError: If no unused retry is pending
        """
        retry = self._pending_retry
        if retry is None or retry.used:
            raise RetryUnavailableError("No failed summary is waiting for a retry")
        newer = self._newest_written is not None and self._started_after(self._newest_written, retry.session)
        if newer:
            logger.warning(
                "Retrying session %s after newer session %s was written; it will be placed above it",
                retry.session.id, self._newest_written.id,
            )
        outcome = await retry.run()
        result = self._remember(outcome)
        if newer and outcome.status is StopStatus.WRITTEN:
            result["out_of_order"] = True
        return result

    def _remember(self, outcome: StopOutcome) -> dict[str, Any]:
        if outcome.retry is not None:
            # Only the latest retryable failure can be retried
            self._pending_retry = outcome.retry
        if outcome.status is StopStatus.WRITTEN and outcome.session is not None:
            if self._newest_written is None or self._started_after(outcome.session, self._newest_written):
                self._newest_written = outcome.session
        result = outcome.to_dict()
        if outcome.summary is not None:
            result["summary"] = outcome.summary.to_dict()
        return result

    def _started_after(self, session: Session, other: Session) -> bool:
        order = [s.id for s in self.lifecycle.get_sessions()]
        return order.index(session.id) > order.index(other.id)

    def session_status(self) -> dict[str, Any]:
        current = self.lifecycle.current_session
        return {
            "state": self.lifecycle.state.value,
            "session": current.to_dict() if current else None,
            "pending_changes": len(self.capture.get_current_session_changes()),
            "can_retry": self._pending_retry is not None and not self._pending_retry.used,
            "retry_session": (
                self._pending_retry.session.to_dict()
                if self._pending_retry is not None and not self._pending_retry.used
                else None
            ),
            "sessions": [s.to_dict() for s in self.lifecycle.get_sessions()],
            "journal_path": str(self.store.path),
        }

    # ========== Change Operations ==========

    def list_changes(self, session_id: Optional[str] = None, current: bool = False) -> list[dict[str, Any]]:
        if current:
            changes = self.capture.get_current_session_changes()
        elif session_id:
            changes = self.capture.get_changes_by_session(session_id)
        else:
            changes = self.capture.get_changes()
        return [c.to_dict() for c in changes]

    def clear_changes(self, session_id: Optional[str] = None) -> dict[str, Any]:
        if session_id:
            removed = self.capture.clear_session_changes(session_id)
        else:
            removed = self.capture.clear_changes()
        logger.info("Cleared %d captured changes", removed)
        return {"removed": removed}

    # ========== Journal Operations ==========

    def view(self, mode: Optional[str] = None, node_id: Optional[str] = None) -> dict[str, Any]:
        """Children of ``node_id`` (or the roots) in the requested view mode."""
        if mode is not None:
            wanted = ViewMode(mode)
            if wanted is not self.index.mode:
                self.index.set_view_mode(wanted)
        return {
            "mode": self.index.mode.value,
            "node_id": node_id,
            "children": [n.to_dict() for n in self.index.get_children(node_id)],
        }

    def locate(
        self,
        timestamp: str,
        description: str,
        session_title: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> dict[str, Any]:
        line = self.index.locate(
            JournalChange(timestamp=timestamp, description=description),
            session_title=session_title,
            file_path=file_path,
        )
        return {"found": line is not None, "line": line, "path": str(self.store.path)}

    def refresh_journal(self) -> dict[str, Any]:
        self.index.refresh()
        sessions = self.index.sessions()
        return {
            "sessions": len(sessions),
            "changes": sum(s.change_count() for s in sessions),
        }

    def open_journal(
        self,
        timestamp: Optional[str] = None,
        description: Optional[str] = None,
        session_title: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> dict[str, Any]:
        """Path of the journal, created with its header if missing.

        With ``timestamp`` and ``description`` the matching change line is
        included so a host can open the file at that position.
        """
        created = not self.store.exists()
        path: Path = self.store.ensure_exists()
        if created:
            self.index.refresh()
        line = None
        if timestamp and description:
            line = self.locate(timestamp, description, session_title, file_path)["line"]
        return {"path": str(path), "created": created, "line": line}
