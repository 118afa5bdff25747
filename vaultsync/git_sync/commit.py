"""Staging and committing pending changes."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..config import SyncConfig
from ..errors import CommitError, GitCommandError
from .gateway import RepositoryGateway


@dataclass(frozen=True)
class CommitContext:
    """Everything a commit message policy may look at."""
    manual: bool
    files_changed: int
    reasons: Tuple[str, ...] = field(default_factory=tuple)
    timestamp: datetime = field(default_factory=datetime.now)


CommitMessagePolicy = Callable[[CommitContext], str]


def default_commit_message(context: CommitContext) -> str:
    """
    Default commit message policy.

    Manual passes say so with a timestamp. Scheduled passes name the single
    recorded change, count several, or fall back to a file count.
    """
    stamp = context.timestamp.strftime("%Y-%m-%d %H:%M:%S")

    if context.manual:
        return f"sync: manual sync at {stamp}"

    if len(context.reasons) == 1:
        return f"auto: {context.reasons[0]}"
    if context.reasons:
        return f"auto: {len(context.reasons)} changes"

    noun = "file" if context.files_changed == 1 else "files"
    return f"auto: sync {context.files_changed} {noun} at {stamp}"


@dataclass(frozen=True)
class CommitOutcome:
    committed: bool
    files_changed: int = 0
    commit_hash: Optional[str] = None
    message: Optional[str] = None
    skipped_reason: Optional[str] = None


class CommitOrchestrator:
    """
    Stages and commits the working tree when policy allows.

    Only the scheduled path is gated by ``auto_commit``; a manual pass always
    commits. Changes reported by the host through ``record_change`` are
    folded into the next commit message.
    """

    def __init__(self, gateway: RepositoryGateway, message_policy: Optional[CommitMessagePolicy] = None):
        self.gateway = gateway
        self.message_policy = message_policy or default_commit_message
        self.logger = logging.getLogger('vaultsync.git_sync.commit')
        self._reasons: List[str] = []
        self._reasons_lock = threading.Lock()

    def record_change(self, reason: str) -> None:
        with self._reasons_lock:
            self._reasons.append(reason)
            pending = len(self._reasons)
        self.logger.debug(f"Change recorded: {reason} ({pending} pending)")

    @property
    def pending_changes(self) -> Tuple[str, ...]:
        with self._reasons_lock:
            return tuple(self._reasons)

    def _clear_reasons(self, recorded: Tuple[str, ...]) -> None:
        # Keep anything recorded while the commit was running
        with self._reasons_lock:
            self._reasons = self._reasons[len(recorded):]

    def commit_pending(self, path: Path, policy: SyncConfig, *, manual: bool) -> CommitOutcome:
        """
        Stage everything and commit it.

        Args:
            path: Working tree to commit
            policy: Current sync policy
            manual: True for host-triggered passes, which bypass ``auto_commit``

        Returns:
            CommitOutcome describing what was committed

        Raises:
            CommitError: if staging or committing failed
        """
        if not manual and not policy.auto_commit:
            self.logger.debug("Auto-commit disabled; scheduled pass will not commit")
            return CommitOutcome(committed=False, skipped_reason="auto_commit disabled")

        reasons = self.pending_changes

        try:
            self.gateway.add_all(path)
            tree = self.gateway.get_status(path)
        except GitCommandError as e:
            raise CommitError(f"Failed to stage changes:\n{e.message}", context={'path': str(path)})

        if tree.clean:
            self.logger.debug("Working tree clean after staging; nothing to commit")
            self._clear_reasons(reasons)
            return CommitOutcome(committed=False, skipped_reason="nothing to commit")

        files_changed = tree.files_changed
        message = self.message_policy(CommitContext(manual=manual, files_changed=files_changed, reasons=reasons))

        try:
            created = self.gateway.commit(path, message)
        except GitCommandError as e:
            raise CommitError(f"Failed to commit changes:\n{e.message}", context={'path': str(path)})

        if not created:
            self._clear_reasons(reasons)
            return CommitOutcome(committed=False, skipped_reason="nothing to commit")

        self._clear_reasons(reasons)
        commit_hash = self.gateway.get_last_commit_hash(path)

        self.logger.info(f"💾 Committed {files_changed} file(s) as {commit_hash}: {message}")

        return CommitOutcome(
            committed=True,
            files_changed=files_changed,
            commit_hash=commit_hash,
            message=message
        )
