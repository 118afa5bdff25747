"""The sync engine facade exposed to the host layer."""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .config import Config, ConfigStore, SyncConfig
from .errors import ReindexError, SyncDisabledError
from .git_sync.commit import CommitMessagePolicy, CommitOrchestrator
from .git_sync.conflicts import ConflictDetector
from .git_sync.executor import CommandExecutor
from .git_sync.gateway import RepositoryGateway
from .git_sync.orchestrator import RemoteSyncOrchestrator
from .git_sync.repository_info import describe_repository
from .git_sync.scheduler import SyncGuard, SyncScheduler
from .git_sync.status import StatusClassifier
from .git_sync.utils import SyncResult
from .migration.manager import MigrationManager
from .notifications import NotificationCenter


Reindexer = Callable[[], None]


class SyncEngine:
    """
    Owns one of every sync component and exposes the host operations.

    Nothing here is process-global: build one engine from a Config at start-up,
    call ``start()`` to run the scheduler, and ``shutdown()`` before exit.
    """

    def __init__(
        self,
        config: Config,
        executor: Optional[CommandExecutor] = None,
        reindexer: Optional[Reindexer] = None,
        persist_sync_config: Optional[Callable[[SyncConfig], None]] = None,
        on_data_dir_changed: Optional[Callable[[Path], None]] = None,
        commit_message_policy: Optional[CommitMessagePolicy] = None,
        conflict_detector: Optional[ConflictDetector] = None,
        notifications: Optional[NotificationCenter] = None
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration
            executor: Command executor; defaults to running git as a subprocess
            reindexer: Search reindex collaborator, called after a migration
            persist_sync_config: Called with every accepted SyncConfig
            on_data_dir_changed: Called when a migration adopts a new directory
            commit_message_policy: Replaces the default commit message policy
            conflict_detector: Replaces the default conflict detection policy
            notifications: Notification surface; a private one is created if omitted
        """
        self.config = config
        self.logger = logging.getLogger('vaultsync.engine')

        self.notifications = notifications or NotificationCenter()
        self.config_store = ConfigStore(config.sync, persist=persist_sync_config)
        self.guard = SyncGuard()
        self.reindexer = reindexer or self._log_reindex

        self.gateway = RepositoryGateway(config, executor=executor)
        self.commits = CommitOrchestrator(self.gateway, commit_message_policy)
        self.conflicts = conflict_detector or ConflictDetector(self.gateway, config.scan_conflict_markers)
        self.orchestrator = RemoteSyncOrchestrator(
            config,
            self.config_store,
            self.gateway,
            self.commits,
            self.conflicts,
            StatusClassifier()
        )
        self.scheduler = SyncScheduler(
            self.config_store,
            lambda: self.orchestrator.run(manual=False),
            self.guard,
            self.notifications
        )
        self.migration = MigrationManager(
            config,
            self.config_store,
            self.gateway,
            self.commits,
            self.guard,
            reindex=self.reindex_database,
            scheduler=self.scheduler,
            on_data_dir_changed=on_data_dir_changed,
            notifications=self.notifications
        )

    def _log_reindex(self) -> None:
        self.logger.info(f"No reindexer configured; skipping reindex of {self.gateway.path}")

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> None:
        self.gateway.refresh_state()
        self.scheduler.start()
        self.logger.info(f"🚀 Sync engine started for {self.gateway.path}")

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """Stop the scheduler and notifications; returns False if a pass outlived ``timeout``."""
        if timeout is None:
            timeout = self.config.shutdown_timeout
        idle = self.scheduler.shutdown(wait=wait, timeout=timeout)
        self.notifications.shutdown(wait=wait)
        self.logger.info("Sync engine stopped")
        return idle

    # -- configuration ---------------------------------------------------------

    def get_sync_config(self) -> SyncConfig:
        return self.config_store.get()

    def set_sync_config(self, config: SyncConfig) -> None:
        self.config_store.set(config)

    # -- sync operations ---------------------------------------------------------

    def _require_enabled(self, operation: str) -> None:
        if not self.config_store.get().enabled:
            raise SyncDisabledError(f"Git sync is not enabled; enable it before running {operation}")

    def _manual(self, operation: str, run: Callable[[], SyncResult]) -> SyncResult:
        self._require_enabled(operation)
        with self.guard.hold(operation):
            try:
                result = run()
            except Exception as e:
                self.notifications.error(f"{operation} failed: {getattr(e, 'message', e)}", source=operation)
                raise
        self.notifications.notify_result(result, source=operation)
        return result

    def sync_now(self) -> SyncResult:
        """
        Run a full manual sync pass.

        Raises:
            SyncDisabledError, SyncInProgressError, ToolUnavailableError,
            NotARepositoryError, CommitError
        """
        return self._manual("sync", lambda: self.orchestrator.run(manual=True))

    def git_pull(self) -> SyncResult:
        return self._manual("pull", self.orchestrator.pull_only)

    def git_push(self) -> SyncResult:
        return self._manual("push", self.orchestrator.push_only)

    def notify_change(self, reason: str) -> None:
        """Record a document change for the next scheduled commit message."""
        self.commits.record_change(reason)

    def check_tool_installed(self) -> bool:
        return self.gateway.check_installed()

    def get_git_status(self) -> Dict[str, Any]:
        """Read-only snapshot of the working tree and its remote."""
        path = self.gateway.path
        info = describe_repository(path, self.config.remote_name)
        status: Dict[str, Any] = {
            "path": str(path),
            "is_repository": info.is_repository,
            "branch": info.branch,
            "head_commit": info.head_commit,
            "remote_url": info.remote_url,
            "sync_running": self.guard.running,
            "pending_changes": list(self.commits.pending_changes),
        }

        if info.is_repository:
            tree = self.gateway.get_status(path)
            status.update({
                "clean": tree.clean,
                "files_changed": tree.files_changed,
                "conflicted_files": sorted(tree.conflicted),
                "merge_in_progress": self.gateway.is_merge_in_progress(path),
            })
            if info.remote_url and info.branch:
                tracking = self.gateway.get_tracking_status(path, self.config.remote_name, info.branch)
                if tracking is not None:
                    status.update({"ahead": tracking.ahead, "behind": tracking.behind})

        if self.scheduler.last_result is not None:
            status["last_scheduled_result"] = self.scheduler.last_result.to_dict()
        return status

    # -- data directory ----------------------------------------------------------

    def get_current_data_directory(self) -> Path:
        return self.gateway.path

    def validate_migration_target(self, path) -> None:
        self.migration.validate_target(path)

    def migrate_to_directory(self, path, force: bool = False) -> Path:
        return self.migration.migrate(path, force=force)

    def reindex_database(self) -> None:
        """
        Trigger the reindex collaborator.

        Raises:
            ReindexError: wrapping whatever the collaborator raised
        """
        self.logger.info(f"🔎 Reindexing {self.gateway.path}")
        try:
            self.reindexer()
        except ReindexError:
            raise
        except Exception as e:
            raise ReindexError(f"Reindex failed: {e}") from e
