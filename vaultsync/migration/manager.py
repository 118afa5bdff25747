"""Relocation of the tracked data directory."""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..config import Config, ConfigStore
from ..errors import (
    CommitError, GitCommandError, MigrationError, SyncInProgressError,
    ToolUnavailableError, ValidationError
)
from ..git_sync.commit import CommitOrchestrator
from ..git_sync.gateway import RepositoryGateway
from ..git_sync.repository_info import describe_repository
from ..git_sync.scheduler import SyncGuard, SyncScheduler
from ..platform import normalize_path
from .copy import DISPOSABLE_PATTERNS, copy_tree, top_level_entries, verify_integrity


GITIGNORE_PATTERNS = [
    "# VaultSync - disposable files",
    "vaultsync.db*",
    "",
    "# Logs",
    "*.log",
]

INIT_COMMIT_MESSAGE = "chore: init VaultSync directory"


@dataclass
class MigrationRequest:
    """One migration call: where from, where to, and what validation found."""
    source: Path
    target: Path
    force: bool = False
    related_repository: bool = False
    replace_target_git: bool = False
    copied_files: List[str] = field(default_factory=list)


class MigrationManager:
    """
    Moves the data directory to a new path and hands off to the reindexer.

    The source stays authoritative until every step has succeeded; only then
    is the gateway re-pointed. The whole migration holds the sync guard, so no
    sync pass can run against either tree while files move.
    """

    def __init__(
        self,
        config: Config,
        config_store: ConfigStore,
        gateway: RepositoryGateway,
        commits: CommitOrchestrator,
        guard: SyncGuard,
        reindex: Callable[[], None],
        scheduler: Optional[SyncScheduler] = None,
        on_data_dir_changed: Optional[Callable[[Path], None]] = None,
        notifications=None
    ):
        self.config = config
        self.config_store = config_store
        self.gateway = gateway
        self.commits = commits
        self.guard = guard
        self.reindex = reindex
        self.scheduler = scheduler
        self.on_data_dir_changed = on_data_dir_changed
        self.notifications = notifications
        self.logger = logging.getLogger('vaultsync.migration')

    # -- validation ------------------------------------------------------------

    def validate_target(self, path) -> None:
        """
        Check that ``path`` can receive the data directory.

        Raises:
            ValidationError: describing why the target is unusable
        """
        self._validate(MigrationRequest(source=self.gateway.path, target=normalize_path(path)))

    def _validate(self, request: MigrationRequest) -> MigrationRequest:
        source, target = request.source, request.target
        context = {'target': str(target)}

        if not target.exists():
            raise ValidationError(f"Target directory does not exist: {target}", context=context)
        if not target.is_dir():
            raise ValidationError(f"Target path is not a directory: {target}", context=context)
        if not os.access(target, os.W_OK):
            raise ValidationError(f"Target directory is not writable: {target}", context=context)

        if target == source:
            raise ValidationError("Target directory is the current data directory", context=context)
        if source in target.parents:
            raise ValidationError("Target directory is inside the current data directory", context=context)
        if target in source.parents:
            raise ValidationError("Target directory contains the current data directory", context=context)

        if self.gateway.is_repository(target):
            target_info = describe_repository(target, self.config.remote_name)
            source_info = describe_repository(source, self.config.remote_name)
            if not target_info.has_history:
                # An empty repository would cut the data off from its history and remote
                request.replace_target_git = self.gateway.is_repository(source)
            elif source_info.has_history:
                if not target_info.shares_history_with(source_info):
                    raise ValidationError(
                        "Target already contains a git repository with unrelated history",
                        context=context
                    )
                request.related_repository = True

        if not request.related_repository:
            collisions = sorted(set(top_level_entries(source)) & set(top_level_entries(target)))
            if collisions:
                shown = ", ".join(collisions[:5])
                raise ValidationError(
                    f"Target directory already contains entries that would be overwritten: {shown}",
                    context=context
                )

        self.logger.debug(f"Migration target validated: {target}")
        return request

    # -- migration -------------------------------------------------------------

    def migrate(self, path, force: bool = False) -> Path:
        """
        Move the data directory to ``path``.

        Args:
            path: Existing, writable directory to migrate into
            force: Commit uncommitted changes instead of refusing to migrate

        Returns:
            The new data directory

        Raises:
            ValidationError: the target was rejected; nothing was touched
            SyncInProgressError: a sync pass did not finish in time
            MigrationError: a step failed; the source directory stays in use
        """
        request = MigrationRequest(source=self.gateway.path, target=normalize_path(path), force=force)
        self._validate(request)

        if not self.gateway.check_installed():
            raise ToolUnavailableError("Git is not installed or not found in PATH")

        if not self.guard.acquire("migration", timeout=self.config.migration_lock_timeout):
            raise SyncInProgressError(
                f"Timed out after {self.config.migration_lock_timeout:.0f}s waiting for "
                f"{self.guard.holder or 'a sync pass'} to finish"
            )

        if self.scheduler is not None:
            self.scheduler.pause()

        self.logger.info(f"🚚 Starting data migration: {request.source} -> {request.target}")
        self._notify("info", f"Migrating data to {request.target}")

        try:
            self._ensure_clean(request)
            self._copy(request)
            self._setup_repository(request)
            self._adopt(request)
        except MigrationError as e:
            self.logger.error(f"❌ Migration failed, keeping {request.source}: {e.message}")
            self._notify("error", f"Migration failed: {e.message}")
            raise
        finally:
            if self.scheduler is not None:
                self.scheduler.resume()
            self.guard.release()

        self.logger.info(f"✅ Migration completed: data directory is now {request.target}")
        self._notify("success", f"Data directory moved to {request.target}")
        return request.target

    def _ensure_clean(self, request: MigrationRequest) -> None:
        source = request.source
        if not self.gateway.is_repository(source):
            return

        try:
            tree = self.gateway.get_status(source)
        except GitCommandError as e:
            raise MigrationError(f"Could not read the state of {source}: {e.message}")

        if tree.clean:
            return
        if tree.conflicted:
            raise MigrationError(
                f"{source} has unresolved merge conflicts; resolve them before migrating",
                context={'conflicted': ", ".join(sorted(tree.conflicted))}
            )
        if not request.force:
            raise MigrationError(
                f"{source} has {tree.files_changed} uncommitted change(s); sync first or migrate with force"
            )

        self.logger.info(f"Committing {tree.files_changed} pending change(s) before migration")
        try:
            self.commits.commit_pending(source, self.config_store.get(), manual=True)
        except CommitError as e:
            raise MigrationError(f"Could not commit pending changes before migration: {e.message}")

    def _copy(self, request: MigrationRequest) -> None:
        source, target = request.source, request.target
        if not source.is_dir():
            self.logger.info(f"{source} does not exist; initializing an empty data directory")
            return

        include_git = request.replace_target_git or not self.gateway.is_repository(target)
        try:
            if request.replace_target_git:
                self.logger.info(f"Replacing the empty repository at {target} with the history of {source}")
                shutil.rmtree(target / ".git")
            request.copied_files = copy_tree(source, target, DISPOSABLE_PATTERNS, include_git=include_git)
        except (OSError, shutil.Error) as e:
            raise MigrationError(f"Copying data failed: {e}", context={'target': str(target)})

        verify_integrity(source, target, request.copied_files)
        self.logger.info(f"📦 Copied {len(request.copied_files)} files to {target}")

    def _setup_repository(self, request: MigrationRequest) -> None:
        target = request.target
        try:
            self.gateway.init(target)
            self.gateway.create_gitignore(target, GITIGNORE_PATTERNS)

            remote_url = self.config.git_remote_url
            if remote_url and not self.gateway.has_remote(target, self.config.remote_name):
                self.gateway.set_remote(target, self.config.remote_name, remote_url)

            self.gateway.add_all(target)
            if self.gateway.commit(target, INIT_COMMIT_MESSAGE):
                self.logger.info(f"Created initial commit in {target}")
        except (GitCommandError, OSError) as e:
            message = e.message if isinstance(e, GitCommandError) else str(e)
            raise MigrationError(f"Setting up the repository at {target} failed: {message}")

    def _adopt(self, request: MigrationRequest) -> None:
        previous = request.source
        self.gateway.repoint(request.target)

        try:
            if self.on_data_dir_changed is not None:
                self.on_data_dir_changed(request.target)
            self.reindex()
        except Exception as e:
            self.logger.warning(f"Reverting data directory to {previous}")
            self.gateway.repoint(previous)
            if self.on_data_dir_changed is not None:
                try:
                    self.on_data_dir_changed(previous)
                except Exception as restore_error:
                    self.logger.error(f"Failed to restore data directory setting: {restore_error}")
            message = getattr(e, "message", str(e))
            raise MigrationError(f"Activating {request.target} failed: {message}") from e

    def _notify(self, severity: str, message: str) -> None:
        if self.notifications is not None:
            getattr(self.notifications, severity)(message, source="migration")
