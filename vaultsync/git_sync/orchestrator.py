"""The sync pass: check, pull, classify, commit, push, finalize."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import Config, ConfigStore
from ..errors import GitCommandError, NetworkError, NoRemoteError, NotARepositoryError, ToolUnavailableError
from .commit import CommitOrchestrator, CommitOutcome
from .conflicts import ConflictDetector, ConflictReport, conflicted_paths_from_output
from .gateway import RemoteOutcome, RemoteResult, RepositoryGateway
from .status import StatusClassifier
from .utils import SyncResult, SyncStatus, create_sync_result


CONFLICT_HELP = (
    "Resolve the conflicts manually (look for <<<<<<<, =======, >>>>>>>), "
    "stage the files with 'git add' and commit, then sync again."
)

# Pull results that stop the pass and need the user
USER_ACTION_PULL_RESULTS = {
    RemoteResult.CONFLICT: "Merge conflicts detected while pulling.",
    RemoteResult.DIVERGED: "Local and remote branches have diverged and could not be merged automatically.",
    RemoteResult.UNRELATED_HISTORIES: "Local and remote repositories have unrelated histories.",
}


@dataclass
class _PassTarget:
    path: Path
    branch: str
    remote: Optional[str]


class RemoteSyncOrchestrator:
    """
    Runs one sync pass against the gateway's working tree.

    The orchestrator holds no lock of its own: callers serialize passes
    through the scheduler's SyncGuard. Every step can short-circuit to a
    terminal SyncResult; fatal conditions (git missing, not a repository,
    commit failure) raise instead.
    """

    def __init__(
        self,
        config: Config,
        config_store: ConfigStore,
        gateway: RepositoryGateway,
        commits: CommitOrchestrator,
        conflicts: ConflictDetector,
        classifier: Optional[StatusClassifier] = None
    ):
        self.config = config
        self.config_store = config_store
        self.gateway = gateway
        self.commits = commits
        self.conflicts = conflicts
        self.classifier = classifier or StatusClassifier()
        self.logger = logging.getLogger('vaultsync.git_sync')

    # -- steps -------------------------------------------------------------------

    def _check_repository(self) -> _PassTarget:
        """Verify git and the repository before anything touches the tree."""
        path = self.gateway.path

        if not self.gateway.check_installed():
            raise ToolUnavailableError("Git is not installed or not found in PATH")

        if not self.gateway.is_repository(path):
            raise NotARepositoryError(
                f"Not a git repository: {path}. Migrate the data to a git directory first.",
                context={'path': str(path)}
            )

        remote_name = self.config.remote_name
        remote = remote_name if self.gateway.has_remote(path, remote_name) else None
        branch = self.gateway.get_current_branch(path)
        return _PassTarget(path=path, branch=branch, remote=remote)

    def _conflict_result(self, report: ConflictReport, headline: str = "Merge conflicts detected.") -> SyncResult:
        count = report.count
        detail = f" {count} file(s) need attention." if count else ""
        return create_sync_result(
            status=SyncStatus.CONFLICT,
            message=f"{headline}{detail} {CONFLICT_HELP}",
            conflicted_files=report.files
        )

    def _pull_conflict(self, target: _PassTarget, pull: RemoteOutcome) -> SyncResult:
        tree = self.gateway.get_status(target.path)
        report = self.conflicts.detect(target.path, tree, output=pull.output)
        if not report.conflicted:
            report = ConflictReport(
                conflicted=True,
                files=conflicted_paths_from_output(pull.output),
                reason=pull.result.value
            )
        return self._conflict_result(report, USER_ACTION_PULL_RESULTS[pull.result])

    def _finalize(
        self,
        target: _PassTarget,
        *,
        commit: Optional[CommitOutcome] = None,
        pushed: Optional[bool] = None,
        pulled: bool = False,
        push_error: Optional[str] = None,
        pull_error: Optional[str] = None
    ) -> SyncResult:
        tree = self.gateway.get_status(target.path)
        tracking = None
        if target.remote:
            tracking = self.gateway.get_tracking_status(target.path, target.remote, target.branch)

        committed = bool(commit and commit.committed)
        status = self.classifier.classify(
            tree,
            tracking,
            committed=committed,
            pushed=pushed,
            remote_configured=target.remote is not None
        )

        files = commit.files_changed if committed else None
        upstream = f"{target.remote}/{target.branch}" if target.remote else None

        if status == SyncStatus.CONFLICT:
            return self._conflict_result(ConflictReport(conflicted=True, files=tuple(sorted(tree.conflicted))))
        elif status == SyncStatus.PUSH_FAILED:
            lead = f"Committed {files} file(s) locally, but push" if committed else "Push"
            message = f"{lead} to {upstream} failed. Local commits are kept."
        elif status == SyncStatus.SYNCED:
            message = f"Committed {files} file(s) and pushed to {upstream}" if committed else f"Pushed local commits to {upstream}"
        elif status == SyncStatus.COMMITTED:
            message = f"Committed {files} file(s) locally"
        elif status == SyncStatus.UP_TO_DATE:
            message = f"Already up to date with {upstream}"
        elif not tree.clean:
            message = f"{tree.files_changed} file(s) left uncommitted"
        else:
            message = "No changes to sync"

        if pulled:
            message = f"Pulled remote changes. {message}"
        if pull_error and status != SyncStatus.PUSH_FAILED:
            message = f"{message} (pull failed: {pull_error})"

        return create_sync_result(
            status=status,
            message=message,
            files_changed=files,
            commit_hash=commit.commit_hash if committed else None,
            pulled=pulled,
            push_error=push_error
        )

    # -- passes --------------------------------------------------------------------

    def run(self, *, manual: bool, push_requested: Optional[bool] = None) -> SyncResult:
        """
        Run a full sync pass.

        Args:
            manual: Host-triggered pass; bypasses the auto-commit gate and may
                conclude a merge the user has already resolved
            push_requested: Override for ``auto_push``; None follows the policy

        Returns:
            SyncResult for the pass

        Raises:
            ToolUnavailableError, NotARepositoryError, CommitError, GitCommandError
        """
        policy = self.config_store.get()
        target = self._check_repository()
        kind = "manual" if manual else "scheduled"
        self.logger.info(f"🔄 Starting {kind} sync pass in {target.path} (branch {target.branch})")

        # A conflict left by an earlier pass blocks everything until resolved
        tree = self.gateway.get_status(target.path)
        report = self.conflicts.detect(target.path, tree, allow_resolved_merge=manual)
        if report.conflicted:
            return self._conflict_result(report, "Unresolved merge conflicts remain.")

        pulled = False
        pull_error = None
        deferred_pull = False

        if target.remote:
            pull = self.gateway.pull(target.path, target.remote, target.branch)
            if pull.result in USER_ACTION_PULL_RESULTS:
                return self._pull_conflict(target, pull)
            if pull.result == RemoteResult.BLOCKED_BY_LOCAL_CHANGES:
                # Commit first, then merge on top of the local commit
                deferred_pull = True
            elif not pull.ok:
                self.logger.warning(f"⚠️ Pull failed, continuing with local commit: {pull.message}")
                pull_error = pull.message
            else:
                pulled = pull.changed

        tree = self.gateway.get_status(target.path)
        commit = None
        if not tree.clean:
            report = self.conflicts.detect(target.path, tree, allow_resolved_merge=manual)
            if report.conflicted:
                return self._conflict_result(report)
            commit = self.commits.commit_pending(target.path, policy, manual=manual)

        if deferred_pull:
            if commit is not None and commit.committed:
                pull = self.gateway.pull(target.path, target.remote, target.branch)
                if pull.result in USER_ACTION_PULL_RESULTS:
                    return self._pull_conflict(target, pull)
                if pull.ok:
                    pulled = pull.changed
                else:
                    pull_error = pull.message
            else:
                pull_error = "uncommitted local changes block the pull"

        want_push = target.remote is not None and (policy.auto_push if push_requested is None else push_requested)
        pushed = None
        push_error = None

        if want_push:
            committed = bool(commit and commit.committed)
            if not pull_error:
                pushed, push_error = self._push_if_needed(target, committed)
            elif self._has_outgoing(target, committed):
                pushed = False
                push_error = f"Skipped push because the pull failed: {pull_error}"

        result = self._finalize(
            target,
            commit=commit,
            pushed=pushed,
            pulled=pulled,
            push_error=push_error,
            pull_error=pull_error
        )
        self.logger.info(f"✅ Sync pass finished: {result.status.value} - {result.message}")
        return result

    def _has_outgoing(self, target: _PassTarget, committed: bool) -> bool:
        """True when local commits may be missing from the remote branch."""
        if committed:
            return True
        tracking = self.gateway.get_tracking_status(target.path, target.remote, target.branch)
        return tracking is None or tracking.ahead > 0

    def _push_if_needed(self, target: _PassTarget, committed: bool):
        if not self._has_outgoing(target, committed):
            self.logger.debug("Nothing to push")
            return None, None

        push = self.gateway.push(target.path, target.remote, target.branch)
        if push.result == RemoteResult.SUCCESS:
            return True, None
        if push.result in (RemoteResult.UP_TO_DATE, RemoteResult.NOTHING_TO_DO):
            return None, None

        self.logger.warning(f"⚠️ Push failed ({push.result.value}), local commit kept: {push.message}")
        return False, push.output or push.message

    def pull_only(self) -> SyncResult:
        """Check the repository and pull, without committing or pushing."""
        target = self._check_repository()
        if not target.remote:
            raise NoRemoteError(f"No remote '{self.config.remote_name}' is configured for {target.path}")

        self.logger.info(f"📥 Pulling {target.remote}/{target.branch} into {target.path}")

        tree = self.gateway.get_status(target.path)
        report = self.conflicts.detect(target.path, tree, allow_resolved_merge=True)
        if report.conflicted:
            return self._conflict_result(report, "Unresolved merge conflicts remain.")

        pull = self.gateway.pull(target.path, target.remote, target.branch)
        if pull.result in USER_ACTION_PULL_RESULTS:
            return self._pull_conflict(target, pull)
        if pull.result == RemoteResult.NETWORK_ERROR:
            raise NetworkError(f"{pull.message}:\n{pull.output}", context={'remote': target.remote})
        if not pull.ok:
            raise GitCommandError(f"{pull.message}:\n{pull.output}", code="PULL_FAILED")

        return self._finalize(target, pulled=pull.changed)

    def push_only(self) -> SyncResult:
        """Check the repository and push existing commits, without pulling or committing."""
        target = self._check_repository()
        if not target.remote:
            raise NoRemoteError(f"No remote '{self.config.remote_name}' is configured for {target.path}")

        self.logger.info(f"📤 Pushing {target.branch} to {target.remote}")

        tree = self.gateway.get_status(target.path)
        report = self.conflicts.detect(target.path, tree, allow_resolved_merge=False)
        if report.conflicted:
            return self._conflict_result(report, "Unresolved merge conflicts remain.")

        push = self.gateway.push(target.path, target.remote, target.branch)
        if push.result == RemoteResult.SUCCESS:
            return self._finalize(target, pushed=True)
        if push.result in (RemoteResult.UP_TO_DATE, RemoteResult.NOTHING_TO_DO):
            return self._finalize(target)

        self.logger.warning(f"⚠️ Push failed ({push.result.value}): {push.message}")
        return self._finalize(target, pushed=False, push_error=push.output or push.message)
