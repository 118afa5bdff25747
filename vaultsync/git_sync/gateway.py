"""Structured access to the git executable for one working tree."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Optional, Sequence, Set

from ..config import Config
from ..errors import GitCommandError, ToolUnavailableError
from ..platform import get_git_executable, normalize_path
from .executor import CommandExecutor, CommandOutcome, SubprocessExecutor
from .repository_info import RepositoryState


# Porcelain XY codes for paths with unresolved merge conflicts
UNMERGED_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})

NETWORK_ERROR_PATTERNS = (
    "could not resolve host",
    "unable to access",
    "connection refused",
    "connection timed out",
    "operation timed out",
    "timed out after",
    "network is unreachable",
    "no route to host",
    "temporary failure in name resolution",
    "could not read from remote repository",
    "authentication failed",
    "permission denied",
    "terminal prompts disabled",
    "could not read username",
    "repository not found",
    "does not appear to be a git repository",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
)

CONFLICT_PATTERNS = ("conflict (", "automatic merge failed", "fix conflicts and then commit")
DIVERGED_PATTERNS = ("divergent branches", "have diverged", "need to specify how to reconcile")
LOCAL_CHANGES_PATTERNS = (
    "would be overwritten by merge",
    "please commit your changes or stash them",
)
REJECTED_PATTERNS = ("[rejected]", "non-fast-forward", "fetch first", "updates were rejected")


class RemoteResult(Enum):
    """Classification of a pull or push attempt."""
    SUCCESS = "success"
    UP_TO_DATE = "up_to_date"
    NOTHING_TO_DO = "nothing_to_do"
    CONFLICT = "conflict"
    DIVERGED = "diverged"
    UNRELATED_HISTORIES = "unrelated_histories"
    BLOCKED_BY_LOCAL_CHANGES = "blocked_by_local_changes"
    REJECTED = "rejected"
    NETWORK_ERROR = "network_error"
    FAILED = "failed"


@dataclass(frozen=True)
class RemoteOutcome:
    """Result of a pull or push, with the raw tool output kept for reporting."""
    result: RemoteResult
    message: str
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.result in (RemoteResult.SUCCESS, RemoteResult.UP_TO_DATE, RemoteResult.NOTHING_TO_DO)

    @property
    def changed(self) -> bool:
        """True when the remote or the local branch actually moved."""
        return self.result == RemoteResult.SUCCESS


@dataclass(frozen=True)
class WorkingTreeStatus:
    """Snapshot of ``git status``; never cached across calls."""
    staged: FrozenSet[str] = frozenset()
    modified: FrozenSet[str] = frozenset()
    untracked: FrozenSet[str] = frozenset()
    conflicted: FrozenSet[str] = frozenset()

    @property
    def clean(self) -> bool:
        return not (self.staged or self.modified or self.untracked or self.conflicted)

    @property
    def changed_paths(self) -> FrozenSet[str]:
        return self.staged | self.modified | self.untracked | self.conflicted

    @property
    def files_changed(self) -> int:
        return len(self.changed_paths)


@dataclass(frozen=True)
class TrackingStatus:
    """Commits ahead of and behind the remote-tracking branch."""
    ahead: int
    behind: int

    @property
    def in_sync(self) -> bool:
        return self.ahead == 0 and self.behind == 0


def parse_porcelain_status(output: str) -> WorkingTreeStatus:
    """
    Parse ``git status --porcelain -z`` output.

    Entries are NUL separated. A rename or copy entry is followed by an extra
    field holding the original path, which is skipped.
    """
    staged: Set[str] = set()
    modified: Set[str] = set()
    untracked: Set[str] = set()
    conflicted: Set[str] = set()

    fields = output.split("\0")
    i = 0
    while i < len(fields):
        entry = fields[i]
        i += 1
        if len(entry) < 4:
            continue

        code, path = entry[:2], entry[3:]
        x, y = code[0], code[1]

        if x in "RC":
            i += 1

        if code == "??":
            untracked.add(path)
        elif code == "!!":
            continue
        elif code in UNMERGED_CODES:
            conflicted.add(path)
        else:
            if x in "MADRCT":
                staged.add(path)
            if y in "MDT":
                modified.add(path)

    return WorkingTreeStatus(
        staged=frozenset(staged),
        modified=frozenset(modified),
        untracked=frozenset(untracked),
        conflicted=frozenset(conflicted)
    )


def classify_pull(outcome: CommandOutcome) -> RemoteOutcome:
    """Map a finished ``git pull`` to a RemoteOutcome."""
    output = outcome.output
    lowered = output.lower()

    if outcome.timed_out:
        return RemoteOutcome(RemoteResult.NETWORK_ERROR, "Pull timed out; the remote may be unreachable", output)

    if outcome.ok:
        if "already up to date" in lowered or "already up-to-date" in lowered:
            return RemoteOutcome(RemoteResult.UP_TO_DATE, "Already up to date", output)
        return RemoteOutcome(RemoteResult.SUCCESS, "Pulled remote changes", output)

    if any(pattern in lowered for pattern in CONFLICT_PATTERNS) or "\nconflict" in "\n" + lowered:
        return RemoteOutcome(RemoteResult.CONFLICT, "Merge conflicts detected while pulling", output)
    if "couldn't find remote ref" in lowered:
        return RemoteOutcome(RemoteResult.NOTHING_TO_DO, "Remote branch does not exist yet", output)
    if "refusing to merge unrelated histories" in lowered:
        return RemoteOutcome(RemoteResult.UNRELATED_HISTORIES, "Local and remote repositories have unrelated histories", output)
    if any(pattern in lowered for pattern in DIVERGED_PATTERNS):
        return RemoteOutcome(RemoteResult.DIVERGED, "Local and remote branches have diverged", output)
    if any(pattern in lowered for pattern in LOCAL_CHANGES_PATTERNS):
        return RemoteOutcome(RemoteResult.BLOCKED_BY_LOCAL_CHANGES, "Uncommitted local changes block the pull", output)
    if any(pattern in lowered for pattern in NETWORK_ERROR_PATTERNS):
        return RemoteOutcome(RemoteResult.NETWORK_ERROR, "Could not reach the remote repository", output)

    return RemoteOutcome(RemoteResult.FAILED, f"git pull failed (exit status {outcome.returncode})", output)


def classify_push(outcome: CommandOutcome) -> RemoteOutcome:
    """Map a finished ``git push`` to a RemoteOutcome."""
    output = outcome.output
    lowered = output.lower()

    if outcome.timed_out:
        return RemoteOutcome(RemoteResult.NETWORK_ERROR, "Push timed out; the remote may be unreachable", output)

    if outcome.ok:
        if "everything up-to-date" in lowered or "everything up to date" in lowered:
            return RemoteOutcome(RemoteResult.UP_TO_DATE, "Everything up to date", output)
        return RemoteOutcome(RemoteResult.SUCCESS, "Pushed to remote", output)

    if any(pattern in lowered for pattern in REJECTED_PATTERNS):
        return RemoteOutcome(RemoteResult.REJECTED, "Push rejected: local branch is behind the remote, pull first", output)
    if "src refspec" in lowered and "does not match any" in lowered:
        return RemoteOutcome(RemoteResult.NOTHING_TO_DO, "No local commits to push", output)
    if any(pattern in lowered for pattern in NETWORK_ERROR_PATTERNS):
        return RemoteOutcome(RemoteResult.NETWORK_ERROR, "Could not reach the remote repository", output)

    return RemoteOutcome(RemoteResult.FAILED, f"git push failed (exit status {outcome.returncode})", output)


class RepositoryGateway:
    """
    Runs git against a working tree and returns structured outcomes.

    All process spawning goes through the injected CommandExecutor, so the
    rest of the engine can be exercised with scripted outcomes. Methods take
    the working directory explicitly; ``state`` records which tree the engine
    is bound to.
    """

    def __init__(self, config: Config, executor: Optional[CommandExecutor] = None, path: Optional[Path] = None):
        """
        Initialize the gateway.

        Args:
            config: Engine configuration (timeouts, remote name, default branch)
            executor: Command executor; defaults to SubprocessExecutor
            path: Working tree to bind to; defaults to ``config.data_dir``
        """
        self.config = config
        self.executor = executor or SubprocessExecutor()
        self.git = get_git_executable()
        self.logger = logging.getLogger('vaultsync.git_sync.gateway')

        self._configured_paths: Set[Path] = set()
        self._configured_lock = threading.Lock()

        self.state = RepositoryState(path=normalize_path(path or config.data_dir))

    @property
    def path(self) -> Path:
        return self.state.path

    # -- state ---------------------------------------------------------------

    def refresh_state(self) -> RepositoryState:
        """Re-read the initialized flag and remote of the bound working tree."""
        path = self.state.path
        initialized = self.is_repository(path)
        remote_url = None
        if initialized:
            try:
                remote_url = self.get_remote_url(path, self.config.remote_name)
            except ToolUnavailableError:
                remote_url = None

        self.state = RepositoryState(
            path=path,
            initialized=initialized,
            remote_name=self.config.remote_name if remote_url else None,
            remote_url=remote_url
        )
        return self.state

    def repoint(self, path: Path) -> RepositoryState:
        """Bind the gateway to another working tree (used by migration)."""
        new_path = normalize_path(path)
        self.logger.info(f"📂 Re-pointing repository gateway: {self.state.path} -> {new_path}")
        self.state = RepositoryState(path=new_path)
        return self.refresh_state()

    # -- plumbing ------------------------------------------------------------

    def _run(self, path: Path, args: Sequence[str], timeout: Optional[float] = None) -> CommandOutcome:
        outcome = self.executor.run(
            [self.git, *args],
            cwd=Path(path),
            timeout=timeout or self.config.git_command_timeout
        )
        if outcome.output:
            self.logger.debug(f"git {' '.join(args)} (exit {outcome.returncode}):\n{outcome.output}")
        return outcome

    def _run_checked(self, path: Path, args: Sequence[str], timeout: Optional[float] = None) -> CommandOutcome:
        outcome = self._run(path, args, timeout)
        if outcome.timed_out:
            raise GitCommandError(
                f"git {args[0]} timed out after {timeout or self.config.git_command_timeout:.0f}s",
                context={'command': f"git {' '.join(args)}", 'path': str(path)}
            )
        if not outcome.ok:
            raise GitCommandError(
                f"git {args[0]} failed (exit status {outcome.returncode}):\n{outcome.output}",
                context={'command': f"git {' '.join(args)}", 'path': str(path)}
            )
        return outcome

    def ensure_repository_config(self, path: Path) -> None:
        """
        Write the repository-local settings the engine relies on, once per path.

        Documents are stored with LF endings regardless of platform, and
        commits need an identity even on machines where none is configured.
        """
        if not self.is_repository(path):
            return

        key = normalize_path(path)
        with self._configured_lock:
            if key in self._configured_paths:
                return
            self._configured_paths.add(key)

        settings = [
            ("core.autocrlf", "false"),
            ("core.eol", "lf"),
            ("core.safecrlf", "false"),
        ]
        for name, value in settings:
            outcome = self._run(path, ["config", "--local", name, value])
            if not outcome.ok:
                self.logger.warning(f"⚠️ Failed to set git config {name}: {outcome.output}")

        for name, default in (("user.name", "VaultSync"), ("user.email", "vaultsync@localhost")):
            if self._run(path, ["config", name]).ok:
                continue
            outcome = self._run(path, ["config", "--local", name, default])
            if outcome.ok:
                self.logger.debug(f"Set default git {name} for {path}")
            else:
                self.logger.warning(f"⚠️ Failed to set git {name}: {outcome.output}")

    # -- contract --------------------------------------------------------------

    def check_installed(self) -> bool:
        """Whether the git executable can be started at all."""
        try:
            outcome = self.executor.run([self.git, "--version"], cwd=Path.cwd(), timeout=10)
        except ToolUnavailableError as e:
            self.logger.warning(f"Git is not available: {e}")
            return False
        return outcome.ok

    def is_repository(self, path: Path) -> bool:
        """True when ``path`` is the root of a git working tree."""
        return (Path(path) / ".git").exists()

    def init(self, path: Path) -> None:
        """Initialize a repository at ``path``; safe to call on an existing one."""
        path = Path(path)
        if self.is_repository(path):
            self.logger.debug(f"Repository already initialized at {path}")
        else:
            path.mkdir(parents=True, exist_ok=True)
            outcome = self._run(path, ["init", f"--initial-branch={self.config.default_branch}"])
            if not outcome.ok:
                # git < 2.28 has no --initial-branch
                outcome = self._run_checked(path, ["init"])
            self.logger.info(f"🆕 Initialized git repository at {path}")

        self.ensure_repository_config(path)
        if normalize_path(path) == self.state.path:
            self.state.initialized = True

    def create_gitignore(self, path: Path, patterns: Sequence[str]) -> bool:
        """Write a .gitignore unless one already exists. Returns True if written."""
        gitignore_path = Path(path) / ".gitignore"
        if gitignore_path.exists():
            return False

        content = "# VaultSync - auto-generated .gitignore\n\n" + "\n".join(patterns) + "\n"
        gitignore_path.write_text(content, encoding="utf-8")
        self.logger.info(f"Created .gitignore at {gitignore_path}")
        return True

    def add_all(self, path: Path) -> None:
        self.ensure_repository_config(path)
        self._run_checked(path, ["add", "-A"])

    def commit(self, path: Path, message: str) -> bool:
        """
        Commit whatever is staged.

        Returns:
            True if a commit was created, False if there was nothing to commit

        Raises:
            GitCommandError: if git refused or failed to commit
        """
        self.ensure_repository_config(path)
        outcome = self._run(path, ["commit", "-m", message])

        if outcome.ok:
            return True

        lowered = outcome.output.lower()
        if "nothing to commit" in lowered or "nothing added to commit" in lowered:
            self.logger.debug("Nothing to commit")
            return False

        if outcome.timed_out:
            raise GitCommandError(f"git commit timed out after {self.config.git_command_timeout:.0f}s")
        raise GitCommandError(
            f"git commit failed (exit status {outcome.returncode}):\n{outcome.output}",
            context={'path': str(path)}
        )

    def set_remote(self, path: Path, name: str, url: str) -> None:
        """Add remote ``name``, or update its URL when it already exists."""
        self.ensure_repository_config(path)
        outcome = self._run(path, ["remote", "add", name, url])

        if not outcome.ok:
            if "already exists" not in outcome.output.lower():
                raise GitCommandError(f"git remote add failed: {outcome.output}")
            self._run_checked(path, ["remote", "set-url", name, url])
            self.logger.info(f"🔗 Git remote '{name}' updated to: {url}")
        else:
            self.logger.info(f"🔗 Git remote '{name}' added: {url}")

        if normalize_path(path) == self.state.path:
            self.state.remote_name = name
            self.state.remote_url = url

    def has_remote(self, path: Path, name: str) -> bool:
        outcome = self._run(path, ["remote"])
        return outcome.ok and name in outcome.stdout.split()

    def get_remote_url(self, path: Path, name: str) -> Optional[str]:
        outcome = self._run(path, ["remote", "get-url", name])
        if not outcome.ok:
            return None
        return outcome.stdout.strip() or None

    def get_current_branch(self, path: Path) -> str:
        """Current branch name, including an unborn branch; default branch when detached."""
        outcome = self._run(path, ["symbolic-ref", "--short", "HEAD"])
        branch = outcome.stdout.strip() if outcome.ok else ""
        if not branch:
            self.logger.debug(f"Could not determine branch, using {self.config.default_branch}")
            return self.config.default_branch
        return branch

    def get_last_commit_hash(self, path: Path) -> Optional[str]:
        outcome = self._run(path, ["rev-parse", "--short", "HEAD"])
        if not outcome.ok:
            return None
        return outcome.stdout.strip() or None

    def get_status(self, path: Path) -> WorkingTreeStatus:
        """Fresh working-tree status; untracked directories are listed file by file."""
        self.ensure_repository_config(path)
        outcome = self._run_checked(path, ["status", "--porcelain", "-z", "-uall"])
        return parse_porcelain_status(outcome.stdout)

    def get_tracking_status(self, path: Path, remote: str, branch: str) -> Optional[TrackingStatus]:
        """Ahead/behind counts against ``remote/branch``; None when that ref does not exist."""
        outcome = self._run(path, ["rev-list", "--left-right", "--count", f"HEAD...{remote}/{branch}"])
        if not outcome.ok:
            return None

        parts = outcome.stdout.split()
        if len(parts) != 2:
            return None
        try:
            return TrackingStatus(ahead=int(parts[0]), behind=int(parts[1]))
        except ValueError:
            return None

    def is_merge_in_progress(self, path: Path) -> bool:
        return (Path(path) / ".git" / "MERGE_HEAD").exists()

    def pull(self, path: Path, remote: str, branch: str) -> RemoteOutcome:
        """Fetch and merge ``remote/branch``; never rebases and never opens an editor."""
        self.ensure_repository_config(path)
        outcome = self._run(
            path,
            ["pull", "--no-rebase", "--no-edit", remote, branch],
            timeout=self.config.git_network_timeout
        )
        result = classify_pull(outcome)
        self.logger.debug(f"Pull classified as {result.result.value}")
        return result

    def push(self, path: Path, remote: str, branch: str) -> RemoteOutcome:
        self.ensure_repository_config(path)
        outcome = self._run(
            path,
            ["push", remote, branch],
            timeout=self.config.git_network_timeout
        )
        result = classify_push(outcome)
        self.logger.debug(f"Push classified as {result.result.value}")
        return result

    def list_conflicted_files(self, path: Path) -> List[str]:
        """Paths git reports as unmerged."""
        outcome = self._run(path, ["diff", "--name-only", "--diff-filter=U", "-z"])
        if not outcome.ok:
            return []
        return sorted(name for name in outcome.stdout.split("\0") if name)
