"""Repository information and state data structures."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, FrozenSet

from git import Repo, InvalidGitRepositoryError, NoSuchPathError, GitCommandError


@dataclass
class RepositoryState:
    """
    The working tree the engine is currently bound to.

    Owned by RepositoryGateway. Migration re-points it; nothing else replaces it.
    """
    path: Path
    initialized: bool = False
    remote_name: Optional[str] = None
    remote_url: Optional[str] = None


@dataclass(frozen=True)
class RepositoryInfo:
    """Read-only snapshot of a repository, used for reports and migration checks."""
    path: Path
    is_repository: bool
    branch: Optional[str] = None
    head_commit: Optional[str] = None
    remote_url: Optional[str] = None
    root_commits: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def has_history(self) -> bool:
        return self.head_commit is not None

    def shares_history_with(self, other: "RepositoryInfo") -> bool:
        """Two repositories are related when they share at least one root commit."""
        return bool(self.root_commits & other.root_commits)


def describe_repository(path: Path, remote_name: str = "origin") -> RepositoryInfo:
    """
    Inspect a repository using GitPython without modifying it.

    Args:
        path: Working tree to inspect
        remote_name: Remote whose URL should be reported

    Returns:
        RepositoryInfo; ``is_repository`` is False when ``path`` holds no repository
    """
    logger = logging.getLogger('vaultsync.git_sync.repository_info')

    try:
        repo = Repo(path, search_parent_directories=False)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return RepositoryInfo(path=path, is_repository=False)

    try:
        branch = None
        if not repo.head.is_detached:
            branch = repo.active_branch.name

        head_commit = None
        root_commits = frozenset()
        if repo.head.is_valid():
            head_commit = repo.head.commit.hexsha
            root_commits = frozenset(
                commit.hexsha for commit in repo.iter_commits("HEAD", max_parents=0)
            )

        remote_url = None
        if remote_name in [remote.name for remote in repo.remotes]:
            urls = list(repo.remote(remote_name).urls)
            remote_url = urls[0] if urls else None

        return RepositoryInfo(
            path=path,
            is_repository=True,
            branch=branch,
            head_commit=head_commit,
            remote_url=remote_url,
            root_commits=root_commits
        )
    except (GitCommandError, ValueError) as e:
        logger.debug(f"Partial repository inspection for {path}: {e}")
        return RepositoryInfo(path=path, is_repository=True)
    finally:
        repo.close()
