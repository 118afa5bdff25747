"""Detection of unresolved merge conflicts."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Tuple

from .gateway import CONFLICT_PATTERNS, RepositoryGateway, WorkingTreeStatus


MARKER_START = "<<<<<<< "
MARKER_SEPARATOR = "======="
MARKER_END = ">>>>>>> "

# Larger files are assumed not to be hand-edited documents
MAX_SCAN_BYTES = 2 * 1024 * 1024


@dataclass(frozen=True)
class ConflictReport:
    conflicted: bool
    files: Tuple[str, ...] = field(default_factory=tuple)
    reason: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.files)


NO_CONFLICT = ConflictReport(conflicted=False)


def output_reports_conflict(output: str) -> bool:
    """True when git output announces a failed automatic merge."""
    for line in output.lower().splitlines():
        line = line.strip()
        if line.startswith("conflict") or any(pattern in line for pattern in CONFLICT_PATTERNS):
            return True
    return False


def conflicted_paths_from_output(output: str) -> Tuple[str, ...]:
    """Extract paths from ``CONFLICT (...): Merge conflict in <path>`` lines."""
    paths = []
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("CONFLICT") and " in " in line:
            paths.append(line.rsplit(" in ", 1)[1].strip())
    return tuple(sorted(set(paths)))


def has_conflict_markers(text: str) -> bool:
    """True when ``text`` holds a complete start/separator/end marker block."""
    state = 0
    for line in text.splitlines():
        if state == 0 and line.startswith(MARKER_START):
            state = 1
        elif state == 1 and line.rstrip() == MARKER_SEPARATOR:
            state = 2
        elif state == 2 and line.startswith(MARKER_END):
            return True
    return False


class ConflictDetector:
    """
    Policy hook deciding whether a working tree holds unresolved conflicts.

    The default policy checks, in order: the output of the last pull, the
    unmerged paths reported by ``git status``, an in-progress merge, and
    (when ``scan_markers`` is set) conflict markers left in changed files.
    """

    def __init__(self, gateway: RepositoryGateway, scan_markers: bool = True):
        self.gateway = gateway
        self.scan_markers = scan_markers
        self.logger = logging.getLogger('vaultsync.git_sync.conflicts')

    def detect(
        self,
        path: Path,
        tree: Optional[WorkingTreeStatus] = None,
        output: str = "",
        allow_resolved_merge: bool = False
    ) -> ConflictReport:
        """
        Inspect post-pull output and tree state.

        Args:
            path: Working tree being synced
            tree: Status already read for this pass, if any
            output: Combined output of the pull that just ran, if any
            allow_resolved_merge: Treat an in-progress merge with no unmerged
                paths left as resolved, so the caller may commit it
        """
        if output and output_reports_conflict(output):
            files = conflicted_paths_from_output(output)
            if tree is not None and tree.conflicted:
                files = tuple(sorted(set(files) | tree.conflicted))
            return self._report(files, "pull reported merge conflicts")

        if tree is not None and tree.conflicted:
            return self._report(tuple(sorted(tree.conflicted)), "unmerged paths in working tree")

        if self.gateway.is_merge_in_progress(path):
            files = tuple(self.gateway.list_conflicted_files(path))
            if files or not allow_resolved_merge:
                return self._report(files, "merge in progress")
            self.logger.info("🔧 Merge in progress has no unmerged paths left; it will be concluded")

        if self.scan_markers and tree is not None:
            files = self.scan_for_markers(path, tree.staged | tree.modified | tree.untracked)
            if files:
                return self._report(files, "conflict markers left in files")

        return NO_CONFLICT

    def scan_for_markers(self, path: Path, candidates: Iterable[str]) -> Tuple[str, ...]:
        """Return the candidate files that still contain conflict markers."""
        found = []
        for relative in sorted(candidates):
            file_path = Path(path) / relative
            try:
                if not file_path.is_file() or file_path.stat().st_size > MAX_SCAN_BYTES:
                    continue
                text = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                # Binary or unreadable; not a document we can judge
                continue
            if has_conflict_markers(text):
                found.append(relative)
        return tuple(found)

    def _report(self, files: Tuple[str, ...], reason: str) -> ConflictReport:
        self.logger.warning(f"⚔️ Conflict detected ({reason}): {len(files)} file(s)")
        return ConflictReport(conflicted=True, files=files, reason=reason)
