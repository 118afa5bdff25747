"""Result types returned by sync passes."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..errors import ConflictError, NetworkError


class SyncStatus(Enum):
    """
    Outcome of one sync pass.

    Members are ordered from best to worst. The integer ``code`` is the stable
    value exchanged with the host layer and must never be renumbered.
    """
    NO_CHANGES = "no_changes"
    UP_TO_DATE = "up_to_date"
    COMMITTED = "committed"
    SYNCED = "synced"
    PUSH_FAILED = "push_failed"
    CONFLICT = "conflict"

    @property
    def code(self) -> int:
        return _STATUS_CODES[self]

    @classmethod
    def from_code(cls, code: int) -> "SyncStatus":
        for status, value in _STATUS_CODES.items():
            if value == code:
                return status
        raise ValueError(f"Unknown sync status code: {code}")

    @property
    def needs_attention(self) -> bool:
        return self in (SyncStatus.PUSH_FAILED, SyncStatus.CONFLICT)


_STATUS_CODES = {
    SyncStatus.NO_CHANGES: 0,
    SyncStatus.UP_TO_DATE: 1,
    SyncStatus.COMMITTED: 2,
    SyncStatus.SYNCED: 3,
    SyncStatus.PUSH_FAILED: 4,
    SyncStatus.CONFLICT: 5,
}


@dataclass(frozen=True)
class SyncResult:
    """Result of a sync pass. The only value returned to callers."""
    status: SyncStatus
    message: Optional[str] = None
    files_changed: Optional[int] = None
    commit_hash: Optional[str] = None
    pulled: bool = False
    push_error: Optional[str] = None
    conflicted_files: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_success(self) -> bool:
        return not self.status.needs_attention

    @property
    def needs_attention(self) -> bool:
        return self.status.needs_attention

    def raise_for_status(self) -> "SyncResult":
        """
        Raise for results that need the user, for callers that prefer exceptions.

        Raises:
            ConflictError: status is CONFLICT
            NetworkError: status is PUSH_FAILED
        """
        if self.status == SyncStatus.CONFLICT:
            raise ConflictError(
                self.message or "Merge conflicts need manual resolution",
                context={'conflicted_files': ", ".join(self.conflicted_files)}
            )
        if self.status == SyncStatus.PUSH_FAILED:
            raise NetworkError(self.message or "Push failed", context={'push_error': self.push_error or ""})
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Host-boundary encoding; ``status`` is the stable integer code."""
        result = {
            "status": self.status.code,
            "status_name": self.status.value,
            "message": self.message,
            "files_changed": self.files_changed,
            "pulled": self.pulled,
        }
        if self.commit_hash:
            result["commit_hash"] = self.commit_hash
        if self.push_error:
            result["push_error"] = self.push_error
        if self.conflicted_files:
            result["conflicted_files"] = list(self.conflicted_files)
        return result


def create_sync_result(
    status: SyncStatus,
    message: Optional[str] = None,
    files_changed: Optional[int] = None,
    commit_hash: Optional[str] = None,
    pulled: bool = False,
    push_error: Optional[str] = None,
    conflicted_files=()
) -> SyncResult:
    """
    Helper function to create SyncResult instances.

    Args:
        status: Final status of the pass
        message: Human-readable summary
        files_changed: Number of files committed in this pass, if any
        commit_hash: Short hash of the commit created in this pass
        pulled: Whether remote changes were merged in this pass
        push_error: Tool output explaining a failed push
        conflicted_files: Paths that need manual conflict resolution

    Returns:
        SyncResult instance with all fields populated
    """
    return SyncResult(
        status=status,
        message=message,
        files_changed=files_changed,
        commit_hash=commit_hash,
        pulled=pulled,
        push_error=push_error,
        conflicted_files=tuple(sorted(conflicted_files))
    )
