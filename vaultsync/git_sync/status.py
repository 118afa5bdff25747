"""Mapping of working-tree state and pass facts onto a single SyncStatus."""

from typing import Optional

from .gateway import TrackingStatus, WorkingTreeStatus
from .utils import SyncStatus


class StatusClassifier:
    """
    Deterministic, total mapping to SyncStatus.

    A pass is reported by its worst outcome rather than its last step:
    a conflict overrides everything, and a failed push overrides a
    successful commit.
    """

    def classify(
        self,
        tree: WorkingTreeStatus,
        tracking: Optional[TrackingStatus] = None,
        *,
        committed: bool = False,
        pushed: Optional[bool] = None,
        conflicted: bool = False,
        remote_configured: bool = False
    ) -> SyncStatus:
        """
        Classify one pass.

        Args:
            tree: Working-tree status read at the end of the pass
            tracking: Ahead/behind counts, when a remote-tracking ref exists
            committed: A commit was created during the pass
            pushed: None if no push was attempted, else whether it succeeded
            conflicted: The conflict detector reported unresolved conflicts
            remote_configured: A remote is configured for the working tree
        """
        if conflicted or tree.conflicted:
            return SyncStatus.CONFLICT

        if pushed is False:
            return SyncStatus.PUSH_FAILED

        if pushed:
            return SyncStatus.SYNCED

        if committed:
            return SyncStatus.COMMITTED

        if remote_configured and tracking is not None and tracking.in_sync and tree.clean:
            return SyncStatus.UP_TO_DATE

        return SyncStatus.NO_CHANGES
