"""Git synchronization for VaultSync."""

from .commit import CommitOrchestrator, CommitContext, default_commit_message
from .conflicts import ConflictDetector, ConflictReport
from .executor import CommandExecutor, CommandOutcome, SubprocessExecutor
from .gateway import RepositoryGateway, RemoteResult, WorkingTreeStatus, TrackingStatus
from .orchestrator import RemoteSyncOrchestrator
from .repository_info import RepositoryState, RepositoryInfo, describe_repository
from .scheduler import SyncGuard, SyncScheduler
from .status import StatusClassifier
from .utils import SyncResult, SyncStatus, create_sync_result

__all__ = [
    'CommitOrchestrator',
    'CommitContext',
    'default_commit_message',
    'ConflictDetector',
    'ConflictReport',
    'CommandExecutor',
    'CommandOutcome',
    'SubprocessExecutor',
    'RepositoryGateway',
    'RemoteResult',
    'WorkingTreeStatus',
    'TrackingStatus',
    'RemoteSyncOrchestrator',
    'RepositoryState',
    'RepositoryInfo',
    'describe_repository',
    'SyncGuard',
    'SyncScheduler',
    'StatusClassifier',
    'SyncResult',
    'SyncStatus',
    'create_sync_result',
]
