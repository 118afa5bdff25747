"""Fire-and-forget notices for the host's notification surface."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .git_sync.utils import SyncResult, SyncStatus


class Severity(Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    """One human-readable, severity-tagged message."""
    severity: Severity
    message: str
    source: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
        }


NoticeListener = Callable[[Notice], None]


def severity_for_result(result: SyncResult) -> Severity:
    """Results needing attention are errors; anything that changed the repository is a success."""
    if result.needs_attention:
        return Severity.ERROR
    if result.status in (SyncStatus.COMMITTED, SyncStatus.SYNCED) or result.pulled:
        return Severity.SUCCESS
    return Severity.INFO


class NotificationCenter:
    """
    Delivers notices to host subscribers on a single background worker.

    Emitting never blocks the caller and a failing subscriber never reaches
    the engine. Notices are delivered in the order they were emitted.
    """

    def __init__(self):
        self.logger = logging.getLogger('vaultsync.notifications')
        self._listeners: List[NoticeListener] = []
        self._lock = threading.Lock()
        self._closed = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vaultsync-notify")

    def subscribe(self, listener: NoticeListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, severity: Severity, message: str, source: Optional[str] = None) -> Optional[Future]:
        notice = Notice(severity=severity, message=message, source=source)
        with self._lock:
            if self._closed:
                self.logger.debug(f"Notification center closed, dropping notice: {message}")
                return None
            return self._executor.submit(self._dispatch, notice)

    def info(self, message: str, source: Optional[str] = None) -> Optional[Future]:
        return self.emit(Severity.INFO, message, source)

    def success(self, message: str, source: Optional[str] = None) -> Optional[Future]:
        return self.emit(Severity.SUCCESS, message, source)

    def error(self, message: str, source: Optional[str] = None) -> Optional[Future]:
        return self.emit(Severity.ERROR, message, source)

    def notify_result(self, result: SyncResult, source: str) -> Optional[Future]:
        return self.emit(severity_for_result(result), result.message or result.status.value, source)

    def _dispatch(self, notice: Notice) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(notice)
            except Exception as e:
                self.logger.warning(f"Notification listener failed: {e}", exc_info=True)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting notices; optionally deliver the ones already queued."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait)
