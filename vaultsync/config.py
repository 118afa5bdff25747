"""Configuration management for VaultSync."""

import os
import logging
import threading
from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
from typing import Optional, List, Callable, Dict, Any

from dotenv import load_dotenv

from .errors import ValidationError
from .platform import get_platform_specific_defaults, get_default_data_dir, normalize_path


@dataclass(frozen=True)
class SyncConfig:
    """
    Synchronization policy read by the scheduler and the orchestrators.

    ``commit_interval`` is in seconds; ``0`` disables the background timer
    and leaves only manual passes.
    """
    enabled: bool = False
    auto_commit: bool = True
    auto_push: bool = False
    commit_interval: float = 300.0

    def validate(self) -> None:
        """Raise ValidationError for values the engine cannot act on."""
        if self.commit_interval is None or self.commit_interval < 0:
            raise ValidationError(
                f"commit_interval must be zero or a positive number of seconds, got {self.commit_interval}",
                context={'field': 'commit_interval'}
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        """Build a SyncConfig from host-provided values, ignoring unknown keys."""
        try:
            return cls(
                enabled=bool(data.get("enabled", cls.enabled)),
                auto_commit=bool(data.get("auto_commit", cls.auto_commit)),
                auto_push=bool(data.get("auto_push", cls.auto_push)),
                commit_interval=float(data.get("commit_interval", cls.commit_interval)),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid sync configuration: {e}")


@dataclass
class Config:
    """Configuration class for the VaultSync engine with validation and defaults."""

    # Storage
    data_dir: Path = field(default_factory=get_default_data_dir)

    # Git synchronization
    git_remote_url: Optional[str] = None
    remote_name: str = "origin"
    default_branch: str = "main"
    git_command_timeout: float = 30.0
    git_network_timeout: float = 60.0
    scan_conflict_markers: bool = True

    # Lifecycle
    shutdown_timeout: float = 10.0
    migration_lock_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"

    # Initial sync policy, handed to the ConfigStore at engine start-up
    sync: SyncConfig = field(default_factory=SyncConfig)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        self.data_dir = normalize_path(self.data_dir)

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")
        self.log_level = self.log_level.upper()

        if self.git_command_timeout <= 0:
            raise ValueError("git_command_timeout must be positive")

        if self.git_network_timeout <= 0:
            raise ValueError("git_network_timeout must be positive")

        if self.shutdown_timeout < 0:
            raise ValueError("shutdown_timeout must be non-negative")

        if self.migration_lock_timeout < 0:
            raise ValueError("migration_lock_timeout must be non-negative")

        if not self.remote_name or not self.default_branch:
            raise ValueError("remote_name and default_branch must not be empty")

        self.sync.validate()


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes", "on")


def load_configuration() -> Config:
    """Load configuration from environment variables with platform-specific defaults."""
    load_dotenv()

    try:
        platform_defaults = get_platform_specific_defaults()

        sync = SyncConfig(
            enabled=_env_flag("VAULTSYNC_SYNC_ENABLED", False),
            auto_commit=_env_flag("VAULTSYNC_AUTO_COMMIT", True),
            auto_push=_env_flag("VAULTSYNC_AUTO_PUSH", False),
            commit_interval=float(os.getenv("VAULTSYNC_COMMIT_INTERVAL", "300")),
        )

        return Config(
            data_dir=Path(os.getenv("VAULTSYNC_DATA_DIR", str(platform_defaults['data_dir']))),
            git_remote_url=os.getenv("VAULTSYNC_REMOTE_URL") or None,
            remote_name=os.getenv("VAULTSYNC_REMOTE_NAME", "origin"),
            default_branch=os.getenv("VAULTSYNC_DEFAULT_BRANCH", "main"),
            git_command_timeout=float(os.getenv("VAULTSYNC_GIT_TIMEOUT", str(platform_defaults['git_command_timeout']))),
            git_network_timeout=float(os.getenv("VAULTSYNC_GIT_NETWORK_TIMEOUT", str(platform_defaults['git_network_timeout']))),
            scan_conflict_markers=_env_flag("VAULTSYNC_SCAN_CONFLICT_MARKERS", True),
            shutdown_timeout=float(os.getenv("VAULTSYNC_SHUTDOWN_TIMEOUT", str(platform_defaults['shutdown_timeout']))),
            log_level=os.getenv("VAULTSYNC_LOG_LEVEL", platform_defaults['log_level']).upper(),
            sync=sync,
        )
    except (ValueError, TypeError, ValidationError) as e:
        raise ValueError(f"Configuration error: {e}")


def validate_configuration(config: Config) -> List[str]:
    """Validate configuration and return any errors or warnings."""
    errors = []

    try:
        config.data_dir.mkdir(parents=True, exist_ok=True)
        test_file = config.data_dir / ".vaultsync_write_test"
        test_file.write_text("test")
        test_file.unlink()
    except PermissionError:
        errors.append(f"ERROR: No write permission for data directory: {config.data_dir}")
    except OSError as e:
        errors.append(f"ERROR: Cannot access data directory {config.data_dir}: {e}")

    if config.git_remote_url and not config.git_remote_url.startswith(("http://", "https://", "git@", "ssh://", "file://", "/")):
        errors.append(f"WARNING: Git remote URL may be invalid: {config.git_remote_url}")

    if config.git_network_timeout < config.git_command_timeout:
        errors.append("WARNING: git_network_timeout is shorter than git_command_timeout")

    if 0 < config.sync.commit_interval < 10:
        errors.append("WARNING: commit_interval below 10 seconds will create very frequent commits")

    return errors


ConfigListener = Callable[[SyncConfig], None]


class ConfigStore:
    """
    Thread-safe holder of the process-wide SyncConfig.

    The scheduler reads it on every tick; the orchestrators read it before
    deciding whether to commit or push. Persisting the policy is left to the
    host through the optional ``persist`` callback.
    """

    def __init__(self, initial: Optional[SyncConfig] = None, persist: Optional[ConfigListener] = None):
        initial = initial or SyncConfig()
        initial.validate()
        self._config = initial
        self._persist = persist
        self._lock = threading.Lock()
        self._listeners: List[ConfigListener] = []
        self.logger = logging.getLogger('vaultsync.config')

    def get(self) -> SyncConfig:
        with self._lock:
            return self._config

    def set(self, config: SyncConfig) -> None:
        """
        Replace the sync policy.

        Raises:
            ValidationError: if the new policy is invalid; the old one stays.
        """
        config.validate()

        if self._persist is not None:
            self._persist(config)

        with self._lock:
            self._config = config
            listeners = list(self._listeners)

        self.logger.info(
            f"Sync config updated: enabled={config.enabled}, auto_commit={config.auto_commit}, "
            f"auto_push={config.auto_push}, commit_interval={config.commit_interval}s"
        )

        for listener in listeners:
            try:
                listener(config)
            except Exception as e:
                self.logger.warning(f"Config listener failed: {e}", exc_info=True)

    def update(self, **changes) -> SyncConfig:
        """Apply a partial change and return the new policy."""
        config = replace(self.get(), **changes)
        self.set(config)
        return config

    def subscribe(self, listener: ConfigListener) -> None:
        with self._lock:
            self._listeners.append(listener)
