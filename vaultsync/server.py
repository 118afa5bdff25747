"""MCP host binding for the VaultSync engine."""

import logging
import sys
from typing import Any, Callable, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .config import Config, SyncConfig, load_configuration, validate_configuration
from .engine import SyncEngine
from .errors import ErrorHandler


def setup_logging(config: Config) -> None:
    """Setup logging with the structured ``[operation]`` prefix."""
    class StructuredFormatter(logging.Formatter):
        def format(self, record):
            if hasattr(record, 'operation'):
                record.msg = f"[{record.operation}] {record.msg}"
            return super().format(record)

    # stdout carries the MCP stdio transport, so logs go to stderr
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr
    )

    loggers = [
        'vaultsync.init',
        'vaultsync.engine',
        'vaultsync.git_sync',
        'vaultsync.scheduler',
        'vaultsync.migration',
        'vaultsync.error_handler',
    ]

    formatter = StructuredFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    for logger_name in loggers:
        logger = logging.getLogger(logger_name)
        logger.setLevel(getattr(logging, config.log_level))

        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.propagate = False


def _call(error_handler: ErrorHandler, operation: str, func: Callable[[], Any],
          context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run one engine operation and turn any failure into an ErrorResponse dict."""
    try:
        return func()
    except Exception as e:
        return error_handler.handle_engine_error(e, operation, context).to_dict()


def register_tools(server: FastMCP, engine: SyncEngine) -> None:
    """Register one MCP tool per engine operation."""
    error_handler = ErrorHandler()

    @server.tool()
    def get_sync_config() -> dict:
        """
        Get the current git sync policy.

        Returns:
            Dictionary with enabled, auto_commit, auto_push and commit_interval (seconds)
        """
        return _call(error_handler, "get_sync_config", lambda: engine.get_sync_config().to_dict())

    @server.tool()
    def set_sync_config(enabled: bool, auto_commit: bool, auto_push: bool, commit_interval: float) -> dict:
        """
        Replace the git sync policy.

        Args:
            enabled: Turn background and manual sync on or off
            auto_commit: Let scheduled passes commit changes
            auto_push: Push after committing
            commit_interval: Seconds between scheduled passes; 0 disables the timer

        Returns:
            The stored policy, or an error dictionary if it was rejected
        """
        def apply():
            config = SyncConfig(
                enabled=enabled,
                auto_commit=auto_commit,
                auto_push=auto_push,
                commit_interval=commit_interval
            )
            engine.set_sync_config(config)
            return error_handler.create_success_response("set_sync_config", config.to_dict())

        return _call(error_handler, "set_sync_config", apply)

    @server.tool()
    def sync_now() -> dict:
        """
        Run a full sync pass now: pull, commit local changes, push.

        Returns:
            Sync result with an integer status (0 no changes, 1 up to date,
            2 committed, 3 synced, 4 push failed, 5 conflict) and a message
        """
        return _call(error_handler, "sync_now", lambda: engine.sync_now().to_dict())

    @server.tool()
    def git_pull() -> dict:
        """Pull and merge remote changes without committing or pushing."""
        return _call(error_handler, "git_pull", lambda: engine.git_pull().to_dict())

    @server.tool()
    def git_push() -> dict:
        """Push existing local commits without pulling or committing."""
        return _call(error_handler, "git_push", lambda: engine.git_push().to_dict())

    @server.tool()
    def check_git_installed() -> dict:
        return _call(error_handler, "check_git_installed", lambda: {"installed": engine.check_tool_installed()})

    @server.tool()
    def get_git_status() -> dict:
        """Read-only status of the data directory's repository."""
        return _call(error_handler, "get_git_status", engine.get_git_status)

    @server.tool()
    def get_current_data_directory() -> dict:
        return _call(
            error_handler,
            "get_current_data_directory",
            lambda: {"path": str(engine.get_current_data_directory())}
        )

    @server.tool()
    def validate_migration_target(path: str) -> dict:
        """
        Check whether the data directory can be moved to ``path``.

        Args:
            path: Existing, writable directory outside the current data directory
        """
        def validate():
            engine.validate_migration_target(path)
            return {"valid": True, "path": path}

        return _call(error_handler, "validate_migration_target", validate, {'path': path})

    @server.tool()
    def migrate_to_directory(path: str, force: bool = False) -> dict:
        """
        Move the data directory to ``path`` and reindex.

        Args:
            path: Target directory
            force: Commit uncommitted changes first instead of refusing
        """
        def migrate():
            new_path = engine.migrate_to_directory(path, force=force)
            return error_handler.create_success_response("migrate_to_directory", {"path": str(new_path)})

        return _call(error_handler, "migrate_to_directory", migrate, {'path': path})

    @server.tool()
    def reindex_database() -> dict:
        def reindex():
            engine.reindex_database()
            return error_handler.create_success_response("reindex_database", {})

        return _call(error_handler, "reindex_database", reindex)

    @server.tool()
    def notify_change(reason: str) -> dict:
        """
        Record a document change so the next scheduled commit names it.

        Args:
            reason: Short description, e.g. "updated journal/2024-05-01.md"
        """
        def record():
            engine.notify_change(reason)
            return {"recorded": True, "pending": len(engine.commits.pending_changes)}

        return _call(error_handler, "notify_change", record)


def initialize_server(config: Config, engine: SyncEngine) -> FastMCP:
    """Build the FastMCP server for an engine."""
    init_logger = logging.getLogger('vaultsync.init')

    init_logger.info("Initializing MCP server with stdio transport")
    server = FastMCP("VaultSync", log_level=config.log_level)

    init_logger.info("Registering MCP tools")
    register_tools(server, engine)

    init_logger.info("VaultSync MCP server initialized successfully")
    return server


def main():
    """Main entry point for the VaultSync server with stdio transport."""
    startup_logger = None
    engine = None

    try:
        config = load_configuration()
        setup_logging(config)
        startup_logger = logging.getLogger('vaultsync.init')

        startup_logger.info("=" * 60)
        startup_logger.info("VaultSync git synchronization engine")
        startup_logger.info("=" * 60)

        if sys.version_info < (3, 10):
            python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
            startup_logger.error(f"Python 3.10+ required, found {python_version}")
            sys.exit(1)

        startup_logger.info("Performing startup validation...")
        has_errors = False
        for message in validate_configuration(config):
            if message.startswith("ERROR"):
                startup_logger.error(message)
                has_errors = True
            else:
                startup_logger.warning(message)

        if has_errors:
            startup_logger.error("Configuration validation failed")
            sys.exit(1)

        engine = SyncEngine(config)
        if not engine.check_tool_installed():
            startup_logger.warning("Git command not found - sync operations will fail until it is installed")

        server = initialize_server(config, engine)
        engine.start()

        startup_logger.info(f"Data directory: {engine.get_current_data_directory()}")
        startup_logger.info("Starting server with stdio transport")
        server.run(transport="stdio")

    except KeyboardInterrupt:
        if startup_logger:
            startup_logger.info("Server stopped by user (Ctrl+C)")
    except SystemExit:
        raise
    except Exception as e:
        if startup_logger:
            startup_logger.critical(f"Server failed to start: {e}", exc_info=True)
        else:
            print(f"CRITICAL: Server failed to start: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        if engine is not None:
            engine.shutdown(wait=True)
