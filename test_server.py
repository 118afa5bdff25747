#!/usr/bin/env python3
"""
Tests for the MCP host binding.

Requirements tested:
- every engine operation is registered as a tool
- engine exceptions become error dictionaries with stable codes
- configuration is validated before the server starts
"""

import asyncio
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from vaultsync.config import Config, SyncConfig, validate_configuration
from vaultsync.engine import SyncEngine
from vaultsync.errors import (
    ErrorHandler, MigrationError, SyncDisabledError, SyncInProgressError, ValidationError
)
from vaultsync.git_sync.testing import FakeExecutor
from vaultsync.server import _call, initialize_server


EXPECTED_TOOLS = {
    "get_sync_config",
    "set_sync_config",
    "sync_now",
    "git_pull",
    "git_push",
    "check_git_installed",
    "get_git_status",
    "get_current_data_directory",
    "validate_migration_target",
    "migrate_to_directory",
    "reindex_database",
    "notify_change",
}


class TestErrorHandler(unittest.TestCase):

    def setUp(self):
        self.handler = ErrorHandler()

    def test_engine_errors_keep_their_code(self):
        cases = [
            (SyncDisabledError("disabled"), "GIT_NOT_ENABLED"),
            (SyncInProgressError("busy"), "SYNC_IN_PROGRESS"),
            (MigrationError("copy failed"), "MIGRATION_FAILED"),
            (ValidationError("bad interval"), "VALIDATION_ERROR"),
        ]
        for error, code in cases:
            with self.subTest(code=code):
                response = self.handler.handle_engine_error(error, "sync_now")
                self.assertEqual(response.error_code, code)
                self.assertEqual(response.message, error.message)

    def test_os_errors(self):
        response = self.handler.handle_engine_error(PermissionError("read-only"), "migrate_to_directory")
        self.assertEqual(response.error_code, "PERMISSION_DENIED")

        response = self.handler.handle_engine_error(FileNotFoundError("gone"), "migrate_to_directory")
        self.assertEqual(response.error_code, "FILE_IO_ERROR")

    def test_unexpected_error(self):
        response = self.handler.handle_engine_error(RuntimeError("boom"), "sync_now", {'path': Path("/vault")})
        result = response.to_dict()

        self.assertEqual(result["error_code"], "UNEXPECTED_ERROR")
        self.assertEqual(result["error"], "sync_now failed")
        self.assertEqual(result["context"], {'path': str(Path("/vault"))})

    def test_success_response(self):
        response = self.handler.create_success_response("reindex_database", {})
        self.assertTrue(response["success"])
        self.assertEqual(response["operation"], "reindex_database")


class TestToolCalls(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.repo_dir = (self.temp_dir / "vault").resolve()
        (self.repo_dir / ".git").mkdir(parents=True)
        self.config = Config(data_dir=self.repo_dir, log_level="ERROR", sync=SyncConfig(commit_interval=0))
        self.engine = SyncEngine(self.config, executor=FakeExecutor())
        self.handler = ErrorHandler()

    def tearDown(self):
        self.engine.shutdown(wait=True, timeout=1)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_all_operations_registered(self):
        server = initialize_server(self.config, self.engine)
        tools = asyncio.run(server.list_tools())
        self.assertEqual({tool.name for tool in tools}, EXPECTED_TOOLS)

    def test_disabled_sync_returns_error_dict(self):
        result = _call(self.handler, "sync_now", lambda: self.engine.sync_now().to_dict())
        self.assertEqual(result["error_code"], "GIT_NOT_ENABLED")

    def test_enabled_sync_returns_result_dict(self):
        self.engine.set_sync_config(SyncConfig(enabled=True, commit_interval=0))
        result = _call(self.handler, "sync_now", lambda: self.engine.sync_now().to_dict())

        self.assertEqual(result["status"], 0)
        self.assertEqual(result["status_name"], "no_changes")

    def test_rejected_policy_is_not_stored(self):
        def apply():
            self.engine.set_sync_config(SyncConfig(enabled=True, commit_interval=-5))

        result = _call(self.handler, "set_sync_config", apply)

        self.assertEqual(result["error_code"], "VALIDATION_ERROR")
        self.assertFalse(self.engine.get_sync_config().enabled)

    def test_migration_validation_error(self):
        nested = self.repo_dir / "journal"
        nested.mkdir()
        result = _call(
            self.handler,
            "validate_migration_target",
            lambda: self.engine.validate_migration_target(nested),
            {'path': str(nested)}
        )
        self.assertEqual(result["error_code"], "VALIDATION_ERROR")
        self.assertEqual(result["context"]["target"], str(nested))


class TestStartupValidation(unittest.TestCase):

    def test_default_configuration_is_valid(self):
        temp_dir = Path(tempfile.mkdtemp())
        try:
            errors = validate_configuration(Config(data_dir=temp_dir))
            self.assertFalse([e for e in errors if e.startswith("ERROR")])
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def test_suspicious_remote_is_a_warning(self):
        temp_dir = Path(tempfile.mkdtemp())
        try:
            errors = validate_configuration(Config(data_dir=temp_dir, git_remote_url="not a url"))
            self.assertTrue(any(e.startswith("WARNING") and "remote" in e for e in errors))
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)


if __name__ == "__main__":
    unittest.main(verbosity=2)
