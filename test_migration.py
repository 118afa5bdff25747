#!/usr/bin/env python3
"""
Tests for data directory migration.

Requirements tested:
- targets equal to, inside, or containing the data directory are rejected
- a successful migration adopts the new path and reindexes exactly once
- any failure after validation keeps the old path and does not reindex
- repositories with unrelated history are rejected; clones and empty repositories are not
"""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from git import Repo

from vaultsync.config import Config, SyncConfig
from vaultsync.engine import SyncEngine
from vaultsync.errors import MigrationError, SyncInProgressError, ValidationError
from vaultsync.git_sync.repository_info import describe_repository
from vaultsync.git_sync.testing import FakeExecutor
from vaultsync.git_sync.utils import SyncStatus
from vaultsync.migration.copy import copy_tree, verify_integrity


class MigrationTestCase(unittest.TestCase):
    """Source vault with a few documents and an empty target directory."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp()).resolve()
        self.source = self.temp_dir / "vault"
        self.target = self.temp_dir / "new-home"
        self.target.mkdir()

        (self.source / ".git").mkdir(parents=True)
        (self.source / "journal").mkdir()
        (self.source / "journal" / "monday.md").write_text("# Monday\n")
        (self.source / "notes.md").write_text("# Notes\n")
        (self.source / "vaultsync.db").write_bytes(b"sqlite")
        (self.source / "sync.log").write_text("old log\n")

        self.reindex_calls = 0
        self.data_dir_changes = []
        self.executor = FakeExecutor()
        self.engine = SyncEngine(
            Config(data_dir=self.source, sync=SyncConfig(enabled=True, commit_interval=0), migration_lock_timeout=0.2),
            executor=self.executor,
            reindexer=self.reindex,
            on_data_dir_changed=self.data_dir_changes.append
        )

    def tearDown(self):
        self.engine.shutdown(wait=True, timeout=1)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def reindex(self):
        self.reindex_calls += 1


class TestValidateTarget(MigrationTestCase):

    def test_empty_directory_is_valid(self):
        self.engine.validate_migration_target(self.target)

    def test_same_directory_rejected(self):
        with self.assertRaises(ValidationError):
            self.engine.validate_migration_target(self.source)

    def test_nested_directory_rejected(self):
        nested = self.source / "journal"
        with self.assertRaises(ValidationError) as ctx:
            self.engine.validate_migration_target(nested)
        self.assertIn("inside", ctx.exception.message)

    def test_parent_directory_rejected(self):
        with self.assertRaises(ValidationError):
            self.engine.validate_migration_target(self.temp_dir)

    def test_missing_directory_rejected(self):
        with self.assertRaises(ValidationError):
            self.engine.validate_migration_target(self.temp_dir / "nowhere")

    def test_file_rejected(self):
        target_file = self.temp_dir / "file.txt"
        target_file.write_text("not a directory")
        with self.assertRaises(ValidationError):
            self.engine.validate_migration_target(target_file)

    def test_colliding_entries_rejected(self):
        (self.target / "notes.md").write_text("someone else's notes\n")
        with self.assertRaises(ValidationError) as ctx:
            self.engine.validate_migration_target(self.target)
        self.assertIn("notes.md", ctx.exception.message)

    def test_disposable_files_do_not_collide(self):
        (self.target / "vaultsync.db").write_bytes(b"stale index")
        self.engine.validate_migration_target(self.target)


class TestMigrate(MigrationTestCase):

    def test_migration_adopts_new_directory(self):
        new_path = self.engine.migrate_to_directory(self.target)

        self.assertEqual(new_path, self.target)
        self.assertEqual(self.engine.get_current_data_directory(), self.target)
        self.assertEqual(self.reindex_calls, 1)
        self.assertEqual(self.data_dir_changes, [self.target])

        self.assertEqual((self.target / "journal" / "monday.md").read_text(), "# Monday\n")
        self.assertFalse((self.target / "vaultsync.db").exists())
        self.assertFalse((self.target / "sync.log").exists())
        self.assertIn("vaultsync.db*", (self.target / ".gitignore").read_text())
        self.assertTrue((self.source / "notes.md").exists())

    def test_sync_runs_against_new_directory(self):
        self.engine.migrate_to_directory(self.target)
        self.executor.calls.clear()

        self.engine.sync_now()
        self.assertEqual(self.engine.gateway.path, self.target)
        self.assertFalse(self.engine.guard.running)
        self.assertFalse(self.engine.scheduler.paused)

    def test_dirty_source_refused_without_force(self):
        self.executor.dirty((" M", "notes.md"))

        with self.assertRaises(MigrationError):
            self.engine.migrate_to_directory(self.target)

        self.assertEqual(self.engine.get_current_data_directory(), self.source)
        self.assertEqual(self.reindex_calls, 0)
        self.assertEqual(list(self.target.iterdir()), [])

    def test_force_commits_before_copying(self):
        self.executor.dirty((" M", "notes.md"))

        self.engine.migrate_to_directory(self.target, force=True)

        self.assertEqual(len(self.executor.commit_messages), 1)
        self.assertTrue(self.executor.commit_messages[0].startswith("sync: manual sync at "))
        self.assertEqual(self.engine.get_current_data_directory(), self.target)

    def test_git_failure_after_copy_keeps_source(self):
        self.executor.script("add", returncode=128, stderr="fatal: Unable to create index.lock")

        with self.assertRaises(MigrationError):
            self.engine.migrate_to_directory(self.target)

        self.assertEqual(self.engine.get_current_data_directory(), self.source)
        self.assertEqual(self.reindex_calls, 0)
        self.assertEqual(self.data_dir_changes, [])
        self.assertFalse(self.engine.guard.running)

    def test_reindex_failure_reverts_to_source(self):
        def broken_reindex():
            raise RuntimeError("index locked")

        self.engine.reindexer = broken_reindex

        with self.assertRaises(MigrationError) as ctx:
            self.engine.migrate_to_directory(self.target)

        self.assertIn("index locked", ctx.exception.message)
        self.assertEqual(self.engine.get_current_data_directory(), self.source)
        self.assertEqual(self.data_dir_changes, [self.target, self.source])

    def test_migration_waits_for_running_sync(self):
        self.engine.guard.try_acquire("sync")
        try:
            with self.assertRaises(SyncInProgressError):
                self.engine.migrate_to_directory(self.target)
        finally:
            self.engine.guard.release()
        self.assertEqual(list(self.target.iterdir()), [])

    def test_invalid_target_touches_nothing(self):
        with self.assertRaises(ValidationError):
            self.engine.migrate_to_directory(self.source / "journal")
        self.assertEqual(self.executor.calls, [])


@unittest.skipIf(shutil.which("git") is None, "git is not installed")
class TestRepositoryTargets(unittest.TestCase):
    """Migration into directories that already hold a git repository."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp()).resolve()
        self.remote_dir = self.temp_dir / "remote.git"
        self.source = self.temp_dir / "vault"
        self.target = self.temp_dir / "new-home"
        Repo.init(self.remote_dir, bare=True).close()

        self.engine = SyncEngine(Config(
            data_dir=self.source,
            sync=SyncConfig(enabled=True, auto_push=True, commit_interval=0)
        ))
        self.engine.gateway.init(self.source)
        self.engine.gateway.set_remote(self.source, "origin", str(self.remote_dir))
        (self.source / "notes.md").write_text("# Notes\n")
        self.assertEqual(self.engine.sync_now().status, SyncStatus.SYNCED)

    def tearDown(self):
        self.engine.shutdown(wait=True, timeout=2)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def commit_file(self, repo: Repo, name: str, text: str) -> None:
        with repo.config_writer() as writer:
            writer.set_value("user", "name", "Other")
            writer.set_value("user", "email", "other@example.com")
        (Path(repo.working_dir) / name).write_text(text)
        repo.index.add([name])
        repo.index.commit(f"add {name}")

    def test_unrelated_repository_rejected(self):
        other = Repo.init(self.target)
        try:
            self.commit_file(other, "x.md", "x\n")
        finally:
            other.close()

        with self.assertRaises(ValidationError) as ctx:
            self.engine.validate_migration_target(self.target)
        self.assertIn("unrelated history", ctx.exception.message)

        with self.assertRaises(ValidationError):
            self.engine.migrate_to_directory(self.target)
        self.assertEqual(self.engine.get_current_data_directory(), self.source)

    def test_related_clone_accepted(self):
        Repo.clone_from(str(self.remote_dir), str(self.target), branch="main").close()

        # notes.md exists on both sides; a clone of the same history may be overwritten
        self.engine.validate_migration_target(self.target)
        self.engine.migrate_to_directory(self.target)

        self.assertEqual(self.engine.get_current_data_directory(), self.target)
        self.assertIn(self.engine.sync_now().status, (SyncStatus.SYNCED, SyncStatus.UP_TO_DATE))

    def test_empty_repository_takes_source_history(self):
        Repo.init(self.target).close()
        source_info = describe_repository(self.source)

        self.engine.migrate_to_directory(self.target)

        target_info = describe_repository(self.target)
        self.assertTrue(target_info.shares_history_with(source_info))
        self.assertEqual(target_info.remote_url, str(self.remote_dir))

        result = self.engine.sync_now()
        self.assertIn(result.status, (SyncStatus.SYNCED, SyncStatus.UP_TO_DATE))
        tracking = self.engine.gateway.get_tracking_status(self.target, "origin", "main")
        self.assertEqual((tracking.ahead, tracking.behind), (0, 0))


class TestCopyHelpers(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.source = self.temp_dir / "src"
        self.target = self.temp_dir / "dst"
        (self.source / ".git" / "objects").mkdir(parents=True)
        (self.source / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        (self.source / "a.md").write_text("a")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_git_directory_optional(self):
        copied = copy_tree(self.source, self.target, include_git=False)
        self.assertEqual(copied, ["a.md"])
        self.assertFalse((self.target / ".git").exists())

        copied = copy_tree(self.source, self.target, include_git=True)
        self.assertIn(".git/HEAD", copied)

    def test_verify_integrity_detects_missing_file(self):
        copied = copy_tree(self.source, self.target)
        (self.target / "a.md").unlink()
        with self.assertRaises(MigrationError):
            verify_integrity(self.source, self.target, copied)


if __name__ == "__main__":
    unittest.main(verbosity=2)
