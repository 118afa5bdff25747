#!/usr/bin/env python3
"""
Integration tests that run the engine against real git repositories.

A bare repository in a temporary directory stands in for the remote; a
second clone made with GitPython plays the other device. Skipped when git
is not installed.
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
from vaultsync.git_sync.repository_info import describe_repository
from vaultsync.git_sync.utils import SyncStatus


@unittest.skipIf(shutil.which("git") is None, "git is not installed")
class GitIntegrationTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp()).resolve()
        self.remote_dir = self.temp_dir / "remote.git"
        self.vault_dir = self.temp_dir / "vault"
        Repo.init(self.remote_dir, bare=True).close()

        self.engine = SyncEngine(Config(
            data_dir=self.vault_dir,
            sync=SyncConfig(enabled=True, auto_push=True, commit_interval=0)
        ))
        self.engine.gateway.init(self.vault_dir)
        self.engine.gateway.set_remote(self.vault_dir, "origin", str(self.remote_dir))

    def tearDown(self):
        self.engine.shutdown(wait=True, timeout=2)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, name: str, text: str, root: Path = None) -> Path:
        path = (root or self.vault_dir) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def clone_other_device(self) -> Repo:
        clone = Repo.clone_from(str(self.remote_dir), str(self.temp_dir / "laptop"), branch="main")
        with clone.config_writer() as writer:
            writer.set_value("user", "name", "Laptop")
            writer.set_value("user", "email", "laptop@example.com")
        return clone


class TestFirstSync(GitIntegrationTestCase):

    def test_first_sync_pushes_to_empty_remote(self):
        self.write("notes.md", "# Notes\n")
        self.write("journal/monday.md", "# Monday\n")

        result = self.engine.sync_now()

        self.assertEqual(result.status, SyncStatus.SYNCED)
        self.assertEqual(result.files_changed, 2)
        self.assertIsNotNone(result.commit_hash)

        remote = Repo(self.remote_dir)
        try:
            self.assertEqual(remote.heads.main.commit.hexsha[:7], result.commit_hash[:7])
        finally:
            remote.close()

    def test_second_sync_is_up_to_date(self):
        self.write("notes.md", "# Notes\n")
        self.engine.sync_now()

        result = self.engine.sync_now()

        self.assertEqual(result.status, SyncStatus.UP_TO_DATE)
        tracking = self.engine.gateway.get_tracking_status(self.vault_dir, "origin", "main")
        self.assertEqual((tracking.ahead, tracking.behind), (0, 0))

    def test_remote_changes_are_pulled(self):
        self.write("notes.md", "# Notes\n")
        self.engine.sync_now()

        laptop = self.clone_other_device()
        try:
            self.write("ideas.md", "# Ideas\n", root=Path(laptop.working_dir))
            laptop.index.add(["ideas.md"])
            laptop.index.commit("add ideas")
            laptop.remote("origin").push("main")
        finally:
            laptop.close()

        result = self.engine.sync_now()

        self.assertTrue(result.pulled)
        self.assertTrue((self.vault_dir / "ideas.md").exists())

    def test_unreachable_remote_keeps_local_commit(self):
        self.engine.gateway.set_remote(self.vault_dir, "origin", str(self.temp_dir / "missing.git"))
        self.write("notes.md", "# Notes\n")

        result = self.engine.sync_now()

        self.assertEqual(result.status, SyncStatus.PUSH_FAILED)
        self.assertIsNotNone(self.engine.gateway.get_last_commit_hash(self.vault_dir))
        self.assertTrue(self.engine.gateway.get_status(self.vault_dir).clean)

    def test_status_report(self):
        self.write("notes.md", "# Notes\n")
        self.engine.sync_now()
        self.write("draft.md", "draft\n")

        status = self.engine.get_git_status()

        self.assertTrue(status["is_repository"])
        self.assertEqual(status["branch"], "main")
        self.assertFalse(status["clean"])
        self.assertEqual(status["files_changed"], 1)
        self.assertEqual(status["ahead"], 0)


class TestConflictingEdits(GitIntegrationTestCase):

    def test_same_line_edited_on_two_devices(self):
        self.write("notes.md", "# Notes\nshared line\n")
        self.assertEqual(self.engine.sync_now().status, SyncStatus.SYNCED)

        laptop = self.clone_other_device()
        try:
            self.write("notes.md", "# Notes\nedited on the laptop\n", root=Path(laptop.working_dir))
            laptop.index.add(["notes.md"])
            laptop.index.commit("laptop edit")
            laptop.remote("origin").push("main")
        finally:
            laptop.close()

        self.write("notes.md", "# Notes\nedited on the desktop\n")

        result = self.engine.sync_now()
        self.assertEqual(result.status, SyncStatus.CONFLICT)
        self.assertIn("notes.md", result.conflicted_files)

        # Nothing is pushed or committed over the conflict on later passes
        again = self.engine.sync_now()
        self.assertEqual(again.status, SyncStatus.CONFLICT)
        self.assertTrue(self.engine.gateway.is_merge_in_progress(self.vault_dir))


class TestDescribeRepository(GitIntegrationTestCase):

    def test_plain_directory(self):
        info = describe_repository(self.temp_dir)
        self.assertFalse(info.is_repository)
        self.assertFalse(info.has_history)

    def test_unborn_branch(self):
        info = describe_repository(self.vault_dir)
        self.assertTrue(info.is_repository)
        self.assertFalse(info.has_history)
        self.assertEqual(info.remote_url, str(self.remote_dir))

    def test_clones_share_history(self):
        self.write("notes.md", "# Notes\n")
        self.engine.sync_now()
        self.clone_other_device().close()

        vault = describe_repository(self.vault_dir)
        laptop = describe_repository(self.temp_dir / "laptop")

        self.assertEqual(vault.branch, "main")
        self.assertEqual(vault.head_commit, laptop.head_commit)
        self.assertTrue(vault.shares_history_with(laptop))

        other_dir = self.temp_dir / "other"
        other = Repo.init(other_dir)
        try:
            with other.config_writer() as writer:
                writer.set_value("user", "name", "Other")
                writer.set_value("user", "email", "other@example.com")
            self.write("x.md", "x\n", root=other_dir)
            other.index.add(["x.md"])
            other.index.commit("unrelated")
        finally:
            other.close()

        self.assertFalse(vault.shares_history_with(describe_repository(other_dir)))


if __name__ == "__main__":
    unittest.main(verbosity=2)
