"""
Scripted command executor for exercising the engine without running git.

``FakeExecutor`` simulates a small repository: a porcelain status that a
successful commit clears, a commit counter, and an optional remote whose
ahead count grows with each commit and resets on push. Any command can be
overridden with ``script()``; the most recent matching script wins.
"""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import ToolUnavailableError
from .executor import CommandExecutor, CommandOutcome


Handler = Callable[[Tuple[str, ...], Path], CommandOutcome]


@dataclass
class _Script:
    prefix: Tuple[str, ...]
    handler: Handler
    remaining: Optional[int] = None


def porcelain(*entries: Tuple[str, str]) -> str:
    """Build ``git status --porcelain -z`` output from (code, path) pairs."""
    return "".join(f"{code} {path}\0" for code, path in entries)


class FakeExecutor(CommandExecutor):
    """CommandExecutor that answers git commands from in-memory state."""

    def __init__(self, installed: bool = True, remote: Optional[str] = None, branch: str = "main"):
        self.installed = installed
        self.remote = remote
        self.branch = branch
        self.status = ""
        self.commit_messages: List[str] = []
        self.ahead = 0
        self.behind = 0
        self.remote_branch_exists = remote is not None
        self.calls: List[Tuple[str, ...]] = []
        self.on_run: Optional[Callable[[Tuple[str, ...]], None]] = None
        self._scripts: List[_Script] = []
        self._lock = threading.Lock()

    # -- scripting -------------------------------------------------------------

    def script(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        times: Optional[int] = None
    ) -> "FakeExecutor":
        """Answer commands starting with ``prefix`` with a fixed outcome."""
        def handler(args, cwd):
            return CommandOutcome(args, returncode, stdout, stderr, timed_out)

        return self.script_handler(*prefix, handler=handler, times=times)

    def script_handler(self, *prefix: str, handler: Handler, times: Optional[int] = None) -> "FakeExecutor":
        with self._lock:
            self._scripts.append(_Script(tuple(prefix), handler, times))
        return self

    def dirty(self, *entries: Tuple[str, str]) -> "FakeExecutor":
        """Set the working tree status; the next successful commit clears it."""
        self.status = porcelain(*entries)
        return self

    def commands(self, *prefix: str) -> List[Tuple[str, ...]]:
        """Recorded git invocations (without the executable) starting with ``prefix``."""
        return [call for call in self.calls if call[:len(prefix)] == tuple(prefix)]

    # -- CommandExecutor -------------------------------------------------------

    def run(
        self,
        args: Sequence[str],
        cwd: Path,
        timeout: float,
        env: Optional[Dict[str, str]] = None
    ) -> CommandOutcome:
        args = tuple(args)
        git_args = args[1:]

        if not self.installed:
            raise ToolUnavailableError(f"'{args[0]}' could not be started: not found")

        with self._lock:
            self.calls.append(git_args)
            handler = self._match(git_args)

        if self.on_run is not None:
            self.on_run(git_args)

        if handler is not None:
            return handler(args, cwd)
        return self._simulate(args, git_args)

    def _match(self, git_args: Tuple[str, ...]) -> Optional[Handler]:
        for script in reversed(self._scripts):
            if git_args[:len(script.prefix)] != script.prefix:
                continue
            if script.remaining is not None:
                if script.remaining <= 0:
                    continue
                script.remaining -= 1
            return script.handler
        return None

    def _simulate(self, args: Tuple[str, ...], git_args: Tuple[str, ...]) -> CommandOutcome:
        command = git_args[0] if git_args else ""

        def ok(stdout: str = "", stderr: str = "") -> CommandOutcome:
            return CommandOutcome(args, 0, stdout, stderr)

        def fail(stderr: str, returncode: int = 1) -> CommandOutcome:
            return CommandOutcome(args, returncode, "", stderr)

        if command == "--version":
            return ok("git version 2.43.0\n")
        if command == "status":
            return ok(self.status)
        if command == "commit":
            if not self.status:
                return CommandOutcome(args, 1, "nothing to commit, working tree clean\n", "")
            self.commit_messages.append(git_args[git_args.index("-m") + 1])
            self.status = ""
            self.ahead += 1
            return ok(f"[{self.branch} {self._head()}] {self.commit_messages[-1]}\n")
        if command == "rev-parse":
            return ok(self._head() + "\n") if self.commit_messages else fail("fatal: ambiguous argument 'HEAD'", 128)
        if command == "symbolic-ref":
            return ok(self.branch + "\n")
        if command == "remote":
            if len(git_args) == 1:
                return ok(f"{self.remote}\n" if self.remote else "")
            if git_args[1] == "get-url":
                return ok("https://example.com/vault.git\n") if self.remote else fail("error: No such remote", 2)
            return ok()
        if command == "rev-list":
            if not (self.remote and self.remote_branch_exists):
                return fail("fatal: ambiguous argument", 128)
            return ok(f"{self.ahead}\t{self.behind}\n")
        if command == "pull":
            if not self.remote_branch_exists:
                return fail(f"fatal: couldn't find remote ref {self.branch}")
            if self.behind:
                self.behind = 0
                return ok("Updating 1a2b3c4..5d6e7f8\nFast-forward\n notes.md | 2 +-\n")
            return ok("Already up to date.\n")
        if command == "push":
            if not self.ahead and self.remote_branch_exists:
                return ok("", "Everything up-to-date\n")
            self.ahead = 0
            self.remote_branch_exists = True
            return ok("", f"To https://example.com/vault.git\n   1a2b3c4..5d6e7f8  {self.branch} -> {self.branch}\n")
        if command == "config" and git_args[-1] in ("user.name", "user.email"):
            return ok("Test User\n")
        if command == "diff":
            return ok("")
        return ok()

    def _head(self) -> str:
        return f"{len(self.commit_messages):07x}"
