"""Command execution capability used by every git invocation."""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from ..errors import ToolUnavailableError
from ..platform import get_process_creation_flags


# Line-ending overrides applied to every invocation, on top of the
# repository-local settings the gateway writes once per working tree.
GIT_ENV_OVERRIDES = {
    "GIT_CONFIG_COUNT": "2",
    "GIT_CONFIG_KEY_0": "core.autocrlf",
    "GIT_CONFIG_VALUE_0": "false",
    "GIT_CONFIG_KEY_1": "core.safecrlf",
    "GIT_CONFIG_VALUE_1": "false",
    # Never block on a credential prompt; there is no terminal to answer it
    "GIT_TERMINAL_PROMPT": "0",
}


@dataclass(frozen=True)
class CommandOutcome:
    """Captured result of one external command."""
    args: Tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """stdout and stderr joined, the way git users read them."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class CommandExecutor(ABC):
    """
    Narrow capability for running an external command.

    Implementations must capture all output, never inherit an interactive
    terminal, and enforce ``timeout``. A command that cannot be started at all
    raises ToolUnavailableError; every other failure is reported through the
    returned CommandOutcome.
    """

    @abstractmethod
    def run(
        self,
        args: Sequence[str],
        cwd: Path,
        timeout: float,
        env: Optional[Dict[str, str]] = None
    ) -> CommandOutcome:
        """Run ``args`` in ``cwd`` and return the captured outcome."""


class SubprocessExecutor(CommandExecutor):
    """CommandExecutor backed by ``subprocess.run``."""

    def __init__(self):
        self.logger = logging.getLogger('vaultsync.git_sync.executor')
        self._creationflags = get_process_creation_flags()

    def run(
        self,
        args: Sequence[str],
        cwd: Path,
        timeout: float,
        env: Optional[Dict[str, str]] = None
    ) -> CommandOutcome:
        args = tuple(args)
        process_env = dict(os.environ)
        process_env.update(GIT_ENV_OVERRIDES)
        if env:
            process_env.update(env)

        self.logger.debug(f"Running {' '.join(args)} in {cwd} (timeout {timeout:.0f}s)")

        try:
            result = subprocess.run(
                list(args),
                cwd=str(cwd),
                env=process_env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                creationflags=self._creationflags
            )
        except FileNotFoundError as e:
            # Either the executable or the working directory is missing
            if not Path(cwd).is_dir():
                return CommandOutcome(args=args, returncode=-1, stderr=f"working directory does not exist: {cwd}")
            raise ToolUnavailableError(
                f"'{args[0]}' could not be started: {e}",
                context={'command': args[0]}
            )
        except subprocess.TimeoutExpired as e:
            self.logger.warning(f"⏱️ {' '.join(args[:2])} timed out after {timeout:.0f}s")
            return CommandOutcome(
                args=args,
                returncode=-1,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr) + f"\n{args[0]} {args[1] if len(args) > 1 else ''} timed out after {timeout:.0f}s",
                timed_out=True
            )
        except PermissionError as e:
            raise ToolUnavailableError(f"'{args[0]}' is not executable: {e}", context={'command': args[0]})

        return CommandOutcome(
            args=args,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or ""
        )


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
