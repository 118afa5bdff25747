"""
File copying and verification for data directory migration.

Copies preserve timestamps and permissions (``shutil.copy2``). Disposable files
such as the search database and logs are never copied; they are rebuilt at
the new location.
"""

import fnmatch
import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, List, Sequence

from ..errors import MigrationError


DISPOSABLE_PATTERNS = ("vaultsync.db*", "*.log", ".vaultsync_write_test")

logger = logging.getLogger('vaultsync.migration.copy')


def is_excluded(name: str, patterns: Sequence[str] = DISPOSABLE_PATTERNS) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)


def top_level_entries(path: Path, patterns: Sequence[str] = DISPOSABLE_PATTERNS) -> List[str]:
    """Names directly under ``path`` that a migration would copy, ``.git`` excluded."""
    if not path.is_dir():
        return []
    return sorted(
        entry.name for entry in path.iterdir()
        if entry.name != ".git" and not is_excluded(entry.name, patterns)
    )


def copy_tree(
    source: Path,
    target: Path,
    exclude: Sequence[str] = DISPOSABLE_PATTERNS,
    include_git: bool = True
) -> List[str]:
    """
    Copy the contents of ``source`` into ``target``.

    Existing files in ``target`` are overwritten; the source is authoritative.

    Args:
        source: Directory to copy from
        target: Directory to copy into; created if missing
        exclude: fnmatch patterns for file and directory names to skip
        include_git: Copy the ``.git`` directory as well

    Returns:
        POSIX-style relative paths of every file copied
    """
    copied = []
    target.mkdir(parents=True, exist_ok=True)

    for root, dirs, files in os.walk(source):
        root_path = Path(root)
        relative_root = root_path.relative_to(source)

        dirs[:] = [
            name for name in dirs
            if not is_excluded(name, exclude) and (include_git or relative_root != Path(".") or name != ".git")
        ]

        destination = target / relative_root
        destination.mkdir(parents=True, exist_ok=True)

        for name in files:
            if is_excluded(name, exclude):
                continue
            shutil.copy2(root_path / name, destination / name)
            copied.append((relative_root / name).as_posix())

    logger.debug(f"Copied {len(copied)} files from {source} to {target}")
    return copied


def verify_integrity(source: Path, target: Path, files: Iterable[str]) -> None:
    """
    Check that every copied file exists at the target with the source's size.

    Raises:
        MigrationError: listing the first mismatches found
    """
    problems = []
    checked = 0

    for relative in files:
        checked += 1
        src = source / relative
        dst = target / relative
        if not dst.is_file():
            problems.append(f"missing: {relative}")
        elif src.stat().st_size != dst.stat().st_size:
            problems.append(f"size mismatch: {relative}")

    if problems:
        shown = ", ".join(problems[:5])
        more = f" (and {len(problems) - 5} more)" if len(problems) > 5 else ""
        raise MigrationError(
            f"Integrity verification failed for {len(problems)} of {checked} files: {shown}{more}",
            context={'source': str(source), 'target': str(target)}
        )

    logger.info(f"✅ Verified {checked} copied files")
