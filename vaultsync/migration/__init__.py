"""Data directory migration for VaultSync."""

from .copy import copy_tree, verify_integrity
from .manager import MigrationManager, MigrationRequest

__all__ = [
    'MigrationManager',
    'MigrationRequest',
    'copy_tree',
    'verify_integrity',
]
